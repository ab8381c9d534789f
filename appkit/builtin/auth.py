# =============================================================================
# appkit/builtin/auth.py  -  Scope checks on verified tokens
# =============================================================================
#
# WHAT THIS MODULE DOES:
#   require_scopes("read", "write") returns middleware that lets a call
#   through only when the verified token attached under metadata["auth"]
#   carries every listed scope.  On success it records the principal as
#   state["user_id"], which rate_limit_middleware keys on.
#
#   Token verification itself happens earlier, in the orchestrator.
# =============================================================================

from appkit.auth import AUTH_METADATA_KEY, TokenClaims
from appkit.context import ExecutionContext
from appkit.errors import AuthError
from appkit.middleware import Middleware, Proceed


def require_scopes(*scopes: str) -> Middleware:
    required = tuple(scopes)

    async def middleware(context: ExecutionContext, proceed: Proceed) -> None:
        claims = context.metadata.get(AUTH_METADATA_KEY)
        if not isinstance(claims, TokenClaims):
            raise AuthError("Authentication required")
        if not claims.has_scopes(required):
            missing = sorted(set(required) - set(claims.scopes))
            raise AuthError(
                f"Insufficient scope: missing {', '.join(missing)}",
                {"required": list(required), "granted": list(claims.scopes)},
            )
        context.state["user_id"] = claims.principal
        await proceed()

    return middleware
