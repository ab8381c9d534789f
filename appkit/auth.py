# =============================================================================
# appkit/auth.py  -  Bearer-token verification
# =============================================================================
#
# WHAT THIS MODULE DOES:
#   When the app is configured with a TokenVerifier, the orchestrator pulls
#   the bearer token out of the caller's metadata, verifies it, and attaches
#   the resulting TokenClaims to the ExecutionContext metadata under "auth"
#   before any middleware runs.
#
#   JWTVerifier is the bundled verifier.  Signature and claim checks are
#   done by python-jose; signing keys come either from a static key (HS*
#   secrets, PEM public keys) or from a JWKS endpoint fetched with httpx and
#   cached.
# =============================================================================

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Protocol

import httpx
from jose import ExpiredSignatureError, JWTError, jwt

from appkit.errors import AuthError

logger = logging.getLogger(__name__)

AUTH_METADATA_KEY = "auth"


@dataclass(frozen=True)
class TokenClaims:
    principal: str
    scopes: tuple[str, ...] = ()
    expiry: int | None = None
    client_id: str | None = None
    claims: Mapping[str, Any] = field(default_factory=dict)

    def has_scopes(self, required: Iterable[str]) -> bool:
        return set(required).issubset(self.scopes)


class TokenVerifier(Protocol):
    async def verify(self, raw_token: str) -> TokenClaims: ...


def extract_bearer_token(metadata: Mapping[str, Any]) -> str | None:
    """Find a bearer token in `metadata` ("authorization" header or "token")."""
    header = metadata.get("authorization") or metadata.get("Authorization")
    if isinstance(header, str):
        scheme, _, value = header.partition(" ")
        if scheme.lower() == "bearer" and value.strip():
            return value.strip()
        return None
    token = metadata.get("token")
    return token if isinstance(token, str) and token else None


class JWKSClient:
    """Fetches and caches a JSON Web Key Set."""

    def __init__(self, jwks_url: str, cache_seconds: float = 600.0, timeout: float = 5.0):
        self.jwks_url = jwks_url
        self.cache_seconds = cache_seconds
        self.timeout = timeout
        self._keys: dict[str, dict[str, Any]] = {}
        self._fetched_at = 0.0

    async def get_signing_key(self, kid: str) -> dict[str, Any]:
        expired = time.monotonic() - self._fetched_at > self.cache_seconds
        if expired or kid not in self._keys:
            await self.refresh()
        try:
            return self._keys[kid]
        except KeyError:
            raise AuthError(f"Failed to get signing key: no key with kid '{kid}'") from None

    async def refresh(self) -> None:
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(self.jwks_url)
                response.raise_for_status()
                document = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise AuthError(f"Failed to fetch JWKS from {self.jwks_url}: {exc}") from exc
        self._keys = {key["kid"]: key for key in document.get("keys", []) if "kid" in key}
        self._fetched_at = time.monotonic()
        logger.debug("Loaded %d signing key(s) from %s", len(self._keys), self.jwks_url)


class JWTVerifier:
    """Verify JWT bearer tokens.

    Args:
        key: Static verification key (HS secret or PEM).  Mutually
            exclusive with `jwks_url`.
        jwks_url: JWKS endpoint; the token header's `kid` selects the key.
        issuer: Expected `iss`; a trailing slash on either side is ignored.
        audience: Expected `aud`.
        algorithms: Accepted signing algorithms.
        leeway: Clock-skew tolerance in seconds.
        required_scopes: Scopes every token must carry.
    """

    def __init__(
        self,
        key: str | None = None,
        jwks_url: str | None = None,
        issuer: str | None = None,
        audience: str | None = None,
        algorithms: Iterable[str] = ("RS256",),
        leeway: int = 5,
        required_scopes: Iterable[str] = (),
    ):
        if (key is None) == (jwks_url is None):
            raise ValueError("Provide exactly one of `key` or `jwks_url`")
        self._key = key
        self._jwks = JWKSClient(jwks_url) if jwks_url else None
        self.issuer = issuer
        self.audience = audience
        self.algorithms = list(algorithms)
        self.leeway = leeway
        self.required_scopes = tuple(required_scopes)

    async def verify(self, raw_token: str) -> TokenClaims:
        try:
            header = jwt.get_unverified_header(raw_token)
        except JWTError as exc:
            raise AuthError("Malformed JWT token") from exc

        key: Any = self._key
        if self._jwks is not None:
            kid = header.get("kid")
            if not kid:
                raise AuthError("JWT missing key ID (kid) in header")
            key = await self._jwks.get_signing_key(kid)

        issuer: Any = None
        if self.issuer:
            base = self.issuer.rstrip("/")
            issuer = (base, f"{base}/")

        try:
            payload = jwt.decode(
                raw_token,
                key,
                algorithms=self.algorithms,
                audience=self.audience,
                issuer=issuer,
                options={"leeway": self.leeway, "verify_aud": self.audience is not None},
            )
        except ExpiredSignatureError as exc:
            raise AuthError("Token expired") from exc
        except JWTError as exc:
            raise AuthError(f"Token verification failed: {exc}") from exc

        subject = payload.get("sub")
        if not subject:
            raise AuthError("JWT missing required claim: sub")
        if payload.get("exp") is None:
            raise AuthError("JWT missing required claim: exp")

        scope = payload.get("scope", "")
        scopes = tuple(scope.split()) if isinstance(scope, str) else tuple(scope or ())
        claims = TokenClaims(
            principal=subject,
            scopes=scopes,
            expiry=int(payload["exp"]),
            client_id=payload.get("client_id") or payload.get("azp"),
            claims=payload,
        )
        if not claims.has_scopes(self.required_scopes):
            missing = sorted(set(self.required_scopes) - set(scopes))
            raise AuthError(f"Token is missing required scope(s): {', '.join(missing)}")
        return claims
