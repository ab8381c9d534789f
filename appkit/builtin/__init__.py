# =============================================================================
# appkit/builtin/__init__.py
# =============================================================================
# Ready-made pieces built only on the public appkit surface:
#   logging_plugin.py  create_logging_plugin()  - logs lifecycle and calls
#   rate_limit.py      rate_limit_middleware()  - fixed-window request caps
#   auth.py            require_scopes()         - scope checks on auth claims
# =============================================================================
