from .backend_token import (
    BACKEND_TOKEN_SCOPE,
    BackendTokenError,
    BackendTokenPayload,
    LocalTokenProvider,
    RemoteTokenProvider,
    StaticTokenProvider,
    TokenProvider,
    sign_backend_token,
    verify_backend_token,
)
from .middleware import (
    SESSION_COOKIE_NAME,
    SessionError,
    create_session_token,
    get_session_address,
    require_session_address,
    verify_session_token,
)

__all__ = [
    "BACKEND_TOKEN_SCOPE",
    "BackendTokenError",
    "BackendTokenPayload",
    "LocalTokenProvider",
    "RemoteTokenProvider",
    "StaticTokenProvider",
    "TokenProvider",
    "sign_backend_token",
    "verify_backend_token",
    "SESSION_COOKIE_NAME",
    "SessionError",
    "create_session_token",
    "get_session_address",
    "require_session_address",
    "verify_session_token",
]
