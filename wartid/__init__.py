"""wartid - log users in to FastAPI applications with WartID.

Implements the OAuth2 authorization-code flow against a single identity
provider, with single-use login state, server-side sessions and
CSRF-protected logout.
"""

from __future__ import annotations

from .client import WartIDClient
from .config import (
    ContextUrls,
    Credentials,
    ProviderEndpoints,
    WartIDSettings,
    clear_settings,
    get_settings,
)
from .exceptions import (
    AuthenticationError,
    ConfigurationError,
    IdentityFetchError,
    InvalidCsrfError,
    InvalidStateError,
    MissingCodeError,
    ProviderDeniedError,
    SessionExpiredError,
    TokenExchangeError,
    TokenRefreshError,
    TransientAuthError,
    WartIDException,
)
from .types import (
    CallbackResult,
    Identity,
    LoginRedirect,
    OAuthTokenSet,
    PendingLogin,
    Session,
    SessionOrRedirect,
)


__version__ = "0.1.0"

__all__ = [
    "AuthenticationError",
    "CallbackResult",
    "ConfigurationError",
    "ContextUrls",
    "Credentials",
    "Identity",
    "IdentityFetchError",
    "InvalidCsrfError",
    "InvalidStateError",
    "LoginRedirect",
    "MissingCodeError",
    "OAuthTokenSet",
    "PendingLogin",
    "ProviderDeniedError",
    "ProviderEndpoints",
    "Session",
    "SessionExpiredError",
    "SessionOrRedirect",
    "TokenExchangeError",
    "TokenRefreshError",
    "TransientAuthError",
    "WartIDClient",
    "WartIDException",
    "WartIDSettings",
    "__version__",
    "clear_settings",
    "get_settings",
]
