"""wartid exception hierarchy.

All wartid-specific exceptions inherit from WartIDException, enabling
catch-all handling while supporting specific error types.
"""

from __future__ import annotations

from typing import Any


class WartIDException(Exception):
    """Base exception for all wartid errors."""

    def __init__(self, message: str, **context: Any) -> None:
        """Initialize wartid exception.

        Parameters
        ----------
        message : str
            Human-readable error message.
        **context : Any
            Additional context (flow_id, session_id, status_code, etc.).
        """
        super().__init__(message)
        self.message = message
        self.context = context

    def __str__(self) -> str:
        """Format exception with context."""
        if self.context:
            ctx = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
            return f"{self.message} ({ctx})"
        return self.message


class ConfigurationError(WartIDException):
    """Credentials or endpoints are missing or malformed."""


class AuthenticationError(WartIDException):
    """Base exception for all authentication failures.

    Raised when an authentication operation fails, including the
    authorization-code handshake, token handling, or session management.
    """

    retryable: bool = False

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        flow_id: str | None = None,
        **context: Any,
    ) -> None:
        """Initialize authentication error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        provider : str, optional
            The identity provider name.
        flow_id : str, optional
            Identifier of the login attempt that failed (never the raw nonce).
        **context : Any
            Additional context.
        """
        super().__init__(message, provider=provider, flow_id=flow_id, **context)
        self.provider = provider
        self.flow_id = flow_id


class InvalidStateError(AuthenticationError):
    """Callback state is missing, unknown, expired or already consumed.

    Indicates a forged, stale or replayed callback. Treated as a security
    event and never retried.
    """


class MissingCodeError(AuthenticationError):
    """Callback carried a valid state but no authorization code."""


class ProviderDeniedError(AuthenticationError):
    """The provider redirected back with an ``error`` parameter.

    Usually the user declined consent; the login can be retried.
    """

    def __init__(
        self,
        message: str,
        error: str,
        error_description: str | None = None,
        **context: Any,
    ) -> None:
        """Initialize provider denial.

        Parameters
        ----------
        message : str
            Human-readable error message.
        error : str
            The OAuth2 ``error`` code returned by the provider.
        error_description : str, optional
            The provider's ``error_description``.
        **context : Any
            Additional context.
        """
        super().__init__(message, error=error, **context)
        self.error = error
        self.error_description = error_description


class TransientAuthError(AuthenticationError):
    """Network or provider failure that may succeed on a later attempt."""

    retryable = True


class TokenExchangeError(TransientAuthError):
    """Exchanging the authorization code for tokens failed."""


class IdentityFetchError(TransientAuthError):
    """Fetching the user's identity from the userinfo endpoint failed."""


class TokenRefreshError(AuthenticationError):
    """Refreshing an expired access token failed."""


class InvalidCsrfError(AuthenticationError):
    """A state-changing request carried a missing or wrong CSRF token."""


class SessionExpiredError(AuthenticationError):
    """No valid session exists for the presented credential.

    Covers unknown, expired and absent credentials alike.
    """
