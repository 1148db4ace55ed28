"""Type definitions shared by the wartid auth components."""

from __future__ import annotations

import time

from dataclasses import dataclass, field
from typing import Any, Union
from urllib.parse import urlencode


@dataclass(frozen=True)
class PendingLogin:
    """Server-side record of an in-flight login attempt.

    Attributes
    ----------
    state_nonce : str
        The unguessable ``state`` value sent to the provider.
    requested_scopes : frozenset[str]
        Scopes requested in the authorization request.
    created_at : float
        Unix timestamp when the login redirect was issued.
    expires_at : float
        Unix timestamp after which the state is no longer accepted.
    redirect_to : str or None
        Local path to land on after a successful login.
    """

    state_nonce: str
    requested_scopes: frozenset[str]
    created_at: float
    expires_at: float
    redirect_to: str | None = None

    @property
    def is_expired(self) -> bool:
        """Check if the pending login has expired."""
        return time.time() >= self.expires_at

    def to_dict(self) -> dict[str, Any]:
        """Serialize for network-backed stores."""
        return {
            "state_nonce": self.state_nonce,
            "requested_scopes": sorted(self.requested_scopes),
            "created_at": self.created_at,
            "expires_at": self.expires_at,
            "redirect_to": self.redirect_to,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PendingLogin:
        """Deserialize a record produced by ``to_dict``."""
        return cls(
            state_nonce=data["state_nonce"],
            requested_scopes=frozenset(data.get("requested_scopes", [])),
            created_at=float(data["created_at"]),
            expires_at=float(data["expires_at"]),
            redirect_to=data.get("redirect_to"),
        )


@dataclass
class Session:
    """An authenticated user session.

    Only ``expires_at`` changes after creation, and only under a
    sliding-expiration policy.

    Attributes
    ----------
    session_id : str
        Opaque session credential handed to the browser.
    user_id : str
        Subject identifier at the identity provider.
    display_name : str
        Human-readable user name.
    granted_scopes : frozenset[str]
        Scopes granted for this session.
    issued_at : float
        Unix timestamp when the session was created.
    expires_at : float
        Unix timestamp when the session expires.
    csrf_token : str
        Per-session token required by state-changing requests such as logout.
    email : str or None
        The user's email, when the ``email`` scope was granted.
    """

    session_id: str
    user_id: str
    display_name: str
    granted_scopes: frozenset[str]
    issued_at: float
    expires_at: float
    csrf_token: str
    email: str | None = None

    @property
    def is_expired(self) -> bool:
        """Check if the session has expired."""
        return time.time() >= self.expires_at

    def to_dict(self) -> dict[str, Any]:
        """Serialize for network-backed stores."""
        return {
            "session_id": self.session_id,
            "user_id": self.user_id,
            "display_name": self.display_name,
            "granted_scopes": sorted(self.granted_scopes),
            "issued_at": self.issued_at,
            "expires_at": self.expires_at,
            "csrf_token": self.csrf_token,
            "email": self.email,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Session:
        """Deserialize a record produced by ``to_dict``."""
        return cls(
            session_id=data["session_id"],
            user_id=data["user_id"],
            display_name=data["display_name"],
            granted_scopes=frozenset(data.get("granted_scopes", [])),
            issued_at=float(data["issued_at"]),
            expires_at=float(data["expires_at"]),
            csrf_token=data["csrf_token"],
            email=data.get("email"),
        )


@dataclass
class OAuthTokenSet:
    """OAuth2 token set returned by the provider.

    Attributes
    ----------
    access_token : str
        The access token for API requests.
    token_type : str
        Token type, typically "Bearer".
    refresh_token : str or None
        Optional refresh token for obtaining new access tokens.
    expires_in : int or None
        Token lifetime in seconds from issuance.
    scope : str
        Space-separated list of granted scopes.
    raw : dict[str, Any]
        The raw token response from the provider.
    issued_at : float
        Unix timestamp when the token was issued.
    """

    access_token: str
    token_type: str = "Bearer"  # noqa: S105
    refresh_token: str | None = None
    expires_in: int | None = None
    scope: str = ""
    raw: dict[str, Any] = field(default_factory=dict)
    issued_at: float = field(default_factory=time.time)

    @property
    def is_expired(self) -> bool:
        """Check if the access token has expired."""
        if self.expires_in is None:
            return False
        return time.time() > (self.issued_at + self.expires_in)

    @property
    def expires_at(self) -> float | None:
        """Get the expiry timestamp, or None if no expiry."""
        if self.expires_in is None:
            return None
        return self.issued_at + self.expires_in

    @property
    def granted_scopes(self) -> frozenset[str]:
        """Scopes listed in the token response (may be empty)."""
        return frozenset(s for s in self.scope.split() if s)


@dataclass(frozen=True)
class Identity:
    """User identity claims returned by the userinfo endpoint."""

    user_id: str
    display_name: str
    email: str | None = None
    claims: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)


@dataclass(frozen=True)
class LoginRedirect:
    """Instruction to send the browser to the login route.

    Returned instead of a session by permissive extractors, so route
    handlers can decide how to render the unauthenticated case.

    Attributes
    ----------
    login_url : str
        The login route.
    redirect_to : str or None
        The path to come back to once logged in.
    """

    login_url: str
    redirect_to: str | None = None

    @property
    def location(self) -> str:
        """The full redirect target, including the return path."""
        if not self.redirect_to:
            return self.login_url
        return f"{self.login_url}?{urlencode({'redirect_to': self.redirect_to})}"

    def response(self, status_code: int = 303) -> Any:
        """Build a Starlette redirect response for this instruction."""
        from fastapi.responses import RedirectResponse

        return RedirectResponse(url=self.location, status_code=status_code)


SessionOrRedirect = Union[Session, LoginRedirect]


@dataclass(frozen=True)
class CallbackResult:
    """Outcome of a successfully handled provider callback."""

    session: Session
    redirect_to: str | None = None
