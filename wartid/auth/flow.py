"""OAuth2 authorization-code flow orchestrator.

Provides AuthFlowManager, which issues login redirects and completes
provider callbacks. Each callback step fails with its own exception so
the HTTP layer can tell a declined consent from a forged callback from
an unavailable provider.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import logging

from typing import TYPE_CHECKING

from ..exceptions import MissingCodeError, ProviderDeniedError
from ..types import CallbackResult
from .provider import PROVIDER_NAME
from .state import flow_id


if TYPE_CHECKING:
    from collections.abc import Iterable

    from .provider import WartIDProvider
    from .session import SessionManager
    from .state import StateManager


logger = logging.getLogger("wartid.auth")


def safe_redirect_path(path: str | None) -> str | None:
    """Return ``path`` if it is a same-site relative path, else None.

    Rejects absolute URLs, scheme-relative ``//host`` paths and
    backslash tricks so a login link cannot bounce users off-site.
    """
    if not path or not path.startswith("/") or path.startswith("//"):
        return None
    if "\\" in path or any(ord(c) < 0x20 for c in path):
        return None
    return path


class AuthFlowManager:
    """Orchestrates the authorization-code flow.

    Parameters
    ----------
    provider : WartIDProvider
        The identity provider client.
    states : StateManager
        Issues and validates login state nonces.
    sessions : SessionManager
        Creates sessions for authenticated users.
    default_scopes : iterable of str
        Scopes requested when the caller does not name any.
    """

    def __init__(
        self,
        provider: WartIDProvider,
        states: StateManager,
        sessions: SessionManager,
        default_scopes: Iterable[str] = ("basic",),
    ) -> None:
        """Initialize the auth flow manager."""
        self.provider = provider
        self.states = states
        self.sessions = sessions
        self.default_scopes = frozenset(default_scopes)

    async def build_redirect(
        self,
        scopes: Iterable[str] | None = None,
        redirect_to: str | None = None,
    ) -> str:
        """Start a login attempt and return the provider authorize URL.

        Every call records an independent pending login.

        Parameters
        ----------
        scopes : iterable of str, optional
            Scopes to request (defaults to ``default_scopes``).
        redirect_to : str, optional
            Local path to land on after login; dropped unless it is a
            same-site relative path.

        Returns
        -------
        str
            The authorization URL carrying the new state nonce.
        """
        requested = frozenset(scopes) if scopes is not None else self.default_scopes
        state = await self.states.issue(requested, redirect_to=safe_redirect_path(redirect_to))
        return self.provider.build_authorize_url(state=state, scopes=requested)

    async def handle_callback(
        self,
        code: str | None,
        state: str | None,
        error: str | None = None,
        error_description: str | None = None,
    ) -> CallbackResult:
        """Complete a login from the provider's redirect.

        Parameters
        ----------
        code : str or None
            The authorization code.
        state : str or None
            The state nonce echoed by the provider.
        error : str, optional
            OAuth2 error code when the provider did not grant access.
        error_description : str, optional
            Human-readable provider error.

        Returns
        -------
        CallbackResult
            The new session and the path to land on.

        Raises
        ------
        ProviderDeniedError
            If the provider returned ``error``; no exchange is attempted.
        InvalidStateError
            If the state is missing, unknown, expired or replayed.
        MissingCodeError
            If the state was valid but no code was sent.
        TokenExchangeError
            If the code could not be exchanged.
        IdentityFetchError
            If the user's identity could not be fetched.
        """
        if error:
            logger.info("Login denied by provider: %s", error)
            msg = f"Provider returned error: {error_description or error}"
            raise ProviderDeniedError(
                msg,
                error=error,
                error_description=error_description,
                provider=PROVIDER_NAME,
            )

        pending = await self.states.validate(state)
        fid = flow_id(pending.state_nonce)

        if not code:
            msg = "No authorization code in callback"
            raise MissingCodeError(msg, provider=PROVIDER_NAME, flow_id=fid)

        tokens = await self.provider.exchange_code(code)
        identity = await self.provider.get_identity(tokens.access_token)

        granted = tokens.granted_scopes or pending.requested_scopes
        session = await self.sessions.create(identity, granted, tokens)

        logger.info("Login %s completed for user %s", fid, identity.user_id)
        return CallbackResult(session=session, redirect_to=pending.redirect_to)
