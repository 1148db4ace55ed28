"""High-level entry point wiring the WartID components together.

Example::

    from fastapi import Depends, FastAPI
    from wartid import Session, WartIDClient

    wartid = WartIDClient.from_settings()
    app = FastAPI()
    wartid.install(app)

    @app.get("/profile")
    async def profile(user: Session = Depends(wartid.require_session)):
        return {"name": user.display_name}
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from .auth.dependencies import SessionExtractors
from .auth.flow import AuthFlowManager
from .auth.provider import WartIDProvider
from .auth.routes import create_auth_router
from .auth.session import MemorySessionStore, RedisSessionStore, SessionManager
from .auth.state import MemoryPendingLoginStore, RedisPendingLoginStore, StateManager
from .auth.token_store import MemoryTokenStore, RedisTokenStore
from .config import (
    ROUTE_PREFIX,
    ContextUrls,
    Credentials,
    ProviderEndpoints,
    get_settings,
)
from .log import set_level


if TYPE_CHECKING:
    import httpx

    from fastapi import APIRouter, FastAPI

    from .auth.session import SessionStore
    from .auth.state import PendingLoginStore
    from .auth.token_store import TokenStore
    from .config import WartIDSettings


class WartIDClient:
    """Fully wired WartID login integration.

    Parameters
    ----------
    settings : WartIDSettings
        Loaded configuration.
    pending_store : PendingLoginStore
        Storage for in-flight login attempts.
    session_store : SessionStore
        Storage for sessions.
    token_store : TokenStore
        Storage for provider tokens.
    transport : httpx.AsyncBaseTransport, optional
        Custom HTTP transport for provider calls.
    """

    def __init__(
        self,
        settings: WartIDSettings,
        pending_store: PendingLoginStore,
        session_store: SessionStore,
        token_store: TokenStore,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.settings = settings
        oauth2 = settings.oauth2

        self.credentials = Credentials.from_settings(oauth2)
        self.endpoints = ProviderEndpoints.from_base_url(oauth2.provider_url)
        self.urls = ContextUrls.from_base_url(oauth2.base_url)

        self.provider = WartIDProvider(
            credentials=self.credentials,
            endpoints=self.endpoints,
            timeout=oauth2.http_timeout,
            retries=oauth2.http_retries,
            deadline=oauth2.http_deadline,
            transport=transport,
        )
        self.states = StateManager(pending_store, ttl=settings.session.pending_login_ttl)
        self.sessions = SessionManager(
            store=session_store,
            token_store=token_store,
            provider=self.provider,
            login_url=f"{ROUTE_PREFIX}/login",
            ttl=settings.session.ttl,
            sliding_expiration=settings.session.sliding_expiration,
        )
        self.flow = AuthFlowManager(
            provider=self.provider,
            states=self.states,
            sessions=self.sessions,
            default_scopes=oauth2.requested_scopes,
        )
        self.extractors = SessionExtractors(self.sessions, settings.session.cookie_name)

    @classmethod
    def from_settings(
        cls,
        settings: WartIDSettings | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        redis_client: Any | None = None,
    ) -> WartIDClient:
        """Build a client with the storage backend named in settings.

        Parameters
        ----------
        settings : WartIDSettings, optional
            Configuration; loaded from the environment when omitted.
        transport : httpx.AsyncBaseTransport, optional
            Custom HTTP transport for provider calls.
        redis_client : Redis, optional
            Pre-configured Redis client for the redis backend.
        """
        settings = settings or get_settings()
        set_level(settings.log.level)

        session_settings = settings.session
        if session_settings.backend == "redis":
            redis_kwargs: dict[str, Any] = {
                "redis_url": session_settings.redis_url,
                "prefix": session_settings.redis_prefix,
                "redis_client": redis_client,
            }
            pending_store: PendingLoginStore = RedisPendingLoginStore(**redis_kwargs)
            session_store: SessionStore = RedisSessionStore(**redis_kwargs)
            token_store: TokenStore = RedisTokenStore(**redis_kwargs)
        else:
            pending_store = MemoryPendingLoginStore(max_pending=session_settings.max_pending_logins)
            session_store = MemorySessionStore()
            token_store = MemoryTokenStore()

        return cls(
            settings=settings,
            pending_store=pending_store,
            session_store=session_store,
            token_store=token_store,
            transport=transport,
        )

    @property
    def require_session(self) -> Any:
        """Dependency yielding the session or failing with 401."""
        return self.extractors.require_session

    @property
    def session_or_redirect(self) -> Any:
        """Dependency yielding the session or a LoginRedirect."""
        return self.extractors.session_or_redirect

    @property
    def optional_session(self) -> Any:
        """Dependency yielding the session or None."""
        return self.extractors.optional_session

    @property
    def router(self) -> APIRouter:
        """A new router with the login, callback, logout and status routes."""
        return create_auth_router(self.flow, self.extractors, self.settings.session)

    def install(self, app: FastAPI) -> None:
        """Mount the authentication routes on ``app``."""
        app.include_router(self.router)

    async def aclose(self) -> None:
        """Release the provider HTTP client. Call from app shutdown."""
        await self.provider.close()
