"""Pytest configuration and fixtures."""

# pylint: disable=redefined-outer-name

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient

from tests.fake_idp import CLIENT_ID, CLIENT_SECRET, PROVIDER_URL, REDIRECT_URI, FakeIdP
from wartid import LoginRedirect, Session, SessionOrRedirect, WartIDClient, WartIDSettings
from wartid.auth.flow import AuthFlowManager
from wartid.auth.provider import WartIDProvider
from wartid.auth.session import MemorySessionStore, SessionManager
from wartid.auth.state import MemoryPendingLoginStore, StateManager
from wartid.auth.token_store import MemoryTokenStore
from wartid.config import Credentials, ProviderEndpoints, clear_settings


if TYPE_CHECKING:
    from collections.abc import Generator


@pytest.fixture(autouse=True)
def _isolated_settings() -> Generator[None, None, None]:
    """Drop cached settings between tests."""
    clear_settings()
    yield
    clear_settings()


@pytest.fixture()
def idp() -> FakeIdP:
    """A fresh fake identity provider."""
    return FakeIdP()


@pytest.fixture()
def credentials() -> Credentials:
    """Client credentials registered at the fake provider."""
    return Credentials(client_id=CLIENT_ID, client_secret=CLIENT_SECRET, redirect_uri=REDIRECT_URI)


@pytest.fixture()
def endpoints() -> ProviderEndpoints:
    """Endpoints of the fake provider."""
    return ProviderEndpoints.from_base_url(PROVIDER_URL)


@pytest.fixture()
def provider(credentials: Credentials, endpoints: ProviderEndpoints, idp: FakeIdP) -> WartIDProvider:
    """A provider client talking to the fake IdP."""
    return WartIDProvider(credentials, endpoints, transport=idp.transport)


@pytest.fixture()
def pending_store() -> MemoryPendingLoginStore:
    """An empty pending login store."""
    return MemoryPendingLoginStore()


@pytest.fixture()
def states(pending_store: MemoryPendingLoginStore) -> StateManager:
    """A state manager over the memory store."""
    return StateManager(pending_store)


@pytest.fixture()
def session_store() -> MemorySessionStore:
    """An empty session store."""
    return MemorySessionStore()


@pytest.fixture()
def token_store() -> MemoryTokenStore:
    """An empty token store."""
    return MemoryTokenStore()


@pytest.fixture()
def sessions(
    session_store: MemorySessionStore,
    token_store: MemoryTokenStore,
    provider: WartIDProvider,
) -> SessionManager:
    """A session manager over the memory stores."""
    return SessionManager(
        store=session_store,
        token_store=token_store,
        provider=provider,
        login_url="/oauth2/wartid/login",
        ttl=3600,
    )


@pytest.fixture()
def flow(provider: WartIDProvider, states: StateManager, sessions: SessionManager) -> AuthFlowManager:
    """A flow manager wired to the fake IdP."""
    return AuthFlowManager(provider, states, sessions, default_scopes=("basic",))


@pytest.fixture()
def settings(tmp_path, monkeypatch: pytest.MonkeyPatch) -> WartIDSettings:
    """Settings pointing at the fake provider, isolated from local config files."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("WARTID_CONFIG_FILE", raising=False)
    return WartIDSettings(
        oauth2={
            "client_id": CLIENT_ID,
            "client_secret": CLIENT_SECRET,
            "provider_url": PROVIDER_URL,
            "base_url": "http://testserver",
        },
        session={"landing_path": "/home", "error_path": "/login-failed"},
    )


@pytest.fixture()
def wartid_client(settings: WartIDSettings, idp: FakeIdP) -> WartIDClient:
    """A fully wired client on the memory backend."""
    return WartIDClient.from_settings(settings, transport=idp.transport)


@pytest.fixture()
def app(wartid_client: WartIDClient) -> FastAPI:
    """An application with the auth routes and two protected pages."""
    app = FastAPI()
    wartid_client.install(app)

    @app.get("/profile")
    async def profile(user: Session = Depends(wartid_client.require_session)):
        return {"user_id": user.user_id, "display_name": user.display_name}

    @app.get("/admin")
    async def admin(user: SessionOrRedirect = Depends(wartid_client.session_or_redirect)):
        if isinstance(user, LoginRedirect):
            return user.response()
        return {"hello": user.display_name}

    return app


@pytest.fixture()
def client(app: FastAPI) -> Generator[TestClient, None, None]:
    """A test client that does not follow redirects."""
    with TestClient(app, follow_redirects=False) as test_client:
        yield test_client
