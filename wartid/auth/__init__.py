"""OAuth2 authorization-code client for the WartID identity provider.

Provides the provider client, login state management, session
management and the FastAPI routes that drive the login flow.
"""

from __future__ import annotations

from .dependencies import SessionExtractors
from .flow import AuthFlowManager, safe_redirect_path
from .provider import WartIDProvider, format_scopes
from .routes import create_auth_router
from .session import MemorySessionStore, RedisSessionStore, SessionManager, SessionStore
from .state import (
    MemoryPendingLoginStore,
    PendingLoginStore,
    RedisPendingLoginStore,
    StateManager,
)
from .token_store import MemoryTokenStore, RedisTokenStore, TokenStore


__all__ = [
    "AuthFlowManager",
    "MemoryPendingLoginStore",
    "MemorySessionStore",
    "MemoryTokenStore",
    "PendingLoginStore",
    "RedisPendingLoginStore",
    "RedisSessionStore",
    "RedisTokenStore",
    "SessionExtractors",
    "SessionManager",
    "SessionStore",
    "StateManager",
    "TokenStore",
    "WartIDProvider",
    "create_auth_router",
    "format_scopes",
    "safe_redirect_path",
]
