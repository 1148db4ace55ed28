"""FastAPI dependencies exposing the current session to route handlers.

Two variants share one lookup: ``require_session`` fails the route with
401 when nobody is logged in, ``session_or_redirect`` hands the route a
``LoginRedirect`` instead so it can decide what to render.

Example::

    @app.get("/admin")
    async def admin(user: SessionOrRedirect = Depends(wartid.session_or_redirect)):
        if isinstance(user, LoginRedirect):
            return user.response()
        return {"hello": user.display_name}
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import HTTPException, Request

from ..exceptions import SessionExpiredError


if TYPE_CHECKING:
    from ..types import Session, SessionOrRedirect
    from .session import SessionManager


class SessionExtractors:
    """Request-level session extractors bound to a SessionManager.

    Parameters
    ----------
    sessions : SessionManager
        Resolves session credentials.
    cookie_name : str
        Name of the cookie carrying the session credential.
    """

    def __init__(self, sessions: SessionManager, cookie_name: str) -> None:
        self.sessions = sessions
        self.cookie_name = cookie_name

    def credential(self, request: Request) -> str | None:
        """Read the session credential from the request cookie."""
        return request.cookies.get(self.cookie_name)

    async def optional_session(self, request: Request) -> Session | None:
        """Dependency yielding the session, or None when logged out."""
        return await self.sessions.resolve(self.credential(request))

    async def require_session(self, request: Request) -> Session:
        """Dependency yielding the session or failing with 401."""
        try:
            return await self.sessions.require(self.credential(request))
        except SessionExpiredError as exc:
            raise HTTPException(status_code=401, detail="not_authenticated") from exc

    async def session_or_redirect(self, request: Request) -> SessionOrRedirect:
        """Dependency yielding the session or a redirect back through login."""
        path = request.url.path
        if request.url.query:
            path = f"{path}?{request.url.query}"
        return await self.sessions.resolve_or_redirect(self.credential(request), redirect_to=path)
