"""FastAPI routes for the WartID login flow.

Provides login, callback, logout and status endpoints on top of
AuthFlowManager and SessionManager.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import logging

from typing import TYPE_CHECKING
from urllib.parse import urlencode

from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse, RedirectResponse

from ..config import ROUTE_PREFIX
from ..exceptions import (
    InvalidCsrfError,
    InvalidStateError,
    MissingCodeError,
    ProviderDeniedError,
    TransientAuthError,
)


if TYPE_CHECKING:
    from ..config import SessionSettings
    from .dependencies import SessionExtractors
    from .flow import AuthFlowManager


logger = logging.getLogger("wartid.auth")
security_logger = logging.getLogger("wartid.security")


def _error(status_code: int, error: str, description: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": error, "error_description": description},
    )


async def _submitted_csrf_token(request: Request, settings: SessionSettings) -> str | None:
    """Read the CSRF token from the header, the form body or the query string."""
    token = request.headers.get(settings.csrf_header)
    if token:
        return token

    content_type = request.headers.get("content-type", "")
    if request.method == "POST" and (
        content_type.startswith("application/x-www-form-urlencoded")
        or content_type.startswith("multipart/form-data")
    ):
        form = await request.form()
        value = form.get(settings.csrf_field)
        if isinstance(value, str) and value:
            return value

    return request.query_params.get(settings.csrf_field)


def create_auth_router(  # noqa: C901
    flow: AuthFlowManager,
    extractors: SessionExtractors,
    settings: SessionSettings,
    prefix: str = ROUTE_PREFIX,
) -> APIRouter:
    """Create a FastAPI router with the WartID authentication routes.

    Parameters
    ----------
    flow : AuthFlowManager
        Issues login redirects and completes callbacks.
    extractors : SessionExtractors
        Resolves the session cookie of incoming requests.
    settings : SessionSettings
        Cookie, CSRF and redirect configuration.
    prefix : str
        Route prefix (default ``/oauth2/wartid``).

    Returns
    -------
    APIRouter
        Router with ``/login``, ``/callback``, ``/logout`` and ``/status``.
    """
    router = APIRouter(prefix=prefix, tags=["authentication"])
    sessions = extractors.sessions

    @router.get("/login")
    async def auth_login(redirect_to: str | None = None) -> Response:
        """Redirect the browser to the provider's authorization page."""
        authorize_url = await flow.build_redirect(redirect_to=redirect_to)
        return RedirectResponse(url=authorize_url, status_code=302)

    @router.get("/callback")
    async def auth_callback(
        request: Request,
        code: str | None = None,
        state: str | None = None,
        error: str | None = None,
        error_description: str | None = None,
    ) -> Response:
        """Handle the provider's redirect and establish a session."""
        try:
            result = await flow.handle_callback(
                code=code,
                state=state,
                error=error,
                error_description=error_description,
            )
        except ProviderDeniedError as exc:
            query = urlencode({"error": exc.error})
            return RedirectResponse(url=f"{settings.error_path}?{query}", status_code=302)
        except InvalidStateError:
            security_logger.warning(
                "Rejected callback with invalid state from %s",
                request.client.host if request.client else "unknown",
            )
            return _error(400, "invalid_state", "Invalid or expired state parameter")
        except MissingCodeError:
            return _error(400, "missing_code", "Authorization code not provided")
        except TransientAuthError:
            logger.exception("Login could not be completed")
            return _error(
                503,
                "authentication_unavailable",
                "The authentication service is unavailable, please try again later",
            )

        session = result.session
        response = RedirectResponse(url=result.redirect_to or settings.landing_path, status_code=302)
        response.set_cookie(
            key=settings.cookie_name,
            value=session.session_id,
            httponly=True,
            secure=settings.force_https or request.url.scheme == "https",
            samesite="lax",
            max_age=settings.ttl,
        )
        return response

    async def _logout(request: Request) -> Response:
        credential = extractors.credential(request)
        csrf_token = await _submitted_csrf_token(request, settings)
        try:
            await sessions.logout(credential, csrf_token)
        except InvalidCsrfError:
            return _error(403, "invalid_csrf", "Missing or invalid CSRF token")

        response = RedirectResponse(url=settings.logout_redirect, status_code=303)
        response.delete_cookie(key=settings.cookie_name)
        return response

    @router.post("/logout")
    async def auth_logout(request: Request) -> Response:
        """Log out the current user; requires the session's CSRF token."""
        return await _logout(request)

    @router.get("/logout")
    async def auth_logout_link(request: Request) -> Response:
        """Link-style logout; the CSRF token must be in the query string."""
        return await _logout(request)

    @router.get("/status")
    async def auth_status(request: Request) -> JSONResponse:
        """Return the current authentication status."""
        session = await extractors.optional_session(request)
        if session is None:
            return JSONResponse(content={"authenticated": False})

        return JSONResponse(
            content={
                "authenticated": True,
                "user_id": session.user_id,
                "display_name": session.display_name,
                "email": session.email,
                "scopes": sorted(session.granted_scopes),
                "expires_at": session.expires_at,
                "csrf_token": session.csrf_token,
            }
        )

    return router
