"""Demo: log in to a FastAPI app with WartID.

Demonstrates the documented patterns:

- ``WartIDClient.from_settings()`` wiring everything from the environment
- ``optional_session`` for pages that render either way
- ``session_or_redirect`` for pages that send anonymous users to login
- a logout form carrying the session's CSRF token

Setup
-----
1. Register an application at https://id.wp-corp.eu.org with the redirect
   URI ``http://localhost:8000/oauth2/wartid/callback``.
2. Export the credentials::

       export WARTID_CLIENT_ID="your-client-id"
       export WARTID_CLIENT_SECRET="your-client-secret"
       export WARTID_INCLUDE_EMAIL=true   # optional

3. Run::

       python examples/demo_app.py
"""

from __future__ import annotations

import html as html_mod
import sys

from contextlib import asynccontextmanager

import uvicorn

from fastapi import Depends, FastAPI
from fastapi.responses import HTMLResponse

from wartid import ConfigurationError, LoginRedirect, Session, SessionOrRedirect, WartIDClient


try:
    wartid = WartIDClient.from_settings()
except ConfigurationError as exc:
    print(f"\n  ERROR: {exc}\n\n  Set WARTID_CLIENT_ID and WARTID_CLIENT_SECRET, then rerun.\n")
    sys.exit(1)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    yield
    await wartid.aclose()


app = FastAPI(lifespan=lifespan)
wartid.install(app)


@app.get("/", response_class=HTMLResponse)
async def home(user: Session | None = Depends(wartid.optional_session)) -> str:
    if user is None:
        return 'Disconnected<br/><a href="/oauth2/wartid/login">Connect</a>'

    name = html_mod.escape(user.display_name)
    email = html_mod.escape(user.email or "no email")
    return f"""
        Logged in as {name} (@{html_mod.escape(user.user_id)} - {email})<br/>
        <a href="/admin">Admin panel</a>
        <form method="post" action="/oauth2/wartid/logout">
          <input type="hidden" name="csrf_token" value="{html_mod.escape(user.csrf_token)}">
          <button>Log out</button>
        </form>
    """


@app.get("/admin", response_model=None)
async def very_secret_panel(user: SessionOrRedirect = Depends(wartid.session_or_redirect)):
    if isinstance(user, LoginRedirect):
        return user.response()
    return HTMLResponse(f"Hello {html_mod.escape(user.display_name)}")


if __name__ == "__main__":
    uvicorn.run(app, host="127.0.0.1", port=8000)
