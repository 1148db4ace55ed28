"""WartID identity provider client.

Builds authorization URLs and talks to the provider's token and
userinfo endpoints over a shared ``httpx.AsyncClient``.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import asyncio
import logging
import time

from typing import TYPE_CHECKING, Any
from urllib.parse import urlencode

import httpx

from ..exceptions import IdentityFetchError, TokenExchangeError, TokenRefreshError
from ..log import redact_sensitive_data
from ..types import Identity, OAuthTokenSet


if TYPE_CHECKING:
    from collections.abc import Awaitable, Iterable

    from ..config import Credentials, ProviderEndpoints


logger = logging.getLogger("wartid.auth")

PROVIDER_NAME = "wartid"


def format_scopes(scopes: Iterable[str]) -> str:
    """Join scopes into the order-stable, space-separated ``scope`` value."""
    return " ".join(sorted({s for s in scopes if s}))


class WartIDProvider:
    """Client for the WartID OAuth2 endpoints.

    Parameters
    ----------
    credentials : Credentials
        Client ID, secret and the registered redirect URI.
    endpoints : ProviderEndpoints
        Authorize, token and userinfo URLs.
    timeout : float
        Per-request timeout in seconds (default ``10``).
    retries : int
        Transport-level retries on connection failures (default ``2``).
    deadline : float
        Upper bound in seconds for one call, retries included (default ``20``).
    transport : httpx.AsyncBaseTransport, optional
        Custom transport, e.g. ``httpx.MockTransport`` in tests.
    """

    def __init__(
        self,
        credentials: Credentials,
        endpoints: ProviderEndpoints,
        timeout: float = 10.0,
        retries: int = 2,
        deadline: float = 20.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the provider client."""
        self.credentials = credentials
        self.endpoints = endpoints
        self.timeout = timeout
        self.retries = retries
        self.deadline = deadline
        self._transport = transport
        self._http_client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the shared HTTP client."""
        if self._http_client is None or self._http_client.is_closed:
            transport = self._transport or httpx.AsyncHTTPTransport(retries=self.retries)
            self._http_client = httpx.AsyncClient(timeout=self.timeout, transport=transport)
        return self._http_client

    async def close(self) -> None:
        """Close the shared HTTP client. Call from app shutdown lifecycle."""
        if self._http_client is not None and not self._http_client.is_closed:
            await self._http_client.aclose()
            self._http_client = None

    async def _bounded(self, call: Awaitable[httpx.Response]) -> httpx.Response:
        """Await a request, giving up once the deadline has passed."""
        try:
            return await asyncio.wait_for(call, timeout=self.deadline)
        except asyncio.TimeoutError as exc:
            msg = f"Provider did not answer within {self.deadline}s"
            raise httpx.TimeoutException(msg) from exc

    def build_authorize_url(self, state: str, scopes: Iterable[str]) -> str:
        """Build the full authorization URL.

        Parameters
        ----------
        state : str
            CSRF protection nonce.
        scopes : iterable of str
            Requested scopes; sorted so the URL is deterministic.

        Returns
        -------
        str
            The full authorization URL.
        """
        params: dict[str, str] = {
            "response_type": "code",
            "client_id": self.credentials.client_id,
            "redirect_uri": self.credentials.redirect_uri,
            "scope": format_scopes(scopes),
            "state": state,
        }
        return f"{self.endpoints.authorize_url}?{urlencode(params)}"

    async def _token_request(self, data: dict[str, str]) -> dict[str, Any]:
        """POST a form to the token endpoint and return the JSON body."""
        data = {
            **data,
            "client_id": self.credentials.client_id,
            "client_secret": self.credentials.client_secret,
        }
        client = await self._get_client()
        resp = await self._bounded(
            client.post(
                self.endpoints.token_url,
                data=data,
                headers={"Accept": "application/json"},
            )
        )
        resp.raise_for_status()
        raw: dict[str, Any] = resp.json()
        if "error" in raw:
            logger.warning("Token endpoint error: %s", redact_sensitive_data(raw))
            msg = raw.get("error_description") or raw["error"]
            raise ValueError(msg)
        if not raw.get("access_token"):
            msg = "Token response without access_token"
            raise ValueError(msg)
        return raw

    @staticmethod
    def _token_set(raw: dict[str, Any], refresh_token: str | None = None) -> OAuthTokenSet:
        """Build an OAuthTokenSet from a token endpoint response.

        ``expires_in`` is coerced to int since some servers send it as a
        string; a list ``scope`` is joined with spaces.

        Raises
        ------
        ValueError
            If ``expires_in`` is not an integer or ``scope`` is not a
            string or list of strings.
        """
        expires_in = raw.get("expires_in")
        if expires_in is not None:
            try:
                expires_in = int(expires_in)
            except (TypeError, ValueError):
                msg = f"Invalid expires_in: {expires_in!r}"
                raise ValueError(msg) from None

        scope = raw.get("scope") or ""
        if isinstance(scope, list) and all(isinstance(s, str) for s in scope):
            scope = " ".join(scope)
        elif not isinstance(scope, str):
            msg = f"Invalid scope: {scope!r}"
            raise ValueError(msg)

        return OAuthTokenSet(
            access_token=raw["access_token"],
            token_type=raw.get("token_type", "Bearer"),
            refresh_token=raw.get("refresh_token", refresh_token),
            expires_in=expires_in,
            scope=scope,
            raw=raw,
            issued_at=time.time(),
        )

    async def exchange_code(self, code: str) -> OAuthTokenSet:
        """Exchange an authorization code for tokens.

        The redirect URI sent is the exact one used in the authorization
        request; the provider rejects any mismatch.

        Parameters
        ----------
        code : str
            The authorization code from the callback.

        Returns
        -------
        OAuthTokenSet
            The token set from the provider.

        Raises
        ------
        TokenExchangeError
            If the provider rejects the code or cannot be reached in time.
        """
        try:
            raw = await self._token_request(
                {
                    "grant_type": "authorization_code",
                    "code": code,
                    "redirect_uri": self.credentials.redirect_uri,
                }
            )
            tokens = self._token_set(raw)
        except httpx.HTTPStatusError as exc:
            msg = f"Token exchange failed: {exc.response.status_code}"
            raise TokenExchangeError(
                msg, provider=PROVIDER_NAME, status_code=exc.response.status_code
            ) from exc
        except httpx.HTTPError as exc:
            msg = f"Token exchange request failed: {exc}"
            raise TokenExchangeError(msg, provider=PROVIDER_NAME) from exc
        except ValueError as exc:
            msg = f"Token exchange rejected: {exc}"
            raise TokenExchangeError(msg, provider=PROVIDER_NAME) from exc

        return tokens

    async def refresh_tokens(self, refresh_token: str) -> OAuthTokenSet:
        """Refresh an expired access token.

        Parameters
        ----------
        refresh_token : str
            The refresh token.

        Returns
        -------
        OAuthTokenSet
            A new token set; keeps the old refresh token if none is returned.

        Raises
        ------
        TokenRefreshError
            If the refresh fails.
        """
        try:
            raw = await self._token_request(
                {
                    "grant_type": "refresh_token",
                    "refresh_token": refresh_token,
                }
            )
            tokens = self._token_set(raw, refresh_token=refresh_token)
        except httpx.HTTPStatusError as exc:
            msg = f"Token refresh failed: {exc.response.status_code}"
            raise TokenRefreshError(
                msg, provider=PROVIDER_NAME, status_code=exc.response.status_code
            ) from exc
        except (httpx.HTTPError, ValueError) as exc:
            msg = f"Token refresh request failed: {exc}"
            raise TokenRefreshError(msg, provider=PROVIDER_NAME) from exc

        return tokens

    async def get_userinfo(self, access_token: str) -> dict[str, Any]:
        """Fetch raw user claims from the userinfo endpoint.

        Parameters
        ----------
        access_token : str
            A valid access token.

        Returns
        -------
        dict[str, Any]
            User claims from the provider.

        Raises
        ------
        IdentityFetchError
            If the request fails or the body is not a JSON object.
        """
        try:
            client = await self._get_client()
            resp = await self._bounded(
                client.get(
                    self.endpoints.userinfo_url,
                    headers={"Authorization": f"Bearer {access_token}"},
                )
            )
            resp.raise_for_status()
            claims = resp.json()
        except httpx.HTTPStatusError as exc:
            msg = f"Userinfo request failed: {exc.response.status_code}"
            raise IdentityFetchError(
                msg, provider=PROVIDER_NAME, status_code=exc.response.status_code
            ) from exc
        except httpx.HTTPError as exc:
            msg = f"Userinfo request failed: {exc}"
            raise IdentityFetchError(msg, provider=PROVIDER_NAME) from exc
        except ValueError as exc:
            msg = "Userinfo response is not valid JSON"
            raise IdentityFetchError(msg, provider=PROVIDER_NAME) from exc

        if not isinstance(claims, dict):
            msg = "Userinfo response is not a JSON object"
            raise IdentityFetchError(msg, provider=PROVIDER_NAME)
        return claims

    async def get_identity(self, access_token: str) -> Identity:
        """Fetch and parse the user's identity.

        ``user_id`` comes from ``sub`` (falling back to ``id``) and
        ``display_name`` from ``name`` (falling back to
        ``preferred_username``, then the user ID).

        Raises
        ------
        IdentityFetchError
            If the claims carry no subject identifier.
        """
        claims = await self.get_userinfo(access_token)
        user_id = claims.get("sub") or claims.get("id")
        if not user_id:
            logger.warning("Userinfo without subject: %s", redact_sensitive_data(claims))
            msg = "Userinfo response has no subject identifier"
            raise IdentityFetchError(msg, provider=PROVIDER_NAME)

        user_id = str(user_id)
        display_name = claims.get("name") or claims.get("preferred_username") or user_id
        return Identity(
            user_id=user_id,
            display_name=str(display_name),
            email=claims.get("email"),
            claims=claims,
        )
