"""QuickBooks OAuth token endpoint client"""

import httpx
from typing import Any, Dict
from qbo_ingest.domain.models import TokenPair
from qbo_ingest.domain.exceptions import AuthRefreshError, TransientNetworkError
from qbo_ingest.config import settings


class OAuthClient:
    """Client for the Intuit OAuth 2.0 token endpoint"""

    def __init__(
        self,
        token_url: str | None = None,
        client_id: str | None = None,
        client_secret: str | None = None,
        redirect_uri: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.token_url = token_url or settings.qbo_token_url
        self.client_id = client_id or settings.qbo_client_id
        self.client_secret = client_secret or settings.qbo_client_secret
        self.redirect_uri = redirect_uri or settings.qbo_redirect_uri
        self.timeout = timeout or settings.http_timeout_seconds
        self.transport = transport

    async def exchange_code(self, code: str) -> TokenPair:
        """Exchange an authorization code for the first token pair"""
        return await self._request_tokens(
            {"grant_type": "authorization_code", "code": code, "redirect_uri": self.redirect_uri}
        )

    async def refresh(self, refresh_token: str) -> TokenPair:
        """
        Rotate a refresh token.

        Raises:
            AuthRefreshError: Endpoint rejected the grant or returned no tokens
            TransientNetworkError: Timeout, connection failure or 5xx
        """
        return await self._request_tokens({"grant_type": "refresh_token", "refresh_token": refresh_token})

    async def _request_tokens(self, form: Dict[str, str]) -> TokenPair:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            try:
                response = await client.post(
                    self.token_url,
                    data=form,
                    auth=(self.client_id, self.client_secret),
                    headers={"Accept": "application/json"},
                )
                response.raise_for_status()
                data: Dict[str, Any] = response.json()

                return TokenPair(
                    access_token=data["access_token"],
                    refresh_token=data["refresh_token"],
                    expires_in=int(data.get("expires_in") or settings.access_token_ttl_seconds),
                    refresh_expires_in=(
                        int(data["x_refresh_token_expires_in"]) if data.get("x_refresh_token_expires_in") else None
                    ),
                )

            except httpx.TimeoutException as e:
                raise TransientNetworkError(f"Token endpoint timeout after {self.timeout}s") from e
            except httpx.TransportError as e:
                raise TransientNetworkError(f"Token endpoint connection error: {e}") from e
            except httpx.HTTPStatusError as e:
                if e.response.status_code >= 500:
                    raise TransientNetworkError(f"Token endpoint error: {e.response.status_code}") from e
                raise AuthRefreshError(
                    f"Token grant {form['grant_type']} rejected: {e.response.status_code}"
                ) from e
            except (KeyError, ValueError, TypeError) as e:
                raise AuthRefreshError(f"Invalid token response: {e}") from e
