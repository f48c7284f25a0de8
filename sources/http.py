"""
Thin JSON-over-HTTP client shared by the Graph adapters and the paginator.

Bearer tokens come from an async provider called once per request, so a
token refreshed mid-pagination is picked up on the next page.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx

from core.errors import RemoteApiError

logger = logging.getLogger(__name__)

TokenProvider = Callable[[], Awaitable[str]]
UnauthorizedHook = Callable[[], Awaitable[None]]


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, dict):
        err = body.get("error")
        if isinstance(err, dict) and err.get("message"):
            return err["message"]
        if body.get("error_description"):
            return body["error_description"]
        if isinstance(err, str):
            return err
    return response.reason_phrase


class JsonApiClient:
    """GET JSON from ``base_url`` + endpoint, or from an absolute URL verbatim."""

    def __init__(
        self,
        base_url: str,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        on_unauthorized: Optional[UnauthorizedHook] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._transport = transport
        self._on_unauthorized = on_unauthorized

    def open(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self._transport)

    def build_url(self, endpoint: str) -> str:
        if endpoint.startswith("http"):
            return endpoint
        return f"{self.base_url}{endpoint}"

    async def get_json(
        self,
        client: httpx.AsyncClient,
        endpoint: str,
        token: str,
    ) -> Dict[str, Any]:
        url = self.build_url(endpoint)
        try:
            resp = await client.get(
                url,
                headers={
                    "Authorization": f"Bearer {token}",
                    "Content-Type": "application/json",
                },
            )
        except httpx.RequestError as exc:
            logger.error("Transport error (GET %s): %s", endpoint, exc)
            raise RemoteApiError(f"Request failed: {exc}") from exc

        if resp.is_success:
            return resp.json()

        message = _error_message(resp)
        logger.error("API error (GET %s): %s %s", endpoint, resp.status_code, message)
        if resp.status_code == 401 and self._on_unauthorized is not None:
            await self._on_unauthorized()
        raise RemoteApiError(message, status_code=resp.status_code)

    async def get(self, endpoint: str, token_provider: TokenProvider) -> Dict[str, Any]:
        """One-shot GET with its own client."""
        async with self.open() as client:
            return await self.get_json(client, endpoint, await token_provider())
