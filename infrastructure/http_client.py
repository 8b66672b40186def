"""Shared async HTTP client with configurable timeout."""

from typing import Any

import httpx

_USER_AGENT = "fitness-tracker-api"


class HttpClient:
    """Thin async wrapper around httpx.AsyncClient.

    One instance per external service (email API, OAuth provider) keeps
    timeouts independently configurable.
    """

    def __init__(self, timeout: float = 5.0, user_agent: str = _USER_AGENT) -> None:
        self._client = httpx.AsyncClient(
            timeout=timeout, headers={"User-Agent": user_agent}
        )

    async def post(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self._client.post(url, **kwargs)

    async def get(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self._client.get(url, **kwargs)

    async def get_json(self, url: str, **kwargs: Any) -> Any:
        """GET *url* and decode the JSON body; non-2xx raises httpx.HTTPStatusError."""
        response = await self._client.get(url, **kwargs)
        response.raise_for_status()
        return response.json()

    async def aclose(self) -> None:
        await self._client.aclose()
