"""Shared async HTTP client for outbound calls (email delivery)."""

from typing import Any

import httpx


class HttpClient:
    """Thin async wrapper around httpx.AsyncClient.

    Carries a fixed timeout and User-Agent so every outbound request from the
    service is bounded and identifiable.
    """

    def __init__(self, timeout: float = 5.0, user_agent: str = "stepgate") -> None:
        self._client = httpx.AsyncClient(
            timeout=timeout, headers={"User-Agent": user_agent}
        )

    async def post(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self._client.post(url, **kwargs)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "HttpClient":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()
