"""
HTTP transport for response delivery.

Implements the outbox submit contract: POST one response, return the
server-assigned ID, raise on anything else. No retries here; the outbox owns
retry policy.

Usage:
    async with HttpResponseTransport(settings.api_base_url, settings.api_key) as transport:
        outbox.configure_outbox(transport)
"""

from __future__ import annotations

from typing import Any

import httpx
from loguru import logger

from config import Settings
from hemisphere.errors import TransportError
from hemisphere.runtime.models import UserResponse


class HttpResponseTransport:
    """Callable ``async (UserResponse) -> server_id`` over httpx."""

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        timeout_seconds: float = 10.0,
        path: str = "/api/responses",
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.path = path
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = client or httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=httpx.Timeout(timeout_seconds),
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "HttpResponseTransport":
        return cls(
            base_url=settings.api_base_url,
            api_key=settings.api_key,
            timeout_seconds=settings.api_timeout_seconds,
            path=settings.api_responses_path,
        )

    async def __aenter__(self) -> "HttpResponseTransport":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __call__(self, response: UserResponse) -> str:
        http_response = await self._client.post(
            self.path,
            json=response.model_dump(mode="json", by_alias=True),
        )
        if http_response.is_error:
            raise TransportError(
                f"Submit rejected with HTTP {http_response.status_code}",
                status_code=http_response.status_code,
            )

        try:
            body = http_response.json()
        except ValueError as exc:
            raise TransportError("Submit returned a non-JSON body") from exc

        server_id = body.get("id") if isinstance(body, dict) else None
        if server_id is None or server_id == "":
            raise TransportError("Submit response carried no id")

        logger.debug("Submitted response {} -> {}", response.id, server_id)
        return str(server_id)
