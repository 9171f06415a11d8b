"""beacon.core.client

Shared HTTP client for delivery and enrichment.

- fixed per-request timeout
- JSON in, JSON out, with basic safety caps on resolver responses
- no retries: the periodic flush is the retry mechanism
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import httpx

from beacon.core.exceptions import DeliveryError


@dataclass(frozen=True, slots=True)
class ClientConfig:
    timeout_s: float = 10.0
    user_agent: str = "beacon-sdk"


class TransportClient:
    """Thin wrapper over ``httpx.AsyncClient``.

    Pass ``client`` to share a pool (or inject a mock transport in tests); an injected
    client is not closed by ``aclose``.
    """

    def __init__(self, config: ClientConfig | None = None, *, client: httpx.AsyncClient | None = None) -> None:
        self.config = config or ClientConfig()
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=self.config.timeout_s,
            headers={"User-Agent": self.config.user_agent},
        )

    @property
    def http(self) -> httpx.AsyncClient:
        return self._client

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    @staticmethod
    def _enforce_max_bytes(resp: httpx.Response, *, max_bytes: int) -> None:
        size = len(resp.content)
        if size > int(max_bytes):
            raise httpx.TransportError(f"response_too_large:{size}")

    async def post_json(
        self,
        url: str,
        payload: dict[str, Any],
        *,
        headers: dict[str, str] | None = None,
        timeout_s: float | None = None,
    ) -> httpx.Response:
        """POST a JSON body. Any non-2xx status or transport failure is a ``DeliveryError``."""

        kwargs: dict[str, Any] = {"json": payload, "headers": headers or {}}
        if timeout_s is not None:
            kwargs["timeout"] = timeout_s
        try:
            resp = await self._client.post(url, **kwargs)
        except httpx.HTTPError as e:
            raise DeliveryError(f"transport_failed: {type(e).__name__}: {e}") from e
        if not resp.is_success:
            raise DeliveryError(f"server_responded_{resp.status_code}", status_code=resp.status_code)
        return resp

    async def get_json(
        self,
        url: str,
        *,
        timeout_s: float | None = None,
        expected: type | tuple[type, ...] | None = dict,
        max_bytes: int = 64 * 1024,
    ) -> Any:
        """GET and parse JSON. Raises ``httpx.HTTPError`` on any failure."""

        kwargs: dict[str, Any] = {}
        if timeout_s is not None:
            kwargs["timeout"] = timeout_s
        resp = await self._client.get(url, **kwargs)
        resp.raise_for_status()
        self._enforce_max_bytes(resp, max_bytes=max_bytes)
        try:
            data: Any = resp.json()
        except ValueError as e:
            raise httpx.DecodingError("response_not_json") from e
        if expected is not None and not isinstance(data, expected):
            raise httpx.DecodingError("response_schema_mismatch")
        return data

    async def get_text(self, url: str, *, timeout_s: float | None = None, max_bytes: int = 1024) -> str:
        kwargs: dict[str, Any] = {}
        if timeout_s is not None:
            kwargs["timeout"] = timeout_s
        resp = await self._client.get(url, **kwargs)
        resp.raise_for_status()
        self._enforce_max_bytes(resp, max_bytes=max_bytes)
        return resp.text.strip()
