from __future__ import annotations

import json

import httpx
import pytest

from beacon.core.client import ClientConfig, TransportClient
from beacon.core.exceptions import DeliveryError


def _client(handler) -> TransportClient:  # type: ignore[no-untyped-def]
    return TransportClient(client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))


@pytest.mark.anyio
async def test_post_json_success() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"ok": True})

    resp = await _client(handler).post_json("https://c.test/collect", {"events": []}, headers={"X-App-Id": "a"})
    assert resp.status_code == 200
    assert seen[0].headers["x-app-id"] == "a"
    assert json.loads(seen[0].content) == {"events": []}


@pytest.mark.anyio
async def test_post_json_non_2xx_is_delivery_error() -> None:
    client = _client(lambda r: httpx.Response(429))
    with pytest.raises(DeliveryError) as e:
        await client.post_json("https://c.test/collect", {})
    assert e.value.status_code == 429


@pytest.mark.anyio
async def test_post_json_transport_error_is_delivery_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    with pytest.raises(DeliveryError) as e:
        await _client(handler).post_json("https://c.test/collect", {})
    assert e.value.status_code is None


@pytest.mark.anyio
async def test_get_json_blocks_too_large() -> None:
    client = _client(lambda r: httpx.Response(200, content=b"x" * 2048))
    with pytest.raises(httpx.TransportError):
        await client.get_json("https://r.test", max_bytes=1024)


@pytest.mark.anyio
async def test_get_json_schema_mismatch() -> None:
    client = _client(lambda r: httpx.Response(200, json=[1, 2]))
    with pytest.raises(httpx.DecodingError):
        await client.get_json("https://r.test")


@pytest.mark.anyio
async def test_get_json_not_json() -> None:
    client = _client(lambda r: httpx.Response(200, text="<html>"))
    with pytest.raises(httpx.DecodingError):
        await client.get_json("https://r.test")


@pytest.mark.anyio
async def test_get_text_strips_and_raises_on_status() -> None:
    assert await _client(lambda r: httpx.Response(200, text=" 1.2.3.4\n")).get_text("https://r.test") == "1.2.3.4"
    with pytest.raises(httpx.HTTPStatusError):
        await _client(lambda r: httpx.Response(500)).get_text("https://r.test")


@pytest.mark.anyio
async def test_owned_client_is_closed_injected_is_not() -> None:
    owned = TransportClient(ClientConfig(timeout_s=1.0, user_agent="ua"))
    await owned.aclose()
    assert owned.http.is_closed
    assert owned.http.headers["user-agent"] == "ua"

    injected = httpx.AsyncClient()
    wrapper = TransportClient(client=injected)
    await wrapper.aclose()
    assert not injected.is_closed
    await injected.aclose()
