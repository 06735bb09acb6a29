from __future__ import annotations

import json

import httpx
import pytest

from search_intelligence_mcp.connectors.indexnow import INDEXNOW_URL, submit_index_now
from search_intelligence_mcp.errors import InputError, SourceError


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_payload_carries_host_key_and_urls() -> None:
    sent: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        sent.append(request)
        return httpx.Response(202)

    count = await submit_index_now(
        "example.com",
        "abc123",
        ["https://example.com/a", "https://example.com/b"],
        key_location="https://example.com/abc123.txt",
        client=_client(handler),
    )

    assert count == 2
    assert sent[0].method == "POST"
    assert str(sent[0].url) == INDEXNOW_URL
    assert json.loads(sent[0].content) == {
        "host": "example.com",
        "key": "abc123",
        "urlList": ["https://example.com/a", "https://example.com/b"],
        "keyLocation": "https://example.com/abc123.txt",
    }


@pytest.mark.asyncio
async def test_key_location_is_optional() -> None:
    bodies = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content))
        return httpx.Response(200)

    await submit_index_now(
        "example.com", "abc123", ["https://example.com/a"], client=_client(handler)
    )
    assert "keyLocation" not in bodies[0]


@pytest.mark.asyncio
async def test_rejected_submission_raises() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(422, text="URLs don't belong to the host")

    with pytest.raises(SourceError) as excinfo:
        await submit_index_now(
            "example.com", "abc123", ["https://other.example/a"], client=_client(handler)
        )
    assert excinfo.value.status == 422
    assert excinfo.value.source == "indexnow"


@pytest.mark.asyncio
async def test_missing_urls_or_key_send_nothing() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    with pytest.raises(InputError):
        await submit_index_now("example.com", "abc123", [""], client=_client(handler))
    with pytest.raises(InputError):
        await submit_index_now("example.com", "", ["https://example.com/a"])
