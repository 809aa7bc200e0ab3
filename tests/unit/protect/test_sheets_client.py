"""Unit tests for the Google Sheets tabular store."""

from __future__ import annotations

import json

import httpx
import pytest

from core.errors import RemoteUnavailableError
from protect.sheets_client import GoogleSheetsTabularStore


def _store(handler) -> GoogleSheetsTabularStore:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return GoogleSheetsTabularStore("sheet-id", "token-1", client=client)


@pytest.mark.asyncio
async def test_read_returns_cell_values() -> None:
    """Reads should return the values matrix with auth attached."""
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"range": "Users!A1:B2", "values": [["id"], ["1"]]})

    store = _store(handler)

    values = await store.read("Users!A:H")
    await store.aclose()

    assert values == [["id"], ["1"]]
    assert seen[0].headers["Authorization"] == "Bearer token-1"
    assert seen[0].url.path.endswith("/sheet-id/values/Users!A:H")


@pytest.mark.asyncio
async def test_read_of_empty_range_returns_empty_list() -> None:
    """The API omits 'values' for empty ranges."""
    store = _store(lambda request: httpx.Response(200, json={"range": "Users!A1:A1"}))

    assert await store.read("Users!A1:A1") == []


@pytest.mark.asyncio
async def test_write_sends_raw_values() -> None:
    """Writes should PUT the rows with RAW value input."""
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"updatedRows": 2})

    store = _store(handler)

    await store.write("Users!A:ZZ", [["id"], [1]])

    request = seen[0]
    assert request.method == "PUT"
    assert request.url.params["valueInputOption"] == "RAW"
    assert json.loads(request.content)["values"] == [["id"], [1]]


@pytest.mark.asyncio
async def test_http_errors_become_remote_unavailable() -> None:
    """Auth and schema failures surface as remote unavailability."""
    store = _store(lambda request: httpx.Response(403, json={"error": "forbidden"}))

    with pytest.raises(RemoteUnavailableError, match="403"):
        await store.read("Users!A:H")


@pytest.mark.asyncio
async def test_transport_errors_become_remote_unavailable() -> None:
    """Network failures surface as remote unavailability."""

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    store = _store(handler)

    with pytest.raises(RemoteUnavailableError):
        await store.write("Users!A:ZZ", [])
