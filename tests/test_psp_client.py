"""Tests for the PSP core API client (httpx MockTransport)."""

from __future__ import annotations

import httpx
import pytest

from psp_console.config import Settings
from psp_console.errors import ErrorKind, MalformedUpstreamPayload, PspApiError
from psp_console.invoices.client import PspClient


def _client(handler) -> PspClient:
    return PspClient(
        "http://psp.test/",
        merchant_id="m_1",
        api_key="key-1",
        transport=httpx.MockTransport(handler),
    )


def _json(data, status: int = 200) -> httpx.Response:
    return httpx.Response(status, json=data)


class TestFetchInvoice:

    @pytest.mark.asyncio
    async def test_envelope(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return _json({"ok": True, "invoice": {"id": "inv_1", "status": "confirmed", "amlStatus": "high"}})

        client = _client(handler)
        result = await client.fetch_invoice("inv_1")
        await client.aclose()

        assert result.ok is True
        assert result.invoice.status == "confirmed"
        assert result.invoice.aml_status == "risky"
        assert seen[0].url.path == "/invoices/inv_1"
        assert seen[0].headers["x-merchant-id"] == "m_1"
        assert seen[0].headers["x-api-key"] == "key-1"
        assert seen[0].headers["accept"] == "application/json"

    @pytest.mark.asyncio
    async def test_bare_object(self):
        client = _client(lambda r: _json({"id": "inv_2", "status": "waiting"}))
        result = await client.fetch_invoice("inv_2")
        assert result.ok is True
        assert result.invoice.id == "inv_2"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "payload",
        [
            {"ok": False, "invoice": {"id": "inv_1"}},
            {"ok": True, "invoice": None},
        ],
    )
    async def test_not_ok_envelope(self, payload):
        client = _client(lambda r: _json(payload))
        result = await client.fetch_invoice("inv_1")
        assert result.ok is False
        assert result.invoice is None

    @pytest.mark.asyncio
    async def test_id_is_path_escaped(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return _json({"id": "a/b"})

        await _client(handler).fetch_invoice("a/b")
        assert seen[0].url.raw_path == b"/invoices/a%2Fb"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", [["not", "an", "object"], {"status": "waiting"}, {"id": "  "}])
    async def test_malformed_payload(self, payload):
        client = _client(lambda r: _json(payload))
        with pytest.raises(MalformedUpstreamPayload) as excinfo:
            await client.fetch_invoice("inv_1")
        assert excinfo.value.kind is ErrorKind.MALFORMED_UPSTREAM_PAYLOAD

    @pytest.mark.asyncio
    async def test_http_error_status(self):
        client = _client(lambda r: httpx.Response(500, text="upstream exploded"))
        with pytest.raises(PspApiError) as excinfo:
            await client.fetch_invoice("inv_1")
        err = excinfo.value
        assert err.status == 500
        assert err.body_text == "upstream exploded"
        assert err.kind is ErrorKind.UPSTREAM_FETCH_FAILURE
        assert err.message == "GET /invoices/inv_1 failed"

    @pytest.mark.asyncio
    async def test_html_response_rejected(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="<!doctype html><p>login</p>", headers={"content-type": "text/html"})

        with pytest.raises(PspApiError, match="Expected JSON"):
            await _client(handler).fetch_invoice("inv_1")

    @pytest.mark.asyncio
    async def test_invalid_json_body(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="{nope", headers={"content-type": "application/json"})

        with pytest.raises(PspApiError, match="Failed to parse JSON"):
            await _client(handler).fetch_invoice("inv_1")

    @pytest.mark.asyncio
    async def test_transport_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(PspApiError) as excinfo:
            await _client(handler).fetch_invoice("inv_1")
        assert excinfo.value.status == 0


class TestFetchInvoices:

    @pytest.mark.asyncio
    async def test_envelope_page(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return _json({"ok": True, "total": 42, "items": [{"id": "a"}, {"id": "b"}, "junk"]})

        page = await _client(handler).fetch_invoices(status="confirmed", limit=50, offset=100)

        assert page.ok is True
        assert page.total == 42
        assert [inv.id for inv in page.items] == ["a", "b"]
        assert seen[0].url.params["status"] == "confirmed"
        assert seen[0].url.params["limit"] == "50"
        assert seen[0].url.params["offset"] == "100"

    @pytest.mark.asyncio
    async def test_bare_list(self):
        page = await _client(lambda r: _json([{"id": "a"}])).fetch_invoices()
        assert page.ok is True
        assert page.total == 1
        assert page.items[0].id == "a"

    @pytest.mark.asyncio
    async def test_unexpected_shape(self):
        page = await _client(lambda r: _json({"hello": "world"})).fetch_invoices()
        assert page.ok is False
        assert page.items == []


class TestFromSettings:

    @pytest.mark.asyncio
    async def test_uses_configured_base_url(self):
        settings = Settings(api_url="http://core.internal:3001/", merchant_id="m_9", _env_file=None)
        client = PspClient.from_settings(settings)
        assert client._client.base_url.host == "core.internal"
        assert client._client.base_url.port == 3001
        assert client._client.headers["x-merchant-id"] == "m_9"
        await client.aclose()
