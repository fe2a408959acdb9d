"""PSP core API client — the source of truth for invoices.

Responses must be JSON; HTML error pages and non-2xx answers become
PspApiError. Snapshots are normalized (Invoice.from_raw) before they
leave this module.
"""

from __future__ import annotations

import json
import logging
from typing import Any
from urllib.parse import quote

import httpx

from psp_console.config import Settings
from psp_console.errors import MalformedUpstreamPayload, PspApiError
from psp_console.invoices.models import Invoice, InvoicePage, InvoiceResult

logger = logging.getLogger(__name__)

_BODY_EXCERPT = 400


def _looks_like_html(text: str) -> bool:
    return text.lstrip().startswith("<")


def _to_invoice(raw: Any) -> Invoice:
    if not isinstance(raw, dict):
        raise MalformedUpstreamPayload("Invoice payload is not an object")
    if not isinstance(raw.get("id"), str) or not raw["id"].strip():
        raise MalformedUpstreamPayload("Invoice payload has no id")
    return Invoice.from_raw(raw)


class PspClient:
    """Async client for the PSP core invoice endpoints."""

    def __init__(
        self,
        base_url: str,
        *,
        merchant_id: str = "",
        api_key: str = "",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        headers = {"Accept": "application/json"}
        if merchant_id:
            headers["x-merchant-id"] = merchant_id
        if api_key:
            headers["x-api-key"] = api_key
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> PspClient:
        return cls(
            settings.api_url,
            merchant_id=settings.merchant_id,
            api_key=settings.api_key,
            timeout=settings.request_timeout_seconds,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _get_json(self, path: str, params: dict[str, Any] | None = None) -> Any:
        try:
            resp = await self._client.get(path, params=params)
        except httpx.HTTPError as exc:
            logger.warning("PSP core request failed: GET %s (%s)", path, type(exc).__name__)
            raise PspApiError(f"GET {path} failed: {type(exc).__name__}", url=path) from exc

        url = str(resp.request.url)
        text = resp.text
        if not resp.is_success:
            raise PspApiError(
                f"GET {path} failed",
                status=resp.status_code,
                url=url,
                body_text=text[:_BODY_EXCERPT],
            )

        content_type = resp.headers.get("content-type", "")
        if "application/json" not in content_type or _looks_like_html(text):
            raise PspApiError(
                "Expected JSON, got non-JSON response",
                status=resp.status_code,
                url=url,
                body_text=text[:_BODY_EXCERPT],
            )

        try:
            return json.loads(text)
        except ValueError as exc:
            raise PspApiError(
                "Failed to parse JSON response",
                status=resp.status_code,
                url=url,
                body_text=text[:_BODY_EXCERPT],
            ) from exc

    async def fetch_invoice(self, invoice_id: str) -> InvoiceResult:
        """GET /invoices/{id}. Accepts ``{ok, invoice}`` or a bare invoice object."""
        res = await self._get_json(f"/invoices/{quote(invoice_id, safe='')}")

        if isinstance(res, dict) and "invoice" in res:
            ok = bool(res.get("ok", True))
            if not ok or res["invoice"] is None:
                return InvoiceResult(ok=False)
            return InvoiceResult(ok=True, invoice=_to_invoice(res["invoice"]))

        return InvoiceResult(ok=True, invoice=_to_invoice(res))

    async def fetch_invoices(
        self,
        *,
        status: str | None = None,
        limit: int = 500,
        offset: int = 0,
    ) -> InvoicePage:
        """GET /invoices. Accepts ``{ok, items, total}`` or a bare array."""
        params: dict[str, Any] = {"limit": limit, "offset": offset}
        if status:
            params["status"] = status
        res = await self._get_json("/invoices", params=params)

        if isinstance(res, dict) and "items" in res:
            items = res["items"] if isinstance(res["items"], list) else []
            total = res.get("total")
            return InvoicePage(
                ok=bool(res.get("ok", True)),
                items=[Invoice.from_raw(x) for x in items if isinstance(x, dict)],
                total=total if isinstance(total, int) else None,
            )

        if isinstance(res, list):
            invoices = [Invoice.from_raw(x) for x in res if isinstance(x, dict)]
            return InvoicePage(ok=True, items=invoices, total=len(res))

        return InvoicePage(ok=False, items=[], total=0)
