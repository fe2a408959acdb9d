"""Invoice API routes — list/detail proxies to the PSP core and a live poll stream."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse

from psp_console.config import Settings
from psp_console.errors import UpstreamFetchFailure
from psp_console.invoices.client import PspClient
from psp_console.invoices.filters import InvoiceFilterParams, filter_invoices
from psp_console.invoices.polling import InvoicePoller, PollPhase, PollState, is_terminal
from psp_console.invoices.ui_state import accounting_aml_label, derive_invoice_ui_state

logger = logging.getLogger(__name__)

_POLICY_VIOLATION = 1008


def _upstream_error(exc: UpstreamFetchFailure) -> JSONResponse:
    return JSONResponse(
        {"ok": False, "error": exc.message, "kind": exc.kind.value},
        status_code=502,
    )


def poll_frame(state: PollState) -> dict[str, Any]:
    """WebSocket frame for one poll state."""
    invoice = state.invoice
    return {
        "state": state.phase.value,
        "invoice": invoice.to_dict() if invoice else None,
        "ui": derive_invoice_ui_state(invoice).to_dict() if invoice else None,
        "error": state.error,
    }


async def _wait_for_disconnect(websocket: WebSocket) -> None:
    """Return once the client goes away. Inbound messages are ignored."""
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return


def _is_last_frame(state: PollState) -> bool:
    if state.phase in (PollPhase.ERROR, PollPhase.IDLE):
        return True
    return state.phase is PollPhase.DONE and state.invoice is not None and is_terminal(state.invoice)


def register_invoice_routes(app: FastAPI, client: PspClient, settings: Settings) -> None:
    """Register invoice list/detail routes and the poll WebSocket."""

    @app.get("/api/invoices")
    async def list_invoices(
        status: str = "all",
        aml: str = "all",
        q: str = "",
        min_amount: str = "",
        max_amount: str = "",
        date: str = "all",
        tx_hash: str = "",
        wallet: str = "",
        merchant: str = "",
        limit: int = 500,
        offset: int = 0,
    ):
        """One page from the PSP core, filtered for the operator list view."""
        try:
            page = await client.fetch_invoices(limit=limit, offset=offset)
        except UpstreamFetchFailure as exc:
            logger.warning("Invoice list fetch failed: %s", exc.message)
            return _upstream_error(exc)

        params = InvoiceFilterParams(
            status_filter=status,
            aml_filter=aml,
            search=q,
            min_amount=min_amount,
            max_amount=max_amount,
            date_preset=date,
            tx_hash_search=tx_hash,
            wallet_search=wallet,
            merchant_search=merchant,
        )
        items = filter_invoices(page.items, params)
        return {
            "ok": page.ok,
            "total": page.total,
            "count": len(items),
            "items": [inv.to_dict() for inv in items],
        }

    @app.get("/api/invoices/{invoice_id}")
    async def get_invoice(invoice_id: str):
        """Invoice snapshot with its derived UI state."""
        try:
            result = await client.fetch_invoice(invoice_id)
        except UpstreamFetchFailure as exc:
            logger.warning("Invoice fetch failed for %s: %s", invoice_id, exc.message)
            return _upstream_error(exc)

        if not result.ok or result.invoice is None:
            return JSONResponse(
                {"ok": False, "error": "Invoice not found", "id": invoice_id},
                status_code=404,
            )

        invoice = result.invoice
        return {
            "ok": True,
            "invoice": invoice.to_dict(),
            "ui": derive_invoice_ui_state(invoice).to_dict(),
            "accountingAmlLabel": accounting_aml_label(invoice),
        }

    @app.websocket("/api/invoices/{invoice_id}/poll")
    async def poll_invoice(websocket: WebSocket, invoice_id: str):
        """Stream poll states until the invoice is terminal or a fetch fails."""
        await websocket.accept()

        queue: asyncio.Queue[PollState] = asyncio.Queue()
        poller = InvoicePoller(
            client.fetch_invoice,
            queue.put_nowait,
            interval=settings.poll_interval_seconds,
        )
        if poller.start(invoice_id) is None:
            await websocket.close(code=_POLICY_VIOLATION, reason="invoice id missing")
            return

        disconnected = asyncio.create_task(_wait_for_disconnect(websocket))
        try:
            while True:
                next_state = asyncio.create_task(queue.get())
                done, _ = await asyncio.wait(
                    {next_state, disconnected}, return_when=asyncio.FIRST_COMPLETED
                )
                if disconnected in done:
                    next_state.cancel()
                    logger.debug("Poll stream for %s closed by client", invoice_id)
                    return
                state = next_state.result()
                await websocket.send_json(poll_frame(state))
                if _is_last_frame(state):
                    break
            await websocket.close()
        except WebSocketDisconnect:
            logger.debug("Poll stream for %s closed by client", invoice_id)
        finally:
            poller.stop()
            disconnected.cancel()

    logger.info("Invoice routes registered: /api/invoices, /api/invoices/{id}/poll")
