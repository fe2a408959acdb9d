"""Webhook HTTP handlers — PSP webhook receiver and the ops inbox viewer.

Receiver flow:
1. Reads raw body (needed for HMAC verification)
2. Verifies the psp-signature header
3. Appends the envelope to the inbox
4. Returns 200 {ok: true, id, storage}

Security contract:
- Unconfigured secret -> 500, so the PSP core keeps retrying
- Return 401 only for signature failures; nothing is stored
- Inbox store failures never turn into 401 (they degrade inside InboxStore)
- Inbox viewer is open in development, token-guarded everywhere else
"""

from __future__ import annotations

import hmac
import json
import logging
import time

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from psp_console.config import Settings
from psp_console.errors import AuthFailure, StorageUnavailable
from psp_console.webhooks.inbox import InboxStore, WebhookEnvelope
from psp_console.webhooks.verification import SIGNATURE_HEADER, check_signature

logger = logging.getLogger(__name__)

INBOX_TOKEN_HEADER = "x-psp-inbox-token"

_LOG_PREVIEW = 300


def _log_webhook(webhook_id: str, status: str, **fields: object) -> None:
    """Audit log for webhook activity."""
    extra = " ".join(f"{k}={v}" for k, v in fields.items())
    logger.info("PSP_WEBHOOK id=%s status=%s %s", webhook_id, status, extra)


def _event_fields(raw: str) -> dict[str, object]:
    """Best-effort invoice id / event type for the audit line."""
    try:
        payload = json.loads(raw)
    except ValueError:
        return {}
    if not isinstance(payload, dict):
        return {}
    return {
        "invoice": payload.get("invoiceId") or payload.get("invoice_id"),
        "event": payload.get("eventType") or payload.get("event_type"),
    }


def _provided_inbox_token(request: Request) -> str:
    token = request.headers.get(INBOX_TOKEN_HEADER, "").strip()
    if token:
        return token
    auth = request.headers.get("authorization", "")
    scheme, _, value = auth.partition(" ")
    if scheme.lower() == "bearer":
        return value.strip()
    return ""


def _guard_inbox(request: Request, settings: Settings) -> JSONResponse | None:
    """None when the caller may read the inbox, else the error response."""
    if settings.is_development:
        return None

    expected = settings.inbox_token
    if not expected:
        return JSONResponse(
            {
                "ok": False,
                "error": "CONFIG_MISSING",
                "details": "Missing PSP_INBOX_TOKEN in environment",
            },
            status_code=500,
        )

    provided = _provided_inbox_token(request)
    if not provided or not hmac.compare_digest(provided.encode(), expected.encode()):
        return JSONResponse({"ok": False, "error": "UNAUTHORIZED"}, status_code=401)
    return None


async def receive_psp_webhook(request: Request, store: InboxStore, settings: Settings):
    """Verify and store one PSP webhook."""
    start = time.time()

    secret = settings.webhook_secret
    if not secret:
        logger.error("PSP_WEBHOOK_SECRET not set — rejecting webhook with 500")
        return PlainTextResponse("Missing PSP_WEBHOOK_SECRET", status_code=500)

    body = await request.body()

    try:
        check_signature(body, request.headers.get(SIGNATURE_HEADER), secret)
    except AuthFailure as exc:
        _log_webhook("-", "signature_failed", reason=exc.reason.replace(" ", "_"))
        return JSONResponse({"ok": False, "error": exc.reason}, status_code=401)

    raw = body.decode("utf-8", errors="replace")
    envelope = WebhookEnvelope.create(raw, request.headers.get("content-type"))

    try:
        storage = store.append(envelope)
    except StorageUnavailable:
        logger.exception("Failed to store webhook %s", envelope.id)
        storage = None

    _log_webhook(
        envelope.id,
        "stored" if storage else "store_failed",
        storage=storage,
        len=len(raw),
        **_event_fields(raw),
    )
    logger.debug(
        "Webhook %s processed in %.1fms: %s",
        envelope.id,
        (time.time() - start) * 1000,
        raw[:_LOG_PREVIEW],
    )

    return JSONResponse({"ok": True, "id": envelope.id, "storage": storage})


def register_webhook_routes(app: FastAPI, store: InboxStore, settings: Settings) -> None:
    """Register the webhook receiver and inbox viewer routes."""

    @app.post("/api/webhooks/psp")
    async def psp_webhook(request: Request):
        """Receive PSP core webhooks (signature-verified)."""
        return await receive_psp_webhook(request, store, settings)

    @app.post("/webhooks/psp")
    async def psp_webhook_legacy(request: Request):
        """Backward-compatible alias of /api/webhooks/psp."""
        return await receive_psp_webhook(request, store, settings)

    @app.get("/api/webhooks/psp/inbox")
    async def inbox_list(request: Request, limit: int | None = None):
        """Newest-first inbox listing with body previews."""
        denied = _guard_inbox(request, settings)
        if denied is not None:
            return denied

        items = store.list(limit)
        meta = store.meta()
        return {
            "ok": True,
            "storage": meta.storage,
            "count": meta.count,
            "max": meta.max,
            "items": [item.summary() for item in items],
        }

    @app.get("/api/webhooks/psp/inbox/{item_id}")
    async def inbox_item(request: Request, item_id: str):
        """One stored webhook, including its raw body."""
        denied = _guard_inbox(request, settings)
        if denied is not None:
            return denied

        safe_id = item_id.strip()
        if not safe_id:
            return JSONResponse({"ok": False, "error": "ID_MISSING"}, status_code=400)

        item = store.get_by_id(safe_id)
        if item is None:
            return JSONResponse(
                {"ok": False, "error": "NOT_FOUND", "id": safe_id},
                status_code=404,
            )
        return {"ok": True, "item": item.to_dict()}

    @app.delete("/api/webhooks/psp/inbox")
    async def inbox_clear(request: Request):
        """Empty the inbox (ops only)."""
        denied = _guard_inbox(request, settings)
        if denied is not None:
            return denied

        try:
            store.clear()
        except StorageUnavailable:
            logger.exception("Failed to clear webhook inbox")
            return JSONResponse(
                {"ok": False, "error": "STORAGE_UNAVAILABLE"},
                status_code=503,
            )
        return {"ok": True, "meta": store.meta().to_dict()}

    logger.info("Webhook routes registered: /api/webhooks/psp, /webhooks/psp, inbox")
