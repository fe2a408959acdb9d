"""FastAPI application factory for the PSP console."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from psp_console import __version__
from psp_console.config import Settings, get_settings
from psp_console.invoices.client import PspClient
from psp_console.invoices.routes import register_invoice_routes
from psp_console.webhooks.handlers import register_webhook_routes
from psp_console.webhooks.inbox import InboxStore

logger = logging.getLogger(__name__)


def create_app(
    settings: Settings | None = None,
    *,
    inbox_store: InboxStore | None = None,
    psp_client: PspClient | None = None,
) -> FastAPI:
    """Build the app. Collaborators are injectable; defaults come from settings."""
    settings = settings or get_settings()
    store = inbox_store or InboxStore.from_settings(settings)
    client = psp_client or PspClient.from_settings(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "PSP console starting (env=%s, inbox=%s, psp=%s)",
            settings.environment,
            store.storage,
            settings.api_url,
        )
        yield
        await client.aclose()

    app = FastAPI(title="PSP Console", version=__version__, lifespan=lifespan)
    app.state.settings = settings
    app.state.inbox_store = store
    app.state.psp_client = client

    @app.get("/health")
    async def health():
        return {"status": "ok", "inbox": store.storage}

    register_webhook_routes(app, store, settings)
    register_invoice_routes(app, client, settings)
    return app
