"""Security test fixtures.

- Builds the console app per test with an in-memory inbox
- Stubs the PSP core with an httpx MockTransport (never reached here)
- Wraps it in dev/prod TestClients and provides a psp-signature helper
"""

from __future__ import annotations

import httpx
import pytest
from fastapi.testclient import TestClient

from psp_console.app import create_app
from psp_console.config import Settings
from psp_console.invoices.client import PspClient
from psp_console.webhooks.inbox import InboxStore
from psp_console.webhooks.verification import sign


def _unreachable_core() -> PspClient:
    return PspClient(
        "http://psp.test",
        transport=httpx.MockTransport(lambda request: httpx.Response(404, json={"ok": False})),
    )


@pytest.fixture
def inbox_store() -> InboxStore:
    return InboxStore(max_items=5)


@pytest.fixture
def make_client(inbox_store):
    """Factory: TestClient for the given settings (and optionally another store)."""

    def _make(settings: Settings, store: InboxStore | None = None) -> TestClient:
        app = create_app(
            settings,
            inbox_store=store or inbox_store,
            psp_client=_unreachable_core(),
        )
        return TestClient(app, raise_server_exceptions=False)

    return _make


@pytest.fixture
def client(make_client, dev_settings):
    """Development client: inbox viewer is open."""
    with make_client(dev_settings) as c:
        yield c


@pytest.fixture
def prod_client(make_client, prod_settings):
    """Production client: inbox viewer requires the ops token."""
    with make_client(prod_settings) as c:
        yield c


@pytest.fixture
def signed_headers(dev_settings):
    """Factory for psp-signature headers over a raw body."""

    def _make(body: bytes, secret: str | None = None) -> dict[str, str]:
        return {
            "psp-signature": sign(body, secret or dev_settings.webhook_secret),
            "content-type": "application/json",
        }

    return _make
