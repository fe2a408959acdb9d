"""Shared fixtures for the PSP console test suite."""

from __future__ import annotations

import pytest

from psp_console.config import Settings

WEBHOOK_SECRET = "whsec-test-secret"
INBOX_TOKEN = "inbox-test-token"


@pytest.fixture()
def inbox_token() -> str:
    return INBOX_TOKEN


@pytest.fixture()
def dev_settings() -> Settings:
    """Development settings: open inbox, in-memory store, fast polling."""
    return Settings(
        environment="development",
        api_url="http://psp.test",
        webhook_secret=WEBHOOK_SECRET,
        inbox_token="",
        kv_url="",
        kv_token="",
        poll_interval_seconds=0.01,
        _env_file=None,
    )


@pytest.fixture()
def prod_settings() -> Settings:
    """Production settings: inbox requires the ops token."""
    return Settings(
        environment="production",
        api_url="http://psp.test",
        webhook_secret=WEBHOOK_SECRET,
        inbox_token=INBOX_TOKEN,
        kv_url="",
        kv_token="",
        _env_file=None,
    )
