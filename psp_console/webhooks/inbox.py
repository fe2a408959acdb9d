"""Webhook inbox — bounded, newest-first log of verified PSP webhooks.

Two interchangeable backends sit behind one InboxBackend protocol:
- RedisInboxBackend ("kv"): list of ids (newest at the head) + hash of
  JSON envelopes, trimmed to capacity inside a MULTI/EXEC block
- MemoryInboxBackend ("mem"): process-local list guarded by a lock

The backend is chosen once, at construction, from configuration. Runtime
failures of the durable backend degrade instead of propagating:
- append() writes to the process-local fallback and reports "mem"
- list() returns [] and get_by_id() returns None

Backends are not kept consistent with each other; switching configuration
does not migrate data.
"""

from __future__ import annotations

import json
import logging
import threading
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Protocol, runtime_checkable
from urllib.parse import urlsplit

import redis

from psp_console.config import Settings
from psp_console.errors import StorageUnavailable

logger = logging.getLogger(__name__)

DEFAULT_MAX_ITEMS = 100
PREVIEW_LENGTH = 220

STORAGE_KV = "kv"
STORAGE_MEM = "mem"

_IDS_KEY = "psp:webhookInbox:ids"
_ITEMS_KEY = "psp:webhookInbox:items"


@dataclass(frozen=True)
class WebhookEnvelope:
    """A verified inbound webhook, stored verbatim."""

    id: str
    received_at: datetime
    content_type: str | None
    raw_body: str

    @classmethod
    def create(cls, raw_body: str, content_type: str | None = None) -> WebhookEnvelope:
        """New envelope with a generated id and the current UTC time."""
        webhook_id = f"wh_{int(time.time() * 1000)}_{uuid.uuid4().hex[:12]}"
        return cls(
            id=webhook_id,
            received_at=datetime.now(timezone.utc),
            content_type=content_type,
            raw_body=raw_body,
        )

    @property
    def preview(self) -> str:
        return self.raw_body[:PREVIEW_LENGTH]

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "ts": self.received_at.isoformat(),
            "contentType": self.content_type,
            "rawBody": self.raw_body,
        }

    def summary(self) -> dict[str, Any]:
        """List-view shape: no full body."""
        return {
            "id": self.id,
            "ts": self.received_at.isoformat(),
            "contentType": self.content_type,
            "preview": self.preview,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WebhookEnvelope:
        return cls(
            id=str(data["id"]),
            received_at=datetime.fromisoformat(data["ts"]),
            content_type=data.get("contentType"),
            raw_body=data.get("rawBody", ""),
        )


@dataclass(frozen=True)
class InboxMeta:
    storage: str
    count: int
    max: int

    def to_dict(self) -> dict[str, Any]:
        return {"storage": self.storage, "count": self.count, "max": self.max}


@runtime_checkable
class InboxBackend(Protocol):
    """Storage protocol shared by the durable and process-local backends."""

    @property
    def name(self) -> str:
        ...

    def push(self, item: WebhookEnvelope, max_items: int) -> None:
        """Insert at the head, then trim to max_items, as one step."""
        ...

    def list(self, limit: int) -> list[WebhookEnvelope]:
        ...

    def get(self, item_id: str) -> WebhookEnvelope | None:
        ...

    def count(self) -> int:
        ...

    def clear(self) -> None:
        ...


class MemoryInboxBackend:
    """Process-local backend. One lock serializes append/trim/clear."""

    def __init__(self) -> None:
        self._items: list[WebhookEnvelope] = []
        self._lock = threading.Lock()

    @property
    def name(self) -> str:
        return STORAGE_MEM

    def push(self, item: WebhookEnvelope, max_items: int) -> None:
        with self._lock:
            self._items.insert(0, item)
            del self._items[max_items:]

    def list(self, limit: int) -> list[WebhookEnvelope]:
        with self._lock:
            return self._items[:limit]

    def get(self, item_id: str) -> WebhookEnvelope | None:
        with self._lock:
            for item in self._items:
                if item.id == item_id:
                    return item
        return None

    def count(self) -> int:
        with self._lock:
            return len(self._items)

    def clear(self) -> None:
        with self._lock:
            self._items = []


class RedisInboxBackend:
    """Durable backend: Redis list of ids + hash of JSON envelopes.

    Every redis error is re-raised as StorageUnavailable.
    """

    def __init__(
        self,
        url: str = "",
        token: str = "",
        *,
        client: redis.Redis | None = None,
    ):
        if client is None:
            client = redis.from_url(
                _redis_url(url), password=token or None, decode_responses=True
            )
        self._redis = client

    @property
    def name(self) -> str:
        return STORAGE_KV

    def push(self, item: WebhookEnvelope, max_items: int) -> None:
        try:
            pipe = self._redis.pipeline(transaction=True)
            pipe.hset(_ITEMS_KEY, item.id, json.dumps(item.to_dict()))
            pipe.lpush(_IDS_KEY, item.id)
            pipe.lrange(_IDS_KEY, max_items, -1)
            pipe.ltrim(_IDS_KEY, 0, max_items - 1)
            results = pipe.execute()
        except (redis.RedisError, OSError) as exc:
            raise StorageUnavailable(f"inbox push failed: {exc}") from exc

        # The item is committed; an orphaned body left behind here is unreachable.
        evicted = results[2]
        if evicted:
            try:
                self._redis.hdel(_ITEMS_KEY, *evicted)
            except (redis.RedisError, OSError):
                logger.warning("Failed to drop %d evicted inbox bodies", len(evicted), exc_info=True)

    def list(self, limit: int) -> list[WebhookEnvelope]:
        try:
            ids = self._redis.lrange(_IDS_KEY, 0, limit - 1)
            if not ids:
                return []
            raws = self._redis.hmget(_ITEMS_KEY, ids)
        except (redis.RedisError, OSError) as exc:
            raise StorageUnavailable(f"inbox list failed: {exc}") from exc
        return [env for env in (_decode(raw) for raw in raws) if env is not None]

    def get(self, item_id: str) -> WebhookEnvelope | None:
        try:
            raw = self._redis.hget(_ITEMS_KEY, item_id)
        except (redis.RedisError, OSError) as exc:
            raise StorageUnavailable(f"inbox get failed: {exc}") from exc
        return _decode(raw)

    def count(self) -> int:
        try:
            return int(self._redis.llen(_IDS_KEY))
        except (redis.RedisError, OSError) as exc:
            raise StorageUnavailable(f"inbox count failed: {exc}") from exc

    def clear(self) -> None:
        try:
            self._redis.delete(_IDS_KEY, _ITEMS_KEY)
        except (redis.RedisError, OSError) as exc:
            raise StorageUnavailable(f"inbox clear failed: {exc}") from exc


def _redis_url(url: str) -> str:
    """Map a KV REST endpoint (https://host) to its TLS redis endpoint."""
    parsed = urlsplit(url)
    if parsed.scheme in ("http", "https"):
        return f"rediss://{parsed.hostname}:{parsed.port or 6379}"
    return url


def _decode(raw: str | None) -> WebhookEnvelope | None:
    if raw is None:
        return None
    try:
        return WebhookEnvelope.from_dict(json.loads(raw))
    except (ValueError, KeyError, TypeError):
        logger.warning("Skipping undecodable inbox entry", exc_info=True)
        return None


class InboxStore:
    """Capacity-bounded webhook inbox.

    Invariant: after any append, the configured backend holds at most
    ``max_items`` envelopes, newest first.
    """

    def __init__(
        self,
        backend: InboxBackend | None = None,
        *,
        max_items: int = DEFAULT_MAX_ITEMS,
        fallback: MemoryInboxBackend | None = None,
    ):
        if max_items < 1:
            raise ValueError("max_items must be >= 1")
        self.max_items = max_items
        self._fallback = fallback or MemoryInboxBackend()
        self._backend: InboxBackend = backend or self._fallback

    @classmethod
    def from_settings(cls, settings: Settings) -> InboxStore:
        """Durable backend when endpoint + credential are configured, else memory."""
        backend: InboxBackend | None = None
        if settings.kv_enabled:
            try:
                backend = RedisInboxBackend(settings.kv_url, settings.kv_token)
            except ValueError:
                logger.warning("Invalid durable inbox URL — using process memory", exc_info=True)
        logger.info(
            "Webhook inbox using %s (max=%d)",
            backend.name if backend else STORAGE_MEM,
            settings.inbox_max_items,
        )
        return cls(backend, max_items=settings.inbox_max_items)

    @property
    def storage(self) -> str:
        return self._backend.name

    def append(self, item: WebhookEnvelope) -> str:
        """Insert newest-first and trim. Returns the backend name that took the write."""
        try:
            self._backend.push(item, self.max_items)
            return self._backend.name
        except StorageUnavailable:
            if self._backend is self._fallback:
                raise
            logger.warning(
                "Durable inbox unavailable — keeping %s in process memory",
                item.id,
                exc_info=True,
            )
            self._fallback.push(item, self.max_items)
            return self._fallback.name

    def list(self, limit: int | None = None) -> list[WebhookEnvelope]:
        """Up to min(limit, max_items) envelopes, newest first. Never raises."""
        n = self.max_items if limit is None else min(limit, self.max_items)
        if n <= 0:
            return []
        try:
            return self._backend.list(n)[:n]
        except StorageUnavailable:
            logger.warning("Inbox list failed — returning empty", exc_info=True)
            return []

    def get_by_id(self, item_id: str) -> WebhookEnvelope | None:
        """Point lookup. None is a normal outcome."""
        if not item_id:
            return None
        try:
            return self._backend.get(item_id)
        except StorageUnavailable:
            logger.warning("Inbox get failed for %s", item_id, exc_info=True)
            return None

    def clear(self) -> None:
        """Empty the store (tests and ops only)."""
        self._backend.clear()
        if self._backend is not self._fallback:
            self._fallback.clear()

    def meta(self) -> InboxMeta:
        try:
            count = self._backend.count()
        except StorageUnavailable:
            logger.warning("Inbox count failed", exc_info=True)
            count = 0
        return InboxMeta(storage=self._backend.name, count=count, max=self.max_items)
