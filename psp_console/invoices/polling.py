"""Invoice status polling — one cancellable session per watched invoice.

State machine per session::

    idle -> loading -> done(snapshot) -> done(snapshot) ... -> (stop)
                    \\-> error(message)                      (stop)

Each tick fetches a fresh snapshot, publishes it, and stops once the
snapshot is terminal (see is_terminal). A failed fetch publishes an error
carrying the last good snapshot and stops; there is no automatic retry.

Ticks never overlap: the loop awaits each fetch before scheduling the
next one, and ticks missed while a slow fetch was in flight are skipped,
not queued. Cancelling a session aborts its in-flight fetch, and a
response that still lands afterwards is discarded.
"""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable

from psp_console.invoices.models import Invoice, InvoiceResult

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 2.0

_FINAL_STATUSES = {"expired", "rejected"}


class PollPhase(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    DONE = "done"
    ERROR = "error"


@dataclass(frozen=True)
class PollState:
    phase: PollPhase
    invoice: Invoice | None = None  # on ERROR: last good snapshot, if any
    error: str | None = None


IDLE = PollState(PollPhase.IDLE)

FetchInvoice = Callable[[str], Awaitable[InvoiceResult]]
StateListener = Callable[[PollState], None]


def is_terminal(invoice: Invoice) -> bool:
    """True when further polling cannot change anything the operator waits for.

    expired/rejected are final regardless of AML or decision. A confirmed
    invoice is final only once an AML result or a decision is attached;
    compliance processing may still be running before that.
    """
    if invoice.status in _FINAL_STATUSES:
        return True
    return invoice.status == "confirmed" and (invoice.has_aml_result or invoice.has_decision)


class PollSubscription:
    """Handle for one polling session."""

    def __init__(self, invoice_id: str):
        self.invoice_id = invoice_id
        self.cancelled = False
        self._task: asyncio.Task | None = None

    def cancel(self) -> None:
        """Stop the loop now. No state is emitted for this session afterwards."""
        self.cancelled = True
        if self._task is not None and not self._task.done():
            self._task.cancel()

    @property
    def finished(self) -> bool:
        return self._task is not None and self._task.done()

    async def wait(self) -> None:
        """Wait for the session to stop (terminal snapshot, error or cancel)."""
        if self._task is None:
            return
        try:
            await asyncio.shield(self._task)
        except asyncio.CancelledError:
            if not self._task.cancelled():
                raise


class InvoicePoller:
    """Polls one invoice at a time and reports state to a single listener.

    start() with a new id replaces the running session; start(None) or
    start("") stops polling and reports IDLE.
    """

    def __init__(
        self,
        fetch_invoice: FetchInvoice,
        listener: StateListener,
        *,
        interval: float = DEFAULT_POLL_INTERVAL,
    ):
        if interval <= 0:
            raise ValueError("interval must be > 0")
        self._fetch = fetch_invoice
        self._listener = listener
        self.interval = interval
        self._current: PollSubscription | None = None
        self._state = IDLE

    @property
    def state(self) -> PollState:
        return self._state

    @property
    def subscription(self) -> PollSubscription | None:
        return self._current

    def start(self, invoice_id: str | None) -> PollSubscription | None:
        """Begin polling ``invoice_id``. Must be called from a running event loop."""
        invoice_id = (invoice_id or "").strip()
        current = self._current
        if (
            current is not None
            and not current.cancelled
            and not current.finished
            and current.invoice_id == invoice_id
        ):
            return current

        self.stop()
        if not invoice_id:
            self._set_state(IDLE)
            return None

        sub = PollSubscription(invoice_id)
        self._current = sub
        self._publish(sub, PollState(PollPhase.LOADING))
        sub._task = asyncio.get_running_loop().create_task(
            self._run(sub), name=f"invoice-poll:{invoice_id}"
        )
        logger.debug("Polling started for invoice %s", invoice_id)
        return sub

    def stop(self) -> None:
        """Cancel the running session, if any."""
        if self._current is not None:
            self._current.cancel()
            logger.debug("Polling stopped for invoice %s", self._current.invoice_id)
            self._current = None

    def _set_state(self, state: PollState) -> None:
        self._state = state
        self._listener(state)

    def _publish(self, sub: PollSubscription, state: PollState) -> bool:
        # superseded sessions are silent
        if sub.cancelled or sub is not self._current:
            return False
        self._set_state(state)
        return True

    async def _run(self, sub: PollSubscription) -> None:
        loop = asyncio.get_running_loop()
        next_tick = loop.time()
        last_good: Invoice | None = None

        while True:
            try:
                result = await self._fetch(sub.invoice_id)
                if not result.ok or result.invoice is None:
                    raise LookupError("Failed to load invoice")
                invoice = result.invoice
            except Exception as exc:
                if sub.cancelled:
                    return
                logger.warning(
                    "Invoice poll failed for %s: %s", sub.invoice_id, exc,
                )
                self._publish(
                    sub,
                    PollState(PollPhase.ERROR, invoice=last_good, error=str(exc) or "Polling error"),
                )
                return

            if not self._publish(sub, PollState(PollPhase.DONE, invoice=invoice)):
                return
            last_good = invoice

            if is_terminal(invoice):
                logger.debug(
                    "Polling complete for invoice %s (status=%s)", sub.invoice_id, invoice.status,
                )
                return

            next_tick += self.interval
            now = loop.time()
            if next_tick < now:
                missed = math.ceil((now - next_tick) / self.interval)
                next_tick += missed * self.interval
            await asyncio.sleep(next_tick - now)
