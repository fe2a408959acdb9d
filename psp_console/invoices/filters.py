"""Invoice list filtering.

All predicates are ANDed; an empty/unset input makes its predicate
vacuously true. Original order is preserved among matches.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable

from psp_console.invoices.models import Invoice

DATE_PRESETS = ("all", "today", "7d", "30d")

_ROLLING_WINDOWS = {
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
}


@dataclass(frozen=True)
class InvoiceFilterParams:
    status_filter: str = "all"
    aml_filter: str = "all"  # "none" matches a missing AML status
    search: str = ""
    min_amount: str = ""
    max_amount: str = ""
    date_preset: str = "all"
    tx_hash_search: str = ""
    wallet_search: str = ""
    merchant_search: str = ""


def parse_amount(raw: str | None) -> float | None:
    """Amount bound from user input; comma accepted as decimal separator.

    Unparsable input means "no bound".
    """
    v = (raw or "").strip()
    if not v:
        return None
    try:
        n = float(v.replace(",", ".", 1))
    except ValueError:
        return None
    return n if math.isfinite(n) else None


def date_window_start(preset: str, now: datetime | None = None) -> datetime | None:
    """Lower bound for a date preset; None for "all" or unknown presets.

    ``today`` starts at local midnight, ``7d``/``30d`` roll back from now.
    """
    now = (now or datetime.now()).astimezone()
    if preset == "today":
        return now.replace(hour=0, minute=0, second=0, microsecond=0)
    window = _ROLLING_WINDOWS.get(preset)
    return now - window if window else None


def _contains(haystack: str | None, needle: str) -> bool:
    return needle in (haystack or "").lower()


def filter_invoices(
    items: Iterable[Invoice],
    params: InvoiceFilterParams,
    *,
    now: datetime | None = None,
) -> list[Invoice]:
    search_q = params.search.strip().lower()
    tx_q = params.tx_hash_search.strip().lower()
    wallet_q = params.wallet_search.strip().lower()
    merchant_q = params.merchant_search.strip().lower()

    status = params.status_filter.strip().lower()
    aml = params.aml_filter.strip().lower()

    lo = parse_amount(params.min_amount)
    hi = parse_amount(params.max_amount)
    since = date_window_start(params.date_preset, now)

    def matches(inv: Invoice) -> bool:
        if search_q and search_q not in inv.id.lower():
            return False
        if status and status != "all" and inv.status != status:
            return False
        if aml and aml != "all":
            if aml == "none":
                if inv.aml_status is not None:
                    return False
            elif inv.aml_status != aml:
                return False
        # a missing amount never fails a bound
        if inv.fiat_amount is not None:
            if lo is not None and inv.fiat_amount < lo:
                return False
            if hi is not None and inv.fiat_amount > hi:
                return False
        if since is not None and (inv.created_at is None or inv.created_at < since):
            return False
        if tx_q and not _contains(inv.tx_hash, tx_q):
            return False
        if wallet_q and not _contains(inv.wallet_address, wallet_q):
            return False
        if merchant_q and not _contains(inv.merchant_id, merchant_q):
            return False
        return True

    return [inv for inv in items if matches(inv)]
