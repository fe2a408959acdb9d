"""Operator-facing invoice state, derived from a snapshot.

Three independent axes:
- invoice: lifecycle status (waiting / confirmed / expired / rejected)
- tx: on-chain detection plus AML screening outcome
- decision: operator compliance decision (approve / hold / reject)

derive_invoice_ui_state() is total and pure: no I/O, no clock, no
randomness. Unknown or out-of-enum values fall through to the
least-alarming classification for their axis.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping

from psp_console.invoices.models import Invoice


class Tone(str, Enum):
    OK = "ok"
    WARN = "warn"
    ERROR = "error"
    NEUTRAL = "neutral"


@dataclass(frozen=True)
class UiAxis:
    label: str
    tone: Tone
    details: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"label": self.label, "tone": self.tone.value, "details": self.details}


@dataclass(frozen=True)
class InvoiceUiState:
    invoice: UiAxis
    tx: UiAxis
    decision: UiAxis
    needs_decision: bool = False
    next_action: str = "none"  # approve, hold, reject, none
    reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "invoice": self.invoice.to_dict(),
            "tx": self.tx.to_dict(),
            "decision": self.decision.to_dict(),
            "needsDecision": self.needs_decision,
            "nextAction": self.next_action,
            "reason": self.reason,
        }


_HIGH_RISK_AML = {"risky", "blocked"}
_ATTENTION_AML = {"warning", "risky", "blocked"}

_DECISION_AXES = {
    "approve": ("approved", Tone.OK),
    "hold": ("on hold", Tone.WARN),
    "reject": ("rejected", Tone.ERROR),
}


def _join(*parts: str | None) -> str | None:
    text = " · ".join(p for p in parts if p)
    return text or None


def _fmt_score(score: float) -> str:
    return str(int(score)) if score.is_integer() else str(score)


def _invoice_axis(inv: Invoice) -> UiAxis:
    if inv.status == "confirmed":
        return UiAxis("confirmed", Tone.OK, inv.confirmed_at)
    if inv.status == "expired":
        return UiAxis("expired", Tone.WARN, inv.expires_at)
    if inv.status == "rejected":
        return UiAxis("rejected", Tone.ERROR, inv.decided_at)
    # waiting and anything unrecognized
    return UiAxis("waiting", Tone.NEUTRAL, inv.expires_at)


def _finality(inv: Invoice) -> str | None:
    c, r = inv.confirmations, inv.required_confirmations
    if c is None and r is None:
        return None
    c = c or 0
    if not r:
        return f"{c} conf"
    if c >= r:
        return f"Final ({c}/{r})"
    return f"Confirming ({c}/{r})"


def _tx_axis(inv: Invoice) -> UiAxis:
    finality = _finality(inv)
    if not inv.has_aml_result:
        if not inv.tx_hash:
            return UiAxis("not detected", Tone.NEUTRAL)
        return UiAxis("pending", Tone.WARN, _join("awaiting AML screening", finality))

    # A screening result outranks a missing hash.

    risk = f"risk {_fmt_score(inv.risk_score)}" if inv.risk_score is not None else None
    aml = inv.aml_status
    if aml in _HIGH_RISK_AML:
        tone = Tone.ERROR
    elif aml == "warning":
        tone = Tone.WARN
    else:
        tone = Tone.OK
    return UiAxis(aml or "screened", tone, _join(inv.aml_provider, risk, finality))


def _decision_axis(inv: Invoice) -> UiAxis:
    axis = _DECISION_AXES.get(inv.decision_status or "")
    if axis is None:
        return UiAxis("no decision", Tone.NEUTRAL)
    label, tone = axis
    who = f"by {inv.decided_by}" if inv.decided_by else None
    return UiAxis(label, tone, _join(who, inv.decided_at))


def derive_invoice_ui_state(snapshot: Invoice | Mapping[str, Any]) -> InvoiceUiState:
    """Map a snapshot (normalized or raw upstream mapping) to the three UI axes."""
    inv = snapshot if isinstance(snapshot, Invoice) else Invoice.from_raw(snapshot)

    needs_decision = not inv.has_decision and inv.aml_status in _ATTENTION_AML
    if not needs_decision:
        next_action = "none"
    elif inv.aml_status in _HIGH_RISK_AML:
        next_action = "hold"
    else:
        next_action = "approve"

    return InvoiceUiState(
        invoice=_invoice_axis(inv),
        tx=_tx_axis(inv),
        decision=_decision_axis(inv),
        needs_decision=needs_decision,
        next_action=next_action,
        reason=inv.decision_reason,
    )


def accounting_aml_label(snapshot: Invoice) -> str:
    """AML label for accounting receipts.

    An approved invoice whose risk and asset-risk scores are both exactly 0
    reads "clean/approved". Display only; aml_status itself is untouched.
    """
    if (
        snapshot.decision_status == "approve"
        and snapshot.risk_score == 0
        and snapshot.asset_risk_score == 0
    ):
        return "clean/approved"
    return snapshot.aml_status or "—"
