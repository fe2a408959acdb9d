"""Invoice snapshot model — canonical shape of a PSP core invoice record.

The PSP core returns loosely-typed records: every field may be missing,
statuses arrive in legacy spellings, and the operator decision appears
either as flat fields or as a nested ``decision`` object. Everything is
normalized here, once, right after fetch, so derivation, polling and
filtering never branch on source-field shape.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping

INVOICE_STATUSES = ("waiting", "confirmed", "expired", "rejected")
AML_STATUSES = ("clean", "warning", "risky", "blocked")
DECISION_STATUSES = ("approve", "hold", "reject")

_AML_ALIASES = {
    "risk": "risky",
    "high": "risky",
    "block": "blocked",
}

_DECISION_ALIASES = {
    "approve": "approve",
    "approved": "approve",
    "hold": "hold",
    "reject": "reject",
    "rejected": "reject",
}


def _clean_str(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    s = value.strip()
    return s or None


def _number(value: Any, *, allow_str: bool = False) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            n = float(value)
        except OverflowError:
            return None
    elif allow_str and isinstance(value, str) and value.strip():
        try:
            n = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return n if math.isfinite(n) else None


def _int(value: Any) -> int | None:
    n = _number(value)
    return max(0, int(n)) if n is not None else None


def _datetime(value: Any) -> datetime | None:
    s = _clean_str(value)
    if s is None:
        return None
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(s)
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def normalize_aml_status(value: Any) -> str | None:
    """``review`` and blanks mean "no result yet"; unknown values pass through lowercased."""
    s = _clean_str(value)
    if s is None:
        return None
    s = s.lower()
    if s == "review":
        return None
    return _AML_ALIASES.get(s, s)


def normalize_decision_status(value: Any) -> str | None:
    s = _clean_str(value)
    if s is None:
        return None
    return _DECISION_ALIASES.get(s.lower())


@dataclass(frozen=True)
class Invoice:
    """Immutable invoice snapshot. Each poll tick replaces it wholesale."""

    id: str
    status: str = "waiting"
    created_at: datetime | None = None
    expires_at: str | None = None
    confirmed_at: str | None = None

    fiat_amount: float | None = None
    fiat_currency: str | None = None
    crypto_amount: float | None = None
    crypto_currency: str | None = None
    merchant_id: str | None = None

    network: str | None = None
    tx_hash: str | None = None
    wallet_address: str | None = None
    tx_status: str | None = None
    confirmations: int | None = None
    required_confirmations: int | None = None

    aml_status: str | None = None
    risk_score: float | None = None
    asset_status: str | None = None
    asset_risk_score: float | None = None
    aml_provider: str | None = None
    aml_checked_at: str | None = None

    decision_status: str | None = None
    decision_reason: str | None = None
    decided_at: str | None = None
    decided_by: str | None = None

    raw: Mapping[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_raw(cls, raw: Mapping[str, Any]) -> Invoice:
        """Normalize an upstream record. Never raises on missing or odd fields."""
        nested = raw.get("decision")
        decision: Mapping[str, Any] = nested if isinstance(nested, Mapping) else {}

        decision_raw = raw.get("decisionStatus")
        if decision_raw is None:
            decision_raw = decision.get("status")

        status = (_clean_str(raw.get("status")) or "waiting").lower()

        return cls(
            id=_clean_str(raw.get("id")) or "",
            status=status,
            created_at=_datetime(raw.get("createdAt")),
            expires_at=_clean_str(raw.get("expiresAt")),
            confirmed_at=_clean_str(raw.get("confirmedAt")),
            fiat_amount=_number(raw.get("fiatAmount"), allow_str=True),
            fiat_currency=_clean_str(raw.get("fiatCurrency")),
            crypto_amount=_number(raw.get("cryptoAmount"), allow_str=True),
            crypto_currency=_clean_str(raw.get("cryptoCurrency")),
            merchant_id=_clean_str(raw.get("merchantId")),
            network=_clean_str(raw.get("network")),
            tx_hash=_clean_str(raw.get("txHash")),
            wallet_address=_clean_str(raw.get("walletAddress")),
            tx_status=_clean_str(raw.get("txStatus")),
            confirmations=_int(raw.get("confirmations")),
            required_confirmations=_int(raw.get("requiredConfirmations")),
            aml_status=normalize_aml_status(raw.get("amlStatus")),
            risk_score=_number(raw.get("riskScore")),
            asset_status=_clean_str(raw.get("assetStatus")),
            asset_risk_score=_number(raw.get("assetRiskScore")),
            aml_provider=_clean_str(raw.get("amlProvider")),
            aml_checked_at=_clean_str(raw.get("amlCheckedAt")),
            decision_status=normalize_decision_status(decision_raw),
            decision_reason=(
                _clean_str(raw.get("decisionReasonText"))
                or _clean_str(raw.get("decisionReasonCode"))
                or _clean_str(decision.get("reasonCode"))
                or _clean_str(decision.get("comment"))
            ),
            decided_at=_clean_str(raw.get("decidedAt")) or _clean_str(decision.get("decidedAt")),
            decided_by=_clean_str(raw.get("decidedBy")) or _clean_str(decision.get("decidedBy")),
            raw=dict(raw),
        )

    @property
    def has_aml_result(self) -> bool:
        """An AML status or a numeric risk score is attached."""
        return self.aml_status is not None or self.risk_score is not None

    @property
    def has_decision(self) -> bool:
        return self.decision_status is not None

    def to_dict(self) -> dict[str, Any]:
        """Upstream record with the normalized fields laid over it."""
        out = dict(self.raw)
        out.update(
            {
                "id": self.id,
                "status": self.status,
                "createdAt": self.created_at.isoformat() if self.created_at else None,
                "fiatAmount": self.fiat_amount,
                "txHash": self.tx_hash,
                "walletAddress": self.wallet_address,
                "merchantId": self.merchant_id,
                "amlStatus": self.aml_status,
                "riskScore": self.risk_score,
                "assetRiskScore": self.asset_risk_score,
                "decisionStatus": self.decision_status,
                "decidedAt": self.decided_at,
                "decidedBy": self.decided_by,
            }
        )
        return out


@dataclass(frozen=True)
class InvoiceResult:
    """``fetch invoice by id`` outcome. ok=False is a fetch failure for pollers."""

    ok: bool
    invoice: Invoice | None = None


@dataclass(frozen=True)
class InvoicePage:
    ok: bool
    items: list[Invoice] = field(default_factory=list)
    total: int | None = None
