"""PSP webhook signature verification — constant-time HMAC.

Header format (``psp-signature``)::

    t=<unix-seconds>,v1=<hex sha256>

The signed payload is ``"<t>.<raw body>"`` keyed by the shared secret.

Security contract:
- Comparison uses hmac.compare_digest() (constant-time, no timing attacks)
- Verification failure -> 401 before anything is stored
- No freshness window on ``t``: a captured body/header pair verifies forever
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import re
import time
from dataclasses import dataclass

from psp_console.errors import AuthFailure

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "psp-signature"

_HEX64 = re.compile(r"^[a-f0-9]{64}$", re.IGNORECASE)


@dataclass(frozen=True)
class SignatureHeader:
    """Parsed ``psp-signature`` value."""

    timestamp: int
    signature_hex: str  # lowercase


def parse_signature_header(header: str | None) -> SignatureHeader | None:
    """Parse ``t=...,v1=...`` into a SignatureHeader.

    Unknown keys are ignored; for duplicate keys the last one wins.
    Returns None when ``t`` is not a positive integer or ``v1`` is not
    64 hex characters.
    """
    if not header or not isinstance(header, str):
        return None

    parts: dict[str, str] = {}
    for item in header.split(","):
        key, sep, value = item.strip().partition("=")
        key = key.strip()
        if not key or not sep:
            continue
        parts[key] = value.strip()

    t_raw = parts.get("t", "")
    v1 = parts.get("v1", "")

    if not (t_raw.isascii() and t_raw.isdigit()):
        return None
    timestamp = int(t_raw)
    if timestamp <= 0:
        return None

    if not _HEX64.fullmatch(v1):
        return None

    return SignatureHeader(timestamp=timestamp, signature_hex=v1.lower())


def _as_bytes(raw_body: bytes | str) -> bytes:
    if isinstance(raw_body, str):
        return raw_body.encode("utf-8")
    return raw_body


def compute_signature(raw_body: bytes | str, timestamp: int, secret: str) -> str:
    """Lowercase hex HMAC-SHA256 of ``"<timestamp>.<raw_body>"``."""
    signed_payload = f"{timestamp}.".encode("utf-8") + _as_bytes(raw_body)
    return hmac.new(
        secret.encode("utf-8"),
        signed_payload,
        hashlib.sha256,
    ).hexdigest()


def sign(raw_body: bytes | str, secret: str, timestamp: int | None = None) -> str:
    """Build a ``psp-signature`` header value for a body."""
    ts = timestamp if timestamp is not None else int(time.time())
    return f"t={ts},v1={compute_signature(raw_body, ts, secret)}"


def verify_signature(raw_body: bytes | str, header: str | None, secret: str) -> bool:
    """Verify a PSP webhook signature.

    Args:
        raw_body: Request body exactly as received
        header: Value of the psp-signature header
        secret: Shared webhook secret

    Returns:
        True if the header parses and its v1 matches the expected HMAC
    """
    parsed = parse_signature_header(header)
    if parsed is None:
        return False

    expected = compute_signature(raw_body, parsed.timestamp, secret)
    return hmac.compare_digest(expected, parsed.signature_hex)


def check_signature(raw_body: bytes | str, header: str | None, secret: str) -> SignatureHeader:
    """Like verify_signature() but raises AuthFailure with the 401 reason."""
    if not header:
        raise AuthFailure("missing psp-signature")
    if not verify_signature(raw_body, header, secret):
        raise AuthFailure("invalid signature")
    # verify_signature() already proved the header parses
    return parse_signature_header(header)  # type: ignore[return-value]
