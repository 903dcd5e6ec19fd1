"""
Validate and normalize an incoming receipt payload.

Rules run in a fixed order and the first failure wins:
symbol -> action -> price -> size -> timestamp -> note/source.
Nothing here touches the store.
"""
from __future__ import annotations

import math
from dataclasses import asdict, dataclass
from typing import Any, Dict, Mapping, Optional

from receipt_api.core.errors import ValidationFailed
from receipt_api.utils.clock import Clock, system_clock, utc_now_iso

ALLOWED_ACTIONS = ("BUY", "SELL", "HOLD", "ALERT")
DEFAULT_SOURCE = "manual"
NOTE_MAX_LENGTH = 500
SOURCE_MAX_LENGTH = 120


@dataclass(frozen=True)
class ReceiptDraft:
    """A validated receipt that has not been persisted yet (no id / created_at)."""

    symbol: str
    action: str
    price: float
    size: float
    timestamp: str
    note: str
    source: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _is_absent(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def coerce_number(value: Any) -> float:
    """
    Best-effort numeric coercion. Returns NaN for anything that is not a number
    or a numeric string so callers only need an isfinite() check.
    """
    if isinstance(value, bool):
        return math.nan
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return math.nan
    return math.nan


def _optional_text(value: Any, max_length: int) -> Optional[str]:
    if value is None:
        return None
    text = value if isinstance(value, str) else str(value)
    return text[:max_length]


def validate_receipt(
    payload: Mapping[str, Any],
    *,
    clock: Clock = system_clock,
    note_max_length: int = NOTE_MAX_LENGTH,
    source_max_length: int = SOURCE_MAX_LENGTH,
) -> ReceiptDraft:
    """Return a normalized ReceiptDraft or raise ValidationFailed with the first failing reason."""
    if not isinstance(payload, Mapping):
        raise ValidationFailed("Body must be a JSON object", code="invalid_body")

    raw_symbol = payload.get("symbol")
    symbol = raw_symbol.strip() if isinstance(raw_symbol, str) else ""
    if not symbol:
        raise ValidationFailed("symbol is required")

    raw_action = payload.get("action")
    action = raw_action.strip().upper() if isinstance(raw_action, str) else ""
    if action not in ALLOWED_ACTIONS:
        raise ValidationFailed(f"action must be one of {', '.join(ALLOWED_ACTIONS)}")

    price = coerce_number(payload.get("price"))
    if not math.isfinite(price) or price <= 0:
        raise ValidationFailed("price must be a finite number > 0")

    raw_size = payload.get("size")
    size = 0.0 if _is_absent(raw_size) else coerce_number(raw_size)
    if not math.isfinite(size) or size < 0:
        raise ValidationFailed("size must be a finite number >= 0")

    # "ts" is the wire name; "timestamp" is accepted from older clients
    raw_ts = payload.get("ts")
    if _is_absent(raw_ts):
        raw_ts = payload.get("timestamp")
    timestamp = utc_now_iso(clock) if _is_absent(raw_ts) else str(raw_ts)

    note = _optional_text(payload.get("note"), note_max_length) or ""
    # note is kept verbatim; source is part of the fingerprint and is stripped
    source = (_optional_text(payload.get("source"), source_max_length) or "").strip() or DEFAULT_SOURCE

    return ReceiptDraft(
        symbol=symbol,
        action=action,
        price=price,
        size=size,
        timestamp=timestamp,
        note=note,
        source=source,
    )
