"""
Dedup guard for receipt ingestion.

Fingerprint = SYMBOL|ACTION|price|size|source. Timestamp and note are left out
on purpose so a client retry with a fresh ts is still caught. The marker key is
the SHA-256 of the fingerprint and lives for DEDUP_TTL_SECONDS (default 60).
"""
from __future__ import annotations

import hashlib
import logging
from typing import Optional

from receipt_api.core.errors import StoreError
from receipt_api.services.kv_store import KVStore
from receipt_api.services.receipt_validation import ReceiptDraft

logger = logging.getLogger(__name__)

DEDUP_KEY_PREFIX = "dedup:"
DEDUP_TTL_SECONDS = 60
FINGERPRINT_DELIMITER = "|"


def format_number(value: float) -> str:
    """Render 100.0 as "100" and 0.1 as "0.1" so "100" and 100 fingerprint the same."""
    if value.is_integer():
        return str(int(value))
    return repr(value)


def compute_fingerprint(draft: ReceiptDraft) -> str:
    return FINGERPRINT_DELIMITER.join([
        draft.symbol.upper(),
        draft.action.upper(),
        format_number(draft.price),
        format_number(draft.size),
        draft.source,
    ])


def dedup_key(fingerprint: str) -> str:
    return DEDUP_KEY_PREFIX + hashlib.sha256(fingerprint.encode("utf-8")).hexdigest()


class DedupGuard:
    """Wraps the store's try_acquire with the receipt marker key and TTL."""

    def __init__(self, store: KVStore, ttl_seconds: int = DEDUP_TTL_SECONDS):
        self.store = store
        self.ttl_seconds = ttl_seconds

    def try_acquire(self, fingerprint: str, request_id: Optional[str] = None) -> bool:
        key = dedup_key(fingerprint)
        acquired = self.store.try_acquire(key, self.ttl_seconds)
        if not acquired:
            logger.warning(
                "request_id=%s decision=DEDUPED reason_code=DEDUP_KEY_IN_TTL key=%s",
                request_id,
                key[len(DEDUP_KEY_PREFIX):][:32],
            )
        return acquired

    def release(self, fingerprint: str) -> None:
        """Drop the marker so a retry after a failed write is not reported as a duplicate."""
        key = dedup_key(fingerprint)
        try:
            self.store.delete(key)
        except StoreError as e:
            logger.error("decision=MARKER_RELEASE_FAILED key=%s error=%s", key[len(DEDUP_KEY_PREFIX):][:32], e)
