"""
Receipt ingestion, persistence and retrieval.

Ingestion path (one unit, in this order):
1. validate/normalize the payload (no store access)
2. fingerprint + dedup marker (try_acquire, TTL 60s)
3. primary record   receipt:<id>                    -> JSON, metadata {symbol, action}
4. index entry      idx:<epoch ms, 13 digits>:<id>  -> symbol, TTL 14 days

A failed primary write aborts before the index write and releases the marker.
A failed index write is logged; the receipt stays reachable by id.
"""
from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass
from typing import Any, List, Mapping, Optional, Tuple

from receipt_api.core.errors import StoreError
from receipt_api.schemas.receipt import Receipt
from receipt_api.services.kv_store import KVStore
from receipt_api.services.receipt_dedup import DEDUP_TTL_SECONDS, DedupGuard, compute_fingerprint
from receipt_api.services.receipt_validation import (
    NOTE_MAX_LENGTH,
    SOURCE_MAX_LENGTH,
    ReceiptDraft,
    validate_receipt,
)
from receipt_api.utils.clock import Clock, iso_from_epoch, system_clock

logger = logging.getLogger(__name__)

RECEIPT_KEY_PREFIX = "receipt:"
INDEX_KEY_PREFIX = "idx:"
INDEX_TTL_SECONDS = 14 * 24 * 60 * 60
DEFAULT_LIST_LIMIT = 50
MAX_LIST_LIMIT = 200


def receipt_key(receipt_id: str) -> str:
    return RECEIPT_KEY_PREFIX + receipt_id


def index_key(created_ms: int, receipt_id: str) -> str:
    # Zero padding keeps lexicographic order equal to chronological order
    return f"{INDEX_KEY_PREFIX}{created_ms:013d}:{receipt_id}"


def receipt_id_from_index_key(key: str) -> str:
    return key.split(":", 2)[2]


@dataclass
class IngestResult:
    receipt: Optional[Receipt]
    duplicate: bool = False
    indexed: bool = True


class ReceiptService:
    def __init__(
        self,
        store: KVStore,
        *,
        clock: Clock = system_clock,
        dedup_ttl_seconds: int = DEDUP_TTL_SECONDS,
        index_ttl_seconds: int = INDEX_TTL_SECONDS,
        note_max_length: int = NOTE_MAX_LENGTH,
        source_max_length: int = SOURCE_MAX_LENGTH,
        default_limit: int = DEFAULT_LIST_LIMIT,
        max_limit: int = MAX_LIST_LIMIT,
    ):
        self.store = store
        self.clock = clock
        self.dedup = DedupGuard(store, ttl_seconds=dedup_ttl_seconds)
        self.index_ttl_seconds = index_ttl_seconds
        self.note_max_length = note_max_length
        self.source_max_length = source_max_length
        self.default_limit = default_limit
        self.max_limit = max_limit

    def ingest(self, payload: Mapping[str, Any], request_id: Optional[str] = None) -> IngestResult:
        """
        Validate, dedup and persist one receipt.

        Raises ValidationFailed before any store call, StoreError if the marker
        or the primary write fails. Returns duplicate=True without writing when
        the fingerprint was seen within the dedup window.
        """
        draft = validate_receipt(
            payload,
            clock=self.clock,
            note_max_length=self.note_max_length,
            source_max_length=self.source_max_length,
        )
        fingerprint = compute_fingerprint(draft)
        if not self.dedup.try_acquire(fingerprint, request_id=request_id):
            return IngestResult(receipt=None, duplicate=True)

        try:
            receipt, created_ms = self._write_primary(draft)
        except StoreError:
            self.dedup.release(fingerprint)
            raise

        indexed = self._write_index(receipt, created_ms)
        logger.info(
            "request_id=%s decision=STORED id=%s symbol=%s action=%s indexed=%s",
            request_id,
            receipt.id,
            receipt.symbol,
            receipt.action,
            indexed,
        )
        return IngestResult(receipt=receipt, duplicate=False, indexed=indexed)

    def _write_primary(self, draft: ReceiptDraft) -> Tuple[Receipt, int]:
        now = self.clock()
        receipt = Receipt(
            id=str(uuid.uuid4()),
            created_at=iso_from_epoch(now),
            **draft.to_dict(),
        )
        self.store.put(
            receipt_key(receipt.id),
            receipt.model_dump_json(),
            metadata={"symbol": receipt.symbol, "action": receipt.action},
        )
        return receipt, int(now * 1000)

    def _write_index(self, receipt: Receipt, created_ms: int) -> bool:
        key = index_key(created_ms, receipt.id)
        try:
            self.store.put(key, receipt.symbol, ttl_seconds=self.index_ttl_seconds)
            return True
        except StoreError as e:
            logger.warning("decision=INDEX_FAILED id=%s key=%s error=%s", receipt.id, key, e)
            return False

    def get(self, receipt_id: str) -> Optional[Receipt]:
        raw = self.store.get(receipt_key(receipt_id))
        if raw is None:
            return None
        return Receipt.model_validate(json.loads(raw))

    def delete(self, receipt_id: str) -> bool:
        """Remove the primary record. The index entry is filtered out of listings until it expires."""
        return self.store.delete(receipt_key(receipt_id))

    def clamp_limit(self, limit: Optional[int]) -> int:
        if limit is None:
            return self.default_limit
        return max(1, min(self.max_limit, limit))

    def list_recent(self, limit: Optional[int] = None) -> List[Receipt]:
        limit = self.clamp_limit(limit)
        keys = sorted(self.store.list_keys(INDEX_KEY_PREFIX))
        newest = list(reversed(keys[-limit:]))

        receipts: List[Receipt] = []
        for key in newest:
            receipt = self.get(receipt_id_from_index_key(key))
            # Record expired or deleted since the index entry was written
            if receipt is not None:
                receipts.append(receipt)
        return receipts
