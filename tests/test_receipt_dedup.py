from receipt_api.services.receipt_dedup import (
    DedupGuard,
    compute_fingerprint,
    dedup_key,
    format_number,
)
from receipt_api.services.receipt_validation import validate_receipt


def _draft(**overrides):
    payload = {"symbol": "doge", "action": "buy", "price": 0.1, "size": 100}
    payload.update(overrides)
    return validate_receipt(payload)


def test_format_number_drops_trailing_zero():
    assert format_number(100.0) == "100"
    assert format_number(0.1) == "0.1"
    assert format_number(42000.5) == "42000.5"


def test_fingerprint_fields():
    assert compute_fingerprint(_draft()) == "DOGE|BUY|0.1|100|manual"


def test_fingerprint_ignores_note_and_timestamp():
    a = compute_fingerprint(_draft(note="first", ts="2024-01-01T00:00:00Z"))
    b = compute_fingerprint(_draft(note="retry", ts="2024-01-01T00:00:05Z"))
    assert a == b


def test_fingerprint_numeric_string_matches_number():
    assert compute_fingerprint(_draft(size="100")) == compute_fingerprint(_draft(size=100))


def test_fingerprint_changes_with_source():
    assert compute_fingerprint(_draft(source="bot")) != compute_fingerprint(_draft())


def test_dedup_key_is_bounded():
    key = dedup_key("X" * 1000)
    assert key.startswith("dedup:")
    assert len(key) == len("dedup:") + 64


def test_guard_blocks_within_ttl_and_allows_after(store, clock):
    guard = DedupGuard(store, ttl_seconds=60)
    fp = compute_fingerprint(_draft())

    assert guard.try_acquire(fp) is True
    clock.advance(30)
    assert guard.try_acquire(fp) is False
    # A blocked attempt does not extend the window
    clock.advance(31)
    assert guard.try_acquire(fp) is True


def test_release_allows_immediate_reacquire(store):
    guard = DedupGuard(store, ttl_seconds=60)
    assert guard.try_acquire("fp") is True
    guard.release("fp")
    assert guard.try_acquire("fp") is True
