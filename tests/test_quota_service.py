"""QuotaTracker 单元测试。"""

from __future__ import annotations

import json
from typing import Optional

import pytest

from naim_banana.services.errors import PersistenceError
from naim_banana.services.quota_service import RATE_LIMIT_KEY, QuotaRecord, QuotaTracker, parse_record

DAY_MS = 86_400_000


class FakeClock:
    """Manually advanced millisecond clock."""

    def __init__(self, now: int = 0) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now


class RecordingStorage:
    """In-memory storage that records every read and write."""

    def __init__(self, initial: Optional[bytes] = None) -> None:
        self.value = initial
        self.reads: list[str] = []
        self.writes: list[tuple[str, bytes]] = []
        self.fail_reads = False
        self.fail_writes = False

    def read(self, key: str) -> Optional[bytes]:
        self.reads.append(key)
        if self.fail_reads:
            raise PersistenceError("disk unavailable")
        return self.value

    def write(self, key: str, value: bytes) -> None:
        if self.fail_writes:
            raise PersistenceError("quota exceeded")
        self.writes.append((key, value))
        self.value = value

    def record(self) -> dict:
        assert self.value is not None
        return json.loads(self.value)


def make_tracker(storage=None, limit: int = 3, now: int = 0):
    clock = FakeClock(now)
    storage = storage if storage is not None else RecordingStorage()
    tracker = QuotaTracker(storage, limit=limit, window_duration_ms=DAY_MS, clock=clock)
    return tracker, storage, clock


def stored(count: int, window_start: int) -> bytes:
    return json.dumps({"count": count, "windowStart": window_start}).encode()


def test_empty_storage_creates_and_persists_fresh_record():
    tracker, storage, _ = make_tracker(now=1_000)

    assert tracker.current_count() == 0
    assert storage.writes == [(RATE_LIMIT_KEY, stored(0, 1_000))]


def test_valid_record_is_returned_without_rewrite():
    tracker, storage, _ = make_tracker(RecordingStorage(stored(2, 500)), now=1_000)

    assert tracker.load_or_init() == QuotaRecord(count=2, window_start=500)
    assert storage.writes == []


def test_every_query_rereads_storage():
    tracker, storage, _ = make_tracker(RecordingStorage(stored(1, 0)))

    tracker.current_count()
    tracker.can_consume()
    tracker.consume()

    assert storage.reads == [RATE_LIMIT_KEY] * 3


def test_consume_counts_within_window_until_limit():
    tracker, storage, clock = make_tracker(limit=3)

    for expected in (1, 2, 3):
        assert tracker.can_consume() is True
        assert tracker.consume() == expected
        clock.now += 1_000

    assert tracker.current_count() == 3
    assert tracker.can_consume() is False
    assert tracker.remaining() == 0
    assert storage.record() == {"count": 3, "windowStart": 0}


def test_consume_does_not_check_limit():
    tracker, _, _ = make_tracker(RecordingStorage(stored(3, 0)), limit=3)

    assert tracker.consume() == 4


def test_daily_limit_scenario():
    tracker, _, clock = make_tracker(limit=1, now=0)

    assert tracker.can_consume() is True
    assert tracker.consume() == 1
    assert tracker.can_consume() is False

    clock.now = DAY_MS + 1
    assert tracker.can_consume() is True


def test_window_boundary_is_inclusive():
    tracker, _, clock = make_tracker(RecordingStorage(stored(1, 0)), limit=1)

    clock.now = DAY_MS
    assert tracker.current_count() == 1

    clock.now = DAY_MS + 1
    assert tracker.current_count() == 0


def test_expired_record_resets_idempotently():
    storage = RecordingStorage(stored(5, 1_000))
    tracker, _, clock = make_tracker(storage, now=1_000 + DAY_MS + 5)

    first = tracker.load_or_init()
    second = tracker.load_or_init()

    assert first == QuotaRecord(count=0, window_start=clock.now)
    assert second == first
    assert len(storage.writes) == 1


def test_new_window_starts_from_reset_time():
    tracker, _, clock = make_tracker(RecordingStorage(stored(1, 0)), limit=1)

    clock.now = DAY_MS + 10
    tracker.consume()
    clock.now = 2 * DAY_MS

    assert tracker.current_count() == 1


@pytest.mark.parametrize(
    "raw",
    [
        b"not json at all",
        b"\xff\xfe\x00garbage",
        b"[]",
        b'"text"',
        b"{}",
        b'{"count": "3", "windowStart": 0}',
        b'{"count": -1, "windowStart": 0}',
        b'{"count": true, "windowStart": 0}',
        b'{"count": 1.5, "windowStart": 0}',
        b'{"count": 1}',
        b'{"count": 1, "windowStart": null}',
        b'{"count": 1, "windowStart": -20}',
        pytest.param(b"[" * 100_000, id="deeply-nested"),
    ],
)
def test_corrupt_record_behaves_like_empty_storage(raw):
    corrupt_tracker, corrupt_storage, _ = make_tracker(RecordingStorage(raw), now=42)
    empty_tracker, empty_storage, _ = make_tracker(now=42)

    assert corrupt_tracker.load_or_init() == empty_tracker.load_or_init() == QuotaRecord(0, 42)
    assert corrupt_storage.writes == empty_storage.writes == [(RATE_LIMIT_KEY, stored(0, 42))]


def test_legacy_last_reset_field_is_accepted():
    raw = json.dumps({"count": 1, "lastReset": 100}).encode()

    assert parse_record(raw) == QuotaRecord(count=1, window_start=100)


def test_far_future_window_start_is_reset():
    tracker, _, clock = make_tracker(RecordingStorage(stored(1, 10 * DAY_MS)), now=DAY_MS)

    assert tracker.load_or_init() == QuotaRecord(count=0, window_start=clock.now)


def test_small_clock_skew_is_tolerated():
    tracker, _, _ = make_tracker(RecordingStorage(stored(1, 5_000)), now=1_000)

    assert tracker.current_count() == 1


def test_read_failure_falls_back_to_fresh_record():
    storage = RecordingStorage(stored(1, 0))
    storage.fail_reads = True
    tracker, _, _ = make_tracker(storage, now=7)

    assert tracker.load_or_init() == QuotaRecord(0, 7)
    assert storage.writes == [(RATE_LIMIT_KEY, stored(0, 7))]


def test_write_failure_propagates():
    storage = RecordingStorage(stored(0, 0))
    tracker, _, _ = make_tracker(storage)
    storage.fail_writes = True

    with pytest.raises(PersistenceError):
        tracker.consume()
    assert storage.record() == {"count": 0, "windowStart": 0}


def test_os_error_on_write_is_wrapped():
    class BrokenStorage:
        def read(self, key):
            return None

        def write(self, key, value):
            raise OSError("read-only file system")

    tracker, _, _ = make_tracker(BrokenStorage())

    with pytest.raises(PersistenceError):
        tracker.current_count()


def test_trackers_sharing_storage_see_each_other():
    storage = RecordingStorage()
    first, _, clock = make_tracker(storage, limit=2)
    second = QuotaTracker(storage, limit=2, window_duration_ms=DAY_MS, clock=clock)

    first.consume()
    second.consume()

    assert first.current_count() == 2
    assert first.can_consume() is False


def test_invalid_configuration_is_rejected():
    with pytest.raises(ValueError):
        QuotaTracker(RecordingStorage(), limit=-1)
    with pytest.raises(ValueError):
        QuotaTracker(RecordingStorage(), limit=1, window_duration_ms=0)
