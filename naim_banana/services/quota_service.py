"""Durable rolling-window generation quota."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Optional

from naim_banana.services.errors import PersistenceError
from naim_banana.services.storage_service import KeyValueStorage
from naim_banana.utils.clock import ONE_DAY_MS, Clock, now_ms

RATE_LIMIT_KEY = "naim-banana-rate-limit"

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class QuotaRecord:
    """Usage consumed since ``window_start`` (milliseconds since epoch)."""

    count: int
    window_start: int

    def to_bytes(self) -> bytes:
        return json.dumps({"count": self.count, "windowStart": self.window_start}).encode("utf-8")


def _as_int(value: Any) -> Optional[int]:
    # bool is an int subclass and never a valid counter
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    return value


def parse_record(raw: bytes) -> Optional[QuotaRecord]:
    """Decode a stored record, returning None for anything malformed."""
    try:
        data = json.loads(raw.decode("utf-8"))
    # deeply nested arrays overflow the decoder's recursion
    except (ValueError, RecursionError):
        return None
    if not isinstance(data, dict):
        return None

    count = _as_int(data.get("count"))
    window_start = _as_int(data.get("windowStart", data.get("lastReset")))
    if count is None or window_start is None:
        return None
    if count < 0 or window_start < 0:
        return None
    return QuotaRecord(count=count, window_start=window_start)


class QuotaTracker:
    """Count generations per rolling window, persisted through ``storage``.

    Storage is the source of truth: every call re-reads the record and
    re-checks the window, so expiry happens lazily on the first access after
    the window has elapsed. Missing, unreadable or malformed records are
    replaced by a fresh window exactly like an expired one.

    ``consume`` is a plain read-modify-write. Two processes sharing the same
    storage can both read the same count and lose one increment.
    """

    def __init__(
        self,
        storage: KeyValueStorage,
        limit: int,
        window_duration_ms: int = ONE_DAY_MS,
        key: str = RATE_LIMIT_KEY,
        clock: Clock = now_ms,
    ) -> None:
        if limit < 0:
            raise ValueError("limit 不能为负数")
        if window_duration_ms <= 0:
            raise ValueError("window_duration_ms 必须为正数")
        self.storage = storage
        self.limit = limit
        self.window_duration_ms = window_duration_ms
        self.key = key
        self._clock = clock

    def load_or_init(self) -> QuotaRecord:
        """Return the live record, starting a new window when needed."""
        now = self._clock()
        record = self._read()
        if record is not None and self._is_current(record, now):
            return record

        if record is not None:
            logger.info("Quota window started at %d expired; resetting", record.window_start)
        fresh = QuotaRecord(count=0, window_start=now)
        self._write(fresh)
        return fresh

    def current_count(self) -> int:
        return self.load_or_init().count

    def remaining(self) -> int:
        return max(0, self.limit - self.current_count())

    def can_consume(self) -> bool:
        return self.load_or_init().count < self.limit

    def consume(self) -> int:
        """Record one unit of usage and return the new count.

        Callers check ``can_consume`` first; this method does not.
        """
        record = self.load_or_init()
        updated = QuotaRecord(count=record.count + 1, window_start=record.window_start)
        self._write(updated)
        logger.info("Quota consumed: %d/%d", updated.count, self.limit)
        return updated.count

    def _is_current(self, record: QuotaRecord, now: int) -> bool:
        elapsed = now - record.window_start
        if elapsed > self.window_duration_ms:
            return False
        # a start further ahead than one window cannot come from clock skew
        if -elapsed > self.window_duration_ms:
            logger.warning("Quota window start %d lies in the future; resetting", record.window_start)
            return False
        return True

    def _read(self) -> Optional[QuotaRecord]:
        try:
            raw = self.storage.read(self.key)
        except (PersistenceError, OSError) as exc:
            logger.warning("Failed to read quota record, starting fresh: %s", exc)
            return None
        if raw is None:
            return None
        record = parse_record(raw)
        if record is None:
            logger.warning("Discarding malformed quota record under %r", self.key)
        return record

    def _write(self, record: QuotaRecord) -> None:
        try:
            self.storage.write(self.key, record.to_bytes())
        except PersistenceError:
            raise
        except OSError as exc:
            raise PersistenceError(f"保存配额记录失败：{exc}") from exc
