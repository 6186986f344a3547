"""Wall-clock helpers."""

from __future__ import annotations

import time
from typing import Callable

Clock = Callable[[], int]

ONE_DAY_MS = 24 * 60 * 60 * 1000


def now_ms() -> int:
    """Return the current wall-clock time in milliseconds since the epoch."""
    return int(time.time() * 1000)
