"""Time helpers shared by the rate limit services."""

from __future__ import annotations

import time
from typing import Callable

# Returns the current time as integer epoch milliseconds.
Clock = Callable[[], int]


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""

    return int(time.time() * 1000)
