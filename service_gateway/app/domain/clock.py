"""
Wall-clock helpers shared by the time-windowed gateway components.

Components take a ``Clock`` so tests can drive time explicitly.
"""

import time
from typing import Callable

Clock = Callable[[], int]


def epoch_millis() -> int:
    """Current wall-clock time in integer milliseconds since the epoch."""
    return time.time_ns() // 1_000_000
