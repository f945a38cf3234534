"""Wall-clock source used by the alert state machine.

Components take a ``Clock`` (any zero-argument callable returning epoch
seconds) so delay boundaries can be driven deterministically in tests.
"""

from __future__ import annotations

import time
from typing import Callable

Clock = Callable[[], float]


def system_clock() -> float:
    return time.time()


__all__ = ["Clock", "system_clock"]
