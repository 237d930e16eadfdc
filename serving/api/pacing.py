"""
Minimum-interval pacing for sequential calls against the platform.

The bulk runner scores one contact at a time; the pacer keeps consecutive
iterations at least ``min_interval`` seconds apart so a large contact list
does not hammer the scoring procedure.
"""
from __future__ import annotations

import asyncio
import time
from typing import Optional


class RequestPacer:
    def __init__(self, min_interval: float = 0.1):
        if min_interval < 0:
            raise ValueError(f"min_interval must be >= 0, got {min_interval}")
        self.min_interval = min_interval
        self.last_mark: Optional[float] = None
        self.wait_count = 0

    async def wait(self) -> float:
        """
        Sleep until ``min_interval`` has passed since the previous call.

        The first call waits the full interval, matching a fixed pause after
        each processed item. Returns the number of seconds slept.
        """
        self.wait_count += 1
        if self.min_interval == 0:
            self.last_mark = time.monotonic()
            return 0.0

        now = time.monotonic()
        if self.last_mark is None:
            delay = self.min_interval
        else:
            delay = max(0.0, self.min_interval - (now - self.last_mark))

        if delay > 0:
            await asyncio.sleep(delay)
        self.last_mark = time.monotonic()
        return delay
