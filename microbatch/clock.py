# -*- coding: utf-8 -*-
"""
Batch clocks.

The clock is the only source of time for a pipeline. ``tick()`` blocks until
the next interval boundary and returns ``(tick_index, occurred)``; once
cancelled it returns ``occurred=False`` straight away. Clocks never raise.
"""

import asyncio
import logging
from typing import Optional, Tuple

logger = logging.getLogger(__name__)


class BatchClock:
    """
    Periodic ticker backed by the event loop's monotonic clock.

    The schedule is anchored at the first ``tick()`` call: tick ``n`` fires at
    ``anchor + n * interval``. If the consumer falls more than a full interval
    behind, the schedule is re-anchored rather than firing a burst of
    catch-up ticks.
    """

    def __init__(self, interval: float):
        if interval <= 0:
            raise ValueError(f"clock interval must be positive, got {interval}")
        self.interval = float(interval)
        self.index = 0
        self._cancelled = False
        self._wakeup: Optional[asyncio.Event] = None
        self._anchor: Optional[float] = None
        self._fired = 0

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        """Stop the clock; a pending ``tick()`` returns ``occurred=False``."""
        if self._cancelled:
            return
        self._cancelled = True
        if self._wakeup is not None:
            self._wakeup.set()
        logger.debug(f"Clock cancelled at tick {self.index}")

    async def tick(self) -> Tuple[int, bool]:
        if self._cancelled:
            return self.index, False

        loop = asyncio.get_running_loop()
        if self._wakeup is None:
            self._wakeup = asyncio.Event()
        if self._anchor is None:
            self._anchor = loop.time()

        deadline = self._anchor + (self._fired + 1) * self.interval
        delay = deadline - loop.time()

        if delay < -self.interval:
            logger.warning(
                f"Clock fell {-delay:.3f}s behind at tick {self.index}; re-anchoring schedule"
            )
            self._anchor = loop.time() - (self._fired + 1) * self.interval
            delay = 0.0

        if delay > 0:
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass

        if self._cancelled:
            return self.index, False

        self._fired += 1
        self.index += 1
        return self.index, True


class ManualClock(BatchClock):
    """
    Clock that fires only when told to.

    ``advance(n)`` releases ``n`` ticks. With ``wait=True`` (the default) it
    returns once the consumer has taken all of them and come back for more,
    i.e. once those ticks have been fully processed.

    Example:
        clock = ManualClock(1.0)
        ssc = StreamingContext(1.0, clock=clock)
        ...
        await ssc.start()
        await clock.advance()      # tick 1 processed
    """

    def __init__(self, interval: float = 1.0):
        super().__init__(interval)
        self._permits = 0
        self._wakeup = asyncio.Event()
        self._idle = asyncio.Event()

    @property
    def pending(self) -> int:
        return self._permits

    def cancel(self) -> None:
        super().cancel()
        # release anyone blocked in advance()
        self._idle.set()

    async def tick(self) -> Tuple[int, bool]:
        while self._permits == 0 and not self._cancelled:
            self._wakeup.clear()
            self._idle.set()
            await self._wakeup.wait()
        self._idle.clear()

        if self._cancelled:
            return self.index, False

        self._permits -= 1
        self.index += 1
        return self.index, True

    async def advance(self, n: int = 1, wait: bool = True) -> int:
        """Release ``n`` ticks; returns the index of the last released tick."""
        if n < 1:
            raise ValueError(f"n must be >= 1, got {n}")
        target = self.index + self._permits + n
        self._permits += n
        self._idle.clear()
        self._wakeup.set()

        if wait:
            while not self._cancelled:
                await self._idle.wait()
                if self.index >= target:
                    break
        return target
