# -*- coding: utf-8 -*-
"""
Sliding window state.

A window over a DStream keeps the last ``window_steps`` upstream batches in a
ring and concatenates them, oldest first, every ``slide_steps`` ticks.

Warm-up: until ``window_steps`` upstream batches have been seen the ring is
only partly filled, and the emitted windows are partial (fewer batches than a
full window). They are emitted, not withheld. With a window of 3 intervals
sliding every interval, emitted sizes go 1, 2, 3, 3, 3, ... for one element
per tick.
"""

import logging
from collections import deque
from datetime import timedelta
from typing import Deque, List, Tuple, Union

from .batch import Batch
from .errors import InvalidDurationError

logger = logging.getLogger(__name__)

Duration = Union[int, float, timedelta]

# Tolerance when checking that a float duration is a whole number of intervals.
_STEP_TOLERANCE = 1e-9


def to_seconds(duration: Duration) -> float:
    """Normalize a duration given as seconds or ``timedelta``."""
    if isinstance(duration, timedelta):
        return duration.total_seconds()
    if isinstance(duration, bool) or not isinstance(duration, (int, float)):
        raise InvalidDurationError(f"duration must be seconds or timedelta, got {duration!r}")
    return float(duration)


def duration_to_steps(duration: Duration, unit: float, what: str) -> int:
    """
    Convert ``duration`` to a whole number of ``unit`` steps.

    Raises:
        InvalidDurationError: if the duration is not positive or not a
            multiple of ``unit``
    """
    seconds = to_seconds(duration)
    if seconds <= 0:
        raise InvalidDurationError(f"{what} must be positive, got {seconds}s")

    steps = round(seconds / unit)
    if steps < 1 or abs(steps * unit - seconds) > _STEP_TOLERANCE * max(1.0, seconds):
        raise InvalidDurationError(
            f"{what} ({seconds}s) must be a multiple of {unit}s"
        )
    return steps


def window_steps(window_duration: Duration, slide_duration: Duration,
                 parent_slide: float, batch_interval: float) -> Tuple[int, int]:
    """
    Validate a window/slide pair and convert it to step counts.

    Returns:
        ``(buffer_length, slide_steps)``: the number of upstream batches the
        ring retains, and the number of clock ticks between emissions.
    """
    window = to_seconds(window_duration)
    slide = to_seconds(slide_duration)

    buffer_length = duration_to_steps(window, parent_slide, "window duration")
    duration_to_steps(slide, parent_slide, "slide duration")
    if slide > window + _STEP_TOLERANCE:
        raise InvalidDurationError(
            f"slide duration ({slide}s) must not exceed window duration ({window}s)"
        )

    return buffer_length, duration_to_steps(slide, batch_interval, "slide duration")


class WindowBuffer:
    """Bounded ring of the most recent upstream batches for one window node."""

    def __init__(self, length: int):
        if length < 1:
            raise ValueError(f"window buffer length must be >= 1, got {length}")
        self.length = length
        self._batches: Deque[Batch] = deque(maxlen=length)

    def push(self, batch: Batch) -> None:
        """Append a batch, evicting the oldest one once the ring is full."""
        self._batches.append(batch)

    def preview(self, batch: Batch) -> List[Batch]:
        """Batches the window would hold after ``push(batch)``, without mutating."""
        retained = list(self._batches)
        if len(retained) == self.length:
            retained = retained[1:]
        retained.append(batch)
        return retained

    def materialize(self) -> List[Batch]:
        return list(self._batches)

    @property
    def is_full(self) -> bool:
        return len(self._batches) == self.length

    def clear(self) -> None:
        self._batches.clear()

    def __len__(self) -> int:
        return len(self._batches)

    def __repr__(self):
        return f"WindowBuffer(length={self.length}, retained={len(self._batches)})"


def concat(stream: str, index: int, tick: int, batches: List[Batch]) -> Batch:
    """Concatenate ``batches`` oldest first into one window batch."""
    elements = []
    for batch in batches:
        elements.extend(batch.elements)
    start = batches[0].start if batches else 0.0
    end = batches[-1].end if batches else 0.0
    return Batch(stream=stream, index=index, tick=tick, start=start, end=end,
                 elements=tuple(elements))
