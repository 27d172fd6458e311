# -*- coding: utf-8 -*-
"""Batch value type."""

from dataclasses import dataclass, field, replace
from typing import Any, Iterable, Iterator, Tuple


@dataclass(frozen=True)
class Batch:
    """
    Elements collected by one DStream during one tick (or one window).

    Batches are immutable. ``index`` counts the batches a single DStream has
    emitted, starting at 1; ``tick`` is the clock tick that produced it.
    For Source, Map and Filter streams both numbers advance together; a
    window only emits on slide ticks, so its ``index`` grows slower than
    ``tick``.

    The batch covers the half-open interval ``[start, end)`` in seconds
    since the epoch.
    """
    stream: str
    index: int
    tick: int
    start: float
    end: float
    elements: Tuple[Any, ...] = field(default_factory=tuple)

    def __post_init__(self):
        if not isinstance(self.elements, tuple):
            object.__setattr__(self, 'elements', tuple(self.elements))

    @classmethod
    def empty(cls, stream: str, index: int, tick: int, start: float, end: float) -> "Batch":
        return cls(stream=stream, index=index, tick=tick, start=start, end=end)

    @property
    def duration(self) -> float:
        return self.end - self.start

    @property
    def is_empty(self) -> bool:
        return not self.elements

    def derive(self, stream: str, elements: Iterable[Any]) -> "Batch":
        """Batch for a downstream Map/Filter: same index, tick and interval."""
        return replace(self, stream=stream, elements=tuple(elements))

    def __len__(self) -> int:
        return len(self.elements)

    def __iter__(self) -> Iterator[Any]:
        return iter(self.elements)

    def __getitem__(self, item):
        return self.elements[item]

    def __repr__(self):
        return (f"Batch(stream={self.stream!r}, index={self.index}, tick={self.tick}, "
                f"size={len(self.elements)})")
