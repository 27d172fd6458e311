# -*- coding: utf-8 -*-
"""
Output actions.

Output actions are the terminal consumers of a DStream. The scheduler calls
``on_batch(batch, tick)`` for every batch the stream emits; the method may be
a coroutine. Raising is how an action reports failure: the engine logs the
error, publishes it on the context's error channel and carries on. Sinks are
best-effort.
"""

import inspect
import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, List, Optional, Union

from rich.console import Console

from .batch import Batch

logger = logging.getLogger(__name__)


class OutputAction(ABC):
    """Terminal consumer of a DStream's batches."""

    @property
    def name(self) -> str:
        return type(self).__name__

    @abstractmethod
    def on_batch(self, batch: Batch, tick: int) -> Union[None, Awaitable[None]]:
        """Handle one emitted batch."""

    async def __call__(self, batch: Batch, tick: int) -> None:
        result = self.on_batch(batch, tick)
        if inspect.isawaitable(result):
            await result


class ForeachAction(OutputAction):
    """Adapts a plain ``fn(batch, tick)`` callable (sync or async)."""

    def __init__(self, fn: Callable[[Batch, int], Any]):
        self.fn = fn

    @property
    def name(self) -> str:
        return getattr(self.fn, "__name__", repr(self.fn))

    def on_batch(self, batch: Batch, tick: int):
        return self.fn(batch, tick)


class PrintAction(OutputAction):
    """
    Print the first ``num`` elements of each batch.

    Output per batch::

        === Batch 3 (SimulatedLogStream_mapped_filtered) ===
        ERROR: DATABASE CONNECTION FAILED - TIMEOUT
        ... and 2 more elements
        Total elements in batch: 3
    """

    def __init__(self, num: int = 10, console: Optional[Console] = None):
        if num < 0:
            raise ValueError(f"num must be >= 0, got {num}")
        self.num = num
        self.console = console or Console(highlight=False)

    def on_batch(self, batch: Batch, tick: int) -> None:
        self.console.print()
        self.console.print(f"=== Batch {batch.index} ({batch.stream}) ===", style="bold", markup=False)
        for element in batch.elements[:self.num]:
            self.console.print(str(element), markup=False)
        if len(batch) > self.num:
            self.console.print(f"... and {len(batch) - self.num} more elements", style="dim", markup=False)
        self.console.print(f"Total elements in batch: {len(batch)}", markup=False)


class CollectAction(OutputAction):
    """Keep every delivered batch in memory."""

    def __init__(self):
        self.batches: List[Batch] = []
        self.ticks: List[int] = []

    def on_batch(self, batch: Batch, tick: int) -> None:
        self.batches.append(batch)
        self.ticks.append(tick)

    @property
    def elements(self) -> List[List[Any]]:
        """Elements of each collected batch, in delivery order."""
        return [list(batch.elements) for batch in self.batches]

    def clear(self) -> None:
        self.batches.clear()
        self.ticks.clear()
