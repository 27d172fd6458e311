# -*- coding: utf-8 -*-
"""Exception hierarchy for microbatch.

Three families:

- construction errors, raised synchronously by the call that builds the
  offending part of the pipeline
- lifecycle errors, raised by ``start()`` / ``stop()`` on a context in the
  wrong state
- tick errors, never raised to the caller; the scheduler reports them on the
  context's error channel and moves on to the next tick
"""

from typing import Optional


class MicrobatchError(Exception):
    """Base class for all microbatch errors."""


# Construction

class ConstructionError(MicrobatchError, ValueError):
    """Invalid pipeline definition."""


class InvalidDurationError(ConstructionError):
    """Batch interval, window or slide duration that the engine cannot honour."""


class GraphError(ConstructionError):
    """A DStream graph edit that would break the single-owner DAG."""


class NoOutputOperationsError(ConstructionError):
    """``start()`` called on a graph without any registered output."""


# Lifecycle

class LifecycleError(MicrobatchError, RuntimeError):
    """Operation not allowed in the context's current state."""


class AlreadyStartedError(LifecycleError):
    pass


class NotStartedError(LifecycleError):
    pass


class ContextStoppedError(LifecycleError):
    """A stopped context cannot be restarted."""


class TerminationTimeoutError(MicrobatchError, TimeoutError):
    """``await_termination`` gave up before the context stopped."""

    def __init__(self, timeout: float):
        super().__init__(f"context did not terminate within {timeout}s")
        self.timeout = timeout


# Tick

class TickError(MicrobatchError):
    """Failure while processing one tick.

    Attributes:
        tick: Index of the tick that failed
        stream: Name of the DStream (or output target) involved
        cause: The original exception
    """

    def __init__(self, tick: int, stream: str, cause: Optional[BaseException] = None):
        message = f"tick {tick} failed in {stream}"
        if cause is not None:
            message = f"{message}: {cause!r}"
        super().__init__(message)
        self.tick = tick
        self.stream = stream
        self.cause = cause


class TransformError(TickError):
    """A user map function or filter predicate raised."""


class SourceError(TickError):
    """A source adapter raised while being drained."""


class OutputError(TickError):
    """An output action raised."""
