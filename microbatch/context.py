# -*- coding: utf-8 -*-
"""
StreamingContext: lifecycle and scheduling of a micro-batch pipeline.

One scheduler task drives the clock and is the only writer of pipeline
state (window buffers, batch counters, tick index). Source adapters and
output actions live in their own concurrency domains and talk to the
scheduler only through ``drain()`` and ``on_batch()``.

Lifecycle::

    CREATED --start()--> RUNNING --stop()--> STOPPING --> STOPPED

Cancellation is cooperative. ``stop()`` cancels the clock and the scheduler
notices at the next tick boundary; a tick that has already started always
runs to completion, outputs included, before the context reaches STOPPED.

Example:
    ssc = StreamingContext(batch_interval=2.0)
    logs = ssc.simulated_log_stream()
    logs.map(str.upper).filter(lambda l: "ERROR" in l).window(10.0, 4.0).print(10)

    await ssc.start()
    try:
        await ssc.await_termination(timeout=30.0)
    except TerminationTimeoutError:
        pass
    await ssc.stop()
"""

import asyncio
import logging
import time
from enum import Enum
from typing import Any, Iterable, List, Optional, Sequence

from .clock import BatchClock
from .config import MicrobatchConfig
from .dstream import DStream, NodeKind
from .errors import (
    AlreadyStartedError,
    ContextStoppedError,
    InvalidDurationError,
    NoOutputOperationsError,
    NotStartedError,
    OutputError,
    TerminationTimeoutError,
    TickError,
)
from .graph import DStreamGraph
from .metrics import MetricsCollector
from .sources import QueueSource, SequenceSource, SimulatedLogSource, SocketTextSource, SourceAdapter
from .window import Duration, to_seconds

logger = logging.getLogger(__name__)


class ContextState(Enum):
    """Streaming context lifecycle states."""
    CREATED = "created"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"


class StreamingContext:
    """
    Owner of a DStream graph, its clock and its scheduler.

    Args:
        batch_interval: Seconds (or ``timedelta``) between ticks; defaults to
            ``config.engine.batch_interval``
        clock: Clock to drive the scheduler; a ``BatchClock`` by default.
            Its interval must match ``batch_interval``.
        config: Settings; loaded from the environment when omitted
        metrics: Metrics collector; one is created when omitted
        name: Name used in logs and metric labels
    """

    def __init__(self, batch_interval: Optional[Duration] = None, *,
                 clock: Optional[BatchClock] = None,
                 config: Optional[MicrobatchConfig] = None,
                 metrics: Optional[MetricsCollector] = None,
                 name: str = "microbatch"):
        self.config = config or MicrobatchConfig()
        if batch_interval is None:
            batch_interval = self.config.engine.batch_interval
        interval = to_seconds(batch_interval)
        if interval <= 0:
            raise InvalidDurationError(f"batch interval must be positive, got {interval}s")

        if clock is None:
            clock = BatchClock(interval)
        elif abs(clock.interval - interval) > 1e-9:
            raise InvalidDurationError(
                f"clock interval {clock.interval}s does not match batch interval {interval}s"
            )

        self.name = name
        self.batch_interval = interval
        self.clock = clock
        self.graph = DStreamGraph(interval)
        self.metrics = metrics or MetricsCollector(enabled=self.config.operational.enable_metrics)

        self._state = ContextState.CREATED
        self._cancelled = False
        self._scheduler: Optional[asyncio.Task] = None
        self._stopped = asyncio.Event()
        self._errors: "asyncio.Queue[TickError]" = asyncio.Queue(
            maxsize=self.config.engine.error_queue_size
        )
        self._zero_time = 0.0
        self.tick_index = 0
        self._in_flight: Optional[int] = None

        logger.info(f"Created StreamingContext with batch duration: {interval}s")

    # State

    @property
    def state(self) -> ContextState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state is ContextState.RUNNING

    @property
    def in_flight_tick(self) -> Optional[int]:
        """Tick currently being processed, if any."""
        return self._in_flight

    @property
    def errors(self) -> "asyncio.Queue[TickError]":
        """Tick errors recovered by the scheduler, oldest first."""
        return self._errors

    def drain_errors(self) -> List[TickError]:
        """Remove and return every error currently on the error channel."""
        drained = []
        while True:
            try:
                drained.append(self._errors.get_nowait())
            except asyncio.QueueEmpty:
                return drained

    # Sources

    def source(self, adapter: SourceAdapter, name: Optional[str] = None) -> DStream:
        """Create an input DStream fed by ``adapter``."""
        return DStream(self.graph, self.graph.add_source(adapter, name))

    def queue_stream(self, maxsize: Optional[int] = None,
                     max_batch_size: Optional[int] = None,
                     name: Optional[str] = None) -> DStream:
        """Input DStream over a new ``QueueSource``; feed it via ``stream.source.offer()``."""
        adapter = QueueSource(
            maxsize=self.config.sources.buffer_size if maxsize is None else maxsize,
            max_batch_size=self.config.sources.max_batch_size if max_batch_size is None else max_batch_size,
        )
        return self.source(adapter, name)

    def sequence_stream(self, batches: Sequence[Iterable[Any]], name: Optional[str] = None) -> DStream:
        """Input DStream replaying ``batches``, one per tick."""
        return self.source(SequenceSource(batches), name)

    def socket_text_stream(self, host: str, port: int) -> DStream:
        """Input DStream of text lines read from ``host:port``."""
        adapter = SocketTextSource(
            host, port,
            maxsize=self.config.sources.buffer_size,
            reconnect_delay=self.config.sources.reconnect_delay,
            max_reconnect_delay=self.config.sources.max_reconnect_delay,
            line_limit=self.config.sources.socket_line_limit,
        )
        return self.source(adapter)

    def simulated_log_stream(self, period: Optional[float] = None,
                             seed: Optional[int] = None) -> DStream:
        """Input DStream of generated application log lines (one burst per ``period``)."""
        adapter = SimulatedLogSource(
            period=self.batch_interval if period is None else period,
            seed=seed,
            maxsize=self.config.sources.buffer_size,
        )
        return self.source(adapter)

    def _sources(self) -> List[SourceAdapter]:
        return [node.source for node in self.graph.nodes if node.kind is NodeKind.SOURCE]

    # Lifecycle

    async def start(self) -> None:
        """
        Start the sources and the scheduler.

        Raises:
            AlreadyStartedError: the context is running or stopping
            ContextStoppedError: the context has already been stopped
            NoOutputOperationsError: no output action is registered
        """
        if self._state in (ContextState.RUNNING, ContextState.STOPPING):
            raise AlreadyStartedError(f"StreamingContext {self.name} is already {self._state.value}")
        if self._state is ContextState.STOPPED:
            raise ContextStoppedError(f"StreamingContext {self.name} has been stopped and cannot be restarted")
        if not self.graph.outputs:
            raise NoOutputOperationsError("no output operations registered, so nothing to execute")

        logger.info("Starting StreamingContext...")
        self.graph.freeze()

        started: List[SourceAdapter] = []
        try:
            for adapter in self._sources():
                await adapter.start()
                started.append(adapter)
        except Exception:
            logger.exception("Failed to start sources")
            for adapter in reversed(started):
                await self._stop_source(adapter)
            raise

        self._zero_time = time.time()
        self._state = ContextState.RUNNING
        self._scheduler = asyncio.create_task(self._run(), name=f"{self.name}-scheduler")
        logger.info(
            f"StreamingContext started: {len(self.graph)} streams, {len(self.graph.outputs)} outputs"
        )

    async def await_termination(self, timeout: Optional[Duration] = None) -> None:
        """
        Wait until the context has stopped.

        The timeout only bounds the wait; it does not stop the context.

        Raises:
            TerminationTimeoutError: ``timeout`` elapsed first
        """
        if timeout is None:
            await self._stopped.wait()
            return

        seconds = to_seconds(timeout)
        logger.debug(f"Waiting for termination (timeout: {seconds}s)...")
        try:
            await asyncio.wait_for(self._stopped.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            raise TerminationTimeoutError(seconds) from None

    async def stop(self) -> None:
        """
        Stop the pipeline.

        Waits for the in-flight tick (if any) to finish, then stops the
        sources and drops window state. Calling ``stop()`` again, or
        concurrently, waits for the same shutdown and returns quietly.

        Raises:
            NotStartedError: the context was never started
        """
        if self._state is ContextState.CREATED:
            raise NotStartedError(f"StreamingContext {self.name} was never started")
        if self._state is ContextState.STOPPED:
            return

        if self._state is ContextState.RUNNING:
            logger.info("Stopping StreamingContext...")
            self._state = ContextState.STOPPING
            self._cancelled = True
            self.clock.cancel()
            if self._in_flight is not None:
                logger.info(f"Waiting for in-flight tick {self._in_flight} to complete")

        if asyncio.current_task() is self._scheduler:
            # stop() from inside an output action; the scheduler shuts down
            # once the current tick returns
            return
        await self._stopped.wait()

    async def __aenter__(self) -> "StreamingContext":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self._state in (ContextState.RUNNING, ContextState.STOPPING):
            await self.stop()
        return False

    # Scheduler

    async def _run(self) -> None:
        try:
            while True:
                tick, occurred = await self.clock.tick()
                # the clock may have fired just before stop() cancelled it
                if not occurred or self._cancelled:
                    break
                await self._process_tick(tick)
        except Exception:
            logger.exception(f"Scheduler for {self.name} failed; shutting down")
        finally:
            self._state = ContextState.STOPPING
            self._cancelled = True
            self.clock.cancel()
            await self._shutdown()

    async def _process_tick(self, tick: int) -> None:
        self.tick_index = tick
        self._in_flight = tick
        started = time.perf_counter()
        tick_start = self._zero_time + (tick - 1) * self.batch_interval
        try:
            try:
                result = self.graph.evaluate(tick, tick_start)
            except TickError as e:
                logger.error(f"Tick {tick} aborted: {e}")
                self._report(e)
                return

            for error in result.source_errors:
                self._report(error)
            self.graph.commit(result)

            for batch in result.batches.values():
                self.metrics.record_batch(batch.stream, len(batch))
            logger.debug(f"Tick {tick}: {len(result.batches)} streams emitted")

            for binding, batch in self.graph.deliveries(result):
                try:
                    await binding.action(batch, tick)
                except Exception as e:
                    error = OutputError(tick, binding.action.name, e)
                    logger.error(f"Output {binding.action.name} on {batch.stream} failed at tick {tick}: {e}")
                    self.metrics.record_output_error(binding.action.name)
                    self._report(error)
        finally:
            self._in_flight = None
            self._record_dropped()
            self.metrics.record_tick(self.name, time.perf_counter() - started)

    def _record_dropped(self) -> None:
        for node in self.graph.nodes:
            dropped = getattr(node.source, "dropped", None)
            if dropped:
                self.metrics.record_dropped(node.name, dropped)

    def _report(self, error: TickError) -> None:
        self.metrics.record_tick_error(self.name, error)
        if self._errors.full():
            dropped = self._errors.get_nowait()
            logger.warning(f"Error channel full, discarding oldest error: {dropped}")
        self._errors.put_nowait(error)

    async def _shutdown(self) -> None:
        for adapter in self._sources():
            await self._stop_source(adapter)
        self.graph.release()
        self._state = ContextState.STOPPED
        self._stopped.set()
        logger.info(f"StreamingContext stopped after {self.tick_index} ticks")

    @staticmethod
    async def _stop_source(adapter: SourceAdapter) -> None:
        try:
            await adapter.stop()
        except Exception as e:
            logger.error(f"Failed to stop source {adapter.name}: {e}")
