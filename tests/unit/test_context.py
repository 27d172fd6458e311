"""
Unit Tests for StreamingContext

Tests the lifecycle state machine, scheduling under a manual clock, graceful
shutdown with an in-flight tick, and recovery from tick errors.
"""

import asyncio

import pytest

from microbatch.clock import ManualClock
from microbatch.context import ContextState, StreamingContext
from microbatch.errors import (
    AlreadyStartedError,
    ContextStoppedError,
    GraphError,
    InvalidDurationError,
    NoOutputOperationsError,
    NotStartedError,
    OutputError,
    SourceError,
    TerminationTimeoutError,
    TransformError,
)
from microbatch.outputs import CollectAction
from microbatch.sources import QueueSource


class BrokenSource(QueueSource):
    """Source whose drain always fails."""

    name = "BrokenStream"

    def drain(self):
        raise ConnectionError("feed went away")


class TestConstruction:
    """Context construction"""

    def test_initial_state(self, ssc):
        assert ssc.state is ContextState.CREATED
        assert not ssc.is_running
        assert ssc.tick_index == 0
        assert ssc.in_flight_tick is None

    @pytest.mark.parametrize("interval", [0, -2.0])
    def test_rejects_non_positive_interval(self, isolated_config, interval):
        with pytest.raises(InvalidDurationError):
            StreamingContext(interval, config=isolated_config)

    def test_rejects_mismatched_clock(self, isolated_config):
        with pytest.raises(InvalidDurationError):
            StreamingContext(2.0, clock=ManualClock(1.0), config=isolated_config)

    def test_interval_defaults_to_config(self, isolated_config):
        isolated_config.engine.batch_interval = 0.5
        ssc = StreamingContext(config=isolated_config)
        assert ssc.batch_interval == 0.5
        assert ssc.clock.interval == 0.5

    def test_queue_stream_uses_source_config(self, ssc, isolated_config):
        isolated_config.sources.max_batch_size = 7
        stream = ssc.queue_stream()
        assert stream.source.max_batch_size == 7

    def test_socket_stream_uses_line_limit(self, ssc, isolated_config):
        isolated_config.sources.socket_line_limit = 1024
        stream = ssc.socket_text_stream("127.0.0.1", 9999)
        assert stream.source.line_limit == 1024


class TestLifecycle:
    """State machine and lifecycle errors"""

    @pytest.mark.asyncio
    async def test_stop_before_start(self, ssc):
        with pytest.raises(NotStartedError):
            await ssc.stop()

    @pytest.mark.asyncio
    async def test_start_without_outputs(self, ssc):
        ssc.sequence_stream([[1]]).map(str)
        with pytest.raises(NoOutputOperationsError):
            await ssc.start()
        assert ssc.state is ContextState.CREATED

    @pytest.mark.asyncio
    async def test_full_lifecycle(self, ssc):
        ssc.sequence_stream([[1]]).output(CollectAction())

        await ssc.start()
        assert ssc.state is ContextState.RUNNING
        with pytest.raises(AlreadyStartedError):
            await ssc.start()

        await ssc.stop()
        assert ssc.state is ContextState.STOPPED
        with pytest.raises(ContextStoppedError):
            await ssc.start()

        # stop is idempotent
        await ssc.stop()
        assert ssc.state is ContextState.STOPPED

    @pytest.mark.asyncio
    async def test_graph_is_frozen_after_start(self, ssc):
        numbers = ssc.sequence_stream([[1]])
        numbers.output(CollectAction())
        await ssc.start()
        try:
            with pytest.raises(GraphError):
                numbers.map(str)
            with pytest.raises(GraphError):
                ssc.queue_stream()
        finally:
            await ssc.stop()

    @pytest.mark.asyncio
    async def test_await_termination_timeout(self, ssc):
        ssc.sequence_stream([[1]]).output(CollectAction())
        await ssc.start()

        with pytest.raises(TerminationTimeoutError) as excinfo:
            await ssc.await_termination(timeout=0.01)

        assert excinfo.value.timeout == 0.01
        assert ssc.state is ContextState.RUNNING
        await ssc.stop()

    @pytest.mark.asyncio
    async def test_await_termination_returns_after_stop(self, ssc):
        ssc.sequence_stream([[1]]).output(CollectAction())
        await ssc.start()

        waiter = asyncio.create_task(ssc.await_termination())
        await asyncio.sleep(0)
        assert not waiter.done()

        await ssc.stop()
        await asyncio.wait_for(waiter, timeout=1.0)

    @pytest.mark.asyncio
    async def test_concurrent_stops(self, ssc):
        ssc.sequence_stream([[1]]).output(CollectAction())
        await ssc.start()

        await asyncio.gather(ssc.stop(), ssc.stop(), ssc.stop())

        assert ssc.state is ContextState.STOPPED

    @pytest.mark.asyncio
    async def test_async_context_manager(self, clock, isolated_config):
        collected = CollectAction()
        async with StreamingContext(1.0, clock=clock, config=isolated_config) as ssc:
            ssc.sequence_stream([[1], [2]]).output(collected)
            await ssc.start()
            await clock.advance(2)

        assert ssc.state is ContextState.STOPPED
        assert collected.elements == [[1], [2]]

    @pytest.mark.asyncio
    async def test_sources_started_and_stopped(self, ssc):
        stream = ssc.simulated_log_stream(period=0.01, seed=3)
        stream.output(CollectAction())

        await ssc.start()
        await asyncio.sleep(0.05)
        await ssc.stop()

        producer = stream.source
        bursts = producer.bursts
        assert bursts >= 1
        await asyncio.sleep(0.05)
        assert producer.bursts == bursts


class TestScheduling:
    """Tick processing under a manual clock"""

    @pytest.mark.asyncio
    async def test_map_filter_pipeline(self, ssc, clock):
        collected = CollectAction()
        doubled = ssc.sequence_stream([[1, 2, 3], [4, 5]]).map(lambda x: x * 2)
        doubled.filter(lambda x: x % 2 == 0).output(collected)

        await ssc.start()
        await clock.advance(2)
        await ssc.stop()

        assert collected.elements == [[2, 4, 6], [8, 10]]
        assert collected.ticks == [1, 2]
        assert [b.index for b in collected.batches] == [1, 2]

    @pytest.mark.asyncio
    async def test_empty_ticks_still_deliver(self, ssc, clock):
        collected = CollectAction()
        ssc.queue_stream().output(collected)

        await ssc.start()
        await clock.advance(3)
        await ssc.stop()

        assert collected.elements == [[], [], []]

    @pytest.mark.asyncio
    async def test_tumbling_window(self, ssc, clock):
        collected = CollectAction()
        ssc.sequence_stream([["a"], ["b"], ["c"], ["d"]]).window(2.0, 2.0).output(collected)

        await ssc.start()
        await clock.advance(4)
        await ssc.stop()

        assert collected.ticks == [2, 4]
        assert collected.elements == [["a", "b"], ["c", "d"]]

    @pytest.mark.asyncio
    async def test_queue_offers_land_in_next_tick(self, ssc, clock):
        collected = CollectAction()
        stream = ssc.queue_stream()
        stream.output(collected)

        await ssc.start()
        stream.source.offer_all(["x", "y"])
        await clock.advance()
        stream.source.offer("z")
        await clock.advance()
        await ssc.stop()

        assert collected.elements == [["x", "y"], ["z"]]

    @pytest.mark.asyncio
    async def test_outputs_run_in_registration_order(self, ssc, clock):
        calls = []
        numbers = ssc.sequence_stream([[1]])
        numbers.foreach_batch(lambda batch, tick: calls.append("first"))
        numbers.map(str).foreach_batch(lambda batch, tick: calls.append("second"))
        numbers.foreach_batch(lambda batch, tick: calls.append("third"))

        await ssc.start()
        await clock.advance()
        await ssc.stop()

        assert calls == ["first", "second", "third"]

    @pytest.mark.asyncio
    async def test_async_output_is_awaited(self, ssc, clock):
        seen = []

        async def slow_sink(batch, tick):
            await asyncio.sleep(0.01)
            seen.append((tick, list(batch)))

        ssc.sequence_stream([[1], [2]]).foreach_batch(slow_sink)

        await ssc.start()
        await clock.advance(2)
        await ssc.stop()

        assert seen == [(1, [1]), (2, [2])]

    @pytest.mark.asyncio
    async def test_real_clock(self, isolated_config):
        collected = CollectAction()
        ssc = StreamingContext(0.01, config=isolated_config)
        ssc.sequence_stream([[1], [2], [3]]).output(collected)

        await ssc.start()
        await asyncio.sleep(0.1)
        await ssc.stop()

        assert ssc.tick_index >= 3
        assert collected.elements[:3] == [[1], [2], [3]]
        assert collected.ticks == list(range(1, len(collected.ticks) + 1))


class TestShutdown:
    """Stopping with a tick in flight"""

    @pytest.mark.asyncio
    async def test_stop_waits_for_in_flight_tick(self, ssc, clock):
        gate = asyncio.Event()
        entered = asyncio.Event()
        collected = CollectAction()

        async def gated(batch, tick):
            entered.set()
            await gate.wait()

        numbers = ssc.sequence_stream([[1, 2]])
        numbers.foreach_batch(gated)
        numbers.output(collected)

        await ssc.start()
        await clock.advance(wait=False)
        await entered.wait()

        stopping = asyncio.create_task(ssc.stop())
        await asyncio.sleep(0)
        assert ssc.state is ContextState.STOPPING
        assert ssc.in_flight_tick == 1
        assert not stopping.done()

        gate.set()
        await asyncio.wait_for(stopping, timeout=1.0)

        assert ssc.state is ContextState.STOPPED
        assert ssc.in_flight_tick is None
        assert collected.elements == [[1, 2]]

    @pytest.mark.asyncio
    async def test_no_new_ticks_after_stop(self, ssc, clock):
        gate = asyncio.Event()
        entered = asyncio.Event()
        collected = CollectAction()

        async def gated(batch, tick):
            entered.set()
            await gate.wait()

        numbers = ssc.sequence_stream([[1], [2], [3]])
        numbers.foreach_batch(gated)
        numbers.output(collected)

        await ssc.start()
        await clock.advance(3, wait=False)
        await entered.wait()

        stopping = asyncio.create_task(ssc.stop())
        await asyncio.sleep(0)
        gate.set()
        await asyncio.wait_for(stopping, timeout=1.0)

        assert collected.ticks == [1]
        assert clock.index == 1
        assert clock.pending == 2

    @pytest.mark.asyncio
    async def test_stop_from_output(self, ssc, clock):
        collected = CollectAction()

        async def stop_on_second(batch, tick):
            if tick == 2:
                await ssc.stop()

        numbers = ssc.sequence_stream([[1], [2], [3]])
        numbers.foreach_batch(stop_on_second)
        numbers.output(collected)

        await ssc.start()
        await clock.advance(3)
        await ssc.await_termination(timeout=1.0)

        assert ssc.state is ContextState.STOPPED
        # the tick that called stop() still finishes its outputs
        assert collected.ticks == [1, 2]

    @pytest.mark.asyncio
    async def test_window_state_released(self, ssc, clock):
        windowed = ssc.sequence_stream([[1], [2]]).window(3.0)
        windowed.output(CollectAction())

        await ssc.start()
        await clock.advance(2)
        assert len(ssc.graph.buffer_for(windowed.node)) == 2
        await ssc.stop()

        assert len(ssc.graph.buffer_for(windowed.node)) == 0


class TestTickErrors:
    """Errors are reported on the error channel and the pipeline continues"""

    @pytest.mark.asyncio
    async def test_transform_error_skips_tick(self, ssc, clock):
        collected = CollectAction()
        ssc.sequence_stream([[1, 2], [0], [5]]).map(lambda x: 10 // x).window(3.0, 1.0).output(collected)

        await ssc.start()
        await clock.advance(3)
        await ssc.stop()

        assert collected.ticks == [1, 3]
        assert [b.index for b in collected.batches] == [1, 2]
        assert collected.elements == [[10, 5], [10, 5, 2]]

        errors = ssc.drain_errors()
        assert len(errors) == 1
        assert isinstance(errors[0], TransformError)
        assert errors[0].tick == 2
        assert isinstance(errors[0].cause, ZeroDivisionError)

    @pytest.mark.asyncio
    async def test_output_error_does_not_block_others(self, ssc, clock):
        collected = CollectAction()

        def explode(batch, tick):
            raise RuntimeError("sink unavailable")

        numbers = ssc.sequence_stream([[1], [2]])
        numbers.foreach_batch(explode)
        numbers.output(collected)

        await ssc.start()
        await clock.advance(2)
        await ssc.stop()

        assert collected.elements == [[1], [2]]
        errors = ssc.drain_errors()
        assert [type(e) for e in errors] == [OutputError, OutputError]
        assert [e.tick for e in errors] == [1, 2]
        assert errors[0].stream == "explode"

    @pytest.mark.asyncio
    async def test_source_error_yields_empty_batch(self, ssc, clock):
        collected = CollectAction()
        ssc.source(BrokenSource()).output(collected)

        await ssc.start()
        await clock.advance()
        await ssc.stop()

        assert collected.elements == [[]]
        error, = ssc.drain_errors()
        assert isinstance(error, SourceError)
        assert error.stream == "BrokenStream"

    @pytest.mark.asyncio
    async def test_error_channel_keeps_newest(self, clock, isolated_config):
        isolated_config.engine.error_queue_size = 2
        ssc = StreamingContext(1.0, clock=clock, config=isolated_config)

        def explode(batch, tick):
            raise RuntimeError(f"failure {tick}")

        ssc.sequence_stream([]).foreach_batch(explode)

        await ssc.start()
        await clock.advance(3)
        await ssc.stop()

        assert [e.tick for e in ssc.drain_errors()] == [2, 3]
        assert ssc.drain_errors() == []


class TestMetrics:
    """Per-context Prometheus metrics"""

    @pytest.mark.asyncio
    async def test_tick_and_batch_counters(self, ssc, clock):
        numbers = ssc.sequence_stream([[1, 2, 3], [4]], name="numbers")
        numbers.output(CollectAction())

        await ssc.start()
        await clock.advance(2)
        await ssc.stop()

        metrics = ssc.metrics
        assert metrics.get_value("microbatch_ticks_total", {"context": "microbatch"}) == 2.0
        assert metrics.get_value("microbatch_batches_emitted_total", {"stream": "numbers"}) == 2.0
        assert metrics.get_value("microbatch_elements_emitted_total", {"stream": "numbers"}) == 4.0

    @pytest.mark.asyncio
    async def test_error_counters(self, ssc, clock):
        def explode(batch, tick):
            raise ValueError("bad")

        ssc.sequence_stream([[1]]).foreach_batch(explode)

        await ssc.start()
        await clock.advance()
        await ssc.stop()

        metrics = ssc.metrics
        assert metrics.get_value(
            "microbatch_tick_errors_total", {"context": "microbatch", "error_type": "OutputError"}
        ) == 1.0
        assert metrics.get_value("microbatch_output_errors_total", {"action": "explode"}) == 1.0

    @pytest.mark.asyncio
    async def test_dropped_elements_gauge(self, ssc, clock):
        stream = ssc.queue_stream(maxsize=1, name="bounded")
        stream.output(CollectAction())
        stream.source.offer_all([1, 2, 3])

        await ssc.start()
        await clock.advance()
        await ssc.stop()

        assert ssc.metrics.get_value("microbatch_source_dropped_elements", {"stream": "bounded"}) == 2.0

    @pytest.mark.asyncio
    async def test_dropped_gauge_updated_on_aborted_tick(self, ssc, clock):
        def reject(x):
            raise ValueError(f"cannot handle {x}")

        stream = ssc.queue_stream(maxsize=1, name="bounded")
        stream.map(reject).output(CollectAction())
        stream.source.offer_all([1, 2, 3])

        await ssc.start()
        await clock.advance()
        await ssc.stop()

        assert isinstance(ssc.drain_errors()[0], TransformError)
        assert ssc.metrics.get_value("microbatch_source_dropped_elements", {"stream": "bounded"}) == 2.0
