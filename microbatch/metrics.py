#!/usr/bin/env python3
"""
Metrics collection for the micro-batch scheduler.

Each collector owns its own Prometheus ``CollectorRegistry`` so several
streaming contexts (and test cases) can live in one process without metric
name clashes. Tracks:
- Ticks processed and tick latency
- Batches and elements emitted per stream
- Tick errors by kind, output errors per action
- Elements dropped by bounded sources
"""

import logging
from typing import Dict, Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest

logger = logging.getLogger(__name__)


class MetricsCollector:
    """Prometheus metrics for one streaming context."""

    def __init__(self, enabled: bool = True, registry: Optional[CollectorRegistry] = None):
        """
        Initialize metrics collector.

        Args:
            enabled: When False every ``record_*`` call is a no-op
            registry: Registry to register into (a fresh one by default)
        """
        self.enabled = enabled
        self.registry = registry or CollectorRegistry()
        self._setup_prometheus_metrics()
        logger.debug(f"MetricsCollector initialized (enabled: {self.enabled})")

    def _setup_prometheus_metrics(self):
        """Set up Prometheus metric definitions."""
        self.ticks_total = Counter(
            'microbatch_ticks_total',
            'Ticks processed by the scheduler',
            ['context'],
            registry=self.registry
        )

        self.tick_duration = Histogram(
            'microbatch_tick_duration_seconds',
            'Time spent evaluating the graph and running outputs for one tick',
            ['context'],
            registry=self.registry
        )

        self.batches_emitted = Counter(
            'microbatch_batches_emitted_total',
            'Batches emitted per DStream',
            ['stream'],
            registry=self.registry
        )

        self.elements_emitted = Counter(
            'microbatch_elements_emitted_total',
            'Elements emitted per DStream',
            ['stream'],
            registry=self.registry
        )

        self.tick_errors = Counter(
            'microbatch_tick_errors_total',
            'Errors recovered at a tick boundary',
            ['context', 'error_type'],
            registry=self.registry
        )

        self.output_errors = Counter(
            'microbatch_output_errors_total',
            'Output actions that raised',
            ['action'],
            registry=self.registry
        )

        self.source_dropped = Gauge(
            'microbatch_source_dropped_elements',
            'Elements dropped by a bounded source buffer',
            ['stream'],
            registry=self.registry
        )

    def record_tick(self, context: str, duration_seconds: float) -> None:
        if not self.enabled:
            return
        self.ticks_total.labels(context=context).inc()
        self.tick_duration.labels(context=context).observe(duration_seconds)

    def record_batch(self, stream: str, size: int) -> None:
        if not self.enabled:
            return
        self.batches_emitted.labels(stream=stream).inc()
        self.elements_emitted.labels(stream=stream).inc(size)

    def record_tick_error(self, context: str, error: Exception) -> None:
        if not self.enabled:
            return
        self.tick_errors.labels(context=context, error_type=type(error).__name__).inc()

    def record_output_error(self, action: str) -> None:
        if not self.enabled:
            return
        self.output_errors.labels(action=action).inc()

    def record_dropped(self, stream: str, dropped: int) -> None:
        if not self.enabled:
            return
        self.source_dropped.labels(stream=stream).set(dropped)

    def get_value(self, name: str, labels: Optional[Dict[str, str]] = None) -> float:
        """Current value of a sample, 0.0 if it has never been recorded."""
        value = self.registry.get_sample_value(name, labels or {})
        return value if value is not None else 0.0

    def exposition(self) -> bytes:
        """Prometheus text exposition format."""
        return generate_latest(self.registry)
