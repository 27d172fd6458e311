# -*- coding: utf-8 -*-
"""Pytest configuration for microbatch tests."""

import os
from typing import List

import pytest

from microbatch.clock import ManualClock
from microbatch.config import MicrobatchConfig
from microbatch.context import StreamingContext
from microbatch.graph import DStreamGraph, TickResult


@pytest.fixture
def isolated_config(tmp_path, monkeypatch):
    """Configuration that ignores the developer's environment and config files."""
    for name in list(os.environ):
        if name.startswith("MICROBATCH_"):
            monkeypatch.delenv(name)
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.chdir(tmp_path)
    return MicrobatchConfig(load=False)


@pytest.fixture
def clock():
    """Manually driven clock with a 1 second interval."""
    return ManualClock(1.0)


@pytest.fixture
def ssc(clock, isolated_config):
    """Streaming context driven by the manual clock."""
    return StreamingContext(1.0, clock=clock, config=isolated_config)


def _run_ticks(graph: DStreamGraph, count: int, first_tick: int = 1) -> List[TickResult]:
    """Evaluate and commit ``count`` consecutive ticks directly on a graph."""
    results = []
    for tick in range(first_tick, first_tick + count):
        result = graph.evaluate(tick, float(tick - 1) * graph.batch_interval)
        graph.commit(result)
        results.append(result)
    return results


@pytest.fixture
def run_ticks():
    return _run_ticks


# Custom markers
def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
