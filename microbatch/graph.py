# -*- coding: utf-8 -*-
"""
DStream graph and per-tick evaluation.

The graph is owned by exactly one streaming context. Nodes are registered in
creation order and may only point at nodes already registered in the same
graph, so the graph is acyclic by construction and registration order is a
valid topological order.

Ticks are applied atomically. ``evaluate()`` computes every node's batch for
the tick and stages window appends and batch counters without touching
them; ``commit()`` applies the staged changes. If a user function raises,
``evaluate()`` raises before anything is committed, and the tick leaves no
trace in the window buffers.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from .batch import Batch
from .dstream import DStreamNode, NodeKind
from .errors import GraphError, SourceError, TransformError
from .outputs import OutputAction
from .sources import SourceAdapter
from .window import Duration, WindowBuffer, concat, to_seconds, window_steps

logger = logging.getLogger(__name__)


@dataclass
class OutputBinding:
    """An output action attached to a node."""
    node: DStreamNode
    action: OutputAction


@dataclass
class TickResult:
    """
    Outcome of evaluating the graph for one tick.

    ``batches`` holds only nodes that emitted. Window appends and batch
    counters are staged until ``DStreamGraph.commit``.
    """
    tick: int
    batches: Dict[int, Batch] = field(default_factory=dict)
    source_errors: List[SourceError] = field(default_factory=list)
    staged_pushes: List[Tuple[WindowBuffer, Batch]] = field(default_factory=list)
    staged_counts: Dict[int, int] = field(default_factory=dict)

    def emitted(self, node: DStreamNode) -> bool:
        return node.node_id in self.batches

    def batch_for(self, node: DStreamNode) -> Optional[Batch]:
        return self.batches.get(node.node_id)


class DStreamGraph:
    """Nodes, outputs and window state of one streaming context."""

    def __init__(self, batch_interval: float):
        self.batch_interval = batch_interval
        self.nodes: List[DStreamNode] = []
        self.outputs: List[OutputBinding] = []
        self._by_id: Dict[int, DStreamNode] = {}
        self._buffers: Dict[int, WindowBuffer] = {}
        self._counts: Dict[int, int] = {}
        self._frozen = False

        # Memoized batches for the tick being evaluated
        self._cache: Dict[int, Optional[Batch]] = {}

    # Construction

    def freeze(self) -> None:
        """Reject further edits; called when the context starts."""
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def _check_editable(self) -> None:
        if self._frozen:
            raise GraphError("cannot add DStream operations after the context has started")

    def _check_owned(self, node: DStreamNode) -> None:
        if self._by_id.get(node.node_id) is not node:
            raise GraphError(f"{node.name} belongs to a different StreamingContext")

    def _register(self, **kwargs) -> DStreamNode:
        node = DStreamNode(node_id=len(self.nodes), **kwargs)
        self.nodes.append(node)
        self._by_id[node.node_id] = node
        return node

    def add_source(self, source: SourceAdapter, name: Optional[str] = None) -> DStreamNode:
        self._check_editable()
        if not isinstance(source, SourceAdapter):
            raise GraphError(f"source must be a SourceAdapter, got {type(source).__name__}")
        if any(n.source is source for n in self.nodes):
            raise GraphError(f"source {source!r} is already attached to this context")
        node = self._register(
            kind=NodeKind.SOURCE,
            name=name or getattr(source, "name", "source"),
            slide_duration=self.batch_interval,
            source=source,
        )
        logger.info(f"Created source stream {node.name}")
        return node

    def add_map(self, upstream: DStreamNode, fn: Callable[[Any], Any]) -> DStreamNode:
        self._check_editable()
        self._check_owned(upstream)
        if not callable(fn):
            raise GraphError(f"map function must be callable, got {fn!r}")
        logger.info(f"Adding Map transformation to {upstream.name}")
        return self._register(
            kind=NodeKind.MAP,
            name=f"{upstream.name}_mapped",
            slide_duration=upstream.slide_duration,
            upstream=upstream,
            fn=fn,
        )

    def add_filter(self, upstream: DStreamNode, predicate: Callable[[Any], bool]) -> DStreamNode:
        self._check_editable()
        self._check_owned(upstream)
        if not callable(predicate):
            raise GraphError(f"filter predicate must be callable, got {predicate!r}")
        logger.info(f"Adding Filter transformation to {upstream.name}")
        return self._register(
            kind=NodeKind.FILTER,
            name=f"{upstream.name}_filtered",
            slide_duration=upstream.slide_duration,
            upstream=upstream,
            fn=predicate,
        )

    def add_window(self, upstream: DStreamNode, window_duration: Duration,
                   slide_duration: Optional[Duration] = None) -> DStreamNode:
        self._check_editable()
        self._check_owned(upstream)
        if slide_duration is None:
            slide_duration = upstream.slide_duration

        length, slide_steps = window_steps(
            window_duration, slide_duration, upstream.slide_duration, self.batch_interval
        )
        window = to_seconds(window_duration)
        slide = to_seconds(slide_duration)
        logger.info(
            f"Adding Window operation to {upstream.name} (window: {window}s, slide: {slide}s)"
        )
        node = self._register(
            kind=NodeKind.WINDOW,
            name=f"{upstream.name}_windowed",
            slide_duration=slide,
            upstream=upstream,
            window_duration=window,
            window_length=length,
            slide_steps=slide_steps,
        )
        self._buffers[node.node_id] = WindowBuffer(length)
        return node

    def add_output(self, node: DStreamNode, action: OutputAction) -> OutputBinding:
        self._check_editable()
        self._check_owned(node)
        binding = OutputBinding(node=node, action=action)
        self.outputs.append(binding)
        logger.info(f"Adding {action.name} output to {node.name}")
        return binding

    def buffer_for(self, node: DStreamNode) -> WindowBuffer:
        return self._buffers[node.node_id]

    # Evaluation

    def evaluate(self, tick: int, tick_start: float) -> TickResult:
        """
        Compute every node's batch for ``tick``.

        Raises:
            TransformError: a map function or filter predicate raised; nothing
                has been committed
        """
        result = TickResult(tick=tick)
        self._cache = {}
        try:
            for node in self.nodes:
                self._produce(node, result, tick_start)
        finally:
            self._cache = {}
        return result

    def _produce(self, node: DStreamNode, result: TickResult, tick_start: float) -> Optional[Batch]:
        if node.node_id in self._cache:
            return self._cache[node.node_id]

        if node.kind is NodeKind.SOURCE:
            batch = self._produce_source(node, result, tick_start)
        else:
            upstream = self._produce(node.upstream, result, tick_start)
            if upstream is None:
                batch = None
            elif node.kind is NodeKind.MAP:
                batch = upstream.derive(node.name, self._apply(node, result.tick, upstream, _map))
            elif node.kind is NodeKind.FILTER:
                batch = upstream.derive(node.name, self._apply(node, result.tick, upstream, _filter))
            else:
                batch = self._produce_window(node, result, upstream)

        self._cache[node.node_id] = batch
        if batch is not None:
            result.batches[node.node_id] = batch
        return batch

    def _produce_source(self, node: DStreamNode, result: TickResult, tick_start: float) -> Batch:
        tick = result.tick
        try:
            elements = node.source.drain()
        except Exception as e:
            logger.error(f"Source {node.name} failed at tick {tick}: {e}; emitting empty batch")
            result.source_errors.append(SourceError(tick, node.name, e))
            elements = []

        index = self._counts.get(node.node_id, 0) + 1
        result.staged_counts[node.node_id] = index
        return Batch(
            stream=node.name,
            index=index,
            tick=tick,
            start=tick_start,
            end=tick_start + self.batch_interval,
            elements=tuple(elements),
        )

    def _produce_window(self, node: DStreamNode, result: TickResult, upstream: Batch) -> Optional[Batch]:
        buffer = self._buffers[node.node_id]
        result.staged_pushes.append((buffer, upstream))
        if result.tick % node.slide_steps != 0:
            return None

        index = self._counts.get(node.node_id, 0) + 1
        result.staged_counts[node.node_id] = index
        return concat(node.name, index, result.tick, buffer.preview(upstream))

    @staticmethod
    def _apply(node: DStreamNode, tick: int, upstream: Batch, op) -> List[Any]:
        try:
            return op(node.fn, upstream.elements)
        except Exception as e:
            raise TransformError(tick, node.name, e) from e

    def commit(self, result: TickResult) -> None:
        """Apply the window appends and counters staged by ``evaluate``."""
        for buffer, batch in result.staged_pushes:
            buffer.push(batch)
        self._counts.update(result.staged_counts)

    def deliveries(self, result: TickResult) -> List[Tuple[OutputBinding, Batch]]:
        """Outputs to invoke for ``result``, in registration order."""
        return [
            (binding, result.batches[binding.node.node_id])
            for binding in self.outputs
            if binding.node.node_id in result.batches
        ]

    def release(self) -> None:
        """Drop all window state."""
        for buffer in self._buffers.values():
            buffer.clear()
        logger.debug(f"Released {len(self._buffers)} window buffers")

    def emitted_count(self, node: DStreamNode) -> int:
        """Batches committed so far for a Source or Window node."""
        return self._counts.get(node.node_id, 0)

    def __len__(self) -> int:
        return len(self.nodes)


def _map(fn, elements) -> List[Any]:
    return [fn(element) for element in elements]


def _filter(predicate, elements) -> List[Any]:
    return [element for element in elements if predicate(element)]
