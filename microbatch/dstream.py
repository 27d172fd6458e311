# -*- coding: utf-8 -*-
"""
Discretized streams.

A ``DStream`` is an immutable handle on one node of a context's DStream
graph. Transformations never touch data when they are called; they add a
node describing how to compute each batch, and the scheduler evaluates the
graph once per tick.

Example:
    ssc = StreamingContext(batch_interval=2.0)
    lines = ssc.simulated_log_stream()
    errors = lines.map(str.upper).filter(lambda line: "ERROR" in line)
    errors.window(10.0, 4.0).print(10)
"""

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Optional, Union

from .outputs import ForeachAction, OutputAction, PrintAction
from .window import Duration

if TYPE_CHECKING:
    from .graph import DStreamGraph
    from .sources import SourceAdapter


class NodeKind(Enum):
    """Operation producing a node's batches."""
    SOURCE = "source"
    MAP = "map"
    FILTER = "filter"
    WINDOW = "window"


@dataclass(frozen=True, eq=False)
class DStreamNode:
    """
    One vertex of the DStream graph.

    Which fields are meaningful depends on ``kind``:

    - SOURCE: ``source``
    - MAP: ``upstream`` and ``fn`` (element -> element)
    - FILTER: ``upstream`` and ``fn`` (element -> bool)
    - WINDOW: ``upstream``, ``window_length`` (upstream batches retained) and
      ``slide_steps`` (clock ticks between emissions)

    ``slide_duration`` is how often, in seconds, the node emits a batch.
    """
    node_id: int
    kind: NodeKind
    name: str
    slide_duration: float
    upstream: Optional["DStreamNode"] = None
    source: Optional["SourceAdapter"] = None
    fn: Optional[Callable[[Any], Any]] = None
    window_duration: Optional[float] = None
    window_length: int = 0
    slide_steps: int = 1

    def __repr__(self):
        return f"DStreamNode(id={self.node_id}, kind={self.kind.value}, name={self.name!r})"


class DStream:
    """User-facing handle on a DStream graph node."""

    def __init__(self, graph: "DStreamGraph", node: DStreamNode):
        self._graph = graph
        self._node = node

    @property
    def node(self) -> DStreamNode:
        return self._node

    @property
    def name(self) -> str:
        return self._node.name

    @property
    def kind(self) -> NodeKind:
        return self._node.kind

    @property
    def slide_duration(self) -> float:
        return self._node.slide_duration

    @property
    def source(self) -> Optional["SourceAdapter"]:
        """The adapter feeding this stream, for input streams."""
        return self._node.source

    # Transformations

    def map(self, fn: Callable[[Any], Any]) -> "DStream":
        """
        Apply ``fn`` to every element of every batch.

        ``fn`` must be pure. A function that can fail per element should
        return a tagged result instead of raising: an exception aborts the
        whole tick.
        """
        return DStream(self._graph, self._graph.add_map(self._node, fn))

    def filter(self, predicate: Callable[[Any], bool]) -> "DStream":
        """Keep elements for which ``predicate`` holds, preserving order."""
        return DStream(self._graph, self._graph.add_filter(self._node, predicate))

    def window(self, window_duration: Duration,
               slide_duration: Optional[Duration] = None) -> "DStream":
        """
        Sliding window over the last ``window_duration`` seconds of batches.

        Args:
            window_duration: Window length; a multiple of this stream's slide
                duration
            slide_duration: Time between emitted windows; a multiple of this
                stream's slide duration, at most ``window_duration``.
                Defaults to this stream's slide duration.

        Raises:
            InvalidDurationError: for any other combination
        """
        return DStream(self._graph, self._graph.add_window(self._node, window_duration, slide_duration))

    # Outputs

    def output(self, action: Union[OutputAction, Callable[..., Any]]) -> OutputAction:
        """Register a terminal action invoked with every emitted batch."""
        if not isinstance(action, OutputAction):
            if not callable(action):
                raise TypeError(f"output action must be an OutputAction or callable, got {action!r}")
            action = ForeachAction(action)
        self._graph.add_output(self._node, action)
        return action

    def foreach_batch(self, fn: Callable[..., Any]) -> OutputAction:
        """Call ``fn(batch, tick)`` for every emitted batch."""
        return self.output(ForeachAction(fn))

    def print(self, num: int = 10) -> OutputAction:
        """Print the first ``num`` elements of every emitted batch."""
        return self.output(PrintAction(num))

    def __repr__(self):
        return f"DStream({self._node.name!r}, kind={self._node.kind.value})"
