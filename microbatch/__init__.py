# -*- coding: utf-8 -*-
"""microbatch - discretized-stream micro-batch processing on asyncio."""

from .batch import Batch
from .clock import BatchClock, ManualClock
from .config import MicrobatchConfig, get_config, init_config
from .context import ContextState, StreamingContext
from .dstream import DStream, DStreamNode, NodeKind
from .errors import (
    AlreadyStartedError,
    ConstructionError,
    ContextStoppedError,
    GraphError,
    InvalidDurationError,
    LifecycleError,
    MicrobatchError,
    NoOutputOperationsError,
    NotStartedError,
    OutputError,
    SourceError,
    TerminationTimeoutError,
    TickError,
    TransformError,
)
from .metrics import MetricsCollector
from .outputs import CollectAction, ForeachAction, OutputAction, PrintAction
from .sources import QueueSource, SequenceSource, SimulatedLogSource, SocketTextSource, SourceAdapter
from .window import WindowBuffer

__version__ = "0.1.0"

__all__ = [
    # Core
    'StreamingContext', 'ContextState', 'DStream', 'DStreamNode', 'NodeKind',
    'Batch', 'BatchClock', 'ManualClock', 'WindowBuffer',
    # Sources and outputs
    'SourceAdapter', 'QueueSource', 'SequenceSource', 'SimulatedLogSource', 'SocketTextSource',
    'OutputAction', 'ForeachAction', 'PrintAction', 'CollectAction',
    # Ambient
    'MicrobatchConfig', 'get_config', 'init_config', 'MetricsCollector',
    # Errors
    'MicrobatchError', 'ConstructionError', 'InvalidDurationError', 'GraphError',
    'NoOutputOperationsError', 'LifecycleError', 'AlreadyStartedError', 'NotStartedError',
    'ContextStoppedError', 'TerminationTimeoutError', 'TickError', 'TransformError',
    'SourceError', 'OutputError',
]
