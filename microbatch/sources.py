# -*- coding: utf-8 -*-
"""
Source adapters.

A source adapter is the engine's only view of the outside world on the input
side. The scheduler calls ``drain()`` once per tick; it must not block and
returns whatever arrived since the previous call (possibly nothing). How the
elements get there (a producer task, a thread, a socket reader) is the
adapter's own business, as are reconnection and backoff.

Adapters that run background work implement ``start()`` / ``stop()``; the
streaming context calls them when it starts and stops.
"""

import asyncio
import logging
import queue
import random
import threading
from abc import ABC, abstractmethod
from typing import Any, Iterable, List, Optional, Sequence

logger = logging.getLogger(__name__)


class SourceAdapter(ABC):
    """Non-blocking producer of opaque elements."""

    name: str = "source"

    @abstractmethod
    def drain(self) -> List[Any]:
        """Return everything buffered since the last call, oldest first."""

    async def start(self) -> None:
        """Begin producing. Called once by the context on start."""

    async def stop(self) -> None:
        """Release resources. Called once by the context on stop."""


class QueueSource(SourceAdapter):
    """
    Bounded, thread-safe buffer fed by ``offer()``.

    Producers never block: when the buffer is full the offered element is
    dropped and counted, so a slow pipeline sheds load instead of stalling
    its producers or the clock.

    Args:
        maxsize: Buffer capacity (0 = unbounded)
        max_batch_size: Upper bound on elements returned by one ``drain()``
            (None = everything buffered)
    """

    name = "QueueStream"

    def __init__(self, maxsize: int = 10000, max_batch_size: Optional[int] = None):
        self._buffer: "queue.Queue[Any]" = queue.Queue(maxsize=maxsize)
        self.max_batch_size = max_batch_size
        self._lock = threading.Lock()
        self.offered = 0
        self.dropped = 0

    def offer(self, item: Any) -> bool:
        """Buffer one element; returns False if it was dropped."""
        try:
            self._buffer.put_nowait(item)
        except queue.Full:
            with self._lock:
                self.dropped += 1
            logger.debug(f"{self.name} buffer full, dropped element")
            return False
        with self._lock:
            self.offered += 1
        return True

    def offer_all(self, items: Iterable[Any]) -> int:
        """Buffer several elements in order; returns how many were accepted."""
        return sum(1 for item in items if self.offer(item))

    def drain(self) -> List[Any]:
        items = []
        limit = self.max_batch_size
        while limit is None or len(items) < limit:
            try:
                items.append(self._buffer.get_nowait())
            except queue.Empty:
                break
        return items

    @property
    def buffered(self) -> int:
        return self._buffer.qsize()


class SequenceSource(SourceAdapter):
    """
    Replays pre-recorded batches, one per tick.

    Once the sequence is exhausted every drain is empty. Handy for tests and
    for replaying captured traffic deterministically.

    Example:
        source = SequenceSource([[1, 2, 3], [4, 5]])
        source.drain()  # [1, 2, 3]
        source.drain()  # [4, 5]
        source.drain()  # []
    """

    name = "SequenceStream"

    def __init__(self, batches: Sequence[Iterable[Any]]):
        self._batches = [list(batch) for batch in batches]
        self._position = 0

    def drain(self) -> List[Any]:
        if self._position >= len(self._batches):
            return []
        batch = self._batches[self._position]
        self._position += 1
        return list(batch)

    @property
    def exhausted(self) -> bool:
        return self._position >= len(self._batches)


LOG_TEMPLATES = [
    "INFO: User login successful - user123",
    "ERROR: Database connection failed - timeout",
    "WARN: High memory usage detected - 85%",
    "ERROR: Failed to process request - invalid data",
    "INFO: Cache refreshed successfully",
    "ERROR: Authentication failed - invalid token",
    "DEBUG: Processing batch job #{batch}",
]


class SimulatedLogSource(QueueSource):
    """
    Generates random application log lines in the background.

    Every ``period`` seconds a burst of ``min_lines``..``max_lines`` lines is
    picked from ``LOG_TEMPLATES`` and buffered.

    Args:
        period: Seconds between bursts
        min_lines: Smallest burst
        max_lines: Largest burst
        seed: Optional seed for reproducible output
        maxsize: Buffer capacity
    """

    name = "SimulatedLogStream"

    def __init__(self, period: float = 1.0, min_lines: int = 3, max_lines: int = 5,
                 seed: Optional[int] = None, maxsize: int = 10000,
                 templates: Optional[Sequence[str]] = None):
        super().__init__(maxsize=maxsize)
        if period <= 0:
            raise ValueError(f"period must be positive, got {period}")
        if not 0 <= min_lines <= max_lines:
            raise ValueError(f"invalid burst size range {min_lines}..{max_lines}")
        self.period = period
        self.min_lines = min_lines
        self.max_lines = max_lines
        self.templates = list(templates or LOG_TEMPLATES)
        self._random = random.Random(seed)
        self._task: Optional[asyncio.Task] = None
        self.bursts = 0

    def generate_burst(self) -> List[str]:
        lines = []
        for _ in range(self._random.randint(self.min_lines, self.max_lines)):
            template = self._random.choice(self.templates)
            lines.append(template.replace("{batch}", str(self.bursts)))
        self.bursts += 1
        return lines

    async def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._produce())
            logger.info(f"Started {self.name} (period={self.period}s)")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info(f"Stopped {self.name} after {self.bursts} bursts")

    async def _produce(self) -> None:
        while True:
            await asyncio.sleep(self.period)
            lines = self.generate_burst()
            accepted = self.offer_all(lines)
            logger.debug(f"Generated burst {self.bursts - 1} with {accepted} log lines")


# Default asyncio StreamReader buffer limit
DEFAULT_LINE_LIMIT = 2 ** 16


class SocketTextSource(QueueSource):
    """
    Newline-delimited text read from a TCP socket.

    A background task keeps a connection open and buffers decoded lines. On
    disconnect or connection failure it retries with exponential backoff,
    from ``reconnect_delay`` up to ``max_reconnect_delay`` seconds.

    Lines longer than ``line_limit`` bytes are discarded and counted in
    ``oversized``; reading continues with the next line.
    """

    def __init__(self, host: str, port: int, maxsize: int = 10000,
                 reconnect_delay: float = 0.5, max_reconnect_delay: float = 30.0,
                 encoding: str = "utf-8", line_limit: int = DEFAULT_LINE_LIMIT):
        super().__init__(maxsize=maxsize)
        if line_limit < 1:
            raise ValueError(f"line_limit must be >= 1, got {line_limit}")
        self.host = host
        self.port = port
        self.name = f"SocketStream_{host}_{port}"
        self.reconnect_delay = reconnect_delay
        self.max_reconnect_delay = max_reconnect_delay
        self.encoding = encoding
        self.line_limit = line_limit
        self.connections = 0
        self.oversized = 0
        self._task: Optional[asyncio.Task] = None

    async def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._run())
            logger.info(f"Creating socket text stream: {self.host}:{self.port}")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info(f"Closed socket text stream {self.host}:{self.port}")

    async def _run(self) -> None:
        delay = self.reconnect_delay
        while True:
            try:
                reader, writer = await asyncio.open_connection(
                    self.host, self.port, limit=self.line_limit
                )
            except OSError as e:
                logger.warning(f"Connection to {self.host}:{self.port} failed: {e}; "
                               f"retrying in {delay:.1f}s")
                await asyncio.sleep(delay)
                delay = min(delay * 2, self.max_reconnect_delay)
                continue

            self.connections += 1
            delay = self.reconnect_delay
            logger.info(f"Connected to {self.host}:{self.port}")
            try:
                await self._read_lines(reader)
            except (ConnectionError, asyncio.IncompleteReadError) as e:
                logger.warning(f"Lost connection to {self.host}:{self.port}: {e}")
            finally:
                writer.close()
                try:
                    await writer.wait_closed()
                except OSError:
                    pass

            logger.info(f"Socket {self.host}:{self.port} closed; reconnecting in {delay:.1f}s")
            await asyncio.sleep(delay)

    async def _read_lines(self, reader: asyncio.StreamReader) -> None:
        discarding = False
        while True:
            try:
                raw = await reader.readuntil(b"\n")
            except asyncio.IncompleteReadError as e:
                # EOF; a trailing line without newline still counts
                if e.partial and not discarding:
                    self._offer_line(e.partial)
                return
            except asyncio.LimitOverrunError as e:
                # drop what is buffered and keep dropping up to the next newline
                await reader.readexactly(e.consumed)
                if not discarding:
                    discarding = True
                    self.oversized += 1
                    logger.warning(
                        f"{self.name}: discarding line longer than {self.line_limit} bytes"
                    )
                continue

            if discarding:
                discarding = False
                continue
            self._offer_line(raw)

    def _offer_line(self, raw: bytes) -> None:
        self.offer(raw.decode(self.encoding, errors="replace").rstrip("\r\n"))
