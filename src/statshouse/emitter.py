"""Queue-fed metric emitter for asyncio applications."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from .events import MetricOccurrence
from .transport import BatchState, Transport


logger = logging.getLogger(__name__)


@dataclass
class MetricEmitter:
    """
    Hands metric occurrences to a Transport from a single consumer task.

    Coroutines call emit() and return at once; process_loop() pulls
    occurrences off the queue and writes them one by one, so batching,
    splitting and deadline sends happen exactly as with direct writes.

    Usage:
        emitter = MetricEmitter(transport=transport)
        await emitter.start()
        task = asyncio.create_task(emitter.process_loop())
        emitter.emit(MetricOccurrence.count("api_requests", 1))
        ...
        task.cancel()
        await emitter.stop()
    """
    transport: Transport

    # Occurrences waiting for the consumer task
    max_queue_size: int = 10000

    # Full queue: "drop" discards the occurrence, "raise" lets
    # asyncio.QueueFull reach the caller of emit()
    overflow_policy: str = "drop"

    _queue: asyncio.Queue | None = field(default=None, init=False)
    _stats: dict = field(default_factory=dict, init=False)

    def __post_init__(self):
        self._stats = {"emitted": 0, "dropped": 0, "errors": 0}

    async def start(self) -> None:
        """Create the queue. Must run inside the event loop that will emit."""
        self._queue = asyncio.Queue(maxsize=self.max_queue_size)
        logger.info(f"Metric emitter started (max_queue={self.max_queue_size})")

    async def stop(self) -> None:
        """
        Write whatever is still queued, then flush the transport.

        If the transport was already closed, queued occurrences are counted
        as dropped and nothing is flushed.
        """
        closed = self.transport.state == BatchState.CLOSED
        while self._queue and not self._queue.empty():
            occurrence = self._queue.get_nowait()
            if closed:
                self._stats["dropped"] += 1
            else:
                self._deliver(occurrence)
        if not closed:
            self.transport.flush()
        logger.info(f"Metric emitter stopped. Stats: {self._stats}")

    def emit(self, occurrence: MetricOccurrence) -> bool:
        """Queue an occurrence without waiting. False means it was dropped."""
        if self._queue is None:
            logger.warning(f"Metric emitter not started, dropping {occurrence.name!r}")
            self._stats["dropped"] += 1
            return False

        try:
            self._queue.put_nowait(occurrence)
        except asyncio.QueueFull:
            if self.overflow_policy != "drop":
                raise
            self._stats["dropped"] += 1
            return False
        self._stats["emitted"] += 1
        return True

    async def emit_async(self, occurrence: MetricOccurrence, timeout: float = 0.1) -> bool:
        """Queue an occurrence, waiting up to ``timeout`` seconds for room."""
        if self._queue is None:
            return False

        try:
            await asyncio.wait_for(self._queue.put(occurrence), timeout=timeout)
        except asyncio.TimeoutError:
            self._stats["dropped"] += 1
            return False
        self._stats["emitted"] += 1
        return True

    async def process_loop(self) -> None:
        """Write queued occurrences into the transport until cancelled."""
        if self._queue is None:
            raise RuntimeError("Emitter not started")

        logger.info("Metric consumer task started")
        while True:
            try:
                occurrence = await self._queue.get()
            except asyncio.CancelledError:
                logger.info("Metric consumer task cancelled")
                break
            self._deliver(occurrence)
            self._queue.task_done()

    def _deliver(self, occurrence: MetricOccurrence) -> None:
        # Send errors and a closed transport must not kill the consumer task
        try:
            self.transport.write(occurrence)
        except Exception as e:
            logger.error(f"Failed to write metric {occurrence.name!r}: {e}")
            self._stats["errors"] += 1

    @property
    def queue_depth(self) -> int:
        return self._queue.qsize() if self._queue else 0

    @property
    def stats(self) -> dict:
        """Emitter counters plus the current queue depth."""
        return {**self._stats, "queue_depth": self.queue_depth}
