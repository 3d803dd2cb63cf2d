"""Batching datagram transport for metric records."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Sequence

from .batch import (
    FLOAT64_SIZE,
    HEADER_SIZE,
    INT64_SIZE,
    UINT32_SIZE,
    BatchBuffer,
    FieldMask,
)
from .config import TransportConfig
from .errors import TransportClosedError
from .events import MetricKind, MetricOccurrence
from .sinks import DatagramSink, create_sink


logger = logging.getLogger(__name__)

# Returned by _write_header when a record cannot be placed
INSUFFICIENT = -1


class BatchState(str, Enum):
    """Lifecycle of the pending batch."""
    EMPTY = "empty"
    ACCUMULATING = "accumulating"
    SENDING = "sending"
    CLOSED = "closed"


@dataclass
class Transport:
    """
    Packs metric records into size-bounded datagrams and sends them.

    All work happens synchronously in the calling thread; a single lock
    serializes writes and flushes. A batch is sent when the next record
    would push it past the payload ceiling, when the send interval has
    elapsed, or on flush()/close().

    Delivery is fire-and-forget: a record that cannot fit even into an
    empty batch is dropped and only counted in stats.
    """
    config: TransportConfig = field(default_factory=TransportConfig)

    # Destination for finalized batches (default: chosen from config)
    sink: DatagramSink | None = None

    # Monotonic time source in seconds
    clock: Callable[[], float] = time.monotonic

    # Internal state
    _batch: BatchBuffer = field(init=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False)
    _next_send: float = field(default=0.0, init=False)
    _sending: bool = field(default=False, init=False)
    _closed: bool = field(default=False, init=False)
    _stats: dict = field(default_factory=dict, init=False)

    def __post_init__(self):
        if self.sink is None:
            self.sink = create_sink(self.config)
        self._batch = BatchBuffer(env=self.config.env)
        self._stats = {
            "datagrams_sent": 0,
            "bytes_sent": 0,
            "records_sent": 0,
            "records_dropped": 0,
            "values_dropped": 0,
            "send_errors": 0,
        }
        self._clear()

    def __enter__(self) -> Transport:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def write(self, occurrence: MetricOccurrence) -> None:
        """Write one occurrence of any kind."""
        if occurrence.kind == MetricKind.COUNTER:
            self.write_count(
                occurrence.name,
                occurrence.counter,
                occurrence.tag_names,
                occurrence.tag_values,
                timestamp=occurrence.timestamp,
                has_env=occurrence.has_env,
            )
        elif occurrence.kind == MetricKind.VALUE:
            self.write_values(
                occurrence.name,
                occurrence.values,
                occurrence.tag_names,
                occurrence.tag_values,
                timestamp=occurrence.timestamp,
                has_env=occurrence.has_env,
            )
        else:
            self.write_uniques(
                occurrence.name,
                occurrence.values,
                occurrence.tag_names,
                occurrence.tag_values,
                timestamp=occurrence.timestamp,
                has_env=occurrence.has_env,
            )

    def write_count(
        self,
        name: str,
        counter: float,
        tag_names: Sequence[str] = (),
        tag_values: Sequence[str] = (),
        timestamp: int = 0,
        has_env: bool = False,
    ) -> None:
        """Write a counter record."""
        with self._lock:
            self._check_open()
            now = self.clock()
            self._maybe_send(now)
            space_left = self._write_header(
                FieldMask.COUNTER, has_env, name, tag_names, tag_values, counter, timestamp, 0,
            )
            if space_left < 0:
                self._stats["records_dropped"] += 1
                logger.debug(f"Dropped counter record for {name!r}: does not fit in a batch")
            self._maybe_send(now)

    def write_values(
        self,
        name: str,
        values: Sequence[float],
        tag_names: Sequence[str] = (),
        tag_values: Sequence[str] = (),
        timestamp: int = 0,
        has_env: bool = False,
    ) -> None:
        """Write float64 samples, split over as many records as needed."""
        with self._lock:
            self._check_open()
            now = self.clock()
            self._maybe_send(now)
            self._write_series(
                FieldMask.VALUE, FLOAT64_SIZE, has_env, name, tag_names, tag_values, values, timestamp,
            )
            self._maybe_send(now)

    def write_uniques(
        self,
        name: str,
        values: Sequence[int],
        tag_names: Sequence[str] = (),
        tag_values: Sequence[str] = (),
        timestamp: int = 0,
        has_env: bool = False,
    ) -> None:
        """Write int64 unique samples, split over as many records as needed."""
        with self._lock:
            self._check_open()
            now = self.clock()
            self._maybe_send(now)
            self._write_series(
                FieldMask.UNIQUE, INT64_SIZE, has_env, name, tag_names, tag_values, values, timestamp,
            )
            self._maybe_send(now)

    def _write_series(
        self,
        field_mask: FieldMask,
        unit_size: int,
        has_env: bool,
        name: str,
        tag_names: Sequence[str],
        tag_values: Sequence[str],
        values: Sequence[float] | Sequence[int],
        timestamp: int,
    ) -> None:
        """Split ``values`` across records sharing name, tags and timestamp (caller holds lock)."""
        unique = field_mask == FieldMask.UNIQUE
        total = len(values)
        written = 0
        while written < total:
            space_left = self._write_header(
                field_mask, has_env, name, tag_names, tag_values, 0.0, timestamp,
                UINT32_SIZE + unit_size,
            )
            if space_left < 0:
                self._stats["records_dropped"] += 1
                self._stats["values_dropped"] += total - written
                logger.debug(
                    f"Dropped {total - written} of {total} values for {name!r}: "
                    f"record does not fit in a batch"
                )
                return
            count = min(1 + space_left // unit_size, total - written)
            self._batch.append_series(values, written, count, unique=unique)
            written += count

    def _write_header(
        self,
        field_mask: int,
        has_env: bool,
        name: str,
        tag_names: Sequence[str],
        tag_values: Sequence[str],
        counter: float,
        timestamp: int,
        reserved: int,
    ) -> int:
        """
        Place a record header, flushing the pending batch once if needed.

        Returns the payload bytes still free after the header and
        ``reserved`` bytes, or INSUFFICIENT if the record cannot be placed
        even in an empty batch (caller holds lock).
        """
        batch = self._batch
        start = batch.position
        if not batch.write_record_header(field_mask, has_env, name, tag_names, tag_values, counter, timestamp):
            return INSUFFICIENT

        space_left = self.config.max_payload_size - batch.position - reserved
        if space_left >= 0:
            batch.record_count += 1
            return space_left

        batch.rollback(start)
        if start == HEADER_SIZE:
            return INSUFFICIENT

        self._send()
        if not batch.write_record_header(field_mask, has_env, name, tag_names, tag_values, counter, timestamp):
            return INSUFFICIENT
        space_left = self.config.max_payload_size - batch.position - reserved
        if space_left >= 0:
            batch.record_count += 1
            return space_left

        batch.rollback(HEADER_SIZE)
        return INSUFFICIENT

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------

    def flush(self) -> None:
        """Send the pending batch now, if it holds any records."""
        with self._lock:
            self._check_open()
            self._send()

    def close(self) -> None:
        """Send the pending batch and release the sink. Safe to call twice."""
        with self._lock:
            if self._closed:
                return
            try:
                self._send()
            finally:
                self._closed = True
                self._close_sink()
        logger.info(f"Transport closed. Stats: {self._stats}")

    def _close_sink(self) -> None:
        try:
            self.sink.close()
        except Exception as e:
            logger.warning(f"Error closing metrics sink: {e}")
            raise

    def _maybe_send(self, now: float) -> None:
        """Send if the send deadline has passed (caller holds lock)."""
        if now > self._next_send:
            self._send()

    def _send(self) -> None:
        """Finalize and transmit the pending batch, then reset it (caller holds lock)."""
        batch = self._batch
        if batch.is_empty:
            return

        payload = batch.finalize()
        size = len(payload)
        records = batch.record_count
        self._sending = True
        try:
            self.sink.send(payload)
        except Exception as e:
            self._stats["send_errors"] += 1
            logger.error(f"Failed to send metrics batch ({records} records): {e}")
            raise
        finally:
            self._sending = False
            self._clear()

        self._stats["datagrams_sent"] += 1
        self._stats["bytes_sent"] += size
        self._stats["records_sent"] += records
        logger.debug(f"Sent metrics batch: {records} records, {size} bytes")

    def _clear(self) -> None:
        self._batch.reset()
        self._next_send = self.clock() + self.config.send_interval_seconds

    def _check_open(self) -> None:
        if self._closed:
            raise TransportClosedError("Transport is closed")

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> BatchState:
        """Current state of the pending batch."""
        if self._closed:
            return BatchState.CLOSED
        if self._sending:
            return BatchState.SENDING
        if self._batch.is_empty:
            return BatchState.EMPTY
        return BatchState.ACCUMULATING

    @property
    def pending_records(self) -> int:
        """Records committed since the last send."""
        return self._batch.record_count

    @property
    def pending_bytes(self) -> int:
        """Size the pending batch would have if sent now."""
        return self._batch.position

    @property
    def stats(self) -> dict:
        """Get transport statistics."""
        return {
            **self._stats,
            "pending_records": self.pending_records,
            "pending_bytes": self.pending_bytes,
        }
