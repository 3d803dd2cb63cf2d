"""Sink used when the transport is disabled."""

from __future__ import annotations

from dataclasses import dataclass

from .base import DatagramSink


@dataclass
class NullSink(DatagramSink):
    """
    Sink that accepts and discards every datagram.

    Useful for tests and for turning metrics off without touching callers.
    """
    datagrams_discarded: int = 0
    bytes_discarded: int = 0

    def send(self, payload: bytes | memoryview) -> None:
        self.datagrams_discarded += 1
        self.bytes_discarded += len(payload)
