"""Base sink interface."""

from __future__ import annotations

from abc import ABC, abstractmethod


class DatagramSink(ABC):
    """
    Abstract base class for datagram sinks.

    A sink receives one finalized batch at a time and delivers it as a
    single datagram. Delivery is best-effort; errors propagate to the
    transport's caller and are never retried.
    """

    @abstractmethod
    def send(self, payload: bytes | memoryview) -> None:
        """
        Send one datagram.

        ``payload`` may be a view into a buffer that is reused as soon as
        this call returns; copy it if it must be kept.
        """
        ...

    def close(self) -> None:
        """Release the underlying resources."""
        pass

    def health_check(self) -> bool:
        """Check if the sink is usable."""
        return True
