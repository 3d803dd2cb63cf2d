"""Exceptions raised by the statshouse client."""

from __future__ import annotations


class StatsHouseError(Exception):
    """Base exception for statshouse client errors."""
    pass


class TransportInitError(StatsHouseError):
    """The datagram socket could not be set up."""

    def __init__(self, host: str, port: int, cause: Exception | None = None):
        message = f"Cannot open datagram socket to {host}:{port}"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)
        self.host = host
        self.port = port


class TransportClosedError(StatsHouseError):
    """Operation attempted on a transport after close()."""
    pass
