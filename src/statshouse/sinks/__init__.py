"""Datagram sinks - destinations for finalized batches."""

from __future__ import annotations

from typing import TYPE_CHECKING

from .base import DatagramSink
from .null import NullSink
from .udp import UdpSink

if TYPE_CHECKING:
    from ..config import TransportConfig

__all__ = [
    "DatagramSink",
    "NullSink",
    "UdpSink",
    "create_sink",
]


def create_sink(config: TransportConfig) -> DatagramSink:
    """Create the sink selected by the transport config."""
    if not config.enabled:
        return NullSink()
    return UdpSink(host=config.host, port=config.port)
