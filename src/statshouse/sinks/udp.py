"""UDP sink for metrics batches."""

from __future__ import annotations

import logging
import socket
from dataclasses import dataclass, field
from typing import Any

from ..errors import TransportInitError
from .base import DatagramSink


logger = logging.getLogger(__name__)


@dataclass
class UdpSink(DatagramSink):
    """
    Sink that sends each batch as one UDP datagram.

    The socket is unconnected and opened once, at construction; failure to
    resolve the host or open the socket raises TransportInitError.

    Config:
        host: collector host name or address
        port: collector UDP port
    """
    host: str = "127.0.0.1"
    port: int = 13337

    # Internal state
    _socket: socket.socket | None = field(default=None, init=False)
    _address: Any = field(default=None, init=False)

    def __post_init__(self):
        try:
            family, _, _, _, address = socket.getaddrinfo(
                self.host, self.port, type=socket.SOCK_DGRAM,
            )[0]
            self._socket = socket.socket(family, socket.SOCK_DGRAM)
        except OSError as e:
            raise TransportInitError(self.host, self.port, e) from e
        self._address = address

        logger.info(f"UDP sink ready for {self.host}:{self.port}")

    def send(self, payload: bytes | memoryview) -> None:
        if self._socket is None:
            raise OSError(f"UDP sink for {self.host}:{self.port} is closed")
        self._socket.sendto(payload, self._address)

    def close(self) -> None:
        if self._socket:
            self._socket.close()
            self._socket = None

        logger.info("UDP sink closed")

    def health_check(self) -> bool:
        return self._socket is not None
