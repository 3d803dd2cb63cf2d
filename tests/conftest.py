"""Shared test fixtures for the statshouse client tests."""

import pytest

from statshouse.config import TransportConfig
from statshouse.decode import decode_batch
from statshouse.sinks.base import DatagramSink
from statshouse.transport import Transport


class CaptureSink(DatagramSink):
    """Sink that keeps a copy of every datagram."""

    def __init__(self):
        self.datagrams: list[bytes] = []
        self.closed = False

    def send(self, payload) -> None:
        self.datagrams.append(bytes(payload))

    def close(self) -> None:
        self.closed = True

    def batches(self):
        return [decode_batch(d) for d in self.datagrams]

    def records(self):
        return [r for batch in self.batches() for r in batch.records]


class FailingSink(CaptureSink):
    """Sink whose sends always fail."""

    def send(self, payload) -> None:
        raise OSError("network unreachable")


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def sink():
    return CaptureSink()


@pytest.fixture
def failing_sink():
    return FailingSink()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config():
    return TransportConfig(env="test")


@pytest.fixture
def transport(config, sink, clock):
    return Transport(config=config, sink=sink, clock=clock)
