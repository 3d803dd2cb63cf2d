"""
StatsHouse client - batched, fire-and-forget metrics over UDP.

Usage:
    from statshouse import Client, ClientConfig, TransportConfig

    config = ClientConfig(transport=TransportConfig(host="127.0.0.1", env="production"))
    with Client(config) as client:
        client.metric("requests").tag("method", "GET").count(1)
        client.metric("latency").tags("GET").values([0.12, 0.31])
        client.metric("visitors").uniques([1001, 1002])
"""

from .client import Client, MetricRef, TAG_HOST, TAG_STRING_TOP
from .config import ClientConfig, TransportConfig, DEFAULT_PORT
from .decode import DecodedBatch, DecodedRecord, decode_batch
from .emitter import MetricEmitter
from .errors import StatsHouseError, TransportClosedError, TransportInitError
from .events import MetricKind, MetricOccurrence
from .transport import BatchState, Transport

__version__ = "0.1.0"

__all__ = [
    # Core classes
    "Client",
    "MetricRef",
    "Transport",
    "MetricEmitter",
    "BatchState",
    # Configuration
    "ClientConfig",
    "TransportConfig",
    "DEFAULT_PORT",
    "TAG_HOST",
    "TAG_STRING_TOP",
    # Events
    "MetricKind",
    "MetricOccurrence",
    # Diagnostics
    "decode_batch",
    "DecodedBatch",
    "DecodedRecord",
    # Exceptions
    "StatsHouseError",
    "TransportInitError",
    "TransportClosedError",
]
