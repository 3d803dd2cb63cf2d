"""Client and metric reference builder."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Sequence

from .config import ClientConfig
from .events import MetricKind, MetricOccurrence
from .transport import Transport

TAG_STRING_TOP = "_s"
TAG_HOST = "_h"

# Positional tags are keyed "1".."15"
DEFAULT_TAG_NAMES = tuple(str(i) for i in range(1, 16))

# Tag keys that carry the environment
ENV_TAG_NAMES = ("env", "0")


@dataclass
class Client:
    """
    Entry point for recording metrics.

    Usage:
        with Client(ClientConfig(transport=TransportConfig(env="staging"))) as client:
            requests = client.metric("api_requests").tag("method", "GET")
            requests.count(1)
            client.metric("api_latency").tags("GET", "200").values([0.12, 0.08])
    """
    config: ClientConfig = field(default_factory=ClientConfig)

    # Shared transport (default: built from config.transport)
    transport: Transport | None = None

    def __post_init__(self):
        if self.transport is None:
            self.transport = Transport(config=self.config.transport)

    def metric(self, name: str) -> MetricRef:
        """Reference to the metric ``name`` with no tags."""
        return MetricRef(transport=self.transport, name=name)

    def flush(self) -> None:
        self.transport.flush()

    def close(self) -> None:
        self.transport.close()

    def __enter__(self) -> Client:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


@dataclass(frozen=True)
class MetricRef:
    """
    Immutable metric name plus tags and optional timestamp.

    Every builder call returns a new reference, so a partially tagged
    reference can be kept and extended from several places.
    """
    transport: Transport = field(repr=False, compare=False, hash=False)
    name: str
    tag_names: tuple[str, ...] = DEFAULT_TAG_NAMES
    tag_values: tuple[str, ...] = ()
    timestamp: int = 0
    has_env: bool = False

    def tag(self, name: str, value: str) -> MetricRef:
        """Append a named tag."""
        position = len(self.tag_values)
        names = self.tag_names
        if len(names) <= position:
            names = names + tuple(str(i) for i in range(len(names) + 1, position + 2))
        names = names[:position] + (name,) + names[position + 1:]
        return replace(
            self,
            tag_names=names,
            tag_values=self.tag_values + (value,),
            has_env=self.has_env or name in ENV_TAG_NAMES,
        )

    def tags(self, *values: str) -> MetricRef:
        """Append positional tags, keyed by position."""
        return replace(self, tag_values=self.tag_values + values)

    def at(self, timestamp: int) -> MetricRef:
        """Pin records to a unix timestamp instead of arrival time."""
        return replace(self, timestamp=int(timestamp))

    def count(self, n: float = 1.0) -> None:
        self.transport.write_count(
            self.name, n, self.tag_names, self.tag_values,
            timestamp=self.timestamp, has_env=self.has_env,
        )

    def value(self, v: float) -> None:
        self.values((v,))

    def values(self, vs: Sequence[float]) -> None:
        self.transport.write_values(
            self.name, vs, self.tag_names, self.tag_values,
            timestamp=self.timestamp, has_env=self.has_env,
        )

    def unique(self, v: int) -> None:
        self.uniques((v,))

    def uniques(self, vs: Sequence[int]) -> None:
        self.transport.write_uniques(
            self.name, vs, self.tag_names, self.tag_values,
            timestamp=self.timestamp, has_env=self.has_env,
        )

    def occurrence(
        self,
        kind: MetricKind,
        counter: float = 0.0,
        values: Sequence[float] | Sequence[int] = (),
    ) -> MetricOccurrence:
        """Detached occurrence, for queueing through MetricEmitter."""
        tags = tuple(zip(self.tag_names, self.tag_values))
        if kind == MetricKind.COUNTER:
            return MetricOccurrence.count(
                self.name, counter, tags, timestamp=self.timestamp, has_env=self.has_env,
            )
        if kind == MetricKind.VALUE:
            return MetricOccurrence.value_set(
                self.name, values, tags, timestamp=self.timestamp, has_env=self.has_env,
            )
        return MetricOccurrence.unique_set(
            self.name, values, tags, timestamp=self.timestamp, has_env=self.has_env,
        )
