"""Metric occurrence types."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Sequence


class MetricKind(str, Enum):
    """Payload carried by a metric occurrence."""
    COUNTER = "counter"
    VALUE = "value"
    UNIQUE = "unique"


@dataclass(frozen=True, slots=True)
class MetricOccurrence:
    """
    A single metric event handed to the transport.

    Occurrences are transient: the transport encodes them synchronously
    and keeps no reference afterwards.
    """
    name: str
    kind: MetricKind

    # Ordered (key, value) pairs; keys may repeat
    tags: tuple[tuple[str, str], ...] = ()

    # Payload: counter for COUNTER, values for VALUE / UNIQUE
    counter: float = 0.0
    values: tuple[float, ...] | tuple[int, ...] = ()

    # Unix seconds; 0 means "now" and is not sent
    timestamp: int = 0

    # Caller already supplied an environment tag
    has_env: bool = False

    @classmethod
    def count(
        cls,
        name: str,
        counter: float,
        tags: Sequence[tuple[str, str]] = (),
        **kwargs,
    ) -> MetricOccurrence:
        """Counter occurrence."""
        return cls(name=name, kind=MetricKind.COUNTER, tags=tuple(tags), counter=counter, **kwargs)

    @classmethod
    def value_set(
        cls,
        name: str,
        values: Sequence[float],
        tags: Sequence[tuple[str, str]] = (),
        **kwargs,
    ) -> MetricOccurrence:
        """Value-set occurrence (float64 samples)."""
        return cls(
            name=name,
            kind=MetricKind.VALUE,
            tags=tuple(tags),
            values=tuple(float(v) for v in values),
            **kwargs,
        )

    @classmethod
    def unique_set(
        cls,
        name: str,
        values: Sequence[int],
        tags: Sequence[tuple[str, str]] = (),
        **kwargs,
    ) -> MetricOccurrence:
        """Unique-set occurrence (int64 samples)."""
        return cls(
            name=name,
            kind=MetricKind.UNIQUE,
            tags=tuple(tags),
            values=tuple(int(v) for v in values),
            **kwargs,
        )

    @property
    def tag_names(self) -> tuple[str, ...]:
        return tuple(key for key, _ in self.tags)

    @property
    def tag_values(self) -> tuple[str, ...]:
        return tuple(value for _, value in self.tags)
