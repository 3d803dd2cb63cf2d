"""Batch decoder for diagnostics and tests."""

from __future__ import annotations

import struct
from dataclasses import dataclass, field

from .batch import BATCH_TAG, HEADER_SIZE, FieldMask
from .codec import BIG_STRING_MARKER

_HEADER = struct.Struct("<Iii")
_UINT32 = struct.Struct("<I")
_INT32 = struct.Struct("<i")
_FLOAT64 = struct.Struct("<d")


@dataclass
class DecodedRecord:
    """One record read back from a datagram."""
    field_mask: int
    name: str
    tags: list[tuple[str, str]] = field(default_factory=list)
    counter: float | None = None
    timestamp: int | None = None
    values: list[float] | list[int] = field(default_factory=list)

    @property
    def tag_dict(self) -> dict[str, str]:
        """Tags as a dict (later duplicates win)."""
        return dict(self.tags)


@dataclass
class DecodedBatch:
    """A datagram read back into its records."""
    record_count: int
    records: list[DecodedRecord]
    size: int


class _Reader:
    def __init__(self, data: bytes):
        self.data = data
        self.pos = 0

    def unpack(self, st: struct.Struct):
        if self.pos + st.size > len(self.data):
            raise ValueError(f"Truncated batch at offset {self.pos}")
        (value,) = st.unpack_from(self.data, self.pos)
        self.pos += st.size
        return value

    def string(self) -> str:
        if self.pos >= len(self.data):
            raise ValueError(f"Truncated string at offset {self.pos}")
        length = self.data[self.pos]
        if length == BIG_STRING_MARKER:
            if self.pos + 4 > len(self.data):
                raise ValueError(f"Truncated string at offset {self.pos}")
            length = int.from_bytes(self.data[self.pos + 1:self.pos + 4], "little")
            prefix = 4
        elif length > BIG_STRING_MARKER:
            raise ValueError(f"Invalid string prefix {length} at offset {self.pos}")
        else:
            prefix = 1

        start = self.pos + prefix
        end = start + length
        padded = self.pos + ((prefix + length + 3) & ~3)
        if padded > len(self.data):
            raise ValueError(f"Truncated string at offset {self.pos}")
        if any(self.data[end:padded]):
            raise ValueError(f"Non-zero string padding at offset {end}")
        self.pos = padded
        return bytes(self.data[start:end]).decode("utf-8", "surrogatepass")

    def series(self, unique: bool) -> list:
        count = self.unpack(_UINT32)
        fmt = f"<{count}q" if unique else f"<{count}d"
        size = struct.calcsize(fmt)
        if self.pos + size > len(self.data):
            raise ValueError(f"Truncated value array at offset {self.pos}")
        values = list(struct.unpack_from(fmt, self.data, self.pos))
        self.pos += size
        return values


def decode_batch(data: bytes | bytearray | memoryview) -> DecodedBatch:
    """
    Parse one datagram produced by the transport.

    Raises ValueError if the data is not a well-formed batch.
    """
    data = bytes(data)
    if len(data) < HEADER_SIZE:
        raise ValueError(f"Batch too short: {len(data)} bytes")
    tag, reserved, record_count = _HEADER.unpack_from(data, 0)
    if tag != BATCH_TAG:
        raise ValueError(f"Unexpected batch tag {tag:#x}")
    if reserved != 0:
        raise ValueError(f"Reserved header field is {reserved}, expected 0")

    reader = _Reader(data)
    reader.pos = HEADER_SIZE
    records = []
    for _ in range(record_count):
        mask = reader.unpack(_UINT32)
        record = DecodedRecord(field_mask=mask, name=reader.string())
        for _ in range(reader.unpack(_INT32)):
            key = reader.string()
            record.tags.append((key, reader.string()))
        if mask & FieldMask.COUNTER:
            record.counter = reader.unpack(_FLOAT64)
        if mask & FieldMask.TIMESTAMP:
            record.timestamp = reader.unpack(_UINT32)
        if mask & FieldMask.VALUE:
            record.values = reader.series(unique=False)
        elif mask & FieldMask.UNIQUE:
            record.values = reader.series(unique=True)
        records.append(record)

    if reader.pos != len(data):
        raise ValueError(f"{len(data) - reader.pos} trailing bytes after {record_count} records")
    return DecodedBatch(record_count=record_count, records=records, size=len(data))
