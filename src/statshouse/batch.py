"""Reusable datagram buffer and metric record encoding."""

from __future__ import annotations

import struct
from enum import IntFlag
from typing import Sequence

from .codec import pack_string, pack_tag

BATCH_TAG = 0x56580239

# Header: batch tag, reserved, record count
HEADER_SIZE = 12

# Soft ceiling per datagram, conservatively below path MTU minus IP/UDP headers
MAX_PAYLOAD_SIZE = 1232

# Largest datagram the buffer can hold
MAX_DATAGRAM_SIZE = 65535

# Key of the environment tag injected when the caller did not supply one
ENV_TAG_KEY = "0"

UINT32_SIZE = 4
FLOAT64_SIZE = 8
INT64_SIZE = 8

_HEADER = struct.Struct("<Iii")
_UINT32 = struct.Struct("<I")
_INT32 = struct.Struct("<i")
_FLOAT64 = struct.Struct("<d")

_UINT64_MASK = (1 << 64) - 1


class FieldMask(IntFlag):
    """Bits of the per-record field mask."""
    COUNTER = 1 << 0
    VALUE = 1 << 1
    UNIQUE = 1 << 2
    TIMESTAMP = 1 << 4
    NEW_SEMANTIC = 1 << 31


class BatchBuffer:
    """
    One outgoing datagram under construction.

    Bytes before ``position`` are always a header placeholder followed by
    complete records. A record that does not fit is never partially
    committed: the position only moves once the whole record is encoded.
    """

    def __init__(self, env: str = "", capacity: int = MAX_DATAGRAM_SIZE):
        self.env = env
        self._buf = bytearray(capacity)
        self.position = HEADER_SIZE
        self.record_count = 0

    @property
    def capacity(self) -> int:
        return len(self._buf)

    @property
    def is_empty(self) -> bool:
        return self.position == HEADER_SIZE

    def write_record_header(
        self,
        field_mask: int,
        has_env: bool,
        name: str,
        tag_names: Sequence[str],
        tag_values: Sequence[str],
        counter: float = 0.0,
        timestamp: int = 0,
    ) -> bool:
        """
        Encode a record header at the current position.

        Returns False, leaving the position untouched, if the header would
        run past the end of the buffer. The record count is not changed;
        committing the record is up to the caller.
        """
        timestamp = int(timestamp)
        if timestamp != 0:
            field_mask |= FieldMask.TIMESTAMP
        field_mask |= FieldMask.NEW_SEMANTIC

        end = self._encode_header(
            int(field_mask), has_env, name, tag_names, tag_values, counter, timestamp,
        )
        if end is None:
            return False
        self.position = end
        return True

    def _encode_header(
        self,
        field_mask: int,
        has_env: bool,
        name: str,
        tag_names: Sequence[str],
        tag_values: Sequence[str],
        counter: float,
        timestamp: int,
    ) -> int | None:
        buf = self._buf
        pos = self._pack(_UINT32, self.position, field_mask)
        if pos is None:
            return None
        pos = pack_string(buf, pos, name)
        if pos is None:
            return None

        tags_count = min(len(tag_values), len(tag_names))
        pos = self._pack(_INT32, pos, tags_count if has_env else tags_count + 1)
        if pos is None:
            return None
        if not has_env:
            pos = pack_tag(buf, pos, ENV_TAG_KEY, self.env)
            if pos is None:
                return None
        for i in range(tags_count):
            pos = pack_tag(buf, pos, tag_names[i], tag_values[i])
            if pos is None:
                return None

        if field_mask & FieldMask.COUNTER:
            pos = self._pack(_FLOAT64, pos, counter)
            if pos is None:
                return None
        if field_mask & FieldMask.TIMESTAMP:
            pos = self._pack(_UINT32, pos, timestamp & 0xFFFFFFFF)
        return pos

    def _pack(self, st: struct.Struct, pos: int, value) -> int | None:
        end = pos + st.size
        if end > len(self._buf):
            return None
        st.pack_into(self._buf, pos, value)
        return end

    def append_series(
        self,
        values: Sequence[float] | Sequence[int],
        start: int,
        count: int,
        unique: bool = False,
    ) -> None:
        """
        Append an inline value array: uint32 count then ``count`` items of
        ``values`` beginning at ``start``.

        The caller must have reserved the space when writing the header.
        """
        chunk = values[start:start + count]
        if unique:
            struct.pack_into(
                f"<I{count}Q", self._buf, self.position, count,
                *(v & _UINT64_MASK for v in chunk),
            )
            self.position += UINT32_SIZE + count * INT64_SIZE
        else:
            struct.pack_into(f"<I{count}d", self._buf, self.position, count, *chunk)
            self.position += UINT32_SIZE + count * FLOAT64_SIZE

    def rollback(self, position: int) -> None:
        """Discard everything written at or after ``position``."""
        self.position = position

    def finalize(self) -> memoryview:
        """Write the batch header and return the populated region."""
        _HEADER.pack_into(self._buf, 0, BATCH_TAG, 0, self.record_count)
        return memoryview(self._buf)[:self.position]

    def reset(self) -> None:
        self.position = HEADER_SIZE
        self.record_count = 0
