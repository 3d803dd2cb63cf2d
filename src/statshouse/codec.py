"""String and tag field encoding for the metrics wire format."""

from __future__ import annotations

# Length prefix: one byte for short strings, marker + 3 bytes otherwise
TINY_STRING_LEN = 253
BIG_STRING_MARKER = 254
MAX_STRING_LEN = (1 << 24) - 1


def utf8_length(s: str) -> int:
    """
    Number of bytes ``s`` occupies once encoded as UTF-8.

    A surrogate pair stored as two code points counts as one 4-byte
    sequence. Lone surrogates count as 3 bytes.
    """
    if s.isascii():
        return len(s)
    count = 0
    i = 0
    n = len(s)
    while i < n:
        cp = ord(s[i])
        if cp <= 0x7F:
            count += 1
        elif cp <= 0x7FF:
            count += 2
        elif cp > 0xFFFF:
            count += 4
        elif 0xD800 <= cp <= 0xDBFF and i + 1 < n and 0xDC00 <= ord(s[i + 1]) <= 0xDFFF:
            count += 4
            i += 1
        else:
            count += 3
        i += 1
    return count


def utf8_bytes(s: str) -> bytes:
    """Encode ``s`` to UTF-8, tolerating surrogate code points."""
    try:
        return s.encode("utf-8")
    except UnicodeEncodeError:
        # Round-trip through UTF-16 joins paired surrogates into one code point
        joined = s.encode("utf-16-le", "surrogatepass").decode("utf-16-le", "surrogatepass")
        return joined.encode("utf-8", "surrogatepass")


def string_size(length: int) -> int:
    """Encoded size of a string field carrying ``length`` payload bytes."""
    length = min(length, MAX_STRING_LEN)
    prefix = 1 if length <= TINY_STRING_LEN else 4
    return (prefix + length + 3) & ~3


def pack_string(buf: bytearray, offset: int, s: str) -> int | None:
    """
    Write ``s`` as a length-prefixed, 4-byte aligned field at ``offset``.

    Returns the offset just past the field, or None if the field would run
    past the end of ``buf``. Nothing is written when None is returned.
    """
    length = min(utf8_length(s), MAX_STRING_LEN)
    end = offset + string_size(length)
    if end > len(buf):
        return None
    data = utf8_bytes(s)

    if length <= TINY_STRING_LEN:
        buf[offset] = length
        start = offset + 1
    else:
        buf[offset] = BIG_STRING_MARKER
        buf[offset + 1:offset + 4] = length.to_bytes(3, "little")
        start = offset + 4

    buf[start:start + length] = data[:length]
    # The buffer is reused between batches, so padding must be cleared
    for i in range(start + length, end):
        buf[i] = 0
    return end


def pack_tag(buf: bytearray, offset: int, key: str, value: str) -> int | None:
    """Write a tag as two string fields. Returns None if it does not fit."""
    after_key = pack_string(buf, offset, key)
    if after_key is None:
        return None
    return pack_string(buf, after_key, value)


def encode_string(s: str) -> bytes:
    """Standalone encoding of a single string field."""
    buf = bytearray(string_size(utf8_length(s)))
    pack_string(buf, 0, s)
    return bytes(buf)


def encode_tag(key: str, value: str) -> bytes:
    """Standalone encoding of a key/value tag."""
    return encode_string(key) + encode_string(value)
