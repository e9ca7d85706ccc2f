"""
Minimal bencode codec for .torrent files.

Supports the four bencode types: integers, byte strings (str is UTF-8
encoded), lists (list/tuple) and dictionaries. Dictionary keys are emitted in
sorted raw-byte order so equal input always produces identical bytes.
"""
from typing import Any, List, Tuple


class BencodeError(ValueError):
    """Raised on values that cannot be encoded or malformed input."""


def encode(value: Any) -> bytes:
    """Bencode a value."""
    out: List[bytes] = []
    _encode(value, out)
    return b"".join(out)


def _encode(value: Any, out: List[bytes]) -> None:
    if isinstance(value, bool):
        raise BencodeError("Booleans are not bencodable")
    if isinstance(value, int):
        out.append(b"i%de" % value)
    elif isinstance(value, (bytes, bytearray)):
        out.append(b"%d:" % len(value))
        out.append(bytes(value))
    elif isinstance(value, str):
        _encode(value.encode("utf-8"), out)
    elif isinstance(value, (list, tuple)):
        out.append(b"l")
        for item in value:
            _encode(item, out)
        out.append(b"e")
    elif isinstance(value, dict):
        items = []
        for key, item in value.items():
            raw_key = key.encode("utf-8") if isinstance(key, str) else key
            if not isinstance(raw_key, bytes):
                raise BencodeError(f"Dictionary keys must be strings, got {type(key).__name__}")
            items.append((raw_key, item))
        items.sort(key=lambda pair: pair[0])
        out.append(b"d")
        for raw_key, item in items:
            _encode(raw_key, out)
            _encode(item, out)
        out.append(b"e")
    else:
        raise BencodeError(f"Cannot bencode {type(value).__name__}")


def decode(data: bytes) -> Any:
    """Decode a complete bencoded document. Strings are returned as bytes."""
    value, end = _decode(data, 0)
    if end != len(data):
        raise BencodeError(f"Trailing data after offset {end}")
    return value


def _decode(data: bytes, pos: int) -> Tuple[Any, int]:
    if pos >= len(data):
        raise BencodeError("Unexpected end of data")
    lead = data[pos:pos + 1]

    if lead == b"i":
        end = data.find(b"e", pos)
        if end < 0:
            raise BencodeError(f"Unterminated integer at offset {pos}")
        try:
            return int(data[pos + 1:end]), end + 1
        except ValueError:
            raise BencodeError(f"Invalid integer at offset {pos}")

    if lead == b"l":
        items = []
        pos += 1
        while data[pos:pos + 1] != b"e":
            item, pos = _decode(data, pos)
            items.append(item)
        return items, pos + 1

    if lead == b"d":
        result = {}
        pos += 1
        while data[pos:pos + 1] != b"e":
            key, pos = _decode(data, pos)
            if not isinstance(key, bytes):
                raise BencodeError(f"Non-string dictionary key at offset {pos}")
            result[key], pos = _decode(data, pos)
        return result, pos + 1

    if lead.isdigit():
        colon = data.find(b":", pos)
        if colon < 0:
            raise BencodeError(f"Missing string length separator at offset {pos}")
        try:
            length = int(data[pos:colon])
        except ValueError:
            raise BencodeError(f"Invalid string length at offset {pos}")
        start = colon + 1
        if start + length > len(data):
            raise BencodeError(f"String at offset {pos} runs past end of data")
        return data[start:start + length], start + length

    raise BencodeError(f"Unexpected byte {lead!r} at offset {pos}")
