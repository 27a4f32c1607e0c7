"""Typed values carried in IPC messages and their wire encoding."""

from __future__ import annotations

import struct
from dataclasses import dataclass
from enum import IntEnum
from typing import Union

from .errors import ErrorCode, IpcError

_U32 = struct.Struct("<I")


class ValueType(IntEnum):
    """Wire tag identifying the kind of a value."""

    NULL = 0
    FLOAT = 1
    DOUBLE = 2
    INT32 = 3
    INT64 = 4
    UINT32 = 5
    UINT64 = 6
    STRING = 7
    BINARY = 8


_SCALAR_FORMATS = {
    ValueType.FLOAT: struct.Struct("<f"),
    ValueType.DOUBLE: struct.Struct("<d"),
    ValueType.INT32: struct.Struct("<i"),
    ValueType.INT64: struct.Struct("<q"),
    ValueType.UINT32: struct.Struct("<I"),
    ValueType.UINT64: struct.Struct("<Q"),
}

_FLOAT_TYPES = {ValueType.FLOAT, ValueType.DOUBLE}

Payload = Union[None, int, float, str, bytes]


def _encode_text(text: str) -> bytes:
    return text.encode("utf-8", errors="surrogateescape")


@dataclass(frozen=True)
class Value:
    """A single typed value.

    A NULL value may carry a text payload (used for error messages); that
    text is not part of its wire encoding.
    """

    type: ValueType = ValueType.NULL
    payload: Payload = None

    def __post_init__(self) -> None:
        kind = ValueType(self.type)
        object.__setattr__(self, "type", kind)
        payload = self.payload
        if kind in _SCALAR_FORMATS:
            if isinstance(payload, bool) or not isinstance(payload, (int, float)):
                raise ValueError(f"{kind.name} value needs a number, got {payload!r}")
            if kind in _FLOAT_TYPES:
                payload = float(payload)
            elif not isinstance(payload, int):
                raise ValueError(f"{kind.name} value needs an integer, got {payload!r}")
            try:
                _SCALAR_FORMATS[kind].pack(payload)
            except (struct.error, OverflowError) as exc:
                raise ValueError(f"{payload!r} does not fit in {kind.name}") from exc
            object.__setattr__(self, "payload", payload)
        elif kind is ValueType.STRING:
            if not isinstance(payload, str):
                raise ValueError(f"STRING value needs text, got {payload!r}")
        elif kind is ValueType.BINARY:
            if not isinstance(payload, (bytes, bytearray, memoryview)):
                raise ValueError(f"BINARY value needs bytes, got {payload!r}")
            object.__setattr__(self, "payload", bytes(payload))
        elif payload is not None and not isinstance(payload, str):
            raise ValueError(f"NULL value may only carry text, got {payload!r}")

    def size(self) -> int:
        """Number of bytes this value occupies on the wire."""
        if self.type in _SCALAR_FORMATS:
            return _U32.size + _SCALAR_FORMATS[self.type].size
        if self.type is ValueType.STRING:
            return 2 * _U32.size + len(_encode_text(self.payload))
        if self.type is ValueType.BINARY:
            return 2 * _U32.size + len(self.payload)
        return _U32.size

    def encode(self) -> bytes:
        """Wire bytes: a uint32 type tag followed by the payload."""
        head = _U32.pack(self.type)
        if self.type in _SCALAR_FORMATS:
            return head + _SCALAR_FORMATS[self.type].pack(self.payload)
        if self.type is ValueType.STRING:
            data = _encode_text(self.payload)
            return head + _U32.pack(len(data)) + data
        if self.type is ValueType.BINARY:
            return head + _U32.pack(len(self.payload)) + self.payload
        return head


def _need(buf, offset: int, count: int, what: str) -> None:
    if offset < 0 or len(buf) - offset < count:
        raise IpcError(ErrorCode.BUFFER_TOO_SMALL, f"Deserialize of {what} failed, buffer too small")


def decode_value(buf, offset=0):
    """Decode one value from ``buf`` at ``offset``; return (value, bytes consumed)."""
    _need(buf, offset, _U32.size, "value type")
    (code,) = _U32.unpack_from(buf, offset)
    try:
        kind = ValueType(code)
    except ValueError:
        raise IpcError(ErrorCode.INVALID_BUFFER, f"Unknown value type {code}") from None
    pos = offset + _U32.size

    payload: Payload = None
    if kind in _SCALAR_FORMATS:
        fmt = _SCALAR_FORMATS[kind]
        _need(buf, pos, fmt.size, f"{fmt.size * 8}-bit value")
        (payload,) = fmt.unpack_from(buf, pos)
        pos += fmt.size
    elif kind in (ValueType.STRING, ValueType.BINARY):
        what = "string" if kind is ValueType.STRING else "buffer"
        _need(buf, pos, _U32.size, f"{what} length")
        (length,) = _U32.unpack_from(buf, pos)
        pos += _U32.size
        _need(buf, pos, length, f"{what} data")
        data = bytes(buf[pos:pos + length])
        pos += length
        payload = data.decode("utf-8", errors="surrogateescape") if kind is ValueType.STRING else data

    return Value(kind, payload), pos - offset


def null():
    """A NULL value."""
    return Value(ValueType.NULL)


def float32(number):
    """A single-precision float value."""
    return Value(ValueType.FLOAT, number)


def float64(number):
    """A double-precision float value."""
    return Value(ValueType.DOUBLE, number)


def int32(number):
    """A signed 32-bit integer value."""
    return Value(ValueType.INT32, number)


def int64(number):
    """A signed 64-bit integer value."""
    return Value(ValueType.INT64, number)


def uint32(number):
    """An unsigned 32-bit integer value."""
    return Value(ValueType.UINT32, number)


def uint64(number):
    """An unsigned 64-bit integer value."""
    return Value(ValueType.UINT64, number)


def string(text):
    """A text value, sent as UTF-8."""
    return Value(ValueType.STRING, text)


def binary(data):
    """A raw bytes value."""
    return Value(ValueType.BINARY, bytes(data))