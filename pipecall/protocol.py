"""Message framing, function call/reply messages and protocol helpers."""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from enum import IntEnum
from itertools import islice

from .errors import ErrorCode, IpcError
from .value import Value, ValueType, decode_value, string, uint32, uint64

# Every frame starts with an 8-byte header; the payload length sits in its
# upper four bytes.
HEADER_SIZE = 8
_LENGTH_OFFSET = 4

_SIZE_FIELD = struct.Struct("<Q")
_U32 = struct.Struct("<I")

# Hex dumps stop after this many bytes.
_HEX_DUMP_LIMIT = 102

_INTEGER_TYPES = {ValueType.INT32, ValueType.INT64, ValueType.UINT32, ValueType.UINT64}


class ExitCode(IntEnum):
    """Exit codes of a server process."""

    NORMAL_EXIT = 0
    VERSION_MISMATCH = 252
    OTHER_ERROR = 253
    MISSING_DEPENDENCY = 254
    STILL_RUNNING = 259


_EXIT_DESCRIPTIONS = {
    ExitCode.STILL_RUNNING: "Still runnings",
    ExitCode.NORMAL_EXIT: "Normal exit",
    ExitCode.OTHER_ERROR: "Unknown error - check logs",
    ExitCode.VERSION_MISMATCH: "Version mismatch",
}


def describe_exit_code(code):
    """Human-readable description of a process exit code."""
    try:
        key = ExitCode(code)
    except ValueError:
        return "Generic Error"
    return _EXIT_DESCRIPTIONS.get(key, "Generic Error")


_TYPE_MANGLING = {
    ValueType.NULL: "N0",
    ValueType.FLOAT: "F4",
    ValueType.DOUBLE: "F8",
    ValueType.INT32: "I4",
    ValueType.INT64: "I8",
    ValueType.UINT32: "U4",
    ValueType.UINT64: "U8",
    ValueType.STRING: "PS",
    ValueType.BINARY: "PB",
}


def make_unique_id(name, parameters):
    """Name decorated with its parameter types, allowing overloads."""
    return name + "_" + "".join(_TYPE_MANGLING[ValueType(p)] for p in parameters)


def vector_to_hex(buf):
    """Upper-case hex dump of the first bytes of ``buf``, each followed by a space."""
    return "".join(f"{byte:02X} " for byte in islice(bytes(buf), _HEX_DUMP_LIMIT))


_log_sink: tuple = (None, None)


def register_log_callback(callback, data):
    """Install ``callback(data, fmt, args)`` as the receiver of log messages."""
    global _log_sink
    _log_sink = (callback, data)


def log(fmt, *args):
    """Pass a log message to the registered callback, if any."""
    callback, data = _log_sink
    if callback is not None:
        callback(data, fmt, args)


def make_sendable(buf):
    """Return ``buf`` with its header's length field set to the payload length.

    ``buf`` must start with the reserved header bytes.
    """
    if len(buf) < HEADER_SIZE:
        raise IpcError(ErrorCode.BUFFER_TOO_SMALL, "Buffer too small for a frame header")
    out = bytearray(buf)
    _U32.pack_into(out, _LENGTH_OFFSET, len(out) - HEADER_SIZE)
    return bytes(out)


def read_size(buf):
    """Payload length stored in a frame header."""
    if len(buf) < HEADER_SIZE:
        raise IpcError(ErrorCode.BUFFER_TOO_SMALL, "Buffer too small for a frame header")
    return _U32.unpack_from(buf, _LENGTH_OFFSET)[0]


def _read_total(buf, offset: int) -> int:
    if offset < 0 or len(buf) - offset < _SIZE_FIELD.size:
        raise IpcError(ErrorCode.BUFFER_TOO_SMALL, "Buffer too small")
    (total,) = _SIZE_FIELD.unpack_from(buf, offset)
    if len(buf) - offset < total:
        raise IpcError(ErrorCode.BUFFER_TOO_SMALL, "Buffer too small")
    return total


def _read_count(buf, offset: int) -> int:
    if len(buf) - offset < _U32.size:
        raise IpcError(ErrorCode.BUFFER_TOO_SMALL, "Buffer too small for value count")
    return _U32.unpack_from(buf, offset)[0]


def _as_int(value: Value, what: str) -> int:
    if value.type not in _INTEGER_TYPES:
        raise IpcError(ErrorCode.INVALID_BUFFER, f"{what} must be an integer, got {value.type.name}")
    return value.payload


def _as_text(value: Value, what: str) -> str:
    if value.type is not ValueType.STRING:
        raise IpcError(ErrorCode.INVALID_BUFFER, f"{what} must be a string, got {value.type.name}")
    return value.payload


class _Reader:
    """Sequential decoder over a buffer."""

    def __init__(self, buf, offset: int) -> None:
        self.buf = buf
        self.pos = offset

    def value(self) -> Value:
        value, used = decode_value(self.buf, self.pos)
        self.pos += used
        return value

    def values(self) -> list:
        count = _read_count(self.buf, self.pos)
        self.pos += _U32.size
        return [self.value() for _ in range(count)]


def _encode_message(size: int, head: list, values: list) -> bytes:
    parts = [_SIZE_FIELD.pack(size)]
    parts.extend(v.encode() for v in head)
    parts.append(_U32.pack(len(values)))
    parts.extend(v.encode() for v in values)
    return b"".join(parts)


@dataclass
class FunctionCall:
    """Request to run ``class_name``'s ``function_name`` with ``arguments``."""

    uid: int = 0
    class_name: str = ""
    function_name: str = ""
    arguments: list = field(default_factory=list)

    def _head(self) -> list:
        return [uint64(self.uid), string(self.class_name), string(self.function_name)]

    def size(self):
        """Encoded length in bytes, including the leading size field."""
        return (_SIZE_FIELD.size + sum(v.size() for v in self._head()) + _U32.size
                + sum(v.size() for v in self.arguments))

    def encode(self):
        """Wire bytes of this message."""
        return _encode_message(self.size(), self._head(), self.arguments)


def decode_function_call(buf, offset=0):
    """Decode a function call at ``offset``; return (message, bytes consumed)."""
    _read_total(buf, offset)
    reader = _Reader(buf, offset + _SIZE_FIELD.size)
    uid = _as_int(reader.value(), "uid")
    class_name = _as_text(reader.value(), "class name")
    function_name = _as_text(reader.value(), "function name")
    arguments = reader.values()
    return FunctionCall(uid, class_name, function_name, arguments), reader.pos - offset


@dataclass
class FunctionReply:
    """Result of a function call: returned values or an error message."""

    uid: int = 0
    values: list = field(default_factory=list)
    error: str = ""
    obs_call_duration_ms: int = 0

    def _head(self) -> list:
        return [uint64(self.uid), uint32(self.obs_call_duration_ms), string(self.error)]

    def size(self):
        """Encoded length in bytes, including the leading size field."""
        return (_SIZE_FIELD.size + sum(v.size() for v in self._head()) + _U32.size
                + sum(v.size() for v in self.values))

    def encode(self):
        """Wire bytes of this message."""
        return _encode_message(self.size(), self._head(), self.values)


def decode_function_reply(buf, offset=0):
    """Decode a function reply at ``offset``; return (message, bytes consumed)."""
    _read_total(buf, offset)
    reader = _Reader(buf, offset + _SIZE_FIELD.size)
    uid = _as_int(reader.value(), "uid")
    duration = _as_int(reader.value(), "call duration")
    error = _as_text(reader.value(), "error")
    values = reader.values()
    return FunctionReply(uid, values, error, duration), reader.pos - offset