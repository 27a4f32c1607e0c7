"""Error codes shared by every layer of the IPC stack."""

from __future__ import annotations

from enum import IntEnum


class ErrorCode(IntEnum):
    """Outcome of a transport or protocol operation."""

    UNKNOWN = -1
    OK = 0
    SUCCESS = 0
    ERROR = 1
    INVALID_BUFFER = 2
    BUFFER_TOO_SMALL = 3
    BUFFER_TOO_LARGE = 4
    MORE_DATA = 5
    TIMED_OUT = 6
    DISCONNECTED = 7
    TOO_MUCH_DATA = 8
    CONNECTED = 9
    PENDING = 10
    BUFFER_OVERFLOW = 11


class IpcError(Exception):
    """Raised when an IPC operation fails; carries the matching error code."""

    def __init__(self, code, message):
        super().__init__(message)
        self.code = ErrorCode(code)
        self.message = message

    def __repr__(self) -> str:
        return f"IpcError({self.code.name}, {self.message!r})"