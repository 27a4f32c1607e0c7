"""Named-FIFO transport: a pair of pipes carrying requests and replies."""

from __future__ import annotations

import os
import select
import threading
from enum import IntEnum
from typing import Dict, Optional, Tuple

from .async_op import AsyncOp
from .errors import ErrorCode, IpcError

# Data is moved through the pipes in pieces of at most this many bytes.
CHUNK_SIZE = 8 * 1024

_FIFO_MODE = 0o600
_WRITE_FLAGS = os.O_WRONLY | getattr(os, "O_DSYNC", 0)


class SocketType(IntEnum):
    """Which of the two pipes an operation uses."""

    REQUEST = 0
    REPLY = 1


def _remove(path: str) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        pass


class FifoSocket:
    """Two named FIFOs, ``<name>-req`` and ``<name>-rep``.

    The creating side makes the FIFOs; the opening side only uses them.
    Readers open their end read-write, so a reader never sees end-of-file and
    data stays in the pipe while any descriptor is open.
    """

    def __init__(self, name, *, create=False):
        self.name = name
        self.request_path = name + "-req"
        self.reply_path = name + "-rep"
        self._created = False
        self._connected = True
        self._readers: Dict[Tuple[SocketType, bool], int] = {}
        self._writer: Optional[int] = None
        self._read_lock = threading.Lock()
        self._write_lock = threading.Lock()
        if create:
            self._make_fifo(self.request_path, "request")
            self._make_fifo(self.reply_path, "reply")
            self._created = True

    @staticmethod
    def _make_fifo(path: str, label: str) -> None:
        try:
            _remove(path)
            os.mkfifo(path, _FIFO_MODE)
        except OSError as exc:
            raise IpcError(ErrorCode.ERROR, f"Could not create {label} pipe") from exc

    def _path(self, kind: SocketType) -> str:
        return self.request_path if kind is SocketType.REQUEST else self.reply_path

    def _reader(self, kind: SocketType, blocking: bool) -> int:
        key = (kind, blocking)
        with self._read_lock:
            fd = self._readers.get(key)
            if fd is None:
                flags = os.O_RDWR | (0 if blocking else os.O_NONBLOCK)
                path = self._path(kind)
                try:
                    fd = os.open(path, flags)
                except OSError as exc:
                    raise IpcError(ErrorCode.ERROR, f"Could not open {path} for reading") from exc
                self._readers[key] = fd
            return fd

    def read(self, size, blocking=True, kind=SocketType.REQUEST):
        """Read exactly ``size`` bytes from the ``kind`` pipe, waiting for them.

        ``blocking`` selects a blocking descriptor or a non-blocking one that is
        polled for readiness.
        """
        kind = SocketType(kind)
        if size <= 0:
            return b""
        fd = self._reader(kind, bool(blocking))
        received = bytearray()
        while len(received) < size:
            want = min(size - len(received), CHUNK_SIZE)
            try:
                if not blocking:
                    select.select([fd], [], [])
                data = os.read(fd, want)
            except BlockingIOError:
                continue
            except OSError as exc:
                raise IpcError(ErrorCode.ERROR, f"Reading from {self._path(kind)} failed") from exc
            if not data:
                raise IpcError(ErrorCode.DISCONNECTED, f"{self._path(kind)} was closed")
            received += data
        return bytes(received)

    def write(self, data, kind=SocketType.REQUEST):
        """Write ``data`` to the ``kind`` pipe; return the number of bytes written.

        Opening the pipe waits until it has a reader. The descriptor stays open
        until the next write or :meth:`clean`.
        """
        kind = SocketType(kind)
        view = memoryview(bytes(data))
        path = self._path(kind)
        with self._write_lock:
            if self._writer is not None:
                os.close(self._writer)
                self._writer = None
            try:
                self._writer = os.open(path, _WRITE_FLAGS)
            except OSError as exc:
                raise IpcError(ErrorCode.ERROR, f"Could not open {path} for writing") from exc
            written = 0
            try:
                while written < len(view):
                    written += os.write(self._writer, view[written:written + CHUNK_SIZE])
            except OSError as exc:
                raise IpcError(ErrorCode.ERROR, f"Writing to {path} failed") from exc
            return written

    def is_created(self):
        """Whether this side created the FIFOs."""
        return self._created

    def is_connected(self):
        """Whether the peer is considered connected."""
        return self._connected

    def set_connected(self, connected):
        """Set the connection state."""
        self._connected = bool(connected)

    def handle_accept_callback(self, code, length):
        """Record the outcome of an accept."""
        self.set_connected(ErrorCode(code) in (ErrorCode.CONNECTED, ErrorCode.SUCCESS))

    def accept(self, op, callback):
        """Accept a peer; returns the operation used (``op`` or a new one).

        The accept completes at once: the callbacks run with
        ``ErrorCode.CONNECTED`` before this returns. Only the creating side
        may accept.
        """
        if not self.is_created():
            raise IpcError(ErrorCode.ERROR, "Only the creating side can accept")
        if op is None:
            op = AsyncOp()
        op.set_callback(callback)
        op.set_system_callback(self.handle_accept_callback)
        self._connected = True
        op.set_valid(True)
        op.call_callback(ErrorCode.CONNECTED, 0)
        op.signal()
        return op

    def clean(self):
        """Close every descriptor and remove both FIFOs."""
        with self._read_lock:
            for fd in self._readers.values():
                os.close(fd)
            self._readers.clear()
        with self._write_lock:
            if self._writer is not None:
                os.close(self._writer)
                self._writer = None
        _remove(self.request_path)
        _remove(self.reply_path)

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.clean()

    def __repr__(self) -> str:
        role = "created" if self._created else "opened"
        return f"FifoSocket({self.name!r}, {role})"


def create_socket(name):
    """Create the FIFO pair for ``name`` (server side)."""
    return FifoSocket(name, create=True)


def open_socket(name):
    """Use the existing FIFO pair for ``name`` (client side)."""
    return FifoSocket(name)