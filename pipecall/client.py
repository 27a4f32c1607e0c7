"""Client side: sends function calls to a server and delivers the replies."""

from __future__ import annotations

import itertools
import threading
import time
from typing import Callable, Dict, Optional, Tuple

from .errors import ErrorCode, IpcError
from .protocol import (
    HEADER_SIZE,
    FunctionCall,
    decode_function_reply,
    log,
    make_sendable,
    read_size,
)
from .transport import FifoSocket, SocketType, open_socket
from .value import Value, ValueType

# A synchronous call taking longer than this (seconds) is reported as slow.
LONG_CALL_TIMEOUT = 0.1
# A synchronous call taking longer than this (seconds) is reported as a freeze.
FREEZE_TIMEOUT = 15.0

_LOST_CONNECTION = "Lost IPC Connection"
_NO_DURATION_MS = -2

ReplyCallback = Callable[[object, list, float], None]
FreezeCallback = Callable[[str, str, int, int], None]

# Call ids are unique across every client in the process.
_uid_lock = threading.Lock()
_uids = itertools.count(1)


def _next_uid() -> int:
    with _uid_lock:
        return next(_uids)


class Client:
    """Connection to a server's FIFO pair.

    Each call writes a request and reads its reply before returning; one
    exchange is in flight at a time. Reply callbacks are invoked as
    ``callback(data, values, duration_seconds)``; when the server reports an
    error, ``values`` is a single NULL value carrying the error text.
    """

    def __init__(self, socket_path, on_disconnect=None):
        self.socket_path = socket_path
        self._on_disconnect: Optional[Callable[[], None]] = on_disconnect
        self._socket: Optional[FifoSocket] = open_socket(socket_path)
        self._exchange_lock = threading.Lock()
        self._callbacks: Dict[int, Tuple[ReplyCallback, object]] = {}
        self._callbacks_lock = threading.Lock()
        self._stopped = threading.Event()
        self.shutting_down = False
        self.app_state_path = ""
        self._freeze_callback: Optional[FreezeCallback] = None

    def set_freeze_callback(self, callback, app_state):
        """Report slow calls as ``callback(app_state, name, total_ms, server_ms)``."""
        self._freeze_callback = callback
        self.app_state_path = app_state

    def call(self, cname, fname, args, callback=None, data=None):
        """Call ``cname``'s function ``fname`` with ``args``; return the call id.

        ``callback`` (if given) receives the reply before this returns.
        Raises :class:`IpcError` if the client is stopped or the exchange fails.
        """
        sock = self._socket
        if sock is None or self._stopped.is_set():
            raise IpcError(ErrorCode.DISCONNECTED, "Client is stopped")

        message = FunctionCall(_next_uid(), cname, fname, list(args))
        frame = make_sendable(bytes(HEADER_SIZE) + message.encode())

        if callback is not None:
            with self._callbacks_lock:
                self._callbacks[message.uid] = (callback, data)

        with self._exchange_lock:
            try:
                sock.write(frame, SocketType.REQUEST)
            except IpcError as exc:
                log("(write) %8d: Failed to send, error %s.", message.uid, exc.message)
                self.cancel(message.uid)
                raise
            # The reply to a shutdown request is unreliable.
            if self.shutting_down:
                return message.uid
            try:
                reply = self._read_reply(sock)
            except IpcError as exc:
                log("Reading a reply failed with error %s.", exc.message)
                self._connection_lost(sock)
                raise

        if reply is not None:
            self._dispatch(reply)
        return message.uid

    def _read_reply(self, sock: FifoSocket):
        header = sock.read(HEADER_SIZE, True, SocketType.REPLY)
        length = read_size(header)
        if length == 0:
            return None
        payload = sock.read(length, False, SocketType.REPLY)
        reply, _ = decode_function_reply(payload, 0)
        return reply

    def _dispatch(self, reply) -> None:
        with self._callbacks_lock:
            entry = self._callbacks.pop(reply.uid, None)
        if entry is None:
            return
        callback, data = entry
        values = reply.values
        if reply.error:
            values = [Value(ValueType.NULL, reply.error)]
        callback(data, values, reply.obs_call_duration_ms / 1000.0)

    def _fail_pending(self) -> None:
        with self._callbacks_lock:
            pending = list(self._callbacks.values())
            self._callbacks.clear()
        for callback, data in pending:
            callback(data, [Value(ValueType.NULL, _LOST_CONNECTION)], 0.0)

    def _connection_lost(self, sock: FifoSocket) -> None:
        sock.set_connected(False)
        self._fail_pending()
        if self._on_disconnect is not None:
            self._on_disconnect()

    def call_synchronous_helper(self, cname, fname, args):
        """Call and return the reply's values; an empty list if the call failed."""
        result: dict = {}

        def record(_data, values, duration):
            result["values"] = list(values)
            result["duration"] = duration

        start = time.monotonic()
        try:
            uid = self.call(cname, fname, args, record, None)
        except IpcError:
            return []
        total = time.monotonic() - start
        self._report_slow_call(f"{cname}::{fname}", total, result.get("duration"))

        if "values" not in result:
            self.cancel(uid)
            return []
        return result["values"]

    def _report_slow_call(self, name: str, total: float, duration) -> None:
        callback = self._freeze_callback
        if callback is None or total <= LONG_CALL_TIMEOUT:
            return
        total_ms = int(total * 1000)
        if total > FREEZE_TIMEOUT:
            callback(self.app_state_path, name, total_ms, -1)
        server_ms = _NO_DURATION_MS if duration is None else int(duration * 1000)
        callback(self.app_state_path, name, total_ms, server_ms)

    def cancel(self, call_id):
        """Forget the callback of ``call_id``; return whether there was one."""
        with self._callbacks_lock:
            return self._callbacks.pop(call_id, None) is not None

    def stop(self):
        """Stop using the connection; pending callbacks get a lost-connection reply."""
        if self._stopped.is_set():
            return
        self._stopped.set()
        with self._exchange_lock:
            self._socket = None
        self._fail_pending()

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.stop()

    def __repr__(self) -> str:
        state = "stopped" if self._stopped.is_set() else "open"
        return f"Client({self.socket_path!r}, {state})"


def create_client(socket_path, on_disconnect=None):
    """Connect to the server at ``socket_path``.

    ``on_disconnect`` is called when the connection is found to be lost.
    """
    return Client(socket_path, on_disconnect)