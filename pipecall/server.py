"""Server side: registered collections, accepting peers and serving calls."""

from __future__ import annotations

import os
import threading
import time
from collections import deque
from functools import partial
from typing import Callable, Dict, List, Optional, Tuple

from .async_op import Semaphore
from .errors import ErrorCode, IpcError
from .protocol import (
    HEADER_SIZE,
    FunctionReply,
    decode_function_call,
    log,
    make_sendable,
    read_size,
)
from .transport import FifoSocket, SocketType, create_socket

# How often the watcher re-checks its sockets, in seconds.
_WATCH_INTERVAL = 0.02
# How long stopping waits for worker threads, in seconds.
_JOIN_TIMEOUT = 2.0
_MAX_DURATION_MS = 0xFFFFFFFF

_Handler = Tuple[Optional[Callable], object]


class CallError(IpcError):
    """A call named a class or function that the server does not have."""

    def __init__(self, message):
        super().__init__(ErrorCode.ERROR, message)


class ServerInstance:
    """Serves one connected peer: reads requests and writes replies.

    One thread reads framed requests from the request pipe; another runs
    them through the owning server and writes the replies. The two take
    turns, so one request is handled at a time.
    """

    def __init__(self, owner, socket, call_timeout=0):
        self._owner = owner
        self._socket: FifoSocket = socket
        self.client_id = 0
        self.call_timeout = call_timeout
        self._stopping = threading.Event()
        self._reader_sem = Semaphore(1)
        self._writer_sem = Semaphore(0)
        self._messages: deque = deque()
        self._messages_lock = threading.Lock()
        self._reader = threading.Thread(target=self._read_requests, daemon=True)
        self._replier = threading.Thread(target=self._write_replies, daemon=True)
        self._reader.start()
        self._replier.start()

    def is_alive(self):
        """Whether the peer is connected and the instance has not been stopped."""
        return self._socket.is_connected() and not self._stopping.is_set()

    def _running(self) -> bool:
        return not self._stopping.is_set() and self._socket.is_connected()

    def _read_requests(self) -> None:
        while self._running():
            self._reader_sem.wait()
            if self._stopping.is_set():
                break
            try:
                header = self._socket.read(HEADER_SIZE, True, SocketType.REQUEST)
                length = read_size(header)
                if length > 1:
                    payload = self._socket.read(length, False, SocketType.REQUEST)
                    self._queue_request(payload)
                else:
                    self._writer_sem.signal()
            except IpcError as exc:
                log("Reading a request failed with error %s.", exc.message)
                break

    def _queue_request(self, payload: bytes) -> None:
        try:
            call, _ = decode_function_call(payload, 0)
        except IpcError as exc:
            log("????????: Deserialization of Function Call message failed with error %s.", exc.message)
            self._reader_sem.signal()
            return
        with self._messages_lock:
            self._messages.append(call)
        self._writer_sem.signal()

    def _write_replies(self) -> None:
        while self._running():
            self._writer_sem.wait()
            if self._stopping.is_set():
                return
            with self._messages_lock:
                call = self._messages.popleft() if self._messages else None
            if call is None:
                self._reader_sem.signal()
                continue

            try:
                values, duration = self._owner.client_call_function(
                    self.client_id, call.class_name, call.function_name, call.arguments
                )
                error = ""
            except CallError as exc:
                values, duration, error = [], 0.0, exc.message

            duration_ms = min(max(int(duration * 1000), 0), _MAX_DURATION_MS)
            reply = FunctionReply(call.uid, values, error, duration_ms)
            try:
                frame = make_sendable(bytes(HEADER_SIZE) + reply.encode())
            except Exception as exc:  # handler returned something unencodable
                log("%8d: Serialization of Function Reply message failed with error %s.", call.uid, exc)
                return
            try:
                self._socket.write(frame, SocketType.REPLY)
            except IpcError as exc:
                log("%8d: Writing the reply failed with error %s.", call.uid, exc.message)
                return
            self._reader_sem.signal()

    def _wake_reader(self) -> Optional[int]:
        """Put a dummy frame on the request pipe to release a blocked read."""
        try:
            fd = os.open(self._socket.request_path, os.O_RDWR | os.O_NONBLOCK)
        except OSError:
            return None
        frame = bytearray(HEADER_SIZE + 1)
        frame[HEADER_SIZE] = ord("1")
        try:
            os.write(fd, make_sendable(bytes(frame)))
        except OSError:
            pass
        return fd

    def stop(self):
        """Stop both workers, close the pipes and remove them."""
        if self._stopping.is_set():
            return
        self._stopping.set()
        wake_fd = self._wake_reader()
        self._writer_sem.signal()
        self._reader_sem.signal()
        for thread in (self._replier, self._reader):
            if thread is not threading.current_thread():
                thread.join(_JOIN_TIMEOUT)
        if wake_fd is not None:
            os.close(wake_fd)
        self._socket.clean()

    def __repr__(self) -> str:
        state = "alive" if self.is_alive() else "stopped"
        return f"ServerInstance({self._socket.name!r}, {state})"


class Server:
    """Holds collections of functions and serves them to connecting peers.

    A watcher thread, started on construction, accepts peers on every socket
    and starts a :class:`ServerInstance` for each.
    """

    def __init__(self):
        self._initialized = False
        self._collections: Dict[str, object] = {}
        self._sockets: List[FifoSocket] = []
        self._sockets_lock = threading.Lock()
        self._clients: Dict[FifoSocket, ServerInstance] = {}
        self._clients_lock = threading.RLock()
        self.socket_path = ""
        self.call_timeout = 0
        self._on_connect: _Handler = (None, None)
        self._on_disconnect: _Handler = (None, None)
        self._on_message: _Handler = (None, None)
        self._pre_callback: _Handler = (None, None)
        self._post_callback: _Handler = (None, None)
        self._stop = threading.Event()
        self._watcher = threading.Thread(target=self._watch, daemon=True)
        self._watcher.start()

    # Status

    def initialize(self, socket_path):
        """Create the server's socket at ``socket_path``."""
        with self._sockets_lock:
            self._sockets.append(create_socket(socket_path))
        self._initialized = True
        self.socket_path = socket_path

    def finalize(self):
        """Disconnect every peer and remove every socket."""
        if not self._initialized:
            return
        with self._sockets_lock:
            with self._clients_lock:
                while self._clients:
                    self._kill_client(next(iter(self._clients)))
            for sock in self._sockets:
                sock.clean()
            self._sockets.clear()
        self._initialized = False

    def close(self):
        """Finalize and stop the watcher thread."""
        self.finalize()
        self._stop.set()
        if self._watcher is not threading.current_thread():
            self._watcher.join(_JOIN_TIMEOUT)

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    def set_call_timeout(self, timeout):
        """Set the call timeout, in seconds, handed to new instances."""
        self.call_timeout = timeout

    # Events

    def set_connect_handler(self, handler, data):
        """Call ``handler(data, client_id)`` when a peer connects."""
        self._on_connect = (handler, data)

    def set_disconnect_handler(self, handler, data):
        """Call ``handler(data, client_id)`` when a peer is disconnected."""
        self._on_disconnect = (handler, data)

    def set_message_handler(self, handler, data):
        """Store a raw message handler ``handler(data, client_id, payload)``."""
        self._on_message = (handler, data)

    def set_pre_callback(self, handler, data):
        """Call ``handler(cname, fname, args, data)`` before each function call."""
        self._pre_callback = (handler, data)

    def set_post_callback(self, handler, data):
        """Call ``handler(cname, fname, values, data)`` after each function call."""
        self._post_callback = (handler, data)

    # Functionality

    def register_collection(self, collection):
        """Add ``collection``; return False if one of that name exists."""
        if collection.name in self._collections:
            return False
        self._collections[collection.name] = collection
        return True

    def client_call_function(self, client_id, cname, fname, args):
        """Run ``cname``'s function ``fname``; return (values, duration in seconds).

        Raises :class:`CallError` if the class or function is unknown.
        """
        collection = self._collections.get(cname)
        if collection is None:
            raise CallError(f"Class '{cname}' is not registered.")
        func = collection.get_function(fname)
        if func is None:
            raise CallError(f"Function '{fname}' not found in class '{cname}'.")

        handler, data = self._pre_callback
        if handler is not None:
            handler(cname, fname, args, data)

        start = time.perf_counter()
        values = func.call(client_id, args)
        duration = time.perf_counter() - start

        handler, data = self._post_callback
        if handler is not None:
            handler(cname, fname, values, data)
        return values, duration

    # Client management

    def _watch(self) -> None:
        while not self._stop.is_set():
            with self._sockets_lock:
                for sock in list(self._sockets):
                    with self._clients_lock:
                        client = self._clients.get(sock)
                    if client is not None:
                        if not sock.is_connected():
                            self._kill_client(sock)
                            # The instance removed the pipes; the socket is spent.
                            self._sockets.remove(sock)
                    else:
                        try:
                            sock.accept(None, partial(self._accept_client, sock))
                        except IpcError as exc:
                            log("Accepting a client failed with error %s.", exc.message)
            self._stop.wait(_WATCH_INTERVAL)

    def _accept_client(self, sock: FifoSocket, code, length) -> None:
        if ErrorCode(code) is ErrorCode.CONNECTED:
            self._spawn_client(sock)

    def _spawn_client(self, sock: FifoSocket) -> None:
        with self._clients_lock:
            client = ServerInstance(self, sock, self.call_timeout)
            handler, data = self._on_connect
            if handler is not None:
                handler(data, 0)
            self._clients[sock] = client

    def _kill_client(self, sock: FifoSocket) -> None:
        with self._clients_lock:
            client = self._clients.pop(sock, None)
        if client is not None:
            client.stop()
        handler, data = self._on_disconnect
        if handler is not None:
            handler(data, 0)

    def __repr__(self) -> str:
        return f"Server({self.socket_path!r}, collections={sorted(self._collections)!r})"