"""Waitable asynchronous operations and counting semaphores."""

from __future__ import annotations

import threading
import time
from typing import Callable, Optional

from .errors import ErrorCode, IpcError

Callback = Callable[[ErrorCode, int], None]

# Upper bound on the number of objects wait_any accepts.
MAXIMUM_WAIT_OBJECTS = 64

_DEFAULT_MAXIMUM = 2**31 - 1

# Notified whenever any waitable is signalled, so wait_any can sleep on it.
_any_signal = threading.Condition()


def _notify_any() -> None:
    with _any_signal:
        _any_signal.notify_all()


def _clamp(timeout):
    if timeout is None:
        return None
    return max(0.0, float(timeout))


class AsyncOp:
    """An operation in flight, with a system callback and a user callback.

    Each callback runs at most once per operation. The operation is complete
    once it has been signalled; waiting on it consumes the signal and runs the
    callbacks.
    """

    def __init__(self, callback: Optional[Callback] = None):
        self._lock = threading.Condition()
        self.valid = False
        self.callback = callback
        self.callback_called = False
        self.system_callback: Optional[Callback] = None
        self.system_callback_called = False
        self._completed = False
        self._pending = False

    def _check_changeable(self) -> None:
        if self.is_valid() and not self.is_complete():
            raise RuntimeError("Can't change callback for a valid but incomplete operation.")

    def set_callback(self, callback):
        """Replace the user callback; not allowed while the operation is running."""
        self._check_changeable()
        self.callback = callback

    def set_system_callback(self, callback):
        """Replace the system callback; not allowed while the operation is running."""
        self._check_changeable()
        self.system_callback = callback

    def set_valid(self, valid):
        """Mark the operation as started (or not); the user callback may run again."""
        with self._lock:
            self.valid = bool(valid)
            self.callback_called = False
            if valid:
                self._completed = False
                self._pending = False

    def is_valid(self):
        """Whether the operation is in use."""
        return self.valid

    def invalidate(self):
        """Retire the operation; its user callback will no longer run."""
        self.valid = False
        self.callback_called = True

    def is_complete(self):
        """Whether a valid operation has been signalled."""
        return self.valid and self._completed

    def cancel(self):
        """Cancel a valid operation; return False if there was nothing to cancel."""
        if not self.is_valid():
            return False
        if not self.is_complete():
            self.valid = False
        return True

    def call_callback(self, code=ErrorCode.SUCCESS, length=0):
        """Run the system callback, then the user callback, each at most once."""
        code = ErrorCode(code)
        if self.system_callback is not None and not self.system_callback_called:
            self.system_callback_called = True
            self.system_callback(code, length)
        if self.callback is not None and not self.callback_called:
            self.callback_called = True
            self.callback(code, length)

    def signal(self):
        """Mark the operation complete and wake its waiters."""
        with self._lock:
            self._completed = True
            self._pending = True
            self._lock.notify_all()
        _notify_any()

    def _try_take(self, timeout) -> bool:
        with self._lock:
            if not self._lock.wait_for(lambda: self._pending, timeout):
                return False
            self._pending = False
            return True

    def wait(self, timeout=None):
        """Wait up to ``timeout`` seconds (forever if None) for the signal.

        Returns ``ErrorCode.SUCCESS`` after running the callbacks, or
        ``ErrorCode.TIMED_OUT``.
        """
        if not self._try_take(_clamp(timeout)):
            return ErrorCode.TIMED_OUT
        self.call_callback(ErrorCode.SUCCESS, 0)
        return ErrorCode.SUCCESS


class Semaphore:
    """A counting semaphore bounded by ``maximum_count``."""

    def __init__(self, initial_count=0, maximum_count=_DEFAULT_MAXIMUM):
        if initial_count > maximum_count:
            raise ValueError("initial_count can't be larger than maximum_count")
        if maximum_count == 0:
            raise ValueError("maximum_count can't be 0")
        self.maximum_count = maximum_count
        self._count = initial_count
        self._lock = threading.Condition()

    @property
    def count(self) -> int:
        """Current count."""
        return self._count

    def signal(self, count=1):
        """Raise the count by ``count``; fails without change past the maximum."""
        with self._lock:
            if self._count + count > self.maximum_count:
                raise IpcError(ErrorCode.TOO_MUCH_DATA, "Semaphore count would exceed its maximum")
            self._count += count
            self._lock.notify_all()
        _notify_any()

    def _try_take(self, timeout) -> bool:
        with self._lock:
            if not self._lock.wait_for(lambda: self._count > 0, timeout):
                return False
            self._count -= 1
            return True

    def wait(self, timeout=None):
        """Take one unit, waiting up to ``timeout`` seconds (forever if None)."""
        if self._try_take(_clamp(timeout)):
            return ErrorCode.SUCCESS
        return ErrorCode.TIMED_OUT


def wait_any(items, timeout=None):
    """Wait until one of ``items`` is signalled; return its index, or None on timeout.

    ``None`` entries are skipped. At most ``MAXIMUM_WAIT_OBJECTS`` items are allowed.
    """
    if items is None:
        raise ValueError("'items' can't be None.")
    items = list(items)
    if len(items) > MAXIMUM_WAIT_OBJECTS:
        raise ValueError("Too many items to wait for.")
    timeout = _clamp(timeout)
    deadline = None if timeout is None else time.monotonic() + timeout

    with _any_signal:
        while True:
            for index, item in enumerate(items):
                if item is not None and item.wait(0) is ErrorCode.SUCCESS:
                    return index
            if deadline is None:
                _any_signal.wait()
                continue
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return None
            _any_signal.wait(remaining)