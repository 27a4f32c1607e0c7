import threading

import pytest

from pipecall.async_op import MAXIMUM_WAIT_OBJECTS, AsyncOp, Semaphore, wait_any
from pipecall.errors import ErrorCode, IpcError


def test_call_callback_runs_system_then_user_once():
    calls = []
    op = AsyncOp(lambda c, n: calls.append(("user", c, n)))
    op.set_system_callback(lambda c, n: calls.append(("system", c, n)))
    op.call_callback(ErrorCode.CONNECTED, 0)
    op.call_callback(ErrorCode.CONNECTED, 0)
    assert calls == [("system", ErrorCode.CONNECTED, 0), ("user", ErrorCode.CONNECTED, 0)]


def test_set_valid_rearms_user_callback():
    calls = []
    op = AsyncOp(lambda c, n: calls.append(n))
    op.call_callback(ErrorCode.SUCCESS, 1)
    op.set_valid(True)
    op.call_callback(ErrorCode.SUCCESS, 2)
    assert calls == [1, 2]


def test_invalidate_suppresses_user_callback():
    calls = []
    op = AsyncOp(lambda c, n: calls.append(n))
    op.set_valid(True)
    op.invalidate()
    op.call_callback(ErrorCode.SUCCESS, 3)
    assert calls == []
    assert op.is_valid() is False


def test_set_callback_refused_while_running():
    op = AsyncOp()
    op.set_valid(True)
    with pytest.raises(RuntimeError):
        op.set_callback(lambda c, n: None)
    with pytest.raises(RuntimeError):
        op.set_system_callback(lambda c, n: None)


def test_set_callback_allowed_after_completion():
    calls = []
    op = AsyncOp()
    op.set_valid(True)
    op.signal()
    assert op.is_complete() is True
    op.set_callback(lambda c, n: calls.append(c))
    op.call_callback(ErrorCode.SUCCESS, 0)
    assert calls == [ErrorCode.SUCCESS]


def test_cancel():
    op = AsyncOp()
    assert op.cancel() is False
    op.set_valid(True)
    assert op.cancel() is True
    assert op.is_valid() is False


def test_wait_times_out_without_signal():
    assert AsyncOp().wait(0.01) is ErrorCode.TIMED_OUT


def test_wait_consumes_signal_and_runs_callback():
    calls = []
    op = AsyncOp(lambda c, n: calls.append(c))
    op.set_valid(True)
    op.signal()
    assert op.wait(0) is ErrorCode.SUCCESS
    assert calls == [ErrorCode.SUCCESS]
    assert op.wait(0) is ErrorCode.TIMED_OUT


def test_wait_wakes_on_signal_from_thread():
    op = AsyncOp()
    timer = threading.Timer(0.02, op.signal)
    timer.start()
    try:
        assert op.wait(5) is ErrorCode.SUCCESS
    finally:
        timer.join()


def test_semaphore_rejects_bad_counts():
    with pytest.raises(ValueError):
        Semaphore(2, 1)
    with pytest.raises(ValueError):
        Semaphore(0, 0)


def test_semaphore_counts_down():
    sem = Semaphore(2)
    assert sem.wait(0) is ErrorCode.SUCCESS
    assert sem.wait(0) is ErrorCode.SUCCESS
    assert sem.wait(0) is ErrorCode.TIMED_OUT


def test_semaphore_signal_and_overflow():
    sem = Semaphore(0, 2)
    sem.signal(2)
    assert sem.count == 2
    with pytest.raises(IpcError) as info:
        sem.signal()
    assert info.value.code is ErrorCode.TOO_MUCH_DATA
    assert sem.count == 2


def test_semaphore_signal_from_thread():
    sem = Semaphore()
    timer = threading.Timer(0.02, sem.signal)
    timer.start()
    try:
        assert sem.wait(5) is ErrorCode.SUCCESS
    finally:
        timer.join()


def test_wait_any_returns_signalled_index():
    first, second = AsyncOp(), Semaphore()
    sem_items = [first, None, second]
    second.signal()
    assert wait_any(sem_items, 0) == 2
    assert wait_any(sem_items, 0.01) is None


def test_wait_any_wakes_on_later_signal():
    ops = [AsyncOp(), AsyncOp()]
    timer = threading.Timer(0.02, ops[1].signal)
    timer.start()
    try:
        assert wait_any(ops, 5) == 1
    finally:
        timer.join()


def test_wait_any_rejects_bad_input():
    with pytest.raises(ValueError):
        wait_any(None, 0)
    with pytest.raises(ValueError):
        wait_any([Semaphore() for _ in range(MAXIMUM_WAIT_OBJECTS + 1)], 0)