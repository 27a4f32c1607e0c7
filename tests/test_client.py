import time

import pytest

from pipecall.client import Client, create_client
from pipecall.errors import ErrorCode, IpcError
from pipecall.function import Collection, Function
from pipecall.server import Server
from pipecall.value import Value, ValueType, int32, string, uint64


def echo(data, client_id, args):
    return [*args, int32(0)]


def slow(data, client_id, args):
    time.sleep(0.15)
    return [int32(1)]


@pytest.fixture
def server_path(tmp_path):
    path = str(tmp_path / "ipc")
    server = Server()
    collection = Collection("Default")
    collection.register_function(Function("Function1", handler=echo))
    collection.register_function(Function("Slow", handler=slow))
    server.register_collection(collection)
    server.initialize(path)
    yield path
    server.close()


@pytest.fixture
def client(server_path):
    conn = create_client(server_path)
    yield conn
    conn.stop()


def test_synchronous_calls_return_echo(client):
    for _ in range(100):
        assert client.call_synchronous_helper("Default", "Function1", []) == [int32(0)]


def test_synchronous_call_echoes_arguments(client):
    result = client.call_synchronous_helper("Default", "Function1", [string("hi"), uint64(5)])
    assert result == [string("hi"), uint64(5), int32(0)]


def test_unknown_class_yields_error_value(client):
    result = client.call_synchronous_helper("Nope", "Function1", [])
    assert result == [Value(ValueType.NULL, "Class 'Nope' is not registered.")]


def test_unknown_function_yields_error_value(client):
    result = client.call_synchronous_helper("Default", "Missing", [])
    assert result == [Value(ValueType.NULL, "Function 'Missing' not found in class 'Default'.")]


def test_call_invokes_callback_with_data(client):
    received = []
    uid = client.call("Default", "Function1", [string("x")],
                      lambda data, values, duration: data.append(values), received)
    assert uid > 0
    assert received == [[string("x"), int32(0)]]


def test_call_ids_increase(client):
    first = client.call("Default", "Function1", [])
    second = client.call("Default", "Function1", [])
    assert second > first


def test_cancel_unknown_id_is_false(client):
    assert client.cancel(123456789) is False


def test_call_after_stop_raises(client):
    client.stop()
    with pytest.raises(IpcError) as info:
        client.call("Default", "Function1", [])
    assert info.value.code is ErrorCode.DISCONNECTED


def test_synchronous_helper_after_stop_is_empty(client):
    client.stop()
    assert client.call_synchronous_helper("Default", "Function1", []) == []


def test_shutting_down_skips_reply(client):
    assert client.call_synchronous_helper("Default", "Function1", []) == [int32(0)]
    client.shutting_down = True
    assert client.call_synchronous_helper("Default", "Function1", []) == []


def test_slow_call_reports_to_freeze_callback(client):
    reports = []
    client.set_freeze_callback(lambda *report: reports.append(report), "state")
    assert client.call_synchronous_helper("Default", "Slow", []) == [int32(1)]
    assert len(reports) == 1
    app_state, name, total_ms, server_ms = reports[0]
    assert app_state == "state"
    assert name == "Default::Slow"
    assert total_ms >= 100
    assert server_ms >= 100


def test_fast_call_not_reported(client):
    reports = []
    client.set_freeze_callback(lambda *report: reports.append(report), "state")
    client.call_synchronous_helper("Default", "Function1", [])
    assert reports == []


def test_create_client_returns_client_for_path(server_path):
    conn = create_client(server_path, None)
    try:
        assert isinstance(conn, Client) and conn.socket_path == server_path
        assert conn.call_synchronous_helper("Default", "Function1", []) == [int32(0)]
    finally:
        conn.stop()