import pytest

from pipecall.function import Collection, Function
from pipecall.value import ValueType, int32, string, uint64


def echo(data, client_id, args):
    return list(args)


def test_unique_name_without_params():
    assert Function("Function1").unique_name == "Function1_"


def test_unique_name_with_params():
    func = Function("f", [ValueType.INT32, ValueType.STRING, ValueType.BINARY])
    assert func.unique_name == "f_I4PSPB"
    assert func.name == "f"


def test_call_echo_handler_returns_arguments():
    func = Function("Function1", handler=echo)
    args = [int32(5), string("hi")]
    assert func.call(0, args) == args


def test_call_passes_data_and_client_id():
    seen = []

    def handler(data, client_id, args):
        seen.append((data, client_id))
        return [uint64(client_id)]

    func = Function("f", handler=handler, data="ctx")
    assert func.call(7, []) == [uint64(7)]
    assert seen == [("ctx", 7)]


def test_call_without_handler_returns_empty():
    assert Function("f").call(1, [int32(1)]) == []


def test_handler_returning_none_gives_empty():
    func = Function("f", handler=lambda data, cid, args: None)
    assert func.call(0, [int32(3)]) == []


def test_collection_register_and_get():
    coll = Collection("Default")
    func = Function("Function1", handler=echo)
    assert coll.register_function(func) is True
    assert coll.get_function("Function1") is func
    assert coll.name == "Default"


def test_collection_rejects_duplicate_name():
    coll = Collection("Default")
    first = Function("Function1")
    assert coll.register_function(first)
    assert coll.register_function(Function("Function1", [ValueType.INT32])) is False
    assert coll.get_function("Function1") is first
    assert len(coll) == 1


def test_collection_missing_function_is_none():
    coll = Collection("Default")
    coll.register_function(Function("a"))
    assert coll.get_function("b") is None
    assert "a" in coll


@pytest.mark.parametrize("names", [["a", "b", "c"], ["x"]])
def test_collection_iterates_functions(names):
    coll = Collection("c")
    for name in names:
        coll.register_function(Function(name))
    assert sorted(f.name for f in coll) == sorted(names)