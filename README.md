# pipecall

`pipecall` lets one local process call named functions in another over a
pair of named pipes (FIFOs). A server publishes *collections* of
*functions*. A client calls them by collection and function name, passes a
list of typed values, and gets a list of typed values back.

It uses only the standard library and needs a POSIX system (`os.mkfifo`).

## Modules

| Module | What it holds |
| --- | --- |
| `pipecall.errors` | `ErrorCode`, the status codes used across the package, and `IpcError`, the exception that carries one (`code`, `message`) |
| `pipecall.value` | `ValueType`, the frozen dataclass `Value`, the constructors `null`, `float32`, `float64`, `int32`, `int64`, `uint32`, `uint64`, `string`, `binary`, and `decode_value` |
| `pipecall.protocol` | the `FunctionCall` and `FunctionReply` messages with `decode_function_call` / `decode_function_reply`, the framing helpers `make_sendable` / `read_size`, `make_unique_id`, `vector_to_hex`, `ExitCode` with `describe_exit_code`, and the `log` / `register_log_callback` hook |
| `pipecall.function` | `Function`, a named callable with an optional parameter signature, and `Collection`, a named group of functions |
| `pipecall.async_op` | `AsyncOp`, an operation with a system callback and a user callback, `Semaphore`, and `wait_any` |
| `pipecall.transport` | `FifoSocket`, a request/reply FIFO pair, `SocketType`, `create_socket` and `open_socket` |
| `pipecall.server` | `Server`, which accepts peers and dispatches calls, `ServerInstance`, the worker for one connected peer, and `CallError` |
| `pipecall.client` | `Client` and `create_client` |

## Values

Every argument and return value is a typed `Value`. Build one with the
constructor for its type; a payload that does not fit the type raises
`ValueError`.

```python
from pipecall.value import int32, string, decode_value

v = string("hello")
encoded = v.encode()          # type tag, length, UTF-8 bytes
assert v.size() == len(encoded)

decoded, used = decode_value(encoded, 0)
assert decoded == v and used == len(encoded)
```

On the wire a value is a little-endian 32-bit type tag followed by its
payload: 4 bytes for `INT32`, `UINT32` and `FLOAT`, 8 bytes for `INT64`,
`UINT64` and `DOUBLE`, and a 32-bit length followed by the bytes for `STRING`
and `BINARY`. `NULL` has no payload; a `NULL` value may carry text in memory
(used for error messages), but that text is not encoded. Decoding a truncated
buffer raises `IpcError` with `ErrorCode.BUFFER_TOO_SMALL`; an unknown type tag
raises `IpcError` with `ErrorCode.INVALID_BUFFER`.

`FunctionCall` and `FunctionReply` encode as a 64-bit total size, their header
values and a 32-bit count followed by the argument or result values. A frame
sent over a pipe is 8 header bytes, whose upper four hold the payload length
(`make_sendable` fills them in, `read_size` reads them back), followed by the
encoded message.

## Serving functions

A handler is called as `handler(data, client_id, args)` and returns the
values to send back (or `None` for none).

```python
from pipecall.function import Collection, Function
from pipecall.server import Server

def echo(data, client_id, args):
    return args

collection = Collection("Default")
collection.register_function(Function("Function1", handler=echo))

with Server() as server:
    server.register_collection(collection)
    server.initialize("/tmp/HelloWorldIPC2")   # makes /tmp/HelloWorldIPC2-req and -rep
    ...
    server.finalize()
```

`Server()` starts a watcher thread at once; `close()` (or leaving the `with`
block) finalizes and stops it. `register_function` and `register_collection`
return `False` for a name that is already taken. When a call names a
collection or function that is not registered, `client_call_function` raises
`CallError` and the reply sent to the peer carries that message instead of
values.

`set_connect_handler` and `set_disconnect_handler` are called as
`handler(data, 0)`; `set_pre_callback` and `set_post_callback` are called as
`handler(cname, fname, values, data)` around each function call.
`set_message_handler` and `set_call_timeout` only store their arguments; no
part of the package acts on them.

## Calling functions

```python
from pipecall.client import create_client
from pipecall.value import int32

def on_disconnect():
    print("server gone")

client = create_client("/tmp/HelloWorldIPC2", on_disconnect)
result = client.call_synchronous_helper("Default", "Function1", [int32(7)])
client.stop()
```

`call(cname, fname, args, callback, data)` writes the request, reads the
reply and hands it to `callback(data, values, duration_seconds)` before it
returns the call id; it raises `IpcError` if the client is stopped or the
exchange fails, and a failed read marks the connection lost, gives every
pending callback a single `NULL` value reading `Lost IPC Connection`, and
calls `on_disconnect`. `call_synchronous_helper` returns the reply's values,
or an empty list if the call failed. If the server answers with an error, the
values are a single `NULL` value whose `payload` is the error message.

`set_freeze_callback(callback, app_state)` registers
`callback(app_state, "cname::fname", total_ms, server_ms)`, which
`call_synchronous_helper` calls for calls that take longer than 0.1 s (and
once more with `server_ms` of `-1` for those over 15 s).

## Lower-level pieces

- `Semaphore(initial_count, maximum_count)`: `signal(count)` raises
  `IpcError` with `ErrorCode.TOO_MUCH_DATA` past the maximum; `wait(timeout)`
  returns `ErrorCode.SUCCESS` or `ErrorCode.TIMED_OUT`.
- `AsyncOp`: `signal()` completes it; `wait(timeout)` consumes the signal and
  runs the system callback, then the user callback, each at most once.
- `wait_any(items, timeout)` returns the index of the first signalled item
  (skipping `None` entries), or `None` on timeout; at most 64 items.
- `make_unique_id(name, parameters)` decorates a name with its parameter
  types, e.g. `make_unique_id("f", [ValueType.INT32, ValueType.STRING])` is
  `"f_I4PS"`.
- `describe_exit_code(code)` gives a text for an `ExitCode`, and
  `"Generic Error"` for anything else.
- `register_log_callback(callback, data)` receives the package's log
  messages as `callback(data, fmt, args)`.

## What it does not do

- There is no command-line program; the package is a library only.
- It works on POSIX named FIFOs only; there is no Windows named-pipe
  transport.
- Each `initialize` call makes one FIFO pair, served by one
  `ServerInstance`; requests on it are handled one at a time, and a client
  has one exchange in flight at a time. Several clients sharing one path are
  not kept apart.
- There is no authentication or access control beyond the FIFOs' file mode
  (owner read/write).