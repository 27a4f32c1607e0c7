"""Named-pipe remote procedure calls with a typed binary wire format."""

__version__ = "0.1.0"

__all__ = [
    "async_op",
    "client",
    "errors",
    "function",
    "protocol",
    "server",
    "transport",
    "value",
]