"""Callable functions exposed over IPC and the named collections that group them."""

from __future__ import annotations

from typing import Callable, Iterable, Optional

from .protocol import make_unique_id
from .value import Value, ValueType

Handler = Callable[[object, int, list], Optional[Iterable[Value]]]


class Function:
    """A named function that a client can invoke.

    ``handler(data, client_id, args)`` runs the call and returns the values to
    send back (or ``None`` for no values).
    """

    def __init__(self, name, params=None, handler=None, data=None):
        self.name = name
        self.params = [ValueType(p) for p in (params or ())]
        self.unique_name = make_unique_id(name, self.params)
        self.handler = handler
        self.data = data

    def call(self, client_id, args):
        """Run the handler and return its values as a list; empty without a handler."""
        if self.handler is None:
            return []
        result = self.handler(self.data, client_id, list(args))
        return [] if result is None else list(result)

    def __repr__(self) -> str:
        return f"Function({self.name!r}, unique_name={self.unique_name!r})"


class Collection:
    """A named group of functions, addressed by clients as a class."""

    def __init__(self, name):
        self.name = name
        self._functions: dict = {}

    def register_function(self, func):
        """Add ``func``; return False if a function of that name is already present."""
        if func.name in self._functions:
            return False
        self._functions[func.name] = func
        return True

    def get_function(self, name):
        """The function called ``name``, or None."""
        return self._functions.get(name)

    def __contains__(self, name) -> bool:
        return name in self._functions

    def __len__(self) -> int:
        return len(self._functions)

    def __iter__(self):
        return iter(self._functions.values())

    def __repr__(self) -> str:
        return f"Collection({self.name!r}, functions={sorted(self._functions)!r})"