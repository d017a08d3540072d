"""
Argtree utilities (internal helpers, carefully exposed)

Scope
- Small building blocks shared by the flag, parser and help layers.

Overview
- UnsetType / Unset
  • Sentinel for "the caller said nothing", distinct from None.
- coalesce(value, default=None)
  • Swap Unset for a default; None, 0 and "" are real values and pass through.
- rename("name")
  • Decorator giving generated callables a readable __name__/__qualname__.
- mirror("attr")
  • Read-only property over self._attr that hands out copies of containers.
- IntrospectableType
  • Metaclass turning __introspectable__ names into mirror() properties and
    deriving __repr__/__rich_repr__ from them.
- tokenize(argv)
  • Normalize a command line given as Unset, a string or an iterable of strings.
- settle(coroutine)
  • Drive a coroutine to completion from synchronous code when it never suspends.

Quick examples
    >>> coalesce(Unset, "fallback")
    'fallback'
    >>> coalesce(None, "fallback") is None
    True
    >>> tokenize("deploy --target 'eu west'")
    ['deploy', '--target', 'eu west']
"""
import re
import shlex
import sys
from collections.abc import Iterable, Mapping, Sequence, Set
from typing import final


@final
class UnsetType:
    """
    Type of the Unset sentinel.

    Flag defaults and values may legitimately be None, so "not provided"
    needs its own marker. There is exactly one instance; it is falsy and
    can be used in isinstance unions (str | Unset).
    """
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __ror__(self, other, /):
        try:
            return other | UnsetType
        except TypeError:
            return NotImplemented

    def __bool__(self):
        return False

    def __repr__(self):
        return "Unset"

    def __init_subclass__(cls, **options):
        raise TypeError("UnsetType cannot be subclassed")


Unset = UnsetType()


def coalesce(object, default=None, /):
    """
    Return `object`, or `default` when it is Unset.

    - coalesce(3000, 80)    -> 3000
    - coalesce(Unset, 80)   -> 80
    - coalesce(None, 80)    -> None
    """
    return default if object is Unset else object


def rename(name, /):
    """Decorator setting __name__ and __qualname__ of the decorated callable."""
    if not isinstance(name, str):
        raise TypeError("rename() argument must be a string")

    def decorator(function):
        if not callable(function):
            raise TypeError("@rename() must decorate a callable")
        function.__name__ = function.__qualname__ = name
        return function

    return decorator


def _immortalize(object):
    """
    Copy containers so that callers never hold private state.

    Strings and tuples are immutable and come back unchanged; other
    sequences become lists, mappings dicts and sets sets, recursively.
    """
    match object:
        case str() | tuple():
            return object
        case Sequence():
            return [_immortalize(item) for item in object]
        case Mapping():
            return {key: _immortalize(value) for key, value in object.items()}
        case Set():
            return {_immortalize(item) for item in object}
        case _:
            return object


def mirror(name, /):
    """Read-only property exposing a copy of the private field "_{name}"."""
    if not isinstance(name, str):
        raise TypeError("mirror() argument must be a string")
    field = "_" + name

    @rename(name)
    def getter(self):
        return _immortalize(getattr(self, field))

    return property(getter)


class IntrospectableType(type):
    """
    Metaclass for declarations exposing their sanitized fields read-only.

    - __typename__: kebab-case class name, used in messages.
    - __introspectable__: names turned into mirror() properties.
    - __displayable__: names shown by __repr__/__rich_repr__ (defaults to
      __introspectable__).
    """

    def __new__(cls, name, bases, namespace, **options):
        fields = namespace.get("__introspectable__", ())
        namespace = {
            "__typename__": re.sub(r"(?<!^)(?=[A-Z])", "-", name).lower(),
            **namespace,
            **{field: mirror(field) for field in fields},
        }
        shown = namespace.get("__displayable__", fields)

        @rename("__rich_repr__")
        def __rich_repr__(self):
            for field in shown:
                yield field, getattr(self, field)

        @rename("__repr__")
        def __repr__(self):
            pairs = ", ".join(f"{field}={value!r}" for field, value in self.__rich_repr__())
            return f"{type(self).__typename__}({pairs})"

        namespace.setdefault("__rich_repr__", __rich_repr__)
        namespace.setdefault("__repr__", __repr__)
        return super().__new__(cls, name, bases, namespace, **options)


def tokenize(argv=Unset, /):
    """
    Normalize a command line into a list of string tokens.

    - Unset: read tokens from sys.argv[1:].
    - str: shell-like string, split with shlex.split.
    - Iterable[str]: pre-tokenized sequence, copied as-is.

    Tokens are not stripped: an explicit empty or padded value is data.
    """
    if argv is Unset:
        return sys.argv[1:]
    if isinstance(argv, str):
        return shlex.split(argv)
    if not isinstance(argv, Iterable):
        raise TypeError("argv must be a string or an iterable of strings")
    tokens = list(argv)
    for token in tokens:
        if not isinstance(token, str):
            raise TypeError("argv must be a string or an iterable of strings")
    return tokens


def settle(coroutine, /):
    """
    Run a coroutine to completion without an event loop.

    Conversions and handlers declared with ``async def`` often never suspend;
    those complete on the first send. A coroutine that really waits on
    something needs an event loop, so it is closed and RuntimeError is raised.
    """
    try:
        coroutine.send(None)
    except StopIteration as stop:
        return stop.value
    coroutine.close()
    raise RuntimeError("asynchronous conversion suspended; use parse_async() inside an event loop")


__all__ = (
    "UnsetType",
    "Unset",
    "coalesce",
    "rename",
    "mirror",
    "IntrospectableType",
    "tokenize",
    "settle",
)
