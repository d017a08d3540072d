"""
Argtree faults (errors and warnings) and rendering.

Scope
- FaultCode: stable numeric identifiers for every user-facing parse issue.
- ConfigurationError: raised while declaring flags or building the command
  tree; never deferred to parse time and never rendered.
- CommandException / CommandWarning: parse-time faults that carry a message
  plus read-only options and know how to surface themselves.
- trigger(): central entry point to surface a fault, honoring the
  handle_errors/auto_exit settings of the parser that produced it.

Rendering
- Header "[ prog — code | title ]", the message, then a single hint line
  ("→ try 'prog sub --help' for usage details").
- Output goes to the sink found in the fault options, one line per write.

Integration
- The first fault aborts the whole parse and is handed to trigger(fault, **ctx).
- With handle_errors off the fault is raised to the caller untouched (apart
  from the context merged into its options).
"""
import copy
import sys
import warnings
from collections import namedtuple
from enum import IntEnum
from types import MappingProxyType

from rich.console import Group
from rich.text import Text

from .utils import Unset, coalesce


class FaultCode(IntEnum):
    """
    Stable identifiers of parse-time faults.

    - 1110x routing: UNKNOWN_COMMAND
    - 1111x/1112x values: UNCASTABLE_VALUE, INVALID_JSON, INVALID_CHOICE,
      VALIDATION_FAILED
    - 1113x mandatory flags: MISSING_MANDATORY_FLAGS
    - 12xxx warnings: DUPLICATE_FLAG
    """
    UNKNOWN_COMMAND             = 11101

    UNCASTABLE_VALUE            = 11111
    INVALID_JSON                = 11112
    INVALID_CHOICE              = 11124
    VALIDATION_FAILED           = 11125

    MISSING_MANDATORY_FLAGS     = 11131

    DUPLICATE_FLAG              = 12111

    def normalize(self):
        """
        Label printed for this code.

        A __codes__ mapping defined in __main__ may replace the number with a
        label of the host application's choosing.
        """
        labels = getattr(sys.modules["__main__"], "__codes__", {})
        return str(labels.get(self, self.value))


class ConfigurationError(Exception):
    """Invalid flag declaration or command-tree construction."""


MissingFlag = namedtuple("MissingFlag", ("name", "parser", "chain"))


class Fault:
    """Message plus read-only options, shared by errors and warnings."""
    code = FaultCode.UNKNOWN_COMMAND

    def __init__(self, message=Unset, /, **options):
        if not isinstance(message, str | Unset):
            raise TypeError(f"{type(self).__name__} message must be a string")
        super().__init__(coalesce(message, ""))
        self.message = message
        self.options = MappingProxyType(options)

    @property
    def chain(self):
        """Command chain active when the fault was raised."""
        return tuple(self.options.get("chain", ()))

    def __replace__(self, *unused, **overrides):
        if unused:
            raise TypeError("__replace__() takes keyword arguments only")
        replaced = type(self)(self.message, **(dict(self.options) | overrides))
        replaced.__cause__ = self.__cause__
        return replaced.with_traceback(self.__traceback__)


class CommandException(Fault, Exception):
    title = "error"

    def _route(self):
        parts = list(self.chain)
        if (parser := self.options.get("parser")) is not None:
            parts.insert(0, parser.root.command_name)
        return " ".join((*parts, "--help"))

    def _render(self):
        if (parser := self.options.get("parser")) is not None:
            prog = parser.root.command_name
        else:
            prog = getattr(sys.modules["__main__"], "__prog__", "")
        code = self.options.get("code", self.code)
        title = self.options.get("title", self.title)
        hint = self.options.get("hint") or f"try '{self._route()}' for usage details"
        return [
            Text.assemble("[ ", prog, " — ", code.normalize(), " | ", title.title(), " ]"),
            Text(coalesce(self.message, "")),
            Text.assemble(" → ", hint),
        ]

    def __rich__(self):
        return Group(*self._render())

    def __trigger__(self):
        if not self.options.get("handle_errors", False):
            raise self from self.__cause__
        sink = self.options["sink"]
        for line in self._render():
            sink.write(line.plain)
        if self.options.get("auto_exit", True):
            sys.exit(1)


class UnknownCommandError(CommandException):
    code = FaultCode.UNKNOWN_COMMAND
    title = "unknown command"

    @property
    def token(self):
        return self.options.get("token")


class ValidationError(CommandException):
    code = FaultCode.VALIDATION_FAILED
    title = "invalid value"

    @property
    def flag(self):
        return self.options.get("flag")

    @property
    def value(self):
        return self.options.get("value")


class MissingMandatoryFlagsError(CommandException):
    code = FaultCode.MISSING_MANDATORY_FLAGS
    title = "missing mandatory flags"

    @property
    def missing(self):
        """MissingFlag records, one per absent flag, in validation order."""
        return tuple(self.options.get("missing", ()))

    @property
    def names(self):
        return tuple(record.name for record in self.missing)


class CommandWarning(Fault, Warning):
    code = FaultCode.DUPLICATE_FLAG

    def __trigger__(self):
        warnings.warn(self, stacklevel=self.options.get("stacklevel", 2))


class DuplicateFlagWarning(CommandWarning):
    code = FaultCode.DUPLICATE_FLAG


def trigger(fault, /, **options):
    """
    Surface a fault with runtime options merged in.

    The fault is copied with copy.replace(fault, **options) and the copy's
    __trigger__ decides: raise, render to the sink (and maybe exit), or warn.

    Typical options: parser, chain, sink, handle_errors, auto_exit, title,
    code, hint, stacklevel.
    """
    for method in ("__trigger__", "__replace__"):
        if not callable(getattr(fault, method, None)):
            raise TypeError(f"trigger() argument must define {method}()")
    copy.replace(fault, **options).__trigger__()


__all__ = (
    "FaultCode",
    "ConfigurationError",
    "MissingFlag",
    "Fault",
    "CommandException",
    "UnknownCommandError",
    "ValidationError",
    "MissingMandatoryFlagsError",
    "CommandWarning",
    "DuplicateFlagWarning",
    "trigger",
)
