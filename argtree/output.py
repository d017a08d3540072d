"""
Output sinks used for help text, error reports and configuration dumps.

A sink is any object with a write(line) method. Parsers never print directly:
they write lines to the sink they were configured with, falling back to the
console sinks below. BufferSink keeps lines in memory for embedding
applications and tests.
"""
from rich.console import Console

from .utils import Unset, coalesce


class ConsoleSink:
    """Write lines to the terminal through a rich console."""

    def __init__(self, *, stderr=False, console=Unset):
        self._console = coalesce(console, None) or Console(stderr=stderr, soft_wrap=True)

    @property
    def console(self):
        return self._console

    def write(self, line, /):
        self._console.print(line, markup=False, highlight=False, emoji=False)


class BufferSink:
    """Collect written lines in memory."""

    def __init__(self):
        self._lines = []

    @property
    def lines(self):
        return list(self._lines)

    def write(self, line, /):
        self._lines.append(str(line))

    def getvalue(self):
        return "\n".join(self._lines)

    def clear(self):
        self._lines.clear()


stdout = ConsoleSink()
stderr = ConsoleSink(stderr=True)


__all__ = (
    "ConsoleSink",
    "BufferSink",
)
