"""
Argtree parser layer: build command trees, resolve argv, dispatch handlers.

What this module provides
- Parser: one node of the command tree. It owns a FlagRegistry, an optional
  handler, an ordered map of named children and a single parent reference that
  is set once, when the node is attached.
- command(...): build a root Parser from a handler (or return a decorator).
- invoke(obj, argv): convenience runner for parsers or plain callables.

Parse pipeline
1. Help: the tokens are routed by name only; when any token is a help
   spelling of the node they address, that node's help is written and the
   parse ends with exit status 0. No value is converted, no rule is checked.
2. Resolution: at each level the first token equal to a child name splits the
   stream. Tokens before it are matched against this level's flags; anything
   left unclaimed is an unknown command. The remaining tokens belong to the
   child. Values accumulate root to leaf, deeper levels overriding.
3. Environment fallback per level, for flags that declare `env`.
4. Mandatory flags are checked over the whole chain of visited nodes and all
   missing ones are reported together.
5. Defaults fill the remaining gaps, deepest node first.
6. Dispatch: the final node's handler receives a Context; awaitable results
   are returned pending from parse() and awaited by parse_async(deep=True).

Faults
- Parse-time faults abort the whole call. With handle_errors they are written
  to the sink and the process exits 1 (or a ParseExit is returned when
  auto_exit is off); otherwise they are raised to the caller.

Quick start
    from argtree import Parser

    app = Parser("app", command_name="app")
    start = app.command("service").command("start")
    start.add_flag("port", "-p", "--port", type="number", default=3000)

    @start.handle
    def run(context):
        return {"listening": context.args["port"]}

    app.parse(["service", "start", "-p", "8080"])
"""
import difflib
import inspect
import logging
import os
import re
import sys
from collections import namedtuple
from collections.abc import Mapping
from enum import StrEnum
from types import MappingProxyType

from . import output
from .faults import *
from .flags import HELP, Flag, FlagRegistry
from .help import dump, render
from .matcher import assign, match
from .utils import *

logger = logging.getLogger(__name__)

COMMAND_CHAIN = "$command_chain"
HANDLER_RESPONSE = "$handler_response"

Context = namedtuple("Context", ("args", "parent_args", "command_chain", "parser", "parent_parser"))
ParseExit = namedtuple("ParseExit", ("success", "exit_code", "message", "kind"))
Resolution = namedtuple("Resolution", ("values", "inherited", "chain", "nodes"))


class FlagInheritance(StrEnum):
    """
    Which ancestors a sub-command copies missing flags from.

    - NONE: nothing is inherited (`False`).
    - DIRECT_PARENT_ONLY: a snapshot of the parent when attached (`True`).
    - ALL_PARENTS: like DIRECT_PARENT_ONLY, and flags the parent inherits
      later (a subtree built bottom-up, then attached) are pushed down too.
    """
    NONE = "none"
    DIRECT_PARENT_ONLY = "direct-parent-only"
    ALL_PARENTS = "all-parents"

    @classmethod
    def normalize(cls, value):
        match value:
            case bool():
                return cls.DIRECT_PARENT_ONLY if value else cls.NONE
            case str() if value in cls._value2member_map_:
                return cls(value)
            case _:
                raise ConfigurationError(f"inherit_parent_flags must be a bool or one of {", ".join(f"'{mode}'" for mode in cls)}, not {value!r}")


class ParsedArgs(dict):
    """
    Flat value map returned by a successful parse.

    Flag values are keyed by flag name. Two reserved keys may be present:
    COMMAND_CHAIN (when a sub-command was traversed) and HANDLER_RESPONSE
    (when a handler ran).
    """

    @property
    def command_chain(self):
        return list(self.get(COMMAND_CHAIN, ()))

    @property
    def handler_response(self):
        return self.get(HANDLER_RESPONSE)


def _sanitize_metadata(cls, metadata, /):
    """
    Internal: validate node metadata.

    - name: non-empty string without whitespace.
    - description / command_name: Unset or non-empty strings.
    - handler: Unset or callable.
    - mandatory_character: Unset or a non-empty string.
    - sink: Unset or an object with a callable write().
    """
    if not isinstance(name := metadata["name"], str):
        raise ConfigurationError(f"{cls.__typename__} 'name' must be a string")
    elif not (name := name.strip()) or re.search(r"\s", name):
        raise ConfigurationError(f"{cls.__typename__} 'name' cannot be empty or contain whitespace")
    metadata["name"] = name

    for field in ("description", "command_name", "mandatory_character"):
        if not isinstance(value := metadata[field], str | Unset):
            raise ConfigurationError(f"{cls.__typename__} {field!r} must be a string")
        elif isinstance(value, str) and not value.strip():
            raise ConfigurationError(f"{cls.__typename__} {field!r} cannot be empty")

    if metadata["handler"] is not Unset and not callable(metadata["handler"]):
        raise ConfigurationError(f"{cls.__typename__} 'handler' must be callable")

    if metadata["sink"] is not Unset and not callable(getattr(metadata["sink"], "write", None)):
        raise ConfigurationError(f"{cls.__typename__} 'sink' must have a write() method")


def _attach_to_parent(self, parent):
    """
    Register this node under its parent, enforcing a tree.

    - a node is attached at most once and never re-parented;
    - a node cannot become its own ancestor;
    - child names are unique per parent (setdefault claims the slot).
    On success, parent flags are inherited when the node asked for it.
    """
    if parent is Unset or parent is None:
        return
    typename = type(self).__typename__
    if not isinstance(parent, Parser):
        raise ConfigurationError(f"{typename} 'parent' must be a parser")
    if self._parent is not None:
        raise ConfigurationError(f"{typename} {self.name!r} is already attached to {self._parent.name!r}")
    if parent is self or self in parent.path:
        raise ConfigurationError(f"{typename} {self.name!r} cannot be attached to itself or its descendants")
    if parent._children.setdefault(name := self.name, self) is not self:
        typeof = "sub-command" if parent.parent else "command"
        raise ConfigurationError(f"{typename} {typeof} name {name!r} is already in use")
    self._parent = parent
    if self._inherit_parent_flags is not FlagInheritance.NONE:
        inherited = self._registry.inherit(parent._registry)
        logger.debug("%s inherited flags %r from %s", name, inherited, parent.name)
        _propagate(self)


def _propagate(node):
    """Push the flags of `node` down to descendants inheriting from all parents."""
    for child in node._children.values():
        if child._inherit_parent_flags is FlagInheritance.ALL_PARENTS:
            if inherited := child._registry.inherit(node._registry):
                logger.debug("%s inherited flags %r from %s", child.name, inherited, node.name)
            _propagate(child)


def _absent(flag, values):
    value = values.get(flag.name)
    return value is None or (flag.allow_multiple and isinstance(value, list) and not value)


def _check_mandatory(nodes, values, chain):
    """
    Collect every mandatory flag missing from `values` over the visited nodes.

    Predicates receive a read-only view of the merged values. A name reported
    once is not reported again by a deeper node.
    """
    missing = []
    reported = set()
    view = MappingProxyType(values)
    for depth, node in enumerate(nodes):
        for flag in node.registry:
            if flag.name == HELP or flag.name in reported:
                continue
            mandatory = flag.mandatory(view) if callable(flag.mandatory) else flag.mandatory
            if mandatory and _absent(flag, values):
                missing.append(MissingFlag(flag.name, node.name, tuple(chain[:depth])))
                reported.add(flag.name)
    if missing:
        raise MissingMandatoryFlagsError(
            f"missing mandatory flags: {", ".join(record.name for record in missing)}",
            missing=tuple(missing),
            chain=tuple(chain),
        )


def _apply_defaults(nodes, values):
    """
    Fill absent values from declared defaults, deepest node first.

    allow_multiple flags always end up with a list: the default wrapped into
    a single-element list when it is not one already, or an empty list.
    """
    for node in reversed(nodes):
        for flag in node.registry:
            if flag.name == HELP or not _absent(flag, values):
                continue
            if (default := flag.default) is not None:
                if flag.allow_multiple:
                    default = list(default) if isinstance(default, list | tuple) else [default]
                values[flag.name] = default
            elif flag.allow_multiple:
                values[flag.name] = []


class Parser(metaclass=IntrospectableType):
    """
    Node of the command tree.

    Responsibilities
    - Declaration: owns the flags of its level (FlagRegistry) and its handler.
    - Composition: children keyed by name; the parent is set exactly once.
    - Resolution: parse()/parse_async() turn argv into a ParsedArgs map,
      dispatching to the handler of the node the tokens address.
    - Rendering: help text and configuration dumps written to a sink.

    Runtime settings (handle_errors, auto_exit, mandatory_character, sink)
    left Unset resolve through the parent, so a tree behaves like its root.
    `strict` (duplicate flags raise instead of warn) is fixed when the node is
    built, from the parent given at construction when Unset.
    """

    __introspectable__ = (
        "name",
        "description",
        "handler",
        "parent",
        "children",
        "inherit_parent_flags",
    )

    __displayable__ = (
        "name",
        "description",
        "flags",
        "children",
    )

    @property
    def root(self):
        """Topmost node of the tree this parser belongs to."""
        child, parent = self, self.parent
        while parent:
            child, parent = parent, parent.parent
        return child

    @property
    def path(self):
        """Nodes from the root down to this parser, inclusive."""
        path = [node := self]
        while node.parent:
            path.append(node := node.parent)
        return tuple(reversed(path))

    @property
    def command_chain(self):
        """Sub-command names leading from the root to this parser."""
        return tuple(node.name for node in self.path[1:])

    def __new__(
            cls,
            name=Unset,
            /,
            parent=Unset,
            description=Unset,
            handler=Unset,
            *,
            command_name=Unset,
            handle_errors=Unset,
            auto_exit=Unset,
            strict=Unset,
            inherit_parent_flags=False,
            mandatory_character=Unset,
            sink=Unset
    ):
        """
        Construct a parser node and attach it to `parent` when given.

        Parameters
        - name: str
          Sub-command name (or application name for a root). Defaults to the
          running script's basename.
        - parent: Parser | Unset
        - description: str
        - handler: Callable[[Context], Any]
        - command_name: str
          Name shown in hints ("try 'cli --help'"); defaults to `name`. A root
          with a command name and no handler shows help when run without
          arguments.
        - handle_errors, auto_exit: bool
          Render faults and exit instead of raising; exit the process after
          help or a handled fault.
        - strict: bool
          Duplicate flag names raise ConfigurationError instead of warning.
        - inherit_parent_flags: bool | str | FlagInheritance
          Copy the parent's flags missing here when attached. True means
          "direct-parent-only"; "all-parents" also receives flags the
          parent itself inherits later.
        - mandatory_character: str
          Marker used by help for mandatory flags.
        - sink: object with write(line)
        """
        metadata = {
            "name": coalesce(name, os.path.basename(sys.argv[0]) or "app"),
            "description": description,
            "handler": handler,
            "command_name": command_name,
            "mandatory_character": mandatory_character,
            "sink": sink,
        }
        _sanitize_metadata(cls, metadata)

        self = super().__new__(cls)
        for field, object in metadata.items():
            setattr(self, "_" + field, coalesce(object))
        self._command_name = command_name
        self._mandatory_character = mandatory_character
        self._sink = sink
        self._handle_errors = handle_errors
        self._auto_exit = auto_exit
        self._inherit_parent_flags = FlagInheritance.normalize(inherit_parent_flags)
        self._parent = None
        self._children = {}
        self._registry = FlagRegistry(strict=bool(coalesce(strict, getattr(parent, "strict", False))))
        _attach_to_parent(self, parent)
        return self

    # ── Settings ───────────────────────────────────────────────────────────

    def _inherited(self, field, default):
        if (value := getattr(self, "_" + field)) is not Unset:
            return value
        return getattr(self.parent, field) if self.parent else default

    @property
    def command_name(self):
        return coalesce(self._command_name, self.name)

    @property
    def handle_errors(self):
        return bool(self._inherited("handle_errors", True))

    @property
    def auto_exit(self):
        return bool(self._inherited("auto_exit", True))

    @property
    def mandatory_character(self):
        return self._inherited("mandatory_character", "*")

    @property
    def sink(self):
        """Configured sink, or None when the console should be used."""
        return self._inherited("sink", None)

    @property
    def strict(self):
        return self._registry.strict

    @property
    def registry(self):
        return self._registry

    @property
    def flags(self):
        return self._registry.flags

    # ── Declaration ────────────────────────────────────────────────────────

    def add_flag(self, declaration, /, *options, **metadata):
        """
        Register a flag on this level and return the parser for chaining.

        Accepts a Flag, a mapping of Flag fields, or the Flag constructor
        arguments directly: add_flag("port", "-p", "--port", type="number").
        """
        if isinstance(declaration, str):
            declaration = Flag(declaration, *options, **metadata)
        elif options or metadata:
            raise TypeError("add_flag() takes extra arguments only when building a flag by name")
        self._registry.register(declaration)
        return self

    def add_flags(self, declarations, /):
        self._registry.register_all(declarations)
        return self

    def has_flag(self, name, /):
        return self._registry.has(name)

    def get_flag(self, name, /):
        return self._registry.get(name)

    def add_sub_command(self, child, /, name=Unset):
        """
        Attach an existing parser as a sub-command and return it.

        `name` renames the child before it is attached; an attached parser
        cannot be renamed or moved.
        """
        if not isinstance(child, Parser):
            raise ConfigurationError(f"{type(self).__typename__} sub-command must be a parser")
        if name is not Unset and name != child.name:
            if child.parent is not None:
                raise ConfigurationError(f"{type(self).__typename__} {child.name!r} is already attached")
            metadata = {field: Unset for field in ("description", "handler", "command_name", "mandatory_character", "sink")}
            _sanitize_metadata(type(child), metadata | {"name": name})
            child._name = name.strip()
        _attach_to_parent(child, self)
        return child

    def command(self, name, /, *args, **kwargs):
        """Create a child parser under this one and return it."""
        return Parser(name, self, *args, **kwargs)

    def get_sub_command(self, name, /):
        return self._children.get(name)

    def handle(self, handler, /):
        """
        Register the handler of this node; usable as a decorator.

        A handler can be set only once.
        """
        if not callable(handler):
            raise ConfigurationError(f"{type(self).__typename__} handler must be callable")
        if self._handler is not None:
            raise ConfigurationError(f"{type(self).__typename__} {self.name!r} handler cannot be overridden")
        self._handler = handler
        return handler

    # ── Rendering ──────────────────────────────────────────────────────────

    def help_text(self):
        return render(self)

    def print_help(self, sink=Unset):
        sink = coalesce(sink, self.sink) or output.stdout
        for line in self.help_text().splitlines():
            sink.write(line)

    def print_all(self, sink=Unset, *, format="text"):
        """Write a dump of this subtree's configuration (text or json)."""
        sink = coalesce(sink, self.sink) or output.stdout
        for line in dump(self, format=format).splitlines():
            sink.write(line)

    # ── Parsing ────────────────────────────────────────────────────────────

    def _split(self, tokens):
        for index, token in enumerate(tokens):
            if token in self._children:
                return index, self._children[token]
        return len(tokens), None

    def _route(self, tokens):
        """Nodes and chain addressed by the tokens, by child names only."""
        node, nodes, chain = self, [self], []
        while True:
            index, child = node._split(tokens)
            if child is None:
                return tuple(nodes), tuple(chain)
            tokens = tokens[index + 1:]
            nodes.append(node := child)
            chain.append(child.name)

    def _unknown(self, token, chain):
        candidates = [*self._children, *(option for flag in self._registry for option in flag.options)]
        options = {"token": token, "chain": tuple(chain)}
        if close := difflib.get_close_matches(token, candidates, n=1):
            options["hint"] = f"did you mean '{close[0]}'?"
        return UnknownCommandError(f"unknown command {token!r}", **options)

    async def _fallback(self, values, inherited, chain):
        for flag in self._registry:
            if flag.name in values or flag.name in inherited or not flag.env:
                continue
            for variable in flag.env:
                if (raw := os.environ.get(variable)) is not None:
                    logger.debug("flag %r taken from environment variable %s", flag.name, variable)
                    await assign(flag, raw, values, chain=chain)
                    break

    async def _descend(self, tokens, inherited, chain, nodes):
        index, child = self._split(tokens)
        own = tokens[:index]
        logger.debug("resolving %r at %s (chain %r)", own, self.name, chain)
        values, unconsumed = await match(own, self._registry, chain=chain)
        if unconsumed < len(own):
            raise self._unknown(own[unconsumed], chain)
        await self._fallback(values, inherited, chain)
        merged = {**inherited, **values}
        if child is None:
            return Resolution(merged, dict(inherited), tuple(chain), tuple(nodes))
        return await child._descend(tokens[index + 1:], merged, (*chain, child.name), (*nodes, child))

    def _conclude_with_help(self, node):
        node.print_help(self.sink or output.stdout)
        if self.auto_exit:
            sys.exit(0)
        return ParseExit(True, 0, "help displayed", "help")

    def _conclude_with_fault(self, fault):
        trigger(
            fault,
            parser=self,
            sink=self.sink or output.stderr,
            handle_errors=self.handle_errors,
            auto_exit=self.auto_exit,
        )
        return ParseExit(False, 1, coalesce(fault.message, ""), "error")

    async def _parse(self, tokens, *, skip_handlers, skip_help_handling, deep):
        if not skip_help_handling:
            if not tokens and not self.parent and self._command_name is not Unset and self.handler is None:
                return self._conclude_with_help(self)
            nodes, _ = self._route(tokens)
            if any(token in nodes[-1].registry.get(HELP).options for token in tokens):
                return self._conclude_with_help(nodes[-1])

        try:
            resolution = await self._descend(tokens, {}, (), (self,))
            values = ParsedArgs(resolution.values)
            _check_mandatory(resolution.nodes, values, resolution.chain)
            _apply_defaults(resolution.nodes, values)
        except CommandException as fault:
            return self._conclude_with_fault(fault)

        if resolution.chain:
            values[COMMAND_CHAIN] = list(resolution.chain)

        final = resolution.nodes[-1]
        if final.handler is None or skip_handlers:
            return values

        context = Context(
            args={flag.name: values[flag.name] for flag in final.registry if flag.name in values},
            parent_args=resolution.inherited,
            command_chain=list(resolution.chain),
            parser=final,
            parent_parser=resolution.nodes[-2] if len(resolution.nodes) > 1 else None,
        )
        logger.debug("dispatching %s to %r", " ".join(resolution.chain) or self.name, final.handler)
        response = final.handler(context)
        if deep and inspect.isawaitable(response):
            response = await response
        values[HANDLER_RESPONSE] = response
        if isinstance(response, Mapping):
            values.update(response)
        return values

    def parse(self, argv=Unset, /, *, skip_handlers=False, skip_help_handling=False):
        """
        Parse argv synchronously.

        Parameters
        - argv: Unset (sys.argv[1:]) | str (shell-split) | Iterable[str]
        - skip_handlers: resolve and validate without calling the handler.
        - skip_help_handling: treat help spellings as ordinary flags.

        Returns
        - ParsedArgs on success. An asynchronous handler's pending result is
          stored under HANDLER_RESPONSE for the caller to await.
        - ParseExit when help was shown or a fault was handled and auto_exit
          is off.

        Raises
        - CommandException subclasses when handle_errors is off.
        - RuntimeError when a flag conversion suspends; use parse_async().
        """
        return settle(self._parse(
            tokenize(argv),
            skip_handlers=skip_handlers,
            skip_help_handling=skip_help_handling,
            deep=False,
        ))

    async def parse_async(self, argv=Unset, /, *, skip_handlers=False, skip_help_handling=False, deep=True):
        """
        Parse argv inside an event loop.

        Conversions are awaited one at a time. With `deep` the handler's
        awaitable result is awaited and handled like a synchronous result.
        """
        return await self._parse(
            tokenize(argv),
            skip_handlers=skip_handlers,
            skip_help_handling=skip_help_handling,
            deep=deep,
        )

    def __invoke__(self, argv=Unset):
        return self.parse(argv)


def command(handler=Unset, /, **kwargs):
    """
    Build a root Parser around a handler, or return a decorator doing so.

    The name defaults to the handler's __name__ and the description to its
    docstring.

        @command(command_name="greet")
        def greet(context): ...
    """
    @rename("command")
    def wrapper(handler, /):
        if not callable(handler):
            raise TypeError("@command() must be applied to a callable")
        options = {"description": inspect.getdoc(handler) or Unset} | kwargs
        return Parser(options.pop("name", getattr(handler, "__name__", Unset)), handler=handler, **options)

    return wrapper(handler) if handler is not Unset else wrapper


def invoke(object, argv=Unset, /):
    """
    Convenience runner for parsers or callables.

    - objects implementing __invoke__ are invoked with argv;
    - plain callables are wrapped with command() first.
    """
    if hasattr(object, "__invoke__") and callable(object.__invoke__):
        return object.__invoke__(argv)
    if callable(object):
        return invoke(command(object), argv)
    target = "argument" if argv is Unset else "first argument"
    raise TypeError(f"invoke() {target} must implement __invoke__ method") from None


__all__ = (
    "COMMAND_CHAIN",
    "HANDLER_RESPONSE",
    "Context",
    "ParseExit",
    "ParsedArgs",
    "FlagInheritance",
    "Parser",
    "command",
    "invoke",
)
