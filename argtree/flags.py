r"""
Argtree flag declarations and the per-parser flag registry.

Overview
- Flag: declarative, immutable description of one named input: its output
  name, the token spellings that address it, how raw tokens are converted,
  and the rules (mandatory, default, enum, validate) applied to the result.
- Value types, a closed variant:
  • Primitive(tag): one of "string", "number", "boolean", "array", "object".
  • Custom(function): any callable turning a raw token into a value; it may
    return an awaitable.
  • Composite(schema): a JSON Schema mapping; raw tokens are JSON documents
    validated with jsonschema.
- FlagRegistry: ordered, deduplicated set of flags owned by one parser. It
  always holds the synthetic "help" flag.

Metadata (sanitized on construction)
- name: non-empty string, must not start with "$" (reserved result keys).
- options: one or more non-empty spellings without whitespace, no duplicates.
- type: tag string, builtin str/bool/list/dict, callable, JSON Schema mapping
  or a variant instance. Defaults to "string" ("boolean" for flag_only).
- mandatory: bool or predicate over the parsed values.
- default, enum, validate, description, value_hint, env.

Every invalid declaration raises ConfigurationError naming the field.

Quick example:
    >>> port = Flag("port", "-p", "--port", type="number", default=3000)
    >>> registry = FlagRegistry()
    >>> registry.register(port).name
    'port'
    >>> registry.names
    ('help', 'port')
"""
import builtins
import re
from collections.abc import Iterable, Mapping

from jsonschema import SchemaError
from jsonschema.validators import validator_for

from .faults import ConfigurationError, DuplicateFlagWarning, trigger
from .utils import *

HELP = "help"
TAGS = ("string", "number", "boolean", "array", "object")


class Primitive:
    """Built-in conversion selected by tag."""
    __slots__ = ("tag",)
    __match_args__ = ("tag",)

    def __init__(self, tag, /):
        if not isinstance(tag, str):
            raise ConfigurationError("primitive type tag must be a string")
        if (tag := tag.strip().lower()) not in TAGS:
            raise ConfigurationError(f"invalid type tag {tag!r}, must be one of {", ".join(map(repr, TAGS))}")
        self.tag = tag

    @property
    def typename(self):
        return self.tag

    def __eq__(self, other):
        if not isinstance(other, Primitive):
            return NotImplemented
        return self.tag == other.tag

    def __hash__(self):
        return hash((Primitive, self.tag))

    def __repr__(self):
        return f"Primitive({self.tag!r})"


class Custom:
    """User-supplied token-to-value function."""
    __slots__ = ("function",)
    __match_args__ = ("function",)

    def __init__(self, function, /):
        if not callable(function):
            raise ConfigurationError("custom type must be callable")
        self.function = function

    @property
    def typename(self):
        return getattr(self.function, "__name__", None) or "custom function"

    def __eq__(self, other):
        if not isinstance(other, Custom):
            return NotImplemented
        return self.function == other.function

    def __hash__(self):
        return hash((Custom, self.function))

    def __repr__(self):
        return f"Custom({self.typename})"


class Composite:
    """
    Structured value described by a JSON Schema.

    The schema is checked against its metaschema on construction, so a broken
    schema is a declaration error rather than a parse error.
    """
    __slots__ = ("schema", "_validator")
    __match_args__ = ("schema",)

    def __init__(self, schema, /):
        if not isinstance(schema, Mapping):
            raise ConfigurationError("composite type schema must be a mapping")
        cls = validator_for(schema)
        try:
            cls.check_schema(schema)
        except SchemaError as error:
            raise ConfigurationError(f"composite type schema is invalid: {error.message}") from error
        self.schema = schema
        self._validator = cls(schema)

    @property
    def typename(self):
        return "JSON object"

    @property
    def validator(self):
        return self._validator

    @property
    def properties(self):
        return tuple(self.schema.get("properties", {}))

    def __repr__(self):
        return f"Composite({dict(self.schema)!r})"


def _sanitize_type(declared, /):
    """
    Map a declared type onto the closed variant.

    Builtins get their natural tag (str → string, bool → boolean,
    list → array, dict → object); any other callable is Custom, including
    int/float and classes; mappings are JSON schemas.
    """
    match declared:
        case Primitive() | Custom() | Composite():
            return declared
        case builtins.str:
            return Primitive("string")
        case builtins.bool:
            return Primitive("boolean")
        case builtins.list:
            return Primitive("array")
        case builtins.dict:
            return Primitive("object")
        case str():
            return Primitive(declared)
        case Mapping():
            return Composite(declared)
        case _ if callable(declared):
            return Custom(declared)
        case _:
            raise ConfigurationError(
                "flag 'type' must be a type tag, a callable or a JSON schema mapping"
            )


def _sanitize_identity(cls, metadata, /):
    """
    Internal: validate the output name and the token spellings.

    - name: non-empty after trimming, not starting with "$".
    - options: at least one; each a non-empty string without whitespace;
      duplicates rejected; declaration order kept.
    """
    if not isinstance(name := metadata["name"], str):
        raise ConfigurationError(f"{cls.__typename__} 'name' must be a string")
    elif not (name := name.strip()):
        raise ConfigurationError(f"{cls.__typename__} 'name' cannot be empty")
    elif name.startswith("$"):
        raise ConfigurationError(f"{cls.__typename__} 'name' cannot start with '$' (reserved)")
    metadata["name"] = name

    if not metadata["options"]:
        raise ConfigurationError(f"{cls.__typename__} {name!r} must specify at least one option")
    options = []
    for option in metadata["options"]:
        if not isinstance(option, str):
            raise ConfigurationError(f"{cls.__typename__} {name!r} options must be strings")
        elif not option or re.search(r"\s", option):
            raise ConfigurationError(f"{cls.__typename__} {name!r} options cannot be empty or contain whitespace")
        elif option in options:
            raise ConfigurationError(f"{cls.__typename__} {name!r} options cannot contain duplicates")
        options.append(option)
    metadata["options"] = tuple(options)


def _sanitize_rules(cls, metadata, /):
    """
    Internal: validate conversion and checking rules.

    - type: resolved through _sanitize_type; flag_only without a type is boolean.
    - mandatory: bool or callable predicate.
    - validate: Unset or callable.
    - enum: iterable without duplicates, stored as a tuple.
    - env: Unset, a variable name, or an iterable of names.
    """
    name = metadata["name"]
    try:
        metadata["type"] = _sanitize_type(coalesce(metadata["type"], "boolean" if metadata["flag_only"] else "string"))
    except ConfigurationError as error:
        raise ConfigurationError(f"{cls.__typename__} {name!r}: {error}") from None

    if not isinstance(metadata["mandatory"], bool) and not callable(metadata["mandatory"]):
        raise ConfigurationError(f"{cls.__typename__} {name!r} 'mandatory' must be a boolean or a predicate")

    if metadata["validate"] is not Unset and not callable(metadata["validate"]):
        raise ConfigurationError(f"{cls.__typename__} {name!r} 'validate' must be callable")

    if isinstance(enum := metadata["enum"], str) or not isinstance(enum, Iterable):
        raise ConfigurationError(f"{cls.__typename__} {name!r} 'enum' must be an iterable of values")
    sanitized = []
    for value in enum:
        if value in sanitized:
            raise ConfigurationError(f"{cls.__typename__} {name!r} 'enum' cannot contain duplicates")
        sanitized.append(value)
    metadata["enum"] = tuple(sanitized)

    match metadata["env"]:
        case UnsetType():
            metadata["env"] = ()
        case str() as variable if variable.strip():
            metadata["env"] = (variable.strip(),)
        case Iterable() as variables if not isinstance(variables, str):
            variables = tuple(variables)
            if not all(isinstance(variable, str) and variable.strip() for variable in variables):
                raise ConfigurationError(f"{cls.__typename__} {name!r} 'env' names must be non-empty strings")
            metadata["env"] = tuple(variable.strip() for variable in variables)
        case _:
            raise ConfigurationError(f"{cls.__typename__} {name!r} 'env' must be a variable name or names")


def _sanitize_text(cls, metadata, /):
    """
    Internal: normalize help text fields.

    description accepts a string or an iterable of strings (first entry is
    the summary line); value_hint must be a non-empty string when provided.
    """
    name = metadata["name"]
    match metadata["description"]:
        case UnsetType():
            metadata["description"] = ()
        case str() as description:
            metadata["description"] = (description.strip(),) if description.strip() else ()
        case Iterable() as lines:
            lines = tuple(lines)
            if not all(isinstance(line, str) for line in lines):
                raise ConfigurationError(f"{cls.__typename__} {name!r} 'description' lines must be strings")
            metadata["description"] = lines
        case _:
            raise ConfigurationError(f"{cls.__typename__} {name!r} 'description' must be a string")

    if not isinstance(hint := metadata["value_hint"], str | Unset):
        raise ConfigurationError(f"{cls.__typename__} {name!r} 'value_hint' must be a string")
    elif isinstance(hint, str) and not (hint := hint.strip()):
        raise ConfigurationError(f"{cls.__typename__} {name!r} 'value_hint' cannot be empty")
    metadata["value_hint"] = coalesce(hint)


class Flag(metaclass=IntrospectableType):
    """
    Named, typed input declaration.

    A Flag never changes once built; every field is exposed read-only. The
    parser matches tokens against `options` by exact string equality and
    stores the converted value under `name`.

    Properties
    - The names listed in __introspectable__ are exposed as read-only
      attributes mirroring the sanitized metadata values.
    """

    __introspectable__ = (
        "name",
        "options",
        "type",
        "mandatory",
        "default",
        "allow_multiple",
        "allow_ligature",
        "flag_only",
        "enum",
        "validate",
        "description",
        "value_hint",
        "env",
    )

    __displayable__ = (
        "name",
        "options",
        "type",
        "mandatory",
        "default",
        "allow_multiple",
        "flag_only",
        "enum",
    )

    def __new__(
            cls,
            name,
            /,
            *options,
            type=Unset,
            mandatory=False,
            default=Unset,
            allow_multiple=False,
            allow_ligature=True,
            flag_only=False,
            enum=(),
            validate=Unset,
            description=Unset,
            value_hint=Unset,
            env=Unset
    ):
        """
        Construct a Flag with the provided metadata.

        Parameters
        - name: str
          Key of the value in the parse result.
        - options: one or more str
          Token spellings, e.g. "-p", "--port".
        - type: tag | callable | mapping | variant
          Conversion applied to raw tokens.
        - mandatory: bool | Callable[[Mapping], bool]
          Whether the flag must be present; predicates see the merged values.
        - default: Any
          Value used when the flag is absent. None means no default.
        - allow_multiple: bool
          Repeated occurrences append to a list in token order.
        - allow_ligature: bool
          Accept the single-token "--name=value" spelling.
        - flag_only: bool
          Presence alone sets True; no value token is consumed.
        - enum: Iterable
          Admissible converted values (exact equality).
        - validate: Callable[[Any, Mapping], bool | str | None]
          Custom check; False or a message string rejects the value.
        - description: str | Iterable[str]
        - value_hint: str
          Example value shown in help.
        - env: str | Iterable[str]
          Environment variables consulted when the flag is absent.
        """
        metadata = {
            "name": name,
            "options": options,
            "type": type,
            "mandatory": mandatory,
            "default": default,
            "allow_multiple": bool(allow_multiple),
            "allow_ligature": bool(allow_ligature),
            "flag_only": bool(flag_only),
            "enum": enum,
            "validate": validate,
            "description": description,
            "value_hint": value_hint,
            "env": env,
        }
        _sanitize_identity(cls, metadata)
        _sanitize_rules(cls, metadata)
        _sanitize_text(cls, metadata)

        self = super().__new__(cls)
        for name, object in metadata.items():
            setattr(self, "_" + name, coalesce(object))
        return self

    @property
    def summary(self):
        """First description line, or an empty string."""
        return self.description[0] if self.description else ""

    @property
    def boolean(self):
        return self.type == Primitive("boolean")

    def ligature(self, token, /):
        """
        Return the raw value of a "spelling=value" token, or None.

        The remainder after "=" must be non-empty.
        """
        for option in self.options:
            if token.startswith(prefix := option + "=") and len(token) > len(prefix):
                return token[len(prefix):]
        return None

    def __flag__(self):
        return self


def _coerce_flag(declaration, /):
    """Accept a Flag or a plain mapping with the Flag fields."""
    if isinstance(declaration, Flag):
        return declaration
    if isinstance(declaration, Mapping):
        fields = dict(declaration)
        try:
            name = fields.pop("name")
            options = fields.pop("options")
        except KeyError as error:
            raise ConfigurationError(f"flag declaration is missing {error.args[0]!r}") from None
        if isinstance(options, str):
            options = (options,)
        return Flag(name, *options, **fields)
    raise ConfigurationError("flag declaration must be a flag or a mapping")


def help_flag():
    """Synthetic help flag present in every registry."""
    return Flag(
        HELP, "-h", "--help",
        flag_only=True,
        description="display this help message and exit",
    )


class FlagRegistry:
    """
    Ordered collection of the flags owned by one parser.

    Names are unique: a second registration under an existing name raises
    ConfigurationError in strict mode, otherwise it emits a
    DuplicateFlagWarning and is ignored. Spellings are unique as well, and a
    spelling collision between two distinct flags always raises.
    """

    def __init__(self, *, strict=False):
        self._strict = bool(strict)
        self._flags = {}
        self._spellings = {}
        self.register(help_flag())

    strict = mirror("strict")

    @property
    def flags(self):
        """Ordered snapshot of the registered flags."""
        return tuple(self._flags.values())

    @property
    def names(self):
        return tuple(self._flags)

    def register(self, declaration, /):
        """
        Register a flag declaration and return the flag now held under its name.

        On a tolerated duplicate the previously registered flag is returned.
        """
        flag = _coerce_flag(declaration)
        if (existing := self._flags.get(flag.name)) is not None:
            if self._strict:
                raise ConfigurationError(f"flag {flag.name!r} already exists")
            trigger(DuplicateFlagWarning(f"flag {flag.name!r} already exists, duplicate not added"), stacklevel=4)
            return existing
        for option in flag.options:
            if (owner := self._spellings.get(option)) is not None:
                raise ConfigurationError(f"option {option!r} of flag {flag.name!r} is already used by flag {owner!r}")
        self._flags[flag.name] = flag
        self._spellings.update(dict.fromkeys(flag.options, flag.name))
        return flag

    def register_all(self, declarations, /):
        return [self.register(declaration) for declaration in declarations]

    def remove(self, name, /):
        if name == HELP:
            raise ConfigurationError("the help flag cannot be removed")
        if (flag := self._flags.pop(name, None)) is None:
            return False
        for option in flag.options:
            del self._spellings[option]
        return True

    def get(self, name, /):
        return self._flags.get(name)

    def has(self, name, /):
        return name in self._flags

    def owner(self, option, /):
        """Flag declaring the given spelling, or None."""
        if (name := self._spellings.get(option)) is None:
            return None
        return self._flags[name]

    def inherit(self, other, /):
        """
        Copy flags from another registry that are missing here.

        Flags whose name or any spelling is already taken are skipped; the
        names actually inherited are returned.
        """
        inherited = []
        for flag in other:
            if flag.name in self._flags or any(option in self._spellings for option in flag.options):
                continue
            self._flags[flag.name] = flag
            self._spellings.update(dict.fromkeys(flag.options, flag.name))
            inherited.append(flag.name)
        return inherited

    def __contains__(self, name):
        return name in self._flags

    def __iter__(self):
        return iter(self.flags)

    def __len__(self):
        return len(self._flags)

    def __repr__(self):
        return f"flag-registry({", ".join(self._flags)})"


__all__ = (
    "HELP",
    "TAGS",
    "Primitive",
    "Custom",
    "Composite",
    "Flag",
    "FlagRegistry",
    "help_flag",
)
