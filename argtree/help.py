"""
Argtree help renderer and configuration dump.

Both functions are pure: they read a parser's declarations (name, path,
description, flags, children) and return text. Writing the text out is the
parser's job (print_help / print_all), through its sink.

Help layout
    app service Help (* = Mandatory fields):

    Manage the service.

    Available sub-commands:
      start                Start the service
        Flags:
          -p, --port - listening port
        Sub-commands: none

    Flags:
      -h, --help
        display this help message and exit
          Type: boolean
          Flag only (no value expected)
"""
import json

from rich.console import Console
from rich.text import Text

from .flags import HELP, Composite, Primitive

INDENT = "  "
WIDTH = 50
PROPERTIES = 4

_console = Console(width=WIDTH, color_system=None, soft_wrap=False)


def _indent(level):
    return INDENT * level


def _wrap(text, level):
    """Wrap one description line at WIDTH, indenting every produced line."""
    if not text:
        return [_indent(level).rstrip()]
    return [_indent(level) + line.plain.rstrip() for line in Text(text).wrap(_console, WIDTH)]


def _mandatory(flag, mark):
    if callable(flag.mandatory):
        return " (conditionally mandatory)"
    return f" {mark}" if flag.mandatory else ""


def _primary(flag):
    return next((option for option in flag.options if option.startswith("--")), flag.options[0])


def _meta(flag):
    lines = [f"Type: {flag.type.typename}"]
    if not flag.flag_only:
        option = _primary(flag)
        if flag.allow_multiple or flag.type == Primitive("array"):
            lines.append("Multiple values allowed (repeat flag)")
            first, second = (flag.value_hint, flag.value_hint) if flag.value_hint else ("value1", "value2")
            lines.append(f"Example: {option} {first} {option} {second}")
        else:
            lines.append(f"Example: {option} {flag.value_hint or "value"}")
    if isinstance(flag.type, Composite):
        if properties := flag.type.properties:
            shown = ", ".join(properties[:PROPERTIES])
            if len(properties) > PROPERTIES:
                shown += f", ... ({len(properties)} total)"
            lines.append(f"Properties: {shown}")
        lines.append("Expected: JSON string")
    if flag.flag_only:
        lines.append("Flag only (no value expected)")
    if flag.default is not None:
        lines.append(f"Default: {json.dumps(flag.default, default=repr)}")
    if flag.enum:
        lines.append(f"Allowed values: {", ".join(f"'{value}'" for value in flag.enum)}")
    if flag.env:
        lines.append(f"Environment: {", ".join(flag.env)}")
    return lines


def _children(parser):
    lines = ["Available sub-commands:"]
    entries = []
    for name, child in sorted(parser.children.items()):
        entry = [f"{_indent(1)}{name.ljust(20)} {child.description or ""}".rstrip()]
        if flags := sorted((flag for flag in child.flags if flag.name != HELP), key=lambda flag: flag.name):
            entry.append(f"{_indent(2)}Flags:")
            entry.extend(f"{_indent(3)}{", ".join(flag.options)} - {flag.summary}".rstrip(" -") for flag in flags)
        else:
            entry.append(f"{_indent(2)}Flags: none")
        entry.append(f"{_indent(2)}Sub-commands: {", ".join(child.children) or "none"}")
        entries.append("\n".join(entry))
    lines.append("\n\n".join(entries))
    return lines


def _flags(parser):
    flags = sorted(parser.flags, key=lambda flag: flag.name)
    if not flags:
        return ["Flags:", f"{_indent(1)}none"]
    width = max(len(", ".join(flag.options)) for flag in flags) + 5
    blocks = []
    for flag in flags:
        options = ", ".join(sorted(flag.options, key=len))
        block = [f"{_indent(1)}{options.ljust(width)}{_mandatory(flag, parser.mandatory_character)}".rstrip()]
        description = flag.description or ("",)
        block.extend(_wrap(description[0], 2))
        block.extend(f"{_indent(3)}{line}" for line in _meta(flag))
        for line in description[1:]:
            block.extend(_wrap(line, 2))
        blocks.append("\n".join(line for line in block if line))
    return ["Flags:", "\n\n".join(blocks)]


def render(parser, /):
    """Return the help text of a single parser node."""
    title = " ".join(node.name for node in parser.path)
    sections = [f"{title} Help ({parser.mandatory_character} = Mandatory fields):", ""]
    if parser.description:
        sections.extend(_wrap(parser.description, 0))
        sections.append("")
    if parser.children:
        sections.extend(_children(parser))
        sections.append("")
    sections.extend(_flags(parser))
    return "\n".join(sections)


def _describe_flag(flag):
    return {
        "name": flag.name,
        "options": list(flag.options),
        "type": flag.type.typename,
        "mandatory": "conditional" if callable(flag.mandatory) else flag.mandatory,
        "default": flag.default,
        "allow_multiple": flag.allow_multiple,
        "allow_ligature": flag.allow_ligature,
        "flag_only": flag.flag_only,
        "enum": list(flag.enum),
        "description": list(flag.description),
        "env": list(flag.env),
    }


def _describe(parser):
    return {
        "name": parser.name,
        "description": parser.description,
        "command_chain": list(parser.command_chain),
        "flags": [_describe_flag(flag) for flag in parser.flags],
        "sub_commands": [_describe(child) for child in parser.children.values()],
    }


def _outline(description, level):
    lines = [f"{_indent(level)}Parser: {description["name"]}"]
    if description["description"]:
        lines.append(f"{_indent(level + 1)}Description: {description["description"]}")
    lines.append(f"{_indent(level + 1)}Flags ({len(description["flags"])}):")
    for flag in description["flags"]:
        details = [f"type: {flag["type"]}"]
        if flag["mandatory"]:
            details.append("mandatory" if flag["mandatory"] is True else "conditionally mandatory")
        if flag["default"] is not None:
            details.append(f"default: {json.dumps(flag["default"], default=repr)}")
        if flag["allow_multiple"]:
            details.append("multiple")
        if flag["flag_only"]:
            details.append("flag only")
        if flag["enum"]:
            details.append(f"enum: {json.dumps(flag["enum"], default=repr)}")
        lines.append(f"{_indent(level + 2)}- {flag["name"]}: {", ".join(flag["options"])} ({"; ".join(details)})")
    if description["sub_commands"]:
        lines.append(f"{_indent(level + 1)}Sub-commands ({len(description["sub_commands"])}):")
        for child in description["sub_commands"]:
            lines.extend(_outline(child, level + 2))
    return lines


def dump(parser, /, *, format="text"):
    """
    Describe the configuration of a parser and its whole subtree.

    format="json" returns a JSON document (non-serializable defaults are
    shown through repr); format="text" an indented outline.
    """
    match format:
        case "json":
            return json.dumps(_describe(parser), indent=2, default=repr)
        case "text":
            return "\n".join(_outline(_describe(parser), 0))
        case _:
            raise ValueError(f"unsupported dump format {format!r}, must be 'text' or 'json'")


__all__ = (
    "render",
    "dump",
)
