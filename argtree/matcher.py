"""
Argtree matcher: turn one level's tokens into flag values.

Scanning (synchronous, never suspends)
- Ligature pass: flags with allow_ligature and not flag_only claim tokens of
  the form "<spelling>=<value>" (non-empty value). First token wins per flag
  unless allow_multiple.
- Positional pass: flags claim tokens equal to one of their spellings.
  • flag_only: presence is True, the next token is left alone.
  • otherwise the next token is taken as the value when it exists, is
    unclaimed and does not start with "-".
  • a boolean flag without such a value is True; any other flag records
    nothing (the spelling is still consumed).
  A token is claimed at most once across both passes.

Conversion (awaitable)
- Assignments are converted in token order, one at a time, so that
  asynchronous conversions cannot reorder validation errors.
- Each value is checked against `enum`, then `validate(value, values)`.
- allow_multiple flags accumulate into a list in token order; other flags
  keep the last assignment.
"""
import inspect
import json
import operator
from collections import namedtuple
from types import MappingProxyType

from jsonschema import ValidationError as JsonSchemaValidationError

from .faults import FaultCode, ValidationError
from .flags import Composite, Custom, Primitive

PREFIX = "-"
TRUTHY = frozenset(("true", "yes", "1"))

Assignment = namedtuple("Assignment", ("flag", "index", "raw"))
Scan = namedtuple("Scan", ("assignments", "consumed", "unconsumed"))


def scan(tokens, flags, /):
    """
    Claim tokens for flags without converting anything.

    Returns a Scan with the assignments sorted by token index, the claimed
    indices, and the index of the first unclaimed token (len(tokens) when
    every token was claimed).
    """
    tokens = list(tokens)
    flags = tuple(flags)
    consumed = set()
    assignments = []

    for flag in flags:
        if not flag.allow_ligature or flag.flag_only:
            continue
        for index, token in enumerate(tokens):
            if not flag.allow_multiple and token in flag.options:
                break
            if index in consumed or (raw := flag.ligature(token)) is None:
                continue
            assignments.append(Assignment(flag, index, raw))
            consumed.add(index)
            if not flag.allow_multiple:
                break

    claimed = {assignment.flag.name for assignment in assignments}
    for flag in flags:
        if flag.name in claimed and not flag.allow_multiple:
            continue
        for index, token in enumerate(tokens):
            if index in consumed or token not in flag.options:
                continue
            consumed.add(index)
            following = index + 1
            if flag.flag_only:
                assignments.append(Assignment(flag, index, True))
            elif (
                following < len(tokens) and
                following not in consumed and
                not tokens[following].startswith(PREFIX)
            ):
                assignments.append(Assignment(flag, index, tokens[following]))
                consumed.add(following)
            elif flag.boolean:
                assignments.append(Assignment(flag, index, True))
            if not flag.allow_multiple:
                break

    assignments.sort(key=operator.attrgetter("index"))
    unconsumed = next((index for index in range(len(tokens)) if index not in consumed), len(tokens))
    return Scan(tuple(assignments), frozenset(consumed), unconsumed)


def _number(raw):
    if isinstance(raw, int | float) and not isinstance(raw, bool):
        return raw
    text = str(raw).strip()
    try:
        return int(text)
    except ValueError:
        return float(text)


async def convert(flag, raw, /, *, chain=()):
    """
    Convert one raw value according to the flag's type.

    Raises ValidationError when the raw value cannot be converted.
    """
    if flag.flag_only and isinstance(raw, bool):
        return raw
    match flag.type:
        case Primitive("boolean"):
            if isinstance(raw, bool):
                return raw
            return str(raw).strip().lower() in TRUTHY
        case Primitive("string"):
            return raw if isinstance(raw, str) else str(raw)
        case Primitive("number"):
            try:
                return _number(raw)
            except ValueError:
                raise ValidationError(
                    f"cannot convert {raw!r} to a number for flag {flag.name!r}",
                    code=FaultCode.UNCASTABLE_VALUE, flag=flag.name, value=raw, chain=chain,
                ) from None
        case Primitive("array"):
            return list(raw) if isinstance(raw, list | tuple) else [raw]
        case Primitive("object"):
            if not isinstance(raw, str):
                return raw
            try:
                return json.loads(raw)
            except json.JSONDecodeError as error:
                raise ValidationError(
                    f"invalid JSON for flag {flag.name!r}: {error.msg}",
                    code=FaultCode.INVALID_JSON, flag=flag.name, value=raw, chain=chain,
                ) from error
        case Custom(function):
            try:
                value = function(raw)
                if inspect.isawaitable(value):
                    value = await value
            except (ValueError, TypeError) as error:
                raise ValidationError(
                    f"cannot convert {raw!r} for flag {flag.name!r}: {error}",
                    code=FaultCode.UNCASTABLE_VALUE, flag=flag.name, value=raw, chain=chain,
                ) from error
            return value
        case Composite() as composite:
            try:
                document = json.loads(raw) if isinstance(raw, str) else raw
            except json.JSONDecodeError as error:
                raise ValidationError(
                    f"invalid JSON for flag {flag.name!r}: {error.msg}",
                    code=FaultCode.INVALID_JSON, flag=flag.name, value=raw, chain=chain,
                ) from error
            try:
                composite.validator.validate(document)
            except JsonSchemaValidationError as error:
                raise ValidationError(
                    f"validation failed for flag {flag.name!r}: {error.message}",
                    flag=flag.name, value=raw, chain=chain,
                ) from error
            return document
        case _:
            raise TypeError(f"unsupported flag type {flag.type!r}")


async def check(flag, value, values, /, *, chain=()):
    """Apply the enum and custom validation rules to a converted value."""
    if flag.enum and value not in flag.enum:
        allowed = ", ".join(f"'{choice}'" if isinstance(choice, str) else repr(choice) for choice in flag.enum)
        raise ValidationError(
            f"invalid value {value!r} for flag {flag.name!r}, allowed values: {allowed}",
            code=FaultCode.INVALID_CHOICE, flag=flag.name, value=value, chain=chain,
            hint=f"choose one of {allowed}",
        )
    if flag.validate is None:
        return
    verdict = flag.validate(value, MappingProxyType(values))
    if inspect.isawaitable(verdict):
        verdict = await verdict
    if verdict is False:
        raise ValidationError(
            f"validation failed for flag {flag.name!r} with value {value!r}",
            flag=flag.name, value=value, chain=chain,
        )
    if isinstance(verdict, str):
        raise ValidationError(verdict, flag=flag.name, value=value, chain=chain)


async def assign(flag, raw, values, /, *, chain=()):
    """Convert, check and store one raw value into `values`."""
    value = await convert(flag, raw, chain=chain)
    await check(flag, value, values, chain=chain)
    if flag.allow_multiple:
        values.setdefault(flag.name, []).append(value)
    else:
        values[flag.name] = value
    return value


async def match(tokens, flags, /, *, chain=()):
    """
    Scan and convert one level's tokens.

    Returns (values, unconsumed) where unconsumed is the index of the first
    token no flag claimed, or len(tokens).
    """
    result = scan(tokens, flags)
    values = {}
    for assignment in result.assignments:
        await assign(assignment.flag, assignment.raw, values, chain=chain)
    return values, result.unconsumed


__all__ = (
    "Assignment",
    "Scan",
    "scan",
    "convert",
    "check",
    "assign",
    "match",
)
