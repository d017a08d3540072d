"""
Fault rendering and triggering tests.

Conventions
- Test method names follow CamelCase per project convention.
"""

from __future__ import annotations

import copy
import unittest
from unittest import TestCase

from rich.console import Group

from argtree import (
    BufferSink,
    CommandException,
    DuplicateFlagWarning,
    FaultCode,
    MissingFlag,
    MissingMandatoryFlagsError,
    Parser,
    UnknownCommandError,
    ValidationError,
    trigger,
)


class TestCommandException(TestCase):
    """Exception surface and rendering."""

    def testMessageAndOptions(self):
        fault = UnknownCommandError("unknown command 'x'", token="x", chain=("a", "b"))
        self.assertEqual(str(fault), "unknown command 'x'")
        self.assertEqual(fault.token, "x")
        self.assertEqual(fault.chain, ("a", "b"))
        self.assertEqual(fault.code, FaultCode.UNKNOWN_COMMAND)
        with self.assertRaises(TypeError):
            fault.options["token"] = "y"  # type: ignore[index]

    def testRenderUsesRootCommandName(self):
        root = Parser("app", command_name="tool")
        child = root.command("build")
        fault = ValidationError("bad value", parser=child, chain=("build",), flag="level")
        self.assertEqual([line.plain for line in fault._render()], [
            "[ tool — 11125 | Invalid Value ]",
            "bad value",
            " → try 'tool build --help' for usage details",
        ])

    def testRenderHonorsOverrides(self):
        fault = CommandException("boom", code=FaultCode.INVALID_JSON, title="broken input", hint="fix it")
        header, message, hint = (line.plain for line in fault._render())
        self.assertTrue(header.endswith("— 11112 | Broken Input ]"))
        self.assertEqual(message, "boom")
        self.assertEqual(hint, " → fix it")

    def testRichRenderable(self):
        self.assertIsInstance(CommandException("boom").__rich__(), Group)

    def testReplaceMergesOptions(self):
        fault = ValidationError("bad", flag="level", value="mid")
        replaced = copy.replace(fault, chain=("set",))
        self.assertIsInstance(replaced, ValidationError)
        self.assertEqual(replaced.message, "bad")
        self.assertEqual(replaced.flag, "level")
        self.assertEqual(replaced.chain, ("set",))
        self.assertEqual(fault.chain, ())

    def testMissingMandatoryNames(self):
        fault = MissingMandatoryFlagsError("missing", missing=(
            MissingFlag("token", "app", ()),
            MissingFlag("name", "start", ("service", "start")),
        ))
        self.assertEqual(fault.names, ("token", "name"))
        self.assertEqual(fault.missing[1].chain, ("service", "start"))

    def testNormalizeDefaultsToNumber(self):
        self.assertEqual(FaultCode.MISSING_MANDATORY_FLAGS.normalize(), "11131")


class TestTrigger(TestCase):
    """trigger() policies."""

    def testRaisesWhenErrorsAreNotHandled(self):
        with self.assertRaises(UnknownCommandError) as context:
            trigger(UnknownCommandError("nope", token="x"), handle_errors=False)
        self.assertEqual(context.exception.token, "x")

    def testWritesToSinkWithoutExit(self):
        sink = BufferSink()
        trigger(UnknownCommandError("nope"), handle_errors=True, auto_exit=False, sink=sink, parser=Parser("app"))
        self.assertEqual(sink.lines, [
            "[ app — 11101 | Unknown Command ]",
            "nope",
            " → try 'app --help' for usage details",
        ])

    def testExitsWithOne(self):
        with self.assertRaises(SystemExit) as context:
            trigger(UnknownCommandError("nope"), handle_errors=True, sink=BufferSink(), parser=Parser("app"))
        self.assertEqual(context.exception.code, 1)

    def testWarningsAreEmitted(self):
        with self.assertWarns(DuplicateFlagWarning):
            trigger(DuplicateFlagWarning("duplicate"))

    def testRaisedFaultKeepsCause(self):
        cause = ValueError("bad schema")
        try:
            raise ValidationError("bad", flag="config") from cause
        except ValidationError as fault:
            original = fault
        with self.assertRaises(ValidationError) as context:
            trigger(original, handle_errors=False, chain=("set",))
        self.assertIs(context.exception.__cause__, cause)
        self.assertEqual(context.exception.chain, ("set",))

    def testRejectsNonTriggerables(self):
        with self.assertRaises(TypeError):
            trigger(ValueError("plain"))


if __name__ == "__main__":
    unittest.main()
