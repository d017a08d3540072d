"""
Flag declaration and registry tests.

Scope
- Validate sanitization of Flag metadata and the closed type variant.
- Validate registry policies: duplicates, spelling collisions, removal and
  inheritance, and the always-present help flag.

Conventions
- Test method names follow CamelCase per project convention.
"""

from __future__ import annotations

import unittest
from unittest import TestCase

from argtree import (
    Composite,
    ConfigurationError,
    Custom,
    DuplicateFlagWarning,
    Flag,
    FlagRegistry,
    Primitive,
)

SCHEMA = {
    "type": "object",
    "properties": {
        "host": {"type": "string"},
        "port": {"type": "integer"},
    },
    "required": ["port"],
}


class TestFlag(TestCase):
    """Flag construction and read-only surface."""

    def testDefaultsAreApplied(self):
        flag = Flag("name", "-n", "--name")
        self.assertEqual(flag.name, "name")
        self.assertEqual(flag.options, ("-n", "--name"))
        self.assertEqual(flag.type, Primitive("string"))
        self.assertFalse(flag.mandatory)
        self.assertIsNone(flag.default)
        self.assertFalse(flag.allow_multiple)
        self.assertTrue(flag.allow_ligature)
        self.assertFalse(flag.flag_only)
        self.assertEqual(flag.enum, ())
        self.assertIsNone(flag.validate)
        self.assertEqual(flag.description, ())
        self.assertIsNone(flag.value_hint)
        self.assertEqual(flag.env, ())

    def testFlagOnlyDefaultsToBoolean(self):
        self.assertEqual(Flag("verbose", "-v", flag_only=True).type, Primitive("boolean"))

    def testBuiltinTypesMapToTags(self):
        self.assertEqual(Flag("a", "-a", type=str).type, Primitive("string"))
        self.assertEqual(Flag("b", "-b", type=bool).type, Primitive("boolean"))
        self.assertEqual(Flag("c", "-c", type=list).type, Primitive("array"))
        self.assertEqual(Flag("d", "-d", type=dict).type, Primitive("object"))

    def testTagIsCaseInsensitive(self):
        self.assertEqual(Flag("port", "-p", type="NUMBER").type, Primitive("number"))

    def testCallableBecomesCustom(self):
        flag = Flag("count", "-c", type=int)
        self.assertIsInstance(flag.type, Custom)
        self.assertIs(flag.type.function, int)
        self.assertEqual(flag.type.typename, "int")

    def testMappingBecomesComposite(self):
        flag = Flag("server", "--server", type=SCHEMA)
        self.assertIsInstance(flag.type, Composite)
        self.assertEqual(flag.type.properties, ("host", "port"))
        self.assertEqual(flag.type.typename, "JSON object")

    def testInvalidSchemaRejected(self):
        with self.assertRaises(ConfigurationError):
            Flag("server", "--server", type={"type": 12})

    def testUnknownTagRejected(self):
        with self.assertRaises(ConfigurationError):
            Flag("port", "-p", type="integer")

    def testUnsupportedTypeRejected(self):
        with self.assertRaises(ConfigurationError):
            Flag("port", "-p", type=42)

    def testNameMustBeNonEmpty(self):
        with self.assertRaises(ConfigurationError):
            Flag("   ", "-x")

    def testReservedNameRejected(self):
        with self.assertRaises(ConfigurationError):
            Flag("$command_chain", "-x")

    def testOptionsRequired(self):
        with self.assertRaises(ConfigurationError):
            Flag("name")

    def testOptionsRejectWhitespace(self):
        with self.assertRaises(ConfigurationError):
            Flag("name", "--full name")

    def testOptionsRejectDuplicates(self):
        with self.assertRaises(ConfigurationError):
            Flag("name", "-n", "-n")

    def testEnumRejectsDuplicates(self):
        with self.assertRaises(ConfigurationError):
            Flag("level", "-l", enum=["low", "low"])

    def testEnumRejectsBareString(self):
        with self.assertRaises(ConfigurationError):
            Flag("level", "-l", enum="low")

    def testMandatoryMustBeBooleanOrPredicate(self):
        with self.assertRaises(ConfigurationError):
            Flag("name", "-n", mandatory="yes")
        self.assertTrue(callable(Flag("name", "-n", mandatory=lambda values: True).mandatory))

    def testValidateMustBeCallable(self):
        with self.assertRaises(ConfigurationError):
            Flag("name", "-n", validate=True)

    def testEnvAcceptsNameOrNames(self):
        self.assertEqual(Flag("port", "-p", env="APP_PORT").env, ("APP_PORT",))
        self.assertEqual(Flag("port", "-p", env=["APP_PORT", "PORT"]).env, ("APP_PORT", "PORT"))
        with self.assertRaises(ConfigurationError):
            Flag("port", "-p", env=[""])

    def testDescriptionSummary(self):
        self.assertEqual(Flag("port", "-p", description="listening port").summary, "listening port")
        flag = Flag("port", "-p", description=["listening port", "defaults to 3000"])
        self.assertEqual(flag.description, ("listening port", "defaults to 3000"))
        self.assertEqual(flag.summary, "listening port")
        self.assertEqual(Flag("port", "-p").summary, "")

    def testFieldsAreReadOnly(self):
        flag = Flag("port", "-p")
        with self.assertRaises(AttributeError):
            flag.name = "other"  # type: ignore[misc]

    def testDefaultContainersAreCopied(self):
        flag = Flag("tags", "-t", default=["a"], allow_multiple=True)
        flag.default.append("b")
        self.assertEqual(flag.default, ["a"])

    def testLigatureExtractsValue(self):
        flag = Flag("port", "-p", "--port")
        self.assertEqual(flag.ligature("--port=8080"), "8080")
        self.assertEqual(flag.ligature("-p=1=2"), "1=2")
        self.assertIsNone(flag.ligature("--port="))
        self.assertIsNone(flag.ligature("--portal=1"))
        self.assertIsNone(flag.ligature("--port"))


class TestFlagRegistry(TestCase):
    """Registry invariants and policies."""

    def testHelpFlagAlwaysPresent(self):
        registry = FlagRegistry()
        self.assertEqual(registry.names, ("help",))
        self.assertEqual(registry.get("help").options, ("-h", "--help"))
        self.assertTrue(registry.get("help").flag_only)

    def testHelpFlagCannotBeRemoved(self):
        with self.assertRaises(ConfigurationError):
            FlagRegistry().remove("help")

    def testRegisterKeepsDeclarationOrder(self):
        registry = FlagRegistry()
        registry.register(Flag("port", "-p"))
        registry.register(Flag("host", "--host"))
        self.assertEqual(registry.names, ("help", "port", "host"))
        self.assertEqual(len(registry), 3)
        self.assertIn("host", registry)
        self.assertEqual([flag.name for flag in registry], ["help", "port", "host"])

    def testRegisterAcceptsMapping(self):
        registry = FlagRegistry()
        flag = registry.register({"name": "port", "options": ["-p", "--port"], "type": "number"})
        self.assertIsInstance(flag, Flag)
        self.assertEqual(flag.type, Primitive("number"))
        self.assertIs(registry.get("port"), flag)

    def testRegisterAcceptsMappingWithSingleOption(self):
        flag = FlagRegistry().register({"name": "port", "options": "-p"})
        self.assertEqual(flag.options, ("-p",))

    def testMappingWithoutOptionsRejected(self):
        with self.assertRaises(ConfigurationError):
            FlagRegistry().register({"name": "port"})

    def testDuplicateNameWarnsAndKeepsFirst(self):
        registry = FlagRegistry()
        first = registry.register(Flag("port", "-p"))
        with self.assertWarns(DuplicateFlagWarning):
            kept = registry.register(Flag("port", "--port"))
        self.assertIs(kept, first)
        self.assertEqual(registry.get("port").options, ("-p",))
        self.assertIsNone(registry.owner("--port"))

    def testDuplicateRegistrationIsIdempotent(self):
        registry = FlagRegistry()
        flag = Flag("port", "-p")
        registry.register(flag)
        with self.assertWarns(DuplicateFlagWarning):
            registry.register(flag)
        self.assertEqual(registry.names, ("help", "port"))

    def testDuplicateNameRaisesWhenStrict(self):
        registry = FlagRegistry(strict=True)
        registry.register(Flag("port", "-p"))
        with self.assertRaises(ConfigurationError):
            registry.register(Flag("port", "--port"))

    def testSpellingCollisionRaises(self):
        registry = FlagRegistry()
        registry.register(Flag("port", "-p"))
        with self.assertRaises(ConfigurationError):
            registry.register(Flag("profile", "-p"))
        with self.assertRaises(ConfigurationError):
            registry.register(Flag("hostname", "-h"))

    def testRemoveFreesSpellings(self):
        registry = FlagRegistry()
        registry.register(Flag("port", "-p"))
        self.assertTrue(registry.remove("port"))
        self.assertFalse(registry.remove("port"))
        self.assertFalse(registry.has("port"))
        registry.register(Flag("profile", "-p"))
        self.assertEqual(registry.owner("-p").name, "profile")

    def testRegisterAll(self):
        registry = FlagRegistry()
        flags = registry.register_all([Flag("a", "-a"), {"name": "b", "options": ["-b"]}])
        self.assertEqual([flag.name for flag in flags], ["a", "b"])

    def testInheritSkipsTakenNamesAndSpellings(self):
        parent = FlagRegistry()
        parent.register(Flag("verbose", "-v", flag_only=True))
        parent.register(Flag("port", "-p"))
        parent.register(Flag("quiet", "-q", flag_only=True))
        child = FlagRegistry()
        child.register(Flag("port", "--port"))
        child.register(Flag("query", "-q"))
        self.assertEqual(child.inherit(parent), ["verbose"])
        self.assertEqual(child.names, ("help", "port", "query", "verbose"))
        self.assertEqual(child.get("port").options, ("--port",))


if __name__ == "__main__":
    unittest.main()
