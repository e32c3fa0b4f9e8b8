"""
Test Suite for Field Registry

Run with: python test_field_registry.py
"""

import unittest
import json
import tempfile
import os

from clarifier.config import DEFAULT_REGISTRY_PATH
from clarifier.core.field_registry import FieldRegistry
from clarifier.errors import RegistryError


def minimal_registry(**overrides):
    data = {
        "version": "test",
        "fields": [
            {
                "id": "variables",
                "question": "Which variables?",
                "kind": "variable_list",
                "suggested_defaults": ["x1"]
            },
            {
                "id": "pressure_unit",
                "question": "Pressure unit?",
                "kind": "unit",
                "target": "pressure",
                "suggested_defaults": ["bar"]
            }
        ],
        "templates": [
            {
                "pattern": "bounds_for_{target}",
                "question": "Bounds for {target}?",
                "kind": "bounds",
                "expected_format": {"hint": "{target}: lo..hi", "examples": ["{target}: 0..10"]},
                "suggested_defaults": ["0..10"],
                "depends_on": ["variables", "{target}_unit"]
            },
            {
                "pattern": "{target}_unit",
                "question": "Unit of {target}?",
                "kind": "unit"
            }
        ]
    }
    data.update(overrides)
    return data


class TestShippedRegistry(unittest.TestCase):
    """The registry file in data/ loads and resolves."""

    def setUp(self):
        self.registry = FieldRegistry.from_json(DEFAULT_REGISTRY_PATH)

    def test_loads(self):
        self.assertIn("variables", self.registry.fields)
        self.assertIn("pressure_unit", self.registry.fields)

    def test_variables_default(self):
        spec = self.registry.resolve("variables")
        self.assertEqual(spec.kind, "variable_list")
        self.assertEqual(spec.suggested_defaults[0], "x1")
        self.assertEqual(spec.max_attempts, 3)

    def test_pressure_bounds_template(self):
        spec = self.registry.resolve("pressure_bounds")
        self.assertEqual(spec.kind, "bounds")
        self.assertEqual(spec.target, "pressure")
        self.assertIn("pressure_unit", spec.depends_on)


class TestResolve(unittest.TestCase):

    def setUp(self):
        self.registry = FieldRegistry(minimal_registry())

    def test_explicit_field(self):
        spec = self.registry.resolve("pressure_unit")
        self.assertEqual(spec.question, "Pressure unit?")
        self.assertEqual(spec.target, "pressure")

    def test_template_renders_target(self):
        spec = self.registry.resolve("bounds_for_x2")
        self.assertEqual(spec.id, "bounds_for_x2")
        self.assertEqual(spec.question, "Bounds for x2?")
        self.assertEqual(spec.target, "x2")
        self.assertEqual(spec.expected_format.hint, "x2: lo..hi")
        self.assertEqual(spec.expected_format.examples, ("x2: 0..10",))
        self.assertEqual(spec.depends_on, ("variables", "x2_unit"))

    def test_explicit_field_beats_template(self):
        """pressure_unit matches {target}_unit but the explicit field wins."""
        spec = self.registry.resolve("pressure_unit")
        self.assertEqual(spec.suggested_defaults, ("bar",))

    def test_unknown_field_is_generic_text(self):
        spec = self.registry.resolve("material", question="Which material did you mean?")
        self.assertEqual(spec.kind, "text")
        self.assertEqual(spec.question, "Which material did you mean?")
        self.assertEqual(spec.target, "material")
        self.assertTrue(self.registry.resolve("material").question)

    def test_suggestions_go_first(self):
        spec = self.registry.resolve("pressure_unit", suggestions=["psi", "bar"])
        self.assertEqual(spec.suggested_defaults, ("psi", "bar"))

    def test_ambiguity_message_does_not_replace_known_question(self):
        spec = self.registry.resolve("variables", question="Variables unclear")
        self.assertEqual(spec.question, "Which variables?")


class TestValidation(unittest.TestCase):

    def assert_invalid(self, data, fragment):
        with self.assertRaises(RegistryError) as ctx:
            FieldRegistry(data)
        self.assertIn(fragment, str(ctx.exception))

    def test_duplicate_ids(self):
        data = minimal_registry()
        data["fields"].append({"id": "variables", "question": "Again?", "kind": "variable_list"})
        self.assert_invalid(data, "Duplicate field id 'variables'")

    def test_unknown_kind(self):
        data = minimal_registry(fields=[{"id": "x", "question": "?", "kind": "matrix"}])
        self.assert_invalid(data, "unknown kind 'matrix'")

    def test_bad_max_attempts(self):
        data = minimal_registry(fields=[{"id": "x", "question": "?", "max_attempts": 0}])
        self.assert_invalid(data, "invalid max_attempts")

    def test_invalid_default(self):
        data = minimal_registry(fields=[
            {"id": "variables", "question": "?", "kind": "variable_list", "suggested_defaults": ["??"]}
        ])
        self.assert_invalid(data, "default '??' is invalid")

    def test_choice_without_choices(self):
        data = minimal_registry(fields=[{"id": "algo", "question": "?", "kind": "choice"}])
        self.assert_invalid(data, "without 'choices'")

    def test_unknown_dependency(self):
        data = minimal_registry(fields=[
            {"id": "constraints", "question": "?", "kind": "constraint_list", "depends_on": ["nope"]}
        ])
        self.assert_invalid(data, "depends on unknown field 'nope'")

    def test_template_without_placeholder(self):
        data = minimal_registry(templates=[{"pattern": "bounds", "question": "?"}])
        self.assert_invalid(data, "containing '{target}'")

    def test_collects_all_errors(self):
        data = minimal_registry(fields=[
            {"id": "a", "question": "?", "kind": "matrix"},
            {"id": "b", "question": "?", "max_attempts": -1},
        ])
        with self.assertRaises(RegistryError) as ctx:
            FieldRegistry(data)
        self.assertIn("Field 'a'", str(ctx.exception))
        self.assertIn("Field 'b'", str(ctx.exception))

    def test_registry_error_is_value_error(self):
        with self.assertRaises(ValueError):
            FieldRegistry(minimal_registry(fields=[{"question": "no id"}]))


class TestFromJson(unittest.TestCase):

    def setUp(self):
        self.temp_file = tempfile.NamedTemporaryFile(mode='w', suffix='.json', delete=False)
        json.dump(minimal_registry(), self.temp_file)
        self.temp_file.close()

    def tearDown(self):
        os.unlink(self.temp_file.name)

    def test_from_json(self):
        registry = FieldRegistry.from_json(self.temp_file.name)
        self.assertEqual(registry.version, "test")
        self.assertEqual(registry.source, self.temp_file.name)

    def test_missing_file(self):
        with self.assertRaises(FileNotFoundError):
            FieldRegistry.from_json("/nonexistent/registry.json")


if __name__ == '__main__':
    unittest.main()
