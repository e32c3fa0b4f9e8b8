"""
Field Registry - Static FieldSpec definitions for clarifiable fields

Responsibilities:
- Load field definitions and templated field families from JSON
- Validate the registry on load (fail fast, report every problem)
- Resolve a concrete field id to a FieldSpec

Design principles:
- Explicit fields take priority over templates
- Templates render '{target}' into question, hint, examples, defaults and depends_on
- Unknown ids resolve to a generic 'text' field instead of failing
- Deterministic: same id always resolves to the same FieldSpec

Templates:
    bounds_for_{target}   bounds of a decision variable ('bounds_for_x1')
    {target}_unit         unit of a quantity ('length_unit')
    {target}_bounds       range of a quantity ('pressure_bounds')
"""

import json
import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from clarifier.contracts import DEFAULT_MAX_ATTEMPTS, ExpectedFormat, FieldSpec, Rejected
from clarifier.core.answer_validator import KNOWN_KINDS, parse_answer
from clarifier.errors import RegistryError

logger = logging.getLogger(__name__)

TARGET_PLACEHOLDER = "{target}"

# Target used to render templates during validation
_SAMPLE_TARGET = "x1"


def _render(value: Any, target: str) -> Any:
    if isinstance(value, str):
        return value.replace(TARGET_PLACEHOLDER, target)
    if isinstance(value, list):
        return [_render(item, target) for item in value]
    if isinstance(value, dict):
        return {key: _render(item, target) for key, item in value.items()}
    return value


def _pattern_to_regex(pattern: str) -> "re.Pattern":
    before, _, after = pattern.partition(TARGET_PLACEHOLDER)
    return re.compile(
        re.escape(before) + r'(?P<target>[A-Za-z_][A-Za-z0-9_]*)' + re.escape(after)
    )


def _merge_defaults(suggestions: Sequence[Any], defaults: Sequence[Any]) -> tuple:
    merged = []
    for value in list(suggestions) + list(defaults):
        if value not in merged:
            merged.append(value)
    return tuple(merged)


class FieldRegistry:
    """
    Registry of FieldSpecs keyed by field id.

    Args:
        data: Registry dict with 'fields' and optional 'templates'
        source: Description used in log and error messages

    Raises:
        RegistryError: If the registry fails validation (all errors listed)
    """

    def __init__(self, data: Dict[str, Any], source: str = "<dict>"):
        self.source = source
        self.version = data.get("version")
        self.fields: Dict[str, Dict[str, Any]] = {}
        self.templates: List[Dict[str, Any]] = list(data.get("templates", []))
        self._raw_fields = list(data.get("fields", []))

        for definition in self._raw_fields:
            if isinstance(definition, dict) and "id" in definition:
                self.fields.setdefault(definition["id"], definition)

        self._template_patterns = [
            (_pattern_to_regex(template["pattern"]), template)
            for template in self.templates
            if isinstance(template.get("pattern"), str) and TARGET_PLACEHOLDER in template["pattern"]
        ]

        self._validate_registry()

        logger.info(
            f"Field registry loaded from {self.source}: "
            f"{len(self.fields)} fields, {len(self.templates)} templates"
        )

    @classmethod
    def from_json(cls, path: str) -> "FieldRegistry":
        """
        Load registry from a JSON file.

        Raises:
            FileNotFoundError: If file doesn't exist
            RegistryError: If registry is invalid
        """
        registry_path = Path(path)
        if not registry_path.exists():
            raise FileNotFoundError(f"Field registry not found: {path}")

        with open(registry_path, 'r') as f:
            data = json.load(f)

        return cls(data, source=str(registry_path))

    # =========================================================================
    # Public API
    # =========================================================================

    def resolve(self, field_id: str, question: Optional[str] = None,
                suggestions: Optional[Sequence[Any]] = None) -> FieldSpec:
        """
        Resolve a concrete field id to a FieldSpec.

        Args:
            field_id: Concrete id (e.g. 'variables', 'bounds_for_x1')
            question: Fallback question for ids the registry doesn't know
                (typically the extractor's ambiguity message)
            suggestions: Values placed ahead of the registry defaults

        Returns:
            FieldSpec
        """
        definition = self.fields.get(field_id)
        if definition is None:
            definition = self._render_template(field_id)

        if definition is None:
            logger.debug(f"Field '{field_id}' not in registry, using generic text field")
            definition = {
                "id": field_id,
                "question": question or f"Please provide a value for {field_id}.",
                "kind": "text",
                "target": field_id,
                "expected_format": {"hint": "Free text", "examples": []},
            }

        spec = self._build_spec(definition)
        if suggestions:
            spec = FieldSpec(
                id=spec.id,
                question=spec.question,
                kind=spec.kind,
                expected_format=spec.expected_format,
                suggested_defaults=_merge_defaults(suggestions, spec.suggested_defaults),
                max_attempts=spec.max_attempts,
                required=spec.required,
                target=spec.target,
                depends_on=spec.depends_on,
                choices=spec.choices,
            )
        return spec

    # =========================================================================
    # Internal helpers
    # =========================================================================

    def _render_template(self, field_id: str) -> Optional[Dict[str, Any]]:
        """First matching template wins (registry order)"""
        for regex, template in self._template_patterns:
            match = regex.fullmatch(field_id)
            if match:
                target = match.group("target")
                definition = _render({k: v for k, v in template.items() if k != "pattern"}, target)
                definition["id"] = field_id
                definition.setdefault("target", target)
                return definition
        return None

    @staticmethod
    def _build_spec(definition: Dict[str, Any]) -> FieldSpec:
        choices = definition.get("choices")
        return FieldSpec(
            id=definition["id"],
            question=definition["question"],
            kind=definition.get("kind", "text"),
            expected_format=ExpectedFormat.from_dict(definition.get("expected_format")),
            suggested_defaults=tuple(definition.get("suggested_defaults", ())),
            max_attempts=definition.get("max_attempts", DEFAULT_MAX_ATTEMPTS),
            required=definition.get("required", True),
            target=definition.get("target"),
            depends_on=tuple(definition.get("depends_on", ())),
            choices=tuple(choices) if choices is not None else None,
        )

    def _validate_definition(self, definition: Dict[str, Any], label: str, errors: List[str]):
        if "question" not in definition:
            errors.append(f"{label} missing 'question'")
            return

        kind = definition.get("kind", "text")
        if kind not in KNOWN_KINDS:
            errors.append(f"{label} has unknown kind '{kind}'")
            return

        max_attempts = definition.get("max_attempts", DEFAULT_MAX_ATTEMPTS)
        if not isinstance(max_attempts, int) or isinstance(max_attempts, bool) or max_attempts < 1:
            errors.append(f"{label} has invalid max_attempts {max_attempts!r}")
            return

        if kind == "choice" and not definition.get("choices"):
            errors.append(f"{label} is a choice field without 'choices'")
            return

        spec = self._build_spec(definition)

        for default in spec.suggested_defaults:
            try:
                result = parse_answer(spec, default)
            except Exception as e:
                errors.append(f"{label} default {default!r} cannot be validated: {e}")
                continue
            if isinstance(result, Rejected):
                errors.append(f"{label} default {default!r} is invalid: {result.reason}")

        for dependency in spec.depends_on:
            if dependency == spec.id:
                errors.append(f"{label} depends on itself")
            elif dependency not in self.fields and self._render_template(dependency) is None:
                errors.append(f"{label} depends on unknown field '{dependency}'")

    def _validate_registry(self):
        """
        Validate registry structure on initialization.

        Checks:
        - 'fields' is a list and every field has 'id' and 'question'
        - No duplicate field ids
        - Known kinds, max_attempts >= 1, choices for choice fields
        - Every suggested default passes its own field's validator
        - depends_on references resolve to a field or template
        - Template patterns contain '{target}'

        Raises:
            RegistryError: If validation fails
        """
        errors = []

        if not isinstance(self._raw_fields, list):
            errors.append("'fields' must be a list")
        else:
            seen_ids = set()
            for i, definition in enumerate(self._raw_fields):
                if not isinstance(definition, dict) or "id" not in definition:
                    errors.append(f"Field at index {i} missing 'id'")
                    continue
                field_id = definition["id"]
                if field_id in seen_ids:
                    errors.append(f"Duplicate field id '{field_id}'")
                    continue
                seen_ids.add(field_id)
                self._validate_definition(definition, f"Field '{field_id}'", errors)

        for i, template in enumerate(self.templates):
            pattern = template.get("pattern")
            if not isinstance(pattern, str) or TARGET_PLACEHOLDER not in pattern:
                errors.append(f"Template at index {i} needs a 'pattern' containing '{TARGET_PLACEHOLDER}'")
                continue
            rendered = _render({k: v for k, v in template.items() if k != "pattern"}, _SAMPLE_TARGET)
            rendered["id"] = _render(pattern, _SAMPLE_TARGET)
            rendered.setdefault("target", _SAMPLE_TARGET)
            self._validate_definition(rendered, f"Template '{pattern}'", errors)

        if errors:
            error_msg = f"Field registry validation failed ({self.source}):\n" + "\n".join(f"  - {e}" for e in errors)
            logger.error(error_msg)
            raise RegistryError(error_msg)
