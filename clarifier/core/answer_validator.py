"""
Answer Validator - Parse clarification answers and merge them into the specification

Responsibilities:
- Format-check raw answers by field kind
- Detect conflicts between a candidate value and already merged fields
- Merge accepted values into a working specification
- Rebuild the working specification from the base draft

Design principles:
- Rejections are values (Rejected), not exceptions
- A format rejection costs an attempt; a conflict rejection does not
- Validator crashes become a generic format rejection (logged, never raised)
- The base specification is never mutated; rebuild() works on a deep copy

Field kinds:
- variable_list:   'x1, x2' or ["x1", "x2"]          -> variables[{name}]
- objective_list:  'minimize cost, max strength'     -> objectives[{minimize|maximize: target}]
- constraint_list: 'x1 <= 10; x2 >= 0'               -> constraints[{variable, operator, value}]
- bounds:          '0..10', '0-500 psi', 'min=0,max=10' -> lower/upper(/unit) on target variable
- unit:            'bar', 'psi', 'C'                 -> unit on target variable
- choice / number / text                             -> spec[target]
"""

import copy
import json
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from clarifier.contracts import Accepted, FieldSpec, Rejected, RejectionKind, ValidationResult
from clarifier.errors import ValidatorInternalError
from clarifier.utils.value_parsing import (
    VALID_OPERATORS,
    constraint_allows_range,
    dimension_of_quantity,
    dimension_of_unit,
    is_identifier,
    normalize_unit,
    parse_constraint,
    parse_number,
    parse_objective,
    parse_range,
    split_list_answer,
)

logger = logging.getLogger(__name__)

GENERIC_REJECTION_REASON = "The answer could not be checked. Please rephrase it."

# (FieldSpec, merged value) pairs of resolved/default fields
MergedFields = Iterable[Tuple[FieldSpec, Any]]


def _as_text(raw_answer: Any) -> str:
    if isinstance(raw_answer, str):
        return raw_answer
    if isinstance(raw_answer, (list, dict)):
        return json.dumps(raw_answer)
    return str(raw_answer)


# ========================
# Format parsers (one per kind)
# ========================

def _parse_variable_list(field_spec: FieldSpec, text: str, working_spec: Dict[str, Any]) -> ValidationResult:
    names = []
    for item in split_list_answer(text):
        name = item.get('name') if isinstance(item, dict) else item
        if not isinstance(name, str) or not is_identifier(name.strip()):
            return Rejected(f"'{name}' is not a valid variable name (use letters, digits and _)")
        name = name.strip()
        if name in names:
            return Rejected(f"Variable '{name}' is listed twice")
        names.append(name)

    if not names:
        return Rejected("Please name at least one variable")
    return Accepted([{'name': name} for name in names])


def _parse_objective_list(field_spec: FieldSpec, text: str, working_spec: Dict[str, Any]) -> ValidationResult:
    objectives = []
    for item in split_list_answer(text):
        if isinstance(item, dict):
            senses = [key for key in ('minimize', 'maximize') if item.get(key)]
            if len(senses) != 1:
                return Rejected(f"Objective {item} must have exactly one of 'minimize' or 'maximize'")
            objective = {senses[0]: str(item[senses[0]]).strip()}
        else:
            objective = parse_objective(str(item))
            if objective is None:
                return Rejected(f"'{item}' is not an objective (e.g. 'minimize cost')")
        if objective not in objectives:
            objectives.append(objective)

    if not objectives:
        return Rejected("Please give at least one objective")
    return Accepted(objectives)


def _parse_constraint_list(field_spec: FieldSpec, text: str, working_spec: Dict[str, Any]) -> ValidationResult:
    constraints = []
    for item in split_list_answer(text):
        if isinstance(item, dict):
            value = parse_number(item.get('value'))
            operator = item.get('operator')
            variable = item.get('variable')
            if not isinstance(variable, str) or operator not in VALID_OPERATORS or value is None:
                return Rejected(f"Constraint {item} needs variable, operator and numeric value")
            constraint = {'variable': variable, 'operator': operator, 'value': value}
        else:
            constraint = parse_constraint(str(item))
            if constraint is None:
                return Rejected(f"'{item}' is not a constraint (e.g. 'x1 <= 10')")
        constraints.append(constraint)

    if not constraints:
        return Rejected("Please give at least one constraint")
    return Accepted(constraints)


def _parse_bounds(field_spec: FieldSpec, text: str, working_spec: Dict[str, Any]) -> ValidationResult:
    parsed = parse_range(text)
    if parsed is None:
        return Rejected("Expected a lower and upper bound, e.g. 0..10 or min=0,max=10")

    target = field_spec.target
    if parsed['variable'] and target and parsed['variable'] != target:
        return Rejected(f"These bounds are for '{target}', not '{parsed['variable']}'")

    if parsed['lower'] > parsed['upper']:
        return Rejected(
            f"Lower bound {parsed['lower']:g} is greater than upper bound {parsed['upper']:g}"
        )

    expected_dimension = dimension_of_quantity(target)
    unit_dimension = dimension_of_unit(parsed['unit'])
    if expected_dimension and unit_dimension and expected_dimension != unit_dimension:
        return Rejected(f"'{parsed['unit']}' is not a {expected_dimension} unit")

    return Accepted({'lower': parsed['lower'], 'upper': parsed['upper'], 'unit': parsed['unit']})


def _parse_unit(field_spec: FieldSpec, text: str, working_spec: Dict[str, Any]) -> ValidationResult:
    unit = normalize_unit(text)
    if unit is None:
        return Rejected(f"Unknown unit '{text.strip()}'")

    expected_dimension = dimension_of_quantity(field_spec.target)
    if expected_dimension and dimension_of_unit(unit) != expected_dimension:
        return Rejected(f"'{unit}' is not a {expected_dimension} unit")
    return Accepted(unit)


def _parse_choice(field_spec: FieldSpec, text: str, working_spec: Dict[str, Any]) -> ValidationResult:
    if not field_spec.choices:
        raise ValidatorInternalError(f"Choice field '{field_spec.id}' has no choices")
    answer = text.strip().lower()
    for choice in field_spec.choices:
        if choice.lower() == answer:
            return Accepted(choice)
    return Rejected(f"Please choose one of: {', '.join(field_spec.choices)}")


def _parse_number(field_spec: FieldSpec, text: str, working_spec: Dict[str, Any]) -> ValidationResult:
    value = parse_number(text)
    if value is None:
        return Rejected(f"'{text.strip()}' is not a number")
    return Accepted(value)


def _parse_text(field_spec: FieldSpec, text: str, working_spec: Dict[str, Any]) -> ValidationResult:
    return Accepted(text.strip())


PARSERS: Dict[str, Callable[[FieldSpec, str, Dict[str, Any]], ValidationResult]] = {
    'variable_list': _parse_variable_list,
    'objective_list': _parse_objective_list,
    'constraint_list': _parse_constraint_list,
    'bounds': _parse_bounds,
    'unit': _parse_unit,
    'choice': _parse_choice,
    'number': _parse_number,
    'text': _parse_text,
}

KNOWN_KINDS = set(PARSERS)


def parse_answer(field_spec: FieldSpec, raw_answer: Any,
                 working_spec: Optional[Dict[str, Any]] = None) -> ValidationResult:
    """
    Format-check a raw answer for one field.

    Args:
        field_spec: Field being answered
        raw_answer: User text (lists/dicts from JSON clients are re-encoded)
        working_spec: Current working specification (read-only)

    Returns:
        Accepted(value) or Rejected(reason, kind=FORMAT)

    Raises:
        ValidatorInternalError: If the field kind is unknown or misconfigured
    """
    if raw_answer is None:
        return Rejected("Answer is empty")
    text = _as_text(raw_answer)
    if not text.strip():
        return Rejected("Answer is empty")

    parser = PARSERS.get(field_spec.kind)
    if parser is None:
        raise ValidatorInternalError(f"No validator for kind '{field_spec.kind}' (field '{field_spec.id}')")
    return parser(field_spec, text, working_spec or {})


# ========================
# Conflict detection
# ========================

def _conflict(reason: str, conflict_with: str) -> Rejected:
    return Rejected(reason, kind=RejectionKind.CONFLICT, conflict_with=conflict_with)


def find_conflict(field_spec: FieldSpec, value: Any, merged_fields: MergedFields) -> Optional[Rejected]:
    """
    Check a parsed value against fields already merged into the specification.

    Rules:
    - Unit compatibility: bounds unit vs a merged unit field on the same target,
      and a unit answer vs units carried by merged bounds on the same target
    - Bound ordering: bounds vs merged constraints on the same variable (and reverse)
    - Duplicate variables: variable list vs names from other merged variable lists

    Values that came with the base draft are provisional extractor output,
    not answers: they are never conflict sources, and a merged answer
    overwrites them (a draft unit 'bar' is replaced by bounds given in psi).

    Returns:
        Rejected(kind=CONFLICT) naming the first conflicting field, or None
    """
    kind = field_spec.kind
    target = field_spec.target

    for other_spec, other_value in merged_fields:
        if other_spec.id == field_spec.id or other_value is None:
            continue

        if kind == 'bounds' and value.get('unit'):
            if other_spec.kind == 'unit' and other_spec.target == target and other_value != value['unit']:
                return _conflict(
                    f"Unit '{value['unit']}' conflicts with {other_spec.id} = '{other_value}'",
                    other_spec.id
                )

        if kind == 'unit':
            if other_spec.kind == 'bounds' and other_spec.target == target:
                other_unit = other_value.get('unit')
                if other_unit and other_unit != value:
                    return _conflict(
                        f"Unit '{value}' conflicts with {other_spec.id}, which uses '{other_unit}'",
                        other_spec.id
                    )

        if kind == 'bounds' and other_spec.kind == 'constraint_list':
            for constraint in other_value:
                if constraint.get('variable') == target and \
                        not constraint_allows_range(constraint, value['lower'], value['upper']):
                    return _conflict(
                        f"Bounds {value['lower']:g}..{value['upper']:g} for {target} cannot satisfy "
                        f"{target} {constraint['operator']} {constraint['value']:g} from {other_spec.id}",
                        other_spec.id
                    )

        if kind == 'constraint_list' and other_spec.kind == 'bounds':
            for constraint in value:
                if constraint.get('variable') == other_spec.target and \
                        not constraint_allows_range(constraint, other_value['lower'], other_value['upper']):
                    return _conflict(
                        f"Constraint {constraint['variable']} {constraint['operator']} {constraint['value']:g} "
                        f"is outside bounds {other_value['lower']:g}..{other_value['upper']:g} from {other_spec.id}",
                        other_spec.id
                    )

        if kind == 'variable_list' and other_spec.kind == 'variable_list':
            existing = {entry['name'] for entry in other_value}
            duplicates = [entry['name'] for entry in value if entry['name'] in existing]
            if duplicates:
                return _conflict(
                    f"Variable '{duplicates[0]}' is already defined by {other_spec.id}",
                    other_spec.id
                )

    return None


# ========================
# Merging
# ========================

def _find_or_add_variable(spec: Dict[str, Any], name: str) -> Dict[str, Any]:
    """Variable entry named name; a bare-string entry is promoted to {'name': ...} in place"""
    variables = spec.setdefault('variables', [])
    for i, variable in enumerate(variables):
        if isinstance(variable, dict) and variable.get('name') == name:
            return variable
        if variable == name:
            variables[i] = {'name': name}
            return variables[i]
    variable = {'name': name}
    variables.append(variable)
    return variable


def _bound_keys(variable: Dict[str, Any]) -> Tuple[str, str]:
    """Keep the draft's key style: lower/upper or lower_bound/upper_bound"""
    if 'lower_bound' in variable or 'upper_bound' in variable:
        return 'lower_bound', 'upper_bound'
    return 'lower', 'upper'


def merge_value(spec: Dict[str, Any], field_spec: FieldSpec, value: Any) -> None:
    """Merge one accepted value into spec (in place)"""
    kind = field_spec.kind

    if kind == 'variable_list':
        for entry in value:
            _find_or_add_variable(spec, entry['name'])

    elif kind == 'objective_list':
        objectives = spec.setdefault('objectives', [])
        for objective in value:
            if objective not in objectives:
                objectives.append(dict(objective))

    elif kind == 'constraint_list':
        constraints = spec.setdefault('constraints', [])
        for constraint in value:
            if constraint not in constraints:
                constraints.append(dict(constraint))

    elif kind == 'bounds':
        variable = _find_or_add_variable(spec, field_spec.target or field_spec.id)
        lower_key, upper_key = _bound_keys(variable)
        for key in ('lower', 'upper', 'lower_bound', 'upper_bound'):
            if key not in (lower_key, upper_key):
                variable.pop(key, None)
        variable[lower_key] = value['lower']
        variable[upper_key] = value['upper']
        if value.get('unit'):
            variable['unit'] = value['unit']

    elif kind == 'unit':
        variable = _find_or_add_variable(spec, field_spec.target or field_spec.id)
        variable['unit'] = value

    else:
        spec[field_spec.target or field_spec.id] = value


class AnswerValidator:
    """
    Validates answers and maintains the working specification.

    Stateless: merged fields and the base specification are passed in.
    """

    def validate(self, field_spec: FieldSpec, raw_answer: Any,
                 working_spec: Optional[Dict[str, Any]] = None,
                 merged_fields: MergedFields = ()) -> ValidationResult:
        """
        Format-check an answer, then check it against merged fields.

        Args:
            field_spec: Field being answered
            raw_answer: Raw user answer
            working_spec: Current working specification (read-only)
            merged_fields: (FieldSpec, value) pairs of resolved/default fields

        Returns:
            Accepted(value), Rejected(kind=FORMAT) or Rejected(kind=CONFLICT)
        """
        try:
            result = parse_answer(field_spec, raw_answer, working_spec)
            if isinstance(result, Rejected):
                logger.debug(f"[{field_spec.id}] Format rejection: {result.reason}")
                return result

            conflict = self.check_conflict(field_spec, result.value, merged_fields)
            if conflict is not None:
                logger.debug(f"[{field_spec.id}] Conflict with {conflict.conflict_with}: {conflict.reason}")
                return conflict
            return result

        except Exception as e:
            logger.error(f"[{field_spec.id}] Validator failed: {type(e).__name__} - {e}")
            return Rejected(GENERIC_REJECTION_REASON)

    def check_conflict(self, field_spec: FieldSpec, value: Any,
                       merged_fields: MergedFields) -> Optional[Rejected]:
        return find_conflict(field_spec, value, list(merged_fields))

    def rebuild(self, base_specification: Dict[str, Any], merged_fields: MergedFields) -> Dict[str, Any]:
        """
        Rebuild the working specification from the base draft.

        Args:
            base_specification: Extractor draft (not mutated)
            merged_fields: (FieldSpec, value) pairs in resolution order

        Returns:
            New working specification dict
        """
        spec = copy.deepcopy(base_specification) if base_specification else {}
        for field_spec, value in merged_fields:
            if value is not None:
                merge_value(spec, field_spec, value)
        return spec
