"""
Value Parsing - Turn free-text clarification answers into typed values

Responsibilities:
- Parse numbers, ranges, constraints and objectives from user text
- Split list answers (comma/semicolon/newline separated or JSON arrays)
- Map unit spellings to canonical unit symbols
- Know which physical dimension a unit or a named quantity has

Design principles:
- Pure functions, no session knowledge
- Return None when text doesn't parse (callers decide how to reject)
- Case-insensitive matching for units and keywords
- Single source of truth for unit spellings

Note: The unit table covers the quantities seen in optimization requests
so far. Unknown units are rejected rather than guessed.
"""

import json
import math
import re
from typing import Any, Dict, List, Optional

# Signed decimal with optional exponent. No leading '.', so '0..10' splits cleanly.
NUMBER = r'[-+]?\d+(?:\.\d+)?(?:[eE][-+]?\d+)?'

IDENTIFIER_RE = re.compile(r'^[A-Za-z_][A-Za-z0-9_]*$')

UNIT_TEXT = r'[A-Za-z°$%][A-Za-z0-9°/^$%]*'

# Unit spellings -> canonical symbol
UNIT_ALIASES = {
    # Pressure
    'bar': 'bar',
    'bars': 'bar',
    'psi': 'psi',
    'pa': 'Pa',
    'pascal': 'Pa',
    'kpa': 'kPa',
    'mpa': 'MPa',
    'atm': 'atm',

    # Temperature
    'c': 'C',
    '°c': 'C',
    'degc': 'C',
    'celsius': 'C',
    'f': 'F',
    '°f': 'F',
    'degf': 'F',
    'fahrenheit': 'F',
    'k': 'K',
    'kelvin': 'K',

    # Length
    'm': 'm',
    'meter': 'm',
    'meters': 'm',
    'mm': 'mm',
    'cm': 'cm',
    'km': 'km',
    'in': 'in',
    'inch': 'in',
    'ft': 'ft',

    # Mass
    'kg': 'kg',
    'g': 'g',
    't': 't',
    'tonne': 't',
    'lb': 'lb',
    'lbs': 'lb',

    # Time
    's': 's',
    'sec': 's',
    'seconds': 's',
    'min': 'min',
    'minutes': 'min',
    'h': 'h',
    'hr': 'h',
    'hours': 'h',

    # Currency
    'usd': 'USD',
    '$': 'USD',
    'eur': 'EUR',
    'gbp': 'GBP',

    # Dimensionless
    '%': '%',
    'percent': '%',
}

UNIT_DIMENSIONS = {
    'bar': 'pressure',
    'psi': 'pressure',
    'Pa': 'pressure',
    'kPa': 'pressure',
    'MPa': 'pressure',
    'atm': 'pressure',
    'C': 'temperature',
    'F': 'temperature',
    'K': 'temperature',
    'm': 'length',
    'mm': 'length',
    'cm': 'length',
    'km': 'length',
    'in': 'length',
    'ft': 'length',
    'kg': 'mass',
    'g': 'mass',
    't': 'mass',
    'lb': 'mass',
    's': 'time',
    'min': 'time',
    'h': 'time',
    'USD': 'currency',
    'EUR': 'currency',
    'GBP': 'currency',
    '%': 'ratio',
}

# Named quantities -> dimension (used when a field targets a quantity, not a variable)
QUANTITY_DIMENSIONS = {
    'pressure': 'pressure',
    'temperature': 'temperature',
    'temp': 'temperature',
    'length': 'length',
    'width': 'length',
    'height': 'length',
    'thickness': 'length',
    'diameter': 'length',
    'mass': 'mass',
    'weight': 'mass',
    'time': 'time',
    'duration': 'time',
    'cost': 'currency',
    'price': 'currency',
    'budget': 'currency',
    'efficiency': 'ratio',
    'yield': 'ratio',
}

OPERATOR_ALIASES = {
    '=': '==',
    '≤': '<=',
    '≥': '>=',
}

VALID_OPERATORS = {'<=', '>=', '<', '>', '=='}

OBJECTIVE_SENSES = {
    'minimize': 'minimize',
    'minimise': 'minimize',
    'min': 'minimize',
    'maximize': 'maximize',
    'maximise': 'maximize',
    'max': 'maximize',
}

_PREFIX_RE = re.compile(r'^\s*([A-Za-z_][A-Za-z0-9_]*)\s*:\s*(.*)$', re.DOTALL)

_RANGE_RE = re.compile(
    rf'^({NUMBER})\s*(?:\.\.|to|-|–)\s*({NUMBER})\s*({UNIT_TEXT})?$',
    re.IGNORECASE
)

_KEYED_BOUND_RE = re.compile(rf'\b(min|max|lower|upper)\s*=\s*({NUMBER})', re.IGNORECASE)

_CONSTRAINT_RE = re.compile(
    rf'^([A-Za-z_][A-Za-z0-9_]*)\s*(<=|>=|==|=|<|>|≤|≥)\s*({NUMBER})\s*({UNIT_TEXT})?$'
)

_OBJECTIVE_RE = re.compile(
    r'^(minimize|minimise|min|maximize|maximise|max)\s+(.+)$',
    re.IGNORECASE
)

_LIST_SEPARATOR_RE = re.compile(r'[,;\n]')


def parse_number(text) -> Optional[float]:
    """
    Parse a finite number.

    Returns:
        float or None if text is not a finite number
    """
    if isinstance(text, bool):
        return None
    if isinstance(text, (int, float)):
        value = float(text)
    else:
        try:
            value = float(str(text).strip())
        except ValueError:
            return None
    if not math.isfinite(value):
        return None
    return value


def is_identifier(text: str) -> bool:
    return bool(IDENTIFIER_RE.match(text))


def split_list_answer(raw: str) -> List[Any]:
    """
    Split a list answer into items.

    JSON arrays are decoded as-is (items may be strings or dicts).
    Anything else is split on commas, semicolons and newlines.

    Examples:
        >>> split_list_answer('x1, x2; x3')
        ['x1', 'x2', 'x3']
        >>> split_list_answer('["x1", "x2"]')
        ['x1', 'x2']
    """
    text = raw.strip()
    if text.startswith('['):
        try:
            decoded = json.loads(text)
        except json.JSONDecodeError:
            decoded = None
        if isinstance(decoded, list):
            return decoded
    return [item.strip() for item in _LIST_SEPARATOR_RE.split(text) if item.strip()]


def normalize_unit(text) -> Optional[str]:
    """Map a unit spelling to its canonical symbol, None if unknown"""
    if text is None:
        return None
    return UNIT_ALIASES.get(str(text).strip().lower())


def dimension_of_unit(unit: Optional[str]) -> Optional[str]:
    if unit is None:
        return None
    return UNIT_DIMENSIONS.get(unit)


def dimension_of_quantity(name: Optional[str]) -> Optional[str]:
    """Dimension of a named quantity ('pressure' -> 'pressure'), None if unknown"""
    if not name:
        return None
    return QUANTITY_DIMENSIONS.get(name.strip().lower())


def parse_range(text: str) -> Optional[Dict[str, Any]]:
    """
    Parse a lower/upper bound pair.

    Accepted forms (optional '<var>:' prefix, optional trailing unit):
        0..10    0-10    0 to 10    min=0,max=10    max=10 min=0
        x1: 0..10        0-500 psi  min=0, max=5 bar

    Returns:
        Dict with keys variable, lower, upper, unit (canonical or None),
        or None if the text doesn't parse or names an unknown unit.
    """
    variable = None
    body = text.strip()

    prefix = _PREFIX_RE.match(body)
    if prefix and prefix.group(1).lower() not in ('min', 'max', 'lower', 'upper'):
        variable = prefix.group(1)
        body = prefix.group(2).strip()

    match = _RANGE_RE.match(body)
    if match:
        lower, upper, unit_text = match.group(1), match.group(2), match.group(3)
    else:
        keyed = {key.lower(): value for key, value in _KEYED_BOUND_RE.findall(body)}
        lower = keyed.get('min', keyed.get('lower'))
        upper = keyed.get('max', keyed.get('upper'))
        if lower is None or upper is None:
            return None
        unit_text = _KEYED_BOUND_RE.sub('', body).strip(' ,;') or None

    unit = None
    if unit_text:
        unit = normalize_unit(unit_text)
        if unit is None:
            return None

    lower_value = parse_number(lower)
    upper_value = parse_number(upper)
    if lower_value is None or upper_value is None:
        return None

    return {
        'variable': variable,
        'lower': lower_value,
        'upper': upper_value,
        'unit': unit,
    }


def parse_constraint(text: str) -> Optional[Dict[str, Any]]:
    """
    Parse 'x1 <= 10', 'x2 >= 0 bar', 'x3 = 4'.

    Returns:
        Dict with keys variable, operator, value (+ unit when given), or None
    """
    match = _CONSTRAINT_RE.match(text.strip())
    if not match:
        return None
    variable, operator, number, unit_text = match.groups()
    operator = OPERATOR_ALIASES.get(operator, operator)

    constraint = {
        'variable': variable,
        'operator': operator,
        'value': parse_number(number),
    }
    if unit_text:
        unit = normalize_unit(unit_text)
        if unit is None:
            return None
        constraint['unit'] = unit
    return constraint


def parse_objective(text: str) -> Optional[Dict[str, str]]:
    """
    Parse 'minimize cost', 'max strength'.

    Returns:
        {'minimize': target} or {'maximize': target}, or None
    """
    match = _OBJECTIVE_RE.match(text.strip())
    if not match:
        return None
    sense = OBJECTIVE_SENSES[match.group(1).lower()]
    target = match.group(2).strip()
    if not target:
        return None
    return {sense: target}


def constraint_allows_range(constraint: Dict[str, Any], lower: float, upper: float) -> bool:
    """
    Whether some value in [lower, upper] satisfies the constraint.

    Examples:
        >>> constraint_allows_range({'operator': '<=', 'value': 5}, 0, 10)
        True
        >>> constraint_allows_range({'operator': '>=', 'value': 20}, 0, 10)
        False
    """
    operator = constraint.get('operator')
    value = constraint.get('value')
    if value is None:
        return True
    if operator == '<=':
        return lower <= value
    if operator == '<':
        return lower < value
    if operator == '>=':
        return upper >= value
    if operator == '>':
        return upper > value
    if operator == '==':
        return lower <= value <= upper
    return True
