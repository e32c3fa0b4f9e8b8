"""
Outstanding Fields - Decide which fields of a draft specification need clarification

Inputs come from the extractor:
- missing: field ids it knows it could not fill
- ambiguities: report with high/medium/low priority entries
  ({type, field_id, message, suggestions, priority})
- solver_input: the draft itself, checked for structural gaps

Order: missing first, then ambiguities (high -> medium -> low), then
structural gaps (no variables, no objectives, variables without bounds).
A field appears once; later mentions only add message/suggestions.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple

logger = logging.getLogger(__name__)

PRIORITY_ORDER = ("high", "medium", "low")

SOURCE_MISSING = "missing"
SOURCE_AMBIGUITY = "ambiguity"
SOURCE_STRUCTURAL = "structural"


@dataclass(frozen=True)
class OutstandingField:
    field_id: str
    message: Optional[str] = None
    suggestions: Tuple[Any, ...] = ()
    priority: Optional[str] = None
    source: str = SOURCE_MISSING


def iter_ambiguities(report) -> List[Dict[str, Any]]:
    """
    Flatten an ambiguity report into priority order.

    Accepts either {'high_priority': [...], 'medium_priority': [...],
    'low_priority': [...]} or a plain list of entries carrying 'priority'.
    Entries without a priority sort after 'low'.
    """
    if not report:
        return []

    if isinstance(report, dict):
        entries = []
        for priority in PRIORITY_ORDER:
            for entry in report.get(f"{priority}_priority") or []:
                if isinstance(entry, dict):
                    entries.append(dict(entry, priority=entry.get("priority", priority)))
        return entries

    rank = {priority: i for i, priority in enumerate(PRIORITY_ORDER)}
    entries = [entry for entry in report if isinstance(entry, dict)]
    return sorted(entries, key=lambda entry: rank.get(entry.get("priority"), len(PRIORITY_ORDER)))


def _bound_value(variable: Dict[str, Any], key: str):
    value = variable.get(key)
    if value is None:
        value = variable.get(f"{key}_bound")
    return value


def structural_gaps(solver_input: Optional[Dict[str, Any]]) -> List[OutstandingField]:
    """
    Fields a solver cannot run without.

    Returns:
        'variables' if no variables, 'objectives' if no objectives,
        'bounds_for_<name>' for every variable lacking a lower or upper bound
    """
    solver_input = solver_input or {}
    gaps = []

    variables = solver_input.get("variables") or []
    if not variables:
        gaps.append(OutstandingField("variables", source=SOURCE_STRUCTURAL))

    if not solver_input.get("objectives"):
        gaps.append(OutstandingField("objectives", source=SOURCE_STRUCTURAL))

    for variable in variables:
        if isinstance(variable, str):
            gaps.append(OutstandingField(f"bounds_for_{variable}", source=SOURCE_STRUCTURAL))
            continue
        if not isinstance(variable, dict) or not variable.get("name"):
            continue
        if _bound_value(variable, "lower") is None or _bound_value(variable, "upper") is None:
            gaps.append(OutstandingField(f"bounds_for_{variable['name']}", source=SOURCE_STRUCTURAL))

    return gaps


def detect_outstanding_fields(solver_input: Optional[Dict[str, Any]],
                              missing: Optional[Iterable[Any]] = None,
                              ambiguities=None) -> List[OutstandingField]:
    """
    Ordered, de-duplicated list of fields to clarify.

    Args:
        solver_input: Draft specification from the extractor
        missing: Field ids (or {'field_id': ...} dicts) reported missing
        ambiguities: Ambiguity report (see iter_ambiguities)

    Returns:
        List of OutstandingField in asking order
    """
    collected: Dict[str, Dict[str, Any]] = {}

    def add(field_id, message=None, suggestions=(), priority=None, source=SOURCE_MISSING):
        if not isinstance(field_id, str) or not field_id:
            logger.warning(f"Ignoring outstanding field without id (source: {source})")
            return
        entry = collected.get(field_id)
        if entry is None:
            collected[field_id] = {
                "field_id": field_id,
                "message": message,
                "suggestions": list(suggestions or ()),
                "priority": priority,
                "source": source,
            }
            return
        if entry["message"] is None:
            entry["message"] = message
        if entry["priority"] is None:
            entry["priority"] = priority
        for suggestion in suggestions or ():
            if suggestion not in entry["suggestions"]:
                entry["suggestions"].append(suggestion)

    for item in missing or []:
        if isinstance(item, dict):
            add(item.get("field_id") or item.get("id"), item.get("message"),
                item.get("suggestions") or (), item.get("priority"), SOURCE_MISSING)
        else:
            add(item, source=SOURCE_MISSING)

    for entry in iter_ambiguities(ambiguities):
        add(entry.get("field_id"), entry.get("message"), entry.get("suggestions") or (),
            entry.get("priority"), SOURCE_AMBIGUITY)

    for gap in structural_gaps(solver_input):
        add(gap.field_id, source=SOURCE_STRUCTURAL)

    outstanding = [
        OutstandingField(
            field_id=entry["field_id"],
            message=entry["message"],
            suggestions=tuple(entry["suggestions"]),
            priority=entry["priority"],
            source=entry["source"],
        )
        for entry in collected.values()
    ]
    logger.debug(f"Outstanding fields: {[field.field_id for field in outstanding]}")
    return outstanding
