"""
Field State - Per-field clarification state machine

Responsibilities:
- Define the field status vocabulary (pending, active, resolved, default, conflict)
- Apply transitions, refusing illegal ones
- Decide what happens when the attempt budget runs out

Design principles:
- Transitions are plain functions over a FieldState
- Illegal transitions raise IllegalTransitionError (never silently ignored)
- Exhaustion outcome is a pure function of (FieldSpec, attempts)
- The session owns FieldState objects; nothing else mutates them

Transitions:
    pending  -> active                  activate()
    active   -> resolved                resolve()
    active   -> active (attempts + 1)   record_format_rejection()
    active   -> default                 apply_default()
    active   -> conflict                mark_conflict()
    active   -> pending                 suspend()       (another field reopened)
    resolved | default | conflict -> active    reopen()
    resolved | default | conflict -> pending   reset_to_pending()   (dependent of a reopened field)
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from clarifier.contracts import FieldSpec
from clarifier.errors import IllegalTransitionError

logger = logging.getLogger(__name__)


class FieldStatus(str, Enum):
    """Field status. Values are the wire vocabulary."""
    PENDING = "pending"
    ACTIVE = "active"
    RESOLVED = "resolved"
    DEFAULT = "default"
    CONFLICT = "conflict"


VALID_STATUSES = {status.value for status in FieldStatus}

# Statuses whose value is part of the working specification
MERGED_STATUSES = {FieldStatus.RESOLVED, FieldStatus.DEFAULT}

REOPENABLE_STATUSES = {FieldStatus.RESOLVED, FieldStatus.DEFAULT, FieldStatus.CONFLICT}


@dataclass
class FieldState:
    """
    Mutable state of one field within one session.

    Attributes:
        id: Field id (matches FieldSpec.id)
        status: Current FieldStatus
        attempts: Format rejections since the field was last activated
        value: Parsed value merged into the working specification
            (resolved/default only; None for a skipped optional field)
        conflict_with: Field id named by the last conflict, if any
    """
    id: str
    status: FieldStatus = FieldStatus.PENDING
    attempts: int = 0
    value: Any = None
    conflict_with: Optional[str] = None

    @property
    def is_merged(self) -> bool:
        return self.status in MERGED_STATUSES and self.value is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'status': self.status.value,
            'attempts': self.attempts,
            'value': self.value,
            'conflict_with': self.conflict_with,
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "FieldState":
        status = data.get('status', FieldStatus.PENDING.value)
        if status not in VALID_STATUSES:
            raise ValueError(f"Invalid field status '{status}' for field '{data.get('id')}'")
        return FieldState(
            id=data['id'],
            status=FieldStatus(status),
            attempts=data.get('attempts', 0),
            value=data.get('value'),
            conflict_with=data.get('conflict_with'),
        )


@dataclass(frozen=True)
class ExhaustionOutcome:
    """
    What happens to a field whose attempt budget is spent.

    status: FieldStatus.DEFAULT or FieldStatus.CONFLICT
    default: Literal default to merge (None for a skipped optional field
        or for a conflict)
    """
    status: FieldStatus
    default: Any = None


def exhaustion_outcome(field_spec: FieldSpec, attempts: int) -> Optional[ExhaustionOutcome]:
    """
    Decide the fallback for a field after a format rejection.

    Args:
        field_spec: Static field description
        attempts: Attempt count after the rejection was recorded

    Returns:
        None if attempts remain, otherwise:
        - DEFAULT with the first suggested default, if any
        - DEFAULT with no value, if the field is optional
        - CONFLICT, if the field is required and has no default
    """
    if attempts < field_spec.max_attempts:
        return None
    if field_spec.suggested_defaults:
        return ExhaustionOutcome(FieldStatus.DEFAULT, field_spec.suggested_defaults[0])
    if not field_spec.required:
        return ExhaustionOutcome(FieldStatus.DEFAULT, None)
    return ExhaustionOutcome(FieldStatus.CONFLICT, None)


# ========================
# Transitions
# ========================

def _require(state: FieldState, allowed, action: str):
    if state.status not in allowed:
        logger.warning(f"Illegal transition: {action} '{state.id}' from '{state.status.value}'")
        raise IllegalTransitionError(state.id, state.status.value, action)


def activate(state: FieldState) -> None:
    _require(state, {FieldStatus.PENDING}, "activate")
    state.status = FieldStatus.ACTIVE


def resolve(state: FieldState, value: Any) -> None:
    _require(state, {FieldStatus.ACTIVE}, "resolve")
    state.status = FieldStatus.RESOLVED
    state.value = value
    state.conflict_with = None


def record_format_rejection(state: FieldState, max_attempts: int) -> int:
    """Count a format rejection. Returns the new attempt count (capped at max_attempts)."""
    _require(state, {FieldStatus.ACTIVE}, "reject")
    state.attempts = min(state.attempts + 1, max_attempts)
    return state.attempts


def apply_default(state: FieldState, value: Any) -> None:
    _require(state, {FieldStatus.ACTIVE}, "default")
    state.status = FieldStatus.DEFAULT
    state.value = value
    state.conflict_with = None


def mark_conflict(state: FieldState, conflict_with: Optional[str] = None) -> None:
    _require(state, {FieldStatus.ACTIVE}, "mark conflict on")
    state.status = FieldStatus.CONFLICT
    state.value = None
    state.conflict_with = conflict_with


def suspend(state: FieldState) -> None:
    """Return the active field to pending, keeping its attempts"""
    _require(state, {FieldStatus.ACTIVE}, "suspend")
    state.status = FieldStatus.PENDING


def reopen(state: FieldState) -> None:
    """Make a finished field active again with a fresh attempt budget"""
    _require(state, REOPENABLE_STATUSES, "reopen")
    state.status = FieldStatus.ACTIVE
    state.attempts = 0
    state.value = None
    state.conflict_with = None


def reset_to_pending(state: FieldState) -> None:
    _require(state, REOPENABLE_STATUSES, "reset")
    state.status = FieldStatus.PENDING
    state.attempts = 0
    state.value = None
    state.conflict_with = None
