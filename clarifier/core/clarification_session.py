"""
Clarification Session - One multi-turn clarification of a draft specification

Responsibilities:
- Own the per-field state machines and the field order
- Accept answers for the active field only (StaleFieldError otherwise)
- Apply format/conflict/exhaustion outcomes and advance to the next field
- Keep the working specification equal to base + merged fields
- Record an append-only conversation history
- Reopen finished fields (explicitly or via "edit last") and reset dependents

Design principles:
- Server-authoritative: clients only ever see projections of this state
- Field order is fixed at creation (reopen is the only exception)
- At most one field is active at any time
- The base specification is never mutated
- Lossless snapshot()/from_snapshot() for persistence

Status vocabulary:
- pending:  not asked yet (or reset by a reopen)
- active:   awaiting an answer
- resolved: user answer merged
- default:  attempts exhausted, default merged (or optional field skipped)
- conflict: contradicts a merged field, or exhausted without a default
"""

import copy
import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

from clarifier.contracts import (
    AnswerOutcome,
    FieldSpec,
    Prompt,
    PROMPT_ACTIVE,
    PROMPT_BLOCKED,
    PROMPT_COMPLETE,
    Rejected,
    RejectionKind,
    ReopenOutcome,
)
from clarifier.core import field_state
from clarifier.core.answer_validator import AnswerValidator
from clarifier.core.field_state import (
    FieldState,
    FieldStatus,
    MERGED_STATUSES,
    REOPENABLE_STATUSES,
    exhaustion_outcome,
)
from clarifier.errors import IllegalTransitionError, StaleFieldError
from clarifier.utils.helpers import utc_now_iso

logger = logging.getLogger(__name__)

# History roles
ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"

# History entry kinds
KIND_ANSWER = "answer"
KIND_ACK = "ack"
KIND_REJECTION = "rejection"
KIND_CONFLICT = "conflict"
KIND_AUTO_DEFAULT = "auto_default"
KIND_SKIPPED = "skipped"
KIND_REOPEN = "reopen"


class ClarificationSession:
    """
    Stateful clarification of one draft specification.

    Args:
        session_id: Opaque session identifier
        field_specs: Outstanding fields in the order they will be asked
        base_specification: Extractor draft (copied, never mutated)
        validator: AnswerValidator (default instance if None)

    Raises:
        ValueError: If field ids are not unique
    """

    def __init__(self, session_id: str, field_specs: Sequence[FieldSpec],
                 base_specification: Optional[Dict[str, Any]] = None,
                 validator: Optional[AnswerValidator] = None):
        ids = [spec.id for spec in field_specs]
        if len(ids) != len(set(ids)):
            raise ValueError(f"Duplicate field ids in session {session_id}: {ids}")

        self.session_id = session_id
        self.validator = validator or AnswerValidator()
        self.ordered_field_ids: List[str] = ids
        self._specs: Dict[str, FieldSpec] = {spec.id: spec for spec in field_specs}
        self._states: Dict[str, FieldState] = {field_id: FieldState(field_id) for field_id in ids}
        self.base_specification: Dict[str, Any] = copy.deepcopy(base_specification or {})
        self._working: Dict[str, Any] = copy.deepcopy(self.base_specification)
        self._history: List[Dict[str, Any]] = []
        self.resolution_order: List[str] = []
        self.turn_count = 0
        self.created_at = utc_now_iso()
        self.last_activity = self.created_at

        self._advance()

        logger.info(f"Session {session_id} created with {len(ids)} outstanding fields: {ids}")

    # ========================
    # Queries
    # ========================

    @property
    def active_field_id(self) -> Optional[str]:
        for field_id in self.ordered_field_ids:
            if self._states[field_id].status == FieldStatus.ACTIVE:
                return field_id
        return None

    def active_field(self) -> Optional[FieldSpec]:
        field_id = self.active_field_id
        return self._specs[field_id] if field_id else None

    def field_spec(self, field_id: str) -> FieldSpec:
        return self._specs[field_id]

    def get_field_state(self, field_id: str) -> FieldState:
        """Copy of one field's state"""
        return copy.deepcopy(self._states[field_id])

    def field_states(self) -> List[FieldState]:
        """Copies of all field states, in field order"""
        return [copy.deepcopy(self._states[field_id]) for field_id in self.ordered_field_ids]

    def conflicted_field_ids(self) -> List[str]:
        return [
            field_id for field_id in self.ordered_field_ids
            if self._states[field_id].status == FieldStatus.CONFLICT
        ]

    def editable_field_ids(self) -> List[str]:
        """Fields a client may offer for reopening"""
        return [
            field_id for field_id in self.ordered_field_ids
            if self._states[field_id].status in REOPENABLE_STATUSES
        ]

    def last_resolved_field(self) -> Optional[str]:
        return self.resolution_order[-1] if self.resolution_order else None

    def is_complete(self) -> bool:
        return all(self._states[field_id].status in MERGED_STATUSES for field_id in self.ordered_field_ids)

    def is_blocked(self) -> bool:
        return self.active_field_id is None and bool(self.conflicted_field_ids())

    def working_specification(self) -> Dict[str, Any]:
        return copy.deepcopy(self._working)

    def conversation_history(self) -> List[Dict[str, Any]]:
        return copy.deepcopy(self._history)

    def ordered_view(self) -> List[Dict[str, Any]]:
        """Wire view of every field: id, status, attempts, max_attempts"""
        return [
            {
                'id': field_id,
                'status': self._states[field_id].status.value,
                'attempts': self._states[field_id].attempts,
                'max_attempts': self._specs[field_id].max_attempts,
            }
            for field_id in self.ordered_field_ids
        ]

    def next_prompt(self) -> Prompt:
        """
        What the session needs next.

        Returns:
            Prompt with status:
            - 'active' for the active field (question, format, defaults, attempts)
            - 'blocked' if no field is active but some are in conflict
            - 'complete' with the merged specification
        """
        active = self.active_field()
        conflicts = tuple(self.conflicted_field_ids())

        if active is not None:
            state = self._states[active.id]
            return Prompt(
                status=PROMPT_ACTIVE,
                field_id=active.id,
                question=active.question,
                expected_format=active.expected_format,
                suggested_defaults=active.suggested_defaults,
                attempts=state.attempts,
                max_attempts=active.max_attempts,
                conflicts=conflicts,
            )

        if conflicts:
            return Prompt(
                status=PROMPT_BLOCKED,
                question=(
                    f"These fields are in conflict: {', '.join(conflicts)}. "
                    f"Reopen one of them to continue."
                ),
                conflicts=conflicts,
            )

        return Prompt(status=PROMPT_COMPLETE, specification=self.working_specification())

    # ========================
    # Answers
    # ========================

    def submit_answer(self, field_id: str, raw_answer: Any) -> AnswerOutcome:
        """
        Submit an answer for the active field.

        Args:
            field_id: Field the client believes is active
            raw_answer: Raw user answer

        Returns:
            AnswerOutcome describing what happened to the field

        Raises:
            StaleFieldError: If field_id is not the active field (state unchanged)
        """
        active_id = self.active_field_id
        if field_id != active_id:
            logger.warning(f"Session {self.session_id}: stale answer for '{field_id}' (active: {active_id})")
            raise StaleFieldError(field_id, active_id, self.session_id)

        spec = self._specs[field_id]
        state = self._states[field_id]

        self.turn_count += 1
        self.last_activity = utc_now_iso()
        self._append_history(ROLE_USER, str(raw_answer), field_id, KIND_ANSWER)

        result = self.validator.validate(spec, raw_answer, self._working, self._merged_fields(exclude=field_id))

        if isinstance(result, Rejected):
            if result.kind == RejectionKind.CONFLICT:
                outcome = self._apply_conflict(spec, state, result)
            else:
                outcome = self._apply_format_rejection(spec, state, result)
        else:
            field_state.resolve(state, result.value)
            self._record_merge(field_id)
            self._append_history(ROLE_ASSISTANT, f"Got it: {field_id} recorded.", field_id, KIND_ACK)
            logger.debug(f"Session {self.session_id}: '{field_id}' resolved to {result.value!r}")
            outcome = AnswerOutcome(
                field_id=field_id,
                status=state.status.value,
                accepted=True,
                attempts=state.attempts,
            )

        self._advance()
        return outcome

    def _apply_conflict(self, spec: FieldSpec, state: FieldState, result: Rejected) -> AnswerOutcome:
        field_state.mark_conflict(state, result.conflict_with)
        self._append_history(ROLE_ASSISTANT, result.reason, spec.id, KIND_CONFLICT)
        logger.warning(f"Session {self.session_id}: '{spec.id}' conflicts with '{result.conflict_with}'")
        return AnswerOutcome(
            field_id=spec.id,
            status=state.status.value,
            accepted=False,
            attempts=state.attempts,
            reason=result.reason,
            rejection_kind=RejectionKind.CONFLICT.value,
            conflict_with=result.conflict_with,
        )

    def _apply_format_rejection(self, spec: FieldSpec, state: FieldState, result: Rejected) -> AnswerOutcome:
        attempts = field_state.record_format_rejection(state, spec.max_attempts)
        fallback = exhaustion_outcome(spec, attempts)

        if fallback is None:
            self._append_history(ROLE_ASSISTANT, result.reason, spec.id, KIND_REJECTION)
            logger.debug(f"Session {self.session_id}: '{spec.id}' rejected ({attempts}/{spec.max_attempts})")
            return AnswerOutcome(
                field_id=spec.id,
                status=state.status.value,
                accepted=False,
                attempts=attempts,
                reason=result.reason,
                rejection_kind=RejectionKind.FORMAT.value,
            )

        if fallback.status == FieldStatus.CONFLICT:
            reason = f"No valid answer for {spec.id} after {attempts} attempts and no default is available."
            field_state.mark_conflict(state)
            self._append_history(ROLE_ASSISTANT, reason, spec.id, KIND_CONFLICT)
            logger.warning(f"Session {self.session_id}: '{spec.id}' exhausted without default")
            return AnswerOutcome(
                field_id=spec.id,
                status=state.status.value,
                accepted=False,
                attempts=attempts,
                reason=reason,
                rejection_kind=RejectionKind.FORMAT.value,
            )

        if fallback.default is None:
            reason = f"No valid answer for optional field {spec.id}; skipped."
            field_state.apply_default(state, None)
            self._record_merge(spec.id)
            self._append_history(ROLE_ASSISTANT, reason, spec.id, KIND_SKIPPED)
            logger.info(f"Session {self.session_id}: optional '{spec.id}' skipped after {attempts} attempts")
            return AnswerOutcome(
                field_id=spec.id,
                status=state.status.value,
                accepted=False,
                attempts=attempts,
                auto_default=True,
                reason=reason,
                rejection_kind=RejectionKind.FORMAT.value,
            )

        return self._apply_auto_default(spec, state, fallback.default, attempts)

    def _apply_auto_default(self, spec: FieldSpec, state: FieldState, default: Any, attempts: int) -> AnswerOutcome:
        verdict = self.validator.validate(spec, default, self._working, self._merged_fields(exclude=spec.id))

        if isinstance(verdict, Rejected):
            reason = f"Default '{default}' for {spec.id} cannot be used: {verdict.reason}"
            field_state.mark_conflict(state, verdict.conflict_with)
            self._append_history(ROLE_ASSISTANT, reason, spec.id, KIND_CONFLICT)
            logger.warning(f"Session {self.session_id}: default for '{spec.id}' rejected: {verdict.reason}")
            return AnswerOutcome(
                field_id=spec.id,
                status=state.status.value,
                accepted=False,
                attempts=attempts,
                reason=reason,
                rejection_kind=verdict.kind.value,
                conflict_with=verdict.conflict_with,
            )

        reason = f"No valid answer after {attempts} attempts; using default '{default}' for {spec.id}."
        field_state.apply_default(state, verdict.value)
        self._record_merge(spec.id)
        self._append_history(ROLE_ASSISTANT, reason, spec.id, KIND_AUTO_DEFAULT)
        logger.info(f"Session {self.session_id}: '{spec.id}' auto-defaulted to {default!r}")
        return AnswerOutcome(
            field_id=spec.id,
            status=state.status.value,
            accepted=False,
            attempts=attempts,
            auto_default=True,
            default_value=default,
            reason=reason,
            rejection_kind=RejectionKind.FORMAT.value,
        )

    # ========================
    # Reopen
    # ========================

    def reopen(self, field_id: str) -> ReopenOutcome:
        """
        Make a finished field active again.

        The currently active field (if any) returns to pending with its
        attempts kept. Every field that transitively depends on field_id,
        or that names it in a conflict, is reset to pending and its merged
        value removed.

        Raises:
            IllegalTransitionError: If field_id is unknown or still pending
        """
        if field_id not in self._states:
            raise IllegalTransitionError(
                field_id, None, "reopen",
                message=f"Cannot reopen unknown field '{field_id}'"
            )

        state = self._states[field_id]
        if state.status == FieldStatus.ACTIVE:
            return ReopenOutcome(field_id=field_id)
        if state.status not in REOPENABLE_STATUSES:
            raise IllegalTransitionError(field_id, state.status.value, "reopen")

        active_id = self.active_field_id
        if active_id is not None:
            field_state.suspend(self._states[active_id])

        field_state.reopen(state)
        self._forget_merge(field_id)

        reset = []
        for dependent_id in self._dependents_of(field_id):
            dependent = self._states[dependent_id]
            if dependent.status in REOPENABLE_STATUSES:
                field_state.reset_to_pending(dependent)
                self._forget_merge(dependent_id)
                reset.append(dependent_id)

        self.turn_count += 1
        self.last_activity = utc_now_iso()
        self._rebuild()
        self._append_history(ROLE_ASSISTANT, f"Reopened {field_id}.", field_id, KIND_REOPEN)

        logger.info(f"Session {self.session_id}: reopened '{field_id}', reset {reset}")
        return ReopenOutcome(field_id=field_id, reset_fields=tuple(reset))

    def edit_last(self) -> ReopenOutcome:
        """
        Reopen the most recently resolved or defaulted field.

        Raises:
            IllegalTransitionError: If nothing has been resolved yet
        """
        last = self.last_resolved_field()
        if last is None:
            raise IllegalTransitionError(
                None, None, "edit last",
                message="Nothing to edit: no field has been answered yet"
            )
        return self.reopen(last)

    def _dependents_of(self, field_id: str) -> List[str]:
        """Fields depending on field_id (transitively) or in conflict with it, in field order"""
        found = set()
        queue = [field_id]
        while queue:
            source = queue.pop(0)
            for other_id in self.ordered_field_ids:
                if other_id == field_id or other_id in found:
                    continue
                if source in self._specs[other_id].depends_on or self._states[other_id].conflict_with == source:
                    found.add(other_id)
                    queue.append(other_id)
        return [other_id for other_id in self.ordered_field_ids if other_id in found]

    # ========================
    # Internal helpers
    # ========================

    def _advance(self) -> None:
        """Activate the first pending field if nothing is active"""
        if self.active_field_id is not None:
            return
        for field_id in self.ordered_field_ids:
            if self._states[field_id].status == FieldStatus.PENDING:
                field_state.activate(self._states[field_id])
                return
        if self.is_complete():
            logger.info(f"Session {self.session_id} complete after {self.turn_count} turns")

    def _merged_fields(self, exclude: Optional[str] = None) -> List[Tuple[FieldSpec, Any]]:
        return [
            (self._specs[field_id], self._states[field_id].value)
            for field_id in self.resolution_order
            if field_id != exclude and self._states[field_id].is_merged
        ]

    def _record_merge(self, field_id: str) -> None:
        self._forget_merge(field_id)
        self.resolution_order.append(field_id)
        self._rebuild()

    def _forget_merge(self, field_id: str) -> None:
        if field_id in self.resolution_order:
            self.resolution_order.remove(field_id)

    def _rebuild(self) -> None:
        self._working = self.validator.rebuild(self.base_specification, self._merged_fields())

    def _append_history(self, role: str, text: str, field_id: Optional[str], kind: str) -> None:
        self._history.append({
            'role': role,
            'text': text,
            'field_id': field_id,
            'kind': kind,
            'timestamp': utc_now_iso(),
        })

    # ========================
    # Serialization
    # ========================

    def snapshot(self) -> Dict[str, Any]:
        """JSON-safe, lossless session snapshot"""
        return {
            'session_id': self.session_id,
            'created_at': self.created_at,
            'last_activity': self.last_activity,
            'turn_count': self.turn_count,
            'base_specification': copy.deepcopy(self.base_specification),
            'working_specification': self.working_specification(),
            'field_specs': [self._specs[field_id].to_dict() for field_id in self.ordered_field_ids],
            'field_states': [self._states[field_id].to_dict() for field_id in self.ordered_field_ids],
            'resolution_order': list(self.resolution_order),
            'conversation_history': self.conversation_history(),
        }

    @classmethod
    def from_snapshot(cls, data: Dict[str, Any],
                      validator: Optional[AnswerValidator] = None) -> "ClarificationSession":
        """
        Rebuild a session from snapshot().

        Raises:
            KeyError: If required keys are missing
            ValueError: If field states don't match field specs
        """
        session = cls.__new__(cls)
        session.validator = validator or AnswerValidator()
        session.restore(data)
        return session

    def restore(self, data: Dict[str, Any]) -> None:
        """
        Replace this session's state with a snapshot() in place.

        Used to roll back a turn that could not be persisted. The snapshot
        is checked before anything is assigned, so a bad snapshot leaves
        the session untouched.

        Raises:
            KeyError: If required keys are missing
            ValueError: If field states don't match field specs
        """
        specs = [FieldSpec.from_dict(spec) for spec in data['field_specs']]
        ids = [spec.id for spec in specs]
        states = {state['id']: FieldState.from_dict(state) for state in data['field_states']}
        if len(ids) != len(set(ids)) or set(states) != set(ids):
            raise ValueError(f"Snapshot field states don't match field specs for session {data['session_id']}")

        self.session_id = data['session_id']
        self.ordered_field_ids = ids
        self._specs = {spec.id: spec for spec in specs}
        self._states = states
        self.base_specification = copy.deepcopy(data.get('base_specification') or {})
        self.resolution_order = list(data.get('resolution_order', []))
        self._history = copy.deepcopy(data.get('conversation_history', []))
        self.turn_count = data.get('turn_count', 0)
        self.created_at = data.get('created_at') or utc_now_iso()
        self.last_activity = data.get('last_activity') or self.created_at
        self._rebuild()
