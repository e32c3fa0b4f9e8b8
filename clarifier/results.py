"""
Result types returned by ProtocolHandler.handle()

These are the ONLY return types from the command handler. Both serialize
to the wire shape with to_json(); keys whose value is None are omitted.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple


@dataclass(frozen=True)
class ClarificationRequest:
    """
    What the client should ask next.

    Attributes:
        questions: Question text for the active field (one entry), or the
            blocked message when no field can be asked
        current_field: Active field id (None when blocked)
        ordered_missing: Every session field as {id, status, attempts, max_attempts}
        expected_format: {current_field: {hint, examples}}
        suggested_defaults: {current_field: first suggested default}
        attempts_left: Remaining attempts for the active field
        editable_fields: Fields the client may offer for reopening
        can_edit_last: Whether "edit last answer" is available
        status: 'active' or 'blocked'
        conflicts: Fields currently in conflict
    """
    questions: Tuple[str, ...]
    current_field: Optional[str]
    ordered_missing: Tuple[Dict[str, Any], ...]
    expected_format: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    suggested_defaults: Dict[str, Any] = field(default_factory=dict)
    attempts_left: int = 0
    editable_fields: Tuple[str, ...] = ()
    can_edit_last: bool = False
    status: str = "active"
    conflicts: Tuple[str, ...] = ()

    def to_json(self) -> Dict[str, Any]:
        return {
            'questions': list(self.questions),
            'current_field': self.current_field,
            'ordered_missing': [dict(entry) for entry in self.ordered_missing],
            'expected_format': dict(self.expected_format),
            'suggested_defaults': dict(self.suggested_defaults),
            'attempts_left': self.attempts_left,
            'editable_fields': list(self.editable_fields),
            'can_edit_last': self.can_edit_last,
            'status': self.status,
            'conflicts': list(self.conflicts),
        }


@dataclass(frozen=True)
class ClarificationResponse:
    """
    Full server response for one request.

    Returned by: StartClarification, SubmitAnswer, ReopenField, EditLastAnswer

    Attributes:
        session_id: Session identifier (None when no clarification was needed
            and no session was created)
        need_clarification: False once the specification is complete
        clarification_request: Next question view (need_clarification only)
        solver_input: Final specification (complete sessions, or the
            unchanged input when nothing was outstanding)
        conversation_history: Server copy of the conversation
        field_id .. rejection_kind: Outcome of the submitted answer
        reset_fields: Fields reset to pending by a reopen
    """
    session_id: Optional[str]
    need_clarification: bool
    clarification_request: Optional[ClarificationRequest] = None
    solver_input: Optional[Dict[str, Any]] = None
    conversation_history: Optional[List[Dict[str, Any]]] = None
    field_id: Optional[str] = None
    accepted: Optional[bool] = None
    auto_default: Optional[bool] = None
    default_value: Any = None
    reason: Optional[str] = None
    attempts: Optional[int] = None
    status: Optional[str] = None
    conflict_with: Optional[str] = None
    rejection_kind: Optional[str] = None
    reset_fields: Optional[Tuple[str, ...]] = None

    def to_json(self) -> Dict[str, Any]:
        data = {
            'session_id': self.session_id,
            'need_clarification': self.need_clarification,
            'clarification_request': (
                self.clarification_request.to_json() if self.clarification_request else None
            ),
            'solver_input': self.solver_input,
            'conversation_history': self.conversation_history,
            'field_id': self.field_id,
            'accepted': self.accepted,
            'auto_default': self.auto_default,
            'default_value': self.default_value,
            'reason': self.reason,
            'attempts': self.attempts,
            'status': self.status,
            'conflict_with': self.conflict_with,
            'rejection_kind': self.rejection_kind,
            'reset_fields': list(self.reset_fields) if self.reset_fields is not None else None,
        }
        return {key: value for key, value in data.items() if value is not None}
