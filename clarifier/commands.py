"""
Command types for ProtocolHandler control flow.

Commands are the ONLY public interface to ProtocolHandler.handle().
The HTTP layer parses request bodies into commands with parse_command().
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple
import copy


@dataclass(frozen=True)
class SessionSnapshot:
    """
    Opaque value object wrapping a session snapshot.

    Rules:
    - Only ClarificationSession produces and reads _data
    - Immutable after creation
    - Deep copied on construction
    - Serializable to/from JSON

    This is a sealed envelope, not a model.
    """
    _data: Dict[str, Any]

    @property
    def turn_count(self) -> int:
        """Operational metadata for per-turn persistence. The only permitted accessor."""
        return self._data.get('turn_count', 0)

    def to_json(self) -> dict:
        """
        Serialize to JSON-safe dict (deep copy).

        Returns:
            dict: Deep copy of internal state
        """
        return copy.deepcopy(self._data)

    @staticmethod
    def from_json(data: dict) -> "SessionSnapshot":
        """
        Deserialize from JSON dict.

        Args:
            data: Raw snapshot dict from JSON

        Returns:
            SessionSnapshot: Sealed envelope
        """
        return SessionSnapshot(_data=copy.deepcopy(data))


# Command types

@dataclass(frozen=True)
class StartClarification:
    """
    Open a clarification session for a draft specification.

    With only session_id: resume that session and return its current prompt.
    Returns: ClarificationResponse with the first question, or
    need_clarification=False and the unchanged specification.
    """
    solver_input: Optional[Dict[str, Any]] = None
    session_id: Optional[str] = None
    ambiguities: Any = None
    missing: Optional[Tuple[Any, ...]] = None


@dataclass(frozen=True)
class SubmitAnswer:
    """
    Answer the active field of a session.

    conversation_history is the client's copy; advisory only.
    Returns: ClarificationResponse with the answer outcome.
    """
    session_id: str
    field_id: str
    answer: Any
    conversation_history: Optional[Tuple[Any, ...]] = None


@dataclass(frozen=True)
class ReopenField:
    """
    Reopen a resolved, defaulted or conflicting field.

    Returns: ClarificationResponse with the reopened field active.
    """
    session_id: str
    field_id: str


@dataclass(frozen=True)
class EditLastAnswer:
    """
    Reopen the most recently resolved field.

    Returns: ClarificationResponse with that field active.
    """
    session_id: str


# Command union type for type hints
Command = StartClarification | SubmitAnswer | ReopenField | EditLastAnswer

ACTION_REOPEN = "reopen"
ACTION_EDIT_LAST = "edit_last"


def _require_str(payload: Dict[str, Any], key: str) -> str:
    value = payload.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"'{key}' must be a non-empty string")
    return value


def _optional_tuple(payload: Dict[str, Any], key: str) -> Optional[Tuple[Any, ...]]:
    value = payload.get(key)
    if value is None:
        return None
    if not isinstance(value, list):
        raise ValueError(f"'{key}' must be a list")
    return tuple(value)


def parse_command(payload: Any) -> Command:
    """
    Build a command from a request body.

    Shapes:
        start:     {solver_input?, session_id?, ambiguities?, missing?}
        answer:    {session_id, field_id, answer, conversation_history?}
        reopen:    {action: "reopen", session_id, field_id}
        edit last: {action: "edit_last", session_id}

    Raises:
        ValueError: If the body matches no shape
    """
    if not isinstance(payload, dict):
        raise ValueError("Request body must be a JSON object")

    action = payload.get('action')
    if action == ACTION_REOPEN:
        return ReopenField(
            session_id=_require_str(payload, 'session_id'),
            field_id=_require_str(payload, 'field_id'),
        )
    if action == ACTION_EDIT_LAST:
        return EditLastAnswer(session_id=_require_str(payload, 'session_id'))
    if action is not None:
        raise ValueError(f"Unknown action '{action}'")

    if 'field_id' in payload or 'answer' in payload:
        if 'answer' not in payload:
            raise ValueError("'answer' is required")
        return SubmitAnswer(
            session_id=_require_str(payload, 'session_id'),
            field_id=_require_str(payload, 'field_id'),
            answer=payload['answer'],
            conversation_history=_optional_tuple(payload, 'conversation_history'),
        )

    solver_input = payload.get('solver_input')
    session_id = payload.get('session_id')
    if solver_input is None and session_id is None:
        raise ValueError("Start requires 'solver_input' or 'session_id'")
    if solver_input is not None and not isinstance(solver_input, dict):
        raise ValueError("'solver_input' must be an object")
    if session_id is not None and (not isinstance(session_id, str) or not session_id.strip()):
        raise ValueError("'session_id' must be a non-empty string")

    ambiguities = payload.get('ambiguities')
    if ambiguities is not None and not isinstance(ambiguities, (dict, list)):
        raise ValueError("'ambiguities' must be an object or a list")

    return StartClarification(
        solver_input=solver_input,
        session_id=session_id,
        ambiguities=ambiguities,
        missing=_optional_tuple(payload, 'missing'),
    )
