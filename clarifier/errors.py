"""
Exception taxonomy for the clarification loop.

Only failures that the caller must act on are exceptions. Format and
conflict rejections are in-band values (see contracts.Rejected), and
attempt exhaustion is an outcome (auto-default or conflict status),
never an exception.
"""

from typing import Optional


class ClarifierError(Exception):
    """Base exception for clarification loop errors"""
    pass


class StaleFieldError(ClarifierError):
    """
    Raised when an answer targets a field that is not the active one.

    Session state is left unchanged. Repeating the same stale answer
    raises again (no double merge).
    """

    def __init__(self, field_id: str, active_field_id: Optional[str], session_id: Optional[str] = None):
        self.field_id = field_id
        self.active_field_id = active_field_id
        self.session_id = session_id
        if active_field_id is None:
            message = f"Field '{field_id}' is not active: no field is awaiting an answer"
        else:
            message = f"Field '{field_id}' is not active (active field is '{active_field_id}')"
        super().__init__(message)


class SessionNotFoundError(ClarifierError):
    """Raised when a session id is unknown or was reaped. Caller must restart."""

    def __init__(self, session_id: Optional[str]):
        self.session_id = session_id
        if session_id:
            message = f"Clarification session not found: {session_id}"
        else:
            message = "Clarification session id is required"
        super().__init__(message)


class IllegalTransitionError(ClarifierError):
    """Raised when a field state transition is not allowed from its current status"""

    def __init__(self, field_id: Optional[str], current_status: Optional[str], action: str,
                 message: Optional[str] = None):
        self.field_id = field_id
        self.current_status = current_status
        self.action = action
        super().__init__(
            message or f"Cannot {action} field '{field_id}' from status '{current_status}'"
        )


class RegistryError(ClarifierError, ValueError):
    """Raised when a field registry fails validation on load"""
    pass


class ValidatorInternalError(ClarifierError):
    """
    Raised inside a field validator when it cannot run (misconfiguration,
    unexpected input shape). Always caught by AnswerValidator and turned
    into a generic format rejection.
    """
    pass
