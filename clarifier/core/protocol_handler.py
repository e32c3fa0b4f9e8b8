"""
Protocol Handler - Wire-level façade over clarification sessions

Responsibilities:
- Turn commands (start / answer / reopen / edit last) into session operations
- Compute the outstanding fields of a new draft and create its session
- Serialize every session access through the store's per-session lock
- Build the full wire response (current question view + history) every time
- Persist one snapshot per turn and restore sessions missing from memory
- Roll back a turn whose snapshot cannot be persisted

Design principles:
- Stateless: all session state lives in the session store
- Responses are complete views, never patches
- Domain errors (StaleFieldError, SessionNotFoundError, IllegalTransitionError)
  propagate to the caller, which maps them to wire errors
- Thin orchestration layer (business logic in session / validator / registry)
"""

import copy
import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Sequence

from clarifier.commands import (
    Command,
    EditLastAnswer,
    ReopenField,
    SessionSnapshot,
    StartClarification,
    SubmitAnswer,
)
from clarifier.contracts import AnswerOutcome, PROMPT_ACTIVE, Prompt, ReopenOutcome
from clarifier.core.answer_validator import AnswerValidator
from clarifier.core.clarification_session import ClarificationSession
from clarifier.core.outstanding_fields import detect_outstanding_fields
from clarifier.errors import SessionNotFoundError
from clarifier.results import ClarificationRequest, ClarificationResponse
from clarifier.utils.helpers import generate_session_id

logger = logging.getLogger(__name__)


class ProtocolHandler:
    """
    Handles clarification commands against a session store.

    Args:
        registry: FieldRegistry (resolves field ids to FieldSpecs)
        session_store: InMemorySessionStore
        persistence: SessionPersistence, or None for no audit trail
        validator: AnswerValidator shared by all sessions

    Raises:
        TypeError: If a collaborator lacks the required interface
    """

    def __init__(self, registry, session_store, persistence=None,
                 validator: Optional[AnswerValidator] = None):
        self._validate_modules(registry, session_store, persistence)

        self.registry = registry
        self.store = session_store
        self.persistence = persistence
        self.validator = validator or AnswerValidator()

        logger.info(
            f"Protocol handler initialized (persistence: {'on' if persistence else 'off'})"
        )

    def _validate_modules(self, registry, session_store, persistence):
        """Validate collaborator interfaces"""
        if not callable(getattr(registry, 'resolve', None)):
            raise TypeError("registry must have callable resolve() method")

        for method in ('locked', 'add_if_absent', 'discard', 'reap_idle'):
            if not callable(getattr(session_store, method, None)):
                raise TypeError(f"session_store must have callable {method}() method")

        if persistence is not None:
            for method in ('save_turn', 'load_latest_turn', 'session_exists', 'validate_session_id'):
                if not callable(getattr(persistence, method, None)):
                    raise TypeError(f"persistence must have callable {method}() method")

    # =========================================================================
    # Public API
    # =========================================================================

    def handle(self, command: Command) -> ClarificationResponse:
        """
        Dispatch a command.

        Raises:
            TypeError: For unknown command types
            SessionNotFoundError, StaleFieldError, IllegalTransitionError
        """
        if isinstance(command, StartClarification):
            return self.start(
                solver_input=command.solver_input,
                session_id=command.session_id,
                ambiguities=command.ambiguities,
                missing=command.missing,
            )
        if isinstance(command, SubmitAnswer):
            return self.answer(
                command.session_id,
                command.field_id,
                command.answer,
                command.conversation_history,
            )
        if isinstance(command, ReopenField):
            return self.reopen(command.session_id, command.field_id)
        if isinstance(command, EditLastAnswer):
            return self.edit_last(command.session_id)
        raise TypeError(f"Unknown command type: {type(command).__name__}")

    def start(self, solver_input: Optional[Dict[str, Any]] = None,
              session_id: Optional[str] = None,
              ambiguities=None,
              missing: Optional[Sequence[Any]] = None) -> ClarificationResponse:
        """
        Open a session for a draft specification, or resume one.

        Args:
            solver_input: Extractor draft. None means "resume session_id".
            session_id: Session id to use (generated if None). An existing
                session with this id is resumed unchanged.
            ambiguities: Extractor ambiguity report
            missing: Field ids the extractor reported as missing

        Returns:
            ClarificationResponse with the first (or current) question, or
            need_clarification=False and the unchanged specification

        Raises:
            SessionNotFoundError: If resuming a session that doesn't exist
            ValueError: If session_id can't be persisted (nothing is stored)
        """
        if solver_input is None:
            logger.info(f"Resuming session {session_id}")
            return self.view(session_id)

        if session_id and self.persistence is not None:
            self.persistence.validate_session_id(session_id)

        if session_id and self._session_known(session_id):
            logger.info(f"Session {session_id} already exists, resuming")
            return self.view(session_id)

        outstanding = detect_outstanding_fields(solver_input, missing, ambiguities)
        if not outstanding:
            logger.info("No outstanding fields, clarification not needed")
            return ClarificationResponse(
                session_id=session_id,
                need_clarification=False,
                solver_input=copy.deepcopy(solver_input),
                conversation_history=[],
            )

        specs = [
            self.registry.resolve(field.field_id, question=field.message, suggestions=field.suggestions)
            for field in outstanding
        ]
        session = ClarificationSession(session_id or generate_session_id(), specs, solver_input, self.validator)

        stored = self.store.add_if_absent(session)
        if stored is not session:
            logger.info(f"Session {session.session_id} created concurrently, resuming")
            return self.view(session.session_id)

        with self._open_session(session.session_id) as session:
            try:
                self._persist(session)
            except Exception:
                self.store.discard(session.session_id)
                raise
            return self._build_response(session)

    def answer(self, session_id: str, field_id: str, raw_answer: Any,
               conversation_history: Optional[Sequence[Any]] = None) -> ClarificationResponse:
        """
        Submit an answer for the active field.

        Args:
            session_id: Session identifier
            field_id: Field the client believes is active
            raw_answer: User answer
            conversation_history: Client's copy of the history (advisory)

        Raises:
            SessionNotFoundError: If the session is unknown
            StaleFieldError: If field_id is not the active field
        """
        with self._turn(session_id) as session:
            if conversation_history is not None:
                server_length = len(session.conversation_history())
                if len(conversation_history) != server_length:
                    logger.debug(
                        f"Session {session_id}: client history has {len(conversation_history)} "
                        f"entries, server has {server_length}; using server copy"
                    )

            outcome = session.submit_answer(field_id, raw_answer)
            self._persist(session)
            return self._build_response(session, outcome=outcome)

    def reopen(self, session_id: str, field_id: str) -> ClarificationResponse:
        """
        Reopen a field (dependents are reset to pending).

        Raises:
            SessionNotFoundError: If the session is unknown
            IllegalTransitionError: If the field can't be reopened
        """
        with self._turn(session_id) as session:
            reopened = session.reopen(field_id)
            self._persist(session)
            return self._build_response(session, reopened=reopened)

    def edit_last(self, session_id: str) -> ClarificationResponse:
        """
        Reopen the most recently resolved field.

        Raises:
            SessionNotFoundError: If the session is unknown
            IllegalTransitionError: If nothing was resolved yet
        """
        with self._turn(session_id) as session:
            reopened = session.edit_last()
            self._persist(session)
            return self._build_response(session, reopened=reopened)

    def view(self, session_id: Optional[str]) -> ClarificationResponse:
        """
        Current response for a session without changing it.

        Raises:
            SessionNotFoundError: If the session is unknown
        """
        with self._open_session(session_id) as session:
            return self._build_response(session)

    def reap_idle_sessions(self) -> int:
        return self.store.reap_idle()

    def session_count(self) -> int:
        return len(self.store)

    # =========================================================================
    # Internal helpers
    # =========================================================================

    def _session_known(self, session_id: str) -> bool:
        if session_id in self.store:
            return True
        return self.persistence is not None and self.persistence.session_exists(session_id)

    @contextmanager
    def _open_session(self, session_id: Optional[str]) -> Iterator[ClarificationSession]:
        """Lock a session, restoring it from persistence if it isn't in memory"""
        if not session_id:
            raise SessionNotFoundError(session_id)
        if session_id not in self.store:
            self._restore(session_id)
        with self.store.locked(session_id) as session:
            yield session

    @contextmanager
    def _turn(self, session_id: str) -> Iterator[ClarificationSession]:
        """
        Lock a session for one state-changing turn.

        If the turn raises after changing the session (typically because
        the turn could not be persisted), the session is rolled back to its
        pre-turn snapshot so a retry sees the same state.
        """
        with self._open_session(session_id) as session:
            before = session.snapshot()
            try:
                yield session
            except Exception:
                if session.turn_count != before['turn_count']:
                    session.restore(before)
                    logger.warning(f"Session {session_id}: turn {session.turn_count + 1} rolled back")
                raise

    def _restore(self, session_id: str) -> None:
        if self.persistence is None or not self.persistence.session_exists(session_id):
            return
        snapshot = self.persistence.load_latest_turn(session_id)
        if snapshot is None:
            return
        session = ClarificationSession.from_snapshot(snapshot.to_json(), self.validator)
        self.store.add_if_absent(session)
        logger.info(f"Session {session_id} restored from turn {snapshot.turn_count}")

    def _persist(self, session: ClarificationSession) -> None:
        if self.persistence is None:
            return
        self.persistence.save_turn(session.session_id, SessionSnapshot.from_json(session.snapshot()))

    def _build_request(self, session: ClarificationSession, prompt: Prompt) -> ClarificationRequest:
        expected_format = {}
        suggested_defaults = {}
        if prompt.status == PROMPT_ACTIVE:
            expected_format[prompt.field_id] = prompt.expected_format.to_dict()
            if prompt.suggested_defaults:
                suggested_defaults[prompt.field_id] = prompt.suggested_defaults[0]

        return ClarificationRequest(
            questions=(prompt.question,) if prompt.question else (),
            current_field=prompt.field_id,
            ordered_missing=tuple(session.ordered_view()),
            expected_format=expected_format,
            suggested_defaults=suggested_defaults,
            attempts_left=prompt.attempts_left,
            editable_fields=tuple(session.editable_field_ids()),
            can_edit_last=session.last_resolved_field() is not None,
            status=prompt.status,
            conflicts=prompt.conflicts,
        )

    def _build_response(self, session: ClarificationSession,
                        outcome: Optional[AnswerOutcome] = None,
                        reopened: Optional[ReopenOutcome] = None) -> ClarificationResponse:
        prompt = session.next_prompt()
        history: List[Dict[str, Any]] = session.conversation_history()

        details: Dict[str, Any] = {}
        if outcome is not None:
            details = {
                'field_id': outcome.field_id,
                'accepted': outcome.accepted,
                'auto_default': outcome.auto_default,
                'default_value': outcome.default_value,
                'reason': outcome.reason,
                'attempts': outcome.attempts,
                'status': outcome.status,
                'conflict_with': outcome.conflict_with,
                'rejection_kind': outcome.rejection_kind,
            }
        elif reopened is not None:
            details = {
                'field_id': reopened.field_id,
                'status': session.get_field_state(reopened.field_id).status.value,
                'reset_fields': reopened.reset_fields,
            }

        if prompt.is_complete:
            return ClarificationResponse(
                session_id=session.session_id,
                need_clarification=False,
                solver_input=prompt.specification,
                conversation_history=history,
                **details,
            )

        return ClarificationResponse(
            session_id=session.session_id,
            need_clarification=True,
            clarification_request=self._build_request(session, prompt),
            conversation_history=history,
            **details,
        )
