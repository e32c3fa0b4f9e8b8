"""
Semantic contracts for the optimization clarification loop.

This module defines immutable data structures that serve as contracts
between modules. They define shape and semantics; enforcement lives in
the field state machine, the answer validator and the session.

Design principles:
- Frozen dataclasses (immutable after creation)
- Tuples instead of lists so contracts stay immutable
- No dependencies on other modules (validation is imported lazily)

Contents:
- ExpectedFormat: Hint text and example answers for a field
- FieldSpec: Static description of one clarifiable field
- Accepted / Rejected: Validator verdicts
- Prompt: What the session wants to ask next (or that it is done)
- AnswerOutcome: Result of submitting one answer
- ReopenOutcome: Result of reopening a field

Usage:
    from clarifier.contracts import FieldSpec, Accepted, Rejected
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple


DEFAULT_MAX_ATTEMPTS = 3


@dataclass(frozen=True)
class ExpectedFormat:
    """
    Format guidance shown next to the current question.

    Attributes:
        hint: One-line description of the accepted answer format.
            Example: 'Lower and upper bound, e.g. 0..10 or min=0,max=10'
        examples: Literal example answers a client may offer as quick inserts.
    """
    hint: str = ""
    examples: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {'hint': self.hint, 'examples': list(self.examples)}

    @staticmethod
    def from_dict(data: Optional[Dict[str, Any]]) -> "ExpectedFormat":
        data = data or {}
        return ExpectedFormat(
            hint=data.get('hint', ''),
            examples=tuple(data.get('examples', ()))
        )


@dataclass(frozen=True)
class FieldSpec:
    """
    Static description of one clarifiable field.

    FieldSpecs are produced by the FieldRegistry and frozen into the
    session when it is created, so registry edits never change the
    questions of a running session.

    Attributes:
        id: Field identifier (e.g., 'variables', 'bounds_for_x1', 'pressure_unit')
        question: Question text with placeholders already rendered
        kind: Validator selector ('variable_list', 'objective_list',
            'constraint_list', 'bounds', 'unit', 'choice', 'number', 'text')
        expected_format: Hint and examples for the client
        suggested_defaults: Ordered literal answers. The first one is used
            when the attempt budget runs out.
        max_attempts: Format rejections allowed before falling back
        required: Whether the specification is incomplete without this field.
            Optional fields without defaults are skipped on exhaustion.
        target: Quantity or variable the field describes ('x1', 'pressure').
            For scalar kinds this is the key written into the specification.
        depends_on: Field ids this field's value is interpreted against.
            Reopening one of them resets this field to pending.
        choices: Allowed values for 'choice' fields

    Examples:
        >>> spec = FieldSpec(
        ...     id='bounds_for_x1',
        ...     question='What are the lower and upper bounds for x1?',
        ...     kind='bounds',
        ...     expected_format=ExpectedFormat('lo..hi', ('0..10',)),
        ...     suggested_defaults=('0..10',),
        ...     target='x1',
        ...     depends_on=('variables',)
        ... )
        >>> spec.validate('0..10')
        Accepted(value={'lower': 0.0, 'upper': 10.0, 'unit': None})
    """
    id: str
    question: str
    kind: str = "text"
    expected_format: ExpectedFormat = field(default_factory=ExpectedFormat)
    suggested_defaults: Tuple[Any, ...] = ()
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    required: bool = True
    target: Optional[str] = None
    depends_on: Tuple[str, ...] = ()
    choices: Optional[Tuple[str, ...]] = None

    def validate(self, raw_answer: str, working_spec: Optional[Dict[str, Any]] = None) -> "ValidationResult":
        """
        Format-check a raw answer for this field.

        Conflict checking against other fields is done by AnswerValidator,
        which has access to the session's resolved fields.
        """
        from clarifier.core.answer_validator import parse_answer
        return parse_answer(self, raw_answer, working_spec)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'question': self.question,
            'kind': self.kind,
            'expected_format': self.expected_format.to_dict(),
            'suggested_defaults': list(self.suggested_defaults),
            'max_attempts': self.max_attempts,
            'required': self.required,
            'target': self.target,
            'depends_on': list(self.depends_on),
            'choices': list(self.choices) if self.choices is not None else None,
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "FieldSpec":
        choices = data.get('choices')
        return FieldSpec(
            id=data['id'],
            question=data['question'],
            kind=data.get('kind', 'text'),
            expected_format=ExpectedFormat.from_dict(data.get('expected_format')),
            suggested_defaults=tuple(data.get('suggested_defaults', ())),
            max_attempts=data.get('max_attempts', DEFAULT_MAX_ATTEMPTS),
            required=data.get('required', True),
            target=data.get('target'),
            depends_on=tuple(data.get('depends_on', ())),
            choices=tuple(choices) if choices is not None else None,
        )


class RejectionKind(str, Enum):
    """
    Why an answer was rejected.

    FORMAT: The answer does not parse. Consumes an attempt.
    CONFLICT: The answer contradicts a resolved field. Does not consume
        an attempt and names the conflicting field.
    """
    FORMAT = "format"
    CONFLICT = "conflict"


@dataclass(frozen=True)
class Accepted:
    """Validator verdict: answer parsed into value"""
    value: Any


@dataclass(frozen=True)
class Rejected:
    """
    Validator verdict: answer refused.

    Attributes:
        reason: Human-readable explanation shown to the user
        kind: FORMAT or CONFLICT
        conflict_with: Id of the resolved field the answer contradicts
            (CONFLICT only)
    """
    reason: str
    kind: RejectionKind = RejectionKind.FORMAT
    conflict_with: Optional[str] = None


ValidationResult = Accepted | Rejected


# Prompt status values
PROMPT_ACTIVE = "active"
PROMPT_COMPLETE = "complete"
PROMPT_BLOCKED = "blocked"


@dataclass(frozen=True)
class Prompt:
    """
    Next thing the session wants from the user.

    status is one of:
        'active': field_id is awaiting an answer
        'complete': every field is resolved or defaulted; specification is set
        'blocked': no field is active but some are in conflict; the user
            must reopen one of them (listed in conflicts)
    """
    status: str
    field_id: Optional[str] = None
    question: Optional[str] = None
    expected_format: Optional[ExpectedFormat] = None
    suggested_defaults: Tuple[Any, ...] = ()
    attempts: int = 0
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    conflicts: Tuple[str, ...] = ()
    specification: Optional[Dict[str, Any]] = None

    @property
    def attempts_left(self) -> int:
        if self.status != PROMPT_ACTIVE:
            return 0
        return max(0, self.max_attempts - self.attempts)

    @property
    def is_complete(self) -> bool:
        return self.status == PROMPT_COMPLETE


@dataclass(frozen=True)
class AnswerOutcome:
    """
    Result of ClarificationSession.submit_answer().

    Attributes:
        field_id: Field the answer was for
        status: Field status after the answer (wire vocabulary)
        accepted: True if the user's answer was merged
        attempts: Field attempt count after the answer
        auto_default: True if the attempt budget ran out and a default was merged
        default_value: Literal default used (auto_default only)
        reason: Rejection or fallback explanation
        rejection_kind: 'format' or 'conflict' when the answer was rejected
        conflict_with: Field named by a conflict
    """
    field_id: str
    status: str
    accepted: bool
    attempts: int
    auto_default: bool = False
    default_value: Any = None
    reason: Optional[str] = None
    rejection_kind: Optional[str] = None
    conflict_with: Optional[str] = None


@dataclass(frozen=True)
class ReopenOutcome:
    """
    Result of ClarificationSession.reopen().

    Attributes:
        field_id: Field that is active again
        reset_fields: Dependent fields that were reset to pending
    """
    field_id: str
    reset_fields: Tuple[str, ...] = ()
