"""
Test Clarification Session - field ordering, answers, fallbacks, reopen

Covers the loop's core guarantees:
- at most one active field, advancing in fixed order
- attempts only grow on format rejections
- exhaustion falls back to the first default, or to conflict
- rejected answers never reach the working specification
- stale answers raise and change nothing
- reopen resets dependents

Run with: python3 tests/test_clarification_session.py
"""

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import json
import logging

import pytest

from clarifier.config import DEFAULT_REGISTRY_PATH
from clarifier.contracts import FieldSpec, PROMPT_ACTIVE, PROMPT_BLOCKED, PROMPT_COMPLETE
from clarifier.core.clarification_session import ClarificationSession
from clarifier.core.field_registry import FieldRegistry
from clarifier.core.field_state import FieldStatus
from clarifier.errors import IllegalTransitionError, StaleFieldError


REGISTRY = FieldRegistry.from_json(DEFAULT_REGISTRY_PATH)


def make_session(field_ids, base=None, session_id='test-session'):
    specs = [REGISTRY.resolve(field_id) for field_id in field_ids]
    return ClarificationSession(session_id, specs, base or {})


def statuses(session):
    return {state.id: state.status for state in session.field_states()}


def active_count(session):
    return sum(1 for state in session.field_states() if state.status == FieldStatus.ACTIVE)


# ========================
# Ordering and advancing
# ========================

def test_first_field_active_on_creation():
    session = make_session(['variables', 'objectives'])

    assert session.active_field_id == 'variables'
    assert statuses(session) == {'variables': FieldStatus.ACTIVE, 'objectives': FieldStatus.PENDING}

    prompt = session.next_prompt()
    assert prompt.status == PROMPT_ACTIVE
    assert prompt.field_id == 'variables'
    assert prompt.question == REGISTRY.resolve('variables').question
    assert prompt.attempts_left == 3
    assert prompt.suggested_defaults[0] == 'x1'

    print("✓ First field active test passed")


def test_accepted_answer_advances_to_next_field():
    session = make_session(['variables', 'objectives'])

    outcome = session.submit_answer('variables', 'x1, x2')

    assert outcome.accepted is True
    assert outcome.status == 'resolved'
    assert outcome.attempts == 0
    assert session.active_field_id == 'objectives'
    assert session.working_specification()['variables'] == [{'name': 'x1'}, {'name': 'x2'}]

    print("✓ Advance test passed")


def test_at_most_one_active_field_throughout():
    session = make_session(['variables', 'objectives', 'bounds_for_x1'])
    answers = [
        ('variables', '??'),
        ('variables', 'x1'),
        ('objectives', 'minimize cost'),
        ('bounds_for_x1', 'wide'),
        ('bounds_for_x1', '0..10'),
    ]
    for field_id, answer in answers:
        assert active_count(session) == 1
        session.submit_answer(field_id, answer)

    assert active_count(session) == 0
    assert session.is_complete()

    print("✓ Single active field test passed")


def test_completion_returns_merged_specification():
    base = {'variables': [{'name': 'x1'}], 'objectives': []}
    session = make_session(['objectives', 'bounds_for_x1'], base=base)

    session.submit_answer('objectives', 'minimize cost')
    session.submit_answer('bounds_for_x1', '0..10')

    prompt = session.next_prompt()
    assert prompt.status == PROMPT_COMPLETE
    assert prompt.is_complete
    assert prompt.specification == {
        'variables': [{'name': 'x1', 'lower': 0.0, 'upper': 10.0}],
        'objectives': [{'minimize': 'cost'}],
    }
    # Base draft untouched
    assert session.base_specification == base

    print("✓ Completion test passed")


# ========================
# Attempts and fallbacks
# ========================

def test_bounds_resolved_first_try():
    """bounds_for_x1 '0..10' -> resolved with attempts 0"""
    session = make_session(['bounds_for_x1'], base={'variables': [{'name': 'x1'}]})

    outcome = session.submit_answer('bounds_for_x1', '0..10')

    assert outcome.accepted
    assert outcome.attempts == 0
    assert session.get_field_state('bounds_for_x1').status == FieldStatus.RESOLVED
    assert session.working_specification()['variables'][0] == {'name': 'x1', 'lower': 0.0, 'upper': 10.0}

    print("✓ Bounds first try test passed")


def test_variables_garbage_three_times_defaults_to_x1():
    """variables '??' x3 -> default x1 merged"""
    session = make_session(['variables', 'objectives'])

    first = session.submit_answer('variables', '??')
    assert first.accepted is False
    assert first.attempts == 1
    assert first.rejection_kind == 'format'
    assert session.active_field_id == 'variables'
    assert session.next_prompt().attempts_left == 2

    session.submit_answer('variables', '??')
    third = session.submit_answer('variables', '??')

    assert third.auto_default is True
    assert third.default_value == 'x1'
    assert third.status == 'default'
    assert third.attempts == 3
    assert session.get_field_state('variables').status == FieldStatus.DEFAULT
    assert session.working_specification()['variables'] == [{'name': 'x1'}]
    assert session.active_field_id == 'objectives'

    last_entry = session.conversation_history()[-1]
    assert last_entry['role'] == 'assistant'
    assert last_entry['kind'] == 'auto_default'

    print("✓ Auto-default test passed")


def test_attempts_only_grow_on_format_rejection():
    session = make_session(['pressure_unit', 'pressure_bounds'])
    session.submit_answer('pressure_unit', 'bar')

    format_rejection = session.submit_answer('pressure_bounds', 'lots')
    assert format_rejection.attempts == 1

    # Conflict rejection: attempts unchanged
    conflict = session.submit_answer('pressure_bounds', '0-500 psi')
    assert conflict.rejection_kind == 'conflict'
    assert conflict.attempts == 1

    print("✓ Attempts counting test passed")


def test_pressure_unit_conflict():
    """pressure_unit=bar then pressure_bounds '0-500 psi' -> conflict naming pressure_unit"""
    session = make_session(['pressure_unit', 'pressure_bounds'])
    session.submit_answer('pressure_unit', 'bar')

    outcome = session.submit_answer('pressure_bounds', '0-500 psi')

    assert outcome.accepted is False
    assert outcome.status == 'conflict'
    assert outcome.conflict_with == 'pressure_unit'
    assert outcome.attempts == 0
    assert 'psi' in outcome.reason

    # Session stays open, blocked on the conflict
    assert not session.is_complete()
    assert session.is_blocked()
    prompt = session.next_prompt()
    assert prompt.status == PROMPT_BLOCKED
    assert prompt.conflicts == ('pressure_bounds',)
    assert prompt.attempts_left == 0

    # Rejected value never merged
    pressure = session.working_specification()['variables'][0]
    assert pressure == {'name': 'pressure', 'unit': 'bar'}

    print("✓ Pressure unit conflict test passed")


def test_no_default_exhaustion_goes_to_conflict():
    spec = FieldSpec(id='material', question='Which material?', kind='choice',
                     target='material', choices=('steel', 'aluminium'))
    session = ClarificationSession('s', [spec], {})

    for _ in range(3):
        outcome = session.submit_answer('material', 'wood')

    assert outcome.status == 'conflict'
    assert outcome.auto_default is False
    assert session.get_field_state('material').status == FieldStatus.CONFLICT
    assert session.is_blocked()
    assert 'material' not in session.working_specification()

    print("✓ Exhaustion without default test passed")


def test_optional_field_without_default_is_skipped():
    session = make_session(['constraints'], base={'variables': [{'name': 'x1'}]})

    for _ in range(3):
        outcome = session.submit_answer('constraints', 'junk')

    assert outcome.auto_default is True
    assert outcome.default_value is None
    assert outcome.status == 'default'
    assert session.is_complete()
    assert 'constraints' not in session.working_specification()

    print("✓ Optional skip test passed")


def test_default_that_conflicts_becomes_conflict():
    unit = REGISTRY.resolve('pressure_unit')
    bounds = FieldSpec(id='pressure_bounds', question='Range?', kind='bounds', target='pressure',
                       suggested_defaults=('0-10 bar',), depends_on=('pressure_unit',))
    session = ClarificationSession('s', [unit, bounds], {})
    session.submit_answer('pressure_unit', 'psi')

    for _ in range(3):
        outcome = session.submit_answer('pressure_bounds', 'unclear')

    assert outcome.status == 'conflict'
    assert outcome.conflict_with == 'pressure_unit'
    assert outcome.auto_default is False
    assert session.working_specification()['variables'] == [{'name': 'pressure', 'unit': 'psi'}]

    print("✓ Conflicting default test passed")


def test_rejected_answers_never_reach_working_spec():
    session = make_session(['variables', 'bounds_for_x1'])
    before = session.working_specification()

    session.submit_answer('variables', 'x 1, ?')
    assert session.working_specification() == before

    session.submit_answer('variables', 'x1')
    session.submit_answer('bounds_for_x1', '10..0')
    assert session.working_specification() == {'variables': [{'name': 'x1'}]}

    print("✓ Rejected answers not merged test passed")


# ========================
# Stale answers
# ========================

def test_stale_answer_raises_and_changes_nothing():
    session = make_session(['variables', 'objectives'])
    session.submit_answer('variables', 'x1')

    snapshot_before = session.snapshot()

    for _ in range(2):
        with pytest.raises(StaleFieldError) as exc_info:
            session.submit_answer('variables', 'x1')
        assert exc_info.value.field_id == 'variables'
        assert exc_info.value.active_field_id == 'objectives'

    assert session.snapshot() == snapshot_before
    assert session.working_specification()['variables'] == [{'name': 'x1'}]

    print("✓ Stale answer test passed")


def test_answer_after_completion_is_stale():
    session = make_session(['variables'])
    session.submit_answer('variables', 'x1')

    with pytest.raises(StaleFieldError, match="no field is awaiting an answer"):
        session.submit_answer('variables', 'x1')

    print("✓ Answer after completion test passed")


# ========================
# Reopen / edit last
# ========================

def test_reopen_resets_dependents():
    session = make_session(['variables', 'bounds_for_x1'])
    session.submit_answer('variables', 'x1')
    session.submit_answer('bounds_for_x1', '0..10')
    assert session.is_complete()

    result = session.reopen('variables')

    assert result.field_id == 'variables'
    assert result.reset_fields == ('bounds_for_x1',)
    assert session.active_field_id == 'variables'
    assert session.get_field_state('variables').attempts == 0
    assert session.get_field_state('bounds_for_x1').status == FieldStatus.PENDING
    assert session.working_specification() == {}

    session.submit_answer('variables', 'x1, x2')
    assert session.active_field_id == 'bounds_for_x1'

    print("✓ Reopen dependents test passed")


def test_reopen_conflict_source_resets_conflicting_field():
    session = make_session(['pressure_unit', 'pressure_bounds'])
    session.submit_answer('pressure_unit', 'bar')
    session.submit_answer('pressure_bounds', '0-500 psi')
    assert session.is_blocked()

    result = session.reopen('pressure_unit')
    assert result.reset_fields == ('pressure_bounds',)

    session.submit_answer('pressure_unit', 'psi')
    outcome = session.submit_answer('pressure_bounds', '0-500 psi')
    assert outcome.accepted
    assert session.is_complete()
    assert session.working_specification()['variables'] == [
        {'name': 'pressure', 'unit': 'psi', 'lower': 0.0, 'upper': 500.0}
    ]

    print("✓ Reopen conflict source test passed")


def test_reopen_suspends_active_field_keeping_attempts():
    session = make_session(['variables', 'objectives'])
    session.submit_answer('variables', 'x1')
    session.submit_answer('objectives', 'cheap please')

    session.reopen('variables')
    assert session.get_field_state('objectives').status == FieldStatus.PENDING
    assert session.get_field_state('objectives').attempts == 1
    assert active_count(session) == 1

    session.submit_answer('variables', 'x2')
    assert session.active_field_id == 'objectives'
    assert session.next_prompt().attempts_left == 2

    print("✓ Reopen suspends active test passed")


def test_reopen_errors():
    session = make_session(['variables', 'objectives'])

    with pytest.raises(IllegalTransitionError):
        session.reopen('objectives')

    with pytest.raises(IllegalTransitionError, match="unknown field"):
        session.reopen('nope')

    with pytest.raises(IllegalTransitionError, match="Nothing to edit"):
        session.edit_last()

    # Reopening the active field is a no-op
    assert session.reopen('variables').reset_fields == ()
    assert session.active_field_id == 'variables'

    print("✓ Reopen errors test passed")


def test_edit_last_reopens_most_recent_field():
    session = make_session(['variables', 'bounds_for_x1'])
    assert session.editable_field_ids() == []

    session.submit_answer('variables', 'x1')
    session.submit_answer('bounds_for_x1', '0..10')
    assert session.last_resolved_field() == 'bounds_for_x1'
    assert session.editable_field_ids() == ['variables', 'bounds_for_x1']

    result = session.edit_last()

    assert result.field_id == 'bounds_for_x1'
    assert session.active_field_id == 'bounds_for_x1'
    assert session.last_resolved_field() == 'variables'
    assert session.working_specification() == {'variables': [{'name': 'x1'}]}

    session.submit_answer('bounds_for_x1', '1..2')
    assert session.working_specification() == {'variables': [{'name': 'x1', 'lower': 1.0, 'upper': 2.0}]}

    print("✓ Edit last test passed")


# ========================
# History and snapshots
# ========================

def test_history_records_user_and_assistant_turns():
    session = make_session(['variables'])
    session.submit_answer('variables', 'x1')

    history = session.conversation_history()
    assert [(entry['role'], entry['kind']) for entry in history] == [('user', 'answer'), ('assistant', 'ack')]
    assert history[0]['text'] == 'x1'
    assert history[0]['field_id'] == 'variables'
    assert history[0]['timestamp']

    # Returned copy can't mutate the session
    history.clear()
    assert len(session.conversation_history()) == 2

    print("✓ History test passed")


def test_snapshot_round_trip_continues_session():
    session = make_session(['variables', 'objectives', 'bounds_for_x1'])
    session.submit_answer('variables', 'x1')
    session.submit_answer('objectives', 'nope')

    data = json.loads(json.dumps(session.snapshot()))
    restored = ClarificationSession.from_snapshot(data)

    assert restored.session_id == session.session_id
    assert restored.ordered_view() == session.ordered_view()
    assert restored.working_specification() == session.working_specification()
    assert restored.conversation_history() == session.conversation_history()
    assert restored.turn_count == session.turn_count
    assert restored.active_field_id == 'objectives'

    restored.submit_answer('objectives', 'minimize cost')
    assert restored.active_field_id == 'bounds_for_x1'

    print("✓ Snapshot round trip test passed")


def test_duplicate_field_ids_rejected():
    spec = REGISTRY.resolve('variables')
    with pytest.raises(ValueError, match="Duplicate field ids"):
        ClarificationSession('s', [spec, spec], {})

    print("✓ Duplicate field ids test passed")


def test_from_snapshot_does_not_log_creation(caplog):
    session = make_session(['variables', 'objectives'])
    data = session.snapshot()

    with caplog.at_level(logging.INFO, logger='clarifier.core.clarification_session'):
        ClarificationSession.from_snapshot(data)

    assert not any('created' in record.getMessage() for record in caplog.records)

    print("✓ Quiet restore test passed")


def test_restore_rolls_back_a_turn():
    session = make_session(['variables', 'objectives'])
    before = session.snapshot()

    session.submit_answer('variables', 'x1')
    assert session.active_field_id == 'objectives'

    session.restore(before)

    assert session.snapshot() == before
    assert session.active_field_id == 'variables'
    assert session.turn_count == 0

    print("✓ Restore rollback test passed")


def test_restore_bad_snapshot_leaves_session_untouched():
    session = make_session(['variables', 'objectives'])
    session.submit_answer('variables', 'x1')
    current = session.snapshot()

    bad = session.snapshot()
    bad['field_states'] = bad['field_states'][:1]
    with pytest.raises(ValueError):
        session.restore(bad)

    assert session.snapshot() == current

    print("✓ Bad snapshot test passed")


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
