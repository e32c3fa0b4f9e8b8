"""
Test request parsing into commands

Run with: python3 tests/test_commands.py
"""

import pytest

from clarifier.commands import (
    EditLastAnswer,
    ReopenField,
    StartClarification,
    SubmitAnswer,
    parse_command,
)


def test_start_command():
    command = parse_command({
        'solver_input': {'variables': []},
        'ambiguities': {'high_priority': []},
        'missing': ['pressure_bounds'],
    })
    assert command == StartClarification(
        solver_input={'variables': []},
        ambiguities={'high_priority': []},
        missing=('pressure_bounds',),
    )


def test_resume_command():
    assert parse_command({'session_id': 'abc'}) == StartClarification(session_id='abc')


def test_answer_command():
    command = parse_command({
        'session_id': 'abc',
        'field_id': 'variables',
        'answer': ['x1', 'x2'],
        'conversation_history': [{'role': 'user'}],
    })
    assert isinstance(command, SubmitAnswer)
    assert command.answer == ['x1', 'x2']
    assert command.conversation_history == ({'role': 'user'},)


def test_reopen_and_edit_last_commands():
    assert parse_command({'action': 'reopen', 'session_id': 'abc', 'field_id': 'variables'}) == \
        ReopenField('abc', 'variables')
    assert parse_command({'action': 'edit_last', 'session_id': 'abc'}) == EditLastAnswer('abc')


@pytest.mark.parametrize('payload, fragment', [
    ([], 'JSON object'),
    ({}, "requires 'solver_input' or 'session_id'"),
    ({'action': 'undo'}, "Unknown action"),
    ({'action': 'reopen', 'session_id': 'abc'}, "'field_id'"),
    ({'session_id': 'abc', 'field_id': 'variables'}, "'answer' is required"),
    ({'session_id': '', 'field_id': 'variables', 'answer': 'x'}, "'session_id'"),
    ({'solver_input': [1, 2]}, "'solver_input' must be an object"),
    ({'solver_input': {}, 'missing': 'variables'}, "'missing' must be a list"),
    ({'solver_input': {}, 'ambiguities': 'vague'}, "'ambiguities'"),
])
def test_malformed_payloads(payload, fragment):
    with pytest.raises(ValueError, match=fragment):
        parse_command(payload)


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
