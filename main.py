"""
Console Test Harness for the Clarification Protocol Handler

Simple console loop to drive start/answer/reopen before adding Flask.

Commands at the prompt:
    quit | exit | stop     end the session
    :edit                  reopen the last answered field
    :reopen <field_id>     reopen a specific field
"""

import json
import logging
import sys

from dotenv import load_dotenv

from clarifier.config import ClarifierConfig
from clarifier.core.field_registry import FieldRegistry
from clarifier.core.protocol_handler import ProtocolHandler
from clarifier.errors import ClarifierError
from clarifier.persistence import SessionPersistence
from clarifier.session_store import InMemorySessionStore
from clarifier.utils.display_helpers import (
    format_outcome_message,
    format_status_table,
    project_client_view,
)

load_dotenv()
config = ClarifierConfig.from_env()

# Configure logging
logging.basicConfig(
    level=getattr(logging, config.log_level, logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

EXIT_COMMANDS = {"quit", "exit", "stop"}

# Draft as an extractor would hand it over: one variable without bounds,
# no objectives, and an ambiguous pressure range.
SAMPLE_DRAFT = {
    'solver_input': {
        'variables': [{'name': 'x1'}],
        'objectives': [],
    },
    'ambiguities': {
        'high_priority': [],
        'medium_priority': [
            {
                'type': 'unit_ambiguity',
                'field_id': 'pressure_unit',
                'message': 'Pressure unit was not stated.',
                'suggestions': ['bar', 'psi'],
                'priority': 'medium',
            }
        ],
        'low_priority': [],
    },
    'missing': ['pressure_bounds'],
}


def print_separator(char="=", length=60):
    """Print a separator line"""
    print(char * length)


def print_view(response: dict):
    """Print question, status table and hints from the last response"""
    view = project_client_view(response)

    message = format_outcome_message(response)
    if message:
        print(f"\nSystem: {message}")

    if view['done']:
        return

    print("\n" + "-" * 60)
    for line in format_status_table(view):
        print(line)
    print("-" * 60)

    print(f"\nSystem: {view['question']}")
    if view['hint']:
        print(f"  Format: {view['hint']}")
    if view['examples']:
        print(f"  Examples: {', '.join(view['examples'])}")
    if view['suggested_default'] is not None:
        print(f"  Default: {view['suggested_default']}")
    if view['current_field']:
        print(f"  Attempts left: {view['attempts_left']}")
    if view['editable_fields']:
        print(f"  Editable: {', '.join(view['editable_fields'])} (:reopen <field>, :edit)")
    print()


def main():
    """Run console test"""
    print_separator()
    print("CLARIFICATION LOOP - CONSOLE TEST")
    print_separator()

    try:
        registry = FieldRegistry.from_json(config.registry_path)
        store = InMemorySessionStore(ttl_seconds=config.session_ttl_seconds)
        persistence = SessionPersistence(config.persistence_dir) if config.persistence_dir else None
        handler = ProtocolHandler(registry, store, persistence)

    except Exception as e:
        print(f"\nFailed to initialize: {e}")
        import traceback
        traceback.print_exc()
        return 1

    print("Type 'quit', 'exit', or 'stop' to end early\n")

    response = handler.start(**SAMPLE_DRAFT).to_json()
    session_id = response.get('session_id')
    print_view(response)

    while response.get('need_clarification'):
        try:
            user_input = input("> ").strip()

            if not user_input:
                print("Please enter a response.\n")
                continue

            if user_input.lower() in EXIT_COMMANDS:
                print("\nSession abandoned by user")
                break

            if user_input == ":edit":
                result = handler.edit_last(session_id)
            elif user_input.startswith(":reopen "):
                result = handler.reopen(session_id, user_input.split(None, 1)[1].strip())
            else:
                current_field = response['clarification_request'].get('current_field')
                if current_field is None:
                    print("No field is active. Use :reopen <field> to resolve a conflict.\n")
                    continue
                result = handler.answer(
                    session_id,
                    current_field,
                    user_input,
                    response.get('conversation_history')
                )

            response = result.to_json()
            print_view(response)

        except KeyboardInterrupt:
            print("\n\nSession interrupted by user (Ctrl+C)")
            break

        except ClarifierError as e:
            print(f"\nERROR: {e}\n")

    if not response.get('need_clarification'):
        print_separator()
        print("SPECIFICATION COMPLETE")
        print_separator()
        print(json.dumps(response.get('solver_input'), indent=2))

    print_separator()
    print("Console test complete")
    print_separator()
    return 0


if __name__ == '__main__':
    sys.exit(main())
