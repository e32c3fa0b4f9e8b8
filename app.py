"""
Flask Web Application for the Optimization Clarification Service

One route multiplexes start / answer / reopen / edit-last. Every success
response is the complete current view; clients replace their state with it.
"""

from flask import Flask, request, jsonify
from dotenv import load_dotenv
import logging

from clarifier.commands import parse_command
from clarifier.config import ClarifierConfig
from clarifier.core.field_registry import FieldRegistry
from clarifier.core.protocol_handler import ProtocolHandler
from clarifier.errors import IllegalTransitionError, SessionNotFoundError, StaleFieldError
from clarifier.persistence import SessionPersistence
from clarifier.session_store import InMemorySessionStore

load_dotenv()
config = ClarifierConfig.from_env()

# Configure logging
logging.basicConfig(
    level=getattr(logging, config.log_level, logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def build_handler(config: ClarifierConfig) -> ProtocolHandler:
    """Wire registry, session store and persistence from config"""
    registry = FieldRegistry.from_json(config.registry_path)
    store = InMemorySessionStore(ttl_seconds=config.session_ttl_seconds)
    persistence = SessionPersistence(config.persistence_dir) if config.persistence_dir else None
    return ProtocolHandler(registry, store, persistence)


def create_app(config: ClarifierConfig = config, handler: ProtocolHandler = None) -> Flask:
    """
    Build the Flask app.

    Args:
        config: Service configuration
        handler: Pre-built ProtocolHandler (tests); built from config if None
    """
    app = Flask(__name__)
    handler = handler or build_handler(config)
    app.extensions['clarifier'] = handler

    def stale_field_body(error: StaleFieldError):
        body = {
            'error_type': 'stale_field',
            'field_id': error.field_id,
            'active_field': error.active_field_id,
            'reason': str(error),
            'session_id': error.session_id,
        }
        # Current view so the client can resync
        try:
            current = handler.view(error.session_id).to_json()
        except SessionNotFoundError:
            return body
        for key in ('need_clarification', 'clarification_request', 'solver_input', 'conversation_history'):
            if key in current:
                body[key] = current[key]
        return body

    @app.route('/api/answer-clarification', methods=['POST'])
    def answer_clarification():
        """Start, answer, reopen or edit-last, depending on the body"""
        try:
            command = parse_command(request.get_json(silent=True))
            response = handler.handle(command)
            return jsonify(response.to_json())

        except StaleFieldError as e:
            logger.warning(f"Stale answer: {e}")
            return jsonify(stale_field_body(e)), 409

        except SessionNotFoundError as e:
            logger.warning(f"Session not found: {e.session_id}")
            return jsonify({
                'error_type': 'session_not_found',
                'need_restart': True,
                'session_id': e.session_id,
                'error': str(e)
            }), 404

        except IllegalTransitionError as e:
            logger.warning(f"Illegal transition: {e}")
            return jsonify({
                'error_type': 'illegal_transition',
                'field_id': e.field_id,
                'reason': str(e)
            }), 409

        except ValueError as e:
            logger.warning(f"Malformed request: {e}")
            return jsonify({
                'error_type': 'bad_request',
                'error': str(e)
            }), 400

        except Exception as e:
            logger.error(f"Error handling clarification request: {type(e).__name__} - {e}")
            return jsonify({
                'error': str(e)
            }), 500

    @app.route('/api/clarification/<session_id>', methods=['GET'])
    def get_clarification(session_id):
        """Current view of a session (client resync after reload)"""
        try:
            return jsonify(handler.view(session_id).to_json())

        except SessionNotFoundError as e:
            return jsonify({
                'error_type': 'session_not_found',
                'need_restart': True,
                'session_id': e.session_id,
                'error': str(e)
            }), 404

        except Exception as e:
            logger.error(f"Error loading session {session_id}: {type(e).__name__} - {e}")
            return jsonify({
                'error': str(e)
            }), 500

    @app.route('/api/health', methods=['GET'])
    def health():
        """Liveness check"""
        return jsonify({
            'status': 'ok',
            'sessions': handler.session_count()
        })

    logger.info("Clarification service app created")
    return app


app = create_app()


if __name__ == '__main__':
    print("\n" + "="*60)
    print("OPTIMIZATION CLARIFICATION SERVICE")
    print("="*60)
    print(f"\nServer starting on http://{config.host}:{config.port}")
    print("\nPress Ctrl+C to stop the server")
    print("="*60 + "\n")

    app.run(debug=config.debug, host=config.host, port=config.port)
