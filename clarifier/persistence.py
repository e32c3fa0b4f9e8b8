"""
Turn-based clarification session persistence.

Append-only JSON files for audit trail and restart resilience.
"""

import json
import logging
import re
from pathlib import Path
from typing import Optional

from clarifier.commands import SessionSnapshot

logger = logging.getLogger(__name__)

_SAFE_SESSION_ID = re.compile(r'^[A-Za-z0-9_-]+$')


class SessionPersistence:
    """
    Manages turn-by-turn JSON persistence.

    Layout:
        outputs/sessions/SESSION-abc123/
            SESSION-abc123_TURN-000.json   (session created)
            SESSION-abc123_TURN-001.json   (first answer)
            ...

    Design:
    - Append-only (never overwrite)
    - One file per turn
    - Latest turn restores a session after a restart
    """

    def __init__(self, base_dir: str = "outputs/sessions"):
        """
        Initialize persistence layer.

        Args:
            base_dir: Base directory for all sessions
        """
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"SessionPersistence initialized: {self.base_dir}")

    @staticmethod
    def validate_session_id(session_id: str) -> None:
        """
        Check that session_id can name a session directory.

        Raises:
            ValueError: If session_id is empty or contains characters other
                than letters, digits, '_' and '-'
        """
        if not session_id or not _SAFE_SESSION_ID.match(session_id):
            raise ValueError(f"Session id not usable as a directory name: {session_id!r}")

    def _session_dir(self, session_id: str) -> Path:
        self.validate_session_id(session_id)
        return self.base_dir / f"SESSION-{session_id}"

    @staticmethod
    def _turn_number(path: Path) -> int:
        return int(path.stem.rsplit("_TURN-", 1)[1])

    def _turn_files(self, session_id: str):
        session_dir = self._session_dir(session_id)
        if not session_dir.exists():
            return []
        return list(session_dir.glob(f"SESSION-{session_id}_TURN-*.json"))

    def save_turn(self, session_id: str, snapshot: SessionSnapshot) -> str:
        """
        Save turn to append-only file.

        Args:
            session_id: Session identifier
            snapshot: Opaque session snapshot

        Returns:
            str: Absolute path to saved file

        Raises:
            FileExistsError: If turn file already exists (double-submit)
            ValueError: If session_id contains path characters
        """
        session_dir = self._session_dir(session_id)
        session_dir.mkdir(exist_ok=True)

        turn_count = snapshot.turn_count
        filename = f"SESSION-{session_id}_TURN-{turn_count:03d}.json"
        filepath = session_dir / filename

        if filepath.exists():
            raise FileExistsError(
                f"Turn file already exists: {filepath}. "
                f"This indicates a double-submit or turn-count error."
            )

        with open(filepath, 'x') as f:
            json.dump(snapshot.to_json(), f, indent=2, ensure_ascii=False)

        abs_path = str(filepath.absolute())
        logger.info(f"Saved turn {turn_count} for {session_id}: {filename}")

        return abs_path

    def load_latest_turn(self, session_id: str) -> Optional[SessionSnapshot]:
        """
        Load latest turn for session.

        Args:
            session_id: Session identifier

        Returns:
            SessionSnapshot if session exists, None otherwise
        """
        turn_files = self._turn_files(session_id)

        if not turn_files:
            logger.warning(f"No turn files found for {session_id}")
            return None

        latest_file = max(turn_files, key=self._turn_number)

        logger.info(f"Loading latest turn for {session_id}: {latest_file.name}")

        with open(latest_file, 'r') as f:
            data = json.load(f)

        return SessionSnapshot.from_json(data)

    def session_exists(self, session_id: str) -> bool:
        """True if at least one turn file exists"""
        try:
            return bool(self._turn_files(session_id))
        except ValueError:
            return False

    def get_turn_count(self, session_id: str) -> int:
        """
        Get number of saved turns for session.

        Returns:
            int: Number of turn files (0 if session doesn't exist)
        """
        return len(self._turn_files(session_id))
