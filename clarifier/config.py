"""
Configuration for the clarification service.

Settings come from environment variables. Entry points (app.py, main.py)
call load_dotenv() first, so a local .env file is honoured.

Variables:
    CLARIFIER_REGISTRY_PATH        Field registry JSON (default <repo>/data/field_registry.json)
    CLARIFIER_SESSION_TTL_SECONDS  Idle timeout before a session is reaped (default 1800)
    CLARIFIER_PERSISTENCE_DIR      Directory for per-turn snapshots (unset = no audit trail)
    CLARIFIER_LOG_LEVEL            Logging level name (default INFO)
    CLARIFIER_HOST / CLARIFIER_PORT / CLARIFIER_DEBUG   Flask dev server settings
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

logger = logging.getLogger(__name__)

# data/ sits next to the clarifier package
DEFAULT_REGISTRY_PATH = str(Path(__file__).resolve().parent.parent / "data" / "field_registry.json")

_TRUE_VALUES = {"1", "true", "yes", "on"}


def _int_setting(environ: Mapping[str, str], name: str, default: int) -> int:
    raw = environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")


@dataclass(frozen=True)
class ClarifierConfig:
    registry_path: str = DEFAULT_REGISTRY_PATH
    session_ttl_seconds: int = 1800
    persistence_dir: Optional[str] = None
    log_level: str = "INFO"
    host: str = "127.0.0.1"
    port: int = 5000
    debug: bool = False

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ClarifierConfig":
        """
        Build config from environment variables.

        Raises:
            ValueError: If a numeric setting is not an integer or TTL is not positive
        """
        environ = os.environ if environ is None else environ

        ttl = _int_setting(environ, "CLARIFIER_SESSION_TTL_SECONDS", 1800)
        if ttl <= 0:
            raise ValueError(f"CLARIFIER_SESSION_TTL_SECONDS must be positive, got {ttl}")

        config = cls(
            registry_path=environ.get("CLARIFIER_REGISTRY_PATH") or DEFAULT_REGISTRY_PATH,
            session_ttl_seconds=ttl,
            persistence_dir=environ.get("CLARIFIER_PERSISTENCE_DIR") or None,
            log_level=(environ.get("CLARIFIER_LOG_LEVEL") or "INFO").upper(),
            host=environ.get("CLARIFIER_HOST") or "127.0.0.1",
            port=_int_setting(environ, "CLARIFIER_PORT", 5000),
            debug=(environ.get("CLARIFIER_DEBUG") or "").strip().lower() in _TRUE_VALUES,
        )
        logger.debug(f"Loaded config: {config}")
        return config
