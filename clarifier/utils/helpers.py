"""
Utility helpers for the clarification service

Simple utility functions for ID and timestamp generation.
"""

import uuid
from datetime import datetime, timezone


def generate_session_id(short=True):
    """
    Generate unique clarification session identifier

    Args:
        short (bool): If True, return 12-char hex. If False, return full UUID.

    Returns:
        str: Session ID

    Examples:
        >>> generate_session_id()
        'a3f7e2b9c1d2'

        >>> generate_session_id(short=False)
        'a3f7e2b9c1d2e3f4a5b6c7d8e9f0a1b2'
    """
    full_id = uuid.uuid4().hex
    return full_id[:12] if short else full_id


def utc_now_iso():
    """
    Current UTC time as ISO 8601 string

    Examples:
        >>> utc_now_iso()
        '2025-11-26T15:30:45.123456+00:00'
    """
    return datetime.now(timezone.utc).isoformat()
