"""Record key construction and log-safe key hashing."""

from __future__ import annotations

import hashlib


def build_record_key(subject_id: str, action: str) -> str:
    """Build the store key for a (subject, action) pair.

    Examples:
        >>> build_record_key("user-1", "messages")
        'user-1:messages'
    """

    return f"{subject_id}:{action}"


def hash_for_logging(value: str) -> str:
    """Hash an identifier for logging without exposing it."""

    return hashlib.sha256(value.encode()).hexdigest()[:16]
