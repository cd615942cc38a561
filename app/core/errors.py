"""Application-level exception types.

This module defines domain errors used across services/adapters, enabling
consistent error handling, logging, and API responses.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, NotRequired, TypedDict


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients.

    Fields are optional to keep shapes consistent without forcing every
    raise site to fill all of them.
    """

    hint: str
    field: str
    action: str
    known_actions: list[str]
    attempts: int
    pages_failed: int
    context: NotRequired[dict[str, Any]]


@dataclass
class AppError(Exception):
    """Base error for application/domain failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


class ValidationAppError(AppError):
    """Raised when request input validation fails."""


class ConfigAppError(AppError):
    """Raised when an action name is unknown or the action catalog is invalid."""


class AuthenticationAppError(AppError):
    """Raised when the caller identity is missing or invalid."""


class StoreAppError(AppError):
    """Raised when the rate limit store cannot complete an operation.

    Covers unavailable backends, timeouts and exhausted transaction retries.
    """


class SweepAppError(AppError):
    """Raised when every attempted page of an expiry sweep failed."""
