"""Caller authentication and subject identity resolution.

Two concerns live here:
- API key validation for the calling backend (X-API-Key), against a
  comma-separated list from environment variables. Admin routes accept
  a separate key list (APP_ADMIN_API_KEYS).
- Resolution of the subject being rate limited (X-Subject-ID by default).
  The limiter itself never sees a request without a resolved subject.
"""

from __future__ import annotations

import logging
from typing import Annotated, Callable

from fastapi import Header, HTTPException, Request, status

from app.core.config import settings
from app.core.errors import AuthenticationAppError
from app.utils.keys import hash_for_logging

logger = logging.getLogger(__name__)


def parse_api_keys(keys_string: str | None) -> set[str]:
    """Parse comma-separated API keys into a set.

    Examples:
        >>> sorted(parse_api_keys("key1, key2 ,key3 "))
        ['key1', 'key2', 'key3']
        >>> parse_api_keys(None)
        set()
    """
    if not keys_string:
        return set()

    return {key.strip() for key in keys_string.split(",") if key.strip()}


def _check_key(provided_key: str, keys_string: str | None, env_var: str) -> None:
    valid_keys = parse_api_keys(keys_string)

    if not valid_keys:
        logger.error(
            "auth.api_keys_not_configured",
            extra={"auth_required": settings.app.api_key_required, "setting": env_var},
        )
        raise AuthenticationAppError(
            code="api_keys_not_configured",
            message="API key authentication is enabled but no valid keys are configured",
            details={"hint": f"Set {env_var} or disable auth with APP_API_KEY_REQUIRED=false"},
        )

    if provided_key not in valid_keys:
        logger.warning(
            "auth.invalid_key",
            extra={"api_key_hash": hash_for_logging(provided_key), "setting": env_var},
        )
        raise AuthenticationAppError(
            code="invalid_api_key",
            message="Invalid or missing API key",
        )


def validate_api_key(provided_key: str) -> None:
    """Validate that provided API key matches configured keys.

    Pure validation logic without FastAPI dependencies for easy testing.

    Raises:
        AuthenticationAppError: If key is invalid or authentication is required but no keys configured.
    """
    if not settings.app.api_key_required:
        return

    _check_key(provided_key, settings.app.api_keys, "APP_API_KEYS")


def validate_admin_api_key(provided_key: str) -> None:
    """Validate an administrative key against APP_ADMIN_API_KEYS only.

    Client keys never grant access to admin operations.
    """
    if not settings.app.api_key_required:
        return

    _check_key(provided_key, settings.app.admin_api_keys, "APP_ADMIN_API_KEYS")


def _require_key(x_api_key: str | None, validator: Callable[[str], None]) -> None:
    if not settings.app.api_key_required:
        return

    if not x_api_key:
        logger.warning("auth.missing_key", extra={"api_key_present": False})
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Missing API key. Provide X-API-Key header.",
        )

    try:
        validator(x_api_key)
    except AuthenticationAppError as exc:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=exc.message,
        ) from exc


async def verify_api_key(
    x_api_key: Annotated[str | None, Header(alias="X-API-Key")] = None,
) -> None:
    """FastAPI dependency for API key authentication.

    Raises:
        HTTPException: 403 Forbidden if authentication fails.
    """
    _require_key(x_api_key, validate_api_key)


async def verify_admin_api_key(
    x_api_key: Annotated[str | None, Header(alias="X-API-Key")] = None,
) -> None:
    """FastAPI dependency guarding the admin routes with an admin key.

    Raises:
        HTTPException: 403 Forbidden if authentication fails.
    """
    _require_key(x_api_key, validate_admin_api_key)


def resolve_subject(request: Request) -> str:
    """FastAPI dependency returning the subject identifier of the caller.

    The header name is configurable (APP_SUBJECT_HEADER) so the service can
    sit behind gateways that forward identity under a different name.

    Raises:
        AuthenticationAppError: If the header is missing or blank.
    """
    header_name = settings.app.subject_header
    subject_id = (request.headers.get(header_name) or "").strip()
    if not subject_id:
        logger.warning("auth.missing_subject", extra={"header": header_name})
        raise AuthenticationAppError(
            code="missing_subject",
            message=f"Unauthenticated: provide the {header_name} header",
        )
    return subject_id
