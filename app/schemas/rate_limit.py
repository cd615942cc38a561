"""Pydantic schemas for rate limit requests and responses.

Responses are serialized with camelCase names (``resetAt``) to match the
contract consumed by client apps.
"""

from __future__ import annotations

from typing import List

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CheckRequest(_CamelModel):
    """Body for a rate limit check."""

    action: str = Field(..., min_length=1, description="Action name from the catalog.")


class CheckResponse(_CamelModel):
    """Admission decision for one check."""

    allowed: bool = Field(..., description="Whether the action may proceed.")
    remaining: int = Field(..., description="Admissions left in the current window.")
    reset_at: int = Field(
        ..., description="Epoch milliseconds when a slot frees up or this admission expires."
    )
    degraded: bool = Field(
        False,
        description="True when admitted without enforcement because the store failed.",
    )
    reason: str | None = Field(
        default=None, description="Failure code behind a degraded admission."
    )
    retry_after_seconds: int | None = Field(
        default=None, description="Suggested wait in seconds when denied."
    )


class StatusResponse(_CamelModel):
    """Current usage for a subject and action."""

    used: int
    limit: int
    remaining: int
    reset_at: int
    degraded: bool = False


class SweepResponse(_CamelModel):
    """Outcome of an expiry sweep."""

    deleted: int = Field(..., description="Records deleted in committed pages.")
    pages_scanned: int
    pages_failed: int


class ActionLimit(_CamelModel):
    name: str
    limit: int
    window_seconds: int


class ActionCatalogResponse(_CamelModel):
    actions: List[ActionLimit] = Field(default_factory=list)
