"""OpenAPI customization utilities.

Adds the API key security scheme, documents the subject identity header
and tags metadata, and exempts health endpoints from auth.
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import FastAPI

from app.core.config import settings

_TAGS = [
    {
        "name": "Rate Limits",
        "description": "Check and inspect per-subject, per-action limits.",
    },
    {
        "name": "Rate Limits Admin",
        "description": "Administrative reset and idle record sweep.",
    },
    {
        "name": "Health",
        "description": "Liveness checks.",
    },
]


def apply_openapi_customizations(app: FastAPI) -> None:
    """Patch FastAPI's OpenAPI generation to add metadata and security."""

    original_openapi = app.openapi

    def custom_openapi() -> Dict[str, Any]:
        if app.openapi_schema:
            return app.openapi_schema

        schema = original_openapi()

        security_schemes = schema.setdefault("components", {}).setdefault("securitySchemes", {})
        security_schemes.setdefault(
            "ApiKeyAuth",
            {
                "type": "apiKey",
                "in": "header",
                "name": "X-API-Key",
                "description": "Backend API key.",
            },
        )
        security_schemes.setdefault(
            "SubjectId",
            {
                "type": "apiKey",
                "in": "header",
                "name": settings.app.subject_header,
                "description": "Authenticated subject being rate limited.",
            },
        )
        schema.setdefault("security", [{"ApiKeyAuth": []}])

        tags = schema.setdefault("tags", [])
        existing = {t.get("name") for t in tags}
        tags.extend(tag for tag in _TAGS if tag["name"] not in existing)

        for path, methods in schema.get("paths", {}).items():
            for method_obj in methods.values():
                if not isinstance(method_obj, dict):
                    continue
                if path.endswith("/health"):
                    method_obj["security"] = []
                elif "/rate-limits/" in path and "/admin/" not in path and not path.endswith("/actions"):
                    method_obj["security"] = [{"ApiKeyAuth": [], "SubjectId": []}]

        app.openapi_schema = schema
        return schema

    app.openapi = custom_openapi  # type: ignore[assignment]
