"""OpenAPI metadata and customization utilities.

Enriches the generated OpenAPI schema with:
- Tags metadata
- The rate limit response headers (``RateLimit-*``, ``Retry-After``) as
  reusable components, referenced from every throttled operation

This keeps documentation concerns decoupled from the app factory.
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import FastAPI

_RATE_LIMIT_HEADERS: Dict[str, Dict[str, Any]] = {
    "RateLimit-Limit": {
        "description": "Requests allowed per window for this route class.",
        "schema": {"type": "integer"},
    },
    "RateLimit-Remaining": {
        "description": "Requests left in the current window.",
        "schema": {"type": "integer"},
    },
    "RateLimit-Reset": {
        "description": "Seconds until the current window resets.",
        "schema": {"type": "integer"},
    },
    "Retry-After": {
        "description": "Seconds to wait before retrying (429 only).",
        "schema": {"type": "integer"},
    },
}


def apply_openapi_customizations(app: FastAPI) -> None:
    """Patch FastAPI's OpenAPI generation to document rate limiting.

    - Registers the rate limit headers under components.headers
    - Attaches them to every operation that declares a 429 response (the
      operations guarded by a rate limit policy)
    - Adds tags metadata if not present
    """

    original_openapi = app.openapi

    def custom_openapi() -> Dict[str, Any]:
        if app.openapi_schema:
            return app.openapi_schema

        schema = original_openapi()

        components = schema.setdefault("components", {})
        header_components = components.setdefault("headers", {})
        for name, definition in _RATE_LIMIT_HEADERS.items():
            header_components.setdefault(name, definition)

        header_refs = {
            name: {"$ref": f"#/components/headers/{name}"} for name in _RATE_LIMIT_HEADERS
        }
        for methods in schema.get("paths", {}).values():
            for method_obj in methods.values():
                if not isinstance(method_obj, dict):
                    continue
                responses = method_obj.get("responses", {})
                if "429" not in responses:
                    continue
                for status_code, response in responses.items():
                    if status_code.startswith("2") or status_code == "429":
                        response.setdefault("headers", {}).update(header_refs)

        tags = schema.setdefault("tags", [])
        existing_tag_names = {t.get("name") for t in tags}
        desired_tags = [
            {
                "name": "Rate limits",
                "description": "Caller usage against each route-class rate limit policy.",
            },
            {
                "name": "Health",
                "description": "Liveness and readiness checks.",
            },
        ]
        for tag in desired_tags:
            if tag["name"] not in existing_tag_names:
                tags.append(tag)

        app.openapi_schema = schema
        return schema

    app.openapi = custom_openapi  # type: ignore[assignment]
