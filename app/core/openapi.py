"""OpenAPI schema customization.

The generated schema is enriched from what each operation already declares:
- operations taking the ``X-API-Key`` header (routes depending on
  ``verify_api_key``) require the API key security scheme, all others are
  marked public;
- operations declaring a 429 response (``RATE_LIMITED_RESPONSES``) get the
  RateLimit-* headers documented on their responses and Retry-After on 429.
"""

from __future__ import annotations

from typing import Any, Dict

from fastapi import FastAPI

_SECURITY_SCHEME = "ApiKeyAuth"
_API_KEY_HEADER = "x-api-key"

_TAGS = [
    {"name": "Cache", "description": "Cache inspection, flushing and cached statistics."},
    {"name": "Health", "description": "Liveness and store reachability."},
]

_RATE_LIMIT_HEADERS = {
    "RateLimit-Limit": {"description": "Requests allowed in the window.", "schema": {"type": "integer"}},
    "RateLimit-Remaining": {"description": "Requests left in the window.", "schema": {"type": "integer"}},
    "RateLimit-Reset": {"description": "ISO-8601 time the window ends.", "schema": {"type": "string"}},
}

_RETRY_AFTER_HEADER = {
    "Retry-After": {"description": "Seconds until the window resets.", "schema": {"type": "integer"}},
}


def _takes_api_key(operation: Dict[str, Any]) -> bool:
    return any(
        param.get("in") == "header" and str(param.get("name", "")).lower() == _API_KEY_HEADER
        for param in operation.get("parameters", [])
    )


def _document_rate_limit(operation: Dict[str, Any]) -> None:
    for status, response in operation.get("responses", {}).items():
        headers = response.setdefault("headers", {})
        headers.update(_RATE_LIMIT_HEADERS)
        if status == "429":
            headers.update(_RETRY_AFTER_HEADER)


def apply_openapi_customizations(app: FastAPI) -> None:
    """Patch FastAPI's OpenAPI generation to add security and rate limit docs."""

    original_openapi = app.openapi

    def custom_openapi() -> Dict[str, Any]:
        if app.openapi_schema:
            return app.openapi_schema

        schema = original_openapi()

        components = schema.setdefault("components", {})
        components.setdefault("securitySchemes", {})[_SECURITY_SCHEME] = {
            "type": "apiKey",
            "in": "header",
            "name": "X-API-Key",
            "description": "Provide your API key via the X-API-Key header.",
        }

        tag_names = {tag.get("name") for tag in schema.setdefault("tags", [])}
        schema["tags"].extend(tag for tag in _TAGS if tag["name"] not in tag_names)

        for methods in schema.get("paths", {}).values():
            for operation in methods.values():
                if not isinstance(operation, dict):
                    continue
                operation["security"] = [{_SECURITY_SCHEME: []}] if _takes_api_key(operation) else []
                if "429" in operation.get("responses", {}):
                    _document_rate_limit(operation)

        app.openapi_schema = schema
        return schema

    app.openapi = custom_openapi  # type: ignore[assignment]
