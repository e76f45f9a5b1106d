from __future__ import annotations

from typing import Any

from elementhooks.core.exceptions import (
    NotFoundError,
    PermissionDeniedError,
    RemoteError,
    TransportError,
    ValidationError,
)

SINGLE_ROW_NOT_FOUND = "PGRST116"


def parse_content_range(header: str | None) -> int | None:
    """Reads the total from a PostgREST ``Content-Range`` header (``0-49/120``)."""

    if not header or "/" not in header:
        return None
    total = header.rsplit("/", 1)[1].strip()
    if not total.isdigit():
        return None
    return int(total)


def error_from_response(status_code: int, payload: Any) -> RemoteError:
    details = payload if isinstance(payload, dict) else {"message": str(payload or "")}
    message = details.get("message") or details.get("msg") or f"Request failed with status {status_code}"
    code = details.get("code")
    if status_code in (401, 403):
        return PermissionDeniedError(message, status_code=status_code, details=details)
    if status_code == 404 or code == SINGLE_ROW_NOT_FOUND:
        return NotFoundError(message, status_code=status_code, details=details)
    if status_code in (400, 409, 422):
        return ValidationError(message, status_code=status_code, details=details)
    if status_code in (408, 429) or status_code >= 500:
        return TransportError(message, status_code=status_code, details=details)
    return RemoteError(message, status_code=status_code, details=details)


def render_filter(operator: str, value: Any) -> str:
    if operator == "in":
        return f"in.({','.join(_render_value(item) for item in value)})"
    if operator == "or":
        return f"({value})"
    return f"{operator}.{_render_value(value)}"


def _render_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "null"
    return str(value)
