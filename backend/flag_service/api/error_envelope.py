import uuid
from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse

from flag_service.domain.errors import ApplicationError, error_payload

ERROR_TYPE_NOT_FOUND = "not_found"
ERROR_TYPE_VALIDATION = "validation_error"
ERROR_TYPE_HTTP = "http_error"
ERROR_TYPE_INTERNAL = "internal_error"


def _resolve_request_id(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None) or request.headers.get("X-Request-ID")
    if not request_id:
        request_id = str(uuid.uuid4())
    request.state.request_id = request_id
    return request_id


def error_response(
    request: Request,
    *,
    status: int,
    type_: str,
    message: str,
    details: list[str] | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    """Render ``{"error": {"type", "message", "details"?}}`` with the request id header."""
    request_id = _resolve_request_id(request)
    response = JSONResponse(
        status_code=status,
        content=error_payload(type_, message, details),
        headers=headers,
    )
    response.headers.setdefault("X-Request-ID", request_id)
    return response


def application_error_response(request: Request, exc: ApplicationError) -> JSONResponse:
    request_id = _resolve_request_id(request)
    response = JSONResponse(status_code=exc.status_code, content=exc.as_payload())
    response.headers.setdefault("X-Request-ID", request_id)
    return response


def validation_details(errors: list[dict[str, Any]]) -> list[str]:
    details = []
    for error in errors:
        loc = error.get("loc", [])
        field = ".".join(str(part) for part in loc if part not in {"body", "query", "path"}) or "body"
        details.append(f"{field}: {error.get('msg', 'Invalid value')}")
    return details
