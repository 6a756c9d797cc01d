import json
from typing import Any

from fastapi import Request

from flag_service.domain.errors import ValidationError


async def json_body(request: Request) -> dict[str, Any]:
    raw = await request.body()
    if not raw.strip():
        return {}
    try:
        payload = json.loads(raw)
    except ValueError:
        raise ValidationError.from_messages(["Request body must be valid JSON"]) from None
    if not isinstance(payload, dict):
        raise ValidationError.from_messages(["Request body must be a JSON object"])
    return payload


async def merged_params(request: Request) -> dict[str, Any]:
    """Body values first, then query string values for keys the body did not send."""
    params: dict[str, Any] = dict(request.query_params)
    params.update(await json_body(request))
    return params


def unwrap(payload: dict[str, Any], key: str) -> dict[str, Any]:
    wrapped = payload.get(key)
    if isinstance(wrapped, dict):
        return wrapped
    return payload
