import logging
from typing import Any

from fastapi import APIRouter, Depends, Request, Response, status
from pydantic import ValidationError as PydanticValidationError

from flag_service.api.request_params import merged_params
from flag_service.dependencies import get_feature_flag, get_override_manager
from flag_service.domain.errors import ArgumentError, ValidationError
from flag_service.domain.feature_flags.db_models import FeatureFlag, ScopeKind
from flag_service.domain.feature_flags.overrides import SCOPE_KIND_VALUES, OverrideManager
from flag_service.domain.feature_flags.schemas import OverrideParams, OverrideResponse
from flag_service.domain.feature_flags.service import serialize_override

router = APIRouter(prefix="/feature_flags/{flag_id}/overrides", tags=["feature-flag-overrides"])
logger = logging.getLogger(__name__)

_FIELD_MESSAGES = {
    "type": f"Type must be one of: {', '.join(SCOPE_KIND_VALUES)}",
    "identifier": "Identifier is required",
    "enabled": "Enabled must be true or false",
}


def _parse_override_params(raw: dict[str, Any], *, require_enabled: bool) -> OverrideParams:
    try:
        params = OverrideParams.model_validate(raw)
    except PydanticValidationError as exc:
        field = str(exc.errors()[0].get("loc", ("",))[0])
        raise ArgumentError(_FIELD_MESSAGES.get(field, "Invalid override parameters")) from None

    if params.type not in SCOPE_KIND_VALUES:
        raise ArgumentError(_FIELD_MESSAGES["type"])
    if params.identifier is None or not str(params.identifier).strip():
        raise ArgumentError(_FIELD_MESSAGES["identifier"])
    if require_enabled and params.enabled is None:
        raise ArgumentError("Enabled is required")
    return params


@router.post("", response_model=OverrideResponse, status_code=status.HTTP_201_CREATED)
async def create_override(
    request: Request,
    flag: FeatureFlag = Depends(get_feature_flag),
    manager: OverrideManager = Depends(get_override_manager),
) -> dict:
    params = _parse_override_params(await merged_params(request), require_enabled=True)
    result = await manager.create_or_update(
        flag, ScopeKind(params.type), params.identifier, params.enabled
    )
    if not result.success:
        raise ValidationError.from_messages(result.errors)
    return serialize_override(result.override)


@router.delete("", status_code=status.HTTP_204_NO_CONTENT)
async def delete_override(
    request: Request,
    flag: FeatureFlag = Depends(get_feature_flag),
    manager: OverrideManager = Depends(get_override_manager),
) -> Response:
    params = _parse_override_params(await merged_params(request), require_enabled=False)
    result = await manager.remove(flag, ScopeKind(params.type), params.identifier)
    if not result.success:
        raise ValidationError.from_messages(result.errors)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
