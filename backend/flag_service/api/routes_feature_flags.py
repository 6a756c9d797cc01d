import logging

from fastapi import APIRouter, Depends, Request, Response, status
from pydantic import ValidationError as PydanticValidationError

from flag_service.api.error_envelope import validation_details
from flag_service.api.request_params import json_body, merged_params, unwrap
from flag_service.dependencies import (
    get_evaluator,
    get_feature_flag,
    get_feature_flag_service,
    get_flag_store,
    get_override_store,
)
from flag_service.domain.errors import FeatureFlagError, ValidationError
from flag_service.domain.feature_flags.db_models import FeatureFlag
from flag_service.domain.feature_flags.evaluator import Evaluator
from flag_service.domain.feature_flags.normalization import EvaluationContext
from flag_service.domain.feature_flags.schemas import (
    EvaluationParams,
    EvaluationResponse,
    FeatureFlagParams,
    FeatureFlagResponse,
    OverrideListResponse,
)
from flag_service.domain.feature_flags.service import (
    FeatureFlagService,
    group_overrides,
    serialize_flag,
)
from flag_service.domain.feature_flags.stores import SqlFlagStore, SqlOverrideStore

router = APIRouter(prefix="/feature_flags", tags=["feature-flags"])
logger = logging.getLogger(__name__)


async def _flag_params(request: Request) -> FeatureFlagParams:
    payload = unwrap(await json_body(request), "feature_flag")
    try:
        return FeatureFlagParams.model_validate(payload)
    except PydanticValidationError as exc:
        raise ValidationError.from_messages(validation_details(exc.errors())) from None


@router.get("", response_model=list[FeatureFlagResponse])
async def list_feature_flags(flags: SqlFlagStore = Depends(get_flag_store)) -> list[dict]:
    return [serialize_flag(flag) for flag in await flags.list_all()]


@router.get("/{flag_id}", response_model=FeatureFlagResponse)
async def show_feature_flag(flag: FeatureFlag = Depends(get_feature_flag)) -> dict:
    return serialize_flag(flag)


@router.post("", response_model=FeatureFlagResponse, status_code=status.HTTP_201_CREATED)
async def create_feature_flag(
    request: Request,
    service: FeatureFlagService = Depends(get_feature_flag_service),
) -> dict:
    params = await _flag_params(request)
    result = await service.create_feature_flag(params.present())
    if not result.success:
        raise ValidationError.from_messages(result.errors)
    return serialize_flag(result.feature_flag)


@router.api_route("/{flag_id}", methods=["PATCH", "PUT"], response_model=FeatureFlagResponse)
async def update_feature_flag(
    request: Request,
    flag: FeatureFlag = Depends(get_feature_flag),
    service: FeatureFlagService = Depends(get_feature_flag_service),
) -> dict:
    params = await _flag_params(request)
    result = await service.update_feature_flag(flag, params.present())
    if not result.success:
        raise ValidationError.from_messages(result.errors)
    return serialize_flag(result.feature_flag)


@router.delete("/{flag_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_feature_flag(
    flag: FeatureFlag = Depends(get_feature_flag),
    service: FeatureFlagService = Depends(get_feature_flag_service),
) -> Response:
    result = await service.delete_feature_flag(flag)
    if not result.success:
        raise FeatureFlagError(result.errors[0])
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/{flag_id}/evaluate",
    response_model=EvaluationResponse,
    response_model_exclude_none=True,
)
async def evaluate_feature_flag(
    request: Request,
    flag: FeatureFlag = Depends(get_feature_flag),
    evaluator: Evaluator = Depends(get_evaluator),
) -> dict:
    try:
        params = EvaluationParams.model_validate(await merged_params(request))
    except PydanticValidationError as exc:
        raise ValidationError.from_messages(validation_details(exc.errors())) from None

    context = EvaluationContext.from_raw(params.user_id, params.group_id, params.region)
    if params.metadata:
        return (await evaluator.evaluate_with_metadata(flag, context)).as_payload()
    enabled = await evaluator.evaluate(flag, context)
    return {"enabled": enabled, "feature_flag_name": flag.name}


@router.get("/{flag_id}/overrides", response_model=OverrideListResponse)
async def list_feature_flag_overrides(
    flag: FeatureFlag = Depends(get_feature_flag),
    overrides: SqlOverrideStore = Depends(get_override_store),
) -> dict:
    return group_overrides(await overrides.list_for_flag(flag.id))
