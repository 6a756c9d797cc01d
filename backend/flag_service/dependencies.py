from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from flag_service.domain.errors import FeatureFlagNotFoundError
from flag_service.domain.feature_flags.db_models import FeatureFlag
from flag_service.domain.feature_flags.evaluator import Evaluator
from flag_service.domain.feature_flags.overrides import OverrideManager
from flag_service.domain.feature_flags.service import FeatureFlagService
from flag_service.domain.feature_flags.stores import SqlFlagStore, SqlOverrideStore
from flag_service.infra.db import get_db_session
from flag_service.services import AppServices, resolve_services


def get_services(request: Request) -> AppServices:
    services = resolve_services(request.app)
    if services is None:
        raise RuntimeError("app.state.services is not configured")
    return services


def get_flag_store(session: AsyncSession = Depends(get_db_session)) -> SqlFlagStore:
    return SqlFlagStore(session)


def get_override_store(session: AsyncSession = Depends(get_db_session)) -> SqlOverrideStore:
    return SqlOverrideStore(session)


def get_evaluator(
    overrides: SqlOverrideStore = Depends(get_override_store),
    services: AppServices = Depends(get_services),
) -> Evaluator:
    return Evaluator(
        overrides,
        services.result_cache,
        ttl_seconds=services.cache_ttl_seconds,
        cache_prefix=services.cache_key_prefix,
        metrics=services.metrics,
    )


def get_override_manager(
    overrides: SqlOverrideStore = Depends(get_override_store),
    services: AppServices = Depends(get_services),
) -> OverrideManager:
    return OverrideManager(
        overrides,
        services.result_cache,
        cache_prefix=services.cache_key_prefix,
        metrics=services.metrics,
    )


def get_feature_flag_service(
    flags: SqlFlagStore = Depends(get_flag_store),
    services: AppServices = Depends(get_services),
) -> FeatureFlagService:
    return FeatureFlagService(
        flags,
        services.result_cache,
        cache_prefix=services.cache_key_prefix,
        metrics=services.metrics,
    )


async def get_feature_flag(flag_id: str, flags: SqlFlagStore = Depends(get_flag_store)) -> FeatureFlag:
    # Path ids arrive as strings; anything that is not an integer cannot name a flag.
    try:
        parsed = int(flag_id)
    except ValueError:
        raise FeatureFlagNotFoundError(flag_id) from None
    flag = await flags.get(parsed)
    if flag is None:
        raise FeatureFlagNotFoundError(flag_id)
    return flag
