from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping

from flag_service.domain.feature_flags.cache import ResultCache
from flag_service.domain.feature_flags.db_models import FeatureFlag, FeatureFlagOverride, ScopeKind
from flag_service.domain.feature_flags.evaluator import CACHE_PREFIX
from flag_service.domain.feature_flags.overrides import invalidate_flag_cache
from flag_service.domain.feature_flags.stores import FlagStore, StoreValidationError, UPDATABLE_FLAG_FIELDS
from flag_service.infra.metrics import Metrics

logger = logging.getLogger(__name__)


@dataclass
class FlagResult:
    success: bool
    feature_flag: FeatureFlag | None = None
    errors: list[str] = field(default_factory=list)


def serialize_flag(flag: FeatureFlag) -> dict[str, Any]:
    return {
        "id": flag.id,
        "name": flag.name,
        "global_default_state": flag.global_default_state,
        "description": flag.description,
        "created_at": flag.created_at,
        "updated_at": flag.updated_at,
    }


def serialize_override(override: FeatureFlagOverride) -> dict[str, Any]:
    return {
        "id": override.id,
        "feature_flag_id": override.feature_flag_id,
        "type": override.scope_kind,
        "identifier": override.identifier,
        "enabled": override.enabled,
        "created_at": override.created_at,
        "updated_at": override.updated_at,
    }


def group_overrides(overrides: list[FeatureFlagOverride]) -> dict[str, list[dict[str, Any]]]:
    grouped: dict[str, list[dict[str, Any]]] = {f"{kind.value}_overrides": [] for kind in ScopeKind}
    for override in overrides:
        grouped[f"{override.scope_kind}_overrides"].append(serialize_override(override))
    return grouped


class FeatureFlagService:
    """Flag definition create/update/delete.

    Updates and deletes drop the flag's cached evaluation results so a changed
    global default is visible to cached evaluation right away.
    """

    def __init__(
        self,
        flags: FlagStore,
        cache: ResultCache,
        *,
        cache_prefix: str = CACHE_PREFIX,
        metrics: Metrics | None = None,
    ) -> None:
        self.flags = flags
        self.cache = cache
        self.cache_prefix = cache_prefix
        self.metrics = metrics

    async def create_feature_flag(self, params: Mapping[str, Any]) -> FlagResult:
        try:
            flag = await self.flags.create(
                name=params.get("name"),
                global_default_state=params.get("global_default_state", False),
                description=params.get("description"),
            )
        except StoreValidationError as exc:
            return FlagResult(success=False, errors=exc.messages)
        logger.info("feature_flag_created", extra={"extra": {"flag_id": flag.id}})
        return FlagResult(success=True, feature_flag=flag)

    async def update_feature_flag(self, flag: FeatureFlag, params: Mapping[str, Any]) -> FlagResult:
        changes = {key: params[key] for key in UPDATABLE_FLAG_FIELDS if key in params}
        try:
            flag = await self.flags.update(flag, changes)
        except StoreValidationError as exc:
            return FlagResult(success=False, errors=exc.messages)
        await self._invalidate(flag.id, "feature_flag_updated")
        logger.info(
            "feature_flag_updated",
            extra={"extra": {"flag_id": flag.id, "fields": sorted(changes)}},
        )
        return FlagResult(success=True, feature_flag=flag)

    async def delete_feature_flag(self, flag: FeatureFlag) -> FlagResult:
        flag_id = flag.id
        if not await self.flags.delete(flag):
            return FlagResult(success=False, errors=["Failed to delete feature flag"])
        await self._invalidate(flag_id, "feature_flag_deleted")
        logger.info("feature_flag_deleted", extra={"extra": {"flag_id": flag_id}})
        return FlagResult(success=True)

    async def _invalidate(self, flag_id: int, reason: str) -> None:
        await invalidate_flag_cache(
            self.cache,
            flag_id,
            reason=reason,
            cache_prefix=self.cache_prefix,
            metrics=self.metrics,
        )
