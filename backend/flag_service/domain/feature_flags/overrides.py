from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from flag_service.domain.errors import ArgumentError
from flag_service.domain.feature_flags.cache import ResultCache
from flag_service.domain.feature_flags.db_models import FeatureFlag, FeatureFlagOverride, ScopeKind
from flag_service.domain.feature_flags.evaluator import CACHE_PREFIX
from flag_service.domain.feature_flags.normalization import flag_cache_prefix, normalize_identifier
from flag_service.domain.feature_flags.stores import OverrideStore, StoreValidationError
from flag_service.infra.metrics import Metrics

logger = logging.getLogger(__name__)

OVERRIDE_NOT_FOUND = "Override not found"
REMOVE_FAILED = "Failed to remove override"
SCOPE_KIND_VALUES = tuple(kind.value for kind in ScopeKind)


@dataclass
class OverrideResult:
    success: bool
    override: FeatureFlagOverride | None = None
    errors: list[str] = field(default_factory=list)


def parse_scope_kind(value: Any) -> ScopeKind:
    if isinstance(value, ScopeKind):
        return value
    try:
        return ScopeKind(str(value))
    except ValueError as exc:
        raise ArgumentError(
            f"Invalid override type: {value}. Must be one of: {', '.join(SCOPE_KIND_VALUES)}"
        ) from exc


async def invalidate_flag_cache(
    cache: ResultCache,
    flag_id: int,
    *,
    reason: str,
    cache_prefix: str = CACHE_PREFIX,
    metrics: Metrics | None = None,
) -> int:
    removed = await cache.delete_prefix(flag_cache_prefix(cache_prefix, flag_id))
    logger.info(
        "evaluation_cache_invalidated",
        extra={"extra": {"flag_id": flag_id, "reason": reason, "removed": removed}},
    )
    if metrics is not None:
        metrics.record_cache_invalidation(reason)
    return removed


class OverrideManager:
    """Applies override mutations and keeps the result cache consistent with them.

    Business failures come back as an ``OverrideResult`` with ``errors``; only an
    unsupported scope kind raises, since that is malformed caller input.
    """

    def __init__(
        self,
        overrides: OverrideStore,
        cache: ResultCache,
        *,
        cache_prefix: str = CACHE_PREFIX,
        metrics: Metrics | None = None,
    ) -> None:
        self.overrides = overrides
        self.cache = cache
        self.cache_prefix = cache_prefix
        self.metrics = metrics

    async def create_or_update(
        self, flag: FeatureFlag, scope_kind: Any, identifier: Any, enabled: Any
    ) -> OverrideResult:
        kind = parse_scope_kind(scope_kind)
        flag_id = flag.id
        normalized = normalize_identifier(identifier) or ""
        try:
            override = await self.overrides.upsert(flag_id, kind, normalized, enabled)
        except StoreValidationError as exc:
            self._record("upsert", kind, "invalid")
            return OverrideResult(success=False, errors=exc.messages)

        await self._invalidate(flag_id, "override_upserted")
        logger.info(
            "override_upserted",
            extra={
                "extra": {
                    "flag_id": flag_id,
                    "scope_kind": kind.value,
                    "override_id": override.id,
                    "enabled": override.enabled,
                }
            },
        )
        self._record("upsert", kind, "success")
        return OverrideResult(success=True, override=override)

    async def remove(self, flag: FeatureFlag, scope_kind: Any, identifier: Any) -> OverrideResult:
        kind = parse_scope_kind(scope_kind)
        normalized = normalize_identifier(identifier)
        override = None
        if normalized is not None:
            override = await self.overrides.find(flag.id, kind, normalized)
        if override is None:
            self._record("remove", kind, "not_found")
            return OverrideResult(success=False, errors=[OVERRIDE_NOT_FOUND])

        if not await self.overrides.delete(override):
            self._record("remove", kind, "failed")
            return OverrideResult(success=False, errors=[REMOVE_FAILED])

        await self._invalidate(flag.id, "override_removed")
        logger.info(
            "override_removed",
            extra={"extra": {"flag_id": flag.id, "scope_kind": kind.value}},
        )
        self._record("remove", kind, "success")
        return OverrideResult(success=True)

    async def _invalidate(self, flag_id: int, reason: str) -> None:
        await invalidate_flag_cache(
            self.cache,
            flag_id,
            reason=reason,
            cache_prefix=self.cache_prefix,
            metrics=self.metrics,
        )

    def _record(self, action: str, kind: ScopeKind, outcome: str) -> None:
        if self.metrics is not None:
            self.metrics.record_override_mutation(action, kind.value, outcome)
