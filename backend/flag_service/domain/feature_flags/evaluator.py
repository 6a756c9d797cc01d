"""Resolve whether a flag is enabled for an evaluation context.

Precedence, highest first: user override, group override, region override,
then the flag's global default.

``evaluate`` is served from the result cache when possible.
``evaluate_with_metadata`` always resolves against the override store and
never touches the cache, because the cached value carries no source. After an
override change the two may disagree until the cached entry expires or is
invalidated; callers that need the source of truth should use the metadata
variant.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any

from flag_service.domain.feature_flags.cache import DEFAULT_TTL_SECONDS, ResultCache
from flag_service.domain.feature_flags.db_models import FeatureFlag, ScopeKind
from flag_service.domain.feature_flags.normalization import EvaluationContext, fingerprint
from flag_service.domain.feature_flags.stores import OverrideStore
from flag_service.infra.metrics import Metrics

logger = logging.getLogger(__name__)

CACHE_PREFIX = "feature_flag_evaluation"
PRECEDENCE: tuple[ScopeKind, ...] = (ScopeKind.USER, ScopeKind.GROUP, ScopeKind.REGION)


class EvaluationSource(str, Enum):
    USER = "user"
    GROUP = "group"
    REGION = "region"
    GLOBAL = "global"


@dataclass(frozen=True)
class EvaluationResult:
    enabled: bool
    source: EvaluationSource
    feature_flag_name: str

    def as_payload(self) -> dict[str, Any]:
        return {
            "enabled": self.enabled,
            "source": self.source.value,
            "feature_flag_name": self.feature_flag_name,
        }


class Evaluator:
    def __init__(
        self,
        overrides: OverrideStore,
        cache: ResultCache,
        *,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        cache_prefix: str = CACHE_PREFIX,
        metrics: Metrics | None = None,
    ) -> None:
        self.overrides = overrides
        self.cache = cache
        self.ttl_seconds = ttl_seconds
        self.cache_prefix = cache_prefix
        self.metrics = metrics

    def cache_key(self, flag: FeatureFlag, context: EvaluationContext) -> str:
        return fingerprint(self.cache_prefix, flag.id, context)

    async def evaluate(self, flag: FeatureFlag, context: EvaluationContext | None = None) -> bool:
        context = context or EvaluationContext()
        key = self.cache_key(flag, context)
        cached = await self.cache.get(key)
        if cached is not None:
            self._record("hit", "cached")
            return cached

        result = await self._resolve(flag, context)
        await self.cache.set(key, result.enabled, self.ttl_seconds)
        self._record("miss", result.source.value)
        return result.enabled

    async def evaluate_with_metadata(
        self, flag: FeatureFlag, context: EvaluationContext | None = None
    ) -> EvaluationResult:
        result = await self._resolve(flag, context or EvaluationContext())
        self._record("bypass", result.source.value)
        return result

    async def _resolve(self, flag: FeatureFlag, context: EvaluationContext) -> EvaluationResult:
        for scope_kind in PRECEDENCE:
            identifier = context.identifier_for(scope_kind)
            if identifier is None:
                continue
            override = await self.overrides.find(flag.id, scope_kind, identifier)
            if override is not None:
                return EvaluationResult(
                    enabled=bool(override.enabled),
                    source=EvaluationSource(scope_kind.value),
                    feature_flag_name=flag.name,
                )
        return EvaluationResult(
            enabled=bool(flag.global_default_state),
            source=EvaluationSource.GLOBAL,
            feature_flag_name=flag.name,
        )

    def _record(self, cache: str, source: str) -> None:
        if self.metrics is not None:
            self.metrics.record_evaluation(cache, source)
