"""Rule chain formulation of flag evaluation.

Each rule decides whether it applies to a context and, if it does, what the
answer is. The engine walks rules in order and the first applicable rule wins.
A new scope kind is supported by inserting a rule into ``DEFAULT_RULES``.
"""

from __future__ import annotations

from typing import Protocol, Sequence

from flag_service.domain.feature_flags.db_models import FeatureFlag, FeatureFlagOverride, ScopeKind
from flag_service.domain.feature_flags.evaluator import EvaluationResult, EvaluationSource
from flag_service.domain.feature_flags.normalization import EvaluationContext
from flag_service.domain.feature_flags.stores import OverrideStore


class Rule(Protocol):
    source: EvaluationSource

    async def applicable(self, context: EvaluationContext) -> bool: ...

    async def evaluate(self, context: EvaluationContext) -> bool: ...


class OverrideRule:
    scope_kind: ScopeKind

    def __init__(self, flag: FeatureFlag, overrides: OverrideStore) -> None:
        self.flag = flag
        self.overrides = overrides
        self._lookups: dict[str, FeatureFlagOverride | None] = {}

    @property
    def source(self) -> EvaluationSource:
        return EvaluationSource(self.scope_kind.value)

    async def _lookup(self, context: EvaluationContext) -> FeatureFlagOverride | None:
        identifier = context.identifier_for(self.scope_kind)
        if identifier is None:
            return None
        if identifier not in self._lookups:
            self._lookups[identifier] = await self.overrides.find(
                self.flag.id, self.scope_kind, identifier
            )
        return self._lookups[identifier]

    async def applicable(self, context: EvaluationContext) -> bool:
        return await self._lookup(context) is not None

    async def evaluate(self, context: EvaluationContext) -> bool:
        override = await self._lookup(context)
        if override is None:
            return bool(self.flag.global_default_state)
        return bool(override.enabled)


class UserOverrideRule(OverrideRule):
    scope_kind = ScopeKind.USER


class GroupOverrideRule(OverrideRule):
    scope_kind = ScopeKind.GROUP


class RegionOverrideRule(OverrideRule):
    scope_kind = ScopeKind.REGION


class GlobalDefaultRule:
    source = EvaluationSource.GLOBAL

    def __init__(self, flag: FeatureFlag, overrides: OverrideStore | None = None) -> None:  # noqa: ARG002
        self.flag = flag

    async def applicable(self, context: EvaluationContext) -> bool:  # noqa: ARG002
        return True

    async def evaluate(self, context: EvaluationContext) -> bool:  # noqa: ARG002
        return bool(self.flag.global_default_state)


DEFAULT_RULES: tuple[type, ...] = (
    UserOverrideRule,
    GroupOverrideRule,
    RegionOverrideRule,
    GlobalDefaultRule,
)


class RuleEngine:
    def __init__(
        self,
        flag: FeatureFlag,
        context: EvaluationContext | None,
        overrides: OverrideStore,
        rules: Sequence[type] = DEFAULT_RULES,
    ) -> None:
        self.flag = flag
        self.context = context or EvaluationContext()
        self.rules: list[Rule] = [rule_class(flag, overrides) for rule_class in rules]

    async def evaluate(self) -> bool:
        return (await self.evaluate_with_metadata()).enabled

    async def evaluate_with_metadata(self) -> EvaluationResult:
        for rule in self.rules:
            if await rule.applicable(self.context):
                return EvaluationResult(
                    enabled=await rule.evaluate(self.context),
                    source=rule.source,
                    feature_flag_name=self.flag.name,
                )
        # Reached only when a custom chain omits the global default rule.
        return EvaluationResult(
            enabled=bool(self.flag.global_default_state),
            source=EvaluationSource.GLOBAL,
            feature_flag_name=self.flag.name,
        )
