import pytest

from flag_service.domain.feature_flags.cache import InMemoryResultCache
from flag_service.domain.feature_flags.db_models import ScopeKind
from flag_service.domain.feature_flags.evaluator import EvaluationSource, Evaluator
from flag_service.domain.feature_flags.normalization import EvaluationContext
from flag_service.domain.feature_flags.overrides import OverrideManager
from flag_service.domain.feature_flags.stores import SqlFlagStore, SqlOverrideStore
from flag_service.infra.metrics import Metrics


class CountingOverrideStore:
    def __init__(self, inner: SqlOverrideStore) -> None:
        self.inner = inner
        self.finds = 0

    async def find(self, flag_id, scope_kind, identifier):
        self.finds += 1
        return await self.inner.find(flag_id, scope_kind, identifier)


async def _seed(session, *, default: bool = False, name: str = "checkout"):
    flag = await SqlFlagStore(session).create(name=name, global_default_state=default)
    return flag, SqlOverrideStore(session)


@pytest.mark.anyio
async def test_without_overrides_the_global_default_wins(async_session_maker):
    async with async_session_maker() as session:
        flag, overrides = await _seed(session, default=True)
        evaluator = Evaluator(overrides, InMemoryResultCache())

        result = await evaluator.evaluate_with_metadata(flag, EvaluationContext.from_raw("user1"))

    assert result.enabled is True
    assert result.source == EvaluationSource.GLOBAL
    assert result.feature_flag_name == "checkout"


@pytest.mark.anyio
async def test_user_override_beats_group_and_region(async_session_maker):
    async with async_session_maker() as session:
        flag, overrides = await _seed(session)
        await overrides.upsert(flag.id, ScopeKind.USER, "user1", True)
        await overrides.upsert(flag.id, ScopeKind.GROUP, "beta", False)
        await overrides.upsert(flag.id, ScopeKind.REGION, "us-west", False)
        evaluator = Evaluator(overrides, InMemoryResultCache())

        context = EvaluationContext.from_raw("user1", "beta", "us-west")
        result = await evaluator.evaluate_with_metadata(flag, context)
        cached = await evaluator.evaluate(flag, context)

    assert (result.enabled, result.source) == (True, EvaluationSource.USER)
    assert cached is True


@pytest.mark.anyio
async def test_group_beats_region_when_user_has_no_override(async_session_maker):
    async with async_session_maker() as session:
        flag, overrides = await _seed(session, default=True)
        await overrides.upsert(flag.id, ScopeKind.GROUP, "beta", False)
        await overrides.upsert(flag.id, ScopeKind.REGION, "us-west", True)
        evaluator = Evaluator(overrides, InMemoryResultCache())

        result = await evaluator.evaluate_with_metadata(
            flag, EvaluationContext.from_raw("nobody", "beta", "us-west")
        )

    assert (result.enabled, result.source) == (False, EvaluationSource.GROUP)


@pytest.mark.anyio
async def test_region_override_applies_when_higher_tiers_miss(async_session_maker):
    async with async_session_maker() as session:
        flag, overrides = await _seed(session)
        await overrides.upsert(flag.id, ScopeKind.REGION, "us-west", True)
        evaluator = Evaluator(overrides, InMemoryResultCache())

        result = await evaluator.evaluate_with_metadata(
            flag, EvaluationContext.from_raw(None, "gamma", "US-West ")
        )

    assert (result.enabled, result.source) == (True, EvaluationSource.REGION)


@pytest.mark.anyio
async def test_identifiers_are_matched_after_normalization(async_session_maker):
    async with async_session_maker() as session:
        flag, overrides = await _seed(session)
        await overrides.upsert(flag.id, ScopeKind.USER, "user1", True)
        evaluator = Evaluator(overrides, InMemoryResultCache())

        assert await evaluator.evaluate(flag, EvaluationContext.from_raw("  USER1  ")) is True


@pytest.mark.anyio
async def test_empty_and_blank_contexts_fall_through_to_global(async_session_maker):
    async with async_session_maker() as session:
        flag, overrides = await _seed(session, default=True)
        evaluator = Evaluator(overrides, InMemoryResultCache())

        assert await evaluator.evaluate(flag) is True
        assert await evaluator.evaluate(flag, EvaluationContext.from_raw("   ", "", None)) is True


@pytest.mark.anyio
async def test_cache_hit_skips_override_lookups(async_session_maker):
    metrics = Metrics(enabled=True)
    async with async_session_maker() as session:
        flag, overrides = await _seed(session)
        await overrides.upsert(flag.id, ScopeKind.GROUP, "beta", True)
        counting = CountingOverrideStore(overrides)
        evaluator = Evaluator(counting, InMemoryResultCache(), metrics=metrics)
        context = EvaluationContext.from_raw("user1", "beta")

        assert await evaluator.evaluate(flag, context) is True
        lookups_after_miss = counting.finds
        assert await evaluator.evaluate(flag, context) is True

    assert lookups_after_miss == 2
    assert counting.finds == lookups_after_miss
    evaluations = "feature_flag_evaluations_total"
    assert metrics.registry.get_sample_value(evaluations, {"cache": "hit", "source": "cached"}) == 1.0
    assert metrics.registry.get_sample_value(evaluations, {"cache": "miss", "source": "group"}) == 1.0


@pytest.mark.anyio
async def test_metadata_evaluation_never_touches_the_cache(async_session_maker):
    cache = InMemoryResultCache()
    async with async_session_maker() as session:
        flag, overrides = await _seed(session)
        evaluator = Evaluator(overrides, cache)

        await evaluator.evaluate_with_metadata(flag, EvaluationContext.from_raw("user1"))

    assert len(cache) == 0


@pytest.mark.anyio
async def test_cached_and_metadata_answers_diverge_until_invalidated(async_session_maker):
    """A write that bypasses the override manager leaves the cached answer stale."""
    async with async_session_maker() as session:
        flag, overrides = await _seed(session)
        evaluator = Evaluator(overrides, InMemoryResultCache())
        context = EvaluationContext.from_raw("user1")

        assert await evaluator.evaluate(flag, context) is False
        await overrides.upsert(flag.id, ScopeKind.USER, "user1", True)

        assert await evaluator.evaluate(flag, context) is False
        fresh = await evaluator.evaluate_with_metadata(flag, context)

    assert (fresh.enabled, fresh.source) == (True, EvaluationSource.USER)


@pytest.mark.anyio
async def test_override_manager_changes_are_visible_to_cached_evaluation(async_session_maker):
    cache = InMemoryResultCache()
    async with async_session_maker() as session:
        flag, overrides = await _seed(session)
        evaluator = Evaluator(overrides, cache)
        manager = OverrideManager(overrides, cache)
        context = EvaluationContext.from_raw("user1", "beta")

        assert await evaluator.evaluate(flag, context) is False
        # A group change must also refresh answers cached for user-keyed contexts.
        await manager.create_or_update(flag, ScopeKind.GROUP, "BETA", True)
        assert await evaluator.evaluate(flag, context) is True

        await manager.remove(flag, ScopeKind.GROUP, "beta")
        assert await evaluator.evaluate(flag, context) is False


@pytest.mark.anyio
async def test_invalidation_is_scoped_to_the_mutated_flag(async_session_maker):
    cache = InMemoryResultCache()
    async with async_session_maker() as session:
        first, overrides = await _seed(session, name="first")
        second, _ = await _seed(session, name="second")
        evaluator = Evaluator(overrides, cache)
        manager = OverrideManager(overrides, cache)
        context = EvaluationContext.from_raw("user1")

        await evaluator.evaluate(first, context)
        await evaluator.evaluate(second, context)
        await manager.create_or_update(first, ScopeKind.USER, "user2", True)

        assert await cache.get(evaluator.cache_key(first, context)) is None
        assert await cache.get(evaluator.cache_key(second, context)) is False
