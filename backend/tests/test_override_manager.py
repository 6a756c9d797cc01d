import pytest
import sqlalchemy as sa

from flag_service.domain.errors import ArgumentError
from flag_service.domain.feature_flags.cache import InMemoryResultCache
from flag_service.domain.feature_flags.db_models import FeatureFlagOverride, ScopeKind
from flag_service.domain.feature_flags.normalization import flag_cache_prefix
from flag_service.domain.feature_flags.overrides import OverrideManager, parse_scope_kind
from flag_service.domain.feature_flags.stores import SqlFlagStore, SqlOverrideStore
from flag_service.infra.metrics import Metrics


class NoopDeleteStore(SqlOverrideStore):
    async def delete(self, override) -> bool:  # noqa: ARG002
        return False


async def _count_overrides(session, flag_id: int) -> int:
    return await session.scalar(
        sa.select(sa.func.count()).select_from(FeatureFlagOverride).where(
            FeatureFlagOverride.feature_flag_id == flag_id
        )
    )


@pytest.mark.anyio
async def test_create_then_update_keeps_one_row_per_normalized_key(async_session_maker):
    async with async_session_maker() as session:
        flag = await SqlFlagStore(session).create(name="checkout")
        manager = OverrideManager(SqlOverrideStore(session), InMemoryResultCache())

        created = await manager.create_or_update(flag, "user", "  USER1 ", True)
        updated = await manager.create_or_update(flag, ScopeKind.USER, "user1", False)

        assert created.success is True
        assert updated.success is True
        assert updated.override.id == created.override.id
        assert updated.override.identifier == "user1"
        assert updated.override.enabled is False
        assert await _count_overrides(session, flag.id) == 1


@pytest.mark.anyio
async def test_same_identifier_in_different_kinds_are_separate_rows(async_session_maker):
    async with async_session_maker() as session:
        flag = await SqlFlagStore(session).create(name="checkout")
        manager = OverrideManager(SqlOverrideStore(session), InMemoryResultCache())

        await manager.create_or_update(flag, "user", "shared", True)
        await manager.create_or_update(flag, "group", "shared", False)

        assert await _count_overrides(session, flag.id) == 2


@pytest.mark.anyio
async def test_unsupported_scope_kind_raises_argument_error(async_session_maker):
    async with async_session_maker() as session:
        flag = await SqlFlagStore(session).create(name="checkout")
        manager = OverrideManager(SqlOverrideStore(session), InMemoryResultCache())

        with pytest.raises(ArgumentError) as excinfo:
            await manager.create_or_update(flag, "team", "t1", True)

    assert str(excinfo.value) == "Invalid override type: team. Must be one of: user, group, region"
    assert excinfo.value.status_code == 400


def test_parse_scope_kind_accepts_enum_and_value():
    assert parse_scope_kind(ScopeKind.REGION) is ScopeKind.REGION
    assert parse_scope_kind("group") is ScopeKind.GROUP
    with pytest.raises(ArgumentError):
        parse_scope_kind(None)


@pytest.mark.anyio
async def test_store_validation_failures_come_back_as_errors(async_session_maker):
    cache = InMemoryResultCache()
    async with async_session_maker() as session:
        flag = await SqlFlagStore(session).create(name="checkout")
        await cache.set(flag_cache_prefix("feature_flag_evaluation", flag.id) + "-:-:-", True, 300)
        manager = OverrideManager(SqlOverrideStore(session), cache)

        blank = await manager.create_or_update(flag, "user", "   ", True)
        too_long = await manager.create_or_update(flag, "region", "x" * 256, True)
        not_boolean = await manager.create_or_update(flag, "group", "beta", "yes")

        assert await _count_overrides(session, flag.id) == 0

    assert blank.errors == ["Identifier can't be blank"]
    assert too_long.errors == ["Identifier is too long (maximum is 255 characters)"]
    assert not_boolean.errors == ["Enabled is not included in the list"]
    assert all(result.success is False for result in (blank, too_long, not_boolean))
    # Failed mutations leave cached results alone.
    assert len(cache) == 1


@pytest.mark.anyio
async def test_remove_reports_missing_override(async_session_maker):
    metrics = Metrics(enabled=True)
    async with async_session_maker() as session:
        flag = await SqlFlagStore(session).create(name="checkout")
        manager = OverrideManager(SqlOverrideStore(session), InMemoryResultCache(), metrics=metrics)

        result = await manager.remove(flag, "user", "ghost")
        blank = await manager.remove(flag, "user", "  ")

    assert (result.success, result.errors) == (False, ["Override not found"])
    assert blank.errors == ["Override not found"]
    labels = {"action": "remove", "scope_kind": "user", "outcome": "not_found"}
    assert metrics.registry.get_sample_value("feature_flag_override_mutations_total", labels) == 2.0


@pytest.mark.anyio
async def test_remove_deletes_row_and_invalidates_flag_entries(async_session_maker):
    cache = InMemoryResultCache()
    async with async_session_maker() as session:
        flag = await SqlFlagStore(session).create(name="checkout")
        manager = OverrideManager(SqlOverrideStore(session), cache)
        await manager.create_or_update(flag, "region", "eu", True)
        await cache.set(flag_cache_prefix("feature_flag_evaluation", flag.id) + "-:-:+eu", True, 300)

        result = await manager.remove(flag, "region", " EU ")

        assert result.success is True
        assert result.errors == []
        assert await _count_overrides(session, flag.id) == 0
    assert len(cache) == 0


@pytest.mark.anyio
async def test_remove_reports_delete_that_affected_nothing(async_session_maker):
    async with async_session_maker() as session:
        flag = await SqlFlagStore(session).create(name="checkout")
        await SqlOverrideStore(session).upsert(flag.id, ScopeKind.USER, "user1", True)
        manager = OverrideManager(NoopDeleteStore(session), InMemoryResultCache())

        result = await manager.remove(flag, "user", "user1")

    assert (result.success, result.errors) == (False, ["Failed to remove override"])


@pytest.mark.anyio
async def test_invalidation_uses_configured_cache_prefix(async_session_maker):
    cache = InMemoryResultCache()
    async with async_session_maker() as session:
        flag = await SqlFlagStore(session).create(name="checkout")
        await cache.set(f"custom:{flag.id}:+u:-:-", True, 300)
        await cache.set(f"feature_flag_evaluation:{flag.id}:+u:-:-", True, 300)
        manager = OverrideManager(SqlOverrideStore(session), cache, cache_prefix="custom")

        await manager.create_or_update(flag, "user", "u", False)

    assert await cache.get(f"custom:{flag.id}:+u:-:-") is None
    assert await cache.get(f"feature_flag_evaluation:{flag.id}:+u:-:-") is True
