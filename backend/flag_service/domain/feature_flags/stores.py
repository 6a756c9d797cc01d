from __future__ import annotations

import logging
from typing import Any, Mapping, Protocol

import sqlalchemy as sa
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from flag_service.domain.feature_flags.db_models import (
    IDENTIFIER_MAX_LENGTH,
    NAME_MAX_LENGTH,
    FeatureFlag,
    FeatureFlagOverride,
    ScopeKind,
)
from flag_service.domain.feature_flags.normalization import normalize_flag_name

logger = logging.getLogger(__name__)

UPDATABLE_FLAG_FIELDS = ("name", "global_default_state", "description")


class StoreValidationError(Exception):
    """Field-level validation failure raised by a store before or while persisting."""

    def __init__(self, messages: list[str]) -> None:
        super().__init__(", ".join(messages))
        self.messages = list(messages)


class FlagStore(Protocol):
    async def list_all(self) -> list[FeatureFlag]: ...

    async def get(self, flag_id: int) -> FeatureFlag | None: ...

    async def create(
        self, *, name: Any, global_default_state: Any = False, description: Any = None
    ) -> FeatureFlag: ...

    async def update(self, flag: FeatureFlag, changes: Mapping[str, Any]) -> FeatureFlag: ...

    async def delete(self, flag: FeatureFlag) -> bool: ...


class OverrideStore(Protocol):
    async def find(
        self, flag_id: int, scope_kind: ScopeKind, identifier: str
    ) -> FeatureFlagOverride | None: ...

    async def list_for_flag(self, flag_id: int) -> list[FeatureFlagOverride]: ...

    async def upsert(
        self, flag_id: int, scope_kind: ScopeKind, identifier: str, enabled: Any
    ) -> FeatureFlagOverride: ...

    async def delete(self, override: FeatureFlagOverride) -> bool: ...


def _validate_boolean(value: Any, label: str) -> list[str]:
    if not isinstance(value, bool):
        return [f"{label} is not included in the list"]
    return []


class SqlFlagStore:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def list_all(self) -> list[FeatureFlag]:
        result = await self._session.execute(select(FeatureFlag).order_by(FeatureFlag.name.asc()))
        return list(result.scalars().all())

    async def get(self, flag_id: int) -> FeatureFlag | None:
        return await self._session.get(FeatureFlag, flag_id)

    async def find_by_name(self, name: str) -> FeatureFlag | None:
        normalized = normalize_flag_name(name)
        if normalized is None:
            return None
        return await self._session.scalar(
            select(FeatureFlag).where(sa.func.lower(FeatureFlag.name) == normalized)
        )

    async def _validate(self, flag: FeatureFlag, *, exclude_id: int | None = None) -> None:
        errors: list[str] = []
        if not flag.name:
            errors.append("Name can't be blank")
        elif len(flag.name) > NAME_MAX_LENGTH:
            errors.append(f"Name is too long (maximum is {NAME_MAX_LENGTH} characters)")
        else:
            existing = await self.find_by_name(flag.name)
            if existing is not None and existing.id != exclude_id:
                errors.append("Name has already been taken")
        errors.extend(_validate_boolean(flag.global_default_state, "Global default state"))
        if flag.description is not None and not isinstance(flag.description, str):
            errors.append("Description must be text")
        if errors:
            raise StoreValidationError(errors)

    async def _commit_or_translate(self) -> None:
        try:
            await self._session.commit()
        except IntegrityError as exc:
            await self._session.rollback()
            logger.info("feature_flag_name_conflict", extra={"extra": {"error": type(exc).__name__}})
            raise StoreValidationError(["Name has already been taken"]) from exc

    async def create(
        self, *, name: Any, global_default_state: Any = False, description: Any = None
    ) -> FeatureFlag:
        flag = FeatureFlag(
            name=normalize_flag_name(name),
            global_default_state=global_default_state,
            description=description,
        )
        await self._validate(flag)
        self._session.add(flag)
        await self._commit_or_translate()
        return flag

    async def update(self, flag: FeatureFlag, changes: Mapping[str, Any]) -> FeatureFlag:
        snapshot = {field: getattr(flag, field) for field in UPDATABLE_FLAG_FIELDS}
        for field in UPDATABLE_FLAG_FIELDS:
            if field not in changes:
                continue
            value = changes[field]
            setattr(flag, field, normalize_flag_name(value) if field == "name" else value)
        try:
            with self._session.no_autoflush:
                await self._validate(flag, exclude_id=flag.id)
        except StoreValidationError:
            for field, value in snapshot.items():
                setattr(flag, field, value)
            raise
        await self._commit_or_translate()
        return flag

    async def delete(self, flag: FeatureFlag) -> bool:
        await self._session.execute(
            sa.delete(FeatureFlagOverride).where(FeatureFlagOverride.feature_flag_id == flag.id)
        )
        result = await self._session.execute(sa.delete(FeatureFlag).where(FeatureFlag.id == flag.id))
        await self._session.commit()
        return bool(result.rowcount)


class SqlOverrideStore:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def find(
        self, flag_id: int, scope_kind: ScopeKind, identifier: str
    ) -> FeatureFlagOverride | None:
        return await self._session.scalar(
            select(FeatureFlagOverride).where(
                FeatureFlagOverride.feature_flag_id == flag_id,
                FeatureFlagOverride.scope_kind == scope_kind.value,
                FeatureFlagOverride.identifier == identifier,
            )
        )

    async def list_for_flag(self, flag_id: int) -> list[FeatureFlagOverride]:
        result = await self._session.execute(
            select(FeatureFlagOverride)
            .where(FeatureFlagOverride.feature_flag_id == flag_id)
            .order_by(FeatureFlagOverride.id.asc())
        )
        return list(result.scalars().all())

    @staticmethod
    def _validate(identifier: str, enabled: Any) -> None:
        errors: list[str] = []
        if not identifier:
            errors.append("Identifier can't be blank")
        elif len(identifier) > IDENTIFIER_MAX_LENGTH:
            errors.append(f"Identifier is too long (maximum is {IDENTIFIER_MAX_LENGTH} characters)")
        errors.extend(_validate_boolean(enabled, "Enabled"))
        if errors:
            raise StoreValidationError(errors)

    async def upsert(
        self, flag_id: int, scope_kind: ScopeKind, identifier: str, enabled: Any
    ) -> FeatureFlagOverride:
        self._validate(identifier, enabled)
        record = await self.find(flag_id, scope_kind, identifier)
        if record is not None:
            record.enabled = enabled
            await self._session.commit()
            return record

        record = FeatureFlagOverride(
            feature_flag_id=flag_id,
            scope_kind=scope_kind.value,
            identifier=identifier,
            enabled=enabled,
        )
        self._session.add(record)
        try:
            await self._session.commit()
        except IntegrityError:
            # A concurrent insert won the unique key; retry once as an update of its row.
            await self._session.rollback()
            winner = await self.find(flag_id, scope_kind, identifier)
            if winner is None:
                raise
            logger.info(
                "override_insert_conflict_retried_as_update",
                extra={"extra": {"flag_id": flag_id, "scope_kind": scope_kind.value}},
            )
            winner.enabled = enabled
            await self._session.commit()
            return winner
        return record

    async def delete(self, override: FeatureFlagOverride) -> bool:
        result = await self._session.execute(
            sa.delete(FeatureFlagOverride).where(FeatureFlagOverride.id == override.id)
        )
        await self._session.commit()
        return bool(result.rowcount)
