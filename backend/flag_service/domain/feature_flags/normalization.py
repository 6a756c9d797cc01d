"""Identifier normalization, evaluation contexts and cache fingerprints.

Every identifier that reaches the override store or the result cache passes
through :func:`normalize_identifier`, so ``"  USER1  "`` and ``"user1"`` resolve
to the same override row and the same cache entry.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping
from urllib.parse import quote

from flag_service.domain.feature_flags.db_models import ScopeKind

ABSENT_TOKEN = "-"


def normalize_identifier(value: Any) -> str | None:
    if value is None:
        return None
    normalized = str(value).strip().lower()
    return normalized or None


def normalize_flag_name(value: Any) -> str | None:
    return normalize_identifier(value)


@dataclass(frozen=True)
class EvaluationContext:
    user_id: str | None = None
    group_id: str | None = None
    region: str | None = None

    @classmethod
    def from_raw(
        cls,
        user_id: Any = None,
        group_id: Any = None,
        region: Any = None,
    ) -> "EvaluationContext":
        return cls(
            user_id=normalize_identifier(user_id),
            group_id=normalize_identifier(group_id),
            region=normalize_identifier(region),
        )

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> "EvaluationContext":
        data = data or {}
        return cls.from_raw(data.get("user_id"), data.get("group_id"), data.get("region"))

    def identifier_for(self, scope_kind: ScopeKind) -> str | None:
        if scope_kind == ScopeKind.USER:
            return self.user_id
        if scope_kind == ScopeKind.GROUP:
            return self.group_id
        return self.region


def _encode_part(value: str | None) -> str:
    # "+" marks a present value; quoting keeps ":" and glob characters out of keys.
    if value is None:
        return ABSENT_TOKEN
    return "+" + quote(value, safe="")


def flag_cache_prefix(prefix: str, flag_id: int) -> str:
    return f"{prefix}:{flag_id}:"


def fingerprint(prefix: str, flag_id: int, context: EvaluationContext) -> str:
    parts = (context.user_id, context.group_id, context.region)
    return flag_cache_prefix(prefix, flag_id) + ":".join(_encode_part(part) for part in parts)
