from flag_service.domain.feature_flags.db_models import FeatureFlag, FeatureFlagOverride, ScopeKind
from flag_service.domain.feature_flags.cache import (
    DisabledResultCache,
    InMemoryResultCache,
    RedisResultCache,
    ResultCache,
    create_result_cache,
)
from flag_service.domain.feature_flags.normalization import (
    EvaluationContext,
    fingerprint,
    flag_cache_prefix,
    normalize_identifier,
)
from flag_service.domain.feature_flags.evaluator import EvaluationResult, EvaluationSource, Evaluator
from flag_service.domain.feature_flags.overrides import (
    OverrideManager,
    OverrideResult,
    invalidate_flag_cache,
    parse_scope_kind,
)
from flag_service.domain.feature_flags.rules import RuleEngine
from flag_service.domain.feature_flags.service import FeatureFlagService, FlagResult
from flag_service.domain.feature_flags.stores import (
    FlagStore,
    OverrideStore,
    SqlFlagStore,
    SqlOverrideStore,
    StoreValidationError,
)

__all__ = [
    "DisabledResultCache",
    "EvaluationContext",
    "EvaluationResult",
    "EvaluationSource",
    "Evaluator",
    "FeatureFlag",
    "FeatureFlagOverride",
    "FeatureFlagService",
    "FlagResult",
    "FlagStore",
    "InMemoryResultCache",
    "OverrideManager",
    "OverrideResult",
    "OverrideStore",
    "RedisResultCache",
    "ResultCache",
    "RuleEngine",
    "ScopeKind",
    "SqlFlagStore",
    "SqlOverrideStore",
    "StoreValidationError",
    "create_result_cache",
    "fingerprint",
    "flag_cache_prefix",
    "invalidate_flag_cache",
    "normalize_identifier",
    "parse_scope_kind",
]
