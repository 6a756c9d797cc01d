from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from flag_service.domain.feature_flags.cache import ResultCache, create_result_cache
from flag_service.infra.metrics import Metrics, configure_metrics


@dataclass
class AppServices:
    """Typed container for runtime services stored on `app.state.services`."""

    result_cache: ResultCache
    metrics: Metrics
    cache_ttl_seconds: int
    cache_key_prefix: str


def build_app_services(app_settings, *, metrics: Metrics | None = None) -> AppServices:
    metrics_client = metrics or configure_metrics(app_settings.metrics_enabled)
    return AppServices(
        result_cache=create_result_cache(app_settings, metrics=metrics_client),
        metrics=metrics_client,
        cache_ttl_seconds=app_settings.evaluation_cache_ttl_seconds,
        cache_key_prefix=app_settings.evaluation_cache_key_prefix,
    )


def resolve_services(container_like: Any) -> AppServices | None:
    if isinstance(container_like, AppServices):
        return container_like
    if container_like is None:
        return None
    state = getattr(container_like, "state", container_like)
    return getattr(state, "services", None)
