import logging

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

logger = logging.getLogger(__name__)


class Metrics:
    def __init__(self, enabled: bool = False) -> None:
        self._configure(enabled)

    def _configure(self, enabled: bool) -> None:
        self.enabled = enabled
        self.registry = CollectorRegistry(auto_describe=True)
        if not enabled:
            self.evaluations = None
            self.override_mutations = None
            self.cache_invalidations = None
            self.cache_backend_errors = None
            self.http_requests = None
            self.http_5xx = None
            self.http_latency = None
            return

        self.evaluations = Counter(
            "feature_flag_evaluations_total",
            "Feature flag evaluations by cache outcome and resolved source.",
            ["cache", "source"],
            registry=self.registry,
        )
        self.override_mutations = Counter(
            "feature_flag_override_mutations_total",
            "Override create/update/remove calls by scope kind and outcome.",
            ["action", "scope_kind", "outcome"],
            registry=self.registry,
        )
        self.cache_invalidations = Counter(
            "feature_flag_cache_invalidations_total",
            "Flag-scoped evaluation cache invalidations by trigger.",
            ["reason"],
            registry=self.registry,
        )
        self.cache_backend_errors = Counter(
            "feature_flag_cache_backend_errors_total",
            "Result cache backend failures by operation.",
            ["op"],
            registry=self.registry,
        )
        self.http_requests = Counter(
            "http_requests_total",
            "HTTP requests by method, route and status code.",
            ["method", "path", "status_code"],
            registry=self.registry,
        )
        self.http_5xx = Counter(
            "http_5xx_total",
            "HTTP responses with status >= 500.",
            ["method", "path"],
            registry=self.registry,
        )
        self.http_latency = Histogram(
            "http_request_latency_seconds",
            "HTTP request latency in seconds.",
            ["method", "path", "status_class"],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2, 5),
            registry=self.registry,
        )

    def record_evaluation(self, cache: str, source: str) -> None:
        if not self.enabled or self.evaluations is None:
            return
        self.evaluations.labels(cache=cache, source=source or "unknown").inc()

    def record_override_mutation(self, action: str, scope_kind: str, outcome: str) -> None:
        if not self.enabled or self.override_mutations is None:
            return
        self.override_mutations.labels(action=action, scope_kind=scope_kind, outcome=outcome).inc()

    def record_cache_invalidation(self, reason: str) -> None:
        if not self.enabled or self.cache_invalidations is None:
            return
        self.cache_invalidations.labels(reason=reason).inc()

    def record_cache_backend_error(self, op: str) -> None:
        if not self.enabled or self.cache_backend_errors is None:
            return
        self.cache_backend_errors.labels(op=op).inc()

    def record_http_request(self, method: str, path: str, status_code: int) -> None:
        if not self.enabled or self.http_requests is None:
            return
        self.http_requests.labels(method=method, path=path, status_code=str(status_code)).inc()

    def record_http_5xx(self, method: str, path: str) -> None:
        if not self.enabled or self.http_5xx is None:
            return
        self.http_5xx.labels(method=method, path=path).inc()

    def record_http_latency(self, method: str, path: str, status_code: int, duration_seconds: float) -> None:
        if not self.enabled or self.http_latency is None:
            return
        status_class = f"{status_code // 100}xx" if status_code else "unknown"
        duration_seconds = max(0.0, float(duration_seconds))
        self.http_latency.labels(method=method, path=path, status_class=status_class).observe(
            duration_seconds
        )

    def render(self) -> tuple[bytes, str]:
        if not self.enabled:
            return b"metrics_disabled 1\n", "text/plain; version=0.0.4"
        try:
            return generate_latest(self.registry), CONTENT_TYPE_LATEST
        except Exception:  # noqa: BLE001
            logger.exception("metrics_render_failed")
            return b"metrics_render_failed 1\n", "text/plain; version=0.0.4"


metrics = Metrics(enabled=False)


def configure_metrics(enabled: bool) -> Metrics:
    metrics._configure(enabled)
    return metrics
