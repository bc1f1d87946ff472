"""
Shared metrics configuration for the Todo Service.
"""

from typing import Dict, Any, Optional

from prometheus_client import Counter, Histogram, Gauge, Info, CollectorRegistry, generate_latest


class MetricsCollector:
    """Centralized metrics collector for services."""

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        # One registry per collector so several app instances can coexist in a process
        self.registry = registry if registry is not None else CollectorRegistry()
        self._metrics: Dict[str, Any] = {}
        self._setup_metrics()

    def _setup_metrics(self):
        """Set up common metrics for the service."""

        self._metrics["service_info"] = Info(
            "service_info",
            "Service information",
            registry=self.registry
        )
        self._metrics["service_info"].info({
            "service": self.service_name,
            "version": "1.0.0"
        })

        # HTTP metrics
        self._metrics["http_requests_total"] = Counter(
            "http_requests_total",
            "Total HTTP requests",
            ["method", "endpoint", "status_code"],
            registry=self.registry
        )

        self._metrics["http_request_duration_seconds"] = Histogram(
            "http_request_duration_seconds",
            "HTTP request duration in seconds",
            ["method", "endpoint"],
            registry=self.registry
        )

        self._metrics["health_check_total"] = Counter(
            "health_check_total",
            "Total health check requests",
            ["status"],
            registry=self.registry
        )

        self._metrics["errors_total"] = Counter(
            "errors_total",
            "Total errors",
            ["error_type", "service"],
            registry=self.registry
        )

        self._setup_verification_metrics()
        self._setup_cache_metrics()

    def _setup_verification_metrics(self):
        """Set up token verification metrics."""
        self._metrics["verification_outcomes_total"] = Counter(
            "verification_outcomes_total",
            "Token verification outcomes",
            ["outcome"],
            registry=self.registry
        )

        self._metrics["verification_duration_seconds"] = Histogram(
            "verification_duration_seconds",
            "Token verification round-trip duration in seconds",
            registry=self.registry
        )

        self._metrics["verification_pending"] = Gauge(
            "verification_pending",
            "Verification requests awaiting a response",
            registry=self.registry
        )

    def _setup_cache_metrics(self):
        """Set up cache-aside metrics."""
        self._metrics["cache_hits_total"] = Counter(
            "cache_hits_total",
            "Total cache hits",
            ["cache_type"],
            registry=self.registry
        )

        self._metrics["cache_misses_total"] = Counter(
            "cache_misses_total",
            "Total cache misses",
            ["cache_type"],
            registry=self.registry
        )

        self._metrics["cache_invalidation_failures_total"] = Counter(
            "cache_invalidation_failures_total",
            "Cache invalidations that failed after a committed write",
            registry=self.registry
        )

    def get_metric(self, name: str):
        """Get a metric by name."""
        return self._metrics.get(name)

    def export(self) -> bytes:
        """Render the registry in Prometheus text format."""
        return generate_latest(self.registry)

    def record_http_request(self, method: str, endpoint: str, status_code: int, duration: float):
        """Record HTTP request metrics."""
        self._metrics["http_requests_total"].labels(
            method=method,
            endpoint=endpoint,
            status_code=str(status_code)
        ).inc()

        self._metrics["http_request_duration_seconds"].labels(
            method=method,
            endpoint=endpoint
        ).observe(duration)

    def record_health_check(self, status: str):
        """Record health check metrics."""
        self._metrics["health_check_total"].labels(status=status).inc()

    def record_error(self, error_type: str, service: Optional[str] = None):
        """Record error metrics."""
        service_name = service or self.service_name
        self._metrics["errors_total"].labels(error_type=error_type, service=service_name).inc()

    def record_verification(self, outcome: str, duration: float):
        """Record the outcome of one verification round-trip."""
        self._metrics["verification_outcomes_total"].labels(outcome=outcome).inc()
        self._metrics["verification_duration_seconds"].observe(duration)

    def set_pending_verifications(self, count: int):
        self._metrics["verification_pending"].set(count)

    def record_cache_hit(self, cache_type: str):
        self._metrics["cache_hits_total"].labels(cache_type=cache_type).inc()

    def record_cache_miss(self, cache_type: str):
        self._metrics["cache_misses_total"].labels(cache_type=cache_type).inc()

    def record_invalidation_failure(self):
        self._metrics["cache_invalidation_failures_total"].inc()


def get_metrics_collector(service_name: str, registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get a metrics collector for a service."""
    return MetricsCollector(service_name, registry)
