"""
Shared metrics configuration for the API gateway.
"""

from typing import Dict, Any, Optional

from prometheus_client import Counter, Histogram, Info, CollectorRegistry


class MetricsCollector:
    """Centralized metrics collector for services.

    Each collector owns its registry so several service instances (tests,
    multiple apps in one process) never collide on metric names.
    """

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
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

        if self.service_name == "gateway":
            self._setup_gateway_metrics()

    def _setup_gateway_metrics(self):
        """Set up gateway-specific metrics."""
        self._metrics["gateway_credit_debits_total"] = Counter(
            "gateway_credit_debits_total",
            "Credit debit attempts",
            ["outcome"],
            registry=self.registry
        )

        self._metrics["gateway_credits_consumed_total"] = Counter(
            "gateway_credits_consumed_total",
            "Credits debited by successful requests",
            registry=self.registry
        )

        self._metrics["gateway_upstream_requests_total"] = Counter(
            "gateway_upstream_requests_total",
            "Requests forwarded to backends",
            ["target_id", "outcome"],
            registry=self.registry
        )

        self._metrics["gateway_upstream_duration_seconds"] = Histogram(
            "gateway_upstream_duration_seconds",
            "Backend response time in seconds",
            ["target_id"],
            registry=self.registry
        )

        self._metrics["gateway_cache_lookups_total"] = Counter(
            "gateway_cache_lookups_total",
            "In-process cache lookups",
            ["cache", "result"],
            registry=self.registry
        )

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

    def record_debit(self, success: bool, cost: int):
        """Record a credit debit attempt."""
        if "gateway_credit_debits_total" not in self._metrics:
            return
        outcome = "debited" if success else "insufficient"
        self._metrics["gateway_credit_debits_total"].labels(outcome=outcome).inc()
        if success:
            self._metrics["gateway_credits_consumed_total"].inc(cost)

    def record_upstream(self, target_id: str, outcome: str, duration: Optional[float] = None):
        """Record a forwarded request."""
        if "gateway_upstream_requests_total" not in self._metrics:
            return
        self._metrics["gateway_upstream_requests_total"].labels(target_id=target_id, outcome=outcome).inc()
        if duration is not None:
            self._metrics["gateway_upstream_duration_seconds"].labels(target_id=target_id).observe(duration)

    def record_cache_lookup(self, cache: str, hit: bool):
        """Record an in-process cache lookup."""
        if "gateway_cache_lookups_total" in self._metrics:
            self._metrics["gateway_cache_lookups_total"].labels(cache=cache, result="hit" if hit else "miss").inc()


def get_metrics_collector(service_name: str, registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get a metrics collector for a service."""
    return MetricsCollector(service_name, registry)
