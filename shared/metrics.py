"""
Shared metrics configuration for the Secure Webhook Gateway.

Each collector owns its registry so several service instances (tests,
embedded apps) can coexist in one process without duplicate-series errors.
"""

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, Info
from typing import Any, Dict, Optional


class MetricsCollector:
    """Centralized metrics collector for services."""

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
        self._metrics["pipeline_rejections_total"] = Counter(
            "pipeline_rejections_total",
            "Requests rejected by a pipeline stage",
            ["stage", "code"],
            registry=self.registry
        )

        self._metrics["rate_limit_hits_total"] = Counter(
            "rate_limit_hits_total",
            "Total rate limit hits",
            ["resource"],
            registry=self.registry
        )

        self._metrics["upstream_requests_total"] = Counter(
            "upstream_requests_total",
            "Upstream calls by outcome",
            ["resource", "outcome"],
            registry=self.registry
        )

        self._metrics["upstream_retries_total"] = Counter(
            "upstream_retries_total",
            "Upstream attempts that failed at the transport level and were retried",
            ["resource"],
            registry=self.registry
        )

        self._metrics["upstream_duration_seconds"] = Histogram(
            "upstream_duration_seconds",
            "Upstream forwarding duration in seconds, retries included",
            ["resource"],
            registry=self.registry
        )

        self._metrics["nonce_ledger_size"] = Gauge(
            "nonce_ledger_size",
            "Nonces currently resident in the replay ledger",
            registry=self.registry
        )

        self._metrics["incidents_total"] = Counter(
            "incidents_total",
            "Security incidents recorded",
            ["type"],
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

    def increment_counter(self, metric_name: str, **labels):
        """Increment a counter metric."""
        if metric_name in self._metrics:
            metric = self._metrics[metric_name]
            (metric.labels(**labels) if labels else metric).inc()

    def set_gauge(self, metric_name: str, value: float, **labels):
        """Set a gauge metric value."""
        if metric_name in self._metrics:
            metric = self._metrics[metric_name]
            (metric.labels(**labels) if labels else metric).set(value)

    def observe_histogram(self, metric_name: str, value: float, **labels):
        """Observe a histogram metric."""
        if metric_name in self._metrics:
            metric = self._metrics[metric_name]
            (metric.labels(**labels) if labels else metric).observe(value)

    def sample(self, metric_name: str, **labels) -> Optional[float]:
        """Read the current value of a metric series (0 when never touched)."""
        if metric_name not in self._metrics:
            return None
        value = self.registry.get_sample_value(metric_name, labels or None)
        if value is None:
            value = self.registry.get_sample_value(f"{metric_name}_total", labels or None)
        return value if value is not None else 0.0


def get_metrics_collector(service_name: str, registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get a metrics collector for a service."""
    return MetricsCollector(service_name, registry)
