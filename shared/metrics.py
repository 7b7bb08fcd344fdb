"""
Shared metrics configuration for the LicenseIQ Royalty Engine.
"""

from prometheus_client import Counter, Histogram, Info, CollectorRegistry, generate_latest
from typing import Dict, Any, Optional


class MetricsCollector:
    """Centralized metrics collector for the engine.

    Metrics are only exported when a registry is supplied; with the default
    ``registry=None`` they are still counted but never registered globally,
    which keeps repeated construction (tests, per-request engines) safe.
    """

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry
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

        self._metrics["errors_total"] = Counter(
            "errors_total",
            "Total errors",
            ["error_type", "service"],
            registry=self.registry
        )

        if self.service_name == "royalties":
            self._setup_royalty_metrics()

    def _setup_royalty_metrics(self):
        """Set up royalty-calculation metrics."""
        self._metrics["royalty_line_items_total"] = Counter(
            "royalty_line_items_total",
            "Line items processed by outcome",
            ["outcome"],
            registry=self.registry
        )

        self._metrics["royalty_rule_matches_total"] = Counter(
            "royalty_rule_matches_total",
            "Rule matches by matcher phase",
            ["phase"],
            registry=self.registry
        )

        self._metrics["royalty_diagnostics_total"] = Counter(
            "royalty_diagnostics_total",
            "Per-line diagnostics by code",
            ["code"],
            registry=self.registry
        )

        self._metrics["royalty_adjustments_total"] = Counter(
            "royalty_adjustments_total",
            "Contract-level reconciliation adjustments",
            ["kind"],
            registry=self.registry
        )

        self._metrics["royalty_calculation_duration_seconds"] = Histogram(
            "royalty_calculation_duration_seconds",
            "Batch calculation duration in seconds",
            registry=self.registry
        )

    def record_error(self, error_type: str, service: Optional[str] = None):
        """Record error metrics."""
        service_name = service or self.service_name
        self._metrics["errors_total"].labels(error_type=error_type, service=service_name).inc()

    def increment_counter(self, metric_name: str, amount: float = 1, **labels):
        """Increment a counter metric."""
        if metric_name in self._metrics:
            self._metrics[metric_name].labels(**labels).inc(amount)

    def observe_histogram(self, metric_name: str, value: float, **labels):
        """Observe a histogram metric."""
        metric = self._metrics.get(metric_name)
        if metric is None:
            return
        if labels:
            metric = metric.labels(**labels)
        metric.observe(value)

    def export(self) -> bytes:
        """Render the registry in Prometheus text format."""
        if self.registry is None:
            return b""
        return generate_latest(self.registry)

