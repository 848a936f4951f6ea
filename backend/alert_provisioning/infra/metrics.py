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
            self.rule_operations = None
            self.provenance_conflicts = None
            self.transaction_latency = None
            return

        self.rule_operations = Counter(
            "alert_rule_operations_total",
            "Alert rule service operations by result.",
            ["operation", "result"],
            registry=self.registry,
        )
        self.provenance_conflicts = Counter(
            "alert_rule_provenance_conflicts_total",
            "Rejected provenance transitions.",
            ["from_provenance", "to_provenance"],
            registry=self.registry,
        )
        self.transaction_latency = Histogram(
            "alert_rule_transaction_seconds",
            "Duration of alert rule transactions.",
            ["operation"],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
            registry=self.registry,
        )

    def record_operation(self, operation: str, result: str) -> None:
        if not self.enabled or self.rule_operations is None:
            return
        self.rule_operations.labels(operation=operation, result=result or "unknown").inc()

    def record_provenance_conflict(self, current: str, requested: str) -> None:
        if not self.enabled or self.provenance_conflicts is None:
            return
        # the empty provenance would render as an empty label value
        self.provenance_conflicts.labels(
            from_provenance=current or "none",
            to_provenance=requested or "none",
        ).inc()

    def record_transaction_latency(self, operation: str, duration_seconds: float) -> None:
        if not self.enabled or self.transaction_latency is None:
            return
        self.transaction_latency.labels(operation=operation).observe(max(0.0, float(duration_seconds)))

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
