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
            self.webhook_events = None
            self.webhook_errors = None
            self.status_transitions = None
            self.payments_created = None
            self.gateway_errors = None
            self.http_5xx = None
            self.http_latency = None
            self.rate_limit_blocks = None
            return

        self.webhook_events = Counter(
            "webhook_events_total",
            "Webhook deliveries by event type and result.",
            ["event_type", "result"],
            registry=self.registry,
        )
        self.webhook_errors = Counter(
            "webhook_errors_total",
            "Webhook errors by type (low cardinality).",
            ["type"],
            registry=self.registry,
        )
        self.status_transitions = Counter(
            "payment_status_transitions_total",
            "Payment status transition outcomes by target status.",
            ["status", "outcome"],
            registry=self.registry,
        )
        self.payments_created = Counter(
            "payments_created_total",
            "Payment creation attempts by payment method and result.",
            ["method", "result"],
            registry=self.registry,
        )
        self.gateway_errors = Counter(
            "gateway_errors_total",
            "Gateway call failures by operation.",
            ["operation"],
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
            buckets=(0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10, 30),
            registry=self.registry,
        )
        self.rate_limit_blocks = Counter(
            "rate_limit_blocks_total",
            "Requests rejected by the rate limiter.",
            registry=self.registry,
        )

    def record_webhook(self, event_type: str | None, result: str) -> None:
        if not self.enabled or self.webhook_events is None:
            return
        self.webhook_events.labels(event_type=event_type or "unknown", result=result).inc()

    def record_webhook_error(self, error_type: str) -> None:
        if not self.enabled or self.webhook_errors is None:
            return
        safe_type = error_type or "unknown"
        self.webhook_errors.labels(type=safe_type).inc()

    def record_transition(self, status: str, outcome: str) -> None:
        if not self.enabled or self.status_transitions is None:
            return
        self.status_transitions.labels(status=status, outcome=outcome).inc()

    def record_payment_created(self, method: str, result: str) -> None:
        if not self.enabled or self.payments_created is None:
            return
        self.payments_created.labels(method=method or "unknown", result=result).inc()

    def record_gateway_error(self, operation: str) -> None:
        if not self.enabled or self.gateway_errors is None:
            return
        self.gateway_errors.labels(operation=operation).inc()

    def record_rate_limit_block(self) -> None:
        if not self.enabled or self.rate_limit_blocks is None:
            return
        self.rate_limit_blocks.inc()

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
