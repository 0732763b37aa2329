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
            self.bookings = None
            self.matching = None
            self.payout_batches = None
            self.payout_jobs = None
            self.notifications = None
            self.http_requests = None
            self.http_5xx = None
            self.http_latency = None
            return

        self.bookings = Counter(
            "bookings_total",
            "Booking lifecycle actions.",
            ["action"],
            registry=self.registry,
        )
        self.matching = Counter(
            "cleaner_matching_total",
            "Cleaner matching outcomes.",
            ["outcome"],
            registry=self.registry,
        )
        self.payout_batches = Counter(
            "payout_batches_total",
            "Payout batch actions.",
            ["action"],
            registry=self.registry,
        )
        self.payout_jobs = Counter(
            "payout_jobs_stamped_total",
            "Jobs assigned to a payout batch.",
            registry=self.registry,
        )
        self.notifications = Counter(
            "notifications_total",
            "Notification events by outcome.",
            ["event", "status"],
            registry=self.registry,
        )
        self.http_requests = Counter(
            "http_requests_total",
            "HTTP requests by method, route and status.",
            ["method", "path", "status_code"],
            registry=self.registry,
        )
        self.http_5xx = Counter(
            "http_5xx_total",
            "HTTP responses with 5xx status.",
            ["method", "path"],
            registry=self.registry,
        )
        self.http_latency = Histogram(
            "http_request_latency_seconds",
            "HTTP request latency by method, route and status class.",
            ["method", "path", "status_class"],
            registry=self.registry,
        )

    def record_booking(self, action: str, count: int = 1) -> None:
        if not self.enabled or self.bookings is None:
            return
        if count <= 0:
            return
        self.bookings.labels(action=action).inc(count)

    def record_matching(self, outcome: str) -> None:
        if not self.enabled or self.matching is None:
            return
        self.matching.labels(outcome=outcome).inc()

    def record_payout_batch(self, action: str, job_count: int = 0) -> None:
        if not self.enabled or self.payout_batches is None:
            return
        self.payout_batches.labels(action=action).inc()
        if job_count > 0 and self.payout_jobs is not None:
            self.payout_jobs.inc(job_count)

    def record_notification(self, event: str, status: str) -> None:
        if not self.enabled or self.notifications is None:
            return
        self.notifications.labels(event=event, status=status).inc()

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
        status_class = f"{status_code // 100}xx"
        self.http_latency.labels(method=method, path=path, status_class=status_class).observe(duration_seconds)

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
