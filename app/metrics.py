from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest, CONTENT_TYPE_LATEST

from cleancare_shared import SmsResult


class Metrics:
    """Prometheus collectors bound to a registry owned by one app instance."""

    content_type = CONTENT_TYPE_LATEST

    def __init__(self, registry: CollectorRegistry | None = None):
        self.registry = registry or CollectorRegistry()
        self.requests = Counter(
            "http_requests_total", "HTTP requests", ["method", "path", "status"], registry=self.registry
        )
        self.request_duration = Histogram(
            "http_request_duration_seconds",
            "HTTP request duration in seconds",
            ["method", "path"],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10),
            registry=self.registry,
        )
        self.otp_requests = Counter(
            "otp_requests_total", "OTP issuance requests by outcome", ["outcome"], registry=self.registry
        )
        self.otp_verifications = Counter(
            "otp_verifications_total", "OTP verification attempts by outcome", ["outcome"], registry=self.registry
        )
        self.sms_sends = Counter(
            "sms_sends_total", "SMS sends by provider and outcome", ["provider", "outcome"], registry=self.registry
        )
        self.otp_pending = Gauge("otp_pending", "OTP records currently held in memory", registry=self.registry)

    def track_pending(self, size_fn) -> None:
        self.otp_pending.set_function(lambda: float(size_fn()))

    def observe_request(self, method: str, path: str, status: int, duration: float) -> None:
        self.requests.labels(method, path, str(status)).inc()
        self.request_duration.labels(method, path).observe(duration)

    def otp_requested(self, outcome: str) -> None:
        self.otp_requests.labels(outcome).inc()

    def otp_verified(self, outcome: str) -> None:
        self.otp_verifications.labels(outcome).inc()

    def sms_result(self, provider: str, result: SmsResult) -> None:
        if result.simulated:
            outcome = "simulated"
        else:
            outcome = "sent" if result.success else "failed"
        self.sms_sends.labels(provider, outcome).inc()

    def render(self) -> bytes:
        return generate_latest(self.registry)
