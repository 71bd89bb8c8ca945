"""Prometheus metrics for the admission controller."""

from prometheus_client import Counter, Histogram, Info

from kazwab_admission import __version__


class AdmissionMetrics:
    """Metrics collection for admission control."""

    def __init__(self) -> None:
        self.info = Info("kazwab_admission", "Kazwab admission controller")
        self.info.info({"version": __version__, "algorithm": "fixed_window"})

        self.decisions_total = Counter(
            "kazwab_admission_decisions_total",
            "Admission decisions by policy scope",
            ["scope", "result"],
        )

        self.check_duration = Histogram(
            "kazwab_admission_check_duration_seconds",
            "Duration of check-and-increment calls",
            ["scope"],
            buckets=[0.00005, 0.0001, 0.0005, 0.001, 0.005, 0.01, 0.05],
        )

        self.sweeps_total = Counter(
            "kazwab_admission_sweeps_total",
            "Completed counter sweeps",
            ["status"],
        )

        self.swept_counters_total = Counter(
            "kazwab_admission_swept_counters_total",
            "Expired counters removed by sweeps",
        )

        self.http_requests_total = Counter(
            "kazwab_http_requests_total",
            "Total HTTP requests",
            ["method", "endpoint", "status"],
        )

        self.http_request_duration = Histogram(
            "kazwab_http_request_duration_seconds",
            "Duration of HTTP requests",
            ["method", "endpoint"],
            buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0],
        )


# Singleton instance
metrics = AdmissionMetrics()
