"""Prometheus metrics for a monitoring run.

Batch runs don't live long enough to be scraped, so metrics go to a
node_exporter textfile at the end of the run instead of an HTTP endpoint.

Usage:
    metrics = RunMetrics()
    engine = RiskDetectionEngine(users, metrics=metrics)
    ...
    metrics.write_textfile("/var/lib/node_exporter/risk_monitor.prom")
"""

from prometheus_client import CollectorRegistry, Counter, Gauge, write_to_textfile

_RISK_LEVELS = ("none", "low", "medium", "high", "critical")


class RunMetrics:
    """All run metrics, registered in a private registry.

    A private CollectorRegistry (instead of the global REGISTRY) lets
    several engines, e.g. one per test, each count their own run.
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        self.registry = registry if registry is not None else CollectorRegistry()

        # -------------------------------------------------------------------
        # Event metrics
        # -------------------------------------------------------------------
        self.rows_total = Counter(
            "risk_rows_total",
            "Log rows evaluated",
            ["event_type"],
            registry=self.registry,
        )
        self.source_errors_total = Counter(
            "risk_source_errors_total",
            "Event sources that failed mid-run",
            registry=self.registry,
        )

        # -------------------------------------------------------------------
        # Detection metrics
        # -------------------------------------------------------------------
        self.warnings_total = Counter(
            "risk_warnings_total",
            "Warnings stored after dedup",
            ["event_type", "severity"],
            registry=self.registry,
        )
        self.detector_errors_total = Counter(
            "risk_detector_errors_total",
            "Custom detectors that raised while evaluating a row",
            registry=self.registry,
        )
        self.anomalies_total = Counter(
            "risk_anomalies_total",
            "Login anomalies found",
            ["type", "severity"],
            registry=self.registry,
        )
        self.geo_lookup_failures_total = Counter(
            "risk_geo_lookup_failures_total",
            "Geo lookups that errored and fell back to IP comparison",
            registry=self.registry,
        )

        # -------------------------------------------------------------------
        # Per-user risk
        # -------------------------------------------------------------------
        self.user_risk_score = Gauge(
            "risk_user_score",
            "Risk score per user",
            ["user_id"],
            registry=self.registry,
        )
        self.user_correlation_score = Gauge(
            "risk_user_correlation_score",
            "Correlation score per user",
            ["user_id"],
            registry=self.registry,
        )
        self.users_by_level = Gauge(
            "risk_users_by_level",
            "Monitored users per risk level",
            ["level"],
            registry=self.registry,
        )

    def observe_row(self, event_type: str) -> None:
        self.rows_total.labels(event_type=event_type).inc()

    def observe_warning(self, warning) -> None:
        self.warnings_total.labels(event_type=warning.event_type, severity=warning.severity).inc()

    def observe_anomalies(self, anomalies) -> None:
        for anomaly in anomalies:
            self.anomalies_total.labels(type=anomaly.type, severity=anomaly.severity).inc()

    def observe_users(self, users) -> None:
        """Set the per-user gauges from each activity's current risk picture."""
        levels = dict.fromkeys(_RISK_LEVELS, 0)
        for activity in users:
            risk = activity.risk_assessment
            self.user_risk_score.labels(user_id=activity.user_id).set(risk.risk_score)
            levels[risk.risk_level] = levels.get(risk.risk_level, 0) + 1
        for level, count in levels.items():
            self.users_by_level.labels(level=level).set(count)

    def observe_correlations(self, results) -> None:
        for user_id, result in results.items():
            self.user_correlation_score.labels(user_id=user_id).set(result.correlation_score)

    def write_textfile(self, path) -> None:
        write_to_textfile(str(path), self.registry)
