"""Correlation engine: links warnings to login behaviour.

Runs once per batch, after rule evaluation and anomaly analysis are done.
For every warning of every user:

  temporal    an anomaly within ``correlation_window_hours`` of the warning
              weight = base(anomaly type) * severity factor * proximity factor
  behavioral  the warning happened outside the user's normal hours, on a
              weekend for a weekday-only user, or from an IP the user has
              never logged in from

The sum of a user's record weights ranks them for review.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Mapping

from behavior.activity import UserActivity
from behavior.anomaly import hour_profile, weekend_profile

logger = logging.getLogger(__name__)

SEVERITY_FACTORS = {"critical": 2.0, "high": 1.5, "medium": 1.2}

# (upper bound in hours, factor); closer pairs weigh more.
PROXIMITY_FACTORS = ((0.5, 1.5), (1.0, 1.2))


@dataclass(frozen=True)
class CorrelationWeights:
    unusual_login_time: float = 1.5
    multiple_locations: float = 2.0
    rapid_location_change: float = 2.5
    weekend_activity: float = 1.2
    outside_business_hours: float = 1.3

    def for_anomaly(self, anomaly_type: str) -> float:
        return {
            "rapid_location_change": self.rapid_location_change,
            "unusual_hours": self.unusual_login_time,
            "weekend_activity": self.weekend_activity,
            "unusual_ip": self.multiple_locations,
        }.get(anomaly_type, 1.0)


@dataclass(frozen=True)
class CorrelationConfig:
    correlation_window_hours: float = 2
    weights: CorrelationWeights = field(default_factory=CorrelationWeights)


@dataclass
class CorrelationRecord:
    user_id: str
    type: str  # temporal | behavioral
    subtype: str
    weight: float
    description: str
    details: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "userId": self.user_id,
            "type": self.type,
            "subtype": self.subtype,
            "weight": self.weight,
            "description": self.description,
            "details": self.details,
        }


@dataclass
class CorrelationResult:
    user_id: str
    username: str | None
    correlations: list[CorrelationRecord] = field(default_factory=list)

    @property
    def correlation_score(self) -> float:
        return sum(record.weight for record in self.correlations)

    @property
    def correlation_count(self) -> int:
        return len(self.correlations)

    def to_dict(self) -> dict:
        return {
            "userId": self.user_id,
            "username": self.username,
            "correlationCount": self.correlation_count,
            "correlationScore": self.correlation_score,
            "correlations": [record.to_dict() for record in self.correlations],
        }


def severity_factor(severity: str) -> float:
    return SEVERITY_FACTORS.get(severity, 1.0)


def proximity_factor(hours: float) -> float:
    for bound, factor in PROXIMITY_FACTORS:
        if hours < bound:
            return factor
    return 1.0


def warning_time(warning) -> datetime | None:
    """The warning's timestamp, or midnight UTC of its date."""
    if warning.timestamp is not None:
        return warning.timestamp
    if warning.date:
        try:
            return datetime.fromisoformat(warning.date).replace(tzinfo=timezone.utc)
        except ValueError:
            return None
    return None


class CorrelationEngine:

    def __init__(self, config: CorrelationConfig | None = None):
        self.config = config or CorrelationConfig()
        self._results: dict[str, CorrelationResult] = {}

    def analyze_all(self, users, config: CorrelationConfig | None = None) -> dict[str, CorrelationResult]:
        """Correlate every user.  *users* is an iterable of UserActivity or a mapping of them."""
        if config is not None:
            self.config = config
        if isinstance(users, Mapping):
            users = users.values()

        results = {}
        for activity in users:
            results[activity.user_id] = self.analyze_user(activity)
        self._results = results
        logger.info("Correlated risk for %d users", len(results))
        return results

    def analyze_user(self, activity: UserActivity) -> CorrelationResult:
        result = CorrelationResult(activity.user_id, activity.username)
        if not activity.warnings:
            return result

        normal_hours = set(hour_profile(activity))
        rare_weekend_user = weekend_profile(activity).rare_weekend_user
        known_ips = list(activity.ip_addresses)

        for warning in activity.warnings:
            when = warning_time(warning)
            if when is None:
                logger.debug("Warning without date skipped for temporal checks: %s", warning.message)
            else:
                result.correlations.extend(self._temporal(activity, warning, when))
            result.correlations.extend(
                self._behavioral(activity, warning, when, normal_hours, rare_weekend_user, known_ips)
            )
        return result

    def _temporal(self, activity, warning, when):
        window = self.config.correlation_window_hours
        for anomaly in activity.anomalies:
            if anomaly.timestamp is None:
                continue
            hours = abs((anomaly.timestamp - when).total_seconds()) / 3600
            if hours > window:
                continue
            weight = (
                self.config.weights.for_anomaly(anomaly.type)
                * severity_factor(warning.severity)
                * proximity_factor(hours)
            )
            yield CorrelationRecord(
                user_id=activity.user_id,
                type="temporal",
                subtype=anomaly.type,
                weight=weight,
                description=(
                    f"{anomaly.description} occurred within {hours:.2f} hours of {warning.message}"
                ),
                details={
                    "warningEventType": warning.event_type,
                    "warningSeverity": warning.severity,
                    "warningTime": when.isoformat(),
                    "anomalySeverity": anomaly.severity,
                    "anomalyTime": anomaly.timestamp.isoformat(),
                    "timeDifference": round(hours, 2),
                },
            )

    def _behavioral(self, activity, warning, when, normal_hours, rare_weekend_user, known_ips):
        weights = self.config.weights

        if when is not None and when.hour not in normal_hours:
            yield CorrelationRecord(
                user_id=activity.user_id,
                type="behavioral",
                subtype="outside_business_hours",
                weight=weights.outside_business_hours,
                description=f"Security event occurred outside normal working hours ({when.hour}:00)",
                details={"hour": when.hour, "normalHours": sorted(normal_hours)},
            )

        if when is not None and when.weekday() >= 5 and rare_weekend_user:
            yield CorrelationRecord(
                user_id=activity.user_id,
                type="behavioral",
                subtype="weekend_activity",
                weight=weights.weekend_activity,
                description="Security event occurred on weekend for user who rarely works weekends",
                details={"dayOfWeek": when.weekday(), "isWeekend": True},
            )

        ip = warning.client_ip
        if ip and ip != "unknown" and len(known_ips) >= 2 and ip not in known_ips:
            yield CorrelationRecord(
                user_id=activity.user_id,
                type="behavioral",
                subtype="unusual_ip",
                weight=weights.multiple_locations,
                description=f"Security event from unusual IP address: {ip}",
                details={"ip": ip, "knownIps": known_ips},
            )

    def get_user_correlations(self, user_id: str) -> CorrelationResult | None:
        return self._results.get(user_id)

    def get_all_correlations(self) -> list[CorrelationResult]:
        return list(self._results.values())

    def get_high_risk_users(self, threshold: float = 10) -> list[CorrelationResult]:
        ranked = [r for r in self._results.values() if r.correlation_score >= threshold]
        return sorted(ranked, key=lambda r: r.correlation_score, reverse=True)
