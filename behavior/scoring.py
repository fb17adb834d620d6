"""Risk scoring: warnings + anomalies -> score, factors, level.

Always computed from scratch over the activity's current state.  Nothing
here is cached, so a score read after add_warning() already includes it.
"""

import math
from dataclasses import dataclass

SEVERITY_POINTS = {"critical": 40, "high": 25, "medium": 15, "low": 5}
UNKNOWN_SEVERITY_POINTS = 2
# Critical rapid location changes outrank every other critical signal.
LOCATION_CHANGE_CRITICAL_POINTS = 50

RISK_LEVELS = ("none", "low", "medium", "high", "critical")


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def points_for(severity: str | None, multiplier=None, anomaly_type: str | None = None) -> int:
    if severity == "critical" and anomaly_type == "rapid_location_change":
        points = LOCATION_CHANGE_CRITICAL_POINTS
    else:
        points = SEVERITY_POINTS.get(severity, UNKNOWN_SEVERITY_POINTS)
    if multiplier:
        points = round_half_up(points * multiplier)
    return points


def risk_level(critical_count: int, high_count: int, risk_score: int, has_signals: bool) -> str:
    # One severe event pins the level regardless of how many minor ones
    # surround it.
    if critical_count > 0:
        return "critical"
    if high_count > 0:
        return "high"
    if risk_score >= 100:
        return "critical"
    if risk_score >= 75:
        return "high"
    if risk_score >= 50:
        return "medium"
    if risk_score > 20:
        return "low"
    return "low" if has_signals else "none"


@dataclass(frozen=True)
class RiskFactor:
    points: int
    description: str

    def __str__(self):
        return f"{self.description} ({self.points} points)"

    def to_dict(self) -> dict:
        return {"points": self.points, "description": self.description}


@dataclass(frozen=True)
class RiskAssessment:
    risk_score: int
    risk_factors: tuple[RiskFactor, ...]
    critical_count: int
    high_count: int
    risk_level: str


class RiskScorer:

    def score(self, activity) -> RiskAssessment:
        total = 0
        factors = []
        critical = high = 0

        for anomaly in activity.anomalies:
            points = points_for(anomaly.severity, anomaly.severity_multiplier, anomaly.type)
            factors.append(RiskFactor(points, f"Anomaly - {anomaly.type}"))
            total += points
            critical += anomaly.severity == "critical"
            high += anomaly.severity == "high"

        for warning in activity.warnings:
            points = points_for(warning.severity)
            factors.append(RiskFactor(
                points, f"Security warning - {warning.event_type or 'Unknown'}: {warning.message}"
            ))
            total += points
            critical += warning.severity == "critical"
            high += warning.severity == "high"

        has_signals = bool(activity.anomalies or activity.warnings)
        return RiskAssessment(
            risk_score=total,
            risk_factors=tuple(factors),
            critical_count=critical,
            high_count=high,
            risk_level=risk_level(critical, high, total, has_signals),
        )
