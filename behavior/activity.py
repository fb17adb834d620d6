"""Per-user activity record: login history, warnings, anomalies.

Login history is loaded once, before anomaly analysis.  Warnings arrive
one at a time from the rule engine.  The risk picture is never stored:
every read of ``risk_score``/``risk_level``/... asks the scorer again.
"""

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime

from behavior.scoring import RiskAssessment, RiskScorer
from detection.events import parse_timestamp


@dataclass(frozen=True)
class LoginRecord:
    login_time: datetime
    source_ip: str | None = None
    geo_id: str | None = None

    def __post_init__(self):
        # naive times are UTC, same as timestamps parsed from rows
        login_time = parse_timestamp(self.login_time)
        if login_time is None:
            raise ValueError(f"unparseable login_time: {self.login_time!r}")
        object.__setattr__(self, "login_time", login_time)

    @classmethod
    def from_row(cls, row: dict) -> "LoginRecord | None":
        """Build from a LoginHistory row; None when LoginTime is missing or unparseable."""
        login_time = parse_timestamp(row.get("LoginTime"))
        if login_time is None:
            return None
        return cls(login_time, row.get("SourceIp") or None, row.get("LoginGeoId") or None)

    @property
    def date(self) -> str:
        return self.login_time.date().isoformat()

    @property
    def day_of_week(self) -> int:
        """Monday is 0, Sunday is 6."""
        return self.login_time.weekday()

    @property
    def hour_of_day(self) -> int:
        return self.login_time.hour

    @property
    def is_weekend(self) -> bool:
        return self.day_of_week >= 5


@dataclass
class Anomaly:
    type: str  # unusual_hours | rapid_location_change | weekend_activity
    severity: str
    description: str
    details: dict = field(default_factory=dict)
    # The login that triggered it; temporal correlation keys off this.
    timestamp: datetime | None = None

    @property
    def severity_multiplier(self) -> float | None:
        return self.details.get("severityMultiplier")

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "severity": self.severity,
            "description": self.description,
            "details": self.details,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }


class UserActivity:

    def __init__(self, user_id: str, username: str | None = None, scorer: RiskScorer | None = None):
        self.user_id = user_id
        self.username = username or user_id
        self.login_days: list[str] = []
        self.login_times: list[LoginRecord] = []
        self.ip_addresses: Counter = Counter()
        self.known_locations: set[str] = set()
        self.warnings: list = []
        self.anomalies: list[Anomaly] = []
        self.scanned_logs: Counter = Counter()
        self.last_analysis: datetime | None = None
        self._scorer = scorer or RiskScorer()
        self._history_loaded = False

    def add_login_history(self, records) -> None:
        """Load the user's login history.  Accepts LoginRecords or raw rows.

        Raw rows without a usable LoginTime still count toward IP and
        location history.
        """
        if self._history_loaded:
            raise RuntimeError(f"login history already loaded for {self.user_id}")
        self._history_loaded = True

        days = set(self.login_days)
        for record in records:
            if not isinstance(record, LoginRecord):
                row = record
                record = LoginRecord.from_row(row)
                if record is None:
                    if row.get("SourceIp"):
                        self.ip_addresses[row["SourceIp"]] += 1
                    if row.get("LoginGeoId"):
                        self.known_locations.add(row["LoginGeoId"])
                    continue

            self.login_times.append(record)
            days.add(record.date)
            if record.source_ip:
                self.ip_addresses[record.source_ip] += 1
            if record.geo_id:
                self.known_locations.add(record.geo_id)
        self.login_days = sorted(days)

    def add_warning(self, warning) -> None:
        self.warnings.append(warning)

    def record_scanned_log(self, event_type: str) -> None:
        if event_type:
            self.scanned_logs[event_type] += 1

    # -- risk, recomputed on every read ------------------------------------

    @property
    def risk_assessment(self) -> RiskAssessment:
        return self._scorer.score(self)

    @property
    def risk_score(self) -> int:
        return self.risk_assessment.risk_score

    @property
    def risk_factors(self):
        return self.risk_assessment.risk_factors

    @property
    def critical_count(self) -> int:
        return self.risk_assessment.critical_count

    @property
    def high_count(self) -> int:
        return self.risk_assessment.high_count

    @property
    def risk_level(self) -> str:
        return self.risk_assessment.risk_level

    # -- reporting ---------------------------------------------------------

    def get_summary(self) -> dict:
        risk = self.risk_assessment
        by_severity = Counter(w.severity or "low" for w in self.warnings)
        return {
            "userId": self.user_id,
            "username": self.username,
            "loginStats": {
                "totalDays": len(self.login_days),
                "firstLogin": self.login_days[0] if self.login_days else "N/A",
                "lastLogin": self.login_days[-1] if self.login_days else "N/A",
                "uniqueIPs": len(self.ip_addresses),
                "uniqueLocations": len(self.known_locations),
            },
            "warningsCount": {
                "total": len(self.warnings),
                "critical": by_severity["critical"],
                "high": by_severity["high"],
                "medium": by_severity["medium"],
                "low": by_severity["low"],
            },
            "scannedLogs": dict(self.scanned_logs),
            "anomalies": [a.to_dict() for a in self.anomalies],
            "riskScore": risk.risk_score,
            "riskLevel": risk.risk_level,
            "criticalEvents": risk.critical_count,
            "highRiskEvents": risk.high_count,
            "riskFactors": [f.to_dict() for f in risk.risk_factors],
        }

    def get_csv_data(self) -> list[dict]:
        """Flat rows for CSV export: one per warning, or a single placeholder."""
        risk = self.risk_assessment
        base = {
            "username": self.username,
            "userId": self.user_id,
            "firstLoginDate": self.login_days[0] if self.login_days else "N/A",
            "lastLoginDate": self.login_days[-1] if self.login_days else "N/A",
            "loginDaysCount": len(self.login_days),
            "uniqueIPs": len(self.ip_addresses),
            "scannedLogsCount": sum(self.scanned_logs.values()),
            "scannedEventTypes": ", ".join(self.scanned_logs),
            "riskScore": risk.risk_score,
            "riskLevel": risk.risk_level,
            "anomalyCount": len(self.anomalies),
            "criticalEvents": risk.critical_count,
            "highRiskEvents": risk.high_count,
            "riskFactorsExplanation": (
                "; ".join(str(f) for f in risk.risk_factors) or "No risk factors detected"
            ),
        }

        if not self.warnings:
            return [{
                **base,
                "date": "N/A",
                "time": "N/A",
                "warning": "No security risks detected",
                "severity": "none",
                "eventType": "N/A",
                "clientIp": "N/A",
                "sessionKey": "N/A",
                "context": {},
            }]

        return [
            {
                **base,
                "date": w.date or "N/A",
                "time": w.timestamp.isoformat() if w.timestamp else (w.date or "N/A"),
                "warning": w.message or "N/A",
                "severity": w.severity or "low",
                "eventType": w.event_type or "N/A",
                "clientIp": w.client_ip or "N/A",
                "sessionKey": w.session_key or "N/A",
                "context": dict(w.context),
            }
            for w in self.warnings
        ]

    def __repr__(self):
        return f"UserActivity({self.user_id!r}, warnings={len(self.warnings)}, anomalies={len(self.anomalies)})"
