"""Warning records and the run-wide warning log.

A warning is the output of a rule firing, either through its threshold or
through its custom detector.  The log keeps exactly one warning per
(user, date, message); later duplicates are dropped.
"""

from dataclasses import dataclass, field
from datetime import datetime

from detection.events import Event

# Row fields copied into a warning's context, when present, so analysts
# can see what triggered it without re-reading the raw log.
CONTEXT_FIELDS = (
    "RECORDS_PROCESSED",
    "URI",
    "ACTION",
    "ENTITY_NAME",
    "DELEGATED_USERNAME",
    "DASHBOARD_ID",
    "QUERY_STRING",
    "PAGE_NAME",
    "COMPONENT_NAME",
    "ENDPOINT_URL",
    "FLOW_NAME",
    "APEX_CLASS_NAME",
    "FILE_TYPE",
    "RELATED_RECORD_ID",
    "QUIDDITY",
)


@dataclass
class RiskWarning:
    user_id: str
    date: str | None
    timestamp: datetime | None
    message: str
    severity: str
    event_type: str
    session_key: str | None = None
    client_ip: str | None = None
    context: dict = field(default_factory=dict)

    @property
    def key(self) -> tuple:
        return (self.user_id, self.date, self.message)

    @classmethod
    def from_event(cls, event: Event, message: str, severity: str, extra: dict | None = None) -> "RiskWarning":
        context = {}
        for name in CONTEXT_FIELDS:
            value = event.get(name)
            if value is not None:
                context[name] = value
        if extra:
            context.update(extra)
        return cls(
            user_id=event.user_id,
            date=event.date,
            timestamp=event.timestamp,
            message=message,
            severity=severity,
            event_type=event.event_type,
            session_key=event.session_key,
            client_ip=event.client_ip,
            context=context,
        )

    def to_dict(self) -> dict:
        return {
            "userId": self.user_id,
            "date": self.date,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "warning": self.message,
            "severity": self.severity,
            "eventType": self.event_type,
            "sessionKey": self.session_key,
            "clientIp": self.client_ip,
            "context": dict(self.context),
        }


class WarningLog:
    """Insertion-ordered, deduplicated collection of warnings."""

    def __init__(self):
        self._warnings: list[RiskWarning] = []
        self._seen: set[tuple] = set()

    def add(self, warning: RiskWarning) -> bool:
        """Store *warning* unless an equivalent one exists.  Returns True if stored."""
        if warning.key in self._seen:
            return False
        self._seen.add(warning.key)
        self._warnings.append(warning)
        return True

    def for_user(self, user_id: str) -> list[RiskWarning]:
        return [w for w in self._warnings if w.user_id == user_id]

    def keys(self) -> set[tuple]:
        return set(self._seen)

    def __iter__(self):
        return iter(self._warnings)

    def __len__(self) -> int:
        return len(self._warnings)
