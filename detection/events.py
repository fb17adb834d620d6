"""Event rows with standardized field access.

Event log rows arrive as flat string dicts whose column names drift between
log types (``CLIENT_IP`` vs ``SOURCE_IP``, ``DOCUMENT_ID`` vs
``CONTENT_ID`` ...).  ``Event`` hides that drift behind a handful of
accessors so rules and detectors never do raw key lookups for the common
fields.
"""

import re
from datetime import datetime, timezone

_TIMESTAMP_FIELDS = (
    "TIMESTAMP_DERIVED", "EVENT_TIME", "TIMESTAMP", "LOGIN_TIME", "CREATED_DATE",
)
_DATE_FIELDS = ("EVENT_DATE", "LOG_DATE")
_SESSION_FIELDS = ("SESSION_KEY", "SESSION_ID", "SESSIONKEY", "SESSION_IDENTIFIER")
_IP_FIELDS = ("CLIENT_IP", "SOURCE_IP", "IP_ADDRESS", "SOURCEIP")

# Count fields whose value may live under a sibling column name.
_FIELD_ALIASES = {
    "URL": ("URL", "ENDPOINT_URL", "URI"),
    "ENDPOINT_URL": ("URL", "ENDPOINT_URL", "URI"),
    "COMPONENT_TYPE": ("COMPONENT_TYPE", "COMPONENT_NAME", "COMPONENT"),
    "COMPONENT_NAME": ("COMPONENT_TYPE", "COMPONENT_NAME", "COMPONENT"),
    "LINKED_ENTITY_ID": ("LINKED_ENTITY_ID", "RELATED_RECORD_ID", "ENTITY_ID"),
    "RELATED_RECORD_ID": ("LINKED_ENTITY_ID", "RELATED_RECORD_ID", "ENTITY_ID"),
    "DASHBOARD_ID": ("DASHBOARD_ID", "DASHBOARD_NAME"),
    "DOCUMENT_ID": ("DOCUMENT_ID", "CONTENT_ID", "CONTENT_DOCUMENT_ID"),
    "CONTENT_ID": ("DOCUMENT_ID", "CONTENT_ID", "CONTENT_DOCUMENT_ID"),
    "ACTION": ("ACTION", "METHOD", "OPERATION_TYPE", "OPERATION"),
    "METHOD": ("ACTION", "METHOD", "OPERATION_TYPE", "OPERATION"),
    "OPERATION_TYPE": ("ACTION", "METHOD", "OPERATION_TYPE", "OPERATION"),
}

# Salesforce event log files use a compact 20250310190009.648 form.
_COMPACT_TS = re.compile(r"^\d{14}(\.\d+)?$")


def parse_timestamp(value) -> datetime | None:
    """Parse an ISO-8601 or compact log timestamp into an aware UTC datetime.

    Naive values are assumed to be UTC.  Returns None for anything that
    does not parse.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    else:
        text = str(value).strip()
        try:
            if _COMPACT_TS.match(text):
                fmt = "%Y%m%d%H%M%S.%f" if "." in text else "%Y%m%d%H%M%S"
                parsed = datetime.strptime(text, fmt)
            else:
                if text.endswith("Z"):
                    text = text[:-1] + "+00:00"
                parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _first(row: dict, names, default=None):
    for name in names:
        value = row.get(name)
        if value is not None and value != "":
            return value
    return default


class Event:
    """A single log row tagged with the event type of the log it came from."""

    __slots__ = ("row", "event_type", "_timestamp")

    def __init__(self, row: dict, event_type: str):
        self.row = row
        self.event_type = event_type
        self._timestamp = parse_timestamp(_first(row, _TIMESTAMP_FIELDS))

    @property
    def user_id(self) -> str | None:
        return _first(self.row, ("USER_ID_DERIVED", "USER_ID"))

    @property
    def raw_timestamp(self) -> str | None:
        return _first(self.row, _TIMESTAMP_FIELDS)

    @property
    def timestamp(self) -> datetime | None:
        return self._timestamp

    @property
    def date(self) -> str | None:
        if self._timestamp is not None:
            return self._timestamp.date().isoformat()
        value = _first(self.row, _DATE_FIELDS)
        return str(value)[:10] if value else None

    @property
    def hour(self) -> int | None:
        return self._timestamp.hour if self._timestamp is not None else None

    @property
    def session_key(self) -> str:
        return _first(self.row, _SESSION_FIELDS, "unknown-session")

    @property
    def client_ip(self) -> str | None:
        return _first(self.row, _IP_FIELDS)

    def field(self, name: str, default=None):
        """Look up *name*, falling back to its known sibling columns."""
        return _first(self.row, _FIELD_ALIASES.get(name, (name,)), default)

    def get(self, name: str, default=None):
        """Raw column access, with empty strings treated as missing."""
        return _first(self.row, (name,), default)

    def __repr__(self) -> str:
        return f"Event({self.event_type!r}, user={self.user_id!r}, ts={self.raw_timestamp!r})"
