# Risk rules as plain data, custom detection as named strategies.
#
# A rule is a frozen record: threshold, window, severity, the field to
# count by.  Anything a threshold can't express (rates, allow-lists,
# keyword checks) lives in a Detector class under rules/detectors/ and is
# referenced from the rule by id.  Keeping functions out of the rule table
# means the whole catalog serializes, and overrides loaded from a config
# file can never replace detection code.

import logging
from dataclasses import dataclass, field, fields, replace
from types import MappingProxyType
from typing import Mapping

from detection.counters import TIME_WINDOWS
from detection.severity import is_valid_severity

logger = logging.getLogger(__name__)

# Override keys that are never merged from configuration.
_PROTECTED_FIELDS = ("event_type", "detector", "detector_options")

# Override files may use camelCase keys; accept both.
_KEY_ALIASES = {
    "eventType": "event_type",
    "timeWindow": "time_window",
    "countField": "count_field",
    "countValues": "count_values",
    "customDetection": "detector",
    "customDetector": "detector",
    "detectorOptions": "detector_options",
}


@dataclass(frozen=True)
class RiskRule:
    event_type: str
    description: str
    severity: str  # low | medium | high | critical
    threshold: int
    time_window: str = "none"  # session | hour | day | none
    count_field: str | None = None
    rationale: str = ""
    # Only rows whose count_field value is listed are counted at all.
    count_values: tuple[str, ...] | None = None
    detector: str | None = None
    detector_options: Mapping = field(default_factory=dict)

    def __post_init__(self):
        if not is_valid_severity(self.severity):
            raise ValueError(f"{self.event_type}: invalid severity '{self.severity}'")
        if self.time_window not in TIME_WINDOWS:
            raise ValueError(f"{self.event_type}: invalid time window '{self.time_window}'")
        if isinstance(self.threshold, bool) or not isinstance(self.threshold, int) or self.threshold < 1:
            raise ValueError(f"{self.event_type}: threshold must be a positive integer")
        if self.count_values is not None:
            object.__setattr__(self, "count_values", tuple(self.count_values))
        object.__setattr__(self, "detector_options", MappingProxyType(dict(self.detector_options)))

    def counts(self, value) -> bool:
        """Whether a row with this count-field value takes part in evaluation."""
        return self.count_values is None or value in self.count_values

    def to_dict(self) -> dict:
        return {
            "eventType": self.event_type,
            "description": self.description,
            "severity": self.severity,
            "threshold": self.threshold,
            "timeWindow": self.time_window,
            "countField": self.count_field,
            "rationale": self.rationale,
            "countValues": list(self.count_values) if self.count_values else None,
            "detector": self.detector,
        }


class RuleCatalog:
    """One RiskRule per event type, with a single override merge at startup."""

    def __init__(self, rules=()):
        self._rules: dict[str, RiskRule] = {}
        self._overridden = False
        for rule in rules:
            if rule.event_type in self._rules:
                raise ValueError(f"duplicate rule for event type '{rule.event_type}'")
            self._rules[rule.event_type] = rule

    @classmethod
    def default(cls) -> "RuleCatalog":
        from detection.rules.catalog import DEFAULT_RULES

        return cls(DEFAULT_RULES)

    def get(self, event_type: str) -> RiskRule | None:
        return self._rules.get(event_type)

    def event_types(self) -> list[str]:
        return list(self._rules)

    def apply_overrides(self, overrides: Mapping[str, Mapping]) -> list[str]:
        """Merge partial field overrides into existing rules.

        Only allowed once per catalog.  Unknown event types and unknown keys
        are logged and ignored; detector fields are never overridden.
        Either every override applies or, on a ValueError, none does.
        Returns the event types that changed.
        """
        if self._overridden:
            raise RuntimeError("rule overrides have already been applied")

        patched = {}
        for event_type, patch in overrides.items():
            rule = self._rules.get(event_type)
            if rule is None:
                logger.warning("Ignoring override for unknown event type %s", event_type)
                continue
            if not isinstance(patch, Mapping):
                raise ValueError(f"{event_type}: override must be a mapping")

            updates = {}
            for key, value in patch.items():
                name = _KEY_ALIASES.get(key, key)
                if name in _PROTECTED_FIELDS:
                    logger.info("Skipping protected override field %s.%s", event_type, key)
                    continue
                if name not in _RULE_FIELDS:
                    logger.warning("Ignoring unknown override field %s.%s", event_type, key)
                    continue
                updates[name] = value

            if updates:
                patched[event_type] = replace(rule, **updates)

        self._rules.update(patched)
        self._overridden = True
        for event_type in patched:
            logger.info("Custom config loaded for %s", event_type)
        return list(patched)

    def as_dict(self) -> dict[str, dict]:
        return {event_type: rule.to_dict() for event_type, rule in self._rules.items()}

    def __contains__(self, event_type) -> bool:
        return event_type in self._rules

    def __iter__(self):
        return iter(self._rules.values())

    def __len__(self) -> int:
        return len(self._rules)


_RULE_FIELDS = {f.name for f in fields(RiskRule)}
