"""Severity ladder shared by rules, warnings, anomalies and scoring.

The ladder is ordered low < medium < high < critical.  Custom detectors
report a severity multiplier rather than an absolute severity, so the same
detector escalates a "medium" rule and a "high" rule by the same number of
rungs.
"""

import math

SEVERITY_LEVELS = ("low", "medium", "high", "critical")


def enhance_severity(base: str, multiplier: float | None) -> str:
    """Raise *base* by ``floor(multiplier) - 1`` rungs, capped at critical.

    A multiplier below 2 leaves the severity unchanged, 2 raises it exactly
    one level.  Unknown severities are returned as-is.
    """
    if not multiplier or base not in SEVERITY_LEVELS:
        return base
    index = SEVERITY_LEVELS.index(base)
    increase = max(math.floor(multiplier) - 1, 0)
    return SEVERITY_LEVELS[min(index + increase, len(SEVERITY_LEVELS) - 1)]


def is_valid_severity(value) -> bool:
    return value in SEVERITY_LEVELS
