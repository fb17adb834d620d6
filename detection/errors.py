"""Exceptions raised while evaluating rows against the rule catalog.

None of these abort a batch: the engine catches them, logs them, and moves
on to the next rule or row.
"""


class DetectionError(Exception):
    """Base class for rule evaluation problems."""


class RuleEvaluationError(DetectionError):
    """A custom detector raised while inspecting a row."""

    def __init__(self, event_type: str, detector: str, cause: Exception):
        self.event_type = event_type
        self.detector = detector
        self.cause = cause
        super().__init__(
            f"detector '{detector}' failed on {event_type} event: {cause}"
        )


class MalformedEventError(DetectionError):
    """A row is missing a field the evaluation step depends on."""

    def __init__(self, event_type: str, missing: str):
        self.event_type = event_type
        self.missing = missing
        super().__init__(f"{event_type} row has no {missing}")
