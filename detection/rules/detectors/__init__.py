# Custom detectors: the part of a rule a threshold can't express.
#
# Each detector is a small class with one job, detect(event), returning a
# Detection or None.  Rules name their detector by id; the engine builds
# one instance per rule, so any tracking state a detector keeps (rates,
# per-hour buckets, alert-once flags) belongs to that engine and dies with
# it.  Two engines never share detector state.

from typing import NamedTuple

from detection.events import Event


class Detection(NamedTuple):
    message: str | None
    severity_multiplier: float | None = None
    context: dict | None = None


class Detector:
    """Base custom detector.  Subclass, set ``id`` and implement detect()."""

    id: str

    def __init__(self, rule):
        self.rule = rule
        self.options = dict(rule.detector_options)

    @property
    def severity_multiplier(self) -> float | None:
        return self.options.get("severity_multiplier", getattr(self, "default_multiplier", None))

    def detect(self, event: Event) -> Detection | None:
        """Inspect one event; return a Detection to raise a warning."""
        raise NotImplementedError


REGISTRY: dict[str, type[Detector]] = {}


def register(cls: type[Detector]) -> type[Detector]:
    if cls.id in REGISTRY:
        raise ValueError(f"detector id '{cls.id}' registered twice")
    REGISTRY[cls.id] = cls
    return cls


def create_detector(rule) -> Detector | None:
    """Instantiate the detector a rule refers to, or None if it has none."""
    if not rule.detector:
        return None
    try:
        cls = REGISTRY[rule.detector]
    except KeyError:
        raise ValueError(
            f"{rule.event_type}: unknown detector '{rule.detector}'"
        ) from None
    return cls(rule)


from detection.rules.detectors import match, rate  # noqa: E402,F401  (registers detectors)
