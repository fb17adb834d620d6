"""Load rule overrides from a YAML (or JSON) file."""

import logging
from pathlib import Path

import yaml

from detection.rules import RuleCatalog

logger = logging.getLogger(__name__)


def load_overrides(path: str | Path) -> dict:
    """Parse *path* into ``{event_type: {field: value}}``.

    A missing file is not an error: the defaults simply stay in force.
    JSON is valid YAML, so JSON override files load as-is.
    """
    path = Path(path)
    if not path.is_file():
        logger.info("Custom risk config file not found: %s", path)
        return {}

    with open(path) as f:
        overrides = yaml.safe_load(f)

    if overrides is None:
        return {}
    if not isinstance(overrides, dict):
        raise ValueError(f"{path.name}: top level must be a mapping of event types")
    for event_type, patch in overrides.items():
        if not isinstance(patch, dict):
            raise ValueError(f"{path.name}: override for '{event_type}' must be a mapping")
    return overrides


def load_catalog(path: str | Path | None = None) -> RuleCatalog:
    """Default catalog, with the overrides in *path* merged in if given."""
    catalog = RuleCatalog.default()
    if path:
        changed = catalog.apply_overrides(load_overrides(path))
        if changed:
            logger.info("Applied rule overrides for %s", ", ".join(changed))
    return catalog
