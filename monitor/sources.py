"""Event log sources and the bounded-concurrency batch driver.

A source yields already-parsed rows for one event log (one event type,
usually one day).  ``process_sources`` runs sources ``batch_size`` at a
time with asyncio; row callbacks all run on the event loop thread, so the
engine's stores are only ever touched by one callback at a time.
"""

import asyncio
import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

# Rows handed to the callback between yields to the event loop.
_YIELD_EVERY = 500

# ReportExport_2025-03-10.jsonl, ReportExport.jsonl
_FILENAME = re.compile(r"^(?P<event_type>[A-Za-z]+)(?:_(?P<log_date>\d{4}-\d{2}-\d{2}))?$")


class EventSource:
    """Base source.  Subclasses implement the async generator ``rows()``."""

    def __init__(self, event_type: str, log_date: str | None = None, name: str | None = None):
        self.event_type = event_type
        self.log_date = log_date
        self.name = name or (f"{event_type}_{log_date}" if log_date else event_type)

    async def rows(self):
        raise NotImplementedError
        yield  # pragma: no cover

    def __repr__(self):
        return f"{type(self).__name__}({self.name!r})"


class MemorySource(EventSource):
    """Rows held in memory (fixtures, tests, rows fetched elsewhere)."""

    def __init__(self, event_type, rows, log_date=None, name=None):
        super().__init__(event_type, log_date, name)
        self._rows = list(rows)

    async def rows(self):
        for i, row in enumerate(self._rows, 1):
            yield row
            if i % _YIELD_EVERY == 0:
                await asyncio.sleep(0)


class JsonLinesSource(EventSource):
    """One JSON object per line; blank lines are skipped."""

    def __init__(self, path, event_type=None, log_date=None):
        self.path = Path(path)
        if event_type is None:
            match = _FILENAME.match(self.path.stem)
            if match is None:
                raise ValueError(f"cannot tell the event type of {self.path.name}")
            event_type = match["event_type"]
            log_date = log_date or match["log_date"]
        super().__init__(event_type, log_date, self.path.name)

    async def rows(self):
        text = await asyncio.to_thread(self.path.read_text, encoding="utf-8")
        for lineno, line in enumerate(text.splitlines(), 1):
            if not line.strip():
                continue
            try:
                row = json.loads(line)
            except json.JSONDecodeError as e:
                raise ValueError(f"{self.path.name}:{lineno}: {e}") from e
            yield row
            if lineno % _YIELD_EVERY == 0:
                await asyncio.sleep(0)


def discover_sources(directory) -> list[EventSource]:
    """All ``*.jsonl`` event logs in *directory*, sorted by name."""
    sources = []
    for path in sorted(Path(directory).glob("*.jsonl")):
        try:
            sources.append(JsonLinesSource(path))
        except ValueError as e:
            logger.warning("Skipping %s", e)
    return sources


def read_jsonl(path) -> list[dict]:
    with open(path, encoding="utf-8") as f:
        return [json.loads(line) for line in f if line.strip()]


@dataclass
class SourceResult:
    source: EventSource
    rows: int = 0
    user_ids: set = field(default_factory=set)
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def process_source(source: EventSource, on_row) -> SourceResult:
    """Feed every row of *source* to ``on_row(row, event_type)``.

    ``on_row`` returns the id of the monitored user the row belonged to, or
    None.  A source that fails keeps the rows it already delivered.
    """
    result = SourceResult(source)
    logger.info("Processing log: %s", source.name)
    try:
        async for row in source.rows():
            result.rows += 1
            user_id = on_row(row, source.event_type)
            if user_id:
                result.user_ids.add(user_id)
    except Exception as e:
        result.error = e
        logger.error("Error processing log %s after %d rows: %s", source.name, result.rows, e)
        return result

    if result.user_ids:
        logger.info("Found %d monitored users in %s", len(result.user_ids), source.name)
    else:
        logger.info("No matching entries in %s", source.name)
    return result


async def process_sources(sources, on_row, batch_size: int = 5, scan_limit: int | None = None) -> list[SourceResult]:
    """Process *sources* ``batch_size`` at a time; at most *scan_limit* sources."""
    if batch_size < 1:
        raise ValueError("batch_size must be at least 1")
    sources = list(sources)
    if scan_limit:
        sources = sources[:scan_limit]
        logger.info("Limiting scan to %d logs", scan_limit)

    results = []
    batches = (len(sources) + batch_size - 1) // batch_size
    for n, start in enumerate(range(0, len(sources), batch_size), 1):
        batch = sources[start:start + batch_size]
        logger.info("Processing batch %d of %d", n, batches)
        results.extend(await asyncio.gather(*(process_source(s, on_row) for s in batch)))
    return results
