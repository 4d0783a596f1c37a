"""
Trace Source

Reads a JSON-lines export of decoded trace events:

    {"provider": "2f07e2ee-...", "id": 1074, "timestamp": 12.5, "pid": 4, "fields": {...}}

Bad lines are logged and skipped; only an unreadable file is an error.
"""

import json
import logging
from pathlib import Path
from typing import Iterator, List, Union

from tracenet.config import normalize_provider
from tracenet.models.events import TraceEvent

logger = logging.getLogger(__name__)


class TraceFormatError(ValueError):
    """The trace export cannot be read at all."""


def _parse_line(record: dict) -> TraceEvent:
    fields = record.get('fields')
    if fields is not None and not isinstance(fields, dict):
        fields = None
    return TraceEvent(
        provider=normalize_provider(str(record['provider'])),
        event_id=int(record['id']),
        timestamp=float(record['timestamp']),
        pid=int(record['pid']),
        fields=fields,
    )


def iter_trace(path: Union[str, Path]) -> Iterator[TraceEvent]:
    """Yield events in file order."""
    path = Path(path)
    try:
        f = open(path, 'r', encoding='utf-8')
    except OSError as e:
        raise TraceFormatError(f"cannot open trace {path}: {e}") from e

    with f:
        for line_no, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                record = json.loads(line)
                yield _parse_line(record)
            except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
                logger.debug(f"{path.name}:{line_no}: skipped ({e})")


def load_trace(path: Union[str, Path]) -> List[TraceEvent]:
    """Load all events of one capture."""
    events = list(iter_trace(path))
    logger.info(f"Loaded {len(events)} trace events from {Path(path).name}")
    return events
