"""Turns untrusted transport records into FeedRecords.

`normalize` is the boundary between transport data and the rest of the
client: whatever arrives, it returns a FeedRecord and never raises.
"""

import json
import logging

from livefeed.models import FeedRecord, LogEntry, ParseFailure, RawRecord
from livefeed.validator import load_validator

logger = logging.getLogger(__name__)

UNPARSEABLE_PREFIX = "Unparseable log line: "

_LOG_ENTRY_VALIDATOR = load_validator("log_entry.json")


def decode_log_entry(data) -> LogEntry | None:
    """Return a LogEntry if `data` has the LogEntry shape, else None."""
    if not _LOG_ENTRY_VALIDATOR.is_valid(data):
        return None
    return LogEntry.from_dict(data)


def normalize(raw: RawRecord, next_id: int) -> FeedRecord:
    """Decode `raw.line` into a LogEntry, or wrap it verbatim in a ParseFailure."""
    line = raw.line
    try:
        entry = decode_log_entry(json.loads(line))
    except (TypeError, ValueError, RecursionError):
        entry = None

    if entry is not None:
        return FeedRecord(id=next_id, is_error=False, payload=entry)

    if not isinstance(line, str):
        line = repr(line)
    logger.debug("Record %d is not a valid log entry: %.200s", next_id, line)
    return FeedRecord(
        id=next_id,
        is_error=True,
        payload=ParseFailure(message=UNPARSEABLE_PREFIX + line),
    )
