"""Periodic `GET /logs` poller with defensive decoding of either list shape."""

import logging

from livefeed.api import ApiClient
from livefeed.errors import ApiError
from livefeed.models import FeedRecord, ParseFailure, RawRecord
from livefeed.normalizer import UNPARSEABLE_PREFIX, decode_log_entry, normalize

logger = logging.getLogger(__name__)


def decode_log_item(item, record_id: int) -> FeedRecord:
    """Decode one list item: a RawRecord wrapper, a pre-parsed LogEntry, or junk."""
    if isinstance(item, dict) and "line" in item:
        return normalize(RawRecord.from_wire(item), record_id)

    entry = decode_log_entry(item)
    if entry is not None:
        return FeedRecord(id=record_id, is_error=False, payload=entry)

    raw = RawRecord.from_wire(item)
    return FeedRecord(
        id=record_id,
        is_error=True,
        payload=ParseFailure(message=UNPARSEABLE_PREFIX + raw.line),
    )


class LogListPoller:
    """Keeps the most recently fetched log list.

    A failed fetch keeps the previous list and records the error.
    """

    def __init__(self, api: ApiClient, path: str = "/logs"):
        self._api = api
        self._path = path
        self.records: tuple[FeedRecord, ...] = ()
        self.last_error: ApiError | None = None
        self.fetches = 0

    async def refresh(self):
        try:
            data = await self._api.get(self._path)
        except ApiError as e:
            self.last_error = e
            logger.warning("Log list refresh failed: %s", e)
            return

        if not isinstance(data, list):
            self.last_error = ApiError(f"GET {self._path} returned a non-list payload")
            logger.warning("Log list refresh failed: %s", self.last_error)
            return

        self.records = tuple(decode_log_item(item, i) for i, item in enumerate(data, start=1))
        self.last_error = None
        self.fetches += 1
        logger.debug("Fetched %d log entries", len(self.records))
