"""Statistics snapshot polling, validation and ownership."""

import logging

import jsonschema

from livefeed.api import ApiClient
from livefeed.errors import ApiError, PollError, PollErrorKind
from livefeed.models import StatisticsSnapshot
from livefeed.validator import load_validator

logger = logging.getLogger(__name__)

REQUIRED_MAPS = ("logTypeCounts", "serviceDurations", "serviceCallCounts")


class StatisticsValidator:
    """Pulls one statistics snapshot per `poll()` and accepts it only if complete."""

    def __init__(self, api: ApiClient, path: str = "/statistics"):
        self._api = api
        self._path = path
        self._validator: jsonschema.Draft202012Validator = load_validator("statistics.json")

    async def poll(self) -> StatisticsSnapshot:
        """Fetch and validate a snapshot. Raises PollError on any failure."""
        try:
            data = await self._api.get(self._path)
        except ApiError as e:
            kind = PollErrorKind.SERVER_REPORTED if e.server_reported else PollErrorKind.TRANSPORT
            raise PollError(kind, str(e)) from e
        return self.validate(data)

    def validate(self, data) -> StatisticsSnapshot:
        if not isinstance(data, dict):
            raise PollError(PollErrorKind.INCOMPLETE, "statistics payload is not an object")

        missing = [key for key in REQUIRED_MAPS if data.get(key) is None]
        if missing:
            raise PollError(
                PollErrorKind.INCOMPLETE,
                f"statistics payload is missing {', '.join(missing)}",
            )

        errors = sorted(self._validator.iter_errors(data), key=lambda err: list(err.path))
        if errors:
            detail = "; ".join(
                f"{'/'.join(str(p) for p in err.path) or '<root>'}: {err.message}"
                for err in errors[:5]
            )
            raise PollError(PollErrorKind.INCOMPLETE, detail)

        return StatisticsSnapshot.from_dict(data)


class StatisticsMonitor:
    """Owns the externally visible statistics snapshot.

    Policy "clear" sets the snapshot to None after a failed poll; "retain"
    keeps the last good snapshot. Overlapping refreshes are skipped, and a
    result older than the current snapshot (by `updatedAt`) is discarded.
    """

    def __init__(self, validator: StatisticsValidator, policy: str = "clear"):
        if policy not in ("clear", "retain"):
            raise ValueError(f"unknown stale snapshot policy {policy!r}")
        self._validator = validator
        self.policy = policy
        self.snapshot: StatisticsSnapshot | None = None
        self.last_error: PollError | None = None
        self._in_flight = False
        self.polls_ok = 0
        self.polls_failed = 0
        self.polls_skipped = 0

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    async def refresh(self) -> bool:
        """Run one poll. Returns False if skipped because a poll is outstanding."""
        if self._in_flight:
            self.polls_skipped += 1
            logger.debug("Statistics poll still outstanding, skipping tick")
            return False

        self._in_flight = True
        try:
            snapshot = await self._validator.poll()
        except PollError as e:
            self.polls_failed += 1
            self.last_error = e
            logger.warning("Statistics unavailable: %s", e)
            if self.policy == "clear":
                self.snapshot = None
            return True
        finally:
            self._in_flight = False

        self.polls_ok += 1
        self.last_error = None
        if self._is_older(snapshot):
            logger.info(
                "Discarding statistics updated at %s, current is %s",
                snapshot.updated_at, self.snapshot.updated_at,
            )
            return True
        self.snapshot = snapshot
        return True

    def _is_older(self, candidate: StatisticsSnapshot) -> bool:
        if self.snapshot is None:
            return False
        current, new = self.snapshot.updated_at_dt, candidate.updated_at_dt
        if current is None or new is None:
            return False
        try:
            return new < current
        except TypeError:
            # naive vs aware timestamps are not comparable
            return False
