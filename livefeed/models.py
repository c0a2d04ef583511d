"""Data models for the live log feed."""

import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Union


class ConnectivityState(Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    FAILED = "failed"


@dataclass(frozen=True)
class RawRecord:
    """One transport record; `line` is an opaque, possibly malformed payload."""

    timestamp: str = ""
    source_path: str = ""
    line: str = ""

    @classmethod
    def from_wire(cls, data: Any) -> "RawRecord":
        """Build a RawRecord from a publication or list item of any shape."""
        if isinstance(data, dict):
            line = data.get("line", "")
            if not isinstance(line, str):
                line = _dump(line)
            return cls(
                timestamp=str(data.get("timestamp", "")),
                source_path=str(data.get("file_path", data.get("source_path", ""))),
                line=line,
            )
        if isinstance(data, str):
            return cls(line=data)
        if isinstance(data, bytes):
            return cls(line=data.decode("utf-8", errors="replace"))
        return cls(line=_dump(data))


@dataclass(frozen=True)
class LogEntry:
    timestamp: str
    log_type: str
    user_id: str
    duration_ms: float
    message: str
    request_id: str
    service: str
    source: str | None = None

    @classmethod
    def from_dict(cls, data: dict) -> "LogEntry":
        return cls(
            timestamp=data["timestamp"],
            log_type=data["log_type"],
            user_id=data["user_id"],
            duration_ms=data["duration"],
            message=data["message"],
            request_id=data["request_id"],
            service=data["service"],
            source=data.get("source"),
        )


@dataclass(frozen=True)
class ParseFailure:
    message: str


@dataclass(frozen=True)
class FeedRecord:
    id: int
    is_error: bool
    payload: Union[LogEntry, ParseFailure]

    def __post_init__(self):
        if self.is_error != isinstance(self.payload, ParseFailure):
            raise ValueError("is_error must be True exactly when payload is a ParseFailure")


@dataclass(frozen=True)
class ErrorSequence:
    service: str
    start_time: str
    end_time: str
    count: int


@dataclass(frozen=True)
class Anomaly:
    timestamp: str
    service: str
    metric_name: str
    value: float
    threshold: float


@dataclass(frozen=True)
class StatisticsSnapshot:
    log_type_counts: dict[str, int]
    service_durations: dict[str, float]
    service_call_counts: dict[str, int]
    error_sequences: list[ErrorSequence] = field(default_factory=list)
    anomaly_detections: list[Anomaly] = field(default_factory=list)
    updated_at: str | None = None

    @property
    def updated_at_dt(self) -> datetime | None:
        """`updated_at` parsed as a datetime, or None if absent or unparsable."""
        return parse_timestamp(self.updated_at)

    @classmethod
    def from_dict(cls, data: dict) -> "StatisticsSnapshot":
        """Build a snapshot from an already-validated statistics payload."""
        sequences = [
            ErrorSequence(
                service=str(s.get("service", "")),
                start_time=str(s.get("startTime", "")),
                end_time=str(s.get("endTime", "")),
                count=int(s.get("count", 0)),
            )
            for s in data.get("errorSequences") or []
        ]
        anomalies = [
            Anomaly(
                timestamp=str(a.get("timestamp", "")),
                service=str(a.get("service", "")),
                metric_name=str(a.get("metricName", "")),
                value=float(a.get("value", 0.0)),
                threshold=float(a.get("threshold", 0.0)),
            )
            for a in data.get("anomalyDetections") or []
        ]
        return cls(
            log_type_counts=dict(data["logTypeCounts"]),
            service_durations=dict(data["serviceDurations"]),
            service_call_counts=dict(data["serviceCallCounts"]),
            error_sequences=sequences,
            anomaly_detections=anomalies,
            updated_at=data.get("updatedAt"),
        )


def parse_timestamp(value: str | None) -> datetime | None:
    if not value or not isinstance(value, str):
        return None
    # fromisoformat only accepts a trailing "Z" from 3.11 on
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


def _dump(value: Any) -> str:
    try:
        return json.dumps(value)
    except (TypeError, ValueError):
        return repr(value)
