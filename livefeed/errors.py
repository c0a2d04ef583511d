"""Exception taxonomy for the ingestion client."""

from enum import Enum


class LiveFeedError(Exception):
    """Base class for every error raised by livefeed."""


class ApiError(LiveFeedError):
    """A REST call failed at the HTTP level or the envelope reported failure."""

    def __init__(
        self,
        message: str,
        http_status: int | None = None,
        server_message: str | None = None,
        server_reported: bool = False,
    ):
        super().__init__(message)
        self.http_status = http_status
        self.server_message = server_message
        self.server_reported = server_reported


class CredentialError(LiveFeedError):
    """Token acquisition failed. `stage` is "connection" or "subscription"."""

    def __init__(
        self,
        stage: str,
        message: str,
        http_status: int | None = None,
        server_message: str | None = None,
    ):
        super().__init__(f"{stage} token request failed: {message}")
        self.stage = stage
        self.http_status = http_status
        self.server_message = server_message


class TransportError(LiveFeedError):
    def __init__(self, reason: str, fatal: bool = False):
        super().__init__(reason)
        self.reason = reason
        self.fatal = fatal


class PollErrorKind(Enum):
    TRANSPORT = "transport"
    INCOMPLETE = "incomplete"
    SERVER_REPORTED = "server_reported"


class PollError(LiveFeedError):
    def __init__(self, kind: PollErrorKind, detail: str):
        super().__init__(f"{kind.value}: {detail}")
        self.kind = kind
        self.detail = detail
