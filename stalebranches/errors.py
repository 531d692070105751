"""Error types shared by the gateway and the sweep pipeline."""
from datetime import datetime, timezone
from typing import Optional


class StaleBranchError(Exception):
    """Base class for all stalebranches errors."""
    pass


class ConfigurationError(StaleBranchError):
    """Raised when configuration input (durations, repository slugs, token) is invalid."""
    pass


class InvalidDataError(StaleBranchError):
    """Raised when remote data is malformed, e.g. a commit without a usable author date."""
    pass


class ConsistencyError(StaleBranchError):
    """Describes remote state that contradicts the tracking-record invariants.

    These are collected and logged for the operator, never raised out of a run.
    """

    def __init__(self, message: str, branch_name: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.branch_name = branch_name


class GatewayError(StaleBranchError):
    """A repository gateway call failed."""

    kind = "error"

    def __init__(self, message: str, repo: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.repo = repo


class TransportError(GatewayError):
    """Network failure or server-side error. Retryable at the caller's discretion."""

    kind = "transient-network"


class RateLimitError(TransportError):
    """The API rate limit was exhausted."""

    kind = "rate-limited"

    def __init__(self, message: str, repo: Optional[str] = None, reset_time_unix: Optional[int] = None,
                 reset_time_datetime: Optional[datetime] = None):
        super().__init__(message, repo=repo)
        self.reset_time_unix = reset_time_unix
        if reset_time_datetime and reset_time_datetime.tzinfo is None:
            self.reset_time_datetime = reset_time_datetime.replace(tzinfo=timezone.utc)
        else:
            self.reset_time_datetime = reset_time_datetime

        if reset_time_unix and not reset_time_datetime:
            self.reset_time_datetime = datetime.fromtimestamp(reset_time_unix, tz=timezone.utc)
        elif reset_time_datetime and not reset_time_unix:
            self.reset_time_unix = int(self.reset_time_datetime.timestamp())


class NotFoundError(GatewayError):
    """The repository, branch or record vanished. Treated as already resolved."""

    kind = "not-found"


class ForbiddenError(GatewayError):
    """The token is not allowed to perform the operation."""

    kind = "forbidden"
