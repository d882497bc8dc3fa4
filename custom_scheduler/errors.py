"""
Exception hierarchy for the scheduler.
"""


class SchedulerError(Exception):
    """Base class for scheduler errors."""


class StoreError(SchedulerError):
    """Raised when the job index cannot be read or written."""


class StoreUnavailableError(StoreError):
    """Raised when the initial connection to the store fails."""


class InvalidTransitionError(SchedulerError):
    """Raised when a job status change would move the lifecycle backwards."""

    def __init__(self, current: str, target: str):
        super().__init__(f"Cannot transition job from {current} to {target}")
        self.current = current
        self.target = target


class StacksAPIError(SchedulerError):
    """Raised when a Stacks API call fails or returns a non-success status."""

    def __init__(self, message: str, status_code: int | None = None, body: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body

    def __str__(self) -> str:
        base = super().__str__()
        if self.status_code is None:
            return base
        return f"{base} (status {self.status_code}): {self.body or ''}"


class MatchingAPIError(SchedulerError):
    """Raised by workers when the matching API call fails."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code
