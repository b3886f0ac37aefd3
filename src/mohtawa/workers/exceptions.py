"""Worker exception types."""

from __future__ import annotations


class JobReschedule(RuntimeError):
    """Signal that a job should run again later without counting as a failure.

    Raised when a handler finds its precondition not yet met (for example a
    resumed run whose row is still being committed by the API).
    """

    def __init__(self, *, retry_delay_seconds: float, reason: str) -> None:
        super().__init__(reason)
        self.retry_delay_seconds = float(retry_delay_seconds)
        self.reason = reason
