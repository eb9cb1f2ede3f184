"""
Error taxonomy for the scheduling engine.

Validation, lookup and state errors are raised synchronously to the caller.
ExecutionError is recorded on the job rather than raised to whoever scheduled
it; PersistenceError is logged and does not undo in-memory transitions.
"""

from typing import List, Optional


class SchedulerError(Exception):
    """Base class for all reposcheduler errors."""
    pass


class ValidationError(SchedulerError):
    """Bad input at schedule/update time. Carries every problem found."""

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__("; ".join(self.errors) or "Invalid job")


class NotFoundError(SchedulerError):
    """Unknown job id."""

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job not found: {job_id}")


class InvalidStateError(SchedulerError):
    """Operation is not allowed for the job's current status."""

    def __init__(self, job_id: str, status: str, operation: str):
        self.job_id = job_id
        self.status = status
        self.operation = operation
        super().__init__(f"Cannot {operation} job {job_id} while it is {status}")


class ExecutionError(SchedulerError):
    """The repository-creation call failed (auth, remote conflict, network)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class PersistenceError(SchedulerError):
    """Reading or writing the durable job snapshot failed."""
    pass
