"""Exception hierarchy for task operations.

Each error carries the HTTP status it maps to and a public title that is safe
to show to clients. Details stay in the exception message for logging.
"""


class RelayError(Exception):
    """Base class for errors surfaced to streamrelay callers."""

    status_code = 500
    title = "Internal server error"

    def __init__(self, detail: str | None = None):
        super().__init__(detail or self.title)
        self.detail = detail


class InvalidRequestError(RelayError):
    status_code = 400
    title = "Invalid request"

    def __init__(self, detail: str):
        super().__init__(detail)
        # Validation messages describe the caller's own input
        self.title = detail


class UnauthenticatedError(RelayError):
    status_code = 401
    title = "Authentication required"


class TaskForbiddenError(RelayError):
    status_code = 403
    title = "Not authorized to access this task"

    def __init__(self, job_id: str):
        super().__init__(f"Task '{job_id}' belongs to another principal")
        self.job_id = job_id


class TaskNotFoundError(RelayError):
    status_code = 404
    title = "Task not found"

    def __init__(self, job_id: str):
        super().__init__(f"Task '{job_id}' was not found")
        self.job_id = job_id


class UpstreamError(RelayError):
    """Raised when the upstream provider cannot be reached or rejects a call."""

    status_code = 500
    title = "Upstream request failed"
