"""Job record model for background generation jobs."""

from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from sqlalchemy import Index
from sqlmodel import Field, SQLModel


class JobStatus(str, Enum):
    """Lifecycle states of an upstream background job."""

    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    INCOMPLETE = "incomplete"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


class TaskType(str, Enum):
    """Kind of work the job performs, used for UI correlation."""

    AGENT = "agent"
    RESEARCH = "research"


TERMINAL_STATUSES = frozenset(
    {JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED, JobStatus.INCOMPLETE}
)
ACTIVE_STATUSES = frozenset({JobStatus.QUEUED, JobStatus.IN_PROGRESS})

_RANK = {JobStatus.QUEUED: 0, JobStatus.IN_PROGRESS: 1}

STATUS_MESSAGES = {
    JobStatus.QUEUED: "Request queued for processing...",
    JobStatus.IN_PROGRESS: "Processing your request...",
    JobStatus.COMPLETED: "Request completed successfully",
    JobStatus.FAILED: "Request failed",
    JobStatus.CANCELLED: "Request was cancelled",
    JobStatus.INCOMPLETE: "Request completed but response was truncated",
}


def _rank(status: JobStatus) -> int:
    return _RANK.get(status, 2)


def can_transition(current: JobStatus, target: JobStatus) -> bool:
    """Return True if a record in ``current`` may be written with ``target``.

    Terminal states never change. Non-terminal states only move forward:
    queued -> in_progress -> terminal, with queued -> terminal allowed.
    Re-writing the same non-terminal status is allowed so cursor and
    partial output checkpoints can ride along with it.
    """
    if current.is_terminal:
        return False
    return _rank(target) >= _rank(current)


def predecessors(target: JobStatus) -> list[JobStatus]:
    """Statuses from which a write of ``target`` is accepted."""
    return [status for status in ACTIVE_STATUSES if can_transition(status, target)]


def status_message(status: JobStatus) -> str:
    """Get human-readable status message."""
    return STATUS_MESSAGES.get(status, "Unknown status")


def utcnow() -> datetime:
    # Naive UTC, matching the TIMESTAMP WITHOUT TIME ZONE columns
    return datetime.now(UTC).replace(tzinfo=None)


def new_request_id() -> str:
    return f"req_{uuid4().hex[:24]}"


class JobRecord(SQLModel, table=True):
    """Durable record of a background job and how far its output has been observed."""

    __tablename__ = "job_records"
    __table_args__ = (Index("ix_job_records_owner_status", "owner_id", "status"),)

    job_id: str = Field(primary_key=True, max_length=128)
    request_id: str = Field(default_factory=new_request_id, index=True, max_length=64)
    owner_id: str | None = Field(default=None, index=True, max_length=128)
    conversation_id: str | None = Field(default=None, index=True, max_length=128)
    task_type: TaskType = Field(default=TaskType.AGENT)

    status: JobStatus = Field(default=JobStatus.QUEUED, index=True)
    cursor: int = Field(default=0, ge=0)
    partial_output: str = Field(default="")
    error_message: str | None = Field(default=None)

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_terminal(self) -> bool:
        return JobStatus(self.status).is_terminal

    def clone(self) -> "JobRecord":
        """Detached copy, so callers never share mutable state with a store."""
        return JobRecord(**self.model_dump())

    def apply_update(
        self,
        status: JobStatus,
        partial_output: str | None = None,
        cursor: int | None = None,
        error_message: str | None = None,
    ) -> bool:
        """Apply a status write in place if the transition is allowed.

        Returns True if the record was modified. The cursor only moves forward,
        and partial output only grows while the record stays non-terminal; the
        write that makes a record terminal carries the final output as-is.
        """
        if not can_transition(JobStatus(self.status), status):
            return False

        self.status = status
        if cursor is not None and cursor > self.cursor:
            self.cursor = cursor
        if partial_output is not None and (
            status.is_terminal or len(partial_output) >= len(self.partial_output)
        ):
            self.partial_output = partial_output
        if error_message is not None:
            self.error_message = error_message
        self.updated_at = utcnow()
        return True

    def to_dict(self) -> dict[str, Any]:
        """Convert record to dictionary for API responses."""
        return {
            "jobId": self.job_id,
            "requestId": self.request_id,
            "ownerId": self.owner_id,
            "conversationId": self.conversation_id,
            "taskType": TaskType(self.task_type).value,
            "status": JobStatus(self.status).value,
            "cursor": self.cursor,
            "partialOutput": self.partial_output,
            "error": self.error_message,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }
