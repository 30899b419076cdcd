"""Data models for streamrelay."""

from streamrelay.models.deltas import (
    UNRECOGNIZED,
    CitationDelta,
    ContentDelta,
    Delta,
    ErrorEvent,
    ImageDelta,
    JobStatusEvent,
    ReasoningDelta,
    ToolPhase,
    ToolUseEvent,
    Unrecognized,
)
from streamrelay.models.job_record import (
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    JobRecord,
    JobStatus,
    TaskType,
    can_transition,
    status_message,
)

__all__ = [
    "ACTIVE_STATUSES",
    "TERMINAL_STATUSES",
    "JobRecord",
    "JobStatus",
    "TaskType",
    "can_transition",
    "status_message",
    "Delta",
    "ContentDelta",
    "ReasoningDelta",
    "ImageDelta",
    "ToolPhase",
    "ToolUseEvent",
    "CitationDelta",
    "JobStatusEvent",
    "ErrorEvent",
    "Unrecognized",
    "UNRECOGNIZED",
]
