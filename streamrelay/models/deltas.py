"""Semantic deltas produced by classifying decoded stream records."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union

from streamrelay.models.job_record import JobStatus


class ToolPhase(str, Enum):
    START = "start"
    END = "end"


@dataclass(frozen=True, slots=True)
class ContentDelta:
    text: str


@dataclass(frozen=True, slots=True)
class ReasoningDelta:
    text: str


@dataclass(frozen=True, slots=True)
class ImageDelta:
    url: str


@dataclass(frozen=True, slots=True)
class ToolUseEvent:
    name: str
    phase: ToolPhase
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class CitationDelta:
    citation: dict[str, Any]


@dataclass(frozen=True, slots=True)
class JobStatusEvent:
    status: JobStatus
    job_id: str | None = None
    message: str | None = None
    cursor: int | None = None


@dataclass(frozen=True, slots=True)
class ErrorEvent:
    type: str
    message: str
    retryable: bool = False


@dataclass(frozen=True, slots=True)
class Unrecognized:
    pass


UNRECOGNIZED = Unrecognized()

Delta = Union[
    ContentDelta,
    ReasoningDelta,
    ImageDelta,
    ToolUseEvent,
    CitationDelta,
    JobStatusEvent,
    ErrorEvent,
    Unrecognized,
]
