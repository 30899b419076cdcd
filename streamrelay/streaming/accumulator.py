"""Fold classified deltas into one monotonically growing response state."""

import copy
import math
import time
from collections.abc import AsyncIterable, AsyncIterator, Callable, Iterable
from dataclasses import dataclass, field
from typing import Any, assert_never

from streamrelay.models.deltas import (
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
from streamrelay.models.job_record import JobStatus

MAX_IMAGES = 1
CITATION_TEXT_PREFIX = 50


@dataclass
class StreamError:
    """Error marker surfaced in the final state instead of raising mid-stream."""

    type: str
    message: str
    retryable: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "message": self.message, "retryable": self.retryable}


@dataclass
class ToolUse:
    name: str
    phase: ToolPhase
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass
class AccumulatedState:
    """Snapshot of everything a response has produced so far."""

    content: str = ""
    reasoning: str = ""
    images: list[str] = field(default_factory=list)
    tool_uses: list[ToolUse] = field(default_factory=list)
    citations: list[dict[str, Any]] = field(default_factory=list)
    thinking_duration_seconds: int | None = None
    job_id: str | None = None
    job_status: JobStatus | None = None
    error: StreamError | None = None
    done: bool = False

    def copy(self) -> "AccumulatedState":
        return copy.deepcopy(self)

    def to_dict(self) -> dict[str, Any]:
        return {
            "content": self.content,
            "reasoning": self.reasoning,
            "images": list(self.images),
            "toolUses": [
                {"name": t.name, "status": t.phase.value, **t.payload} for t in self.tool_uses
            ],
            "citations": list(self.citations),
            "thinkingDurationSeconds": self.thinking_duration_seconds,
            "jobId": self.job_id,
            "jobStatus": self.job_status.value if self.job_status else None,
            "error": self.error.to_dict() if self.error else None,
            "done": self.done,
        }


def citation_key(citation: dict[str, Any]) -> str:
    """Identity of a citation for deduplication."""
    kind = citation.get("type")
    if kind == "web_search_result_location":
        return f"url:{citation.get('url')}"
    if kind == "search_result_location":
        return (
            f"source:{citation.get('source')}:"
            f"{citation.get('startBlockIndex')}-{citation.get('endBlockIndex')}"
        )
    cited_text = str(citation.get("citedText") or "")[:CITATION_TEXT_PREFIX]
    return f"{kind}:{citation.get('documentIndex')}:{cited_text}"


class StreamAccumulator:
    """Applies merge rules for one stream attachment.

    Create one per attachment. Seeding with the partial output of a resumed
    job (or a previous state) makes the fold continue where it stopped, so a
    resumed stream neither repeats nor skips the pre-resume prefix.
    """

    def __init__(
        self,
        seed: AccumulatedState | str | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if isinstance(seed, AccumulatedState):
            self._state = seed.copy()
            self._state.done = False
            self._state.error = None
        else:
            self._state = AccumulatedState(content=seed or "")
        self._clock = clock
        self._attached_at = clock()
        self._citation_keys = {citation_key(c) for c in self._state.citations}

    @property
    def state(self) -> AccumulatedState:
        return self._state.copy()

    @property
    def done(self) -> bool:
        return self._state.done

    def apply(self, delta: Delta) -> AccumulatedState:
        """Merge one delta and return a snapshot. No-op once the fold has ended."""
        if self._state.done:
            return self.state

        state = self._state
        match delta:
            case ContentDelta(text=text):
                if not state.content and state.thinking_duration_seconds is None:
                    elapsed = math.floor(self._clock() - self._attached_at)
                    state.thinking_duration_seconds = max(0, elapsed)
                state.content += text
            case ReasoningDelta(text=text):
                state.reasoning += text
            case ImageDelta(url=url):
                if url not in state.images:
                    state.images.append(url)
                del state.images[MAX_IMAGES:]
            case ToolUseEvent():
                self._merge_tool_use(delta)
            case CitationDelta(citation=citation):
                key = citation_key(citation)
                if key not in self._citation_keys:
                    self._citation_keys.add(key)
                    state.citations.append(dict(citation))
            case JobStatusEvent(status=status, job_id=job_id):
                state.job_status = status
                if job_id:
                    state.job_id = job_id
                if status.is_terminal:
                    state.done = True
            case ErrorEvent(type=error_type, message=message, retryable=retryable):
                state.error = StreamError(type=error_type, message=message, retryable=retryable)
                state.done = True
            case Unrecognized():
                pass
            case _:
                assert_never(delta)
        return self.state

    def apply_all(self, deltas: Iterable[Delta]) -> AccumulatedState:
        for delta in deltas:
            self.apply(delta)
            if self._state.done:
                break
        return self.state

    def finish(self) -> AccumulatedState:
        """Mark the fold complete (stream ended) and return the final state."""
        self._state.done = True
        return self.state

    def fail(self, error_type: str, message: str, retryable: bool = True) -> AccumulatedState:
        """End the fold with an error marker, keeping accumulated output."""
        return self.apply(ErrorEvent(type=error_type, message=message, retryable=retryable))

    def _merge_tool_use(self, event: ToolUseEvent) -> None:
        tool_uses = self._state.tool_uses
        for index, existing in enumerate(tool_uses):
            # An end supersedes the pending start for the same tool; a repeated
            # start replaces the pending one instead of stacking duplicates.
            if existing.name == event.name and existing.phase is ToolPhase.START:
                tool_uses[index] = ToolUse(event.name, event.phase, dict(event.payload))
                return
        tool_uses.append(ToolUse(event.name, event.phase, dict(event.payload)))


async def fold(
    deltas: AsyncIterable[Delta],
    seed: AccumulatedState | str | None = None,
) -> AsyncIterator[AccumulatedState]:
    """Yield a snapshot after every delta until a terminal status or error."""
    accumulator = StreamAccumulator(seed)
    async for delta in deltas:
        yield accumulator.apply(delta)
        if accumulator.done:
            return
