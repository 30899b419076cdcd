"""Classify decoded stream records into semantic deltas."""

import json
import logging
from typing import Any

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
)
from streamrelay.models.job_record import JobStatus

logger = logging.getLogger(__name__)

_START_PHASES = {"start", "in_progress", "searching", "executing"}
_END_PHASES = {"end", "completed", "failed", "error"}


def classify(record: str) -> list[Delta]:
    """Parse one decoded record and return the deltas it carries, in order.

    A single record may carry more than one delta (reasoning and content in
    the same chunk, several images or citations). Records that fail to parse
    or carry nothing recognisable classify as ``[UNRECOGNIZED]``; they never
    abort the stream.
    """
    try:
        data = json.loads(record)
    except (TypeError, ValueError):
        logger.debug("Ignoring malformed record: %.80s", record)
        return [UNRECOGNIZED]
    if not isinstance(data, dict):
        return [UNRECOGNIZED]

    try:
        deltas = classify_payload(data)
    except (TypeError, ValueError, AttributeError, KeyError):
        logger.debug("Ignoring record with unexpected shape: %.80s", record)
        return [UNRECOGNIZED]
    return deltas or [UNRECOGNIZED]


def classify_payload(data: dict[str, Any]) -> list[Delta]:
    """Deltas carried by an already-parsed wire payload."""
    if data.get("error"):
        error = data["error"]
        if not isinstance(error, dict):
            error = {"message": str(error)}
        return [
            ErrorEvent(
                type=error.get("type") or "unknown_error",
                message=error.get("message") or "An unexpected error occurred",
                retryable=bool(error.get("retryable", False)),
            )
        ]

    if data.get("background"):
        return _classify_background(data["background"])

    choices = data.get("choices")
    if not isinstance(choices, list) or not choices:
        return []
    choice = choices[0] or {}
    delta = choice.get("delta") or {}
    message = choice.get("message") or {}

    deltas: list[Delta] = []

    reasoning = extract_reasoning(delta)
    if reasoning:
        deltas.append(ReasoningDelta(reasoning))

    content = delta.get("content") or message.get("content")
    if isinstance(content, str) and content:
        deltas.append(ContentDelta(content))

    for image in delta.get("images") or []:
        url = (image.get("image_url") or {}).get("url")
        if isinstance(url, str) and url:
            deltas.append(ImageDelta(url))

    tool_use = delta.get("tool_use")
    if isinstance(tool_use, dict):
        event = _classify_tool_use(tool_use)
        if event is not None:
            deltas.append(event)

    for citation in delta.get("citations") or []:
        if isinstance(citation, dict):
            deltas.append(CitationDelta(citation))

    return deltas


def extract_reasoning(delta: dict[str, Any]) -> str:
    """Reasoning text from either the direct field or typed detail fragments."""
    direct = delta.get("reasoning")
    if isinstance(direct, str) and direct:
        return direct

    parts: list[str] = []
    for detail in delta.get("reasoning_details") or []:
        if not isinstance(detail, dict):
            continue
        kind = detail.get("type")
        if kind == "reasoning.text" and isinstance(detail.get("text"), str):
            parts.append(detail["text"])
        elif kind == "reasoning.summary" and isinstance(detail.get("summary"), str):
            parts.append(detail["summary"])
    return "".join(parts)


def _classify_background(background: dict[str, Any]) -> list[Delta]:
    try:
        status = JobStatus(background.get("status"))
    except ValueError:
        return []
    cursor = background.get("cursor")
    return [
        JobStatusEvent(
            status=status,
            job_id=background.get("responseId"),
            message=background.get("message"),
            cursor=cursor if isinstance(cursor, int) else None,
        )
    ]


def _classify_tool_use(tool_use: dict[str, Any]) -> ToolUseEvent | None:
    name = tool_use.get("name") or tool_use.get("tool")
    phase = tool_use.get("status")
    if not name or not phase:
        return None
    if phase in _START_PHASES:
        tool_phase = ToolPhase.START
    elif phase in _END_PHASES:
        tool_phase = ToolPhase.END
    else:
        return None
    payload = {k: v for k, v in tool_use.items() if k not in ("name", "tool", "status")}
    return ToolUseEvent(name=name, phase=tool_phase, payload=payload)
