"""Encoders for the ``data: <json>`` event-stream wire format."""

import json
from typing import Any

from streamrelay.models.job_record import JobStatus, status_message

DONE_FRAME = b"data: [DONE]\n\n"

EVENT_STREAM_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def encode_frame(payload: dict[str, Any]) -> bytes:
    data = json.dumps(payload, ensure_ascii=False, separators=(",", ":"))
    return f"data: {data}\n\n".encode()


def delta_payload(**delta: Any) -> dict[str, Any]:
    return {"choices": [{"delta": delta}]}


def content_frame(text: str) -> bytes:
    return encode_frame(delta_payload(content=text))


def reasoning_frame(text: str) -> bytes:
    return encode_frame(delta_payload(reasoning=text))


def status_frame(
    job_id: str,
    status: JobStatus,
    message: str | None = None,
    cursor: int | None = None,
) -> bytes:
    background: dict[str, Any] = {
        "responseId": job_id,
        "status": status.value,
        "message": message or status_message(status),
    }
    if cursor is not None:
        background["cursor"] = cursor
    return encode_frame({"background": background})


def error_frame(error_type: str, message: str, retryable: bool | None = None) -> bytes:
    error: dict[str, Any] = {"type": error_type, "message": message}
    if retryable is not None:
        error["retryable"] = retryable
    return encode_frame({"error": error})
