"""Translate upstream Responses API stream events into wire payloads."""

import logging
from typing import Any

from streamrelay.models.job_record import JobStatus, status_message
from streamrelay.streaming.frames import delta_payload

logger = logging.getLogger(__name__)

WEB_SEARCH_TOOL = "web_search"
IMAGE_GENERATION_TOOL = "image_generation"

_STATUS_EVENTS = {"response.created", "response.queued", "response.in_progress"}
_TERMINAL_EVENTS = {
    "response.completed",
    "response.incomplete",
    "response.failed",
    "response.cancelled",
}


def response_output_text(response: dict[str, Any]) -> str:
    """Concatenate the text parts of a response's message output items."""
    if isinstance(response.get("output_text"), str):
        return response["output_text"]
    parts: list[str] = []
    for item in response.get("output") or []:
        if item.get("type") != "message":
            continue
        for content in item.get("content") or []:
            if content.get("type") == "output_text" and isinstance(content.get("text"), str):
                parts.append(content["text"])
    return "".join(parts)


class UpstreamEventTranslator:
    """Stateful translation of one upstream event stream.

    Tracks the job id, the last status seen, function-call names (the name
    only arrives on the ``output_item.added`` event) and, once the stream
    reaches a terminal event, the final output and error.
    """

    def __init__(self) -> None:
        self.job_id: str | None = None
        self.status: JobStatus | None = None
        self.sequence_number: int | None = None
        self.final_output: str | None = None
        self.error_message: str | None = None
        self._function_calls: dict[str, str] = {}

    @property
    def terminal(self) -> bool:
        return self.status is not None and self.status.is_terminal

    def translate(self, event: dict[str, Any]) -> list[dict[str, Any]]:
        event_type = event.get("type", "")
        if isinstance(event.get("sequence_number"), int):
            self.sequence_number = event["sequence_number"]

        if event_type in _STATUS_EVENTS or event_type in _TERMINAL_EVENTS:
            return self._translate_response(event.get("response") or {})

        if event_type == "response.output_text.delta":
            text = event.get("delta")
            return [delta_payload(content=text)] if text else []

        if event_type == "response.reasoning_summary_text.delta":
            text = event.get("delta")
            return [delta_payload(reasoning=text)] if text else []

        if event_type == "response.web_search_call.in_progress":
            return [self._tool_use(WEB_SEARCH_TOOL, "start", details="Searching...")]
        if event_type == "response.web_search_call.completed":
            return [self._tool_use(WEB_SEARCH_TOOL, "end", details="Done")]
        if event_type == "response.image_generation_call.in_progress":
            return [self._tool_use(IMAGE_GENERATION_TOOL, "start")]

        if event_type == "response.output_item.added":
            return self._translate_item_added(event.get("item") or {})
        if event_type == "response.output_item.done":
            return self._translate_item_done(event.get("item") or {})

        if event_type == "response.output_text.annotation.added":
            citation = self._citation(event.get("annotation") or {})
            return [delta_payload(citations=[citation])] if citation else []

        if event_type == "error":
            return [
                {
                    "error": {
                        "type": event.get("code") or "upstream_error",
                        "message": event.get("message") or "Upstream stream error",
                        "retryable": True,
                    }
                }
            ]

        return []

    def _translate_response(self, response: dict[str, Any]) -> list[dict[str, Any]]:
        self.job_id = response.get("id") or self.job_id
        try:
            status = JobStatus(response.get("status"))
        except ValueError:
            return []

        if status is self.status and not status.is_terminal:
            return []
        self.status = status

        payloads: list[dict[str, Any]] = []
        if status.is_terminal:
            self.final_output = response_output_text(response)
            if status is JobStatus.FAILED:
                error = response.get("error") or {}
                self.error_message = error.get("message") or status_message(status)
                # Error first: a terminal status ends a client's fold
                payloads.append({"error": {"type": "failed", "message": self.error_message}})
        if self.job_id:
            background = {
                "responseId": self.job_id,
                "status": status.value,
                "message": status_message(status),
            }
            if self.sequence_number is not None:
                background["cursor"] = self.sequence_number
            payloads.append({"background": background})
        return payloads

    def _translate_item_added(self, item: dict[str, Any]) -> list[dict[str, Any]]:
        if item.get("type") == "function_call" and item.get("name"):
            self._function_calls[item.get("id") or item["name"]] = item["name"]
            return [self._tool_use(item["name"], "start")]
        return []

    def _translate_item_done(self, item: dict[str, Any]) -> list[dict[str, Any]]:
        kind = item.get("type")
        if kind == "function_call":
            name = item.get("name") or self._function_calls.pop(item.get("id"), None)
            if not name:
                return []
            return [self._tool_use(name, "end", arguments=item.get("arguments"))]
        if kind == "image_generation_call" and item.get("result"):
            url = f"data:image/png;base64,{item['result']}"
            return [
                self._tool_use(IMAGE_GENERATION_TOOL, "end", details="Image generated"),
                delta_payload(images=[{"type": "image_url", "image_url": {"url": url}}]),
            ]
        return []

    @staticmethod
    def _tool_use(name: str, status: str, **extra: Any) -> dict[str, Any]:
        tool_use = {"name": name, "status": status}
        tool_use.update({k: v for k, v in extra.items() if v is not None})
        return delta_payload(tool_use=tool_use)

    @staticmethod
    def _citation(annotation: dict[str, Any]) -> dict[str, Any] | None:
        if annotation.get("type") == "url_citation" and annotation.get("url"):
            citation = {"type": "web_search_result_location", "url": annotation["url"]}
            if annotation.get("title"):
                citation["title"] = annotation["title"]
            return citation
        if annotation.get("type") == "file_citation":
            return {
                "type": "char_location",
                "documentIndex": annotation.get("index"),
                "documentTitle": annotation.get("filename"),
                "citedText": annotation.get("file_id") or "",
            }
        return None
