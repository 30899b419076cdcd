"""HTTP handlers for the task endpoints.

The handlers are plain Starlette endpoints bound to a ``TaskServices``
instance, so the server can register them as FastMCP custom routes and tests
can mount them on a bare Starlette app.
"""

import functools
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from pydantic import ValidationError
from starlette.requests import Request
from starlette.responses import JSONResponse, PlainTextResponse, Response, StreamingResponse
from starlette.routing import Route

from streamrelay.config import settings
from streamrelay.errors import InvalidRequestError, RelayError, UnauthenticatedError
from streamrelay.models.job_record import TaskType, new_request_id
from streamrelay.services import JobRequest, TaskServices
from streamrelay.streaming.frames import EVENT_STREAM_HEADERS
from streamrelay.tools import task_active, task_cancel, task_conversation, task_status

logger = logging.getLogger(__name__)


def _handle_errors(handler: Callable[..., Awaitable[Response]]) -> Callable[..., Awaitable[Response]]:
    """Map exceptions to JSON error responses with a correlation id."""

    @functools.wraps(handler)
    async def wrapper(self: "TaskHandlers", request: Request) -> Response:
        request_id = new_request_id()
        try:
            return await handler(self, request)
        except RelayError as exc:
            if exc.status_code >= 500:
                logger.error("[%s] %s %s failed: %s", request_id, request.method, request.url.path, exc)
            return JSONResponse(
                {"error": exc.title, "requestId": request_id},
                status_code=exc.status_code,
            )
        except Exception:
            logger.exception("[%s] %s %s failed", request_id, request.method, request.url.path)
            return JSONResponse(
                {"error": "Internal server error", "requestId": request_id},
                status_code=500,
            )

    return wrapper


def _job_id(body: dict[str, Any]) -> str:
    job_id = body.get("jobId")
    if not isinstance(job_id, str) or not job_id:
        raise InvalidRequestError("jobId is required")
    return job_id


def _cursor(body: dict[str, Any]) -> int | None:
    cursor = body.get("cursor")
    if cursor is None:
        return None
    if isinstance(cursor, bool) or not isinstance(cursor, int) or cursor < 0:
        raise InvalidRequestError("cursor must be a non-negative integer")
    return cursor


def _job_request(body: dict[str, Any]) -> JobRequest:
    if not body.get("input"):
        raise InvalidRequestError("input is required")
    fields = {
        "input": body["input"],
        "instructions": body.get("instructions"),
        "reasoning_effort": body.get("reasoningEffort"),
        "tools": body.get("tools") or [],
    }
    if body.get("model") is not None:
        fields["model"] = body["model"]
    try:
        return JobRequest(**fields)
    except ValidationError as exc:
        field = ".".join(str(part) for part in exc.errors()[0]["loc"])
        raise InvalidRequestError(f"Invalid value for {field}") from exc


def _task_type(body: dict[str, Any]) -> TaskType:
    try:
        return TaskType(body.get("taskType") or TaskType.AGENT.value)
    except ValueError as exc:
        raise InvalidRequestError("taskType must be one of: agent, research") from exc


def _conversation_id(body: dict[str, Any]) -> str | None:
    conversation_id = body.get("conversationId")
    if conversation_id is not None and not isinstance(conversation_id, str):
        raise InvalidRequestError("conversationId must be a string")
    return conversation_id or None


async def _json_body(request: Request) -> dict[str, Any]:
    try:
        body = await request.json()
    except ValueError as exc:
        raise InvalidRequestError("Request body must be valid JSON") from exc
    if not isinstance(body, dict):
        raise InvalidRequestError("Request body must be a JSON object")
    return body


class TaskHandlers:
    """Starlette endpoints for listing, inspecting, cancelling and resuming jobs."""

    def __init__(self, services: TaskServices, principal_header: str | None = None):
        self._services = services
        self._principal_header = principal_header or settings.relay_principal_header

    def principal(self, request: Request) -> str:
        """The authenticated caller, as asserted by the fronting gateway."""
        user_id = request.headers.get(self._principal_header, "").strip()
        if not user_id:
            raise UnauthenticatedError()
        return user_id

    @_handle_errors
    async def active(self, request: Request) -> Response:
        user_id = self.principal(request)
        return JSONResponse(await task_active(self._services, user_id))

    @_handle_errors
    async def conversation(self, request: Request) -> Response:
        user_id = self.principal(request)
        conversation_id = request.query_params.get("conversationId")
        if not conversation_id:
            raise InvalidRequestError("conversationId is required")
        return JSONResponse(await task_conversation(self._services, conversation_id, user_id))

    @_handle_errors
    async def status(self, request: Request) -> Response:
        user_id = self.principal(request)
        job_id = _job_id(await _json_body(request))
        return JSONResponse(await task_status(self._services, job_id, user_id))

    @_handle_errors
    async def cancel(self, request: Request) -> Response:
        user_id = self.principal(request)
        job_id = _job_id(await _json_body(request))
        return JSONResponse(await task_cancel(self._services, job_id, user_id))

    @_handle_errors
    async def start(self, request: Request) -> Response:
        """Submit a background job and relay its stream while it is attached."""
        user_id = self.principal(request)
        body = await _json_body(request)
        job = _job_request(body)
        frames = self._services.relay.start(
            job,
            user_id,
            conversation_id=_conversation_id(body),
            task_type=_task_type(body),
        )
        return StreamingResponse(
            frames,
            media_type="text/event-stream",
            headers=EVENT_STREAM_HEADERS,
        )

    @_handle_errors
    async def resume(self, request: Request) -> Response:
        user_id = self.principal(request)
        body = await _json_body(request)
        job_id, cursor = _job_id(body), _cursor(body)

        # Starlette closes the frame iterator when the client disconnects
        frames = await self._services.resumer.resume(job_id, user_id, cursor)
        return StreamingResponse(
            frames,
            media_type="text/event-stream",
            headers=EVENT_STREAM_HEADERS,
        )

    async def health(self, request: Request) -> Response:
        """Health check endpoint for container orchestration."""
        return PlainTextResponse("OK")

    def routes(self) -> list[Route]:
        return [
            Route("/tasks", self.start, methods=["POST"]),
            Route("/tasks/active", self.active, methods=["GET"]),
            Route("/tasks/conversation", self.conversation, methods=["GET"]),
            Route("/tasks/status", self.status, methods=["POST"]),
            Route("/tasks/cancel", self.cancel, methods=["POST"]),
            Route("/tasks/resume", self.resume, methods=["POST"]),
            Route("/health", self.health, methods=["GET"]),
        ]
