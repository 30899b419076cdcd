"""Upstream provider: OpenAI Responses API in background mode."""

import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any, Protocol

from openai import AsyncOpenAI
from pydantic import BaseModel, Field

from streamrelay.config import settings
from streamrelay.models.job_record import JobStatus
from streamrelay.streaming.translator import response_output_text

logger = logging.getLogger(__name__)


class JobRequest(BaseModel):
    """A generation job to submit upstream."""

    input: str | list[dict[str, Any]]
    model: str = Field(default_factory=lambda: settings.relay_model)
    instructions: str | None = None
    reasoning_effort: str | None = None
    tools: list[dict[str, Any]] = Field(default_factory=list)
    extra: dict[str, Any] = Field(default_factory=dict)

    def to_params(self) -> dict[str, Any]:
        params: dict[str, Any] = {
            "model": self.model,
            "input": self.input,
            "background": True,
            # Background mode requires the response to be stored upstream
            "store": True,
        }
        if self.instructions:
            params["instructions"] = self.instructions
        if self.reasoning_effort:
            params["reasoning"] = {"effort": self.reasoning_effort, "summary": "auto"}
        if self.tools:
            params["tools"] = self.tools
            params["parallel_tool_calls"] = True
        params.update(self.extra)
        return params


@dataclass
class UpstreamJob:
    """Authoritative view of a job as reported by the provider."""

    job_id: str
    status: JobStatus
    output_text: str = ""
    error: str | None = None


class UpstreamProvider(Protocol):
    async def submit(self, job: JobRequest) -> UpstreamJob: ...

    async def retrieve(self, job_id: str) -> UpstreamJob: ...

    async def cancel(self, job_id: str) -> JobStatus: ...

    def stream(self, job: JobRequest) -> AsyncIterator[dict[str, Any]]: ...


def _to_upstream_job(response: Any) -> UpstreamJob:
    data = response.model_dump() if hasattr(response, "model_dump") else dict(response)
    error = data.get("error") or {}
    return UpstreamJob(
        job_id=data["id"],
        status=JobStatus(data["status"]),
        output_text=response_output_text(data),
        error=error.get("message") if isinstance(error, dict) else str(error),
    )


class OpenAIResponsesProvider:
    """Submits, inspects and cancels background responses."""

    def __init__(self, api_key: str | None = None, timeout: float | None = None):
        self._api_key = api_key
        self._timeout = timeout
        self._client: AsyncOpenAI | None = None

    @property
    def client(self) -> AsyncOpenAI:
        """Lazily initialize the OpenAI client."""
        if self._client is None:
            self._client = AsyncOpenAI(
                api_key=self._api_key or settings.openai_api_key,
                timeout=self._timeout or settings.relay_upstream_timeout_seconds,
            )
        return self._client

    async def submit(self, job: JobRequest) -> UpstreamJob:
        response = await self.client.responses.create(**job.to_params())
        logger.info("Submitted background response %s", response.id)
        return _to_upstream_job(response)

    async def retrieve(self, job_id: str) -> UpstreamJob:
        response = await self.client.responses.retrieve(job_id)
        return _to_upstream_job(response)

    async def cancel(self, job_id: str) -> JobStatus:
        response = await self.client.responses.cancel(job_id)
        logger.info("Cancelled background response %s (now %s)", job_id, response.status)
        return JobStatus(response.status)

    async def stream(self, job: JobRequest) -> AsyncIterator[dict[str, Any]]:
        """Submit a job and yield its stream events as plain dicts."""
        events = await self.client.responses.create(**job.to_params(), stream=True)
        async for event in events:
            yield event.model_dump()

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None
