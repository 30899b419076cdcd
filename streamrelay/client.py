"""HTTP client for the streamrelay task endpoints.

Used by front ends and scripts to list, inspect, cancel and resume jobs.
``resume`` folds the event stream into an ``AccumulatedState`` as it arrives.
"""

import os
from typing import Any

import httpx

from streamrelay.streaming.accumulator import AccumulatedState
from streamrelay.streaming.consumer import UpdateCallback, consume

STREAMRELAY_BASE_URL = os.environ.get("STREAMRELAY_URL", "http://localhost:8788")
STREAMRELAY_TIMEOUT = float(os.environ.get("STREAMRELAY_TIMEOUT", "30"))


class RelayClientError(Exception):
    """Raised when the server answers with an error."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class RelayUnavailable(Exception):
    """Raised when the server is not reachable."""


class TaskClient:
    def __init__(
        self,
        user_id: str,
        base_url: str | None = None,
        timeout: float | None = None,
        principal_header: str = "x-user-id",
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url or STREAMRELAY_BASE_URL
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={principal_header: user_id, "Accept": "application/json"},
            # Resume streams stay open while the job runs; only connecting is bounded
            timeout=httpx.Timeout(timeout or STREAMRELAY_TIMEOUT, read=None),
            transport=transport,
        )

    async def __aenter__(self) -> "TaskClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    async def health(self) -> bool:
        try:
            response = await self._client.get("/health")
        except httpx.TransportError as e:
            raise RelayUnavailable(f"Cannot connect to streamrelay at {self.base_url}: {e}") from e
        return response.status_code == 200

    async def active(self) -> list[dict]:
        """Jobs of the current user that are still running."""
        result = await self._request("GET", "/tasks/active")
        return result["tasks"]

    async def conversation(self, conversation_id: str) -> list[dict]:
        result = await self._request(
            "GET", "/tasks/conversation", params={"conversationId": conversation_id}
        )
        return result["tasks"]

    async def status(self, job_id: str) -> dict:
        return await self._request("POST", "/tasks/status", json={"jobId": job_id})

    async def cancel(self, job_id: str) -> str:
        result = await self._request("POST", "/tasks/cancel", json={"jobId": job_id})
        return result["status"]

    async def start(
        self,
        input: str,
        conversation_id: str | None = None,
        on_update: UpdateCallback | None = None,
        **options: Any,
    ) -> AccumulatedState:
        """Submit a background job and fold its stream while attached.

        ``options`` are passed through in the request body (``model``,
        ``instructions``, ``reasoningEffort``, ``tools``, ``taskType``). The
        returned state carries the ``job_id`` needed to resume later.
        """
        body: dict[str, Any] = {"input": input, **options}
        if conversation_id is not None:
            body["conversationId"] = conversation_id
        return await self._stream("/tasks", body, None, on_update)

    async def resume(
        self,
        job_id: str,
        cursor: int | None = None,
        seed: AccumulatedState | str | None = None,
        on_update: UpdateCallback | None = None,
    ) -> AccumulatedState:
        """Re-attach to a running job and fold its stream.

        The seed has to match the cursor. Resuming at the job's stored
        ``cursor`` (or with no cursor) sends only what follows the record's
        ``partialOutput``, so seed with exactly that ``partialOutput``. Any
        lower cursor, 0 included, replays the stored output first and must
        not be seeded with text. A live attachment runs ahead of the stored
        checkpoint, so its state is never a valid seed. A connection lost
        mid-stream returns the state so far with a retryable
        ``transport_error`` marker.
        """
        body: dict[str, Any] = {"jobId": job_id}
        if cursor is not None:
            body["cursor"] = cursor
        return await self._stream("/tasks/resume", body, seed, on_update)

    async def _stream(
        self,
        path: str,
        body: dict[str, Any],
        seed: AccumulatedState | str | None,
        on_update: UpdateCallback | None,
    ) -> AccumulatedState:
        try:
            async with self._client.stream("POST", path, json=body) as response:
                if response.is_error:
                    await response.aread()
                    self._raise_for_error(response)
                return await consume(
                    response.aiter_bytes(),
                    seed=seed,
                    on_update=on_update,
                    transport_errors=(httpx.TransportError, OSError),
                )
        except httpx.TransportError as e:
            raise RelayUnavailable(f"Cannot connect to streamrelay at {self.base_url}: {e}") from e

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.TransportError as e:
            raise RelayUnavailable(f"Cannot connect to streamrelay at {self.base_url}: {e}") from e

        if response.is_error:
            self._raise_for_error(response)
        try:
            return response.json()
        except ValueError as e:
            raise RelayClientError(f"Invalid JSON response from server: {e}", response.status_code) from e

    @staticmethod
    def _raise_for_error(response: httpx.Response) -> None:
        try:
            message = response.json().get("error") or response.reason_phrase
        except ValueError:
            message = response.text or response.reason_phrase
        raise RelayClientError(message, response.status_code)
