"""Re-attach a client to a job that is already in flight."""

import asyncio
import contextlib
import logging
import time
from collections.abc import AsyncIterator, Callable, Iterator
from dataclasses import dataclass

from streamrelay.config import Settings, settings
from streamrelay.models.job_record import JobRecord, JobStatus, status_message
from streamrelay.services.reconciler import Reconciliation, StatusReconciler
from streamrelay.services.store import TaskStore, load_authorized
from streamrelay.streaming.frames import DONE_FRAME, content_frame, error_frame, status_frame

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PollPolicy:
    """Backoff schedule for the resume poll loop."""

    initial_seconds: float = 2.0
    max_seconds: float = 10.0
    backoff: float = 1.5
    timeout_seconds: float = 600.0

    @classmethod
    def from_settings(cls, config: Settings = settings) -> "PollPolicy":
        return cls(
            initial_seconds=config.relay_poll_initial_seconds,
            max_seconds=config.relay_poll_max_seconds,
            backoff=config.relay_poll_backoff,
            timeout_seconds=config.relay_poll_timeout_seconds,
        )

    def delays(self) -> Iterator[float]:
        delay = self.initial_seconds
        while True:
            yield delay
            delay = min(delay * self.backoff, self.max_seconds)


def remaining_output(output_text: str | None, partial_output: str) -> str:
    """Text the client has not seen, given it was seeded with ``partial_output``."""
    output_text = output_text or ""
    if output_text.startswith(partial_output):
        return output_text[len(partial_output):]
    return output_text


def effective_cursor(record: JobRecord, requested: int | None) -> int:
    cursor = record.cursor if requested is None else requested
    return max(0, min(cursor, record.cursor))


class ResumeCoordinator:
    """Serves a synthetic stream for a job until it reaches a terminal status.

    At the record's checkpoint cursor the client is expected to hold
    ``partial_output`` already and only the remainder of the final output is
    sent. A cursor behind the checkpoint (a client without local state sends
    0) replays ``partial_output`` as the first frame, so the client folds the
    whole output either way.
    While the job is active a status frame is emitted on every poll; polling
    backs off up to ``max_seconds`` and gives up after ``timeout_seconds`` with
    a retryable ``poll_timeout`` error, leaving the record untouched so a later
    resume can pick it up again.
    """

    def __init__(
        self,
        store: TaskStore,
        reconciler: StatusReconciler,
        policy: PollPolicy | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._store = store
        self._reconciler = reconciler
        self._policy = policy or PollPolicy.from_settings()
        self._clock = clock

    async def resume(
        self,
        job_id: str,
        requester_id: str | None,
        cursor: int | None = None,
        stop: asyncio.Event | None = None,
    ) -> AsyncIterator[bytes]:
        """Authorize the caller and return the frame stream for ``job_id``.

        Authorization happens here, before the stream is returned, so a denied
        caller gets an error instead of an event stream.
        """
        record = await load_authorized(self._store, job_id, requester_id)
        start = effective_cursor(record, cursor)
        logger.info("Resuming job %s from cursor %d", job_id, start)
        return self._frames(record, start, stop)

    async def _frames(
        self,
        record: JobRecord,
        cursor: int,
        stop: asyncio.Event | None,
    ) -> AsyncIterator[bytes]:
        job_id = record.job_id
        deadline = self._clock() + self._policy.timeout_seconds
        delays = self._policy.delays()

        try:
            if cursor < record.cursor and record.partial_output:
                yield content_frame(record.partial_output)

            while True:
                if stop is not None and stop.is_set():
                    logger.info("Resume of job %s stopped by caller", job_id)
                    return

                result = await self._reconciler.refresh(job_id)
                if result.status.is_terminal:
                    for frame in self._terminal_frames(result, record.partial_output, cursor):
                        yield frame
                    return

                yield status_frame(job_id, result.status, cursor=cursor)

                remaining = deadline - self._clock()
                if remaining <= 0:
                    logger.warning("Gave up polling job %s after %.0fs", job_id, self._policy.timeout_seconds)
                    yield error_frame(
                        "poll_timeout",
                        "Job is still running; resume again to keep waiting",
                        retryable=True,
                    )
                    yield DONE_FRAME
                    return

                await self._pause(min(next(delays), remaining), stop)
        except Exception as exc:
            logger.exception("Resume stream for job %s failed", job_id)
            yield error_frame("streaming_error", str(exc) or "Failed to resume stream")
            yield DONE_FRAME

    @staticmethod
    def _terminal_frames(result: Reconciliation, partial_output: str, cursor: int) -> list[bytes]:
        # Content and errors precede the terminal status, which ends a client's fold
        frames: list[bytes] = []
        remainder = remaining_output(result.output_text, partial_output)
        if remainder:
            frames.append(content_frame(remainder))
        if result.status in (JobStatus.FAILED, JobStatus.CANCELLED):
            frames.append(
                error_frame(result.status.value, result.error or status_message(result.status))
            )
        frames.append(status_frame(result.job_id, result.status, cursor=cursor))
        frames.append(DONE_FRAME)
        return frames

    @staticmethod
    async def _pause(seconds: float, stop: asyncio.Event | None) -> None:
        if stop is None:
            await asyncio.sleep(seconds)
            return
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(stop.wait(), timeout=seconds)
