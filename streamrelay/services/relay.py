"""Primary stream: submit a job and relay its upstream events as wire frames."""

import logging
from collections.abc import AsyncIterator

from streamrelay.config import settings
from streamrelay.models.job_record import JobRecord, JobStatus, TaskType, new_request_id
from streamrelay.services.store import TaskStore
from streamrelay.services.upstream import JobRequest, UpstreamProvider
from streamrelay.streaming.accumulator import StreamAccumulator
from streamrelay.streaming.classifier import classify_payload
from streamrelay.streaming.frames import DONE_FRAME, encode_frame, error_frame
from streamrelay.streaming.translator import UpstreamEventTranslator

logger = logging.getLogger(__name__)


class StreamRelay:
    """Relays one freshly submitted job to its first client.

    The job is registered in the store as soon as upstream assigns it an id,
    and its cursor and partial output are checkpointed every
    ``checkpoint_interval`` sequence numbers so a dropped client can resume.
    """

    def __init__(
        self,
        store: TaskStore,
        provider: UpstreamProvider,
        checkpoint_interval: int | None = None,
    ):
        self._store = store
        self._provider = provider
        self._checkpoint_interval = checkpoint_interval or settings.relay_checkpoint_interval

    async def start(
        self,
        job: JobRequest,
        owner_id: str | None,
        conversation_id: str | None = None,
        task_type: TaskType = TaskType.AGENT,
    ) -> AsyncIterator[bytes]:
        translator = UpstreamEventTranslator()
        accumulator = StreamAccumulator()
        request_id = new_request_id()
        registered = False
        checkpointed_at = 0

        try:
            async for event in self._provider.stream(job):
                payloads = translator.translate(event)
                for payload in payloads:
                    accumulator.apply_all(classify_payload(payload))

                if not registered and translator.job_id:
                    await self._store.put(
                        JobRecord(
                            job_id=translator.job_id,
                            request_id=request_id,
                            owner_id=owner_id,
                            conversation_id=conversation_id,
                            task_type=task_type,
                            status=translator.status or JobStatus.QUEUED,
                            cursor=translator.sequence_number or 0,
                        )
                    )
                    registered = True
                    checkpointed_at = translator.sequence_number or 0
                    logger.info("Registered job %s for request %s", translator.job_id, request_id)

                if registered and translator.terminal:
                    await self._finish(translator, accumulator)
                elif registered and self._checkpoint_due(translator, checkpointed_at):
                    await self._checkpoint(translator, accumulator)
                    checkpointed_at = translator.sequence_number or checkpointed_at

                for payload in payloads:
                    yield encode_frame(payload)
                if translator.terminal:
                    break
        except Exception as exc:
            # The job keeps running upstream; the client resumes from the last checkpoint
            logger.warning("Upstream stream for job %s broke: %s", translator.job_id, exc)
            yield error_frame("streaming_error", str(exc) or "Upstream stream failed", retryable=True)
            yield DONE_FRAME
            return

        if registered and not translator.terminal:
            await self._checkpoint(translator, accumulator)
        yield DONE_FRAME

    def _checkpoint_due(self, translator: UpstreamEventTranslator, checkpointed_at: int) -> bool:
        if translator.sequence_number is None:
            return False
        return translator.sequence_number - checkpointed_at >= self._checkpoint_interval

    async def _checkpoint(
        self, translator: UpstreamEventTranslator, accumulator: StreamAccumulator
    ) -> None:
        await self._store.update_status(
            translator.job_id,
            translator.status or JobStatus.QUEUED,
            accumulator.state.content,
            cursor=translator.sequence_number,
        )

    async def _finish(
        self, translator: UpstreamEventTranslator, accumulator: StreamAccumulator
    ) -> None:
        final_output = translator.final_output or accumulator.state.content
        await self._store.update_status(
            translator.job_id,
            translator.status,
            final_output,
            cursor=translator.sequence_number,
            error_message=translator.error_message,
        )
        logger.info("Job %s finished with status %s", translator.job_id, translator.status.value)
