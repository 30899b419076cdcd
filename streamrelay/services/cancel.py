"""Idempotent cancellation of background jobs."""

import logging

from streamrelay.errors import UpstreamError
from streamrelay.models.job_record import JobStatus
from streamrelay.services.store import TaskStore, load_authorized
from streamrelay.services.upstream import UpstreamProvider

logger = logging.getLogger(__name__)


class CancelCoordinator:
    def __init__(self, store: TaskStore, provider: UpstreamProvider):
        self._store = store
        self._provider = provider

    async def cancel(self, job_id: str, requester_id: str | None) -> JobStatus:
        """Cancel a job and return the status the store settles on.

        Cancelling a terminal job returns its status without calling upstream,
        so a repeated cancel can never race a genuine completion. If the job
        completes while the cancel is in flight, the completion wins.
        """
        record = await load_authorized(self._store, job_id, requester_id)
        if record.is_terminal:
            logger.info("Job %s already %s, nothing to cancel", job_id, record.status)
            return JobStatus(record.status)

        try:
            upstream_status = await self._provider.cancel(job_id)
        except Exception as exc:
            raise UpstreamError(f"Cancel of job {job_id} failed: {exc}") from exc

        stored = await self._store.update_status(job_id, upstream_status)
        final = JobStatus(stored.status) if stored is not None else upstream_status
        logger.info("Cancelled job %s (upstream %s, stored %s)", job_id, upstream_status.value, final.value)
        return final
