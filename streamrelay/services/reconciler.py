"""Reconcile stored job status with the upstream provider."""

import asyncio
import logging
from dataclasses import dataclass

from streamrelay.errors import TaskNotFoundError
from streamrelay.models.job_record import JobRecord, JobStatus
from streamrelay.services.store import TaskStore
from streamrelay.services.upstream import UpstreamProvider

logger = logging.getLogger(__name__)


@dataclass
class Reconciliation:
    """Result of one reconcile pass.

    ``upstream_ok`` is False when the provider could not be reached and the
    status is the last one the store knew about.
    """

    job_id: str
    status: JobStatus
    output_text: str | None = None
    error: str | None = None
    upstream_ok: bool = True


class StatusReconciler:
    """Resolves disagreement between the store and the upstream job.

    A terminal record is a fact and is returned without asking upstream. For
    anything else the provider is authoritative; if it cannot be reached the
    job is treated as still active, since a false "active" only costs another
    poll while a false "terminal" would stop a client listening for output.
    """

    def __init__(self, store: TaskStore, provider: UpstreamProvider):
        self._store = store
        self._provider = provider

    async def reconcile(self, job_id: str) -> JobStatus:
        return (await self.refresh(job_id)).status

    async def refresh(self, job_id: str, record: JobRecord | None = None) -> Reconciliation:
        if record is None:
            record = await self._store.get(job_id)
        if record is None:
            raise TaskNotFoundError(job_id)

        local_status = JobStatus(record.status)
        if local_status.is_terminal:
            return Reconciliation(
                job_id=job_id,
                status=local_status,
                output_text=record.partial_output,
                error=record.error_message,
            )

        try:
            upstream = await self._provider.retrieve(job_id)
        except Exception as exc:
            logger.warning("Could not retrieve upstream status for %s: %s", job_id, exc)
            return Reconciliation(
                job_id=job_id,
                status=local_status,
                output_text=record.partial_output or None,
                upstream_ok=False,
            )

        if upstream.status is not local_status or upstream.output_text:
            stored = await self._store.update_status(
                job_id,
                upstream.status,
                upstream.output_text or None,
                error_message=upstream.error,
            )
            if stored is not None and JobStatus(stored.status) is not upstream.status:
                # Lost a race with a terminal write; the stored fact wins
                return Reconciliation(
                    job_id=job_id,
                    status=JobStatus(stored.status),
                    output_text=stored.partial_output,
                    error=stored.error_message,
                )

        return Reconciliation(
            job_id=job_id,
            status=upstream.status,
            output_text=upstream.output_text,
            error=upstream.error,
        )

    async def reconcile_many(self, records: list[JobRecord]) -> list[JobRecord]:
        """Reconcile a listing concurrently and keep only records still active."""
        results = await asyncio.gather(
            *(self.refresh(record.job_id, record) for record in records)
        )
        active: list[JobRecord] = []
        for record, result in zip(records, results):
            if result.status.is_terminal:
                continue
            record.status = result.status
            active.append(record)
        return active
