"""Record store for background jobs.

The store is the only state shared between stream attachments. Status writes
are a compare-and-set against the set of statuses the target may follow, so
two attachments racing on the same job converge without a broad lock and a
terminal status, once written, is never replaced.
"""

import logging
from datetime import datetime, timedelta
from typing import Protocol

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncEngine

from streamrelay.db import SessionFactory, close_db, session_scope
from streamrelay.errors import TaskForbiddenError, TaskNotFoundError
from streamrelay.models.job_record import (
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    JobRecord,
    JobStatus,
    predecessors,
    utcnow,
)

logger = logging.getLogger(__name__)


class TaskStore(Protocol):
    async def put(self, record: JobRecord) -> JobRecord: ...

    async def get(self, job_id: str) -> JobRecord | None: ...

    async def update_status(
        self,
        job_id: str,
        status: JobStatus,
        partial_output: str | None = None,
        *,
        cursor: int | None = None,
        error_message: str | None = None,
    ) -> JobRecord | None: ...

    async def list_active(self, owner_id: str | None) -> list[JobRecord]: ...

    async def list_for_conversation(
        self, conversation_id: str, owner_id: str | None = None
    ) -> list[JobRecord]: ...

    async def purge_terminal(self, older_than: timedelta) -> int: ...

    async def close(self) -> None: ...


class InMemoryTaskStore:
    """Process-local store for tests and single-process development.

    No method awaits while holding a record, so every mutation is atomic with
    respect to other tasks on the event loop.
    """

    def __init__(self) -> None:
        self._records: dict[str, JobRecord] = {}

    async def put(self, record: JobRecord) -> JobRecord:
        existing = self._records.get(record.job_id)
        if existing is not None and existing.is_terminal:
            return existing.clone()
        self._records[record.job_id] = record.clone()
        return record.clone()

    async def get(self, job_id: str) -> JobRecord | None:
        record = self._records.get(job_id)
        return record.clone() if record else None

    async def update_status(
        self,
        job_id: str,
        status: JobStatus,
        partial_output: str | None = None,
        *,
        cursor: int | None = None,
        error_message: str | None = None,
    ) -> JobRecord | None:
        record = self._records.get(job_id)
        if record is None:
            return None
        if not record.apply_update(status, partial_output, cursor, error_message):
            logger.debug("Ignored %s write for job %s in %s", status.value, job_id, record.status)
        return record.clone()

    async def list_active(self, owner_id: str | None) -> list[JobRecord]:
        records = [
            r
            for r in self._records.values()
            if r.owner_id == owner_id and JobStatus(r.status) in ACTIVE_STATUSES
        ]
        return [r.clone() for r in sorted(records, key=lambda r: r.created_at)]

    async def list_for_conversation(
        self, conversation_id: str, owner_id: str | None = None
    ) -> list[JobRecord]:
        records = [
            r
            for r in self._records.values()
            if r.conversation_id == conversation_id
            and (owner_id is None or r.owner_id == owner_id)
        ]
        return [r.clone() for r in sorted(records, key=lambda r: r.created_at)]

    async def purge_terminal(self, older_than: timedelta) -> int:
        cutoff = utcnow() - older_than
        expired = [
            job_id
            for job_id, r in self._records.items()
            if r.is_terminal and r.updated_at < cutoff
        ]
        for job_id in expired:
            del self._records[job_id]
        return len(expired)

    async def close(self) -> None:
        self._records.clear()


class SqlTaskStore:
    """Durable store backed by the ``job_records`` table."""

    def __init__(self, session_factory: SessionFactory, engine: AsyncEngine | None = None):
        self._session_factory = session_factory
        self._engine = engine

    @property
    def engine(self) -> AsyncEngine | None:
        return self._engine

    async def put(self, record: JobRecord) -> JobRecord:
        async with session_scope(self._session_factory) as session:
            existing = await session.get(JobRecord, record.job_id)
            if existing is None:
                stored = record.clone()
                session.add(stored)
                await session.flush()
                return stored.clone()
            if existing.is_terminal:
                return existing.clone()
            for field, value in record.model_dump(exclude={"job_id", "created_at"}).items():
                setattr(existing, field, value)
            await session.flush()
            return existing.clone()

    async def get(self, job_id: str) -> JobRecord | None:
        async with session_scope(self._session_factory) as session:
            record = await session.get(JobRecord, job_id)
            return record.clone() if record else None

    async def update_status(
        self,
        job_id: str,
        status: JobStatus,
        partial_output: str | None = None,
        *,
        cursor: int | None = None,
        error_message: str | None = None,
    ) -> JobRecord | None:
        async with session_scope(self._session_factory) as session:
            current = await session.get(JobRecord, job_id)
            if current is None:
                return None

            candidate = current.clone()
            if not candidate.apply_update(status, partial_output, cursor, error_message):
                logger.debug("Ignored %s write for job %s in %s", status.value, job_id, current.status)
                return candidate

            result = await session.execute(
                update(JobRecord)
                .where(
                    JobRecord.job_id == job_id,
                    JobRecord.status.in_(predecessors(status)),
                )
                .values(
                    status=candidate.status,
                    cursor=candidate.cursor,
                    partial_output=candidate.partial_output,
                    error_message=candidate.error_message,
                    updated_at=candidate.updated_at,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                return candidate

            # Another writer moved the record to a status we may not follow
            await session.refresh(current)
            return current.clone()

    async def list_active(self, owner_id: str | None) -> list[JobRecord]:
        async with session_scope(self._session_factory) as session:
            result = await session.execute(
                select(JobRecord)
                .where(
                    JobRecord.owner_id == owner_id,
                    JobRecord.status.in_(list(ACTIVE_STATUSES)),
                )
                .order_by(JobRecord.created_at)
            )
            return [r.clone() for r in result.scalars().all()]

    async def list_for_conversation(
        self, conversation_id: str, owner_id: str | None = None
    ) -> list[JobRecord]:
        query = select(JobRecord).where(JobRecord.conversation_id == conversation_id)
        if owner_id is not None:
            query = query.where(JobRecord.owner_id == owner_id)
        async with session_scope(self._session_factory) as session:
            result = await session.execute(query.order_by(JobRecord.created_at))
            return [r.clone() for r in result.scalars().all()]

    async def purge_terminal(self, older_than: timedelta) -> int:
        cutoff: datetime = utcnow() - older_than
        async with session_scope(self._session_factory) as session:
            result = await session.execute(
                delete(JobRecord).where(
                    JobRecord.status.in_(list(TERMINAL_STATUSES)),
                    JobRecord.updated_at < cutoff,
                )
            )
            return result.rowcount or 0

    async def close(self) -> None:
        if self._engine is not None:
            await close_db(self._engine)


async def load_authorized(store: TaskStore, job_id: str, requester_id: str | None) -> JobRecord:
    """Fetch a record the requester may act on.

    Records without an owner are open to any caller; owned records only to
    their owner. Raised before any upstream call is made.
    """
    record = await store.get(job_id)
    if record is None:
        raise TaskNotFoundError(job_id)
    if record.owner_id is not None and record.owner_id != requester_id:
        logger.warning("Denied access to job %s for %s", job_id, requester_id)
        raise TaskForbiddenError(job_id)
    return record
