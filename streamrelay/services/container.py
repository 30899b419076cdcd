"""Wiring of the task services for one process."""

import logging
from dataclasses import dataclass
from datetime import timedelta

from streamrelay.config import Settings, settings
from streamrelay.db import create_engine, create_session_factory, init_db
from streamrelay.services.cancel import CancelCoordinator
from streamrelay.services.reconciler import StatusReconciler
from streamrelay.services.relay import StreamRelay
from streamrelay.services.resume import PollPolicy, ResumeCoordinator
from streamrelay.services.store import InMemoryTaskStore, SqlTaskStore, TaskStore
from streamrelay.services.upstream import OpenAIResponsesProvider, UpstreamProvider

logger = logging.getLogger(__name__)


@dataclass
class TaskServices:
    store: TaskStore
    provider: UpstreamProvider
    reconciler: StatusReconciler
    resumer: ResumeCoordinator
    canceller: CancelCoordinator
    relay: StreamRelay
    retention: timedelta

    async def purge_expired(self) -> int:
        """Drop terminal records past the retention window."""
        purged = await self.store.purge_terminal(self.retention)
        if purged:
            logger.info("Purged %d expired job records", purged)
        return purged

    async def close(self) -> None:
        await self.store.close()
        close_provider = getattr(self.provider, "close", None)
        if close_provider is not None:
            await close_provider()


def build_store(config: Settings = settings) -> TaskStore:
    if config.relay_store_backend == "memory":
        return InMemoryTaskStore()
    if config.relay_store_backend != "sql":
        raise ValueError(f"Unknown store backend: {config.relay_store_backend}")
    engine = create_engine(config.database_url)
    return SqlTaskStore(create_session_factory(engine), engine=engine)


def build_services(
    config: Settings = settings,
    store: TaskStore | None = None,
    provider: UpstreamProvider | None = None,
    policy: PollPolicy | None = None,
) -> TaskServices:
    """Create the services once at process start; callers receive them explicitly."""
    store = store or build_store(config)
    provider = provider or OpenAIResponsesProvider(
        api_key=config.openai_api_key,
        timeout=config.relay_upstream_timeout_seconds,
    )
    reconciler = StatusReconciler(store, provider)
    return TaskServices(
        store=store,
        provider=provider,
        reconciler=reconciler,
        resumer=ResumeCoordinator(store, reconciler, policy or PollPolicy.from_settings(config)),
        canceller=CancelCoordinator(store, provider),
        relay=StreamRelay(store, provider, config.relay_checkpoint_interval),
        retention=timedelta(hours=config.relay_terminal_retention_hours),
    )


async def prepare_store(store: TaskStore) -> None:
    """Create missing tables for a SQL store (development and tests)."""
    if isinstance(store, SqlTaskStore) and store.engine is not None:
        await init_db(store.engine)
