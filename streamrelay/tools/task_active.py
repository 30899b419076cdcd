"""task_active tool: list a principal's jobs that are still running."""

from streamrelay.services import TaskServices


async def task_active(services: TaskServices, user_id: str) -> dict:
    """Return the caller's non-terminal jobs, verified against upstream.

    Jobs that upstream reports as finished are settled in the store and left
    out. Jobs whose upstream status cannot be checked are kept.
    """
    await services.purge_expired()
    records = await services.store.list_active(user_id)
    active = await services.reconciler.reconcile_many(records)
    return {"tasks": [record.to_dict() for record in active]}
