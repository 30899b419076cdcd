"""task_status tool: authoritative status of one job."""

from streamrelay.services import TaskServices, load_authorized


async def task_status(services: TaskServices, job_id: str, user_id: str | None) -> dict:
    """Reconcile a job with upstream and report its status."""
    record = await load_authorized(services.store, job_id, user_id)
    result = await services.reconciler.refresh(job_id, record)

    response = {
        "status": result.status.value,
        "jobId": job_id,
        "requestId": record.request_id,
    }
    if result.output_text:
        response["outputText"] = result.output_text
    if result.error:
        response["error"] = result.error
    if not result.upstream_ok:
        response["stale"] = True
    return response
