"""task_cancel tool: cancel a running job."""

from streamrelay.services import TaskServices


async def task_cancel(services: TaskServices, job_id: str, user_id: str | None) -> dict:
    status = await services.canceller.cancel(job_id, user_id)
    return {"status": status.value, "jobId": job_id}
