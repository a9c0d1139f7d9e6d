"""Manual intervention on retry jobs that ran out of attempts."""

from fastapi import APIRouter

from orderbridge.dependencies import CurrentOwner, Services
from orderbridge.models.enums import RetryJobStatus
from orderbridge.models.integration import RetryJobView

router = APIRouter(tags=["Retry Jobs"])


@router.get("/retry-jobs")
async def list_retry_jobs(
    owner_id: CurrentOwner,
    services: Services,
    status: RetryJobStatus | None = None,
) -> list[dict]:
    rows = await services.retry.list_jobs(owner_id, status.value if status else None)
    return [RetryJobView.model_validate(row).model_dump(mode="json") for row in rows]


@router.post("/retry-jobs/{job_id}/requeue")
async def requeue_retry_job(job_id: str, owner_id: CurrentOwner, services: Services) -> dict:
    job = await services.retry.requeue(owner_id, job_id)
    await services.session.commit()
    return RetryJobView.model_validate(job).model_dump(mode="json")
