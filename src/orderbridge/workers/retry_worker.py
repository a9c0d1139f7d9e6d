"""Background worker that re-runs due retry jobs."""

import asyncio
import logging
from datetime import datetime, timezone

from orderbridge.config import settings
from orderbridge.logging_config import job_context
from orderbridge.models.webhook import WebhookDefinition
from orderbridge.repositories.webhook_repo import WebhookRepository

logger = logging.getLogger(__name__)


async def process_due_retries(bridge, session_factory, now: datetime | None = None,
                              batch_size: int | None = None) -> int:
    """Claim due jobs and run each one's next attempt. Returns the number of jobs run.

    Each job runs in its own session so one crash cannot roll back another's outcome
    or stop the rest of the batch.
    """
    now = now or datetime.now(timezone.utc)
    async with session_factory() as session:
        services = bridge.bind(session)
        claimed = await services.retry.claim_due(now, batch_size or settings.retry_batch_size)
        job_ids = [job.job_id for job in claimed]
        await session.commit()

    for job_id in job_ids:
        try:
            async with session_factory() as session:
                await _run_one(bridge, session, job_id)
        except Exception as exc:
            # The job keeps its lease and is reclaimed once the lease expires.
            logger.error("Retry job %s crashed: %s", job_id, exc)
    return len(job_ids)


async def _run_one(bridge, session, job_id: str) -> None:
    from orderbridge.db.models.retry_job import RetryJobRow

    services = bridge.bind(session)
    job = await session.get(RetryJobRow, job_id)
    if job is None:
        return
    event = services.retry.event_of(job)

    row = await WebhookRepository(session).get_owned(job.owner_id, job.webhook_id)
    if row is None or not row.is_active:
        await services.retry.abandon(job.webhook_id, job.idempotency_key, "webhook deleted or inactive")
        await session.commit()
        return
    definition = WebhookDefinition.model_validate(row)
    attempt = job.attempt_count + 1

    logger.info("Retrying %s for webhook %s (attempt %d)", event.event_type.value, job.webhook_id, attempt)
    with job_context(job.webhook_id, job.idempotency_key, attempt, retry_job_id=job_id):
        await services.router.run_isolated(definition, event, attempt=attempt, is_retry=True)


async def run_retry_worker(app) -> None:
    """Poll for due retry jobs until cancelled."""
    interval = settings.retry_poll_interval_seconds
    logger.info("Retry worker started (interval=%ds)", interval)

    while True:
        try:
            session_factory = getattr(app.state, "db_session_factory", None)
            bridge = getattr(app.state, "bridge", None)
            if session_factory and bridge:
                count = await process_due_retries(bridge, session_factory)
                if count:
                    logger.info("Retry worker ran %d job(s)", count)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error("Retry worker error: %s", exc)

        await asyncio.sleep(interval)
