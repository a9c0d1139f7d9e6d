"""Retry policy and durable retry jobs for transient dispatch failures."""

import logging
import random
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from sqlalchemy.ext.asyncio import AsyncSession

from orderbridge.db.models.retry_job import RetryJobRow
from orderbridge.errors.exceptions import ConflictError, NotFoundError
from orderbridge.models.enums import RetryJobStatus
from orderbridge.models.events import DomainEvent
from orderbridge.models.webhook import WebhookDefinition
from orderbridge.repositories.retry_job_repo import RetryJobRepository
from orderbridge.services.id_generator import generate_id
from orderbridge.services.webhook_log import WebhookLogService

logger = logging.getLogger(__name__)

_OPEN = (RetryJobStatus.PENDING.value, RetryJobStatus.RETRYING.value)


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff with jitter and a capped attempt count."""

    base_delay: float = 30.0
    max_delay: float = 1800.0
    max_attempts: int = 5
    jitter_ratio: float = 0.5
    lease_seconds: float = 300.0

    def delay_for(self, failed_attempts: int, rng: random.Random | None = None) -> float:
        """Seconds to wait after ``failed_attempts`` consecutive failures.

        The nominal delay ``min(max_delay, base_delay * 2**(n-1))`` is
        jittered uniformly down to ``(1 - jitter_ratio)`` of itself.
        """
        n = max(failed_attempts, 1)
        ceiling = min(self.max_delay, self.base_delay * (2 ** (n - 1)))
        floor = ceiling * (1 - self.jitter_ratio)
        return (rng or random).uniform(floor, ceiling)

    @classmethod
    def from_settings(cls, settings) -> "RetryPolicy":
        return cls(
            base_delay=settings.retry_base_delay_seconds,
            max_delay=settings.retry_max_delay_seconds,
            max_attempts=settings.retry_max_attempts,
            jitter_ratio=settings.retry_jitter_ratio,
            lease_seconds=settings.retry_lease_seconds,
        )


class RetryManager:
    """Owns the retry_jobs table.

    One job per (webhook, idempotency key). Every attempt, including
    retries, appends its own webhook log row; the job only tracks where
    the sequence stands.
    """

    def __init__(self, session: AsyncSession, policy: RetryPolicy, logs: WebhookLogService,
                 rng: random.Random | None = None):
        self.repo = RetryJobRepository(session)
        self.policy = policy
        self.logs = logs
        self.rng = rng

    async def is_pending(self, webhook_id: str, idempotency_key: str) -> bool:
        job = await self.repo.get_for_key(webhook_id, idempotency_key)
        return job is not None and job.status in _OPEN

    async def record_transient_failure(
        self,
        definition: WebhookDefinition,
        event: DomainEvent,
        attempt: int,
        error: str,
        request_body=None,
        response_status: int | None = None,
        response_body=None,
        now: datetime | None = None,
    ) -> RetryJobRow:
        """Log a failed attempt and schedule the next one, or exhaust the job."""
        now = now or datetime.now(timezone.utc)
        job = await self.repo.get_for_key(definition.webhook_id, event.idempotency_key)
        if job is None:
            job = await self.repo.create(
                job_id=generate_id("rjob_"),
                owner_id=definition.owner_id,
                webhook_id=definition.webhook_id,
                idempotency_key=event.idempotency_key,
                event=event.summary(),
                attempt_count=attempt,
                max_attempts=self.policy.max_attempts,
                status=RetryJobStatus.PENDING.value,
            )

        job.attempt_count = attempt
        job.last_error = error[:4000]
        if attempt >= job.max_attempts:
            job.status = RetryJobStatus.EXHAUSTED.value
            job.next_attempt_at = None
            note = f"retries exhausted after {attempt} attempts"
            logger.error(
                "Retries exhausted for webhook %s key %s after %d attempts: %s",
                definition.webhook_id, event.idempotency_key[:12], attempt, error,
            )
        else:
            delay = self.policy.delay_for(attempt, self.rng)
            job.status = RetryJobStatus.PENDING.value
            job.next_attempt_at = now + timedelta(seconds=delay)
            note = f"retry {attempt + 1}/{job.max_attempts} scheduled in {delay:.0f}s"
            logger.warning(
                "Transient failure for webhook %s (attempt %d): %s; %s",
                definition.webhook_id, attempt, error, note,
            )
        await self.repo.update(job)

        await self.logs.failed(
            definition.owner_id,
            definition.webhook_id,
            event,
            request_body=request_body,
            response_status=response_status,
            response_body=response_body,
            error_message=error,
            note=note,
            attempt_count=attempt,
            retry_job_id=job.job_id,
        )
        return job

    async def mark_succeeded(self, webhook_id: str, idempotency_key: str, attempt: int) -> None:
        job = await self.repo.get_for_key(webhook_id, idempotency_key)
        if job is None:
            return
        await self.repo.update(
            job,
            status=RetryJobStatus.SUCCEEDED.value,
            attempt_count=attempt,
            next_attempt_at=None,
        )
        if attempt > 1:
            logger.info("Retry job %s succeeded on attempt %d", job.job_id, attempt)

    async def abandon(self, webhook_id: str, idempotency_key: str, reason: str) -> None:
        """Stop retrying after a permanent failure."""
        job = await self.repo.get_for_key(webhook_id, idempotency_key)
        if job is None or job.status == RetryJobStatus.SUCCEEDED.value:
            return
        await self.repo.update(
            job,
            status=RetryJobStatus.ABANDONED.value,
            next_attempt_at=None,
            last_error=reason[:4000],
        )
        logger.warning("Retry job %s abandoned: %s", job.job_id, reason)

    async def claim_due(self, now: datetime, limit: int) -> list[RetryJobRow]:
        """Lease due jobs to this poller as ``retrying``.

        A ``retrying`` job whose lease ran out was claimed by a poller that
        died mid-attempt. It is taken over and the lost attempt counts
        toward ``max_attempts``.
        """
        jobs = await self.repo.list_due(now, limit)
        claimed = []
        for job in jobs:
            if job.status == RetryJobStatus.RETRYING.value:
                job.attempt_count += 1
                job.last_error = "attempt lease expired"
                logger.warning("Retry job %s lease expired; reclaiming (attempt %d lost)",
                               job.job_id, job.attempt_count)
                if job.attempt_count >= job.max_attempts:
                    job.status = RetryJobStatus.EXHAUSTED.value
                    job.next_attempt_at = None
                    await self.logs.failed(
                        job.owner_id, job.webhook_id, self.event_of(job),
                        error_message="attempt lease expired",
                        note=f"retries exhausted after {job.attempt_count} attempts",
                        attempt_count=job.attempt_count,
                        retry_job_id=job.job_id,
                    )
                    continue
            job.status = RetryJobStatus.RETRYING.value
            job.next_attempt_at = now + timedelta(seconds=self.policy.lease_seconds)
            claimed.append(job)
        await self.repo.session.flush()
        return claimed

    async def requeue(self, owner_id: str, job_id: str, now: datetime | None = None) -> RetryJobRow:
        """Grant an exhausted or abandoned job another full round of attempts."""
        job = await self.repo.get_owned(owner_id, job_id, for_update=True)
        if job is None:
            raise NotFoundError("Retry job", job_id)
        if job.status not in (RetryJobStatus.EXHAUSTED.value, RetryJobStatus.ABANDONED.value):
            raise ConflictError(f"Retry job '{job_id}' is {job.status}; only exhausted or abandoned jobs can be requeued")
        await self.repo.update(
            job,
            status=RetryJobStatus.PENDING.value,
            next_attempt_at=now or datetime.now(timezone.utc),
            max_attempts=job.attempt_count + self.policy.max_attempts,
        )
        logger.info("Retry job %s requeued by owner %s", job_id, owner_id)
        return job

    async def list_jobs(self, owner_id: str, status: str | None = None) -> list[RetryJobRow]:
        return await self.repo.list_owned(owner_id, status=status)

    @staticmethod
    def event_of(job: RetryJobRow) -> DomainEvent:
        return DomainEvent.model_validate(job.event)
