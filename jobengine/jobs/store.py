"""
Durable job storage.

Every status change goes through this module. The claim is a conditional
update (``WHERE id = :id AND status = 'pending'``) so that two dispatchers can
never both win the same row; terminal updates are guarded on
``status = 'running'`` so a finished job is never rewritten.
"""

import traceback
from collections.abc import Iterable
from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import and_, delete, desc, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from jobengine.config.logging import get_logger
from jobengine.core.exceptions import InvalidStateTransition, JobNotFoundError
from jobengine.jobs.models import (
    TERMINAL_STATUSES,
    Job,
    JobHistory,
    JobPriority,
    JobStatus,
)
from jobengine.jobs.retry import RetryDecision
from jobengine.jobs.schemas import JobListFilters

logger = get_logger(__name__)

NO_SYNC = {"synchronize_session": False}


def _error_payload(error: BaseException, retry_count: int) -> dict[str, Any]:
    cause = getattr(error, "cause", None) or error
    return {
        "message": str(error) or error.__class__.__name__,
        "type": cause.__class__.__name__,
        "stack": "".join(traceback.format_exception(cause)),
        "retry_count": retry_count,
    }


class JobStore:
    """Repository for jobs and their execution history."""

    claim_attempts = 5

    def __init__(self, sessions: async_sessionmaker[AsyncSession]):
        self.sessions = sessions

    async def insert(
        self,
        *,
        job_type: str,
        payload: dict[str, Any],
        priority: JobPriority,
        scheduled_at: datetime,
        max_retries: int,
        now: datetime,
        store_id: UUID | None = None,
        user_id: UUID | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Job:
        job = Job(
            id=uuid4(),
            type=job_type,
            payload=payload,
            priority=int(priority),
            status=JobStatus.PENDING.value,
            scheduled_at=scheduled_at,
            max_retries=max_retries,
            retry_count=0,
            progress=0,
            store_id=store_id,
            user_id=user_id,
            metadata_=metadata or {},
            created_at=now,
            updated_at=now,
        )
        async with self.sessions() as session:
            session.add(job)
            await session.commit()
        return job

    async def get(self, job_id: UUID) -> Job | None:
        async with self.sessions() as session:
            return await session.get(Job, job_id)

    async def get_or_raise(self, job_id: UUID) -> Job:
        job = await self.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    async def find_active(
        self, job_type: str, statuses: Iterable[JobStatus] | None = None
    ) -> list[Job]:
        """Jobs of a type that are still pending (or in the given statuses)."""
        wanted = [s.value for s in (statuses or [JobStatus.PENDING])]
        async with self.sessions() as session:
            result = await session.execute(
                select(Job)
                .where(and_(Job.type == job_type, Job.status.in_(wanted)))
                .order_by(Job.created_at)
            )
            return list(result.scalars().all())

    # Claiming

    async def claim_next(self, now: datetime) -> Job | None:
        """
        Atomically move the best eligible job to running.

        Order: priority descending, then scheduled_at, then created_at.
        Returns None when nothing is eligible.
        """
        for _ in range(self.claim_attempts):
            async with self.sessions() as session:
                candidate = await session.execute(
                    select(Job.id)
                    .where(
                        and_(
                            Job.status == JobStatus.PENDING.value,
                            Job.scheduled_at <= now,
                        )
                    )
                    .order_by(desc(Job.priority), Job.scheduled_at, Job.created_at)
                    .limit(1)
                    .with_for_update(skip_locked=True)
                )
                job_id = candidate.scalar_one_or_none()
                if job_id is None:
                    await session.rollback()
                    return None

                claimed = await self._transition_to_running(session, job_id, now)
                if claimed is None:
                    # Another dispatcher won the row; look again
                    await session.rollback()
                    continue

                await session.commit()
                return claimed
        return None

    async def claim(self, job_id: UUID, now: datetime) -> Job | None:
        """Claim a specific pending job, or return None if it is not pending."""
        async with self.sessions() as session:
            claimed = await self._transition_to_running(session, job_id, now)
            if claimed is None:
                await session.rollback()
                return None
            await session.commit()
            return claimed

    async def _transition_to_running(
        self, session: AsyncSession, job_id: UUID, now: datetime
    ) -> Job | None:
        result = await session.execute(
            update(Job)
            .where(and_(Job.id == job_id, Job.status == JobStatus.PENDING.value))
            .values(
                status=JobStatus.RUNNING.value,
                started_at=now,
                heartbeat_at=now,
                updated_at=now,
            )
            .execution_options(**NO_SYNC)
        )
        if result.rowcount != 1:
            return None
        return await session.get(Job, job_id, populate_existing=True)

    # Terminal and retry transitions

    async def mark_completed(
        self, job: Job, result: dict[str, Any] | None, now: datetime
    ) -> bool:
        async with self.sessions() as session:
            updated = await session.execute(
                update(Job)
                .where(and_(Job.id == job.id, Job.status == JobStatus.RUNNING.value))
                .values(
                    status=JobStatus.COMPLETED.value,
                    completed_at=now,
                    progress=100,
                    result=result or {},
                    heartbeat_at=None,
                    updated_at=now,
                )
                .execution_options(**NO_SYNC)
            )
            if updated.rowcount != 1:
                await session.rollback()
                logger.warning(
                    "Job no longer running, completion discarded", job_id=str(job.id)
                )
                return False

            session.add(
                JobHistory(
                    job_id=job.id,
                    status=JobStatus.COMPLETED.value,
                    result=result or {},
                    executed_at=now,
                )
            )
            await session.commit()
        return True

    async def record_failure(
        self,
        job: Job,
        error: BaseException,
        decision: RetryDecision,
        now: datetime,
    ) -> bool:
        """Write one failed attempt: requeue or fail terminally, plus history."""
        message = str(error) or error.__class__.__name__
        if decision.retry:
            values: dict[str, Any] = {
                "status": JobStatus.PENDING.value,
                "retry_count": decision.retry_count,
                "scheduled_at": decision.scheduled_at,
                "started_at": None,
            }
        else:
            values = {"status": JobStatus.FAILED.value, "failed_at": now}
        values.update(last_error=message, heartbeat_at=None, updated_at=now)

        async with self.sessions() as session:
            updated = await session.execute(
                update(Job)
                .where(and_(Job.id == job.id, Job.status == JobStatus.RUNNING.value))
                .values(**values)
                .execution_options(**NO_SYNC)
            )
            if updated.rowcount != 1:
                await session.rollback()
                logger.warning(
                    "Job no longer running, failure discarded", job_id=str(job.id)
                )
                return False

            session.add(
                JobHistory(
                    job_id=job.id,
                    status=JobStatus.FAILED.value,
                    error=_error_payload(error, job.retry_count + 1),
                    executed_at=now,
                )
            )
            await session.commit()
        return True

    async def cancel(self, job_id: UUID, now: datetime) -> Job:
        """Cancel a pending job. Any other status is rejected unchanged."""
        async with self.sessions() as session:
            result = await session.execute(
                update(Job)
                .where(and_(Job.id == job_id, Job.status == JobStatus.PENDING.value))
                .values(
                    status=JobStatus.CANCELLED.value,
                    cancelled_at=now,
                    updated_at=now,
                )
                .execution_options(**NO_SYNC)
            )
            if result.rowcount == 1:
                await session.commit()
                return await session.get(Job, job_id, populate_existing=True)

            await session.rollback()
            job = await session.get(Job, job_id)
            if job is None:
                raise JobNotFoundError(job_id)
            raise InvalidStateTransition(
                f"Cannot cancel a {job.status} job",
                {"job_id": str(job_id), "status": job.status},
            )

    async def update_progress(
        self, job_id: UUID, progress: int, message: str | None, now: datetime
    ) -> None:
        progress = max(0, min(100, int(progress)))
        async with self.sessions() as session:
            await session.execute(
                update(Job)
                .where(and_(Job.id == job_id, Job.status == JobStatus.RUNNING.value))
                .values(progress=progress, progress_message=message, updated_at=now)
                .execution_options(**NO_SYNC)
            )
            await session.commit()

    # Recovery and leases

    async def requeue_running(
        self,
        now: datetime,
        *,
        heartbeat_before: datetime | None = None,
        exclude_ids: Iterable[UUID] = (),
    ) -> list[UUID]:
        """
        Put running jobs back to pending, eligible immediately.

        retry_count is left alone. With ``heartbeat_before`` only jobs whose
        heartbeat is older than that instant are requeued.
        """
        conditions = [Job.status == JobStatus.RUNNING.value]
        if heartbeat_before is not None:
            conditions.append(Job.heartbeat_at < heartbeat_before)
        excluded = list(exclude_ids)
        if excluded:
            conditions.append(Job.id.not_in(excluded))

        async with self.sessions() as session:
            found = await session.execute(select(Job.id).where(and_(*conditions)))
            job_ids = list(found.scalars().all())
            if not job_ids:
                return []

            await session.execute(
                update(Job)
                .where(and_(Job.id.in_(job_ids), Job.status == JobStatus.RUNNING.value))
                .values(
                    status=JobStatus.PENDING.value,
                    scheduled_at=now,
                    started_at=None,
                    heartbeat_at=None,
                    updated_at=now,
                )
                .execution_options(**NO_SYNC)
            )
            await session.commit()
        return job_ids

    async def heartbeat(self, job_ids: Iterable[UUID], now: datetime) -> None:
        ids = list(job_ids)
        if not ids:
            return
        async with self.sessions() as session:
            await session.execute(
                update(Job)
                .where(and_(Job.id.in_(ids), Job.status == JobStatus.RUNNING.value))
                .values(heartbeat_at=now)
                .execution_options(**NO_SYNC)
            )
            await session.commit()

    # Queries for the administrative surface

    async def list_jobs(self, filters: JobListFilters) -> tuple[list[Job], int]:
        query = select(Job)
        if filters.status:
            query = query.where(Job.status.in_([s.value for s in filters.status]))
        if filters.type:
            query = query.where(Job.type == filters.type)
        if filters.store_id:
            query = query.where(Job.store_id == filters.store_id)
        if filters.user_id:
            query = query.where(Job.user_id == filters.user_id)

        async with self.sessions() as session:
            total_result = await session.execute(
                select(func.count()).select_from(query.subquery())
            )
            total = total_result.scalar() or 0

            jobs_result = await session.execute(
                query.order_by(desc(Job.created_at))
                .offset(filters.offset)
                .limit(filters.limit)
            )
            return list(jobs_result.scalars().all()), total

    async def history(self, job_id: UUID) -> list[JobHistory]:
        async with self.sessions() as session:
            result = await session.execute(
                select(JobHistory)
                .where(JobHistory.job_id == job_id)
                .order_by(desc(JobHistory.executed_at))
            )
            return list(result.scalars().all())

    async def statistics(self, since: datetime) -> dict[str, Any]:
        """Counts by status for jobs created since ``since``.

        ``pending`` and ``running`` are current totals regardless of age.
        """
        async with self.sessions() as session:
            status_result = await session.execute(
                select(Job.status, func.count(Job.id))
                .where(Job.created_at >= since)
                .group_by(Job.status)
            )
            by_status = dict(status_result.all())

            type_result = await session.execute(
                select(Job.type, func.count(Job.id))
                .where(Job.created_at >= since)
                .group_by(Job.type)
            )
            by_type = dict(type_result.all())

            live_result = await session.execute(
                select(Job.status, func.count(Job.id))
                .where(
                    Job.status.in_(
                        [JobStatus.PENDING.value, JobStatus.RUNNING.value]
                    )
                )
                .group_by(Job.status)
            )
            live = dict(live_result.all())

        total = sum(by_status.values())
        completed = by_status.get(JobStatus.COMPLETED.value, 0)
        return {
            "total": total,
            "completed": completed,
            "failed": by_status.get(JobStatus.FAILED.value, 0),
            "cancelled": by_status.get(JobStatus.CANCELLED.value, 0),
            "pending": live.get(JobStatus.PENDING.value, 0),
            "running": live.get(JobStatus.RUNNING.value, 0),
            "success_rate": round(completed / total * 100, 2) if total else 0.0,
            "by_type": by_type,
        }

    async def delete_terminal_before(self, cutoff: datetime) -> int:
        """Delete terminal jobs (and their history) last updated before cutoff."""
        async with self.sessions() as session:
            found = await session.execute(
                select(Job.id).where(
                    and_(
                        Job.status.in_(list(TERMINAL_STATUSES)),
                        Job.updated_at < cutoff,
                    )
                )
            )
            job_ids = list(found.scalars().all())
            if not job_ids:
                return 0

            await session.execute(
                delete(JobHistory)
                .where(JobHistory.job_id.in_(job_ids))
                .execution_options(**NO_SYNC)
            )
            result = await session.execute(
                delete(Job).where(Job.id.in_(job_ids)).execution_options(**NO_SYNC)
            )
            await session.commit()
            return result.rowcount
