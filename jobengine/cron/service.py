"""
Cron schedule service.

CRUD and lifecycle operations for schedules, plus the bookkeeping the cron
bridge needs: finding due schedules, advancing ``next_run_at`` and recording
executions.
"""

from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import and_, delete, desc, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from jobengine.config.logging import get_logger
from jobengine.core.clock import Clock
from jobengine.core.exceptions import (
    CronJobNotFoundError,
    InvalidStateTransition,
    StrategyConfigurationError,
)
from jobengine.core.registries import StrategyRegistry
from jobengine.cron.expression import resolve_timezone, validate_expression
from jobengine.cron.models import (
    CronJob,
    CronJobExecution,
    ExecutionStatus,
    SourceType,
    TriggeredBy,
)
from jobengine.cron.schemas import (
    CronJobCreate,
    CronJobListFilters,
    CronJobSourceSync,
    CronJobUpdate,
    CronStatsResponse,
)

logger = get_logger(__name__)


class CronService:
    """Service for managing cron schedules."""

    def __init__(
        self,
        sessions: async_sessionmaker[AsyncSession],
        strategies: StrategyRegistry,
        clock: Clock,
    ):
        self.sessions = sessions
        self.strategies = strategies
        self.clock = clock

    def _validate_strategy(self, job_type: str, configuration: dict[str, Any]) -> None:
        if not self.strategies.has(job_type):
            raise StrategyConfigurationError(
                f"Unknown cron job type: {job_type}",
                {"job_type": job_type, "available": self.strategies.list()},
            )
        self.strategies.get(job_type).validate(configuration)

    async def _load(self, session: AsyncSession, cron_job_id: UUID) -> CronJob:
        cron_job = await session.get(CronJob, cron_job_id)
        if cron_job is None:
            raise CronJobNotFoundError(cron_job_id)
        return cron_job

    # CRUD

    async def create(
        self, data: CronJobCreate, user_id: UUID | None = None
    ) -> CronJob:
        expression = validate_expression(data.cron_expression)
        resolve_timezone(data.timezone)
        self._validate_strategy(data.job_type, data.configuration)

        now = self.clock.now()
        cron_job = CronJob(
            name=data.name,
            description=data.description,
            cron_expression=expression,
            timezone=data.timezone,
            job_type=data.job_type,
            configuration=data.configuration,
            source_type=data.source_type.value,
            source_id=data.source_id,
            source_name=data.source_name,
            store_id=data.store_id,
            user_id=user_id,
            is_active=data.is_active,
            is_paused=False,
            run_count=0,
            success_count=0,
            failure_count=0,
            consecutive_failures=0,
            max_runs=data.max_runs,
            max_failures=data.max_failures,
            timeout_seconds=data.timeout_seconds,
            tags=data.tags,
            metadata_=data.metadata,
            created_at=now,
            updated_at=now,
        )
        cron_job.refresh_next_run(now)

        async with self.sessions() as session:
            session.add(cron_job)
            await session.commit()

        logger.info(
            "Cron job created",
            cron_job_id=str(cron_job.id),
            job_type=cron_job.job_type,
            cron_expression=cron_job.cron_expression,
            next_run_at=cron_job.next_run_at,
        )
        return cron_job

    async def find(self, cron_job_id: UUID) -> CronJob | None:
        async with self.sessions() as session:
            return await session.get(CronJob, cron_job_id)

    async def get(self, cron_job_id: UUID) -> CronJob:
        async with self.sessions() as session:
            return await self._load(session, cron_job_id)

    async def list_cron_jobs(
        self, filters: CronJobListFilters
    ) -> tuple[list[CronJob], int]:
        query = select(CronJob)
        if filters.is_active is not None:
            query = query.where(CronJob.is_active == filters.is_active)
        if filters.is_paused is not None:
            query = query.where(CronJob.is_paused == filters.is_paused)
        if filters.job_type:
            query = query.where(CronJob.job_type == filters.job_type)
        if filters.source_type:
            query = query.where(CronJob.source_type == filters.source_type.value)
        if filters.source_name:
            query = query.where(CronJob.source_name == filters.source_name)
        if filters.store_id:
            query = query.where(CronJob.store_id == filters.store_id)
        if filters.search:
            query = query.where(CronJob.name.ilike(f"%{filters.search}%"))

        async with self.sessions() as session:
            total_result = await session.execute(
                select(func.count()).select_from(query.subquery())
            )
            total = total_result.scalar() or 0
            result = await session.execute(
                query.order_by(desc(CronJob.created_at))
                .offset(filters.offset)
                .limit(filters.limit)
            )
            return list(result.scalars().all()), total

    async def update(self, cron_job_id: UUID, data: CronJobUpdate) -> CronJob:
        changes = data.model_dump(exclude_unset=True)
        async with self.sessions() as session:
            cron_job = await self._load(session, cron_job_id)

            if "cron_expression" in changes:
                changes["cron_expression"] = validate_expression(
                    changes["cron_expression"]
                )
            if "timezone" in changes:
                resolve_timezone(changes["timezone"])
            if "job_type" in changes or "configuration" in changes:
                self._validate_strategy(
                    changes.get("job_type", cron_job.job_type),
                    changes.get("configuration", cron_job.configuration),
                )

            for field_name, value in changes.items():
                if field_name == "metadata":
                    field_name = "metadata_"
                setattr(cron_job, field_name, value)

            now = self.clock.now()
            cron_job.updated_at = now
            cron_job.refresh_next_run(now)
            await session.commit()

        logger.info(
            "Cron job updated", cron_job_id=str(cron_job_id), fields=sorted(changes)
        )
        return cron_job

    async def delete(self, cron_job_id: UUID) -> None:
        async with self.sessions() as session:
            await self._load(session, cron_job_id)
            await self._delete_where(session, CronJob.id == cron_job_id)
            await session.commit()
        logger.info("Cron job deleted", cron_job_id=str(cron_job_id))

    async def _delete_where(self, session: AsyncSession, condition: Any) -> int:
        """Delete matching schedules together with their execution rows."""
        found = await session.execute(select(CronJob.id).where(condition))
        cron_job_ids = list(found.scalars().all())
        if not cron_job_ids:
            return 0
        # Not every backend enforces ON DELETE CASCADE (SQLite without the pragma)
        await session.execute(
            delete(CronJobExecution).where(
                CronJobExecution.cron_job_id.in_(cron_job_ids)
            )
        )
        await session.execute(delete(CronJob).where(CronJob.id.in_(cron_job_ids)))
        return len(cron_job_ids)

    # Plugin and integration owned schedules

    async def sync_from_source(
        self, data: CronJobSourceSync, user_id: UUID | None = None
    ) -> CronJob:
        """
        Create or update the schedule owned by ``(source_type, source_id)``.

        Counters and execution history survive an update; ``next_run_at`` is
        recomputed from the new definition.
        """
        existing = await self.find_by_source(data.source_type, data.source_id)
        if not existing:
            cron_job = await self.create(data, user_id=user_id)
            logger.info(
                "Cron job created from source",
                cron_job_id=str(cron_job.id),
                source_type=data.source_type.value,
                source_name=data.source_name,
            )
            return cron_job

        expression = validate_expression(data.cron_expression)
        resolve_timezone(data.timezone)
        self._validate_strategy(data.job_type, data.configuration)

        async with self.sessions() as session:
            cron_job = await self._load(session, existing[0].id)
            cron_job.name = data.name
            cron_job.description = data.description
            cron_job.cron_expression = expression
            cron_job.timezone = data.timezone
            cron_job.job_type = data.job_type
            cron_job.configuration = data.configuration
            cron_job.source_name = data.source_name
            cron_job.store_id = data.store_id
            if user_id is not None:
                cron_job.user_id = user_id
            cron_job.is_active = data.is_active
            cron_job.max_runs = data.max_runs
            cron_job.max_failures = data.max_failures
            cron_job.timeout_seconds = data.timeout_seconds
            cron_job.tags = data.tags
            cron_job.metadata_ = data.metadata

            now = self.clock.now()
            cron_job.updated_at = now
            cron_job.refresh_next_run(now)
            await session.commit()

        logger.info(
            "Cron job updated from source",
            cron_job_id=str(cron_job.id),
            source_type=data.source_type.value,
            source_name=data.source_name,
        )
        return cron_job

    async def find_by_source(
        self, source_type: SourceType, source_id: UUID | None = None
    ) -> list[CronJob]:
        query = select(CronJob).where(CronJob.source_type == source_type.value)
        if source_id is not None:
            query = query.where(CronJob.source_id == source_id)
        async with self.sessions() as session:
            result = await session.execute(query.order_by(desc(CronJob.created_at)))
            return list(result.scalars().all())

    async def find_by_source_name(self, source_name: str) -> list[CronJob]:
        async with self.sessions() as session:
            result = await session.execute(
                select(CronJob)
                .where(CronJob.source_name == source_name)
                .order_by(desc(CronJob.created_at))
            )
            return list(result.scalars().all())

    async def remove_by_source(self, source_type: SourceType, source_id: UUID) -> int:
        """Drop every schedule a plugin or integration owns. Returns the count."""
        async with self.sessions() as session:
            removed = await self._delete_where(
                session,
                and_(
                    CronJob.source_type == source_type.value,
                    CronJob.source_id == source_id,
                ),
            )
            await session.commit()
        logger.info(
            "Cron jobs removed for source",
            source_type=source_type.value,
            source_id=str(source_id),
            removed=removed,
        )
        return removed

    async def remove_by_source_name(self, source_name: str) -> int:
        async with self.sessions() as session:
            removed = await self._delete_where(
                session, CronJob.source_name == source_name
            )
            await session.commit()
        logger.info(
            "Cron jobs removed for source", source_name=source_name, removed=removed
        )
        return removed

    # Lifecycle

    async def pause(self, cron_job_id: UUID) -> CronJob:
        async with self.sessions() as session:
            cron_job = await self._load(session, cron_job_id)
            if cron_job.is_paused:
                raise InvalidStateTransition(
                    "Cron job is already paused", {"cron_job_id": str(cron_job_id)}
                )
            cron_job.is_paused = True
            cron_job.next_run_at = None
            cron_job.updated_at = self.clock.now()
            await session.commit()
        logger.info("Cron job paused", cron_job_id=str(cron_job_id))
        return cron_job

    async def resume(self, cron_job_id: UUID) -> CronJob:
        """Unpause and clear the consecutive failure streak."""
        async with self.sessions() as session:
            cron_job = await self._load(session, cron_job_id)
            if not cron_job.is_paused:
                raise InvalidStateTransition(
                    "Cron job is not paused", {"cron_job_id": str(cron_job_id)}
                )
            now = self.clock.now()
            cron_job.is_paused = False
            cron_job.consecutive_failures = 0
            cron_job.updated_at = now
            cron_job.refresh_next_run(now)
            await session.commit()
        logger.info("Cron job resumed", cron_job_id=str(cron_job_id))
        return cron_job

    async def reset(self, cron_job_id: UUID) -> CronJob:
        """Zero all counters and last-run fields and unpause."""
        async with self.sessions() as session:
            cron_job = await self._load(session, cron_job_id)
            now = self.clock.now()
            cron_job.run_count = 0
            cron_job.success_count = 0
            cron_job.failure_count = 0
            cron_job.consecutive_failures = 0
            cron_job.last_run_at = None
            cron_job.last_status = None
            cron_job.last_error = None
            cron_job.last_result = None
            cron_job.is_paused = False
            cron_job.updated_at = now
            cron_job.refresh_next_run(now)
            await session.commit()
        logger.info("Cron job reset", cron_job_id=str(cron_job_id))
        return cron_job

    # Cron bridge bookkeeping

    async def find_due(self, now: datetime) -> list[CronJob]:
        async with self.sessions() as session:
            result = await session.execute(
                select(CronJob)
                .where(
                    and_(
                        CronJob.is_active.is_(True),
                        CronJob.is_paused.is_(False),
                        CronJob.next_run_at.is_not(None),
                        CronJob.next_run_at <= now,
                    )
                )
                .order_by(CronJob.next_run_at)
            )
            return list(result.scalars().all())

    async def advance_next_run(
        self, cron_job_id: UUID, now: datetime
    ) -> datetime | None:
        """Store the next fire time after ``now``."""
        async with self.sessions() as session:
            cron_job = await self._load(session, cron_job_id)
            next_run = cron_job.refresh_next_run(now)
            cron_job.updated_at = now
            await session.commit()
        return next_run

    async def record_execution(
        self,
        cron_job_id: UUID,
        status: ExecutionStatus,
        *,
        started_at: datetime,
        result: dict[str, Any] | None = None,
        error: str | None = None,
        triggered_by: TriggeredBy = TriggeredBy.SCHEDULE,
    ) -> CronJobExecution:
        """
        Record one run in a single transaction.

        Updates counters and last-run fields, auto-pauses once
        ``consecutive_failures`` reaches ``max_failures``, recomputes
        ``next_run_at`` and appends the execution row.
        """
        async with self.sessions() as session:
            locked = await session.execute(
                select(CronJob).where(CronJob.id == cron_job_id).with_for_update()
            )
            cron_job = locked.scalar_one_or_none()
            if cron_job is None:
                raise CronJobNotFoundError(cron_job_id)

            now = self.clock.now()
            cron_job.run_count += 1
            cron_job.last_run_at = now
            cron_job.last_status = status.value
            cron_job.last_result = result
            cron_job.last_error = error

            if status is ExecutionStatus.SUCCESS:
                cron_job.success_count += 1
                cron_job.consecutive_failures = 0
            elif status is ExecutionStatus.FAILED:
                cron_job.failure_count += 1
                cron_job.consecutive_failures += 1
                if cron_job.consecutive_failures >= cron_job.max_failures:
                    cron_job.is_paused = True
                    logger.warning(
                        "Cron job auto-paused after consecutive failures",
                        cron_job_id=str(cron_job_id),
                        consecutive_failures=cron_job.consecutive_failures,
                    )

            cron_job.updated_at = now
            cron_job.refresh_next_run(now)

            execution = CronJobExecution(
                cron_job_id=cron_job_id,
                started_at=started_at,
                completed_at=now,
                duration_ms=max(0, int((now - started_at).total_seconds() * 1000)),
                status=status.value,
                result=result,
                error_message=error,
                triggered_by=triggered_by.value,
            )
            session.add(execution)
            await session.commit()

        logger.info(
            "Cron job execution recorded",
            cron_job_id=str(cron_job_id),
            status=status.value,
            run_count=cron_job.run_count,
        )
        return execution

    # Reporting

    async def executions(
        self, cron_job_id: UUID, limit: int = 20, offset: int = 0
    ) -> tuple[list[CronJobExecution], int]:
        async with self.sessions() as session:
            await self._load(session, cron_job_id)
            total_result = await session.execute(
                select(func.count(CronJobExecution.id)).where(
                    CronJobExecution.cron_job_id == cron_job_id
                )
            )
            result = await session.execute(
                select(CronJobExecution)
                .where(CronJobExecution.cron_job_id == cron_job_id)
                .order_by(desc(CronJobExecution.started_at))
                .offset(offset)
                .limit(limit)
            )
            return list(result.scalars().all()), total_result.scalar() or 0

    async def stats(self) -> CronStatsResponse:
        async with self.sessions() as session:
            totals = await session.execute(
                select(
                    func.count(CronJob.id),
                    func.coalesce(func.sum(CronJob.run_count), 0),
                    func.coalesce(func.sum(CronJob.success_count), 0),
                    func.coalesce(func.sum(CronJob.failure_count), 0),
                )
            )
            total, runs, successes, failures = totals.one()

            state_result = await session.execute(
                select(CronJob.is_active, CronJob.is_paused, func.count(CronJob.id))
                .group_by(CronJob.is_active, CronJob.is_paused)
            )
            active = paused = inactive = 0
            for is_active, is_paused, count in state_result.all():
                if not is_active:
                    inactive += count
                elif is_paused:
                    paused += count
                else:
                    active += count

            since = self.clock.now() - timedelta(hours=24)
            recent_result = await session.execute(
                select(func.count(CronJobExecution.id)).where(
                    CronJobExecution.started_at >= since
                )
            )
            recent = recent_result.scalar() or 0

        return CronStatsResponse(
            total=total,
            active=active,
            paused=paused,
            inactive=inactive,
            total_runs=runs,
            total_successes=successes,
            total_failures=failures,
            success_rate=round(successes / runs * 100, 2) if runs else 0.0,
            executions_last_24h=recent,
        )
