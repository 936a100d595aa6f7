"""
Cron monitor: turns due schedules into dispatch jobs.
"""

import asyncio
from uuid import UUID

from jobengine.config.logging import get_logger
from jobengine.config.settings import Settings
from jobengine.core.clock import Clock
from jobengine.core.exceptions import InvalidStateTransition
from jobengine.cron.handler import CRON_DISPATCH_JOB_TYPE
from jobengine.cron.models import CronJob, TriggeredBy
from jobengine.cron.service import CronService
from jobengine.jobs.dispatcher import Dispatcher
from jobengine.jobs.models import Job, JobPriority, JobStatus
from jobengine.jobs.store import JobStore

logger = get_logger(__name__)


class CronMonitor:
    """
    Periodically enqueue a dispatch job for every due schedule.

    The duplicate guard (look for a pending or running dispatch job, then
    schedule) is a check-then-act sequence, so two monitors ticking at the
    same instant can both enqueue. The dispatch handler tolerates that.
    """

    def __init__(
        self,
        settings: Settings,
        cron_service: CronService,
        dispatcher: Dispatcher,
        store: JobStore,
        clock: Clock,
    ):
        self.settings = settings
        self.cron_service = cron_service
        self.dispatcher = dispatcher
        self.store = store
        self.clock = clock
        self.running = False
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task | None = None

    async def start(self) -> None:
        if self.running:
            return
        self.running = True
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._loop())
        logger.info(
            "Cron monitor started", interval_s=self.settings.cron_monitor_interval_s
        )

    async def stop(self) -> None:
        if not self.running:
            return
        self.running = False
        self._stop_event.set()
        if self._task is not None:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None
        logger.info("Cron monitor stopped")

    async def _loop(self) -> None:
        while self.running:
            try:
                await self.tick()
            except Exception:
                logger.exception("Error in cron monitor tick")
            try:
                await asyncio.wait_for(
                    self._stop_event.wait(),
                    timeout=self.settings.cron_monitor_interval_s,
                )
            except TimeoutError:
                pass

    async def tick(self) -> list[Job]:
        """Enqueue dispatch jobs for every due schedule; return what was enqueued."""
        now = self.clock.now()
        due = await self.cron_service.find_due(now)
        if not due:
            return []

        in_flight = await self._in_flight_schedule_ids()
        enqueued: list[Job] = []
        for cron_job in due:
            try:
                if cron_job.id in in_flight:
                    logger.info(
                        "Cron job already in flight, skipping",
                        cron_job_id=str(cron_job.id),
                    )
                    continue
                enqueued.append(await self._dispatch(cron_job, TriggeredBy.SCHEDULE))
                in_flight.add(cron_job.id)
                await self.cron_service.advance_next_run(cron_job.id, now)
            except Exception:
                logger.exception(
                    "Failed to dispatch cron job", cron_job_id=str(cron_job.id)
                )

        if enqueued:
            logger.info("Cron jobs dispatched", count=len(enqueued))
        return enqueued

    async def trigger(self, cron_job_id: UUID) -> Job:
        """Enqueue an immediate manual run of a schedule."""
        cron_job = await self.cron_service.get(cron_job_id)
        if not cron_job.can_run():
            raise InvalidStateTransition(
                "Cron job cannot run in its current state",
                {
                    "cron_job_id": str(cron_job_id),
                    "is_active": cron_job.is_active,
                    "is_paused": cron_job.is_paused,
                },
            )
        return await self._dispatch(cron_job, TriggeredBy.MANUAL)

    async def _dispatch(self, cron_job: CronJob, triggered_by: TriggeredBy) -> Job:
        return await self.dispatcher.schedule_job(
            CRON_DISPATCH_JOB_TYPE,
            {"cron_job_id": str(cron_job.id), "triggered_by": triggered_by.value},
            priority=JobPriority.NORMAL,
            max_retries=0,
            store_id=cron_job.store_id,
            user_id=cron_job.user_id,
            metadata={"cron_job_name": cron_job.name},
        )

    async def _in_flight_schedule_ids(self) -> set[UUID]:
        jobs = await self.store.find_active(
            CRON_DISPATCH_JOB_TYPE, [JobStatus.PENDING, JobStatus.RUNNING]
        )
        ids: set[UUID] = set()
        for job in jobs:
            raw = (job.payload or {}).get("cron_job_id")
            if raw:
                ids.add(UUID(str(raw)))
        return ids
