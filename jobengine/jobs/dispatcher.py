"""
Poll-claim-execute dispatcher.

One poll loop per process claims eligible jobs (atomically, through the
JobStore) and runs each one as an independent task, up to the configured
concurrency. The loop never waits for a handler to finish. Jobs still running
when the process dies are requeued by the crash recovery pass on the next
start.
"""

import asyncio
import os
import socket
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any
from uuid import UUID

from jobengine.config.logging import bind_job_context, get_logger
from jobengine.config.settings import Settings
from jobengine.core.exceptions import HandlerExecutionError, UnknownJobType
from jobengine.core.registries import JobRegistry
from jobengine.cron.expression import next_run_at
from jobengine.jobs.backends import QueueBackend
from jobengine.jobs.handlers import HandlerContext
from jobengine.jobs.models import Job, JobPriority
from jobengine.jobs.retry import RetryDecision, RetryPolicy

logger = get_logger(__name__)


@dataclass(frozen=True)
class SystemJob:
    """A built-in recurring job seeded at startup."""

    job_type: str
    cron_expression: str
    priority: JobPriority = JobPriority.HIGH
    max_retries: int = 3
    payload: dict[str, Any] = field(default_factory=dict)


SYSTEM_JOBS: tuple[SystemJob, ...] = (
    SystemJob("system:daily_credit_deduction", "0 0 * * *", JobPriority.HIGH),
    SystemJob("system:finalize_pending_orders", "*/10 * * * *", JobPriority.HIGH),
    SystemJob("system:cleanup", "30 3 * * *", JobPriority.LOW),
)


class Dispatcher:
    """Claims and runs eligible jobs under a concurrency cap."""

    def __init__(
        self,
        settings: Settings,
        context: HandlerContext,
        registry: JobRegistry,
        *,
        backend: QueueBackend | None = None,
        retry_policy: RetryPolicy | None = None,
        register_handlers: Callable[[JobRegistry], None] | None = None,
        system_jobs: tuple[SystemJob, ...] = SYSTEM_JOBS,
    ):
        self.settings = settings
        self.context = context
        self.store = context.store
        self.clock = context.clock
        self.registry = registry
        self.backend = backend
        self.retry_policy = retry_policy or RetryPolicy(settings.job_retry_delays_s)
        self.system_jobs = system_jobs
        self._register_handlers = register_handlers

        self.worker_id = f"{socket.gethostname()}-{os.getpid()}-{id(self)}"
        self.running = False
        self.processing: set[UUID] = set()

        self._initialized = False
        self._init_task: asyncio.Future | None = None
        self._stop_event = asyncio.Event()
        self._loop_tasks: list[asyncio.Task] = []
        self._job_tasks: set[asyncio.Task] = set()

    # Lifecycle

    async def initialize(self) -> None:
        """
        Bring the dispatcher up once.

        Concurrent callers share the same in-flight initialization.
        """
        if self._initialized:
            return
        if self._init_task is None:
            self._init_task = asyncio.ensure_future(self._initialize())
        task = self._init_task
        try:
            await asyncio.shield(task)
        except Exception:
            if self._init_task is task:
                self._init_task = None
            raise

    async def _initialize(self) -> None:
        logger.info("Initializing dispatcher", worker_id=self.worker_id)

        if self.backend is not None:
            if await self.backend.ping():
                logger.info("Queue backend ready", backend=self.backend.name)
            else:
                logger.warning(
                    "Queue backend unavailable, using database queue",
                    backend=self.backend.name,
                )
                await self.backend.close()
                self.backend = None

        if self._register_handlers is not None and not self.registry.is_frozen():
            self._register_handlers(self.registry)
        logger.info("Job handlers registered", registered_handlers=self.registry.list())

        await self.recover_orphaned_jobs()
        await self.start()

        if self.settings.enable_system_jobs:
            await self.schedule_system_jobs()

        self._initialized = True
        logger.info("Dispatcher initialized", worker_id=self.worker_id)

    async def start(self) -> None:
        """Start the poll loop (and the lease loops when enabled)."""
        if self.running:
            return

        self.running = True
        self._stop_event = asyncio.Event()
        self._loop_tasks = [asyncio.create_task(self._poll_loop())]
        if self.settings.job_visibility_timeout_s:
            self._loop_tasks.append(asyncio.create_task(self._heartbeat_loop()))
            self._loop_tasks.append(asyncio.create_task(self._stale_job_loop()))

        logger.info(
            "Starting dispatcher loop",
            worker_id=self.worker_id,
            concurrency=self.settings.job_concurrency,
            poll_interval_ms=self.settings.job_poll_interval_ms,
            backend=self.backend.name if self.backend else "database",
        )

    async def stop(self) -> None:
        """
        Stop claiming and wait a bounded time for in-flight jobs.

        Jobs still running after the timeout keep their running status and
        are picked up by the next startup's recovery pass.
        """
        if not self.running:
            return

        logger.info("Stopping dispatcher", worker_id=self.worker_id)
        self.running = False
        self._stop_event.set()

        for task in self._loop_tasks:
            task.cancel()
        await asyncio.gather(*self._loop_tasks, return_exceptions=True)
        self._loop_tasks = []

        in_flight = set(self._job_tasks)
        if in_flight:
            _, pending = await asyncio.wait(
                in_flight, timeout=self.settings.job_shutdown_timeout_s
            )
            if pending:
                logger.warning(
                    "Dispatcher stopped with active jobs",
                    worker_id=self.worker_id,
                    active_jobs=len(pending),
                )
                for task in pending:
                    task.cancel()
                await asyncio.gather(*pending, return_exceptions=True)

        if self.backend is not None:
            await self.backend.close()

        self._initialized = False
        self._init_task = None
        logger.info("Dispatcher stopped", worker_id=self.worker_id)

    # Scheduling

    async def schedule_job(
        self,
        job_type: str,
        payload: dict[str, Any] | None = None,
        *,
        priority: JobPriority | str = JobPriority.NORMAL,
        delay_s: float = 0,
        max_retries: int | None = None,
        store_id: UUID | None = None,
        user_id: UUID | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Job:
        """Persist a pending job. The only way work enters the queue."""
        if not self.registry.has(job_type):
            raise UnknownJobType(job_type)
        if delay_s < 0:
            raise ValueError("delay_s must be >= 0")

        now = self.clock.now()
        job = await self.store.insert(
            job_type=job_type,
            payload=payload or {},
            priority=JobPriority.parse(priority),
            scheduled_at=now + timedelta(seconds=delay_s),
            max_retries=(
                self.settings.job_default_max_retries
                if max_retries is None
                else max_retries
            ),
            now=now,
            store_id=store_id,
            user_id=user_id,
            metadata=metadata,
        )

        logger.info(
            "Job scheduled",
            job_id=str(job.id),
            job_type=job_type,
            priority=job.priority_label,
            scheduled_at=job.scheduled_at.isoformat(),
        )
        await self._mirror(job)
        return job

    async def schedule_recurring_job(
        self,
        job_type: str,
        cron_expression: str,
        payload: dict[str, Any] | None = None,
        *,
        timezone: str = "UTC",
        priority: JobPriority | str = JobPriority.NORMAL,
        max_retries: int | None = None,
        store_id: UUID | None = None,
        user_id: UUID | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Job:
        """Schedule the next occurrence of a self-rescheduling job."""
        now = self.clock.now()
        run_at = next_run_at(cron_expression, timezone, now)
        return await self.schedule_job(
            job_type,
            {
                **(payload or {}),
                "is_recurring": True,
                "cron_expression": cron_expression,
                "timezone": timezone,
            },
            priority=priority,
            delay_s=(run_at - now).total_seconds(),
            max_retries=max_retries,
            store_id=store_id,
            user_id=user_id,
            metadata=metadata,
        )

    async def schedule_system_jobs(self) -> None:
        """Seed built-in recurring jobs unless one is already pending."""
        for system_job in self.system_jobs:
            if not self.registry.has(system_job.job_type):
                continue
            try:
                existing = await self.store.find_active(system_job.job_type)
                if existing:
                    logger.info(
                        "System job already scheduled",
                        job_type=system_job.job_type,
                        job_id=str(existing[0].id),
                    )
                    continue
                await self.schedule_recurring_job(
                    system_job.job_type,
                    system_job.cron_expression,
                    system_job.payload,
                    priority=system_job.priority,
                    max_retries=system_job.max_retries,
                )
            except Exception:
                # A broken system job must not prevent startup
                logger.exception(
                    "Failed to schedule system job", job_type=system_job.job_type
                )

    async def cancel_job(self, job_id: UUID) -> Job:
        job = await self.store.cancel(job_id, self.clock.now())
        logger.info("Job cancelled", job_id=str(job_id), job_type=job.type)
        await self._unmirror(job)
        return job

    # Crash recovery

    async def recover_orphaned_jobs(self) -> list[UUID]:
        """Requeue jobs left running by a previous process."""
        recovered = await self.store.requeue_running(
            self.clock.now(), exclude_ids=self.processing
        )
        for job_id in recovered:
            logger.info("OrphanedJobRecovered", job_id=str(job_id))
        if recovered:
            logger.info("Resumed interrupted jobs", count=len(recovered))
        return recovered

    # Claim loop

    async def _poll_loop(self) -> None:
        while self.running:
            try:
                await self.run_once()
            except Exception:
                logger.exception("Error in dispatcher loop", worker_id=self.worker_id)
            await self._idle(self.settings.poll_interval_s)

    async def _idle(self, timeout_s: float) -> None:
        """
        Sleep until the next tick, a backend wake-up, or stop().

        A backend wait that returns without a wake-up (an outage, or a
        backend that gave up early) never shortens the poll interval.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout_s
        stop_waiter = asyncio.ensure_future(self._stop_event.wait())
        waiters = [stop_waiter]
        backend_waiter = None
        if self.backend is not None:
            backend_waiter = asyncio.ensure_future(
                self.backend.wait_for_work(timeout_s)
            )
            waiters.append(backend_waiter)
        try:
            done, _ = await asyncio.wait(
                waiters, timeout=timeout_s, return_when=asyncio.FIRST_COMPLETED
            )
            if stop_waiter in done or backend_waiter not in done:
                return
            if backend_waiter.exception() is None and backend_waiter.result():
                return
            remaining = deadline - loop.time()
            if remaining > 0:
                await asyncio.wait([stop_waiter], timeout=remaining)
        finally:
            for waiter in waiters:
                waiter.cancel()
            await asyncio.gather(*waiters, return_exceptions=True)

    async def run_once(self) -> list[Job]:
        """Claim as many eligible jobs as free slots allow and start them."""
        claimed: list[Job] = []
        while len(self.processing) < self.settings.job_concurrency:
            if self._stop_event.is_set():
                break
            job = await self.store.claim_next(self.clock.now())
            if job is None:
                break
            self._spawn(job)
            claimed.append(job)

        if claimed:
            logger.info(
                "Claimed jobs",
                worker_id=self.worker_id,
                job_count=len(claimed),
                job_ids=[str(job.id) for job in claimed],
            )
        return claimed

    def _spawn(self, job: Job) -> asyncio.Task:
        self.processing.add(job.id)
        task = asyncio.create_task(self._run_claimed(job))
        self._job_tasks.add(task)
        task.add_done_callback(self._job_tasks.discard)
        return task

    async def _run_claimed(self, job: Job) -> None:
        try:
            await self._unmirror(job)
            await self.execute(job)
        except asyncio.CancelledError:
            logger.warning("Job interrupted, left for recovery", job_id=str(job.id))
            raise
        except Exception:
            logger.exception("Failed to finalize job", job_id=str(job.id))
        finally:
            self.processing.discard(job.id)

    async def wait_idle(self) -> None:
        """Wait until every job started by this dispatcher has finished."""
        while self._job_tasks:
            await asyncio.gather(*list(self._job_tasks), return_exceptions=True)

    # Execution

    async def execute(self, job: Job) -> None:
        """Run a claimed job's handler and record the outcome."""
        bind_job_context(job.id, job.type, attempt=job.retry_count + 1)

        if not self.registry.has(job.type):
            # Claimed but unregistered: a deployment bug, never retried
            error = UnknownJobType(job.type)
            logger.error("No handler registered for claimed job", job_id=str(job.id))
            await self.store.record_failure(
                job,
                error,
                RetryDecision(retry=False, retry_count=job.retry_count),
                self.clock.now(),
            )
            return

        handler_cls = self.registry.get(job.type)
        logger.info("Processing job started", job_id=str(job.id))
        try:
            handler = handler_cls(job, self.context)
            result = await handler.execute()
        except Exception as e:
            await self._handle_failure(job, HandlerExecutionError(job.id, job.type, e))
            return

        if await self.store.mark_completed(job, result, self.clock.now()):
            logger.info("Job completed", job_id=str(job.id))
            await self._schedule_next_occurrence(job)

    async def _handle_failure(self, job: Job, failure: HandlerExecutionError) -> None:
        now = self.clock.now()
        decision = self.retry_policy.decide(job.retry_count, job.max_retries, now)
        logger.warning(
            "Job attempt failed",
            job_id=str(job.id),
            error=failure.message,
            exception=failure.details["exception"],
        )

        if not await self.store.record_failure(job, failure, decision, now):
            return

        if decision.retry:
            logger.info(
                "Job scheduled for retry",
                job_id=str(job.id),
                delay_s=decision.delay_s,
                attempt=decision.retry_count,
                max_retries=job.max_retries,
            )
            job.scheduled_at = decision.scheduled_at
            job.retry_count = decision.retry_count
            await self._mirror(job)
        else:
            logger.error(
                "Job permanently failed",
                job_id=str(job.id),
                retry_count=job.retry_count,
            )
            await self._schedule_next_occurrence(job)

    async def _schedule_next_occurrence(self, job: Job) -> None:
        payload = job.payload or {}
        if not payload.get("is_recurring"):
            return
        try:
            await self.schedule_recurring_job(
                job.type,
                payload["cron_expression"],
                {
                    k: v
                    for k, v in payload.items()
                    if k not in ("is_recurring", "cron_expression", "timezone")
                },
                timezone=payload.get("timezone", "UTC"),
                priority=JobPriority(job.priority),
                max_retries=job.max_retries,
                store_id=job.store_id,
                user_id=job.user_id,
                metadata=job.metadata_,
            )
        except Exception:
            logger.exception("Failed to schedule next occurrence", job_id=str(job.id))

    # Queue backend mirroring (best effort)

    async def _mirror(self, job: Job) -> None:
        if self.backend is None:
            return
        try:
            await self.backend.enqueue(job)
        except Exception as e:
            logger.warning(
                "Failed to mirror job to queue backend",
                job_id=str(job.id),
                backend=self.backend.name,
                error=str(e),
            )

    async def _unmirror(self, job: Job) -> None:
        if self.backend is None:
            return
        try:
            await self.backend.remove(job)
        except Exception as e:
            logger.warning(
                "Failed to remove job from queue backend",
                job_id=str(job.id),
                error=str(e),
            )

    # Optional lease

    async def _sleep(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except TimeoutError:
            pass

    async def _heartbeat_loop(self) -> None:
        """Refresh heartbeats for jobs this process is running."""
        while self.running:
            try:
                await self.store.heartbeat(set(self.processing), self.clock.now())
            except Exception:
                logger.exception("Error updating heartbeats", worker_id=self.worker_id)
            await self._sleep(self.settings.job_heartbeat_interval_s)

    async def _stale_job_loop(self) -> None:
        """Requeue running jobs whose heartbeat exceeded the visibility timeout."""
        timeout_s = self.settings.job_visibility_timeout_s
        while self.running:
            try:
                now = self.clock.now()
                recovered = await self.store.requeue_running(
                    now,
                    heartbeat_before=now - timedelta(seconds=timeout_s),
                    exclude_ids=set(self.processing),
                )
                if recovered:
                    logger.warning(
                        "Recovered stuck jobs",
                        stuck_job_count=len(recovered),
                        timeout_seconds=timeout_s,
                    )
            except Exception:
                logger.exception("Error in stuck job recovery")
            await self._sleep(self.settings.job_heartbeat_interval_s)
