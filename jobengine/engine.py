"""
Wiring for a running job engine: database, store, registries, dispatcher,
cron service and monitor.
"""

from typing import Any

from jobengine.config.logging import get_logger
from jobengine.config.settings import Settings
from jobengine.core.clock import Clock, SystemClock
from jobengine.core.registries import JobRegistry, StrategyRegistry
from jobengine.cron.monitor import CronMonitor
from jobengine.cron.service import CronService
from jobengine.cron.strategies import build_strategy_registry
from jobengine.infra.database import Database
from jobengine.jobs.backends import QueueBackend, RedisQueueBackend
from jobengine.jobs.dispatcher import Dispatcher
from jobengine.jobs.handlers import HandlerContext
from jobengine.jobs.registry_init import register_job_handlers
from jobengine.jobs.service import JobService
from jobengine.jobs.store import JobStore

logger = get_logger(__name__)


class JobEngine:
    """Owns every long-lived component of one engine process."""

    def __init__(
        self,
        settings: Settings,
        *,
        database: Database | None = None,
        clock: Clock | None = None,
        registry: JobRegistry | None = None,
        strategies: StrategyRegistry | None = None,
        backend: QueueBackend | None = None,
        collaborators: dict[str, Any] | None = None,
    ):
        self.settings = settings
        self.clock = clock or SystemClock()
        self.database = database or Database(settings)
        self.store = JobStore(self.database.SessionLocal)
        self.registry = registry or JobRegistry()
        self.strategies = strategies or build_strategy_registry()

        if backend is None and settings.queue_backend_url:
            backend = RedisQueueBackend(
                settings.queue_backend_url, settings.queue_backend_prefix
            )

        self.cron_service = CronService(
            self.database.SessionLocal, self.strategies, self.clock
        )
        self.context = HandlerContext(
            settings=settings,
            database=self.database,
            store=self.store,
            clock=self.clock,
            strategies=self.strategies,
            cron_service=self.cron_service,
            collaborators=collaborators or {},
        )
        self.dispatcher = Dispatcher(
            settings,
            self.context,
            self.registry,
            backend=backend,
            register_handlers=register_job_handlers,
        )
        self.jobs = JobService(self.dispatcher, self.store, self.clock)
        self.cron_monitor = CronMonitor(
            settings, self.cron_service, self.dispatcher, self.store, self.clock
        )

    async def start(self, *, run_cron_monitor: bool = True) -> None:
        await self.dispatcher.initialize()
        if run_cron_monitor:
            await self.cron_monitor.start()
        logger.info("Job engine started", environment=self.settings.environment)

    async def stop(self) -> None:
        await self.cron_monitor.stop()
        await self.dispatcher.stop()
        await self.database.close()
        logger.info("Job engine stopped")
