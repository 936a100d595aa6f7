"""
Job registry initialization.

Registers the built-in system handlers with a job registry.
"""

from jobengine.config.logging import get_logger
from jobengine.core.registries import JobRegistry
from jobengine.cron.handler import CRON_DISPATCH_JOB_TYPE, RunCronJobHandler
from jobengine.jobs.handlers import (
    DailyCreditDeductionHandler,
    FinalizePendingOrdersHandler,
    SystemCleanupHandler,
)

logger = get_logger(__name__)


def register_job_handlers(registry: JobRegistry) -> None:
    """Register all built-in job handlers with the given registry."""

    logger.info("Registering job handlers")

    # Cron dispatch
    registry.register(CRON_DISPATCH_JOB_TYPE, RunCronJobHandler)

    # Maintenance
    registry.register("system:cleanup", SystemCleanupHandler)

    # Billing and orders
    registry.register("system:daily_credit_deduction", DailyCreditDeductionHandler)
    registry.register("system:finalize_pending_orders", FinalizePendingOrdersHandler)

    logger.info("Job handlers registered", registered_handlers=registry.list())
