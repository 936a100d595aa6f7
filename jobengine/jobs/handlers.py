"""
Job handler base class and built-in system handlers.

Handlers are constructed for a single job (``handler_cls(job, context)``) and
run once via ``execute()``. Returning a dict stores it as the job result;
raising routes the job through the retry policy.
"""

from dataclasses import dataclass, field
from datetime import timedelta
from typing import TYPE_CHECKING, Any, Protocol

from jobengine.config.logging import get_logger
from jobengine.config.settings import Settings
from jobengine.core.clock import Clock
from jobengine.core.registries import StrategyRegistry
from jobengine.infra.database import Database
from jobengine.jobs.models import Job
from jobengine.jobs.store import JobStore

if TYPE_CHECKING:
    from jobengine.cron.service import CronService

logger = get_logger(__name__)


class CreditLedger(Protocol):
    """Billing collaborator used by the daily credit deduction job."""

    async def deduct_daily_credits(self) -> dict[str, Any]: ...


class OrderFinalizer(Protocol):
    """Order collaborator used by the pending-order finalization job."""

    async def finalize_pending_orders(self) -> dict[str, Any]: ...


@dataclass
class HandlerContext:
    """Dependencies shared by every handler instance."""

    settings: Settings
    database: Database
    store: JobStore
    clock: Clock
    strategies: StrategyRegistry = field(default_factory=StrategyRegistry)
    cron_service: "CronService | None" = None
    collaborators: dict[str, Any] = field(default_factory=dict)


class BaseJobHandler:
    """Common plumbing for job handlers."""

    def __init__(self, job: Job, context: HandlerContext):
        self.job = job
        self.context = context
        self.log = logger.bind(job_id=str(job.id), job_type=job.type)

    @property
    def payload(self) -> dict[str, Any]:
        return self.job.payload or {}

    async def update_progress(self, percent: int, message: str | None = None) -> None:
        await self.context.store.update_progress(
            self.job.id, percent, message, self.context.clock.now()
        )

    async def execute(self) -> dict[str, Any] | None:
        raise NotImplementedError


class SystemCleanupHandler(BaseJobHandler):
    """
    Delete terminal jobs older than the retention window.

    Payload: ``{"older_than_days": 30, "dry_run": false}`` (both optional).
    """

    async def execute(self) -> dict[str, Any]:
        settings = self.context.settings
        days = int(self.payload.get("older_than_days", settings.job_cleanup_after_days))
        dry_run = bool(self.payload.get("dry_run", False))
        cutoff = self.context.clock.now() - timedelta(days=days)

        if dry_run:
            self.log.info("Cleanup dry run", cutoff=cutoff.isoformat())
            return {"status": "dry_run", "cutoff": cutoff.isoformat()}

        deleted = await self.context.store.delete_terminal_before(cutoff)
        self.log.info("Cleaned up old jobs", deleted_count=deleted, retention_days=days)
        return {"status": "completed", "deleted_count": deleted, "retention_days": days}


class CollaboratorJobHandler(BaseJobHandler):
    """Delegates to a named collaborator; skipped when none is configured."""

    collaborator_name: str
    method_name: str

    async def execute(self) -> dict[str, Any]:
        collaborator = self.context.collaborators.get(self.collaborator_name)
        if collaborator is None:
            self.log.info(
                "No collaborator configured, skipping",
                collaborator=self.collaborator_name,
            )
            return {"status": "skipped", "reason": f"{self.collaborator_name}_missing"}

        outcome = await getattr(collaborator, self.method_name)()
        return {"status": "completed", **(outcome or {})}


class DailyCreditDeductionHandler(CollaboratorJobHandler):
    collaborator_name = "credit_ledger"
    method_name = "deduct_daily_credits"


class FinalizePendingOrdersHandler(CollaboratorJobHandler):
    collaborator_name = "order_finalizer"
    method_name = "finalize_pending_orders"
