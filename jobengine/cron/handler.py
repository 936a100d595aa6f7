"""
Dispatch handler that runs one occurrence of a cron schedule.
"""

import asyncio
from datetime import datetime
from typing import Any
from uuid import UUID

from jobengine.core.exceptions import ScheduleSkipped
from jobengine.cron.models import ExecutionStatus, TriggeredBy
from jobengine.jobs.handlers import BaseJobHandler

CRON_DISPATCH_JOB_TYPE = "system:dynamic_cron"


class RunCronJobHandler(BaseJobHandler):
    """
    Execute the strategy a schedule names and record the outcome.

    Strategy failures (including timeouts) are recorded on the schedule and
    do not fail the dispatch job. A schedule that is missing or cannot run is
    skipped without touching its counters.
    """

    async def execute(self) -> dict[str, Any]:
        cron_service = self.context.cron_service
        if cron_service is None:
            raise RuntimeError("Cron service is not configured")

        cron_job_id = UUID(str(self.payload["cron_job_id"]))
        triggered_by = TriggeredBy(self.payload.get("triggered_by", "schedule"))

        cron_job = await cron_service.find(cron_job_id)
        if cron_job is None:
            return self._skipped(ScheduleSkipped(cron_job_id, "not_found"))
        if not cron_job.can_run():
            return self._skipped(ScheduleSkipped(cron_job_id, "cannot_run"))

        started_at = self.context.clock.now()
        self.log.info(
            "Running cron job",
            cron_job_id=str(cron_job_id),
            strategy=cron_job.job_type,
            triggered_by=triggered_by.value,
        )

        try:
            strategy = self.context.strategies.get(cron_job.job_type)
            result = await asyncio.wait_for(
                strategy.run(cron_job, self.context),
                timeout=cron_job.timeout_seconds,
            )
        except TimeoutError:
            error = f"Timed out after {cron_job.timeout_seconds}s"
            return await self._record_failure(
                cron_job_id, error, started_at, triggered_by
            )
        except Exception as e:
            error = str(e) or e.__class__.__name__
            return await self._record_failure(
                cron_job_id, error, started_at, triggered_by
            )

        await cron_service.record_execution(
            cron_job_id,
            ExecutionStatus.SUCCESS,
            started_at=started_at,
            result=result,
            triggered_by=triggered_by,
        )
        self.log.info("Cron job succeeded", cron_job_id=str(cron_job_id))
        return {"status": "success", "cron_job_id": str(cron_job_id), "result": result}

    async def _record_failure(
        self,
        cron_job_id: UUID,
        error: str,
        started_at: datetime,
        triggered_by: TriggeredBy,
    ) -> dict[str, Any]:
        self.log.warning("Cron job failed", cron_job_id=str(cron_job_id), error=error)
        await self.context.cron_service.record_execution(
            cron_job_id,
            ExecutionStatus.FAILED,
            started_at=started_at,
            error=error,
            triggered_by=triggered_by,
        )
        return {"status": "failed", "cron_job_id": str(cron_job_id), "error": error}

    def _skipped(self, skipped: ScheduleSkipped) -> dict[str, Any]:
        self.log.info(
            "ScheduleSkipped",
            cron_job_id=str(skipped.cron_job_id),
            reason=skipped.reason,
        )
        return {
            "status": "skipped",
            "cron_job_id": str(skipped.cron_job_id),
            "reason": skipped.reason,
        }
