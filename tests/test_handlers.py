from datetime import timedelta

from jobengine.jobs.models import JobPriority, JobStatus


async def run_pass(dispatcher):
    await dispatcher.run_once()
    await dispatcher.wait_idle()


class FakeLedger:
    def __init__(self):
        self.calls = 0

    async def deduct_daily_credits(self):
        self.calls += 1
        return {"stores_charged": 2}


async def test_cleanup_handler_deletes_old_terminal_jobs(dispatcher, store, clock):
    old = await dispatcher.schedule_job("test:echo")
    await run_pass(dispatcher)
    clock.advance(days=31)

    cleanup = await dispatcher.schedule_job("system:cleanup")
    await run_pass(dispatcher)

    assert await store.get(old.id) is None
    loaded = await store.get(cleanup.id)
    assert loaded.status == JobStatus.COMPLETED.value
    assert loaded.result == {
        "status": "completed",
        "deleted_count": 1,
        "retention_days": 30,
    }


async def test_cleanup_handler_dry_run_keeps_jobs(dispatcher, store, clock):
    old = await dispatcher.schedule_job("test:echo")
    await run_pass(dispatcher)
    clock.advance(days=3)

    cleanup = await dispatcher.schedule_job(
        "system:cleanup", {"older_than_days": 1, "dry_run": True}
    )
    await run_pass(dispatcher)

    assert await store.get(old.id) is not None
    result = (await store.get(cleanup.id)).result
    assert result["status"] == "dry_run"
    assert result["cutoff"] == (clock.now() - timedelta(days=1)).isoformat()


async def test_collaborator_handler_skips_without_collaborator(dispatcher, store):
    job = await dispatcher.schedule_job(
        "system:finalize_pending_orders", priority=JobPriority.HIGH
    )

    await run_pass(dispatcher)

    loaded = await store.get(job.id)
    assert loaded.status == JobStatus.COMPLETED.value
    assert loaded.result == {"status": "skipped", "reason": "order_finalizer_missing"}


async def test_collaborator_handler_delegates(engine, dispatcher, store):
    ledger = FakeLedger()
    engine.context.collaborators["credit_ledger"] = ledger

    job = await dispatcher.schedule_job("system:daily_credit_deduction")
    await run_pass(dispatcher)

    assert ledger.calls == 1
    assert (await store.get(job.id)).result == {
        "status": "completed",
        "stores_charged": 2,
    }


async def test_handler_progress_is_visible(engine, dispatcher, store):
    from jobengine.jobs.handlers import BaseJobHandler

    class ProgressHandler(BaseJobHandler):
        async def execute(self):
            await self.update_progress(40, "halfway")
            job = await self.context.store.get(self.job.id)
            return {"progress": job.progress, "message": job.progress_message}

    engine.registry.register("test:progress", ProgressHandler)
    job = await dispatcher.schedule_job("test:progress")
    await run_pass(dispatcher)

    loaded = await store.get(job.id)
    assert loaded.result == {"progress": 40, "message": "halfway"}
    assert loaded.progress == 100
