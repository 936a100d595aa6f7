import asyncio
import uuid
from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import func, select

from jobengine.core.exceptions import (
    CronJobNotFoundError,
    InvalidCronExpression,
    InvalidStateTransition,
    StrategyConfigurationError,
    ValidationError,
)
from jobengine.cron.expression import next_run_at, validate_expression
from jobengine.cron.handler import CRON_DISPATCH_JOB_TYPE
from jobengine.cron.models import CronJobExecution, ExecutionStatus, SourceType
from jobengine.cron.schemas import (
    CronJobCreate,
    CronJobListFilters,
    CronJobSourceSync,
    CronJobUpdate,
)
from jobengine.jobs.models import JobStatus

START = datetime(2024, 1, 1, tzinfo=UTC)


async def run_pass(dispatcher):
    await dispatcher.run_once()
    await dispatcher.wait_idle()


async def create_schedule(engine, **overrides):
    fields = {
        "name": "nightly",
        "cron_expression": "* * * * *",
        "job_type": "echo",
        "configuration": {"greeting": "hi"},
    }
    fields.update(overrides)
    return await engine.cron_service.create(CronJobCreate(**fields))


# Expressions


def test_every_ten_minutes():
    assert next_run_at("*/10 * * * *", "UTC", START) == datetime(
        2024, 1, 1, 0, 10, tzinfo=UTC
    )


def test_next_run_is_strictly_after_now():
    on_the_dot = datetime(2024, 1, 1, 0, 10, tzinfo=UTC)
    assert next_run_at("*/10 * * * *", "UTC", on_the_dot) == datetime(
        2024, 1, 1, 0, 20, tzinfo=UTC
    )


def test_expression_evaluated_in_schedule_timezone():
    assert next_run_at("0 9 * * 1", "America/New_York", START) == datetime(
        2024, 1, 1, 14, 0, tzinfo=UTC
    )


def test_day_of_week_zero_is_sunday():
    assert next_run_at("0 0 * * 0", "UTC", START) == datetime(2024, 1, 7, tzinfo=UTC)


def test_expression_whitespace_is_normalised():
    assert validate_expression("  */5   * * * *  ") == "*/5 * * * *"


@pytest.mark.parametrize("expression", ["* * *", "61 * * * *", "", "* * * * * *"])
def test_invalid_expressions_rejected(expression):
    with pytest.raises(InvalidCronExpression):
        validate_expression(expression)


def test_unknown_timezone_rejected():
    with pytest.raises(ValidationError):
        next_run_at("* * * * *", "Mars/Olympus_Mons", START)


# Schedule service


async def test_create_computes_next_run(engine):
    cron_job = await create_schedule(engine, cron_expression="*/10 * * * *")

    assert cron_job.next_run_at == datetime(2024, 1, 1, 0, 10, tzinfo=UTC)
    assert cron_job.run_count == 0
    assert cron_job.is_paused is False
    assert cron_job.can_run()


async def test_create_rejects_unknown_strategy(engine):
    with pytest.raises(StrategyConfigurationError):
        await create_schedule(engine, job_type="carrier_pigeon")


async def test_create_rejects_bad_strategy_configuration(engine):
    with pytest.raises(StrategyConfigurationError):
        await create_schedule(
            engine, job_type="always_fail", configuration={"reject": True}
        )
    with pytest.raises(StrategyConfigurationError):
        await create_schedule(engine, job_type="webhook", configuration={})
    with pytest.raises(StrategyConfigurationError):
        await create_schedule(
            engine,
            job_type="cleanup",
            configuration={"table": "job_history", "older_than_days": 0},
        )


async def test_create_rejects_invalid_expression(engine):
    with pytest.raises(InvalidCronExpression):
        await create_schedule(engine, cron_expression="61 * * * *")


async def test_inactive_schedule_has_no_next_run(engine):
    cron_job = await create_schedule(engine, is_active=False)

    assert cron_job.next_run_at is None
    assert await engine.cron_service.find_due(START + timedelta(days=1)) == []


async def test_update_recomputes_next_run(engine, clock):
    cron_job = await create_schedule(engine)

    updated = await engine.cron_service.update(
        cron_job.id,
        CronJobUpdate(cron_expression="0 * * * *", metadata={"owner": "ops"}),
    )

    assert updated.next_run_at == datetime(2024, 1, 1, 1, 0, tzinfo=UTC)
    assert updated.metadata_ == {"owner": "ops"}
    assert updated.name == "nightly"


async def test_pause_and_resume(engine, clock):
    cron_job = await create_schedule(engine)

    paused = await engine.cron_service.pause(cron_job.id)
    assert paused.is_paused is True
    assert paused.next_run_at is None
    with pytest.raises(InvalidStateTransition):
        await engine.cron_service.pause(cron_job.id)

    clock.advance(minutes=5, seconds=30)
    resumed = await engine.cron_service.resume(cron_job.id)
    assert resumed.is_paused is False
    assert resumed.next_run_at == datetime(2024, 1, 1, 0, 6, tzinfo=UTC)
    with pytest.raises(InvalidStateTransition):
        await engine.cron_service.resume(cron_job.id)


async def test_missing_schedule_raises(engine):
    with pytest.raises(CronJobNotFoundError):
        await engine.cron_service.get(uuid.uuid4())


async def test_list_filters_by_state_and_search(engine):
    first = await create_schedule(engine, name="billing sync")
    await create_schedule(engine, name="report")
    await engine.cron_service.pause(first.id)

    paused, total = await engine.cron_service.list_cron_jobs(
        CronJobListFilters(is_paused=True)
    )
    assert total == 1
    assert paused[0].id == first.id

    found, total = await engine.cron_service.list_cron_jobs(
        CronJobListFilters(search="rep")
    )
    assert total == 1
    assert found[0].name == "report"


async def test_delete_removes_schedule(engine, clock):
    cron_job = await create_schedule(engine)
    await engine.cron_service.record_execution(
        cron_job.id, ExecutionStatus.SUCCESS, started_at=clock.now()
    )

    await engine.cron_service.delete(cron_job.id)

    assert await engine.cron_service.find(cron_job.id) is None
    async with engine.cron_service.sessions() as session:
        remaining = await session.execute(
            select(func.count(CronJobExecution.id)).where(
                CronJobExecution.cron_job_id == cron_job.id
            )
        )
        assert remaining.scalar() == 0


# Plugin and integration owned schedules


def source_sync(source_id, **overrides):
    fields = {
        "name": "akeneo import",
        "cron_expression": "0 * * * *",
        "job_type": "echo",
        "source_id": source_id,
        "source_name": "akeneo",
    }
    fields.update(overrides)
    return CronJobSourceSync(**fields)


async def test_sync_from_source_creates_then_updates(engine, clock):
    source_id = uuid.uuid4()

    created = await engine.cron_service.sync_from_source(source_sync(source_id))
    assert created.source_type == SourceType.INTEGRATION.value
    assert created.source_name == "akeneo"
    assert created.next_run_at == datetime(2024, 1, 1, 1, 0, tzinfo=UTC)

    await engine.cron_service.record_execution(
        created.id, ExecutionStatus.SUCCESS, started_at=clock.now()
    )
    updated = await engine.cron_service.sync_from_source(
        source_sync(source_id, cron_expression="*/15 * * * *", name="akeneo sync")
    )

    assert updated.id == created.id
    assert updated.name == "akeneo sync"
    assert updated.cron_expression == "*/15 * * * *"
    assert updated.next_run_at == datetime(2024, 1, 1, 0, 15, tzinfo=UTC)
    assert updated.run_count == 1
    assert len(await engine.cron_service.find_by_source(SourceType.INTEGRATION)) == 1


async def test_sync_from_source_validates_definition(engine):
    with pytest.raises(InvalidCronExpression):
        await engine.cron_service.sync_from_source(
            source_sync(uuid.uuid4(), cron_expression="* *")
        )


async def test_find_by_source(engine):
    plugin_id = uuid.uuid4()
    await engine.cron_service.sync_from_source(
        source_sync(plugin_id, source_type="plugin", source_name="reviews")
    )
    await engine.cron_service.sync_from_source(source_sync(uuid.uuid4()))
    await create_schedule(engine)

    plugin_jobs = await engine.cron_service.find_by_source(SourceType.PLUGIN)
    assert [c.source_id for c in plugin_jobs] == [plugin_id]
    assert (
        await engine.cron_service.find_by_source(SourceType.PLUGIN, uuid.uuid4())
        == []
    )
    by_name = await engine.cron_service.find_by_source_name("reviews")
    assert [c.source_id for c in by_name] == [plugin_id]
    users, total = await engine.cron_service.list_cron_jobs(
        CronJobListFilters(source_type=SourceType.USER)
    )
    assert total == 1
    assert users[0].source_id is None


async def test_remove_by_source_drops_schedules_and_executions(
    engine, clock
):
    source_id = uuid.uuid4()
    owned = await engine.cron_service.sync_from_source(source_sync(source_id))
    kept = await create_schedule(engine)
    await engine.cron_service.record_execution(
        owned.id, ExecutionStatus.FAILED, started_at=clock.now(), error="down"
    )

    assert await engine.cron_service.remove_by_source(
        SourceType.INTEGRATION, source_id
    ) == 1
    assert await engine.cron_service.remove_by_source(
        SourceType.INTEGRATION, source_id
    ) == 0

    assert await engine.cron_service.find(owned.id) is None
    assert await engine.cron_service.find(kept.id) is not None
    async with engine.cron_service.sessions() as session:
        remaining = await session.execute(select(func.count(CronJobExecution.id)))
        assert remaining.scalar() == 0


async def test_remove_by_source_name(engine):
    await engine.cron_service.sync_from_source(
        source_sync(uuid.uuid4(), source_type="plugin", source_name="reviews")
    )
    await engine.cron_service.sync_from_source(
        source_sync(uuid.uuid4(), source_type="plugin", source_name="reviews")
    )

    assert await engine.cron_service.remove_by_source_name("reviews") == 2
    assert await engine.cron_service.find_by_source(SourceType.PLUGIN) == []


# Monitor and dispatch


async def test_due_schedule_runs_through_dispatcher(engine, dispatcher, store, clock):
    cron_job = await create_schedule(engine)
    clock.advance(minutes=1)

    enqueued = await engine.cron_monitor.tick()
    assert len(enqueued) == 1
    dispatch_job = enqueued[0]
    assert dispatch_job.type == CRON_DISPATCH_JOB_TYPE
    assert dispatch_job.max_retries == 0
    assert dispatch_job.payload == {
        "cron_job_id": str(cron_job.id),
        "triggered_by": "schedule",
    }

    await run_pass(dispatcher)

    loaded = await engine.cron_service.get(cron_job.id)
    assert loaded.run_count == 1
    assert loaded.success_count == 1
    assert loaded.last_status == ExecutionStatus.SUCCESS.value
    assert loaded.last_result == {"configuration": {"greeting": "hi"}}
    assert loaded.next_run_at == datetime(2024, 1, 1, 0, 2, tzinfo=UTC)

    finished = await store.get(dispatch_job.id)
    assert finished.status == JobStatus.COMPLETED.value
    assert finished.result["status"] == "success"

    executions, total = await engine.cron_service.executions(cron_job.id)
    assert total == 1
    assert executions[0].triggered_by == "schedule"


async def test_nothing_due_before_next_run(engine):
    await create_schedule(engine, cron_expression="0 * * * *")

    assert await engine.cron_monitor.tick() == []


async def test_schedule_auto_pauses_after_consecutive_failures(
    engine, dispatcher, store, clock
):
    cron_job = await create_schedule(engine, job_type="always_fail", max_failures=3)

    dispatch_ids = []
    for _ in range(3):
        clock.advance(minutes=1)
        enqueued = await engine.cron_monitor.tick()
        assert len(enqueued) == 1
        dispatch_ids.append(enqueued[0].id)
        await run_pass(dispatcher)

    loaded = await engine.cron_service.get(cron_job.id)
    assert loaded.is_paused is True
    assert loaded.next_run_at is None
    assert loaded.consecutive_failures == 3
    assert loaded.failure_count == 3
    assert loaded.run_count == 3
    assert loaded.last_error == "upstream unavailable"

    # Strategy failures never fail the dispatch job itself
    for job_id in dispatch_ids:
        job = await store.get(job_id)
        assert job.status == JobStatus.COMPLETED.value
        assert job.result["status"] == "failed"

    clock.advance(minutes=1)
    assert await engine.cron_monitor.tick() == []

    resumed = await engine.cron_service.resume(cron_job.id)
    assert resumed.consecutive_failures == 0
    assert resumed.failure_count == 3
    assert resumed.can_run()


async def test_success_clears_failure_streak(engine, dispatcher, clock):
    cron_job = await create_schedule(engine, job_type="always_fail")
    clock.advance(minutes=1)
    await engine.cron_monitor.tick()
    await run_pass(dispatcher)

    await engine.cron_service.update(cron_job.id, CronJobUpdate(job_type="echo"))
    clock.advance(minutes=1)
    await engine.cron_monitor.tick()
    await run_pass(dispatcher)

    loaded = await engine.cron_service.get(cron_job.id)
    assert loaded.consecutive_failures == 0
    assert loaded.failure_count == 1
    assert loaded.success_count == 1
    assert loaded.success_rate == 50.0


async def test_in_flight_schedule_is_not_dispatched_twice(engine, dispatcher, clock):
    cron_job = await create_schedule(engine)

    clock.advance(minutes=1)
    assert len(await engine.cron_monitor.tick()) == 1

    clock.advance(minutes=1)
    assert await engine.cron_monitor.tick() == []
    skipped = await engine.cron_service.get(cron_job.id)
    assert skipped.next_run_at == datetime(2024, 1, 1, 0, 2, tzinfo=UTC)

    await run_pass(dispatcher)
    clock.advance(minutes=1)
    assert len(await engine.cron_monitor.tick()) == 1


async def test_manual_trigger_records_manual_execution(engine, dispatcher):
    cron_job = await create_schedule(engine, cron_expression="0 0 1 1 *")

    job = await engine.cron_monitor.trigger(cron_job.id)
    assert job.payload["triggered_by"] == "manual"
    await run_pass(dispatcher)

    executions, _ = await engine.cron_service.executions(cron_job.id)
    assert [e.triggered_by for e in executions] == ["manual"]
    assert (await engine.cron_service.get(cron_job.id)).run_count == 1


async def test_trigger_rejected_for_paused_schedule(engine):
    cron_job = await create_schedule(engine)
    await engine.cron_service.pause(cron_job.id)

    with pytest.raises(InvalidStateTransition):
        await engine.cron_monitor.trigger(cron_job.id)


async def test_schedule_paused_after_enqueue_is_skipped(engine, dispatcher, store):
    cron_job = await create_schedule(engine)
    job = await engine.cron_monitor.trigger(cron_job.id)
    await engine.cron_service.pause(cron_job.id)

    await run_pass(dispatcher)

    finished = await store.get(job.id)
    assert finished.status == JobStatus.COMPLETED.value
    assert finished.result["status"] == "skipped"
    loaded = await engine.cron_service.get(cron_job.id)
    assert loaded.run_count == 0
    assert loaded.failure_count == 0


async def test_deleted_schedule_is_skipped(engine, dispatcher, store):
    cron_job = await create_schedule(engine)
    job = await engine.cron_monitor.trigger(cron_job.id)
    await engine.cron_service.delete(cron_job.id)

    await run_pass(dispatcher)

    result = (await store.get(job.id)).result
    assert result["status"] == "skipped"
    assert result["reason"] == "not_found"


async def test_max_runs_stops_schedule(engine, dispatcher):
    cron_job = await create_schedule(engine, max_runs=1)
    await engine.cron_monitor.trigger(cron_job.id)
    await run_pass(dispatcher)

    loaded = await engine.cron_service.get(cron_job.id)
    assert loaded.run_count == 1
    assert loaded.can_run() is False
    assert loaded.next_run_at is None


async def test_strategy_timeout_is_recorded_as_failure(engine, dispatcher):
    class SlowStrategy:
        name = "slow"

        def validate(self, configuration):
            pass

        async def run(self, cron_job, context):
            await asyncio.sleep(5)
            return {}

    engine.strategies.register(SlowStrategy.name, SlowStrategy())
    cron_job = await create_schedule(engine, job_type="slow", timeout_seconds=1)
    await engine.cron_monitor.trigger(cron_job.id)
    await run_pass(dispatcher)

    loaded = await engine.cron_service.get(cron_job.id)
    assert loaded.failure_count == 1
    assert loaded.last_error == "Timed out after 1s"


async def test_reset_clears_counters(engine, dispatcher):
    cron_job = await create_schedule(engine, job_type="always_fail", max_failures=1)
    await engine.cron_monitor.trigger(cron_job.id)
    await run_pass(dispatcher)
    assert (await engine.cron_service.get(cron_job.id)).is_paused

    reset = await engine.cron_service.reset(cron_job.id)

    assert reset.is_paused is False
    assert reset.run_count == 0
    assert reset.failure_count == 0
    assert reset.last_status is None
    assert reset.next_run_at is not None


async def test_stats_summarise_schedules(engine, dispatcher):
    active = await create_schedule(engine)
    paused = await create_schedule(engine, name="paused")
    await create_schedule(engine, name="off", is_active=False)
    await engine.cron_service.pause(paused.id)
    await engine.cron_monitor.trigger(active.id)
    await run_pass(dispatcher)

    stats = await engine.cron_service.stats()

    assert stats.total == 3
    assert stats.active == 1
    assert stats.paused == 1
    assert stats.inactive == 1
    assert stats.total_runs == 1
    assert stats.total_successes == 1
    assert stats.executions_last_24h == 1


# Built-in strategies


async def test_database_query_strategy_runs_whitelisted_query(engine, dispatcher):
    cron_job = await create_schedule(
        engine, job_type="database_query", configuration={"query_name": "count_jobs"}
    )
    await engine.cron_monitor.trigger(cron_job.id)
    await run_pass(dispatcher)

    loaded = await engine.cron_service.get(cron_job.id)
    assert loaded.last_status == "success"
    assert loaded.last_result == {
        "query_name": "count_jobs",
        "rows": [{"total": 1}],
        "row_count": 1,
    }


async def test_database_query_strategy_refuses_unknown_query(engine, dispatcher):
    cron_job = await create_schedule(
        engine, job_type="database_query", configuration={"query_name": "drop_all"}
    )
    await engine.cron_monitor.trigger(cron_job.id)
    await run_pass(dispatcher)

    loaded = await engine.cron_service.get(cron_job.id)
    assert loaded.last_status == "failed"
    assert loaded.last_error == "Query is not allowed: drop_all"


async def test_cleanup_strategy_prunes_old_rows(engine, dispatcher, store, clock):
    old = await dispatcher.schedule_job("test:echo")
    await run_pass(dispatcher)
    clock.advance(days=10)

    cron_job = await create_schedule(
        engine,
        job_type="cleanup",
        configuration={"table": "job_history", "older_than_days": 7},
    )
    await engine.cron_monitor.trigger(cron_job.id)
    await run_pass(dispatcher)

    loaded = await engine.cron_service.get(cron_job.id)
    assert loaded.last_result == {"table": "job_history", "deleted_count": 1}
    assert await store.history(old.id) == []


async def test_cleanup_strategy_refuses_unlisted_table(engine, dispatcher):
    cron_job = await create_schedule(
        engine, job_type="cleanup", configuration={"table": "cron_jobs"}
    )
    await engine.cron_monitor.trigger(cron_job.id)
    await run_pass(dispatcher)

    loaded = await engine.cron_service.get(cron_job.id)
    assert loaded.last_status == "failed"
    assert "cron_jobs" in loaded.last_error
