from collections.abc import AsyncGenerator
from typing import Any

import pytest
from httpx import ASGITransport, AsyncClient

from jobengine.config.settings import Settings
from jobengine.core.clock import FakeClock
from jobengine.core.exceptions import StrategyConfigurationError
from jobengine.cron.strategies import build_strategy_registry
from jobengine.engine import JobEngine
from jobengine.infra.database import Database
from jobengine.jobs.handlers import BaseJobHandler
from jobengine.jobs.registry_init import register_job_handlers
from jobengine.main import create_app


class EchoHandler(BaseJobHandler):
    """Returns its payload."""

    async def execute(self) -> dict[str, Any]:
        return {"echo": self.payload}


class FailingHandler(BaseJobHandler):
    async def execute(self) -> dict[str, Any]:
        raise RuntimeError("boom")


class EchoStrategy:
    name = "echo"

    def validate(self, configuration: dict[str, Any]) -> None:
        pass

    async def run(self, cron_job, context) -> dict[str, Any]:
        return {"configuration": cron_job.configuration}


class FailingStrategy:
    name = "always_fail"

    def validate(self, configuration: dict[str, Any]) -> None:
        if configuration.get("reject"):
            raise StrategyConfigurationError("rejected")

    async def run(self, cron_job, context) -> dict[str, Any]:
        raise ConnectionError("upstream unavailable")


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings pointing at a throwaway SQLite database."""
    return Settings(
        _env_file=None,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'jobs.db'}",
        job_poll_interval_ms=50,
        job_shutdown_timeout_s=1,
        enable_system_jobs=False,
        cron_allowed_queries={"count_jobs": "SELECT COUNT(*) AS total FROM jobs"},
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
async def database(settings) -> AsyncGenerator[Database, None]:
    db = Database(settings)
    await db.create_all()
    yield db
    await db.close()


@pytest.fixture
async def engine(settings, database, clock) -> AsyncGenerator[JobEngine, None]:
    """Engine with built-in and test handlers registered but no loops running."""
    strategies = build_strategy_registry()
    strategies.register(EchoStrategy.name, EchoStrategy())
    strategies.register(FailingStrategy.name, FailingStrategy())

    job_engine = JobEngine(
        settings, database=database, clock=clock, strategies=strategies
    )
    register_job_handlers(job_engine.registry)
    job_engine.registry.register("test:echo", EchoHandler)
    job_engine.registry.register("test:fail", FailingHandler)

    yield job_engine

    await job_engine.cron_monitor.stop()
    await job_engine.dispatcher.stop()


@pytest.fixture
def dispatcher(engine):
    return engine.dispatcher


@pytest.fixture
def store(engine):
    return engine.store


@pytest.fixture
def app(settings, engine):
    """FastAPI app bound to the test engine (lifespan not run)."""
    app = create_app(settings, engine, start_engine=False)
    app.state.engine = engine
    return app


@pytest.fixture
async def async_client(app) -> AsyncGenerator[AsyncClient, None]:
    """Create an async test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
