"""
Cron strategies: what a schedule does when it fires.

Each strategy validates a schedule's ``configuration`` at create/update time
and runs one occurrence with it. Strategies raise on failure; the dispatch
handler records the error on the schedule.
"""

import asyncio
import smtplib
from datetime import timedelta
from email.mime.text import MIMEText
from typing import Any

import httpx
from fastapi.encoders import jsonable_encoder
from sqlalchemy import column, delete, table, text

from jobengine.config.logging import get_logger
from jobengine.core.exceptions import StrategyConfigurationError
from jobengine.core.registries import StrategyRegistry
from jobengine.infra.database import UTCDateTime

logger = get_logger(__name__)

HTTP_METHODS = {"GET", "POST", "PUT", "PATCH", "DELETE"}
MAX_RESPONSE_CHARS = 2000
MAX_ROWS = 100


def _require(configuration: dict[str, Any], *keys: str) -> None:
    missing = [key for key in keys if not configuration.get(key)]
    if missing:
        raise StrategyConfigurationError(
            f"Missing configuration: {', '.join(missing)}", {"missing": missing}
        )


def _validate_method(configuration: dict[str, Any]) -> str:
    method = str(configuration.get("method", "GET")).upper()
    if method not in HTTP_METHODS:
        raise StrategyConfigurationError(
            f"Unsupported HTTP method: {method}", {"method": method}
        )
    return method


def _response_summary(response: httpx.Response) -> dict[str, Any]:
    try:
        body: Any = response.json()
    except ValueError:
        body = response.text[:MAX_RESPONSE_CHARS]
    return {"status_code": response.status_code, "body": body}


class WebhookStrategy:
    """HTTP request to an external URL. Non-2xx responses fail the run."""

    name = "webhook"

    def validate(self, configuration: dict[str, Any]) -> None:
        _require(configuration, "url")
        if not str(configuration["url"]).startswith(("http://", "https://")):
            raise StrategyConfigurationError(
                "Webhook url must be http(s)", {"url": configuration["url"]}
            )
        _validate_method(configuration)

    async def run(self, cron_job, context) -> dict[str, Any]:
        configuration = cron_job.configuration
        method = _validate_method(configuration)
        async with httpx.AsyncClient(
            timeout=configuration.get("timeout", 30.0)
        ) as client:
            response = await client.request(
                method,
                configuration["url"],
                headers=configuration.get("headers") or {},
                json=configuration.get("body"),
            )
            response.raise_for_status()
        return _response_summary(response)


class ApiCallStrategy:
    """HTTP request against this deployment's own API (relative paths only)."""

    name = "api_call"

    def validate(self, configuration: dict[str, Any]) -> None:
        _require(configuration, "path")
        path = str(configuration["path"])
        if not path.startswith("/") or "://" in path:
            raise StrategyConfigurationError(
                "api_call path must be relative, e.g. /v1/healthz", {"path": path}
            )
        _validate_method(configuration)

    async def run(self, cron_job, context) -> dict[str, Any]:
        configuration = cron_job.configuration
        self.validate(configuration)
        async with httpx.AsyncClient(
            base_url=context.settings.internal_api_base_url,
            timeout=configuration.get("timeout", 30.0),
        ) as client:
            response = await client.request(
                _validate_method(configuration),
                configuration["path"],
                headers=configuration.get("headers") or {},
                json=configuration.get("body"),
            )
            response.raise_for_status()
        return _response_summary(response)


class EmailStrategy:
    """Send a plain-text email through the configured SMTP server."""

    name = "email"

    def validate(self, configuration: dict[str, Any]) -> None:
        _require(configuration, "to", "subject")

    async def run(self, cron_job, context) -> dict[str, Any]:
        settings = context.settings
        if not (settings.smtp_host and settings.smtp_from):
            raise StrategyConfigurationError(
                "Email is not configured", {"error_reason": "email_not_configured"}
            )

        configuration = cron_job.configuration
        recipients = configuration["to"]
        if isinstance(recipients, str):
            recipients = [recipients]

        msg = MIMEText(configuration.get("body", ""), "plain")
        msg["Subject"] = configuration["subject"]
        msg["From"] = settings.smtp_from
        msg["To"] = ", ".join(recipients)

        def send() -> None:
            with smtplib.SMTP(
                settings.smtp_host, settings.smtp_port, timeout=30
            ) as server:
                if settings.smtp_use_tls:
                    server.starttls()
                if settings.smtp_user and settings.smtp_password:
                    server.login(settings.smtp_user, settings.smtp_password)
                server.sendmail(settings.smtp_from, recipients, msg.as_string())

        await asyncio.to_thread(send)
        logger.info("Cron email sent", recipients=len(recipients))
        return {"sent_to": recipients}


class DatabaseQueryStrategy:
    """Run a named, whitelisted SQL statement with bound parameters."""

    name = "database_query"

    def validate(self, configuration: dict[str, Any]) -> None:
        _require(configuration, "query_name")
        params = configuration.get("params", {})
        if not isinstance(params, dict):
            raise StrategyConfigurationError("params must be an object")

    async def run(self, cron_job, context) -> dict[str, Any]:
        configuration = cron_job.configuration
        query_name = configuration["query_name"]
        sql = context.settings.cron_allowed_queries.get(query_name)
        if sql is None:
            raise StrategyConfigurationError(
                f"Query is not allowed: {query_name}", {"query_name": query_name}
            )

        async with context.database.SessionLocal() as session:
            result = await session.execute(text(sql), configuration.get("params", {}))
            if result.returns_rows:
                rows = jsonable_encoder(
                    [dict(row) for row in result.mappings().fetchmany(MAX_ROWS)]
                )
                await session.commit()
                return {"query_name": query_name, "rows": rows, "row_count": len(rows)}
            await session.commit()
            return {"query_name": query_name, "row_count": result.rowcount}


class CleanupStrategy:
    """Delete rows older than ``older_than_days`` from a whitelisted table."""

    name = "cleanup"

    def validate(self, configuration: dict[str, Any]) -> None:
        _require(configuration, "table")
        days = configuration.get("older_than_days", 30)
        if not isinstance(days, int) or days < 1:
            raise StrategyConfigurationError(
                "older_than_days must be a positive integer",
                {"older_than_days": days},
            )

    async def run(self, cron_job, context) -> dict[str, Any]:
        configuration = cron_job.configuration
        table_name = configuration["table"]
        timestamp_column = context.settings.cron_cleanup_tables.get(table_name)
        if timestamp_column is None:
            raise StrategyConfigurationError(
                f"Table is not allowed for cleanup: {table_name}",
                {"table": table_name},
            )

        days = int(configuration.get("older_than_days", 30))
        cutoff = context.clock.now() - timedelta(days=days)
        target = table(table_name, column(timestamp_column, UTCDateTime))

        async with context.database.SessionLocal() as session:
            result = await session.execute(
                delete(target).where(target.c[timestamp_column] < cutoff)
            )
            await session.commit()

        logger.info(
            "Cron cleanup completed",
            table=table_name,
            deleted_count=result.rowcount,
            older_than_days=days,
        )
        return {"table": table_name, "deleted_count": result.rowcount}


def build_strategy_registry() -> StrategyRegistry:
    """Registry holding every built-in strategy."""
    registry = StrategyRegistry()
    for strategy in (
        WebhookStrategy(),
        ApiCallStrategy(),
        EmailStrategy(),
        DatabaseQueryStrategy(),
        CleanupStrategy(),
    ):
        registry.register(strategy.name, strategy)
    return registry
