"""Tests for CLI commands"""

import json
from unittest.mock import Mock, patch

import httpx
import pytest
from typer.testing import CliRunner

from cli.client.base import APIClient, JobEngineError
from cli.main import app


@pytest.fixture
def runner():
    """CLI test runner"""
    return CliRunner()


@pytest.fixture
def mock_client():
    """Mock API client usable as a context manager"""
    client = Mock()
    client.__enter__ = Mock(return_value=client)
    client.__exit__ = Mock(return_value=None)
    return client


class TestMainCommands:
    def test_version(self, runner):
        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert "Job Engine CLI" in result.stdout

    @patch("cli.main.JobEngineClient")
    def test_status_success(self, mock_client_class, mock_client, runner):
        mock_client.health_check.return_value = {
            "version": "1.0.0",
            "environment": "test",
            "dispatcher": {"queue_depth": 3, "processing": 1},
        }
        mock_client_class.return_value = mock_client

        result = runner.invoke(app, ["status"])

        assert result.exit_code == 0
        assert "Connected Successfully" in result.stdout

    @patch("cli.main.JobEngineClient")
    def test_status_failure(self, mock_client_class, mock_client, runner):
        mock_client.health_check.side_effect = JobEngineError("Connection failed")
        mock_client_class.return_value = mock_client

        result = runner.invoke(app, ["status"])

        assert result.exit_code == 1
        assert "Connection Failed" in result.stdout


class TestJobCommands:
    @patch("cli.commands.jobs.JobEngineClient")
    def test_enqueue(self, mock_client_class, mock_client, runner):
        mock_client.enqueue_job.return_value = {
            "id": "abc",
            "scheduled_at": "2024-01-01T00:00:00Z",
        }
        mock_client_class.return_value = mock_client

        result = runner.invoke(
            app,
            [
                "jobs",
                "enqueue",
                "report:build",
                "--payload",
                json.dumps({"month": 5}),
                "--priority",
                "high",
                "--max-retries",
                "2",
            ],
        )

        assert result.exit_code == 0
        mock_client.enqueue_job.assert_called_once_with(
            "report:build", {"month": 5}, "high", 0, 2
        )
        assert "scheduled" in result.stdout

    def test_enqueue_rejects_invalid_json(self, runner):
        result = runner.invoke(app, ["jobs", "enqueue", "x", "--payload", "{oops"])

        assert result.exit_code == 1
        assert "Invalid JSON payload" in result.stdout

    @patch("cli.commands.jobs.JobEngineClient")
    def test_list_empty(self, mock_client_class, mock_client, runner):
        mock_client.list_jobs.return_value = {"jobs": [], "total": 0}
        mock_client_class.return_value = mock_client

        result = runner.invoke(app, ["jobs", "list", "--status", "failed"])

        assert result.exit_code == 0
        assert "No jobs found" in result.stdout
        mock_client.list_jobs.assert_called_once_with(
            status="failed", type=None, limit=20, offset=0
        )

    @patch("cli.commands.jobs.JobEngineClient")
    def test_list_with_jobs(self, mock_client_class, mock_client, runner):
        mock_client.list_jobs.return_value = {
            "jobs": [
                {
                    "id": "12345678-aaaa",
                    "type": "test:echo",
                    "status": "completed",
                    "priority": "normal",
                    "retry_count": 0,
                    "max_retries": 3,
                    "scheduled_at": "2024-01-01T00:00:00Z",
                }
            ],
            "total": 1,
        }
        mock_client_class.return_value = mock_client

        result = runner.invoke(app, ["jobs", "list"])

        assert result.exit_code == 0
        assert "12345678" in result.stdout

    @patch("cli.commands.jobs.JobEngineClient")
    def test_cancel_conflict(self, mock_client_class, mock_client, runner):
        mock_client.cancel_job.side_effect = JobEngineError("API Error 409")
        mock_client_class.return_value = mock_client

        result = runner.invoke(app, ["jobs", "cancel", "abc"])

        assert result.exit_code == 1
        assert "Failed to cancel job" in result.stdout

    @patch("cli.commands.jobs.JobEngineClient")
    def test_stats(self, mock_client_class, mock_client, runner):
        mock_client.job_stats.return_value = {
            "time_range": "7d",
            "total": 4,
            "completed": 3,
            "failed": 1,
            "success_rate": 75.0,
            "by_type": {"test:echo": 4},
        }
        mock_client_class.return_value = mock_client

        result = runner.invoke(app, ["jobs", "stats", "--range", "7d"])

        assert result.exit_code == 0
        mock_client.job_stats.assert_called_once_with("7d")
        assert "Job Statistics" in result.stdout


class TestCronCommands:
    @patch("cli.commands.cron.JobEngineClient")
    def test_trigger(self, mock_client_class, mock_client, runner):
        mock_client.trigger_cron_job.return_value = {"job_id": "job-1"}
        mock_client_class.return_value = mock_client

        result = runner.invoke(app, ["cron", "trigger", "cron-1"])

        assert result.exit_code == 0
        mock_client.trigger_cron_job.assert_called_once_with("cron-1")
        assert "job-1" in result.stdout

    @patch("cli.commands.cron.JobEngineClient")
    def test_pause_failure(self, mock_client_class, mock_client, runner):
        mock_client.pause_cron_job.side_effect = JobEngineError("already paused")
        mock_client_class.return_value = mock_client

        result = runner.invoke(app, ["cron", "pause", "cron-1"])

        assert result.exit_code == 1

    @patch("cli.commands.cron.JobEngineClient")
    def test_list_empty(self, mock_client_class, mock_client, runner):
        mock_client.list_cron_jobs.return_value = {"cron_jobs": [], "total": 0}
        mock_client_class.return_value = mock_client

        result = runner.invoke(app, ["cron", "list"])

        assert result.exit_code == 0
        assert "No cron jobs found" in result.stdout


class TestAPIClient:
    def make_client(self, handler):
        return APIClient(base_url="http://test", transport=httpx.MockTransport(handler))

    def test_unwraps_success_envelope(self):
        def handler(request):
            assert request.url.path == "/v1/jobs/stats"
            return httpx.Response(200, json={"ok": True, "data": {"total": 1}})

        with self.make_client(handler) as client:
            assert client.get("/jobs/stats") == {"total": 1}

    def test_raises_on_error_envelope(self):
        def handler(request):
            return httpx.Response(
                404,
                json={"ok": False, "error": {"message": "Job not found", "code": 404}},
            )

        with self.make_client(handler) as client:
            with pytest.raises(JobEngineError, match="Job not found"):
                client.get("/jobs/abc")

    def test_raises_on_connection_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with self.make_client(handler) as client:
            with pytest.raises(JobEngineError, match="Connection failed"):
                client.post("/jobs", json={"type": "x"})
