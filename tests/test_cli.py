"""Tests for CLI commands"""

from unittest.mock import Mock, patch

import httpx
import pytest
from typer.testing import CliRunner

from tenantq_cli.client.base import (
    APIConnectionError,
    ServiceNotRunningError,
    TenantQError,
    UnknownJobTypeError,
)
from tenantq_cli.client.endpoints import TenantQClient
from tenantq_cli.main import app
from tenantq_cli.utils.config_manager import ConfigManager


# Test fixtures
@pytest.fixture
def runner():
    """CLI test runner"""
    return CliRunner()


@pytest.fixture
def mock_client():
    """Mock API client"""
    client = Mock()
    client.__enter__ = Mock(return_value=client)
    client.__exit__ = Mock(return_value=None)
    return client


class TestMainCommands:
    """Test main CLI commands"""

    def test_version(self, runner):
        """Test version command"""
        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert "TenantQ CLI" in result.stdout

    @patch("tenantq_cli.main.TenantQClient")
    def test_status_healthy(self, mock_client_class, mock_client, runner):
        """Test status command with a healthy service"""
        mock_client.health_check.return_value = {
            "ok": True,
            "version": "1.0.0",
            "environment": "development",
            "status_backend": "memory",
            "queue": {"queue_length": 2, "processing": True},
            "dispatcher": {"in_flight": 1, "queued": 0},
        }
        mock_client_class.return_value = mock_client

        result = runner.invoke(app, ["status"])
        assert result.exit_code == 0
        assert "Healthy" in result.stdout
        assert "2 waiting" in result.stdout

    @patch("tenantq_cli.main.TenantQClient")
    def test_status_degraded(self, mock_client_class, mock_client, runner):
        mock_client.health_check.return_value = {"ok": False, "queue": {}, "dispatcher": {}}
        mock_client_class.return_value = mock_client

        result = runner.invoke(app, ["status"])
        assert result.exit_code == 0
        assert "Degraded" in result.stdout

    @patch("tenantq_cli.main.TenantQClient")
    def test_status_failure(self, mock_client_class, mock_client, runner):
        """Test status command with connection failure"""
        mock_client.health_check.side_effect = TenantQError("Connection failed")
        mock_client_class.return_value = mock_client

        result = runner.invoke(app, ["status"])
        assert result.exit_code == 1
        assert "Connection Failed" in result.stdout


class TestJobCommands:
    """Test job commands"""

    @patch("tenantq_cli.commands.jobs.TenantQClient")
    def test_job_status(self, mock_client_class, mock_client, runner):
        mock_client.get_job_status.return_value = {
            "status": "processing",
            "message": "Optimizing 4/10 products",
            "job_id": "acme-seo-1",
            "in_progress": True,
            "position": 0,
            "total_items": 10,
            "processed_items": 4,
            "successful_items": 3,
            "skipped_items": 0,
            "failed_items": 1,
            "fail_reasons": ["Blue Shirt: timeout"],
            "skip_reasons": [],
            "progress": {"percent": 40, "elapsed_seconds": 12, "remaining_seconds": 18},
        }
        mock_client_class.return_value = mock_client

        result = runner.invoke(app, ["jobs", "status", "seo", "--tenant", "acme.myshopify.com"])

        assert result.exit_code == 0
        assert "processing" in result.stdout
        assert "Blue Shirt: timeout" in result.stdout
        mock_client_class.assert_called_once_with(tenant_id="acme.myshopify.com")
        mock_client.get_job_status.assert_called_once_with("seo")

    @patch("tenantq_cli.commands.jobs.TenantQClient")
    def test_job_status_error(self, mock_client_class, mock_client, runner):
        mock_client.get_job_status.side_effect = TenantQError("API Error 404: Unknown job type")
        mock_client_class.return_value = mock_client

        result = runner.invoke(app, ["jobs", "status", "bogus"])
        assert result.exit_code == 1
        assert "Failed to get job status" in result.stdout

    @patch("tenantq_cli.commands.jobs.TenantQClient")
    def test_job_status_lists_known_types(self, mock_client_class, mock_client, runner):
        mock_client.get_job_status.side_effect = UnknownJobTypeError(
            "Unknown job type: bogus",
            status_code=404,
            details={"job_type": "bogus", "known_types": ["seo", "aiEnhance"]},
        )
        mock_client_class.return_value = mock_client

        result = runner.invoke(app, ["jobs", "status", "bogus"])
        assert result.exit_code == 1
        assert "Known job types: seo, aiEnhance" in result.stdout

    @patch("tenantq_cli.commands.jobs.TenantQClient")
    @patch("tenantq_cli.commands.jobs.config")
    def test_job_status_hides_reasons_when_disabled(
        self, mock_config, mock_client_class, mock_client, runner
    ):
        mock_config.reasons_limit.return_value = 0
        mock_client.get_job_status.return_value = {
            "status": "failed",
            "message": "Failed: 2 failed",
            "fail_reasons": ["Blue Shirt: timeout"],
            "skip_reasons": [],
        }
        mock_client_class.return_value = mock_client

        result = runner.invoke(app, ["jobs", "status", "seo"])
        assert result.exit_code == 0
        assert "Blue Shirt: timeout" not in result.stdout

    @patch("tenantq_cli.commands.jobs.TenantQClient")
    def test_stats_when_queue_stopped(self, mock_client_class, mock_client, runner):
        mock_client.get_queue_stats.side_effect = ServiceNotRunningError(
            "Job queue is not available", status_code=503
        )
        mock_client_class.return_value = mock_client

        result = runner.invoke(app, ["jobs", "stats"])
        assert result.exit_code == 1
        assert "job queue is not running" in result.stdout

    @patch("tenantq_cli.commands.jobs.TenantQClient")
    def test_cancel(self, mock_client_class, mock_client, runner):
        mock_client.cancel_job.return_value = {
            "job_type": "seo",
            "cancel_requested": True,
            "status": {"status": "processing"},
        }
        mock_client_class.return_value = mock_client

        result = runner.invoke(app, ["jobs", "cancel", "seo"])
        assert result.exit_code == 0
        assert "Cancellation requested for seo" in result.stdout

    @patch("tenantq_cli.commands.jobs.TenantQClient")
    def test_stats_empty_queue(self, mock_client_class, mock_client, runner):
        mock_client.get_queue_stats.return_value = {
            "running": True,
            "processing": False,
            "queue_length": 0,
            "current_job": None,
            "queued_jobs": [],
        }
        mock_client_class.return_value = mock_client

        result = runner.invoke(app, ["jobs", "stats"])
        assert result.exit_code == 0
        assert "Job queue is empty" in result.stdout

    @patch("tenantq_cli.commands.jobs.TenantQClient")
    def test_stats_with_jobs(self, mock_client_class, mock_client, runner):
        mock_client.get_queue_stats.return_value = {
            "running": True,
            "processing": True,
            "queue_length": 1,
            "current_job": {
                "tenant_id": "acme",
                "job_type": "seo",
                "processed_items": 1,
                "total_items": 4,
                "attempts": 1,
                "queued_at": "2026-01-01T00:00:00Z",
            },
            "queued_jobs": [
                {
                    "tenant_id": "zeta",
                    "job_type": "schema",
                    "total_items": 3,
                    "attempts": 0,
                    "queued_at": "2026-01-01T00:00:01Z",
                }
            ],
        }
        mock_client_class.return_value = mock_client

        result = runner.invoke(app, ["jobs", "stats"])
        assert result.exit_code == 0
        assert "1 waiting" in result.stdout
        assert "zeta" in result.stdout


class TestDispatcherCommands:
    """Test dispatcher commands"""

    @patch("tenantq_cli.commands.dispatcher.TenantQClient")
    def test_dispatcher_stats(self, mock_client_class, mock_client, runner):
        mock_client.get_dispatcher_stats.return_value = {
            "running": True,
            "total": 3,
            "successful": 2,
            "failed": 1,
            "timed_out": 0,
            "discarded": 0,
            "total_units": 50,
            "success_rate": 66.67,
            "avg_units_per_call": 25.0,
            "uptime_seconds": 61,
            "lanes": {
                "bulk": {
                    "concurrency": 1,
                    "rate": 5,
                    "interval_seconds": 1.0,
                    "timeout_seconds": 60.0,
                    "queued": 2,
                    "in_flight": 1,
                }
            },
        }
        mock_client_class.return_value = mock_client

        result = runner.invoke(app, ["dispatcher", "stats"])
        assert result.exit_code == 0
        assert "66.67%" in result.stdout
        assert "bulk" in result.stdout


class TestApiClient:
    """Test the HTTP client against a mock transport"""

    def test_sends_tenant_header_and_unwraps_envelope(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"ok": True, "data": {"status": "idle"}})

        with TenantQClient(
            "http://api.test", tenant_id="acme.myshopify.com", transport=httpx.MockTransport(handler)
        ) as client:
            status = client.get_job_status("seo")

        assert status == {"status": "idle"}
        assert seen[0].url.path == "/v1/jobs/seo/status"
        assert seen[0].headers["X-Tenant-ID"] == "acme.myshopify.com"

    def test_unknown_job_type_envelope(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                404,
                json={
                    "ok": False,
                    "error": {
                        "message": "Unknown job type: bogus",
                        "code": 404,
                        "details": {"job_type": "bogus", "known_types": ["seo", "schema"]},
                    },
                },
            )

        with TenantQClient("http://api.test", transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(UnknownJobTypeError, match="Unknown job type") as exc_info:
                client.cancel_job("bogus")

        assert exc_info.value.status_code == 404
        assert exc_info.value.known_types == ["seo", "schema"]

    def test_queue_not_running_envelope(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                503, json={"ok": False, "error": {"message": "Job queue is not available"}}
            )

        with TenantQClient("http://api.test", transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(ServiceNotRunningError, match="not available"):
                client.get_queue_stats()

    def test_unreachable_api(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with TenantQClient("http://api.test", transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(APIConnectionError, match="connection refused"):
                client.health_check()


class TestConfigManager:
    """Test CLI configuration storage"""

    def test_set_and_get(self, tmp_path):
        manager = ConfigManager(config_dir=tmp_path)

        manager.set("api.tenant_id", "acme.myshopify.com")

        assert manager.get("api.tenant_id") == "acme.myshopify.com"
        assert manager.get("display.max_reasons") == 10
        assert manager.get("missing.key", "fallback") == "fallback"

    def test_reset(self, tmp_path):
        manager = ConfigManager(config_dir=tmp_path)
        manager.set("display.max_reasons", 3)

        manager.reset()

        assert manager.get("display.max_reasons") == 10
        assert manager.get("display.show_reasons") is True

    def test_file_values_merge_over_nested_defaults(self, tmp_path):
        (tmp_path / "config.yaml").write_text("display:\n  max_reasons: 3\n")
        manager = ConfigManager(config_dir=tmp_path)

        assert manager.get("display.max_reasons") == 3
        assert manager.get("display.show_reasons") is True
        assert manager.get("api.timeout") == 30

    def test_environment_overrides_file(self, tmp_path):
        manager = ConfigManager(config_dir=tmp_path)
        manager.set("api.base_url", "http://file.example")

        with patch.dict("os.environ", {"TENANTQ_API_URL": "http://env.example"}):
            assert manager.get("api.base_url") == "http://env.example"
        with patch.dict("os.environ", {"TENANTQ_API_URL": ""}):
            assert manager.get("api.base_url") == "http://file.example"

    def test_set_coerces_to_default_type(self, tmp_path):
        manager = ConfigManager(config_dir=tmp_path)

        assert manager.set("api.timeout", "45") == 45
        assert manager.set("display.show_reasons", "false") is False
        assert manager.get("api.timeout") == 45

    def test_set_rejects_bad_values(self, tmp_path):
        manager = ConfigManager(config_dir=tmp_path)

        with pytest.raises(KeyError):
            manager.set("api.colour", "blue")
        with pytest.raises(ValueError, match="whole number"):
            manager.set("api.timeout", "soon")
        with pytest.raises(ValueError, match="http"):
            manager.set("api.base_url", "localhost:8000")

    def test_reasons_limit(self, tmp_path):
        manager = ConfigManager(config_dir=tmp_path)
        manager.set("display.max_reasons", "4")
        assert manager.reasons_limit() == 4

        manager.set("display.show_reasons", "no")
        assert manager.reasons_limit() == 0


class TestConfigCommands:
    """Test the config subcommands"""

    @patch("tenantq_cli.commands.config.config")
    def test_set_reports_stored_value(self, mock_config, runner):
        mock_config.set.return_value = 45

        result = runner.invoke(app, ["config", "set", "api.timeout", "45"])
        assert result.exit_code == 0
        assert "Set api.timeout = 45" in result.stdout
        mock_config.set.assert_called_once_with("api.timeout", "45")

    @patch("tenantq_cli.commands.config.config")
    def test_set_unknown_key(self, mock_config, runner):
        mock_config.set.side_effect = KeyError("Unknown configuration key: api.colour")

        result = runner.invoke(app, ["config", "set", "api.colour", "blue"])
        assert result.exit_code == 1
        assert "Unknown configuration key" in result.stdout
