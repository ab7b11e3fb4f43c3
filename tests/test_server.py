"""Tests for server.py helpers: error payloads, credential resolution, logging setup."""

from __future__ import annotations

import logging
from unittest.mock import patch

import pytest

import server
from jenkins_monitor.errors import (
    MalformedInputError,
    NotFoundError,
    UpstreamError,
    ValidationError,
)
from jenkins_monitor.notification_manager import NotificationManager


# ---------------------------------------------------------------------------
# _handle_error
# ---------------------------------------------------------------------------


class TestHandleError:
    def test_validation_with_missing(self):
        exc = ValidationError("Missing required parameters: title", missing=["title"])
        assert server._handle_error(exc, "create_notification") == {
            "error": "Missing required parameters: title",
            "status": 400,
            "missing": ["title"],
        }

    def test_validation_without_missing(self):
        payload = server._handle_error(ValidationError("Invalid action"), "knowledge_base")
        assert payload == {"error": "Invalid action", "status": 400}

    def test_not_found(self):
        payload = server._handle_error(NotFoundError("Solution not found"), "update_solution")
        assert payload == {"error": "Solution not found", "status": 404}

    def test_malformed_input(self):
        payload = server._handle_error(MalformedInputError("bad json"), "get_failure_stats")
        assert payload["status"] == 400

    def test_upstream_401(self):
        payload = server._handle_error(UpstreamError("denied", status_code=401), "list_jobs")
        assert payload == {
            "error": "[list_jobs] Authentication failed (401). Check JENKINS_USER and JENKINS_TOKEN.",
            "status": 500,
        }

    def test_upstream_404(self):
        payload = server._handle_error(UpstreamError("gone", status_code=404), "get_build_log")
        assert payload["error"] == (
            "[get_build_log] Not found (404). Verify the job name and build number."
        )

    def test_upstream_other(self):
        exc = UpstreamError("Jenkins API error: 503 Service Unavailable", status_code=503)
        payload = server._handle_error(exc, "get_queue_info")
        assert payload["error"] == "[get_queue_info] Jenkins API error: 503 Service Unavailable"

    def test_environment_error(self):
        payload = server._handle_error(EnvironmentError("Missing JENKINS_URL"), "list_jobs")
        assert payload == {"error": "[list_jobs] Missing JENKINS_URL", "status": 500}

    def test_unexpected(self):
        payload = server._handle_error(RuntimeError("boom"), "list_views")
        assert payload == {"error": "[list_views] Unexpected error: boom", "status": 500}


# ---------------------------------------------------------------------------
# _jenkins_config
# ---------------------------------------------------------------------------


class TestJenkinsConfig:
    def test_explicit_credentials(self):
        config = server._jenkins_config("https://ci.example.com/", "bot", "t0ken")
        assert config.url == "https://ci.example.com"
        assert config.auth == ("bot", "t0ken")

    @patch("jenkins_monitor.jenkins_api.load_dotenv")
    def test_partial_credentials_fall_back_to_env(self, _mock_dotenv, monkeypatch):
        monkeypatch.setenv("JENKINS_URL", "https://env.example.com")
        monkeypatch.setenv("JENKINS_USER", "env-user")
        monkeypatch.setenv("JENKINS_TOKEN", "env-token")
        config = server._jenkins_config("https://ci.example.com", "", "")
        assert config.url == "https://env.example.com"
        assert config.username == "env-user"

    @patch("jenkins_monitor.jenkins_api.load_dotenv")
    def test_no_credentials_anywhere(self, _mock_dotenv, monkeypatch):
        for name in ("JENKINS_URL", "JENKINS_USER", "JENKINS_TOKEN"):
            monkeypatch.delenv(name, raising=False)
        with pytest.raises(EnvironmentError):
            server._jenkins_config("", "", "")


# ---------------------------------------------------------------------------
# Logging and request-body helpers
# ---------------------------------------------------------------------------


class TestLogLevel:
    def test_named_levels(self):
        assert server._log_level("debug") == logging.DEBUG
        assert server._log_level("ERROR") == logging.ERROR

    def test_default_and_unknown(self):
        assert server._log_level(None) == logging.WARNING
        assert server._log_level("verbose") == logging.WARNING


class TestKnowledgeBaseBody:
    def test_drops_empty_fields(self):
        body = server._knowledge_base_body("search", {"query": "jvm", "category": ""}, None)
        assert body == {"query": "jvm", "action": "search"}

    def test_merges_solution(self):
        body = server._knowledge_base_body(
            "add-solution", {"query": ""}, {"title": "Flaky grid", "severity": "low"},
        )
        assert body == {"title": "Flaky grid", "severity": "low", "action": "add-solution"}

    def test_no_action(self):
        assert server._knowledge_base_body("", {"text": ""}, None) == {}


class TestStartupBanner:
    @patch("server._network_address", return_value="10.0.0.5")
    def test_wildcard_host_lists_network_address(self, _mock_address):
        banner = server._startup_banner("0.0.0.0", 8000)
        assert "http://127.0.0.1:8000/mcp" in banner
        assert "http://10.0.0.5:8000/mcp" in banner
        assert f"last {server.monitor.history_size} analyses" in banner

    @patch("server._network_address")
    def test_specific_host_skips_network_lookup(self, mock_address):
        banner = server._startup_banner("127.0.0.1", 9000)
        assert "Network" not in banner
        mock_address.assert_not_called()

    @patch("server.socket.socket")
    def test_network_address_falls_back_to_loopback(self, mock_socket):
        probe = mock_socket.return_value.__enter__.return_value
        probe.connect.side_effect = OSError("no route")
        assert server._network_address() == "127.0.0.1"


class TestLogNotification:
    def test_logs_summary(self, caplog):
        notification = NotificationManager().create_system_alert_notification(
            "Disk", "Agent disk at 95%", "high",
        )
        with caplog.at_level(logging.INFO, logger="jenkins-failure-monitor"):
            server._log_notification(notification)
        assert f"Notification {notification.id} [system_alert/high]: Disk" in caplog.text

    def test_subscribed_to_monitor(self):
        assert server._log_notification in server.monitor.notifications._subscribers.values()
