"""Tests for jenkins_monitor.jenkins_api: transport, retries, wrappers and payload helpers."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest
import requests

from jenkins_monitor import jenkins_api
from jenkins_monitor.errors import UpstreamError
from jenkins_monitor.jenkins_api import (
    JenkinsConfig,
    _job_path,
    convert_build_status,
    get_build_log,
    get_build_parameters,
    get_failure_reason,
    get_jobs,
    get_pipeline_stages,
    stop_build,
    to_pipeline_summary,
    trigger_build,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

CONFIG = JenkinsConfig(url="https://ci.example.com/", username="bot", api_token="t0ken")


def _mock_response(json_data: dict | None = None, status_code: int = 200,
                   headers: dict | None = None) -> MagicMock:
    resp = MagicMock(spec=requests.Response)
    resp.status_code = status_code
    resp.reason = "OK" if status_code < 400 else "Error"
    resp.headers = headers or {}
    resp.json.return_value = json_data or {}
    if status_code >= 400:
        resp.raise_for_status.side_effect = requests.HTTPError(response=resp)
    else:
        resp.raise_for_status.return_value = None
    return resp


def _upstream_404(*args, **kwargs):
    raise UpstreamError("Jenkins API error: 404 Not Found", status_code=404)


# ---------------------------------------------------------------------------
# JenkinsConfig
# ---------------------------------------------------------------------------


class TestJenkinsConfig:
    def test_trailing_slash_stripped(self):
        assert CONFIG.url == "https://ci.example.com"
        assert CONFIG.auth == ("bot", "t0ken")

    @patch("jenkins_monitor.jenkins_api.load_dotenv")
    def test_from_env(self, _mock_dotenv, monkeypatch):
        monkeypatch.setenv("JENKINS_URL", "https://jenkins.local")
        monkeypatch.setenv("JENKINS_USER", "alice")
        monkeypatch.setenv("JENKINS_TOKEN", "secret")
        monkeypatch.delenv("JENKINS_VERIFY_SSL", raising=False)
        config = JenkinsConfig.from_env()
        assert config.url == "https://jenkins.local"
        assert config.username == "alice"
        assert config.verify_ssl is True

    @patch("jenkins_monitor.jenkins_api.load_dotenv")
    def test_from_env_verify_disabled(self, _mock_dotenv, monkeypatch):
        monkeypatch.setenv("JENKINS_URL", "https://jenkins.local")
        monkeypatch.setenv("JENKINS_USER", "alice")
        monkeypatch.setenv("JENKINS_TOKEN", "secret")
        monkeypatch.setenv("JENKINS_VERIFY_SSL", "false")
        assert JenkinsConfig.from_env().verify_ssl is False

    @patch("jenkins_monitor.jenkins_api.load_dotenv")
    def test_from_env_missing(self, _mock_dotenv, monkeypatch):
        monkeypatch.setenv("JENKINS_URL", "https://jenkins.local")
        monkeypatch.delenv("JENKINS_USER", raising=False)
        monkeypatch.delenv("JENKINS_TOKEN", raising=False)
        with pytest.raises(EnvironmentError) as exc_info:
            JenkinsConfig.from_env()
        assert "JENKINS_USER, JENKINS_TOKEN" in str(exc_info.value)


# ---------------------------------------------------------------------------
# Transport and retries
# ---------------------------------------------------------------------------


class TestTransport:
    @patch("jenkins_monitor.jenkins_api.requests.request")
    def test_passes_auth_and_verify(self, mock_request):
        mock_request.return_value = _mock_response({"jobs": []})
        get_jobs(CONFIG)
        args, kwargs = mock_request.call_args
        assert args[0] == "GET"
        assert args[1].startswith("https://ci.example.com/api/json?tree=jobs[")
        assert kwargs["auth"] == ("bot", "t0ken")
        assert kwargs["verify"] is True
        assert kwargs["timeout"] == 30

    @patch("jenkins_monitor.jenkins_api.time.sleep")
    @patch("jenkins_monitor.jenkins_api.requests.request")
    def test_retries_transient_status(self, mock_request, mock_sleep):
        mock_request.side_effect = [
            _mock_response(status_code=503),
            _mock_response(status_code=502),
            _mock_response({"jobs": [{"name": "a"}]}),
        ]
        assert get_jobs(CONFIG) == [{"name": "a"}]
        assert mock_request.call_count == 3
        assert [c.args[0] for c in mock_sleep.call_args_list] == [1, 3]

    @patch("jenkins_monitor.jenkins_api.time.sleep")
    @patch("jenkins_monitor.jenkins_api.requests.request")
    def test_retries_exhausted(self, mock_request, _mock_sleep):
        mock_request.return_value = _mock_response(status_code=503)
        with pytest.raises(UpstreamError) as exc_info:
            get_jobs(CONFIG)
        assert exc_info.value.status_code == 503
        assert mock_request.call_count == 3

    @patch("jenkins_monitor.jenkins_api.requests.request")
    def test_http_error_wrapped(self, mock_request):
        mock_request.return_value = _mock_response(status_code=401)
        with pytest.raises(UpstreamError) as exc_info:
            get_jobs(CONFIG)
        assert exc_info.value.status_code == 401
        assert isinstance(exc_info.value.original, requests.HTTPError)
        assert exc_info.value.__cause__ is exc_info.value.original
        assert mock_request.call_count == 1

    @patch("jenkins_monitor.jenkins_api.time.sleep")
    @patch("jenkins_monitor.jenkins_api.requests.request")
    def test_connection_error_wrapped(self, mock_request, _mock_sleep):
        mock_request.side_effect = requests.ConnectionError("refused")
        with pytest.raises(UpstreamError) as exc_info:
            get_jobs(CONFIG)
        assert "Cannot reach Jenkins at https://ci.example.com" in str(exc_info.value)
        assert exc_info.value.status_code is None
        assert mock_request.call_count == 3

    @patch("jenkins_monitor.jenkins_api.time.sleep")
    @patch("jenkins_monitor.jenkins_api.requests.request")
    def test_timeout_wrapped(self, mock_request, _mock_sleep):
        mock_request.side_effect = requests.Timeout("slow")
        with pytest.raises(UpstreamError) as exc_info:
            get_jobs(CONFIG)
        assert "did not respond within 30 seconds" in str(exc_info.value)


class TestJobPath:
    def test_simple(self):
        assert _job_path("backend") == "/job/backend"

    def test_folders(self):
        assert _job_path("org/repo/main") == "/job/org/job/repo/job/main"

    def test_special_characters_encoded(self):
        assert _job_path("feature/a b") == "/job/feature/job/a%20b"


# ---------------------------------------------------------------------------
# Wrappers
# ---------------------------------------------------------------------------


class TestGetPipelineStages:
    @patch("jenkins_monitor.jenkins_api._get")
    def test_happy_path(self, mock_get):
        mock_get.return_value = _mock_response({
            "stages": [
                {"id": "6", "name": "Build", "status": "SUCCESS",
                 "durationMillis": 45000, "startTimeMillis": 1700000000000},
                {"id": "11", "name": "Test", "status": "FAILED", "durationMillis": 120000},
            ]
        })
        result = get_pipeline_stages(CONFIG, "my-pipeline", 42)
        assert result == [
            {"name": "Build", "status": "SUCCESS", "durationMillis": 45000,
             "startTimeMillis": 1700000000000},
            {"name": "Test", "status": "FAILED", "durationMillis": 120000,
             "startTimeMillis": 0},
        ]
        assert mock_get.call_args[0][1] == "/job/my-pipeline/42/wfapi/describe"

    @patch("jenkins_monitor.jenkins_api._get")
    def test_freestyle_returns_none(self, mock_get):
        mock_get.side_effect = _upstream_404
        assert get_pipeline_stages(CONFIG, "freestyle-job", 10) is None

    @patch("jenkins_monitor.jenkins_api._get")
    def test_other_errors_propagate(self, mock_get):
        mock_get.side_effect = UpstreamError("boom", status_code=500)
        with pytest.raises(UpstreamError):
            get_pipeline_stages(CONFIG, "job", 1)

    @patch("jenkins_monitor.jenkins_api._get")
    def test_missing_stages_key(self, mock_get):
        mock_get.return_value = _mock_response({})
        assert get_pipeline_stages(CONFIG, "my-pipeline", 5) == []


class TestGetBuildLog:
    @patch("jenkins_monitor.jenkins_api._get")
    def test_streams_chunks(self, mock_get):
        resp = _mock_response()
        resp.iter_content.return_value = iter(["line 1\n", "line 2\n"])
        mock_get.return_value = resp
        assert get_build_log(CONFIG, "job", 7) == "line 1\nline 2\n"
        assert mock_get.call_args.kwargs["stream"] is True
        resp.close.assert_called_once()

    @patch("jenkins_monitor.jenkins_api._MAX_LOG_BYTES", 10)
    @patch("jenkins_monitor.jenkins_api._get")
    def test_size_cap(self, mock_get):
        resp = _mock_response()
        resp.iter_content.return_value = iter(["aaaaaa", "bbbbbb", "cccccc"])
        mock_get.return_value = resp
        text = get_build_log(CONFIG, "job", 7)
        assert text.startswith("aaaaaabbbbbb")
        assert "cccccc" not in text
        assert text.endswith("[LOG TRUNCATED: exceeded 10 MB download limit]")


class TestBuildControl:
    @patch("jenkins_monitor.jenkins_api._post")
    def test_trigger_plain(self, mock_post):
        trigger_build(CONFIG, "backend")
        mock_post.assert_called_once_with(CONFIG, "/job/backend/build")

    @patch("jenkins_monitor.jenkins_api._post")
    def test_trigger_with_parameters(self, mock_post):
        trigger_build(CONFIG, "backend", {"BRANCH": "main", "DRY_RUN": True})
        mock_post.assert_called_once_with(
            CONFIG, "/job/backend/buildWithParameters",
            params={"BRANCH": "main", "DRY_RUN": "True"},
        )

    @patch("jenkins_monitor.jenkins_api._post")
    def test_stop(self, mock_post):
        stop_build(CONFIG, "backend", 12)
        mock_post.assert_called_once_with(CONFIG, "/job/backend/12/stop")


class TestTestConnection:
    @patch("jenkins_monitor.jenkins_api._get")
    def test_success(self, mock_get):
        mock_get.return_value = _mock_response({}, headers={"X-Jenkins": "2.440.1"})
        result = jenkins_api.test_connection(CONFIG)
        assert result == {"success": True, "message": "Connected to Jenkins 2.440.1",
                          "version": "2.440.1"}

    @patch("jenkins_monitor.jenkins_api._get")
    def test_failure_reported(self, mock_get):
        mock_get.side_effect = UpstreamError("Jenkins API error: 401 Unauthorized", status_code=401)
        result = jenkins_api.test_connection(CONFIG)
        assert result["success"] is False
        assert result["status"] == 401


# ---------------------------------------------------------------------------
# Payload helpers
# ---------------------------------------------------------------------------


class TestConvertBuildStatus:
    def test_building_wins(self):
        assert convert_build_status("FAILURE", True) == "running"

    def test_terminal_states(self):
        assert convert_build_status("SUCCESS", False) == "success"
        assert convert_build_status("FAILURE", False) == "failed"
        assert convert_build_status("ABORTED", False) == "pending"
        assert convert_build_status(None, False) == "pending"


class TestBuildActions:
    def test_failure_reason_from_cause_action(self):
        build = {"actions": [
            {},
            {"_class": "hudson.model.CauseAction",
             "causes": [{"shortDescription": "Started by user admin"}]},
        ]}
        assert get_failure_reason(build) == "Started by user admin"

    def test_failure_reason_absent(self):
        assert get_failure_reason({"actions": [{"_class": "x"}]}) is None
        assert get_failure_reason({}) is None

    def test_parameters(self):
        build = {"actions": [
            {"_class": "hudson.model.CauseAction", "causes": []},
            {"_class": "hudson.model.ParametersAction",
             "parameters": [{"name": "branch", "value": "dev"}, {"name": "n", "value": 3}]},
        ]}
        assert get_build_parameters(build) == {"branch": "dev", "n": 3}

    def test_no_parameters(self):
        assert get_build_parameters({"actions": []}) == {}


class TestPipelineSummary:
    def test_failed_job(self):
        job = {
            "name": "backend",
            "lastBuild": {
                "number": 12, "timestamp": 1700000000000, "duration": 185000,
                "result": "FAILURE", "building": False,
                "actions": [
                    {"causes": [{"shortDescription": "Started by an SCM change"}]},
                    {"parameters": [{"name": "developer", "value": "alice"},
                                    {"name": "branch", "value": "feature/x"}]},
                ],
            },
        }
        summary = to_pipeline_summary(job)
        assert summary == {
            "id": "backend",
            "name": "backend",
            "status": "failed",
            "duration": 3,
            "startTime": "2023-11-14T22:13:20.000Z",
            "failureStage": "Unknown",
            "failureReason": "Started by an SCM change",
            "developer": "alice",
            "branch": "feature/x",
            "stages": [],
        }

    def test_never_built(self):
        summary = to_pipeline_summary({"name": "fresh"})
        assert summary["status"] == "pending"
        assert summary["startTime"] is None
        assert summary["failureStage"] is None
        assert summary["failureReason"] is None
        assert summary["developer"] == "Unknown"
        assert summary["branch"] == "main"
