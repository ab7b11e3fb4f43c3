"""
Clean wrappers for Jenkins REST API calls.

Credentials travel with every call in a JenkinsConfig and are never stored by
this module.  All functions raise UpstreamError (carrying the HTTP status and
the original requests exception) rather than returning error strings, so
callers decide how to surface the failure.
"""

from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from urllib.parse import quote

import requests
from dotenv import load_dotenv

from jenkins_monitor.errors import UpstreamError
from jenkins_monitor.models import to_iso

logger = logging.getLogger(__name__)

_TIMEOUT = 30
_MAX_LOG_BYTES = 10 * 1024 * 1024   # 10 MB

_RETRYABLE_STATUSES = {429, 502, 503, 504}
_MAX_RETRIES = 2
_RETRY_DELAYS = (1, 3)  # seconds between retry 0→1 and 1→2

_JOBS_TREE = "jobs[name,url,color,lastBuild[number,url,timestamp,duration,result,building,actions[causes[shortDescription],parameters[name,value]]]]"
_JOB_TREE = (
    "name,url,color,"
    "lastBuild[number,url,timestamp,duration,result,building,actions[parameters[name,value]]],"
    "builds[number,url,timestamp,duration,result,building]"
)
_BUILD_TREE = (
    "number,url,timestamp,duration,result,building,displayName,fullDisplayName,"
    "description,actions[_class,causes[shortDescription,userId,userName],parameters[name,value]]"
)


@dataclass(frozen=True)
class JenkinsConfig:
    url: str
    username: str
    api_token: str
    verify_ssl: bool = True
    timeout: int = _TIMEOUT

    def __post_init__(self):
        object.__setattr__(self, "url", self.url.rstrip("/"))

    @property
    def auth(self) -> tuple[str, str]:
        return (self.username, self.api_token)

    @classmethod
    def from_env(cls) -> JenkinsConfig:
        """Build a config from JENKINS_URL / JENKINS_USER / JENKINS_TOKEN (.env honoured)."""
        load_dotenv()
        values = {
            "JENKINS_URL": os.environ.get("JENKINS_URL", ""),
            "JENKINS_USER": os.environ.get("JENKINS_USER", ""),
            "JENKINS_TOKEN": os.environ.get("JENKINS_TOKEN", ""),
        }
        missing = [k for k, v in values.items() if not v]
        if missing:
            raise EnvironmentError(
                f"Missing required environment variables: {', '.join(missing)}. "
                "Copy .env.example to .env and fill in your credentials."
            )
        verify = os.environ.get("JENKINS_VERIFY_SSL", "true").lower() not in ("false", "0", "no")
        if not verify:
            import urllib3
            urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)
        return cls(
            url=values["JENKINS_URL"],
            username=values["JENKINS_USER"],
            api_token=values["JENKINS_TOKEN"],
            verify_ssl=verify,
        )


# ---------------------------------------------------------------------------
# Transport
# ---------------------------------------------------------------------------


def _request(config: JenkinsConfig, method: str, path: str, **kwargs) -> requests.Response:
    """HTTP call with bounded retry for transient failures (429/502/503/504)."""
    url = f"{config.url}{path}"
    for attempt in range(_MAX_RETRIES + 1):
        try:
            response = requests.request(
                method, url, auth=config.auth, timeout=config.timeout,
                verify=config.verify_ssl, **kwargs,
            )
            if response.status_code in _RETRYABLE_STATUSES and attempt < _MAX_RETRIES:
                time.sleep(_RETRY_DELAYS[attempt])
                continue
            response.raise_for_status()
            return response
        except requests.HTTPError as exc:
            status = exc.response.status_code if exc.response is not None else None
            reason = exc.response.reason if exc.response is not None else ""
            logger.debug("Jenkins HTTP %s for %s", status, url)
            raise UpstreamError(
                f"Jenkins API error: {status} {reason}".rstrip(),
                status_code=status, original=exc,
            ) from exc
        except requests.ConnectionError as exc:
            if attempt < _MAX_RETRIES:
                time.sleep(_RETRY_DELAYS[attempt])
                continue
            raise UpstreamError(
                f"Cannot reach Jenkins at {config.url}. "
                "Verify the server is running and the URL is correct.",
                original=exc,
            ) from exc
        except requests.Timeout as exc:
            if attempt < _MAX_RETRIES:
                time.sleep(_RETRY_DELAYS[attempt])
                continue
            raise UpstreamError(
                f"Jenkins did not respond within {config.timeout} seconds ({url}).",
                original=exc,
            ) from exc
    raise UpstreamError(f"Exhausted retries for {url}")


def _get(config: JenkinsConfig, path: str, **kwargs) -> requests.Response:
    return _request(config, "GET", path, **kwargs)


def _post(config: JenkinsConfig, path: str, **kwargs) -> requests.Response:
    return _request(config, "POST", path, **kwargs)


def _job_path(job_name: str) -> str:
    """Convert a slash-separated job name into a Jenkins API path segment.

    'my-org/my-repo/main' -> '/job/my-org/job/my-repo/job/main'
    """
    segments = [quote(seg, safe="") for seg in job_name.split("/")]
    return "/job/" + "/job/".join(segments)


# ---------------------------------------------------------------------------
# Jobs and builds
# ---------------------------------------------------------------------------


def get_jobs(config: JenkinsConfig) -> list[dict]:
    data = _get(config, f"/api/json?tree={_JOBS_TREE}").json()
    return data.get("jobs") or []


def get_job_details(config: JenkinsConfig, job_name: str) -> dict:
    return _get(config, f"{_job_path(job_name)}/api/json?tree={_JOB_TREE}").json()


def get_build_details(config: JenkinsConfig, job_name: str, build_number: int | str) -> dict:
    """Fetch one build.  *build_number* may also be a named build such as ``lastFailedBuild``."""
    path = f"{_job_path(job_name)}/{build_number}/api/json?tree={_BUILD_TREE}"
    return _get(config, path).json()


def get_build_log(config: JenkinsConfig, job_name: str, build_number: int) -> str:
    """Fetch the console log for a build, streaming and capping at 10 MB."""
    path = f"{_job_path(job_name)}/{build_number}/consoleText"
    response = _get(config, path, stream=True)
    chunks: list[str] = []
    total = 0
    for chunk in response.iter_content(chunk_size=8192, decode_unicode=True):
        total += len(chunk)
        chunks.append(chunk)
        if total >= _MAX_LOG_BYTES:
            chunks.append("\n[LOG TRUNCATED: exceeded 10 MB download limit]")
            break
    response.close()
    return "".join(chunks)


def get_pipeline_stages(config: JenkinsConfig, job_name: str,
                        build_number: int) -> list[dict] | None:
    """Fetch stage data for a Pipeline build via the Workflow API.

    Returns None when the job is not a Pipeline (wfapi returns 404).
    """
    path = f"{_job_path(job_name)}/{build_number}/wfapi/describe"
    try:
        data = _get(config, path).json()
    except UpstreamError as exc:
        if exc.status_code == 404:
            return None
        raise

    return [
        {
            "name": stage.get("name", ""),
            "status": stage.get("status", "UNKNOWN"),
            "durationMillis": stage.get("durationMillis") or 0,
            "startTimeMillis": stage.get("startTimeMillis") or 0,
        }
        for stage in data.get("stages") or []
    ]


def get_views(config: JenkinsConfig) -> list[dict]:
    data = _get(config, "/api/json?tree=views[name,url,jobs[name,url,color]]").json()
    return data.get("views") or []


def get_queue(config: JenkinsConfig) -> list[dict]:
    tree = "items[id,task[name,url],actions[parameters[name,value]],inQueueSince,why,blocked,stuck]"
    data = _get(config, f"/queue/api/json?tree={tree}").json()
    return data.get("items") or []


def get_computer_info(config: JenkinsConfig) -> dict:
    tree = "computer[displayName,idle,offline,numExecutors,executors[currentExecutable[url]]]"
    return _get(config, f"/computer/api/json?tree={tree}").json()


def trigger_build(config: JenkinsConfig, job_name: str, parameters: dict | None = None) -> None:
    if parameters:
        params = {k: str(v) for k, v in parameters.items()}
        _post(config, f"{_job_path(job_name)}/buildWithParameters", params=params)
    else:
        _post(config, f"{_job_path(job_name)}/build")


def stop_build(config: JenkinsConfig, job_name: str, build_number: int) -> None:
    _post(config, f"{_job_path(job_name)}/{build_number}/stop")


def test_connection(config: JenkinsConfig) -> dict:
    """Probe the server root.  Connection problems are reported, not raised."""
    try:
        response = _get(config, "/api/json?tree=nodeName")
    except UpstreamError as exc:
        return {"success": False, "message": str(exc), "status": exc.status_code}
    version = response.headers.get("X-Jenkins", "unknown")
    return {
        "success": True,
        "message": f"Connected to Jenkins {version}",
        "version": version,
    }


# ---------------------------------------------------------------------------
# Build payload helpers
# ---------------------------------------------------------------------------


def convert_build_status(result: str | None, building: bool) -> str:
    if building:
        return "running"
    if result == "SUCCESS":
        return "success"
    if result == "FAILURE":
        return "failed"
    return "pending"


def get_failure_reason(build: dict) -> str | None:
    """First cause description from the build's CauseAction, if any."""
    for action in build.get("actions") or []:
        if not action:
            continue
        if action.get("_class") == "hudson.model.CauseAction" or "causes" in action:
            causes = action.get("causes") or []
            if causes:
                return causes[0].get("shortDescription") or "Unknown cause"
    return None


def get_build_parameters(build: dict) -> dict:
    """Extract build parameters as a name -> value mapping."""
    for action in build.get("actions") or []:
        if not action:
            continue
        if action.get("_class") == "hudson.model.ParametersAction" or "parameters" in action:
            return {p.get("name", ""): p.get("value") for p in action.get("parameters") or []}
    return {}


def to_pipeline_summary(job: dict) -> dict:
    """Reshape a job listing entry into the dashboard's pipeline summary."""
    last = job.get("lastBuild") or {}
    params = get_build_parameters(last)
    timestamp = last.get("timestamp")
    return {
        "id": job.get("name", ""),
        "name": job.get("name", ""),
        "status": convert_build_status(last.get("result") or "PENDING", bool(last.get("building"))),
        "duration": (last.get("duration") or 0) // 60000,
        "startTime": (
            to_iso(datetime.fromtimestamp(timestamp / 1000, tz=timezone.utc)) if timestamp else None
        ),
        "failureStage": "Unknown" if last.get("result") == "FAILURE" else None,
        "failureReason": get_failure_reason(last) if last else None,
        "developer": params.get("developer") or "Unknown",
        "branch": params.get("branch") or "main",
        "stages": [],
    }
