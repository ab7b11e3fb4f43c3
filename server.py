"""
Jenkins Failure Monitor MCP Server

A Model Context Protocol server that classifies CI/CD pipeline failures,
routes notifications through a rule engine, and serves a catalog of
remediation playbooks.  Build investigation pulls console output and stage
data straight from Jenkins.

Transport: Streamable HTTP by default (MCP_TRANSPORT=http, host 0.0.0.0, port 8000).
           Set MCP_TRANSPORT=stdio to use stdio instead (e.g. for Cursor/Claude Desktop).
Logs:      All application logs go to stderr to avoid corrupting the JSON-RPC stream.
"""

import logging
import os
import socket
import sys
import time

from dotenv import load_dotenv
from fastmcp import FastMCP

from jenkins_monitor import jenkins_api, log_parser
from jenkins_monitor.api import DEFAULT_HISTORY_SIZE, MonitorAPI
from jenkins_monitor.errors import MonitorError, UpstreamError, ValidationError
from jenkins_monitor.jenkins_api import JenkinsConfig
from jenkins_monitor.notification_manager import Notification

load_dotenv()


def _log_level(value: str | None) -> int:
    level = logging.getLevelName((value or "WARNING").upper())
    return level if isinstance(level, int) else logging.WARNING


# Route all library and application logs to stderr, never stdout.
logging.basicConfig(
    stream=sys.stderr,
    level=_log_level(os.getenv("LOG_LEVEL")),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger("jenkins-failure-monitor")

TOOL_DELAY = float(os.getenv("TOOL_DELAY_SECONDS", "0"))

monitor = MonitorAPI(
    history_size=int(os.getenv("ANALYSIS_HISTORY_SIZE", str(DEFAULT_HISTORY_SIZE))),
)

mcp = FastMCP(
    "Jenkins Failure Monitor",
    instructions=(
        "You are a CI/CD failure triage assistant. "
        "Start with investigate_build to pull a failing Jenkins build, classify its "
        "root cause and raise a notification in one call. "
        "Use analyze_failure when you already have the failure reason and log lines. "
        "Use knowledge_base with action=find-solutions to fetch remediation playbooks, "
        "and get_failure_stats to summarize a batch of past analyses. "
        "Manage alerts with list_notifications and notification_action "
        "(acknowledge, resolve, assign). "
        "Use list_jobs, get_build_log and get_queue_info for raw Jenkins context."
    ),
)


def _handle_error(exc: Exception, context: str) -> dict:
    """Convert exceptions into an error payload for the AI."""
    if isinstance(exc, ValidationError):
        payload = {"error": str(exc), "status": exc.status}
        if exc.missing:
            payload["missing"] = exc.missing
        return payload
    if isinstance(exc, UpstreamError):
        if exc.status_code == 401:
            message = "Authentication failed (401). Check JENKINS_USER and JENKINS_TOKEN."
        elif exc.status_code == 404:
            message = "Not found (404). Verify the job name and build number."
        else:
            message = str(exc)
        return {"error": f"[{context}] {message}", "status": exc.status}
    if isinstance(exc, MonitorError):
        return {"error": str(exc), "status": exc.status}
    if isinstance(exc, EnvironmentError):
        return {"error": f"[{context}] {exc}", "status": 500}
    logger.exception("Unexpected error in %s", context)
    return {"error": f"[{context}] Unexpected error: {exc}", "status": 500}


def _jenkins_config(jenkins_url: str, username: str, api_token: str) -> JenkinsConfig:
    """Explicit credentials win; otherwise fall back to the environment."""
    if jenkins_url and username and api_token:
        return JenkinsConfig(url=jenkins_url, username=username, api_token=api_token)
    return JenkinsConfig.from_env()


def _log_notification(notification: Notification) -> None:
    logger.info(
        "Notification %s [%s/%s]: %s",
        notification.id, notification.type.value, notification.severity.value,
        notification.title,
    )


monitor.notifications.subscribe(_log_notification)


# ---------------------------------------------------------------------------
# Failure Analysis Tools
# ---------------------------------------------------------------------------


@mcp.tool
def analyze_failure(
    pipeline_id: str,
    failure_reason: str,
    logs: list[str] | None = None,
    affected_stages: list[str] | None = None,
) -> dict:
    """Classify a pipeline failure into a root-cause category with a confidence
    score, similar recent failures, suggested actions and an auto-fix script.

    Args:
        pipeline_id: Pipeline (job) identifier.
        failure_reason: Short failure message.
        logs: Relevant log lines.
        affected_stages: Stages that failed.
    """
    try:
        return monitor.analyze_failure({
            "pipelineId": pipeline_id,
            "failureReason": failure_reason,
            "logs": logs or [],
            "affectedStages": affected_stages or [],
        })
    except Exception as exc:
        return _handle_error(exc, "analyze_failure")


@mcp.tool
def get_failure_stats(failures: str) -> dict:
    """Aggregate a JSON array of failure analyses into per-category and
    per-pipeline counts, top patterns and resolution-time estimates.

    Args:
        failures: JSON-encoded list of FailureAnalysis records.
    """
    try:
        return monitor.get_failure_stats(failures)
    except Exception as exc:
        return _handle_error(exc, "get_failure_stats")


# ---------------------------------------------------------------------------
# Notification Tools
# ---------------------------------------------------------------------------


@mcp.tool
def create_notification(
    type: str,
    title: str,
    message: str,
    severity: str,
    pipeline_id: str = "",
    pipeline_name: str = "",
    stage: str = "",
    metadata: dict | None = None,
) -> dict:
    """Create a notification and run it through the rule engine.

    Args:
        type: pipeline_failure, pipeline_success, system_alert, maintenance or
            performance_warning.
        title: Short headline.
        message: Notification body.
        severity: low, medium, high or critical.
        pipeline_id: Related pipeline (optional).
        pipeline_name: Related pipeline display name (optional).
        stage: Related stage (optional).
        metadata: Free-form key/value data (optional).
    """
    try:
        return monitor.create_notification({
            "type": type,
            "title": title,
            "message": message,
            "severity": severity,
            "pipelineId": pipeline_id or None,
            "pipelineName": pipeline_name or None,
            "stage": stage or None,
            "metadata": metadata or {},
        })
    except Exception as exc:
        return _handle_error(exc, "create_notification")


@mcp.tool
def report_pipeline_failure(
    pipeline_id: str,
    pipeline_name: str,
    failure_reason: str,
    stage: str = "",
    severity: str = "medium",
) -> dict:
    """Raise a pipeline failure notification.

    Args:
        pipeline_id: Pipeline identifier.
        pipeline_name: Pipeline display name.
        failure_reason: Failure message.
        stage: Failed stage (optional).
        severity: low, medium, high or critical (default medium).
    """
    try:
        return monitor.report_pipeline_failure({
            "pipelineId": pipeline_id,
            "pipelineName": pipeline_name,
            "failureReason": failure_reason,
            "stage": stage or None,
            "severity": severity,
        })
    except Exception as exc:
        return _handle_error(exc, "report_pipeline_failure")


@mcp.tool
def raise_system_alert(title: str, message: str, severity: str = "medium") -> dict:
    """Raise a system alert that is not tied to a pipeline.

    Args:
        title: Short headline.
        message: Alert body.
        severity: low, medium, high or critical (default medium).
    """
    try:
        return monitor.raise_system_alert({
            "title": title, "message": message, "severity": severity,
        })
    except Exception as exc:
        return _handle_error(exc, "raise_system_alert")


@mcp.tool
def notification_action(
    action: str,
    notification_id: str,
    user_id: str = "",
    assignee: str = "",
) -> dict:
    """Acknowledge, resolve or assign a notification.

    Args:
        action: acknowledge, resolve or assign.
        notification_id: Notification to act on.
        user_id: Who performed the action (optional).
        assignee: Required for assign.
    """
    try:
        return monitor.notification_action({
            "action": action,
            "notificationId": notification_id,
            "userId": user_id or None,
            "assignee": assignee or None,
        })
    except Exception as exc:
        return _handle_error(exc, "notification_action")


@mcp.tool
def list_notifications(
    type: str = "",
    severity: str = "",
    pipeline_id: str = "",
    acknowledged: str = "",
    resolved: str = "",
    assignee: str = "",
    tags: str = "",
    limit: int = 0,
    offset: int = 0,
) -> dict:
    """List notifications, most severe and newest first, with aggregate stats.

    Args:
        type: Filter by notification type.
        severity: Filter by severity.
        pipeline_id: Filter by pipeline.
        acknowledged: "true" or "false" (empty = no filter).
        resolved: "true" or "false" (empty = no filter).
        assignee: Filter by assignee.
        tags: Comma-separated tags; matches notifications carrying all of them.
        limit: Maximum results (0 = all).
        offset: Results to skip.
    """
    try:
        return monitor.list_notifications({
            "type": type,
            "severity": severity,
            "pipelineId": pipeline_id,
            "acknowledged": acknowledged,
            "resolved": resolved,
            "assignee": assignee,
            "tags": tags,
            "limit": limit or None,
            "offset": offset or None,
        })
    except Exception as exc:
        return _handle_error(exc, "list_notifications")


@mcp.tool
def cleanup_notifications() -> dict:
    """Delete notifications older than 30 days."""
    try:
        return monitor.cleanup_notifications()
    except Exception as exc:
        return _handle_error(exc, "cleanup_notifications")


# ---------------------------------------------------------------------------
# Knowledge Base Tools
# ---------------------------------------------------------------------------


def _knowledge_base_body(action: str, fields: dict, solution: dict | None) -> dict:
    """Merge tool arguments into a request body, dropping empty ones."""
    body = dict(solution or {})
    body.update({k: v for k, v in fields.items() if v})
    if action:
        body["action"] = action
    return body


@mcp.tool
def knowledge_base(
    action: str = "",
    query: str = "",
    category: str = "",
    severity: str = "",
    failure_reason: str = "",
    logs: list[str] | None = None,
    text: str = "",
    solution: dict | None = None,
) -> dict:
    """Query the remediation playbook catalog.

    Args:
        action: stats, search, category, severity, find-solutions, add-solution,
            get-autofix, recognize-pattern, patterns, add-pattern.
            Empty lists every solution.
        query: Text for search.
        category: Category for category.
        severity: Severity for severity.
        failure_reason: Failure text for find-solutions and get-autofix.
        logs: Log lines for find-solutions.
        text: Text for recognize-pattern.
        solution: Fields for add-solution (title, description, category, severity,
            solutions, ...) or add-pattern (name, regex, category, ...).
    """
    body = _knowledge_base_body(action, {
        "query": query,
        "category": category,
        "severity": severity,
        "failureReason": failure_reason,
        "logs": logs,
        "text": text,
    }, solution)
    try:
        return {"result": monitor.knowledge_base(body)}
    except Exception as exc:
        return _handle_error(exc, "knowledge_base")


@mcp.tool
def update_solution(solution_id: str, updates: dict) -> dict:
    """Edit a playbook; the version is bumped and lastUpdated refreshed.

    Args:
        solution_id: Solution to update.
        updates: Fields to change.
    """
    try:
        return monitor.update_solution({**updates, "id": solution_id})
    except Exception as exc:
        return _handle_error(exc, "update_solution")


@mcp.tool
def delete_solution(solution_id: str) -> dict:
    """Remove a playbook from the catalog.

    Args:
        solution_id: Solution to delete.
    """
    try:
        return monitor.delete_solution(solution_id)
    except Exception as exc:
        return _handle_error(exc, "delete_solution")


@mcp.tool
def export_knowledge_base() -> dict:
    """Export every solution and failure pattern as a JSON document."""
    try:
        return {"data": monitor.export_knowledge_base()}
    except Exception as exc:
        return _handle_error(exc, "export_knowledge_base")


@mcp.tool
def import_knowledge_base(data: str) -> dict:
    """Replace solutions and/or patterns from a previously exported JSON document.

    Args:
        data: JSON produced by export_knowledge_base.
    """
    try:
        return monitor.import_knowledge_base(data)
    except Exception as exc:
        return _handle_error(exc, "import_knowledge_base")


# ---------------------------------------------------------------------------
# Jenkins Tools
# ---------------------------------------------------------------------------
# Credentials are optional on every tool; when any is missing the server
# falls back to JENKINS_URL / JENKINS_USER / JENKINS_TOKEN.


@mcp.tool
def test_connection(jenkins_url: str = "", username: str = "", api_token: str = "") -> dict:
    """Check that Jenkins is reachable with the given credentials.

    Args:
        jenkins_url: Jenkins base URL.
        username: Jenkins user.
        api_token: Jenkins API token.
    """
    try:
        config = _jenkins_config(jenkins_url, username, api_token)
        return jenkins_api.test_connection(config)
    except Exception as exc:
        return _handle_error(exc, "test_connection")
    finally:
        time.sleep(TOOL_DELAY)


@mcp.tool
def list_jobs(jenkins_url: str = "", username: str = "", api_token: str = "") -> dict:
    """List Jenkins jobs as pipeline summaries (status, duration, branch, developer).

    Args:
        jenkins_url: Jenkins base URL.
        username: Jenkins user.
        api_token: Jenkins API token.
    """
    try:
        config = _jenkins_config(jenkins_url, username, api_token)
        jobs = jenkins_api.get_jobs(config)
    except Exception as exc:
        return _handle_error(exc, "list_jobs")
    finally:
        time.sleep(TOOL_DELAY)

    return {"pipelines": [jenkins_api.to_pipeline_summary(j) for j in jobs]}


@mcp.tool
def get_build_log(
    job_name: str,
    build_number: int,
    max_lines: int = log_parser.TAIL_LINES,
    jenkins_url: str = "",
    username: str = "",
    api_token: str = "",
) -> dict:
    """Fetch the tail of a build's console log.

    Args:
        job_name: Jenkins job name (folders separated by '/').
        build_number: Build number.
        max_lines: Lines to keep from the end of the log (default 250).
        jenkins_url: Jenkins base URL.
        username: Jenkins user.
        api_token: Jenkins API token.
    """
    try:
        config = _jenkins_config(jenkins_url, username, api_token)
        text = jenkins_api.get_build_log(config, job_name, build_number)
    except Exception as exc:
        return _handle_error(exc, "get_build_log")
    finally:
        time.sleep(TOOL_DELAY)

    return {
        "jobName": job_name,
        "buildNumber": build_number,
        "log": log_parser.truncate_tail(text, max_lines),
    }


@mcp.tool
def get_queue_info(jenkins_url: str = "", username: str = "", api_token: str = "") -> dict:
    """Show the build queue and executor status.

    Args:
        jenkins_url: Jenkins base URL.
        username: Jenkins user.
        api_token: Jenkins API token.
    """
    try:
        config = _jenkins_config(jenkins_url, username, api_token)
        items = jenkins_api.get_queue(config)
        computers = jenkins_api.get_computer_info(config)
    except Exception as exc:
        return _handle_error(exc, "get_queue_info")
    finally:
        time.sleep(TOOL_DELAY)

    return {"items": items, "computers": computers.get("computer") or []}


@mcp.tool
def list_views(jenkins_url: str = "", username: str = "", api_token: str = "") -> dict:
    """List Jenkins views and the jobs each one contains.

    Args:
        jenkins_url: Jenkins base URL.
        username: Jenkins user.
        api_token: Jenkins API token.
    """
    try:
        config = _jenkins_config(jenkins_url, username, api_token)
        views = jenkins_api.get_views(config)
    except Exception as exc:
        return _handle_error(exc, "list_views")
    finally:
        time.sleep(TOOL_DELAY)

    return {"views": views}


@mcp.tool
def trigger_build(
    job_name: str,
    parameters: dict | None = None,
    jenkins_url: str = "",
    username: str = "",
    api_token: str = "",
) -> dict:
    """Queue a new build, with parameters if given.

    Args:
        job_name: Jenkins job name.
        parameters: Build parameters (optional).
        jenkins_url: Jenkins base URL.
        username: Jenkins user.
        api_token: Jenkins API token.
    """
    try:
        config = _jenkins_config(jenkins_url, username, api_token)
        jenkins_api.trigger_build(config, job_name, parameters)
    except Exception as exc:
        return _handle_error(exc, "trigger_build")
    finally:
        time.sleep(TOOL_DELAY)
    return {"success": True, "message": f"Build queued for {job_name}"}


@mcp.tool
def stop_build(
    job_name: str,
    build_number: int,
    jenkins_url: str = "",
    username: str = "",
    api_token: str = "",
) -> dict:
    """Abort a running build.

    Args:
        job_name: Jenkins job name.
        build_number: Build number.
        jenkins_url: Jenkins base URL.
        username: Jenkins user.
        api_token: Jenkins API token.
    """
    try:
        config = _jenkins_config(jenkins_url, username, api_token)
        jenkins_api.stop_build(config, job_name, build_number)
    except Exception as exc:
        return _handle_error(exc, "stop_build")
    finally:
        time.sleep(TOOL_DELAY)
    return {"success": True, "message": f"Stop requested for {job_name} #{build_number}"}


@mcp.tool
def investigate_build(
    job_name: str,
    build_number: int = 0,
    notify: bool = True,
    jenkins_url: str = "",
    username: str = "",
    api_token: str = "",
) -> dict:
    """One-call triage for a Jenkins build: fetch the build, its stages and
    console log, extract the failure, classify it and raise a notification.
    Start here instead of calling multiple tools individually.

    Args:
        job_name: Jenkins job name.
        build_number: Build number (0 = last failed build).
        notify: Create a notification for the result (default true).
        jenkins_url: Jenkins base URL.
        username: Jenkins user.
        api_token: Jenkins API token.
    """
    try:
        config = _jenkins_config(jenkins_url, username, api_token)
        return monitor.investigate_build(config, job_name, build_number, notify)
    except Exception as exc:
        return _handle_error(exc, "investigate_build")
    finally:
        time.sleep(TOOL_DELAY)


def _network_address() -> str:
    """Address other hosts can reach; loopback when there is no route out."""
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as probe:
        try:
            probe.connect(("8.8.8.8", 80))
            return probe.getsockname()[0]
        except OSError:
            return "127.0.0.1"


def _startup_banner(host: str, port: int) -> str:
    lines = [f"Jenkins Failure Monitor MCP server listening on {host}:{port}"]
    lines.append(f"  Local:    http://127.0.0.1:{port}/mcp")
    if host in ("0.0.0.0", ""):
        lines.append(f"  Network:  http://{_network_address()}:{port}/mcp")
    lines.append(f"  History:  last {monitor.history_size} analyses kept for similarity")
    return "\n".join(lines)


def main() -> None:
    transport = os.getenv("MCP_TRANSPORT", "http")
    host = os.getenv("MCP_HOST", "0.0.0.0")
    port = int(os.getenv("MCP_PORT", "8000"))

    if transport == "stdio":
        logger.info("Serving over stdio")
        mcp.run(transport="stdio", show_banner=False)
        return

    print(_startup_banner(host, port), file=sys.stderr)
    mcp.run(transport=transport, host=host, port=port, show_banner=False)


if __name__ == "__main__":
    main()
