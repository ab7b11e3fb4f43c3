"""
Request layer: wire-format dicts in, wire-format dicts out.

MonitorAPI owns the analyzer, the notification manager and the knowledge base
for one running application.  It validates request bodies, translates them
into engine calls, and raises the errors in ``jenkins_monitor.errors``; the
server turns those into responses.  Field names follow the dashboard's JSON
contract (``pipelineId``, ``failureReason``, ``notificationId`` ...).
"""

from __future__ import annotations

import logging
import threading
from collections import deque

from jenkins_monitor import jenkins_api, log_parser
from jenkins_monitor.errors import NotFoundError, ValidationError, require_fields
from jenkins_monitor.failure_analyzer import FailureAnalyzer, parse_failures, strip_similar
from jenkins_monitor.jenkins_api import JenkinsConfig
from jenkins_monitor.knowledge_base import KnowledgeBase
from jenkins_monitor.models import Severity
from jenkins_monitor.notification_manager import (
    NotificationFilters,
    NotificationManager,
    NotificationType,
)

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_SIZE = 200
_PASSING_STAGE_STATUSES = ("SUCCESS", "NOT_EXECUTED", "IN_PROGRESS")


# ---------------------------------------------------------------------------
# Parameter parsing
# ---------------------------------------------------------------------------


def _string_list(value, name: str) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValidationError(f"Parameter '{name}' must be a list of strings")
    return [str(v) for v in value]


def _parse_bool(value) -> bool | None:
    """Query-string boolean: only 'true'/'false' count, anything else is no filter."""
    if isinstance(value, bool):
        return value
    if value == "true":
        return True
    if value == "false":
        return False
    return None


def _parse_int(value, name: str) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Parameter '{name}' must be an integer") from exc


def _parse_enum(enum_cls, value, name: str):
    if value is None or value == "":
        return None
    try:
        return enum_cls(value)
    except ValueError as exc:
        allowed = ", ".join(m.value for m in enum_cls)
        raise ValidationError(f"Invalid {name} '{value}'. Expected one of: {allowed}") from exc


def _metadata(body: dict) -> dict:
    metadata = body.get("metadata") or {}
    if not isinstance(metadata, dict):
        raise ValidationError("Parameter 'metadata' must be an object")
    return metadata


def _parse_tags(value) -> list[str] | None:
    if value is None or value == "":
        return None
    if isinstance(value, list):
        return [str(v) for v in value]
    return str(value).split(",")


# ---------------------------------------------------------------------------
# API
# ---------------------------------------------------------------------------


class MonitorAPI:
    def __init__(
        self,
        analyzer: FailureAnalyzer | None = None,
        notifications: NotificationManager | None = None,
        knowledge_base: KnowledgeBase | None = None,
        history_size: int = DEFAULT_HISTORY_SIZE,
    ):
        self.analyzer = analyzer or FailureAnalyzer()
        self.notifications = notifications or NotificationManager()
        self.kb = knowledge_base or KnowledgeBase()
        self._history = deque(maxlen=history_size)
        self._history_lock = threading.Lock()

    @property
    def history_size(self) -> int:
        return self._history.maxlen

    # -----------------------------------------------------------------------
    # Failure analysis
    # -----------------------------------------------------------------------

    def analyze_failure(self, body: dict) -> dict:
        """``{pipelineId, failureReason, logs[], affectedStages[]}`` ->
        ``{analysis, suggestedActions[], autoFixScript}``."""
        require_fields(body, "pipelineId", "failureReason")
        logs = _string_list(body.get("logs"), "logs")
        stages = _string_list(body.get("affectedStages"), "affectedStages")

        with self._history_lock:
            history = list(self._history)

        analysis = self.analyzer.analyze_failure(
            body["pipelineId"], body["failureReason"], logs, stages, history,
        )

        with self._history_lock:
            self._history.append(strip_similar(analysis))

        logger.info(
            "Classified failure of %s as %s (confidence %.2f)",
            analysis.pipeline_id, analysis.category.id, analysis.confidence,
        )
        return {
            "analysis": analysis.to_dict(),
            "suggestedActions": self.analyzer.get_suggested_actions(analysis),
            "autoFixScript": self.analyzer.get_auto_fix_script(analysis),
        }

    def get_failure_stats(self, failures_json: str | None) -> dict:
        if not failures_json:
            raise ValidationError("Missing failures parameter", missing=["failures"])
        return self.analyzer.generate_failure_stats(parse_failures(failures_json))

    # -----------------------------------------------------------------------
    # Notifications
    # -----------------------------------------------------------------------

    def create_notification(self, body: dict) -> dict:
        require_fields(body, "type", "title", "message", "severity")
        ntype = _parse_enum(NotificationType, body["type"], "type")
        severity = _parse_enum(Severity, body["severity"], "severity")
        metadata = _metadata(body)

        notification = self.notifications.create_notification(
            ntype,
            body["title"],
            body["message"],
            severity,
            body.get("pipelineId"),
            body.get("pipelineName"),
            body.get("stage"),
            metadata,
        )
        return notification.to_dict()

    def report_pipeline_failure(self, body: dict) -> dict:
        require_fields(body, "pipelineId", "pipelineName", "failureReason")
        severity = _parse_enum(Severity, body.get("severity") or "medium", "severity")
        notification = self.notifications.create_pipeline_failure_notification(
            body["pipelineId"],
            body["pipelineName"],
            body["failureReason"],
            body.get("stage"),
            severity,
            _metadata(body),
        )
        return notification.to_dict()

    def raise_system_alert(self, body: dict) -> dict:
        require_fields(body, "title", "message")
        severity = _parse_enum(Severity, body.get("severity") or "medium", "severity")
        notification = self.notifications.create_system_alert_notification(
            body["title"], body["message"], severity, _metadata(body),
        )
        return notification.to_dict()

    def notification_action(self, body: dict) -> dict:
        """``{action, notificationId, userId?, assignee?}`` ->
        ``{success, message, action, notificationId}``."""
        require_fields(body, "action", "notificationId")
        action = body["action"]
        notification_id = body["notificationId"]
        user_id = body.get("userId")

        if action == "acknowledge":
            found = self.notifications.acknowledge_notification(notification_id, user_id)
            message = "Notification acknowledged successfully"
        elif action == "resolve":
            found = self.notifications.resolve_notification(notification_id, user_id)
            message = "Notification resolved successfully"
        elif action == "assign":
            if not body.get("assignee"):
                raise ValidationError("Missing assignee parameter", missing=["assignee"])
            found = self.notifications.assign_notification(
                notification_id, body["assignee"], user_id,
            )
            message = "Notification assigned successfully"
        else:
            raise ValidationError("Invalid action")

        if not found:
            raise NotFoundError("Notification not found")

        return {
            "success": True,
            "message": message,
            "action": action,
            "notificationId": notification_id,
        }

    def list_notifications(self, query: dict) -> dict:
        filters = NotificationFilters(
            type=_parse_enum(NotificationType, query.get("type"), "type"),
            severity=_parse_enum(Severity, query.get("severity"), "severity"),
            pipeline_id=query.get("pipelineId") or None,
            acknowledged=_parse_bool(query.get("acknowledged")),
            resolved=_parse_bool(query.get("resolved")),
            assignee=query.get("assignee") or None,
            tags=_parse_tags(query.get("tags")),
            limit=_parse_int(query.get("limit"), "limit"),
            offset=_parse_int(query.get("offset"), "offset"),
        )
        notifications = self.notifications.get_notifications(filters)
        return {
            "notifications": [n.to_dict() for n in notifications],
            "stats": self.notifications.get_notification_stats(),
            "total": len(notifications),
        }

    def cleanup_notifications(self) -> dict:
        return {"removed": self.notifications.cleanup()}

    # -----------------------------------------------------------------------
    # Knowledge base
    # -----------------------------------------------------------------------

    def knowledge_base(self, body: dict):
        """Dispatch on ``action``; no action lists every solution."""
        kb = self.kb
        action = body.get("action")

        if not action:
            return [s.to_dict() for s in kb.get_all_solutions()]
        if action == "stats":
            return kb.get_stats()
        if action == "search":
            require_fields(body, "query")
            return [s.to_dict() for s in kb.search_solutions(body["query"])]
        if action == "category":
            require_fields(body, "category")
            return [s.to_dict() for s in kb.get_solutions_by_category(body["category"])]
        if action == "severity":
            require_fields(body, "severity")
            return [s.to_dict() for s in kb.get_solutions_by_severity(body["severity"])]
        if action == "find-solutions":
            require_fields(body, "failureReason")
            logs = _string_list(body.get("logs"), "logs")
            return [s.to_dict() for s in kb.find_solutions(body["failureReason"], logs)]
        if action == "add-solution":
            data = {k: v for k, v in body.items() if k != "action"}
            return kb.add_solution(data).to_dict()
        if action == "get-autofix":
            require_fields(body, "failureReason")
            return {"script": kb.get_auto_fix_script(body["failureReason"])}
        if action == "recognize-pattern":
            require_fields(body, "text")
            pattern = kb.recognize_failure_pattern(body["text"])
            return pattern.to_dict() if pattern else None
        if action == "patterns":
            return [p.to_dict() for p in kb.get_patterns()]
        if action == "add-pattern":
            data = {k: v for k, v in body.items() if k != "action"}
            return kb.add_failure_pattern(data).to_dict()
        raise ValidationError("Invalid action")

    def update_solution(self, body: dict) -> dict:
        require_fields(body, "id")
        updates = {k: v for k, v in body.items() if k != "id"}
        solution = self.kb.update_solution(body["id"], updates)
        if solution is None:
            raise NotFoundError("Solution not found")
        return solution.to_dict()

    def delete_solution(self, solution_id: str | None) -> dict:
        if not solution_id:
            raise ValidationError("Missing solution ID", missing=["id"])
        if not self.kb.delete_solution(solution_id):
            raise NotFoundError("Solution not found")
        return {"success": True}

    def export_knowledge_base(self) -> str:
        return self.kb.export_solutions()

    def import_knowledge_base(self, json_data: str | None) -> dict:
        if not json_data:
            raise ValidationError("Missing knowledge base data", missing=["data"])
        self.kb.import_solutions(json_data)
        return {"success": True}

    # -----------------------------------------------------------------------
    # Build investigation
    # -----------------------------------------------------------------------

    def investigate_build(
        self,
        config: JenkinsConfig,
        job_name: str,
        build_number: int = 0,
        notify: bool = True,
    ) -> dict:
        """Fetch a build from Jenkins, classify its failure and raise a notification.

        *build_number* 0 selects the job's last failed build.  A build that is
        still running is rejected.  With *notify* set, a FAILURE raises a failure
        notification at the severity of its category and a SUCCESS raises a
        success notification; other results (ABORTED, UNSTABLE, NOT_BUILT) are
        analyzed without a notification.
        """
        if not job_name:
            raise ValidationError("Missing required parameters: jobName", missing=["jobName"])

        selector = build_number or "lastFailedBuild"
        build = jenkins_api.get_build_details(config, job_name, selector)
        number = build.get("number") or build_number
        if build.get("building"):
            raise ValidationError(
                f"Build {job_name} #{number} is still running. Investigate it once it finishes."
            )
        result = build.get("result") or "IN_PROGRESS"
        status = jenkins_api.convert_build_status(result, False)

        console = jenkins_api.get_build_log(config, job_name, number)
        stages = jenkins_api.get_pipeline_stages(config, job_name, number) or []
        extract = log_parser.extract_failure_context(console)

        affected = [s["name"] for s in stages if s["status"] not in _PASSING_STAGE_STATUSES]
        for stage in extract.affected_stages:
            if stage not in affected:
                affected.append(stage)

        reason = (
            extract.failure_reason
            or jenkins_api.get_failure_reason(build)
            or f"Build finished with result {result}"
        )

        response = self.analyze_failure({
            "pipelineId": job_name,
            "failureReason": reason,
            "logs": extract.error_lines,
            "affectedStages": affected,
        })

        pattern = self.kb.recognize_failure_pattern(reason)
        if pattern is not None:
            self.kb.update_failure_pattern_frequency(pattern.id)
        solutions = self.kb.find_solutions(reason, extract.error_lines)

        notification = None
        if notify and status == "success":
            notification = self.notifications.create_pipeline_success_notification(
                job_name, job_name, {"buildNumber": number, "buildUrl": build.get("url")},
            ).to_dict()
        elif notify and status == "failed":
            analysis = response["analysis"]
            notification = self.notifications.create_pipeline_failure_notification(
                job_name,
                job_name,
                reason,
                affected[0] if affected else None,
                analysis["category"]["severity"],
                {
                    "buildNumber": number,
                    "buildUrl": build.get("url"),
                    "result": result,
                    "category": analysis["category"]["id"],
                    "confidence": analysis["confidence"],
                },
            ).to_dict()

        return {
            "build": {"jobName": job_name, "number": number, "result": result,
                      "status": status, "url": build.get("url")},
            **response,
            "pattern": pattern.to_dict() if pattern else None,
            "solutions": [s.to_dict() for s in solutions],
            "notification": notification,
        }
