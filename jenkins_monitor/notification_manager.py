"""
Notification management and prioritization.

Notifications live in an in-memory list guarded by a re-entrant lock.  On
creation each one receives derived tags and a baseline action list, then the
rule engine runs: enabled rules are tried in ascending priority and only the
first rule whose conditions all hold is applied.  Subscribers are called
afterwards, outside the lock, each in its own failure boundary.
"""

from __future__ import annotations

import logging
import re
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum

from jenkins_monitor.models import (
    SEVERITY_RANK,
    Severity,
    generate_id,
    parse_iso,
    round_half_up,
    to_iso,
    utcnow,
)

logger = logging.getLogger(__name__)

RETENTION = timedelta(days=30)
AUTO_ACKNOWLEDGE_ABOVE_PRIORITY = 3


class NotificationType(str, Enum):
    PIPELINE_FAILURE = "pipeline_failure"
    PIPELINE_SUCCESS = "pipeline_success"
    SYSTEM_ALERT = "system_alert"
    MAINTENANCE = "maintenance"
    PERFORMANCE_WARNING = "performance_warning"


class ActionKind(str, Enum):
    ACKNOWLEDGE = "acknowledge"
    RESOLVE = "resolve"
    ASSIGN = "assign"
    RESTART = "restart"
    VIEW_LOGS = "view_logs"
    QUICK_FIX = "quick_fix"
    ESCALATE = "escalate"


class ConditionField(str, Enum):
    PIPELINE_NAME = "pipeline_name"
    FAILURE_REASON = "failure_reason"
    STAGE = "stage"
    SEVERITY = "severity"
    BRANCH = "branch"
    DEVELOPER = "developer"


class ConditionOperator(str, Enum):
    EQUALS = "equals"
    CONTAINS = "contains"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    REGEX = "regex"


# ---------------------------------------------------------------------------
# Data structures
# ---------------------------------------------------------------------------


@dataclass
class NotificationAction:
    id: str
    label: str
    action: ActionKind
    payload: dict | None = None

    def to_dict(self) -> dict:
        data = {"id": self.id, "label": self.label, "action": self.action.value}
        if self.payload is not None:
            data["payload"] = dict(self.payload)
        return data


@dataclass
class Notification:
    id: str
    type: NotificationType
    title: str
    message: str
    severity: Severity
    timestamp: datetime
    pipeline_id: str | None = None
    pipeline_name: str | None = None
    stage: str | None = None
    acknowledged: bool = False
    resolved: bool = False
    assignee: str | None = None
    tags: list[str] = field(default_factory=list)
    actions: list[NotificationAction] = field(default_factory=list)
    metadata: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "type": self.type.value,
            "title": self.title,
            "message": self.message,
            "severity": self.severity.value,
        }
        for key, value in (("pipelineId", self.pipeline_id),
                           ("pipelineName", self.pipeline_name),
                           ("stage", self.stage)):
            if value is not None:
                data[key] = value
        data.update({
            "timestamp": to_iso(self.timestamp),
            "acknowledged": self.acknowledged,
            "resolved": self.resolved,
        })
        if self.assignee is not None:
            data["assignee"] = self.assignee
        data.update({
            "tags": list(self.tags),
            "actions": [a.to_dict() for a in self.actions],
            "metadata": dict(self.metadata),
        })
        return data


@dataclass(frozen=True)
class NotificationCondition:
    field: ConditionField
    operator: ConditionOperator
    value: str


@dataclass
class NotificationRule:
    id: str
    name: str
    description: str
    conditions: list[NotificationCondition]
    actions: list[NotificationAction]
    priority: int
    enabled: bool = True


@dataclass
class NotificationFilters:
    type: NotificationType | None = None
    severity: Severity | None = None
    pipeline_id: str | None = None
    acknowledged: bool | None = None
    resolved: bool | None = None
    assignee: str | None = None
    tags: list[str] | None = None
    limit: int | None = None
    offset: int | None = None


def default_rules() -> list[NotificationRule]:
    return [
        NotificationRule(
            id="critical_failure",
            name="Critical Pipeline Failure",
            description="High-priority failures that need immediate attention",
            conditions=[NotificationCondition(ConditionField.SEVERITY,
                                              ConditionOperator.EQUALS, "critical")],
            actions=[
                NotificationAction("immediate_alert", "Send Immediate Alert", ActionKind.ESCALATE),
                NotificationAction("assign_lead", "Assign to Lead", ActionKind.ASSIGN),
            ],
            priority=1,
        ),
        NotificationRule(
            id="recurring_failure",
            name="Recurring Failure",
            description="Failures that happen repeatedly on the same pipeline",
            conditions=[NotificationCondition(ConditionField.FAILURE_REASON,
                                              ConditionOperator.CONTAINS, "timeout")],
            actions=[
                NotificationAction("auto_fix", "Apply Auto Fix", ActionKind.QUICK_FIX),
                NotificationAction("assign_team", "Assign to Team", ActionKind.ASSIGN),
            ],
            priority=2,
        ),
        NotificationRule(
            id="test_failure",
            name="Test Failure",
            description="Test-related failures with medium priority",
            conditions=[NotificationCondition(ConditionField.STAGE,
                                              ConditionOperator.CONTAINS, "test")],
            actions=[
                NotificationAction("notify_developer", "Notify Developer", ActionKind.ASSIGN),
            ],
            priority=3,
        ),
        NotificationRule(
            id="performance_warning",
            name="Performance Warning",
            description="Pipeline performance degradation",
            conditions=[NotificationCondition(ConditionField.FAILURE_REASON,
                                              ConditionOperator.CONTAINS, "slow")],
            actions=[
                NotificationAction("monitor", "Monitor Performance", ActionKind.ACKNOWLEDGE),
            ],
            priority=4,
        ),
    ]


# ---------------------------------------------------------------------------
# Condition evaluation
# ---------------------------------------------------------------------------


def _field_value(notification: Notification, field_name: ConditionField) -> str:
    if field_name is ConditionField.PIPELINE_NAME:
        return notification.pipeline_name or ""
    if field_name is ConditionField.FAILURE_REASON:
        return notification.message
    if field_name is ConditionField.STAGE:
        return notification.stage or ""
    if field_name is ConditionField.SEVERITY:
        return notification.severity.value
    if field_name is ConditionField.BRANCH:
        return str(notification.metadata.get("branch") or "")
    if field_name is ConditionField.DEVELOPER:
        return str(notification.metadata.get("developer") or "")
    return ""


def evaluate_condition(field_value: str, operator: ConditionOperator, value: str) -> bool:
    """Case-insensitive comparison; an uncompilable regex is a non-match."""
    subject = field_value.lower()
    target = value.lower()

    if operator is ConditionOperator.EQUALS:
        return subject == target
    if operator is ConditionOperator.CONTAINS:
        return target in subject
    if operator is ConditionOperator.STARTS_WITH:
        return subject.startswith(target)
    if operator is ConditionOperator.ENDS_WITH:
        return subject.endswith(target)
    if operator is ConditionOperator.REGEX:
        try:
            return re.search(target, subject) is not None
        except re.error:
            logger.debug("Ignoring invalid rule regex %r", value)
            return False
    return False


def _normalize_tag(value: str) -> str:
    return re.sub(r"\s+", "_", value.lower())


# ---------------------------------------------------------------------------
# Manager
# ---------------------------------------------------------------------------


class NotificationManager:
    def __init__(
        self,
        rules: list[NotificationRule] | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._notifications: list[Notification] = []
        self._rules: list[NotificationRule] = list(rules) if rules is not None else default_rules()
        self._subscribers: dict[str, Callable[[Notification], None]] = {}
        self._clock = clock
        self._lock = threading.RLock()

    # -----------------------------------------------------------------------
    # Creation
    # -----------------------------------------------------------------------

    def create_notification(
        self,
        type: NotificationType | str,
        title: str,
        message: str,
        severity: Severity | str,
        pipeline_id: str | None = None,
        pipeline_name: str | None = None,
        stage: str | None = None,
        metadata: dict | None = None,
    ) -> Notification:
        """Create, store and broadcast a notification.

        Raises ValueError for an unknown type or severity.  Subscriber errors
        never propagate to the caller.
        """
        ntype = NotificationType(type)
        level = Severity(severity)

        notification = Notification(
            id=generate_id("notif"),
            type=ntype,
            title=title,
            message=message,
            severity=level,
            timestamp=self._clock(),
            pipeline_id=pipeline_id,
            pipeline_name=pipeline_name,
            stage=stage,
            tags=self._generate_tags(ntype, level, pipeline_name, stage),
            actions=self._generate_actions(ntype, level, pipeline_id),
            metadata=dict(metadata or {}),
        )

        with self._lock:
            self._notifications.append(notification)
            self._process_rules(notification)
            subscribers = list(self._subscribers.values())

        for callback in subscribers:
            try:
                callback(notification)
            except Exception:
                logger.exception("Error in notification subscriber")

        return notification

    def create_pipeline_failure_notification(
        self,
        pipeline_id: str,
        pipeline_name: str,
        failure_reason: str,
        stage: str | None = None,
        severity: Severity | str = Severity.MEDIUM,
        metadata: dict | None = None,
    ) -> Notification:
        return self.create_notification(
            NotificationType.PIPELINE_FAILURE,
            f"Pipeline Failed: {pipeline_name}",
            failure_reason,
            severity,
            pipeline_id,
            pipeline_name,
            stage,
            metadata,
        )

    def create_pipeline_success_notification(
        self, pipeline_id: str, pipeline_name: str, metadata: dict | None = None,
    ) -> Notification:
        return self.create_notification(
            NotificationType.PIPELINE_SUCCESS,
            f"Pipeline Success: {pipeline_name}",
            f"Pipeline {pipeline_name} completed successfully",
            Severity.LOW,
            pipeline_id,
            pipeline_name,
            None,
            metadata,
        )

    def create_system_alert_notification(
        self,
        title: str,
        message: str,
        severity: Severity | str = Severity.MEDIUM,
        metadata: dict | None = None,
    ) -> Notification:
        return self.create_notification(
            NotificationType.SYSTEM_ALERT, title, message, severity, metadata=metadata,
        )

    @staticmethod
    def _generate_tags(ntype: NotificationType, severity: Severity,
                       pipeline_name: str | None, stage: str | None) -> list[str]:
        tags = [ntype.value, severity.value]
        if pipeline_name:
            tags.append(_normalize_tag(pipeline_name))
        if stage:
            tags.append(_normalize_tag(stage))
        if severity in (Severity.HIGH, Severity.CRITICAL):
            tags.append("urgent")
        if ntype is NotificationType.PIPELINE_FAILURE:
            tags.append("needs_attention")
        return tags

    @staticmethod
    def _generate_actions(ntype: NotificationType, severity: Severity,
                          pipeline_id: str | None) -> list[NotificationAction]:
        is_failure = ntype is NotificationType.PIPELINE_FAILURE
        actions = [NotificationAction("acknowledge", "Acknowledge", ActionKind.ACKNOWLEDGE)]
        if is_failure:
            actions.append(NotificationAction("view_logs", "View Logs", ActionKind.VIEW_LOGS,
                                              {"pipelineId": pipeline_id}))
            actions.append(NotificationAction("restart", "Restart Pipeline", ActionKind.RESTART,
                                              {"pipelineId": pipeline_id}))
        if severity in (Severity.HIGH, Severity.CRITICAL):
            actions.append(NotificationAction("escalate", "Escalate", ActionKind.ESCALATE))
        if is_failure:
            actions.append(NotificationAction("quick_fix", "Quick Fix", ActionKind.QUICK_FIX,
                                              {"pipelineId": pipeline_id}))
        actions.append(NotificationAction("resolve", "Resolve", ActionKind.RESOLVE))
        return actions

    # -----------------------------------------------------------------------
    # Rule engine
    # -----------------------------------------------------------------------

    def _process_rules(self, notification: Notification) -> NotificationRule | None:
        for rule in sorted(self._rules, key=lambda r: r.priority):
            if not rule.enabled:
                continue
            if all(evaluate_condition(_field_value(notification, c.field), c.operator, c.value)
                   for c in rule.conditions):
                self._execute_rule_actions(notification, rule)
                return rule
        return None

    @staticmethod
    def _execute_rule_actions(notification: Notification, rule: NotificationRule) -> None:
        present = {a.id for a in notification.actions}
        for action in rule.actions:
            if action.id not in present:
                notification.actions.append(action)
                present.add(action.id)
        if rule.priority > AUTO_ACKNOWLEDGE_ABOVE_PRIORITY:
            notification.acknowledged = True

    def get_rules(self) -> list[NotificationRule]:
        with self._lock:
            return sorted(self._rules, key=lambda r: r.priority)

    def add_rule(self, rule: NotificationRule) -> None:
        with self._lock:
            self._rules.append(rule)

    def set_rule_enabled(self, rule_id: str, enabled: bool) -> bool:
        with self._lock:
            for rule in self._rules:
                if rule.id == rule_id:
                    rule.enabled = enabled
                    return True
        return False

    # -----------------------------------------------------------------------
    # Lifecycle
    # -----------------------------------------------------------------------

    def _find(self, notification_id: str) -> Notification | None:
        return next((n for n in self._notifications if n.id == notification_id), None)

    def get_notification(self, notification_id: str) -> Notification | None:
        with self._lock:
            return self._find(notification_id)

    def acknowledge_notification(self, notification_id: str, user_id: str | None = None) -> bool:
        with self._lock:
            notification = self._find(notification_id)
            if notification is None:
                return False
            notification.acknowledged = True
            if user_id is not None:
                notification.metadata["acknowledgedBy"] = user_id
            notification.metadata["acknowledgedAt"] = to_iso(self._clock())
            return True

    def resolve_notification(self, notification_id: str, user_id: str | None = None) -> bool:
        with self._lock:
            notification = self._find(notification_id)
            if notification is None:
                return False
            notification.resolved = True
            if user_id is not None:
                notification.metadata["resolvedBy"] = user_id
            notification.metadata["resolvedAt"] = to_iso(self._clock())
            return True

    def assign_notification(self, notification_id: str, assignee: str,
                            user_id: str | None = None) -> bool:
        with self._lock:
            notification = self._find(notification_id)
            if notification is None:
                return False
            notification.assignee = assignee
            if user_id is not None:
                notification.metadata["assignedBy"] = user_id
            notification.metadata["assignedAt"] = to_iso(self._clock())
            return True

    # -----------------------------------------------------------------------
    # Queries
    # -----------------------------------------------------------------------

    def get_notifications(self, filters: NotificationFilters | None = None) -> list[Notification]:
        """Filter, then order by severity (desc) and timestamp (newest first).

        Pagination applies offset first, then limit to the offset slice.
        """
        filters = filters or NotificationFilters()
        with self._lock:
            result = list(self._notifications)

        if filters.type is not None:
            result = [n for n in result if n.type is NotificationType(filters.type)]
        if filters.severity is not None:
            result = [n for n in result if n.severity is Severity(filters.severity)]
        if filters.pipeline_id:
            result = [n for n in result if n.pipeline_id == filters.pipeline_id]
        if filters.acknowledged is not None:
            result = [n for n in result if n.acknowledged == filters.acknowledged]
        if filters.resolved is not None:
            result = [n for n in result if n.resolved == filters.resolved]
        if filters.assignee:
            result = [n for n in result if n.assignee == filters.assignee]
        if filters.tags:
            result = [n for n in result if all(tag in n.tags for tag in filters.tags)]

        result.sort(key=lambda n: (SEVERITY_RANK[n.severity], n.timestamp), reverse=True)

        if filters.offset:
            result = result[filters.offset:]
        if filters.limit:
            result = result[:filters.limit]
        return result

    def get_notification_stats(self) -> dict:
        with self._lock:
            notifications = list(self._notifications)

        total = len(notifications)
        by_type: dict[str, int] = {}
        by_severity: dict[str, int] = {}
        by_pipeline: dict[str, int] = {}
        for n in notifications:
            by_type[n.type.value] = by_type.get(n.type.value, 0) + 1
            by_severity[n.severity.value] = by_severity.get(n.severity.value, 0) + 1
            if n.pipeline_name:
                by_pipeline[n.pipeline_name] = by_pipeline.get(n.pipeline_name, 0) + 1

        resolved = [n for n in notifications if n.resolved and n.metadata.get("resolvedAt")]
        if resolved:
            total_seconds = sum(
                (parse_iso(n.metadata["resolvedAt"]) - n.timestamp).total_seconds()
                for n in resolved
            )
            avg_resolution = total_seconds / len(resolved) / 60
        else:
            avg_resolution = 0.0

        # Counts the escalate affordance, not actual escalations.
        escalated = sum(
            1 for n in notifications
            if any(a.action is ActionKind.ESCALATE for a in n.actions)
        )
        escalation_rate = escalated / total * 100 if total else 0.0

        return {
            "total": total,
            "unacknowledged": sum(1 for n in notifications if not n.acknowledged),
            "unresolved": sum(1 for n in notifications if not n.resolved),
            "byType": by_type,
            "bySeverity": by_severity,
            "byPipeline": by_pipeline,
            "avgResolutionTime": round_half_up(avg_resolution),
            "escalationRate": round_half_up(escalation_rate),
        }

    # -----------------------------------------------------------------------
    # Subscribers and retention
    # -----------------------------------------------------------------------

    def subscribe(self, callback: Callable[[Notification], None]) -> str:
        subscription_id = generate_id("sub")
        with self._lock:
            self._subscribers[subscription_id] = callback
        return subscription_id

    def unsubscribe(self, subscription_id: str) -> bool:
        with self._lock:
            return self._subscribers.pop(subscription_id, None) is not None

    def cleanup(self, now: datetime | None = None) -> int:
        """Drop notifications older than 30 days.  Returns how many were removed."""
        now = now or self._clock()
        with self._lock:
            before = len(self._notifications)
            self._notifications = [
                n for n in self._notifications if now - n.timestamp <= RETENTION
            ]
            removed = before - len(self._notifications)
        if removed:
            logger.info("Removed %d notifications older than %s", removed, RETENTION)
        return removed
