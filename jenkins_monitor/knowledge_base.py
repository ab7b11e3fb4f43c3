"""
Knowledge base of remediation templates for frequent pipeline failures.

The catalog is in-process state with a single-writer assumption: edits bump
``version`` and ``last_updated`` but there is no conflict detection between
concurrent editors.  A lock still serializes access so the server's worker
threads never observe a half-applied edit.
"""

from __future__ import annotations

import json
import logging
import re
import threading
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum

from jenkins_monitor.catalog import DEFAULT_PATTERNS, DEFAULT_SOLUTIONS
from jenkins_monitor.errors import MalformedInputError, ValidationError
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

COMMON_PATTERN_LIMIT = 10
_REQUIRED_SOLUTION_FIELDS = ("title", "description", "category", "severity")
_SERVER_MANAGED_FIELDS = ("id", "lastUpdated", "version")


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


def _put_optional(data: dict, key: str, value) -> None:
    if value is not None:
        data[key] = value


# ---------------------------------------------------------------------------
# Data structures
# ---------------------------------------------------------------------------


@dataclass
class SolutionStep:
    id: str
    title: str
    description: str
    risk: RiskLevel
    required: bool
    command: str | None = None
    code: str | None = None
    files: list[str] | None = None
    verification: str | None = None
    rollback: str | None = None

    def to_dict(self) -> dict:
        data = {"id": self.id, "title": self.title, "description": self.description}
        _put_optional(data, "command", self.command)
        _put_optional(data, "code", self.code)
        _put_optional(data, "files", list(self.files) if self.files is not None else None)
        _put_optional(data, "verification", self.verification)
        _put_optional(data, "rollback", self.rollback)
        data["risk"] = self.risk.value
        data["required"] = self.required
        return data

    @classmethod
    def from_dict(cls, data: dict) -> SolutionStep:
        return cls(
            id=data["id"],
            title=data.get("title", ""),
            description=data.get("description", ""),
            risk=RiskLevel(data.get("risk", RiskLevel.LOW.value)),
            required=bool(data.get("required", False)),
            command=data.get("command"),
            code=data.get("code"),
            files=list(data["files"]) if data.get("files") is not None else None,
            verification=data.get("verification"),
            rollback=data.get("rollback"),
        )


@dataclass
class PreventionStep:
    id: str
    title: str
    description: str
    implementation: str
    monitoring: str | None = None
    schedule: str | None = None

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "implementation": self.implementation,
        }
        _put_optional(data, "monitoring", self.monitoring)
        _put_optional(data, "schedule", self.schedule)
        return data

    @classmethod
    def from_dict(cls, data: dict) -> PreventionStep:
        return cls(
            id=data["id"],
            title=data.get("title", ""),
            description=data.get("description", ""),
            implementation=data.get("implementation", ""),
            monitoring=data.get("monitoring"),
            schedule=data.get("schedule"),
        )


@dataclass
class SolutionTemplate:
    id: str
    title: str
    description: str
    category: str
    severity: Severity
    last_updated: datetime
    problem_patterns: list[str] = field(default_factory=list)
    symptoms: list[str] = field(default_factory=list)
    root_causes: list[str] = field(default_factory=list)
    solutions: list[SolutionStep] = field(default_factory=list)
    prevention: list[PreventionStep] = field(default_factory=list)
    estimated_fix_time: int = 0
    success_rate: int = 0
    tags: list[str] = field(default_factory=list)
    related_failures: list[str] = field(default_factory=list)
    version: int = 1
    author: str = ""
    verified: bool = False
    auto_fix_available: bool = False
    auto_fix_script: str | None = None

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "category": self.category,
            "severity": self.severity.value,
            "problemPatterns": list(self.problem_patterns),
            "symptoms": list(self.symptoms),
            "rootCauses": list(self.root_causes),
            "solutions": [s.to_dict() for s in self.solutions],
            "prevention": [p.to_dict() for p in self.prevention],
            "estimatedFixTime": self.estimated_fix_time,
            "successRate": self.success_rate,
            "tags": list(self.tags),
            "relatedFailures": list(self.related_failures),
            "lastUpdated": to_iso(self.last_updated),
            "version": self.version,
            "author": self.author,
            "verified": self.verified,
            "autoFixAvailable": self.auto_fix_available,
        }
        _put_optional(data, "autoFixScript", self.auto_fix_script)
        return data

    @classmethod
    def from_dict(cls, data: dict, now: datetime | None = None) -> SolutionTemplate:
        last_updated = data.get("lastUpdated")
        return cls(
            id=data["id"],
            title=data["title"],
            description=data["description"],
            category=data["category"],
            severity=Severity(data["severity"]),
            last_updated=parse_iso(last_updated) if last_updated else (now or utcnow()),
            problem_patterns=list(data.get("problemPatterns") or []),
            symptoms=list(data.get("symptoms") or []),
            root_causes=list(data.get("rootCauses") or []),
            solutions=[SolutionStep.from_dict(s) for s in data.get("solutions") or []],
            prevention=[PreventionStep.from_dict(p) for p in data.get("prevention") or []],
            estimated_fix_time=int(data.get("estimatedFixTime", 0)),
            success_rate=int(data.get("successRate", 0)),
            tags=list(data.get("tags") or []),
            related_failures=list(data.get("relatedFailures") or []),
            version=int(data.get("version", 1)),
            author=data.get("author", ""),
            verified=bool(data.get("verified", False)),
            auto_fix_available=bool(data.get("autoFixAvailable", False)),
            auto_fix_script=data.get("autoFixScript"),
        )


@dataclass
class FailurePattern:
    id: str
    name: str
    description: str
    regex: str
    category: str
    severity: Severity
    frequency: int
    last_seen: datetime
    solution_id: str | None = None

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "regex": self.regex,
            "category": self.category,
            "severity": self.severity.value,
            "frequency": self.frequency,
            "lastSeen": to_iso(self.last_seen),
        }
        _put_optional(data, "solutionId", self.solution_id)
        return data

    @classmethod
    def from_dict(cls, data: dict, now: datetime | None = None) -> FailurePattern:
        last_seen = data.get("lastSeen")
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            description=data.get("description", ""),
            regex=data["regex"],
            category=data.get("category", ""),
            severity=Severity(data.get("severity", Severity.MEDIUM.value)),
            frequency=int(data.get("frequency", 0)),
            last_seen=parse_iso(last_seen) if last_seen else (now or utcnow()),
            solution_id=data.get("solutionId"),
        )


# ---------------------------------------------------------------------------
# Knowledge base
# ---------------------------------------------------------------------------


class KnowledgeBase:
    def __init__(
        self,
        solutions: list[SolutionTemplate] | None = None,
        patterns: list[FailurePattern] | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._clock = clock
        now = clock()
        self._solutions = (
            list(solutions) if solutions is not None
            else [SolutionTemplate.from_dict(s, now) for s in DEFAULT_SOLUTIONS]
        )
        self._patterns = (
            list(patterns) if patterns is not None
            else [FailurePattern.from_dict(p, now) for p in DEFAULT_PATTERNS]
        )
        self._lock = threading.RLock()

    # -----------------------------------------------------------------------
    # Lookup
    # -----------------------------------------------------------------------

    def find_solutions(self, failure_reason: str,
                       logs: list[str] | None = None) -> list[SolutionTemplate]:
        """Solutions with any problem pattern in the text, best success rate first."""
        text = f"{failure_reason} {' '.join(logs or [])}".lower()
        with self._lock:
            matches = [
                s for s in self._solutions
                if any(p.lower() in text for p in s.problem_patterns)
            ]
        return sorted(matches, key=lambda s: s.success_rate, reverse=True)

    def get_solution(self, solution_id: str) -> SolutionTemplate | None:
        with self._lock:
            return next((s for s in self._solutions if s.id == solution_id), None)

    def get_all_solutions(self) -> list[SolutionTemplate]:
        with self._lock:
            solutions = list(self._solutions)
        return sorted(
            solutions,
            key=lambda s: (SEVERITY_RANK[s.severity], s.success_rate),
            reverse=True,
        )

    def get_solutions_by_category(self, category: str) -> list[SolutionTemplate]:
        with self._lock:
            return [s for s in self._solutions if s.category == category]

    def get_solutions_by_severity(self, severity: str) -> list[SolutionTemplate]:
        with self._lock:
            return [s for s in self._solutions if s.severity.value == severity]

    def search_solutions(self, query: str) -> list[SolutionTemplate]:
        needle = query.lower()
        with self._lock:
            return [
                s for s in self._solutions
                if needle in s.title.lower()
                or needle in s.description.lower()
                or any(needle in p.lower() for p in s.problem_patterns)
                or any(needle in t.lower() for t in s.tags)
            ]

    def get_auto_fix_script(self, failure_reason: str) -> str | None:
        solutions = self.find_solutions(failure_reason)
        if not solutions:
            return None
        return solutions[0].auto_fix_script or None

    # -----------------------------------------------------------------------
    # Administrative edits
    # -----------------------------------------------------------------------

    def add_solution(self, data: dict) -> SolutionTemplate:
        """Add a solution from wire-format *data*; id, version and timestamp are assigned."""
        missing = [name for name in _REQUIRED_SOLUTION_FIELDS if not data.get(name)]
        if missing:
            raise ValidationError(
                f"Missing required solution fields: {', '.join(missing)}", missing=missing,
            )
        fields = {k: v for k, v in data.items() if k not in _SERVER_MANAGED_FIELDS}
        fields["id"] = generate_id("sol")
        try:
            solution = SolutionTemplate.from_dict(fields)
        except (KeyError, TypeError, ValueError) as exc:
            raise ValidationError(f"Invalid solution: {exc}") from exc
        solution = replace(solution, last_updated=self._clock(), version=1)

        with self._lock:
            self._solutions.append(solution)
        logger.info("Added solution %s (%s)", solution.id, solution.title)
        return solution

    def update_solution(self, solution_id: str, updates: dict) -> SolutionTemplate | None:
        """Merge *updates* into a solution.  Returns None when the id is unknown."""
        with self._lock:
            index = next(
                (i for i, s in enumerate(self._solutions) if s.id == solution_id), None,
            )
            if index is None:
                return None
            current = self._solutions[index]
            merged = current.to_dict()
            merged.update({k: v for k, v in updates.items() if k not in _SERVER_MANAGED_FIELDS})
            try:
                updated = SolutionTemplate.from_dict(merged)
            except (KeyError, TypeError, ValueError) as exc:
                raise ValidationError(f"Invalid solution update: {exc}") from exc
            updated = replace(updated, last_updated=self._clock(), version=current.version + 1)
            self._solutions[index] = updated
            return updated

    def delete_solution(self, solution_id: str) -> bool:
        with self._lock:
            for i, solution in enumerate(self._solutions):
                if solution.id == solution_id:
                    del self._solutions[i]
                    return True
        return False

    # -----------------------------------------------------------------------
    # Failure patterns
    # -----------------------------------------------------------------------

    def recognize_failure_pattern(self, text: str) -> FailurePattern | None:
        with self._lock:
            patterns = list(self._patterns)
        for pattern in patterns:
            try:
                if re.search(pattern.regex, text, re.IGNORECASE):
                    return pattern
            except re.error as exc:
                logger.warning("Invalid regex pattern %r: %s", pattern.regex, exc)
        return None

    def add_failure_pattern(self, data: dict) -> FailurePattern:
        missing = [name for name in ("name", "regex") if not data.get(name)]
        if missing:
            raise ValidationError(
                f"Missing required pattern fields: {', '.join(missing)}", missing=missing,
            )
        fields = {k: v for k, v in data.items() if k not in ("id", "lastSeen")}
        fields["id"] = generate_id("pat")
        try:
            pattern = FailurePattern.from_dict(fields, self._clock())
        except (KeyError, TypeError, ValueError) as exc:
            raise ValidationError(f"Invalid failure pattern: {exc}") from exc
        with self._lock:
            self._patterns.append(pattern)
        return pattern

    def update_failure_pattern_frequency(self, pattern_id: str) -> bool:
        with self._lock:
            for pattern in self._patterns:
                if pattern.id == pattern_id:
                    pattern.frequency += 1
                    pattern.last_seen = self._clock()
                    return True
        return False

    def get_patterns(self) -> list[FailurePattern]:
        with self._lock:
            return list(self._patterns)

    # -----------------------------------------------------------------------
    # Stats, export, import
    # -----------------------------------------------------------------------

    def get_stats(self) -> dict:
        with self._lock:
            solutions = list(self._solutions)
            patterns = list(self._patterns)

        by_category: dict[str, int] = {}
        by_severity: dict[str, int] = {}
        for s in solutions:
            by_category[s.category] = by_category.get(s.category, 0) + 1
            by_severity[s.severity.value] = by_severity.get(s.severity.value, 0) + 1

        average_fix = (
            sum(s.estimated_fix_time for s in solutions) / len(solutions) if solutions else 0
        )
        common = sorted(patterns, key=lambda p: p.frequency, reverse=True)[:COMMON_PATTERN_LIMIT]

        return {
            "totalSolutions": len(solutions),
            "solutionsByCategory": by_category,
            "solutionsBySeverity": by_severity,
            "averageFixTime": round_half_up(average_fix),
            "topSuccessRate": max((s.success_rate for s in solutions), default=0),
            "verifiedSolutions": sum(1 for s in solutions if s.verified),
            "autoFixAvailable": sum(1 for s in solutions if s.auto_fix_available),
            "commonPatterns": [p.to_dict() for p in common],
        }

    def export_solutions(self) -> str:
        with self._lock:
            payload = {
                "solutions": [s.to_dict() for s in self._solutions],
                "patterns": [p.to_dict() for p in self._patterns],
                "exportedAt": to_iso(self._clock()),
            }
        return json.dumps(payload, indent=2)

    def import_solutions(self, json_data: str) -> None:
        """Replace solutions and/or patterns from an export.

        Raises MalformedInputError without touching the catalog when the
        document cannot be parsed.
        """
        try:
            data = json.loads(json_data)
        except json.JSONDecodeError as exc:
            raise MalformedInputError(f"Invalid knowledge base JSON: {exc}") from exc
        if not isinstance(data, dict):
            raise MalformedInputError("Knowledge base export must be a JSON object")

        try:
            solutions = (
                [SolutionTemplate.from_dict(s) for s in data["solutions"]]
                if data.get("solutions") is not None else None
            )
            patterns = (
                [FailurePattern.from_dict(p) for p in data["patterns"]]
                if data.get("patterns") is not None else None
            )
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            raise MalformedInputError(f"Invalid knowledge base entry: {exc!r}") from exc

        with self._lock:
            if solutions is not None:
                self._solutions = solutions
            if patterns is not None:
                self._patterns = patterns
        logger.info(
            "Imported knowledge base (%s solutions, %s patterns)",
            "kept" if solutions is None else len(solutions),
            "kept" if patterns is None else len(patterns),
        )
