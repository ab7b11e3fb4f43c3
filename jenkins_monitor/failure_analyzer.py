"""
Failure categorization and aggregation.

Classification is plain ordered substring matching: the failure reason and
log lines are joined, lower-cased, and checked against a fixed category table.
The first category with any pattern contained in the text wins, so table order
matters ("timeout" is claimed by the timeout category before network sees it).
Containment is not word-bounded: "test" would match inside "attested".
"""

from __future__ import annotations

import json
from collections import Counter
from dataclasses import dataclass, field, replace
from datetime import datetime

from jenkins_monitor.errors import MalformedInputError
from jenkins_monitor.models import Severity, parse_iso, round_half_up, to_iso, utcnow

UNKNOWN_CATEGORY_ID = "unknown"
SPECIFICITY_BONUS = 0.2
TOP_PATTERN_LIMIT = 10
RECURRING_THRESHOLD = 5

# Mocked minutes-to-resolve per severity; not measured from real resolutions.
RESOLUTION_MINUTES = {
    Severity.LOW: 15,
    Severity.MEDIUM: 30,
    Severity.HIGH: 60,
    Severity.CRITICAL: 120,
}


# ---------------------------------------------------------------------------
# Data structures
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FailureCategory:
    id: str
    name: str
    description: str
    patterns: tuple[str, ...]
    severity: Severity
    common_causes: tuple[str, ...]
    suggested_solutions: tuple[str, ...]
    auto_fix_available: bool

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "patterns": list(self.patterns),
            "severity": self.severity.value,
            "commonCauses": list(self.common_causes),
            "suggestedSolutions": list(self.suggested_solutions),
            "autoFixAvailable": self.auto_fix_available,
        }

    @classmethod
    def from_dict(cls, data: dict) -> FailureCategory:
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            description=data.get("description", ""),
            patterns=tuple(data.get("patterns") or ()),
            severity=Severity(data.get("severity", Severity.MEDIUM.value)),
            common_causes=tuple(data.get("commonCauses") or ()),
            suggested_solutions=tuple(data.get("suggestedSolutions") or ()),
            auto_fix_available=bool(data.get("autoFixAvailable", False)),
        )


@dataclass
class FailureAnalysis:
    pipeline_id: str
    failure_reason: str
    category: FailureCategory
    confidence: float
    timestamp: datetime
    logs: list[str] = field(default_factory=list)
    affected_stages: list[str] = field(default_factory=list)
    similar_failures: list[FailureAnalysis] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "pipelineId": self.pipeline_id,
            "failureReason": self.failure_reason,
            "category": self.category.to_dict(),
            "confidence": self.confidence,
            "timestamp": to_iso(self.timestamp),
            "logs": list(self.logs),
            "affectedStages": list(self.affected_stages),
            "similarFailures": [f.to_dict() for f in self.similar_failures],
        }

    @classmethod
    def from_dict(cls, data: dict) -> FailureAnalysis:
        return cls(
            pipeline_id=data["pipelineId"],
            failure_reason=data.get("failureReason", ""),
            category=FailureCategory.from_dict(data["category"]),
            confidence=float(data.get("confidence", 0.0)),
            timestamp=parse_iso(data["timestamp"]),
            logs=list(data.get("logs") or []),
            affected_stages=list(data.get("affectedStages") or []),
            similar_failures=[cls.from_dict(f) for f in data.get("similarFailures") or []],
        )


# ---------------------------------------------------------------------------
# Category table
# ---------------------------------------------------------------------------

CATEGORIES: tuple[FailureCategory, ...] = (
    FailureCategory(
        id="timeout",
        name="Timeout Issues",
        description="Builds or stages timing out",
        patterns=("timeout", "timed out", "time limit exceeded", "deadline exceeded"),
        severity=Severity.MEDIUM,
        common_causes=("Long-running tests", "Network latency",
                       "Resource constraints", "Inefficient code"),
        suggested_solutions=("Increase timeout thresholds", "Optimize test performance",
                             "Add more build resources", "Parallelize test execution"),
        auto_fix_available=True,
    ),
    FailureCategory(
        id="memory",
        name="Memory Issues",
        description="Out of memory or memory limit exceeded",
        patterns=("out of memory", "memory limit", "oom", "heap space", "memory exhausted"),
        severity=Severity.HIGH,
        common_causes=("Memory leaks", "Large datasets",
                       "Insufficient heap allocation", "Memory-intensive operations"),
        suggested_solutions=("Increase memory allocation", "Optimize memory usage",
                             "Add memory profiling", "Implement pagination for large datasets"),
        auto_fix_available=True,
    ),
    FailureCategory(
        id="network",
        name="Network Issues",
        description="Network connectivity or DNS resolution failures",
        patterns=("network", "connection refused", "dns", "timeout", "unreachable"),
        severity=Severity.MEDIUM,
        common_causes=("Network configuration issues", "Firewall restrictions",
                       "DNS resolution failures", "Service unavailability"),
        suggested_solutions=("Check network configuration", "Implement retry logic",
                             "Add health checks", "Use fallback DNS servers"),
        auto_fix_available=True,
    ),
    FailureCategory(
        id="dependency",
        name="Dependency Issues",
        description="Problems with dependencies, packages, or libraries",
        patterns=("dependency", "package", "library", "version conflict", "compatibility"),
        severity=Severity.MEDIUM,
        common_causes=("Version conflicts", "Missing dependencies",
                       "Corrupted packages", "Incompatible versions"),
        suggested_solutions=("Update dependencies", "Use dependency locking",
                             "Implement dependency checks", "Use virtual environments"),
        auto_fix_available=True,
    ),
    FailureCategory(
        id="permission",
        name="Permission Issues",
        description="File permissions, access rights, or authorization failures",
        patterns=("permission", "access denied", "unauthorized", "forbidden", "read-only"),
        severity=Severity.MEDIUM,
        common_causes=("Incorrect file permissions", "Missing access rights",
                       "User configuration issues", "Security policy restrictions"),
        suggested_solutions=("Check file permissions", "Update user access rights",
                             "Configure security policies", "Use service accounts"),
        auto_fix_available=True,
    ),
    FailureCategory(
        id="disk-space",
        name="Disk Space Issues",
        description="Insufficient disk space or storage issues",
        patterns=("disk space", "no space left", "storage full", "quota exceeded"),
        severity=Severity.HIGH,
        common_causes=("Insufficient disk space", "Large build artifacts",
                       "No cleanup process", "Log files accumulation"),
        suggested_solutions=("Clean up disk space", "Implement artifact cleanup",
                             "Add storage monitoring", "Use external storage"),
        auto_fix_available=True,
    ),
    FailureCategory(
        id="test-failure",
        name="Test Failures",
        description="Unit tests, integration tests, or E2E test failures",
        patterns=("test failed", "assertion", "test error", "test suite", "spec failed"),
        severity=Severity.LOW,
        common_causes=("Code changes breaking tests", "Flaky tests",
                       "Environment issues", "Test data problems"),
        suggested_solutions=("Update test cases", "Fix flaky tests",
                             "Improve test environment", "Add test data management"),
        auto_fix_available=False,
    ),
    FailureCategory(
        id="configuration",
        name="Configuration Issues",
        description="Configuration file, environment variable, or setting issues",
        patterns=("configuration", "config", "environment variable", "setting", "property"),
        severity=Severity.MEDIUM,
        common_causes=("Missing configuration", "Incorrect environment variables",
                       "Configuration file errors", "Environment-specific settings"),
        suggested_solutions=("Review configuration files", "Validate environment variables",
                             "Add configuration validation", "Use configuration management tools"),
        auto_fix_available=True,
    ),
)

UNKNOWN_CATEGORY = FailureCategory(
    id=UNKNOWN_CATEGORY_ID,
    name="Unknown Issue",
    description="Uncategorized failure",
    patterns=(),
    severity=Severity.MEDIUM,
    common_causes=("Unknown cause",),
    suggested_solutions=("Manual investigation required",),
    auto_fix_available=False,
)

_AUTO_FIX_SCRIPTS = {
    "timeout": """
# Timeout Fix Script
#!/bin/bash
echo "Applying timeout fixes..."

# Increase timeout thresholds
sed -i 's/timeout=300/timeout=600/g' config/*.yml

# Optimize test performance
echo "Optimizing test performance..."
# Add parallel test execution
echo "parallel: true" >> test-config.yml

echo "Timeout fixes applied successfully."
""",
    "memory": """
# Memory Fix Script
#!/bin/bash
echo "Applying memory fixes..."

# Increase memory allocation
export JAVA_OPTS="-Xmx4g -Xms2g"
export NODE_OPTIONS="--max-old-space-size=4096"

# Clean up memory
echo "Cleaning up memory..."
sync && echo 3 > /proc/sys/vm/drop_caches

echo "Memory fixes applied successfully."
""",
    "network": """
# Network Fix Script
#!/bin/bash
echo "Applying network fixes..."

# Check network connectivity
ping -c 4 8.8.8.8

# Flush DNS cache
echo "Flushing DNS cache..."
sudo systemd-resolve --flush-caches

# Restart network services
echo "Restarting network services..."
sudo systemctl restart NetworkManager

echo "Network fixes applied successfully."
""",
    "dependency": """
# Dependency Fix Script
#!/bin/bash
echo "Applying dependency fixes..."

# Update dependencies
echo "Updating dependencies..."
npm update || yarn upgrade || pip install --upgrade

# Clean package cache
echo "Cleaning package cache..."
npm cache clean --force || yarn cache clean || pip cache purge

# Reinstall dependencies
echo "Reinstalling dependencies..."
npm ci || yarn install --frozen-lockfile || pip install -r requirements.txt

echo "Dependency fixes applied successfully."
""",
}


# ---------------------------------------------------------------------------
# Analyzer
# ---------------------------------------------------------------------------


def _search_text(failure_reason: str, logs: list[str]) -> str:
    return f"{failure_reason} {' '.join(logs)}".lower()


def parse_failures(failures_json: str) -> list[FailureAnalysis]:
    """Decode a client-supplied JSON list of analyses.

    Raises MalformedInputError for invalid JSON or records missing the fields
    an analysis needs; nothing is coerced or skipped.
    """
    try:
        data = json.loads(failures_json)
    except json.JSONDecodeError as exc:
        raise MalformedInputError(f"Invalid failures JSON: {exc}") from exc
    if not isinstance(data, list):
        raise MalformedInputError("Failures JSON must be a list of analyses")
    try:
        return [FailureAnalysis.from_dict(item) for item in data]
    except (KeyError, TypeError, ValueError, AttributeError) as exc:
        raise MalformedInputError(f"Invalid failure analysis record: {exc!r}") from exc


class FailureAnalyzer:
    def __init__(self, categories: tuple[FailureCategory, ...] = CATEGORIES):
        self.categories = categories

    def categorize_failure(self, failure_reason: str,
                           logs: list[str] | None = None) -> FailureCategory | None:
        text = _search_text(failure_reason, logs or [])
        for category in self.categories:
            for pattern in category.patterns:
                if pattern.lower() in text:
                    return category
        return None

    def analyze_failure(
        self,
        pipeline_id: str,
        failure_reason: str,
        logs: list[str] | None = None,
        affected_stages: list[str] | None = None,
        historical_failures: list[FailureAnalysis] | None = None,
    ) -> FailureAnalysis:
        logs = list(logs or [])
        category = self.categorize_failure(failure_reason, logs) or UNKNOWN_CATEGORY

        similar = [
            f for f in historical_failures or []
            if f.category.id == category.id and f.pipeline_id != pipeline_id
        ]

        return FailureAnalysis(
            pipeline_id=pipeline_id,
            failure_reason=failure_reason,
            category=category,
            confidence=self._calculate_confidence(failure_reason, logs, category),
            timestamp=utcnow(),
            logs=logs,
            affected_stages=list(affected_stages or []),
            similar_failures=similar,
        )

    @staticmethod
    def _calculate_confidence(failure_reason: str, logs: list[str],
                              category: FailureCategory) -> float:
        if not category.patterns:
            return 0.0
        text = _search_text(failure_reason, logs)
        matched = sum(1 for p in category.patterns if p.lower() in text)
        base = min(matched / len(category.patterns), 1.0)
        bonus = 0.0 if category.id == UNKNOWN_CATEGORY_ID else SPECIFICITY_BONUS
        return min(base + bonus, 1.0)

    # -----------------------------------------------------------------------
    # Aggregation
    # -----------------------------------------------------------------------

    def generate_failure_stats(self, failures: list[FailureAnalysis]) -> dict:
        total = len(failures)

        by_category: dict[str, dict] = {}
        for category_id, count in Counter(f.category.id for f in failures).items():
            members = [f for f in failures if f.category.id == category_id]
            by_category[category_id] = {
                "count": count,
                "percentage": round_half_up(count / total * 100),
                "avgResolutionTime": _average(self._resolution_times(members)),
            }

        by_pipeline: dict[str, dict] = {}
        for pipeline_id, count in Counter(f.pipeline_id for f in failures).items():
            members = [f for f in failures if f.pipeline_id == pipeline_id]
            by_pipeline[pipeline_id] = {
                "count": count,
                "failureRate": round_half_up(count / total * 100),
                "lastFailure": to_iso(max(f.timestamp for f in members)),
            }

        pattern_counts: Counter[str] = Counter()
        for f in failures:
            pattern_counts.update(f.category.patterns)
        # Counter.most_common keeps first-seen order among equal counts.
        top_patterns = []
        for pattern, count in pattern_counts.most_common(TOP_PATTERN_LIMIT):
            owner = next(f.category.name for f in failures if pattern in f.category.patterns)
            top_patterns.append({"pattern": pattern, "count": count, "category": owner})

        times = self._resolution_times(failures)
        if times:
            resolution_stats = {
                "average": _average(times),
                # Single middle element at floor(n/2), even for even-length lists.
                "median": round_half_up(sorted(times)[len(times) // 2]),
                "fastest": min(times),
                "slowest": max(times),
            }
        else:
            resolution_stats = {"average": 0, "median": 0, "fastest": 0, "slowest": 0}

        return {
            "totalFailures": total,
            "failuresByCategory": by_category,
            "failuresByPipeline": by_pipeline,
            "topFailurePatterns": top_patterns,
            "resolutionTimeStats": resolution_stats,
        }

    @staticmethod
    def _resolution_times(failures: list[FailureAnalysis]) -> list[int]:
        times = [RESOLUTION_MINUTES.get(f.category.severity, 30) for f in failures]
        return [t for t in times if t > 0]

    # -----------------------------------------------------------------------
    # Suggestions
    # -----------------------------------------------------------------------

    def get_suggested_actions(self, analysis: FailureAnalysis) -> list[str]:
        actions = list(analysis.category.suggested_solutions)
        if analysis.confidence > 0.8:
            actions.append("High confidence in categorization - consider automating fix")
        elif analysis.confidence < 0.5:
            actions.append("Low confidence - manual investigation recommended")
        if len(analysis.similar_failures) > RECURRING_THRESHOLD:
            actions.append("Recurring issue detected - consider root cause analysis")
        return actions

    def get_auto_fix_script(self, analysis: FailureAnalysis) -> str | None:
        """Return the static fix script for the category.  Never executed here."""
        if not analysis.category.auto_fix_available:
            return None
        return _AUTO_FIX_SCRIPTS.get(analysis.category.id)


def strip_similar(analysis: FailureAnalysis) -> FailureAnalysis:
    """Copy of *analysis* without similarity links, for use as history."""
    return replace(analysis, similar_failures=[])


def _average(values: list[int]) -> int:
    return round_half_up(sum(values) / len(values)) if values else 0
