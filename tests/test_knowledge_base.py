"""Tests for jenkins_monitor.knowledge_base: lookup, edits, patterns, export/import."""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

import pytest

from jenkins_monitor.errors import MalformedInputError, ValidationError
from jenkins_monitor.knowledge_base import FailurePattern, KnowledgeBase, RiskLevel
from jenkins_monitor.models import Severity


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

BASE_TIME = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


class _Clock:
    def __init__(self, now: datetime = BASE_TIME):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock() -> _Clock:
    return _Clock()


@pytest.fixture
def kb(clock) -> KnowledgeBase:
    return KnowledgeBase(clock=clock)


NEW_SOLUTION = {
    "title": "Flaky Selenium Grid",
    "description": "Stabilize browser tests against a shared grid",
    "category": "test-failure",
    "severity": "low",
    "problemPatterns": ["selenium", "webdriver"],
    "solutions": [
        {"id": "retry", "title": "Retry flaky specs", "description": "Add a retry",
         "risk": "low", "required": True},
    ],
    "successRate": 70,
    "tags": ["e2e"],
}


# ---------------------------------------------------------------------------
# Default catalog and lookup
# ---------------------------------------------------------------------------


class TestLookup:
    def test_default_catalog(self, kb):
        ids = {s.id for s in kb.get_all_solutions()}
        assert ids == {"timeout_fix", "memory_fix", "dependency_fix", "network_fix"}
        assert {p.id for p in kb.get_patterns()} == {
            "timeout_pattern", "memory_pattern", "dependency_pattern", "network_pattern",
        }

    def test_defaults_stamped_with_clock(self, kb):
        assert all(s.last_updated == BASE_TIME for s in kb.get_all_solutions())

    def test_default_steps_parsed(self, kb):
        solution = kb.get_solution("timeout_fix")
        assert solution.solutions[0].id == "increase_timeout"
        assert solution.solutions[0].risk is RiskLevel.LOW
        assert solution.prevention[0].monitoring is not None

    def test_find_solutions_sorted_by_success_rate(self, kb):
        result = kb.find_solutions("Connection timed out: network unreachable")
        assert [s.id for s in result] == ["timeout_fix", "network_fix"]

    def test_find_solutions_uses_logs(self, kb):
        result = kb.find_solutions("Build failed", ["java.lang.OutOfMemoryError: heap space"])
        assert [s.id for s in result] == ["memory_fix"]

    def test_find_solutions_none(self, kb):
        assert kb.find_solutions("all good") == []

    def test_all_solutions_ordered_by_severity_then_success(self, kb):
        ordered = [s.id for s in kb.get_all_solutions()]
        assert ordered == ["memory_fix", "dependency_fix", "timeout_fix", "network_fix"]

    def test_by_category_and_severity(self, kb):
        assert [s.id for s in kb.get_solutions_by_category("memory")] == ["memory_fix"]
        assert {s.id for s in kb.get_solutions_by_severity("medium")} == {
            "timeout_fix", "dependency_fix", "network_fix",
        }
        assert kb.get_solutions_by_severity("critical") == []

    def test_search_fields(self, kb):
        assert [s.id for s in kb.search_solutions("JVM")] == ["memory_fix"]
        assert [s.id for s in kb.search_solutions("unable to resolve")] == ["dependency_fix"]
        assert kb.search_solutions("kubernetes operator") == []

    def test_auto_fix_script(self, kb):
        script = kb.get_auto_fix_script("Pipeline timed out")
        assert script.startswith("#!/bin/bash")
        assert kb.get_auto_fix_script("nothing matches") is None


# ---------------------------------------------------------------------------
# Administrative edits
# ---------------------------------------------------------------------------


class TestEdits:
    def test_add_solution(self, kb):
        solution = kb.add_solution(NEW_SOLUTION)
        assert solution.id.startswith("sol_")
        assert solution.version == 1
        assert solution.last_updated == BASE_TIME
        assert solution.severity is Severity.LOW
        assert kb.get_solution(solution.id) is solution
        assert kb.find_solutions("WebDriver session lost") == [solution]

    def test_add_solution_ignores_client_id_and_version(self, kb):
        solution = kb.add_solution({**NEW_SOLUTION, "id": "mine", "version": 9})
        assert solution.id != "mine"
        assert solution.version == 1

    def test_add_solution_missing_fields(self, kb):
        with pytest.raises(ValidationError) as exc_info:
            kb.add_solution({"title": "Only a title"})
        assert exc_info.value.missing == ["description", "category", "severity"]

    def test_add_solution_bad_severity(self, kb):
        with pytest.raises(ValidationError):
            kb.add_solution({**NEW_SOLUTION, "severity": "catastrophic"})

    def test_update_bumps_version_and_timestamp(self, kb, clock):
        current = kb.get_solution("timeout_fix").version
        clock.now = BASE_TIME + timedelta(hours=1)
        updated = kb.update_solution("timeout_fix", {"successRate": 95, "version": 40})
        assert updated.success_rate == 95
        assert updated.version == current + 1
        assert updated.last_updated == BASE_TIME + timedelta(hours=1)
        assert updated.title == "Pipeline Timeout Issues"
        assert kb.get_solution("timeout_fix") is updated

    def test_update_keeps_id(self, kb):
        updated = kb.update_solution("timeout_fix", {"id": "hijack"})
        assert updated.id == "timeout_fix"
        assert kb.get_solution("hijack") is None

    def test_update_unknown(self, kb):
        assert kb.update_solution("missing", {"title": "x"}) is None

    def test_delete(self, kb):
        assert kb.delete_solution("network_fix") is True
        assert kb.get_solution("network_fix") is None
        assert kb.delete_solution("network_fix") is False


# ---------------------------------------------------------------------------
# Failure patterns
# ---------------------------------------------------------------------------


class TestPatterns:
    def test_recognize(self, kb):
        pattern = kb.recognize_failure_pattern("ERROR: DNS lookup failed")
        assert pattern.id == "network_pattern"
        assert pattern.solution_id == "network_fix"

    def test_recognize_none(self, kb):
        assert kb.recognize_failure_pattern("all good") is None

    def test_invalid_regex_skipped(self, clock):
        now = clock()
        kb = KnowledgeBase(
            solutions=[],
            patterns=[
                FailurePattern("bad", "Bad", "", "(unclosed", "x", Severity.LOW, 0, now),
                FailurePattern("good", "Good", "", "segfault", "x", Severity.HIGH, 0, now),
            ],
            clock=clock,
        )
        assert kb.recognize_failure_pattern("Segfault in worker").id == "good"

    def test_add_pattern(self, kb):
        pattern = kb.add_failure_pattern({"name": "Segfault", "regex": "SIGSEGV",
                                          "category": "crash", "severity": "critical"})
        assert pattern.id.startswith("pat_")
        assert pattern.last_seen == BASE_TIME
        assert pattern.frequency == 0
        assert kb.recognize_failure_pattern("received SIGSEGV") is pattern

    def test_add_pattern_missing_fields(self, kb):
        with pytest.raises(ValidationError) as exc_info:
            kb.add_failure_pattern({"name": "No regex"})
        assert exc_info.value.missing == ["regex"]

    def test_update_frequency(self, kb, clock):
        clock.now = BASE_TIME + timedelta(days=1)
        assert kb.update_failure_pattern_frequency("memory_pattern") is True
        pattern = next(p for p in kb.get_patterns() if p.id == "memory_pattern")
        assert pattern.frequency == 9
        assert pattern.last_seen == BASE_TIME + timedelta(days=1)
        assert kb.update_failure_pattern_frequency("missing") is False


# ---------------------------------------------------------------------------
# Stats, export, import
# ---------------------------------------------------------------------------


class TestStats:
    def test_default_stats(self, kb):
        stats = kb.get_stats()
        assert stats["totalSolutions"] == 4
        assert stats["solutionsByCategory"] == {
            "timeout": 1, "memory": 1, "dependency": 1, "network": 1,
        }
        assert stats["solutionsBySeverity"] == {"medium": 3, "high": 1}
        # (30 + 45 + 60 + 20) / 4 = 38.75
        assert stats["averageFixTime"] == 39
        assert stats["topSuccessRate"] == 92
        assert stats["verifiedSolutions"] == 4
        assert stats["autoFixAvailable"] == 4
        assert [p["id"] for p in stats["commonPatterns"]] == [
            "timeout_pattern", "dependency_pattern", "memory_pattern", "network_pattern",
        ]

    def test_empty_stats(self, clock):
        stats = KnowledgeBase(solutions=[], patterns=[], clock=clock).get_stats()
        assert stats["totalSolutions"] == 0
        assert stats["averageFixTime"] == 0
        assert stats["topSuccessRate"] == 0


class TestExportImport:
    def test_export_document(self, kb):
        data = json.loads(kb.export_solutions())
        assert set(data) == {"solutions", "patterns", "exportedAt"}
        assert data["exportedAt"] == "2024-03-01T12:00:00.000Z"
        assert len(data["solutions"]) == 4

    def test_import_restores_catalog(self, kb, clock):
        kb.add_solution(NEW_SOLUTION)
        exported = kb.export_solutions()

        fresh = KnowledgeBase(solutions=[], patterns=[], clock=clock)
        fresh.import_solutions(exported)
        assert [s.to_dict() for s in fresh.get_all_solutions()] == [
            s.to_dict() for s in kb.get_all_solutions()
        ]
        assert [p.to_dict() for p in fresh.get_patterns()] == [
            p.to_dict() for p in kb.get_patterns()
        ]

    def test_import_only_patterns_keeps_solutions(self, kb):
        kb.import_solutions(json.dumps({"patterns": []}))
        assert kb.get_patterns() == []
        assert len(kb.get_all_solutions()) == 4

    def test_import_invalid_json_leaves_catalog(self, kb):
        with pytest.raises(MalformedInputError):
            kb.import_solutions("{broken")
        assert len(kb.get_all_solutions()) == 4

    def test_import_bad_entry_leaves_catalog(self, kb):
        with pytest.raises(MalformedInputError):
            kb.import_solutions(json.dumps({"solutions": [{"title": "no id"}]}))
        assert len(kb.get_all_solutions()) == 4

    def test_import_not_an_object(self, kb):
        with pytest.raises(MalformedInputError):
            kb.import_solutions("[]")
