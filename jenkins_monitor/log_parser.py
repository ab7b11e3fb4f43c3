"""
Turn raw Jenkins console output into classifier input.

extract_failure_context():
  1. Scan every line for failure signatures, classified by severity tier
     (CRITICAL > ERROR > WARNING).
  2. Resolve the nearest pipeline stage for each hit via a single-pass stage
     index (bisect lookup).
  3. Deduplicate hits by fingerprint (tier + exception token + stage + message
     prefix), counting repeats.
  4. Return the unique lines in tier order (capped), the stages that produced
     CRITICAL/ERROR hits, and the most severe line as the failure reason.
"""

from __future__ import annotations

import re
from bisect import bisect_right
from dataclasses import dataclass, field

MAX_ERROR_LINES = 50
MAX_REASON_CHARS = 300
TAIL_LINES = 250

_CRITICAL_PATTERN = re.compile(
    r"\bFATAL\b|SIGKILL|SIGSEGV|OutOfMemoryError|core dumped|BUILD FAILURE"
    r"|FAILURE:\s+Build failed",
    re.IGNORECASE,
)

_ERROR_PATTERN = re.compile(
    r"\bERROR\b|Exception\b|Traceback|npm ERR!|\bFAILED\b|"
    r"AssertionError|NullPointerException|\bkilled\b|"
    r"Caused by:|panic:",
    re.IGNORECASE,
)

_WARNING_PATTERN = re.compile(
    r"\bWARN(?:ING)?\b|\bDEPRECATED\b|\bUNSTABLE\b",
    re.IGNORECASE,
)

_STAGE_PATTERN = re.compile(
    r"\[Pipeline\]\s*\{\s*\((.+?)\)"
    r"|^\[INFO\]\s*---\s*(.+?)\s*---"
    r'|Stage\s+"(.+?)"'
    r"|\[Stage:\s*(.+?)\]"
    r"|Entering stage\s+(.+)",
    re.MULTILINE,
)

_EXCEPTION_TOKEN_RE = re.compile(
    r"(\w+(?:Error|Exception|Failure))"
    r"|(\bFATAL\b)"
    r"|(\bSIGKILL\b|\bSIGSEGV\b)"
    r"|(\bBUILD FAILURE\b)"
    r"|(npm ERR!)"
    r"|(\bTraceback\b)",
    re.IGNORECASE,
)

TIER_CRITICAL = "CRITICAL"
TIER_ERROR = "ERROR"
TIER_WARNING = "WARNING"

_TIER_ORDER = (TIER_CRITICAL, TIER_ERROR, TIER_WARNING)


@dataclass
class LogHit:
    tier: str
    line_no: int
    text: str
    stage: str
    repeat_count: int = 1

    @property
    def fingerprint(self) -> str:
        return f"{self.tier}|{_extract_exception_token(self.text)}|{self.stage}|{self.text[:100]}"


@dataclass
class LogExtract:
    error_lines: list[str] = field(default_factory=list)
    affected_stages: list[str] = field(default_factory=list)
    failure_reason: str = ""
    total_lines: int = 0
    duplicates: int = 0


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _build_stage_index(lines: list[str]) -> list[tuple[int, str]]:
    """Scan once and return sorted (line_idx, stage_name) pairs."""
    index: list[tuple[int, str]] = []
    for i, line in enumerate(lines):
        m = _STAGE_PATTERN.search(line)
        if m:
            name = next((g for g in m.groups() if g), None)
            if name:
                index.append((i, name.strip()))
    return index


def _resolve_stage(stage_index: list[tuple[int, str]], line_idx: int) -> str:
    if not stage_index:
        return ""
    pos = bisect_right([s[0] for s in stage_index], line_idx) - 1
    return stage_index[pos][1] if pos >= 0 else ""


def _classify_line(line: str) -> str | None:
    if _CRITICAL_PATTERN.search(line):
        return TIER_CRITICAL
    if _ERROR_PATTERN.search(line):
        return TIER_ERROR
    if _WARNING_PATTERN.search(line):
        return TIER_WARNING
    return None


def _normalize_line(line: str) -> str:
    """Strip ANSI codes, leading timestamps and surrounding whitespace."""
    line = re.sub(r"\x1b\[[0-9;]*m", "", line)
    line = re.sub(r"^\d{4}[-/]\d{2}[-/]\d{2}[\sT]\d{2}:\d{2}:\d{2}[.,]?\d*Z?\s*", "", line)
    line = re.sub(r"^\[\d{2}/\d{2}/\d{2}\s+\d{2}:\d{2}:\d{2}\]\s*", "", line)
    return line.strip()


def _extract_exception_token(line: str) -> str:
    m = _EXCEPTION_TOKEN_RE.search(line)
    if m:
        return next(g for g in m.groups() if g)
    return line[:60]


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def scan(text: str) -> list[LogHit]:
    """Return deduplicated hits in log order."""
    lines = text.splitlines()
    stage_index = _build_stage_index(lines)

    seen: dict[str, LogHit] = {}
    hits: list[LogHit] = []
    for i, raw in enumerate(lines):
        tier = _classify_line(raw)
        if tier is None:
            continue
        hit = LogHit(tier=tier, line_no=i + 1, text=_normalize_line(raw),
                     stage=_resolve_stage(stage_index, i))
        fp = hit.fingerprint
        if fp in seen:
            seen[fp].repeat_count += 1
            continue
        seen[fp] = hit
        hits.append(hit)
    return hits


def extract_failure_context(text: str, max_lines: int = MAX_ERROR_LINES) -> LogExtract:
    """Summarize a console log as (error lines, affected stages, failure reason).

    Lines come out CRITICAL first, then ERROR, then WARNING, each tier in log
    order, capped at *max_lines*.  Only CRITICAL/ERROR hits mark a stage as
    affected.
    """
    lines = text.splitlines()
    hits = scan(text)
    if not hits:
        return LogExtract(total_lines=len(lines))

    ordered = [h for tier in _TIER_ORDER for h in hits if h.tier == tier]

    stages: list[str] = []
    for h in hits:
        if h.tier != TIER_WARNING and h.stage and h.stage not in stages:
            stages.append(h.stage)

    return LogExtract(
        error_lines=[h.text for h in ordered[:max_lines]],
        affected_stages=stages,
        failure_reason=ordered[0].text[:MAX_REASON_CHARS],
        total_lines=len(lines),
        duplicates=sum(h.repeat_count - 1 for h in hits),
    )


def truncate_tail(text: str, max_lines: int = TAIL_LINES) -> str:
    """Return the last ``max_lines`` lines of text with a truncation notice."""
    lines = text.splitlines()
    if len(lines) <= max_lines:
        return text
    notice = f"[Log truncated: showing last {max_lines} of {len(lines)} lines]\n"
    return notice + "\n".join(lines[-max_lines:])
