from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True, slots=True)
class Finding:
    """An extracted fact and the URL it came from."""

    text: str
    source: str

    def to_dict(self) -> dict[str, str]:
        return {"text": self.text, "source": self.source}


@dataclass(slots=True)
class Analysis:
    summary: str
    gaps: list[str]
    next_steps: list[str]
    should_continue: bool
    next_search_topic: str = ""
    url_to_search: str = ""


@dataclass(frozen=True, slots=True)
class ParsedAnalysis:
    analysis: Analysis


@dataclass(frozen=True, slots=True)
class ParseFailure:
    reason: str
    raw_text: str = ""


@dataclass(slots=True)
class ResearchRun:
    """Mutable state of one research run, owned by the loop controller."""

    topic: str
    max_depth: int
    started_at: float
    time_budget: float
    max_failed_attempts: int = 3
    depth: int = 0
    failed_attempts: int = 0
    completed_steps: int = 0
    total_expected_steps: int = 0
    next_search_topic: str = ""
    url_to_search: str = ""
    gaps: list[str] = field(default_factory=list)
    summaries: list[str] = field(default_factory=list)
    caller_gone: bool = False

    def __post_init__(self) -> None:
        if not self.total_expected_steps:
            self.total_expected_steps = self.max_depth * 5

    @property
    def failure_ceiling_reached(self) -> bool:
        return self.failed_attempts >= self.max_failed_attempts

    def elapsed(self, now: float) -> float:
        return now - self.started_at

    def time_remaining(self, now: float) -> float:
        return self.time_budget - self.elapsed(now)


@dataclass(slots=True)
class ResearchResult:
    success: bool
    findings: list[Finding]
    completed_steps: int
    total_steps: int
    report: str = ""
    error: str | None = None
    remaining_gaps: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "findings": [f.to_dict() for f in self.findings],
            "completedSteps": self.completed_steps,
            "totalSteps": self.total_steps,
        }
        if self.success:
            data["analysis"] = self.report
            return {"success": True, "data": data}
        return {"success": False, "error": self.error, "data": data}
