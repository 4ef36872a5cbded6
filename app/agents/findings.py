from __future__ import annotations

from typing import Iterable

from app.models.research import Finding


def format_findings(findings: Iterable[Finding]) -> str:
    return "\n".join(f"[From {f.source}]: {f.text}" for f in findings)


class FindingCollector:
    """Append-only store of findings for a single research run."""

    def __init__(self) -> None:
        self._findings: list[Finding] = []

    def add(self, findings: Iterable[Finding]) -> int:
        added = 0
        for finding in findings:
            self._findings.append(finding)
            added += 1
        return added

    @property
    def findings(self) -> tuple[Finding, ...]:
        return tuple(self._findings)
