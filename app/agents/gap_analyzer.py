from __future__ import annotations

import json
from typing import Any, Sequence

from loguru import logger

from app.agents.findings import format_findings
from app.llm_client import LanguageModel
from app.models.research import Analysis, Finding, ParsedAnalysis, ParseFailure
from app.services.prompt_store import render_prompt


def _extract_json_object(raw_text: str) -> dict[str, Any]:
    text = raw_text.strip()
    if text.startswith("```"):
        parts = text.split("```")
        if len(parts) >= 2:
            text = parts[1]
        if text.startswith("json"):
            text = text[4:]
        text = text.strip()
    start = text.find("{")
    end = text.rfind("}")
    if start < 0 or end <= start:
        raise json.JSONDecodeError("object not found", text, 0)
    parsed = json.loads(text[start : end + 1])
    if not isinstance(parsed, dict):
        raise json.JSONDecodeError("not an object", text, 0)
    return parsed


def _string_list(value: Any) -> list[str] | None:
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        return None
    return [v.strip() for v in value if v.strip()]


def _optional_string(value: Any) -> str | None:
    if value is None:
        return ""
    if not isinstance(value, str):
        return None
    return value.strip()


def parse_analysis(text: str) -> ParsedAnalysis | ParseFailure:
    """Validate the model's analysis JSON. Never raises."""
    if not text or not text.strip():
        return ParseFailure("empty response", text or "")
    try:
        payload = _extract_json_object(text)
    except (json.JSONDecodeError, ValueError) as exc:
        return ParseFailure(f"invalid JSON: {exc}", text)

    body = payload.get("analysis", payload)
    if not isinstance(body, dict):
        return ParseFailure("analysis is not an object", text)

    summary = body.get("summary")
    if not isinstance(summary, str):
        return ParseFailure("summary must be a string", text)
    should_continue = body.get("shouldContinue")
    if not isinstance(should_continue, bool):
        return ParseFailure("shouldContinue must be a boolean", text)
    gaps = _string_list(body.get("gaps"))
    if gaps is None:
        return ParseFailure("gaps must be a list of strings", text)
    next_steps = _string_list(body.get("nextSteps", []))
    if next_steps is None:
        return ParseFailure("nextSteps must be a list of strings", text)
    next_search_topic = _optional_string(body.get("nextSearchTopic"))
    url_to_search = _optional_string(body.get("urlToSearch"))
    if next_search_topic is None or url_to_search is None:
        return ParseFailure("nextSearchTopic/urlToSearch must be strings", text)

    return ParsedAnalysis(
        Analysis(
            summary=summary,
            gaps=gaps,
            next_steps=next_steps,
            should_continue=should_continue,
            next_search_topic=next_search_topic,
            url_to_search=url_to_search,
        )
    )


class GapAnalyzer:
    """Summarizes findings and plans the next research iteration."""

    def __init__(self, model: LanguageModel):
        self.model = model

    @staticmethod
    def build_prompt(topic: str, findings: Sequence[Finding], time_remaining: float) -> str:
        minutes_remaining = round(max(time_remaining, 0.0) / 60, 1)
        return render_prompt(
            "research.analyze_prompt",
            topic=topic,
            minutes_remaining=minutes_remaining,
            findings=format_findings(findings),
        )

    async def analyze(
        self,
        topic: str,
        findings: Sequence[Finding],
        time_remaining: float,
    ) -> Analysis | None:
        prompt = self.build_prompt(topic, findings, time_remaining)
        try:
            text = await self.model.generate_text(prompt, caller="research.analyze")
        except Exception as exc:
            logger.warning(f"Gap analysis call failed for {topic[:80]!r}: {exc}")
            return None

        outcome = parse_analysis(text)
        if isinstance(outcome, ParseFailure):
            logger.warning(f"Gap analysis unparsable ({outcome.reason}): {outcome.raw_text[:200]!r}")
            return None
        return outcome.analysis
