from __future__ import annotations

from typing import Sequence

from app.agents.findings import format_findings
from app.config import settings
from app.llm_client import LanguageModel
from app.models.research import Finding
from app.services.prompt_store import render_prompt


class SynthesisError(RuntimeError):
    pass


class Synthesizer:
    """Writes the final long-form report in a single model call."""

    def __init__(self, model: LanguageModel, *, max_tokens: int | None = None):
        self.model = model
        self.max_tokens = max_tokens or settings.synthesis_max_tokens

    @staticmethod
    def build_prompt(topic: str, findings: Sequence[Finding], summaries: Sequence[str]) -> str:
        return render_prompt(
            "research.synthesis_prompt",
            topic=topic,
            findings=format_findings(findings),
            summaries="\n".join(f"[Summary]: {s}" for s in summaries),
        )

    async def synthesize(
        self,
        topic: str,
        findings: Sequence[Finding],
        summaries: Sequence[str],
    ) -> str:
        prompt = self.build_prompt(topic, findings, summaries)
        try:
            report = await self.model.generate_text(
                prompt,
                max_tokens=self.max_tokens,
                caller="research.synthesis",
            )
        except Exception as exc:
            raise SynthesisError(str(exc) or exc.__class__.__name__) from exc
        if not report.strip():
            raise SynthesisError("model returned an empty report")
        return report
