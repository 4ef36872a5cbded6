from __future__ import annotations

import asyncio
import time
from typing import Callable

from loguru import logger

from app.agents.findings import FindingCollector
from app.agents.gap_analyzer import GapAnalyzer
from app.agents.synthesizer import Synthesizer
from app.config import settings
from app.models.events import ActivityKind, ActivityStatus, SSEEvent
from app.models.research import Finding, ResearchResult, ResearchRun
from app.services import logger as log_service
from app.services import streaming
from app.services.progress import ProgressEmitter
from app.services.prompt_store import render_prompt
from app.tools import web_utils
from app.tools.firecrawl import FirecrawlClient


class DeepResearchController:
    """Bounded-time, depth-limited research loop.

    Each iteration: search -> concurrent extraction -> gap analysis. The loop
    stops on max depth, the time budget (checked only at the top of an
    iteration), the failure ceiling, or when the analyzer says it is done.
    Synthesis always follows, whatever the exit path.
    """

    def __init__(
        self,
        *,
        web: FirecrawlClient,
        analyzer: GapAnalyzer,
        synthesizer: Synthesizer,
        emitter: ProgressEmitter,
        time_budget: float | None = None,
        max_failed_attempts: int | None = None,
        max_parallel_extract: int | None = None,
        top_results: int | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.web = web
        self.analyzer = analyzer
        self.synthesizer = synthesizer
        self.emitter = emitter
        self.time_budget = float(
            settings.research_time_budget_seconds if time_budget is None else time_budget
        )
        self.max_failed_attempts = max(
            int(max_failed_attempts or settings.research_max_failed_attempts), 1
        )
        self.max_parallel_extract = max(
            int(max_parallel_extract or settings.research_max_parallel_extract), 1
        )
        self.top_results = max(int(top_results or settings.research_top_results), 1)
        self._clock = clock

    def _emit(self, run: ResearchRun, event: SSEEvent) -> None:
        if run.caller_gone:
            return
        try:
            self.emitter.emit(event)
        except Exception as exc:
            # Bookkeeping carries on; external calls stop at the next check.
            logger.info(f"Progress consumer unavailable, winding down research: {exc}")
            run.caller_gone = True

    def _activity(
        self,
        run: ResearchRun,
        kind: ActivityKind,
        status: ActivityStatus,
        message: str,
    ) -> None:
        if status is ActivityStatus.COMPLETE:
            run.completed_steps += 1
        log_service.log_research_step(run.topic, run.depth, kind.value, status.value, message)
        self._emit(
            run,
            streaming.activity_delta(
                kind,
                status,
                message,
                depth=run.depth,
                completed_steps=run.completed_steps,
                total_steps=run.total_expected_steps,
            ),
        )

    def _record_failure(self, run: ResearchRun) -> bool:
        """Count a failed stage; True when the loop must stop."""
        run.failed_attempts += 1
        return run.failure_ceiling_reached

    async def run(self, topic: str, max_depth: int | None = None) -> ResearchResult:
        depth_limit = max(int(settings.research_max_depth if max_depth is None else max_depth), 0)
        run = ResearchRun(
            topic=topic,
            max_depth=depth_limit,
            started_at=self._clock(),
            time_budget=self.time_budget,
            max_failed_attempts=self.max_failed_attempts,
        )
        collector = FindingCollector()
        logger.info(f"Deep research started: topic={topic[:100]!r} max_depth={depth_limit}")

        try:
            await self._iterate(run, collector)
        except Exception as exc:
            logger.exception(f"Research loop interrupted at depth {run.depth}: {exc}")
            self._activity(
                run,
                ActivityKind.THOUGHT,
                ActivityStatus.ERROR,
                f"Research interrupted: {exc}",
            )

        return await self._finalize(run, collector, topic)

    async def _iterate(self, run: ResearchRun, collector: FindingCollector) -> None:
        while run.depth < run.max_depth:
            if run.caller_gone:
                break
            if run.elapsed(self._clock()) >= run.time_budget:
                logger.info(f"Research time budget exhausted after {run.depth} iterations")
                break

            run.depth += 1
            self._emit(
                run,
                streaming.depth_delta(
                    run.depth,
                    run.max_depth,
                    completed_steps=run.completed_steps,
                    total_steps=run.total_expected_steps,
                ),
            )

            query = run.next_search_topic or run.topic
            self._activity(run, ActivityKind.SEARCH, ActivityStatus.PENDING, f'Searching for "{query}"')
            search = await self.web.search(query)
            if not search.success:
                self._activity(
                    run, ActivityKind.SEARCH, ActivityStatus.ERROR, f'Search failed for "{query}"'
                )
                if self._record_failure(run):
                    break
                continue

            hits = search.data or []
            self._activity(
                run,
                ActivityKind.SEARCH,
                ActivityStatus.COMPLETE,
                f"Found {len(hits)} relevant results",
            )
            for hit in hits:
                self._emit(run, streaming.source_delta(hit.url, hit.title, hit.description))

            urls = web_utils.dedupe_urls(
                [run.url_to_search, *(hit.url for hit in hits[: self.top_results])]
            )
            collector.add(await self._extract_from_urls(run, urls))
            if run.caller_gone:
                break

            self._activity(run, ActivityKind.ANALYZE, ActivityStatus.PENDING, "Analyzing findings")
            analysis = await self.analyzer.analyze(
                run.topic,
                collector.findings,
                run.time_remaining(self._clock()),
            )
            if analysis is None:
                run.next_search_topic = ""
                run.url_to_search = ""
                self._activity(
                    run, ActivityKind.ANALYZE, ActivityStatus.ERROR, "Failed to analyze findings"
                )
                if self._record_failure(run):
                    break
                continue

            run.next_search_topic = analysis.next_search_topic
            run.url_to_search = analysis.url_to_search
            run.summaries.append(analysis.summary)
            self._activity(run, ActivityKind.ANALYZE, ActivityStatus.COMPLETE, analysis.summary)

            if not analysis.should_continue or not analysis.gaps:
                break
            run.gaps = list(analysis.gaps)
            run.topic = run.gaps.pop(0)

    async def _extract_from_urls(self, run: ResearchRun, urls: list[str]) -> list[Finding]:
        if not urls:
            return []
        semaphore = asyncio.Semaphore(self.max_parallel_extract)
        prompt = render_prompt("research.extract_prompt", topic=run.topic)

        async def run_one(url: str) -> list[Finding]:
            async with semaphore:
                if run.caller_gone:
                    return []
                host = web_utils.extract_hostname(url)
                self._activity(run, ActivityKind.EXTRACT, ActivityStatus.PENDING, f"Analyzing {host}")
                result = await self.web.extract([url], prompt)
                if not result.success:
                    self._activity(
                        run, ActivityKind.EXTRACT, ActivityStatus.ERROR, f"Could not extract from {host}"
                    )
                    return []
                self._activity(
                    run, ActivityKind.EXTRACT, ActivityStatus.COMPLETE, f"Extracted from {host}"
                )
                return [Finding(text=item.text, source=url) for item in result.data or []]

        outcomes = await asyncio.gather(*(run_one(url) for url in urls), return_exceptions=True)
        findings: list[Finding] = []
        for url, outcome in zip(urls, outcomes):
            if isinstance(outcome, BaseException):
                logger.warning(f"Extraction task for {url} failed: {outcome}")
                continue
            findings.extend(outcome)
        return findings

    async def _finalize(
        self,
        run: ResearchRun,
        collector: FindingCollector,
        original_topic: str,
    ) -> ResearchResult:
        findings = list(collector.findings)

        if run.caller_gone:
            logger.info("Skipping synthesis: progress consumer disconnected")
            self._emit(run, streaming.finish(""))
            return ResearchResult(
                success=False,
                findings=findings,
                completed_steps=run.completed_steps,
                total_steps=run.total_expected_steps,
                error="caller disconnected",
                remaining_gaps=list(run.gaps),
            )

        self._activity(run, ActivityKind.SYNTHESIS, ActivityStatus.PENDING, "Preparing final analysis")
        try:
            report = await self.synthesizer.synthesize(original_topic, findings, run.summaries)
        except Exception as exc:
            logger.error(f"Synthesis failed with {len(findings)} findings: {exc}")
            self._activity(run, ActivityKind.THOUGHT, ActivityStatus.ERROR, f"Research failed: {exc}")
            sources = {f.source for f in findings}
            self._emit(
                run,
                streaming.finish(
                    f"Research could not be synthesized ({exc}). "
                    f"Collected {len(findings)} findings from {len(sources)} sources."
                ),
            )
            return ResearchResult(
                success=False,
                findings=findings,
                completed_steps=run.completed_steps,
                total_steps=run.total_expected_steps,
                error=str(exc),
                remaining_gaps=list(run.gaps),
            )

        self._activity(run, ActivityKind.SYNTHESIS, ActivityStatus.COMPLETE, "Research completed")
        self._emit(run, streaming.finish(report))
        logger.info(
            f"Deep research complete: depth={run.depth} findings={len(findings)} "
            f"steps={run.completed_steps}/{run.total_expected_steps}"
        )
        return ResearchResult(
            success=True,
            findings=findings,
            completed_steps=run.completed_steps,
            total_steps=run.total_expected_steps,
            report=report,
            remaining_gaps=list(run.gaps),
        )
