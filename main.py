"""DeepResearch - command line runner.

Runs the deep research loop for one topic and prints progress as it arrives.
"""

import argparse
import asyncio

from app.agents.deep_research import DeepResearchController
from app.agents.gap_analyzer import GapAnalyzer
from app.agents.synthesizer import Synthesizer
from app.api.deps import DEFAULT_REASONING_MODEL_NAME
from app.config import settings
from app.llm_client import resolve_model
from app.models.events import SSEEvent
from app.services.progress import CollectingEmitter
from app.tools.firecrawl import FirecrawlClient


def print_event(event: SSEEvent) -> None:
    event_type = event.event.value
    data = event.data

    if event_type == "depth-delta":
        print(f"\n[*] Iteration {data.get('current')}/{data.get('max')}")

    elif event_type == "activity-delta":
        marker = {"pending": "~", "complete": "+", "error": "!"}.get(data.get("status"), "?")
        print(
            f"  [{marker}] {data.get('type')}: {data.get('message', '')[:100]}"
            f"  ({data.get('completedSteps')}/{data.get('totalSteps')})"
        )

    elif event_type == "source-delta":
        print(f"      - {data.get('title') or data.get('url')}")

    elif event_type == "finish":
        print(f"\n{'=' * 50}")
        print("REPORT:")
        print(f"{'=' * 50}")
        print(data)


async def run_research(topic: str, max_depth: int, reasoning_model_id: str) -> int:
    print(f"Research topic: {topic}")
    print("-" * 50)

    model = resolve_model(reasoning_model_id, for_reasoning=True)
    controller = DeepResearchController(
        web=FirecrawlClient(),
        analyzer=GapAnalyzer(model),
        synthesizer=Synthesizer(model),
        emitter=CollectingEmitter(on_event=print_event),
    )
    result = await controller.run(topic, max_depth=max_depth)

    print(f"\n[*] Findings: {len(result.findings)}")
    print(f"    Steps: {result.completed_steps}/{result.total_steps}")
    if not result.success:
        print(f"[!] Research failed: {result.error}")
        return 1
    return 0


def main():
    parser = argparse.ArgumentParser(description="DeepResearch command line runner")
    parser.add_argument("--topic", "-t", required=True, help="Topic or question to research")
    parser.add_argument(
        "--max-depth",
        "-d",
        type=int,
        default=settings.research_max_depth,
        help="Maximum research iterations",
    )
    parser.add_argument(
        "--reasoning-model",
        "-m",
        default=DEFAULT_REASONING_MODEL_NAME,
        help="Reasoning model used for analysis and synthesis",
    )

    args = parser.parse_args()

    raise SystemExit(asyncio.run(run_research(args.topic, args.max_depth, args.reasoning_model)))


if __name__ == "__main__":
    main()
