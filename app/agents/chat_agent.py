from __future__ import annotations

import json
import time
from typing import Any, Callable

from loguru import logger

from app.agents.deep_research import DeepResearchController
from app.agents.gap_analyzer import GapAnalyzer
from app.agents.synthesizer import Synthesizer
from app.config import settings
from app.llm_client import LanguageModel, ToolCall
from app.services import logger as log_service
from app.services import streaming
from app.services.progress import ProgressEmitter
from app.services.prompt_store import render_prompt
from app.tools.firecrawl import FirecrawlClient

FIRECRAWL_TOOLS = ("search", "extract", "scrape")
ALL_TOOLS = (*FIRECRAWL_TOOLS, "deepResearch")

TOOL_SCHEMAS: dict[str, dict[str, Any]] = {
    "search": {
        "description": (
            "Search for web pages. Normally you should call the extract tool after this one "
            "to get a specific data point if search doesn't return the exact data you need."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "query": {"type": "string", "description": "Search query to find relevant web pages"},
                "maxResults": {
                    "type": "number",
                    "description": "Maximum number of results to return (default 10)",
                },
            },
            "required": ["query"],
        },
    },
    "extract": {
        "description": (
            "Extract structured data from web pages. Use this to get whatever data you need "
            "from a URL. Any time someone needs to gather data from something, use this tool."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "urls": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Array of URLs to extract data from",
                },
                "prompt": {"type": "string", "description": "Description of what data to extract"},
            },
            "required": ["urls", "prompt"],
        },
    },
    "scrape": {
        "description": "Scrape web pages. Use this to get from a page when you have the url.",
        "parameters": {
            "type": "object",
            "properties": {"url": {"type": "string", "description": "URL to scrape"}},
            "required": ["url"],
        },
    },
    "deepResearch": {
        "description": (
            "Perform deep research on a topic using an AI agent that coordinates search, "
            "extract, and analysis tools with reasoning steps."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "topic": {"type": "string", "description": "The topic or question to research"},
            },
            "required": ["topic"],
        },
    },
}


def tool_definitions(names: tuple[str, ...]) -> list[dict[str, Any]]:
    return [
        {"type": "function", "function": {"name": name, **TOOL_SCHEMAS[name]}}
        for name in names
    ]


async def generate_title(model: LanguageModel, message: str) -> str:
    """Short title for a new chat; falls back to the message itself."""
    fallback = " ".join(message.split())[:80] or "New chat"
    try:
        title = await model.generate_text(
            render_prompt("chat.title_prompt", message=message),
            max_tokens=60,
            caller="chat.title",
        )
    except Exception as exc:
        logger.warning(f"Title generation failed, using message prefix: {exc}")
        return fallback
    title = title.strip().strip('"').strip("'").replace(":", "").strip()
    return title[:80] or fallback


class ChatAgent:
    """Streams a tool-using conversation turn.

    Text deltas, tool calls and tool results are emitted through the same
    progress emitter the deep research tool writes to, so the caller sees
    one ordered stream.

    ``max_duration`` is a soft deadline: no model turn starts after it, and a
    deep research run gets at most the time left as its budget. Work already
    running is never cancelled.
    """

    name = "chat"

    def __init__(
        self,
        model: LanguageModel,
        reasoning_model: LanguageModel,
        *,
        emitter: ProgressEmitter,
        web: FirecrawlClient | None = None,
        deep_research: bool = False,
        max_steps: int | None = None,
        max_duration: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.model = model
        self.reasoning_model = reasoning_model
        self.emitter = emitter
        self.web = web or FirecrawlClient()
        self.active_tools = ALL_TOOLS if deep_research else FIRECRAWL_TOOLS
        self.max_steps = max(int(max_steps or settings.chat_max_steps), 1)
        self.max_duration = float(max_duration or settings.max_duration)
        self._clock = clock
        self._deadline: float | None = None
        self.system_prompt = render_prompt("chat.system_prompt")

    def time_remaining(self) -> float:
        if self._deadline is None:
            return self.max_duration
        return max(self._deadline - self._clock(), 0.0)

    async def handle_tool_call(self, tool_name: str, tool_input: dict[str, Any]) -> dict[str, Any]:
        if tool_name not in self.active_tools:
            return {"success": False, "error": f"Tool {tool_name} is not available"}

        if tool_name == "search":
            result = await self.web.search(
                str(tool_input.get("query", "")),
                max_results=int(tool_input.get("maxResults") or 5),
            )
            if not result.success:
                return {"success": False, "error": f"Search failed: {result.error}"}
            return result.to_dict()

        if tool_name == "extract":
            result = await self.web.extract(
                [str(u) for u in tool_input.get("urls") or []],
                str(tool_input.get("prompt", "")),
            )
            if not result.success:
                return {"success": False, "error": f"Failed to extract data: {result.error}"}
            return result.to_dict()

        if tool_name == "scrape":
            result = await self.web.scrape(str(tool_input.get("url", "")))
            if not result.success:
                return {"success": False, "error": f"Failed to extract data: {result.error}"}
            return result.to_dict()

        controller = DeepResearchController(
            web=self.web,
            analyzer=GapAnalyzer(self.reasoning_model),
            synthesizer=Synthesizer(self.reasoning_model),
            emitter=self.emitter,
            time_budget=min(settings.research_time_budget_seconds, self.time_remaining()),
        )
        requested_depth = int(tool_input.get("maxDepth") or settings.research_max_depth)
        research = await controller.run(
            str(tool_input.get("topic", "")),
            max_depth=min(max(requested_depth, 1), settings.research_max_depth),
        )
        return research.to_dict()

    async def _execute(self, call: ToolCall) -> dict[str, Any]:
        try:
            return await self.handle_tool_call(call.name, call.arguments)
        except Exception as exc:
            logger.exception(f"Tool {call.name} raised: {exc}")
            return {"success": False, "error": f"Error: {exc}"}

    async def run(self, messages: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Run up to ``max_steps`` model turns; return the new response messages."""
        conversation = list(messages)
        response_messages: list[dict[str, Any]] = []
        tools = tool_definitions(self.active_tools)
        self._deadline = self._clock() + self.max_duration

        for step in range(self.max_steps):
            if step and self.time_remaining() <= 0:
                logger.info(f"Chat turn stopped after {step} steps: maximum duration reached")
                break
            text_parts: list[str] = []
            tool_calls: list[ToolCall] = []
            async for chunk in self.model.stream_text(
                system=self.system_prompt,
                messages=conversation,
                tools=tools,
            ):
                if chunk.type == "text":
                    text_parts.append(chunk.text)
                    self.emitter.emit(streaming.text_delta(chunk.text))
                elif chunk.type == "tool_call" and chunk.tool_call is not None:
                    tool_calls.append(chunk.tool_call)
                elif chunk.type == "finish" and chunk.usage is not None:
                    log_service.log_llm_call(
                        model=self.model.model_id,
                        caller=f"{self.name}.stream",
                        input_tokens=chunk.usage.input_tokens,
                        output_tokens=chunk.usage.output_tokens,
                    )

            assistant: dict[str, Any] = {"role": "assistant", "content": "".join(text_parts)}
            if tool_calls:
                assistant["tool_calls"] = [
                    {
                        "id": call.id,
                        "type": "function",
                        "function": {"name": call.name, "arguments": json.dumps(call.arguments)},
                    }
                    for call in tool_calls
                ]
            conversation.append(assistant)
            response_messages.append(assistant)

            if not tool_calls:
                break

            for call in tool_calls:
                self.emitter.emit(streaming.tool_call(call.id, call.name, call.arguments))
                result = await self._execute(call)
                self.emitter.emit(streaming.tool_result(call.id, call.name, result))
                tool_message = {
                    "role": "tool",
                    "tool_call_id": call.id,
                    "content": json.dumps(result),
                }
                conversation.append(tool_message)
                response_messages.append(tool_message)

        return response_messages
