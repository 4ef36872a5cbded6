from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from app.agents.chat_agent import ChatAgent, generate_title, tool_definitions
from app.llm_client import StreamChunk, ToolCall, Usage
from app.models.events import EventType
from app.models.research import Finding, ResearchResult
from app.services.progress import CollectingEmitter
from app.tools.firecrawl import SearchHit, ToolResult


class ScriptedModel:
    """Replays one list of chunks per model turn."""

    model_id = "deepseek-chat"

    def __init__(self, turns):
        self._turns = list(turns)
        self.seen_messages = []

    async def stream_text(self, *, system, messages, tools=None, max_tokens=None):
        self.seen_messages.append(list(messages))
        for chunk in self._turns.pop(0):
            yield chunk


def _finish(reason="stop"):
    return StreamChunk(type="finish", finish_reason=reason, usage=Usage(10, 5))


def _web():
    web = MagicMock()
    web.search = AsyncMock(
        return_value=ToolResult(success=True, data=[SearchHit(url="https://a.com", title="A", description="d")])
    )
    web.extract = AsyncMock(return_value=ToolResult(success=False, error="blocked"))
    web.scrape = AsyncMock(return_value=ToolResult(success=True, data="# Page"))
    return web


def _agent(model, emitter, web, **kwargs):
    return ChatAgent(model, MagicMock(), emitter=emitter, web=web, **kwargs)


def test_tool_definitions_use_function_format():
    defs = tool_definitions(("search", "deepResearch"))

    assert [d["function"]["name"] for d in defs] == ["search", "deepResearch"]
    assert defs[0]["type"] == "function"
    assert defs[1]["function"]["parameters"]["required"] == ["topic"]


@pytest.mark.asyncio
async def test_plain_answer_streams_text_and_stops():
    model = ScriptedModel([[StreamChunk(type="text", text="Hi "), StreamChunk(type="text", text="there"), _finish()]])
    emitter = CollectingEmitter()

    with patch("app.agents.chat_agent.log_service.log_llm_call") as log_call:
        messages = await _agent(model, emitter, _web()).run([{"role": "user", "content": "hello"}])

    assert messages == [{"role": "assistant", "content": "Hi there"}]
    assert [e.data for e in emitter.events] == ["Hi ", "there"]
    assert log_call.call_args.kwargs["caller"] == "chat.stream"


@pytest.mark.asyncio
async def test_tool_call_round_trip():
    call = ToolCall(id="call_1", name="search", arguments={"query": "tides"})
    model = ScriptedModel(
        [
            [StreamChunk(type="tool_call", tool_call=call), _finish("tool_calls")],
            [StreamChunk(type="text", text="Found it."), _finish()],
        ]
    )
    emitter = CollectingEmitter()
    web = _web()

    messages = await _agent(model, emitter, web).run([{"role": "user", "content": "tides?"}])

    web.search.assert_awaited_once_with("tides", max_results=5)
    assert [m["role"] for m in messages] == ["assistant", "tool", "assistant"]
    assert messages[0]["tool_calls"][0]["function"]["name"] == "search"
    assert json.loads(messages[1]["content"])["success"] is True
    assert messages[2]["content"] == "Found it."
    assert [e.event for e in emitter.events] == [
        EventType.TOOL_CALL,
        EventType.TOOL_RESULT,
        EventType.TEXT_DELTA,
    ]
    # The second turn sees the tool result.
    assert model.seen_messages[1][-1]["role"] == "tool"


@pytest.mark.asyncio
async def test_step_limit_bounds_tool_loop():
    call = ToolCall(id="c", name="scrape", arguments={"url": "https://a.com"})
    model = ScriptedModel([[StreamChunk(type="tool_call", tool_call=call), _finish()]] * 5)

    messages = await _agent(model, CollectingEmitter(), _web(), max_steps=2).run(
        [{"role": "user", "content": "go"}]
    )

    assert [m["role"] for m in messages] == ["assistant", "tool", "assistant", "tool"]


@pytest.mark.asyncio
async def test_extract_failure_is_reported_to_model():
    agent = _agent(ScriptedModel([]), CollectingEmitter(), _web())

    result = await agent.handle_tool_call("extract", {"urls": ["https://a.com"], "prompt": "p"})

    assert result == {"success": False, "error": "Failed to extract data: blocked"}


@pytest.mark.asyncio
async def test_deep_research_unavailable_unless_enabled():
    agent = _agent(ScriptedModel([]), CollectingEmitter(), _web())

    result = await agent.handle_tool_call("deepResearch", {"topic": "x"})

    assert result["success"] is False
    assert "not available" in result["error"]


@pytest.mark.asyncio
async def test_deep_research_tool_runs_controller():
    agent = _agent(ScriptedModel([]), CollectingEmitter(), _web(), deep_research=True)
    research = ResearchResult(
        success=True,
        findings=[Finding(text="t", source="https://a.com")],
        completed_steps=6,
        total_steps=10,
        report="# Report",
    )

    with patch("app.agents.chat_agent.DeepResearchController") as controller_cls:
        controller_cls.return_value.run = AsyncMock(return_value=research)
        result = await agent.handle_tool_call("deepResearch", {"topic": "batteries", "maxDepth": 2})

    controller_cls.return_value.run.assert_awaited_once_with("batteries", max_depth=2)
    assert controller_cls.call_args.kwargs["emitter"] is agent.emitter
    assert result["data"]["analysis"] == "# Report"
    assert result["data"]["completedSteps"] == 6


@pytest.mark.asyncio
async def test_tool_exception_becomes_error_result():
    web = _web()
    web.scrape = AsyncMock(side_effect=RuntimeError("socket closed"))
    agent = _agent(ScriptedModel([]), CollectingEmitter(), web)

    result = await agent._execute(ToolCall(id="c", name="scrape", arguments={"url": "https://a.com"}))

    assert result == {"success": False, "error": "Error: socket closed"}


@pytest.mark.asyncio
async def test_generate_title_strips_quotes_and_colons():
    model = MagicMock()
    model.generate_text = AsyncMock(return_value='"Tides: how they work"')

    assert await generate_title(model, "how do tides work") == "Tides how they work"


@pytest.mark.asyncio
async def test_generate_title_falls_back_to_message():
    model = MagicMock()
    model.generate_text = AsyncMock(side_effect=RuntimeError("down"))

    assert await generate_title(model, "how   do tides work") == "how do tides work"


def test_deep_research_schema_only_takes_topic():
    schema = tool_definitions(("deepResearch",))[0]["function"]["parameters"]

    assert list(schema["properties"]) == ["topic"]


@pytest.mark.asyncio
async def test_deep_research_depth_is_capped():
    agent = _agent(ScriptedModel([]), CollectingEmitter(), _web(), deep_research=True)
    research = ResearchResult(success=True, findings=[], completed_steps=0, total_steps=35)

    with patch("app.agents.chat_agent.DeepResearchController") as controller_cls:
        controller_cls.return_value.run = AsyncMock(return_value=research)
        await agent.handle_tool_call("deepResearch", {"topic": "batteries", "maxDepth": 500})

    controller_cls.return_value.run.assert_awaited_once_with("batteries", max_depth=7)


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


@pytest.mark.asyncio
async def test_deep_research_budget_shrinks_to_remaining_duration():
    clock = FakeClock()
    call = ToolCall(id="r", name="deepResearch", arguments={"topic": "batteries"})

    class AdvancingModel(ScriptedModel):
        async def stream_text(self, **kwargs):
            clock.now += 250.0
            async for chunk in super().stream_text(**kwargs):
                yield chunk

    model = AdvancingModel(
        [
            [StreamChunk(type="tool_call", tool_call=call), _finish("tool_calls")],
            [StreamChunk(type="text", text="Done."), _finish()],
        ]
    )
    agent = _agent(model, CollectingEmitter(), _web(), deep_research=True, max_duration=300, clock=clock)
    research = ResearchResult(success=True, findings=[], completed_steps=0, total_steps=35)

    with patch("app.agents.chat_agent.DeepResearchController") as controller_cls:
        controller_cls.return_value.run = AsyncMock(return_value=research)
        await agent.run([{"role": "user", "content": "research batteries"}])

    assert controller_cls.call_args.kwargs["time_budget"] == pytest.approx(50.0)


@pytest.mark.asyncio
async def test_no_model_turn_starts_after_deadline():
    clock = FakeClock()
    call = ToolCall(id="c", name="scrape", arguments={"url": "https://a.com"})

    class SlowWeb:
        async def scrape(self, url):
            clock.now += 301.0
            return ToolResult(success=True, data="# Page")

    model = ScriptedModel([[StreamChunk(type="tool_call", tool_call=call), _finish()]] * 3)
    agent = _agent(model, CollectingEmitter(), SlowWeb(), max_duration=300, clock=clock)

    messages = await agent.run([{"role": "user", "content": "go"}])

    assert [m["role"] for m in messages] == ["assistant", "tool"]
    assert len(model.seen_messages) == 1
