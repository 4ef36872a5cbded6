from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from app import llm_client
from app.llm_client import (
    LanguageModel,
    ModelConfigurationError,
    get_reasoning_model,
    resolve_model,
)


@pytest.fixture
def fake_get_client():
    with patch("app.llm_client.get_client", side_effect=lambda provider: f"client:{provider}") as mock:
        yield mock


def test_resolve_deepseek_model(fake_get_client):
    model = resolve_model("deepseek-chat")

    assert model.provider == "deepseek"
    assert model.model_id == "deepseek-chat"


def test_resolve_openrouter_model_requires_key(fake_get_client):
    with patch("app.llm_client.settings") as mock_settings:
        mock_settings.openrouter_api_key = ""
        with pytest.raises(ModelConfigurationError, match="OpenRouter"):
            resolve_model("o1")


def test_resolve_openrouter_model_with_key(fake_get_client):
    with patch("app.llm_client.settings") as mock_settings:
        mock_settings.openrouter_api_key = "or-key"
        model = resolve_model("o3-mini")

    assert model.provider == "openrouter"


def test_resolve_openai_placeholder_key_is_rejected(fake_get_client):
    with patch("app.llm_client.settings") as mock_settings:
        mock_settings.openai_api_key = "****"
        with pytest.raises(ModelConfigurationError, match="OpenAI"):
            resolve_model("gpt-4o")


def test_resolve_unknown_model_falls_back_to_deepseek_chat(fake_get_client):
    model = resolve_model("mystery-model")

    assert model.model_id == "deepseek-chat"
    assert model.provider == "deepseek"


def test_reasoning_model_passthrough():
    assert get_reasoning_model("deepseek-reasoner") == "deepseek-reasoner"


def test_reasoning_model_falls_back_when_configured_invalid():
    with patch("app.llm_client.settings") as mock_settings:
        mock_settings.reasoning_model = "not-a-model"
        assert get_reasoning_model("gpt-4o-mini") == "o1-mini"


def test_reasoning_model_uses_configured_default():
    with patch("app.llm_client.settings") as mock_settings:
        mock_settings.reasoning_model = "o3-mini"
        mock_settings.bypass_json_validation = True
        assert get_reasoning_model("gpt-4o-mini") == "o3-mini"


def _completion_client(content="hello"):
    response = SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
        usage=SimpleNamespace(prompt_tokens=11, completion_tokens=7),
    )
    client = MagicMock()
    client.chat.completions.create = AsyncMock(return_value=response)
    return client


@pytest.mark.asyncio
async def test_generate_text_uses_max_tokens_for_chat_models():
    client = _completion_client()
    model = LanguageModel("deepseek-chat", client, provider="deepseek")

    with patch("app.llm_client.log_service.log_llm_call") as log_call:
        text = await model.generate_text("hi", max_tokens=100, caller="test")

    assert text == "hello"
    kwargs = client.chat.completions.create.await_args.kwargs
    assert kwargs["max_tokens"] == 100
    assert "max_completion_tokens" not in kwargs
    assert log_call.call_args.kwargs["input_tokens"] == 11
    assert log_call.call_args.kwargs["output_tokens"] == 7


@pytest.mark.asyncio
async def test_generate_text_uses_max_completion_tokens_for_o_series():
    client = _completion_client()
    model = LanguageModel("o1-mini", client, provider="openrouter")

    await model.generate_text("hi", max_tokens=16000)

    kwargs = client.chat.completions.create.await_args.kwargs
    assert kwargs["max_completion_tokens"] == 16000
    assert "max_tokens" not in kwargs
    assert "temperature" not in kwargs


@pytest.mark.asyncio
async def test_generate_text_logs_and_reraises_errors():
    client = MagicMock()
    client.chat.completions.create = AsyncMock(side_effect=RuntimeError("503"))
    model = LanguageModel("deepseek-chat", client, provider="deepseek")

    with patch("app.llm_client.log_service.log_llm_call") as log_call:
        with pytest.raises(RuntimeError):
            await model.generate_text("hi")

    assert log_call.call_args.kwargs["error"] == "503"


def _chunk(content=None, tool_calls=None, finish_reason=None, usage=None):
    choices = []
    if content is not None or tool_calls is not None or finish_reason is not None:
        choices = [
            SimpleNamespace(
                delta=SimpleNamespace(content=content, tool_calls=tool_calls),
                finish_reason=finish_reason,
            )
        ]
    return SimpleNamespace(choices=choices, usage=usage)


def _tool_delta(index, id=None, name=None, arguments=None):
    return SimpleNamespace(index=index, id=id, function=SimpleNamespace(name=name, arguments=arguments))


@pytest.mark.asyncio
async def test_stream_text_yields_text_then_tool_calls_then_finish():
    async def stream():
        yield _chunk(content="Let me ")
        yield _chunk(content="look.")
        yield _chunk(tool_calls=[_tool_delta(0, id="call_a", name="search", arguments='{"que')])
        yield _chunk(tool_calls=[_tool_delta(0, arguments='ry": "tides"}')])
        yield _chunk(finish_reason="tool_calls")
        yield _chunk(usage=SimpleNamespace(prompt_tokens=20, completion_tokens=5))

    client = MagicMock()
    client.chat.completions.create = AsyncMock(return_value=stream())
    model = LanguageModel("deepseek-chat", client, provider="deepseek")

    chunks = [
        c
        async for c in model.stream_text(
            system="sys",
            messages=[{"role": "user", "content": "tides?"}],
            tools=[{"type": "function", "function": {"name": "search"}}],
        )
    ]

    assert [c.type for c in chunks] == ["text", "text", "tool_call", "finish"]
    assert chunks[2].tool_call.id == "call_a"
    assert chunks[2].tool_call.arguments == {"query": "tides"}
    assert chunks[3].finish_reason == "tool_calls"
    assert chunks[3].usage.input_tokens == 20
    kwargs = client.chat.completions.create.await_args.kwargs
    assert kwargs["messages"][0] == {"role": "system", "content": "sys"}
    assert kwargs["tool_choice"] == "auto"


def test_get_client_rejects_unknown_provider():
    with pytest.raises(ModelConfigurationError):
        llm_client.get_client("nowhere")
