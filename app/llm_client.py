"""Model resolution and the two model capabilities the app needs.

Every provider (DeepSeek, OpenRouter, OpenAI) is reached through the
OpenAI-compatible SDK; only the base URL and key differ.
"""
from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from typing import Any, AsyncIterator

from loguru import logger

from app.config import settings
from app.services import logger as log_service

# Reasoning models that can drive analysis and synthesis
VALID_REASONING_MODELS = (
    "o1",
    "o1-mini",
    "o3-mini",
    "deepseek-reasoner",
    "gpt-4o",
)

JSON_SUPPORTED_MODELS = (
    "gpt-4o",
    "gpt-4o-mini",
    "deepseek-chat",
)

DEEPSEEK_MODELS = ("deepseek-reasoner", "deepseek-chat", "deepseek-coder")
OPENROUTER_MODELS = ("o1", "o1-mini", "o3-mini")
OPENAI_MODELS = ("gpt-4o", "gpt-4o-mini")
FALLBACK_REASONING_MODEL = "o1-mini"
FALLBACK_CHAT_MODEL = "deepseek-chat"


class ModelConfigurationError(RuntimeError):
    """The requested model cannot be used with the configured credentials."""


@dataclass
class Usage:
    input_tokens: int = 0
    output_tokens: int = 0


@dataclass
class ToolCall:
    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass
class StreamChunk:
    type: str  # text | tool_call | finish
    text: str = ""
    tool_call: ToolCall | None = None
    finish_reason: str | None = None
    usage: Usage | None = None


def supports_json_output(model_id: str) -> bool:
    return model_id in JSON_SUPPORTED_MODELS


def get_reasoning_model(model_id: str) -> str:
    """Pick the model used for analysis and synthesis calls."""
    if model_id in VALID_REASONING_MODELS:
        return model_id

    configured = settings.reasoning_model
    if configured not in VALID_REASONING_MODELS:
        logger.warning(
            f'Invalid REASONING_MODEL "{configured}", falling back to {FALLBACK_REASONING_MODEL}'
        )
        return FALLBACK_REASONING_MODEL

    if not settings.bypass_json_validation and not supports_json_output(configured):
        logger.warning(
            f"Model {configured} does not support JSON schema. "
            "Set BYPASS_JSON_VALIDATION=true to override"
        )
    return configured


def _has_key(value: str) -> bool:
    return bool(value) and value != "****"


class LanguageModel:
    """A resolved model: provider client plus model id."""

    def __init__(self, model_id: str, client: Any, *, provider: str):
        self.model_id = model_id
        self.provider = provider
        self._client = client

    def __repr__(self) -> str:
        return f"LanguageModel({self.provider}:{self.model_id})"

    @property
    def is_o_series(self) -> bool:
        return self.model_id.startswith(("o1", "o3"))

    def _limits(self, max_tokens: int | None) -> dict[str, Any]:
        kwargs: dict[str, Any] = {}
        if self.is_o_series:
            # o-series rejects temperature and uses max_completion_tokens.
            if max_tokens:
                kwargs["max_completion_tokens"] = max_tokens
            return kwargs
        if max_tokens:
            kwargs["max_tokens"] = max_tokens
        return kwargs

    async def generate_text(
        self,
        prompt: str,
        *,
        max_tokens: int | None = None,
        caller: str = "generate_text",
    ) -> str:
        t0 = time.monotonic()
        try:
            response = await self._client.chat.completions.create(
                model=self.model_id,
                messages=[{"role": "user", "content": prompt}],
                **self._limits(max_tokens),
            )
        except Exception as exc:
            log_service.log_llm_call(
                model=self.model_id,
                caller=caller,
                duration_ms=int((time.monotonic() - t0) * 1000),
                error=str(exc),
            )
            raise

        usage = getattr(response, "usage", None)
        log_service.log_llm_call(
            model=self.model_id,
            caller=caller,
            input_tokens=getattr(usage, "prompt_tokens", 0) or 0,
            output_tokens=getattr(usage, "completion_tokens", 0) or 0,
            duration_ms=int((time.monotonic() - t0) * 1000),
        )
        choices = getattr(response, "choices", None) or []
        if not choices:
            return ""
        return getattr(choices[0].message, "content", None) or ""

    async def stream_text(
        self,
        *,
        system: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        max_tokens: int | None = None,
    ) -> AsyncIterator[StreamChunk]:
        """Stream text deltas, then any tool calls, then one finish chunk."""
        kwargs: dict[str, Any] = {
            "model": self.model_id,
            "messages": [{"role": "system", "content": system}, *messages],
            "stream": True,
            "stream_options": {"include_usage": True},
            **self._limits(max_tokens),
        }
        if tools:
            kwargs["tools"] = tools
            kwargs["tool_choice"] = "auto"

        stream = await self._client.chat.completions.create(**kwargs)
        pending: dict[int, dict[str, str]] = {}
        usage = Usage()
        finish_reason: str | None = None

        async for chunk in stream:
            chunk_usage = getattr(chunk, "usage", None)
            if chunk_usage:
                usage = Usage(
                    input_tokens=getattr(chunk_usage, "prompt_tokens", 0) or 0,
                    output_tokens=getattr(chunk_usage, "completion_tokens", 0) or 0,
                )
            choices = getattr(chunk, "choices", None) or []
            if not choices:
                continue
            choice = choices[0]
            finish_reason = getattr(choice, "finish_reason", None) or finish_reason
            delta = getattr(choice, "delta", None)
            if not delta:
                continue
            text = getattr(delta, "content", None)
            if text:
                yield StreamChunk(type="text", text=text)
            for tc in getattr(delta, "tool_calls", None) or []:
                slot = pending.setdefault(tc.index, {"id": "", "name": "", "arguments": ""})
                if getattr(tc, "id", None):
                    slot["id"] = tc.id
                function = getattr(tc, "function", None)
                if function is not None:
                    slot["name"] += getattr(function, "name", None) or ""
                    slot["arguments"] += getattr(function, "arguments", None) or ""

        for index in sorted(pending):
            slot = pending[index]
            try:
                arguments = json.loads(slot["arguments"] or "{}")
            except json.JSONDecodeError:
                arguments = {}
            yield StreamChunk(
                type="tool_call",
                tool_call=ToolCall(
                    id=slot["id"] or f"call_{index}",
                    name=slot["name"],
                    arguments=arguments if isinstance(arguments, dict) else {},
                ),
            )

        yield StreamChunk(type="finish", finish_reason=finish_reason, usage=usage)


_clients: dict[str, Any] = {}


def get_client(provider: str) -> Any:
    """Get or create the AsyncOpenAI client for a provider."""
    if provider in _clients:
        return _clients[provider]

    from openai import AsyncOpenAI

    if provider == "deepseek":
        client = AsyncOpenAI(api_key=settings.deepseek_api_key, base_url=settings.deepseek_base_url)
    elif provider == "openrouter":
        client = AsyncOpenAI(
            api_key=settings.openrouter_api_key,
            base_url=settings.openrouter_base_url.strip() or "https://openrouter.ai/api/v1",
        )
    elif provider == "openai":
        client = AsyncOpenAI(api_key=settings.openai_api_key, base_url=settings.openai_base_url)
    else:
        raise ModelConfigurationError(f"Unknown provider: {provider}")
    _clients[provider] = client
    return client


def resolve_model(api_identifier: str, for_reasoning: bool = False) -> LanguageModel:
    """Map a logical model id to a callable model."""
    model_id = get_reasoning_model(api_identifier) if for_reasoning else api_identifier

    if model_id in DEEPSEEK_MODELS:
        logger.debug(f"Using DeepSeek model: {model_id}")
        return LanguageModel(model_id, get_client("deepseek"), provider="deepseek")

    if model_id in OPENROUTER_MODELS:
        if not _has_key(settings.openrouter_api_key):
            raise ModelConfigurationError(
                f"OpenRouter API key is missing, required for model: {model_id}"
            )
        logger.debug(f"Using OpenRouter model: {model_id}")
        return LanguageModel(model_id, get_client("openrouter"), provider="openrouter")

    if model_id in OPENAI_MODELS:
        if not _has_key(settings.openai_api_key):
            raise ModelConfigurationError(
                f"OpenAI API key is missing, required for model: {model_id}"
            )
        logger.debug(f"Using OpenAI model: {model_id}")
        return LanguageModel(model_id, get_client("openai"), provider="openai")

    logger.warning(f"Unknown model requested: {model_id}, defaulting to {FALLBACK_CHAT_MODEL}")
    return LanguageModel(FALLBACK_CHAT_MODEL, get_client("deepseek"), provider="deepseek")
