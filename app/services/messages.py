"""Helpers for moving chat messages between the client, the model and the store."""
from __future__ import annotations

import json
from typing import Any
from uuid import uuid4

CHAT_ROLES = ("system", "user", "assistant")


def generate_uuid() -> str:
    return str(uuid4())


def _content_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for part in content:
            if isinstance(part, dict) and part.get("type") == "text":
                parts.append(str(part.get("text", "")))
            elif isinstance(part, str):
                parts.append(part)
        return "\n".join(p for p in parts if p)
    return "" if content is None else str(content)


def convert_to_core_messages(messages: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Reduce UI messages to plain role/content pairs the model accepts."""
    core: list[dict[str, Any]] = []
    for message in messages:
        role = message.get("role")
        if role not in CHAT_ROLES:
            continue
        text = _content_text(message.get("content"))
        if not text and role != "assistant":
            continue
        core.append({"role": role, "content": text})
    return core


def get_most_recent_user_message(messages: list[dict[str, Any]]) -> dict[str, Any] | None:
    for message in reversed(messages):
        if message.get("role") == "user":
            return message
    return None


def sanitize_response_messages(messages: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Drop tool calls that never got a result and assistant turns left empty."""
    answered = {m.get("tool_call_id") for m in messages if m.get("role") == "tool"}
    sanitized: list[dict[str, Any]] = []
    for message in messages:
        if message.get("role") != "assistant":
            sanitized.append(message)
            continue
        tool_calls = [tc for tc in message.get("tool_calls") or [] if tc.get("id") in answered]
        cleaned = {"role": "assistant", "content": message.get("content") or ""}
        if tool_calls:
            cleaned["tool_calls"] = tool_calls
        if cleaned["content"] or tool_calls:
            sanitized.append(cleaned)
    return sanitized


def message_content_for_storage(message: dict[str, Any]) -> Any:
    """Content column payload: plain text, or the structured tool parts."""
    if message.get("role") == "tool":
        content = message.get("content", "")
        try:
            result = json.loads(content) if isinstance(content, str) else content
        except json.JSONDecodeError:
            result = content
        return [{"type": "tool-result", "toolCallId": message.get("tool_call_id"), "result": result}]
    if message.get("tool_calls"):
        parts: list[dict[str, Any]] = []
        if message.get("content"):
            parts.append({"type": "text", "text": message["content"]})
        for call in message["tool_calls"]:
            function = call.get("function", {})
            parts.append(
                {
                    "type": "tool-call",
                    "toolCallId": call.get("id"),
                    "toolName": function.get("name"),
                    "args": json.loads(function.get("arguments") or "{}"),
                }
            )
        return parts
    return message.get("content", "")
