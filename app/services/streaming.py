from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from app.models.events import ActivityKind, ActivityStatus, EventType, SSEEvent


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def source_delta(url: str, title: str, description: str) -> SSEEvent:
    """Emit a source discovered by a research search."""
    return SSEEvent(
        event=EventType.SOURCE_DELTA,
        data={"url": url, "title": title, "description": description},
    )


def activity_delta(
    kind: ActivityKind,
    status: ActivityStatus,
    message: str,
    *,
    depth: int,
    completed_steps: int,
    total_steps: int,
    timestamp: str | None = None,
) -> SSEEvent:
    """Emit the pending/complete/error state of one unit of research work."""
    return SSEEvent(
        event=EventType.ACTIVITY_DELTA,
        data={
            "type": kind.value,
            "status": status.value,
            "message": message,
            "timestamp": timestamp or _timestamp(),
            "depth": depth,
            "completedSteps": completed_steps,
            "totalSteps": total_steps,
        },
    )


def depth_delta(
    current: int,
    maximum: int,
    *,
    completed_steps: int,
    total_steps: int,
) -> SSEEvent:
    return SSEEvent(
        event=EventType.DEPTH_DELTA,
        data={
            "current": current,
            "max": maximum,
            "completedSteps": completed_steps,
            "totalSteps": total_steps,
        },
    )


def finish(report: str) -> SSEEvent:
    return SSEEvent(event=EventType.FINISH, data=report)


def user_message_id(message_id: str) -> SSEEvent:
    return SSEEvent(event=EventType.USER_MESSAGE_ID, data=message_id)


def text_delta(chunk: str) -> SSEEvent:
    return SSEEvent(event=EventType.TEXT_DELTA, data=chunk)


def tool_call(call_id: str, name: str, arguments: dict[str, Any]) -> SSEEvent:
    return SSEEvent(
        event=EventType.TOOL_CALL,
        data={"toolCallId": call_id, "toolName": name, "args": arguments},
    )


def tool_result(call_id: str, name: str, result: dict[str, Any]) -> SSEEvent:
    return SSEEvent(
        event=EventType.TOOL_RESULT,
        data={"toolCallId": call_id, "toolName": name, "result": result},
    )


def message_annotation(message_id: str) -> SSEEvent:
    return SSEEvent(
        event=EventType.MESSAGE_ANNOTATION,
        data={"messageIdFromServer": message_id},
    )


def error(message: str, source: str | None = None) -> SSEEvent:
    data: dict[str, Any] = {"message": message}
    if source:
        data["source"] = source
    return SSEEvent(event=EventType.ERROR, data=data)
