from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Query
from fastapi.responses import Response
from pydantic import ValidationError
from sse_starlette.sse import EventSourceResponse
from starlette.requests import Request

from app.agents.chat_agent import ChatAgent, generate_title
from app.api.deps import find_model, is_authorized
from app.config import settings
from app.llm_client import LanguageModel, ModelConfigurationError, resolve_model
from app.models.schemas import ChatRequest
from app.services import database as db
from app.services import logger as log_service
from app.services import streaming
from app.services.messages import (
    convert_to_core_messages,
    generate_uuid,
    get_most_recent_user_message,
    message_content_for_storage,
    sanitize_response_messages,
)
from app.services.progress import CallerDisconnected, QueueProgressEmitter
from app.services.rate_limit import client_identifier, rate_limiter

router = APIRouter(prefix="/api/chat", tags=["chat"])

# Producers outlive a disconnected SSE response until they wind down.
_background_tasks: set[asyncio.Task] = set()


async def _persist_response(
    chat_id: str,
    response_messages: list[dict[str, Any]],
    emitter: QueueProgressEmitter,
) -> None:
    try:
        rows = []
        for message in sanitize_response_messages(response_messages):
            message_id = generate_uuid()
            if message["role"] == "assistant" and not emitter.disconnected:
                emitter.emit(streaming.message_annotation(message_id))
            rows.append(
                {
                    "id": message_id,
                    "chatId": chat_id,
                    "role": message["role"],
                    "content": message_content_for_storage(message),
                    "createdAt": datetime.now(timezone.utc),
                }
            )
        await db.append_messages(rows)
    except Exception as e:
        log_service.log_event(
            event_type="db_error",
            message="Failed to save chat",
            error=str(e),
            chat_id=chat_id,
        )


async def _produce(
    agent: ChatAgent,
    chat_id: str,
    messages: list[dict[str, Any]],
    user_message_id: str,
    emitter: QueueProgressEmitter,
) -> None:
    try:
        emitter.emit(streaming.user_message_id(user_message_id))
        response_messages = await agent.run(messages)
        await _persist_response(chat_id, response_messages, emitter)
    except CallerDisconnected:
        log_service.log_event(
            event_type="stream_closed",
            message="Client disconnected before the response completed",
            chat_id=chat_id,
        )
    except Exception as e:
        log_service.log_event(
            event_type="stream_error",
            message="Unhandled error in chat stream",
            error=str(e),
            chat_id=chat_id,
        )
        if not emitter.disconnected:
            emitter.emit(streaming.error("Chat stream failed unexpectedly."))
    finally:
        emitter.close()


@router.post("")
async def chat(request: Request):
    if not is_authorized(request):
        return Response("Unauthorized", status_code=401)

    try:
        payload = ChatRequest.model_validate(await request.json())
    except (ValueError, ValidationError):
        return Response("Invalid request body", status_code=400)

    identifier = client_identifier(request)
    try:
        limit = await rate_limiter.limit(identifier)
        if not limit.success:
            return Response("Too many requests", status_code=429)
    except Exception as e:
        # A broken limiter must not take the endpoint down with it.
        log_service.log_event(
            event_type="rate_limit_error",
            message="Rate limiter unavailable, admitting request",
            error=str(e),
        )

    model_entry = find_model(payload.model_id)
    reasoning_entry = find_model(payload.reasoning_model_id, reasoning=True)
    if not model_entry or not reasoning_entry:
        return Response("Model not found", status_code=404)

    core_messages = convert_to_core_messages([m.model_dump() for m in payload.messages])
    user_message = get_most_recent_user_message(core_messages)
    if not user_message:
        return Response("No user message found", status_code=400)

    try:
        model: LanguageModel = resolve_model(model_entry["apiIdentifier"])
        reasoning_model = resolve_model(reasoning_entry["apiIdentifier"], for_reasoning=True)
    except ModelConfigurationError as e:
        log_service.log_event(event_type="model_error", message=str(e))
        return Response(str(e), status_code=500)

    existing = await db.get_chat(payload.id)
    if not existing:
        title = await generate_title(model, user_message["content"])
        owner_id = await db.get_or_create_anonymous_user()
        await db.create_chat(payload.id, owner_id, title)

    user_message_id = generate_uuid()
    await db.append_messages(
        [
            {
                **user_message,
                "id": user_message_id,
                "createdAt": datetime.now(timezone.utc),
                "chatId": payload.id,
            }
        ]
    )

    emitter = QueueProgressEmitter()
    agent = ChatAgent(
        model,
        reasoning_model,
        emitter=emitter,
        deep_research=payload.experimental_deep_research,
        max_duration=settings.max_duration,
    )

    async def event_generator():
        task = asyncio.create_task(
            _produce(agent, payload.id, core_messages, user_message_id, emitter)
        )
        _background_tasks.add(task)
        task.add_done_callback(_background_tasks.discard)
        try:
            async for event in emitter.events():
                yield event.to_message()
        finally:
            if not task.done():
                emitter.disconnect()

    return EventSourceResponse(event_generator())


@router.delete("")
async def delete_chat(request: Request, chat_id: str | None = Query(default=None, alias="id")):
    if not is_authorized(request):
        return Response("Unauthorized", status_code=401)
    if not chat_id:
        return Response("Not Found", status_code=404)

    try:
        await db.delete_chat(chat_id)
    except Exception as e:
        log_service.log_event(
            event_type="db_error",
            message="Failed to delete chat",
            error=str(e),
            chat_id=chat_id,
        )
        return Response("An error occurred while processing your request", status_code=500)
    return Response("Chat deleted", status_code=200)
