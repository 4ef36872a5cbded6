from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


# --- Requests ---


class ChatMessage(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str | None = None
    role: str
    content: Any = ""


class ChatRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    messages: list[ChatMessage]
    model_id: str = Field(alias="modelId")
    reasoning_model_id: str = Field(alias="reasoningModelId")
    experimental_deep_research: bool = Field(default=False, alias="experimental_deepResearch")


# --- Responses ---


class ModelInfo(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    label: str
    api_identifier: str = Field(alias="apiIdentifier")
    description: str


class ModelsResponse(BaseModel):
    models: list[ModelInfo]
    reasoning_models: list[ModelInfo]
