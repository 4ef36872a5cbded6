from __future__ import annotations

import hmac

from starlette.requests import Request

from app.config import settings

DEFAULT_MODEL_NAME = "deepseek-chat"
DEFAULT_REASONING_MODEL_NAME = "deepseek-reasoner"


def get_available_models() -> list[dict[str, str]]:
    """General chat/coding models."""
    return [
        {
            "id": "deepseek-chat",
            "label": "DeepSeek Chat",
            "apiIdentifier": "deepseek-chat",
            "description": "Advanced conversational AI model by DeepSeek",
        },
        {
            "id": "deepseek-coder",
            "label": "DeepSeek Coder",
            "apiIdentifier": "deepseek-coder",
            "description": "Specialized DeepSeek model for coding and programming tasks",
        },
        {
            "id": "gpt-4o",
            "label": "GPT-4o",
            "apiIdentifier": "gpt-4o",
            "description": "OpenAI model for complex, multi-step reasoning and generation tasks",
        },
        {
            "id": "gpt-4o-mini",
            "label": "GPT-4o Mini",
            "apiIdentifier": "gpt-4o-mini",
            "description": "Lightweight version of GPT-4o, optimized for affordability and speed",
        },
    ]


def get_reasoning_models() -> list[dict[str, str]]:
    """Models used for gap analysis and report synthesis."""
    return [
        {
            "id": "deepseek-reasoner",
            "label": "DeepSeek Reasoner",
            "apiIdentifier": "deepseek-reasoner",
            "description": "Advanced reasoning model by DeepSeek for structured analysis and research",
        },
        {
            "id": "o1",
            "label": "OpenRouter O1",
            "apiIdentifier": "o1",
            "description": "OpenRouter's O1 model for deep reasoning and structured outputs",
        },
        {
            "id": "o1-mini",
            "label": "OpenRouter O1 Mini",
            "apiIdentifier": "o1-mini",
            "description": "OpenRouter's cheaper reasoning model optimized for structured outputs",
        },
        {
            "id": "o3-mini",
            "label": "OpenRouter O3 Mini",
            "apiIdentifier": "o3-mini",
            "description": "OpenRouter's cost-effective reasoning model with balanced performance",
        },
    ]


def find_model(model_id: str, *, reasoning: bool = False) -> dict[str, str] | None:
    catalog = get_reasoning_models() if reasoning else get_available_models()
    return next((m for m in catalog if m["id"] == model_id), None)


def is_authorized(request: Request) -> bool:
    """x-api-key must match AUTH_SECRET; unset secret denies everything."""
    provided = request.headers.get("x-api-key")
    secret = settings.auth_secret
    if not provided or not secret:
        return False
    return hmac.compare_digest(provided.encode("utf-8"), secret.encode("utf-8"))
