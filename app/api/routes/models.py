from __future__ import annotations

from fastapi import APIRouter

from app.api.deps import get_available_models, get_reasoning_models
from app.models.schemas import ModelInfo, ModelsResponse

router = APIRouter(prefix="/api/models", tags=["models"])


@router.get("", response_model=ModelsResponse)
async def list_models():
    """List chat models and the reasoning models deep research can use."""
    return ModelsResponse(
        models=[ModelInfo(**m) for m in get_available_models()],
        reasoning_models=[ModelInfo(**m) for m in get_reasoning_models()],
    )
