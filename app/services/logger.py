"""Centralized logging service using loguru."""

import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from loguru import logger

from app.config import settings

LOG_DIR = Path("logs")
LOG_DIR.mkdir(exist_ok=True)

logger.remove()

logger.add(
    sys.stderr,
    format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
    level=settings.app_log_level.upper(),
    colorize=True,
)

logger.add(
    LOG_DIR / "deepresearch_{time:YYYY-MM-DD}.log",
    format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}",
    level="DEBUG",
    rotation="00:00",
    retention="7 days",
    compression="zip",
)

for logger_name in (
    "uvicorn",
    "uvicorn.error",
    "uvicorn.access",
    "fastapi",
    "sse_starlette.sse",
    "httpx",
    "httpcore",
    "openai._base_client",
    "asyncpg",
    "asyncio",
):
    logging.getLogger(logger_name).setLevel(settings.noisy_log_level.upper())


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def log_llm_call(
    model: str,
    caller: str,
    input_tokens: int = 0,
    output_tokens: int = 0,
    duration_ms: int = 0,
    error: Optional[str] = None,
) -> None:
    """Log a model call made by the chat agent or the research loop."""
    call_data = {
        "timestamp": _now(),
        "model": model,
        "caller": caller,
        "input_tokens": input_tokens,
        "output_tokens": output_tokens,
        "total_tokens": input_tokens + output_tokens,
        "duration_ms": duration_ms,
        "status": "error" if error else "success",
        "error": error,
    }
    if error:
        logger.error(f"LLM_CALL_FAILED: {call_data}")
    else:
        logger.info(f"LLM_CALL: {call_data}")


def log_research_step(
    topic: str,
    depth: int,
    kind: str,
    status: str,
    message: str = "",
) -> None:
    """Log one activity of a deep research run."""
    step_data = {
        "timestamp": _now(),
        "topic": topic[:100],
        "depth": depth,
        "kind": kind,
        "status": status,
        "message": message[:200],
    }
    if status == "error":
        logger.warning(f"RESEARCH_STEP: {step_data}")
    else:
        logger.info(f"RESEARCH_STEP: {step_data}")


def log_db_operation(
    operation: str,
    table: str,
    details: Optional[str] = None,
    error: Optional[str] = None,
) -> None:
    """Log a conversation store operation."""
    op_data = {
        "timestamp": _now(),
        "operation": operation,
        "table": table,
        "details": details,
        "error": error,
    }
    if error:
        logger.error(f"DB_OPERATION_FAILED: {op_data}")
    else:
        logger.debug(f"DB_OPERATION: {op_data}")


def log_event(
    event_type: str,
    message: str,
    **kwargs,
) -> None:
    """Log a generic event."""
    event_data = {
        "timestamp": _now(),
        "event_type": event_type,
        "message": message,
        **kwargs,
    }
    logger.info(f"EVENT: {event_data}")
