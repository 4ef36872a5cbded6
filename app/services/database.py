"""PostgreSQL conversation store using asyncpg."""

from __future__ import annotations

import hashlib
import json
from datetime import datetime, timezone
from typing import Any

import asyncpg

from app.config import settings
from app.services import logger as log_service

_pool: asyncpg.Pool | None = None


def _db_available() -> bool:
    return bool(settings.database_url)


async def _get_pool() -> asyncpg.Pool:
    """Get or create the database connection pool."""
    global _pool
    if not _db_available():
        raise RuntimeError("Database not configured. Set DATABASE_URL in .env")
    if _pool is None:
        _pool = await asyncpg.create_pool(
            settings.database_url,
            min_size=1,
            max_size=10,
        )
    return _pool


async def close_pool() -> None:
    global _pool
    if _pool is not None:
        await _pool.close()
        _pool = None


# --- Users ---

async def get_user(email: str) -> list[dict[str, Any]]:
    pool = await _get_pool()
    async with pool.acquire() as conn:
        rows = await conn.fetch('SELECT id, email FROM "User" WHERE email = $1', email)
        return [dict(r) for r in rows]


async def create_user(email: str, password: str) -> None:
    digest = hashlib.sha256(password.encode("utf-8")).hexdigest()
    pool = await _get_pool()
    async with pool.acquire() as conn:
        await conn.execute(
            'INSERT INTO "User" (email, password) VALUES ($1, $2)',
            email,
            digest,
        )
    log_service.log_db_operation("insert", "User", details=email)


async def get_or_create_anonymous_user() -> str:
    """Owner id for chats created without a signed-in user."""
    email = settings.anonymous_user_email
    existing = await get_user(email)
    if existing:
        return str(existing[0]["id"])
    await create_user(email, "anonymous")
    created = await get_user(email)
    return str(created[0]["id"])


# --- Chats ---

async def get_chat(chat_id: str) -> dict[str, Any] | None:
    pool = await _get_pool()
    async with pool.acquire() as conn:
        row = await conn.fetchrow(
            'SELECT id, "createdAt", title, "userId" FROM "Chat" WHERE id = $1',
            chat_id,
        )
        return dict(row) if row else None


async def create_chat(chat_id: str, owner_id: str, title: str) -> None:
    pool = await _get_pool()
    async with pool.acquire() as conn:
        await conn.execute(
            'INSERT INTO "Chat" (id, "createdAt", title, "userId") VALUES ($1, $2, $3, $4)',
            chat_id,
            datetime.now(timezone.utc),
            title,
            owner_id,
        )
    log_service.log_db_operation("insert", "Chat", details=chat_id)


async def delete_chat(chat_id: str) -> None:
    """Delete a chat and its messages."""
    pool = await _get_pool()
    async with pool.acquire() as conn:
        async with conn.transaction():
            await conn.execute('DELETE FROM "Message" WHERE "chatId" = $1', chat_id)
            await conn.execute('DELETE FROM "Chat" WHERE id = $1', chat_id)
    log_service.log_db_operation("delete", "Chat", details=chat_id)


# --- Messages ---

async def append_messages(messages: list[dict[str, Any]]) -> None:
    """Insert messages shaped {id, chatId, role, content, createdAt}."""
    if not messages:
        return
    rows = [
        (
            m["id"],
            m["chatId"],
            m["role"],
            json.dumps(m.get("content", "")),
            m.get("createdAt") or datetime.now(timezone.utc),
        )
        for m in messages
    ]
    pool = await _get_pool()
    async with pool.acquire() as conn:
        await conn.executemany(
            'INSERT INTO "Message" (id, "chatId", role, content, "createdAt") '
            "VALUES ($1, $2, $3, $4::json, $5)",
            rows,
        )
    log_service.log_db_operation("insert", "Message", details=f"{len(rows)} rows")
