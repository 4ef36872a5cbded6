"""Firecrawl adapter: search, extract and scrape behind one result shape.

API (v1):
    POST /v1/search   {"query", "limit"}           -> {"success", "data": [...]}
    POST /v1/extract  {"urls", "prompt"}           -> {"success", "id"} or inline data
    GET  /v1/extract/<id>                          -> {"status", "data"}
    POST /v1/scrape   {"url", "formats"}           -> {"success", "data": {"markdown"}}

None of the public methods raise; failures come back as
``ToolResult(success=False, error=...)``.
"""
from __future__ import annotations

import asyncio
import json
from dataclasses import asdict, dataclass, field
from typing import Any, Generic, TypeVar

import httpx
from loguru import logger

from app.config import settings
from app.tools import web_utils

T = TypeVar("T")

EMPTY_SCRAPE_HINT = "Could get the page content, try using search or extract"


class FirecrawlError(RuntimeError):
    pass


@dataclass
class ToolResult(Generic[T]):
    success: bool
    data: T | None = None
    error: str | None = None
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        if self.success:
            return {"success": True, "data": _jsonable(self.data)}
        return {"success": False, "error": self.error}


@dataclass(slots=True)
class SearchHit:
    url: str
    title: str
    description: str
    favicon: str = ""


@dataclass(slots=True)
class ExtractedItem:
    text: str
    source_url: str


def _jsonable(value: Any) -> Any:
    if isinstance(value, list):
        return [_jsonable(v) for v in value]
    if isinstance(value, (SearchHit, ExtractedItem)):
        return asdict(value)
    return value


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False)


def items_from_extract_data(data: Any, source_url: str) -> list[ExtractedItem]:
    """Normalize provider extract payloads (list of {data} or a scalar/object)."""
    if isinstance(data, list):
        raw_items = [item.get("data", item) if isinstance(item, dict) else item for item in data]
    else:
        raw_items = [data]
    items: list[ExtractedItem] = []
    for raw in raw_items:
        text = _as_text(raw).strip()
        if text:
            items.append(ExtractedItem(text=text, source_url=source_url))
    return items


class FirecrawlClient:
    """Thin async client over the Firecrawl HTTP API."""

    def __init__(
        self,
        *,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout_seconds: float | None = None,
        poll_interval: float | None = None,
        max_polls: int | None = None,
        max_parallel: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = (settings.firecrawl_api_key if api_key is None else api_key).strip()
        self.base_url = (base_url or settings.firecrawl_base_url).rstrip("/")
        self.timeout_seconds = max(
            float(timeout_seconds or settings.firecrawl_timeout_seconds), 1.0
        )
        self.poll_interval = max(
            float(settings.firecrawl_extract_poll_interval if poll_interval is None else poll_interval),
            0.0,
        )
        self.max_polls = max(int(max_polls or settings.firecrawl_extract_max_polls), 1)
        self.max_parallel = max(int(max_parallel or settings.research_max_parallel_extract), 1)
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _http(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers=self._headers(),
            timeout=self.timeout_seconds,
            transport=self._transport,
        )

    @staticmethod
    def _decode(response: httpx.Response) -> dict[str, Any]:
        try:
            payload = response.json()
        except ValueError:
            payload = {}
        if not isinstance(payload, dict):
            payload = {"data": payload}
        if response.is_error:
            message = payload.get("error") or f"HTTP {response.status_code}"
            raise FirecrawlError(str(message))
        if payload.get("success") is False:
            raise FirecrawlError(str(payload.get("error") or "provider reported failure"))
        return payload

    async def search(self, query: str, max_results: int | None = None) -> ToolResult[list[SearchHit]]:
        payload: dict[str, Any] = {"query": query}
        if max_results:
            payload["limit"] = int(max_results)
        try:
            async with self._http() as client:
                body = self._decode(await client.post("/v1/search", json=payload))
        except Exception as exc:
            logger.warning(f"Firecrawl search failed for {query[:80]!r}: {exc}")
            return ToolResult(success=False, error=str(exc))

        hits: list[SearchHit] = []
        for row in body.get("data") or []:
            if not isinstance(row, dict) or not row.get("url"):
                continue
            url = str(row["url"])
            metadata = row.get("metadata") if isinstance(row.get("metadata"), dict) else {}
            hits.append(
                SearchHit(
                    url=url,
                    title=str(row.get("title") or metadata.get("title") or ""),
                    description=str(row.get("description") or metadata.get("description") or ""),
                    favicon=web_utils.favicon_url(url),
                )
            )
        if max_results:
            hits = hits[: int(max_results)]
        return ToolResult(success=True, data=hits)

    async def extract(self, urls: list[str], prompt: str) -> ToolResult[list[ExtractedItem]]:
        targets = web_utils.dedupe_urls(list(urls))
        if not targets:
            return ToolResult(success=True, data=[])

        semaphore = asyncio.Semaphore(self.max_parallel)

        async def run_one(url: str) -> list[ExtractedItem]:
            async with semaphore:
                return await self._extract_one(url, prompt)

        outcomes = await asyncio.gather(*(run_one(url) for url in targets), return_exceptions=True)

        items: list[ExtractedItem] = []
        errors: list[str] = []
        for url, outcome in zip(targets, outcomes):
            if isinstance(outcome, BaseException):
                logger.warning(f"Firecrawl extract failed for {url}: {outcome}")
                errors.append(f"{url}: {outcome}")
                continue
            items.extend(outcome)

        if len(errors) == len(targets):
            return ToolResult(success=False, error="; ".join(errors), errors=errors)
        return ToolResult(success=True, data=items, errors=errors)

    async def _extract_one(self, url: str, prompt: str) -> list[ExtractedItem]:
        async with self._http() as client:
            body = self._decode(
                await client.post("/v1/extract", json={"urls": [url], "prompt": prompt})
            )
            job_id = body.get("id")
            if "data" in body and (not job_id or body.get("status") in (None, "completed")):
                return items_from_extract_data(body.get("data"), url)
            if not job_id:
                raise FirecrawlError("extract response carried neither data nor job id")

            for _ in range(self.max_polls):
                status_body = self._decode(await client.get(f"/v1/extract/{job_id}"))
                status = status_body.get("status")
                if status == "completed":
                    return items_from_extract_data(status_body.get("data"), url)
                if status in ("failed", "cancelled"):
                    raise FirecrawlError(str(status_body.get("error") or f"extract job {status}"))
                await asyncio.sleep(self.poll_interval)

        raise FirecrawlError(f"extract job {job_id} did not finish after {self.max_polls} polls")

    async def scrape(self, url: str) -> ToolResult[str]:
        try:
            async with self._http() as client:
                body = self._decode(
                    await client.post("/v1/scrape", json={"url": url, "formats": ["markdown"]})
                )
        except Exception as exc:
            logger.warning(f"Firecrawl scrape failed for {url}: {exc}")
            return ToolResult(success=False, error=str(exc))

        data = body.get("data") if isinstance(body.get("data"), dict) else body
        markdown = data.get("markdown") if isinstance(data, dict) else None
        return ToolResult(success=True, data=markdown or EMPTY_SCRAPE_HINT)
