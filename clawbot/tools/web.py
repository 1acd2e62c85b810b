"""Web search and fetch tools."""

from __future__ import annotations

import asyncio
import json
import re
from typing import Any
from urllib.parse import urlparse

import httpx
from ddgs import DDGS

from clawbot.tools.base import Tool

BRAVE_URL = "https://api.search.brave.com/res/v1/web/search"
_USER_AGENT = "Mozilla/5.0 (compatible; clawbot/0.1)"


def _strip_tags(text: str) -> str:
    text = re.sub(r"<script[\s\S]*?</script>", "", text, flags=re.IGNORECASE)
    text = re.sub(r"<style[\s\S]*?</style>", "", text, flags=re.IGNORECASE)
    return re.sub(r"<[^>]+>", "", text).strip()


def _normalize(text: str) -> str:
    text = re.sub(r"[ \t]+", " ", text)
    return re.sub(r"\n{3,}", "\n\n", text).strip()


def _validate_url(url: str) -> str | None:
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https"):
        return f"Only http/https allowed, got '{parsed.scheme or 'none'}'"
    if not parsed.netloc:
        return "Missing domain"
    return None


class WebSearchTool(Tool):
    """Search the web with Brave when a key is configured, DuckDuckGo otherwise."""

    name = "web_search"
    description = "Search the web. Returns titles, URLs, and snippets."
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {
            "query": {"type": "string", "description": "Search query."},
            "count": {"type": "integer", "minimum": 1, "maximum": 10, "description": "Results (1-10)."},
        },
        "required": ["query"],
    }

    def __init__(self, api_key: str = "", max_results: int = 5) -> None:
        self._api_key = api_key
        self._max_results = max_results

    async def run(self, **kwargs: Any) -> str:
        query = str(kwargs["query"]).strip()
        count = min(max(int(kwargs.get("count") or self._max_results), 1), 10)
        if self._api_key:
            results = await self._brave(query, count)
        else:
            results = await self._ddg(query, count)
        if isinstance(results, str):
            return results
        if not results:
            return f"No results for: {query}"

        lines = [f"Results for: {query}", ""]
        for index, (title, url, snippet) in enumerate(results[:count], start=1):
            lines.append(f"{index}. {title}")
            lines.append(f"   {url}")
            if snippet:
                lines.append(f"   {snippet}")
        return "\n".join(lines)

    async def _brave(self, query: str, count: int) -> list[tuple[str, str, str]] | str:
        try:
            async with httpx.AsyncClient() as client:
                resp = await client.get(
                    BRAVE_URL,
                    params={"q": query, "count": count},
                    headers={"Accept": "application/json", "X-Subscription-Token": self._api_key},
                    timeout=15.0,
                )
                if resp.status_code != 200:
                    return f"Error: Brave search failed (HTTP {resp.status_code})"
                data = resp.json()
        except httpx.HTTPError as exc:
            return f"Error: {exc}"
        return [
            (item.get("title", ""), item.get("url", ""), _strip_tags(item.get("description", "")))
            for item in data.get("web", {}).get("results", [])
        ]

    async def _ddg(self, query: str, count: int) -> list[tuple[str, str, str]]:
        results = await asyncio.to_thread(lambda: DDGS().text(query, max_results=count, backend="duckduckgo"))
        return [(r.get("title", ""), r.get("href", ""), r.get("body", "")) for r in results or []]


class WebFetchTool(Tool):
    """Fetch a URL and return readable text as a JSON envelope."""

    name = "web_fetch"
    description = "Fetch URL and extract readable content (HTML to markdown/text)."
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {
            "url": {"type": "string", "description": "URL to fetch."},
            "extractMode": {"type": "string", "enum": ["markdown", "text"]},
            "maxChars": {"type": "integer", "minimum": 100},
        },
        "required": ["url"],
    }

    def __init__(self, max_chars: int = 50_000) -> None:
        self._max_chars = max_chars

    async def run(self, **kwargs: Any) -> str:
        url = str(kwargs["url"]).strip()
        extract_mode = kwargs.get("extractMode") or "markdown"
        max_chars = int(kwargs.get("maxChars") or self._max_chars)

        problem = _validate_url(url)
        if problem:
            return json.dumps({"error": f"URL validation failed: {problem}", "url": url})

        try:
            async with httpx.AsyncClient(follow_redirects=True, timeout=30.0) as client:
                resp = await client.get(url, headers={"User-Agent": _USER_AGENT})
        except httpx.HTTPError as exc:
            return json.dumps({"error": str(exc), "url": url})

        content_type = resp.headers.get("content-type", "")
        extractor = "raw"
        if "application/json" in content_type:
            try:
                text = json.dumps(resp.json(), indent=2, ensure_ascii=False)
                extractor = "json"
            except ValueError:
                text = resp.text
        else:
            text = resp.text
            if "text/html" in content_type or re.match(r"^\s*(<!doctype|<html)", text[:256], re.IGNORECASE):
                stripped = _strip_tags(text)
                text = stripped if extract_mode == "text" else _normalize(stripped)
                extractor = "html"

        truncated = len(text) > max_chars
        text = text[:max_chars]
        return json.dumps(
            {
                "url": url,
                "finalUrl": str(resp.url),
                "status": resp.status_code,
                "extractor": extractor,
                "truncated": truncated,
                "length": len(text),
                "text": text,
            },
            ensure_ascii=False,
        )
