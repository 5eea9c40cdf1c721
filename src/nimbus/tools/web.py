"""Web tools: fetch a page, search the web."""

from __future__ import annotations

import contextlib
import html
import re
from collections.abc import AsyncIterator
from typing import Any
from urllib.parse import parse_qs, urlparse

import httpx
from pydantic import Field

from nimbus.tools.base import Handler, ToolContext, ToolInput, ToolName

USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko)"
SEARCH_URL = "https://html.duckduckgo.com/html/"

_STRIP_BLOCKS = re.compile(
    r"<(script|style|nav|header|footer)\b[^>]*>.*?</\1\s*>", re.IGNORECASE | re.DOTALL
)
_TAGS = re.compile(r"<[^>]+>")
_WHITESPACE = re.compile(r"\s+")

_RESULT = re.compile(
    r'<a[^>]*class="result__a"[^>]*href="([^"]+)"[^>]*>(.*?)</a>'
    r'.*?<a[^>]*class="result__snippet"[^>]*>(.*?)</a>',
    re.IGNORECASE | re.DOTALL,
)
_RESULT_LINK = re.compile(
    r'<a[^>]*class="result__a"[^>]*href="([^"]+)"[^>]*>(.*?)</a>', re.IGNORECASE | re.DOTALL
)


class WebFetchInput(ToolInput):
    url: str = Field(description="http(s) URL to fetch")
    extract_text: bool = Field(True, description="Return readable text instead of raw HTML")


class WebSearchInput(ToolInput):
    query: str = Field(min_length=1, description="Search query")
    num_results: int = Field(5, ge=1, le=20, description="Number of results (default: 5)")


def extract_text(page: str) -> str:
    """Strip scripts, styles, navigation and tags, collapsing whitespace."""
    text = _STRIP_BLOCKS.sub(" ", page)
    text = _TAGS.sub(" ", text)
    return _WHITESPACE.sub(" ", html.unescape(text)).strip()


def _clean(fragment: str) -> str:
    return _WHITESPACE.sub(" ", html.unescape(_TAGS.sub("", fragment))).strip()


def _unwrap_redirect(url: str) -> str:
    # Result links go through /l/?uddg=<target>
    parsed = urlparse(url if "://" in url else f"https:{url}")
    if parsed.path.startswith("/l/"):
        target = parse_qs(parsed.query).get("uddg")
        if target:
            return target[0]
    return html.unescape(url)


def parse_search_results(page: str, limit: int) -> list[dict[str, str]]:
    """Pull result links, titles and snippets out of a DuckDuckGo HTML page."""
    results = [
        {"url": _unwrap_redirect(url), "title": _clean(title), "snippet": _clean(snippet)}
        for url, title, snippet in _RESULT.findall(page)[:limit]
    ]
    if not results:
        results = [
            {"url": _unwrap_redirect(url), "title": _clean(title), "snippet": ""}
            for url, title in _RESULT_LINK.findall(page)[:limit]
        ]
    return results


@contextlib.asynccontextmanager
async def _client(ctx: ToolContext) -> AsyncIterator[httpx.AsyncClient]:
    if ctx.http is not None:
        yield ctx.http
        return
    async with httpx.AsyncClient(
        follow_redirects=True,
        timeout=ctx.config.fetch_timeout,
        headers={"User-Agent": USER_AGENT},
    ) as client:
        yield client


class WebFetchHandler(Handler[WebFetchInput]):
    name = ToolName.WEB_FETCH
    description = "Fetch a web page and return its readable text (or raw HTML)."
    input_model = WebFetchInput

    async def run(self, params: WebFetchInput, ctx: ToolContext) -> dict[str, Any]:
        if urlparse(params.url).scheme not in ("http", "https"):
            return {"error": f"Unsupported URL scheme: {params.url}", "url": params.url}
        try:
            async with _client(ctx) as client:
                response = await client.get(params.url)
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            return {"error": f"Fetch failed: HTTP {e.response.status_code}", "url": params.url}
        except httpx.HTTPError as e:
            return {"error": f"Fetch failed: {e or type(e).__name__}", "url": params.url}

        if params.extract_text:
            text = extract_text(response.text)[: ctx.config.fetch_text_limit]
            return {"content": text, "url": str(response.url), "type": "text"}
        return {
            "content": response.text[: ctx.config.fetch_html_limit],
            "url": str(response.url),
            "type": "html",
        }


class WebSearchHandler(Handler[WebSearchInput]):
    name = ToolName.WEB_SEARCH
    description = "Search the web and return result titles, URLs and snippets."
    input_model = WebSearchInput

    async def run(self, params: WebSearchInput, ctx: ToolContext) -> dict[str, Any]:
        try:
            async with _client(ctx) as client:
                response = await client.get(SEARCH_URL, params={"q": params.query})
                response.raise_for_status()
        except httpx.HTTPError as e:
            return {"error": f"Search failed: {e or type(e).__name__}", "query": params.query}

        results = parse_search_results(response.text, params.num_results)
        return {"results": results, "count": len(results), "query": params.query}


HANDLERS: list[Handler[Any]] = [WebFetchHandler(), WebSearchHandler()]
