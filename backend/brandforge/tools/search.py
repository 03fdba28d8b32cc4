"""
Contextual Search Tool

Searches the web for design trends and brand context. Uses SerpAPI Google
search when SERPAPI_KEY is configured and Gemini Google Search grounding
otherwise.

Transient failures are retried with the shared backoff policy. Best-effort:
once retries are exhausted, or on any permanent failure, the result is an
empty summary, never an error.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

import httpx
from langsmith import traceable
from pydantic import BaseModel, Field

from brandforge.config import Settings, get_settings
from brandforge.core.backoff import BackoffPolicy
from brandforge.core.gemini_service import GeminiService
from brandforge.models.schemas import StateDelta, ToolResult
from brandforge.models.state import AgentStateView
from brandforge.tools.base import ToolExecutor


logger = logging.getLogger(__name__)


SERPAPI_BASE_URL = "https://serpapi.com/search.json"


class SearchTrendsInput(BaseModel):
    query: str = Field(..., description="What to research, e.g. 'summer 2026 streetwear color trends'")


class SerpSearchClient:
    """
    Client for Google web search via SerpAPI.
    """

    def __init__(self, api_key: str, timeout: float = 30.0):
        if not api_key:
            raise ValueError("SERPAPI_KEY not set in .env file")
        self.api_key = api_key
        self.timeout = timeout

    @traceable(name="serp_search_client.search", run_type="tool", tags=["tool", "serpapi", "search"])
    async def search(self, query: str, num_results: int = 5) -> List[Dict[str, Any]]:
        """
        Search Google and return the top organic results.

        Returns:
            List of {title, snippet, link} dicts.
        """
        params = {
            "engine": "google",
            "q": query,
            "api_key": self.api_key,
            "num": num_results,
            "hl": "en",
            "gl": "us",
        }
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.get(SERPAPI_BASE_URL, params=params)
            response.raise_for_status()
            data = response.json()

        results = []
        for item in data.get("organic_results", [])[:num_results]:
            results.append({
                "title": item.get("title", ""),
                "snippet": item.get("snippet", ""),
                "link": item.get("link", ""),
            })
        return results


def summarize_results(results: List[Dict[str, Any]]) -> str:
    return "\n".join(
        f"- {r['title']}: {r['snippet']}" for r in results if r.get("title") or r.get("snippet")
    )


class ContextSearchTool(ToolExecutor):
    name = "search_trends"
    description = (
        "Search the web for current design trends, competitor styles or cultural "
        "context relevant to the request. Optional; results may be empty."
    )
    input_model = SearchTrendsInput

    def __init__(self, service: GeminiService, settings: Optional[Settings] = None,
                 serp_client: Optional[SerpSearchClient] = None, policy: Optional[BackoffPolicy] = None):
        self.service = service
        self.settings = settings or get_settings()
        self.policy = policy or BackoffPolicy.from_settings(self.settings, self.settings.tool_retry_attempts)
        if serp_client is None and self.settings.serpapi_key:
            serp_client = SerpSearchClient(self.settings.serpapi_key, timeout=self.settings.search_timeout_seconds)
        self.serp_client = serp_client

    @traceable(name="search_tool.execute", run_type="tool", tags=["tool", "search"])
    async def execute(self, args: SearchTrendsInput, state: AgentStateView) -> Tuple[ToolResult, StateDelta]:
        summary = await self.search(args.query)
        return ToolResult.ok(search_results=summary, found=bool(summary)), StateDelta()

    async def search(self, query: str) -> str:
        """Search and summarize; returns an empty string on any failure."""
        try:
            if self.serp_client is not None:
                results = await self.policy.run(
                    lambda: self.serp_client.search(query),
                    label="serpapi search",
                    timeout=self.settings.search_timeout_seconds,
                )
                return summarize_results(results)
            return await self.policy.run(
                lambda: self.service.search_grounded(query),
                label="grounded search",
                timeout=self.settings.search_timeout_seconds,
            )
        except httpx.HTTPStatusError as e:
            logger.warning("[Search] HTTP error: %s %s", e.response.status_code, e.response.text[:200])
        except Exception as e:
            logger.warning("[Search] Search failed: %s", e)
        return ""
