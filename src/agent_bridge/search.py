"""Web search tool and the invoker that runs model-requested tool calls.

Nothing in this module raises to the caller. Every failure becomes a JSON
``{"error": ..., "details": ...}`` string that is fed back to the model as a
tool result, so the model can explain the failure instead of the turn dying.
"""

from __future__ import annotations

import json
import logging
from typing import Any

import httpx
from pydantic import BaseModel, ValidationError, field_validator

from .fragments import ToolCallRequest

LOGGER = logging.getLogger(__name__)

TAVILY_SEARCH_URL = "https://api.tavily.com/search"
WEB_SEARCH_TOOL_NAME = "web_search"

WEB_SEARCH_TOOL: dict[str, Any] = {
    "type": "function",
    "function": {
        "name": WEB_SEARCH_TOOL_NAME,
        "description": (
            "Search the web for current information, news, facts, or research "
            "on any topic"
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "query": {
                    "type": "string",
                    "description": "The search query to find information about",
                },
            },
            "required": ["query"],
        },
    },
}


def _error_payload(error: str, details: Any = None) -> str:
    payload: dict[str, Any] = {"error": error}
    if details is not None:
        payload["details"] = details
    return json.dumps(payload)


class ParamsSchema(BaseModel):
    """Base class for tool parameter schemas."""

    model_config = {"extra": "ignore"}


class WebSearchParams(ParamsSchema):
    query: str

    @field_validator("query")
    @classmethod
    def _non_empty(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("query must not be empty")
        return normalized


class WebSearch:
    """Tavily search client returning raw JSON text."""

    def __init__(
        self,
        api_key: str = "",
        *,
        endpoint: str = TAVILY_SEARCH_URL,
        search_depth: str = "advanced",
        max_results: int = 5,
        include_answer: bool = True,
        include_raw_content: bool = False,
        timeout: float = 25.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_key = api_key.strip()
        self.endpoint = endpoint
        self.search_depth = search_depth
        self.max_results = max_results
        self.include_answer = include_answer
        self.include_raw_content = include_raw_content
        self.timeout = timeout
        self._client = client

    @property
    def available(self) -> bool:
        return bool(self.api_key)

    def _request_body(self, query: str) -> dict[str, Any]:
        return {
            "query": query,
            "search_depth": self.search_depth,
            "max_results": self.max_results,
            "include_answer": self.include_answer,
            "include_raw_content": self.include_raw_content,
        }

    async def _post(self, query: str) -> httpx.Response:
        headers = {
            "content-type": "application/json",
            "authorization": f"Bearer {self.api_key}",
        }
        body = self._request_body(query)
        if self._client is not None:
            return await self._client.post(
                self.endpoint, headers=headers, json=body, timeout=self.timeout
            )
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.post(self.endpoint, headers=headers, json=body)

    async def search(self, query: str) -> str:
        """Run one search and return the provider payload or an error payload."""
        if not self.available:
            return _error_payload("Web Search is Not Available, API Key Not Configured.")

        LOGGER.info(
            "search.request.start",
            extra={"event": "search.request.start", "query": query},
        )
        try:
            response = await self._post(query)
        except httpx.HTTPError as exc:
            LOGGER.warning(
                "search.request.exception",
                extra={
                    "event": "search.request.exception",
                    "query": query,
                    "error_type": type(exc).__name__,
                    "error": str(exc),
                },
            )
            return _error_payload("An Exception Occurred During Web Search", str(exc))

        if not response.is_success:
            LOGGER.warning(
                "search.request.failed",
                extra={
                    "event": "search.request.failed",
                    "query": query,
                    "status_code": response.status_code,
                },
            )
            return _error_payload(
                f"Search Failed with Status Code: {response.status_code}",
                response.text,
            )

        try:
            data = response.json()
        except ValueError as exc:
            return _error_payload("An Exception Occurred During Web Search", str(exc))

        LOGGER.info(
            "search.request.complete",
            extra={"event": "search.request.complete", "query": query},
        )
        return json.dumps(data)


class ToolInvoker:
    """Run the tool calls a model asks for and return their serialized results."""

    def __init__(self, web_search: WebSearch) -> None:
        self.web_search = web_search

    @property
    def tools(self) -> list[dict[str, Any]]:
        """Tool declarations sent with every completion request."""
        return [WEB_SEARCH_TOOL]

    async def invoke(self, request: ToolCallRequest) -> str:
        LOGGER.info(
            "tool.call",
            extra={"event": "tool.call", "tool": request.name, "call_id": request.id},
        )
        if request.name != WEB_SEARCH_TOOL_NAME:
            return _error_payload(f"Unknown tool: {request.name}")

        try:
            params = WebSearchParams.model_validate_json(request.arguments or "{}")
        except ValidationError as exc:
            LOGGER.warning(
                "tool.arguments.invalid",
                extra={
                    "event": "tool.arguments.invalid",
                    "tool": request.name,
                    "error": str(exc),
                },
            )
            return _error_payload(
                "Failed to perform web search",
                exc.errors(include_url=False, include_context=False),
            )
        return await self.web_search.search(params.query)
