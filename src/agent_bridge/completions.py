"""Streamed chat completions normalised into typed fragments.

Each provider gets a fragment source whose ``stream`` method is an async
generator of ``TextDelta``, ``ToolCallDelta`` and ``StopSignal`` objects.
The accumulator only ever sees those, whichever provider produced them.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator
import json
import logging
from typing import Any, Protocol
import uuid

import httpx
from ollama import AsyncClient as OllamaAsyncClient
from ollama import ResponseError as OllamaResponseError
from openai import AsyncOpenAI, OpenAIError

from .exceptions import ConfigValidationError, MissingCredentialError, ModelStreamError
from .fragments import (
    TOOL_CALLS_REASON,
    Fragment,
    StopSignal,
    TextDelta,
    ToolCallDelta,
)

LOGGER = logging.getLogger(__name__)

GEMINI_OPENAI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/openai/"
DEFAULT_MODEL = "gemini-2.0-flash"
DEFAULT_TEMPERATURE = 0.7


class FragmentSource(Protocol):
    """A model provider able to stream one completion as fragments.

    Once ``cancel`` is set no request is sent, and an open response is
    closed at the next chunk.
    """

    def stream(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]],
        cancel: asyncio.Event | None = None,
    ) -> AsyncGenerator[Fragment, None]: ...


def _cancelled(cancel: asyncio.Event | None) -> bool:
    return cancel is not None and cancel.is_set()


def _field(obj: Any, name: str) -> Any:
    """Read ``name`` from an SDK object or a plain dict."""
    if isinstance(obj, dict):
        return obj.get(name)
    return getattr(obj, name, None)


class OpenAIFragmentSource:
    """Fragments from an OpenAI-compatible ``chat.completions`` stream."""

    def __init__(
        self,
        client: AsyncOpenAI,
        model: str = DEFAULT_MODEL,
        temperature: float = DEFAULT_TEMPERATURE,
    ) -> None:
        self._client = client
        self.model = model
        self.temperature = temperature

    @staticmethod
    def fragments_from_chunk(chunk: Any) -> list[Fragment]:
        """Translate one ``ChatCompletionChunk`` into zero or more fragments."""
        choices = _field(chunk, "choices") or []
        if not choices:
            return []
        choice = choices[0]
        fragments: list[Fragment] = []
        delta = _field(choice, "delta")
        if delta is not None:
            content = _field(delta, "content")
            if isinstance(content, str) and content:
                fragments.append(TextDelta(content))
            for call in _field(delta, "tool_calls") or []:
                function = _field(call, "function")
                fragments.append(
                    ToolCallDelta(
                        index=int(_field(call, "index") or 0),
                        call_id=_field(call, "id"),
                        name=_field(function, "name") if function is not None else None,
                        arguments=(
                            _field(function, "arguments")
                            if function is not None
                            else None
                        ),
                    )
                )
        finish_reason = _field(choice, "finish_reason")
        if finish_reason:
            fragments.append(StopSignal(str(finish_reason)))
        return fragments

    async def stream(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]],
        cancel: asyncio.Event | None = None,
    ) -> AsyncGenerator[Fragment, None]:
        if _cancelled(cancel):
            return
        LOGGER.debug(
            "completions.request",
            extra={
                "event": "completions.request",
                "provider": "openai",
                "model": self.model,
                "messages": len(messages),
            },
        )
        try:
            response = await self._client.chat.completions.create(
                model=self.model,
                messages=messages,
                tools=tools,
                temperature=self.temperature,
                stream=True,
            )
        except OpenAIError as exc:
            raise ModelStreamError(str(exc)) from exc

        try:
            async for chunk in response:
                if _cancelled(cancel):
                    break
                for fragment in self.fragments_from_chunk(chunk):
                    yield fragment
        except OpenAIError as exc:
            raise ModelStreamError(str(exc)) from exc
        finally:
            await response.close()


class OllamaFragmentSource:
    """Fragments from a local Ollama ``/api/chat`` stream.

    Ollama delivers each tool call whole, so every call becomes a single
    ``ToolCallDelta`` with JSON-encoded arguments and a generated id, and the
    final chunk is reported as a ``tool_calls`` stop when any were seen.
    """

    def __init__(
        self,
        client: OllamaAsyncClient,
        model: str,
        temperature: float = DEFAULT_TEMPERATURE,
    ) -> None:
        self._client = client
        self.model = model
        self.temperature = temperature

    @staticmethod
    def _extract_from_chunk(chunk: Any, name: str) -> Any:
        """Extract ``message.<name>`` from a chunk, falling back to top level."""
        message = _field(chunk, "message")
        if message is not None:
            value = _field(message, name)
            if value is not None:
                return value
        return _field(chunk, name)

    @staticmethod
    def to_ollama_messages(messages: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Convert chat-completions payloads to the shape Ollama accepts."""
        names_by_call_id: dict[str, str] = {}
        converted: list[dict[str, Any]] = []
        for message in messages:
            item: dict[str, Any] = {
                "role": message["role"],
                "content": message.get("content") or "",
            }
            calls = message.get("tool_calls") or []
            if calls:
                item["tool_calls"] = []
                for call in calls:
                    function = call["function"]
                    names_by_call_id[call["id"]] = function["name"]
                    try:
                        arguments = json.loads(function["arguments"] or "{}")
                    except ValueError:
                        arguments = {}
                    item["tool_calls"].append(
                        {"function": {"name": function["name"], "arguments": arguments}}
                    )
            if message["role"] == "tool":
                tool_name = names_by_call_id.get(message.get("tool_call_id") or "")
                if tool_name:
                    item["tool_name"] = tool_name
            converted.append(item)
        return converted

    async def stream(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]],
        cancel: asyncio.Event | None = None,
    ) -> AsyncGenerator[Fragment, None]:
        if _cancelled(cancel):
            return
        LOGGER.debug(
            "completions.request",
            extra={
                "event": "completions.request",
                "provider": "ollama",
                "model": self.model,
                "messages": len(messages),
            },
        )
        try:
            response = await self._client.chat(
                model=self.model,
                messages=self.to_ollama_messages(messages),
                tools=tools,
                stream=True,
                options={"temperature": self.temperature},
            )
        except (OllamaResponseError, httpx.HTTPError) as exc:
            raise ModelStreamError(str(exc)) from exc

        calls_seen = 0
        try:
            async for chunk in response:
                if _cancelled(cancel):
                    break
                content = self._extract_from_chunk(chunk, "content")
                if isinstance(content, str) and content:
                    yield TextDelta(content)

                for call in self._extract_from_chunk(chunk, "tool_calls") or []:
                    function = _field(call, "function")
                    arguments = _field(function, "arguments") or {}
                    yield ToolCallDelta(
                        index=calls_seen,
                        call_id=f"call_{uuid.uuid4().hex[:24]}",
                        name=str(_field(function, "name") or ""),
                        arguments=json.dumps(dict(arguments)),
                    )
                    calls_seen += 1

                if _field(chunk, "done"):
                    reason = _field(chunk, "done_reason") or "stop"
                    yield StopSignal(TOOL_CALLS_REASON if calls_seen else str(reason))
        except (OllamaResponseError, httpx.HTTPError) as exc:
            raise ModelStreamError(str(exc)) from exc
        finally:
            aclose = getattr(response, "aclose", None)
            if aclose is not None:
                await aclose()


def build_fragment_source(
    provider: str = "openai",
    *,
    model: str = DEFAULT_MODEL,
    api_key: str = "",
    base_url: str = GEMINI_OPENAI_BASE_URL,
    host: str = "http://localhost:11434",
    temperature: float = DEFAULT_TEMPERATURE,
    timeout: float = 120.0,
) -> FragmentSource:
    """Create the fragment source for ``provider``.

    Raises:
        MissingCredentialError: the OpenAI-compatible provider has no API key.
        ConfigValidationError: the provider name is unknown.
    """
    if provider == "openai":
        if not api_key.strip():
            raise MissingCredentialError(
                "Model API key is required (set GEMINI_API_KEY or model.api_key)."
            )
        client = AsyncOpenAI(api_key=api_key.strip(), base_url=base_url, timeout=timeout)
        return OpenAIFragmentSource(client, model=model, temperature=temperature)
    if provider == "ollama":
        return OllamaFragmentSource(
            OllamaAsyncClient(host=host, timeout=timeout),
            model=model,
            temperature=temperature,
        )
    raise ConfigValidationError(f"Unsupported model provider {provider!r}.")
