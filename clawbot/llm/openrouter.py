"""OpenRouter implementation of LLMProvider."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

import httpx

from clawbot.config import Settings
from clawbot.llm.base import LLMProvider, sanitize_empty_content
from clawbot.models import LLMResponse, LLMToolCall

_LOGGER = logging.getLogger(__name__)

_MAX_RETRIES = 3
_RETRY_BACKOFF_SECONDS = [5, 15, 45]


class OpenRouterProvider(LLMProvider):
    """LLM provider using OpenRouter's OpenAI-compatible chat endpoint."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    @property
    def default_model(self) -> str:
        return self._settings.openrouter_model

    async def chat(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        model: str | None = None,
        max_tokens: int = 4096,
        temperature: float = 0.7,
    ) -> LLMResponse:
        payload: dict[str, Any] = {
            "model": model or self.default_model,
            "messages": sanitize_empty_content(messages),
            "max_tokens": max(1, max_tokens),
            "temperature": temperature,
        }
        if tools:
            payload["tools"] = tools
            payload["tool_choice"] = "auto"

        try:
            data = await self._post(payload)
        except (httpx.HTTPError, ValueError) as exc:
            _LOGGER.warning("OpenRouter request failed: %s", exc)
            return LLMResponse(content=f"Error calling LLM: {exc}", finish_reason="error")

        return _parse_response(data)

    async def _post(self, payload: dict[str, Any]) -> dict[str, Any]:
        """POST a completion request, backing off on 429 before giving up."""

        headers = {"Authorization": f"Bearer {self._settings.openrouter_api_key}"}
        async with httpx.AsyncClient(
            base_url=self._settings.openrouter_base_url,
            timeout=httpx.Timeout(self._settings.request_timeout_seconds),
        ) as client:
            delays = list(_RETRY_BACKOFF_SECONDS[:_MAX_RETRIES])
            while True:
                response = await client.post("/chat/completions", headers=headers, json=payload)
                if response.status_code != 429 or not delays:
                    break
                delay = delays.pop(0)
                _LOGGER.warning("OpenRouter returned 429, %d retries left, sleeping %ds", len(delays), delay)
                await asyncio.sleep(delay)
            response.raise_for_status()
            return response.json()


def _parse_response(data: dict[str, Any]) -> LLMResponse:
    try:
        first = data["choices"][0]
    except (KeyError, IndexError, TypeError):
        return LLMResponse(content=f"Error calling LLM: malformed response {data!r}"[:500], finish_reason="error")

    choice = first.get("message") or {}
    finish_reason = first.get("finish_reason") or "stop"
    content = choice.get("content")
    _LOGGER.info(
        "LLM response: finish_reason=%r content=%r tool_calls=%r",
        finish_reason,
        content[:200] if content else "",
        choice.get("tool_calls"),
    )

    parsed_tool_calls: list[LLMToolCall] = []
    for tool_call in choice.get("tool_calls") or []:
        function_data = tool_call.get("function", {})
        parsed_tool_calls.append(
            LLMToolCall(
                name=function_data.get("name", ""),
                arguments=_safe_json_loads(function_data.get("arguments", "{}")),
                call_id=tool_call.get("id"),
            )
        )

    usage = data.get("usage") or {}
    return LLMResponse(
        content=content,
        tool_calls=parsed_tool_calls,
        finish_reason=finish_reason,
        usage={
            "prompt_tokens": int(usage.get("prompt_tokens", 0)),
            "completion_tokens": int(usage.get("completion_tokens", 0)),
            "total_tokens": int(usage.get("total_tokens", 0)),
        },
        reasoning_content=choice.get("reasoning_content") or choice.get("reasoning"),
        raw=data,
    )


def _safe_json_loads(raw: Any) -> dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    try:
        parsed = json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        return {}
    return parsed if isinstance(parsed, dict) else {}
