from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Optional, Union

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from assistant.services.config import get_settings
from assistant.services.errors import ProviderError, TransientProviderError

logger = logging.getLogger(__name__)

_RETRYABLE_STATUS = {408, 409, 425, 429}


@dataclass
class ToolCallRequest:
    id: str
    name: str
    arguments: dict[str, Any]
    raw_arguments: str = ""

    def to_message_part(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.raw_arguments or json.dumps(self.arguments)},
        }


@dataclass
class LLMStep:
    """One generation step: final text, requested tool calls, or both."""
    content: str
    tool_calls: list[ToolCallRequest] = field(default_factory=list)
    finish_reason: Optional[str] = None
    prompt_tokens: int = 0
    completion_tokens: int = 0

    def to_message(self) -> dict[str, Any]:
        message: dict[str, Any] = {"role": "assistant", "content": self.content or None}
        if self.tool_calls:
            message["tool_calls"] = [call.to_message_part() for call in self.tool_calls]
        return message


@dataclass
class TextDelta:
    text: str


StreamChunk = Union[TextDelta, LLMStep]


def llm_enabled() -> bool:
    settings = get_settings()
    return bool(settings.openai_api_key)


def parse_tool_arguments(raw: Any) -> dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    if not raw or not str(raw).strip():
        return {}
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        return {}
    return value if isinstance(value, dict) else {}


def _extract_text_from_message(content: Any) -> str:
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts: list[str] = []
        for item in content:
            if isinstance(item, dict) and item.get("type") == "text":
                parts.append(str(item.get("text", "")))
        return "\n".join(parts).strip()
    return str(content)


def _endpoint_and_headers() -> tuple[str, dict[str, str]]:
    settings = get_settings()
    if not settings.openai_api_key:
        raise ProviderError("Assistant is not configured. Missing OPENAI_API_KEY.")

    url = settings.openai_base_url.rstrip("/") + "/chat/completions"
    headers = {
        "Authorization": f"Bearer {settings.openai_api_key}",
        "Content-Type": "application/json",
    }
    return url, headers


def _build_payload(
    messages: list[dict[str, Any]],
    tools: list[dict[str, Any]],
    model: Optional[str],
    temperature: Optional[float],
) -> dict[str, Any]:
    settings = get_settings()
    payload: dict[str, Any] = {
        "model": model or settings.openai_model,
        "messages": messages,
        "temperature": settings.llm_temperature if temperature is None else temperature,
    }
    if tools:
        payload["tools"] = tools
    return payload


@retry(
    retry=retry_if_exception_type((httpx.TimeoutException, httpx.TransportError, TransientProviderError)),
    wait=wait_exponential(multiplier=1, min=1, max=8),
    stop=stop_after_attempt(3),
    reraise=True,
)
async def _chat_completion_request(payload: dict[str, Any]) -> dict[str, Any]:
    settings = get_settings()
    url, headers = _endpoint_and_headers()

    timeout = httpx.Timeout(settings.llm_timeout_seconds)
    async with httpx.AsyncClient(timeout=timeout) as client:
        response = await client.post(url, headers=headers, json=payload)

    if response.status_code >= 500 or response.status_code in _RETRYABLE_STATUS:
        raise TransientProviderError(f"Model provider temporary error: {response.status_code}")

    if response.status_code >= 400:
        detail = response.text[:300]
        raise ProviderError(f"Model provider request failed ({response.status_code}): {detail}")

    return response.json()


def _tool_calls_from_message(message: dict[str, Any]) -> list[ToolCallRequest]:
    calls: list[ToolCallRequest] = []
    for item in message.get("tool_calls") or []:
        if item.get("type", "function") != "function":
            continue
        function = item.get("function") or {}
        raw = function.get("arguments") or ""
        calls.append(
            ToolCallRequest(
                id=str(item.get("id") or f"call_{len(calls)}"),
                name=str(function.get("name") or ""),
                arguments=parse_tool_arguments(raw),
                raw_arguments=raw if isinstance(raw, str) else json.dumps(raw),
            )
        )
    return calls


async def generate_step(
    messages: list[dict[str, Any]],
    tools: list[dict[str, Any]],
    model: Optional[str] = None,
    temperature: Optional[float] = None,
) -> LLMStep:
    """Ask the provider for the next step given history and tool catalog."""
    payload = _build_payload(messages, tools, model, temperature)
    try:
        data = await _chat_completion_request(payload)
    except (httpx.TimeoutException, httpx.TransportError) as exc:
        raise ProviderError(f"Model provider unreachable: {exc}") from exc

    choices = data.get("choices", [])
    if not choices:
        raise ProviderError("Model provider response did not contain choices")

    message = choices[0].get("message", {}) or {}
    usage = data.get("usage", {}) or {}
    return LLMStep(
        content=_extract_text_from_message(message.get("content")).strip(),
        tool_calls=_tool_calls_from_message(message),
        finish_reason=choices[0].get("finish_reason"),
        prompt_tokens=usage.get("prompt_tokens", 0),
        completion_tokens=usage.get("completion_tokens", 0),
    )


async def stream_step(
    messages: list[dict[str, Any]],
    tools: list[dict[str, Any]],
    model: Optional[str] = None,
    temperature: Optional[float] = None,
) -> AsyncIterator[StreamChunk]:
    """Stream one generation step.

    Yields ``TextDelta`` items as tokens arrive, then exactly one ``LLMStep``
    holding the assembled text and any tool calls. Streaming requests are not
    retried since partial output may already have reached the caller.
    """
    settings = get_settings()
    url, headers = _endpoint_and_headers()
    payload = _build_payload(messages, tools, model, temperature)
    payload["stream"] = True

    text_parts: list[str] = []
    pending_calls: dict[int, dict[str, Any]] = {}
    finish_reason: Optional[str] = None

    timeout = httpx.Timeout(settings.llm_timeout_seconds)
    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            async with client.stream("POST", url, headers=headers, json=payload) as response:
                if response.status_code >= 400:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    raise ProviderError(
                        f"Model provider request failed ({response.status_code}): {body[:300]}"
                    )

                async for line in response.aiter_lines():
                    line = line.strip()
                    if not line.startswith("data:"):
                        continue
                    data = line[len("data:"):].strip()
                    if data == "[DONE]":
                        break
                    try:
                        chunk = json.loads(data)
                    except json.JSONDecodeError:
                        logger.debug("Skipping malformed stream chunk: %s", data[:120])
                        continue

                    for choice in chunk.get("choices", []):
                        delta = choice.get("delta") or {}
                        text = delta.get("content")
                        if text:
                            text_parts.append(text)
                            yield TextDelta(text)
                        for part in delta.get("tool_calls") or []:
                            slot = pending_calls.setdefault(
                                int(part.get("index", 0)), {"id": "", "name": "", "arguments": ""}
                            )
                            if part.get("id"):
                                slot["id"] = part["id"]
                            function = part.get("function") or {}
                            if function.get("name"):
                                slot["name"] += function["name"]
                            if function.get("arguments"):
                                slot["arguments"] += function["arguments"]
                        if choice.get("finish_reason"):
                            finish_reason = choice["finish_reason"]
    except (httpx.TimeoutException, httpx.TransportError) as exc:
        raise ProviderError(f"Model provider stream failed: {exc}") from exc

    tool_calls = [
        ToolCallRequest(
            id=slot["id"] or f"call_{index}",
            name=slot["name"],
            arguments=parse_tool_arguments(slot["arguments"]),
            raw_arguments=slot["arguments"],
        )
        for index, slot in sorted(pending_calls.items())
    ]
    yield LLMStep(content="".join(text_parts).strip(), tool_calls=tool_calls, finish_reason=finish_reason)
