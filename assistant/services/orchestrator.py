"""Conversation orchestration for the HRM8 assistant.

Both entry points run the same loop: build the actor's toolset and system
prompt, ask the provider for a step, execute any requested tool calls, feed
the results back, and stop on a final answer or when the step budget runs out.
"""
from __future__ import annotations

import asyncio
import json
import logging
from contextlib import nullcontext
from dataclasses import dataclass, field
from typing import Annotated, Any, AsyncIterator, Literal, Mapping, Optional

from pydantic import BaseModel, Field, StringConstraints, ValidationError

from assistant.services.access_control import build_scope_description, get_access_level
from assistant.services.actors import (
    Actor,
    CompanyUser,
    Consultant,
    access_level_description,
    role_display_name,
)
from assistant.services.config import get_settings
from assistant.services.database import db_connection, fetchone
from assistant.services.errors import ProviderError, RequestValidationFailed, ToolArgumentError
from assistant.services.llm import LLMStep, TextDelta, ToolCallRequest, generate_step, llm_enabled, stream_step
from assistant.services.tool_definition import ToolDefinition
from assistant.services.tool_executor import (
    EXECUTE_TOOL_BATCH,
    EXECUTE_TOOL_BATCH_SPEC,
    ToolExecutionResult,
    execute_tool,
    execute_tool_batch,
    format_validation_error,
    not_found_result,
)
from assistant.services.tool_registry import get_allowed_tools

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 4000
MAX_HISTORY_ITEMS = 20

STEP_BUDGET_NOTICE = (
    "I could not finish this request within the allowed number of steps. "
    "Please narrow the question or ask for one piece of information at a time."
)

EMPTY_ANSWER = "Assistant generated an empty answer."

OPERATING_PRINCIPLES = """You are HRM8 Assistant, a high-precision operational copilot for hiring workflows.

## Core Principles
- Always use tools for factual status/data questions. Never invent IDs, numbers, or statuses.
- If multiple records could match, ask a short clarification question.
- When data is missing, say so explicitly and propose the exact follow-up query needed.
- Keep answers concise, structured, and business-readable.
- Treat tool output as source of truth. If a tool returns an error or denial, explain it plainly."""

DATA_SECURITY = """## Data Security
- Only share data returned by your tools. Tools already enforce your access scope.
- If a tool denies access, tell the user they do not have permission. Do not try to work around it.
- Never reveal information about other users, companies, or regions outside your scope."""

TOOL_GUIDELINES = f"""## Tool Usage Guidelines
- Prefer the composite tools (candidate overview, job dashboard) over several narrow calls.
- When the answer needs several independent lookups, call {EXECUTE_TOOL_BATCH} once with all of them.
- Use IDs returned by earlier tool results instead of guessing them."""


MessageText = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=MAX_MESSAGE_LENGTH)]


class HistoryItem(BaseModel):
    role: Literal["user", "assistant"]
    content: MessageText


class ChatRequest(BaseModel):
    message: Annotated[str, StringConstraints(strip_whitespace=True, min_length=2, max_length=MAX_MESSAGE_LENGTH)]
    history: list[HistoryItem] = Field(default_factory=list, max_length=MAX_HISTORY_ITEMS)


@dataclass
class ToolUsage:
    name: str
    args: Any
    success: bool
    duration_ms: int

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "args": self.args, "success": self.success, "durationMs": self.duration_ms}


@dataclass
class ChatResult:
    answer: str
    model: str
    tools_used: list[ToolUsage] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "answer": self.answer,
            "toolsUsed": [usage.to_dict() for usage in self.tools_used],
            "model": self.model,
        }


@dataclass
class DispatchOutcome:
    call: ToolCallRequest
    success: bool
    duration_ms: int
    payload: dict[str, Any]

    def to_usage(self) -> ToolUsage:
        return ToolUsage(self.call.name, self.call.arguments, self.success, self.duration_ms)

    def to_message(self) -> dict[str, Any]:
        return {
            "role": "tool",
            "tool_call_id": self.call.id,
            "content": json.dumps(self.payload, default=str),
        }


def parse_chat_request(raw_body: Any) -> ChatRequest:
    if not isinstance(raw_body, Mapping):
        raise RequestValidationFailed("Request body must be a JSON object.")
    try:
        return ChatRequest.model_validate(raw_body)
    except ValidationError as exc:
        raise RequestValidationFailed(f"Invalid chat request: {format_validation_error(exc)}") from exc


def _flatten_parts(parts: Any) -> str:
    if not isinstance(parts, list):
        return ""
    texts = [
        str(part.get("text", ""))
        for part in parts
        if isinstance(part, dict) and part.get("type") == "text"
    ]
    return "".join(texts)


def normalize_messages(raw_body: Any) -> list[dict[str, str]]:
    """Accept either a UI message list or a single ``message`` string."""
    if not isinstance(raw_body, Mapping):
        return []

    incoming = raw_body.get("messages")
    if isinstance(incoming, list):
        messages = []
        for item in incoming:
            if not isinstance(item, dict) or item.get("role") not in ("user", "assistant"):
                continue
            content = item.get("content")
            text = content if isinstance(content, str) else _flatten_parts(item.get("parts"))
            if text.strip():
                messages.append({"role": item["role"], "content": text.strip()[:MAX_MESSAGE_LENGTH]})
        return messages

    message = raw_body.get("message")
    if isinstance(message, str) and message.strip():
        return [{"role": "user", "content": message.strip()[:MAX_MESSAGE_LENGTH]}]
    return []


async def load_personalization(actor: Actor) -> str:
    try:
        async with db_connection() as conn:
            if isinstance(actor, Consultant):
                row = await fetchone(
                    conn,
                    """
                    SELECT c.first_name, c.last_name, r.name AS region_name
                    FROM consultants c
                    LEFT JOIN regions r ON r.id = c.region_id
                    WHERE c.id = ?
                    """,
                    (actor.consultant_id,),
                )
                if not row:
                    return ""
                name = f"{row['first_name']} {row['last_name']}".strip()
                region = row["region_name"] or "an unassigned region"
                return (
                    f"You are assisting {name}, a consultant in {region}. When they ask about \"my\" data, "
                    "use the personal consultant tools."
                )

            row = await fetchone(conn, "SELECT name FROM users WHERE id = ?", (actor.user_id,))
    except Exception as exc:
        logger.warning("Could not load personalization for user %s: %s", actor.user_id, exc)
        return ""

    name = (row or {}).get("name") or actor.email.split("@")[0]
    if isinstance(actor, CompanyUser):
        return f"You are assisting {name} from their company."
    return f"You are assisting {name}, an HRM8 administrator."


async def build_system_prompt(actor: Actor, allowed_tools: list[ToolDefinition]) -> str:
    level = get_access_level(actor)
    personalization = await load_personalization(actor)

    access = "\n".join(
        [
            "## Your Access",
            f"- Access level: {access_level_description(level)}",
            f"- Role: {role_display_name(actor)}",
            f"- Scope: {build_scope_description(actor)}",
            f"- Available tools: {len(allowed_tools)} tools based on your permissions.",
        ]
    )
    sections = [OPERATING_PRINCIPLES, access, DATA_SECURITY, TOOL_GUIDELINES]
    if personalization:
        sections.insert(1, personalization)
    return "\n\n".join(sections)


def build_toolset(allowed_tools: list[ToolDefinition]) -> list[dict[str, Any]]:
    return [tool.to_function_spec() for tool in allowed_tools] + [EXECUTE_TOOL_BATCH_SPEC]


async def _dispatch_tool_call(
    call: ToolCallRequest,
    actor: Actor,
    allowed: dict[str, ToolDefinition],
    limiter: Optional[asyncio.Semaphore] = None,
) -> DispatchOutcome:
    if call.name == EXECUTE_TOOL_BATCH:
        try:
            batch = await execute_tool_batch(call.arguments, actor, allowed.values(), limiter=limiter)
        except ToolArgumentError as exc:
            failed = ToolExecutionResult(success=False, duration_ms=0, error=exc.message)
            return DispatchOutcome(call, False, 0, failed.to_dict())
        return DispatchOutcome(call, batch.success, batch.duration_ms, batch.to_dict())

    tool = allowed.get(call.name)
    if tool is None:
        result = not_found_result(call.name)
    else:
        gate = limiter if limiter is not None else nullcontext()
        async with gate:
            result = await execute_tool(tool, call.arguments, actor)
    return DispatchOutcome(call, result.success, result.duration_ms, result.to_dict())


async def dispatch_sequential(
    calls: list[ToolCallRequest], actor: Actor, allowed: dict[str, ToolDefinition]
) -> list[DispatchOutcome]:
    outcomes = []
    for call in calls:
        outcomes.append(await asyncio.shield(_dispatch_tool_call(call, actor, allowed)))
    return outcomes


async def dispatch_concurrent(
    calls: list[ToolCallRequest], actor: Actor, allowed: dict[str, ToolDefinition], limit: int
) -> list[DispatchOutcome]:
    # One limiter covers top-level calls and the calls inside any batch
    limiter = asyncio.Semaphore(max(1, limit))
    pending = asyncio.gather(*(_dispatch_tool_call(call, actor, allowed, limiter) for call in calls))
    return list(await asyncio.shield(pending))


def _require_provider() -> None:
    if not llm_enabled():
        raise ProviderError("Assistant is not configured. Missing OPENAI_API_KEY.")


async def chat(actor: Actor, raw_body: Any) -> ChatResult:
    get_access_level(actor)
    request = parse_chat_request(raw_body)
    _require_provider()

    settings = get_settings()
    allowed_tools = get_allowed_tools(actor)
    allowed = {tool.name: tool for tool in allowed_tools}
    toolset = build_toolset(allowed_tools)

    messages: list[dict[str, Any]] = [
        {"role": "system", "content": await build_system_prompt(actor, allowed_tools)},
        *({"role": item.role, "content": item.content} for item in request.history),
        {"role": "user", "content": request.message},
    ]

    tools_used: list[ToolUsage] = []
    partial: list[str] = []
    for _ in range(settings.chat_max_steps):
        step = await generate_step(messages, toolset)
        if not step.tool_calls:
            answer = step.content or "\n\n".join(partial)
            if not answer:
                raise ProviderError(EMPTY_ANSWER)
            return ChatResult(answer=answer, model=settings.openai_model, tools_used=tools_used)

        if step.content:
            partial.append(step.content)
        messages.append(step.to_message())
        for outcome in await dispatch_sequential(step.tool_calls, actor, allowed):
            tools_used.append(outcome.to_usage())
            messages.append(outcome.to_message())

    logger.info("Step budget of %s exhausted for user %s", settings.chat_max_steps, actor.user_id)
    answer = "\n\n".join(partial) or STEP_BUDGET_NOTICE
    return ChatResult(answer=answer, model=settings.openai_model, tools_used=tools_used)


def _event(name: str, data: dict[str, Any]) -> dict[str, Any]:
    return {"event": name, "data": data}


async def stream_chat(actor: Actor, raw_body: Any) -> AsyncIterator[dict[str, Any]]:
    """Stream one assistant turn as ``{"event", "data"}`` dicts.

    Provider failures before anything was produced propagate to the caller so
    the route can still answer with a plain JSON error. The ``meta`` event is
    held back until the provider has produced its first chunk for that reason.
    """
    level = get_access_level(actor)
    history = normalize_messages(raw_body)
    if not history:
        raise RequestValidationFailed("No messages provided.")
    _require_provider()

    settings = get_settings()
    allowed_tools = get_allowed_tools(actor)
    allowed = {tool.name: tool for tool in allowed_tools}
    toolset = build_toolset(allowed_tools)
    messages: list[dict[str, Any]] = [
        {"role": "system", "content": await build_system_prompt(actor, allowed_tools)},
        *history,
    ]

    meta = _event(
        "meta",
        {"model": settings.openai_model, "accessLevel": level.name, "toolCount": len(toolset)},
    )
    meta_sent = False
    tools_used: list[ToolUsage] = []
    partial: list[str] = []

    for step_number in range(1, settings.stream_max_steps + 1):
        step: Optional[LLMStep] = None
        async for chunk in stream_step(messages, toolset):
            if not meta_sent:
                meta_sent = True
                yield meta
            if isinstance(chunk, TextDelta):
                yield _event("delta", {"text": chunk.text})
            else:
                step = chunk

        if step is None:
            raise ProviderError("Model provider stream ended without a result")
        if step.content:
            partial.append(step.content)
        if not step.tool_calls:
            if not partial:
                raise ProviderError(EMPTY_ANSWER)
            yield _event(
                "done",
                {
                    "answer": "\n\n".join(partial),
                    "toolsUsed": [usage.to_dict() for usage in tools_used],
                    "model": settings.openai_model,
                    "steps": step_number,
                },
            )
            return

        messages.append(step.to_message())
        for call in step.tool_calls:
            yield _event("tool_call", {"id": call.id, "name": call.name, "args": call.arguments})

        outcomes = await dispatch_concurrent(step.tool_calls, actor, allowed, settings.max_batch_calls)
        for outcome in outcomes:
            tools_used.append(outcome.to_usage())
            messages.append(outcome.to_message())
            yield _event(
                "tool_result",
                {
                    "id": outcome.call.id,
                    "name": outcome.call.name,
                    "success": outcome.success,
                    "durationMs": outcome.duration_ms,
                    "result": outcome.payload,
                },
            )

    logger.info("Stream step budget of %s exhausted for user %s", settings.stream_max_steps, actor.user_id)
    yield _event(
        "done",
        {
            "answer": "\n\n".join(partial) or STEP_BUDGET_NOTICE,
            "toolsUsed": [usage.to_dict() for usage in tools_used],
            "model": settings.openai_model,
            "steps": settings.stream_max_steps,
            "stepBudgetExhausted": True,
        },
    )
