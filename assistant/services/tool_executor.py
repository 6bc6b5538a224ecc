"""Single and batched tool execution.

This is the only place tool exceptions are caught. Every outcome leaves here
as a ``ToolExecutionResult``; failures carry ``error`` and never ``data``.
"""
from __future__ import annotations

import asyncio
import logging
import time
from contextlib import nullcontext
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from assistant.services.access_control import can_use_tool, create_audit_log, redact_sensitive_data
from assistant.services.actors import Actor
from assistant.services.errors import AssistantError, ToolArgumentError
from assistant.services.tool_definition import DataSensitivity, ToolDefinition

logger = logging.getLogger(__name__)

MAX_BATCH_CALLS = 8
EXECUTE_TOOL_BATCH = "execute_tool_batch"
AUDITED_SENSITIVITIES = frozenset({DataSensitivity.HIGH, DataSensitivity.CRITICAL})


@dataclass
class ToolExecutionResult:
    success: bool
    duration_ms: int
    data: Any = None
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"success": self.success, "durationMs": self.duration_ms}
        if self.success:
            payload["data"] = self.data
        else:
            payload["error"] = self.error
        return payload


@dataclass
class BatchCallResult:
    tool_name: str
    args: dict[str, Any]
    result: ToolExecutionResult

    def to_dict(self) -> dict[str, Any]:
        return {"toolName": self.tool_name, "args": self.args, "result": self.result.to_dict()}


@dataclass
class BatchExecutionResult:
    success: bool
    duration_ms: int
    calls: list[BatchCallResult] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "durationMs": self.duration_ms,
            "calls": [call.to_dict() for call in self.calls],
        }


class BatchCall(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    tool_name: str = Field(min_length=1)
    args: dict[str, Any] = Field(default_factory=dict)


class ToolBatchRequest(BaseModel):
    calls: list[BatchCall] = Field(min_length=1, max_length=MAX_BATCH_CALLS)


EXECUTE_TOOL_BATCH_SPEC: dict[str, Any] = {
    "type": "function",
    "function": {
        "name": EXECUTE_TOOL_BATCH,
        "description": (
            "Execute several independent read-only tool calls in parallel. Use this when the user asks for "
            f"information that needs more than one tool. Provide between 1 and {MAX_BATCH_CALLS} calls."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "calls": {
                    "type": "array",
                    "minItems": 1,
                    "maxItems": MAX_BATCH_CALLS,
                    "items": {
                        "type": "object",
                        "properties": {
                            "toolName": {"type": "string", "description": "Name of an available tool"},
                            "args": {"type": "object", "description": "Arguments for that tool"},
                        },
                        "required": ["toolName"],
                    },
                }
            },
            "required": ["calls"],
        },
    },
}


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


def format_validation_error(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(item) for item in error.get("loc", ())) or "arguments"
        parts.append(f"{location}: {error.get('msg', 'invalid value')}")
    return "; ".join(parts)


def not_found_result(tool_name: str) -> ToolExecutionResult:
    return ToolExecutionResult(
        success=False,
        duration_ms=0,
        error=f"Tool '{tool_name}' not found or not allowed for your role.",
    )


async def _run_tool(tool: ToolDefinition, args: Any, actor: Actor) -> tuple[bool, Any]:
    if not isinstance(args, dict):
        return False, f"Invalid arguments for {tool.name}: expected an object."
    try:
        params = tool.parameter_schema.model_validate(args)
    except ValidationError as exc:
        return False, f"Invalid arguments for {tool.name}: {format_validation_error(exc)}"

    try:
        data = await tool.run(params, actor)
    except AssistantError as exc:
        logger.warning("Tool %s failed for user %s: %s", tool.name, actor.user_id, exc.message)
        return False, exc.message
    except Exception as exc:
        logger.exception("Tool %s raised unexpectedly for user %s", tool.name, actor.user_id)
        return False, str(exc) or exc.__class__.__name__

    return True, redact_sensitive_data(actor, data, tool.data_sensitivity)


async def execute_tool(tool: ToolDefinition, args: Any, actor: Actor) -> ToolExecutionResult:
    started = time.monotonic()

    if not can_use_tool(actor, tool):
        logger.warning("Access denied: user %s (%s) attempted tool %s", actor.user_id, actor.actor_type, tool.name)
        return ToolExecutionResult(
            success=False,
            duration_ms=_elapsed_ms(started),
            error=f"Access denied: your access level is not permitted to use {tool.name}.",
        )

    success, outcome = await _run_tool(tool, args, actor)

    if tool.data_sensitivity in AUDITED_SENSITIVITIES:
        audit_args = args if isinstance(args, dict) else {"raw": args}
        await create_audit_log(actor, tool.name, audit_args, success, tool.data_sensitivity)

    if success:
        return ToolExecutionResult(success=True, duration_ms=_elapsed_ms(started), data=outcome)
    return ToolExecutionResult(success=False, duration_ms=_elapsed_ms(started), error=outcome)


def parse_batch_request(payload: Any) -> ToolBatchRequest:
    try:
        return ToolBatchRequest.model_validate(payload)
    except ValidationError as exc:
        raise ToolArgumentError(f"Invalid {EXECUTE_TOOL_BATCH} payload: {format_validation_error(exc)}") from exc


async def execute_tool_batch(
    payload: Any,
    actor: Actor,
    allowed_tools: Iterable[ToolDefinition],
    limiter: Optional[asyncio.Semaphore] = None,
) -> BatchExecutionResult:
    """Run up to MAX_BATCH_CALLS calls concurrently.

    ``limiter`` caps how many tools run at once when the caller is already
    running other calls in parallel.
    """
    started = time.monotonic()
    request = parse_batch_request(payload)
    allowed = {tool.name: tool for tool in allowed_tools}

    async def run_call(call: BatchCall) -> ToolExecutionResult:
        tool = allowed.get(call.tool_name)
        if tool is None:
            return not_found_result(call.tool_name)
        gate = limiter if limiter is not None else nullcontext()
        async with gate:
            return await execute_tool(tool, call.args, actor)

    results = await asyncio.gather(*(run_call(call) for call in request.calls))
    calls = [
        BatchCallResult(tool_name=call.tool_name, args=call.args, result=result)
        for call, result in zip(request.calls, results)
    ]
    return BatchExecutionResult(
        success=any(result.success for result in results),
        duration_ms=_elapsed_ms(started),
        calls=calls,
    )
