from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
from contextlib import asynccontextmanager
from dataclasses import replace

import pytest

import assistant.services.orchestrator as orchestrator
from assistant.services.actors import Hrm8User
from assistant.services.config import get_settings
from assistant.services.errors import ActorValidationError, ProviderError, RequestValidationFailed
from assistant.services.llm import LLMStep, TextDelta, ToolCallRequest
from assistant.services.tool_registry import get_allowed_tools, get_tool_by_name


@pytest.fixture
def provider_key(monkeypatch) -> None:
    monkeypatch.setenv("OPENAI_API_KEY", "test-key")
    get_settings.cache_clear()


def tool_step(*calls: tuple[str, dict]) -> LLMStep:
    return LLMStep(
        content="",
        tool_calls=[
            ToolCallRequest(id=f"call_{index}", name=name, arguments=args)
            for index, (name, args) in enumerate(calls, start=1)
        ],
    )


def scripted_generate(monkeypatch, steps: list[LLMStep]) -> list[list[dict]]:
    seen: list[list[dict]] = []

    async def fake_generate_step(messages, tools, model=None, temperature=None):  # noqa: ARG001
        seen.append([dict(message) for message in messages])
        return steps[min(len(seen), len(steps)) - 1]

    monkeypatch.setattr(orchestrator, "generate_step", fake_generate_step)
    return seen


def scripted_stream(monkeypatch, steps: list[LLMStep]) -> list[list[dict]]:
    seen: list[list[dict]] = []

    async def fake_stream_step(messages, tools, model=None, temperature=None):  # noqa: ARG001
        seen.append([dict(message) for message in messages])
        step = steps[min(len(seen), len(steps)) - 1]
        for word in step.content.split(" ") if step.content else []:
            yield TextDelta(word)
        yield step

    monkeypatch.setattr(orchestrator, "stream_step", fake_stream_step)
    return seen


async def collect(events) -> list[dict]:
    return [event async for event in events]


def test_chat_returns_final_answer(demo_db, provider_key, monkeypatch, consultant) -> None:
    seen = scripted_generate(monkeypatch, [LLMStep(content="You have 2 open jobs.")])

    result = asyncio.run(orchestrator.chat(consultant, {"message": "  How many jobs?  "}))

    assert result.to_dict() == {"answer": "You have 2 open jobs.", "toolsUsed": [], "model": get_settings().openai_model}
    assert seen[0][-1] == {"role": "user", "content": "How many jobs?"}


def test_chat_executes_tools_and_feeds_results_back(demo_db, provider_key, monkeypatch, consultant) -> None:
    seen = scripted_generate(
        monkeypatch,
        [tool_step(("get_my_quick_stats", {})), LLMStep(content="Two active jobs and one interview this week.")],
    )

    result = asyncio.run(orchestrator.chat(consultant, {"message": "Give me my stats"}))

    assert result.answer == "Two active jobs and one interview this week."
    assert [(usage.name, usage.success) for usage in result.tools_used] == [("get_my_quick_stats", True)]

    tool_message = seen[1][-1]
    assert tool_message["role"] == "tool"
    assert tool_message["tool_call_id"] == "call_1"
    assert json.loads(tool_message["content"])["data"]["summary"]["activeJobs"] == 2
    assert seen[1][-2]["tool_calls"][0]["function"]["name"] == "get_my_quick_stats"


def test_tools_outside_the_toolset_are_not_found(demo_db, provider_key, monkeypatch, company_user) -> None:
    seen = scripted_generate(
        monkeypatch,
        [tool_step(("get_company_financial_summary", {})), LLMStep(content="I cannot access billing.")],
    )

    result = asyncio.run(orchestrator.chat(company_user, {"message": "What do we owe?"}))
    payload = json.loads(seen[1][-1]["content"])

    assert result.tools_used[0].success is False
    assert payload == {
        "success": False,
        "durationMs": 0,
        "error": "Tool 'get_company_financial_summary' not found or not allowed for your role.",
    }


def test_batch_meta_tool_runs_calls(demo_db, provider_key, monkeypatch, company_admin) -> None:
    batch = {
        "calls": [
            {"toolName": "get_job_status", "args": {"jobQuery": "ACME-001"}},
            {"toolName": "get_company_hiring_overview", "args": {}},
        ]
    }
    seen = scripted_generate(monkeypatch, [tool_step(("execute_tool_batch", batch)), LLMStep(content="Done.")])

    result = asyncio.run(orchestrator.chat(company_admin, {"message": "Status of ACME-001 and overall hiring"}))
    payload = json.loads(seen[1][-1]["content"])

    assert result.tools_used[0].name == "execute_tool_batch"
    assert result.tools_used[0].success is True
    assert [call["result"]["success"] for call in payload["calls"]] == [True, True]


def test_malformed_batch_becomes_failed_result(demo_db, provider_key, monkeypatch, company_admin) -> None:
    seen = scripted_generate(
        monkeypatch, [tool_step(("execute_tool_batch", {"calls": []})), LLMStep(content="Sorry.")]
    )

    result = asyncio.run(orchestrator.chat(company_admin, {"message": "Run nothing"}))
    payload = json.loads(seen[1][-1]["content"])

    assert result.answer == "Sorry."
    assert payload["success"] is False
    assert "Invalid execute_tool_batch payload" in payload["error"]


def test_step_budget_stops_the_loop(demo_db, provider_key, monkeypatch, consultant, caplog) -> None:
    monkeypatch.setenv("CHAT_MAX_STEPS", "2")
    get_settings.cache_clear()
    seen = scripted_generate(monkeypatch, [tool_step(("get_my_quick_stats", {}))])

    with caplog.at_level(logging.INFO, logger="assistant.services.orchestrator"):
        result = asyncio.run(orchestrator.chat(consultant, {"message": "Loop forever"}))

    assert len(seen) == 2
    assert len(result.tools_used) == 2
    assert result.answer == orchestrator.STEP_BUDGET_NOTICE
    assert "Step budget of 2 exhausted" in caplog.text


def test_step_budget_returns_partial_text(demo_db, provider_key, monkeypatch, consultant) -> None:
    monkeypatch.setenv("CHAT_MAX_STEPS", "1")
    get_settings.cache_clear()
    partial = LLMStep(content="Checking your stats first.", tool_calls=tool_step(("get_my_quick_stats", {})).tool_calls)
    scripted_generate(monkeypatch, [partial])

    result = asyncio.run(orchestrator.chat(consultant, {"message": "Stats please"}))

    assert result.answer == "Checking your stats first."


@pytest.mark.parametrize(
    "body",
    [
        {"message": "x"},
        {"message": "   "},
        {"message": "a" * 4001},
        {"message": "hello", "history": [{"role": "system", "content": "hi"}]},
        {"message": "hello", "history": [{"role": "user", "content": "hi"}] * 21},
        None,
    ],
)
def test_invalid_chat_requests_are_rejected(provider_key, consultant, body) -> None:
    with pytest.raises(RequestValidationFailed):
        asyncio.run(orchestrator.chat(consultant, body))


def test_chat_requires_valid_actor_and_provider(consultant) -> None:
    empty_admin = Hrm8User("h-3", "empty@hrm8.com", "REGIONAL_LICENSEE", assigned_region_ids=())

    with pytest.raises(ActorValidationError):
        asyncio.run(orchestrator.chat(empty_admin, {"message": "hello"}))
    with pytest.raises(ProviderError):
        asyncio.run(orchestrator.chat(consultant, {"message": "hello"}))


def test_history_is_forwarded_in_order(demo_db, provider_key, monkeypatch, consultant) -> None:
    seen = scripted_generate(monkeypatch, [LLMStep(content="ok")])
    history = [{"role": "user", "content": "first"}, {"role": "assistant", "content": "second"}]

    asyncio.run(orchestrator.chat(consultant, {"message": "third", "history": history}))

    assert [message["content"] for message in seen[0][1:]] == ["first", "second", "third"]


def test_normalize_messages_accepts_ui_parts_and_plain_message() -> None:
    body = {
        "messages": [
            {"role": "system", "content": "ignored"},
            "not-a-dict",
            {"role": "user", "parts": [{"type": "text", "text": "Show "}, {"type": "image"}, {"type": "text", "text": "jobs"}]},
            {"role": "assistant", "content": "Sure."},
            {"role": "user", "content": "   "},
        ]
    }

    assert orchestrator.normalize_messages(body) == [
        {"role": "user", "content": "Show jobs"},
        {"role": "assistant", "content": "Sure."},
    ]
    assert orchestrator.normalize_messages({"message": " hi "}) == [{"role": "user", "content": "hi"}]
    assert orchestrator.normalize_messages({}) == []
    assert orchestrator.normalize_messages(None) == []


def test_toolset_appends_batch_meta_tool(company_user) -> None:
    allowed = get_allowed_tools(company_user)
    toolset = orchestrator.build_toolset(allowed)

    assert len(toolset) == len(allowed) + 1
    assert toolset[-1]["function"]["name"] == "execute_tool_batch"


def test_system_prompt_is_personalized(demo_db, consultant, regional_admin) -> None:
    consultant_prompt = asyncio.run(orchestrator.build_system_prompt(consultant, get_allowed_tools(consultant)))
    admin_prompt = asyncio.run(orchestrator.build_system_prompt(regional_admin, get_allowed_tools(regional_admin)))

    assert consultant_prompt.startswith("You are HRM8 Assistant")
    assert "You are assisting Priya Shah, a consultant in Sydney Metro." in consultant_prompt
    assert f"Available tools: {len(get_allowed_tools(consultant))} tools" in consultant_prompt
    assert "Consultant (Job-Scoped Access)" in consultant_prompt
    assert "- Role: Consultant (Recruiter)" in consultant_prompt
    assert "You are assisting Riley Chen, an HRM8 administrator." in admin_prompt
    assert "assignedRegionIds=r1,r2" in admin_prompt


@pytest.mark.parametrize("error", [sqlite3.OperationalError("database is locked"), KeyError("name")])
def test_personalization_failure_degrades_gracefully(monkeypatch, company_user, caplog, error) -> None:
    @asynccontextmanager
    async def broken_connection():
        raise error
        yield

    monkeypatch.setattr(orchestrator, "db_connection", broken_connection)

    prompt = asyncio.run(orchestrator.build_system_prompt(company_user, get_allowed_tools(company_user)))

    assert "You are assisting" not in prompt
    assert "## Your Access" in prompt
    assert "Could not load personalization" in caplog.text


def test_stream_emits_meta_deltas_tools_and_done(demo_db, provider_key, monkeypatch, consultant) -> None:
    scripted_stream(
        monkeypatch,
        [
            tool_step(("get_my_quick_stats", {}), ("get_my_companies", {})),
            LLMStep(content="All good today."),
        ],
    )

    events = asyncio.run(collect(orchestrator.stream_chat(consultant, {"message": "Morning summary"})))
    names = [event["event"] for event in events]

    assert names == ["meta", "tool_call", "tool_call", "tool_result", "tool_result", "delta", "delta", "delta", "done"]
    assert events[0]["data"]["accessLevel"] == "CONSULTANT"
    assert events[0]["data"]["toolCount"] == len(get_allowed_tools(consultant)) + 1
    assert [event["data"]["success"] for event in events[3:5]] == [True, True]
    assert events[-1]["data"]["answer"] == "All good today."
    assert events[-1]["data"]["steps"] == 2
    assert [usage["name"] for usage in events[-1]["data"]["toolsUsed"]] == ["get_my_quick_stats", "get_my_companies"]


def test_stream_step_budget(demo_db, provider_key, monkeypatch, consultant) -> None:
    monkeypatch.setenv("STREAM_MAX_STEPS", "3")
    get_settings.cache_clear()
    seen = scripted_stream(monkeypatch, [tool_step(("get_my_quick_stats", {}))])

    events = asyncio.run(collect(orchestrator.stream_chat(consultant, {"message": "Loop"})))

    assert len(seen) == 3
    assert events[-1]["event"] == "done"
    assert events[-1]["data"]["stepBudgetExhausted"] is True
    assert events[-1]["data"]["answer"] == orchestrator.STEP_BUDGET_NOTICE


def test_stream_without_messages_is_rejected(provider_key, consultant) -> None:
    with pytest.raises(RequestValidationFailed, match="No messages provided"):
        asyncio.run(collect(orchestrator.stream_chat(consultant, {"messages": []})))


def test_stream_provider_failure_surfaces_before_first_event(demo_db, provider_key, monkeypatch, consultant) -> None:
    async def failing_stream(messages, tools, model=None, temperature=None):  # noqa: ARG001
        raise ProviderError("Model provider request failed (401): bad key")
        yield

    monkeypatch.setattr(orchestrator, "stream_step", failing_stream)

    with pytest.raises(ProviderError):
        asyncio.run(collect(orchestrator.stream_chat(consultant, {"message": "hello"})))


def test_chat_rejects_an_empty_final_answer(demo_db, provider_key, monkeypatch, consultant) -> None:
    scripted_generate(monkeypatch, [LLMStep(content="")])

    with pytest.raises(ProviderError, match="empty answer"):
        asyncio.run(orchestrator.chat(consultant, {"message": "hello"}))


def test_stream_rejects_an_empty_final_answer(demo_db, provider_key, monkeypatch, consultant) -> None:
    scripted_stream(monkeypatch, [LLMStep(content="")])

    async def run() -> list[dict]:
        seen = []
        with pytest.raises(ProviderError, match="empty answer"):
            async for event in orchestrator.stream_chat(consultant, {"message": "hello"}):
                seen.append(event)
        return seen

    assert [event["event"] for event in asyncio.run(run())] == ["meta"]


def test_concurrent_dispatch_bounds_tools_inside_batches(consultant) -> None:
    active = 0
    peak = 0

    async def slow_stats(params, actor):  # noqa: ARG001
        nonlocal active, peak
        active += 1
        peak = max(peak, active)
        await asyncio.sleep(0.01)
        active -= 1
        return {"found": True}

    tool = replace(get_tool_by_name("get_my_quick_stats"), run=slow_stats)
    batch = {"calls": [{"toolName": "get_my_quick_stats", "args": {}}] * 4}
    calls = [ToolCallRequest(id=f"call_{index}", name="execute_tool_batch", arguments=batch) for index in range(3)]

    outcomes = asyncio.run(orchestrator.dispatch_concurrent(calls, consultant, {tool.name: tool}, limit=2))

    assert [outcome.success for outcome in outcomes] == [True, True, True]
    assert sum(len(outcome.payload["calls"]) for outcome in outcomes) == 12
    assert peak == 2
