from __future__ import annotations

import asyncio
import sqlite3
from dataclasses import replace

import pytest

from assistant.services.actors import Hrm8User
from assistant.services.errors import ToolArgumentError, ToolExecutionError
from assistant.services.tool_executor import execute_tool, execute_tool_batch
from assistant.services.tool_registry import get_allowed_tools, get_tool_by_name


def _recording_tool(name: str, calls: list, result=None, error: Exception = None):
    async def run(params, actor):
        calls.append((params, actor))
        if error is not None:
            raise error
        return result

    return replace(get_tool_by_name(name), run=run)


def test_denied_tool_never_runs(company_user) -> None:
    calls: list = []
    tool = _recording_tool("get_company_financial_summary", calls, result={"found": True})

    result = asyncio.run(execute_tool(tool, {}, company_user))

    assert calls == []
    assert not result.success
    assert result.error.startswith("Access denied")
    assert "data" not in result.to_dict()


def test_unknown_tool_in_batch_is_reported(consultant) -> None:
    result = asyncio.run(execute_tool_batch({"calls": [{"toolName": "unknown_tool", "args": {}}]}, consultant, []))
    payload = result.to_dict()

    assert payload["success"] is False
    assert payload["calls"][0]["toolName"] == "unknown_tool"
    assert payload["calls"][0]["result"]["success"] is False
    assert "not found or not allowed" in payload["calls"][0]["result"]["error"]


def test_batch_mixes_known_and_unknown_calls(company_admin) -> None:
    calls: list = []
    tool = _recording_tool("get_job_status", calls, result={"found": True})
    batch = {
        "calls": [
            {"toolName": "get_job_status", "args": {"jobQuery": "ACME-001"}},
            {"toolName": "get_licensee_leaderboard", "args": {}},
            {"toolName": "get_job_status", "args": {"jobQuery": "ACME-002"}},
            {"toolName": "nope", "args": {}},
        ]
    }

    result = asyncio.run(execute_tool_batch(batch, company_admin, [tool]))

    assert result.success is True
    assert [call.result.success for call in result.calls] == [True, False, True, False]
    assert [params.job_query for params, _ in calls] == ["ACME-001", "ACME-002"]


@pytest.mark.parametrize(
    "payload",
    [
        {"calls": []},
        {"calls": [{"args": {}}]},
        {"calls": [{"toolName": "get_job_status"}] * 9},
        "not-a-batch",
    ],
)
def test_malformed_batch_payload_raises(consultant, payload) -> None:
    with pytest.raises(ToolArgumentError):
        asyncio.run(execute_tool_batch(payload, consultant, get_allowed_tools(consultant)))


def test_invalid_arguments_fail_without_running(company_admin) -> None:
    calls: list = []
    tool = _recording_tool("get_job_status", calls, result={"found": True})

    missing = asyncio.run(execute_tool(tool, {}, company_admin))
    extra = asyncio.run(execute_tool(tool, {"jobQuery": "ACME-001", "bogus": 1}, company_admin))
    not_object = asyncio.run(execute_tool(tool, ["ACME-001"], company_admin))

    assert calls == []
    for result in (missing, extra, not_object):
        assert not result.success
        assert result.error.startswith("Invalid arguments for get_job_status")
        assert result.data is None


def test_tool_exceptions_are_contained(company_admin) -> None:
    calls: list = []
    failing = _recording_tool("get_job_status", calls, error=ToolExecutionError("Company ID required."))
    crashing = _recording_tool("get_job_status", calls, error=RuntimeError("boom"))

    failed = asyncio.run(execute_tool(failing, {"jobQuery": "ACME-001"}, company_admin))
    crashed = asyncio.run(execute_tool(crashing, {"jobQuery": "ACME-001"}, company_admin))

    assert failed.to_dict() == {"success": False, "durationMs": failed.duration_ms, "error": "Company ID required."}
    assert not crashed.success and crashed.error == "boom"


def test_results_are_redacted_for_company_users(company_user) -> None:
    calls: list = []
    tool = _recording_tool(
        "get_candidate_complete_overview",
        calls,
        result={"found": True, "offers": [{"status": "SENT", "offerAmount": 125000}]},
    )

    result = asyncio.run(execute_tool(tool, {"candidateQuery": "Chloe"}, company_user))

    assert result.success
    assert result.data == {"found": True, "offers": [{"status": "SENT"}]}


def test_sensitive_tools_write_audit_rows(demo_db, consultant, company_admin) -> None:
    quick_stats = get_tool_by_name("get_my_quick_stats")
    offer_status = get_tool_by_name("get_offer_status")
    job_status = get_tool_by_name("get_job_status")

    asyncio.run(execute_tool(quick_stats, {}, consultant))
    asyncio.run(execute_tool(offer_status, {"candidateQuery": "Chloe Martin"}, consultant))
    asyncio.run(execute_tool(job_status, {"jobQuery": "ACME-001"}, company_admin))

    conn = sqlite3.connect(demo_db)
    audited = [row[0] for row in conn.execute("SELECT entity_id FROM audit_logs ORDER BY id")]
    conn.close()

    # MEDIUM tools are not audited
    assert audited == ["get_offer_status"]


def test_denied_calls_are_not_audited(demo_db, company_user) -> None:
    result = asyncio.run(execute_tool(get_tool_by_name("get_offer_status"), {}, company_user))

    conn = sqlite3.connect(demo_db)
    count = conn.execute("SELECT COUNT(*) FROM audit_logs").fetchone()[0]
    conn.close()

    assert not result.success
    assert count == 0


@pytest.mark.parametrize(
    "tool_name, args",
    [
        ("search_consultants", {"query": "Priya"}),
        ("search_consultants", {"query": "Priya", "regionId": "r1"}),
        ("get_lead_pipeline", {}),
        ("get_lead_pipeline", {"regionId": "r1"}),
        ("get_revenue_analytics", {"timeRange": "ALL_TIME"}),
        ("get_regional_performance", {}),
        ("get_candidate_complete_overview", {"candidateQuery": "Chloe"}),
    ],
)
def test_admin_without_regions_fails_instead_of_returning_nothing(demo_db, tool_name, args) -> None:
    empty_admin = Hrm8User("h-3", "empty@hrm8.com", "REGIONAL_LICENSEE", assigned_region_ids=())

    result = asyncio.run(execute_tool(get_tool_by_name(tool_name), args, empty_admin))

    assert result.success is False
    assert "assigned regions" in result.error
    assert result.data is None
