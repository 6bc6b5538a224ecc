from __future__ import annotations

import asyncio

import pytest

from assistant.services.actors import Consultant, Hrm8User
from assistant.services.errors import ToolExecutionError
from assistant.services.tool_executor import execute_tool
from assistant.services.tool_registry import get_tool_by_name
from assistant.tools import admin, analytics, consultant as consultant_tools, legacy, overview

OTHER_CONSULTANT = Consultant("c2", "tom@hrm8.com", "c2", "r2", "RECRUITER")


def run_tool(name: str, args: dict, actor):
    tool = get_tool_by_name(name)
    params = tool.parameter_schema.model_validate(args)
    return asyncio.run(tool.run(params, actor))


def test_consultant_quick_stats(demo_db, consultant) -> None:
    result = asyncio.run(execute_tool(get_tool_by_name("get_my_quick_stats"), {}, consultant))

    assert result.success
    assert result.data["summary"] == {
        "activeJobs": 2,
        "totalCandidatesInPipeline": 3,
        "interviewsThisWeek": 1,
        "pendingCommissionsAmount": 11800,
        "pendingCommissionsCount": 1,
        "recentPlacements": 1,
    }


def test_personal_tools_reject_non_consultants(demo_db, global_admin) -> None:
    assert run_tool("get_my_quick_stats", {}, global_admin) == consultant_tools.CONSULTANT_ONLY
    assert run_tool("get_my_companies", {}, global_admin) == consultant_tools.CONSULTANT_ONLY


def test_my_companies_and_candidates(demo_db, consultant) -> None:
    companies = run_tool("get_my_companies", {}, consultant)
    candidates = run_tool("get_my_candidates", {"status": "INTERVIEW"}, consultant)

    assert [row["companyName"] for row in companies["companies"]] == ["Acme Robotics"]
    assert companies["companies"][0]["activeJobs"] == 2
    assert companies["companies"][0]["placements"] == 1
    assert [row["candidateName"] for row in candidates["candidates"]] == ["Alice Nguyen"]


def test_daily_briefing_lists_upcoming_work(demo_db, consultant) -> None:
    briefing = run_tool("get_my_daily_briefing", {}, consultant)

    assert briefing["summary"]["assignedJobsCount"] == 2
    assert briefing["upcomingInterviews"][0]["candidateName"] == "Alice Nguyen"
    assert briefing["summary"]["monthlyCommissionsAmount"] == 11800


def test_consultant_performance_for_self_and_admin(demo_db, consultant, global_admin) -> None:
    own = run_tool("get_consultant_performance", {}, consultant)
    admin_view = run_tool("get_consultant_performance", {"consultantQuery": "tom@hrm8.com"}, global_admin)

    assert own["consultant"]["name"] == "Priya Shah"
    assert own["assignments"]["total"] == 2
    assert own["commissions"]["commissionAmount"] == 15800
    assert admin_view["consultant"]["id"] == "c2"


def test_commission_details(demo_db, consultant) -> None:
    result = run_tool("get_consultant_commission", {"status": "PENDING"}, consultant)

    assert [row["id"] for row in result["commissions"]] == ["cm-1"]
    assert result["withdrawals"][0]["amount"] == 2000
    assert result["summary"]["totalEarned"] == 15800


def test_job_status_is_company_scoped(demo_db, company_admin) -> None:
    found = run_tool("get_job_status", {"jobQuery": "acme-001"}, company_admin)
    by_title = run_tool("get_job_status", {"jobQuery": "robotics engineer"}, company_admin)
    other_company = run_tool("get_job_status", {"jobQuery": "BLUE-001"}, company_admin)

    assert found["job"]["id"] == "j1"
    assert found["job"]["applicantsCount"] == 2
    assert by_title["job"]["id"] == "j1"
    assert other_company["found"] is False


def test_job_status_is_region_scoped(demo_db, regional_admin) -> None:
    assert run_tool("get_job_status", {"jobQuery": "BLUE-001"}, regional_admin)["found"] is True
    assert run_tool("get_job_status", {"jobQuery": "KIWI-001"}, regional_admin)["found"] is False


def test_candidate_status_outside_scope(demo_db, company_admin) -> None:
    result = run_tool("get_candidate_status", {"candidateQuery": "Emma Wilson"}, company_admin)

    assert result == {"found": False, "reason": "Candidate exists but is not in your company scope."}


def test_pipeline_summary_and_company_overview(demo_db, company_admin) -> None:
    pipeline = run_tool("get_job_pipeline_summary", {"jobQuery": "ACME-002"}, company_admin)
    overview_result = run_tool("get_company_hiring_overview", {}, company_admin)

    assert pipeline["found"] is True
    assert overview_result["company"]["name"] == "Acme Robotics"
    assert {row["status"]: row["count"] for row in overview_result["jobsByStatus"]} == {"OPEN": 2}


def test_company_overview_requires_company_for_hrm8(demo_db, global_admin, regional_admin) -> None:
    with pytest.raises(ToolExecutionError):
        run_tool("get_company_hiring_overview", {}, global_admin)
    with pytest.raises(ToolExecutionError):
        run_tool("get_company_hiring_overview", {"companyId": "co-1"}, regional_admin)

    assert run_tool("get_company_hiring_overview", {"companyId": "co-2"}, global_admin)["found"] is True


def test_candidate_overview_and_redaction(demo_db, company_admin, company_user) -> None:
    raw = run_tool("get_candidate_complete_overview", {"candidateQuery": "Chloe Martin"}, company_admin)
    redacted = asyncio.run(
        execute_tool(get_tool_by_name("get_candidate_complete_overview"), {"candidateQuery": "Chloe Martin"}, company_user)
    )

    assert raw["offers"][0]["offerAmount"] == 125000
    assert raw["summary"]["offersReceived"] == 1
    assert "offerAmount" not in redacted.data["offers"][0]


def test_candidate_overview_hides_other_regions(demo_db) -> None:
    r2_admin = Hrm8User("h-2", "riley@hrm8.com", "REGIONAL_LICENSEE", assigned_region_ids=("r2",))

    result = run_tool("get_candidate_complete_overview", {"candidateQuery": "cand-3"}, r2_admin)

    assert result["found"] is False


def test_job_dashboard(demo_db, consultant) -> None:
    dashboard = run_tool("get_job_complete_dashboard", {"jobQuery": "ACME-002"}, consultant)
    foreign = run_tool("get_job_complete_dashboard", {"jobQuery": "ACME-002"}, OTHER_CONSULTANT)

    assert dashboard["job"]["title"] == "Product Designer"
    assert dashboard["pipeline"]["totalApplications"] == 2
    assert dashboard["analytics"]["hiredCount"] == 1
    assert foreign["found"] is False


def test_hiring_funnel_for_company_user(demo_db, company_admin) -> None:
    result = run_tool("get_hiring_funnel_analytics", {"scope": "company"}, company_admin)

    assert result["metrics"]["totalApplications"] == 4
    assert result["metrics"]["hiredCount"] == 1


def test_hiring_funnel_requires_identifier(demo_db, global_admin) -> None:
    result = run_tool("get_hiring_funnel_analytics", {"scope": "job"}, global_admin)

    assert result["found"] is False


def test_regional_performance_defaults_to_first_region(demo_db, regional_admin) -> None:
    result = run_tool("get_regional_performance", {}, regional_admin)
    outside = run_tool("get_regional_performance", {"regionId": "r3"}, regional_admin)

    assert result["region"]["id"] == "r1"
    assert result["metrics"] == {
        "revenue": 15800,
        "totalJobs": 2,
        "totalPlacements": 1,
        "activeConsultants": 1,
    }
    assert outside["found"] is False


def test_interview_and_offer_lookups(demo_db, consultant) -> None:
    interviews = run_tool("get_interview_details", {"candidateQuery": "Alice"}, consultant)
    offers = run_tool("get_offer_status", {"candidateQuery": "chloe.martin@example.com"}, consultant)
    hint = run_tool("get_offer_status", {}, consultant)
    foreign = run_tool("get_offer_status", {"candidateQuery": "cand-3"}, OTHER_CONSULTANT)

    assert [row["type"] for row in interviews["interviews"]] == ["VIDEO"]
    assert offers["offers"][0]["consultantId"] == "c1"
    assert hint == analytics.NEED_APPLICATION_HINT
    assert foreign == analytics.NO_APPLICATIONS


def test_lead_pipeline_for_consultant(demo_db, consultant, regional_admin) -> None:
    own = run_tool("get_lead_pipeline", {}, consultant)
    outside = run_tool("get_lead_pipeline", {"regionId": "r3"}, regional_admin)

    assert {row["id"] for row in own["leads"]} == {"l-1", "l-2"}
    assert own["conversion"]["conversionRate"] == 0.5
    assert outside["found"] is False


def test_company_financial_summary(demo_db, company_admin, global_admin) -> None:
    own = run_tool("get_company_financial_summary", {}, company_admin)
    missing = run_tool("get_company_financial_summary", {}, global_admin)

    assert own["totalRevenue"] == 5000
    assert own["outstandingBalance"] == 3000
    assert len(own["bills"]) == 2
    assert missing["found"] is False


def test_activity_feed_checks_entity_scope(demo_db, company_admin, consultant) -> None:
    job_feed = run_tool("get_activity_feed", {"scope": "job", "identifier": "j1"}, company_admin)
    other_company = run_tool("get_activity_feed", {"scope": "company", "identifier": "co-2"}, company_admin)
    other_consultant = run_tool("get_activity_feed", {"scope": "consultant", "identifier": "c2"}, consultant)

    assert job_feed["found"] is True
    assert len(job_feed["activities"]) == 1
    assert other_company["found"] is False
    assert other_consultant["found"] is False


def test_search_consultants_respects_region(demo_db, regional_admin) -> None:
    found = run_tool("search_consultants", {"query": "tom"}, regional_admin)
    outside = run_tool("search_consultants", {"query": "aroha"}, regional_admin)
    wrong_region = run_tool("search_consultants", {"query": "aroha", "regionId": "r3"}, regional_admin)

    assert [row["id"] for row in found["consultants"]] == ["c2"]
    assert outside["total"] == 0
    assert wrong_region["found"] is False


def test_search_candidates_only_returns_scoped_applications(demo_db, company_user) -> None:
    result = run_tool("search_candidates_by_name", {"query": "alice"}, company_user)

    assert result["total"] == 1
    assert [app["jobCode"] for app in result["candidates"][0]["recentApplications"]] == ["ACME-001"]


def test_recent_audit_logs_show_tool_executions(demo_db, consultant, global_admin) -> None:
    asyncio.run(execute_tool(get_tool_by_name("get_consultant_commission"), {}, consultant))

    result = run_tool("get_recent_audit_logs", {"entityType": "AI_TOOL_EXECUTION"}, global_admin)

    assert result["logs"][0]["entityId"] == "get_consultant_commission"
    assert result["logs"][0]["changes"]["args"] == "[REDACTED]"


def test_revenue_analytics_and_sharing(demo_db, global_admin, regional_admin) -> None:
    result = run_tool("get_revenue_analytics", {"timeRange": "ALL_TIME"}, global_admin)
    regional = run_tool("get_revenue_analytics", {"timeRange": "ALL_TIME"}, regional_admin)

    assert result["summary"] == {"totalRevenue": 26800, "totalCommissions": 4}
    # r3 has no licensee and falls back to the default share
    assert result["revenueSharing"]["licenseeShare"] == pytest.approx(21440)
    assert regional["summary"]["totalRevenue"] == 21800
    assert result["companyBreakdown"][0]["companyName"] == "Acme Robotics"


def test_licensee_leaderboard_is_global_only(demo_db, global_admin, regional_admin) -> None:
    board = run_tool("get_licensee_leaderboard", {"timeRange": "ALL_TIME", "metric": "PLACEMENTS"}, global_admin)
    denied = run_tool("get_licensee_leaderboard", {}, regional_admin)

    assert board["leaderboard"][0]["regionId"] == "r1"
    assert board["leaderboard"][0]["placementCount"] == 2
    assert denied["found"] is False


def test_period_start_boundaries() -> None:
    from datetime import datetime, timezone

    now = datetime(2026, 5, 14, 15, 30, tzinfo=timezone.utc)

    assert admin.period_start("THIS_MONTH", now) == datetime(2026, 5, 1, tzinfo=timezone.utc)
    assert admin.period_start("THIS_QUARTER", now) == datetime(2026, 4, 1, tzinfo=timezone.utc)
    assert admin.period_start("ALL_TIME", now) is None


def test_argument_models_reject_unknown_fields() -> None:
    with pytest.raises(ValueError):
        legacy.JobStatusArgs.model_validate({"jobQuery": "ACME-001", "extra": True})
    with pytest.raises(ValueError):
        overview.CandidateOverviewArgs.model_validate({"candidateQuery": "x"})
