from __future__ import annotations

from typing import Optional

from assistant.services.actors import AccessLevel, Actor, derive_access_level
from assistant.services.errors import DuplicateToolError
from assistant.services.tool_definition import (
    ALL_LEVELS,
    HRM8_ADMINS,
    HRM8_AND_CONSULTANTS,
    DataSensitivity,
    ToolDefinition,
)
from assistant.tools import admin, analytics, consultant, legacy, overview

LOW = DataSensitivity.LOW
MEDIUM = DataSensitivity.MEDIUM
HIGH = DataSensitivity.HIGH
CRITICAL = DataSensitivity.CRITICAL

CONSULTANT_ONLY = frozenset({AccessLevel.CONSULTANT})
GLOBAL_ONLY = frozenset({AccessLevel.GLOBAL_ADMIN})
ALL_BUT_COMPANY_USER = HRM8_AND_CONSULTANTS | {AccessLevel.COMPANY_ADMIN}
HRM8_AND_COMPANY_ADMIN = HRM8_ADMINS | {AccessLevel.COMPANY_ADMIN}


COMPOSITE_TOOLS = (
    ToolDefinition(
        "get_candidate_complete_overview",
        "Get comprehensive candidate overview including profile, applications, interviews, and offers in one "
        "call. Use this instead of making multiple separate calls for candidate data.",
        overview.CandidateOverviewArgs, ALL_LEVELS, HIGH, overview.get_candidate_complete_overview,
        requires_region_scope=True, requires_company_scope=True,
    ),
    ToolDefinition(
        "get_job_complete_dashboard",
        "Get comprehensive job dashboard with pipeline metrics, top candidates, upcoming interviews, pending "
        "offers, and analytics. Use this for complete job overview instead of multiple calls.",
        overview.JobDashboardArgs, ALL_LEVELS, MEDIUM, overview.get_job_complete_dashboard,
        requires_region_scope=True, requires_company_scope=True,
    ),
)

CONSULTANT_TOOLS = (
    ToolDefinition(
        "get_consultant_performance",
        "Get consultant performance metrics including job assignments, placements, commissions, and activity "
        "summary. Consultants can only view their own data.",
        consultant.ConsultantPerformanceArgs, HRM8_AND_CONSULTANTS, CRITICAL, consultant.get_consultant_performance,
        requires_region_scope=True,
    ),
    ToolDefinition(
        "get_consultant_commission",
        "Get consultant commission details including pending, approved, paid, and withdrawn amounts with "
        "historical data. Consultants can only view their own commissions.",
        consultant.ConsultantCommissionArgs, HRM8_AND_CONSULTANTS, CRITICAL, consultant.get_consultant_commission,
        requires_region_scope=True,
    ),
    ToolDefinition(
        "get_my_daily_briefing",
        "Get personalized daily briefing for consultants with assigned jobs, upcoming interviews, pending "
        "applications, and recent commission summary. Only for consultants.",
        consultant.EmptyArgs, CONSULTANT_ONLY, MEDIUM, consultant.get_my_daily_briefing,
        requires_region_scope=True,
    ),
)

ANALYTICS_TOOLS = (
    ToolDefinition(
        "get_hiring_funnel_analytics",
        "Get hiring funnel analytics with stage-by-stage breakdown, conversion counts, and time-to-hire. "
        "Can be scoped to company, region, or specific job.",
        analytics.HiringFunnelArgs, ALL_BUT_COMPANY_USER, LOW, analytics.get_hiring_funnel_analytics,
        requires_region_scope=True, requires_company_scope=True,
    ),
    ToolDefinition(
        "get_regional_performance",
        "Get regional performance metrics including revenue, placements, active jobs, and consultant activity. "
        "Only for HRM8 users with regional or global admin access. If no regionId is provided, returns data "
        "for your first assigned region.",
        analytics.RegionalPerformanceArgs, HRM8_ADMINS, HIGH, analytics.get_regional_performance,
        requires_region_scope=True,
    ),
)

INTERVIEW_OFFER_TOOLS = (
    ToolDefinition(
        "get_interview_details",
        "Get interview schedules, feedback, and status for applications. Can search by application ID, job, "
        "or candidate.",
        analytics.ApplicationLookupArgs, ALL_LEVELS, MEDIUM, analytics.get_interview_details,
        requires_region_scope=True, requires_company_scope=True,
    ),
    ToolDefinition(
        "get_offer_status",
        "Get offer letter status and acceptance details. Can search by application ID, candidate, or job.",
        analytics.ApplicationLookupArgs, ALL_BUT_COMPANY_USER, CRITICAL, analytics.get_offer_status,
        requires_region_scope=True, requires_company_scope=True,
    ),
)

CRM_FINANCE_TOOLS = (
    ToolDefinition(
        "get_lead_pipeline",
        "Get lead pipeline with statuses and conversion metrics. Only available for HRM8 users and consultants.",
        analytics.LeadPipelineArgs, HRM8_AND_CONSULTANTS, MEDIUM, analytics.get_lead_pipeline,
        requires_region_scope=True,
    ),
    ToolDefinition(
        "get_company_financial_summary",
        "Get company financial summary including bills, paid revenue, and outstanding balance. Contains "
        "sensitive financial data.",
        analytics.CompanyFinancialArgs, HRM8_AND_COMPANY_ADMIN, CRITICAL, analytics.get_company_financial_summary,
        requires_region_scope=True, requires_company_scope=True,
    ),
)

ACTIVITY_TOOLS = (
    ToolDefinition(
        "get_activity_feed",
        "Get activity feed for jobs, candidates, companies, or consultants with filterable activity types.",
        analytics.ActivityFeedArgs, ALL_LEVELS, LOW, analytics.get_activity_feed,
        requires_region_scope=True, requires_company_scope=True,
    ),
)

PERSONAL_TOOLS = (
    ToolDefinition(
        "get_my_companies",
        "Get list of companies the consultant is currently working with, including active jobs count and "
        "pipeline stats.",
        consultant.MyCompaniesArgs, CONSULTANT_ONLY, MEDIUM, consultant.get_my_companies,
        requires_region_scope=True,
    ),
    ToolDefinition(
        "get_my_candidates",
        "Get list of candidates in the consultant's pipeline, with filtering by application status.",
        consultant.MyCandidatesArgs, CONSULTANT_ONLY, HIGH, consultant.get_my_candidates,
        requires_region_scope=True,
    ),
    ToolDefinition(
        "get_my_quick_stats",
        "Get dashboard summary for the consultant including active jobs, pipeline count, upcoming interviews, "
        "and pending commissions.",
        consultant.EmptyArgs, CONSULTANT_ONLY, MEDIUM, consultant.get_my_quick_stats,
        requires_region_scope=True,
    ),
)

ADMIN_SEARCH_TOOLS = (
    ToolDefinition(
        "search_consultants",
        "Search consultants by name, email, or region. Returns consultant details including ID, contact info, "
        "and status.",
        admin.SearchConsultantsArgs, HRM8_ADMINS, MEDIUM, admin.search_consultants,
    ),
    ToolDefinition(
        "search_candidates_by_name",
        "Search candidates by name or email across all accessible applications. Returns candidate details and "
        "recent applications.",
        admin.SearchCandidatesArgs, ALL_LEVELS, HIGH, admin.search_candidates_by_name,
        requires_region_scope=True, requires_company_scope=True,
    ),
)

ADMIN_MONITORING_TOOLS = (
    ToolDefinition(
        "get_recent_audit_logs",
        "Get recent audit logs for system activity monitoring. Shows entity changes, actions, and who performed "
        "them. Default limit of 5 entries.",
        admin.RecentAuditLogsArgs, HRM8_ADMINS, HIGH, admin.get_recent_audit_logs,
    ),
    ToolDefinition(
        "get_revenue_analytics",
        "Get revenue analytics including commission totals, revenue splits, and company-level breakdowns. "
        "Helps track financial performance.",
        admin.RevenueAnalyticsArgs, HRM8_ADMINS, HIGH, admin.get_revenue_analytics,
    ),
    ToolDefinition(
        "get_licensee_leaderboard",
        "Get leaderboard of top performing regional licensees/regions based on revenue, HRM8 share, or "
        "placements. Restricted to Global Admins.",
        admin.LicenseeLeaderboardArgs, GLOBAL_ONLY, HIGH, admin.get_licensee_leaderboard,
    ),
)

LEGACY_TOOLS = tuple(
    ToolDefinition(
        name, description, schema, ALL_LEVELS, MEDIUM, run,
        requires_region_scope=True, requires_company_scope=True,
    )
    for name, description, schema, run in (
        (
            "get_job_status",
            "Get status, applicants, and hiring progress for one job by ID, job code, or title.",
            legacy.JobStatusArgs, legacy.get_job_status,
        ),
        (
            "get_candidate_status",
            "Get a candidate's current status and latest application within your data scope.",
            legacy.CandidateStatusArgs, legacy.get_candidate_status,
        ),
        (
            "get_job_pipeline_summary",
            "Get stage and status counts plus the latest updates for one job's application pipeline.",
            legacy.JobPipelineSummaryArgs, legacy.get_job_pipeline_summary,
        ),
        (
            "get_company_hiring_overview",
            "Get a company's jobs and applications by status with its most recently updated jobs.",
            legacy.CompanyHiringOverviewArgs, legacy.get_company_hiring_overview,
        ),
    )
)


def build_registry(*groups: tuple[ToolDefinition, ...]) -> tuple[ToolDefinition, ...]:
    seen: set[str] = set()
    tools: list[ToolDefinition] = []
    for group in groups:
        for tool in group:
            if tool.name in seen:
                raise DuplicateToolError(f"Duplicate tool name in registry: {tool.name}")
            seen.add(tool.name)
            tools.append(tool)
    return tuple(tools)


TOOL_REGISTRY = build_registry(
    COMPOSITE_TOOLS,
    CONSULTANT_TOOLS,
    ANALYTICS_TOOLS,
    INTERVIEW_OFFER_TOOLS,
    CRM_FINANCE_TOOLS,
    ACTIVITY_TOOLS,
    PERSONAL_TOOLS,
    ADMIN_SEARCH_TOOLS,
    ADMIN_MONITORING_TOOLS,
    LEGACY_TOOLS,
)

BY_NAME = {tool.name: tool for tool in TOOL_REGISTRY}


def get_tool_by_name(name: str) -> Optional[ToolDefinition]:
    return BY_NAME.get(name)


def get_all_tool_names() -> list[str]:
    return [tool.name for tool in TOOL_REGISTRY]


def get_allowed_tools(actor: Actor) -> list[ToolDefinition]:
    level = derive_access_level(actor)
    return [tool for tool in TOOL_REGISTRY if level in tool.allowed_access_levels]
