"""Analytics, interview/offer, CRM/finance and activity tools."""
from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import Field

from assistant.services.access_control import (
    apply_region_scope,
    enforce_consultant_self_scope,
    ensure_non_empty_region_scope,
    is_consultant,
    is_global_admin,
)
from assistant.services.actors import Actor, CompanyUser, Consultant
from assistant.services.database import build_where, db_connection, fetchone, fetchvalue
from assistant.tools.common import (
    OptionalId,
    TextQuery,
    TimeRange,
    ToolArgs,
    candidate_lookup,
    full_name,
    job_lookup,
    scoped_job_filter,
    select_one,
    select_rows,
    time_filter,
)

HRM8_ONLY = {"found": False, "reason": "This tool is only available for HRM8 users."}
NEED_APPLICATION_HINT = {"found": False, "reason": "Please provide applicationId, candidateQuery, or jobQuery."}
NO_APPLICATIONS = {"found": False, "reason": "No applications found in your scope."}


class HiringFunnelArgs(ToolArgs):
    scope: Literal["company", "region", "job"]
    identifier: OptionalId = None
    time_range: Optional[TimeRange] = None


class RegionalPerformanceArgs(ToolArgs):
    region_id: OptionalId = Field(
        default=None, description="Optional region ID. Leave empty or omit to use all your assigned regions."
    )
    time_range: Optional[TimeRange] = None


class ApplicationLookupArgs(ToolArgs):
    application_id: OptionalId = None
    job_query: Optional[TextQuery] = None
    candidate_query: Optional[TextQuery] = None


class LeadPipelineArgs(ToolArgs):
    region_id: OptionalId = None
    consultant_query: Optional[TextQuery] = None
    status: Literal["ALL", "NEW", "CONTACTED", "QUALIFIED", "CONVERTED"] = "ALL"


class CompanyFinancialArgs(ToolArgs):
    company_id: OptionalId = None
    time_range: Optional[TimeRange] = None


class ActivityFeedArgs(ToolArgs):
    scope: Literal["job", "candidate", "company", "consultant"]
    identifier: str = Field(min_length=1)
    limit: int = Field(default=50, ge=1, le=100)
    activity_types: Optional[list[str]] = None


async def get_hiring_funnel_analytics(params: HiringFunnelArgs, actor: Actor) -> dict[str, Any]:
    filters: dict[str, Any] = {}
    if params.scope == "company":
        if not isinstance(actor, CompanyUser):
            if not params.identifier:
                return {"found": False, "reason": "Company identifier required for company scope."}
            filters["company_id"] = params.identifier
    elif params.scope == "job":
        if not params.identifier:
            return {"found": False, "reason": "Job identifier required for job scope."}
        filters["a.job_id"] = params.identifier

    bounds = time_filter(params.time_range)
    if bounds:
        filters["a.created_at"] = bounds
    filters = scoped_job_filter(actor, filters)

    base_sql = "FROM applications a JOIN jobs j ON j.id = a.job_id"
    async with db_connection() as conn:
        by_stage = await select_rows(
            conn, f"SELECT a.stage AS key, COUNT(*) AS count {base_sql}", filters,
            alias="j", suffix="GROUP BY a.stage ORDER BY count DESC",
        )
        by_status = await select_rows(
            conn, f"SELECT a.status AS key, COUNT(*) AS count {base_sql}", filters,
            alias="j", suffix="GROUP BY a.status ORDER BY count DESC",
        )
        hired = await select_one(
            conn,
            f"""
            SELECT COUNT(*) AS hired,
                   AVG(julianday(a.updated_at) - julianday(a.created_at)) AS avg_days
            {base_sql}
            """,
            {**filters, "a.status": "HIRED"},
            alias="j",
        )

    avg_days = hired["avg_days"] if hired and hired["avg_days"] is not None else 0
    return {
        "found": True,
        "scope": params.scope,
        "funnel": {
            "byStage": [{"stage": row["key"], "count": row["count"]} for row in by_stage],
            "byStatus": [{"status": row["key"], "count": row["count"]} for row in by_status],
        },
        "metrics": {
            "totalApplications": sum(row["count"] for row in by_status),
            "avgTimeToHireDays": int(round(avg_days)),
            "hiredCount": hired["hired"] if hired else 0,
        },
    }


async def get_regional_performance(params: RegionalPerformanceArgs, actor: Actor) -> dict[str, Any]:
    if isinstance(actor, CompanyUser):
        return HRM8_ONLY

    if is_global_admin(actor):
        region_id = params.region_id
    else:
        scope = ensure_non_empty_region_scope(actor)
        if params.region_id and params.region_id not in scope:
            return {"found": False, "reason": "Region not in your scope."}
        region_id = params.region_id or scope[0]

    if not region_id:
        return {"found": False, "reason": "Region ID required."}

    bounds = time_filter(params.time_range)

    def scoped(column: Optional[str], **extra: Any) -> tuple[str, tuple]:
        filters: dict[str, Any] = {**extra}
        if column and bounds:
            filters[column] = bounds
        where, values = build_where(filters)
        return where, tuple(values)

    async with db_connection() as conn:
        region = await fetchone(conn, "SELECT id, name, licensee_id FROM regions WHERE id = ?", (region_id,))
        if region is None:
            return {"found": False, "reason": "Region not found."}

        where, values = scoped("created_at", region_id=region_id)
        revenue = await fetchvalue(conn, f"SELECT COALESCE(SUM(amount), 0) FROM commissions WHERE {where}", values)
        jobs = await fetchvalue(conn, f"SELECT COUNT(*) FROM jobs WHERE {where}", values)

        where, values = scoped("a.updated_at", **{"j.region_id": region_id, "a.status": "HIRED"})
        placements = await fetchvalue(
            conn,
            f"SELECT COUNT(*) FROM applications a JOIN jobs j ON j.id = a.job_id WHERE {where}",
            values,
        )

        where, values = scoped(None, region_id=region_id, status="ACTIVE")
        consultants = await fetchvalue(conn, f"SELECT COUNT(*) FROM consultants WHERE {where}", values)

    return {
        "found": True,
        "region": {"id": region["id"], "name": region["name"], "licenseeId": region["licensee_id"]},
        "metrics": {
            "revenue": revenue,
            "totalJobs": jobs,
            "totalPlacements": placements,
            "activeConsultants": consultants,
        },
    }


async def _scoped_application_ids(
    conn, actor: Actor, params: ApplicationLookupArgs, *, by_name: bool, limit: int
) -> Optional[list[str]]:
    if params.application_id:
        filters: dict[str, Any] = {"a.id": params.application_id}
    elif params.candidate_query or params.job_query:
        filters = {}
        clauses = []
        if params.candidate_query:
            if by_name:
                clauses.append(candidate_lookup(params.candidate_query))
            else:
                clauses.append(
                    {"OR": [{"c.id": params.candidate_query}, {"c.email": {"ieq": params.candidate_query}}]}
                )
        if params.job_query:
            clauses.append(job_lookup(params.job_query))
        filters["AND"] = clauses
    else:
        return None

    rows = await select_rows(
        conn,
        """
        SELECT a.id FROM applications a
        JOIN jobs j ON j.id = a.job_id
        JOIN candidates c ON c.id = a.candidate_id
        """,
        scoped_job_filter(actor, filters),
        alias="j",
        suffix=f"ORDER BY a.updated_at DESC LIMIT {limit}",
    )
    return [row["id"] for row in rows]


async def get_interview_details(params: ApplicationLookupArgs, actor: Actor) -> dict[str, Any]:
    async with db_connection() as conn:
        application_ids = await _scoped_application_ids(conn, actor, params, by_name=True, limit=5)
        if application_ids is None:
            return NEED_APPLICATION_HINT
        if not application_ids:
            return NO_APPLICATIONS

        interviews = await select_rows(
            conn,
            """
            SELECT i.id, i.application_id, i.scheduled_date, i.status, i.interview_type, i.duration,
                   i.feedback, c.first_name, c.last_name, j.title AS job_title
            FROM interviews i
            JOIN applications a ON a.id = i.application_id
            JOIN candidates c ON c.id = a.candidate_id
            JOIN jobs j ON j.id = a.job_id
            """,
            {"i.application_id": {"in": application_ids}},
            suffix="ORDER BY i.scheduled_date DESC",
        )

    return {
        "found": True,
        "interviews": [
            {
                "id": row["id"],
                "applicationId": row["application_id"],
                "candidateName": full_name(row["first_name"], row["last_name"]),
                "jobTitle": row["job_title"],
                "scheduledAt": row["scheduled_date"],
                "status": row["status"],
                "type": row["interview_type"],
                "duration": row["duration"],
                "feedback": row["feedback"],
            }
            for row in interviews
        ],
    }


async def get_offer_status(params: ApplicationLookupArgs, actor: Actor) -> dict[str, Any]:
    async with db_connection() as conn:
        application_ids = await _scoped_application_ids(conn, actor, params, by_name=False, limit=10)
        if application_ids is None:
            return NEED_APPLICATION_HINT
        if not application_ids:
            return NO_APPLICATIONS

        offers = await select_rows(
            conn,
            """
            SELECT o.id, o.application_id, o.status, o.offer_amount, o.sent_at, o.expiry_date, o.responded_at,
                   c.first_name, c.last_name, c.email, j.title AS job_title,
                   j.assigned_consultant_id, co.name AS company_name
            FROM offers o
            JOIN applications a ON a.id = o.application_id
            JOIN candidates c ON c.id = a.candidate_id
            JOIN jobs j ON j.id = a.job_id
            LEFT JOIN companies co ON co.id = j.company_id
            """,
            {"o.application_id": {"in": application_ids}},
            suffix="ORDER BY o.sent_at DESC",
        )

    return {
        "found": True,
        "offers": [
            {
                "id": row["id"],
                "applicationId": row["application_id"],
                "candidateName": full_name(row["first_name"], row["last_name"]),
                "candidateEmail": row["email"],
                "jobTitle": row["job_title"],
                "companyName": row["company_name"],
                "consultantId": row["assigned_consultant_id"],
                "status": row["status"],
                "offerAmount": row["offer_amount"],
                "sentAt": row["sent_at"],
                "expiresAt": row["expiry_date"],
                "respondedAt": row["responded_at"],
            }
            for row in offers
        ],
    }


async def get_lead_pipeline(params: LeadPipelineArgs, actor: Actor) -> dict[str, Any]:
    if isinstance(actor, CompanyUser):
        return {"found": False, "reason": "This tool is only available for HRM8 users and consultants."}

    if params.region_id:
        scope = ensure_non_empty_region_scope(actor)
        if scope and params.region_id not in scope:
            return {"found": False, "reason": "Region not in your scope."}
        filters: dict[str, Any] = {"region_id": params.region_id}
    else:
        filters = apply_region_scope(actor)

    if params.consultant_query:
        filters["consultant_id"] = await enforce_consultant_self_scope(actor, params.consultant_query)
    elif is_consultant(actor):
        filters["consultant_id"] = actor.user_id

    if params.status != "ALL":
        filters["status"] = params.status

    async with db_connection() as conn:
        leads = await select_rows(
            conn,
            "SELECT id, company_name, contact_email, status, region_id, consultant_id, estimated_value, created_at FROM leads",
            filters,
            suffix="ORDER BY created_at DESC LIMIT 50",
        )
        by_status = await select_rows(
            conn,
            "SELECT status AS key, COUNT(*) AS count FROM leads",
            {key: value for key, value in filters.items() if key != "status"},
            suffix="GROUP BY status ORDER BY count DESC",
        )

    total = sum(row["count"] for row in by_status)
    converted = next((row["count"] for row in by_status if row["key"] == "CONVERTED"), 0)
    return {
        "found": True,
        "leads": [
            {
                "id": row["id"],
                "companyName": row["company_name"],
                "email": row["contact_email"],
                "status": row["status"],
                "regionId": row["region_id"],
                "consultantId": row["consultant_id"],
                "estimatedValue": row["estimated_value"],
                "createdAt": row["created_at"],
            }
            for row in leads
        ],
        "conversion": {
            "byStatus": [{"status": row["key"], "count": row["count"]} for row in by_status],
            "total": total,
            "converted": converted,
            "conversionRate": round(converted / total, 3) if total else 0.0,
        },
    }


async def get_company_financial_summary(params: CompanyFinancialArgs, actor: Actor) -> dict[str, Any]:
    async with db_connection() as conn:
        if isinstance(actor, CompanyUser):
            company_id = actor.company_id
        elif params.company_id:
            company = await select_one(
                conn,
                "SELECT id FROM companies",
                scoped_job_filter(actor, {"id": params.company_id}),
            )
            if company is None:
                return {"found": False, "reason": "Company not found in your scope."}
            company_id = company["id"]
        else:
            return {"found": False, "reason": "Company ID required."}

        bounds = time_filter(params.time_range)
        bill_filter: dict[str, Any] = {"company_id": company_id}
        if bounds:
            bill_filter["created_at"] = bounds
        bills = await select_rows(
            conn,
            "SELECT id, amount, status, description, due_date, paid_at, created_at FROM bills",
            bill_filter,
            suffix="ORDER BY created_at DESC LIMIT 20",
        )

        paid_filter: dict[str, Any] = {"company_id": company_id, "status": "PAID"}
        if bounds:
            paid_filter["paid_at"] = bounds
        where, values = build_where(paid_filter)
        total_revenue = await fetchvalue(
            conn, f"SELECT COALESCE(SUM(amount), 0) FROM bills WHERE {where}", tuple(values)
        )
        outstanding = await fetchvalue(
            conn,
            "SELECT COALESCE(SUM(amount), 0) FROM bills WHERE company_id = ? AND status != 'PAID'",
            (company_id,),
        )

    return {
        "found": True,
        "companyId": company_id,
        "bills": [
            {
                "id": row["id"],
                "amount": row["amount"],
                "status": row["status"],
                "description": row["description"],
                "dueDate": row["due_date"],
                "paidAt": row["paid_at"],
            }
            for row in bills
        ],
        "totalRevenue": total_revenue,
        "outstandingBalance": outstanding,
    }


_ENTITY_LOOKUPS = {
    "job": ("SELECT j.id FROM jobs j", "j.id", "j"),
    "candidate": ("SELECT a.candidate_id FROM applications a JOIN jobs j ON j.id = a.job_id", "a.candidate_id", "j"),
    "company": ("SELECT id FROM companies", "id", None),
}


async def _entity_in_scope(conn, actor: Actor, scope: str, identifier: str) -> bool:
    if is_global_admin(actor):
        return True
    if scope == "consultant":
        if isinstance(actor, CompanyUser):
            return False
        if isinstance(actor, Consultant):
            return identifier == actor.user_id
        row = await select_one(
            conn, "SELECT id FROM consultants", scoped_job_filter(actor, {"id": identifier})
        )
        return row is not None
    if scope == "company" and isinstance(actor, CompanyUser):
        return identifier == actor.company_id
    select_sql, id_column, alias = _ENTITY_LOOKUPS[scope]
    row = await select_one(
        conn,
        select_sql,
        scoped_job_filter(actor, {id_column: identifier}),
        alias=alias,
        suffix="LIMIT 1",
    )
    return row is not None


async def get_activity_feed(params: ActivityFeedArgs, actor: Actor) -> dict[str, Any]:
    filters: dict[str, Any] = {"entity_type": params.scope.upper(), "entity_id": params.identifier}
    if params.activity_types:
        filters["activity_type"] = {"in": params.activity_types}

    async with db_connection() as conn:
        if not await _entity_in_scope(conn, actor, params.scope, params.identifier):
            return {"found": False, "reason": f"The requested {params.scope} is not in your access scope."}
        activities = await select_rows(
            conn,
            "SELECT id, activity_type, description, created_by, created_at FROM activities",
            filters,
            suffix=f"ORDER BY created_at DESC LIMIT {int(params.limit)}",
        )

    return {
        "found": True,
        "activities": [
            {
                "id": row["id"],
                "type": row["activity_type"],
                "description": row["description"],
                "createdAt": row["created_at"],
                "createdBy": row["created_by"],
            }
            for row in activities
        ],
    }
