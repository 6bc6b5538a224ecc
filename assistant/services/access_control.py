"""Access control policy for assistant tools.

Scope resolution has three distinct outcomes and they must never be merged:

* ``None``        -- unrestricted (global admin, or no region concept)
* ``[]``          -- explicitly no access; raises when used as a filter
* ``[ids, ...]``  -- exactly these regions
"""
from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Optional

from assistant.services.actors import (
    AccessLevel,
    Actor,
    CompanyUser,
    Consultant,
    Hrm8User,
    derive_access_level,
    require_valid_actor,
)
from assistant.services.database import build_where, db_connection, fetchone
from assistant.services.errors import AuditWriteError, AuthorizationError, ScopeConfigurationError
from assistant.services.tool_definition import DataSensitivity, ToolDefinition

logger = logging.getLogger(__name__)

FINANCIAL_FIELDS = frozenset({"commissionAmount", "salary", "offerAmount", "revenue", "amount", "value"})
CONSULTANT_PRIVATE_FIELDS = frozenset({"commissionAmount", "amount"})

AUDIT_ENTITY_TYPE = "AI_TOOL_EXECUTION"


def get_access_level(actor: Actor) -> AccessLevel:
    return require_valid_actor(actor)


def can_use_tool(actor: Actor, tool: ToolDefinition) -> bool:
    return derive_access_level(actor) in tool.allowed_access_levels


def is_global_admin(actor: Actor) -> bool:
    return isinstance(actor, Hrm8User) and derive_access_level(actor) == AccessLevel.GLOBAL_ADMIN


def is_consultant(actor: Actor) -> bool:
    return derive_access_level(actor) == AccessLevel.CONSULTANT


def get_region_scope(actor: Actor) -> Optional[list[str]]:
    if isinstance(actor, CompanyUser):
        return None
    if isinstance(actor, Consultant):
        return [actor.region_id]
    if is_global_admin(actor):
        return None
    return list(actor.assigned_region_ids or [])


def ensure_non_empty_region_scope(actor: Actor) -> list[str]:
    scope = get_region_scope(actor)
    if scope is None:
        return []
    if not scope:
        raise ScopeConfigurationError("Your account does not have any assigned regions for this query.")
    return scope


def apply_region_scope(actor: Actor, base_filter: Optional[dict[str, Any]] = None) -> dict[str, Any]:
    base = dict(base_filter or {})
    scope = get_region_scope(actor)
    if scope is None:
        return base
    if not scope:
        raise ScopeConfigurationError("No assigned regions for this user.")
    return {**base, "region_id": {"in": scope}}


def apply_company_scope(actor: Actor, base_filter: Optional[dict[str, Any]] = None) -> dict[str, Any]:
    base = dict(base_filter or {})
    if isinstance(actor, CompanyUser):
        return {**base, "company_id": actor.company_id}
    return base


def apply_job_scope(actor: Actor, base_filter: Optional[dict[str, Any]] = None) -> dict[str, Any]:
    base = dict(base_filter or {})
    if is_consultant(actor):
        return {**base, "assigned_consultant_id": actor.user_id}
    return base


async def enforce_consultant_self_scope(actor: Actor, requested_consultant_id: Optional[str]) -> str:
    if isinstance(actor, CompanyUser):
        raise AuthorizationError("This tool is only available for HRM8 users and consultants.")

    if is_consultant(actor):
        if requested_consultant_id and requested_consultant_id != actor.user_id:
            raise AuthorizationError("You can only view your own data.")
        return actor.user_id

    if not requested_consultant_id:
        raise AuthorizationError("Please specify a consultant to query.")

    filters: dict[str, Any] = {
        "OR": [
            {"id": requested_consultant_id},
            {"email": {"ieq": requested_consultant_id}},
        ]
    }
    scope = ensure_non_empty_region_scope(actor)
    if scope:
        filters["region_id"] = {"in": scope}

    where, params = build_where(filters)
    async with db_connection() as conn:
        row = await fetchone(conn, f"SELECT id FROM consultants WHERE {where} LIMIT 1", tuple(params))

    if row is None:
        raise AuthorizationError("Consultant not found in your region scope.")
    return row["id"]


def _strip_financial_fields(data: Any) -> Any:
    if isinstance(data, list):
        return [_strip_financial_fields(item) for item in data]
    if isinstance(data, dict):
        return {
            key: _strip_financial_fields(value)
            for key, value in data.items()
            if key not in FINANCIAL_FIELDS
        }
    return data


def _strip_other_consultant_financials(data: Any, own_consultant_id: str) -> Any:
    if isinstance(data, list):
        return [_strip_other_consultant_financials(item, own_consultant_id) for item in data]
    if isinstance(data, dict):
        foreign = bool(data.get("consultantId")) and data.get("consultantId") != own_consultant_id
        return {
            key: _strip_other_consultant_financials(value, own_consultant_id)
            for key, value in data.items()
            if not (foreign and key in CONSULTANT_PRIVATE_FIELDS)
        }
    return data


def redact_sensitive_data(actor: Actor, data: Any, sensitivity: DataSensitivity) -> Any:
    level = derive_access_level(actor)
    sensitivity = DataSensitivity(sensitivity)

    if level == AccessLevel.COMPANY_USER and sensitivity in (DataSensitivity.HIGH, DataSensitivity.CRITICAL):
        return _strip_financial_fields(data)

    if level == AccessLevel.CONSULTANT and sensitivity == DataSensitivity.CRITICAL:
        return _strip_other_consultant_financials(data, actor.user_id)

    return data


def _utc_now() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


async def _insert_audit_row(actor: Actor, tool_name: str, changes: dict[str, Any]) -> None:
    try:
        async with db_connection() as conn:
            await conn.execute(
                """
                INSERT INTO audit_logs (
                    entity_type, entity_id, action, performed_by, performed_by_email,
                    performed_by_role, description, changes, performed_at
                )
                VALUES (?, ?, 'EXECUTE', ?, ?, ?, ?, ?, ?)
                """,
                (
                    AUDIT_ENTITY_TYPE,
                    tool_name,
                    actor.user_id,
                    actor.email,
                    actor.actor_type,
                    f"AI tool execution: {tool_name}",
                    json.dumps(changes, default=str),
                    changes["timestamp"],
                ),
            )
            await conn.commit()
    except Exception as exc:
        raise AuditWriteError(f"Failed to write audit log for {tool_name}: {exc}") from exc


async def create_audit_log(
    actor: Actor,
    tool_name: str,
    args: dict[str, Any],
    success: bool,
    sensitivity: DataSensitivity,
) -> None:
    sensitivity = DataSensitivity(sensitivity)
    changes = {
        "toolName": tool_name,
        "sensitivity": sensitivity.value,
        "success": success,
        "args": "[REDACTED]" if sensitivity == DataSensitivity.CRITICAL else json.loads(json.dumps(args, default=str)),
        "timestamp": _utc_now(),
    }
    try:
        await _insert_audit_row(actor, tool_name, changes)
    except AuditWriteError as exc:
        logger.warning("%s (user=%s)", exc.message, actor.user_id)


def build_scope_description(actor: Actor) -> str:
    if isinstance(actor, CompanyUser):
        return f"Company-scoped user. companyId={actor.company_id}, role={actor.role}."
    if isinstance(actor, Consultant):
        return f"Consultant. regionId={actor.region_id}, consultantId={actor.consultant_id}."
    regions = ",".join(actor.assigned_region_ids or []) or "[]"
    return (
        f"HRM8 user. role={actor.role}, licenseeId={actor.licensee_id or 'N/A'}, "
        f"assignedRegionIds={regions}."
    )
