"""Actor variants and the single role-to-access-level mapping.

Three identity systems feed the assistant: company users, HRM8 staff and
consultants. Each carries its own role vocabulary (including legacy
spellings), so every authorization decision goes through
``derive_access_level`` instead of comparing role strings ad hoc.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, ClassVar, Mapping, NamedTuple, Optional, Union

from assistant.services.errors import ActorValidationError

logger = logging.getLogger(__name__)


class AccessLevel(IntEnum):
    COMPANY_USER = 1
    COMPANY_ADMIN = 2
    CONSULTANT = 3
    REGIONAL_ADMIN = 4
    GLOBAL_ADMIN = 5


@dataclass(frozen=True)
class CompanyUser:
    actor_type: ClassVar[str] = "COMPANY_USER"

    user_id: str
    email: str
    company_id: str
    role: str


@dataclass(frozen=True)
class Hrm8User:
    actor_type: ClassVar[str] = "HRM8_USER"

    user_id: str
    email: str
    role: str
    licensee_id: Optional[str] = None
    assigned_region_ids: Optional[tuple[str, ...]] = None


@dataclass(frozen=True)
class Consultant:
    actor_type: ClassVar[str] = "CONSULTANT"

    user_id: str
    email: str
    consultant_id: str
    region_id: str
    role: Optional[str] = None


Actor = Union[CompanyUser, Hrm8User, Consultant]

HRM8_ROLE_LEVELS: dict[str, AccessLevel] = {
    "GLOBAL_ADMIN": AccessLevel.GLOBAL_ADMIN,
    "REGIONAL_LICENSEE": AccessLevel.REGIONAL_ADMIN,
    "REGIONAL_ADMIN": AccessLevel.REGIONAL_ADMIN,  # legacy spelling
}

COMPANY_ROLE_LEVELS: dict[str, AccessLevel] = {
    "SUPER_ADMIN": AccessLevel.COMPANY_ADMIN,
    "ADMIN": AccessLevel.COMPANY_ADMIN,
    "USER": AccessLevel.COMPANY_USER,
    "VISITOR": AccessLevel.COMPANY_USER,
}

CONSULTANT_ROLE_NAMES: dict[str, str] = {
    "RECRUITER": "Recruiter",
    "SALES_AGENT": "Sales Agent",
    "CONSULTANT_360": "Consultant 360",
}


def _role_key(role: Any) -> str:
    # Enum members and plain strings both arrive here
    value = getattr(role, "value", role)
    return str(value).strip().upper()


def derive_access_level(actor: Actor) -> AccessLevel:
    if isinstance(actor, Hrm8User):
        role = _role_key(actor.role)
        level = HRM8_ROLE_LEVELS.get(role)
        if level is None:
            logger.warning("Unknown HRM8 role %r, defaulting to REGIONAL_ADMIN", role)
            return AccessLevel.REGIONAL_ADMIN
        return level

    if isinstance(actor, Consultant):
        return AccessLevel.CONSULTANT

    if isinstance(actor, CompanyUser):
        role = _role_key(actor.role)
        level = COMPANY_ROLE_LEVELS.get(role)
        if level is None:
            logger.warning("Unknown company role %r, defaulting to COMPANY_USER", role)
            return AccessLevel.COMPANY_USER
        return level

    raise ActorValidationError(f"Unknown actor type: {type(actor).__name__}")


class ActorValidation(NamedTuple):
    valid: bool
    error: Optional[str] = None


def validate_actor(actor: Any) -> ActorValidation:
    if not isinstance(actor, (CompanyUser, Hrm8User, Consultant)):
        return ActorValidation(False, "Actor is missing or invalid")

    if not actor.user_id or not actor.email:
        return ActorValidation(False, "Actor is missing userId or email")

    if isinstance(actor, CompanyUser):
        if not actor.company_id:
            return ActorValidation(False, "Company user is missing companyId")
        if not actor.role:
            return ActorValidation(False, "Company user is missing role")

    if isinstance(actor, Hrm8User):
        if not actor.role:
            return ActorValidation(False, "HRM8 user is missing role")
        if derive_access_level(actor) == AccessLevel.REGIONAL_ADMIN and not actor.assigned_region_ids:
            return ActorValidation(False, "Regional admin has no assigned regions")

    if isinstance(actor, Consultant):
        if not actor.consultant_id or not actor.region_id:
            return ActorValidation(False, "Consultant is missing consultantId or regionId")

    return ActorValidation(True)


def require_valid_actor(actor: Any) -> AccessLevel:
    result = validate_actor(actor)
    if not result.valid:
        logger.error("Invalid actor: %s", result.error)
        raise ActorValidationError(f"Invalid actor: {result.error}")
    return derive_access_level(actor)


def actor_from_claims(claims: Mapping[str, Any]) -> Actor:
    """Build an actor from the claims an upstream auth layer attaches."""
    actor_type = claims.get("actorType")
    user_id = str(claims.get("userId") or "")
    email = str(claims.get("email") or "")

    if actor_type == CompanyUser.actor_type:
        return CompanyUser(
            user_id=user_id,
            email=email,
            company_id=str(claims.get("companyId") or ""),
            role=str(claims.get("role") or ""),
        )
    if actor_type == Hrm8User.actor_type:
        regions = claims.get("assignedRegionIds")
        return Hrm8User(
            user_id=user_id,
            email=email,
            role=str(claims.get("role") or ""),
            licensee_id=claims.get("licenseeId"),
            assigned_region_ids=tuple(regions) if regions is not None else None,
        )
    if actor_type == Consultant.actor_type:
        return Consultant(
            user_id=user_id,
            email=email,
            consultant_id=str(claims.get("consultantId") or ""),
            region_id=str(claims.get("regionId") or ""),
            role=claims.get("role"),
        )
    raise ActorValidationError("Actor is missing or invalid")


def access_level_description(level: AccessLevel) -> str:
    return {
        AccessLevel.GLOBAL_ADMIN: "Global Administrator (Full Access)",
        AccessLevel.REGIONAL_ADMIN: "Regional Administrator (Region-Scoped Access)",
        AccessLevel.CONSULTANT: "Consultant (Job-Scoped Access)",
        AccessLevel.COMPANY_ADMIN: "Company Administrator (Company-Scoped Access)",
        AccessLevel.COMPANY_USER: "Company User (Limited Access)",
    }[level]


def role_display_name(actor: Actor) -> str:
    if isinstance(actor, Hrm8User):
        return f"HRM8 {actor.role}"
    if isinstance(actor, Consultant):
        sub_role = CONSULTANT_ROLE_NAMES.get(_role_key(actor.role)) if actor.role else None
        return f"Consultant ({sub_role})" if sub_role else "Consultant"
    return f"Company {actor.role}"


def has_same_access_level(first: Actor, second: Actor) -> bool:
    return derive_access_level(first) == derive_access_level(second)


def has_higher_privileges(first: Actor, second: Actor) -> bool:
    return derive_access_level(first) > derive_access_level(second)
