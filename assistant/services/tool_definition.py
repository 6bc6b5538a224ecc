from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from pydantic import BaseModel

from assistant.services.actors import AccessLevel

if TYPE_CHECKING:
    from assistant.services.actors import Actor


class DataSensitivity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


ALL_LEVELS = frozenset(AccessLevel)
HRM8_ADMINS = frozenset({AccessLevel.GLOBAL_ADMIN, AccessLevel.REGIONAL_ADMIN})
HRM8_AND_CONSULTANTS = HRM8_ADMINS | {AccessLevel.CONSULTANT}

ToolRunner = Callable[[Any, "Actor"], Awaitable[Any]]


@dataclass(frozen=True)
class ToolDefinition:
    name: str
    description: str
    parameter_schema: type[BaseModel]
    allowed_access_levels: frozenset[AccessLevel]
    data_sensitivity: DataSensitivity
    run: ToolRunner
    requires_region_scope: bool = False
    requires_company_scope: bool = False

    def parameters_json_schema(self) -> dict[str, Any]:
        schema = self.parameter_schema.model_json_schema()
        schema.pop("title", None)
        return schema

    def to_function_spec(self) -> dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters_json_schema(),
            },
        }
