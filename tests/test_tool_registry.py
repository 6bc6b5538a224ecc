from __future__ import annotations

import pytest

from assistant.services.actors import AccessLevel
from assistant.services.errors import DuplicateToolError
from assistant.services.tool_registry import (
    COMPOSITE_TOOLS,
    TOOL_REGISTRY,
    build_registry,
    get_all_tool_names,
    get_allowed_tools,
    get_tool_by_name,
)


def test_registry_names_are_unique_and_complete() -> None:
    names = get_all_tool_names()

    assert len(names) == len(set(names)) == 24
    for expected in (
        "get_candidate_complete_overview",
        "get_my_quick_stats",
        "get_company_financial_summary",
        "get_licensee_leaderboard",
        "get_company_hiring_overview",
    ):
        assert expected in names


def test_duplicate_names_are_rejected() -> None:
    with pytest.raises(DuplicateToolError):
        build_registry(COMPOSITE_TOOLS, COMPOSITE_TOOLS[:1])


def test_lookup_by_name() -> None:
    assert get_tool_by_name("get_offer_status").data_sensitivity.value == "CRITICAL"
    assert get_tool_by_name("missing_tool") is None


def test_every_tool_exposes_an_object_schema() -> None:
    for tool in TOOL_REGISTRY:
        spec = tool.to_function_spec()
        assert spec["type"] == "function"
        assert spec["function"]["name"] == tool.name
        assert spec["function"]["parameters"]["type"] == "object"
        assert tool.allowed_access_levels


def test_tool_schemas_use_camel_case_arguments() -> None:
    schema = get_tool_by_name("get_candidate_complete_overview").parameters_json_schema()

    assert "candidateQuery" in schema["properties"]
    assert schema["required"] == ["candidateQuery"]


def test_allowed_tools_follow_access_levels(company_user, company_admin, consultant, global_admin) -> None:
    user_tools = {tool.name for tool in get_allowed_tools(company_user)}
    admin_tools = {tool.name for tool in get_allowed_tools(company_admin)}
    consultant_tools = {tool.name for tool in get_allowed_tools(consultant)}
    global_tools = {tool.name for tool in get_allowed_tools(global_admin)}

    assert "get_company_financial_summary" not in user_tools
    assert "get_company_financial_summary" in admin_tools
    assert "get_offer_status" not in user_tools
    assert "get_my_quick_stats" in consultant_tools
    assert "get_my_quick_stats" not in global_tools
    assert "get_licensee_leaderboard" in global_tools
    assert global_tools == {
        tool.name for tool in TOOL_REGISTRY if AccessLevel.GLOBAL_ADMIN in tool.allowed_access_levels
    }


def test_allowed_tools_keep_registry_order(regional_admin) -> None:
    allowed = [tool.name for tool in get_allowed_tools(regional_admin)]
    ordered = [tool.name for tool in TOOL_REGISTRY if tool.name in allowed]

    assert allowed == ordered
