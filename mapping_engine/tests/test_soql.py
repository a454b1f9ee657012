from __future__ import annotations

import pytest

from mapping_engine.errors import NodeValidationError
from mapping_engine.query.soql import build_soql_query, filter_query_results
from mapping_engine.schema.models import Condition, ConditionGroup


def _group(**kwargs) -> ConditionGroup:
    return ConditionGroup.model_validate(kwargs)


def test_single_condition_query() -> None:
    conditions = _group(conditions=[{"field": "Status", "operator": "=", "value": "Active"}], logicType="AND")

    soql = build_soql_query("Account", conditions, node_type="Find")

    assert soql == "SELECT Id, Status FROM Account WHERE (Status = 'Active')"


def test_or_logic_with_sort_and_limit() -> None:
    conditions = _group(
        conditions=[
            {"field": "Status", "operator": "=", "value": "Active"},
            {"field": "Industry", "operator": "LIKE", "value": "Tech"},
            {"field": "Status", "operator": "!=", "value": "Closed"},
        ],
        logicType="OR",
        sortField="CreatedDate",
        sortOrder="DESC",
        returnLimit="5",
    )

    soql = build_soql_query("Account", conditions, node_type="Find")

    assert soql == (
        "SELECT Id, Status, Industry FROM Account "
        "WHERE (Status = 'Active') OR (Industry LIKE '%Tech%') OR (Status != 'Closed') "
        "ORDER BY CreatedDate DESC LIMIT 5"
    )


@pytest.mark.parametrize(
    ("sort_order", "limit", "suffix"),
    [
        ("asc", 10, " ORDER BY Name ASC LIMIT 10"),
        ("DESC; DELETE", "5", " LIMIT 5"),
        ("DESC", "5 OFFSET 1", " ORDER BY Name DESC"),
        ("ASC", -3, " ORDER BY Name ASC"),
        (None, "0", ""),
    ],
)
def test_sort_and_limit_are_sanitised(sort_order, limit, suffix) -> None:
    conditions = _group(
        conditions=[{"field": "Status", "operator": "=", "value": "Active"}],
        logicType="AND",
        sortField="Name",
        sortOrder=sort_order,
        returnLimit=limit,
    )

    soql = build_soql_query("Account", conditions, node_type="Find")

    assert soql == "SELECT Id, Status FROM Account WHERE (Status = 'Active')" + suffix


def test_custom_logic_query() -> None:
    conditions = _group(
        conditions=[
            {"field": "Status", "operator": "=", "value": "Active"},
            {"field": "Industry", "operator": "=", "value": "Tech"},
            {"field": "Rating", "operator": "=", "value": "Hot"},
        ],
        logicType="Custom",
        customLogic="1 AND (2 OR 3)",
    )

    soql = build_soql_query("Account", conditions, node_type="Find")

    assert soql.endswith("WHERE Status = 'Active' AND (Industry = 'Tech' OR Rating = 'Hot')")


def test_plain_condition_list_defaults_to_and() -> None:
    conditions = [
        Condition(field="Email", operator="=", value="a@b.com"),
        Condition(field="LastName", operator="IS NOT NULL"),
    ]

    soql = build_soql_query("Contact", conditions, node_type="Find")

    assert soql == "SELECT Id, Email, LastName FROM Contact WHERE (Email = 'a@b.com') AND (LastName != null)"


def test_create_update_without_conditions_builds_nothing() -> None:
    assert build_soql_query("Account", None, node_type="CreateUpdate") is None
    assert build_soql_query("Account", _group(conditions=[]), node_type="CreateUpdate") is None


def test_find_without_conditions_is_invalid() -> None:
    with pytest.raises(NodeValidationError):
        build_soql_query("Account", None, node_type="Find", node_id="find_1")


def test_missing_object_is_invalid() -> None:
    with pytest.raises(NodeValidationError):
        build_soql_query(None, [Condition(field="Name", operator="=", value="x")], node_type="Find")


def test_filter_applies_custom_logic_in_process() -> None:
    conditions = _group(
        conditions=[
            {"field": "Status", "operator": "=", "value": "Active"},
            {"field": "Rating", "operator": "=", "value": "Hot"},
        ],
        logicType="Custom",
        customLogic="1 AND 2",
    )
    data = {
        "records": [
            {"Id": "001A", "Status": "Active", "Rating": "Hot"},
            {"Id": "001B", "Status": "Active", "Rating": "Cold"},
        ]
    }

    assert [record["Id"] for record in filter_query_results(data, conditions)] == ["001A"]


def test_filter_passes_records_through_without_custom_logic() -> None:
    conditions = _group(conditions=[{"field": "Status", "operator": "=", "value": "Active"}], logicType="AND")
    data = {"records": [{"Id": "001A", "Status": "Closed"}]}

    assert filter_query_results(data, conditions) == data["records"]
    assert filter_query_results({}, conditions) == []
