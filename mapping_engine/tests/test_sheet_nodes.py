from __future__ import annotations

import json
from typing import Any, Dict, List, Optional
from urllib.parse import unquote

import httpx
import pytest

from mapping_engine.clients.google_sheets import GoogleSheetsClient, a1_range
from mapping_engine.errors import NodeValidationError
from mapping_engine.runtime.sheet_nodes import (
    find_sheet_records,
    limit_records,
    record_matches_condition,
    records_from_grid,
    row_matches_condition,
    sort_records,
    write_sheet,
)
from mapping_engine.schema.models import Condition
from mapping_engine.schema.normalize import normalize_node


class FakeSheets:
    """Values and grid endpoints of one spreadsheet."""

    def __init__(self, header: List[str], rows: List[List[Any]]) -> None:
        self.header = header
        self.rows = rows
        self.grid: Dict[str, Any] = {"sheets": []}
        self.header_writes: List[List[str]] = []
        self.updates: List[tuple[str, List[Any]]] = []
        self.appends: List[List[Any]] = []
        self.status_code: Optional[int] = None

    def handle(self, request: httpx.Request) -> httpx.Response:
        if self.status_code is not None:
            return httpx.Response(self.status_code, text="boom")

        path = unquote(request.url.path)
        if "/values/" not in path:
            return httpx.Response(200, json=self.grid)

        range_name = path.split("/values/", 1)[1]
        if request.method == "POST" and range_name.endswith(":append"):
            self.appends.append(json.loads(request.content)["values"][0])
            return httpx.Response(200, json={"updates": {"updatedRange": "Sheet1!A5:C5"}})
        if request.method == "PUT":
            values = json.loads(request.content)["values"][0]
            if range_name.endswith("!1:1"):
                self.header_writes.append(values)
            else:
                self.updates.append((range_name, values))
            return httpx.Response(200, json={})
        if range_name.endswith("!1:1"):
            return httpx.Response(200, json={"values": [self.header]} if self.header else {})
        return httpx.Response(200, json={"values": self.rows})


def _sheet_node(config: Dict[str, Any], mappings: List[Dict[str, str]]):
    return normalize_node(
        {"nodeId": "sheet_1", "type": "Google Sheet", "order": 1, "fieldMappings": mappings, "config": config}
    )


def _find_node(config: Dict[str, Any]):
    return normalize_node({"nodeId": "find_sheet", "type": "FindGoogleSheet", "order": 1, "config": config})


def _grid_cells(*values: Optional[str]) -> Dict[str, Any]:
    return {"values": [{"formattedValue": value} if value is not None else {} for value in values]}


MAPPINGS = [{"column": "Name", "id": "name"}, {"column": "Email", "id": "email"}, {"column": "Phone ", "id": "phone"}]


@pytest.mark.asyncio
async def test_write_appends_and_adds_missing_columns() -> None:
    sheets = FakeSheets(["Name", "Email"], [["Ann", "a@x.com"]])
    node = _sheet_node(
        {
            "spreadsheetId": "sheet-1",
            "sheetName": "Leads",
            "sheetConditions": [{"field": "Email", "operator": "=", "value": "b@x.com"}],
        },
        MAPPINGS,
    )

    async with httpx.AsyncClient(transport=httpx.MockTransport(sheets.handle)) as http_client:
        result = await write_sheet(
            node,
            {"name": "Bob", "email": "b@x.com", "phone": "555"},
            GoogleSheetsClient("sheet-token", http_client),
        )

    assert result["success"] is True
    assert result["message"] == "Data written successfully (new row appended)"
    assert sheets.header_writes == [["Name", "Email", "Phone"]]
    assert sheets.appends == [["Bob", "b@x.com", "555"]]
    assert sheets.updates == []


@pytest.mark.asyncio
async def test_write_updates_first_matching_row_only() -> None:
    sheets = FakeSheets(["Name", "Email", "Phone"], [["Ann", "a@x.com", ""], ["Ann B", "a@x.com", ""]])
    node = _sheet_node(
        {"spreadsheetId": "sheet-1", "sheetConditions": [{"field": "Email", "operator": "=", "value": "a@x.com"}]},
        MAPPINGS,
    )

    async with httpx.AsyncClient(transport=httpx.MockTransport(sheets.handle)) as http_client:
        result = await write_sheet(node, {"name": "Ann C", "email": "a@x.com"}, GoogleSheetsClient("t", http_client))

    assert result["message"] == "1 rows updated."
    assert sheets.updates == [("'Sheet1'!2:2", ["Ann C", "a@x.com", ""])]
    assert sheets.appends == []
    assert sheets.header_writes == []


@pytest.mark.asyncio
async def test_write_updates_every_match_when_requested() -> None:
    sheets = FakeSheets(
        ["Name", "Email", "Phone"],
        [["Ann", "a@x.com", ""], ["Bob", "b@x.com", ""], ["Ann B", "a@x.com", ""]],
    )
    node = _sheet_node(
        {
            "spreadsheetId": "sheet-1",
            "updateMultiple": True,
            "customLogic": "1 OR 2",
            "sheetConditions": [
                {"field": "Email", "operator": "=", "value": "a@x.com"},
                {"field": "Name", "operator": "STARTS WITH", "value": "Zed"},
            ],
        },
        MAPPINGS,
    )

    async with httpx.AsyncClient(transport=httpx.MockTransport(sheets.handle)) as http_client:
        result = await write_sheet(node, {"name": "X", "email": "a@x.com"}, GoogleSheetsClient("t", http_client))

    assert result["message"] == "2 rows updated."
    assert sorted(range_name for range_name, _ in sheets.updates) == ["'Sheet1'!2:2", "'Sheet1'!4:4"]


@pytest.mark.asyncio
async def test_write_requires_spreadsheet_id() -> None:
    node = _sheet_node({"sheetName": "Leads"}, MAPPINGS)

    async with httpx.AsyncClient(transport=httpx.MockTransport(FakeSheets([], []).handle)) as http_client:
        with pytest.raises(NodeValidationError):
            await write_sheet(node, {}, GoogleSheetsClient("t", http_client))


@pytest.mark.asyncio
async def test_write_reports_api_errors_on_the_node() -> None:
    sheets = FakeSheets(["Name"], [])
    sheets.status_code = 404
    node = _sheet_node({"spreadsheetId": "missing"}, MAPPINGS)

    async with httpx.AsyncClient(transport=httpx.MockTransport(sheets.handle)) as http_client:
        result = await write_sheet(node, {"name": "Ann"}, GoogleSheetsClient("t", http_client))

    assert result == {
        "nodeId": "sheet_1",
        "success": False,
        "message": "Spreadsheet not found",
        "error": "Spreadsheet not found",
    }


@pytest.mark.asyncio
async def test_find_filters_sorts_and_limits() -> None:
    sheets = FakeSheets([], [])
    sheets.grid = {
        "sheets": [
            {"properties": {"title": "Other"}, "data": [{"rowData": [_grid_cells("Ignored")]}]},
            {
                "properties": {"title": "Contacts"},
                "data": [
                    {
                        "rowData": [
                            _grid_cells("Name", "Status", "City"),
                            _grid_cells("Ann", "Active", "Oslo"),
                            _grid_cells("Cid", "Inactive", "Rome"),
                            _grid_cells("Bob", "Active"),
                            _grid_cells("Dan", "Active", "Pune"),
                        ]
                    }
                ],
            },
        ]
    }
    node = _find_node(
        {
            "spreadsheetId": "sheet-1",
            "sheetName": "Contacts",
            "findSheetConditions": [{"field": "Status", "operator": "=", "value": "Active"}],
            "googleSheetSortField": "Name",
            "googleSheetSortOrder": "DESC",
            "googleSheetReturnLimit": "2",
        }
    )

    async with httpx.AsyncClient(transport=httpx.MockTransport(sheets.handle)) as http_client:
        result = await find_sheet_records(node, GoogleSheetsClient("t", http_client))

    assert result == {
        "nodeId": "find_sheet",
        "records": [
            {"Name": "Dan", "Status": "Active", "City": "Pune"},
            {"Name": "Bob", "Status": "Active", "City": None},
        ],
    }


@pytest.mark.asyncio
async def test_find_without_spreadsheet_reports_error() -> None:
    node = _find_node({})

    async with httpx.AsyncClient(transport=httpx.MockTransport(FakeSheets([], []).handle)) as http_client:
        result = await find_sheet_records(node, GoogleSheetsClient("t", http_client))

    assert result == {"nodeId": "find_sheet", "error": "Missing required field: spreadsheetId"}


def test_records_from_grid_pads_short_rows() -> None:
    header, records = records_from_grid([_grid_cells(" A ", "B"), _grid_cells("1"), _grid_cells("", "2")])

    assert header == ["A", "B"]
    assert records == [{"A": "1", "B": None}, {"A": None, "B": "2"}]
    assert records_from_grid([]) == ([], [])


def test_record_conditions_with_blank_expected_value() -> None:
    assert record_matches_condition(Condition(field="City", operator="=", value=""), {"City": None}) is True
    assert record_matches_condition(Condition(field="City", operator="!=", value=""), {"City": "Oslo"}) is True
    assert record_matches_condition(Condition(field="City", operator="LIKE", value=""), {"City": None}) is True
    assert record_matches_condition(Condition(field="City", operator="LIKE", value="sl"), {"City": "Oslo"}) is True
    assert record_matches_condition(Condition(field="City", operator="NOT LIKE", value="sl"), {"City": None}) is False


def test_row_conditions_compare_cells_loosely() -> None:
    header = ["Qty", "Name"]
    assert row_matches_condition(Condition(field="Qty", operator="=", value=5), ["5", "x"], header) is True
    assert row_matches_condition(Condition(field="Name", operator="ENDS WITH", value="x"), ["5", "box"], header)
    assert row_matches_condition(Condition(field="Missing", operator="=", value="x"), ["5", "x"], header) is False


def test_sort_puts_blank_values_last_ascending() -> None:
    records = [{"N": None}, {"N": "b"}, {"N": "a"}]
    assert sort_records(records, "N", "ASC", ["N"]) == [{"N": "a"}, {"N": "b"}, {"N": None}]
    assert sort_records(records, "Other", "ASC", ["N"]) is records


def test_limit_ignores_blank_and_invalid_limits() -> None:
    records = [{"i": 1}, {"i": 2}, {"i": 3}]
    assert limit_records(records, None) == records
    assert limit_records(records, "abc") == records
    assert limit_records(records, 1) == [{"i": 1}]


def test_a1_range_quotes_sheet_names() -> None:
    assert a1_range("Bob's Sheet", "1:1") == "'Bob''s Sheet'!1:1"
