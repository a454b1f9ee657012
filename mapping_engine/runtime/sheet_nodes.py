"""
Spreadsheet node executors: write a mapped row (update matching rows or
append) and find records with condition filtering, sorting and limiting.
"""

from __future__ import annotations

import asyncio
from functools import cmp_to_key
from typing import Any, Dict, List, Mapping, Optional, Sequence

import httpx

from mapping_engine.clients.google_sheets import GoogleSheetsClient
from mapping_engine.errors import MappingEngineError, NodeValidationError
from mapping_engine.expr.custom_logic import evaluate_with_results
from mapping_engine.expr.values import is_blank, loose_equals, to_number
from mapping_engine.schema.models import Condition, FindGoogleSheetNode, GoogleSheetNode, SheetConfig
from shared.config import config
from shared.logger import get_logger

logger = get_logger("mapping_engine.runtime.sheet_nodes")


# -----------------------------
# Row matching for writes
# -----------------------------
def row_matches_condition(condition: Condition, row: Sequence[Any], header: Sequence[str]) -> bool:
    if condition.field not in header:
        return False
    index = list(header).index(condition.field)
    cell = row[index] if index < len(row) else None
    cell_text = str(cell) if cell not in (None, "") else ""
    needle = "" if condition.value is None else str(condition.value)

    operator = condition.operator
    if operator == "=":
        return loose_equals(cell_text, condition.value)
    if operator == "!=":
        return not loose_equals(cell_text, condition.value)
    if operator == "LIKE":
        return needle in cell_text
    if operator == "NOT LIKE":
        return needle not in cell_text
    if operator == "STARTS WITH":
        return cell_text.startswith(needle)
    if operator == "ENDS WITH":
        return cell_text.endswith(needle)
    return False


def row_matches(custom_logic: str, conditions: Sequence[Condition], row: Sequence[Any], header: Sequence[str]) -> bool:
    results = [row_matches_condition(condition, row, header) for condition in conditions]
    return evaluate_with_results(custom_logic, results)


def build_row(header: Sequence[str], mappings: Sequence[Any], context: Mapping[str, Any]) -> List[Any]:
    by_column = {}
    for mapping in mappings:
        by_column.setdefault(mapping.column.strip(), mapping)
    row: List[Any] = []
    for column in header:
        mapping = by_column.get(column)
        if mapping is None:
            row.append("")
            continue
        value = context.get(mapping.id)
        row.append("" if value is None else value)
    return row


async def write_sheet(node: GoogleSheetNode, context: Mapping[str, Any], client: GoogleSheetsClient) -> Dict[str, Any]:
    """
    Ensure the mapped columns exist in the header row, then update the first
    matching row (every matching row when ``updateMultiple`` is set) or
    append a new row when nothing matched.
    """

    cfg = node.config
    if not cfg.spreadsheet_id:
        raise NodeValidationError(f"Google Sheet node {node.node_id} is missing spreadsheetId")
    custom_logic = cfg.custom_logic or "1"

    try:
        header = await client.read_header(cfg.spreadsheet_id, cfg.sheet_name)
        required = [mapping.column.strip() for mapping in node.field_mappings]
        missing = [column for column in dict.fromkeys(required) if column not in header]
        if missing:
            logger.info(f"Adding columns {missing} to {cfg.spreadsheet_id}/{cfg.sheet_name}")
            header = header + missing
            await client.write_header(cfg.spreadsheet_id, cfg.sheet_name, header)

        rows = await client.read_rows(cfg.spreadsheet_id, cfg.sheet_name, config.sheet_row_window)
        new_row = build_row(header, node.field_mappings, context)
        first_row = _window_start(config.sheet_row_window)

        matched = [
            first_row + offset
            for offset, row in enumerate(rows)
            if row_matches(custom_logic, cfg.sheet_conditions, row, header)
        ]
        if not cfg.update_multiple:
            matched = matched[:1]

        if matched:
            await asyncio.gather(
                *(client.update_row(cfg.spreadsheet_id, cfg.sheet_name, number, new_row) for number in matched)
            )
            return {"nodeId": node.node_id, "success": True, "message": f"{len(matched)} rows updated."}

        append_result = await client.append_row(cfg.spreadsheet_id, cfg.sheet_name, new_row)
        return {
            "nodeId": node.node_id,
            "success": True,
            "message": "Data written successfully (new row appended)",
            "appendResult": append_result,
        }
    except (MappingEngineError, httpx.HTTPError) as e:
        logger.error(f"Error writing to sheet {cfg.spreadsheet_id}: {e}")
        return {"nodeId": node.node_id, "success": False, "message": str(e), "error": str(e)}


def _window_start(window: str) -> int:
    head = window.split(":", 1)[0]
    digits = "".join(ch for ch in head if ch.isdigit())
    return int(digits) if digits else 1


# -----------------------------
# Find
# -----------------------------
def records_from_grid(row_data: Sequence[Mapping[str, Any]]) -> tuple[List[str], List[Dict[str, Any]]]:
    if not row_data:
        return [], []
    header = [str(cell.get("formattedValue") or "").strip() for cell in row_data[0].get("values") or []]
    records: List[Dict[str, Any]] = []
    for raw in row_data[1:]:
        cells = [cell.get("formattedValue") or None for cell in raw.get("values") or []]
        records.append({name: cells[i] if i < len(cells) else None for i, name in enumerate(header)})
    return header, records


def record_matches_condition(condition: Condition, record: Mapping[str, Any]) -> bool:
    value = record.get(condition.field)
    expected = condition.value
    operator = condition.operator or "="
    if expected is None or expected == "":
        if operator == "=":
            return is_blank(value)
        if operator == "!=":
            return not is_blank(value)
        return True
    if operator == "=":
        return loose_equals(value, expected)
    if operator == "!=":
        return not loose_equals(value, expected)
    if operator == "LIKE":
        return bool(value) and str(expected) in str(value)
    if operator == "NOT LIKE":
        return bool(value) and str(expected) not in str(value)
    return True


def filter_records(records: Sequence[Dict[str, Any]], cfg: SheetConfig) -> List[Dict[str, Any]]:
    conditions = cfg.find_sheet_conditions

    def keep(record: Mapping[str, Any]) -> bool:
        results = [record_matches_condition(condition, record) for condition in conditions]
        if cfg.logic_type == "Custom" and cfg.custom_logic:
            return evaluate_with_results(cfg.custom_logic, results)
        if cfg.logic_type == "OR":
            return any(results)
        return all(results)

    return [record for record in records if keep(record)]


def sort_records(records: List[Dict[str, Any]], field: Optional[str], order: str, header: Sequence[str]) -> List[Dict[str, Any]]:
    if not field or field not in header:
        return records
    direction = -1 if (order or "ASC").upper() == "DESC" else 1

    def compare(a: Mapping[str, Any], b: Mapping[str, Any]) -> int:
        left, right = a.get(field), b.get(field)
        if left is None:
            return direction
        if right is None:
            return -direction
        if left < right:
            return -direction
        if left > right:
            return direction
        return 0

    return sorted(records, key=cmp_to_key(compare))


def limit_records(records: List[Dict[str, Any]], limit: Any) -> List[Dict[str, Any]]:
    if limit in (None, "", 0, "0"):
        return records
    number = to_number(limit)
    if number != number:
        return records
    return records[: max(int(number), 0)]


async def find_sheet_records(node: FindGoogleSheetNode, client: GoogleSheetsClient) -> Dict[str, Any]:
    cfg = node.config
    if not cfg.spreadsheet_id:
        return {"nodeId": node.node_id, "error": "Missing required field: spreadsheetId"}

    row_data = await client.fetch_grid(cfg.spreadsheet_id, cfg.sheet_name)
    header, records = records_from_grid(row_data)
    records = filter_records(records, cfg)
    records = sort_records(records, cfg.sort_field, cfg.sort_order, header)
    records = limit_records(records, cfg.return_limit)
    logger.info(f"FindGoogleSheet node {node.node_id} matched {len(records)} records")
    return {"nodeId": node.node_id, "records": records}


__all__ = [
    "build_row",
    "filter_records",
    "find_sheet_records",
    "limit_records",
    "record_matches_condition",
    "records_from_grid",
    "row_matches",
    "row_matches_condition",
    "sort_records",
    "write_sheet",
]
