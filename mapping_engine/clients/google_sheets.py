"""
Google Sheets API v4 client for the spreadsheet nodes.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx

from mapping_engine.errors import SheetsApiError
from shared.logger import get_logger

logger = get_logger("mapping_engine.clients.google_sheets")

SHEETS_API_URL = "https://sheets.googleapis.com/v4/spreadsheets"


def a1_range(sheet_name: str, cells: str) -> str:
    """Quote a sheet name into an A1 range, e.g. ``'My Sheet'!1:1``."""
    escaped = sheet_name.replace("'", "''")
    return f"'{escaped}'!{cells}"


class GoogleSheetsClient:
    """Thin wrapper over the values and spreadsheet endpoints."""

    def __init__(self, access_token: str, http_client: httpx.AsyncClient) -> None:
        self.access_token = access_token
        self.http_client = http_client

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
        }

    def _values_url(self, spreadsheet_id: str, range_name: str, suffix: str = "") -> str:
        return f"{SHEETS_API_URL}/{spreadsheet_id}/values/{quote(range_name, safe='')}{suffix}"

    async def _call(self, method: str, url: str, **kwargs: Any) -> Dict[str, Any]:
        response = await self.http_client.request(method, url, headers=self._headers(), **kwargs)
        if response.status_code == 401:
            logger.error("Google Sheets API authentication failed")
            raise SheetsApiError(
                "Google Sheets authentication failed. Please reconnect your Google account.",
                status_code=401,
            )
        if response.status_code == 404:
            logger.error(f"Spreadsheet not found: {url}")
            raise SheetsApiError("Spreadsheet not found", status_code=404)
        if response.status_code >= 400:
            logger.error(f"Google Sheets API error: {response.status_code} {response.text}")
            raise SheetsApiError(
                f"Google Sheets API error: {response.text or response.status_code}",
                status_code=response.status_code,
            )
        if not response.content:
            return {}
        try:
            body = response.json()
        except ValueError:
            return {}
        return body if isinstance(body, dict) else {}

    # -----------------------------
    # Values API
    # -----------------------------
    async def read_header(self, spreadsheet_id: str, sheet_name: str) -> List[str]:
        data = await self._call("GET", self._values_url(spreadsheet_id, a1_range(sheet_name, "1:1")))
        rows = data.get("values") or []
        return [str(cell) for cell in rows[0]] if rows else []

    async def write_header(self, spreadsheet_id: str, sheet_name: str, header: List[str]) -> None:
        logger.info(f"Writing {len(header)} header columns to {spreadsheet_id}/{sheet_name}")
        await self._call(
            "PUT",
            self._values_url(spreadsheet_id, a1_range(sheet_name, "1:1")),
            params={"valueInputOption": "RAW"},
            json={"values": [header]},
        )

    async def read_rows(self, spreadsheet_id: str, sheet_name: str, window: str) -> List[List[Any]]:
        data = await self._call("GET", self._values_url(spreadsheet_id, a1_range(sheet_name, window)))
        return list(data.get("values") or [])

    async def update_row(
        self,
        spreadsheet_id: str,
        sheet_name: str,
        row_number: int,
        values: List[Any],
    ) -> Dict[str, Any]:
        return await self._call(
            "PUT",
            self._values_url(spreadsheet_id, a1_range(sheet_name, f"{row_number}:{row_number}")),
            params={"valueInputOption": "RAW"},
            json={"values": [values]},
        )

    async def append_row(self, spreadsheet_id: str, sheet_name: str, values: List[Any]) -> Dict[str, Any]:
        return await self._call(
            "POST",
            self._values_url(spreadsheet_id, a1_range(sheet_name, "A:Z"), ":append"),
            params={"valueInputOption": "RAW", "insertDataOption": "INSERT_ROWS"},
            json={"values": [values]},
        )

    # -----------------------------
    # Grid API
    # -----------------------------
    async def fetch_grid(self, spreadsheet_id: str, sheet_name: Optional[str] = None) -> List[Dict[str, Any]]:
        """
        Return ``rowData`` of the named sheet, or of the first sheet when the
        name is not given or not present.
        """

        data = await self._call(
            "GET",
            f"{SHEETS_API_URL}/{spreadsheet_id}",
            params={
                "includeGridData": "true",
                "fields": "sheets/properties/title,sheets/data/rowData/values/formattedValue",
            },
        )
        sheets = data.get("sheets") or []
        if not sheets:
            return []
        chosen = sheets[0]
        if sheet_name:
            for sheet in sheets:
                if (sheet.get("properties") or {}).get("title") == sheet_name:
                    chosen = sheet
                    break
        grids = chosen.get("data") or []
        return list(grids[0].get("rowData") or []) if grids else []


__all__ = ["GoogleSheetsClient", "SHEETS_API_URL", "a1_range"]
