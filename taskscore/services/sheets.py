from __future__ import annotations

import logging
from typing import Dict, List, Optional
from urllib.parse import quote

import httpx

from ..errors import GenericFetchFailure, NotConfigured, PermissionDenied
from ..models import TaskRecord

logger = logging.getLogger(__name__)

REQUIRED_HEADERS = {
    "task": "Task in the Day (As in Day Plan)",
    "situation": "Situation (S)",
    "behavior": "Behavior (B)",
    "impact": "Impact (I)",
    "action": "Action Item (A)",
}
OPTIONAL_HEADERS = {
    "date": "Date",
    "category": "Category",
}
TEXT_FIELDS = ("task", "situation", "behavior", "impact", "action")


class SheetsClient:
    """Reads task rows from a Google Sheet through the Sheets v4 values API.

    Each employee has their own sub-sheet; ``selector`` is the sub-sheet title.
    The sheet must be readable with a plain API key ("Anyone with the link").
    """

    def __init__(
        self,
        sheet_id: Optional[str],
        api_key: Optional[str],
        default_range: str = "Sheet1!A:J",
        base_url: str = "https://sheets.googleapis.com",
        http: Optional[httpx.AsyncClient] = None,
        timeout: float = 30,
    ):
        self.sheet_id = sheet_id
        self.api_key = api_key
        self.default_range = default_range
        self.base_url = base_url.rstrip("/")
        self._http = http
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings) -> "SheetsClient":
        return cls(
            settings.sheet_id,
            settings.google_api_key,
            default_range=settings.sheet_range,
            base_url=settings.sheets_base_url,
        )

    async def list_employees(self) -> List[str]:
        data = await self._get(
            f"/v4/spreadsheets/{self.sheet_id}", {"fields": "sheets.properties.title"}
        )
        titles = []
        sheets = data.get("sheets") or []
        if not isinstance(sheets, list):
            raise GenericFetchFailure("Google Sheets returned malformed sheet metadata")
        for sheet in sheets:
            properties = sheet.get("properties") if isinstance(sheet, dict) else None
            title = properties.get("title") if isinstance(properties, dict) else None
            if title:
                titles.append(title)
        return titles

    async def fetch_tasks(self, selector: Optional[str] = None) -> List[TaskRecord]:
        sheet_range = self._range_for(selector)
        data = await self._get(f"/v4/spreadsheets/{self.sheet_id}/values/{quote(sheet_range, safe='')}")
        rows = data.get("values") or []
        if not isinstance(rows, list) or not all(isinstance(row, list) for row in rows):
            raise GenericFetchFailure("Google Sheets returned malformed values")
        if len(rows) < 2:
            logger.info("No data rows in %s; a header row and at least one data row are required", sheet_range)
            return []
        records = self._parse_rows(rows)
        logger.info("Fetched %d tasks from %s", len(records), sheet_range)
        return records

    async def fetch_distinct_dates(self, selector: str) -> List[str]:
        seen = set()
        dates: List[str] = []
        for record in await self.fetch_tasks(selector):
            if record.date and record.date not in seen:
                seen.add(record.date)
                dates.append(record.date)
        return dates

    def _range_for(self, selector: Optional[str]) -> str:
        if not selector:
            return self.default_range
        columns = self.default_range.split("!", 1)[1] if "!" in self.default_range else "A:J"
        escaped = selector.replace("'", "''")
        return f"'{escaped}'!{columns}"

    async def _get(self, path: str, params: Optional[Dict[str, str]] = None) -> dict:
        self._ensure_configured()
        query = dict(params or {})
        query["key"] = self.api_key
        url = f"{self.base_url}{path}"
        try:
            if self._http is not None:
                response = await self._http.get(url, params=query)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.get(url, params=query)
        except httpx.HTTPError as exc:
            raise GenericFetchFailure(f"Failed to reach Google Sheets: {exc}") from exc

        if response.status_code == 403:
            logger.error("Google Sheets refused access: %s", response.text[:500])
            raise PermissionDenied(
                "Permission Denied (403). The Google Sheet is likely not public or the API key "
                "is misconfigured. Please ensure 'Anyone with the link' can view."
            )
        if response.is_error:
            logger.error("Google Sheets API error %s: %s", response.status_code, response.text[:500])
            raise GenericFetchFailure(
                f"Failed to fetch from Google Sheets. Status: {response.status_code} {response.reason_phrase}"
            )
        try:
            body = response.json()
        except ValueError as exc:
            raise GenericFetchFailure("Google Sheets returned a non-JSON body") from exc
        if not isinstance(body, dict):
            raise GenericFetchFailure("Google Sheets returned a non-object body")
        return body

    def _ensure_configured(self):
        if not self.api_key:
            raise NotConfigured("Google API Key is not configured.")
        if not self.sheet_id:
            raise NotConfigured("Google Sheet ID is not configured.")

    @staticmethod
    def _parse_rows(rows: List[List[str]]) -> List[TaskRecord]:
        headers = [str(h).strip().lower() for h in rows[0]]
        mapping = {key: _index(headers, title) for key, title in REQUIRED_HEADERS.items()}
        missing = [REQUIRED_HEADERS[key] for key, idx in mapping.items() if idx is None]
        if missing:
            logger.error("Headers found in sheet: %s", rows[0])
            raise GenericFetchFailure(
                "The following required column headers were not found in the sheet: "
                f"{', '.join(missing)}. Please check for typos or extra spaces."
            )
        mapping.update({key: _index(headers, title) for key, title in OPTIONAL_HEADERS.items()})

        records: List[TaskRecord] = []
        for row_number, row in enumerate(rows[1:], start=1):
            fields = {key: _cell(row, idx) for key, idx in mapping.items()}
            text = ". ".join(fields[key] for key in TEXT_FIELDS if fields[key])
            if not text:
                continue
            records.append(TaskRecord(id=row_number, text=text, **fields))
        return records


def _index(headers: List[str], title: str) -> Optional[int]:
    try:
        return headers.index(title.lower())
    except ValueError:
        return None


def _cell(row: List[str], idx: Optional[int]) -> Optional[str]:
    if idx is None or idx >= len(row):
        return None
    value = str(row[idx]).strip()
    return value or None
