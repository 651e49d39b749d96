"""Transport layer for fetching spreadsheet metadata and values.

Defines the Transport protocol and implementations:
- GoogleSheetsTransport: Production transport using the Google Sheets API
- LocalFileTransport: Test transport reading from local golden files
"""

from __future__ import annotations

import json
import urllib.parse
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path  # noqa: TC003 - used at runtime
from typing import Any

import httpx

from sheetexport.ranges import parse_range
from sheetexport.retry import RetryingClient

# API constants
API_BASE = "https://sheets.googleapis.com/v4/spreadsheets"
SPREADSHEET_FIELDS = ",".join(
    [
        "spreadsheetId",
        "properties.title",
        "sheets.properties.gridProperties",
        "sheets.properties.sheetId",
        "sheets.properties.title",
    ]
)
BODY_SNIPPET_LENGTH = 300


class TransportError(Exception):
    """Base exception for transport errors.

    HTTP failures carry the status code, a short reason, the start of the
    response body and, when the body is JSON, its decoded form.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        reason: str = "",
        body: str = "",
        payload: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.reason = reason
        self.body = body
        self.payload = payload or {}


class AuthenticationError(TransportError):
    """Raised when the access token is rejected (401) after a refresh attempt."""


class ForbiddenError(TransportError):
    """Raised on 403. ``continue_job`` is the forbidden-veto callback's answer."""

    def __init__(self, *args: Any, continue_job: bool = False, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.continue_job = continue_job


class NotFoundError(TransportError):
    """Raised when a spreadsheet or range is not found (404)."""


class APIError(TransportError):
    """Raised when the API returns any other error status."""


class ResponseFormatError(TransportError):
    """Raised when a successful response body is not the expected JSON."""


@dataclass(frozen=True)
class SheetInfo:
    """Information about a single sheet within a spreadsheet."""

    sheet_id: int
    title: str
    row_count: int
    column_count: int


@dataclass(frozen=True)
class SpreadsheetMetadata:
    """Metadata about a spreadsheet, including sheet dimensions."""

    spreadsheet_id: str
    title: str
    sheets: tuple[SheetInfo, ...]
    raw: dict[str, Any] = field(default_factory=dict)

    def sheet_by_id(self, sheet_id: int | str) -> SheetInfo | None:
        for sheet in self.sheets:
            if str(sheet.sheet_id) == str(sheet_id):
                return sheet
        return None


class Transport(ABC):
    """Abstract base class for spreadsheet data transport.

    Implementations must provide methods to fetch metadata and cell values
    from a spreadsheet source (Google API, local files, etc.).
    """

    @abstractmethod
    async def get_spreadsheet(self, spreadsheet_id: str) -> SpreadsheetMetadata:
        """Fetch spreadsheet metadata without cell data.

        Args:
            spreadsheet_id: The spreadsheet identifier

        Returns:
            SpreadsheetMetadata with sheet titles and grid sizes
        """
        ...

    @abstractmethod
    async def get_values(self, spreadsheet_id: str, a1_range: str) -> list[list[str]]:
        """Fetch the cell values of one range.

        Args:
            spreadsheet_id: The spreadsheet identifier
            a1_range: Range locator with an URL-encoded sheet title,
                e.g. ``Sheet%201!A1:E1000``

        Returns:
            Rows of cell text. Trailing empty cells and rows are absent.
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Close any open connections."""
        ...


def parse_spreadsheet_metadata(
    data: dict[str, Any], spreadsheet_id: str
) -> SpreadsheetMetadata:
    sheets: list[SheetInfo] = []
    for sheet in data.get("sheets", []):
        props = sheet.get("properties", {})
        grid_props = props.get("gridProperties", {})
        sheets.append(
            SheetInfo(
                sheet_id=props.get("sheetId", 0),
                title=props.get("title", "Sheet1"),
                row_count=grid_props.get("rowCount", 0),
                column_count=grid_props.get("columnCount", 26),
            )
        )

    return SpreadsheetMetadata(
        spreadsheet_id=data.get("spreadsheetId", spreadsheet_id),
        title=data.get("properties", {}).get("title", ""),
        sheets=tuple(sheets),
        raw=data,
    )


def _parse_values(data: dict[str, Any]) -> list[list[str]]:
    values = data.get("values", [])
    if not isinstance(values, list):
        raise ResponseFormatError("Unexpected 'values' payload in API response")
    return [["" if cell is None else str(cell) for cell in row] for row in values]


def error_reason(response: httpx.Response, payload: dict[str, Any]) -> str:
    """Best description of why the API rejected a request.

    Prefers ``error.errors[0].reason``, then ``error.status``, then the HTTP
    reason phrase.
    """
    error = payload.get("error")
    if isinstance(error, dict):
        details = error.get("errors")
        if isinstance(details, list) and details and isinstance(details[0], dict):
            reason = details[0].get("reason")
            if reason:
                return str(reason)
        if error.get("status"):
            return str(error["status"])
    elif isinstance(error, str) and error:
        return error
    return response.reason_phrase


def _decode_error_body(response: httpx.Response) -> dict[str, Any]:
    try:
        payload = response.json()
    except ValueError:
        return {}
    return payload if isinstance(payload, dict) else {}


class GoogleSheetsTransport(Transport):
    """Production transport that fetches data from the Google Sheets API.

    All calls go through a RetryingClient, which owns the bearer token and
    the retry policy.
    """

    def __init__(self, client: RetryingClient) -> None:
        """Initialize the transport.

        Args:
            client: Authenticated retrying HTTP client
        """
        self._client = client

    async def get_spreadsheet(self, spreadsheet_id: str) -> SpreadsheetMetadata:
        """Fetch spreadsheet metadata from Google Sheets API."""
        url = f"{API_BASE}/{spreadsheet_id}"
        response = await self._request(url, params={"fields": SPREADSHEET_FIELDS})
        return parse_spreadsheet_metadata(response, spreadsheet_id)

    async def get_values(self, spreadsheet_id: str, a1_range: str) -> list[list[str]]:
        """Fetch one range of values from Google Sheets API."""
        url = f"{API_BASE}/{spreadsheet_id}/values/{a1_range}"
        response = await self._request(url)
        return _parse_values(response)

    async def _request(self, url: str, **options: Any) -> dict[str, Any]:
        """Make an authenticated GET request and decode the JSON body."""
        try:
            result = await self._client.send(
                url, headers={"Accept": "application/json"}, **options
            )
        except httpx.RequestError as e:
            raise TransportError(f"Network error: {e}") from e

        response = result.response
        if response.is_success:
            try:
                data = response.json()
            except ValueError as e:
                raise ResponseFormatError(
                    f"Invalid JSON in API response: {response.text[:BODY_SNIPPET_LENGTH]}",
                    status_code=response.status_code,
                ) from e
            if not isinstance(data, dict):
                raise ResponseFormatError(
                    "Expected a JSON object in API response",
                    status_code=response.status_code,
                )
            return data

        status = response.status_code
        payload = _decode_error_body(response)
        reason = error_reason(response, payload)
        body = response.text[:BODY_SNIPPET_LENGTH]
        details: dict[str, Any] = {
            "status_code": status,
            "reason": reason,
            "body": body,
            "payload": payload,
        }
        if status == 401:
            raise AuthenticationError("Invalid or expired access token", **details)
        if status == 403:
            raise ForbiddenError(
                f"Access denied ({reason}). Check your scopes and permissions.",
                continue_job=bool(result.continue_job),
                **details,
            )
        if status == 404:
            raise NotFoundError(
                "Spreadsheet not found. Check the ID and sharing permissions.",
                **details,
            )
        raise APIError(f"API error ({status}): {body}", **details)

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.close()


class LocalFileTransport(Transport):
    """Test transport that reads from local golden files.

    Expected directory structure:
        golden_dir/
            <spreadsheet_id>/
                metadata.json   (spreadsheets.get response)
                values.json     ({"<sheet title>": [[cell, ...], ...]})

    ``get_values`` slices the stored grid by the requested range and drops
    trailing empty cells and rows, as the API does. Requested ranges are
    recorded in ``requests`` for later inspection.
    """

    def __init__(self, golden_dir: Path) -> None:
        """Initialize the transport.

        Args:
            golden_dir: Directory containing golden test files
        """
        self._golden_dir = golden_dir
        self.requests: list[str] = []

    async def get_spreadsheet(self, spreadsheet_id: str) -> SpreadsheetMetadata:
        """Read metadata from local file."""
        data = self._read_json(spreadsheet_id, "metadata.json")
        return parse_spreadsheet_metadata(data, spreadsheet_id)

    async def get_values(self, spreadsheet_id: str, a1_range: str) -> list[list[str]]:
        """Read a range of values from local file."""
        self.requests.append(a1_range)
        grids = self._read_json(spreadsheet_id, "values.json")

        encoded_title, _, cells = a1_range.rpartition("!")
        title = urllib.parse.unquote(encoded_title)
        start, end = parse_range(cells, title)
        grid = grids.get(title, [])

        first_row = (start.row or 1) - 1
        last_row = end.row if end.row is not None else len(grid)
        rows = [
            _trim_trailing(
                ["" if cell is None else str(cell) for cell in row][
                    start.column - 1 : end.column
                ]
            )
            for row in grid[first_row:last_row]
        ]
        while rows and not rows[-1]:
            rows.pop()
        return rows

    async def close(self) -> None:
        """No-op for local file transport."""
        pass

    def _read_json(self, spreadsheet_id: str, name: str) -> dict[str, Any]:
        path = self._golden_dir / spreadsheet_id / name
        if not path.exists():
            raise NotFoundError(f"Golden file not found: {path}", status_code=404)
        data: dict[str, Any] = json.loads(path.read_text(encoding="utf-8"))
        return data


def _trim_trailing(row: list[str]) -> list[str]:
    end = len(row)
    while end > 0 and row[end - 1] == "":
        end -= 1
    return row[:end]
