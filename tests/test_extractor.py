"""Integration tests for sheet extraction using golden files.

These run the whole export path (metadata, range resolution, paging,
header handling, CSV and manifest) against LocalFileTransport.
"""

from __future__ import annotations

import json
from pathlib import Path

import httpx
import pytest

from sheetexport.config import JobConfig, Settings
from sheetexport.exceptions import ApplicationError, InvalidRangeBoundsError, UserError
from sheetexport.extractor import (
    Extractor,
    export_error,
    forbidden_veto,
    run_job,
    spreadsheet_error,
)
from sheetexport.logging import sheet_ctx
from sheetexport.transport import (
    APIError,
    AuthenticationError,
    ForbiddenError,
    LocalFileTransport,
    NotFoundError,
    ResponseFormatError,
    SpreadsheetMetadata,
    TransportError,
)
from sheetexport.writer import TableWriter

GOLDEN_DIR = Path(__file__).parent / "golden"

EXPENSES_CSV = (
    "Item,Amount,Category\n"
    "Rent,1200,Housing\n"
    "Coffee,4.5,\n"
    "Train,60,Transport\n"
)


class GuardedTransport(LocalFileTransport):
    """Golden transport that rejects some spreadsheets like the API would."""

    def __init__(self, errors: dict[str, Exception]) -> None:
        super().__init__(GOLDEN_DIR)
        self.errors = errors

    async def get_spreadsheet(self, spreadsheet_id: str) -> SpreadsheetMetadata:
        if spreadsheet_id in self.errors:
            raise self.errors[spreadsheet_id]
        return await super().get_spreadsheet(spreadsheet_id)


class FailingValuesTransport(LocalFileTransport):
    """Golden transport whose values calls fail after ``ok_calls`` successes."""

    def __init__(self, error: Exception, ok_calls: int = 0) -> None:
        super().__init__(GOLDEN_DIR)
        self.error = error
        self.ok_calls = ok_calls

    async def get_values(self, spreadsheet_id: str, a1_range: str) -> list[list[str]]:
        if len(self.requests) >= self.ok_calls:
            self.requests.append(a1_range)
            raise self.error
        return await super().get_values(spreadsheet_id, a1_range)


@pytest.fixture
def writer(tmp_path: Path) -> TableWriter:
    return TableWriter(tmp_path, "in.c-budget")


class TestExtractor:
    """End-to-end exports against golden files."""

    @pytest.mark.asyncio
    async def test_whole_sheet_export(
        self, local_transport: LocalFileTransport, writer: TableWriter, make_sheet
    ) -> None:
        """Without a column range the whole sheet is exported."""
        sheet = make_sheet()
        extractor = Extractor(local_transport, writer)

        status = await extractor.run([sheet])

        assert status == {"Budget 2024": {"Expenses": "success"}}
        assert local_transport.requests == ["Expenses!A1:D1000"]
        assert writer.csv_path(sheet).read_text(encoding="utf-8") == EXPENSES_CSV
        manifest = json.loads(writer.manifest_path(sheet).read_text(encoding="utf-8"))
        assert manifest == {"destination": "in.c-budget.expenses", "incremental": False}
        assert extractor.results[0].rows_written == 3

    @pytest.mark.asyncio
    async def test_paged_export_matches_single_page(
        self, local_transport: LocalFileTransport, writer: TableWriter, make_sheet
    ) -> None:
        sheet = make_sheet()
        extractor = Extractor(local_transport, writer, fetch_row_size=2)

        await extractor.run([sheet])

        assert local_transport.requests == [
            "Expenses!A1:D2",
            "Expenses!A3:D4",
            "Expenses!A5:D6",
        ]
        assert writer.csv_path(sheet).read_text(encoding="utf-8") == EXPENSES_CSV

    @pytest.mark.asyncio
    async def test_bounded_range_without_header(
        self, local_transport: LocalFileTransport, writer: TableWriter, make_sheet
    ) -> None:
        sheet = make_sheet(
            sheetId=1234,
            sheetTitle="Q1 Summary",
            outputTable="q1",
            columnRange="A2:B3",
            header={"rows": 0},
        )
        extractor = Extractor(local_transport, writer)

        await extractor.run([sheet])

        assert local_transport.requests == ["Q1%20Summary!A2:B3"]
        assert writer.csv_path(sheet).read_text(encoding="utf-8") == (
            "Jan,100\nFeb,200\n"
        )

    @pytest.mark.asyncio
    async def test_oversized_range_is_capped(
        self,
        local_transport: LocalFileTransport,
        writer: TableWriter,
        make_sheet,
        captured_logs: list[str],
    ) -> None:
        sheet = make_sheet(
            sheetId=1234, sheetTitle="Q1 Summary", outputTable="q1", columnRange="A:Z"
        )
        extractor = Extractor(local_transport, writer)

        status = await extractor.run([sheet])

        assert status == {"Budget 2024": {"Q1 Summary": "success"}}
        assert local_transport.requests == ["Q1%20Summary!A1:C1000"]
        assert extractor.results[0].range.capped
        assert any(m.startswith("WARNING|") and "A:Z" in m for m in captured_logs)
        assert writer.csv_path(sheet).read_text(encoding="utf-8") == (
            "Month,Total\nJan,100\nFeb,200\nMar,300\n"
        )

    @pytest.mark.asyncio
    async def test_disabled_sheets_are_skipped(
        self, local_transport: LocalFileTransport, writer: TableWriter, make_sheet
    ) -> None:
        extractor = Extractor(local_transport, writer)

        status = await extractor.run([make_sheet(enabled=False)])

        assert status == {}
        assert local_transport.requests == []

    @pytest.mark.asyncio
    async def test_sheet_context_cleared(
        self, local_transport: LocalFileTransport, writer: TableWriter, make_sheet
    ) -> None:
        await Extractor(local_transport, writer).run([make_sheet()])
        assert sheet_ctx.get() is None

    @pytest.mark.asyncio
    async def test_unknown_sheet_id(
        self, local_transport: LocalFileTransport, writer: TableWriter, make_sheet
    ) -> None:
        extractor = Extractor(local_transport, writer)

        with pytest.raises(UserError, match='Sheet id "999" not found'):
            await extractor.run([make_sheet(sheetId=999)])

    @pytest.mark.asyncio
    async def test_missing_spreadsheet(
        self, local_transport: LocalFileTransport, writer: TableWriter, make_sheet
    ) -> None:
        extractor = Extractor(local_transport, writer)

        with pytest.raises(UserError, match='File "Expenses" not found in Google Drive'):
            await extractor.run([make_sheet(fileId="nonexistent")])

    @pytest.mark.asyncio
    async def test_invalid_range_bounds_propagate(
        self, local_transport: LocalFileTransport, writer: TableWriter, make_sheet
    ) -> None:
        extractor = Extractor(local_transport, writer)

        with pytest.raises(InvalidRangeBoundsError):
            await extractor.run([make_sheet(columnRange="E:A")])
        assert local_transport.requests == []


class TestExtractorErrors:
    """Failures while talking to the API."""

    @pytest.mark.asyncio
    async def test_forbidden_sheet_is_skipped(
        self, writer: TableWriter, make_sheet, captured_logs: list[str]
    ) -> None:
        transport = GuardedTransport(
            {
                "locked": ForbiddenError(
                    "Access denied", status_code=403, reason="forbidden", continue_job=True
                )
            }
        )
        extractor = Extractor(transport, writer)

        status = await extractor.run(
            [make_sheet(fileId="locked", sheetTitle="Locked"), make_sheet()]
        )

        assert status == {"Budget 2024": {"Locked": "skipped", "Expenses": "success"}}
        assert any("You don't have access" in m for m in captured_logs)

    @pytest.mark.asyncio
    async def test_fatal_forbidden_stops_job(
        self, writer: TableWriter, make_sheet
    ) -> None:
        transport = GuardedTransport(
            {
                "budget_2024": ForbiddenError(
                    "Access denied",
                    status_code=403,
                    reason="dailyLimitExceeded",
                    continue_job=False,
                )
            }
        )

        with pytest.raises(UserError, match="Reason: dailyLimitExceeded"):
            await Extractor(transport, writer).run([make_sheet()])

    @pytest.mark.asyncio
    async def test_rejected_credentials(self, writer: TableWriter, make_sheet) -> None:
        transport = GuardedTransport(
            {"budget_2024": AuthenticationError("Invalid token", status_code=401)}
        )

        with pytest.raises(UserError, match="Expired or wrong credentials"):
            await Extractor(transport, writer).run([make_sheet()])

    @pytest.mark.asyncio
    async def test_export_failure_discards_partial_csv(
        self, writer: TableWriter, make_sheet
    ) -> None:
        sheet = make_sheet()
        transport = FailingValuesTransport(
            APIError("API error (500): boom", status_code=500, reason="INTERNAL", body="boom"),
            ok_calls=1,
        )
        extractor = Extractor(transport, writer, fetch_row_size=2)

        with pytest.raises(UserError) as exc_info:
            await extractor.run([sheet])

        error = exc_info.value
        assert str(error) == "Error importing file - sheet: 'Budget 2024 - Expenses'"
        assert error.data["reason"] == "INTERNAL"
        assert error.data["body"] == "boom"
        assert error.data["sheet"]["sheetTitle"] == "Expenses"
        assert len(transport.requests) == 2
        assert not writer.csv_path(sheet).exists()
        assert not writer.manifest_path(sheet).exists()

    @pytest.mark.asyncio
    async def test_unexpected_export_failure(
        self, writer: TableWriter, make_sheet
    ) -> None:
        transport = FailingValuesTransport(RuntimeError("disk on fire"))

        with pytest.raises(ApplicationError, match="disk on fire"):
            await Extractor(transport, writer).run([make_sheet()])


class TestErrorMapping:
    """Tests for spreadsheet_error and export_error."""

    def test_not_found(self, make_sheet) -> None:
        error = spreadsheet_error(NotFoundError("gone", status_code=404), make_sheet())
        assert isinstance(error, UserError)
        assert str(error) == 'File "Expenses" not found in Google Drive'

    def test_invalid_grant(self, make_sheet) -> None:
        error = spreadsheet_error(
            APIError(
                "bad",
                status_code=400,
                payload={"error": "invalid_grant", "error_description": "Bad Request"},
            ),
            make_sheet(),
        )
        assert str(error) == (
            'Invalid OAuth grant when fetching "Budget 2024", '
            "try reauthenticating the extractor"
        )

    def test_structured_error(self, make_sheet) -> None:
        error = spreadsheet_error(
            APIError(
                "bad",
                status_code=400,
                payload={
                    "error": {"message": "Unable to parse range", "status": "INVALID_ARGUMENT"}
                },
            ),
            make_sheet(),
        )
        assert str(error) == '"Unable to parse range" (INVALID_ARGUMENT) for "Expenses"'

    def test_error_description(self, make_sheet) -> None:
        error = spreadsheet_error(
            APIError(
                "bad",
                status_code=401,
                payload={"error": "unauthorized_client", "error_description": "Unauthorized"},
            ),
            make_sheet(),
        )
        assert str(error) == '"Unauthorized" (unauthorized_client)'

    def test_other_http_error(self, make_sheet) -> None:
        error = spreadsheet_error(
            APIError("API error (502): bad gateway", status_code=502, reason="Bad Gateway"),
            make_sheet(),
        )
        assert isinstance(error, UserError)
        assert str(error).startswith("Google Drive Error: ")
        assert error.data["reason"] == "Bad Gateway"

    @pytest.mark.parametrize(
        "failure",
        [
            TransportError("Network error: timed out"),
            ResponseFormatError("Invalid JSON in API response", status_code=200),
            KeyError("sheets"),
        ],
    )
    def test_non_http_errors_are_application_errors(self, make_sheet, failure) -> None:
        assert isinstance(spreadsheet_error(failure, make_sheet()), ApplicationError)
        assert isinstance(export_error(failure, make_sheet()), ApplicationError)

    def test_export_http_error(self, make_sheet) -> None:
        failure = APIError("API error (500): boom", status_code=500, reason="INTERNAL", body="boom")

        error = export_error(failure, make_sheet())

        assert isinstance(error, UserError)
        assert str(error) == "Error importing file - sheet: 'Budget 2024 - Expenses'"
        assert error.data["reason"] == "INTERNAL"
        assert error.data["body"] == "boom"


class TestForbiddenVeto:
    """Tests for forbidden_veto."""

    @pytest.mark.parametrize(
        "reason",
        ["insufficientPermissions", "dailyLimitExceeded", "usageLimits.userRateLimitExceededUnreg"],
    )
    def test_fatal_reasons_stop_the_job(self, reason: str) -> None:
        response = httpx.Response(403, json={"error": {"errors": [{"reason": reason}]}})
        assert forbidden_veto(response) is False

    def test_plain_forbidden_continues(self) -> None:
        response = httpx.Response(
            403, json={"error": {"errors": [{"reason": "forbidden"}], "status": "PERMISSION_DENIED"}}
        )
        assert forbidden_veto(response) is True

    def test_body_without_json(self) -> None:
        assert forbidden_veto(httpx.Response(403, text="Forbidden")) is True


class TestRunJob:
    """Tests for run_job."""

    def make_job(self, tmp_path: Path, action: str = "run") -> JobConfig:
        return JobConfig.model_validate(
            {
                "action": action,
                "parameters": {
                    "data_dir": str(tmp_path),
                    "outputBucket": "in.c-budget",
                    "sheets": [
                        {
                            "id": 0,
                            "fileId": "budget_2024",
                            "fileTitle": "Budget 2024",
                            "sheetId": 0,
                            "sheetTitle": "Expenses",
                            "outputTable": "expenses",
                        },
                        {
                            "id": 1,
                            "fileId": "budget_2024",
                            "fileTitle": "Budget 2024",
                            "sheetId": 1234,
                            "sheetTitle": "Q1 Summary",
                            "outputTable": "q1",
                            "columnRange": "A1:B2",
                        },
                    ],
                },
            }
        )

    @pytest.mark.asyncio
    async def test_run(self, tmp_path: Path, local_transport: LocalFileTransport) -> None:
        settings = Settings(_env_file=None, fetch_row_size=2)

        result = await run_job(self.make_job(tmp_path), settings, local_transport)

        assert result == {
            "status": "ok",
            "extracted": {"Budget 2024": {"Expenses": "success", "Q1 Summary": "success"}},
        }
        tables = tmp_path / "out" / "tables"
        assert sorted(p.name for p in tables.iterdir()) == [
            "budget_2024_0.csv",
            "budget_2024_0.csv.manifest",
            "budget_2024_1234.csv",
            "budget_2024_1234.csv.manifest",
        ]
        assert (tables / "budget_2024_1234.csv").read_text(encoding="utf-8") == (
            "Month,Total\nJan,100\n"
        )

    @pytest.mark.asyncio
    async def test_unknown_action(
        self, tmp_path: Path, local_transport: LocalFileTransport
    ) -> None:
        with pytest.raises(UserError, match="Action 'sync' does not exist."):
            await run_job(
                self.make_job(tmp_path, action="sync"),
                Settings(_env_file=None),
                local_transport,
            )
