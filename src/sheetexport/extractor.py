"""Sheet extraction.

``Extractor`` exports each enabled sheet of a job: it fetches the sheet's
dimensions, resolves the configured range, pages through the values and
writes a CSV with its manifest. API failures are turned into UserError or
ApplicationError with messages that point at the offending sheet.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, TypeGuard

import httpx
from loguru import logger

from sheetexport.config import JobConfig, SheetConfig, Settings
from sheetexport.credentials import credentials_from_config
from sheetexport.exceptions import ApplicationError, SheetExportError, UserError
from sheetexport.logging import clear_sheet_context, set_sheet_context
from sheetexport.output import TableOutput
from sheetexport.pagination import DEFAULT_FETCH_ROW_SIZE, iter_batches
from sheetexport.ranges import ResolvedRange, SheetDimensions, resolve_range
from sheetexport.retry import RetryingClient
from sheetexport.transport import (
    AuthenticationError,
    ForbiddenError,
    GoogleSheetsTransport,
    ResponseFormatError,
    SpreadsheetMetadata,
    Transport,
    TransportError,
    error_reason,
)
from sheetexport.writer import TableWriter

# 403 reasons that must stop the whole job rather than skip one sheet
FATAL_FORBIDDEN_REASONS = frozenset(
    {
        "insufficientPermissions",
        "dailyLimitExceeded",
        "usageLimits.userRateLimitExceededUnreg",
    }
)

# Errors that are handled by the caller as they are
_PASSTHROUGH = (SheetExportError, ForbiddenError, AuthenticationError)


def forbidden_veto(response: httpx.Response) -> bool:
    """Decide whether a 403 still lets the job continue.

    Quota and permission-scope failures affect every sheet, so they stop the
    job. Any other 403 only means this resource is not shared with us.
    """
    try:
        payload = response.json()
    except ValueError:
        payload = {}
    if not isinstance(payload, dict):
        payload = {}
    return error_reason(response, payload) not in FATAL_FORBIDDEN_REASONS


@dataclass
class ExportResult:
    """Result of exporting one sheet."""

    sheet: SheetConfig
    range: ResolvedRange
    rows_written: int
    files: list[Path] = field(default_factory=list)


class Extractor:
    """Exports configured sheets through a Transport.

    Example:
        >>> extractor = Extractor(transport, TableWriter("/data", "in.c-sheets"))
        >>> status = await extractor.run(job.parameters.sheets)
    """

    def __init__(
        self,
        transport: Transport,
        writer: TableWriter,
        *,
        fetch_row_size: int = DEFAULT_FETCH_ROW_SIZE,
    ) -> None:
        """Initialize the extractor.

        Args:
            transport: Source of metadata and values
            writer: Destination of CSV files and manifests
            fetch_row_size: Rows per values call for open-ended ranges
        """
        self._transport = transport
        self._writer = writer
        self._fetch_row_size = fetch_row_size
        self.results: list[ExportResult] = []

    async def run(self, sheets: list[SheetConfig]) -> dict[str, dict[str, str]]:
        """Export all enabled sheets in order.

        Returns:
            ``{fileTitle: {sheetTitle: "success" | "skipped"}}``

        Raises:
            UserError: for problems the job configuration or permissions cause
            ApplicationError: for anything unexpected
        """
        status: dict[str, dict[str, str]] = {}

        for sheet in sheets:
            if not sheet.enabled:
                continue

            set_sheet_context(sheet.file_title, sheet.sheet_title)
            try:
                outcome = await self._run_sheet(sheet)
            finally:
                clear_sheet_context()
            status.setdefault(sheet.file_title, {})[sheet.sheet_title] = outcome

        return status

    async def _run_sheet(self, sheet: SheetConfig) -> str:
        try:
            try:
                metadata = await self._transport.get_spreadsheet(sheet.file_id)
            except _PASSTHROUGH:
                raise
            except Exception as e:
                raise spreadsheet_error(e, sheet) from e
            logger.info("Obtained spreadsheet metadata")

            logger.info(f"Extracting sheet {sheet.sheet_title}")
            try:
                result = await self.export(metadata, sheet)
            except _PASSTHROUGH:
                raise
            except Exception as e:
                raise export_error(e, sheet) from e
        except ForbiddenError as e:
            if e.continue_job:
                logger.warning("You don't have access to Google Drive resource.")
                return "skipped"
            raise UserError(f"Reason: {e.reason}", data=_error_data(e, sheet)) from e
        except AuthenticationError as e:
            raise UserError(
                "Expired or wrong credentials, please reauthorize.",
                data=_error_data(e, sheet),
            ) from e

        self.results.append(result)
        return "success"

    async def export(
        self, metadata: SpreadsheetMetadata, sheet: SheetConfig
    ) -> ExportResult:
        """Export one sheet of an already fetched spreadsheet."""
        info = metadata.sheet_by_id(sheet.sheet_id)
        if info is None:
            raise UserError(f'Sheet id "{sheet.sheet_id}" not found')

        dimensions = SheetDimensions(info.row_count, info.column_count)
        if sheet.column_range:
            resolved = resolve_range(
                sheet.column_range,
                dimensions.row_count,
                dimensions.column_count,
                info.title,
            )
        else:
            resolved = ResolvedRange.whole_sheet(dimensions)

        sink = self._writer.begin(sheet)
        output = TableOutput(
            sink,
            sheet.header.mode,
            start_column=resolved.start_column,
            sanitize=sheet.header.sanitize,
        )
        try:
            async for batch in iter_batches(
                self._transport,
                metadata.spreadsheet_id,
                info.title,
                resolved,
                dimensions,
                self._fetch_row_size,
            ):
                output.consume(batch.rows, batch.offset)
        except BaseException:
            self._writer.discard(sheet, sink)
            raise

        rows_written = output.finalize()
        files = self._writer.finalize(sheet, sink)
        logger.info(f"Exported {rows_written} rows of sheet {sheet.sheet_title}")
        return ExportResult(
            sheet=sheet, range=resolved, rows_written=rows_written, files=files
        )


def spreadsheet_error(error: Exception, sheet: SheetConfig) -> SheetExportError:
    """Map a failure while fetching spreadsheet metadata."""
    if not _is_http_error(error):
        return ApplicationError(str(error) or type(error).__name__)

    if error.status_code == 404:
        return UserError(f'File "{sheet.sheet_title}" not found in Google Drive')

    payload = error.payload
    detail = payload.get("error")
    if detail == "invalid_grant":
        return UserError(
            f'Invalid OAuth grant when fetching "{sheet.file_title}", '
            "try reauthenticating the extractor"
        )
    if (
        isinstance(detail, dict)
        and "message" in detail
        and "status" in detail
        and "error_description" not in payload
    ):
        return UserError(
            f'"{detail["message"]}" ({detail["status"]}) for "{sheet.sheet_title}"'
        )
    if payload.get("error_description"):
        return UserError(f'"{payload["error_description"]}" ({detail})')

    return UserError(
        f"Google Drive Error: {error}",
        data={
            "message": str(error),
            "reason": error.reason,
            "sheet": sheet.model_dump(by_alias=True),
        },
    )


def export_error(error: Exception, sheet: SheetConfig) -> SheetExportError:
    """Map a failure while exporting sheet values."""
    if not _is_http_error(error):
        return ApplicationError(str(error) or type(error).__name__)
    return UserError(
        f"Error importing file - sheet: '{sheet.file_title} - {sheet.sheet_title}'",
        data=_error_data(error, sheet),
    )


def _is_http_error(error: Exception) -> TypeGuard[TransportError]:
    """Whether the failure carries an HTTP status from the API."""
    return (
        isinstance(error, TransportError)
        and not isinstance(error, ResponseFormatError)
        and error.status_code is not None
    )


def _error_data(error: TransportError, sheet: SheetConfig) -> dict[str, Any]:
    return {
        "message": str(error),
        "reason": error.reason,
        "body": error.body[:300],
        "sheet": sheet.model_dump(by_alias=True),
    }


def build_transport(job: JobConfig, settings: Settings) -> GoogleSheetsTransport:
    """Authenticate and build the Sheets API transport for a job."""
    credentials = credentials_from_config(job)
    token = credentials.get_token()
    logger.info(f"Authenticated as {token.account or credentials.auth_mode}")
    client = RetryingClient(
        token.access_token,
        backoff_attempts=settings.backoff_attempts,
        on_forbidden=forbidden_veto,
        on_unauthorized=credentials.arefresh,
        timeout=settings.timeout,
    )
    return GoogleSheetsTransport(client)


async def run_job(
    job: JobConfig, settings: Settings, transport: Transport | None = None
) -> dict[str, Any]:
    """Run a job file end to end.

    Args:
        job: Validated job configuration
        settings: Runtime settings
        transport: Transport to use instead of the Google Sheets API

    Returns:
        ``{"status": "ok", "extracted": {fileTitle: {sheetTitle: status}}}``

    Raises:
        UserError: for an unknown action or any user-actionable failure
    """
    if job.action != "run":
        raise UserError(f"Action '{job.action}' does not exist.")

    if transport is None:
        transport = build_transport(job, settings)
    writer = TableWriter(job.parameters.data_dir, job.parameters.output_bucket)
    extractor = Extractor(transport, writer, fetch_row_size=settings.fetch_row_size)
    try:
        extracted = await extractor.run(job.parameters.sheets)
    finally:
        await transport.close()
    return {"status": "ok", "extracted": extracted}
