"""Paginated extraction of sheet values.

A bounded range (one with an end row) is fetched in a single call. An
open-ended range is read in windows of ``fetch_row_size`` rows, starting at
the range's first row and stopping after the sheet's last row.
"""

from __future__ import annotations

import math
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from loguru import logger

if TYPE_CHECKING:
    from sheetexport.ranges import ResolvedRange, SheetDimensions
    from sheetexport.transport import Transport

DEFAULT_FETCH_ROW_SIZE = 1000


@dataclass(frozen=True)
class FetchWindow:
    """One values call: an A1 range and the rows it covers."""

    spreadsheet_id: str
    range: str
    offset: int
    limit: int

    @property
    def end_row(self) -> int:
        return self.offset + self.limit - 1


@dataclass(frozen=True)
class RowBatch:
    """Rows returned for a window, tagged with the window's first row."""

    offset: int
    rows: list[list[str]] = field(default_factory=list)


def plan_windows(
    spreadsheet_id: str,
    sheet_title: str,
    resolved: ResolvedRange,
    dimensions: SheetDimensions,
    fetch_row_size: int = DEFAULT_FETCH_ROW_SIZE,
) -> list[FetchWindow]:
    """Compute the windows needed to read ``resolved``.

    Examples:
        A bounded range ``A1:E10`` -> one window ``A1:E10``.
        An open range over 2500 rows with size 1000 -> windows at rows 1,
        1001 and 2001.
    """
    if fetch_row_size < 1:
        raise ValueError(f"fetch_row_size must be at least 1, got {fetch_row_size}")

    if resolved.end_row is not None:
        return [
            FetchWindow(
                spreadsheet_id=spreadsheet_id,
                range=resolved.to_a1(sheet_title, resolved.start_row, resolved.end_row),
                offset=resolved.start_row,
                limit=resolved.end_row - resolved.start_row + 1,
            )
        ]

    windows: list[FetchWindow] = []
    offset = resolved.start_row
    while offset <= dimensions.row_count:
        windows.append(
            FetchWindow(
                spreadsheet_id=spreadsheet_id,
                range=resolved.to_a1(
                    sheet_title, offset, offset + fetch_row_size - 1
                ),
                offset=offset,
                limit=fetch_row_size,
            )
        )
        offset += fetch_row_size
    return windows


def window_count(
    resolved: ResolvedRange,
    dimensions: SheetDimensions,
    fetch_row_size: int = DEFAULT_FETCH_ROW_SIZE,
) -> int:
    """Number of values calls ``plan_windows`` will produce."""
    if resolved.end_row is not None:
        return 1
    remaining = dimensions.row_count - resolved.start_row + 1
    if remaining <= 0:
        return 0
    return math.ceil(remaining / fetch_row_size)


async def iter_batches(
    transport: Transport,
    spreadsheet_id: str,
    sheet_title: str,
    resolved: ResolvedRange,
    dimensions: SheetDimensions,
    fetch_row_size: int = DEFAULT_FETCH_ROW_SIZE,
) -> AsyncIterator[RowBatch]:
    """Fetch the windows of a range one after another.

    Yields batches in increasing offset order. For open-ended ranges, empty
    windows are skipped; a bounded range always yields exactly one batch.
    """
    windows = plan_windows(
        spreadsheet_id, sheet_title, resolved, dimensions, fetch_row_size
    )
    if resolved.capped:
        logger.warning(
            f'Exporting capped range {resolved.describe()} of sheet "{sheet_title}"'
        )

    for window in windows:
        logger.info(f"Extracting rows {window.offset} to {window.end_row}")
        rows = await transport.get_values(spreadsheet_id, window.range)
        if rows or resolved.bounded:
            yield RowBatch(offset=window.offset, rows=rows)
