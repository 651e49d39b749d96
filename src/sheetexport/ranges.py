"""Range resolution for sheet exports.

Turns a user supplied range such as ``"A:E"``, ``"A1:E10"``, ``"A10:E"`` or
``"A:E10"`` into normalized 1-based bounds that fit inside the live sheet.

Ranges that reach past the sheet are narrowed with a warning instead of
failing, because sheets grow and shrink between configuration time and run
time. Malformed or inverted ranges fail before any network call.
"""

from __future__ import annotations

import urllib.parse
from dataclasses import dataclass

from loguru import logger

from sheetexport.exceptions import (
    InvalidCellReferenceError,
    InvalidRangeBoundsError,
    InvalidRangeFormatError,
)
from sheetexport.notation import CellRef, column_to_letter, parse_cell_ref


@dataclass(frozen=True)
class SheetDimensions:
    """Grid size of a sheet as reported by the API."""

    row_count: int
    column_count: int


@dataclass(frozen=True)
class ResolvedRange:
    """Normalized, sheet-bounded export range.

    ``end_row`` is None when the range is open-ended, which means the sheet
    is read page by page until its last row.
    """

    start_column: int
    end_column: int
    start_row: int = 1
    end_row: int | None = None
    capped: bool = False

    @classmethod
    def whole_sheet(cls, dimensions: SheetDimensions) -> ResolvedRange:
        return cls(
            start_column=1,
            end_column=max(dimensions.column_count, 1),
            start_row=1,
            end_row=None,
        )

    @property
    def bounded(self) -> bool:
        return self.end_row is not None

    @property
    def width(self) -> int:
        return self.end_column - self.start_column + 1

    def to_a1(self, sheet_title: str, start_row: int, end_row: int) -> str:
        """Build the A1 locator for a row window of this range.

        The sheet title is percent-encoded because the result is embedded in
        the values URL path.
        """
        title = urllib.parse.quote(sheet_title, safe="")
        first = f"{column_to_letter(self.start_column)}{start_row}"
        last = f"{column_to_letter(self.end_column)}{end_row}"
        return f"{title}!{first}:{last}"

    def describe(self) -> str:
        end = "" if self.end_row is None else str(self.end_row)
        return (
            f"{column_to_letter(self.start_column)}{self.start_row}:"
            f"{column_to_letter(self.end_column)}{end}"
        )


def parse_range(range_string: str, sheet_title: str) -> tuple[CellRef, CellRef]:
    """Split a range string into its two cell references.

    Raises:
        InvalidRangeFormatError: if there are not exactly two parts or either
            part is not a valid cell token.
    """
    parts = range_string.split(":")
    if len(parts) != 2:
        raise InvalidRangeFormatError(range_string, sheet_title)
    try:
        return parse_cell_ref(parts[0]), parse_cell_ref(parts[1])
    except InvalidCellReferenceError as e:
        raise InvalidRangeFormatError(range_string, sheet_title) from e


def resolve_range(
    range_string: str,
    row_count: int,
    column_count: int,
    sheet_title: str,
) -> ResolvedRange:
    """Parse, validate and cap a range against the sheet dimensions.

    Args:
        range_string: Two cell tokens joined by ``:``
        row_count: Rows in the sheet
        column_count: Columns in the sheet
        sheet_title: Used in error and warning messages

    Returns:
        ResolvedRange inside the sheet grid

    Raises:
        InvalidRangeFormatError: malformed input
        InvalidRangeBoundsError: start after end on either axis, or a row
            below 1
    """
    start, end = parse_range(range_string, sheet_title)
    start_label, end_label = range_string.split(":")

    if start.column > end.column:
        raise InvalidRangeBoundsError(
            range_string,
            sheet_title,
            axis="column",
            detail=(
                f'start column "{start_label}" must be before or equal to '
                f'end column "{end_label}"'
            ),
        )

    if start.row is not None and end.row is not None and start.row > end.row:
        raise InvalidRangeBoundsError(
            range_string,
            sheet_title,
            axis="row",
            detail=(
                f"start row {start.row} must be before or equal to end row {end.row}"
            ),
        )

    if start.column < 1 or end.column < 1:
        raise InvalidRangeBoundsError(
            range_string,
            sheet_title,
            axis="column",
            detail='start column must be at least "A"',
        )

    for row in (start.row, end.row):
        if row is not None and row < 1:
            raise InvalidRangeBoundsError(
                range_string,
                sheet_title,
                axis="row",
                detail=f"rows must be at least 1, got {row}",
            )

    max_column = max(column_count, 1)
    max_row = max(row_count, 1)

    start_column = _clamp(start.column, max_column)
    end_column = _clamp(end.column, max_column)
    start_row = _clamp(start.row, max_row) if start.row is not None else 1
    end_row = _clamp(end.row, max_row) if end.row is not None else None

    capped = (
        start_column != start.column
        or end_column != end.column
        or (start.row is not None and start_row != start.row)
        or (end.row is not None and end_row != end.row)
    )

    resolved = ResolvedRange(
        start_column=start_column,
        end_column=end_column,
        start_row=start_row,
        end_row=end_row,
        capped=capped,
    )

    if capped:
        logger.warning(
            f'Column range "{range_string}" exceeds dimensions of sheet "{sheet_title}" '
            f"({row_count} rows, {column_count} columns, "
            f"A-{column_to_letter(max_column)}); capped to {resolved.describe()}"
        )

    return resolved


def _clamp(value: int, upper: int) -> int:
    return max(1, min(value, upper))
