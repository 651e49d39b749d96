"""Tabular output assembly.

``TableOutput`` receives the batches of one sheet export in order, fixes the
header on the first batch that carries rows and writes every row to a sink
with exactly as many fields as the header.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from sheetexport.notation import column_to_letter

_NON_IDENTIFIER_RE = re.compile(r"[^A-Za-z0-9_]+")


class RowSink(Protocol):
    """Anything with a ``csv.writer``-style ``writerow``."""

    def writerow(self, row: list[str], /) -> object: ...


class HeaderKind(Enum):
    NONE = "none"
    EXPLICIT = "explicit"


@dataclass(frozen=True)
class HeaderMode:
    """How the header of an export is obtained.

    ``NONE``: the sheet has no header; column letters are generated.
    ``EXPLICIT``: the header is row ``depth`` of the first page; rows above
    it are dropped.
    """

    kind: HeaderKind
    depth: int = 0

    @classmethod
    def no_header(cls) -> HeaderMode:
        return cls(HeaderKind.NONE, 0)

    @classmethod
    def explicit(cls, depth: int) -> HeaderMode:
        if depth < 1:
            raise ValueError(f"Header depth must be at least 1, got {depth}")
        return cls(HeaderKind.EXPLICIT, depth)

    @classmethod
    def from_rows(cls, rows: int) -> HeaderMode:
        """Map the configured ``header.rows`` value to a mode."""
        if rows < 0:
            raise ValueError(f"Header rows must not be negative, got {rows}")
        return cls.no_header() if rows == 0 else cls.explicit(rows)


def sanitize_header_cell(value: str) -> str:
    """Turn header text into a column identifier.

    Runs of characters other than ASCII letters, digits and underscores
    become one underscore; leading and trailing underscores are removed.
    Applying it twice gives the same result as applying it once.

    Examples:
        "First Name" -> "First_Name", "  Price ($) " -> "Price", "id" -> "id"
    """
    return _NON_IDENTIFIER_RE.sub("_", value).strip("_")


def normalize_width(row: list[str], width: int) -> list[str]:
    """Truncate or right-pad a row with empty strings to ``width`` fields."""
    if len(row) >= width:
        return row[:width]
    return row + [""] * (width - len(row))


class TableOutput:
    """Writes the rows of one sheet export to a sink.

    Example:
        >>> output = TableOutput(csv.writer(f), HeaderMode.explicit(1))
        >>> output.consume([["name", "age"], ["Al", "30"]], offset=1)
        >>> output.consume([["Bo", "40"]], offset=1001)
        >>> output.finalize()
        2
    """

    def __init__(
        self,
        sink: RowSink,
        header_mode: HeaderMode,
        *,
        start_column: int = 1,
        sanitize: bool = True,
    ) -> None:
        """Initialize the assembler.

        Args:
            sink: Receives normalized rows
            header_mode: Where the header comes from
            start_column: First exported column, used for generated headers
            sanitize: Sanitize header cells taken from the sheet
        """
        self._sink = sink
        self._mode = header_mode
        self._start_column = start_column
        self._sanitize = sanitize
        self._header: list[str] | None = None
        self._last_offset: int | None = None
        self._rows_written = 0
        self._finalized = False

    @property
    def header(self) -> list[str] | None:
        return self._header

    @property
    def header_length(self) -> int:
        return len(self._header) if self._header is not None else 0

    @property
    def rows_written(self) -> int:
        """Data rows written so far, not counting the header line."""
        return self._rows_written

    def consume(self, rows: list[list[str]], offset: int) -> None:
        """Write one batch.

        Args:
            rows: Rows of the batch, possibly ragged
            offset: Sheet row number of the batch's first row. Must increase
                from call to call.
        """
        if self._finalized:
            raise RuntimeError("Cannot consume rows after finalize()")
        if self._last_offset is not None and offset <= self._last_offset:
            raise ValueError(
                f"Batches must arrive in increasing row order: {offset} after "
                f"{self._last_offset}"
            )
        self._last_offset = offset

        if not rows:
            return

        if self._header is None:
            rows = self._establish_header(rows, offset)

        for row in rows:
            self._sink.writerow(normalize_width(row, self.header_length))
            self._rows_written += 1

    def finalize(self) -> int:
        """Close the export and return the number of data rows written."""
        self._finalized = True
        return self._rows_written

    def _establish_header(
        self, rows: list[list[str]], offset: int
    ) -> list[list[str]]:
        """Fix the header from the first non-empty batch.

        Generated letters are written and header cells are sanitized only
        when the batch starts at row 1. An explicit header row is consumed
        as the header line at any offset.

        Returns the rows of the batch that are data.
        """
        first_page = offset == 1
        if self._mode.kind is HeaderKind.NONE:
            width = max(len(row) for row in rows)
            self._header = [
                column_to_letter(self._start_column + i) for i in range(width)
            ]
            if first_page:
                self._sink.writerow(list(self._header))
            return rows

        depth = min(self._mode.depth, len(rows))
        header_rows = rows[:depth]
        width = max(len(row) for row in header_rows)
        header_row = normalize_width(header_rows[-1], width)
        if self._sanitize and first_page:
            header_row = [sanitize_header_cell(cell) for cell in header_row]
        self._header = header_row
        self._sink.writerow(list(self._header))
        return rows[depth:]
