"""
A1 notation helpers for sheetexport.

Converts between 1-based column indices and column letters, and parses
single-cell tokens such as ``A``, ``a10`` or ``AB3``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from sheetexport.exceptions import InvalidCellReferenceError

_CELL_RE = re.compile(r"^([A-Za-z]+)([0-9]*)$")
_LETTERS_RE = re.compile(r"^[A-Za-z]+$")


@dataclass(frozen=True)
class CellRef:
    """A parsed cell token. ``row`` is None when the token has no digits."""

    column: int
    row: int | None = None

    @property
    def label(self) -> str:
        return column_to_letter(self.column)

    def __str__(self) -> str:
        if self.row is None:
            return self.label
        return f"{self.label}{self.row}"


def column_to_letter(index: int) -> str:
    """Convert a 1-based column index to A1 notation letter(s).

    Examples:
        1 -> A, 26 -> Z, 27 -> AA, 52 -> AZ, 53 -> BA, 702 -> ZZ, 703 -> AAA
    """
    if index < 1:
        raise ValueError(f"Column index must be at least 1, got {index}")
    letters = ""
    n = index
    while n > 0:
        remainder = (n - 1) % 26
        letters = chr(ord("A") + remainder) + letters
        n = (n - remainder - 1) // 26
    return letters


def letter_to_column(label: str) -> int:
    """Convert A1 notation letter(s) to a 1-based column index.

    Case-insensitive. Examples:
        A -> 1, Z -> 26, AA -> 27, ZZ -> 702, AAA -> 703
    """
    if not _LETTERS_RE.match(label):
        raise ValueError(f"Invalid column label: {label!r}")
    index = 0
    for char in label.upper():
        index = index * 26 + (ord(char) - ord("A") + 1)
    return index


def parse_cell_ref(token: str) -> CellRef:
    """Parse a cell token into a CellRef.

    ``"A10"`` -> CellRef(1, 10), ``"e"`` -> CellRef(5, None).

    Raises:
        InvalidCellReferenceError: if the token is empty or contains anything
            other than letters followed by optional digits.
    """
    match = _CELL_RE.match(token)
    if not match:
        raise InvalidCellReferenceError(token)
    letters, digits = match.groups()
    row = int(digits) if digits else None
    return CellRef(column=letter_to_column(letters), row=row)
