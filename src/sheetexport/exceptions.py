"""Custom exceptions for sheetexport.

UserError subclasses describe problems the person running the export can fix
(configuration, ranges, permissions). ApplicationError covers everything else.
"""

from __future__ import annotations

from typing import Any


class SheetExportError(Exception):
    """Base exception for sheetexport errors."""

    def __init__(self, message: str, data: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.data: dict[str, Any] = data or {}


class UserError(SheetExportError):
    """Raised for user-actionable failures."""

    pass


class ApplicationError(SheetExportError):
    """Raised for unexpected failures that are not the user's fault."""

    pass


class InvalidCellReferenceError(UserError):
    """Raised when a cell token is not letters optionally followed by digits."""

    def __init__(self, token: str) -> None:
        self.token = token
        super().__init__(
            f'Invalid cell reference "{token}". '
            'Expected column letters optionally followed by a row number, e.g. "A" or "A10".'
        )


class InvalidRangeFormatError(UserError):
    """Raised when a range string is not two cell references joined by a colon."""

    def __init__(self, range_string: str, sheet_title: str) -> None:
        self.range_string = range_string
        self.sheet_title = sheet_title
        super().__init__(
            f'Invalid column range "{range_string}" for sheet "{sheet_title}". '
            'Expected format: "A:E", "A1:E10", "A10:E" or "A:E10"'
        )


class InvalidRangeBoundsError(UserError):
    """Raised when range bounds are out of order or below the minimum.

    The ``axis`` attribute is either ``"column"`` or ``"row"``.
    """

    def __init__(
        self,
        range_string: str,
        sheet_title: str,
        axis: str,
        detail: str,
    ) -> None:
        self.range_string = range_string
        self.sheet_title = sheet_title
        self.axis = axis
        super().__init__(
            f'Invalid column range "{range_string}" for sheet "{sheet_title}": {detail}'
        )
