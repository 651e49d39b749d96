"""sheetexport - Export Google Sheets ranges to CSV tables.

Resolves A1 column ranges against sheet dimensions, pages through the
values with a retrying Sheets API client and writes header-aware CSV files
with their manifests.
"""

__version__ = "0.1.0"

from sheetexport.exceptions import (
    ApplicationError,
    SheetExportError,
    UserError,
)
from sheetexport.extractor import Extractor, forbidden_veto, run_job
from sheetexport.ranges import ResolvedRange, SheetDimensions, resolve_range
from sheetexport.retry import RetryingClient
from sheetexport.transport import (
    GoogleSheetsTransport,
    LocalFileTransport,
    Transport,
    TransportError,
)
from sheetexport.writer import TableWriter

__all__ = [
    "ApplicationError",
    "Extractor",
    "GoogleSheetsTransport",
    "LocalFileTransport",
    "ResolvedRange",
    "RetryingClient",
    "SheetDimensions",
    "SheetExportError",
    "TableWriter",
    "Transport",
    "TransportError",
    "UserError",
    "__version__",
    "forbidden_veto",
    "resolve_range",
    "run_job",
]
