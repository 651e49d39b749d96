"""
File writer utilities for sheetexport.

Handles writing exported tables and their manifests to disk.
"""

from __future__ import annotations

import csv
import json
from pathlib import Path
from typing import IO, TYPE_CHECKING, Any

if TYPE_CHECKING:
    from sheetexport.config import SheetConfig


class CsvSink:
    """CSV row sink that creates its file on the first written row.

    Sheets without data therefore leave no file behind.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._file: IO[str] | None = None
        self._writer: Any = None

    @property
    def opened(self) -> bool:
        return self._file is not None

    def writerow(self, row: list[str]) -> None:
        if self._writer is None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._file = self.path.open("w", encoding="utf-8", newline="")
            self._writer = csv.writer(self._file, lineterminator="\n")
        self._writer.writerow(row)

    def close(self) -> None:
        if self._file is not None:
            self._file.close()


class TableWriter:
    """Writes sheet exports to ``<data_dir>/out/tables``."""

    def __init__(self, data_dir: str | Path, output_bucket: str = "") -> None:
        """Initialize the writer.

        Args:
            data_dir: Job data directory
            output_bucket: Prefix of manifest destinations
        """
        self.base_path = Path(data_dir) / "out" / "tables"
        self.output_bucket = output_bucket

    def csv_path(self, sheet: SheetConfig) -> Path:
        return self.base_path / f"{sheet.file_id}_{sheet.sheet_id}.csv"

    def manifest_path(self, sheet: SheetConfig) -> Path:
        csv_path = self.csv_path(sheet)
        return csv_path.with_name(csv_path.name + ".manifest")

    def begin(self, sheet: SheetConfig) -> CsvSink:
        """Start an export; the CSV is created lazily by the returned sink."""
        return CsvSink(self.csv_path(sheet))

    def finalize(self, sheet: SheetConfig, sink: CsvSink) -> list[Path]:
        """Close the CSV and write its manifest.

        Returns:
            Paths written, empty when the sheet produced no rows
        """
        sink.close()
        if not sink.opened:
            return []
        manifest = self.write_json(
            self.manifest_path(sheet),
            {
                "destination": self.destination(sheet),
                "incremental": False,
            },
        )
        return [sink.path, manifest]

    def discard(self, sheet: SheetConfig, sink: CsvSink) -> None:
        """Remove a partially written export."""
        sink.close()
        self.csv_path(sheet).unlink(missing_ok=True)
        self.manifest_path(sheet).unlink(missing_ok=True)

    def destination(self, sheet: SheetConfig) -> str:
        if not self.output_bucket:
            return sheet.output_table
        return f"{self.output_bucket}.{sheet.output_table}"

    def write_json(self, path: Path, content: dict[str, Any]) -> Path:
        """Write a JSON file.

        Args:
            path: Target file
            content: Dictionary to serialize as JSON

        Returns:
            Path to written file
        """
        path.parent.mkdir(parents=True, exist_ok=True)
        json_str = json.dumps(content, indent=2, ensure_ascii=False)
        path.write_text(json_str, encoding="utf-8")
        return path
