"""Logging configuration using loguru.

Provides:
- Structured JSON logging for job runners that collect stderr lines
- Human-readable logging for local runs
- Export context tracking (file and sheet currently being exported)
"""

import json
import sys
from contextvars import ContextVar
from datetime import UTC, datetime

from loguru import logger

# Context variable for the sheet being exported, e.g. "Budget / Sheet1"
sheet_ctx: ContextVar[str | None] = ContextVar("sheet", default=None)

LEVEL_TO_SEVERITY = {
    "TRACE": "DEBUG",
    "DEBUG": "DEBUG",
    "INFO": "INFO",
    "SUCCESS": "INFO",
    "WARNING": "WARNING",
    "ERROR": "ERROR",
    "CRITICAL": "CRITICAL",
}


def _json_formatter(record: dict) -> str:
    """Format log record as one JSON object per line.

    loguru treats the returned string as a template, so the serialized entry
    is stashed in ``extra`` and referenced from there.
    """
    log_entry = {
        "timestamp": datetime.now(UTC).isoformat(),
        "severity": LEVEL_TO_SEVERITY.get(record["level"].name, "INFO"),
        "message": record["message"],
        "logger": record["name"],
        "function": record["function"],
        "line": record["line"],
    }

    sheet = sheet_ctx.get()
    if sheet:
        log_entry["sheet"] = sheet

    for key, value in record["extra"].items():
        if key != "serialized" and key not in log_entry:
            log_entry[key] = value

    if record["exception"]:
        log_entry["exception"] = {
            "type": record["exception"].type.__name__ if record["exception"].type else None,
            "value": str(record["exception"].value) if record["exception"].value else None,
        }

    record["extra"]["serialized"] = json.dumps(log_entry, default=str)
    return "{extra[serialized]}\n"


def _dev_formatter(record: dict) -> str:
    """Format log record for local runs (human-readable).

    The sheet label goes through ``extra`` so titles are never parsed as
    markup or format fields.
    """
    sheet = sheet_ctx.get()
    record["extra"]["sheet_label"] = f"[{sheet}] " if sheet else ""

    return (
        "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
        "<level>{level: <8}</level> | "
        "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
        "{extra[sheet_label]}<level>{message}</level>\n"
        "{exception}"
    )


def setup_logging(json_logs: bool = False, log_level: str = "INFO") -> None:
    """Configure loguru for the application.

    Logs go to stderr so stdout stays free for the job status output.

    Args:
        json_logs: If True, output one JSON object per line
        log_level: Minimum log level to output
    """
    logger.remove()

    if json_logs:
        logger.add(
            sys.stderr,
            format=_json_formatter,
            level=log_level,
            serialize=False,
        )
    else:
        logger.add(
            sys.stderr,
            format=_dev_formatter,
            level=log_level,
            colorize=True,
        )


def set_sheet_context(file_title: str | None, sheet_title: str | None) -> None:
    """Set context for the sheet being exported."""
    if file_title and sheet_title:
        sheet_ctx.set(f"{file_title} / {sheet_title}")
    else:
        sheet_ctx.set(sheet_title or file_title)


def clear_sheet_context() -> None:
    """Clear sheet context after an export completes."""
    sheet_ctx.set(None)


__all__ = [
    "logger",
    "setup_logging",
    "set_sheet_context",
    "clear_sheet_context",
    "sheet_ctx",
]
