"""CLI entry point for sheetexport.

Usage:
    python -m sheetexport run <config.json> [--data-dir DIR]
    python -m sheetexport resolve <range> --rows R --columns C [--title T]
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys

from loguru import logger
from pydantic import ValidationError

from sheetexport.config import Settings, get_settings, load_job_config
from sheetexport.exceptions import UserError
from sheetexport.extractor import run_job
from sheetexport.logging import setup_logging
from sheetexport.pagination import plan_windows
from sheetexport.ranges import SheetDimensions, resolve_range

EXIT_OK = 0
EXIT_USER_ERROR = 1
EXIT_APPLICATION_ERROR = 2


async def cmd_run(args: argparse.Namespace) -> int:
    """Run an extraction job and print its status as JSON."""
    settings = get_settings()
    overrides: dict[str, object] = {}
    if args.backoff_attempts is not None:
        overrides["backoff_attempts"] = args.backoff_attempts
    if args.fetch_row_size is not None:
        overrides["fetch_row_size"] = args.fetch_row_size
    if overrides:
        try:
            settings = Settings.model_validate(
                {**settings.model_dump(), **overrides}
            )
        except ValidationError as e:
            print(f"Error: {e}", file=sys.stderr)
            return EXIT_USER_ERROR

    debug = args.debug or settings.debug
    setup_logging(
        json_logs=args.json_logs or settings.json_logs,
        log_level="DEBUG" if debug else settings.log_level,
    )

    try:
        job = load_job_config(args.config, data_dir=args.data_dir)
        result = await run_job(job, settings)
    except UserError as e:
        logger.error(str(e))
        if e.data:
            logger.debug(f"Error details: {json.dumps(e.data, default=str)}")
        return EXIT_USER_ERROR
    except Exception as e:
        logger.exception(f"Application error: {e}")
        return EXIT_APPLICATION_ERROR

    print(json.dumps(result))
    return EXIT_OK


async def cmd_resolve(args: argparse.Namespace) -> int:
    """Resolve a range against sheet dimensions and show the fetch plan."""
    setup_logging(log_level="WARNING")
    try:
        resolved = resolve_range(args.range, args.rows, args.columns, args.title)
    except UserError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_USER_ERROR

    dimensions = SheetDimensions(args.rows, args.columns)
    try:
        windows = plan_windows(
            "-", args.title, resolved, dimensions, args.fetch_row_size
        )
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_USER_ERROR

    suffix = " (capped)" if resolved.capped else ""
    print(f"Resolved: {resolved.describe()}{suffix}")
    print(f"Windows: {len(windows)}")
    for window in windows:
        print(f"  {window.range}  rows {window.offset}-{window.end_row}")
    return EXIT_OK


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog="sheetexport",
        description="Export Google Sheets ranges to CSV tables",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    # run subcommand
    run_parser = subparsers.add_parser("run", help="Run an extraction job")
    run_parser.add_argument("config", help="Path to the job config.json")
    run_parser.add_argument(
        "--data-dir",
        help="Data directory (overrides parameters.data_dir)",
    )
    run_parser.add_argument(
        "--backoff-attempts",
        type=int,
        help="Retries for rate-limited and server-error responses (default: 9)",
    )
    run_parser.add_argument(
        "--fetch-row-size",
        type=int,
        help="Rows per values call for open-ended ranges (default: 1000)",
    )
    run_parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Log one JSON object per line",
    )
    run_parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )
    run_parser.set_defaults(func=cmd_run)

    # resolve subcommand
    resolve_parser = subparsers.add_parser(
        "resolve",
        help="Show how a range resolves against a sheet size (no network)",
    )
    resolve_parser.add_argument("range", help='Range such as "A:E" or "A10:E"')
    resolve_parser.add_argument("--rows", type=int, required=True)
    resolve_parser.add_argument("--columns", type=int, required=True)
    resolve_parser.add_argument("--title", default="Sheet1", help="Sheet title")
    resolve_parser.add_argument("--fetch-row-size", type=int, default=1000)
    resolve_parser.set_defaults(func=cmd_resolve)

    args = parser.parse_args(argv)
    result: int = asyncio.run(args.func(args))
    return result


if __name__ == "__main__":
    sys.exit(main())
