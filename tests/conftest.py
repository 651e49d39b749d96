"""Shared fixtures for sheetexport tests."""

from __future__ import annotations

import sys
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

import httpx
import pytest
from loguru import logger

from sheetexport.config import SheetConfig
from sheetexport.transport import LocalFileTransport

GOLDEN_DIR = Path(__file__).parent / "golden"


class RecordingSleep:
    """Stands in for asyncio.sleep and records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class ScriptedServer:
    """httpx handler answering with a fixed sequence of responses.

    Each entry is a status code or a ``(status, json_body)`` tuple. The last
    entry repeats once the script runs out.
    """

    def __init__(self, script: list[int | tuple[int, Any]]) -> None:
        self._script = list(script)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        entry = self._script.pop(0) if len(self._script) > 1 else self._script[0]
        if isinstance(entry, tuple):
            status, body = entry
            return httpx.Response(status, json=body)
        return httpx.Response(entry, json={})

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def local_transport() -> LocalFileTransport:
    """Create a transport that reads from golden files."""
    return LocalFileTransport(GOLDEN_DIR)


@pytest.fixture
def make_sheet() -> Callable[..., SheetConfig]:
    """Build a SheetConfig for the golden spreadsheet, keyed by JSON names."""

    def _make(**overrides: Any) -> SheetConfig:
        data: dict[str, Any] = {
            "id": 0,
            "fileId": "budget_2024",
            "fileTitle": "Budget 2024",
            "sheetId": 0,
            "sheetTitle": "Expenses",
            "outputTable": "expenses",
        }
        data.update(overrides)
        return SheetConfig.model_validate(data)

    return _make


@pytest.fixture
def captured_logs() -> Iterator[list[str]]:
    """Collect loguru messages emitted during a test."""
    messages: list[str] = []
    handler_id = logger.add(messages.append, format="{level}|{message}")
    yield messages
    logger.remove(handler_id)


@pytest.fixture
def restore_logging() -> Iterator[None]:
    """Put loguru back to its default sink after a test reconfigures it."""
    yield
    logger.remove()
    logger.add(sys.stderr)


@pytest.fixture
def scripted() -> type[ScriptedServer]:
    """Factory for scripted HTTP servers: ``scripted([429, 200])``."""
    return ScriptedServer
