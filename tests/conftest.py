"""
Pytest fixtures for rolodex tests.

Provides:
- Mock SSH server fixtures (in-process, no Docker required)
- Event capture fixture for asserting event sequences
- A pseudo-terminal fixture standing in for the user's terminal
- An isolated rolodex home directory
"""
from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import TYPE_CHECKING, AsyncGenerator, Generator

import pytest

if TYPE_CHECKING:
    from rolodex.events import EventCollector
    from rolodex.testing.mock_server import MockSSHServer


@pytest.fixture
async def mock_ssh_server() -> AsyncGenerator["MockSSHServer", None]:
    """
    MockSSHServer accepting test/test over password auth.

    Usage:
        async def test_example(mock_ssh_server):
            result = await open_session("127.0.0.1", mock_ssh_server.port, "test", bundle)
    """
    from rolodex.testing.mock_server import MockServerConfig, MockSSHServer

    async with MockSSHServer(MockServerConfig(username="test", password="test")) as server:
        yield server


@pytest.fixture
def event_collector() -> Generator["EventCollector", None, None]:
    """
    Fixture for capturing and asserting event sequences.

    Usage:
        def test_example(event_collector):
            emitter = EventEmitter(collector=event_collector)
            ...
            assert event_collector.events[0].event_type == "CONNECT"
    """
    from rolodex.events import EventCollector

    collector = EventCollector()
    yield collector
    collector.clear()


@pytest.fixture
def pty_pair() -> Generator[tuple[int, int], None, None]:
    """A (master, slave) pseudo-terminal pair, closed after the test."""
    if sys.platform == "win32":
        pytest.skip("Pseudo-terminals require a POSIX platform")
    master, slave = os.openpty()
    yield master, slave
    for fd in (master, slave):
        try:
            os.close(fd)
        except OSError:
            pass


@pytest.fixture
def rolodex_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point ROLODEX_HOME at a temporary directory."""
    home = tmp_path / "rolodex"
    monkeypatch.setenv("ROLODEX_HOME", str(home))
    return home


@pytest.fixture
def temp_jsonl_path(tmp_path: Path) -> Path:
    """Provide a temporary path for JSONL event log output."""
    return tmp_path / "events.jsonl"
