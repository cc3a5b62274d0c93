"""
Tests for local terminal control and the terminal bridge.

Raw mode is exercised on a real pseudo-terminal; the remote process is a
fake with asyncssh's stream shape.
"""
from __future__ import annotations

import asyncio
import io
import os
import sys
from typing import Any

import pytest

from rolodex.terminal import DEFAULT_SIZE, DEFAULT_TERM_TYPE, LocalTerminal, TerminalBridge

pytestmark = pytest.mark.skipif(sys.platform == "win32", reason="termios is POSIX only")


class FdStream:
    """Minimal stand-in for sys.stdin bound to a descriptor."""

    def __init__(self, fd: int) -> None:
        self._fd = fd

    def fileno(self) -> int:
        return self._fd


class FakeReader:
    def __init__(self, chunks: list[bytes]) -> None:
        self._chunks = list(chunks)

    async def read(self, n: int = -1) -> bytes:
        await asyncio.sleep(0)
        return self._chunks.pop(0) if self._chunks else b""


class FakeWriter:
    def __init__(self) -> None:
        self.data = b""
        self.eof = False

    def write(self, data: bytes) -> None:
        self.data += data

    def write_eof(self) -> None:
        self.eof = True


class FakeProcess:
    def __init__(self, stdout: list[bytes], stderr: list[bytes] = (), exit_status: Any = 0) -> None:
        self.stdin = FakeWriter()
        self.stdout = FakeReader(stdout)
        self.stderr = FakeReader(list(stderr))
        self.exit_status = exit_status

    async def wait_closed(self) -> None:
        await asyncio.sleep(0)


class TestLocalTerminal:
    def test_isatty(self, pty_pair: tuple[int, int], tmp_path) -> None:
        _, slave = pty_pair
        assert LocalTerminal(stdin=FdStream(slave)).isatty()

        with open(tmp_path / "plain", "w+b") as f:
            assert not LocalTerminal(stdin=f).isatty()

    def test_raw_and_restore(self, pty_pair: tuple[int, int]) -> None:
        import termios

        _, slave = pty_pair
        terminal = LocalTerminal(stdin=FdStream(slave))

        saved = terminal.get_mode()
        assert saved[3] & termios.ECHO

        terminal.set_raw()
        raw = termios.tcgetattr(slave)
        assert not raw[3] & termios.ECHO
        assert not raw[3] & termios.ICANON

        terminal.restore(saved)
        assert termios.tcgetattr(slave) == saved

    def test_mode_on_non_tty_raises_oserror(self, tmp_path) -> None:
        with open(tmp_path / "plain", "w+b") as f:
            with pytest.raises(OSError):
                LocalTerminal(stdin=f).get_mode()

    def test_size_from_terminal(self, pty_pair: tuple[int, int]) -> None:
        import fcntl
        import struct
        import termios

        _, slave = pty_pair
        fcntl.ioctl(slave, termios.TIOCSWINSZ, struct.pack("HHHH", 40, 132, 0, 0))

        assert LocalTerminal(stdin=FdStream(slave)).get_size((100, 30)) == (132, 40)

    def test_size_fallbacks(self, tmp_path) -> None:
        with open(tmp_path / "plain", "w+b") as f:
            terminal = LocalTerminal(stdin=f)
            assert terminal.get_size((100, 30)) == (100, 30)
            assert terminal.get_size() == DEFAULT_SIZE
            assert terminal.get_size((0, 0)) == DEFAULT_SIZE

    def test_term_type(self) -> None:
        assert LocalTerminal.term_type({"TERM": "screen"}) == "screen"
        assert LocalTerminal.term_type({}) == DEFAULT_TERM_TYPE

    def test_binary_streams(self) -> None:
        out = io.BytesIO()
        text = io.TextIOWrapper(io.BytesIO())
        terminal = LocalTerminal(stdin=FdStream(0), stdout=out, stderr=text)
        assert terminal.stdout is out
        assert terminal.stderr is text.buffer


class TestTerminalBridge:
    async def test_copies_output_and_returns_status(self, pty_pair: tuple[int, int]) -> None:
        _, slave = pty_pair
        process = FakeProcess([b"hello ", b"\x1b[1mworld\x1b[0m"], [b"warn"], exit_status=7)
        stdout, stderr = io.BytesIO(), io.BytesIO()

        bridge = TerminalBridge(process, slave, stdout, stderr)
        bridge.attach()
        assert bridge.attached

        assert await bridge.run() == 7
        assert stdout.getvalue() == b"hello \x1b[1mworld\x1b[0m"
        assert stderr.getvalue() == b"warn"
        assert bridge.bytes_out == len(b"hello \x1b[1mworld\x1b[0m") + len(b"warn")
        assert not bridge.attached

    async def test_forwards_input_bytes_verbatim(self) -> None:
        read_fd, write_fd = os.pipe()
        try:
            process = FakeProcess([])
            bridge = TerminalBridge(process, read_fd, io.BytesIO(), io.BytesIO())
            bridge.attach()

            os.write(write_fd, b"ls\x03\x1b[A")
            for _ in range(50):
                await asyncio.sleep(0.01)
                if process.stdin.data:
                    break

            assert process.stdin.data == b"ls\x03\x1b[A"
            assert bridge.bytes_in == 6

            os.close(write_fd)
            write_fd = -1
            for _ in range(50):
                await asyncio.sleep(0.01)
                if process.stdin.eof:
                    break

            assert process.stdin.eof
            assert not bridge.attached
        finally:
            bridge.detach()
            os.close(read_fd)
            if write_fd >= 0:
                os.close(write_fd)

    async def test_none_exit_status(self, pty_pair: tuple[int, int]) -> None:
        _, slave = pty_pair
        bridge = TerminalBridge(FakeProcess([], exit_status=None), slave, io.BytesIO(), io.BytesIO())
        bridge.attach()
        assert await bridge.run() is None

    async def test_detach_idempotent(self, pty_pair: tuple[int, int]) -> None:
        _, slave = pty_pair
        bridge = TerminalBridge(FakeProcess([]), slave, io.BytesIO(), io.BytesIO())
        bridge.attach()
        bridge.detach()
        bridge.detach()
        assert not bridge.attached
