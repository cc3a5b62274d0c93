"""
Local terminal control and the stdin/stdout/stderr bridge.

Provides:
- LocalTerminal: mode snapshot, raw mode, restore and size for the
  controlling terminal
- TerminalBridge: byte-for-byte duplex copy between the local standard
  streams and a remote shell process
- PTY_MODES: terminal modes sent with the remote PTY request

POSIX only: raw mode relies on termios.
"""
from __future__ import annotations

import asyncio
import os
import sys
from typing import IO, Any, Mapping

if sys.platform != "win32":
    import termios
    import tty

import asyncssh

DEFAULT_TERM_TYPE = "xterm-256color"
DEFAULT_SIZE = (80, 24)
READ_SIZE = 4096

# RFC 4254 section 8 opcodes: ECHO, TTY_OP_ISPEED, TTY_OP_OSPEED
PTY_MODES: dict[int, int] = {
    53: 1,
    128: 14400,
    129: 14400,
}


def _binary(stream: Any) -> IO[bytes]:
    """The byte-level buffer behind a text stream, or the stream itself."""
    return getattr(stream, "buffer", stream)


def _require_termios() -> None:
    if sys.platform == "win32":
        raise OSError("Raw terminal mode is not supported on Windows")


class LocalTerminal:
    """
    The local controlling terminal.

    Wraps the process's standard streams by default; tests pass the slave
    side of a pseudo-terminal pair instead.
    """

    def __init__(
        self,
        stdin: Any = None,
        stdout: Any = None,
        stderr: Any = None,
    ) -> None:
        self._stdin = stdin if stdin is not None else sys.stdin
        self._stdout = stdout if stdout is not None else sys.stdout
        self._stderr = stderr if stderr is not None else sys.stderr

    @property
    def stdin_fd(self) -> int:
        return self._stdin.fileno()

    @property
    def stdout(self) -> IO[bytes]:
        return _binary(self._stdout)

    @property
    def stderr(self) -> IO[bytes]:
        return _binary(self._stderr)

    def isatty(self) -> bool:
        try:
            return os.isatty(self.stdin_fd)
        except (OSError, ValueError):
            return False

    def get_mode(self) -> list[Any]:
        """
        Snapshot the current terminal attributes.

        Raises:
            OSError: If the attributes cannot be read
        """
        _require_termios()
        try:
            return termios.tcgetattr(self.stdin_fd)
        except termios.error as e:
            raise OSError(*e.args) from e

    def set_raw(self) -> None:
        """
        Switch to raw mode: no line buffering, no echo, no signal keys.

        Raises:
            OSError: If the mode cannot be changed
        """
        _require_termios()
        try:
            tty.setraw(self.stdin_fd)
        except termios.error as e:
            raise OSError(*e.args) from e

    def restore(self, mode: list[Any]) -> None:
        """
        Restore attributes captured by get_mode().

        Raises:
            OSError: If the attributes cannot be written
        """
        _require_termios()
        try:
            termios.tcsetattr(self.stdin_fd, termios.TCSADRAIN, mode)
        except termios.error as e:
            raise OSError(*e.args) from e

    def get_size(self, fallback: tuple[int, int] | None = None) -> tuple[int, int]:
        """
        Current (columns, lines) of the terminal.

        Falls back to `fallback`, then to 80x24, when the size cannot be
        read or reports zero.
        """
        try:
            size = os.get_terminal_size(self.stdin_fd)
        except (OSError, ValueError):
            size = None

        if size is not None and size.columns > 0 and size.lines > 0:
            return size.columns, size.lines
        if fallback is not None and fallback[0] > 0 and fallback[1] > 0:
            return fallback
        return DEFAULT_SIZE

    @staticmethod
    def term_type(environ: Mapping[str, str] | None = None) -> str:
        """Terminal type to request remotely: $TERM or xterm-256color."""
        if environ is None:
            environ = os.environ
        return environ.get("TERM") or DEFAULT_TERM_TYPE


class TerminalBridge:
    """
    Duplex byte copy between local streams and a remote shell process.

    Local input is read with the event loop's reader callback so nothing
    is left blocked in a thread when the remote side closes. Bytes pass
    through untouched; control sequences reach the remote PTY verbatim.

    Usage:
        bridge = TerminalBridge(process, terminal.stdin_fd, terminal.stdout, terminal.stderr)
        bridge.attach()
        exit_status = await bridge.run()
    """

    def __init__(
        self,
        process: asyncssh.SSHClientProcess,
        stdin_fd: int,
        stdout: IO[bytes],
        stderr: IO[bytes],
    ) -> None:
        self._process = process
        self._stdin_fd = stdin_fd
        self._stdout = stdout
        self._stderr = stderr
        self._loop: asyncio.AbstractEventLoop | None = None
        self._reading = False
        self.bytes_in = 0
        self.bytes_out = 0

    @property
    def attached(self) -> bool:
        return self._reading

    def attach(self) -> None:
        """
        Start forwarding local input to the remote process.

        Raises:
            OSError: If the input descriptor cannot be watched
        """
        assert not self._reading, "Bridge already attached"
        self._loop = asyncio.get_running_loop()
        self._loop.add_reader(self._stdin_fd, self._forward_stdin)
        self._reading = True

    def detach(self) -> None:
        """Stop forwarding local input. Idempotent."""
        if self._reading and self._loop is not None:
            self._loop.remove_reader(self._stdin_fd)
        self._reading = False

    def _forward_stdin(self) -> None:
        try:
            data = os.read(self._stdin_fd, READ_SIZE)
        except OSError:
            data = b""

        try:
            if data:
                self.bytes_in += len(data)
                self._process.stdin.write(data)
            else:
                self.detach()
                self._process.stdin.write_eof()
        except OSError:
            # Channel already closing
            self.detach()

    async def _pump(self, reader: asyncssh.SSHReader, writer: IO[bytes]) -> None:
        while True:
            data = await reader.read(READ_SIZE)
            if not data:
                break
            self.bytes_out += len(data)
            writer.write(data)
            writer.flush()

    async def run(self) -> int | None:
        """
        Copy output until the remote side closes.

        Returns:
            The remote exit status, or None if the server sent none
        """
        try:
            await asyncio.gather(
                self._pump(self._process.stdout, self._stdout),
                self._pump(self._process.stderr, self._stderr),
            )
            await self._process.wait_closed()
        finally:
            self.detach()
        return self._process.exit_status
