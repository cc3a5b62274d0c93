"""
Interactive session orchestration.

Provides:
- HostConnection: validated (host, port, username) for one attempt
- SessionOrchestrator: state machine driving probe, auth, PTY and shell
- open_session / start_session: the entry points returning a SessionResult

The local terminal is the one shared resource a session changes. Raw mode
is entered at most once per attempt and, once entered, is restored before
control returns to the caller on every path, including failures and
cancellation.
"""
from __future__ import annotations

import asyncio
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Mapping, Sequence

import asyncssh

from rolodex.auth import AuthChain, AuthDescriptor, AuthMethod, CredentialBundle, resolve_auth_chain
from rolodex.errors import (
    AuthRejected,
    ErrorContext,
    FailureKind,
    FailureReport,
    HandshakeError,
    NoAuthMethod,
    SessionError,
    SessionSetupError,
    Unreachable,
)
from rolodex.events import EventEmitter, EventType
from rolodex.probe import DEFAULT_PROBE_TIMEOUT, ProbeResult, format_address, probe
from rolodex.terminal import PTY_MODES, LocalTerminal, TerminalBridge
from rolodex.validation import validate_address, validate_port, validate_username

DEFAULT_HANDSHAKE_TIMEOUT = 30.0

NO_AUTH_METHOD_MESSAGE = (
    "No authentication method available. Configure at least one: "
    "ssh_agent, identity_file, keyring (keyring_service and keyring_account), "
    "or password."
)


class SessionState(str, Enum):
    """States of a single connection attempt."""
    IDLE = "idle"
    PROBED = "probed"
    AUTHENTICATED = "authenticated"
    PTY_REQUESTED = "pty_requested"
    SHELL_RUNNING = "shell_running"
    CLOSED = "closed"
    FAILED = "failed"


_TRANSITIONS: dict[SessionState, SessionState] = {
    SessionState.IDLE: SessionState.PROBED,
    SessionState.PROBED: SessionState.AUTHENTICATED,
    SessionState.AUTHENTICATED: SessionState.PTY_REQUESTED,
    SessionState.PTY_REQUESTED: SessionState.SHELL_RUNNING,
    SessionState.SHELL_RUNNING: SessionState.CLOSED,
}


@dataclass(frozen=True)
class HostConnection:
    """
    Network address and login for one connection attempt.

    Raises:
        ValueError: If the host is empty or malformed, the port is outside
            1-65535, or the username is invalid
    """
    host: str
    port: int
    username: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "host", validate_address(self.host))
        object.__setattr__(self, "port", validate_port(self.port))
        object.__setattr__(self, "username", validate_username(self.username))

    @property
    def address(self) -> str:
        return format_address(self.host, self.port)

    def to_dict(self) -> dict[str, Any]:
        return {"host": self.host, "port": self.port, "username": self.username}


@dataclass
class SessionResources:
    """What an attempt has acquired so far; unwinding releases exactly this."""
    address: str
    conn: asyncssh.SSHClientConnection | None = None
    process: asyncssh.SSHClientProcess | None = None
    bridge: TerminalBridge | None = None
    saved_mode: list[Any] | None = None
    raw_entered: bool = False
    mode_restored: bool = False


@dataclass(frozen=True)
class SessionResult:
    """
    Outcome of open_session/start_session.

    Exactly one of exit_status (possibly None when the server reported
    none) or failure is meaningful: ok is True when failure is None.
    """
    exit_status: int | None = None
    failure: FailureReport | None = None

    @property
    def ok(self) -> bool:
        return self.failure is None


class _ChainClient(asyncssh.SSHClient):
    """
    SSH client serving every credential in the chain.

    asyncssh asks the client for credentials one server request at a time.
    Each method's descriptors are served in chain order and every one
    handed out is recorded in `attempts`. A public key descriptor offers
    all of its keys before the next descriptor is consulted.
    """

    def __init__(self, chain: AuthChain) -> None:
        super().__init__()
        self._public_keys: deque[AuthDescriptor] = deque(chain.by_method(AuthMethod.PUBLIC_KEY))
        self._passwords: deque[AuthDescriptor] = deque(chain.by_method(AuthMethod.PASSWORD))
        self._kbdint: deque[AuthDescriptor] = deque(
            chain.by_method(AuthMethod.KEYBOARD_INTERACTIVE)
        )
        self._current_kbdint: AuthDescriptor | None = None
        self.attempts: list[str] = []
        self.banners: list[str] = []

    def _record(self, descriptor: AuthDescriptor) -> None:
        self.attempts.append(f"{descriptor.label}/{descriptor.method.value}")

    def auth_banner_received(self, msg: str, lang: str) -> None:
        self.banners.append(msg.strip())

    def public_key_auth_requested(self) -> list[Any] | None:
        if not self._public_keys:
            return None
        descriptor = self._public_keys.popleft()
        self._record(descriptor)
        return list(descriptor.keys)

    def password_auth_requested(self) -> str | None:
        if not self._passwords:
            return None
        descriptor = self._passwords.popleft()
        self._record(descriptor)
        assert descriptor.secret is not None
        return descriptor.secret.reveal()

    def kbdint_auth_requested(self) -> str | None:
        if not self._kbdint:
            self._current_kbdint = None
            return None
        self._current_kbdint = self._kbdint.popleft()
        self._record(self._current_kbdint)
        return ""

    def kbdint_challenge_received(
        self,
        name: str,
        instructions: str,
        lang: str,
        prompts: Sequence[tuple[str, bool]],
    ) -> list[str] | None:
        if self._current_kbdint is None:
            return None
        return self._current_kbdint.answer_challenge(prompts)


Connector = Callable[..., Any]
Prober = Callable[..., Any]


class SessionOrchestrator:
    """
    Drives one attempt through Idle, Probed, Authenticated, PtyRequested,
    ShellRunning and Closed, or into Failed from any of them.

    Every collaborator that touches the outside world is injectable: the
    prober, the asyncssh connector, the local terminal and the bridge
    factory. run() may be called once.

    Usage:
        orchestrator = SessionOrchestrator(
            HostConnection("web1", 22, "deploy"),
            CredentialBundle(ssh_agent=True),
            emitter=EventEmitter(jsonl_path="events.jsonl"),
        )
        exit_status = await orchestrator.run()
    """

    def __init__(
        self,
        connection: HostConnection,
        bundle: CredentialBundle,
        *,
        terminal: LocalTerminal | None = None,
        emitter: EventEmitter | None = None,
        probe_timeout: float = DEFAULT_PROBE_TIMEOUT,
        handshake_timeout: float = DEFAULT_HANDSHAKE_TIMEOUT,
        known_hosts: str | None = None,
        term_type: str | None = None,
        size_hint: tuple[int, int] | None = None,
        environ: Mapping[str, str] | None = None,
        connector: Connector = asyncssh.connect,
        prober: Prober = probe,
        bridge_factory: Callable[..., TerminalBridge] = TerminalBridge,
    ) -> None:
        assert probe_timeout > 0, f"probe_timeout must be positive, got {probe_timeout}"
        assert handshake_timeout > 0, (
            f"handshake_timeout must be positive, got {handshake_timeout}"
        )

        self._connection = connection
        self._bundle = bundle
        self._terminal = terminal if terminal is not None else LocalTerminal()
        self._emitter = emitter if emitter is not None else EventEmitter()
        self._probe_timeout = probe_timeout
        self._handshake_timeout = handshake_timeout
        self._known_hosts = known_hosts
        self._term_type = term_type or LocalTerminal.term_type(environ)
        self._size_hint = size_hint
        self._environ = environ
        self._connector = connector
        self._prober = prober
        self._bridge_factory = bridge_factory

        self._state = SessionState.IDLE
        self._resources = SessionResources(address=connection.address)

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def resources(self) -> SessionResources:
        return self._resources

    def _transition(self, new_state: SessionState) -> None:
        assert _TRANSITIONS.get(self._state) == new_state, (
            f"Invalid session transition {self._state.value} -> {new_state.value}"
        )
        self._state = new_state

    def _context(self, phase: str, original_error: str | None = None) -> ErrorContext:
        return ErrorContext(
            host=self._connection.host,
            port=self._connection.port,
            username=self._connection.username,
            phase=phase,
            original_error=original_error,
        )

    async def run(self) -> int | None:
        """
        Run the attempt to completion.

        Returns:
            The remote shell's exit status (None if the server sent none)

        Raises:
            SessionError: The subclass matching the failure kind
        """
        assert self._state == SessionState.IDLE, "run() may only be called once"

        self._emitter.emit(
            EventType.CONNECT,
            status="initiating",
            bundle=self._bundle.to_dict(),
            **self._connection.to_dict(),
        )

        completed = False
        try:
            exit_status = await self._drive()
            completed = True
        except SessionError as e:
            self._emitter.emit(EventType.ERROR, **e.to_dict())
            raise
        finally:
            await self._unwind()
            if completed:
                self._transition(SessionState.CLOSED)
            else:
                self._state = SessionState.FAILED

        return exit_status

    async def _drive(self) -> int | None:
        if self._bundle.is_empty():
            raise NoAuthMethod(NO_AUTH_METHOD_MESSAGE, context=self._context("resolve"))

        await self._probe()

        chain = await resolve_auth_chain(self._bundle, self._emitter, self._environ)
        if not chain:
            raise NoAuthMethod(
                NO_AUTH_METHOD_MESSAGE
                + " The configured sources produced nothing; check the log for why.",
                context=self._context("resolve"),
            )

        try:
            self._resources.conn = await self._authenticate(chain)
        finally:
            chain.discard()
        self._transition(SessionState.AUTHENTICATED)

        await self._request_pty()
        self._attach_bridge()
        return await self._wait_for_shell()

    # -----------------------------------------------------------------------
    # Steps
    # -----------------------------------------------------------------------

    async def _probe(self) -> None:
        result: ProbeResult = await self._prober(
            self._connection.host,
            self._connection.port,
            timeout=self._probe_timeout,
            emitter=self._emitter,
        )
        if not result.reachable:
            raise Unreachable(
                f"Cannot reach {result.address}: TCP connection failed ({result.error}). "
                "Check firewall, DNS, and network connectivity.",
                context=self._context("probe", result.error),
            )
        self._transition(SessionState.PROBED)

    async def _authenticate(self, chain: AuthChain) -> asyncssh.SSHClientConnection:
        client = _ChainClient(chain)

        if self._known_hosts is None:
            self._emitter.emit(
                EventType.CONNECT,
                status="host_key_unverified",
                address=self._resources.address,
                message="Server host key is not verified; pass known_hosts to enable checking",
            )

        options: dict[str, Any] = {
            "host": self._connection.host,
            "port": self._connection.port,
            "username": self._connection.username,
            "known_hosts": self._known_hosts,
            "client_keys": None,
            "agent_path": None,
            "password": None,
            "config": [],
            "preferred_auth": chain.preferred_auth,
            "connect_timeout": self._handshake_timeout,
            "client_factory": lambda: client,
        }

        self._emitter.emit(
            EventType.AUTH,
            status="attempting",
            count=len(chain),
            preferred_auth=chain.preferred_auth,
            chain=chain.to_list(),
        )

        start_ms = time.time() * 1000
        try:
            conn = await asyncio.wait_for(
                self._connector(**options), timeout=self._handshake_timeout
            )
        except (asyncssh.Error, OSError, asyncio.TimeoutError) as e:
            self._emitter.emit(
                EventType.AUTH,
                status="failed",
                attempts=list(client.attempts),
                error_type=type(e).__name__,
                duration_ms=(time.time() * 1000) - start_ms,
            )
            raise self._map_exception(e, chain, client) from e

        self._emitter.emit(
            EventType.AUTH,
            status="success",
            attempts=list(client.attempts),
            duration_ms=(time.time() * 1000) - start_ms,
        )
        self._emitter.emit(EventType.CONNECT, status="connected", address=self._resources.address)
        return conn

    def _map_exception(
        self,
        exc: BaseException,
        chain: AuthChain,
        client: _ChainClient,
    ) -> SessionError:
        """Map asyncssh and socket exceptions onto the failure taxonomy."""
        address = self._resources.address
        user = self._connection.username

        if isinstance(exc, asyncssh.PermissionDenied):
            if client.attempts:
                detail = (
                    f"the server rejected all {len(client.attempts)} authentication "
                    f"method(s) tried ({', '.join(client.attempts)})"
                )
            else:
                configured = ", ".join(chain.preferred_auth)
                detail = (
                    f"the server accepted none of the configured methods ({configured})"
                )
            message = f"Authentication failed for {user}@{address}: {detail}. " \
                      f"Server response: {exc.reason}"
            if client.banners:
                message += f"\nServer banner: {' '.join(client.banners)}"
            return AuthRejected(
                message,
                methods_tried=len(client.attempts),
                server_errors=[exc.reason],
                banners=client.banners,
                context=self._context("authenticate", exc.reason),
            )

        if isinstance(exc, asyncssh.HostKeyNotVerifiable):
            return HandshakeError(
                f"Host key verification failed for {address}: {exc.reason}",
                context=self._context("handshake", exc.reason),
            )

        if isinstance(exc, asyncssh.DisconnectError):
            return HandshakeError(
                f"SSH handshake with {address} failed: {exc.reason}",
                context=self._context("handshake", exc.reason),
            )

        if isinstance(exc, asyncio.TimeoutError):
            return HandshakeError(
                f"SSH handshake with {address} timed out after "
                f"{self._handshake_timeout:g}s",
                context=self._context("handshake", "timeout"),
            )

        return HandshakeError(
            f"Failed to connect to {address}: {exc}",
            context=self._context("handshake", str(exc)),
        )

    async def _request_pty(self) -> None:
        conn = self._resources.conn
        assert conn is not None
        terminal = self._terminal

        if not terminal.isatty():
            raise SessionSetupError(
                "Interactive session requires a terminal: standard input is not a TTY",
                context=self._context("pty"),
            )

        try:
            self._resources.saved_mode = terminal.get_mode()
            self._resources.raw_entered = True
            terminal.set_raw()

            width, height = terminal.get_size(self._size_hint)
            self._emitter.emit(
                EventType.SHELL,
                status="requesting_pty",
                term=self._term_type,
                width=width,
                height=height,
            )
            self._resources.process = await conn.create_process(
                None,
                term_type=self._term_type,
                term_size=(width, height),
                term_modes=PTY_MODES,
                encoding=None,
            )
        except (OSError, asyncssh.Error) as e:
            raise SessionSetupError(
                f"Failed to start interactive session on {self._resources.address}: {e}",
                context=self._context("pty", str(e)),
            ) from e

        self._transition(SessionState.PTY_REQUESTED)

    def _attach_bridge(self) -> None:
        process = self._resources.process
        assert process is not None
        terminal = self._terminal

        try:
            bridge = self._bridge_factory(
                process, terminal.stdin_fd, terminal.stdout, terminal.stderr
            )
            bridge.attach()
        except (OSError, ValueError) as e:
            raise SessionSetupError(
                f"Failed to attach terminal to remote shell: {e}",
                context=self._context("shell", str(e)),
            ) from e

        self._resources.bridge = bridge
        self._transition(SessionState.SHELL_RUNNING)
        self._emitter.emit(EventType.SHELL, status="running")

    async def _wait_for_shell(self) -> int | None:
        bridge = self._resources.bridge
        assert bridge is not None

        start_ms = time.time() * 1000
        try:
            exit_status = await bridge.run()
        except (OSError, asyncssh.Error) as e:
            # A dropped connection ends the session like a remote close
            self._emitter.emit(EventType.SHELL, status="interrupted", error=str(e))
            exit_status = None

        self._emitter.emit(
            EventType.SHELL,
            status="exited",
            exit_status=exit_status,
            bytes_in=bridge.bytes_in,
            bytes_out=bridge.bytes_out,
            duration_ms=(time.time() * 1000) - start_ms,
        )
        return exit_status

    # -----------------------------------------------------------------------
    # Cleanup
    # -----------------------------------------------------------------------

    async def _unwind(self) -> None:
        """Release acquired resources: terminal mode first, then the connection."""
        res = self._resources

        if res.bridge is not None:
            res.bridge.detach()

        if res.raw_entered and not res.mode_restored and res.saved_mode is not None:
            try:
                self._terminal.restore(res.saved_mode)
                res.mode_restored = True
            except OSError as e:
                self._emitter.emit(
                    EventType.ERROR,
                    error_type="terminal_restore_failed",
                    message=f"Failed to restore terminal mode: {e}",
                )

        if res.process is not None:
            res.process.close()

        if res.conn is not None:
            res.conn.close()
            await res.conn.wait_closed()
            self._emitter.emit(
                EventType.DISCONNECT,
                address=res.address,
                state=self._state.value,
            )


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------

async def open_session(
    host: str,
    port: int,
    username: str,
    bundle: CredentialBundle,
    width: int | None = None,
    height: int | None = None,
    *,
    emitter: EventEmitter | None = None,
    **options: Any,
) -> SessionResult:
    """
    Establish an interactive shell session and run it until it ends.

    The caller should clear its own display before calling and restore
    it afterwards; this function renders nothing.

    Args:
        host: Server hostname or IP address
        port: Server port
        username: Remote login name
        bundle: Credential fields for the host
        width: Terminal width to use if the local size cannot be read
        height: Terminal height to use if the local size cannot be read
        emitter: Diagnostics sink
        **options: Passed to SessionOrchestrator (probe_timeout,
            handshake_timeout, known_hosts, terminal, ...)

    Returns:
        SessionResult carrying the exit status or a FailureReport
    """
    try:
        connection = HostConnection(host, port, username)
    except ValueError as e:
        report = FailureReport(
            kind=FailureKind.CONFIG_ERROR,
            message=f"Invalid host connection: {e}",
            phase="validate",
            cause=str(e),
        )
        if emitter is not None:
            emitter.emit(EventType.ERROR, error_type="invalid_connection", **report.to_dict())
        return SessionResult(failure=report)

    size_hint = (width, height) if width and height else None
    orchestrator = SessionOrchestrator(
        connection, bundle, emitter=emitter, size_hint=size_hint, **options
    )

    try:
        exit_status = await orchestrator.run()
    except SessionError as e:
        return SessionResult(failure=e.to_report())

    return SessionResult(exit_status=exit_status)


def start_session(
    host: str,
    port: int,
    username: str,
    bundle: CredentialBundle,
    width: int | None = None,
    height: int | None = None,
    **options: Any,
) -> SessionResult:
    """
    Blocking form of open_session for callers without an event loop.

    Blocks the calling thread until the remote shell exits or the
    attempt fails.
    """
    return asyncio.run(
        open_session(host, port, username, bundle, width, height, **options)
    )
