"""
Failure taxonomy for session establishment.

Two families of errors exist:

- SessionError: orchestrator-level failures that end a connection attempt
  and surface to the caller as a FailureReport.
  - Unreachable (transport connect failed or timed out)
  - NoAuthMethod (authentication chain was empty)
  - AuthRejected (server rejected every offered method)
  - HandshakeError (any other dial/handshake failure)
  - SessionSetupError (channel, raw mode, PTY or shell failure)
- ConfigError: credential-source failures. These are caught by the
  source that raised them and turned into "contributes nothing".
  - KeyLoadError (identity file problems)
  - AgentError (agent socket/pipe problems)
  - KeyringError (OS secret store problems)
  - HostConfigError (host record file problems)
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from enum import Enum
from typing import Any


class FailureKind(str, Enum):
    """Closed set of failure kinds a caller branches on."""
    UNREACHABLE = "unreachable"
    NO_AUTH_METHOD = "no_auth_method"
    AUTH_REJECTED = "auth_rejected"
    HANDSHAKE_ERROR = "handshake_error"
    SESSION_SETUP_ERROR = "session_setup_error"
    CONFIG_ERROR = "config_error"


@dataclass
class ErrorContext:
    """
    Structured context attached to every error.

    Carries the connection coordinates, the orchestrator phase that failed
    and the underlying cause, so the message shown to the user and the
    event log agree.
    """
    host: str | None = None
    port: int | None = None
    username: str | None = None
    phase: str | None = None
    original_error: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.port is not None:
            assert isinstance(self.port, int) and 1 <= self.port <= 65535, (
                f"Port must be between 1 and 65535, got {self.port}"
            )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary, excluding None values."""
        result: dict[str, Any] = {}
        for key, value in asdict(self).items():
            if value is None:
                continue
            if key == "extra":
                field_names = {f.name for f in fields(self)} - {"extra"}
                collisions = field_names & value.keys()
                assert not collisions, (
                    f"Extra keys collide with context fields: {collisions}"
                )
                result.update(value)
            else:
                result[key] = value
        return result


@dataclass(frozen=True)
class FailureReport:
    """
    Value handed back to the caller when a session attempt fails.

    The caller renders `message`; `kind` decides what guidance to give.
    """
    kind: FailureKind
    message: str
    phase: str | None = None
    cause: str | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"kind": self.kind.value, "message": self.message}
        if self.phase:
            result["phase"] = self.phase
        if self.cause:
            result["cause"] = self.cause
        return result


class RolodexError(Exception):
    """Base exception for all rolodex errors."""

    kind: FailureKind = FailureKind.CONFIG_ERROR

    def __init__(self, message: str, context: ErrorContext | None = None) -> None:
        assert isinstance(message, str) and message.strip(), (
            f"Error message must be a non-empty string, got {message!r}"
        )
        super().__init__(message)
        self.context = context or ErrorContext()

    @property
    def error_type(self) -> str:
        """Return the error type name for logging."""
        return self.__class__.__name__

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for event logging."""
        return {
            "error_type": self.error_type,
            "kind": self.kind.value,
            "message": str(self),
            **self.context.to_dict(),
        }

    def to_report(self) -> FailureReport:
        return FailureReport(
            kind=self.kind,
            message=str(self),
            phase=self.context.phase,
            cause=self.context.original_error,
        )


# ---------------------------------------------------------------------------
# Orchestrator-level errors
# ---------------------------------------------------------------------------

class SessionError(RolodexError):
    """Base class for failures that end a connection attempt."""
    pass


class Unreachable(SessionError):
    """Transport-level connect to the server failed or timed out."""
    kind = FailureKind.UNREACHABLE


class NoAuthMethod(SessionError):
    """No credential source produced an authentication method."""
    kind = FailureKind.NO_AUTH_METHOD


class AuthRejected(SessionError):
    """
    The server rejected every offered authentication method.

    Carries how many credentials the server actually asked for, the
    server's rejection detail and any pre-auth banners it sent.
    """
    kind = FailureKind.AUTH_REJECTED

    def __init__(
        self,
        message: str,
        methods_tried: int = 0,
        server_errors: list[str] | None = None,
        banners: list[str] | None = None,
        context: ErrorContext | None = None,
    ) -> None:
        if context is None:
            context = ErrorContext()
        context.extra["methods_tried"] = methods_tried
        if server_errors:
            context.extra["server_errors"] = list(server_errors)
        if banners:
            context.extra["banners"] = list(banners)
        super().__init__(message, context)
        self.methods_tried = methods_tried
        self.server_errors = list(server_errors or [])
        self.banners = list(banners or [])


class HandshakeError(SessionError):
    """Dial or SSH handshake failed for a reason other than auth rejection."""
    kind = FailureKind.HANDSHAKE_ERROR


class SessionSetupError(SessionError):
    """Opening the session channel, entering raw mode, or PTY/shell request failed."""
    kind = FailureKind.SESSION_SETUP_ERROR


# ---------------------------------------------------------------------------
# Credential-level errors
# ---------------------------------------------------------------------------

class ConfigError(RolodexError):
    """Base class for credential and configuration problems."""
    kind = FailureKind.CONFIG_ERROR


class KeyLoadError(ConfigError):
    """
    Failed to load an identity file.

    Raised when the file is missing, unreadable, not a private key, or
    encrypted with a passphrase that was not supplied or is wrong.
    """

    def __init__(
        self,
        message: str,
        key_path: str | None = None,
        reason: str | None = None,
        context: ErrorContext | None = None,
    ) -> None:
        assert key_path is None or (isinstance(key_path, str) and key_path.strip()), (
            f"key_path must be None or a non-empty string, got {key_path!r}"
        )
        if context is None:
            context = ErrorContext()
        if key_path:
            context.extra["key_path"] = key_path
        if reason:
            context.extra["reason"] = reason
        super().__init__(message, context)
        self.key_path = key_path
        self.reason = reason


class AgentError(ConfigError):
    """The SSH agent could not be reached or returned an error."""

    def __init__(
        self,
        message: str,
        reason: str | None = None,
        context: ErrorContext | None = None,
    ) -> None:
        if context is None:
            context = ErrorContext()
        if reason:
            context.extra["reason"] = reason
        super().__init__(message, context)
        self.reason = reason


class KeyringError(ConfigError):
    """The OS secret store could not be read or written."""

    def __init__(
        self,
        message: str,
        service: str | None = None,
        account: str | None = None,
        reason: str | None = None,
        context: ErrorContext | None = None,
    ) -> None:
        if context is None:
            context = ErrorContext()
        if service:
            context.extra["service"] = service
        if account:
            context.extra["account"] = account
        if reason:
            context.extra["reason"] = reason
        super().__init__(message, context)
        self.reason = reason


class HostConfigError(ConfigError):
    """The host record file is missing, malformed, or fails validation."""

    def __init__(
        self,
        message: str,
        path: str | None = None,
        context: ErrorContext | None = None,
    ) -> None:
        if context is None:
            context = ErrorContext()
        if path:
            context.extra["path"] = path
        super().__init__(message, context)
