"""
Tests for the failure taxonomy.

Each orchestrator failure maps to exactly one FailureKind, carries its
phase and cause in ErrorContext, and renders to a FailureReport.
"""
from __future__ import annotations

import pytest

from rolodex.errors import (
    AgentError,
    AuthRejected,
    ConfigError,
    ErrorContext,
    FailureKind,
    FailureReport,
    HandshakeError,
    HostConfigError,
    KeyLoadError,
    KeyringError,
    NoAuthMethod,
    RolodexError,
    SessionError,
    SessionSetupError,
    Unreachable,
)


class TestErrorContext:
    def test_to_dict_excludes_none(self) -> None:
        ctx = ErrorContext(host="example.com", port=22)
        assert ctx.to_dict() == {"host": "example.com", "port": 22}

    def test_extra_merged(self) -> None:
        ctx = ErrorContext(host="h", extra={"attempts": 3})
        assert ctx.to_dict() == {"host": "h", "attempts": 3}

    def test_extra_collision_rejected(self) -> None:
        ctx = ErrorContext(extra={"host": "other"})
        with pytest.raises(AssertionError, match="collide"):
            ctx.to_dict()

    def test_invalid_port_rejected(self) -> None:
        with pytest.raises(AssertionError):
            ErrorContext(port=0)


class TestFailureKinds:
    @pytest.mark.parametrize(
        "error_class, kind",
        [
            (Unreachable, FailureKind.UNREACHABLE),
            (NoAuthMethod, FailureKind.NO_AUTH_METHOD),
            (AuthRejected, FailureKind.AUTH_REJECTED),
            (HandshakeError, FailureKind.HANDSHAKE_ERROR),
            (SessionSetupError, FailureKind.SESSION_SETUP_ERROR),
            (HostConfigError, FailureKind.CONFIG_ERROR),
        ],
    )
    def test_kind_per_class(self, error_class: type[RolodexError], kind: FailureKind) -> None:
        assert error_class("boom").kind == kind

    def test_session_and_config_families_are_disjoint(self) -> None:
        for cls in (Unreachable, NoAuthMethod, AuthRejected, HandshakeError, SessionSetupError):
            assert issubclass(cls, SessionError)
            assert not issubclass(cls, ConfigError)
        for cls in (KeyLoadError, AgentError, KeyringError, HostConfigError):
            assert issubclass(cls, ConfigError)
            assert not issubclass(cls, SessionError)

    def test_empty_message_rejected(self) -> None:
        with pytest.raises(AssertionError):
            Unreachable("  ")


class TestErrorSerialisation:
    def test_to_dict(self) -> None:
        ctx = ErrorContext(host="web1", port=22, username="deploy", phase="probe")
        error = Unreachable("Cannot reach web1:22", context=ctx)

        data = error.to_dict()

        assert data["error_type"] == "Unreachable"
        assert data["kind"] == "unreachable"
        assert data["message"] == "Cannot reach web1:22"
        assert data["host"] == "web1"
        assert data["phase"] == "probe"

    def test_to_report(self) -> None:
        ctx = ErrorContext(phase="handshake", original_error="connection reset")
        report = HandshakeError("handshake failed", context=ctx).to_report()

        assert report == FailureReport(
            kind=FailureKind.HANDSHAKE_ERROR,
            message="handshake failed",
            phase="handshake",
            cause="connection reset",
        )
        assert report.to_dict() == {
            "kind": "handshake_error",
            "message": "handshake failed",
            "phase": "handshake",
            "cause": "connection reset",
        }

    def test_report_to_dict_omits_empty(self) -> None:
        report = FailureReport(kind=FailureKind.NO_AUTH_METHOD, message="none")
        assert report.to_dict() == {"kind": "no_auth_method", "message": "none"}


class TestStructuredSubclasses:
    def test_auth_rejected_carries_attempts(self) -> None:
        error = AuthRejected(
            "rejected", methods_tried=3, server_errors=["Permission denied"]
        )
        assert error.methods_tried == 3
        assert error.server_errors == ["Permission denied"]
        assert error.to_dict()["methods_tried"] == 3
        assert error.banners == []
        assert "banners" not in error.to_dict()

    def test_auth_rejected_keeps_banners_apart(self) -> None:
        error = AuthRejected(
            "rejected",
            methods_tried=1,
            server_errors=["Permission denied"],
            banners=["Authorised use only"],
        )
        assert error.server_errors == ["Permission denied"]
        assert error.banners == ["Authorised use only"]
        assert error.to_dict()["banners"] == ["Authorised use only"]

    def test_key_load_error_reason(self) -> None:
        error = KeyLoadError("bad key", key_path="/tmp/k", reason="invalid_format")
        assert error.reason == "invalid_format"
        assert error.to_dict()["key_path"] == "/tmp/k"

    def test_key_load_error_rejects_blank_path(self) -> None:
        with pytest.raises(AssertionError):
            KeyLoadError("bad key", key_path=" ")

    def test_agent_error_reason(self) -> None:
        assert AgentError("no agent", reason="socket_not_found").to_dict()["reason"] == (
            "socket_not_found"
        )

    def test_keyring_error_fields(self) -> None:
        data = KeyringError("failed", service="svc", account="acct", reason="backend_error").to_dict()
        assert data["service"] == "svc"
        assert data["account"] == "acct"
        assert data["reason"] == "backend_error"

    def test_host_config_error_path(self) -> None:
        assert HostConfigError("bad", path="/x.json").to_dict()["path"] == "/x.json"
