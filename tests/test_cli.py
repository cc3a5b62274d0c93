"""
Tests for the command-line interface.

Commands run in-process through main(argv) against a temporary rolodex
home; sessions and the keyring are patched out.
"""
from __future__ import annotations

import json
import subprocess
import sys
from datetime import date
from pathlib import Path
from unittest.mock import patch

import keyring.errors
import pytest

from rolodex.__main__ import create_parser, main
from rolodex.errors import FailureKind, FailureReport
from rolodex.session import SessionResult


def write_config(home: Path, hosts: list[dict]) -> Path:
    home.mkdir(parents=True, exist_ok=True)
    path = home / "config.json"
    path.write_text(json.dumps({"hosts": hosts}), encoding="utf-8")
    return path


WEB1 = {"name": "web1", "host": "10.0.0.5", "user": "deploy", "password": "pw"}


class TestParser:
    def test_connect_defaults(self) -> None:
        args = create_parser().parse_args(["connect", "web1"])
        assert args.command == "connect"
        assert args.name == "web1"
        assert args.probe_timeout == 10.0
        assert args.timeout == 30.0
        assert args.known_hosts is None

    def test_command_required(self) -> None:
        with pytest.raises(SystemExit):
            create_parser().parse_args([])

    def test_help_output(self) -> None:
        result = subprocess.run(
            [sys.executable, "-m", "rolodex", "--help"],
            capture_output=True,
            text=True,
            cwd=Path(__file__).parent.parent,
            env={
                **subprocess.os.environ,
                "PYTHONPATH": str(Path(__file__).parent.parent / "src"),
            },
        )

        assert result.returncode == 0
        assert "rolodex" in result.stdout
        for command in ("list", "connect", "add", "delete", "keyring"):
            assert command in result.stdout


class TestList:
    def test_empty(self, rolodex_home: Path, capsys: pytest.CaptureFixture[str]) -> None:
        assert main(["list"]) == 0
        assert "No hosts saved" in capsys.readouterr().out

    def test_lists_hosts(self, rolodex_home: Path, capsys: pytest.CaptureFixture[str]) -> None:
        write_config(rolodex_home, [WEB1])
        assert main(["list"]) == 0
        out = capsys.readouterr().out
        assert "web1" in out
        assert "deploy@10.0.0.5:22" in out

    def test_writes_dated_log(self, rolodex_home: Path) -> None:
        main(["list"])
        log = rolodex_home / "logs" / f"rolodex_{date.today().isoformat()}.log"
        text = log.read_text(encoding="utf-8")
        assert "=== Rolodex session started ===" in text
        assert "=== Rolodex session ended ===" in text


class TestAdd:
    def test_add_agent_host(self, rolodex_home: Path) -> None:
        assert main(["add", "--name", "web1", "--host", "10.0.0.5", "--user", "deploy",
                     "--ssh-agent"]) == 0

        data = json.loads((rolodex_home / "config.json").read_text(encoding="utf-8"))
        assert data["hosts"] == [
            {"name": "web1", "host": "10.0.0.5", "port": 22, "user": "deploy", "ssh_agent": True}
        ]

    def test_add_prompts_for_password(self, rolodex_home: Path) -> None:
        with patch("rolodex.__main__.getpass.getpass", return_value="s3cret"):
            assert main(["add", "--name", "db1", "--host", "db", "--user", "admin",
                         "--password"]) == 0

        data = json.loads((rolodex_home / "config.json").read_text(encoding="utf-8"))
        assert data["hosts"][0]["password"] == "s3cret"

    def test_missing_identity_file(
        self, rolodex_home: Path, tmp_path: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        code = main(["add", "--name", "web1", "--host", "h", "--user", "u",
                     "--identity-file", str(tmp_path / "missing")])
        assert code == 1
        assert "not found" in capsys.readouterr().err

    def test_no_credentials_suggests_keys(
        self, rolodex_home: Path, tmp_path: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        key = tmp_path / "id_ed25519"
        with patch("rolodex.__main__.discover_keys", return_value=[key]):
            assert main(["add", "--name", "web1", "--host", "h", "--user", "u"]) == 0

        err = capsys.readouterr().err
        assert "no credential configured" in err
        assert str(key) in err

    def test_duplicate_rejected(
        self, rolodex_home: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        write_config(rolodex_home, [WEB1])
        assert main(["add", "--name", "web1", "--host", "h", "--user", "u", "--ssh-agent"]) == 1
        assert "already exists" in capsys.readouterr().err


class TestDelete:
    def test_delete(self, rolodex_home: Path) -> None:
        path = write_config(rolodex_home, [WEB1])
        assert main(["delete", "web1"]) == 0
        assert json.loads(path.read_text(encoding="utf-8"))["hosts"] == []

    def test_delete_unknown(self, rolodex_home: Path, capsys: pytest.CaptureFixture[str]) -> None:
        write_config(rolodex_home, [WEB1])
        assert main(["delete", "nope"]) == 1
        assert "No host named nope" in capsys.readouterr().err


class TestConnect:
    def test_propagates_exit_status(self, rolodex_home: Path) -> None:
        write_config(rolodex_home, [WEB1])

        with patch("rolodex.__main__.start_session",
                   return_value=SessionResult(exit_status=4)) as start:
            assert main(["connect", "web1"]) == 4

        args, kwargs = start.call_args
        assert args[:3] == ("10.0.0.5", 22, "deploy")
        assert args[3].password == "pw"
        assert kwargs["known_hosts"] is None

    def test_missing_exit_status_is_success(self, rolodex_home: Path) -> None:
        write_config(rolodex_home, [WEB1])
        with patch("rolodex.__main__.start_session", return_value=SessionResult()):
            assert main(["connect", "web1"]) == 0

    def test_failure_reported(
        self, rolodex_home: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        write_config(rolodex_home, [WEB1])
        report = FailureReport(kind=FailureKind.UNREACHABLE, message="Cannot reach 10.0.0.5:22")

        with patch("rolodex.__main__.start_session", return_value=SessionResult(failure=report)):
            assert main(["connect", "web1"]) == 1

        err = capsys.readouterr().err
        assert "Error: Cannot reach 10.0.0.5:22" in err
        assert "for details" in err

    def test_unknown_host(self, rolodex_home: Path, capsys: pytest.CaptureFixture[str]) -> None:
        write_config(rolodex_home, [WEB1])
        assert main(["connect", "nope"]) == 1
        assert "No host named nope" in capsys.readouterr().err

    def test_missing_config(self, rolodex_home: Path, capsys: pytest.CaptureFixture[str]) -> None:
        assert main(["connect", "web1"]) == 1
        assert "not found" in capsys.readouterr().err

    def test_options_passed(self, rolodex_home: Path, tmp_path: Path) -> None:
        write_config(rolodex_home, [WEB1])
        events = tmp_path / "events.jsonl"

        with patch("rolodex.__main__.start_session", return_value=SessionResult()) as start:
            main(["--known-hosts", "/tmp/kh", "--events", str(events),
                  "connect", "web1", "--probe-timeout", "2", "--timeout", "5"])

        kwargs = start.call_args.kwargs
        assert kwargs["known_hosts"] == "/tmp/kh"
        assert kwargs["probe_timeout"] == 2.0
        assert kwargs["handshake_timeout"] == 5.0


class TestKeyringCommand:
    def test_set(self, rolodex_home: Path) -> None:
        with patch("rolodex.__main__.getpass.getpass", return_value="s3cret"), \
                patch("keyring.set_password") as set_password:
            assert main(["keyring", "set", "rolodex", "web1"]) == 0
        set_password.assert_called_once_with("rolodex", "web1", "s3cret")

    def test_delete_missing(
        self, rolodex_home: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        with patch("keyring.delete_password",
                   side_effect=keyring.errors.PasswordDeleteError("gone")):
            assert main(["keyring", "delete", "rolodex", "web1"]) == 1
        assert "No keyring entry" in capsys.readouterr().err
