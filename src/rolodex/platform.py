"""
Cross-platform path handling, key discovery and agent addressing.

Provides:
- Platform-appropriate SSH and application directories
- Path expansion for identity files
- Agent address lookup and transport selection (Unix socket vs named pipe)
- Default private key locations and a key file check
"""
from __future__ import annotations

import os
import stat
import sys
from enum import Enum
from pathlib import Path
from typing import Mapping

APP_NAME = "rolodex"
CONFIG_FILENAME = "config.json"


def is_windows() -> bool:
    """Check if running on Windows."""
    return sys.platform == "win32"


def get_ssh_dir() -> Path:
    """
    Get the platform-appropriate SSH directory.

    Returns:
        ~/.ssh on Unix, %USERPROFILE%\\.ssh on Windows
    """
    if is_windows():
        userprofile = os.environ.get("USERPROFILE")
        if userprofile:
            return Path(userprofile) / ".ssh"
    return Path.home() / ".ssh"


def expand_path(path: str | Path) -> Path:
    """
    Expand a path, handling a leading ~ and (on Windows) %VAR% syntax.

    Args:
        path: Path string or Path object to expand

    Returns:
        Expanded Path object
    """
    path_str = str(path)

    if is_windows():
        path_str = os.path.expandvars(path_str)

    return Path(path_str).expanduser()


# ---------------------------------------------------------------------------
# Agent addressing
# ---------------------------------------------------------------------------

class AgentTransport(str, Enum):
    """How an agent address is reached."""
    UNIX_SOCKET = "unix"
    NAMED_PIPE = "pipe"


def get_agent_address(environ: Mapping[str, str] | None = None) -> str | None:
    """
    Return the agent address from SSH_AUTH_SOCK, or None if unset or empty.
    """
    if environ is None:
        environ = os.environ
    address = environ.get("SSH_AUTH_SOCK", "")
    return address or None


def agent_transport(address: str) -> AgentTransport:
    """
    Pick the agent transport from the lexical form of its address.

    Windows named pipes look like \\\\.\\pipe\\openssh-ssh-agent (or the
    forward-slash spelling //./pipe/...); anything else is a Unix domain
    socket path.
    """
    assert address, "Agent address must be non-empty"
    if address.startswith("\\") or address.startswith("//./pipe/"):
        return AgentTransport.NAMED_PIPE
    return AgentTransport.UNIX_SOCKET


def agent_transport_supported(transport: AgentTransport) -> bool:
    """Whether this host OS can reach an agent over the given transport."""
    if transport == AgentTransport.NAMED_PIPE:
        return is_windows()
    return not is_windows()


# ---------------------------------------------------------------------------
# Identity files
# ---------------------------------------------------------------------------

def get_default_key_paths() -> list[Path]:
    """
    Get the common private key file paths in ~/.ssh.

    Returns:
        id_ed25519, id_rsa, id_ecdsa and id_dsa, in that order
    """
    ssh_dir = get_ssh_dir()
    return [ssh_dir / name for name in ("id_ed25519", "id_rsa", "id_ecdsa", "id_dsa")]


def discover_keys() -> list[Path]:
    """Return the default key paths that exist and are readable."""
    return [
        path for path in get_default_key_paths()
        if path.is_file() and os.access(path, os.R_OK)
    ]


def check_key_file(path: Path) -> tuple[str | None, str | None]:
    """
    Check that a key file is usable and privately held.

    Returns:
        (problem, message). problem is None for a usable file and one of
        "file_not_found", "not_a_file" or "permission_denied" otherwise.
        A usable file still carries a warning message when group or other
        permission bits are set.
    """
    if not path.exists():
        return "file_not_found", f"Identity file not found: {path}"

    if path.is_dir():
        return "not_a_file", f"Identity path is a directory, not a file: {path}"

    if not os.access(path, os.R_OK):
        return "permission_denied", f"Identity file not readable: {path}"

    if not is_windows():
        mode = stat.S_IMODE(path.stat().st_mode)
        if mode & 0o044:
            return None, f"Identity file {path} has overly permissive permissions: {oct(mode)}"

    return None, None


# ---------------------------------------------------------------------------
# Application files
# ---------------------------------------------------------------------------

def get_app_dir(environ: Mapping[str, str] | None = None) -> Path:
    """
    Directory holding the host configuration and logs.

    $ROLODEX_HOME wins; otherwise %APPDATA%\\rolodex on Windows and
    $XDG_CONFIG_HOME/rolodex (default ~/.config/rolodex) elsewhere.
    """
    if environ is None:
        environ = os.environ

    override = environ.get("ROLODEX_HOME")
    if override:
        return expand_path(override)

    if is_windows():
        appdata = environ.get("APPDATA")
        if appdata:
            return Path(appdata) / APP_NAME

    xdg = environ.get("XDG_CONFIG_HOME")
    if xdg:
        return Path(xdg) / APP_NAME
    return Path.home() / ".config" / APP_NAME


def get_config_path(environ: Mapping[str, str] | None = None) -> Path:
    """Default location of the host configuration file."""
    return get_app_dir(environ) / CONFIG_FILENAME


def get_log_dir(environ: Mapping[str, str] | None = None) -> Path:
    """Directory for the dated log files."""
    return get_app_dir(environ) / "logs"
