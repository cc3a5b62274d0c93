"""
Input validation for host records and connection parameters.

Host addresses, usernames and ports arrive from a hand-edited JSON file or
from the interactive prompts, so they are checked for control characters,
shell metacharacters and out-of-range values before anything reaches the
network layer.
"""
from __future__ import annotations

import ipaddress
import re
from typing import Final

MAX_HOSTNAME_LENGTH: Final[int] = 253
MAX_LABEL_LENGTH: Final[int] = 63
MAX_USERNAME_LENGTH: Final[int] = 64

DANGEROUS_CHARS: Final[frozenset[str]] = frozenset(
    "\x00\n\r\t"
    "`$(){}|;&<>\\'\""
)

_CHAR_NAMES: Final[dict[str, str]] = {
    "\x00": "null byte",
    "\n": "newline",
    "\r": "carriage return",
    "\t": "tab",
}

_LABEL_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"^[a-zA-Z0-9_]([a-zA-Z0-9_-]*[a-zA-Z0-9_])?$"
)

# Accepts the shapes servers actually use: domain accounts (user@corp),
# dotted names (first.last) and service accounts (svc-backup)
_USERNAME_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"^[A-Za-z0-9_][A-Za-z0-9._@-]*$"
)


def _check_dangerous_chars(value: str, field_name: str) -> None:
    """
    Raise ValueError naming the first forbidden character in value.
    """
    for char in value:
        if char in DANGEROUS_CHARS:
            char_desc = _CHAR_NAMES.get(char, repr(char))
            raise ValueError(f"{field_name} contains forbidden character: {char_desc}")


def validate_hostname(hostname: str) -> str:
    """
    Validate a DNS hostname per RFC 952/1123.

    Args:
        hostname: The hostname to validate

    Returns:
        The hostname in lowercase

    Raises:
        ValueError: If the hostname is invalid
    """
    if not isinstance(hostname, str):
        raise ValueError(f"hostname must be a string, got {type(hostname).__name__}")

    if not hostname:
        raise ValueError("hostname must not be empty")

    _check_dangerous_chars(hostname, "hostname")

    if len(hostname) > MAX_HOSTNAME_LENGTH:
        raise ValueError(
            f"hostname exceeds maximum length of {MAX_HOSTNAME_LENGTH} characters "
            f"(got {len(hostname)})"
        )

    labels = hostname.split(".")
    for i, label in enumerate(labels):
        if not label:
            if i == 0:
                raise ValueError("hostname must not start with a dot")
            if i == len(labels) - 1:
                raise ValueError("hostname must not end with a dot")
            raise ValueError("hostname must not contain consecutive dots")

        if len(label) > MAX_LABEL_LENGTH:
            raise ValueError(
                f"hostname label '{label}' exceeds maximum length of "
                f"{MAX_LABEL_LENGTH} characters (got {len(label)})"
            )

        if not _LABEL_PATTERN.match(label):
            if label.startswith("-") or label.endswith("-"):
                raise ValueError(
                    f"hostname label '{label}' must not start or end with a hyphen"
                )
            raise ValueError(
                f"hostname label '{label}' contains invalid characters "
                "(only alphanumeric, underscore and hyphens allowed)"
            )

    return hostname.lower()


def validate_address(address: str) -> str:
    """
    Validate a server address: an IPv4/IPv6 literal or a hostname.

    IPv6 literals may be given with or without surrounding brackets;
    the brackets are stripped.

    Returns:
        The normalised address

    Raises:
        ValueError: If the address is neither a valid IP nor hostname
    """
    if not isinstance(address, str):
        raise ValueError(f"host must be a string, got {type(address).__name__}")

    candidate = address.strip()
    if candidate.startswith("[") and candidate.endswith("]"):
        candidate = candidate[1:-1]

    if not candidate:
        raise ValueError("host must not be empty")

    try:
        return str(ipaddress.ip_address(candidate))
    except ValueError:
        pass

    return validate_hostname(candidate)


def validate_username(username: str) -> str:
    """
    Validate an SSH login name.

    Returns:
        The username unchanged

    Raises:
        ValueError: If the username is invalid
    """
    if not isinstance(username, str):
        raise ValueError(f"username must be a string, got {type(username).__name__}")

    if not username:
        raise ValueError("username must not be empty")

    _check_dangerous_chars(username, "username")

    if len(username) > MAX_USERNAME_LENGTH:
        raise ValueError(
            f"username exceeds maximum length of {MAX_USERNAME_LENGTH} characters "
            f"(got {len(username)})"
        )

    if not _USERNAME_PATTERN.match(username):
        if username[0] in ".@-":
            raise ValueError(
                f"username must start with a letter, digit or underscore, "
                f"got '{username[0]}'"
            )
        for char in username:
            if not (char.isalnum() or char in "._@-"):
                raise ValueError(f"username contains invalid character: {char!r}")
        raise ValueError("username contains invalid characters")

    return username


def validate_port(port: int) -> int:
    """
    Validate a TCP port number.

    Raises:
        ValueError: If port is not an int in 1-65535
    """
    # bool is a subclass of int
    if isinstance(port, bool) or not isinstance(port, int):
        raise ValueError(f"port must be an integer, got {type(port).__name__}")

    if not 1 <= port <= 65535:
        raise ValueError(f"port must be between 1 and 65535, got {port}")

    return port
