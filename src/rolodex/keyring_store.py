"""
OS secret store access for host passwords.

Wraps the `keyring` library (Windows Credential Manager, macOS Keychain,
Secret Service on Linux) with the decoding quirks of real-world entries.
Credentials written by Windows tools through the wide-character API come
back as UTF-16LE bytes smuggled through a text string; those are detected
and decoded.
"""
from __future__ import annotations

import logging

import keyring
import keyring.errors

from rolodex.errors import KeyringError
from rolodex.secure_string import SecureString

logger = logging.getLogger(__name__)


def _looks_like_utf16le(data: bytes) -> bool:
    # ASCII text stored as UTF-16LE has a NUL in every high byte
    return len(data) > 1 and data[1] == 0 and len(data) % 2 == 0


def decode_keyring_secret(raw: str | bytes) -> str:
    """
    Normalise a secret read from the OS keyring to text.

    If the value is longer than one unit and its second unit is NUL it is
    treated as UTF-16LE and decoded. Odd-length values cannot be UTF-16LE
    and are returned as-is.

    Args:
        raw: The value returned by the backend

    Returns:
        The decoded secret
    """
    if isinstance(raw, str):
        if len(raw) > 1 and raw[1] == "\x00":
            try:
                data = raw.encode("latin-1")
            except UnicodeEncodeError:
                return raw
            if not _looks_like_utf16le(data):
                return raw
            try:
                return data.decode("utf-16-le")
            except UnicodeDecodeError:
                return raw
        return raw

    assert isinstance(raw, bytes), f"Expected str or bytes, got {type(raw).__name__}"
    if _looks_like_utf16le(raw):
        try:
            return raw.decode("utf-16-le")
        except UnicodeDecodeError:
            pass
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError:
        return raw.decode("latin-1")


def get_password_from_keyring(service: str, account: str) -> SecureString | None:
    """
    Look up the password stored under (service, account).

    Args:
        service: Keyring service name
        account: Keyring account name

    Returns:
        The secret, or None if either name is empty or no entry exists

    Raises:
        KeyringError: If the keyring backend fails
    """
    if not service or not account:
        return None

    try:
        raw = keyring.get_password(service, account)
    except keyring.errors.KeyringError as e:
        raise KeyringError(
            f"Failed to read keyring entry {service}/{account}: {e}",
            service=service,
            account=account,
            reason="backend_error",
        ) from e

    if raw is None:
        logger.debug("No keyring entry for %s/%s", service, account)
        return None

    logger.debug("Retrieved keyring entry for %s/%s", service, account)
    return SecureString(decode_keyring_secret(raw))


def store_in_keyring(service: str, account: str, password: str) -> None:
    """
    Store a password under (service, account), replacing any existing entry.

    Raises:
        KeyringError: If either name is empty or the backend refuses the write
    """
    if not service or not account:
        raise KeyringError(
            "Keyring service and account must both be set",
            service=service or None,
            account=account or None,
            reason="missing_name",
        )

    try:
        keyring.set_password(service, account, password)
    except keyring.errors.KeyringError as e:
        raise KeyringError(
            f"Failed to store keyring entry {service}/{account}: {e}",
            service=service,
            account=account,
            reason="backend_error",
        ) from e

    logger.debug("Stored keyring entry for %s/%s", service, account)


def delete_from_keyring(service: str, account: str) -> None:
    """
    Remove the entry stored under (service, account).

    Raises:
        KeyringError: If the entry does not exist or the backend fails
    """
    try:
        keyring.delete_password(service, account)
    except keyring.errors.PasswordDeleteError as e:
        raise KeyringError(
            f"No keyring entry {service}/{account} to delete",
            service=service,
            account=account,
            reason="not_found",
        ) from e
    except keyring.errors.KeyringError as e:
        raise KeyringError(
            f"Failed to delete keyring entry {service}/{account}: {e}",
            service=service,
            account=account,
            reason="backend_error",
        ) from e

    logger.debug("Deleted keyring entry for %s/%s", service, account)
