"""
Memory-controlled storage for passwords and passphrases.

Secrets read from host records, the keyring or a prompt are wrapped in a
SecureString as soon as they enter the process. The value lives in a
ctypes buffer outside the garbage collector's reach, is never rendered by
str()/repr()/format(), and is overwritten with random bytes once the
authentication chain that held it is discarded.
"""
from __future__ import annotations

import ctypes
import os
from typing import Any


class SecureStringEradicated(Exception):
    """Raised when reading a secret after it has been eradicated."""
    pass


class SecureString:
    """
    A secret held in a ctypes buffer.

    Usage:
        secret = SecureString(password)
        conn_password = secret.reveal()
        ...
        secret.eradicate()

    The caller's original str still exists until collected; keep it
    short-lived.
    """

    __slots__ = ("_buffer", "_length", "_eradicated")

    def __init__(self, value: str | bytes) -> None:
        assert isinstance(value, (str, bytes)), (
            f"SecureString requires str or bytes, got {type(value).__name__}"
        )
        data = value.encode("utf-8") if isinstance(value, str) else value

        self._length = len(data)
        self._eradicated = False
        self._buffer = (ctypes.c_char * max(self._length, 1))()
        ctypes.memmove(self._buffer, data, self._length)

    def _raw(self) -> bytes:
        if self._eradicated:
            raise SecureStringEradicated(
                "SecureString has been eradicated and cannot be accessed"
            )
        return self._buffer.raw[:self._length]

    def reveal(self) -> str:
        """
        Return the secret as text.

        Only call this at the point the value is handed to the SSH layer.

        Raises:
            SecureStringEradicated: If the secret was already destroyed
        """
        return self._raw().decode("utf-8")

    def reveal_bytes(self) -> bytes:
        """Return the secret as bytes. Same caveats as reveal()."""
        return self._raw()

    def eradicate(self) -> None:
        """Overwrite the buffer with random bytes. Idempotent."""
        if self._eradicated:
            return
        noise = os.urandom(self._length)
        ctypes.memmove(self._buffer, noise, self._length)
        self._eradicated = True

    @property
    def is_eradicated(self) -> bool:
        return self._eradicated

    def __str__(self) -> str:
        return "<eradicated>" if self._eradicated else "<hidden>"

    def __repr__(self) -> str:
        return f"SecureString({self})"

    def __format__(self, spec: str) -> str:
        return format(str(self), spec)

    def __len__(self) -> int:
        return len(self._raw())

    def __bool__(self) -> bool:
        return len(self) > 0

    def __eq__(self, other: Any) -> bool:
        if isinstance(other, SecureString):
            return self._raw() == other._raw()
        if isinstance(other, str):
            return self.reveal() == other
        if isinstance(other, bytes):
            return self._raw() == other
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self._raw())

    def __del__(self) -> None:
        # Interpreter shutdown may have torn down os/ctypes already
        try:
            self.eradicate()
        except Exception:  # noqa: BLE001
            pass
