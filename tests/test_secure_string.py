"""Tests for SecureString."""

import pytest

from rolodex.secure_string import SecureString, SecureStringEradicated


class TestSecureStringBasicOperations:
    """Test basic SecureString operations."""

    def test_reveal_returns_actual_value(self):
        assert SecureString("hunter2").reveal() == "hunter2"

    def test_reveal_bytes_returns_actual_value(self):
        assert SecureString("hunter2").reveal_bytes() == b"hunter2"

    def test_init_from_bytes(self):
        assert SecureString(b"abc").reveal() == "abc"

    def test_len_counts_bytes(self):
        assert len(SecureString("pässword")) == len("pässword".encode("utf-8"))

    def test_bool(self):
        assert SecureString("x")
        assert not SecureString("")

    def test_rejects_other_types(self):
        with pytest.raises(AssertionError):
            SecureString(1234)  # type: ignore[arg-type]


class TestSecureStringRendering:
    """The secret never leaks through string conversion."""

    def test_str_hides_value(self):
        secret = SecureString("hunter2")
        assert str(secret) == "<hidden>"
        assert "hunter2" not in repr(secret)
        assert f"{secret}" == "<hidden>"
        assert f"{secret:>10}" == "  <hidden>"

    def test_eradicated_rendering(self):
        secret = SecureString("hunter2")
        secret.eradicate()
        assert str(secret) == "<eradicated>"
        assert repr(secret) == "SecureString(<eradicated>)"


class TestSecureStringEquality:
    def test_eq_string_bytes_and_secure(self):
        secret = SecureString("abc")
        assert secret == "abc"
        assert secret == b"abc"
        assert secret == SecureString("abc")
        assert secret != SecureString("abd")

    def test_eq_other_type_returns_not_implemented(self):
        assert SecureString("abc").__eq__(42) is NotImplemented

    def test_hashable(self):
        mapping = {SecureString("abc"): 1}
        assert mapping[SecureString("abc")] == 1


class TestSecureStringEradication:
    def test_eradicate_sets_flag(self):
        secret = SecureString("abc")
        assert not secret.is_eradicated
        secret.eradicate()
        assert secret.is_eradicated

    def test_eradicate_overwrites_memory(self):
        value = "a-fairly-long-secret-value-0123456789"
        secret = SecureString(value)
        buffer = secret._buffer
        secret.eradicate()
        assert buffer.raw[:len(value)] != value.encode("utf-8")

    def test_eradicate_idempotent(self):
        secret = SecureString("abc")
        secret.eradicate()
        secret.eradicate()
        assert secret.is_eradicated

    def test_access_raises_after_eradicate(self):
        secret = SecureString("abc")
        secret.eradicate()
        with pytest.raises(SecureStringEradicated):
            secret.reveal()
        with pytest.raises(SecureStringEradicated):
            secret.reveal_bytes()
        with pytest.raises(SecureStringEradicated):
            len(secret)
        with pytest.raises(SecureStringEradicated):
            hash(secret)

    def test_empty_secret_eradicates(self):
        secret = SecureString("")
        secret.eradicate()
        assert secret.is_eradicated
