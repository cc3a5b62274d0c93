"""
Credential sources and the authentication chain.

Provides:
- CredentialBundle: the credential fields a host record may carry
- AuthDescriptor: one authentication capability produced by a source
- AuthChain: the ordered descriptors offered to the server
- The four credential sources (agent, identity file, keyring, password)
- resolve_auth_chain: runs the sources in priority order

Sources never raise for missing or broken credentials. A source that
cannot produce anything emits a CREDENTIAL event explaining why and
contributes nothing, so one bad key never blocks the others.
"""
from __future__ import annotations

import base64
import hashlib
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, Iterator, Mapping, Sequence

import asyncssh

from rolodex.errors import AgentError, ConfigError, KeyLoadError
from rolodex.events import EventEmitter, EventType
from rolodex.keyring_store import get_password_from_keyring
from rolodex.platform import (
    AgentTransport,
    agent_transport,
    agent_transport_supported,
    check_key_file,
    expand_path,
    get_agent_address,
)
from rolodex.secure_string import SecureString


class AuthSource(str, Enum):
    """Where a descriptor's credential material came from, in priority order."""
    AGENT = "agent"
    IDENTITY_FILE = "identity_file"
    KEYRING = "keyring"
    PASSWORD = "password"


class AuthMethod(str, Enum):
    """SSH user authentication method names (RFC 4252/4256)."""
    PUBLIC_KEY = "publickey"
    PASSWORD = "password"
    KEYBOARD_INTERACTIVE = "keyboard-interactive"


def _reveal(value: str | SecureString | None) -> str | None:
    """
    Explicitly reveal a SecureString for passing to asyncssh.

    Plain strings pass through unchanged.
    """
    if value is None:
        return None
    if isinstance(value, SecureString):
        return value.reveal()
    return value


def key_fingerprint(key: Any) -> str:
    """
    SHA256 fingerprint of a key or key pair, in OpenSSH notation.

    Computed over the SSH wire-format public key blob, which both
    asyncssh.SSHKey and agent-backed key pairs expose as public_data.
    """
    digest = hashlib.sha256(key.public_data).digest()
    return "SHA256:" + base64.b64encode(digest).decode("ascii").rstrip("=")


@dataclass
class CredentialBundle:
    """
    Credential fields a host record may supply.

    Every field is optional. Secrets may be given as str or SecureString;
    sources copy them into fresh SecureStrings per attempt so discarding
    a chain never touches the bundle.

    Usage:
        bundle = CredentialBundle(ssh_agent=True, identity_file="~/.ssh/id_ed25519")
        bundle = CredentialBundle(keyring_service="rolodex", keyring_account="web1")
    """
    ssh_agent: bool = False
    identity_file: str | None = None
    identity_passphrase: str | SecureString | None = None
    keyring_service: str | None = None
    keyring_account: str | None = None
    password: str | SecureString | None = None

    def is_empty(self) -> bool:
        """True when no credential source is configured at all."""
        return not (
            self.ssh_agent
            or self.identity_file
            or (self.keyring_service and self.keyring_account)
            or self.password
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging (excludes secrets)."""
        result: dict[str, Any] = {"ssh_agent": self.ssh_agent}
        if self.identity_file:
            result["identity_file"] = self.identity_file
            result["identity_passphrase"] = bool(self.identity_passphrase)
        if self.keyring_service:
            result["keyring_service"] = self.keyring_service
        if self.keyring_account:
            result["keyring_account"] = self.keyring_account
        result["password"] = bool(self.password)
        return result


@dataclass
class AuthDescriptor:
    """
    One authentication capability offered during the handshake.

    Two shapes exist:
    - PUBLIC_KEY: bound to one or more loaded keys (agent-backed or parsed
      from an identity file)
    - PASSWORD / KEYBOARD_INTERACTIVE: bound to a secret; for
      keyboard-interactive every server prompt is answered with it

    Descriptors are created fresh per connection attempt and must be
    discarded once the handshake resolves.
    """
    source: AuthSource
    method: AuthMethod
    label: str
    keys: tuple[Any, ...] = ()
    secret: SecureString | None = field(default=None, repr=False)
    fingerprints: tuple[str, ...] = ()
    agent: Any = field(default=None, repr=False)

    def __post_init__(self) -> None:
        if self.method == AuthMethod.PUBLIC_KEY:
            assert self.keys, "PUBLIC_KEY descriptor requires at least one key"
            assert self.secret is None, "PUBLIC_KEY descriptor must not carry a secret"
        else:
            assert self.secret is not None, f"{self.method.value} descriptor requires a secret"
            assert not self.keys, f"{self.method.value} descriptor must not carry keys"

    def answer_challenge(self, prompts: Sequence[tuple[str, bool]]) -> list[str]:
        """
        Answer a keyboard-interactive challenge.

        Every prompt receives the secret; an empty prompt list (an
        informational round) gets an empty answer list.
        """
        assert self.method == AuthMethod.KEYBOARD_INTERACTIVE, (
            f"Only keyboard-interactive descriptors answer challenges, not {self.method.value}"
        )
        assert self.secret is not None
        return [self.secret.reveal()] * len(prompts)

    def discard(self) -> None:
        """Destroy credential material and release the agent connection."""
        if self.secret is not None:
            self.secret.eradicate()
        if self.agent is not None:
            self.agent.close()
            self.agent = None
        self.keys = ()

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging (excludes secrets)."""
        result: dict[str, Any] = {
            "source": self.source.value,
            "method": self.method.value,
            "label": self.label,
        }
        if self.fingerprints:
            result["fingerprints"] = list(self.fingerprints)
        return result


class AuthChain:
    """
    Ordered authentication descriptors for a single connection attempt.

    Order is Agent, IdentityFile, Keyring, Password, with each source's
    own descriptors kept in the order it produced them.
    """

    def __init__(self, descriptors: Sequence[AuthDescriptor] = ()) -> None:
        self._descriptors = tuple(descriptors)
        self._discarded = False

    def __len__(self) -> int:
        return len(self._descriptors)

    def __iter__(self) -> Iterator[AuthDescriptor]:
        return iter(self._descriptors)

    def __getitem__(self, index: int) -> AuthDescriptor:
        return self._descriptors[index]

    def __bool__(self) -> bool:
        return bool(self._descriptors)

    @property
    def descriptors(self) -> tuple[AuthDescriptor, ...]:
        return self._descriptors

    @property
    def is_discarded(self) -> bool:
        return self._discarded

    def by_method(self, method: AuthMethod) -> list[AuthDescriptor]:
        """Descriptors using the given SSH method, in chain order."""
        return [d for d in self._descriptors if d.method == method]

    @property
    def preferred_auth(self) -> list[str]:
        """Distinct SSH method names in order of first appearance."""
        methods: list[str] = []
        for descriptor in self._descriptors:
            if descriptor.method.value not in methods:
                methods.append(descriptor.method.value)
        return methods

    def discard(self) -> None:
        """Discard every descriptor. Safe to call more than once."""
        for descriptor in self._descriptors:
            descriptor.discard()
        self._discarded = True

    def to_list(self) -> list[dict[str, Any]]:
        return [d.to_dict() for d in self._descriptors]


# ---------------------------------------------------------------------------
# Agent
# ---------------------------------------------------------------------------

async def get_agent_keys(address: str) -> tuple[Any, list[Any]]:
    """
    Connect to the SSH agent at address and list its keys.

    The agent connection is returned open because agent-backed keys sign
    through it during the handshake; the caller must close it.

    Args:
        address: Unix socket path or Windows named pipe

    Returns:
        (agent client, list of agent-backed key pairs)

    Raises:
        AgentError: If the transport is unsupported or the agent cannot
            be reached or queried
    """
    transport = agent_transport(address)
    if not agent_transport_supported(transport):
        raise AgentError(
            f"SSH agent address {address} uses a {transport.value} transport "
            f"that this platform cannot reach",
            reason="transport_unsupported",
        )

    if transport == AgentTransport.UNIX_SOCKET and not Path(address).exists():
        raise AgentError(
            f"SSH agent socket not found: {address}",
            reason="socket_not_found",
        )

    try:
        agent = await asyncssh.connect_agent(address)
    except OSError as e:
        raise AgentError(
            f"Failed to connect to SSH agent at {address}: {e}",
            reason="connection_failed",
        ) from e

    try:
        keys = await agent.get_keys()
    except (OSError, ValueError) as e:
        agent.close()
        raise AgentError(
            f"SSH agent communication failed: {e}",
            reason="communication_error",
        ) from e

    return agent, list(keys)


async def agent_source(
    bundle: CredentialBundle,
    emitter: EventEmitter | None = None,
    environ: Mapping[str, str] | None = None,
) -> list[AuthDescriptor]:
    """
    Yield one PUBLIC_KEY descriptor backed by every key the agent holds.

    An unset SSH_AUTH_SOCK, an unreachable agent or an agent with no
    keys yields nothing.
    """
    if not bundle.ssh_agent:
        return []

    address = get_agent_address(environ)
    if address is None:
        _skipped(emitter, AuthSource.AGENT, "no_auth_sock", "SSH_AUTH_SOCK not set")
        return []

    try:
        agent, keys = await get_agent_keys(address)
    except AgentError as e:
        _skipped(emitter, AuthSource.AGENT, e.reason, str(e))
        return []

    if not keys:
        agent.close()
        _skipped(emitter, AuthSource.AGENT, "no_keys", "SSH agent holds no keys")
        return []

    fingerprints = tuple(key_fingerprint(key) for key in keys)
    _loaded(emitter, AuthSource.AGENT, key_count=len(keys), fingerprints=list(fingerprints))
    return [
        AuthDescriptor(
            source=AuthSource.AGENT,
            method=AuthMethod.PUBLIC_KEY,
            label="agent",
            keys=tuple(keys),
            fingerprints=fingerprints,
            agent=agent,
        )
    ]


# ---------------------------------------------------------------------------
# Identity file
# ---------------------------------------------------------------------------

def load_identity_file(
    key_path: Path | str,
    passphrase: str | SecureString | None = None,
    emitter: EventEmitter | None = None,
) -> asyncssh.SSHKey:
    """
    Load a private key from file.

    The key is parsed without a passphrase first. Only when that fails
    because the key is encrypted is parsing retried with the supplied
    passphrase. Encrypted keys are never prompted for.

    Args:
        key_path: Path to the private key file (a leading ~ is expanded)
        passphrase: Optional passphrase for encrypted keys

    Returns:
        Loaded SSH key

    Raises:
        KeyLoadError: With reason file_not_found, not_a_file,
            permission_denied, read_error, passphrase_required,
            wrong_passphrase or invalid_format
    """
    key_path = expand_path(key_path)

    problem, message = check_key_file(key_path)
    if problem is not None:
        assert message is not None
        raise KeyLoadError(message, key_path=str(key_path), reason=problem)
    if message is not None and emitter is not None:
        emitter.emit(
            EventType.CREDENTIAL,
            source=AuthSource.IDENTITY_FILE.value,
            status="warning",
            message=message,
        )

    try:
        key_data = key_path.read_bytes()
    except OSError as e:
        raise KeyLoadError(
            f"Failed to read identity file {key_path}: {e.strerror}",
            key_path=str(key_path),
            reason="read_error",
        ) from e

    # asyncssh reports both import and decryption failures as ValueError
    try:
        return asyncssh.import_private_key(key_data)
    except ValueError as e:
        parse_error = str(e)

    lowered = parse_error.lower()
    encrypted = "encrypted" in lowered or "passphrase" in lowered

    secret = _reveal(passphrase)
    if secret and encrypted:
        try:
            return asyncssh.import_private_key(key_data, secret)
        except ValueError:
            raise KeyLoadError(
                f"Failed to decrypt identity file {key_path}: wrong passphrase",
                key_path=str(key_path),
                reason="wrong_passphrase",
            ) from None

    if encrypted:
        raise KeyLoadError(
            f"Identity file {key_path} is encrypted but no passphrase was provided",
            key_path=str(key_path),
            reason="passphrase_required",
        )

    raise KeyLoadError(
        f"Failed to parse identity file {key_path}: {parse_error}",
        key_path=str(key_path),
        reason="invalid_format",
    )


async def identity_file_source(
    bundle: CredentialBundle,
    emitter: EventEmitter | None = None,
    environ: Mapping[str, str] | None = None,
) -> list[AuthDescriptor]:
    """Yield one PUBLIC_KEY descriptor for a loadable identity file."""
    if not bundle.identity_file:
        return []

    try:
        key = load_identity_file(bundle.identity_file, bundle.identity_passphrase, emitter)
    except KeyLoadError as e:
        _skipped(emitter, AuthSource.IDENTITY_FILE, e.reason, str(e), path=e.key_path)
        return []

    fingerprint = key_fingerprint(key)
    _loaded(
        emitter,
        AuthSource.IDENTITY_FILE,
        path=bundle.identity_file,
        fingerprints=[fingerprint],
    )
    return [
        AuthDescriptor(
            source=AuthSource.IDENTITY_FILE,
            method=AuthMethod.PUBLIC_KEY,
            label=f"identity_file:{bundle.identity_file}",
            keys=(key,),
            fingerprints=(fingerprint,),
        )
    ]


# ---------------------------------------------------------------------------
# Password and keyring
# ---------------------------------------------------------------------------

def password_descriptors(
    secret: SecureString,
    source: AuthSource,
    label: str,
) -> list[AuthDescriptor]:
    """
    Build the password pair for a secret: direct password exchange first,
    then keyboard-interactive answering every prompt with the secret.

    PAM-backed servers often accept only the keyboard-interactive form.
    """
    return [
        AuthDescriptor(
            source=source,
            method=AuthMethod.PASSWORD,
            label=label,
            secret=secret,
        ),
        AuthDescriptor(
            source=source,
            method=AuthMethod.KEYBOARD_INTERACTIVE,
            label=label,
            secret=secret,
        ),
    ]


async def keyring_source(
    bundle: CredentialBundle,
    emitter: EventEmitter | None = None,
    environ: Mapping[str, str] | None = None,
) -> list[AuthDescriptor]:
    """
    Yield the password pair for a secret stored in the OS keyring.

    An incomplete service/account pair, a missing entry or a backend
    failure yields nothing.
    """
    service, account = bundle.keyring_service, bundle.keyring_account
    if not service or not account:
        if service or account:
            _skipped(
                emitter,
                AuthSource.KEYRING,
                "missing_name",
                "Keyring service and account must both be set",
            )
        return []

    try:
        secret = get_password_from_keyring(service, account)
    except ConfigError as e:
        _skipped(emitter, AuthSource.KEYRING, getattr(e, "reason", None), str(e))
        return []

    if secret is None:
        _skipped(
            emitter,
            AuthSource.KEYRING,
            "not_found",
            f"No keyring entry for {service}/{account}",
        )
        return []

    _loaded(emitter, AuthSource.KEYRING, service=service, account=account)
    return password_descriptors(secret, AuthSource.KEYRING, f"keyring:{service}/{account}")


async def password_source(
    bundle: CredentialBundle,
    emitter: EventEmitter | None = None,
    environ: Mapping[str, str] | None = None,
) -> list[AuthDescriptor]:
    """Yield the password pair for an explicitly configured password."""
    password = _reveal(bundle.password)
    if not password:
        return []

    _loaded(emitter, AuthSource.PASSWORD)
    return password_descriptors(SecureString(password), AuthSource.PASSWORD, "password")


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------

CredentialSource = Callable[
    [CredentialBundle, "EventEmitter | None", "Mapping[str, str] | None"],
    Awaitable[list[AuthDescriptor]],
]

# Priority order is fixed
CREDENTIAL_SOURCES: tuple[CredentialSource, ...] = (
    agent_source,
    identity_file_source,
    keyring_source,
    password_source,
)


async def resolve_auth_chain(
    bundle: CredentialBundle,
    emitter: EventEmitter | None = None,
    environ: Mapping[str, str] | None = None,
) -> AuthChain:
    """
    Build the authentication chain for one connection attempt.

    Runs every credential source in priority order and concatenates what
    they yield. An empty chain is a valid result; deciding what it means
    is up to the caller.

    Args:
        bundle: Credential fields from the host record
        emitter: Diagnostics sink
        environ: Environment used to locate the SSH agent (defaults to
            os.environ)

    Returns:
        The assembled AuthChain
    """
    if environ is None:
        environ = os.environ

    descriptors: list[AuthDescriptor] = []
    for source in CREDENTIAL_SOURCES:
        descriptors.extend(await source(bundle, emitter, environ))

    chain = AuthChain(descriptors)
    if emitter is not None:
        emitter.emit(
            EventType.CREDENTIAL,
            status="resolved",
            count=len(chain),
            methods=[d.label + "/" + d.method.value for d in chain],
        )
    return chain


def _skipped(
    emitter: EventEmitter | None,
    source: AuthSource,
    reason: str | None,
    message: str,
    **data: Any,
) -> None:
    if emitter is None:
        return
    emitter.emit(
        EventType.CREDENTIAL,
        source=source.value,
        status="skipped",
        reason=reason or "unknown",
        message=message,
        **{k: v for k, v in data.items() if v is not None},
    )


def _loaded(emitter: EventEmitter | None, source: AuthSource, **data: Any) -> None:
    if emitter is None:
        return
    emitter.emit(EventType.CREDENTIAL, source=source.value, status="loaded", **data)
