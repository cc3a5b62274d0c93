"""rolodex: SSH host book with a fallback-chain session engine."""

__version__ = "0.1.0"

from rolodex.auth import (
    AuthChain,
    AuthDescriptor,
    AuthMethod,
    AuthSource,
    CREDENTIAL_SOURCES,
    CredentialBundle,
    agent_source,
    get_agent_keys,
    identity_file_source,
    key_fingerprint,
    keyring_source,
    load_identity_file,
    password_source,
    resolve_auth_chain,
)
from rolodex.config import Folder, HostConfiguration, HostRecord
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
from rolodex.events import Event, EventCollector, EventEmitter, EventType
from rolodex.keyring_store import (
    decode_keyring_secret,
    delete_from_keyring,
    get_password_from_keyring,
    store_in_keyring,
)
from rolodex.platform import (
    AgentTransport,
    agent_transport,
    check_key_file,
    discover_keys,
    expand_path,
    get_agent_address,
    get_default_key_paths,
    get_ssh_dir,
    is_windows,
)
from rolodex.probe import ProbeResult, format_address, probe
from rolodex.secure_string import SecureString, SecureStringEradicated
from rolodex.session import (
    HostConnection,
    SessionOrchestrator,
    SessionResources,
    SessionResult,
    SessionState,
    open_session,
    start_session,
)
from rolodex.terminal import PTY_MODES, LocalTerminal, TerminalBridge
from rolodex.validation import validate_address, validate_port, validate_username

__all__ = [
    # Auth
    "AuthChain",
    "AuthDescriptor",
    "AuthMethod",
    "AuthSource",
    "CREDENTIAL_SOURCES",
    "CredentialBundle",
    "agent_source",
    "get_agent_keys",
    "identity_file_source",
    "key_fingerprint",
    "keyring_source",
    "load_identity_file",
    "password_source",
    "resolve_auth_chain",
    # Host records
    "Folder",
    "HostConfiguration",
    "HostRecord",
    # Errors
    "AgentError",
    "AuthRejected",
    "ConfigError",
    "ErrorContext",
    "FailureKind",
    "FailureReport",
    "HandshakeError",
    "HostConfigError",
    "KeyLoadError",
    "KeyringError",
    "NoAuthMethod",
    "RolodexError",
    "SessionError",
    "SessionSetupError",
    "Unreachable",
    # Events
    "Event",
    "EventCollector",
    "EventEmitter",
    "EventType",
    # Keyring
    "decode_keyring_secret",
    "delete_from_keyring",
    "get_password_from_keyring",
    "store_in_keyring",
    # Platform
    "AgentTransport",
    "agent_transport",
    "check_key_file",
    "discover_keys",
    "expand_path",
    "get_agent_address",
    "get_default_key_paths",
    "get_ssh_dir",
    "is_windows",
    # Probe
    "ProbeResult",
    "format_address",
    "probe",
    # SecureString
    "SecureString",
    "SecureStringEradicated",
    # Session
    "HostConnection",
    "SessionOrchestrator",
    "SessionResources",
    "SessionResult",
    "SessionState",
    "open_session",
    "start_session",
    # Terminal
    "PTY_MODES",
    "LocalTerminal",
    "TerminalBridge",
    # Validation
    "validate_address",
    "validate_port",
    "validate_username",
]
