"""
Host record storage.

The host list lives in a JSON file:

    {
        "folders": [{"name": "prod", "hosts": [...]}],
        "hosts": [
            {"name": "web1", "host": "10.0.0.5", "port": 22, "user": "deploy",
             "ssh_agent": true, "identity_file": "~/.ssh/id_ed25519"}
        ]
    }

Optional credential fields (ssh_agent, identity_file, identity_passphrase,
keyring_service, keyring_account, password) are omitted when empty.
Hosts inside folders can be listed and connected to; add and delete
manage the top-level list.
"""
from __future__ import annotations

import contextlib
import json
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterator

from rolodex.auth import CredentialBundle
from rolodex.errors import HostConfigError
from rolodex.validation import validate_port

DEFAULT_PORT = 22

_OPTIONAL_FIELDS = (
    "identity_file",
    "identity_passphrase",
    "keyring_service",
    "keyring_account",
    "password",
)


@dataclass
class HostRecord:
    """One saved host and its credential fields."""
    name: str
    host: str
    user: str
    port: int = DEFAULT_PORT
    ssh_agent: bool = False
    identity_file: str | None = None
    identity_passphrase: str | None = None
    keyring_service: str | None = None
    keyring_account: str | None = None
    password: str | None = None

    def validate(self) -> None:
        """
        Check required fields and the port.

        Raises:
            HostConfigError: Naming the first problem found
        """
        for field_name in ("name", "host", "user"):
            value = getattr(self, field_name)
            if not isinstance(value, str) or not value.strip():
                label = self.name if isinstance(self.name, str) and self.name else "<unnamed>"
                raise HostConfigError(f"Host {label}: {field_name} is required")
        try:
            validate_port(self.port)
        except ValueError as e:
            raise HostConfigError(f"Host {self.name}: {e}") from e

    def bundle(self) -> CredentialBundle:
        """The credential fields as a CredentialBundle."""
        return CredentialBundle(
            ssh_agent=self.ssh_agent,
            identity_file=self.identity_file or None,
            identity_passphrase=self.identity_passphrase or None,
            keyring_service=self.keyring_service or None,
            keyring_account=self.keyring_account or None,
            password=self.password or None,
        )

    @classmethod
    def from_dict(cls, data: Any) -> "HostRecord":
        """
        Build a record from its JSON form.

        Raises:
            HostConfigError: If data is not an object or a field has the
                wrong type
        """
        if not isinstance(data, dict):
            raise HostConfigError(f"Host entry must be an object, got {type(data).__name__}")

        port = data.get("port", DEFAULT_PORT)
        if isinstance(port, bool) or not isinstance(port, int):
            raise HostConfigError(
                f"Host {data.get('name', '<unnamed>')}: port must be an integer, got {port!r}"
            )

        record = cls(
            name=data.get("name", ""),
            host=data.get("host", ""),
            user=data.get("user", ""),
            port=port,
            ssh_agent=bool(data.get("ssh_agent", False)),
            **{name: data.get(name) or None for name in _OPTIONAL_FIELDS},
        )
        record.validate()
        return record

    def to_dict(self) -> dict[str, Any]:
        """JSON form, omitting empty optional fields."""
        result: dict[str, Any] = {
            "name": self.name,
            "host": self.host,
            "port": self.port,
            "user": self.user,
        }
        if self.ssh_agent:
            result["ssh_agent"] = True
        for name in _OPTIONAL_FIELDS:
            value = getattr(self, name)
            if value:
                result[name] = value
        return result


@dataclass
class Folder:
    """A named group of hosts."""
    name: str
    hosts: list[HostRecord] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Any) -> "Folder":
        if not isinstance(data, dict) or not isinstance(data.get("name"), str):
            raise HostConfigError("Folder entry must be an object with a name")
        hosts = data.get("hosts") or []
        if not isinstance(hosts, list):
            raise HostConfigError(f"Folder {data['name']}: hosts must be a list")
        return cls(name=data["name"], hosts=[HostRecord.from_dict(h) for h in hosts])

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "hosts": [h.to_dict() for h in self.hosts]}


class HostConfiguration:
    """
    The host record file: load, look up, add, delete, save.

    Usage:
        config = HostConfiguration.load(get_config_path())
        record = config.find("web1")
        config.add(HostRecord(name="db1", host="10.0.0.9", user="admin", password="..."))
    """

    def __init__(
        self,
        path: Path,
        hosts: list[HostRecord] | None = None,
        folders: list[Folder] | None = None,
    ) -> None:
        self.path = Path(path)
        self.hosts: list[HostRecord] = list(hosts or [])
        self.folders: list[Folder] = list(folders or [])
        self._check_unique_names()

    @classmethod
    def load(cls, path: Path | str, missing_ok: bool = False) -> "HostConfiguration":
        """
        Read and validate the host record file.

        Args:
            path: Location of the JSON file
            missing_ok: Return an empty configuration instead of failing
                when the file does not exist

        Raises:
            HostConfigError: If the file is missing, unreadable, not valid
                JSON, or contains an invalid host
        """
        path = Path(path)
        if not path.exists():
            if missing_ok:
                return cls(path)
            raise HostConfigError(f"Host configuration not found: {path}", path=str(path))

        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except OSError as e:
            raise HostConfigError(
                f"Failed to read host configuration {path}: {e.strerror}", path=str(path)
            ) from e
        except json.JSONDecodeError as e:
            raise HostConfigError(
                f"Failed to parse host configuration {path}: {e}", path=str(path)
            ) from e

        if not isinstance(data, dict):
            raise HostConfigError(
                f"Host configuration {path} must contain a JSON object", path=str(path)
            )

        hosts = data.get("hosts") or []
        folders = data.get("folders") or []
        if not isinstance(hosts, list) or not isinstance(folders, list):
            raise HostConfigError(
                f"Host configuration {path}: hosts and folders must be lists", path=str(path)
            )

        return cls(
            path,
            hosts=[HostRecord.from_dict(h) for h in hosts],
            folders=[Folder.from_dict(f) for f in folders],
        )

    def _check_unique_names(self) -> None:
        seen: set[str] = set()
        for _, record in self.iter_hosts():
            if record.name in seen:
                raise HostConfigError(
                    f"Duplicate host name: {record.name}", path=str(self.path)
                )
            seen.add(record.name)

    def iter_hosts(self) -> Iterator[tuple[str | None, HostRecord]]:
        """Yield (folder name or None, record) for every host."""
        for folder in self.folders:
            for record in folder.hosts:
                yield folder.name, record
        for record in self.hosts:
            yield None, record

    def find(self, name: str) -> HostRecord | None:
        for _, record in self.iter_hosts():
            if record.name == name:
                return record
        return None

    def add(self, record: HostRecord) -> None:
        """
        Append a host to the top-level list and save.

        Raises:
            HostConfigError: If the record is invalid or the name is taken
        """
        record.validate()
        if self.find(record.name) is not None:
            raise HostConfigError(f"Host {record.name} already exists", path=str(self.path))
        self.hosts.append(record)
        self.save()

    def delete(self, name: str) -> HostRecord:
        """
        Remove a top-level host by name and save.

        Raises:
            HostConfigError: If no top-level host has that name
        """
        for index, record in enumerate(self.hosts):
            if record.name == name:
                del self.hosts[index]
                self.save()
                return record
        raise HostConfigError(f"No host named {name}", path=str(self.path))

    def to_dict(self) -> dict[str, Any]:
        return {
            "folders": [f.to_dict() for f in self.folders],
            "hosts": [h.to_dict() for h in self.hosts],
        }

    def save(self) -> None:
        """
        Write the configuration back to its file.

        The file may hold passwords, so the new content is written to a
        temporary file created readable by the owner only and then moved
        over the old one.
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)
        content = json.dumps(self.to_dict(), indent="\t") + "\n"
        tmp_name: str | None = None
        try:
            # mkstemp creates the file with mode 0600
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent
            )
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
            os.replace(tmp_name, self.path)
        except OSError as e:
            if tmp_name is not None:
                with contextlib.suppress(OSError):
                    os.unlink(tmp_name)
            raise HostConfigError(
                f"Failed to write host configuration {self.path}: {e.strerror}",
                path=str(self.path),
            ) from e
