"""Data models for claudedeploy."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class CredentialKind(str, Enum):
    PASSWORD = "password"
    PRIVATE_KEY = "private_key"
    AGENT = "agent"


@dataclass(frozen=True)
class Credential:
    """Exactly one resolved SSH authentication method."""

    kind: CredentialKind
    password: str = field(default="", repr=False)
    key_material: bytes = field(default=b"", repr=False)
    passphrase: str | None = field(default=None, repr=False)
    source: str = ""

    @classmethod
    def from_password(cls, password: str) -> Credential:
        return cls(kind=CredentialKind.PASSWORD, password=password, source="password")

    @classmethod
    def from_private_key(cls, material: bytes, passphrase: str | None = None, source: str = "") -> Credential:
        return cls(kind=CredentialKind.PRIVATE_KEY, key_material=material, passphrase=passphrase or None, source=source)

    @classmethod
    def from_agent(cls) -> Credential:
        return cls(kind=CredentialKind.AGENT, source="ssh-agent")


@dataclass(frozen=True)
class ConnectionDescriptor:
    host: str
    username: str
    credential: Credential
    port: int = 22


class ExitClass(str, Enum):
    SUCCESS = "success"
    NONZERO_EXIT = "nonzero_exit"
    TRANSPORT_ERROR = "transport_error"


@dataclass(frozen=True)
class CommandOutcome:
    """Result of one executed (or dry-run) command."""

    command: str
    description: str
    exit_class: ExitClass
    exit_code: int | None = 0
    stdout: str = ""
    stderr: str = ""
    execution_time_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.exit_class is ExitClass.SUCCESS

    @property
    def error_message(self) -> str:
        if self.ok:
            return ""
        if self.stderr.strip():
            return self.stderr.strip()
        if self.exit_class is ExitClass.TRANSPORT_ERROR:
            return f"Could not start command: {self.command}"
        return f"Command failed with exit code {self.exit_code}"


@dataclass
class ProviderEntry:
    """An upstream model provider; `models` stays empty until resolved."""

    name: str
    base_url: str
    api_key: str = field(default="", repr=False)
    models: list[str] = field(default_factory=list)

    @property
    def api_base_url(self) -> str:
        return f"{self.base_url.rstrip('/')}/v1/chat/completions"


ROUTER_FIELDS: tuple[str, ...] = ("default", "background", "think", "longContext", "webSearch")


@dataclass
class RouterPolicy:
    """Task category -> "<provider>,<model>" routing table."""

    routes: dict[str, str] = field(default_factory=dict)
    long_context_threshold: int = 60000

    def to_dict(self) -> dict:
        return {
            "default": self.routes.get("default", ""),
            "background": self.routes.get("background", ""),
            "think": self.routes.get("think", ""),
            "longContext": self.routes.get("longContext", ""),
            "longContextThreshold": self.long_context_threshold,
            "webSearch": self.routes.get("webSearch", ""),
        }


class InstallKind(str, Enum):
    LOCAL = "local"
    REMOTE = "remote"


class InstallStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


@dataclass
class InstallationRecord:
    """A stored installation attempt."""

    id: str = ""
    kind: InstallKind = InstallKind.REMOTE
    status: InstallStatus = InstallStatus.PENDING
    timestamp: str = ""
    config: dict = field(default_factory=dict)
    message: str = ""
