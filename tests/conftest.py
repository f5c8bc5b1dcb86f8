"""Shared test fixtures."""

from __future__ import annotations

import pytest

from claudedeploy.config import AppConfig, CatalogConfig, InstallConfig, LoggingConfig, RouterConfig, SSHConfig, StorageConfig
from claudedeploy.services.transport import STDERR, STDOUT, CommandProcess

ROUTER_PKG = "@musistudio/claude-code-router"
CLAUDE_PKG = "@anthropic-ai/claude-code"


class FakeProcess(CommandProcess):
    """Replays canned output chunks."""

    def __init__(self, command: str, chunks: list[tuple[str, bytes]], exit_code: int) -> None:
        super().__init__(command)
        self._chunks = chunks
        self._final = exit_code

    async def _events(self):
        for chunk in self._chunks:
            yield chunk
        self.exit_code = self._final


class FakeHost:
    """A launcher that behaves like a small Linux box with mutable state."""

    def __init__(
        self,
        node: bool = True,
        npm: bool = True,
        package_manager: str = "apt",
        fail: tuple[str, ...] = (),
        home: str = "/home/alice",
    ) -> None:
        self.node = node
        self.npm = npm
        self.package_manager = package_manager
        self.fail = fail
        self.home = home
        self.installed: set[str] = set()
        self.commands: list[str] = []

    async def start(self, command: str) -> FakeProcess:
        self.commands.append(command)
        chunks, code = self._respond(command)
        return FakeProcess(command, chunks, code)

    def _respond(self, command: str) -> tuple[list[tuple[str, bytes]], int]:
        for pattern in self.fail:
            if pattern in command:
                return [(STDERR, f"E: {pattern} failed\n".encode())], 1
        if command == "node --version":
            if self.node:
                return [(STDOUT, b"v20.11.1\n")], 0
            return [(STDERR, b"sh: 1: node: not found\n")], 127
        if command == "npm --version":
            if self.npm and self.node:
                return [(STDOUT, b"10.2.4\n")], 0
            return [(STDERR, b"sh: 1: npm: not found\n")], 127
        if "command -v apt-get" in command:
            return [(STDOUT, f"{self.package_manager}\n".encode())], 0
        if "nodejs" in command and "curl" not in command:
            self.node = True
            return [(STDOUT, b"Setting up nodejs\n")], 0
        if "npm install -g" in command:
            package = command.split("npm install -g ")[1].split()[0]
            self.installed.add(package)
            return [(STDOUT, f"added 1 package: {package}\n".encode())], 0
        if command == "claude --version":
            return ([(STDOUT, b"1.0.0 (Claude Code)\n")], 0) if CLAUDE_PKG in self.installed else ([], 127)
        if command == "ccr -v":
            return ([(STDOUT, b"ccr 1.0.0\n")], 0) if ROUTER_PKG in self.installed else ([], 127)
        if "eval echo" in command:
            return [(STDOUT, f"{self.home}\n".encode())], 0
        return [], 0

    def install_commands(self) -> list[str]:
        return [
            c
            for c in self.commands
            if c not in ("node --version", "npm --version") and "command -v" not in c
        ]


class RecordingObserver:
    def __init__(self) -> None:
        self.events: list[tuple[str, str]] = []

    def __call__(self, severity: str, message: str) -> None:
        self.events.append((severity, message))

    def messages(self, severity: str | None = None) -> list[str]:
        return [m for s, m in self.events if severity is None or s == severity]


@pytest.fixture
def observer():
    return RecordingObserver()


@pytest.fixture
def fake_host():
    return FakeHost()


@pytest.fixture
def app_config(tmp_path):
    """Create a test configuration."""
    return AppConfig(
        ssh=SSHConfig(port=22, connect_timeout=5),
        install=InstallConfig(),
        catalog=CatalogConfig(timeout=1.0),
        router=RouterConfig(),
        storage=StorageConfig(db_path=str(tmp_path / "history.db")),
        logging=LoggingConfig(level="DEBUG", file=str(tmp_path / "test.log")),
    )
