"""Error taxonomy for installation attempts."""

from __future__ import annotations


class DeployError(Exception):
    """Base class for every failure that terminates an installation attempt."""


class CredentialUnavailable(DeployError):
    """No usable SSH credential could be resolved."""


class AuthenticationFailed(DeployError):
    """The remote host rejected the supplied credential."""


class TransportError(DeployError):
    """Network, timeout or channel failure on the SSH connection."""


class CommandFailed(DeployError):
    """A command exited nonzero or could not be started."""

    def __init__(self, command: str, exit_code: int | None, stderr: str) -> None:
        self.command = command
        self.exit_code = exit_code
        self.stderr = stderr
        super().__init__(stderr)


class RuntimeInstallFailed(DeployError):
    """Node.js could not be found or installed on the target."""


class ConfigPersistFailed(DeployError):
    """The router configuration could not be written."""
