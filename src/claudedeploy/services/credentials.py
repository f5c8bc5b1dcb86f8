"""SSH credential resolution.

Priority, first match wins:

1. explicit password
2. explicit private key (passphrase prompted only when the key is encrypted)
3. running ssh-agent (``SSH_AUTH_SOCK``)
4. first readable default key: ``id_rsa``, ``id_ed25519``, ``id_ecdsa``
5. interactive password prompt
"""

from __future__ import annotations

import io
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

import paramiko

from claudedeploy.config import DEFAULT_KEY_NAMES
from claudedeploy.exceptions import CredentialUnavailable
from claudedeploy.storage.models import Credential

logger = logging.getLogger(__name__)

PromptSecret = Callable[[str], str]

_KEY_CLASSES: tuple[type[paramiko.PKey], ...] = (
    paramiko.RSAKey,
    paramiko.Ed25519Key,
    paramiko.ECDSAKey,
)


def default_key_paths(home: Path | None = None) -> list[Path]:
    ssh_dir = (home or Path.home()) / ".ssh"
    return [ssh_dir / name for name in DEFAULT_KEY_NAMES]


def load_private_key(material: bytes, passphrase: str | None = None) -> paramiko.PKey:
    """Parse key material with the first key type that accepts it."""
    text = material.decode("utf-8", errors="replace")
    last_error: Exception | None = None
    for key_cls in _KEY_CLASSES:
        try:
            return key_cls.from_private_key(io.StringIO(text), password=passphrase)
        except paramiko.PasswordRequiredException:
            raise
        except (paramiko.SSHException, ValueError) as e:
            last_error = e
    raise paramiko.SSHException(f"Unsupported or invalid private key: {last_error}")


def key_is_encrypted(material: bytes) -> bool:
    """True when the key needs a passphrase to be parsed."""
    try:
        load_private_key(material)
    except paramiko.PasswordRequiredException:
        return True
    except paramiko.SSHException:
        # Unknown format; let the server decide at connect time.
        return False
    return False


@dataclass
class CredentialRequest:
    """Explicit credential inputs from the caller."""

    password: str | None = field(default=None, repr=False)
    key_path: str | None = None
    key_material: bytes | None = field(default=None, repr=False)
    passphrase: str | None = field(default=None, repr=False)


class CredentialResolver:
    """Pick exactly one authentication method for an SSH session."""

    def __init__(
        self,
        prompt_secret: PromptSecret | None = None,
        agent_socket: str | None = None,
        key_paths: list[Path] | None = None,
    ) -> None:
        self.prompt_secret = prompt_secret
        self.agent_socket = agent_socket if agent_socket is not None else os.environ.get("SSH_AUTH_SOCK", "")
        self.key_paths = key_paths if key_paths is not None else default_key_paths()

    def resolve(self, request: CredentialRequest) -> Credential:
        if request.password:
            logger.info("Using provided password for authentication")
            return Credential.from_password(request.password)

        if request.key_material or request.key_path:
            return self._explicit_key(request)

        if self.agent_socket:
            logger.info("Using SSH agent for authentication")
            return Credential.from_agent()

        for path in self.key_paths:
            if not path.exists():
                continue
            try:
                material = path.read_bytes()
            except OSError as e:
                logger.warning("Could not read key %s: %s", path, e)
                continue
            logger.info("Using SSH key: %s", path)
            return Credential.from_private_key(material, source=str(path))

        if self.prompt_secret is None:
            raise CredentialUnavailable(
                "No SSH credential available: pass a password or key, start ssh-agent, "
                "or add a key under ~/.ssh"
            )
        password = self.prompt_secret("SSH Password")
        if not password:
            raise CredentialUnavailable("No SSH password entered")
        return Credential.from_password(password)

    def _explicit_key(self, request: CredentialRequest) -> Credential:
        source = "key"
        if request.key_material:
            material = request.key_material
        else:
            path = Path(request.key_path or "").expanduser()
            source = str(path)
            if not path.is_file():
                raise CredentialUnavailable(f"SSH key file not found: {path}")
            try:
                material = path.read_bytes()
            except OSError as e:
                raise CredentialUnavailable(f"Error reading SSH key file {path}: {e}") from e
        logger.info("Using SSH key: %s", source)

        passphrase = request.passphrase
        if not passphrase and key_is_encrypted(material):
            if self.prompt_secret is not None:
                passphrase = self.prompt_secret("SSH Key Passphrase") or None
            else:
                logger.warning("Key %s is encrypted and no passphrase was supplied", source)
        return Credential.from_private_key(material, passphrase=passphrase, source=source)
