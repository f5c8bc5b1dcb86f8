"""Global npm installation of the Claude Code packages."""

from __future__ import annotations

import logging
import shlex
from urllib.parse import urlsplit, urlunsplit

from claudedeploy.config import DEFAULT_PACKAGES
from claudedeploy.services.executor import CommandExecutor
from claudedeploy.storage.models import CommandOutcome

logger = logging.getLogger(__name__)


def validate_registry_url(registry: str | None) -> str | None:
    """Return a normalized absolute http(s) registry URL, or None."""
    if not registry:
        return None
    try:
        parts = urlsplit(registry.strip())
    except ValueError:
        return None
    if parts.scheme not in ("http", "https") or not parts.netloc:
        return None
    return urlunsplit(parts).rstrip("/")


def npm_install_command(package: str, registry: str | None = None, elevate: bool = True) -> str:
    args = ["npm", "install", "-g", shlex.quote(package)]
    if registry:
        args.extend(["--registry", shlex.quote(registry)])
    if elevate:
        args.insert(0, "sudo")
    return " ".join(args)


class PackageInstaller:
    """Install npm packages globally, one command per package."""

    def __init__(self, executor: CommandExecutor) -> None:
        self.executor = executor

    async def install(
        self,
        packages: list[str] | None = None,
        registry: str | None = None,
        elevate: bool = True,
    ) -> list[CommandOutcome]:
        validated = validate_registry_url(registry)
        if registry and validated is None:
            logger.warning("Ignoring invalid registry URL: %s", registry)

        outcomes = []
        for package in packages or DEFAULT_PACKAGES:
            command = npm_install_command(package, validated, elevate)
            outcomes.append(await self.executor.run(command, f"Installing {package}"))
        return outcomes
