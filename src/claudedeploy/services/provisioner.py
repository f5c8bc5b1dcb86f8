"""Node.js runtime provisioning for a target host."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from claudedeploy.exceptions import CommandFailed, RuntimeInstallFailed
from claudedeploy.services.executor import INFO, WARNING, CommandExecutor

logger = logging.getLogger(__name__)

RUNTIME_CHECK = "node --version"
NPM_CHECK = "npm --version"

DEBIAN = "apt"
DNF = "dnf"
YUM = "yum"
ALPINE = "apk"
ARCH = "pacman"
UNKNOWN = "unknown"

# Probed in order; the first binary found decides the tag.
PACKAGE_MANAGER_PROBES: list[tuple[str, str]] = [
    ("apt-get", DEBIAN),
    ("dnf", DNF),
    ("yum", YUM),
    ("apk", ALPINE),
    ("pacman", ARCH),
]

PACKAGE_MANAGER_FAMILIES: dict[str, str] = {
    DEBIAN: "debian",
    DNF: "redhat",
    YUM: "redhat",
    ALPINE: "alpine",
    ARCH: "arch",
    UNKNOWN: "unknown",
}


@dataclass(frozen=True)
class RecipeStep:
    command: str
    description: str


def _debian_recipe(sudo: str) -> list[RecipeStep]:
    bash = "sudo -E bash -" if sudo else "bash -"
    return [
        RecipeStep(f"curl -fsSL https://deb.nodesource.com/setup_lts.x | {bash}", "Adding Node.js repository (deb)"),
        RecipeStep(f"{sudo}apt-get update -y && {sudo}apt-get install -y nodejs", "Installing Node.js (deb)"),
    ]


def _rpm_recipe(sudo: str, manager: str) -> list[RecipeStep]:
    bash = "sudo bash -" if sudo else "bash -"
    return [
        RecipeStep(f"curl -fsSL https://rpm.nodesource.com/setup_lts.x | {bash}", "Adding Node.js repository (rpm)"),
        RecipeStep(f"{sudo}{manager} install -y nodejs", "Installing Node.js (rpm)"),
    ]


def _alpine_recipe(sudo: str) -> list[RecipeStep]:
    return [
        RecipeStep(f"{sudo}apk update", "Refreshing package index (apk)"),
        RecipeStep(f"{sudo}apk add --no-cache nodejs npm", "Installing Node.js (apk)"),
    ]


def _arch_recipe(sudo: str) -> list[RecipeStep]:
    return [
        RecipeStep(f"{sudo}pacman -Sy --noconfirm", "Refreshing package index (pacman)"),
        RecipeStep(f"{sudo}pacman -S --noconfirm nodejs npm", "Installing Node.js (pacman)"),
    ]


def install_recipe(tag: str, elevate: bool = True) -> list[RecipeStep]:
    """Two-step install recipe for a detected package manager tag."""
    sudo = "sudo " if elevate else ""
    if tag == DEBIAN:
        return _debian_recipe(sudo)
    if tag in (DNF, YUM):
        return _rpm_recipe(sudo, tag)
    if tag == ALPINE:
        return _alpine_recipe(sudo)
    if tag == ARCH:
        return _arch_recipe(sudo)
    raise ValueError(f"No install recipe for package manager: {tag}")


# Minimal images may hide their package manager from `command -v`.
UNKNOWN_FALLBACK_CHAIN: tuple[str, ...] = (DEBIAN, YUM)


def probe_command() -> str:
    branches = [
        f"{'if' if i == 0 else 'elif'} command -v {binary} >/dev/null 2>&1; then echo {tag};"
        for i, (binary, tag) in enumerate(PACKAGE_MANAGER_PROBES)
    ]
    return f'sh -lc "{" ".join(branches)} else echo {UNKNOWN}; fi"'


def parse_probe_output(output: str) -> str:
    known = {tag for _, tag in PACKAGE_MANAGER_PROBES}
    for line in reversed(output.strip().splitlines()):
        if line.strip() in known:
            return line.strip()
    return UNKNOWN


class EnvironmentProvisioner:
    """Ensure Node.js and npm exist on the host behind ``executor``."""

    def __init__(self, executor: CommandExecutor, elevate: bool = True) -> None:
        self.executor = executor
        self.elevate = elevate

    async def has_runtime(self) -> bool:
        outcome = await self.executor.execute(RUNTIME_CHECK, "Checking Node.js installation")
        return outcome.ok

    async def has_npm(self) -> bool:
        outcome = await self.executor.execute(NPM_CHECK, "Checking npm installation")
        return outcome.ok

    async def detect_package_manager(self) -> str:
        outcome = await self.executor.execute(probe_command(), "Detecting package manager")
        if not outcome.ok:
            self.executor.report(WARNING, "Could not detect package manager, attempting default installation")
            return UNKNOWN
        tag = parse_probe_output(outcome.stdout)
        logger.info("Package manager: %s (%s family)", tag, PACKAGE_MANAGER_FAMILIES[tag])
        return tag

    async def _apply(self, tag: str) -> None:
        for step in install_recipe(tag, self.elevate):
            await self.executor.run(step.command, step.description)

    async def install_runtime(self, tag: str) -> None:
        if tag != UNKNOWN:
            await self._apply(tag)
            return
        for candidate in UNKNOWN_FALLBACK_CHAIN:
            try:
                await self._apply(candidate)
                return
            except CommandFailed as e:
                logger.warning("Node.js install via %s failed: %s", candidate, e)
        raise RuntimeInstallFailed("Failed to install Node.js automatically. Please install Node.js manually.")

    async def ensure_runtime(self) -> bool:
        """Install Node.js if missing. Returns True when an install ran."""
        installed = False
        if not await self.has_runtime():
            tag = await self.detect_package_manager()
            await self.install_runtime(tag)
            if not await self.has_runtime():
                raise RuntimeInstallFailed("Node.js is still unavailable after installation")
            installed = True

        if await self.has_npm():
            self.executor.report(INFO, "Node.js and npm are available")
        else:
            self.executor.report(WARNING, "npm not detected after Node installation. Please ensure npm is installed.")
        return installed
