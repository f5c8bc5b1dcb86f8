"""Local system checks."""

from __future__ import annotations

import shutil
import subprocess


def check_cli(name: str, version_flag: str = "--version") -> tuple[bool, str]:
    """Check if a CLI is on PATH and return its version."""
    path = shutil.which(name)
    if not path:
        return False, f"{name} not found on PATH"
    try:
        result = subprocess.run(
            [path, version_flag],
            capture_output=True,
            text=True,
            timeout=10,
        )
        version = result.stdout.strip() or result.stderr.strip()
        return True, version
    except subprocess.TimeoutExpired:
        return False, f"{name} version check timed out"
    except OSError as e:
        return False, f"Error checking {name}: {e}"


def path_hints(remote: bool = False) -> list[str]:
    """Shell hints for exposing global npm binaries on PATH."""
    hints = [
        'echo "export PATH=$(npm bin -g):$PATH" >> ~/.bashrc && source ~/.bashrc',
        'For zsh: echo "export PATH=$(npm bin -g):$PATH" >> ~/.zshrc && source ~/.zshrc',
    ]
    if remote:
        hints.append("On remote, check the shell rc files for the target user.")
    return hints
