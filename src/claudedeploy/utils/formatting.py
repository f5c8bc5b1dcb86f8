"""Formatting helpers for outcomes and stored requests."""

from __future__ import annotations

import copy

from claudedeploy.storage.models import CommandOutcome

MASK = "***"
SECRET_FIELDS = ("password", "private_key", "key_material", "passphrase")


def format_duration(ms: int) -> str:
    """Format milliseconds to human-readable duration."""
    if ms < 1000:
        return f"{ms}ms"
    elif ms < 60000:
        return f"{ms / 1000:.1f}s"
    else:
        minutes = ms // 60000
        seconds = (ms % 60000) // 1000
        return f"{minutes}m {seconds}s"


def format_outcome(outcome: CommandOutcome) -> str:
    """One-line summary of a command outcome."""
    icon = "OK" if outcome.ok else f"ERR({outcome.exit_code if outcome.exit_code is not None else 'transport'})"
    return f"[{icon}] {outcome.description} ({format_duration(outcome.execution_time_ms)})"


def mask_secret(value: str | None) -> str | None:
    return MASK if value else value


def sanitize_request(request: dict) -> dict:
    """Copy of an install request with credentials removed and API keys masked."""
    clean = copy.deepcopy(request)
    for name in SECRET_FIELDS:
        clean.pop(name, None)
    providers = clean.get("providers")
    entries = providers.values() if isinstance(providers, dict) else providers or []
    for provider in entries:
        if isinstance(provider, dict):
            for key in ("api_key", "apiKey"):
                if key in provider:
                    provider[key] = mask_secret(provider[key])
    if "api_key" in clean:
        clean["api_key"] = mask_secret(clean["api_key"])
    return clean
