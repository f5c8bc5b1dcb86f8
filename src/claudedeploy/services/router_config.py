"""Router config.json synthesis and persistence."""

from __future__ import annotations

import json
import logging
import os
import posixpath
import re
import tempfile
from pathlib import Path
from typing import Mapping

from claudedeploy.config import ROUTER_CONFIG_NAME, ROUTER_DIR_NAME, RouterConfig
from claudedeploy.exceptions import ConfigPersistFailed, TransportError
from claudedeploy.services.executor import CommandExecutor
from claudedeploy.services.transport import SSHSession
from claudedeploy.storage.models import ROUTER_FIELDS, ProviderEntry, RouterPolicy

logger = logging.getLogger(__name__)

_USERNAME_RE = re.compile(r"[A-Za-z0-9._][A-Za-z0-9._-]*")

# Used for any field when no provider has a model.
FALLBACK_ROUTES: dict[str, str] = {
    "default": "openai,gpt-4-turbo-preview",
    "background": "openai,gpt-3.5-turbo",
    "think": "openai,gpt-4",
    "longContext": "openai,gpt-4-turbo-preview",
    "webSearch": "openai,gpt-3.5-turbo",
}


def select_default_route(providers: list[ProviderEntry], preferred_model: str | None = None) -> str | None:
    """First provider offering ``preferred_model`` wins, else the first model of the first non-empty provider."""
    if preferred_model:
        for provider in providers:
            if preferred_model in provider.models:
                return f"{provider.name},{preferred_model}"
    for provider in providers:
        if provider.models:
            return f"{provider.name},{provider.models[0]}"
    return None


def build_router_policy(
    providers: list[ProviderEntry],
    preferred_model: str | None = None,
    router_overrides: Mapping[str, object] | None = None,
    long_context_threshold: int = 60000,
) -> RouterPolicy:
    default = select_default_route(providers, preferred_model)
    routes = {name: default or FALLBACK_ROUTES[name] for name in ROUTER_FIELDS}
    for name, value in (router_overrides or {}).items():
        if name not in ROUTER_FIELDS:
            logger.warning("Ignoring unknown router field: %s", name)
            continue
        # Not checked against the provider catalogs.
        if isinstance(value, str) and value:
            routes[name] = value
    return RouterPolicy(routes=routes, long_context_threshold=long_context_threshold)


def unknown_route_targets(router: Mapping[str, object], providers: list[ProviderEntry]) -> list[str]:
    """Router fields whose value names a provider/model outside the set."""
    known = {p.name: p.models for p in providers}
    bad = []
    for name in ROUTER_FIELDS:
        value = router.get(name)
        provider, _, model = (value if isinstance(value, str) else "").partition(",")
        if provider not in known or (known[provider] and model not in known[provider]):
            bad.append(name)
    return bad


def synthesize(
    providers: list[ProviderEntry],
    preferred_model: str | None = None,
    router_overrides: Mapping[str, object] | None = None,
    settings: RouterConfig | None = None,
) -> dict:
    """Build the router config document."""
    if not providers:
        raise ValueError("No providers specified")
    settings = settings or RouterConfig()
    policy = build_router_policy(providers, preferred_model, router_overrides, settings.long_context_threshold)
    return {
        "LOG": False,
        "CLAUDE_PATH": "",
        "HOST": settings.host,
        "PORT": settings.port,
        "APIKEY": providers[0].api_key,
        "API_TIMEOUT_MS": str(settings.api_timeout_ms),
        "PROXY_URL": "",
        "Transformers": [],
        "Providers": [
            {
                "name": p.name,
                "api_base_url": p.api_base_url,
                "api_key": p.api_key,
                "models": list(p.models),
            }
            for p in providers
        ],
        "Router": policy.to_dict(),
    }


def serialize(document: dict) -> bytes:
    return json.dumps(document, indent=2, ensure_ascii=False).encode("utf-8")


def persist_local(document: dict, path: Path) -> Path:
    """Atomically write ``document`` to ``path`` readable by the owner only."""
    path = Path(path).expanduser()
    try:
        try:
            path.parent.mkdir(mode=0o700, parents=True)
        except FileExistsError:
            pass
        else:
            # mkdir mode is filtered by the umask.
            os.chmod(path.parent, 0o700)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
        try:
            os.fchmod(fd, 0o600)
            with os.fdopen(fd, "wb") as f:
                f.write(serialize(document))
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
    except OSError as e:
        raise ConfigPersistFailed(f"Failed to write {path}: {e}") from e
    logger.info("Router config written to %s", path)
    return path


async def persist_remote(document: dict, session: SSHSession, remote_path: str) -> str:
    return await upload_remote(serialize(document), session, remote_path)


async def upload_remote(data: bytes, session: SSHSession, remote_path: str) -> str:
    try:
        await session.write_file(remote_path, data, mode=0o600, dir_mode=0o700)
    except TransportError as e:
        raise ConfigPersistFailed(f"Failed to write remote config {remote_path}: {e}") from e
    return remote_path


async def resolve_remote_home(executor: CommandExecutor, username: str) -> str:
    """Home directory of ``username`` on the remote host."""
    fallback = f"/home/{username}"
    if not _USERNAME_RE.fullmatch(username):
        return fallback
    outcome = await executor.execute(f'sh -lc "eval echo ~{username}"', "Resolving remote home directory")
    if not outcome.ok:
        return fallback
    lines = outcome.stdout.strip().splitlines()
    home = lines[-1].strip() if lines else ""
    return home if home.startswith("/") else fallback


def remote_config_path(home: str) -> str:
    return posixpath.join(home, ROUTER_DIR_NAME, ROUTER_CONFIG_NAME)
