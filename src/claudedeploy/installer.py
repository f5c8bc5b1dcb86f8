"""Installation orchestrator for local and remote targets.

A remote attempt runs strictly in sequence: resolve credential, connect,
provision Node.js, install packages, write the router config, verify,
disconnect. The first failing step ends the attempt; the SSH session is
released on every path.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import AsyncIterator, Callable, Mapping

from claudedeploy.config import DEFAULT_PACKAGES, PROVIDER_BASE_URLS, AppConfig, router_config_path
from claudedeploy.exceptions import ConfigPersistFailed, CredentialUnavailable, DeployError, RuntimeInstallFailed
from claudedeploy.services.catalog import ModelCatalog
from claudedeploy.services.credentials import CredentialRequest, CredentialResolver, PromptSecret
from claudedeploy.services.executor import ERROR, INFO, SUCCESS, WARNING, CommandExecutor, Observer, null_observer
from claudedeploy.services.packages import PackageInstaller
from claudedeploy.services.provisioner import EnvironmentProvisioner
from claudedeploy.services.router_config import (
    persist_local,
    persist_remote,
    remote_config_path,
    resolve_remote_home,
    synthesize,
    unknown_route_targets,
    upload_remote,
)
from claudedeploy.services.transport import LocalShell, SSHSession
from claudedeploy.storage.history import InstallationHistory, new_record
from claudedeploy.storage.models import (
    ConnectionDescriptor,
    Credential,
    InstallationRecord,
    InstallKind,
    InstallStatus,
    ProviderEntry,
)

logger = logging.getLogger(__name__)

VERIFY_COMMANDS: list[tuple[str, str]] = [
    ("claude --version", "Verifying Claude Code installation"),
    ("ccr -v", "Verifying Claude Code Router installation"),
]

FIRST_RUN_TIP = (
    "First-time tip: if `ccr code` gets stuck on the Claude login screen, run "
    "`ANTHROPIC_AUTH_TOKEN=token claude` once, exit it, then run `ccr code` again."
)


@dataclass
class InstallRequest:
    """Everything one installation attempt needs."""

    host: str = ""
    username: str = ""
    port: int = 22
    password: str | None = field(default=None, repr=False)
    key_path: str | None = None
    key_material: bytes | None = field(default=None, repr=False)
    passphrase: str | None = field(default=None, repr=False)
    registry: str | None = None
    user_install: bool = False
    skip_config: bool = False
    providers: list[ProviderEntry] = field(default_factory=list)
    preferred_model: str | None = None
    router_overrides: dict[str, str] = field(default_factory=dict)
    packages: list[str] = field(default_factory=lambda: list(DEFAULT_PACKAGES))
    dry_run: bool = False

    def credential_request(self) -> CredentialRequest:
        return CredentialRequest(
            password=self.password,
            key_path=self.key_path,
            key_material=self.key_material,
            passphrase=self.passphrase,
        )

    def to_dict(self) -> dict:
        data = asdict(self)
        data.pop("key_material", None)
        return data


def _field(entry: Mapping, *names: str) -> str:
    for name in names:
        value = entry.get(name)
        if value:
            return str(value)
    return ""


def normalize_providers(raw: object) -> list[ProviderEntry]:
    """Turn a provider list or a provider-keyed mapping into ProviderEntry objects.

    Entries without an API key, and disabled entries of the keyed form, are
    dropped.
    """
    if not raw:
        return []
    if isinstance(raw, Mapping):
        items = []
        for name, entry in raw.items():
            if isinstance(entry, Mapping) and entry.get("enabled", True):
                items.append({**entry, "name": name})
    elif isinstance(raw, (list, tuple)):
        items = [e for e in raw if isinstance(e, (Mapping, ProviderEntry))]
    else:
        raise TypeError(f"Unsupported provider collection: {type(raw).__name__}")

    providers = []
    for entry in items:
        if isinstance(entry, ProviderEntry):
            if entry.api_key:
                providers.append(entry)
            continue
        name = _field(entry, "name") or "custom"
        api_key = _field(entry, "api_key", "apiKey")
        base_url = _field(entry, "base_url", "apiUrl", "api_url", "customUrl", "url") or PROVIDER_BASE_URLS.get(name, "")
        if not api_key or not base_url:
            logger.warning("Skipping provider %s: missing API key or URL", name)
            continue
        models = [m for m in entry.get("models") or [] if isinstance(m, str) and m]
        providers.append(ProviderEntry(name=name, base_url=base_url.rstrip("/"), api_key=api_key, models=models))
    return providers


def legacy_providers(api_key: str | None, api_url: str | None = None) -> list[ProviderEntry]:
    """Single OpenAI-compatible provider from a bare key/URL pair."""
    if not api_key:
        return []
    return [ProviderEntry(name="openai", base_url=(api_url or PROVIDER_BASE_URLS["openai"]).rstrip("/"), api_key=api_key)]


class Installer:
    """Runs installation attempts and reports progress to an observer."""

    def __init__(
        self,
        config: AppConfig | None = None,
        observer: Observer | None = None,
        prompt_secret: PromptSecret | None = None,
        catalog: ModelCatalog | None = None,
        history: InstallationHistory | None = None,
        session_factory: Callable[..., SSHSession] = SSHSession,
        resolver_factory: Callable[..., CredentialResolver] = CredentialResolver,
        local_shell: LocalShell | None = None,
    ) -> None:
        self.config = config or AppConfig()
        self.observer = observer or null_observer
        self.prompt_secret = prompt_secret
        self.catalog = catalog or ModelCatalog(timeout=self.config.catalog.timeout)
        self.history = history
        self.session_factory = session_factory
        self.resolver_factory = resolver_factory
        self.local_shell = local_shell or LocalShell()

    def report(self, severity: str, message: str) -> None:
        level = {WARNING: logging.WARNING, ERROR: logging.ERROR}.get(severity, logging.INFO)
        logger.log(level, message)
        self.observer(severity, message)

    async def _begin(self, kind: InstallKind, request: InstallRequest) -> InstallationRecord:
        if self.history is not None:
            return await self.history.start(kind, request.to_dict())
        return new_record(kind, request.to_dict())

    async def _finish(self, record: InstallationRecord, status: InstallStatus, message: str = "") -> None:
        if self.history is not None:
            await self.history.finish(record, status, message)
        else:
            record.status = status
            record.message = message

    def _resolve_credential(self, request: InstallRequest) -> Credential:
        if not request.dry_run:
            return self.resolver_factory(prompt_secret=self.prompt_secret).resolve(request.credential_request())
        # Dry runs never prompt.
        resolver = self.resolver_factory(prompt_secret=None)
        try:
            return resolver.resolve(request.credential_request())
        except CredentialUnavailable:
            if request.key_path or request.key_material:
                raise
            self.report(WARNING, "[DRY-RUN][remote] no stored SSH credential found; a live run would prompt for a password")
            return Credential.from_password("")

    @asynccontextmanager
    async def _session(self, descriptor: ConnectionDescriptor, dry_run: bool) -> AsyncIterator[SSHSession | None]:
        if dry_run:
            self.report(INFO, f"[DRY-RUN][remote] connect {descriptor.username}@{descriptor.host}:{descriptor.port}")
            yield None
            return
        async with self.session_factory(descriptor, timeout=self.config.ssh.connect_timeout) as session:
            self.report(SUCCESS, "Connected to remote server")
            yield session

    async def resolve_providers(self, providers: list[ProviderEntry]) -> list[ProviderEntry]:
        """Fill in each provider's model list from its catalog."""
        for provider in providers:
            if not provider.models:
                self.report(INFO, f"Fetching models from {provider.name}...")
            provider.models = await self.catalog.resolve(provider)
            self.report(SUCCESS, f"Configured {provider.name}: {len(provider.models)} models")
        return providers

    async def _build_document(self, request: InstallRequest) -> dict:
        providers = await self.resolve_providers(request.providers)
        document = synthesize(providers, request.preferred_model, request.router_overrides, self.config.router)
        for name in unknown_route_targets(document["Router"], providers):
            self.report(WARNING, f"Router field {name} points at a provider or model that is not configured")
        return document

    async def _verify(self, executor: CommandExecutor) -> None:
        for command, description in VERIFY_COMMANDS:
            await executor.run(command, description)

    async def _write_remote_config(
        self, request: InstallRequest, executor: CommandExecutor, session: SSHSession | None
    ) -> None:
        self.report(INFO, f"Generating config for {len(request.providers)} provider(s)...")
        document = await self._build_document(request)
        home = await resolve_remote_home(executor, request.username)
        path = remote_config_path(home)
        if session is None:
            self.report(INFO, f"[DRY-RUN][remote] write {path}")
            return
        await persist_remote(document, session, path)
        self.report(SUCCESS, f"Multi-provider config generated on remote server at: {path}")

    async def _copy_existing_config(
        self, request: InstallRequest, executor: CommandExecutor, session: SSHSession | None
    ) -> None:
        local_path = router_config_path()
        if not local_path.exists():
            self.report(WARNING, "Local config.json not found, skipping config copy")
            return
        home = await resolve_remote_home(executor, request.username)
        path = remote_config_path(home)
        if session is None:
            self.report(INFO, f"[DRY-RUN][remote] copy {local_path} -> {path}")
            return
        try:
            data = local_path.read_bytes()
        except OSError as e:
            raise ConfigPersistFailed(f"Could not read local config {local_path}: {e}") from e
        await upload_remote(data, session, path)
        self.report(SUCCESS, "Config file copied successfully")

    async def install_remote(self, request: InstallRequest) -> InstallationRecord:
        """Install Claude Code and the router on ``request.host`` over SSH."""
        record = await self._begin(InstallKind.REMOTE, request)
        self.report(INFO, "Installing Claude Code on remote server...")
        try:
            credential = self._resolve_credential(request)
            descriptor = ConnectionDescriptor(
                host=request.host,
                username=request.username,
                credential=credential,
                port=request.port,
            )
            async with self._session(descriptor, request.dry_run) as session:
                executor = CommandExecutor(session, self.observer, dry_run=request.dry_run, label="remote")
                await EnvironmentProvisioner(executor, elevate=True).ensure_runtime()
                await PackageInstaller(executor).install(
                    request.packages, request.registry, elevate=not request.user_install
                )
                if request.providers:
                    await self._write_remote_config(request, executor, session)
                elif not request.skip_config:
                    await self._copy_existing_config(request, executor, session)
                await self._verify(executor)
        except DeployError as e:
            self.report(ERROR, f"Remote installation failed: {e}")
            await self._finish(record, InstallStatus.FAILED, str(e))
            raise
        except Exception as e:
            logger.exception("Unexpected error during %s installation", record.kind.value)
            self.report(ERROR, f"Remote installation failed: {e}")
            await self._finish(record, InstallStatus.FAILED, str(e) or type(e).__name__)
            raise

        self.report(INFO, FIRST_RUN_TIP)
        self.report(SUCCESS, "Remote installation completed successfully")
        await self._finish(record, InstallStatus.SUCCESS)
        return record

    async def install_local(self, request: InstallRequest) -> InstallationRecord:
        """Install Claude Code and the router on this machine."""
        record = await self._begin(InstallKind.LOCAL, request)
        self.report(INFO, "Installing Claude Code locally...")
        executor = CommandExecutor(self.local_shell, self.observer, dry_run=request.dry_run, label="local")
        provisioner = EnvironmentProvisioner(executor, elevate=False)
        try:
            if not await provisioner.has_runtime():
                raise RuntimeInstallFailed(
                    "Node.js is not installed locally. Install it from https://nodejs.org/ and make sure it is on PATH."
                )
            if not await provisioner.has_npm():
                raise RuntimeInstallFailed("npm is not available. Please ensure npm is installed with Node.js.")
            await PackageInstaller(executor).install(request.packages, request.registry, elevate=False)
            if request.providers:
                await self.generate_local_config(request)
            await self._verify(executor)
        except DeployError as e:
            self.report(ERROR, f"Local installation failed: {e}")
            await self._finish(record, InstallStatus.FAILED, str(e))
            raise
        except Exception as e:
            logger.exception("Unexpected error during %s installation", record.kind.value)
            self.report(ERROR, f"Local installation failed: {e}")
            await self._finish(record, InstallStatus.FAILED, str(e) or type(e).__name__)
            raise

        self.report(INFO, FIRST_RUN_TIP)
        self.report(SUCCESS, "Local installation completed successfully")
        await self._finish(record, InstallStatus.SUCCESS)
        return record

    async def generate_local_config(self, request: InstallRequest, path: Path | None = None) -> Path:
        """Write the router config for ``request.providers`` to the local router directory."""
        target = path or router_config_path()
        self.report(INFO, "Generating multi-provider configuration...")
        document = await self._build_document(request)
        if request.dry_run:
            self.report(INFO, f"[DRY-RUN][local] write {target}")
            return target
        persist_local(document, target)
        self.report(SUCCESS, f"Multi-provider config generated at: {target}")
        return target

