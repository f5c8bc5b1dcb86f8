"""CLI entry point using typer."""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from claudedeploy import __version__
from claudedeploy.config import (
    CONFIG_FILE,
    ROUTER_DIR_NAME,
    AppConfig,
    ensure_config_dir,
    load_config,
    router_config_path,
    save_config,
)
from claudedeploy.exceptions import DeployError
from claudedeploy.installer import InstallRequest, Installer, legacy_providers, normalize_providers
from claudedeploy.services.catalog import ModelCatalog
from claudedeploy.storage.history import InstallationHistory
from claudedeploy.storage.models import ProviderEntry
from claudedeploy.utils.system import check_cli, path_hints

app = typer.Typer(
    name="claudedeploy",
    help="Install Claude Code and claude-code-router locally or on a remote server.",
    add_completion=False,
)
console = Console()

SEVERITY_STYLES = {
    "info": "dim",
    "success": "green",
    "warning": "yellow",
    "error": "red",
}


def console_observer(severity: str, message: str) -> None:
    style = SEVERITY_STYLES.get(severity, "")
    console.print(f"[{style}]{escape(message)}[/{style}]" if style else escape(message))


def prompt_secret(label: str) -> str:
    return typer.prompt(f"  {label}", default="", show_default=False, hide_input=True)


def parse_provider(text: str) -> dict:
    """Parse ``NAME=KEY`` or ``NAME=KEY@URL``."""
    name, sep, rest = text.partition("=")
    if not sep or not name or not rest:
        raise typer.BadParameter(f"Provider must look like NAME=KEY[@URL]: {text}")
    key, url = rest, ""
    if "@http" in rest:
        key, _, tail = rest.partition("@http")
        url = "http" + tail
    entry = {"name": name.strip(), "apiKey": key.strip()}
    if url:
        entry["apiUrl"] = url.strip()
    return entry


def parse_routes(values: List[str] | None) -> dict[str, str]:
    """Parse ``FIELD=provider,model`` router overrides."""
    routes: dict[str, str] = {}
    for value in values or []:
        field_name, sep, target = value.partition("=")
        if not sep or not field_name or not target:
            raise typer.BadParameter(f"Route must look like FIELD=provider,model: {value}")
        routes[field_name.strip()] = target.strip()
    return routes


def build_providers(
    specs: List[str] | None, api_key: str | None = None, api_url: str | None = None
) -> list[ProviderEntry]:
    """Providers from --provider flags, or the single --api-key/--api-url pair."""
    if specs:
        return normalize_providers([parse_provider(s) for s in specs])
    return legacy_providers(api_key, api_url)


def setup_logging(config: AppConfig, verbose: bool) -> None:
    ensure_config_dir()
    log_path = Path(config.logging.file).expanduser().resolve()
    log_path.parent.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        level=logging.DEBUG if verbose else getattr(logging, config.logging.level.upper(), logging.WARNING),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[
            logging.FileHandler(str(log_path)),
            *([logging.StreamHandler()] if verbose else []),
        ],
    )


async def _install(config: AppConfig, request: InstallRequest, remote: bool) -> None:
    async with InstallationHistory(config.storage.db_path) as history:
        installer = Installer(config, observer=console_observer, prompt_secret=prompt_secret, history=history)
        if remote:
            await installer.install_remote(request)
        else:
            await installer.install_local(request)


def _print_path_hints(remote: bool) -> None:
    console.print('\n[dim]If you see "command not found", ensure your PATH includes global npm binaries.[/dim]')
    console.print("[dim]Common fixes:[/dim]")
    for hint in path_hints(remote):
        console.print(f"[dim]  - {escape(hint)}[/dim]")


@app.command()
def remote(
    host: str = typer.Argument(..., help="Remote server hostname or IP"),
    username: str = typer.Option(..., "--username", "-u", help="SSH username"),
    port: int = typer.Option(None, "--port", help="SSH port"),
    password: str = typer.Option(None, "--password", "-p", help="SSH password"),
    key: str = typer.Option(None, "--key", "-k", help="SSH private key file"),
    passphrase: str = typer.Option(None, "--passphrase", help="SSH key passphrase"),
    registry: str = typer.Option(None, "--registry", help="npm registry URL"),
    user_install: bool = typer.Option(False, "--user-install", help="Install without sudo"),
    skip_config: bool = typer.Option(False, "--skip-config", help="Do not copy the local config.json"),
    provider: Optional[List[str]] = typer.Option(None, "--provider", help="NAME=KEY[@URL], repeatable"),
    api_key: str = typer.Option(None, "--api-key", help="Single OpenAI-compatible API key"),
    api_url: str = typer.Option(None, "--api-url", help="Base URL for --api-key"),
    model: str = typer.Option(None, "--model", help="Preferred default model"),
    route: Optional[List[str]] = typer.Option(None, "--route", help="FIELD=provider,model, repeatable"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Print commands without executing them"),
    verbose: bool = typer.Option(False, "--verbose", help="Log to the terminal too"),
) -> None:
    """Install on a remote server over SSH."""
    config = load_config()
    setup_logging(config, verbose)
    request = InstallRequest(
        host=host,
        username=username,
        port=port or config.ssh.port,
        password=password,
        key_path=key,
        passphrase=passphrase,
        registry=registry or config.install.registry or None,
        user_install=user_install or config.install.user_install,
        skip_config=skip_config,
        providers=build_providers(provider, api_key, api_url),
        preferred_model=model,
        router_overrides=parse_routes(route),
        packages=list(config.install.packages),
        dry_run=dry_run,
    )
    try:
        asyncio.run(_install(config, request, remote=True))
    except DeployError as e:
        console.print(f"\n[bold red]Remote installation failed:[/bold red] {escape(str(e))}")
        raise typer.Exit(1)
    console.print("\n[bold green]Claude Code installed successfully on remote server![/bold green]")
    _print_path_hints(remote=True)


@app.command()
def local(
    registry: str = typer.Option(None, "--registry", help="npm registry URL"),
    provider: Optional[List[str]] = typer.Option(None, "--provider", help="NAME=KEY[@URL], repeatable"),
    api_key: str = typer.Option(None, "--api-key", help="Single OpenAI-compatible API key"),
    api_url: str = typer.Option(None, "--api-url", help="Base URL for --api-key"),
    model: str = typer.Option(None, "--model", help="Preferred default model"),
    route: Optional[List[str]] = typer.Option(None, "--route", help="FIELD=provider,model, repeatable"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Print commands without executing them"),
    verbose: bool = typer.Option(False, "--verbose", help="Log to the terminal too"),
) -> None:
    """Install on this computer."""
    config = load_config()
    setup_logging(config, verbose)
    request = InstallRequest(
        registry=registry or config.install.registry or None,
        providers=build_providers(provider, api_key, api_url),
        preferred_model=model,
        router_overrides=parse_routes(route),
        packages=list(config.install.packages),
        dry_run=dry_run,
    )
    try:
        asyncio.run(_install(config, request, remote=False))
    except DeployError as e:
        console.print(f"\n[bold red]Local installation failed:[/bold red] {escape(str(e))}")
        raise typer.Exit(1)
    console.print("\n[bold green]Claude Code installed successfully on your computer![/bold green]")
    _print_path_hints(remote=False)


@app.command("generate-config")
def generate_config(
    provider: List[str] = typer.Option(..., "--provider", help="NAME=KEY[@URL], repeatable"),
    model: str = typer.Option(None, "--model", help="Preferred default model"),
    route: Optional[List[str]] = typer.Option(None, "--route", help="FIELD=provider,model, repeatable"),
    output: Path = typer.Option(None, "--output", "-o", help=f"Defaults to ~/{ROUTER_DIR_NAME}/config.json"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Do not write the file"),
) -> None:
    """Generate the router config.json without installing anything."""
    config = load_config()
    providers = build_providers(provider)
    if not providers:
        console.print("[red]At least one provider with an API key is required.[/red]")
        raise typer.Exit(1)
    request = InstallRequest(
        providers=providers,
        preferred_model=model,
        router_overrides=parse_routes(route),
        dry_run=dry_run,
    )
    installer = Installer(config, observer=console_observer)
    try:
        path = asyncio.run(installer.generate_local_config(request, output or router_config_path()))
    except DeployError as e:
        console.print(f"[red]{escape(str(e))}[/red]")
        raise typer.Exit(1)
    console.print(f"[green]Configured {len(providers)} provider(s) in {path}[/green]")


@app.command("fetch-models")
def fetch_models(
    name: str = typer.Argument(..., help="Provider name (openai, ucloud, custom)"),
    api_key: str = typer.Option(..., "--key", help="Provider API key"),
    url: str = typer.Option(None, "--url", help="Provider base URL"),
) -> None:
    """List the chat models a provider offers."""
    config = load_config()
    providers = normalize_providers([{"name": name, "apiKey": api_key, "apiUrl": url}])
    if not providers:
        console.print(f"[red]Provider {escape(name)} needs --url.[/red]")
        raise typer.Exit(1)
    catalog = ModelCatalog(timeout=config.catalog.timeout)
    models = asyncio.run(catalog.resolve(providers[0]))
    for model_id in models:
        console.print(model_id)


@app.command()
def history(
    limit: int = typer.Option(10, "--limit", "-n", help="Number of attempts"),
) -> None:
    """Show recent installation attempts."""
    config = load_config()

    async def _recent():
        async with InstallationHistory(config.storage.db_path) as store:
            return await store.recent(limit)

    records = asyncio.run(_recent())
    if not records:
        console.print("[dim]No installations recorded.[/dim]")
        return

    table = Table(title="Installations")
    table.add_column("When", style="cyan")
    table.add_column("Kind")
    table.add_column("Target")
    table.add_column("Status")
    table.add_column("Message", style="dim")
    for record in records:
        target = record.config.get("host") or "localhost"
        status_style = {"success": "green", "failed": "red"}.get(record.status.value, "yellow")
        table.add_row(
            record.timestamp,
            record.kind.value,
            escape(str(target)),
            f"[{status_style}]{record.status.value}[/{status_style}]",
            escape(record.message),
        )
    console.print(table)


@app.command()
def config(
    key: str = typer.Argument(None, help="Config key (e.g., ssh.port)"),
    value: str = typer.Argument(None, help="New value"),
) -> None:
    """View or modify configuration."""
    cfg = load_config()
    section_map = {
        "ssh": cfg.ssh,
        "install": cfg.install,
        "catalog": cfg.catalog,
        "router": cfg.router,
        "storage": cfg.storage,
        "logging": cfg.logging,
    }

    if key is None:
        table = Table(title="Configuration")
        table.add_column("Key", style="cyan")
        table.add_column("Value", style="green")
        for section, obj in section_map.items():
            for attr, current in vars(obj).items():
                table.add_row(f"{section}.{attr}", escape(str(current)))
        console.print(table)
        return

    if value is None:
        console.print("[red]Usage: claudedeploy config <key> <value>[/red]")
        raise typer.Exit(1)

    parts = key.split(".")
    if len(parts) != 2:
        console.print("[red]Key format: section.key (e.g., ssh.port)[/red]")
        raise typer.Exit(1)

    section, attr = parts
    if section not in section_map:
        console.print(f"[red]Unknown section: {section}[/red]")
        raise typer.Exit(1)

    obj = section_map[section]
    if not hasattr(obj, attr):
        console.print(f"[red]Unknown key: {key}[/red]")
        raise typer.Exit(1)

    # Type coercion
    current = getattr(obj, attr)
    try:
        if isinstance(current, bool):
            typed_value = value.lower() in ("true", "1", "yes")
        elif isinstance(current, int):
            typed_value = int(value)
        elif isinstance(current, float):
            typed_value = float(value)
        elif isinstance(current, list):
            typed_value = [v.strip() for v in value.split(",") if v.strip()]
        else:
            typed_value = value
    except ValueError:
        console.print(f"[red]Invalid value type for {key}[/red]")
        raise typer.Exit(1)

    setattr(obj, attr, typed_value)
    save_config(cfg)
    console.print(f"[green]{key} = {escape(str(typed_value))}[/green]")


@app.command()
def version() -> None:
    """Show version information."""
    console.print(f"claudedeploy v{__version__}")

    for name, flag in (("node", "--version"), ("claude", "--version"), ("ccr", "-v")):
        installed, info = check_cli(name, flag)
        if installed:
            console.print(f"{name}: {escape(info)}")
        else:
            console.print(f"{name}: [yellow]not installed[/yellow]")

    console.print(f"Python: {sys.version.split()[0]}")
    console.print(f"Config: {CONFIG_FILE}")


if __name__ == "__main__":
    app()
