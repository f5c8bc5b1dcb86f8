"""Configuration management using TOML + environment variables."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from pathlib import Path

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

import tomli_w

CONFIG_DIR = Path.home() / ".claudedeploy"
CONFIG_FILE = CONFIG_DIR / "config.toml"
LOG_FILE = CONFIG_DIR / "claudedeploy.log"

ROUTER_DIR_NAME = ".claude-code-router"
ROUTER_CONFIG_NAME = "config.json"

DEFAULT_PACKAGES: list[str] = [
    "@anthropic-ai/claude-code",
    "@musistudio/claude-code-router",
]

# Tried in this order when no key or agent is given.
DEFAULT_KEY_NAMES: tuple[str, ...] = ("id_rsa", "id_ed25519", "id_ecdsa")

PROVIDER_BASE_URLS: dict[str, str] = {
    "openai": "https://api.openai.com",
    "ucloud": "https://api.modelverse.cn",
}

DEFAULT_MODELS: dict[str, list[str]] = {
    "openai": ["gpt-4-turbo-preview", "gpt-4", "gpt-3.5-turbo"],
    "ucloud": ["deepseek-chat", "deepseek-reasoner"],
    "custom": ["default-model"],
}


def router_config_path(home: Path | str | None = None) -> Path:
    """Local path of the router config.json."""
    base = Path(home) if home is not None else Path.home()
    return base / ROUTER_DIR_NAME / ROUTER_CONFIG_NAME


def default_models_for(provider_name: str) -> list[str]:
    return list(DEFAULT_MODELS.get(provider_name, DEFAULT_MODELS["custom"]))


@dataclass
class SSHConfig:
    port: int = 22
    connect_timeout: int = 30


@dataclass
class InstallConfig:
    registry: str = ""
    user_install: bool = False
    packages: list[str] = field(default_factory=lambda: list(DEFAULT_PACKAGES))


@dataclass
class CatalogConfig:
    timeout: float = 5.0


@dataclass
class RouterConfig:
    host: str = "127.0.0.1"
    port: int = 3456
    api_timeout_ms: int = 600000
    long_context_threshold: int = 60000


@dataclass
class StorageConfig:
    db_path: str = "~/.claudedeploy/history.db"


@dataclass
class LoggingConfig:
    level: str = "WARNING"
    file: str = "~/.claudedeploy/claudedeploy.log"


@dataclass
class AppConfig:
    ssh: SSHConfig = field(default_factory=SSHConfig)
    install: InstallConfig = field(default_factory=InstallConfig)
    catalog: CatalogConfig = field(default_factory=CatalogConfig)
    router: RouterConfig = field(default_factory=RouterConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def ensure_config_dir() -> None:
    """Create config directory with secure permissions."""
    CONFIG_DIR.mkdir(parents=True, exist_ok=True)
    os.chmod(CONFIG_DIR, 0o700)


def load_config() -> AppConfig:
    """Load configuration from TOML file with env var overrides."""
    config = AppConfig()

    if CONFIG_FILE.exists():
        with open(CONFIG_FILE, "rb") as f:
            data = tomllib.load(f)

        ssh = data.get("ssh", {})
        config.ssh.port = ssh.get("port", config.ssh.port)
        config.ssh.connect_timeout = ssh.get("connect_timeout", config.ssh.connect_timeout)

        install = data.get("install", {})
        config.install.registry = install.get("registry", config.install.registry)
        config.install.user_install = install.get("user_install", config.install.user_install)
        config.install.packages = install.get("packages", config.install.packages)

        catalog = data.get("catalog", {})
        config.catalog.timeout = catalog.get("timeout", config.catalog.timeout)

        router = data.get("router", {})
        config.router.host = router.get("host", config.router.host)
        config.router.port = router.get("port", config.router.port)
        config.router.api_timeout_ms = router.get("api_timeout_ms", config.router.api_timeout_ms)
        config.router.long_context_threshold = router.get(
            "long_context_threshold", config.router.long_context_threshold
        )

        storage = data.get("storage", {})
        config.storage.db_path = storage.get("db_path", config.storage.db_path)

        logging_cfg = data.get("logging", {})
        config.logging.level = logging_cfg.get("level", config.logging.level)
        config.logging.file = logging_cfg.get("file", config.logging.file)

    # Environment variable overrides
    if env_port := os.environ.get("CLAUDEDEPLOY_SSH_PORT"):
        config.ssh.port = int(env_port)
    if env_timeout := os.environ.get("CLAUDEDEPLOY_CONNECT_TIMEOUT"):
        config.ssh.connect_timeout = int(env_timeout)
    if env_registry := os.environ.get("CLAUDEDEPLOY_REGISTRY"):
        config.install.registry = env_registry
    if env_user_install := os.environ.get("CLAUDEDEPLOY_USER_INSTALL"):
        config.install.user_install = env_user_install.lower() in ("true", "1", "yes")
    if env_catalog_timeout := os.environ.get("CLAUDEDEPLOY_CATALOG_TIMEOUT"):
        config.catalog.timeout = float(env_catalog_timeout)
    if env_db := os.environ.get("CLAUDEDEPLOY_DB_PATH"):
        config.storage.db_path = env_db
    if env_log_level := os.environ.get("CLAUDEDEPLOY_LOG_LEVEL"):
        config.logging.level = env_log_level
    if env_log_file := os.environ.get("CLAUDEDEPLOY_LOG_FILE"):
        config.logging.file = env_log_file

    return config


def save_config(config: AppConfig) -> None:
    """Save configuration to TOML file."""
    ensure_config_dir()

    data = {
        "ssh": {
            "port": config.ssh.port,
            "connect_timeout": config.ssh.connect_timeout,
        },
        "install": {
            "registry": config.install.registry,
            "user_install": config.install.user_install,
            "packages": config.install.packages,
        },
        "catalog": {
            "timeout": config.catalog.timeout,
        },
        "router": {
            "host": config.router.host,
            "port": config.router.port,
            "api_timeout_ms": config.router.api_timeout_ms,
            "long_context_threshold": config.router.long_context_threshold,
        },
        "storage": {
            "db_path": config.storage.db_path,
        },
        "logging": {
            "level": config.logging.level,
            "file": config.logging.file,
        },
    }

    with open(CONFIG_FILE, "wb") as f:
        tomli_w.dump(data, f)

    os.chmod(CONFIG_FILE, 0o600)
