"""
Configuration loader — reads config.yml into a validated HelperConfig.

Lookup order:
    1. GITANCHOR_CONFIG env var (explicit file)
    2. $XDG_CONFIG_HOME/gitanchor/config.yml  (default ~/.config/…)
    3. built-in defaults when no file exists

Per-repository ``git config`` keys (``anchor.storeBackend``,
``anchor.storeEndpoint``, ``anchor.storePath``, ``anchor.ledgerPath``)
override the file, so one machine can point different repositories at
different stores.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Literal, Protocol

import yaml
from pydantic import BaseModel, Field, ValidationError

from gitanchor.core.errors import ConfigError
from gitanchor.core.reliability.backoff import RetryPolicy

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "GITANCHOR_CONFIG"
CONFIG_DIR_NAME = "gitanchor"
CONFIG_FILE = "config.yml"

_DATA_HOME = "~/.local/share/gitanchor"


class StoreConfig(BaseModel):
    """Block-store backend selection."""

    backend: Literal["ipfs", "file", "memory"] = "ipfs"
    endpoint: str = "http://127.0.0.1:5001"     # ipfs
    path: str = f"{_DATA_HOME}/blocks"          # file
    timeout: float = 30.0                       # per call, seconds
    lookup_timeout: float = 10.0                # ipfs network search for a missing block


class LedgerConfig(BaseModel):
    """Ledger backend selection."""

    backend: Literal["file", "memory"] = "file"
    path: str = f"{_DATA_HOME}/ledger"
    timeout: float = 10.0                       # lock wait per submission
    authorized_keys: list[str] = Field(default_factory=list)


class RetryConfig(BaseModel):
    """Backoff for transient store/ledger failures."""

    max_attempts: int = Field(default=4, ge=1)
    base_delay: float = Field(default=0.5, ge=0)
    max_delay: float = Field(default=8.0, ge=0)

    def policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.max_attempts,
            base_delay=self.base_delay,
            max_delay=self.max_delay,
        )


class PushConfig(BaseModel):
    """Push orchestration limits."""

    max_cas_attempts: int = Field(default=3, ge=1)
    workers: int = Field(default=8, ge=1)


class SignerConfig(BaseModel):
    """Where the signing secret comes from."""

    secret_env: str = "GITANCHOR_SECRET"
    use_git_credential: bool = True


class HelperConfig(BaseModel):
    """Root configuration document."""

    store: StoreConfig = Field(default_factory=StoreConfig)
    ledger: LedgerConfig = Field(default_factory=LedgerConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    push: PushConfig = Field(default_factory=PushConfig)
    signer: SignerConfig = Field(default_factory=SignerConfig)


class ConfigSource(Protocol):
    """Anything that answers ``git config --get`` style lookups."""

    def config_get(self, key: str) -> str | None: ...


# git config key → (section, field)
_GIT_OVERRIDES: dict[str, tuple[str, str]] = {
    "anchor.storeBackend": ("store", "backend"),
    "anchor.storeEndpoint": ("store", "endpoint"),
    "anchor.storePath": ("store", "path"),
    "anchor.ledgerBackend": ("ledger", "backend"),
    "anchor.ledgerPath": ("ledger", "path"),
}


def default_config_path() -> Path:
    """``$XDG_CONFIG_HOME/gitanchor/config.yml``."""
    base = os.environ.get("XDG_CONFIG_HOME") or str(Path.home() / ".config")
    return Path(base) / CONFIG_DIR_NAME / CONFIG_FILE


def find_config_file() -> Path | None:
    """Return the config file to load, or None to use defaults."""
    explicit = os.environ.get(CONFIG_ENV_VAR)
    if explicit:
        return Path(explicit).expanduser()
    candidate = default_config_path()
    return candidate if candidate.is_file() else None


def load_config(path: Path | None = None) -> HelperConfig:
    """Load and validate the helper configuration.

    Args:
        path: Explicit config file. If None, searched via ``find_config_file``.

    Returns:
        Validated HelperConfig (defaults if no file exists).

    Raises:
        ConfigError: If the file is missing (when explicit) or invalid.
    """
    if path is None:
        path = find_config_file()
        if path is None:
            logger.debug("No config file — using defaults")
            return HelperConfig()

    if not path.is_file():
        raise ConfigError(f"Config file not found: {path}")

    logger.debug("Loading helper config from %s", path)

    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        return HelperConfig()
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a YAML mapping in {path}, got {type(data).__name__}")

    try:
        return HelperConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration in {path}: {e}") from e


def apply_git_overrides(config: HelperConfig, source: ConfigSource) -> HelperConfig:
    """Return a copy of ``config`` with per-repository git config applied."""
    data = config.model_dump()
    changed = False
    for key, (section, field) in _GIT_OVERRIDES.items():
        value = source.config_get(key)
        if value is None:
            continue
        data[section][field] = value
        changed = True
        logger.debug("git config %s overrides %s.%s", key, section, field)
    if not changed:
        return config
    try:
        return HelperConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid anchor.* git config: {e}") from e
