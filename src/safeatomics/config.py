"""safeatomics configuration management.

Configuration is stored in ~/.safeatomics/config.yaml by default; the
SAFEATOMICS_CONFIG environment variable points somewhere else. A missing
file means all defaults apply.
"""

import os
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field

from .config_base import ConfigModel
from .occ.controller import DEFAULT_RETRY_BUDGET

CONFIG_FILE = Path.home() / ".safeatomics" / "config.yaml"
DEFAULT_STORE_PATH = Path.home() / ".safeatomics" / "store.json"


class RetryConfig(BaseModel):
    """Retry behaviour of update_many / update_one."""

    retry_budget: int = Field(default=DEFAULT_RETRY_BUDGET, ge=0)
    """Retries allowed after the first failed commit."""

    initial_delay: float = Field(default=0.0, ge=0.0)
    """Backoff before the first retry in seconds, doubling each retry. 0 disables."""


class BackendConfig(BaseModel):
    """Which VersionedKvStore to build."""

    type: Literal["memory", "local"] = "local"
    """Backend implementation."""

    path: Path = DEFAULT_STORE_PATH
    """Store file for the local backend."""


class SafeAtomicsConfig(ConfigModel):
    """Main configuration model for safeatomics."""

    retry: RetryConfig = Field(default_factory=RetryConfig)
    """Retry settings."""

    backend: BackendConfig = Field(default_factory=BackendConfig)
    """Backend settings."""

    @classmethod
    def default_path(cls) -> Path:
        """Config file location, honouring SAFEATOMICS_CONFIG."""
        override = os.environ.get("SAFEATOMICS_CONFIG")
        return Path(override) if override else CONFIG_FILE

    @classmethod
    def load(cls, path: Path | None = None) -> "SafeAtomicsConfig":
        """Load configuration, falling back to defaults when no file exists.

        Raises:
            ConfigError: If the file exists but is invalid
        """
        return cls.load_or_default(path or cls.default_path())

    def save(self, path: Path | None = None) -> None:
        """Save configuration to file."""
        self.to_yaml(path or self.default_path())
