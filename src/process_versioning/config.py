"""
Configuration management for process-versioning.

Handles loading configuration from defaults, a YAML file and environment
variables, and wiring a version store from the result.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .audit.audit_log import AuditLog
from .audit.models import Actor
from .audit.repository import DEFAULT_MAX_ENTRIES, InMemoryAuditRepository, JsonLinesAuditRepository
from .version.diff_engine import DiffEngine
from .version.repository import InMemoryVersionRepository, JsonFileVersionRepository
from .version.version_control import VersionStore

logger = logging.getLogger(__name__)

BACKENDS = ("memory", "file")


@dataclass
class StorageConfig:
    """Where versions and audit entries live."""

    backend: str = "file"
    path: Path = field(default_factory=lambda: Path(".process_versions"))


@dataclass
class AuditConfig:
    max_entries: int = DEFAULT_MAX_ENTRIES
    async_writes: bool = True
    batch_size: int = 50
    flush_interval: float = 0.5


@dataclass
class DiffConfig:
    """Fields whose changes are flagged as warnings rather than info."""

    warning_step_fields: List[str] = field(default_factory=lambda: ["name"])
    warning_metadata_fields: List[str] = field(default_factory=lambda: ["status"])


@dataclass
class ActorConfig:
    """Default user recorded on versions and audit entries."""

    user_id: str = "system"
    user_name: str = "System"
    user_email: Optional[str] = None
    user_role: Optional[str] = None

    def to_actor(self) -> Actor:
        return Actor(
            user_id=self.user_id,
            user_name=self.user_name,
            user_email=self.user_email,
            user_role=self.user_role,
        )


@dataclass
class VersioningConfig:
    """Main configuration."""

    storage: StorageConfig = field(default_factory=StorageConfig)
    audit: AuditConfig = field(default_factory=AuditConfig)
    diff: DiffConfig = field(default_factory=DiffConfig)
    actor: ActorConfig = field(default_factory=ActorConfig)


def _parse_bool(value: str) -> bool:
    return value.lower() in ("true", "1", "yes", "on")


class ConfigManager:
    """Manages configuration from multiple sources."""

    def __init__(self, config_file: Optional[Path] = None):
        self.config_dir = Path.home() / ".process-versioning"
        self.config_file = config_file or self.config_dir / "config.yaml"
        self._config: Optional[VersioningConfig] = None

    def load_config(self) -> VersioningConfig:
        """Load configuration from all sources."""
        if self._config:
            return self._config

        # Start with defaults
        config = VersioningConfig()

        # Load from file if it exists
        if self.config_file.exists():
            file_config = self._load_from_file()
            config = self._merge_configs(config, file_config)

        # Override with environment variables
        env_config = self._load_from_env()
        config = self._merge_configs(config, env_config)

        self._config = config
        return config

    def _load_from_file(self) -> Dict[str, Any]:
        """Load configuration from YAML file."""
        try:
            with open(self.config_file, "r", encoding="utf-8") as f:
                return yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.warning(f"Could not load config file {self.config_file}: {e}")
            return {}

    def _load_from_env(self) -> Dict[str, Any]:
        """Load configuration from environment variables."""
        env_config: Dict[str, Any] = {}

        storage_path = os.getenv("PROCESS_VERSIONING_STORAGE_PATH")
        if storage_path:
            env_config.setdefault("storage", {})["path"] = storage_path

        backend = os.getenv("PROCESS_VERSIONING_BACKEND")
        if backend:
            env_config.setdefault("storage", {})["backend"] = backend

        max_entries = os.getenv("PROCESS_VERSIONING_AUDIT_MAX_ENTRIES")
        if max_entries:
            try:
                env_config.setdefault("audit", {})["max_entries"] = int(max_entries)
            except ValueError:
                logger.warning(f"Ignoring non-integer PROCESS_VERSIONING_AUDIT_MAX_ENTRIES={max_entries!r}")

        async_writes = os.getenv("PROCESS_VERSIONING_AUDIT_ASYNC")
        if async_writes:
            env_config.setdefault("audit", {})["async_writes"] = _parse_bool(async_writes)

        for key in ("user_id", "user_name", "user_email"):
            value = os.getenv(f"PROCESS_VERSIONING_{key.upper()}")
            if value:
                env_config.setdefault("actor", {})[key] = value

        return env_config

    def _merge_configs(self, base: VersioningConfig, override: Dict[str, Any]) -> VersioningConfig:
        """Merge an override dictionary into a config."""
        storage = override.get("storage") or {}
        if "backend" in storage:
            if storage["backend"] not in BACKENDS:
                logger.warning(f"Unknown storage backend {storage['backend']!r}, keeping {base.storage.backend!r}")
            else:
                base.storage.backend = storage["backend"]
        if "path" in storage:
            base.storage.path = Path(storage["path"]).expanduser()

        audit = override.get("audit") or {}
        for key in ("max_entries", "async_writes", "batch_size", "flush_interval"):
            if key in audit:
                setattr(base.audit, key, audit[key])

        diff = override.get("diff") or {}
        for key in ("warning_step_fields", "warning_metadata_fields"):
            if key in diff:
                setattr(base.diff, key, list(diff[key]))

        actor = override.get("actor") or {}
        for key in ("user_id", "user_name", "user_email", "user_role"):
            if key in actor:
                setattr(base.actor, key, actor[key])

        return base

    def save_config(self, config: VersioningConfig) -> None:
        """Save configuration to file."""
        self.config_file.parent.mkdir(parents=True, exist_ok=True)

        config_dict = {
            "storage": {
                "backend": config.storage.backend,
                "path": str(config.storage.path),
            },
            "audit": {
                "max_entries": config.audit.max_entries,
                "async_writes": config.audit.async_writes,
                "batch_size": config.audit.batch_size,
                "flush_interval": config.audit.flush_interval,
            },
            "diff": {
                "warning_step_fields": config.diff.warning_step_fields,
                "warning_metadata_fields": config.diff.warning_metadata_fields,
            },
            "actor": {
                "user_id": config.actor.user_id,
                "user_name": config.actor.user_name,
                "user_email": config.actor.user_email,
                "user_role": config.actor.user_role,
            },
        }

        with open(self.config_file, "w", encoding="utf-8") as f:
            yaml.safe_dump(config_dict, f, default_flow_style=False, indent=2)

    def create_default_config(self) -> None:
        """Create a default configuration file."""
        self.save_config(VersioningConfig())
        logger.info(f"Created default configuration at {self.config_file}")

    def get_config_info(self) -> Dict[str, Any]:
        """Get information about current configuration."""
        config = self.load_config()

        return {
            "config_file": str(self.config_file),
            "config_exists": self.config_file.exists(),
            "backend": config.storage.backend,
            "storage_path": str(config.storage.path),
            "audit_max_entries": config.audit.max_entries,
            "audit_async_writes": config.audit.async_writes,
            "actor": config.actor.user_name,
        }


def build_store(config: Optional[VersioningConfig] = None) -> VersionStore:
    """
    Wire repositories, diff engine and audit log into a VersionStore.

    The returned store's ``audit_log`` should be closed by the caller.
    """
    config = config or load_config()

    if config.storage.backend == "memory":
        version_repository = InMemoryVersionRepository()
        audit_repository = InMemoryAuditRepository(max_entries=config.audit.max_entries)
    else:
        version_repository = JsonFileVersionRepository(config.storage.path)
        audit_repository = JsonLinesAuditRepository(
            config.storage.path / "audit.jsonl", max_entries=config.audit.max_entries
        )

    actor = config.actor.to_actor()
    audit_log = AuditLog(
        audit_repository,
        async_writes=config.audit.async_writes,
        batch_size=config.audit.batch_size,
        flush_interval=config.audit.flush_interval,
        default_actor=actor,
    )
    diff_engine = DiffEngine(
        warning_step_fields=config.diff.warning_step_fields,
        warning_metadata_fields=config.diff.warning_metadata_fields,
    )

    return VersionStore(
        repository=version_repository,
        diff_engine=diff_engine,
        audit_log=audit_log,
        default_actor=actor,
    )


# Global config manager instance
_config_manager: Optional[ConfigManager] = None

def get_config_manager() -> ConfigManager:
    """Get the global config manager instance."""
    global _config_manager
    if _config_manager is None:
        _config_manager = ConfigManager()
    return _config_manager

def load_config() -> VersioningConfig:
    """Load the current configuration."""
    return get_config_manager().load_config()
