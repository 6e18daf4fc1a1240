"""
Configuration management for agent-harness.

Settings live in <project>/.agent/harness-config.json. Individual values can
be overridden with HARNESS_* environment variables, either exported in the
process environment or listed in the project's .env file.
"""

from __future__ import annotations

import json
import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import TYPE_CHECKING, Any

from dotenv import dotenv_values

from .persistence import atomic_write_json

if TYPE_CHECKING:
    from .hooks.engine import HooksConfig

AGENT_DIR_NAME = ".agent"
CONFIG_FILE_NAME = "harness-config.json"

# Environment variable -> (section, field)
ENV_OVERRIDES: dict[str, tuple[str, str]] = {
    "HARNESS_ENABLE_TDD": ("features", "enable_tdd"),
    "HARNESS_STRICT_TDD": ("features", "strict_tdd"),
    "HARNESS_ENABLE_AUDIT": ("features", "enable_audit_log"),
    "HARNESS_ENABLE_SECURITY": ("features", "enable_security_hooks"),
    "HARNESS_ENABLE_CHECKPOINTS": ("features", "enable_file_checkpointing"),
    "HARNESS_MAX_CHECKPOINTS": ("checkpoints", "max_checkpoints"),
}


def _filter_dataclass_fields(data: Any, cls: type) -> dict[str, Any]:
    """Filter dict to only include fields that exist in the dataclass."""
    if not isinstance(data, dict):
        return {}
    valid_fields = {f.name for f in fields(cls)}
    return {k: v for k, v in data.items() if k in valid_fields}


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def read_harness_env(project_root: Path | None = None) -> dict[str, str]:
    """
    Collect HARNESS_* settings.

    Priority order:
    1. Process environment
    2. <project_root>/.env (read without touching os.environ)

    Returns:
        Mapping of HARNESS_* variable names to raw string values
    """
    values: dict[str, str] = {}

    if project_root is not None:
        env_file = Path(project_root) / ".env"
        if env_file.is_file():
            try:
                env_values = dotenv_values(env_file)
            except (OSError, UnicodeDecodeError):
                env_values = {}
            for key, value in env_values.items():
                if key.startswith("HARNESS_") and value is not None:
                    values[key] = value

    for key, value in os.environ.items():
        if key.startswith("HARNESS_"):
            values[key] = value

    return values


@dataclass
class FeatureFlags:
    """Optional capabilities of the harness."""

    enable_tdd: bool = True
    enable_audit_log: bool = True
    enable_security_hooks: bool = True
    enable_file_checkpointing: bool = True
    strict_tdd: bool = False  # True blocks edits without tests


@dataclass
class GitConfig:
    """Git-related policy toggles."""

    prevent_force_push: bool = True


@dataclass
class CheckpointConfig:
    """What a checkpoint tracks and how many are retained."""

    source_dir: str = "src"
    source_extensions: list[str] = field(
        default_factory=lambda: [".ts", ".tsx", ".js", ".jsx", ".py"]
    )
    config_files: list[str] = field(
        default_factory=lambda: ["package.json", "tsconfig.json", "pyproject.toml"]
    )
    excluded_dirs: list[str] = field(
        default_factory=lambda: ["node_modules", "dist", "build", "__pycache__"]
    )
    max_checkpoints: int = 10
    auto_save: bool = True
    checkpoint_interval: int = 3  # completed features between checkpoints


@dataclass
class HarnessPaths:
    """Files and directories under the per-project agent directory."""

    project_root: Path
    agent_dir: Path

    @classmethod
    def for_project(
        cls, project_root: Path | str, agent_dir_name: str = AGENT_DIR_NAME
    ) -> "HarnessPaths":
        root = Path(project_root).resolve()
        agent_dir = Path(agent_dir_name)
        if not agent_dir.is_absolute():
            agent_dir = root / agent_dir
        return cls(project_root=root, agent_dir=agent_dir)

    @property
    def session_state(self) -> Path:
        return self.agent_dir / "session_state.json"

    @property
    def sessions_dir(self) -> Path:
        return self.agent_dir / "sessions"

    @property
    def checkpoints_dir(self) -> Path:
        return self.agent_dir / "checkpoints"

    @property
    def audit_log(self) -> Path:
        return self.agent_dir / "audit_log.jsonl"

    @property
    def file_changes_log(self) -> Path:
        return self.agent_dir / "file_changes.log"

    @property
    def sessions_log(self) -> Path:
        return self.agent_dir / "sessions.log"

    @property
    def error_log(self) -> Path:
        return self.agent_dir / "error-log.json"

    @property
    def config_file(self) -> Path:
        return self.agent_dir / CONFIG_FILE_NAME


@dataclass
class HarnessConfig:
    """
    Complete harness configuration.

    ``hooks`` optionally replaces the default guard layout with an explicit
    one, in the shape accepted by ``hooks_config_from_dict``.
    """

    agent_dir: str = AGENT_DIR_NAME
    features: FeatureFlags = field(default_factory=FeatureFlags)
    git: GitConfig = field(default_factory=GitConfig)
    checkpoints: CheckpointConfig = field(default_factory=CheckpointConfig)
    hooks: dict[str, Any] | None = None

    @classmethod
    def load(cls, path: Path | None = None) -> "HarnessConfig":
        """
        Load configuration from file.

        Missing or unreadable files yield the defaults; unknown keys are
        ignored.

        Args:
            path: Config file path. Defaults to ./.agent/harness-config.json
        """
        if path is None:
            path = Path.cwd() / AGENT_DIR_NAME / CONFIG_FILE_NAME

        if not path.exists():
            return cls()

        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (ValueError, OSError):
            return cls()

        if not isinstance(data, dict):
            return cls()

        agent_dir = data.get("agent_dir")
        if not isinstance(agent_dir, str) or not agent_dir:
            agent_dir = AGENT_DIR_NAME

        return cls(
            agent_dir=agent_dir,
            features=FeatureFlags(**_filter_dataclass_fields(data.get("features", {}), FeatureFlags)),
            git=GitConfig(**_filter_dataclass_fields(data.get("git", {}), GitConfig)),
            checkpoints=CheckpointConfig(
                **_filter_dataclass_fields(data.get("checkpoints", {}), CheckpointConfig)
            ),
            hooks=data.get("hooks"),
        )

    @classmethod
    def for_project(cls, project_root: Path | str) -> "HarnessConfig":
        """
        Load the project's config file and apply HARNESS_* overrides.

        The agent directory itself can be relocated with HARNESS_AGENT_DIR,
        which is consulted before the config file is looked up.
        """
        project_root = Path(project_root)
        env = read_harness_env(project_root)

        agent_dir_name = env.get("HARNESS_AGENT_DIR", AGENT_DIR_NAME)
        paths = HarnessPaths.for_project(project_root, agent_dir_name)
        config = cls.load(paths.config_file)
        if "HARNESS_AGENT_DIR" in env:
            config.agent_dir = agent_dir_name

        config.apply_overrides(env)
        return config

    def apply_overrides(self, env: dict[str, str]) -> None:
        """Apply HARNESS_* values on top of the loaded settings."""
        for name, (section, attr) in ENV_OVERRIDES.items():
            raw = env.get(name)
            if raw is None:
                continue
            target = getattr(self, section)
            current = getattr(target, attr)
            if isinstance(current, bool):
                setattr(target, attr, _parse_bool(raw))
            elif isinstance(current, int):
                try:
                    setattr(target, attr, int(raw))
                except ValueError:
                    pass

    def paths(self, project_root: Path | str) -> HarnessPaths:
        return HarnessPaths.for_project(project_root, self.agent_dir)

    def build_hooks_config(self) -> "HooksConfig":
        """Resolve the guard layout described by this config."""
        from .hooks.engine import create_default_hooks_config, hooks_config_from_dict

        if self.hooks:
            return hooks_config_from_dict(self.hooks)

        return create_default_hooks_config(
            enable_tdd=self.features.enable_tdd,
            enable_audit=self.features.enable_audit_log,
            enable_security=self.features.enable_security_hooks,
            strict_tdd=self.features.strict_tdd,
            prevent_force_push=self.git.prevent_force_push,
        )

    def save(self, path: Path | None = None) -> None:
        """Save configuration to file."""
        if path is None:
            path = Path.cwd() / AGENT_DIR_NAME / CONFIG_FILE_NAME

        data: dict[str, Any] = {
            "agent_dir": self.agent_dir,
            "features": asdict(self.features),
            "git": asdict(self.git),
            "checkpoints": asdict(self.checkpoints),
        }
        if self.hooks is not None:
            data["hooks"] = self.hooks

        atomic_write_json(path, data)


# Default configuration instance
default_config = HarnessConfig()


__all__ = [
    "AGENT_DIR_NAME",
    "CONFIG_FILE_NAME",
    "CheckpointConfig",
    "FeatureFlags",
    "GitConfig",
    "HarnessConfig",
    "HarnessPaths",
    "default_config",
    "read_harness_env",
]
