"""Configuration models for the Gas Town executor."""

import os
from pathlib import Path
from typing import Literal, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError

from .executor.logging import get_logger

ExecutionMode = Literal["native", "wsl"]

CONFIG_ENV_VAR = "GASTOWN_EXECUTOR_CONFIG"
WORKSPACE_ENV_VAR = "GASTOWN_PATH"
DEFAULT_CONFIG_FILE = "gastown.yaml"
DEFAULT_WSL_DISTRO = "Ubuntu"


def default_gastown_path() -> Path:
    """Default Gas Town workspace: ~/gt."""
    return Path.home() / "gt"


def default_bin_dir() -> Path:
    """Directory holding the bundled gt/bd binaries.

    config.py -> gastown_executor -> src -> project root.
    """
    package_root = Path(__file__).resolve().parent.parent.parent
    return package_root / "resources" / "bin"


class NativeSettings(BaseModel):
    """Settings for the native execution target."""

    claude_path: Optional[str] = Field(
        default=None,
        description="Explicit path to the Claude Code CLI; discovered on PATH when unset",
    )


class WslSettings(BaseModel):
    """Settings for the WSL execution target."""

    distro: Optional[str] = Field(
        default=None,
        description="WSL distribution to run in; the default distribution when unset",
    )

    @property
    def unc_distro(self) -> str:
        """Distribution name used in \\\\wsl.localhost paths."""
        return self.distro or DEFAULT_WSL_DISTRO


class Settings(BaseModel):
    """Root configuration model."""

    execution_mode: ExecutionMode = Field(
        default="native", description="Which execution target runs the CLIs"
    )
    gastown_path: Path = Field(
        default_factory=default_gastown_path,
        description="Gas Town workspace root, exported to children as GASTOWN_PATH",
    )
    bin_dir: Path = Field(
        default_factory=default_bin_dir,
        description="Directory with the bundled gt and bd binaries",
    )
    idle_timeout: float = Field(
        default=120.0, gt=0, description="Seconds without output before an agent run is killed"
    )
    idle_poll_interval: float = Field(
        default=5.0, gt=0, description="Seconds between idle checks"
    )
    aux_timeout: float = Field(
        default=120.0, gt=0, description="Wall-clock timeout in seconds for gt/bd commands"
    )
    native: NativeSettings = Field(default_factory=NativeSettings)
    wsl: WslSettings = Field(default_factory=WslSettings)


# Global settings instance (singleton)
_settings: Optional[Settings] = None


def find_config_file() -> Optional[Path]:
    """Find the settings file.

    Search order:
    1. GASTOWN_EXECUTOR_CONFIG environment variable
    2. ./gastown.yaml in current working directory
    """
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        return Path(env_path).resolve()

    candidate = Path.cwd() / DEFAULT_CONFIG_FILE
    if candidate.exists():
        return candidate
    return None


def load_settings(config_file: Optional[Path] = None) -> Settings:
    """Load settings from YAML, falling back to defaults.

    Args:
        config_file: Path to the YAML file. If None, will search for it.

    Returns:
        Loaded Settings object.
    """
    logger = get_logger()

    if config_file is None:
        config_file = find_config_file()

    data: dict = {}
    if config_file is not None and config_file.exists():
        try:
            data = yaml.safe_load(config_file.read_text(encoding="utf-8")) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.warning(f"Failed to read settings from {config_file}: {e}")
            data = {}
        if not isinstance(data, dict):
            logger.warning(f"Ignoring settings file {config_file}: top level is not a mapping")
            data = {}

    env_workspace = os.environ.get(WORKSPACE_ENV_VAR)
    if env_workspace:
        data["gastown_path"] = env_workspace

    try:
        return Settings.model_validate(data)
    except ValidationError as e:
        logger.warning(f"Invalid settings in {config_file}: {e}")
        return Settings()


def get_settings() -> Settings:
    """Get the settings (loaded once, then cached)."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def reload_settings() -> Settings:
    """Re-read settings from disk and replace the cached instance."""
    global _settings
    _settings = load_settings()
    return _settings


def set_execution_mode(mode: ExecutionMode) -> Settings:
    """Record a new execution mode on the cached settings."""
    global _settings
    _settings = get_settings().model_copy(update={"execution_mode": mode})
    return _settings
