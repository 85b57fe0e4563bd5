"""
Reading settings from environment variables and config files, and providing a
settings object for the server.
"""

import threading
import warnings
from pathlib import Path
from typing import List, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

CONFIG_FILENAMES = ["mcp-elicitation.config.yaml", "mcp_elicitation.config.yaml"]


class ServerSettings(BaseModel):
    """Identity reported to clients during initialization."""

    name: str = "elicitation-server"
    version: str = "1.0.0"

    model_config = ConfigDict(extra="allow")


class ElicitationSettings(BaseModel):
    """
    Settings for server-initiated elicitation requests.
    """

    timeout_seconds: float | None = Field(default=300.0, gt=0)
    """
    How long a request may stay pending before it is cancelled automatically.
    None waits forever.
    """

    model_config = ConfigDict(extra="allow")


class LoggerSettings(BaseModel):
    """
    Logger settings for the elicitation server.
    """

    type: Literal["none", "console"] = "console"

    level: Literal["debug", "info", "warning", "error"] = "info"
    """Minimum logging level"""

    show_path: bool = False
    """Whether console log lines include the emitting source location"""

    model_config = ConfigDict(extra="allow")


class Settings(BaseSettings):
    """
    Settings class for the elicitation server.
    """

    model_config = SettingsConfigDict(
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="allow",
        nested_model_default_partial_update=True,
    )

    server: ServerSettings = Field(default_factory=ServerSettings)

    elicitation: ElicitationSettings = Field(default_factory=ElicitationSettings)

    logger: LoggerSettings = Field(default_factory=LoggerSettings)

    @classmethod
    def find_config(cls) -> Path | None:
        """Find the config file in the current directory or parent directories."""
        return cls._find_config(CONFIG_FILENAMES)

    @classmethod
    def _find_config(cls, filenames: List[str]) -> Path | None:
        """Find a file by name in current, parents, and `.mcp-elicitation` subdirs, with home fallback."""
        current_dir = Path.cwd()

        while True:
            for filename in filenames:
                direct = current_dir / filename
                if direct.exists():
                    return direct

                nested = current_dir / ".mcp-elicitation" / filename
                if nested.exists():
                    return nested

            if current_dir == current_dir.parent:
                break
            current_dir = current_dir.parent

        try:
            home = Path.home()
            for filename in filenames:
                home_file = home / ".mcp-elicitation" / filename
                if home_file.exists():
                    return home_file
        except RuntimeError:
            pass

        return None


# Global settings object
_settings: Settings | None = None


def _clear_global_settings():
    """
    Convenience for testing - clear the global memoized settings.
    """
    global _settings
    _settings = None


def get_settings(config_path: str | Path | None = None) -> Settings:
    """Get settings instance, automatically loading from config file if available."""
    global _settings
    if _settings and config_path is None:
        return _settings

    import yaml  # pylint: disable=C0415

    if config_path:
        config_file = Path(config_path)
        if not config_file.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")
    else:
        config_file = Settings.find_config()

    if config_file and config_file.exists():
        with open(config_file, "r", encoding="utf-8") as f:
            yaml_settings = yaml.safe_load(f) or {}
        _settings = Settings(**yaml_settings)
        return _settings

    _settings = Settings()

    if threading.current_thread() is not threading.main_thread():
        warnings.warn(
            "get_settings() returned the global Settings singleton on a non-main thread. "
            "Prefer passing a Settings instance explicitly to ElicitationServer(settings=...).",
            stacklevel=2,
        )
    return _settings
