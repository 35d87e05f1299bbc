"""Configuration loader for Moodle and service settings."""

import os
from collections.abc import Mapping
from dataclasses import replace
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from .models import AppSettings

# Environment variable -> (section, key)
ENV_OVERRIDES: dict[str, tuple[str | None, str]] = {
    "MOODLE_BASE_URL": ("moodle", "base_url"),
    "MOODLE_WS_TOKEN": ("moodle", "token"),
    "MOODLE_TIMEOUT": ("moodle", "timeout"),
    "MOODLE_CONCURRENCY_LIMIT": (None, "concurrency_limit"),
    "LOG_LEVEL": (None, "log_level"),
}


class ConfigLoader:
    """Loads settings from an optional YAML file and the environment."""

    def __init__(
        self,
        config_file: str | Path | None = None,
        environ: Mapping[str, str] | None = None,
        use_dotenv: bool = True,
    ):
        """Initialize the config loader.

        Args:
            config_file: Optional YAML settings file
            environ: Environment mapping (defaults to os.environ)
            use_dotenv: Whether to read a .env file into os.environ first
        """
        self.config_file = Path(config_file) if config_file else None
        self._environ = environ
        self.use_dotenv = use_dotenv

    @property
    def environ(self) -> Mapping[str, str]:
        return os.environ if self._environ is None else self._environ

    def load(self) -> AppSettings:
        """Load settings, with environment values taking precedence.

        Returns:
            Parsed AppSettings object
        """
        if self.use_dotenv and self._environ is None:
            load_dotenv()

        data: dict[str, Any] = {}
        if self.config_file is not None:
            data = self._load_yaml(self.config_file)

        data = self._apply_environment(data)
        return AppSettings.from_dict(data)

    def _apply_environment(self, data: dict[str, Any]) -> dict[str, Any]:
        """Overlay environment variables on top of file values."""
        merged = dict(data)
        merged["moodle"] = dict(data.get("moodle") or {})

        for env_var, (section, key) in ENV_OVERRIDES.items():
            value = self.environ.get(env_var)
            if not value:
                continue
            if section is None:
                merged[key] = value
            else:
                merged[section][key] = value

        return merged

    def _load_yaml(self, path: Path) -> dict[str, Any]:
        """Load and parse a YAML file."""
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with open(path, encoding="utf-8") as f:
            return yaml.safe_load(f) or {}


def load_settings(config_file: str | Path | None = None, **overrides: Any) -> AppSettings:
    """Load application settings, optionally replacing top-level fields.

    Args:
        config_file: Optional YAML settings file
        **overrides: AppSettings fields to replace after loading

    Returns:
        AppSettings instance
    """
    settings = ConfigLoader(config_file).load()
    if overrides:
        settings = replace(settings, **overrides)
    return settings
