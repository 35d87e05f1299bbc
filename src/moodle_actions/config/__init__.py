"""
Configuration module.

Handles loading of Moodle connection settings and service tunables from
YAML files and environment variables.
"""

from .loader import ConfigLoader, load_settings
from .models import AppSettings, MoodleSettings

__all__ = ["ConfigLoader", "load_settings", "AppSettings", "MoodleSettings"]
