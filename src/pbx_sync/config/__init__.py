"""Settings loading."""
from .settings import Settings, load_settings, find_settings_file
from ..errors import ConfigError

__all__ = ["Settings", "load_settings", "find_settings_file", "ConfigError"]
