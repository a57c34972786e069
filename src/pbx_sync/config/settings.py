"""Settings for pbx-sync loaded from YAML.

Search order for the settings file:
1. PBX_SYNC_CONFIG environment variable
2. ./configs/pbx-sync.yaml
3. ./pbx-sync.yaml
4. ~/.config/pbx-sync/pbx-sync.yaml
5. /etc/pbx-sync/pbx-sync.yaml

A missing file is not an error: defaults apply. Any field can be
overridden with a PBX_SYNC_<FIELD> environment variable, e.g.
PBX_SYNC_PJSIP_CONFIG=/tmp/pjsip.conf.

Example:

```yaml
pjsip_config: /etc/asterisk/pjsip.conf
backup_dir: /var/backups/pbx-sync
max_backups: 20
declared_dir: /var/lib/pbx-sync/extensions
asterisk_binary: asterisk
cli_timeout: 10
git_enabled: false
auto_sync: true
```
"""
import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Optional

import yaml

from ..errors import ConfigError
from ..utils.convert import parse_bool

logger = logging.getLogger(__name__)

ENV_PREFIX = "PBX_SYNC_"
CONFIG_ENV = "PBX_SYNC_CONFIG"

DEFAULT_PJSIP_CONFIG = Path("/etc/asterisk/pjsip.conf")
DEFAULT_RELOAD_COMMAND = "module reload res_pjsip.so"

_PATH_FIELDS = ("pjsip_config", "backup_dir", "declared_dir", "log_dir")


@dataclass
class Settings:
    """Runtime settings for the sync tool."""
    pjsip_config: Path = DEFAULT_PJSIP_CONFIG
    backup_dir: Optional[Path] = None
    max_backups: int = 20
    declared_dir: Path = Path.home() / ".pbx-sync" / "extensions"
    asterisk_binary: str = "asterisk"
    cli_timeout: float = 10.0
    reload_command: str = DEFAULT_RELOAD_COMMAND
    git_enabled: bool = False
    auto_sync: bool = True
    log_dir: Optional[Path] = None
    source: Optional[Path] = None

    @classmethod
    def from_dict(cls, data: dict[str, Any], source: Optional[Path] = None) -> "Settings":
        """Build settings from a mapping, converting values to field types."""
        known = {f.name for f in fields(cls)} - {"source"}
        unknown = set(data) - known
        if unknown:
            raise ConfigError(f"Unknown settings: {', '.join(sorted(unknown))}")

        values = {}
        for name, value in data.items():
            values[name] = _convert(name, value)
        return cls(source=source, **values)


def _convert(name: str, value: Any) -> Any:
    if value is None:
        if name in ("backup_dir", "log_dir"):
            return None
        raise ConfigError(f"Setting '{name}' must not be empty")

    if name in _PATH_FIELDS:
        return Path(str(value)).expanduser()

    if name in ("git_enabled", "auto_sync"):
        try:
            return parse_bool(value)
        except ValueError as e:
            raise ConfigError(f"Setting '{name}' must be a boolean, got {value!r}") from e

    try:
        if name == "max_backups":
            number = int(value)
            if number < 0:
                raise ConfigError(f"Setting 'max_backups' must be >= 0, got {number}")
            return number
        if name == "cli_timeout":
            timeout = float(value)
            if timeout <= 0:
                raise ConfigError(f"Setting 'cli_timeout' must be positive, got {timeout}")
            return timeout
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Setting '{name}' is not a number: {value!r}") from e

    return str(value)


def find_settings_file() -> Optional[Path]:
    """Locate the settings file, or None if there is none."""
    env_path = os.environ.get(CONFIG_ENV)
    if env_path:
        path = Path(env_path).expanduser()
        if not path.exists():
            raise ConfigError(f"{CONFIG_ENV} points to a missing file: {path}")
        return path

    search_paths = [
        Path.cwd() / "configs" / "pbx-sync.yaml",
        Path.cwd() / "pbx-sync.yaml",
        Path.home() / ".config" / "pbx-sync" / "pbx-sync.yaml",
        Path("/etc/pbx-sync/pbx-sync.yaml"),
    ]

    for path in search_paths:
        if path.exists():
            return path
    return None


def _env_overrides() -> dict[str, str]:
    overrides = {}
    for f in fields(Settings):
        if f.name == "source":
            continue
        value = os.environ.get(f"{ENV_PREFIX}{f.name.upper()}")
        if value is not None:
            overrides[f.name] = value
    return overrides


def load_settings(path: Optional[Path] = None) -> Settings:
    """
    Load settings from YAML plus environment overrides.

    Args:
        path: Explicit settings file (default: search path)

    Raises:
        ConfigError: the file cannot be read or contains invalid values
    """
    path = Path(path) if path else find_settings_file()

    data: dict[str, Any] = {}
    if path is not None:
        try:
            with open(path, encoding="utf-8") as f:
                loaded = yaml.safe_load(f)
        except OSError as e:
            raise ConfigError(f"Failed to read settings {path}: {e}") from e
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}") from e

        if loaded is None:
            loaded = {}
        if not isinstance(loaded, dict):
            raise ConfigError(f"Settings file {path} must contain a mapping")
        data.update(loaded)
        logger.debug(f"Loaded settings from {path}")
    else:
        logger.debug("No settings file found, using defaults")

    data.update(_env_overrides())
    return Settings.from_dict(data, source=path)
