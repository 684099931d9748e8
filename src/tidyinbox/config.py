"""YAML configuration loading with a hot-reloadable singleton.

The config file is validated against ``tidyinbox.config_schema.AppConfig``.
The long-running sweeper calls ``reload_config_if_changed()`` before every
tick, so edits to thresholds, keyword lists or the notifier take effect
without a restart. An edit that fails validation is logged and ignored;
the previous config stays in force.

Path resolution: explicit argument, then ``TIDYINBOX_CONFIG_PATH``, then
``config/config.yaml``.

Usage:
    from tidyinbox.config import get_config, reload_config_if_changed

    config = get_config()
    if reload_config_if_changed():
        config = get_config()
"""

import os
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from tidyinbox.config_schema import CURRENT_SCHEMA_VERSION, AppConfig
from tidyinbox.core.errors import ConfigLoadError, ConfigValidationError
from tidyinbox.core.logging import get_logger

logger = get_logger(__name__)

CONFIG_PATH_ENV = "TIDYINBOX_CONFIG_PATH"
DEFAULT_CONFIG_PATH = Path("config/config.yaml")

_ERROR_TEMPLATES = {
    "missing": "Missing required field '{field}'",
    "string_type": "Field '{field}' must be a string",
    "int_type": "Field '{field}' must be an integer",
    "bool_type": "Field '{field}' must be true or false",
}


@dataclass
class _LoadedConfig:
    config: AppConfig
    path: Path
    mtime: float


# Singleton state; every access goes through _lock (APScheduler job + CLI)
_lock = threading.Lock()
_loaded: _LoadedConfig | None = None


def resolve_config_path(path: Path | None = None) -> Path:
    """Pick the config path: argument, environment variable, then default."""
    if path is not None:
        return path
    env_path = os.environ.get(CONFIG_PATH_ENV)
    return Path(env_path) if env_path else DEFAULT_CONFIG_PATH


def describe_validation_error(error: ValidationError) -> str:
    """One indented line per field error, phrased so the user can fix it."""
    lines = []
    for err in error.errors():
        field = ".".join(str(part) for part in err["loc"]) or "(root)"
        template = _ERROR_TEMPLATES.get(err["type"])
        text = template.format(field=field) if template else f"Field '{field}': {err['msg']}"
        lines.append(f"  - {text}")
    return "\n".join(lines)


def _read_mapping(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise ConfigLoadError(
            f"Configuration file not found: {path}\n"
            f"Copy config/config.yaml.example to {path} and edit it."
        )
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ConfigLoadError(f"Invalid YAML in {path}:\n{e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigLoadError(
            f"{path} must contain a YAML mapping at the top level, got {type(data).__name__}"
        )
    return data


def load_config(path: Path | None = None) -> AppConfig:
    """Read and validate a config file, bypassing the singleton.

    Raises:
        ConfigLoadError: If the file is missing or is not a YAML mapping
        ConfigValidationError: If the contents fail schema validation
    """
    config_path = resolve_config_path(path)
    data = _read_mapping(config_path)

    try:
        config = AppConfig(**data)
    except ValidationError as e:
        raise ConfigValidationError(
            f"Invalid configuration in {config_path}:\n{describe_validation_error(e)}"
        ) from e

    if config.schema_version > CURRENT_SCHEMA_VERSION:
        raise ConfigValidationError(
            f"{config_path} uses schema version {config.schema_version}, but this "
            f"version of tidyinbox only understands up to {CURRENT_SCHEMA_VERSION}. "
            "Upgrade tidyinbox."
        )

    logger.info(
        "config_loaded",
        path=str(config_path),
        schema_version=config.schema_version,
        sweep_interval_seconds=config.sweeper.interval_seconds,
        notifier=config.notifier.kind,
    )
    return config


def get_config() -> AppConfig:
    """Return the config singleton, loading it on first use.

    Raises:
        ConfigLoadError: If the file cannot be loaded on first use
        ConfigValidationError: If it fails validation on first use
    """
    global _loaded

    with _lock:
        if _loaded is None:
            path = resolve_config_path()
            config = load_config(path)
            _loaded = _LoadedConfig(config=config, path=path, mtime=path.stat().st_mtime)
        return _loaded.config


def reload_config_if_changed() -> bool:
    """Reload the singleton if its file's mtime moved forward.

    Returns:
        True if a new config is now in force. False if nothing was loaded
        yet, the file is unchanged or unreadable, or the new contents are
        invalid (the previous config is kept).
    """
    with _lock:
        if _loaded is None:
            return False

        try:
            mtime = _loaded.path.stat().st_mtime
        except OSError as e:
            logger.warning("config_stat_failed", path=str(_loaded.path), error=str(e))
            return False

        if mtime <= _loaded.mtime:
            return False

        # Remember the mtime either way so a broken file is reported once
        _loaded.mtime = mtime
        try:
            _loaded.config = load_config(_loaded.path)
        except (ConfigLoadError, ConfigValidationError) as e:
            logger.warning("config_reload_rejected", path=str(_loaded.path), error=str(e))
            return False

        logger.info("config_reloaded", path=str(_loaded.path))
        return True


def validate_config_file(path: Path | None = None) -> tuple[bool, str]:
    """Check a config file without touching the singleton.

    Returns:
        Tuple of (is_valid, human-readable summary or error)
    """
    try:
        config = load_config(path)
    except ConfigLoadError as e:
        return False, f"Load error: {e}"
    except ConfigValidationError as e:
        return False, f"Validation error: {e}"

    summary = [
        f"Configuration valid (schema version {config.schema_version})",
        f"  - database: {config.database.path}",
        f"  - sweep interval: {config.sweeper.interval_seconds}s",
        f"  - notifier: {config.notifier.kind}",
        f"  - gateway: {config.gateway.factory or '(not configured)'}",
    ]
    return True, "\n".join(summary)


def reset_config() -> None:
    """Forget the singleton. Used by tests."""
    global _loaded
    with _lock:
        _loaded = None
