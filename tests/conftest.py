"""Pytest fixtures and configuration for tidyinbox tests.

Provides common fixtures for configuration, database, and mocking.
"""

import os
from collections.abc import AsyncGenerator, Generator
from pathlib import Path
from typing import Any

import pytest

from tidyinbox.config import reset_config
from tidyinbox.config_schema import AppConfig, ClassifierConfig
from tidyinbox.db.store import DatabaseStore


@pytest.fixture(autouse=True)
def reset_config_singleton() -> Generator[None, None, None]:
    """Reset the config singleton before each test."""
    reset_config()
    yield
    reset_config()


@pytest.fixture
def temp_config_dir(tmp_path: Path) -> Path:
    """Create a temporary config directory."""
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    return config_dir


@pytest.fixture
def sample_config_yaml() -> str:
    """Return a minimal valid config.yaml content."""
    return """
schema_version: 1

database:
  path: "data/test.db"

default_timezone: "Asia/Manila"

sweeper:
  interval_seconds: 60
  fetch_limit: 100
  batch_size: 10
  batch_delay_seconds: 0

notifier:
  kind: "log"
"""


@pytest.fixture
def sample_config_dict() -> dict[str, Any]:
    """Return a minimal valid config as a dictionary."""
    return {
        "schema_version": 1,
        "default_timezone": "UTC",
        "sweeper": {
            "interval_seconds": 60,
            "fetch_limit": 100,
            "batch_size": 10,
            "batch_delay_seconds": 0,
        },
        "notifier": {"kind": "log"},
    }


@pytest.fixture
def sample_config(sample_config_dict: dict[str, Any]) -> AppConfig:
    """Return a minimal valid AppConfig instance."""
    return AppConfig(**sample_config_dict)


@pytest.fixture
def classifier_config() -> ClassifierConfig:
    """Return the default classifier thresholds and keyword lists."""
    return ClassifierConfig()


@pytest.fixture
def config_file(temp_config_dir: Path, sample_config_yaml: str) -> Path:
    """Create a temporary config file with valid content."""
    config_path = temp_config_dir / "config.yaml"
    config_path.write_text(sample_config_yaml)
    return config_path


@pytest.fixture
def set_config_env(config_file: Path) -> Generator[None, None, None]:
    """Set the TIDYINBOX_CONFIG_PATH environment variable."""
    old_value = os.environ.get("TIDYINBOX_CONFIG_PATH")
    os.environ["TIDYINBOX_CONFIG_PATH"] = str(config_file)
    yield
    if old_value is None:
        del os.environ["TIDYINBOX_CONFIG_PATH"]
    else:
        os.environ["TIDYINBOX_CONFIG_PATH"] = old_value


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    """Create a temporary data directory."""
    data = tmp_path / "data"
    data.mkdir()
    return data


@pytest.fixture
async def store(data_dir: Path) -> AsyncGenerator[DatabaseStore, None]:
    """Return an initialized DatabaseStore."""
    s = DatabaseStore(data_dir / "test.db")
    await s.initialize()
    yield s
