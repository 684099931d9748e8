"""Tests for configuration loading, validation and hot reload."""

import os
from pathlib import Path

import pytest

from tidyinbox.config import (
    get_config,
    load_config,
    reload_config_if_changed,
    resolve_config_path,
    validate_config_file,
)
from tidyinbox.config_schema import AppConfig
from tidyinbox.core.errors import ConfigLoadError, ConfigValidationError


def _bump_mtime(path: Path) -> None:
    stat = path.stat()
    os.utime(path, (stat.st_atime + 10, stat.st_mtime + 10))


class TestLoadConfig:
    def test_load_valid_config(self, config_file: Path) -> None:
        config = load_config(config_file)
        assert config.default_timezone == "Asia/Manila"
        assert config.sweeper.batch_delay_seconds == 0
        assert config.notifier.kind == "log"

    def test_defaults_fill_missing_sections(self, temp_config_dir: Path) -> None:
        path = temp_config_dir / "config.yaml"
        path.write_text("schema_version: 1\n")
        config = load_config(path)
        assert config.sweeper.interval_seconds == 60
        assert config.classifier.min_group_size == 3
        assert "invoice" in config.classifier.importance_keywords

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigLoadError, match="not found"):
            load_config(tmp_path / "missing.yaml")

    def test_invalid_yaml(self, temp_config_dir: Path) -> None:
        path = temp_config_dir / "config.yaml"
        path.write_text("sweeper: [unclosed\n")
        with pytest.raises(ConfigLoadError, match="Invalid YAML"):
            load_config(path)

    def test_top_level_must_be_mapping(self, temp_config_dir: Path) -> None:
        path = temp_config_dir / "config.yaml"
        path.write_text("- just\n- a list\n")
        with pytest.raises(ConfigLoadError, match="mapping"):
            load_config(path)

    def test_webhook_requires_url(self, temp_config_dir: Path) -> None:
        path = temp_config_dir / "config.yaml"
        path.write_text("notifier:\n  kind: webhook\n")
        with pytest.raises(ConfigValidationError, match="webhook_url"):
            load_config(path)

    def test_unknown_timezone(self, temp_config_dir: Path) -> None:
        path = temp_config_dir / "config.yaml"
        path.write_text("default_timezone: Mars/Olympus\n")
        with pytest.raises(ConfigValidationError, match="Unknown timezone"):
            load_config(path)

    def test_newer_schema_version_rejected(self, temp_config_dir: Path) -> None:
        path = temp_config_dir / "config.yaml"
        path.write_text("schema_version: 99\n")
        with pytest.raises(ConfigValidationError, match="Upgrade tidyinbox"):
            load_config(path)

    def test_age_thresholds_must_be_ordered(self) -> None:
        with pytest.raises(ValueError):
            AppConfig(classifier={"old_email_days": 60, "very_old_email_days": 30})

    @pytest.mark.parametrize(
        "classifier",
        [
            {"recent_email_days": 0},
            {"recent_email_days": 6},
            {"min_group_size": 1},
            {"min_group_size": 2},
            {"importance_keywords": []},
        ],
    )
    def test_classifier_minimums(self, classifier: dict) -> None:
        with pytest.raises(ValueError):
            AppConfig(classifier=classifier)

    def test_classifier_minimums_accepted(self) -> None:
        config = AppConfig(
            classifier={
                "recent_email_days": 7,
                "min_group_size": 3,
                "importance_keywords": ["invoice"],
            }
        )
        assert config.classifier.importance_keywords == ["invoice"]

    def test_empty_keywords_rejected_from_file(self, temp_config_dir: Path) -> None:
        path = temp_config_dir / "config.yaml"
        path.write_text("classifier:\n  importance_keywords: []\n")
        with pytest.raises(ConfigValidationError, match="importance_keywords"):
            load_config(path)

    def test_gateway_factory_format(self) -> None:
        with pytest.raises(ValueError):
            AppConfig(gateway={"factory": "no_colon"})


class TestConfigSingleton:
    def test_resolve_from_env(self, set_config_env: None, config_file: Path) -> None:
        assert resolve_config_path() == config_file

    def test_explicit_path_wins(self, set_config_env: None, tmp_path: Path) -> None:
        explicit = tmp_path / "other.yaml"
        assert resolve_config_path(explicit) == explicit

    def test_get_config_is_cached(self, set_config_env: None) -> None:
        assert get_config() is get_config()

    def test_reload_without_load_is_noop(self) -> None:
        assert reload_config_if_changed() is False

    def test_reload_unchanged(self, set_config_env: None) -> None:
        get_config()
        assert reload_config_if_changed() is False

    def test_reload_on_change(self, set_config_env: None, config_file: Path) -> None:
        assert get_config().sweeper.fetch_limit == 100

        config_file.write_text(config_file.read_text().replace("fetch_limit: 100", "fetch_limit: 25"))
        _bump_mtime(config_file)

        assert reload_config_if_changed() is True
        assert get_config().sweeper.fetch_limit == 25

    def test_invalid_reload_keeps_previous(self, set_config_env: None, config_file: Path) -> None:
        original = get_config()

        config_file.write_text("notifier:\n  kind: webhook\n")
        _bump_mtime(config_file)

        assert reload_config_if_changed() is False
        assert get_config() is original
        # The broken file is reported once, not on every tick
        assert reload_config_if_changed() is False


class TestValidateConfigFile:
    def test_valid(self, config_file: Path) -> None:
        ok, message = validate_config_file(config_file)
        assert ok is True
        assert message.startswith("Configuration valid (schema version 1)")
        assert "(not configured)" in message

    def test_missing(self, tmp_path: Path) -> None:
        ok, message = validate_config_file(tmp_path / "missing.yaml")
        assert ok is False
        assert message.startswith("Load error:")

    def test_invalid(self, temp_config_dir: Path) -> None:
        path = temp_config_dir / "config.yaml"
        path.write_text("sweeper:\n  interval_seconds: 1\n")
        ok, message = validate_config_file(path)
        assert ok is False
        assert message.startswith("Validation error:")
        assert "sweeper.interval_seconds" in message
