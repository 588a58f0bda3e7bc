"""Unit tests for retention/config_manager.py"""

import logging
import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
import yaml

_python_dir = Path(__file__).parent.parent / "python"
if str(_python_dir.absolute()) not in sys.path:
    sys.path.insert(0, str(_python_dir.absolute()))

from retention.config_manager import ConfigManager, ConfigValidationError, compute_deadline
from retention.error_utils import ConfigurationError

NOW = datetime(2026, 3, 31, 12, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def clean_environment():
    """Keep registry settings from the host environment out of the tests"""
    names = ["CONFIG_FILE", "REGISTRY_URL", "REGISTRY_USERNAME", "REGISTRY_PASSWORD",
             "REGISTRY_AUTH_SECRET", "REGISTRY_AUTH_NAMESPACE"]
    saved = {name: os.environ.pop(name) for name in names if name in os.environ}
    yield
    for name in names:
        os.environ.pop(name, None)
    os.environ.update(saved)


@pytest.fixture
def write_config(tmp_path):
    def _write(config):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.dump(config))
        return str(path)

    return _write


class TestComputeDeadline:
    """Tests for compute_deadline function"""

    def test_days(self):
        assert compute_deadline(NOW, days=10) == datetime(2026, 3, 21, 12, 0, tzinfo=timezone.utc)

    def test_combined_calendar_units(self):
        assert compute_deadline(NOW, years=1, months=2, days=3) == datetime(2025, 1, 28, 12, 0, tzinfo=timezone.utc)

    def test_month_end_is_clamped(self):
        assert compute_deadline(NOW, months=1) == datetime(2026, 2, 28, 12, 0, tzinfo=timezone.utc)

    def test_zero_age_is_now(self):
        assert compute_deadline(NOW) == NOW


class TestConfigManagerInitialization:
    """Tests for ConfigManager initialization"""

    def test_loads_default_config_when_file_not_found(self):
        cm = ConfigManager(config_file="/nonexistent/config.yaml")

        assert cm.get_registry_url() == "http://localhost:5000"
        assert cm.get_repository_limit() == 5
        assert cm.get_repository_pattern() == ".*"
        assert cm.get_tag_pattern() == ".*"
        assert cm.get_exclude_tag_pattern() == ""
        assert cm.get_age() == {"years": 0, "months": 0, "days": 0}
        assert cm.get_latest() == 1
        assert cm.is_dry_run() is False
        assert cm.is_insecure() is False
        assert cm.get_registry_username() is None

    def test_loads_config_from_yaml_file(self, write_config):
        path = write_config({
            "registry": {"url": "https://registry.example.com/"},
            "retention": {"months": 3, "latest": 2, "tag_pattern": "^release-"},
        })

        cm = ConfigManager(config_file=path)

        assert cm.get_registry_url() == "https://registry.example.com"
        assert cm.get_age() == {"years": 0, "months": 3, "days": 0}
        assert cm.get_latest() == 2
        assert cm.get_tag_pattern() == "^release-"
        # Untouched keys keep their defaults
        assert cm.get_repository_limit() == 5

    def test_config_file_from_environment(self, write_config):
        path = write_config({"retention": {"latest": 7}})
        with patch.dict(os.environ, {"CONFIG_FILE": path}):
            cm = ConfigManager()
        assert cm.get_latest() == 7

    def test_invalid_yaml_raises(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("registry: [unclosed")

        with pytest.raises(ConfigValidationError, match="Error loading config file"):
            ConfigManager(config_file=str(path))

    def test_non_mapping_yaml_raises(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("- just\n- a list\n")

        with pytest.raises(ConfigValidationError, match="mapping"):
            ConfigManager(config_file=str(path))

    def test_empty_file_uses_defaults(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("")
        assert ConfigManager(config_file=str(path)).get_latest() == 1


class TestOverrides:
    """Tests for environment and command-line overrides"""

    def test_environment_overrides_file(self, write_config):
        path = write_config({"registry": {"url": "http://file-registry:5000", "username": "file-user"}})
        env = {"REGISTRY_URL": "https://env-registry", "REGISTRY_PASSWORD": "secret"}
        with patch.dict(os.environ, env):
            cm = ConfigManager(config_file=path)

        assert cm.get_registry_url() == "https://env-registry"
        assert cm.get_registry_username() == "file-user"
        assert cm.get_registry_password() == "secret"

    def test_command_line_overrides_environment(self):
        with patch.dict(os.environ, {"REGISTRY_URL": "https://env-registry"}):
            cm = ConfigManager(
                config_file="/nonexistent/config.yaml",
                overrides={"registry.url": "https://cli-registry", "retention.days": 30},
            )

        assert cm.get_registry_url() == "https://cli-registry"
        assert cm.get_age()["days"] == 30

    def test_none_overrides_are_ignored(self, write_config):
        path = write_config({"retention": {"latest": 4, "dry_run": True}})
        cm = ConfigManager(config_file=path, overrides={"retention.latest": None, "retention.dry_run": None})

        assert cm.get_latest() == 4
        assert cm.is_dry_run() is True

    def test_string_booleans(self, write_config):
        path = write_config({"retention": {"dry_run": "yes"}, "registry": {"insecure": "false"}})
        cm = ConfigManager(config_file=path)

        assert cm.is_dry_run() is True
        assert cm.is_insecure() is False


class TestValidation:
    """Tests for validate_config"""

    def test_defaults_are_valid(self):
        ConfigManager(config_file="/nonexistent/config.yaml").validate_config()

    @pytest.mark.parametrize("url", ["localhost:5000", "ftp://registry", ""])
    def test_rejects_invalid_registry_url(self, url):
        with pytest.raises(ConfigValidationError, match="Registry URL"):
            ConfigManager(config_file="/nonexistent/config.yaml", overrides={"registry.url": url or " "})

    def test_rejects_negative_ages_and_latest(self):
        with pytest.raises(ConfigValidationError) as exc_info:
            ConfigManager(
                config_file="/nonexistent/config.yaml",
                overrides={"retention.days": -1, "retention.latest": -2},
            )

        message = str(exc_info.value)
        assert "retention.days" in message
        assert "retention.latest" in message

    def test_rejects_invalid_regex(self):
        with pytest.raises(ConfigValidationError, match="retention.tag_pattern"):
            ConfigManager(config_file="/nonexistent/config.yaml", overrides={"retention.tag_pattern": "v[0-9"})

    def test_rejects_non_integer_values(self, write_config):
        path = write_config({"retention": {"latest": "many"}})
        with pytest.raises(ConfigValidationError, match="retention.latest must be an integer"):
            ConfigManager(config_file=path)

    def test_rejects_boolean_as_integer(self, write_config):
        path = write_config({"retention": {"repositories": True}})
        with pytest.raises(ConfigValidationError, match="retention.repositories"):
            ConfigManager(config_file=path)

    def test_rejects_max_delay_below_initial_delay(self, write_config):
        path = write_config({"retry": {"initial_delay": 10, "max_delay": 1}})
        with pytest.raises(ConfigValidationError, match="retry.max_delay"):
            ConfigManager(config_file=path)

    def test_latest_zero_only_warns(self, caplog):
        with caplog.at_level(logging.WARNING):
            cm = ConfigManager(config_file="/nonexistent/config.yaml", overrides={"retention.latest": 0})

        assert cm.get_latest() == 0
        assert "retention.latest is 0" in caplog.text

    def test_validation_can_be_skipped(self):
        cm = ConfigManager(config_file="/nonexistent/config.yaml", overrides={"retention.days": -1}, validate=False)
        assert cm.get_age()["days"] == -1


class TestBuildPolicy:
    """Tests for build_policy"""

    def test_builds_frozen_policy(self):
        cm = ConfigManager(
            config_file="/nonexistent/config.yaml",
            overrides={
                "retention.repository_pattern": "^team/",
                "retention.tag_pattern": "^v",
                "retention.exclude_tag_pattern": "rc",
                "retention.months": 1,
                "retention.latest": 3,
                "retention.dry_run": True,
                "retention.repositories": 50,
                "analysis.max_workers": 8,
            },
        )

        policy = cm.build_policy(now=NOW)

        assert policy.repository_pattern.pattern == "^team/"
        assert policy.tag_pattern.pattern == "^v"
        assert policy.exclude_tag_pattern.pattern == "rc"
        assert policy.deadline == datetime(2026, 2, 28, 12, 0, tzinfo=timezone.utc)
        assert policy.latest == 3
        assert policy.dry_run is True
        assert policy.repository_limit == 50
        assert policy.max_workers == 8
        with pytest.raises(Exception):
            policy.latest = 10

    def test_numeric_yaml_patterns_are_read_as_text(self, write_config):
        path = write_config({"retention": {"tag_pattern": 1, "exclude_tag_pattern": 0}})

        policy = ConfigManager(config_file=path).build_policy(now=NOW)

        assert policy.tag_pattern.pattern == "1"
        assert policy.exclude_tag_pattern.pattern == "0"
        assert policy.tag_pattern.search("v1.2")

    def test_empty_exclude_pattern_disables_exclusion(self):
        policy = ConfigManager(config_file="/nonexistent/config.yaml").build_policy(now=NOW)
        assert policy.exclude_tag_pattern is None
        assert policy.deadline == NOW

    def test_invalid_pattern_without_validation_raises_configuration_error(self):
        cm = ConfigManager(
            config_file="/nonexistent/config.yaml",
            overrides={"retention.exclude_tag_pattern": "(unclosed"},
            validate=False,
        )
        with pytest.raises(ConfigurationError):
            cm.build_policy(now=NOW)

    def test_default_now_is_current_utc_time(self):
        policy = ConfigManager(config_file="/nonexistent/config.yaml").build_policy()
        assert policy.deadline.tzinfo is not None
        assert abs((datetime.now(timezone.utc) - policy.deadline).total_seconds()) < 60


class TestLogConfig:
    """Tests for log_config"""

    def test_password_is_redacted(self):
        cm = ConfigManager(
            config_file="/nonexistent/config.yaml",
            overrides={"registry.username": "ci", "registry.password": "hunter2"},
            validate=False,
        )
        logger = MagicMock()

        cm.log_config(logger)

        logged = " ".join(str(call.args[0]) for call in logger.info.call_args_list)
        assert "hunter2" not in logged
        assert "ci" in logged
        assert "********" in logged
