#!/usr/bin/env python3
"""
Configuration Manager for the registry retention pruner

This module handles loading configuration from config.yaml, environment
variables and command-line overrides, validating it, and freezing it into the
RetentionPolicy that is passed explicitly to every pipeline stage.
"""

import copy
import logging
import os
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Pattern

import yaml
from dateutil.relativedelta import relativedelta

from retention.error_utils import ConfigurationError
from retention.filters import compile_pattern


class ConfigValidationError(ConfigurationError):
    """Raised when configuration validation fails"""

    def __init__(self, message: str):
        super().__init__(message, hints=["Check config-example.yaml for the expected keys and types"])


DEFAULT_CONFIG: Dict[str, Any] = {
    "registry": {
        "url": "http://localhost:5000",
        "username": None,
        "password": None,
        "insecure": False,
        "auth_secret": None,
        "auth_namespace": "default",
    },
    "retention": {
        "repositories": 5,
        "repository_pattern": ".*",
        "tag_pattern": ".*",
        "exclude_tag_pattern": "",
        "days": 0,
        "months": 0,
        "years": 0,
        "latest": 1,
        "dry_run": False,
    },
    "analysis": {"max_workers": 4, "timeout": 60},
    "retry": {
        "max_retries": 3,
        "initial_delay": 1.0,
        "max_delay": 60.0,
        "exponential_base": 2.0,
        "jitter": True,
    },
    "rate_limit": {
        "enabled": True,
        "requests_per_second": 10.0,  # Max requests per second
        "burst_size": 20,  # Allow burst of up to N requests
    },
}

# Environment variable -> (section, key)
ENV_OVERRIDES = {
    "REGISTRY_URL": ("registry", "url"),
    "REGISTRY_USERNAME": ("registry", "username"),
    "REGISTRY_PASSWORD": ("registry", "password"),
    "REGISTRY_AUTH_SECRET": ("registry", "auth_secret"),
    "REGISTRY_AUTH_NAMESPACE": ("registry", "auth_namespace"),
}


def compute_deadline(now: datetime, years: int = 0, months: int = 0, days: int = 0) -> datetime:
    """Return now minus the configured age, using calendar arithmetic.

    Images created strictly before the deadline are expired.
    """
    return now - relativedelta(years=years, months=months, days=days)


@dataclass(frozen=True)
class RetentionPolicy:
    """Run-level retention settings, fixed before classification begins"""

    repository_pattern: Pattern
    tag_pattern: Pattern
    exclude_tag_pattern: Optional[Pattern]
    deadline: datetime
    latest: int
    dry_run: bool
    repository_limit: int = 5
    max_workers: int = 1


class ConfigManager:
    """Manages configuration for the registry retention pruner"""

    def __init__(self, config_file: str = None, overrides: Optional[Dict[str, Any]] = None, validate: bool = True):
        """Initialize ConfigManager

        Args:
            config_file: Path to configuration YAML file (defaults to CONFIG_FILE env var or config.yaml)
            overrides: Dotted-key values from the command line, e.g. {"retention.latest": 3}.
                None values are ignored.
            validate: If True, validate configuration on initialization
        """
        if config_file is None:
            config_file = os.environ.get("CONFIG_FILE", "config.yaml")
        self.config_file = config_file
        self.config = self._load_config()
        self._apply_environment()
        if overrides:
            self.apply_overrides(overrides)

        if validate:
            self.validate_config()

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from YAML file with defaults"""
        default_config = copy.deepcopy(DEFAULT_CONFIG)

        if not os.path.exists(self.config_file):
            logging.warning(f"Config file {self.config_file} not found, using defaults")
            return default_config

        try:
            with open(self.config_file, "r") as f:
                user_config = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigValidationError(f"Error loading config file {self.config_file}: {e}")

        if not isinstance(user_config, dict):
            raise ConfigValidationError(f"Config file {self.config_file} must contain a mapping at the top level")
        return self._merge_config(default_config, user_config)

    def _merge_config(self, default: Dict[str, Any], user: Dict[str, Any]) -> Dict[str, Any]:
        """Recursively merge user config with defaults"""
        result = default.copy()
        for key, value in user.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_config(result[key], value)
            else:
                result[key] = value
        return result

    def _apply_environment(self) -> None:
        for env_name, (section, key) in ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value:
                self.config.setdefault(section, {})[key] = value

    def apply_overrides(self, overrides: Dict[str, Any]) -> None:
        """Apply dotted-key overrides; None means "not given" and is skipped"""
        for dotted_key, value in overrides.items():
            if value is None:
                continue
            section, _, key = dotted_key.partition(".")
            self.config.setdefault(section, {})[key] = value

    def _get(self, section: str, key: str) -> Any:
        return self.config.get(section, {}).get(key, DEFAULT_CONFIG[section][key])

    def _get_int(self, section: str, key: str) -> int:
        value = self._get(section, key)
        if isinstance(value, bool):
            raise ConfigValidationError(f"{section}.{key} must be an integer, got: {value}")
        try:
            return int(value)
        except (ValueError, TypeError):
            raise ConfigValidationError(
                f"{section}.{key} must be an integer, got: {value} (type: {type(value).__name__})"
            )

    def _get_float(self, section: str, key: str) -> float:
        value = self._get(section, key)
        try:
            return float(value)
        except (ValueError, TypeError):
            raise ConfigValidationError(
                f"{section}.{key} must be a number, got: {value} (type: {type(value).__name__})"
            )

    def _get_bool(self, section: str, key: str) -> bool:
        value = self._get(section, key)
        if isinstance(value, str):
            return value.strip().lower() in ("true", "1", "yes", "on")
        return bool(value)

    # Registry configuration
    def get_registry_url(self) -> str:
        return str(self._get("registry", "url") or "").rstrip("/")

    def get_registry_username(self) -> Optional[str]:
        return self._get("registry", "username") or None

    def get_registry_password(self) -> Optional[str]:
        return self._get("registry", "password") or None

    def is_insecure(self) -> bool:
        return self._get_bool("registry", "insecure")

    def get_auth_secret(self) -> Optional[str]:
        return self._get("registry", "auth_secret") or None

    def get_auth_namespace(self) -> str:
        return self._get("registry", "auth_namespace") or "default"

    # Retention configuration
    def get_repository_limit(self) -> int:
        return self._get_int("retention", "repositories")

    def _get_pattern(self, key: str) -> str:
        """Pattern text; YAML scalars such as ``tag_pattern: 1`` are read as text"""
        value = self._get("retention", key)
        return "" if value is None else str(value)

    def get_repository_pattern(self) -> str:
        return self._get_pattern("repository_pattern")

    def get_tag_pattern(self) -> str:
        return self._get_pattern("tag_pattern")

    def get_exclude_tag_pattern(self) -> str:
        return self._get_pattern("exclude_tag_pattern")

    def get_age(self) -> Dict[str, int]:
        """Get the configured maximum age as years/months/days"""
        return {
            "years": self._get_int("retention", "years"),
            "months": self._get_int("retention", "months"),
            "days": self._get_int("retention", "days"),
        }

    def get_latest(self) -> int:
        return self._get_int("retention", "latest")

    def is_dry_run(self) -> bool:
        return self._get_bool("retention", "dry_run")

    # Analysis configuration
    def get_max_workers(self) -> int:
        return self._get_int("analysis", "max_workers")

    def get_timeout(self) -> int:
        return self._get_int("analysis", "timeout")

    # Retry configuration
    def get_max_retries(self) -> int:
        return self._get_int("retry", "max_retries")

    def get_retry_initial_delay(self) -> float:
        return self._get_float("retry", "initial_delay")

    def get_retry_max_delay(self) -> float:
        return self._get_float("retry", "max_delay")

    def get_retry_exponential_base(self) -> float:
        return self._get_float("retry", "exponential_base")

    def get_retry_jitter(self) -> bool:
        return self._get_bool("retry", "jitter")

    # Rate limiting
    def get_rate_limit_enabled(self) -> bool:
        return self._get_bool("rate_limit", "enabled")

    def get_rate_limit_rps(self) -> float:
        return self._get_float("rate_limit", "requests_per_second")

    def get_rate_limit_burst(self) -> int:
        return self._get_int("rate_limit", "burst_size")

    def validate_config(self) -> None:
        """Validate configuration values

        Raises:
            ConfigValidationError: If configuration is invalid
        """
        errors = []
        warnings = []

        def collect(getter):
            try:
                return getter()
            except ConfigValidationError as e:
                errors.append(e.message)
                return None

        registry_url = self.get_registry_url()
        if not registry_url.strip():
            errors.append("Registry URL is required and cannot be empty")
        elif not self._is_valid_registry_url(registry_url):
            errors.append(f"Registry URL '{registry_url}' is invalid (expected format: http[s]://hostname[:port])")
        elif registry_url.startswith("http://") and self.get_registry_password():
            warnings.append("Credentials will be sent over plain HTTP")

        limit = collect(self.get_repository_limit)
        if limit is not None and limit < 1:
            errors.append(f"retention.repositories must be a positive integer, got: {limit}")

        for key in ("repository_pattern", "tag_pattern", "exclude_tag_pattern"):
            pattern = self._get_pattern(key)
            try:
                re.compile(pattern)
            except re.error as e:
                errors.append(f"retention.{key} is not a valid regular expression ({pattern!r}): {e}")

        for key in ("years", "months", "days"):
            value = collect(lambda key=key: self._get_int("retention", key))
            if value is not None and value < 0:
                errors.append(f"retention.{key} must be a non-negative integer, got: {value}")

        latest = collect(self.get_latest)
        if latest is not None and latest < 0:
            errors.append(f"retention.latest must be a non-negative integer, got: {latest}")
        elif latest == 0:
            warnings.append("retention.latest is 0: every expired matching tag may be deleted")

        max_workers = collect(self.get_max_workers)
        if max_workers is not None and max_workers < 1:
            errors.append(f"analysis.max_workers must be a positive integer, got: {max_workers}")
        elif max_workers is not None and max_workers > 100:
            warnings.append(f"max_workers is very high ({max_workers}), this may overload the registry")

        timeout = collect(self.get_timeout)
        if timeout is not None and timeout < 1:
            errors.append(f"analysis.timeout must be a positive integer (seconds), got: {timeout}")

        max_retries = collect(self.get_max_retries)
        if max_retries is not None and max_retries < 0:
            errors.append(f"retry.max_retries must be a non-negative integer, got: {max_retries}")
        elif max_retries is not None and max_retries > 10:
            warnings.append(f"max_retries is very high ({max_retries}), operations may take a long time")

        initial_delay = collect(self.get_retry_initial_delay)
        if initial_delay is not None and initial_delay < 0:
            errors.append(f"retry.initial_delay must be a non-negative number, got: {initial_delay}")

        max_delay = collect(self.get_retry_max_delay)
        if max_delay is not None and max_delay < 0:
            errors.append(f"retry.max_delay must be a non-negative number, got: {max_delay}")
        elif max_delay is not None and initial_delay is not None and max_delay < initial_delay:
            errors.append(f"retry.max_delay ({max_delay}) must be >= retry.initial_delay ({initial_delay})")

        exponential_base = collect(self.get_retry_exponential_base)
        if exponential_base is not None and exponential_base < 1.0:
            errors.append(f"retry.exponential_base must be >= 1.0, got: {exponential_base}")

        if self.get_rate_limit_enabled():
            rps = collect(self.get_rate_limit_rps)
            if rps is not None and rps <= 0:
                errors.append(f"rate_limit.requests_per_second must be positive, got: {rps}")
            burst = collect(self.get_rate_limit_burst)
            if burst is not None and burst < 1:
                errors.append(f"rate_limit.burst_size must be a positive integer, got: {burst}")

        for warning in warnings:
            logging.warning(f"Configuration warning: {warning}")

        if errors:
            error_msg = "Configuration validation failed:\n  " + "\n  ".join(errors)
            logging.error(error_msg)
            raise ConfigValidationError(error_msg)

    def _is_valid_registry_url(self, url: str) -> bool:
        """Validate registry URL format"""
        pattern = r"^https?://[a-zA-Z0-9]([a-zA-Z0-9\-\.]*[a-zA-Z0-9])?(:[0-9]{1,5})?(/.*)?$"
        return bool(re.match(pattern, url))

    def build_policy(self, now: Optional[datetime] = None) -> RetentionPolicy:
        """Freeze the configuration into the policy used for the whole run

        Args:
            now: Reference time for the deadline (defaults to the current UTC time)

        Raises:
            ConfigurationError: If a pattern does not compile or a value has the wrong type
        """
        now = now or datetime.now(timezone.utc)
        return RetentionPolicy(
            repository_pattern=compile_pattern("repository_pattern", self.get_repository_pattern()),
            tag_pattern=compile_pattern("tag_pattern", self.get_tag_pattern()),
            exclude_tag_pattern=compile_pattern("exclude_tag_pattern", self.get_exclude_tag_pattern(), allow_empty=True),
            deadline=compute_deadline(now, **self.get_age()),
            latest=self.get_latest(),
            dry_run=self.is_dry_run(),
            repository_limit=self.get_repository_limit(),
            max_workers=self.get_max_workers(),
        )

    def log_config(self, logger: logging.Logger) -> None:
        """Log current configuration with credentials redacted"""
        age = self.get_age()
        logger.info("Current Configuration:")
        logger.info(f"  Registry URL: {self.get_registry_url()}")
        logger.info(f"  Username: {self.get_registry_username() or 'Not set'}")
        password = self.get_registry_password()
        logger.info(f"  Password: {'*' * 8 if password else 'Not set'}")
        logger.info(f"  Insecure TLS: {self.is_insecure()}")
        logger.info(f"  Max Repositories: {self.get_repository_limit()}")
        logger.info(f"  Repository Pattern: {self.get_repository_pattern()}")
        logger.info(f"  Tag Pattern: {self.get_tag_pattern()}")
        logger.info(f"  Exclude Tag Pattern: {self.get_exclude_tag_pattern() or 'Not set'}")
        logger.info(f"  Max Age: {age['years']}y {age['months']}m {age['days']}d")
        logger.info(f"  Keep Latest: {self.get_latest()}")
        logger.info(f"  Dry Run: {self.is_dry_run()}")
        logger.info(f"  Max Workers: {self.get_max_workers()}")
