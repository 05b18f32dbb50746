"""Configuration management module."""

import copy
import json
import logging
import os
from enum import Enum
from typing import Dict, Optional, Any
from pathlib import Path

from .security import SecureFileHandler, validate_file_path_input
from .error_handler import ValidationError, ConfigurationError, FileSystemError


DEFAULT_SOURCE_URL = "https://www8.cao.go.jp/chosei/shukujitsu/syukujitsu.csv"

logger = logging.getLogger(__name__)


class CacheStrategy(Enum):
    """キャッシュ更新戦略"""
    TIME_BASED = "time_based"
    ETAG_BASED = "etag_based"
    HYBRID = "hybrid"
    ALWAYS_REFRESH = "always_refresh"
    NEVER_REFRESH = "never_refresh"

    @classmethod
    def from_value(cls, value: Any) -> 'CacheStrategy':
        """Accept enum members, snake_case values or CamelCase names."""
        if isinstance(value, cls):
            return value
        normalized = str(value).strip()
        for member in cls:
            if normalized.lower() in (member.value, member.name.lower(),
                                      member.value.replace('_', '')):
                return member
        raise ConfigurationError(
            f"Unknown cache strategy: {value} "
            f"(expected one of: {', '.join(m.value for m in cls)})",
            config_key='cache.strategy'
        )


class Config:
    """Configuration management for the application."""

    DEFAULT_CONFIG = {
        'holiday_data': {
            'source_url': DEFAULT_SOURCE_URL,
            'cache_file': None  # resolved to ~/.holidays-jp/cache/holidays.json
        },
        'cache': {
            'strategy': CacheStrategy.HYBRID.value,
            'max_age_hours': 168,  # 7 days
            'etag_check_interval_hours': 24,
            'force_refresh_on_startup': False
        },
        'http': {
            'timeout': 30,
            'etag_timeout': 10,
            'max_retries': 3,
            'allow_insecure': False
        }
    }

    ENV_OVERRIDES = {
        'HOLIDAYS_JP_SOURCE_URL': ('holiday_data.source_url', str),
        'HOLIDAYS_JP_CACHE_FILE': ('holiday_data.cache_file', str),
        'HOLIDAYS_JP_CACHE_STRATEGY': ('cache.strategy', str),
        'HOLIDAYS_JP_MAX_AGE_HOURS': ('cache.max_age_hours', int),
    }

    def __init__(self, config_file: Optional[str] = None):
        """Initialize configuration.

        Args:
            config_file: Path to configuration file (optional)
        """
        self.config_file = config_file or self._get_default_config_path()
        self.config = copy.deepcopy(self.DEFAULT_CONFIG)
        self.load_config()
        self.validate()

    @staticmethod
    def get_app_dir() -> Path:
        """Get the per-user application directory."""
        return Path.home() / '.holidays-jp'

    def _get_default_config_path(self) -> str:
        """Get default configuration file path.

        Returns:
            Default config file path
        """
        return str(self.get_app_dir() / 'config.json')

    def load_config(self):
        """Load configuration from file and environment variables."""
        if os.path.exists(self.config_file):
            try:
                content = SecureFileHandler.read_secure_file(self.config_file)
                file_config = json.loads(content)
                if not isinstance(file_config, dict):
                    raise ValidationError("Configuration root must be a JSON object")
                self._merge_config(file_config)
            except (json.JSONDecodeError, ValidationError) as e:
                logger.warning(f"Failed to load config file {self.config_file}: {e}")

        for env_name, (key_path, converter) in self.ENV_OVERRIDES.items():
            raw_value = os.getenv(env_name)
            if not raw_value:
                continue
            try:
                self.set(key_path, converter(raw_value))
            except ValueError:
                raise ConfigurationError(
                    f"Invalid value for {env_name}: {raw_value}",
                    config_key=key_path
                )

    def save_config(self):
        """Save current configuration to file."""
        try:
            content = json.dumps(self.config, indent=2, ensure_ascii=False)
            SecureFileHandler.write_secure_file(
                self.config_file,
                content,
                permissions=SecureFileHandler.READABLE_FILE_PERMISSIONS
            )
        except (ValidationError, FileSystemError) as e:
            logger.warning(f"Failed to save config file {self.config_file}: {e}")

    def validate(self):
        """Validate values that the cache layer depends on.

        Raises:
            ConfigurationError: If a value is out of range or unknown
        """
        CacheStrategy.from_value(self.get('cache.strategy'))

        for key_path in ('cache.max_age_hours', 'cache.etag_check_interval_hours',
                         'http.timeout', 'http.etag_timeout'):
            value = self.get(key_path)
            if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
                raise ConfigurationError(
                    f"{key_path} must be a positive number, got: {value!r}",
                    config_key=key_path
                )

        max_retries = self.get('http.max_retries')
        if isinstance(max_retries, bool) or not isinstance(max_retries, int) or max_retries < 0:
            raise ConfigurationError(
                f"http.max_retries must be a non-negative integer, got: {max_retries!r}",
                config_key='http.max_retries'
            )

    def _merge_config(self, new_config: Dict[str, Any]):
        """Merge new configuration with existing config.

        Args:
            new_config: New configuration to merge
        """
        def merge_dict(base: Dict, update: Dict):
            for key, value in update.items():
                if key in base and isinstance(base[key], dict) and isinstance(value, dict):
                    merge_dict(base[key], value)
                else:
                    base[key] = value

        merge_dict(self.config, new_config)

    def get(self, key_path: str, default: Any = None) -> Any:
        """Get configuration value by key path.

        Args:
            key_path: Dot-separated key path (e.g., 'cache.strategy')
            default: Default value if key not found

        Returns:
            Configuration value
        """
        keys = key_path.split('.')
        value = self.config

        try:
            for key in keys:
                value = value[key]
            return value
        except (KeyError, TypeError):
            return default

    def set(self, key_path: str, value: Any):
        """Set configuration value by key path.

        Args:
            key_path: Dot-separated key path
            value: Value to set
        """
        keys = key_path.split('.')
        config = self.config

        for key in keys[:-1]:
            if key not in config:
                config[key] = {}
            config = config[key]

        config[keys[-1]] = value

    @property
    def source_url(self) -> str:
        return self.get('holiday_data.source_url')

    @property
    def cache_file(self) -> str:
        cache_file = self.get('holiday_data.cache_file')
        if not cache_file:
            return str(self.get_app_dir() / 'cache' / 'holidays.json')
        return str(Path(cache_file).expanduser())

    @property
    def cache_strategy(self) -> CacheStrategy:
        return CacheStrategy.from_value(self.get('cache.strategy'))

    def get_cache_config(self) -> Dict[str, Any]:
        """Get cache configuration.

        Returns:
            Cache configuration dictionary
        """
        return self.config.get('cache', {})

    def get_http_config(self) -> Dict[str, Any]:
        """Get HTTP configuration.

        Returns:
            HTTP configuration dictionary
        """
        return self.config.get('http', {})


def resolve_cache_path(config: Config) -> Path:
    """Validate and resolve the configured cache file path."""
    return validate_file_path_input(config.cache_file, allow_create=True)
