"""Configuration loader with YAML support and environment variable substitution."""

import copy
import os
import re
from typing import Any, Dict
from urllib.parse import urlparse

import yaml

DEFAULT_CONFIG: Dict[str, Any] = {
    'confluence': {
        'base_url': None,
        'auth_type': 'cookie',
        'cookie_file': '.cookies.json',
        'verify_ssl': True
    },
    'export': {
        'output_directory': './docs',
        'download_workers': 5,
        'progress_bars': True,
        'index_filename': 'INDEX.md',
        'front_matter': False,
        'report_path': None
    },
    'advanced': {
        'request_timeout': 30,
        'max_retries': 0,
        'rate_limit': 0.0
    },
    'logging': {}
}

AUTH_TYPES = ('cookie', 'basic', 'bearer')


class ConfigLoader:
    """Handles loading and validation of configuration files."""

    ENV_VAR_PATTERN = re.compile(r'\$\{([A-Za-z_][A-Za-z0-9_]*)\}')

    @classmethod
    def load(cls, config_path: str) -> Dict[str, Any]:
        """
        Load configuration from YAML file with environment variable substitution.

        Args:
            config_path: Path to YAML configuration file

        Returns:
            Parsed configuration dictionary

        Raises:
            FileNotFoundError: If config file doesn't exist
            yaml.YAMLError: If YAML parsing fails
        """
        if not os.path.exists(config_path):
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_path, 'r', encoding='utf-8') as f:
            config_data = yaml.safe_load(f)

        if config_data is None:
            config_data = {}
        if not isinstance(config_data, dict):
            raise ValueError("Configuration file must contain a dictionary")

        return cls._substitute_env_vars_recursive(config_data)

    @classmethod
    def load_with_defaults(cls, config_path: str, required: bool = False) -> Dict[str, Any]:
        """
        Load a configuration file on top of the defaults.

        Unless required, a missing file is not an error: the tool runs on
        defaults and CLI arguments alone.
        """
        config = copy.deepcopy(DEFAULT_CONFIG)
        if required or (config_path and os.path.exists(config_path)):
            cls._deep_update(config, cls.load(config_path))
        return config

    @classmethod
    def validate(cls, config: Dict[str, Any]) -> None:
        """
        Validate configuration for required fields and correct values.

        Args:
            config: Configuration dictionary to validate

        Raises:
            ValueError: If validation fails
        """
        auth_type = get_nested(config, 'confluence.auth_type', 'cookie')
        if auth_type not in AUTH_TYPES:
            raise ValueError("confluence.auth_type must be 'cookie', 'basic' or 'bearer'")

        if auth_type == 'basic':
            cls._validate_required_field(config, 'confluence.username')
            cls._validate_required_field(config, 'confluence.password')
        elif auth_type == 'bearer':
            cls._validate_required_field(config, 'confluence.api_token')

        # The base URL may also come from the page URL given on the command line
        base_url = get_nested(config, 'confluence.base_url')
        if base_url:
            cls._validate_url(base_url, 'confluence.base_url')

        output_dir = get_nested(config, 'export.output_directory')
        if not output_dir:
            raise ValueError("Missing required configuration: export.output_directory")
        if os.path.exists(output_dir) and not os.path.isdir(output_dir):
            raise ValueError(f"export.output_directory '{output_dir}' is not a directory")

        workers = get_nested(config, 'export.download_workers', 5)
        if not isinstance(workers, int) or isinstance(workers, bool) or workers < 1:
            raise ValueError("export.download_workers must be a positive integer")

        index_filename = get_nested(config, 'export.index_filename', 'INDEX.md')
        if not index_filename or '/' in index_filename or '\\' in index_filename:
            raise ValueError("export.index_filename must be a plain file name")

        timeout = get_nested(config, 'advanced.request_timeout', 30)
        if not isinstance(timeout, (int, float)) or timeout <= 0:
            raise ValueError("advanced.request_timeout must be a positive number")

        max_retries = get_nested(config, 'advanced.max_retries', 0)
        if not isinstance(max_retries, int) or max_retries < 0:
            raise ValueError("advanced.max_retries must be a non-negative integer")

        rate_limit = get_nested(config, 'advanced.rate_limit', 0.0)
        if not isinstance(rate_limit, (int, float)) or rate_limit < 0:
            raise ValueError("advanced.rate_limit must be a non-negative number")

    @classmethod
    def merge_with_args(cls, config: Dict[str, Any], args) -> Dict[str, Any]:
        """
        Merge configuration file with CLI arguments.
        CLI arguments take precedence over config file values.

        Args:
            config: Base configuration dictionary
            args: CLI arguments with attributes matching config keys

        Returns:
            Merged configuration dictionary
        """
        merged = copy.deepcopy(config)

        for section in ('confluence', 'export', 'advanced', 'logging'):
            if section not in merged or merged[section] is None:
                merged[section] = {}

        # Merge confluence settings
        if getattr(args, 'base_url', None):
            merged['confluence']['base_url'] = args.base_url

        if getattr(args, 'auth_type', None):
            merged['confluence']['auth_type'] = args.auth_type

        if getattr(args, 'cookie_file', None):
            merged['confluence']['cookie_file'] = args.cookie_file

        if getattr(args, 'insecure', False):
            merged['confluence']['verify_ssl'] = False

        # Merge export settings
        if getattr(args, 'output_dir', None):
            merged['export']['output_directory'] = args.output_dir

        if getattr(args, 'workers', None):
            merged['export']['download_workers'] = args.workers

        if getattr(args, 'no_progress', False):
            merged['export']['progress_bars'] = False

        if getattr(args, 'front_matter', False):
            merged['export']['front_matter'] = True

        # Merge advanced settings
        if getattr(args, 'timeout', None):
            merged['advanced']['request_timeout'] = args.timeout

        # Merge reporting and logging
        if getattr(args, 'report', None):
            merged['export']['report_path'] = args.report

        if getattr(args, 'log_file', None):
            merged['logging']['file'] = args.log_file

        verbose = getattr(args, 'verbose', 0) or 0
        if verbose >= 2:
            merged['logging']['level'] = 'DEBUG'
        elif verbose == 1:
            merged['logging']['level'] = 'INFO'

        return merged

    @classmethod
    def _deep_update(cls, base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
        for key, value in overrides.items():
            if isinstance(value, dict) and isinstance(base.get(key), dict):
                cls._deep_update(base[key], value)
            else:
                base[key] = value
        return base

    @classmethod
    def _substitute_env_vars_recursive(cls, data: Any) -> Any:
        """Recursively substitute environment variables in data structure."""
        if isinstance(data, dict):
            return {key: cls._substitute_env_vars_recursive(value) for key, value in data.items()}
        elif isinstance(data, list):
            return [cls._substitute_env_vars_recursive(item) for item in data]
        elif isinstance(data, str):
            return cls._substitute_env_vars(data)
        else:
            return data

    @classmethod
    def _substitute_env_vars(cls, value: str) -> str:
        """Substitute environment variables in a string value."""
        def replace_match(match):
            var_name = match.group(1)
            env_value = os.getenv(var_name)
            return env_value if env_value is not None else match.group(0)

        return cls.ENV_VAR_PATTERN.sub(replace_match, value)

    @staticmethod
    def _validate_required_field(config_section: dict, field: str) -> None:
        """Validate that a required field exists and has a value."""
        value = get_nested(config_section, field)
        if value is None or value == '':
            raise ValueError(f"Missing required configuration: {field}")

        if isinstance(value, str) and '${' in value:
            match = ConfigLoader.ENV_VAR_PATTERN.search(value)
            var_name = match.group(1) if match else value
            raise ValueError(
                f"Configuration field '{field}' contains unsubstituted environment variable: {value}. "
                f"Please set the {var_name} environment variable or provide a value in config file."
            )

    @staticmethod
    def _validate_url(url: str, field_name: str) -> None:
        """Validate URL format."""
        parsed = urlparse(url)
        if not parsed.scheme or parsed.scheme not in ['http', 'https']:
            raise ValueError(f"{field_name} must use http or https scheme: {url}")
        if not parsed.netloc:
            raise ValueError(f"{field_name} missing hostname: {url}")


def get_nested(config: dict, path: str, default: Any = None) -> Any:
    """Safely retrieve nested configuration values using dot notation.

    Args:
        config: Configuration dictionary
        path: Dot-separated path (e.g., "confluence.base_url")
        default: Default value if path doesn't exist

    Returns:
        Value at the nested path or default
    """
    keys = path.split('.')
    value = config

    for key in keys:
        if isinstance(value, dict) and key in value:
            value = value[key]
        else:
            return default

    return value


__all__ = ['ConfigLoader', 'DEFAULT_CONFIG', 'get_nested']
