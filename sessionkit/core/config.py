"""Configuration management for SessionKit.

This module provides configuration constants and the :class:`AppConfig` class
which merges defaults with values from an optional YAML file
(``.sessionkit.yml`` in the working directory).

Configuration file
------------------
.. code-block:: yaml

    auth:
      token_url: https://example.auth0.com/oauth/token
      client_id: ClientId
      client_secret: ClientSecret
      audience: AuthAudience
      timeout: 10
    engine:
      partner_id: 44f33add-5032-452c-9c23-82a903307a8e
      environment: staging
    user:
      product_id: ProductId
      org_id: OrgId
      user_id: UserId
      emr_id: EMRId
      email: user@example.com
      name: User Name
      geography: US
    app:
      app_id: com.example.recording
    log:
      dir: logs/
      file: sessions.jsonl

Only ``auth`` is validated here as far as presence goes; field level checks
live in :class:`~sessionkit.core.credentials.AuthSettings`.
"""

from pathlib import Path
from typing import Any, Dict, Optional

import yaml

CONFIG_FILE = '.sessionkit.yml'

# Token endpoint defaults
GRANT_TYPE = 'client_credentials'
TOKEN_TIMEOUT = 10.0

# Engine defaults
ENVIRONMENT = 'staging'

# Local lifecycle log
LOG_DIR = 'logs/'
LOG_FILE = 'sessions.jsonl'

# Keys forwarded to the engine when configuring the signed-in user
USER_CONFIGURATION_KEYS = (
    'product_id',
    'org_id',
    'user_id',
    'emr_id',
    'email',
    'name',
    'geography',
)


class AppConfig:
    """Application configuration management."""

    def __init__(self) -> None:
        """Initialize configuration with defaults."""
        self._config: Dict[str, Any] = {
            'environment': ENVIRONMENT,
            'log_dir': LOG_DIR,
        }
        self._load_yaml_config()

    def _load_yaml_config(self) -> None:
        """Load optional YAML configuration from project root."""
        config_path = Path.cwd() / CONFIG_FILE
        if not config_path.exists():
            return

        content = yaml.safe_load(config_path.read_text(encoding='utf-8'))
        if not content:
            return

        if not isinstance(content, dict):
            raise ValueError(f"Configuration in {CONFIG_FILE} must be a mapping")

        engine_config = content.get('engine')
        if isinstance(engine_config, dict) and engine_config.get('environment'):
            self._config['environment'] = engine_config['environment']

        for key, value in content.items():
            self._config[key] = value

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value.

        Args:
            key: Configuration key
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        return self._config.get(key, default)

    def set(self, key: str, value: Any) -> None:
        """Set configuration value.

        Args:
            key: Configuration key
            value: Configuration value
        """
        self._config[key] = value

    def _section(self, name: str) -> Optional[Dict[str, Any]]:
        section = self._config.get(name)
        if isinstance(section, dict):
            return section
        return None

    def get_auth_config(self) -> Optional[Dict[str, Any]]:
        """Get token endpoint configuration mapping, if present."""
        auth_config = self._section('auth')
        if auth_config is None:
            return None
        merged = {'grant_type': GRANT_TYPE, 'timeout': TOKEN_TIMEOUT}
        merged.update(auth_config)
        return merged

    def get_engine_config(self) -> Dict[str, Any]:
        """Get engine configuration with the environment always present."""
        engine_config = dict(self._section('engine') or {})
        engine_config['environment'] = self._config.get('environment', ENVIRONMENT)
        return engine_config

    def get_user_config(self) -> Dict[str, Any]:
        """Get the user settings forwarded to the engine.

        Unknown keys in the ``user`` section are dropped.
        """
        user_config = self._section('user') or {}
        return {
            key: user_config[key]
            for key in USER_CONFIGURATION_KEYS
            if user_config.get(key) is not None
        }

    def get_app_config(self) -> Dict[str, Any]:
        """Get application metadata overrides."""
        return dict(self._section('app') or {})

    def get_log_path(self, log_dir: Optional[Path] = None) -> Path:
        """Return the lifecycle log file path.

        The file name is taken from ``log.file`` and the directory from
        ``log.dir`` in ``.sessionkit.yml`` when present, otherwise from
        :data:`LOG_FILE` and :data:`LOG_DIR`.

        Args:
            log_dir: Directory that will contain the log file.  When
                ``None`` the configured directory is used.

        Returns:
            Path including the log filename.
        """
        log_config = self._section('log') or {}
        log_file = log_config.get('file', LOG_FILE)
        if log_dir is None:
            log_dir = Path(log_config.get('dir', self._config.get('log_dir', LOG_DIR)))
        return Path(log_dir) / log_file
