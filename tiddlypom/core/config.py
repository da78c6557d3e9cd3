"""Configuration management for tiddlypom."""

import logging
import yaml
from pathlib import Path
from typing import Dict, Any, List, Optional
from dataclasses import dataclass, asdict

from .interfaces import IConfigManager


logger = logging.getLogger(__name__)


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


@dataclass
class ServerConfig:
    """HTTP server configuration."""
    host: str = "127.0.0.1"
    port: int = 9090
    wiki_file: str = "index.html"
    etag_refresh_seconds: int = 3600
    etag_content_digest: bool = False
    tiddlywiki_version: str = "5.1.23"


@dataclass
class StorageConfig:
    """Storage-related configuration."""
    database_path: str = "database/tiddly.db"
    users_file: str = "users.json"
    tokens_file: str = "usertokens.json"
    busy_timeout_ms: int = 5000


@dataclass
class AuthConfig:
    """Authentication configuration."""
    pepper: str = ""
    cookie_name: str = "tiddlywiki-remember"
    cookie_max_age_days: int = 365


@dataclass
class TiddlypomConfig:
    """Complete configuration for tiddlypom."""
    server: ServerConfig
    storage: StorageConfig
    auth: AuthConfig

    def __init__(self):
        self.server = ServerConfig()
        self.storage = StorageConfig()
        self.auth = AuthConfig()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TiddlypomConfig":
        """Build a typed configuration from a merged config dictionary."""
        config = cls()
        config.server = ServerConfig(**data.get('server', {}))
        config.storage = StorageConfig(**data.get('storage', {}))
        config.auth = AuthConfig(**data.get('auth', {}))
        return config


class ConfigManager(IConfigManager):
    """Manages configuration loading, saving, and validation."""

    DEFAULT_CONFIG_NAME = "tiddlypom.yml"

    def __init__(self, project_root: Optional[Path] = None):
        self.project_root = project_root or Path.cwd()
        self.config_path = self.project_root / self.DEFAULT_CONFIG_NAME

    def load_config(self, config_path: Optional[Path] = None) -> Dict[str, Any]:
        """Load configuration from YAML file."""
        path = config_path or self.config_path

        if not path.exists():
            return self.get_default_config()

        try:
            with open(path, 'r', encoding='utf-8') as f:
                config_data = yaml.safe_load(f) or {}

            # Merge with defaults to ensure all keys are present
            default_config = self.get_default_config()
            return self._merge_configs(default_config, config_data)
        except Exception as e:
            logger.warning(f"Failed to load config from {path}: {e}")
            return self.get_default_config()

    def save_config(self, config: Dict[str, Any], config_path: Optional[Path] = None) -> bool:
        """Save configuration to YAML file."""
        path = config_path or self.config_path

        try:
            path.parent.mkdir(parents=True, exist_ok=True)

            with open(path, 'w', encoding='utf-8') as f:
                yaml.dump(config, f, default_flow_style=False, indent=2)

            return True
        except Exception as e:
            logger.error(f"Failed to save config to {path}: {e}")
            return False

    def get_default_config(self) -> Dict[str, Any]:
        """Get default configuration values."""
        default_config = TiddlypomConfig()
        return {
            'server': asdict(default_config.server),
            'storage': asdict(default_config.storage),
            'auth': asdict(default_config.auth),
        }

    def validate_config(self, config: Dict[str, Any]) -> List[str]:
        """Validate configuration and return any errors."""
        errors = []
        known = self.get_default_config()

        for section, values in config.items():
            if section not in known:
                errors.append(f"unknown configuration section: {section}")
                continue
            if not isinstance(values, dict):
                errors.append(f"{section} must be a mapping")
                continue
            for key in values:
                if key not in known[section]:
                    errors.append(f"unknown configuration key: {section}.{key}")

        server = config.get('server', {})
        if isinstance(server, dict):
            port = server.get('port', 9090)
            if not _is_int(port) or not (1 <= port <= 65535):
                errors.append("server.port must be between 1 and 65535")

            refresh = server.get('etag_refresh_seconds', 3600)
            if not _is_int(refresh) or refresh <= 0:
                errors.append("server.etag_refresh_seconds must be greater than 0")

        storage = config.get('storage', {})
        if isinstance(storage, dict):
            busy_timeout = storage.get('busy_timeout_ms', 5000)
            if not _is_int(busy_timeout) or busy_timeout < 0:
                errors.append("storage.busy_timeout_ms must be non-negative")

            for key in ('database_path', 'users_file', 'tokens_file'):
                if not storage.get(key, known['storage'][key]):
                    errors.append(f"storage.{key} must not be empty")

        auth = config.get('auth', {})
        if isinstance(auth, dict):
            max_age = auth.get('cookie_max_age_days', 365)
            if not _is_int(max_age) or max_age <= 0:
                errors.append("auth.cookie_max_age_days must be greater than 0")

            if not auth.get('cookie_name', 'tiddlywiki-remember'):
                errors.append("auth.cookie_name must not be empty")

        return errors

    def _merge_configs(self, default: Dict[str, Any], user: Dict[str, Any]) -> Dict[str, Any]:
        """Recursively merge user config with default config."""
        result = default.copy()

        for key, value in user.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_configs(result[key], value)
            else:
                result[key] = value

        return result

    def resolve_path(self, value: str) -> Path:
        """Resolve a configured path relative to the project root."""
        path = Path(value).expanduser()
        if not path.is_absolute():
            path = self.project_root / path
        return path

    def create_default_config_file(self) -> bool:
        """Create a default configuration file."""
        return self.save_config(self.get_default_config())

    def get_config_path(self) -> Path:
        """Get the path to the configuration file."""
        return self.config_path
