"""Configuration management for the collection store."""

import os
import yaml
from pathlib import Path
from typing import Dict, Any, List, Optional

from intel_collection.errors import ConfigurationError
from intel_collection.models import CollectionDescriptor


class Config:
    """Manages configuration loading and access."""

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize configuration.

        Args:
            config_path: Path to config file. If None, uses default config.
        """
        self.config_dir = Path(__file__).parent.parent / "config"

        # Load default config
        default_config_path = self.config_dir / "default.yaml"
        with open(default_config_path, 'r') as f:
            self.config = yaml.safe_load(f) or {}

        # Override with local config if it exists
        local_config_path = self.config_dir / "local.yaml"
        if local_config_path.exists():
            with open(local_config_path, 'r') as f:
                local_config = yaml.safe_load(f) or {}
                self._merge_configs(self.config, local_config)

        # Override with custom config if provided
        if config_path and os.path.exists(config_path):
            with open(config_path, 'r') as f:
                custom_config = yaml.safe_load(f) or {}
                self._merge_configs(self.config, custom_config)

        # Override with environment variables
        self._apply_env_overrides()

    def _merge_configs(self, base: Dict, override: Dict):
        """Recursively merge override config into base config."""
        for key, value in override.items():
            if key in base and isinstance(base[key], dict) and isinstance(value, dict):
                self._merge_configs(base[key], value)
            else:
                base[key] = value

    def _apply_env_overrides(self):
        """Apply environment variable overrides."""
        if os.getenv('INTEL_COLLECTION_DB_PATH'):
            self.config.setdefault('database', {})['path'] = os.getenv('INTEL_COLLECTION_DB_PATH')
        if os.getenv('INTEL_COLLECTION_LOG_LEVEL'):
            self.config.setdefault('logging', {})['level'] = os.getenv('INTEL_COLLECTION_LOG_LEVEL')

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get a configuration value using dot notation.

        Args:
            key: Configuration key (e.g., 'database.path')
            default: Default value if key not found

        Returns:
            Configuration value
        """
        keys = key.split('.')
        value = self.config

        for k in keys:
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default

        return value

    def get_collections(self) -> List[CollectionDescriptor]:
        """Get descriptors of all configured collections."""
        descriptors = []
        for data in self.config.get('collections') or []:
            if not data.get('id'):
                raise ConfigurationError("Every collection needs an 'id'")
            descriptors.append(CollectionDescriptor.from_dict(data))
        return descriptors

    def get_collection(self, collection_id: Optional[str] = None) -> CollectionDescriptor:
        """
        Get one collection descriptor by id or title.

        With no id, the first configured collection is returned.
        """
        collections = self.get_collections()
        if not collections:
            raise ConfigurationError("No collections configured")
        if collection_id is None:
            return collections[0]
        for descriptor in collections:
            if collection_id in (descriptor.id, descriptor.title):
                return descriptor
        raise ConfigurationError(f"Collection '{collection_id}' not configured")

    def get_taxii_servers(self):
        """Get list of enabled TAXII servers."""
        servers = self.config.get('taxii_servers') or []
        return [s for s in servers if s.get('enabled', True)]

    def get_db_path(self) -> str:
        """Get database path."""
        return self.get('database.path', 'data/collections.db')

    def get_log_level(self) -> str:
        return str(self.get('logging.level', 'INFO')).upper()


# Global config instance
_config = None

def get_config(config_path: Optional[str] = None) -> Config:
    """Get the global config instance."""
    global _config
    if _config is None or config_path:
        _config = Config(config_path)
    return _config
