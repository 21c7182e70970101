"""
Source Registry - Loads watched sources and agent settings, maps sources to handlers.
"""

import logging
import os
import yaml
from dotenv import load_dotenv
from typing import Dict, Any, FrozenSet, List, Optional, Type

from utils.exceptions import ConfigurationError
from handlers.base_handler import BaseListingHandler
from handlers.bs4_handler import BS4ListingHandler
from handlers.api_handler import JSONListingHandler
from models.credential import EphemeralBackend, FileBackend, SecretStoreBackend, SessionBackend
from models.source import WatchSource

# Load environment variables
load_dotenv()

DEFAULT_SOURCES: Dict[str, Dict[str, Any]] = {
    'firefox/candidates': {'path': 'firefox/candidates', 'filter': 'esr', 'recurse': True},
    'firefox/releases': {'path': 'firefox/releases', 'filter': 'esr'},
    'thunderbird/candidates': {'path': 'thunderbird/candidates', 'filter': 'candidates', 'recurse': True},
    'thunderbird/releases': {'path': 'thunderbird/releases'},
    'security/nss/releases': {'path': 'security/nss/releases'},
}

# Environment variables that override settings.yaml
ENV_OVERRIDES = {
    'BOT_USERNAME': ('matrix', 'username'),
    'BOT_PASSWORD': ('matrix', 'password'),
    'BOT_HOMESERVER_URL': ('matrix', 'homeserver_url'),
    'BOT_SESSION_PASSPHRASE': ('session', 'passphrase'),
}


class SourceRegistry:
    """Registry that manages source configurations, agent settings and handler instantiation."""

    # Map method names to handler classes
    HANDLER_MAP: Dict[str, Type[BaseListingHandler]] = {
        'html': BS4ListingHandler,
        'json': JSONListingHandler,
    }

    def __init__(self, config_path: str = None, settings_path: str = None):
        """
        Initialize the registry with configuration files.

        Args:
            config_path: Path to sources.yaml
            settings_path: Path to settings.yaml
        """
        self.base_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
        self.logger = logging.getLogger('SourceRegistry')

        if config_path is None:
            config_path = os.path.join(self.base_dir, 'config', 'sources.yaml')
        if settings_path is None:
            settings_path = os.path.join(self.base_dir, 'config', 'settings.yaml')

        self.settings = self._apply_env_overrides(self._load_config(settings_path))
        source_config = self._load_config(config_path) or DEFAULT_SOURCES
        self.sources: Dict[str, WatchSource] = {
            key: WatchSource.from_dict(key, data or {})
            for key, data in source_config.items()
        }
        self._handlers: Dict[str, BaseListingHandler] = {}

    def _load_config(self, path: str) -> Dict[str, Any]:
        """Load YAML configuration file."""
        try:
            with open(path, 'r', encoding='utf-8') as f:
                return yaml.safe_load(f) or {}
        except FileNotFoundError:
            self.logger.warning(f"Config file not found: {path}")
            return {}
        except yaml.YAMLError as e:
            self.logger.error(f"Error parsing YAML file {path}: {e}")
            return {}

    def _apply_env_overrides(self, settings: Dict[str, Any]) -> Dict[str, Any]:
        for variable, (section, key) in ENV_OVERRIDES.items():
            value = os.getenv(variable)
            if value:
                settings.setdefault(section, {})
                if settings[section] is None:
                    settings[section] = {}
                settings[section][key] = value
        return settings

    def get_source(self, key: str) -> Optional[WatchSource]:
        """
        Get a watched source by key.

        Args:
            key: Source key from sources.yaml

        Returns:
            WatchSource or None
        """
        return self.sources.get(key)

    def get_all_sources(self) -> List[WatchSource]:
        """Get all sources in configuration order."""
        return list(self.sources.values())

    def get_handler(self, source: WatchSource) -> BaseListingHandler:
        """
        Get the listing handler for a source; one shared instance per method.

        Raises:
            ConfigurationError: unknown method
        """
        handler = self._handlers.get(source.method)
        if handler is not None:
            return handler

        handler_class = self.HANDLER_MAP.get(source.method)
        if not handler_class:
            raise ConfigurationError(
                f"Unknown method '{source.method}' for source: {source.key}",
                {'source': source.key},
            )

        handler = handler_class(self.settings)
        self._handlers[source.method] = handler
        return handler

    def list_sources(self) -> list:
        """List all source keys."""
        return list(self.sources.keys())

    def get_settings(self) -> Dict[str, Any]:
        """Get application settings."""
        return self.settings

    def section(self, name: str) -> Dict[str, Any]:
        """Get one settings section, empty if absent."""
        return self.settings.get(name, {}) or {}

    def get_matrix_settings(self) -> Dict[str, Any]:
        """
        Get homeserver login settings with defaults applied.

        Raises:
            ConfigurationError: username, password or homeserver missing
        """
        matrix = self.section('matrix')
        missing = [key for key in ('homeserver_url', 'username', 'password') if not matrix.get(key)]
        if missing:
            raise ConfigurationError(f"Missing matrix settings: {', '.join(missing)}")

        return {
            'homeserver_url': matrix['homeserver_url'],
            'username': matrix['username'],
            'password': matrix['password'],
            'device_name': matrix.get('device_name', 'Mozilla FTP watcher'),
            'ignore_own_messages': bool(matrix.get('ignore_own_messages', True)),
            'autojoin': bool(matrix.get('autojoin', True)),
        }

    def get_allow_list(self) -> FrozenSet[str]:
        """Trusted user ids; empty means everyone is trusted."""
        return frozenset(self.section('matrix').get('accept_commands_from') or [])

    def get_session_backend(self) -> SessionBackend:
        """
        Build the single session backend selected in settings.

        Raises:
            ConfigurationError: unknown backend or missing passphrase
        """
        session = self.section('session')
        backend = session.get('backend', 'ephemeral')

        if backend == 'ephemeral':
            return EphemeralBackend()
        if backend == 'file':
            passphrase = session.get('passphrase')
            if not passphrase:
                raise ConfigurationError("session.passphrase is required for the file backend")
            path = session.get('path') or os.path.join(self.base_dir, 'state', 'session')
            return FileBackend(path=os.path.expanduser(path), passphrase=passphrase)
        if backend == 'keyring':
            return SecretStoreBackend(collection=session.get('collection', 'ftp-watcher'))

        raise ConfigurationError(f"Unknown session backend: {backend}", {'backend': backend})
