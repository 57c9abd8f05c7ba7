import copy
import logging
import os
from pathlib import Path
from typing import Any, Dict, Iterator, Mapping, Optional, Tuple

import yaml

from .. import __version__
from ..exceptions import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "config/settings.yaml"

DEFAULT_CONFIG: Dict[str, Dict[str, Any]] = {
    "app": {
        "name": "queue-worker",
        "version": __version__,
        "environment": "development",
        "debug": False,
    },
    "database": {
        "path": "data/queue_worker.db",
        "max_connections": 5,
        "timeout": 30.0,
    },
    "rabbitmq": {
        "host": "localhost",
        "port": 5672,
        "user": "guest",
        "password": "guest",
        "virtual_host": "/",
        "exchange": "worker_exchange",
        "queue_name": "worker_queue",
        "heartbeat": 600,
        "blocked_connection_timeout": 300,
        "max_retries": 5,
        "retry_delay": 5.0,
        "prefetch_count": 1,
    },
    "producer": {
        "interval": 5.0,
    },
    "consumer": {
        "inactivity_timeout": 1.0,
        "reconnect_delay": 5.0,
    },
    "logging": {
        "level": "INFO",
        "format": "%(asctime)s [%(levelname)-7s] [%(name)-20s] %(message)s",
        "file": "",
        "console_logging": True,
        "console_level": "",
    },
}

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off", ""}


def _merge(base: Dict[str, Any], override: Mapping[str, Any]):
    for key, value in override.items():
        if isinstance(value, Mapping) and isinstance(base.get(key), dict):
            _merge(base[key], value)
        else:
            base[key] = value


def _coerce(raw: str, like: Any, name: str) -> Any:
    try:
        if isinstance(like, bool):
            lowered = raw.strip().lower()
            if lowered in _TRUE_VALUES:
                return True
            if lowered in _FALSE_VALUES:
                return False
            raise ValueError(f"not a boolean: {raw!r}")
        if isinstance(like, int):
            return int(raw)
        if isinstance(like, float):
            return float(raw)
    except ValueError as e:
        raise ConfigurationError(f"Invalid value for {name}: {e}") from e
    return raw


class ConfigManager:
    """
    Layered configuration: built-in defaults, then a YAML file, then
    environment variables.

    Every leaf key ``section.key`` can be overridden by the environment
    variable ``SECTION_KEY`` (for example ``RABBITMQ_QUEUE_NAME``).
    """

    def __init__(self, config: Optional[Mapping[str, Any]] = None):
        self._config: Dict[str, Any] = copy.deepcopy(DEFAULT_CONFIG)
        self._config_path: Optional[Path] = None
        if config:
            _merge(self._config, config)

    @classmethod
    def load(cls, config_path: Optional[str] = DEFAULT_CONFIG_PATH,
             environ: Optional[Mapping[str, str]] = None) -> 'ConfigManager':
        """Build a ConfigManager from the YAML file and the environment."""
        manager = cls()
        if config_path:
            manager.load_file(config_path)
        manager.apply_environment(os.environ if environ is None else environ)
        return manager

    def load_file(self, config_path: str):
        path = Path(config_path)
        self._config_path = path
        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f) or {}
        except FileNotFoundError:
            logger.warning(f"Configuration file not found at {path}. Using defaults.")
            return
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Error parsing YAML configuration from {path}: {e}") from e
        if not isinstance(data, Mapping):
            raise ConfigurationError(f"Configuration file {path} must contain a mapping")
        _merge(self._config, data)
        logger.info(f"Configuration loaded successfully from {path}")

    def apply_environment(self, environ: Mapping[str, str]):
        for dotted, default in self._leaf_items(DEFAULT_CONFIG):
            env_name = dotted.replace(".", "_").upper()
            if env_name in environ:
                self.set(dotted, _coerce(environ[env_name], default, env_name))
                logger.debug(f"Configuration key '{dotted}' overridden by ${env_name}")

    @staticmethod
    def _leaf_items(tree: Mapping[str, Any], prefix: str = "") -> Iterator[Tuple[str, Any]]:
        for key, value in tree.items():
            dotted = f"{prefix}{key}"
            if isinstance(value, Mapping):
                yield from ConfigManager._leaf_items(value, f"{dotted}.")
            else:
                yield dotted, value

    def get(self, key: str, default: Any = None) -> Any:
        """
        Retrieves a configuration value using a dot-separated key.
        Example: config.get('rabbitmq.host')
        """
        value: Any = self._config
        for part in key.split('.'):
            if not isinstance(value, Mapping) or part not in value:
                return default
            value = value[part]
        return value

    def set(self, key: str, value: Any):
        parts = key.split('.')
        node = self._config
        for part in parts[:-1]:
            node = node.setdefault(part, {})
        node[parts[-1]] = value

    def section(self, name: str) -> Dict[str, Any]:
        return dict(self.get(name, {}) or {})

    def get_config_path(self) -> Optional[Path]:
        """Returns the path of the loaded configuration file."""
        return self._config_path
