"""
Configuration Loader.

Responsible for reading the config.yaml file and turning its
`rabbitmq` section into a `ClientConfig`.
"""
import yaml
import logging
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from rabbit_keeper.client.exceptions import ConfigurationError
from rabbit_keeper.client.models import ClientConfig

logger = logging.getLogger(__name__)

CLIENT_KEYS = (
    "host",
    "port",
    "username",
    "password",
    "virtual_host",
    "auto_reconnect",
    "reconnect_delay",
    "max_reconnect_attempts",
)


def load_config(config_path: str = "config.yaml") -> Dict[str, Any]:
    """
    Loads the YAML configuration file.
    """
    path = Path(config_path)
    if not path.exists():
        logger.warning(f"Config file not found at {path}. Using defaults.")
        return {}

    try:
        with open(path, 'r') as f:
            config = yaml.safe_load(f) or {}
            logger.info(f"Loaded configuration from {path}")
            return config
    except Exception as e:
        logger.error(f"Failed to parse config file: {e}")
        raise


def client_config_from_dict(config: Dict[str, Any], log_sink: Optional[Callable[[str], None]] = None) -> ClientConfig:
    """
    Builds a `ClientConfig` from the `rabbitmq` section of a loaded config.
    Missing keys keep their defaults; unknown keys are ignored with a warning.
    """
    section = config.get('rabbitmq', {}) or {}
    if not isinstance(section, dict):
        raise ConfigurationError(f"'rabbitmq' section must be a mapping, got {type(section).__name__}")

    unknown = set(section) - set(CLIENT_KEYS)
    if unknown:
        logger.warning(f"Ignoring unknown rabbitmq settings: {sorted(unknown)}")

    settings = {key: section[key] for key in CLIENT_KEYS if key in section}
    try:
        if 'port' in settings:
            settings['port'] = int(settings['port'])
        if 'reconnect_delay' in settings:
            settings['reconnect_delay'] = float(settings['reconnect_delay'])
        if 'max_reconnect_attempts' in settings:
            settings['max_reconnect_attempts'] = int(settings['max_reconnect_attempts'])
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid rabbitmq setting: {e}") from e
    if 'auto_reconnect' in settings and not isinstance(settings['auto_reconnect'], bool):
        raise ConfigurationError(
            f"Invalid rabbitmq setting: auto_reconnect must be true or false, got {settings['auto_reconnect']!r}"
        )
    if log_sink is not None:
        settings['log_sink'] = log_sink

    return ClientConfig(**settings)
