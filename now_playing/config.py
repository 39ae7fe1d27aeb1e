"""
JSON config file for the now-playing service.

Default location: ~/.config/now-playing-sync/config.json
"""

import json
import logging
from pathlib import Path

logger = logging.getLogger(__name__)

CONFIG_FILE = Path.home() / '.config' / 'now-playing-sync' / 'config.json'

DEFAULTS = {
    'requested_player': None,
    'ws_port': 6534,
    'http_port': 6535,
    'bind_all': False,
    'dbus_timeout_ms': 2000,
    'grace_ms': 100,
    'broadcast_interval': 0.2,
}


def load_config(path: Path = CONFIG_FILE) -> dict:
    """Defaults merged with the file at *path*. Bad or missing files give defaults."""
    config = dict(DEFAULTS)
    if not path.exists():
        return config
    try:
        data = json.loads(path.read_text(encoding='utf-8'))
    except (OSError, json.JSONDecodeError) as e:
        logger.error("Ignoring unreadable config %s: %s", path, e)
        return config
    if not isinstance(data, dict):
        logger.error("Ignoring config %s: top level is not an object", path)
        return config
    config.update(data)
    return config


def save_config(updates: dict, path: Path = CONFIG_FILE) -> bool:
    """Merges *updates* into the existing config file."""
    current = load_config(path)
    current.update(updates)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(current, indent=2), encoding='utf-8')
    except OSError as e:
        logger.error("Could not save config %s: %s", path, e)
        return False
    return True
