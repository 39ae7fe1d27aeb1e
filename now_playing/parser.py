"""
Decoding of MPRIS ``PropertiesChanged`` bodies and ``Properties.Get`` replies.

A PropertiesChanged body, once unpacked by pydbus, looks like::

    ('org.mpris.MediaPlayer2.Player',
     {'Metadata': {'xesam:title': 'Song', 'xesam:artist': ['A', 'B'], ...},
      'PlaybackStatus': 'Playing'},
     [])
"""

import logging
from collections.abc import Mapping

from .metadata import Metadata

logger = logging.getLogger(__name__)

PLAYER_INTERFACE = 'org.mpris.MediaPlayer2.Player'
ARTIST_SEPARATOR = ', '


class MalformedNotification(ValueError):
    """The notification body does not have the expected shape."""


def stringify(value) -> str:
    if isinstance(value, bytes):
        return value.decode('utf-8', errors='replace')
    return str(value)


def _is_primitive(value) -> bool:
    return isinstance(value, (str, bytes, int, float, bool))


def _flatten(value):
    """Primitive -> str, list of primitives -> joined str, anything else -> None."""
    if _is_primitive(value):
        return stringify(value)
    if isinstance(value, (list, tuple)):
        return ARTIST_SEPARATOR.join(stringify(v) for v in value if _is_primitive(v))
    return None


def walk_metadata(metadata, meta: Metadata):
    """Strict walk: *metadata* is a plain mapping of key -> variant value."""
    if not isinstance(metadata, Mapping):
        return
    for key, value in metadata.items():
        flat = _flatten(value)
        if flat is not None:
            meta.assign(key, flat)


def walk_metadata_fallback(metadata, meta: Metadata):
    """Lenient walk for providers that don't send a plain a{sv}.

    Accepts a still-packed GLib variant or a sequence of (key, value)
    pairs. Plain mappings are left to walk_metadata().
    """
    if isinstance(metadata, Mapping) or isinstance(metadata, (str, bytes)):
        return
    if hasattr(metadata, 'unpack'):
        try:
            metadata = metadata.unpack()
        except Exception as e:
            logger.debug("Could not unpack metadata variant: %s", e)
            return
        walk_metadata(metadata, meta)
        return
    if not isinstance(metadata, (list, tuple)):
        return
    for entry in metadata:
        if not isinstance(entry, (list, tuple)) or len(entry) != 2:
            continue
        key, value = entry
        if not isinstance(key, str):
            continue
        flat = _flatten(value)
        if flat is not None:
            meta.assign(key, flat)


def parse_properties_changed(body) -> tuple:
    """Return ``(source_interface, delta)`` for a PropertiesChanged body.

    Raises MalformedNotification when the first field is missing or not a
    string. For any interface other than the MPRIS player one the delta is
    returned empty.
    """
    meta = Metadata()
    if not body or not isinstance(body[0], str):
        raise MalformedNotification(f"expected interface name, got {body!r:.80}")

    source = body[0]
    if source != PLAYER_INTERFACE:
        return source, meta

    changed = body[1] if len(body) > 1 else None
    if not isinstance(changed, Mapping):
        return source, meta

    for key, value in changed.items():
        if key == 'Metadata':
            walk_metadata(value, meta)
            walk_metadata_fallback(value, meta)
        elif key == 'PlaybackStatus':
            meta.assign(key, stringify(value))

    meta.revalidate()
    return source, meta


def metadata_from_property(prop: str, value, meta: Metadata) -> bool:
    """Apply the reply of ``Properties.Get(PLAYER_INTERFACE, prop)``."""
    if _is_primitive(value):
        meta.assign(prop, stringify(value))
    elif isinstance(value, (Mapping, list, tuple)) or hasattr(value, 'unpack'):
        walk_metadata(value, meta)
        walk_metadata_fallback(value, meta)
    else:
        return False
    return True
