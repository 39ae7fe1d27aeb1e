"""
The two bus signals the listener subscribes to.
"""

import enum
from typing import NamedTuple

from .registry import BUS_NAME_PREFIX, DBUS_INTERFACE, DBUS_NAME, DBUS_PATH

PLAYER_PATH = '/org/mpris/MediaPlayer2'
PROPERTIES_INTERFACE = 'org.freedesktop.DBus.Properties'


class Topic(enum.Enum):
    PROPERTIES_CHANGED = (None, PROPERTIES_INTERFACE, 'PropertiesChanged', PLAYER_PATH, None)
    NAME_OWNER_CHANGED = (DBUS_NAME, DBUS_INTERFACE, 'NameOwnerChanged', DBUS_PATH,
                          BUS_NAME_PREFIX.rstrip('.'))

    def __init__(self, sender, interface, member, path, arg0namespace):
        self.sender = sender
        self.interface = interface
        self.member = member
        self.path = path
        self.arg0namespace = arg0namespace

    @property
    def match_rule(self) -> str:
        """The AddMatch rule string for this topic."""
        parts = ["type='signal'"]
        if self.sender:
            parts.append(f"sender='{self.sender}'")
        parts.append(f"interface='{self.interface}'")
        parts.append(f"member='{self.member}'")
        parts.append(f"path='{self.path}'")
        if self.arg0namespace:
            parts.append(f"arg0namespace='{self.arg0namespace}'")
        return ','.join(parts)


class Notification(NamedTuple):
    topic: Topic
    sender: str
    body: tuple
