"""
Known MPRIS players on the session bus: bus name -> unique owner name.
"""

import enum
import logging

logger = logging.getLogger(__name__)

BUS_NAME_PREFIX = 'org.mpris.MediaPlayer2.'

DBUS_NAME = 'org.freedesktop.DBus'
DBUS_PATH = '/org/freedesktop/DBus'
DBUS_INTERFACE = 'org.freedesktop.DBus'


def is_player_name(name) -> bool:
    return isinstance(name, str) and name.startswith(BUS_NAME_PREFIX)


class OwnerChange(enum.Enum):
    IGNORED = 'ignored'
    REGISTERED = 'registered'
    DEPARTED = 'departed'


class PlayerRegistry:
    """Insertion-ordered map of player bus names to their current owner."""

    def __init__(self):
        self._owners: dict[str, str] = {}

    def __contains__(self, name) -> bool:
        return name in self._owners

    def __len__(self) -> int:
        return len(self._owners)

    def owner(self, name) -> str:
        return self._owners.get(name, '') if name else ''

    def names(self) -> list:
        return list(self._owners)

    def copy(self) -> 'PlayerRegistry':
        other = PlayerRegistry()
        other._owners = dict(self._owners)
        return other

    def refresh(self, transport, timeout_ms: int) -> bool:
        """Rebuild the map from ListNames + GetNameOwner.

        Names that can't be resolved are skipped. Returns False only when
        the name list itself could not be fetched.
        """
        reply = transport.call(DBUS_NAME, DBUS_PATH, DBUS_INTERFACE, 'ListNames',
                               timeout_ms=timeout_ms)
        if not reply:
            logger.warning("ListNames failed, player list not refreshed")
            return False

        owners = {}
        for name in reply[0]:
            if not is_player_name(name):
                continue
            owner = transport.call(DBUS_NAME, DBUS_PATH, DBUS_INTERFACE, 'GetNameOwner', name,
                                   timeout_ms=timeout_ms)
            if not owner or not isinstance(owner[0], str):
                logger.debug("Could not resolve owner of %s, skipping", name)
                continue
            owners[name] = owner[0]

        self._owners = owners
        logger.info("Found %d MPRIS player(s): %s", len(owners), ', '.join(owners) or '-')
        return True

    def apply_owner_change(self, name, old_owner, new_owner) -> OwnerChange:
        if not is_player_name(name):
            return OwnerChange.IGNORED
        if new_owner:
            self._owners[name] = new_owner
            logger.debug("Player %s owned by %s (was %r)", name, new_owner, old_owner)
            return OwnerChange.REGISTERED
        self._owners.pop(name, None)
        logger.debug("Player %s left the bus", name)
        return OwnerChange.DEPARTED
