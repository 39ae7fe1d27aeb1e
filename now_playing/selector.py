"""
Active player selection policy.

1. The requested player, if it is on the bus.
2. Otherwise the first registered player that reports it is playing.
3. Otherwise nothing.
"""

import logging
from typing import Callable, NamedTuple

from .metadata import Metadata
from .registry import PlayerRegistry

logger = logging.getLogger(__name__)


class Selection(NamedTuple):
    player: str | None
    metadata: Metadata


def select_active_player(registry: PlayerRegistry, requested: str | None,
                         query: Callable[[str], Metadata | None]) -> Selection:
    """Pick the player whose state should be shown.

    *query* synchronously fetches a player's metadata and returns None on
    failure; a failed query counts as "not playing".
    """
    if requested and requested in registry:
        logger.info("Selecting requested player: %s", requested)
        return Selection(requested, query(requested) or Metadata())

    for name in registry.names():
        meta = query(name)
        if meta is not None and meta.playing:
            logger.info("Selecting fallback player: %s", name)
            return Selection(name, meta)

    logger.info("No active players")
    return Selection(None, Metadata())
