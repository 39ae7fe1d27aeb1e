"""
Signal-driven "now playing" tracking for MPRIS media players.
"""

from .listener import ListenerState, NowPlayingListener, player_bus_name
from .metadata import Metadata, MetadataCache

__all__ = ['ListenerState', 'Metadata', 'MetadataCache', 'NowPlayingListener', 'player_bus_name']
