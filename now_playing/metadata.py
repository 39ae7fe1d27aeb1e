"""
Now-playing metadata record and the lock-protected cache shared with the
rest of the application.
"""

import copy
import threading
import time
from dataclasses import dataclass


PLAYING_STATUS = 'Playing'


@dataclass
class Metadata:
    title: str = ''
    artists: str = ''
    album: str = ''
    art_url: str = ''
    playing: bool = False
    got_song_data: bool = False
    got_playback_data: bool = False
    valid: bool = False

    def assign(self, key: str, value: str):
        """Apply one MPRIS property/metadata entry. Unknown keys are ignored."""
        if key == 'PlaybackStatus':
            self.playing = value == PLAYING_STATUS
            self.got_playback_data = True
        elif key == 'xesam:title':
            self.title = value
            self.got_song_data = True
            self.valid = True
        elif key == 'xesam:artist':
            self.artists = value
            self.got_song_data = True
            self.valid = True
        elif key == 'xesam:album':
            self.album = value
            self.got_song_data = True
            self.valid = True
        elif key == 'mpris:artUrl':
            self.art_url = value
            self.got_song_data = True

    def revalidate(self):
        self.valid = bool(self.artists) or bool(self.title)

    def identity(self) -> tuple:
        return (self.artists, self.album, self.title)

    def clear(self):
        self.__init__()

    def copy(self) -> 'Metadata':
        return copy.copy(self)


class MetadataCache:
    """Process-wide now-playing state.

    Written by the listener thread and by the synchronous refresh path,
    read by consumers. Every access goes through ``_lock``; the lock is
    only held while fields are copied, never across a bus call.

    The ticker is a clock reading taken when the current track started
    (or the player switched). Consumers use it to compute elapsed time.
    """

    def __init__(self, clock=time.monotonic):
        self._lock = threading.Lock()
        self._clock = clock
        self._meta = Metadata()
        self._ticker = clock()

    def snapshot(self) -> Metadata:
        with self._lock:
            return self._meta.copy()

    @property
    def ticker(self) -> float:
        with self._lock:
            return self._ticker

    def elapsed(self) -> float:
        with self._lock:
            started = self._ticker
        return max(0.0, self._clock() - started)

    def replace(self, meta: Metadata, reset_ticker: bool = False):
        """Swap in a whole record, e.g. after a player switch."""
        meta = meta.copy()
        with self._lock:
            self._meta = meta
            if reset_ticker:
                self._ticker = self._clock()

    def clear(self):
        with self._lock:
            self._meta = Metadata()

    def apply(self, delta: Metadata) -> bool:
        """Merge a parsed PropertiesChanged delta into the cache.

        Song data replaces the record and implies playback resumed; a
        playback-only delta just flips ``playing``. Returns True when the
        track identity changed and the ticker was reset.
        """
        playing = delta.playing
        song_changed = False
        with self._lock:
            if delta.got_song_data:
                if self._meta.identity() != delta.identity():
                    self._ticker = self._clock()
                    song_changed = True
                self._meta = delta.copy()
                self._meta.playing = True
            if delta.got_playback_data:
                self._meta.playing = playing
        return song_changed
