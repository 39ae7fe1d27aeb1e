"""
Signal-driven now-playing listener.

A background thread waits for D-Bus signals and keeps a MetadataCache in
sync with whichever MPRIS player is active:

    NameOwnerChanged   -> player registry, re-selection on switch/departure
    PropertiesChanged  -> parsed delta, applied if it comes from the
                          active player's current owner

Usage:
    listener = NowPlayingListener(SessionBusTransport())
    if listener.start('spotify'):
        meta = listener.snapshot()
    ...
    listener.stop()
"""

import enum
import logging
import threading
import time
from .metadata import Metadata, MetadataCache
from .parser import (
    PLAYER_INTERFACE, MalformedNotification, metadata_from_property, parse_properties_changed,
)
from .registry import BUS_NAME_PREFIX, OwnerChange, PlayerRegistry
from .selector import Selection, select_active_player
from .topics import PLAYER_PATH, PROPERTIES_INTERFACE, Notification, Topic

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS = 2000
DEFAULT_GRACE = 0.1          # seconds to wait for a signal before re-checking the stop flag
SUBSCRIBE_TIMEOUT = 5.0


def player_bus_name(name: str | None) -> str | None:
    """'spotify' -> 'org.mpris.MediaPlayer2.spotify'; full names pass through."""
    if not name:
        return None
    if name.startswith(BUS_NAME_PREFIX):
        return name
    return BUS_NAME_PREFIX + name


class ListenerState(enum.Enum):
    IDLE = 'idle'
    TRACKING = 'tracking'


class NowPlayingListener:

    def __init__(self, transport, cache: MetadataCache | None = None,
                 timeout_ms: int = DEFAULT_TIMEOUT_MS, grace: float = DEFAULT_GRACE):
        self._transport = transport
        self.cache = cache if cache is not None else MetadataCache()
        self.timeout_ms = timeout_ms
        self.grace = grace

        # Registry and active player are shared by the loop and refresh()
        self._players_lock = threading.Lock()
        self._registry = PlayerRegistry()
        self._requested: str | None = None
        self._active: str | None = None
        # Owner changes seen while a refresh() is fetching a new snapshot
        self._change_logs: list[list] = []

        self._stop = threading.Event()
        self._subscribed = threading.Event()
        self._thread: threading.Thread | None = None

    # --- Consumer interface ---

    @property
    def running(self) -> bool:
        return self._thread is not None

    @property
    def requested_player(self) -> str | None:
        return self._requested

    @property
    def active_player(self) -> str | None:
        with self._players_lock:
            return self._active

    @property
    def state(self) -> ListenerState:
        return ListenerState.TRACKING if self.active_player else ListenerState.IDLE

    def players(self) -> list:
        with self._players_lock:
            return self._registry.names()

    def snapshot(self) -> Metadata:
        return self.cache.snapshot()

    def start(self, requested_player: str | None = None) -> bool:
        """Connect, start the signal thread and load the initial state.

        Returns False if the session bus is unavailable; the cache then
        stays empty.
        """
        if self.running:
            return True

        self._requested = player_bus_name(requested_player)
        if not self._transport.connect():
            logger.error("Now-playing listener disabled: no session bus")
            return False

        self._stop.clear()
        self._subscribed.clear()
        self._thread = threading.Thread(target=self._run, name='now-playing-dbus', daemon=True)
        self._thread.start()
        if not self._subscribed.wait(SUBSCRIBE_TIMEOUT):
            logger.warning("Signal subscription is taking long, continuing")

        self.refresh()
        return True

    def stop(self):
        """Signal the loop, wait for it to exit, then release the transport."""
        if self._thread is None:
            return
        self._stop.set()
        self._thread.join()
        self._thread = None
        self._transport.close()
        with self._players_lock:
            self._active = None
        logger.info("Now-playing listener stopped")

    def refresh(self) -> bool:
        """Synchronously re-enumerate players and reload the cache.

        Returns True if a player is active afterwards.
        """
        changes = []
        with self._players_lock:
            registry = self._registry.copy()
            self._change_logs.append(changes)
        try:
            registry.refresh(self._transport, self.timeout_ms)
        finally:
            with self._players_lock:
                self._change_logs.remove(changes)
                # Signals handled meanwhile are newer than the snapshot
                for name, old_owner, new_owner in changes:
                    registry.apply_owner_change(name, old_owner, new_owner)
                self._registry = registry

        previous = self.cache.snapshot()
        selection = self._reselect()
        self.cache.replace(selection.metadata,
                           reset_ticker=selection.metadata.identity() != previous.identity())
        return selection.player is not None

    # --- Synchronous queries ---

    def query_player(self, name: str) -> Metadata | None:
        """Fetch Metadata + PlaybackStatus of *name*. None if both calls fail."""
        meta = Metadata()
        ok = False
        for prop in ('Metadata', 'PlaybackStatus'):
            reply = self._transport.call(
                name, PLAYER_PATH, PROPERTIES_INTERFACE, 'Get', PLAYER_INTERFACE, prop,
                timeout_ms=self.timeout_ms,
            )
            if reply:
                ok = metadata_from_property(prop, reply[0], meta) or ok
        if not ok:
            logger.debug("No metadata from %s", name)
            return None
        meta.revalidate()
        return meta

    def _reselect(self) -> Selection:
        with self._players_lock:
            registry = self._registry.copy()
            requested = self._requested

        # Bus calls happen outside the lock
        selection = select_active_player(registry, requested, self.query_player)

        with self._players_lock:
            if selection.player is not None and selection.player not in self._registry:
                logger.debug("%s left during selection", selection.player)
                selection = Selection(None, Metadata())
            self._active = selection.player
        return selection

    # --- Dispatch loop ---

    def _run(self):
        for topic in Topic:
            self._transport.subscribe(topic)
        self._transport.add_filter(self._filter)
        self._subscribed.set()
        logger.debug("Signal loop running")
        try:
            while not self._stop.is_set():
                if not self._transport.dispatch(self.grace):
                    time.sleep(0)
        finally:
            self._transport.remove_filter(self._filter)
            for topic in Topic:
                self._transport.unsubscribe(topic)
            logger.debug("Signal loop exited")

    def _filter(self, notification: Notification) -> bool:
        try:
            if notification.topic is Topic.PROPERTIES_CHANGED:
                return self._handle_properties_changed(notification.sender, notification.body)
            if notification.topic is Topic.NAME_OWNER_CHANGED:
                return self._handle_name_owner_changed(notification.body)
        except MalformedNotification as e:
            logger.warning("Dropping malformed %s from %s: %s",
                           notification.topic.member, notification.sender, e)
        return False

    def _handle_properties_changed(self, sender: str, body) -> bool:
        source, delta = parse_properties_changed(body)
        if source != PLAYER_INTERFACE:
            return False

        selected = None
        if self.active_player is None:
            # The fresh snapshot of the newly selected player supersedes the
            # partial delta.
            selected = self._reselect()
            delta = selected.metadata

        with self._players_lock:
            owner = self._registry.owner(self._active)
        if selected is not None and selected.player is not None and owner != sender:
            self.cache.replace(delta, reset_ticker=True)
        elif owner and owner == sender:
            if self.cache.apply(delta):
                logger.info("Now playing: %s - %s", delta.artists or '?', delta.title or '?')
        else:
            logger.debug("Ignoring PropertiesChanged from %s (active owner %r)", sender, owner)
        return True

    def _handle_name_owner_changed(self, body) -> bool:
        if len(body) != 3 or not all(isinstance(field, str) for field in body):
            raise MalformedNotification(f"NameOwnerChanged body {body!r:.80}")
        name, old_owner, new_owner = body

        with self._players_lock:
            change = self._registry.apply_owner_change(name, old_owner, new_owner)
            if change is not OwnerChange.IGNORED:
                for log in self._change_logs:
                    log.append((name, old_owner, new_owner))
            was_active = name == self._active
            if change is OwnerChange.DEPARTED and was_active:
                self._active = None

        if change is OwnerChange.IGNORED:
            return False

        if change is OwnerChange.REGISTERED and name == self._requested:
            logger.info("Requested player %s is available, switching", name)
            selection = self._reselect()
            self.cache.replace(selection.metadata, reset_ticker=True)
        elif change is OwnerChange.DEPARTED and was_active:
            logger.info("Active player %s quit", name)
            selection = self._reselect()
            self.cache.replace(selection.metadata, reset_ticker=selection.player is not None)
        return True
