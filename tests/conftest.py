import queue
import time

import pytest

from now_playing.listener import NowPlayingListener
from now_playing.metadata import MetadataCache
from now_playing.registry import BUS_NAME_PREFIX
from now_playing.topics import Notification, Topic

PLAYER_IFACE = 'org.mpris.MediaPlayer2.Player'


class FakeClock:
    """Returns a new, strictly increasing reading on every call."""

    def __init__(self):
        self.now = 100.0

    def __call__(self):
        self.now += 1.0
        return self.now


class FakeTransport:
    """In-memory stand-in for SessionBusTransport."""

    def __init__(self):
        self.connect_ok = True
        self.connected = False
        self.closed = False
        self.owners = {}
        self.properties = {}
        self.failing = set()
        self.calls = []
        self.subscribed = set()
        self.filters = []
        self._pending = queue.Queue()

    def add_player(self, short_name, owner, title='', artist=None, album='', art_url='',
                   status='Stopped'):
        name = BUS_NAME_PREFIX + short_name
        self.owners[name] = owner
        metadata = {}
        if title:
            metadata['xesam:title'] = title
        if artist is not None:
            metadata['xesam:artist'] = artist
        if album:
            metadata['xesam:album'] = album
        if art_url:
            metadata['mpris:artUrl'] = art_url
        metadata['mpris:length'] = 215000000
        self.properties[name] = {'Metadata': metadata, 'PlaybackStatus': status}
        return name

    def remove_player(self, name):
        self.owners.pop(name, None)
        self.properties.pop(name, None)

    # --- transport interface ---

    def connect(self):
        self.connected = self.connect_ok
        return self.connect_ok

    def close(self):
        self.closed = True

    def call(self, destination, path, interface, method, *args, timeout_ms=2000):
        self.calls.append((destination, method, args))
        if destination in self.failing:
            return None
        if method == 'ListNames':
            return (['org.freedesktop.DBus', ':1.1'] + list(self.owners),)
        if method == 'GetNameOwner':
            owner = self.owners.get(args[0])
            return (owner,) if owner else None
        if method == 'Get':
            props = self.properties.get(destination, {})
            if args[1] not in props:
                return None
            return (props[args[1]],)
        return None

    def subscribe(self, topic):
        self.subscribed.add(topic)
        return True

    def unsubscribe(self, topic):
        self.subscribed.discard(topic)

    def add_filter(self, callback):
        self.filters.append(callback)

    def remove_filter(self, callback):
        self.filters.remove(callback)

    def dispatch(self, timeout):
        try:
            notification = self._pending.get(timeout=timeout)
        except queue.Empty:
            return False
        self._run_filters(notification)
        return True

    # --- test helpers ---

    def _run_filters(self, notification):
        for callback in list(self.filters):
            if callback(notification):
                return True
        return False

    def deliver(self, notification):
        """Run the filters synchronously on the calling thread."""
        return self._run_filters(notification)

    def emit(self, notification):
        """Queue a notification for the listener thread."""
        self._pending.put(notification)


def properties_changed(sender, changed, interface=PLAYER_IFACE):
    return Notification(Topic.PROPERTIES_CHANGED, sender, (interface, changed, []))


def owner_changed(name, old_owner, new_owner):
    return Notification(Topic.NAME_OWNER_CHANGED, 'org.freedesktop.DBus', (name, old_owner, new_owner))


def wait_for(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def bus():
    return FakeTransport()


@pytest.fixture
def listener(bus, clock):
    listener = NowPlayingListener(bus, MetadataCache(clock=clock), grace=0.01)
    yield listener
    listener.stop()
