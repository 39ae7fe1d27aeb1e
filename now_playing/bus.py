"""
Session bus transport built on pydbus / GLib.

The listener only needs a handful of primitives: blocking method calls,
signal subscriptions scoped to the MPRIS namespace, message filters and a
way to wait for the next signal with a timeout. This module provides them
on top of pydbus' shared SessionBus connection.

Signal callbacks are delivered in the GLib main context that was the
thread default when the subscription was made, so subscribe(),
dispatch() and unsubscribe() must all be called from the same thread.

Install system dependencies first:
  Ubuntu/Debian: sudo apt install python3-gi
  Arch:          sudo pacman -S python-gobject
  Fedora:        sudo dnf install python3-gobject
"""

import logging
import time

from gi.repository import Gio, GLib
from pydbus import SessionBus

from .topics import Notification, Topic

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS = 2000


class SessionBusTransport:

    def __init__(self):
        self._bus = None
        self._context: GLib.MainContext | None = None
        self._subscriptions = {}
        self._filters = []
        self._delivered = 0

    # --- Connection ---

    def connect(self) -> bool:
        if self._bus is not None:
            return True
        try:
            self._bus = SessionBus()
        except GLib.Error as e:
            logger.error("Could not connect to the session bus: %s", e.message)
            return False
        logger.info("Connected to D-Bus as %s", self._bus.con.get_unique_name())
        return True

    def close(self):
        # pydbus shares one connection per process: drop our reference,
        # don't close it under other users.
        self._filters.clear()
        self._bus = None

    # --- Method calls ---

    def call(self, destination, path, interface, method, *args, timeout_ms=DEFAULT_TIMEOUT_MS):
        """Blocking method call with string arguments.

        Returns the unpacked reply tuple, or None on error or timeout.
        """
        if self._bus is None:
            return None
        params = GLib.Variant('(' + 's' * len(args) + ')', args) if args else None
        try:
            reply = self._bus.con.call_sync(
                destination, path, interface, method, params,
                None, Gio.DBusCallFlags.NONE, timeout_ms, None,
            )
        except GLib.Error as e:
            logger.debug("%s.%s on %s failed: %s", interface, method, destination, e.message)
            return None
        return reply.unpack() if reply is not None else None

    # --- Signals ---

    def add_filter(self, callback):
        self._filters.append(callback)

    def remove_filter(self, callback):
        if callback in self._filters:
            self._filters.remove(callback)

    def subscribe(self, topic: Topic) -> bool:
        if self._bus is None or topic in self._subscriptions:
            return topic in self._subscriptions
        if self._context is None:
            self._context = GLib.MainContext()
            self._context.push_thread_default()

        flags = Gio.DBusSignalFlags.NONE
        arg0 = None
        if topic.arg0namespace:
            flags = Gio.DBusSignalFlags.MATCH_ARG0_NAMESPACE
            arg0 = topic.arg0namespace

        def signal_fired(sender, path, iface, signal, params):
            self._deliver(Notification(topic, sender, tuple(params)))

        self._subscriptions[topic] = self._bus.subscribe(
            sender=topic.sender, iface=topic.interface, signal=topic.member,
            object=topic.path, arg0=arg0, flags=flags, signal_fired=signal_fired,
        )
        logger.info("Subscribed to %s", topic.match_rule)
        return True

    def unsubscribe(self, topic: Topic):
        subscription = self._subscriptions.pop(topic, None)
        if subscription is None:
            return
        subscription.unsubscribe()
        logger.info("Unsubscribed from %s", topic.match_rule)
        if not self._subscriptions and self._context is not None:
            self._context.pop_thread_default()
            self._context = None

    def _deliver(self, notification: Notification):
        self._delivered += 1
        for callback in list(self._filters):
            if callback(notification):
                break

    def dispatch(self, timeout: float) -> bool:
        """Wait up to *timeout* seconds and deliver whatever signals arrived.

        Returns True if at least one notification reached the filters.
        """
        if self._context is None:
            time.sleep(timeout)
            return False
        before = self._delivered
        if self._context.pending():
            self._context.iteration(False)
            return self._delivered != before

        wakeup = GLib.timeout_source_new(max(1, int(timeout * 1000)))
        wakeup.set_callback(lambda *args: GLib.SOURCE_REMOVE)
        wakeup.attach(self._context)
        try:
            self._context.iteration(True)
        finally:
            wakeup.destroy()
        return self._delivered != before
