"""Connectivity state with reconnect-edge detection."""

from __future__ import annotations

import logging
from collections.abc import Callable
from enum import StrEnum

logger = logging.getLogger(__name__)


class NetworkState(StrEnum):
    """Process-wide connectivity state."""

    ONLINE = "online"
    OFFLINE = "offline"


ReconnectListener = Callable[[], None]
ChangeListener = Callable[[NetworkState], None]


class NetworkMonitor:
    """
    Tracks the last known connectivity state.

    Signals arrive from platform hooks, from :class:`ConnectivityProbe`,
    or from the mutation façade when a direct call fails. Only genuine
    transitions change state: repeated "online" signals while already
    online are ignored, so reconnect listeners fire exactly once per
    offline -> online edge.

    Usage:
        monitor = NetworkMonitor()
        unsubscribe = monitor.on_reconnect(engine.trigger)
        monitor.set_online()   # fires
        monitor.set_online()   # ignored
    """

    def __init__(self, initial: NetworkState = NetworkState.OFFLINE) -> None:
        self._state = NetworkState(initial)
        self._reconnect_listeners: list[ReconnectListener] = []
        self._change_listeners: list[ChangeListener] = []
        self._reconnect_count = 0

    @property
    def state(self) -> NetworkState:
        """Instantaneous connectivity state."""
        return self._state

    @property
    def is_online(self) -> bool:
        return self._state == NetworkState.ONLINE

    @property
    def reconnect_count(self) -> int:
        """Number of offline -> online edges observed."""
        return self._reconnect_count

    def set_online(self) -> bool:
        """Signal connectivity. Returns True if this was a reconnect edge."""
        return self._transition(NetworkState.ONLINE)

    def set_offline(self) -> bool:
        """Signal loss of connectivity. Returns True if the state changed."""
        return self._transition(NetworkState.OFFLINE)

    def report(self, online: bool) -> bool:
        """Feed a boolean connectivity signal."""
        return self.set_online() if online else self.set_offline()

    def report_unreachable(self) -> None:
        """A remote call failed at the network level while we believed we were online."""
        if self.set_offline():
            logger.info("Remote store unreachable, treating connection as offline")

    def on_reconnect(self, listener: ReconnectListener) -> Callable[[], None]:
        """Register a callback for offline -> online edges. Returns an unsubscribe function."""
        self._reconnect_listeners.append(listener)
        return _unsubscriber(self._reconnect_listeners, listener)

    def on_change(self, listener: ChangeListener) -> Callable[[], None]:
        """Register a callback for every state change. Returns an unsubscribe function."""
        self._change_listeners.append(listener)
        return _unsubscriber(self._change_listeners, listener)

    def _transition(self, new_state: NetworkState) -> bool:
        if new_state == self._state:
            return False

        self._state = new_state
        logger.debug("Network state -> %s", new_state)

        for change_listener in list(self._change_listeners):
            try:
                change_listener(new_state)
            except Exception:
                logger.warning("Network change listener failed", exc_info=True)

        if new_state == NetworkState.ONLINE:
            self._reconnect_count += 1
            for reconnect_listener in list(self._reconnect_listeners):
                try:
                    reconnect_listener()
                except Exception:
                    logger.warning("Reconnect listener failed", exc_info=True)
        return True


def _unsubscriber(listeners: list, listener: object) -> Callable[[], None]:
    registered = True

    def unsubscribe() -> None:
        nonlocal registered
        if registered:
            registered = False
            listeners.remove(listener)

    return unsubscribe
