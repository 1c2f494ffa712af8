"""Connectivity monitor — online/offline state driven by transition signals."""

import logging
from enum import Enum
from typing import Any, Awaitable, Callable, List

logger = logging.getLogger(__name__)

ReconnectCallback = Callable[[], Awaitable[Any]]


class ConnectivityState(str, Enum):
    OFFLINE = "offline"
    ONLINE = "online"


class ConnectivityMonitor:
    """
    Tracks whether the portal API is reachable.

    ``set_online`` is the only input. Repeating the current state is a no-op,
    so callbacks registered with ``on_reconnect`` run once per
    OFFLINE -> ONLINE transition.
    """

    def __init__(self, online: bool = False):
        self._state = ConnectivityState.ONLINE if online else ConnectivityState.OFFLINE
        self._callbacks: List[ReconnectCallback] = []
        self._syncing = False

    @property
    def state(self) -> ConnectivityState:
        return self._state

    @property
    def is_online(self) -> bool:
        return self._state is ConnectivityState.ONLINE

    @property
    def is_syncing(self) -> bool:
        return self._syncing

    def set_syncing(self, syncing: bool) -> None:
        self._syncing = syncing

    def on_reconnect(self, callback: ReconnectCallback) -> None:
        self._callbacks.append(callback)

    async def set_online(self, online: bool) -> bool:
        """Apply a connectivity signal. Returns True when the state changed."""
        new_state = ConnectivityState.ONLINE if online else ConnectivityState.OFFLINE
        if new_state is self._state:
            return False

        self._state = new_state
        logger.info("[NET] Connectivity changed: %s", new_state.value)

        if new_state is ConnectivityState.ONLINE:
            for callback in list(self._callbacks):
                try:
                    await callback()
                except Exception:
                    logger.exception("[NET] Reconnect callback failed")
        return True
