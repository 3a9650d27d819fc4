"""Connectivity listener whose state is flipped by the host process."""

import inspect

import structlog

from careplan_monitor.services.protocols import ConnectivityCallback

logger = structlog.get_logger(__name__)


class ToggleConnectivity:
    """
    ``ConnectivityListener`` driven by explicit ``set_online`` calls.

    Callbacks run on transitions only; setting the current state again is a no-op.
    """

    def __init__(self, online: bool = True) -> None:
        self._online = online
        self._on_online: list[ConnectivityCallback] = []
        self._on_offline: list[ConnectivityCallback] = []
        self.logger = logger.bind(component="toggle_connectivity")

    def is_online(self) -> bool:
        return self._online

    def on_became_online(self, callback: ConnectivityCallback) -> None:
        self._on_online.append(callback)

    def on_became_offline(self, callback: ConnectivityCallback) -> None:
        self._on_offline.append(callback)

    async def set_online(self, online: bool) -> None:
        if online == self._online:
            return

        self._online = online
        self.logger.info("connectivity_changed", online=online)
        for callback in list(self._on_online if online else self._on_offline):
            try:
                result = callback()
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                self.logger.error("connectivity_callback_failed", online=online, error=str(e))
