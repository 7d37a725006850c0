"""Network connectivity flag with listeners for coming back online."""

from __future__ import annotations

from typing import Callable

from loguru import logger


class ConnectivityMonitor:
    """
    Tracks whether the client believes it is online.

    Listeners run on the offline -> online edge only. The flag is a hint:
    being online does not guarantee a transport call will succeed.
    """

    def __init__(self, online: bool = True):
        self._online = online
        self._listeners: list[Callable[[], None]] = []

    @property
    def is_online(self) -> bool:
        return self._online

    def on_online(self, listener: Callable[[], None]) -> Callable[[], None]:
        """Register a listener; returns a function that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def set_online(self, online: bool) -> None:
        was_online = self._online
        self._online = online
        if online and not was_online:
            logger.info("Connectivity restored")
            for listener in list(self._listeners):
                try:
                    listener()
                except Exception as exc:
                    logger.warning("Online listener failed: {}", exc)
        elif was_online and not online:
            logger.info("Connectivity lost")
