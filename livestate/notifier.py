from __future__ import annotations

import logging
from typing import Callable, Set

logger = logging.getLogger(__name__)

Listener = Callable[[], None]


class ChangeNotifier:
    """In-process fanout of "state changed" signals to registered listeners.

    Listeners are held in a set, so registering the same callable twice does
    not make it fire twice. Each listener runs synchronously inside
    ``notify()``; a listener that raises is logged and skipped.
    """

    def __init__(self) -> None:
        self._listeners: Set[Listener] = set()

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.add(listener)

        def unsubscribe() -> None:
            self._listeners.discard(listener)

        return unsubscribe

    def notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener()
            except Exception:
                logger.exception("State change listener %r failed", listener)
                continue
