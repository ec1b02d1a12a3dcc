from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DataEvent:
    """Notification that a dataset was written to.

    ``shape`` is the shape of the dataset after the write.
    """

    name: str
    shape: tuple[int, ...]


DataListener = Callable[[DataEvent], None]


class DataEventDelegate:
    """Ordered collection of listeners that are notified of :class:`DataEvent`.

    Views share the delegate of their root; clones get a copy.
    """

    def __init__(self, listeners: list[DataListener] | None = None):
        self._listeners = list(listeners) if listeners else []

    def __len__(self) -> int:
        return len(self._listeners)

    def __contains__(self, listener: DataListener) -> bool:
        return listener in self._listeners

    def add_listener(self, listener: DataListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: DataListener) -> None:
        # Removing an unknown listener is a no-op
        if listener in self._listeners:
            self._listeners.remove(listener)

    def fire(self, event: DataEvent) -> None:
        logger.debug("Firing %s to %d listener(s)", event, len(self._listeners))
        # Iterate over a copy so that listeners may unsubscribe themselves
        for listener in list(self._listeners):
            listener(event)

    def copy(self) -> DataEventDelegate:
        return DataEventDelegate(self._listeners)
