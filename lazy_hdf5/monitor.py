from __future__ import annotations

import threading


class ProgressMonitor:
    """Thread safe implementation of :class:`lazy_hdf5.typing_.Monitor`.

    >>> mon = ProgressMonitor()
    >>> mon.worked(3)
    >>> mon.work_done
    3
    >>> mon.cancel()
    >>> mon.is_cancelled()
    True
    """

    def __init__(self):
        self._cancelled = threading.Event()
        self._lock = threading.Lock()
        self.work_done = 0

    def cancel(self) -> None:
        self._cancelled.set()

    def is_cancelled(self) -> bool:
        return self._cancelled.is_set()

    def worked(self, amount: int) -> None:
        with self._lock:
            self.work_done += amount
