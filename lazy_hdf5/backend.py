"""
Storage backends of lazy datasets

A dataset never touches storage itself. Its root holds a :class:`Saver` (or,
for read-only datasets, a :class:`Loader`) and hands it true slices, i.e.
slices already translated to the coordinates of the storage.

Capabilities are advertised with flags rather than discovered with
isinstance(): a saver that can write without blocking sets
``supports_async_writes = True`` and implements ``set_slice_async``.

When a slice passed to ``set_slice`` is expanded (``slice_nd.is_expanded``),
the saver must first grow its storage to ``slice_nd.source_shape``. Cells
created this way that are not covered by the write must read back as the
saver's fill value. When the fill value is materialized is up to the saver:
:class:`MemorySaver` writes it eagerly, :class:`HDF5Saver` leaves it to HDF5,
which only allocates chunks when they are first written.
"""

from __future__ import annotations

import abc
import asyncio
import concurrent.futures
import logging
import os
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any, ClassVar

import h5py
import numpy as np
from numpy.typing import ArrayLike, DTypeLike

from lazy_hdf5.errors import OperationCancelledError
from lazy_hdf5.slicetools import SliceND
from lazy_hdf5.typing_ import Monitor

logger = logging.getLogger(__name__)


def check_cancelled(monitor: Monitor | None) -> None:
    if monitor is not None and monitor.is_cancelled():
        raise OperationCancelledError("Operation cancelled by monitor")


def grown_shape(shape: tuple[int, ...], slice_nd: SliceND) -> tuple[int, ...]:
    """Smallest shape that contains both shape and the slice"""
    return tuple(max(a, b) for a, b in zip(shape, slice_nd.source_shape))


class Loader(abc.ABC):
    """Read side of a storage backend.

    All methods report failures by raising OSError.
    """

    def is_file_readable(self) -> bool:
        return True

    def initialize(self) -> None:
        """Prepare the storage, e.g. create the file. Raise OSError on failure."""

    def is_initialized(self) -> bool:
        return True

    @abc.abstractmethod
    def get_dataset(
        self, slice_nd: SliceND, monitor: Monitor | None = None
    ) -> np.ndarray:
        """Read the data selected by slice_nd"""

    def get_shape(self) -> tuple[int, ...] | None:
        """Current shape of the stored data, or None if unknown"""
        return None


class Saver(Loader):
    """Read and write storage backend"""

    supports_async_writes: ClassVar[bool] = False

    def is_file_writeable(self) -> bool:
        return True

    @abc.abstractmethod
    def set_slice(
        self, data: np.ndarray, slice_nd: SliceND, monitor: Monitor | None = None
    ) -> None:
        """Write data, which has shape slice_nd.shape, to the selection.

        Grow the storage first if slice_nd is expanded.
        """


class AsyncSaver(Saver):
    """Saver that can also enqueue writes without waiting for them.

    Errors of enqueued writes can't be raised to the writer; each
    implementation reports them its own way.
    """

    supports_async_writes: ClassVar[bool] = True

    @abc.abstractmethod
    def set_slice_async(
        self, data: np.ndarray, slice_nd: SliceND, monitor: Monitor | None = None
    ) -> Any:
        """Enqueue a write and return immediately"""


class MemorySaver(Saver):
    """Saver backed by a numpy array.

    Growing the array reallocates it, filling the new cells with fillvalue.
    Safe to use from multiple threads.
    """

    def __init__(
        self,
        array: ArrayLike,
        *,
        fillvalue: Any | None = None,
        readonly: bool = False,
    ):
        array = np.asarray(array)
        if not array.flags.writeable:
            array = array.copy()
        self.array = array
        self.fillvalue = fillvalue
        self.readonly = readonly
        self._lock = threading.RLock()

    @classmethod
    def empty(
        cls,
        shape: tuple[int, ...],
        dtype: DTypeLike,
        *,
        fillvalue: Any | None = None,
        readonly: bool = False,
    ) -> MemorySaver:
        if fillvalue is None:
            array = np.zeros(shape, dtype=dtype)
        else:
            array = np.full(shape, fillvalue, dtype=dtype)
        return cls(array, fillvalue=fillvalue, readonly=readonly)

    def __repr__(self) -> str:
        return f"<MemorySaver shape {self.array.shape}, type {self.array.dtype.str!r}>"

    def is_file_writeable(self) -> bool:
        return not self.readonly

    def get_shape(self) -> tuple[int, ...]:
        return self.array.shape

    def get_dataset(
        self, slice_nd: SliceND, monitor: Monitor | None = None
    ) -> np.ndarray:
        check_cancelled(monitor)
        with self._lock:
            out = self.array[slice_nd.raw].copy()
        if monitor is not None:
            monitor.worked(1)
        return out

    def set_slice(
        self, data: np.ndarray, slice_nd: SliceND, monitor: Monitor | None = None
    ) -> None:
        check_cancelled(monitor)
        with self._lock:
            new_shape = grown_shape(self.array.shape, slice_nd)
            if new_shape != self.array.shape:
                self._resize(new_shape)
            self.array[slice_nd.raw] = data
        if monitor is not None:
            monitor.worked(1)

    def _resize(self, new_shape: tuple[int, ...]) -> None:
        logger.debug(
            "Growing in-memory array from %s to %s", self.array.shape, new_shape
        )
        if self.fillvalue is None:
            new = np.zeros(new_shape, dtype=self.array.dtype)
        else:
            new = np.full(new_shape, self.fillvalue, dtype=self.array.dtype)
        new[tuple(slice(n) for n in self.array.shape)] = self.array
        self.array = new


class HDF5Saver(Saver):
    """Saver for a single dataset of an HDF5 file.

    The file is opened for the duration of each operation only, so the saver
    can be shared freely and there is nothing to close.

    If the dataset does not exist, :meth:`initialize` creates it from shape,
    dtype, maxshape, chunks and fillvalue. Resizable datasets must be chunked
    in HDF5; h5py picks a chunk shape when chunks is None.
    """

    def __init__(
        self,
        filename: str | os.PathLike,
        dataset_name: str,
        *,
        shape: tuple[int, ...] | None = None,
        dtype: DTypeLike | None = None,
        maxshape: tuple[int | None, ...] | None = None,
        chunks: tuple[int, ...] | None = None,
        fillvalue: Any | None = None,
        readonly: bool = False,
    ):
        self.filename = os.fspath(filename)
        self.dataset_name = dataset_name
        self.shape = shape
        self.dtype = dtype
        self.maxshape = maxshape
        self.chunks = chunks
        self.fillvalue = fillvalue
        self.readonly = readonly
        self._initialized = False

    def __repr__(self) -> str:
        return f"<HDF5Saver {self.filename!r}:{self.dataset_name!r}>"

    @contextmanager
    def _open(self, mode: str) -> Iterator[h5py.Dataset]:
        with h5py.File(self.filename, mode) as f:
            try:
                dataset = f[self.dataset_name]
            except KeyError as e:
                raise OSError(
                    f"Dataset {self.dataset_name!r} not found in {self.filename}"
                ) from e
            yield dataset

    def is_file_readable(self) -> bool:
        return os.access(self.filename, os.R_OK)

    def is_file_writeable(self) -> bool:
        if self.readonly:
            return False
        if os.path.exists(self.filename):
            return os.access(self.filename, os.W_OK)
        return os.access(os.path.dirname(os.path.abspath(self.filename)), os.W_OK)

    def is_initialized(self) -> bool:
        return self._initialized

    def initialize(self) -> None:
        if self.readonly:
            with self._open("r"):
                pass
            self._initialized = True
            return

        with h5py.File(self.filename, "a") as f:
            if self.dataset_name not in f:
                if self.shape is None or self.dtype is None:
                    raise OSError(
                        f"Dataset {self.dataset_name!r} does not exist in "
                        f"{self.filename} and shape and dtype were not given"
                    )
                maxshape = self.maxshape
                chunks = self.chunks
                if chunks is None and maxshape is not None and maxshape != self.shape:
                    chunks = True
                try:
                    f.create_dataset(
                        self.dataset_name,
                        shape=self.shape,
                        dtype=self.dtype,
                        maxshape=maxshape,
                        chunks=chunks,
                        fillvalue=self.fillvalue,
                    )
                except (TypeError, ValueError) as e:
                    raise OSError(
                        f"Could not create dataset {self.dataset_name!r} "
                        f"in {self.filename}: {e}"
                    ) from e
                logger.debug(
                    "Created dataset %r in %s with shape %s, maxshape %s",
                    self.dataset_name,
                    self.filename,
                    self.shape,
                    maxshape,
                )
        self._initialized = True

    def get_shape(self) -> tuple[int, ...] | None:
        if not os.path.exists(self.filename):
            return None
        with self._open("r") as dataset:
            return dataset.shape

    def get_dataset(
        self, slice_nd: SliceND, monitor: Monitor | None = None
    ) -> np.ndarray:
        check_cancelled(monitor)
        with self._open("r") as dataset:
            out = dataset[slice_nd.raw]
        if monitor is not None:
            monitor.worked(1)
        return out

    def set_slice(
        self, data: np.ndarray, slice_nd: SliceND, monitor: Monitor | None = None
    ) -> None:
        check_cancelled(monitor)
        with self._open("r+") as dataset:
            new_shape = grown_shape(dataset.shape, slice_nd)
            if new_shape != dataset.shape:
                logger.debug(
                    "Resizing %r from %s to %s",
                    self.dataset_name,
                    dataset.shape,
                    new_shape,
                )
                try:
                    dataset.resize(new_shape)
                except (TypeError, ValueError) as e:
                    raise OSError(
                        f"Could not resize {self.dataset_name!r} to {new_shape}: {e}"
                    ) from e
            if slice_nd.size:
                dataset[slice_nd.raw] = data
        if monitor is not None:
            monitor.worked(1)


# Dedicated IO thread running the event loop of ThreadedAsyncSaver.
# Adapted from https://github.com/fsspec/filesystem_spec/blob/master/fsspec/asyn.py
_iothread: list[threading.Thread | None] = [None]
_loop: list[asyncio.AbstractEventLoop | None] = [None]
_lock = threading.Lock()


def _get_loop() -> asyncio.AbstractEventLoop:
    """Create or return the IO loop, which runs on a separate daemon thread"""
    if _loop[0] is None:
        with _lock:
            # repeat the check just in case the loop got filled between the
            # previous two calls from another thread
            if _loop[0] is None:
                _loop[0] = asyncio.new_event_loop()
                th = threading.Thread(
                    target=_loop[0].run_forever, name="lazy_hdf5IO", daemon=True
                )
                th.start()
                _iothread[0] = th
    return _loop[0]


class ThreadedAsyncSaver(AsyncSaver):
    """Make any synchronous saver asynchronous.

    Asynchronous writes are scheduled on a shared IO event loop and run in a
    worker thread. Writes to the same saver never overlap, but the order
    in which queued writes run is not guaranteed.

    Failures of asynchronous writes are logged and collected in ``errors``;
    :meth:`wait` blocks until all queued writes are done and raises the first
    failure.
    """

    def __init__(self, saver: Saver):
        self.saver = saver
        self.errors: list[BaseException] = []
        self._pending: set[concurrent.futures.Future] = set()
        self._pending_lock = threading.Lock()
        self._write_lock = threading.Lock()

    def __repr__(self) -> str:
        return f"<ThreadedAsyncSaver of {self.saver!r}>"

    @property
    def n_pending(self) -> int:
        with self._pending_lock:
            return len(self._pending)

    def is_file_readable(self) -> bool:
        return self.saver.is_file_readable()

    def is_file_writeable(self) -> bool:
        return self.saver.is_file_writeable()

    def initialize(self) -> None:
        self.saver.initialize()

    def is_initialized(self) -> bool:
        return self.saver.is_initialized()

    def get_shape(self) -> tuple[int, ...] | None:
        return self.saver.get_shape()

    def get_dataset(
        self, slice_nd: SliceND, monitor: Monitor | None = None
    ) -> np.ndarray:
        return self.saver.get_dataset(slice_nd, monitor)

    def set_slice(
        self, data: np.ndarray, slice_nd: SliceND, monitor: Monitor | None = None
    ) -> None:
        with self._write_lock:
            self.saver.set_slice(data, slice_nd, monitor)

    def _checked_set_slice(
        self, data: np.ndarray, slice_nd: SliceND, monitor: Monitor | None
    ) -> None:
        if not self.saver.is_file_writeable():
            raise PermissionError(f"{self.saver!r} is not writeable")
        self.set_slice(data, slice_nd, monitor)

    async def _set_slice(
        self, data: np.ndarray, slice_nd: SliceND, monitor: Monitor | None
    ) -> None:
        await asyncio.to_thread(self._checked_set_slice, data, slice_nd, monitor)

    def set_slice_async(
        self, data: np.ndarray, slice_nd: SliceND, monitor: Monitor | None = None
    ) -> concurrent.futures.Future:
        # The caller is free to reuse its buffer as soon as we return
        data = np.array(data, copy=True)
        future = asyncio.run_coroutine_threadsafe(
            self._set_slice(data, slice_nd, monitor), _get_loop()
        )
        with self._pending_lock:
            self._pending.add(future)
        future.add_done_callback(self._on_done)
        return future

    def _on_done(self, future: concurrent.futures.Future) -> None:
        with self._pending_lock:
            if future not in self._pending:
                return
            self._pending.discard(future)
            if future.cancelled():
                return
            exc = future.exception()
            if exc is not None:
                logger.error(
                    "Asynchronous write to %r failed", self.saver, exc_info=exc
                )
                self.errors.append(exc)

    def wait(self, timeout: float | None = None) -> None:
        """Block until all queued writes are done.

        Raise the first error of any asynchronous write since the last call.
        """
        with self._pending_lock:
            pending = list(self._pending)
        done, not_done = concurrent.futures.wait(pending, timeout=timeout)
        if not_done:
            raise TimeoutError(f"{len(not_done)} write(s) still pending")
        # Done callbacks may run after wait() returns; make sure they have
        for future in done:
            self._on_done(future)
        with self._pending_lock:
            errors, self.errors = self.errors, []
        if errors:
            raise errors[0]
