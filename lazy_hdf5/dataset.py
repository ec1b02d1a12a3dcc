"""
Lazy datasets

A :class:`LazyDataset` is a handle on N-dimensional data that lives in a
storage backend; nothing is read until it is sliced. A
:class:`LazyWriteableDataset` can also be written to, growing along any axis
up to its maxshape.

Datasets created directly are roots. Slicing or transposing with
:meth:`~LazyDataset.get_slice_view` and :meth:`~LazyDataset.get_transposed_view`
returns views, which own no storage: every read and write through a view is
translated to the coordinates of its root and performed there.

>>> import numpy as np
>>> from lazy_hdf5 import MemorySaver
>>> ds = LazyWriteableDataset(
...     "x", "i8", (2, 3), maxshape=(2, 10),
...     saver=MemorySaver.empty((2, 3), "i8", fillvalue=-1),
... )
>>> ds.set_slice(np.ones((2, 4)), start=(0, 2), stop=(2, 6))
>>> ds.shape
(2, 6)
>>> ds[0]
array([-1, -1,  1,  1,  1,  1])
"""

from __future__ import annotations

import copy
import logging
import math
import posixpath
from collections.abc import Iterable, Sequence
from typing import Any

import numpy as np
from numpy.typing import ArrayLike, DTypeLike

from lazy_hdf5.backend import Loader, Saver
from lazy_hdf5.errors import (
    ConfigurationError,
    DatasetIOError,
    OutOfBoundsError,
    ReadPermissionError,
    ShapeMismatchError,
    WritePermissionError,
)
from lazy_hdf5.events import DataEvent, DataEventDelegate, DataListener
from lazy_hdf5.slicetools import (
    MaxShape,
    Shape,
    SliceND,
    ViewTransform,
    index_to_slice_nd,
    normalize_chunks,
    normalize_maxshape,
    normalize_shape,
)
from lazy_hdf5.tools import asarray, drop_axes, reshape_to
from lazy_hdf5.typing_ import Monitor

logger = logging.getLogger(__name__)


class LazyDataset:
    """Read-only lazy dataset.

    Parameters
    ----------
    name
        Name of the dataset, reported in :class:`DataEvent`.
    dtype
        numpy dtype of the elements.
    shape
        Current shape.
    maxshape
        Shape the dataset may grow to, with None for unlimited axes.
        None (the default) means that the dataset can't grow, like in h5py.
    loader
        Backend the data is read from.
    elements_per_item
        Number of scalars making up each item, e.g. 3 for RGB data stored as
        one item. Informational only.
    """

    name: str
    dtype: np.dtype
    elements_per_item: int
    attrs: dict[str, Any]

    _shape: Shape
    _original_shape: Shape
    _maxshape: MaxShape
    _loader: Loader | None
    _base: LazyDataset | None
    # None on plain roots; the composed transform on views and detached clones
    _transform: ViewTransform | None
    # Storage shape a detached clone's transform applies to
    _source_shape: Shape | None
    _events: DataEventDelegate

    def __init__(
        self,
        name: str,
        dtype: DTypeLike,
        shape: int | Sequence[int],
        maxshape: int | Sequence[int | None] | None = None,
        loader: Loader | None = None,
        *,
        elements_per_item: int = 1,
        attrs: dict[str, Any] | None = None,
    ):
        shape = normalize_shape(shape)
        if elements_per_item < 1:
            raise ConfigurationError(
                f"elements_per_item must be at least 1, got {elements_per_item}"
            )
        self.name = name
        self.dtype = np.dtype(dtype)
        self.elements_per_item = int(elements_per_item)
        self.attrs = dict(attrs) if attrs else {}
        self._shape = shape
        self._original_shape = shape
        self._maxshape = normalize_maxshape(maxshape, shape)
        self._loader = loader
        self._base = None
        self._transform = None
        self._source_shape = None
        self._events = DataEventDelegate()

    @property
    def shape(self) -> Shape:
        return self._shape

    @property
    def original_shape(self) -> Shape:
        """Shape at creation. For views, the shape of the view when derived."""
        return self._original_shape

    @property
    def maxshape(self) -> MaxShape:
        return self._maxshape

    @property
    def size(self) -> int:
        return math.prod(self._shape)

    @property
    def ndim(self) -> int:
        return len(self._shape)

    @property
    def base(self) -> LazyDataset | None:
        """The root this view reads and writes through; None for roots."""
        return self._base

    @property
    def transform(self) -> ViewTransform:
        """Map from the coordinates of this dataset to those of its storage"""
        if self._transform is None:
            return ViewTransform.identity(self._shape)
        return self._transform

    @property
    def loader(self) -> Loader | None:
        return self._loader

    @property
    def is_view(self) -> bool:
        return self._base is not None

    @property
    def _root(self) -> LazyDataset:
        ds = self
        while ds._base is not None:
            ds = ds._base
        return ds

    def _source_bounds(self) -> tuple[Shape, MaxShape]:
        """Shape and maxshape of the storage this root addresses"""
        if self._source_shape is not None:
            return self._source_shape, self._source_shape
        return self._shape, self._maxshape

    def __bool__(self) -> bool:
        return bool(self.size)

    def __len__(self) -> int:
        return self.len()

    def len(self) -> int:
        """Length of the first axis."""
        if len(self._shape) == 0:
            raise TypeError("Attempt to take len() of scalar dataset")
        return self._shape[0]

    def __repr__(self) -> str:
        name = posixpath.basename(posixpath.normpath(self.name)) if self.name else ""
        namestr = '"%s"' % (name if name != "" else "/")
        view = " view" if self.is_view else ""
        return '<{}{} {}: shape {}, type "{}">'.format(
            self.__class__.__name__,
            view,
            namestr,
            self._shape,
            self.dtype.str,
        )

    def __iter__(self) -> Iterable[np.ndarray | np.generic]:
        """Iterate over the first axis. TypeError if scalar."""
        shape = self._shape
        if len(shape) == 0:
            raise TypeError("Can't iterate over a scalar dataset")
        for i in range(shape[0]):
            yield self[i]

    def __array__(self, dtype: DTypeLike | None = None, copy: bool | None = None):
        if copy is False:
            raise ValueError("Cannot return a lazy dataset as an array without a copy")
        out = self.get_slice()
        if copy:
            return np.array(out, dtype=dtype, copy=True)
        return np.asarray(out, dtype=dtype)

    # Slicing

    def create_slice(
        self,
        start: Sequence[int | None] | int | None = None,
        stop: Sequence[int | None] | int | None = None,
        step: Sequence[int | None] | int | None = None,
    ) -> SliceND:
        """Slice in the coordinates of this dataset.

        Only roots can have slices reaching beyond their shape, up to maxshape.
        """
        return SliceND(self._shape, self._slice_maxshape, start, stop, step)

    @property
    def _slice_maxshape(self) -> MaxShape:
        if self._transform is None:
            return self._maxshape
        return self._shape

    def _make_slice(
        self,
        start: SliceND | Sequence[int | None] | int | None,
        stop: Sequence[int | None] | int | None,
        step: Sequence[int | None] | int | None,
        *,
        growable: bool,
    ) -> SliceND:
        if isinstance(start, SliceND):
            if stop is not None or step is not None:
                raise TypeError("stop and step must be None when start is a SliceND")
            start, stop, step = start.start, start.stop, start.step
        maxshape = self._slice_maxshape if growable else self._shape
        return SliceND(self._shape, maxshape, start, stop, step)

    def calc_true_slice(self, slice_nd: SliceND) -> SliceND:
        """Translate a slice of this dataset to the coordinates of its storage.

        Slices are always re-derived against the current shape of the root, so
        stale slices pick up growth that happened since they were created.
        """
        source_shape, source_maxshape = self._root._source_bounds()
        if self._transform is None:
            return SliceND(
                source_shape,
                source_maxshape,
                slice_nd.start,
                slice_nd.stop,
                slice_nd.step,
            )
        return self._transform.apply(slice_nd, source_shape, source_maxshape)

    # Reading

    def get_slice(
        self,
        start: SliceND | Sequence[int | None] | int | None = None,
        stop: Sequence[int | None] | int | None = None,
        step: Sequence[int | None] | int | None = None,
        *,
        monitor: Monitor | None = None,
    ) -> np.ndarray:
        """Read a slice into memory"""
        return self._read(self._make_slice(start, stop, step, growable=False), monitor)

    def __getitem__(self, index) -> np.ndarray | np.generic:
        local, int_axes = index_to_slice_nd(index, self._shape, clamp=True)
        out = self._read(local, None)
        if int_axes:
            out = out.reshape(drop_axes(out.shape, int_axes))
            if out.ndim == 0:
                return out[()]
        return out

    def _read(self, local: SliceND, monitor: Monitor | None) -> np.ndarray:
        true_slice = self.calc_true_slice(local)
        root = self._root
        loader = root._loader
        if loader is None:
            raise ConfigurationError("Cannot read from file as loader not defined!")
        root._ensure_initialized(loader)
        if not loader.is_file_readable():
            raise ReadPermissionError()
        try:
            out = loader.get_dataset(true_slice, monitor)
        except OSError as e:
            raise DatasetIOError(f"Could not load {true_slice} of {self.name!r}") from e
        out = np.asarray(out)
        if self._transform is not None:
            out = self._transform.to_local_order(out)
        return out

    def _ensure_initialized(self, loader: Loader) -> None:
        if loader.is_initialized():
            return
        try:
            loader.initialize()
        except OSError as e:
            raise DatasetIOError(
                f"Could not initialize storage of {self.name!r}"
            ) from e

    def refresh_shape(self) -> bool:
        """Adopt the shape the backend reports, if it has changed.

        Fire a :class:`DataEvent` and return True if the shape changed. Views
        and clones of views have a fixed shape and always return False.
        """
        if self._transform is not None or self._loader is None:
            return False
        shape = self._loader.get_shape()
        if shape is None:
            return False
        shape = tuple(int(i) for i in shape)
        if shape == self._shape:
            return False
        if len(shape) != len(self._shape) or any(
            m is not None and n > m for n, m in zip(shape, self._maxshape)
        ):
            raise OutOfBoundsError(
                f"Backend of {self.name!r} reports shape {shape} which doesn't fit "
                f"maxshape {self._maxshape}"
            )
        logger.debug(
            "Shape of %r refreshed from %s to %s", self.name, self._shape, shape
        )
        self._shape = shape
        self._events.fire(DataEvent(self.name, shape))
        return True

    # Views

    def get_slice_view(
        self,
        start: SliceND | Sequence[int | None] | int | None = None,
        stop: Sequence[int | None] | int | None = None,
        step: Sequence[int | None] | int | None = None,
    ):
        """View of a slice of this dataset.

        The slice must lie within the current shape; the view's shape is that
        of the slice and never changes.
        """
        local = self._make_slice(start, stop, step, growable=False)
        return self._derive(self.transform.slice(local))

    def get_transposed_view(self, *axes: int):
        """View with permuted axes, like numpy.transpose. No axes reverses them."""
        if len(axes) == 1 and isinstance(axes[0], (tuple, list)):
            axes = tuple(axes[0])
        return self._derive(self.transform.transpose(axes))

    def _derive(self, transform: ViewTransform):
        root = self._root
        view = copy.copy(self)
        view._base = root
        view._transform = transform
        view._shape = transform.shape
        view._original_shape = transform.shape
        view._maxshape = transform.shape
        view._loader = None
        view._source_shape = None
        view._events = root._events
        view.attrs = root.attrs
        logger.debug("Derived view of %r with %s", self.name, transform)
        return view

    def clone(self):
        """Copy of this dataset with its own lineage.

        The clone shares the backend, and so the stored data, but not its
        configuration or listeners. The clone of a view keeps addressing the
        same region of the storage; its shape is fixed.
        """
        out = copy.copy(self)
        out._events = self._events.copy()
        out.attrs = dict(self.attrs)
        if self._base is not None:
            root = self._root
            out._base = None
            out._loader = root._loader
            out._source_shape = root._source_bounds()[0]
        return out

    # Listeners

    def add_data_listener(self, listener: DataListener) -> None:
        self._events.add_listener(listener)

    def remove_data_listener(self, listener: DataListener) -> None:
        self._events.remove_listener(listener)


class LazyWriteableDataset(LazyDataset):
    """Lazy dataset that can be written to.

    Writes are persisted through ``saver`` right away, or queued if the
    dataset writes asynchronously and the saver supports it. Writing beyond
    the current shape grows the dataset up to ``maxshape``; elements that
    were never written read back as ``fillvalue``.

    Views of a writeable dataset are writeable too and write through their
    root.
    """

    _saver: Saver | None
    _chunks: tuple[int, ...] | None
    _fillvalue: Any | None
    _write_async: bool

    def __init__(
        self,
        name: str,
        dtype: DTypeLike,
        shape: int | Sequence[int],
        maxshape: int | Sequence[int | None] | None = None,
        chunks: int | Sequence[int] | None = None,
        saver: Saver | None = None,
        *,
        elements_per_item: int = 1,
        fillvalue: Any | None = None,
        write_async: bool = False,
        attrs: dict[str, Any] | None = None,
    ):
        super().__init__(
            name,
            dtype,
            shape,
            maxshape,
            saver,
            elements_per_item=elements_per_item,
            attrs=attrs,
        )
        self._saver = saver
        self._chunks = normalize_chunks(chunks, self._shape)
        self._fillvalue = fillvalue
        self._write_async = bool(write_async)

    @property
    def saver(self) -> Saver | None:
        return self._saver

    def set_saver(self, saver: Saver | None) -> None:
        """Replace the saver, which is also used as loader, of this dataset only"""
        if self.is_view:
            raise ConfigurationError("Cannot set the saver of a view")
        self._saver = saver
        self._loader = saver

    @property
    def chunks(self) -> tuple[int, ...] | None:
        return self._chunks

    def get_chunking(self) -> tuple[int, ...] | None:
        return self._chunks

    def set_chunking(self, *chunks) -> None:
        """Set the chunking hint. No arguments, or None, clear it."""
        if len(chunks) == 1 and (
            chunks[0] is None or isinstance(chunks[0], (tuple, list))
        ):
            chunks = chunks[0]
        self._chunks = normalize_chunks(chunks or None, self._shape)

    @property
    def fillvalue(self) -> np.generic:
        if self._fillvalue is not None:
            return np.asarray(self._fillvalue, dtype=self.dtype)[()]
        return np.zeros((), dtype=self.dtype)[()]

    @fillvalue.setter
    def fillvalue(self, value: Any | None) -> None:
        self._fillvalue = value

    def set_fill_value(self, value: Any | None) -> None:
        self._fillvalue = value

    @property
    def write_async(self) -> bool:
        return self._write_async

    def set_writing_async(self, flag: bool) -> None:
        """Make plain writes non-blocking when the saver supports it"""
        self._write_async = bool(flag)

    def _derive(self, transform: ViewTransform):
        view = super()._derive(transform)
        view._saver = None
        if self._chunks is not None:
            # Follow the axes of the view
            parent_axes = self.transform.axes
            view._chunks = tuple(
                self._chunks[parent_axes.index(a)] for a in transform.axes
            )
        return view

    def clone(self) -> LazyWriteableDataset:
        root = self._root
        out = super().clone()
        out._saver = root._saver
        return out

    # Writing

    def set_slice(
        self,
        data: ArrayLike,
        start: SliceND | Sequence[int | None] | int | None = None,
        stop: Sequence[int | None] | int | None = None,
        step: Sequence[int | None] | int | None = None,
        *,
        monitor: Monitor | None = None,
    ) -> None:
        """Write data to a slice, synchronously or not depending on write_async.

        start may also be a SliceND, in which case stop and step must be None.
        """
        local = self._make_slice(start, stop, step, growable=True)
        self._internal_set_slice(monitor, self._write_async, data, local)

    def set_slice_sync(
        self,
        data: ArrayLike,
        start: SliceND | Sequence[int | None] | int | None = None,
        stop: Sequence[int | None] | int | None = None,
        step: Sequence[int | None] | int | None = None,
        *,
        monitor: Monitor | None = None,
    ) -> None:
        """Write data to a slice and wait for it to be persisted"""
        local = self._make_slice(start, stop, step, growable=True)
        self._internal_set_slice(monitor, False, data, local)

    def __setitem__(self, index, value: ArrayLike) -> None:
        local, int_axes = index_to_slice_nd(index, self._shape, self._slice_maxshape)
        value = asarray(value, dtype=self.dtype)
        if value.size != local.size:
            try:
                value = np.broadcast_to(value, drop_axes(local.shape, int_axes))
            except ValueError as e:
                raise ShapeMismatchError(
                    f"Can't broadcast {value.shape} to {local.shape}"
                ) from e
        self._internal_set_slice(None, self._write_async, value, local)

    def _transform_input(self, data: np.ndarray) -> np.ndarray:
        """Hook for subclasses to convert data just before it is written"""
        return data

    def _internal_set_slice(
        self,
        monitor: Monitor | None,
        asynchronous: bool,
        data: ArrayLike,
        local: SliceND,
    ) -> None:
        data = reshape_to(asarray(data, dtype=self.dtype), local.shape)
        true_slice = self.calc_true_slice(local)
        if self._transform is not None:
            data = self._transform.to_source_order(data)
        data = self._transform_input(data)

        root = self._root
        if root is not self:
            logger.debug("Writing to view of %r as %s", root.name, true_slice)
        root._write_true_slice(monitor, asynchronous, data, true_slice)

    def _write_true_slice(
        self,
        monitor: Monitor | None,
        asynchronous: bool,
        data: np.ndarray,
        true_slice: SliceND,
    ) -> None:
        """Persist data already translated to storage coordinates.

        Only called on roots.
        """
        saver = self._saver
        if saver is None:
            raise ConfigurationError("Cannot write to file as saver not defined!")

        new_shape = self._shape
        if self._source_shape is None and true_slice.is_expanded:
            new_shape = tuple(
                max(n, m) for n, m in zip(self._shape, true_slice.source_shape)
            )

        if not saver.is_file_writeable():
            raise WritePermissionError()
        if asynchronous and saver.supports_async_writes:
            self._ensure_initialized(saver)
            logger.debug("Queueing write of %s to %r", true_slice, self.name)
            try:
                saver.set_slice_async(data, true_slice, monitor)
            except OSError as e:
                raise DatasetIOError(f"Could not save dataset {self.name!r}") from e
            self._grow(new_shape)
            self._events.fire(DataEvent(self.name, self._shape))
            return

        self._ensure_initialized(saver)
        logger.debug("Writing %s to %r", true_slice, self.name)
        try:
            saver.set_slice(data, true_slice, monitor)
        except OSError as e:
            raise DatasetIOError(f"Could not save dataset {self.name!r}") from e
        self._grow(new_shape)
        if not self.refresh_shape():
            self._events.fire(DataEvent(self.name, self._shape))

    def _grow(self, new_shape: Shape) -> None:
        if new_shape != self._shape:
            logger.debug("Growing %r from %s to %s", self.name, self._shape, new_shape)
            self._shape = new_shape
