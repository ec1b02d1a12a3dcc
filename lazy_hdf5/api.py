"""
Public API functions

Everything outside of this file and of the classes it returns is considered
internal API and is subject to change.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Sequence
from typing import Any

import h5py
import numpy as np
from numpy.typing import ArrayLike, DTypeLike

from lazy_hdf5.backend import HDF5Saver, MemorySaver, Saver, ThreadedAsyncSaver
from lazy_hdf5.dataset import LazyWriteableDataset

logger = logging.getLogger(__name__)


def create_lazy_dataset(
    data: ArrayLike,
    maxshape: int | Sequence[int | None] | None = None,
    *,
    name: str = "data",
    chunks: int | Sequence[int] | None = None,
    fillvalue: Any | None = None,
) -> LazyWriteableDataset:
    """Wrap an in-memory array in a writeable lazy dataset.

    The array is used as storage without copying for as long as it doesn't
    need to grow, so writes to the dataset are visible in it.

    >>> ds = create_lazy_dataset(np.zeros((2, 2)), maxshape=(None, 2))
    >>> ds[3] = 1
    >>> ds.shape
    (4, 2)
    """
    array = np.asarray(data)
    saver = MemorySaver(array, fillvalue=fillvalue)
    return LazyWriteableDataset(
        name,
        array.dtype,
        array.shape,
        maxshape,
        chunks,
        saver,
        fillvalue=fillvalue,
    )


def _hdf5_saver(saver: HDF5Saver, write_async: bool) -> Saver:
    if write_async:
        return ThreadedAsyncSaver(saver)
    return saver


def create_hdf5_dataset(
    filename: str | os.PathLike,
    name: str,
    shape: int | Sequence[int],
    dtype: DTypeLike,
    maxshape: int | Sequence[int | None] | None = None,
    chunks: int | Sequence[int] | None = None,
    *,
    fillvalue: Any | None = None,
    write_async: bool = False,
    attrs: dict[str, Any] | None = None,
) -> LazyWriteableDataset:
    """Create a writeable lazy dataset stored in an HDF5 file.

    Neither the file nor the HDF5 dataset are created until the first read or
    write. With write_async=True writes are queued on a background thread;
    call ``ds.saver.wait()`` to wait for them.
    """
    ds = LazyWriteableDataset(
        name,
        dtype,
        shape,
        maxshape,
        chunks,
        None,
        fillvalue=fillvalue,
        write_async=write_async,
        attrs=attrs,
    )
    saver = HDF5Saver(
        filename,
        name,
        shape=ds.shape,
        dtype=ds.dtype,
        maxshape=ds.maxshape,
        chunks=ds.chunks,
        fillvalue=fillvalue,
    )
    ds.set_saver(_hdf5_saver(saver, write_async))
    return ds


def open_hdf5_dataset(
    filename: str | os.PathLike,
    name: str,
    *,
    readonly: bool = False,
    write_async: bool = False,
) -> LazyWriteableDataset:
    """Open an existing dataset of an HDF5 file as a lazy dataset.

    With readonly=True every write raises WritePermissionError.
    """
    with h5py.File(filename, "r") as f:
        dset = f[name]
        shape = dset.shape
        dtype = dset.dtype
        maxshape = dset.maxshape
        chunks = dset.chunks
        fillvalue = dset.fillvalue
        attrs = dict(dset.attrs)
    logger.debug("Opened %r in %s with shape %s", name, filename, shape)

    saver = HDF5Saver(filename, name, readonly=readonly)
    return LazyWriteableDataset(
        name,
        dtype,
        shape,
        maxshape,
        chunks,
        _hdf5_saver(saver, write_async),
        fillvalue=fillvalue,
        write_async=write_async,
        attrs=attrs,
    )
