from __future__ import annotations

import math
from collections.abc import Sequence

import numpy as np
from numpy.typing import ArrayLike, DTypeLike

from lazy_hdf5.errors import ShapeMismatchError
from lazy_hdf5.typing_ import ArrayProtocol

NP_VERSION = tuple(int(i) for i in np.__version__.split(".")[:3])


def asarray(a: ArrayLike, /, *, dtype: DTypeLike | None = None):
    """Variant of np.asarray(a, dtype=dtype), with some differences:

    1. If a is a numpy-like array, don't coerce it to a numpy.ndarray
    2. If a already has the requested dtype, return it unchanged
    3. Work around https://github.com/numpy/numpy/issues/28269
       on NumPy >=2.0.0,<2.2.3 when converting from arrays of object strings to
       NpyStrings
    """
    if not isinstance(a, ArrayProtocol) or np.isscalar(a):
        return np.asarray(a, dtype=dtype)

    if dtype is None:
        return a

    dtype = np.dtype(dtype)
    if a.dtype == dtype:
        return a

    if NP_VERSION < (2, 2, 3) and a.dtype.kind == "O" and dtype.kind == "T":
        return asarray(asarray(a, dtype="U"), dtype=dtype)

    if hasattr(a, "astype"):
        return a.astype(dtype)
    return np.asarray(a, dtype=dtype)


def drop_axes(shape: Sequence[int], axes: Sequence[int]) -> tuple[int, ...]:
    """
    >>> drop_axes((2, 1, 3, 1), (1, 3))
    (2, 3)
    """
    return tuple(n for i, n in enumerate(shape) if i not in axes)


def reshape_to(data, shape: tuple[int, ...]):
    """Reshape data to the shape of a selection.

    Zero-rank data is treated as having shape (1,). Data that already has the
    requested shape is returned unchanged; data with a different number of
    elements raises ShapeMismatchError.

    >>> reshape_to(np.arange(6), (2, 3)).shape
    (2, 3)
    >>> reshape_to(np.float64(1), (1, 1)).shape
    (1, 1)
    """
    if data.shape == shape:
        return data
    if math.prod(data.shape or (1,)) != math.prod(shape):
        raise ShapeMismatchError(
            f"Cannot reshape data of shape {data.shape} to the shape {shape} "
            "of the selection"
        )
    return np.reshape(np.asarray(data), shape)
