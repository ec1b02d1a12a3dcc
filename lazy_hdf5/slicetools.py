from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

import numpy as np
from ndindex import (
    BooleanArray,
    Integer,
    IntegerArray,
    Newaxis,
    Slice,
    Tuple,
    ellipsis,
    ndindex,
)

from lazy_hdf5.errors import ConfigurationError, OutOfBoundsError

#: Value of a maxshape entry for an axis that can grow without limit
UNLIMITED = None

Shape = tuple[int, ...]
MaxShape = tuple["int | None", ...]


def normalize_shape(shape: int | Sequence[int], name: str = "shape") -> Shape:
    """Convert an int or a sequence of ints to a shape tuple"""
    if isinstance(shape, (int, np.integer)):
        shape = (shape,)
    try:
        shape = tuple(int(i) for i in shape)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid {name} {shape!r}") from e
    if any(i < 0 for i in shape):
        raise ConfigurationError(f"{name} must be non-negative, got {shape}")
    return shape


def normalize_maxshape(
    maxshape: int | None | Sequence[int | None] | None, shape: Shape
) -> MaxShape:
    """Validate maxshape against shape.

    maxshape=None means that the dataset can't grow, matching h5py.
    Individual None entries mark unlimited axes.
    """
    if maxshape is None:
        return shape
    if isinstance(maxshape, (int, np.integer)):
        maxshape = (maxshape,)
    maxshape = tuple(UNLIMITED if m is None else int(m) for m in maxshape)
    if len(maxshape) != len(shape):
        raise ConfigurationError(
            f"Dimensions of maxshape ({maxshape}) must equal the dimensions of the "
            f"shape ({shape})"
        )
    for n, m in zip(shape, maxshape):
        if m is not UNLIMITED and m < n:
            raise ConfigurationError(
                f"maxshape {maxshape} must not be smaller than shape {shape}"
            )
    return maxshape


def normalize_chunks(
    chunks: int | Sequence[int] | None, shape: Shape
) -> tuple[int, ...] | None:
    if chunks is None:
        return None
    if isinstance(chunks, (int, np.integer)):
        chunks = (chunks,)
    chunks = tuple(int(c) for c in chunks)
    if len(chunks) != len(shape):
        raise ConfigurationError(
            f"Dimensions of chunks ({chunks}) must equal the dimensions of the "
            f"shape ({shape})"
        )
    if any(c <= 0 for c in chunks):
        raise ConfigurationError(f"chunks must be strictly positive, got {chunks}")
    return chunks


def _per_axis(value: Any, ndim: int, name: str) -> tuple[int | None, ...]:
    if value is None:
        return (None,) * ndim
    if isinstance(value, (int, np.integer)):
        value = (value,)
    value = tuple(None if v is None else int(v) for v in value)
    if len(value) != ndim:
        raise IndexError(
            f"{name} has {len(value)} elements; expected {ndim} for rank {ndim}"
        )
    return value


class SliceND:
    """An n-dimensional slice of a source of the given shape.

    All slices are normalized so that start, stop and step are explicit
    non-negative integers and stop is the smallest value that still selects the
    same elements. Negative start and stop count from the end of ``orig_shape``.

    Unlike with numpy, stop may exceed the current shape of the source as long
    as the selection fits within ``maxshape``. The smallest shape able to hold
    the selection is ``source_shape`` and the slice is then said to be expanded:

    >>> s = SliceND((2, 3), (2, 10), start=(0, 2), stop=(2, 6))
    >>> s
    SliceND[0:2, 2:6] of (2, 3) -> (2, 6)
    >>> s.shape, s.is_expanded
    ((2, 4), True)

    Selections exceeding maxshape raise OutOfBoundsError.
    """

    __slots__ = ("orig_shape", "maxshape", "start", "stop", "step", "source_shape")

    orig_shape: Shape
    maxshape: MaxShape
    start: Shape
    stop: Shape
    step: Shape
    source_shape: Shape

    def __init__(
        self,
        shape: Sequence[int],
        maxshape: Sequence[int | None] | None = None,
        start: Sequence[int | None] | int | None = None,
        stop: Sequence[int | None] | int | None = None,
        step: Sequence[int | None] | int | None = None,
    ):
        shape = tuple(int(i) for i in shape)
        ndim = len(shape)
        if maxshape is None:
            maxshape = shape
        maxshape = tuple(UNLIMITED if m is None else int(m) for m in maxshape)
        if len(maxshape) != ndim:
            raise ConfigurationError("shape and maxshape must have the same length")

        starts = []
        stops = []
        steps = []
        source_shape = []
        for axis, (n, m, b, e, s) in enumerate(
            zip(
                shape,
                maxshape,
                _per_axis(start, ndim, "start"),
                _per_axis(stop, ndim, "stop"),
                _per_axis(step, ndim, "step"),
            )
        ):
            if s is None:
                s = 1
            elif s < 1:
                raise IndexError("only slices with step >= 1 are supported")

            if b is None:
                b = 0
            elif b < 0:
                b += n
                if b < 0:
                    raise OutOfBoundsError(
                        f"start {b - n} is out of bounds for axis {axis} "
                        f"with size {n}"
                    )

            if e is None:
                e = n
            elif e < 0:
                e = max(0, e + n)

            count = math.ceil((e - b) / s) if e > b else 0
            if count:
                e = b + (count - 1) * s + 1
                if m is not UNLIMITED and e > m:
                    raise OutOfBoundsError(
                        f"Slice {b}:{e}:{s} exceeds maximum size {m} of axis {axis}"
                    )
                n = max(n, e)
            else:
                e = b

            starts.append(b)
            stops.append(e)
            steps.append(s)
            source_shape.append(n)

        self.orig_shape = shape
        self.maxshape = maxshape
        self.start = tuple(starts)
        self.stop = tuple(stops)
        self.step = tuple(steps)
        self.source_shape = tuple(source_shape)

    @property
    def ndim(self) -> int:
        return len(self.orig_shape)

    @property
    def shape(self) -> Shape:
        """Shape of the selection"""
        return tuple(
            (e - b + s - 1) // s for b, e, s in zip(self.start, self.stop, self.step)
        )

    @property
    def size(self) -> int:
        return math.prod(self.shape)

    @property
    def is_expanded(self) -> bool:
        """True if the selection extends beyond orig_shape"""
        return self.source_shape != self.orig_shape

    def to_ndindex(self) -> Tuple:
        return Tuple(
            *(Slice(b, e, s) for b, e, s in zip(self.start, self.stop, self.step))
        )

    @property
    def raw(self) -> tuple[slice, ...]:
        """Index that numpy and h5py understand"""
        return self.to_ndindex().raw

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SliceND):
            return NotImplemented
        return (
            self.start == other.start
            and self.stop == other.stop
            and self.step == other.step
            and self.source_shape == other.source_shape
        )

    def __hash__(self) -> int:
        return hash((self.start, self.stop, self.step, self.source_shape))

    def __repr__(self) -> str:
        idx = ", ".join(
            f"{b}:{e}" if s == 1 else f"{b}:{e}:{s}"
            for b, e, s in zip(self.start, self.stop, self.step)
        )
        out = f"SliceND[{idx}] of {self.orig_shape}"
        if self.is_expanded:
            out += f" -> {self.source_shape}"
        return out


def index_to_slice_nd(
    index: Any,
    shape: Sequence[int],
    maxshape: Sequence[int | None] | None = None,
    *,
    clamp: bool = False,
) -> tuple[SliceND, tuple[int, ...]]:
    """Convert a numpy basic index to a SliceND.

    Integers select a single element along their axis; they are returned in the
    second element of the output so that the caller can drop those axes, like
    numpy does.

    With clamp=True slices are clipped to shape like numpy does on read;
    otherwise they are kept as is so that writes can grow the dataset up to
    maxshape.
    """
    shape = tuple(shape)
    idx = ndindex(index)
    args = idx.args if isinstance(idx, Tuple) else (idx,)

    for arg in args:
        if isinstance(arg, (IntegerArray, BooleanArray)):
            raise NotImplementedError("Only basic slicing is supported")
        if isinstance(arg, Newaxis):
            raise NotImplementedError("newaxis is not supported")

    n_ellipsis = sum(isinstance(arg, ellipsis) for arg in args)
    if n_ellipsis:
        pos = next(i for i, arg in enumerate(args) if isinstance(arg, ellipsis))
        fill = (Slice(None),) * (len(shape) - len(args) + 1)
        args = args[:pos] + fill + args[pos + 1 :]
    if len(args) > len(shape):
        raise IndexError(
            f"too many indices for dataset; expected {len(shape)}, got {len(args)}"
        )
    args = args + (Slice(None),) * (len(shape) - len(args))

    starts = []
    stops = []
    steps = []
    int_axes = []
    for axis, (arg, n) in enumerate(zip(args, shape)):
        if isinstance(arg, Integer):
            i = arg.raw
            if i < 0:
                i += n
            if i < 0 or (clamp and i >= n):
                raise OutOfBoundsError(
                    f"index {arg.raw} is out of bounds for axis {axis} with size {n}"
                )
            starts.append(i)
            stops.append(i + 1)
            steps.append(1)
            int_axes.append(axis)
        else:
            if arg.step is not None and arg.step < 1:
                raise IndexError("only slices with step >= 1 are supported")
            if clamp:
                arg = arg.reduce(n)
            starts.append(arg.start)
            stops.append(arg.stop)
            steps.append(arg.step)

    return SliceND(shape, maxshape, starts, stops, steps), tuple(int_axes)


@dataclass(frozen=True)
class ViewTransform:
    """Map from the coordinates of a view to the coordinates of its source.

    Local axis ``i`` of the view runs along source axis ``axes[i]``; along source
    axis ``a``, local index ``k`` maps to source index ``start[a] + k * step[a]``.

    Transforms compose eagerly: slicing or transposing a view returns a new
    transform against the same source, so a chain of views of any depth is
    translated in one step.
    """

    start: Shape
    step: Shape
    axes: Shape
    shape: Shape

    @classmethod
    def identity(cls, shape: Sequence[int]) -> ViewTransform:
        ndim = len(shape)
        return cls((0,) * ndim, (1,) * ndim, tuple(range(ndim)), tuple(shape))

    @property
    def ndim(self) -> int:
        return len(self.shape)

    @property
    def is_identity(self) -> bool:
        """True if local coordinates equal source coordinates.

        The shape of the view may still be smaller than the source.
        """
        return (
            all(b == 0 for b in self.start)
            and all(s == 1 for s in self.step)
            and self.axes == tuple(range(self.ndim))
        )

    @property
    def is_transposed(self) -> bool:
        return self.axes != tuple(range(self.ndim))

    def slice(self, local: SliceND) -> ViewTransform:
        """Compose with a slice expressed in local coordinates"""
        if local.orig_shape != self.shape or local.is_expanded:
            raise OutOfBoundsError(f"{local} does not fit within shape {self.shape}")
        start = list(self.start)
        step = list(self.step)
        for i, a in enumerate(self.axes):
            start[a] = self.start[a] + local.start[i] * self.step[a]
            step[a] = self.step[a] * local.step[i]
        return ViewTransform(tuple(start), tuple(step), self.axes, local.shape)

    def transpose(self, axes: Sequence[int] | None = None) -> ViewTransform:
        """Compose with a permutation of the local axes.

        As in numpy, no axes reverses their order.
        """
        if not axes:
            axes = tuple(reversed(range(self.ndim)))
        axes = tuple(int(a) for a in axes)
        if sorted(axes) != list(range(self.ndim)):
            raise ValueError(f"axes {axes} don't match dataset of rank {self.ndim}")
        return ViewTransform(
            self.start,
            self.step,
            tuple(self.axes[i] for i in axes),
            tuple(self.shape[i] for i in axes),
        )

    def apply(
        self,
        local: SliceND,
        source_shape: Sequence[int],
        source_maxshape: Sequence[int | None] | None = None,
    ) -> SliceND:
        """Translate a slice in local coordinates to source coordinates"""
        if local.is_expanded:
            raise OutOfBoundsError(f"{local} does not fit within shape {self.shape}")
        start = [0] * self.ndim
        stop = [0] * self.ndim
        step = [1] * self.ndim
        for i, (a, count) in enumerate(zip(self.axes, local.shape)):
            b = self.start[a] + local.start[i] * self.step[a]
            s = self.step[a] * local.step[i]
            start[a] = b
            stop[a] = b + (count - 1) * s + 1 if count else b
            step[a] = s
        return SliceND(source_shape, source_maxshape, start, stop, step)

    def to_source_order(self, data: np.ndarray) -> np.ndarray:
        """Transpose data laid out along the local axes to the source axes"""
        if not self.is_transposed:
            return data
        return np.transpose(data, np.argsort(self.axes))

    def to_local_order(self, data: np.ndarray) -> np.ndarray:
        if not self.is_transposed:
            return data
        return np.transpose(data, self.axes)
