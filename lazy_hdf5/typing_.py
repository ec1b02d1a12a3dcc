"""Type annotations.

Note: This module cannot be called 'typing' or 'types' as it will cause a
collision with the standard library 'typing' and 'types' modules.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

import numpy as np
from numpy.typing import DTypeLike, NDArray


@runtime_checkable
class ArrayProtocol(Protocol):
    """Minimal read-only NumPy array-like interface.

    Not to be confused with numpy.typing.ArrayLike, which is any object that
    can be coerced into a numpy array, including a nested list.

    Both numpy arrays and h5py datasets satisfy it, which is what the savers
    hand back and accept.
    """

    @property
    def shape(self) -> tuple[int, ...]: ...

    @property
    def size(self) -> int: ...

    @property
    def ndim(self) -> int: ...

    @property
    def dtype(self) -> np.dtype: ...

    def __getitem__(self, index: Any) -> ArrayProtocol: ...

    def __array__(
        self, dtype: DTypeLike | None = None, copy: bool | None = None
    ) -> NDArray: ...


@runtime_checkable
class Monitor(Protocol):
    """Cooperative progress and cancellation token passed down to the savers.

    The datasets never inspect it; whether and when a saver honors
    cancellation is up to the saver.
    """

    def is_cancelled(self) -> bool: ...

    def worked(self, amount: int) -> None: ...
