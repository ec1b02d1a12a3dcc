from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Any

import numpy as np
import pytest

from lazy_hdf5.backend import AsyncSaver, MemorySaver
from lazy_hdf5.slicetools import SliceND


# Run tests marked with @pytest.mark.slow last. See
# https://stackoverflow.com/questions/61533694/run-slow-pytest-commands-at-the-end-of-the-test-suite
def by_slow_marker(item):
    return bool(item.get_closest_marker("slow"))


def pytest_configure(config):
    config.addinivalue_line("markers", "slow: run after the other tests")


def pytest_collection_modifyitems(items):
    items.sort(key=by_slow_marker)


class RecordingSaver(MemorySaver):
    """MemorySaver that records every call it receives"""

    def __init__(self, array, **kwargs):
        super().__init__(array, **kwargs)
        self.calls: list[tuple[Any, ...]] = []

    def is_file_writeable(self) -> bool:
        self.calls.append(("is_file_writeable",))
        return super().is_file_writeable()

    def get_shape(self) -> tuple[int, ...]:
        self.calls.append(("get_shape",))
        return super().get_shape()

    def get_dataset(self, slice_nd: SliceND, monitor=None) -> np.ndarray:
        self.calls.append(("get_dataset", slice_nd))
        return super().get_dataset(slice_nd, monitor)

    def set_slice(self, data, slice_nd: SliceND, monitor=None) -> None:
        self.calls.append(("set_slice", data, slice_nd))
        super().set_slice(data, slice_nd, monitor)

    @property
    def writes(self) -> list[tuple[Any, ...]]:
        return [c for c in self.calls if c[0] in ("set_slice", "set_slice_async")]


class QueueingSaver(AsyncSaver, RecordingSaver):
    """Async saver that holds writes back until flush() is called"""

    def __init__(self, array, **kwargs):
        super().__init__(array, **kwargs)
        self.queue: list[tuple[Any, SliceND]] = []

    def set_slice_async(self, data, slice_nd: SliceND, monitor=None) -> None:
        self.calls.append(("set_slice_async", data, slice_nd))
        self.queue.append((data, slice_nd))

    def flush(self) -> None:
        for data, slice_nd in self.queue:
            MemorySaver.set_slice(self, data, slice_nd)
        self.queue.clear()


@pytest.fixture
def make_saver() -> Callable[..., RecordingSaver]:
    """Fixture which provides a function that creates a recording in-memory
    saver, optionally read-only or asynchronous.
    """

    def _make_saver(
        shape: tuple[int, ...],
        dtype: str = "f8",
        *,
        fillvalue: Any | None = None,
        readonly: bool = False,
        asynchronous: bool = False,
    ) -> RecordingSaver:
        cls = QueueingSaver if asynchronous else RecordingSaver
        if fillvalue is None:
            array = np.zeros(shape, dtype=dtype)
        else:
            array = np.full(shape, fillvalue, dtype=dtype)
        return cls(array, fillvalue=fillvalue, readonly=readonly)

    return _make_saver


@pytest.fixture
def h5path(tmp_path: Path) -> Path:
    return tmp_path / "file.h5"
