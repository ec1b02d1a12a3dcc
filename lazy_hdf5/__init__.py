import importlib.metadata

from lazy_hdf5.api import create_hdf5_dataset, create_lazy_dataset, open_hdf5_dataset
from lazy_hdf5.backend import (
    AsyncSaver,
    HDF5Saver,
    Loader,
    MemorySaver,
    Saver,
    ThreadedAsyncSaver,
)
from lazy_hdf5.dataset import LazyDataset, LazyWriteableDataset
from lazy_hdf5.events import DataEvent
from lazy_hdf5.monitor import ProgressMonitor
from lazy_hdf5.slicetools import UNLIMITED, SliceND

__version__ = importlib.metadata.version("lazy-hdf5")

__all__ = [
    "UNLIMITED",
    "AsyncSaver",
    "DataEvent",
    "HDF5Saver",
    "LazyDataset",
    "LazyWriteableDataset",
    "Loader",
    "MemorySaver",
    "ProgressMonitor",
    "Saver",
    "SliceND",
    "ThreadedAsyncSaver",
    "create_hdf5_dataset",
    "create_lazy_dataset",
    "open_hdf5_dataset",
]
