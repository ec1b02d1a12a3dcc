"""Exceptions raised by lazy datasets.

Every error derives from :class:`DatasetError` and from the builtin exception
closest to its meaning, so that ``except IndexError`` or ``except OSError``
keep working for callers that don't know about this module.
"""


class DatasetError(Exception):
    pass


class ConfigurationError(DatasetError, ValueError):
    """Inconsistent construction parameters, or no saver/loader configured."""


class OutOfBoundsError(DatasetError, IndexError):
    """A slice lies outside of the dataset, or growth would exceed maxshape."""


class WritePermissionError(DatasetError, PermissionError):
    def __init__(self, msg="Cannot write to file as it is not writeable!"):
        super().__init__(msg)


class ReadPermissionError(DatasetError, PermissionError):
    def __init__(self, msg="Cannot read from file as it is not readable!"):
        super().__init__(msg)


class DatasetIOError(DatasetError, OSError):
    """A saver or loader failed. The original exception is the ``__cause__``."""


class ShapeMismatchError(DatasetError, ValueError):
    """Data can't be reshaped to the shape of the target slice."""


class OperationCancelledError(OSError):
    """Raised by savers that abort because their monitor was cancelled."""
