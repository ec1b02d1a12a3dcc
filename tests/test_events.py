from __future__ import annotations

import logging
import threading

import pytest

from lazy_hdf5.events import DataEvent, DataEventDelegate
from lazy_hdf5.monitor import ProgressMonitor


def test_data_event():
    event = DataEvent("data", (2, 3))
    assert event.name == "data"
    assert event.shape == (2, 3)
    assert event == DataEvent("data", (2, 3))
    with pytest.raises(AttributeError):
        event.shape = (1,)


def test_delegate():
    received = []
    delegate = DataEventDelegate()
    assert len(delegate) == 0

    delegate.add_listener(received.append)
    delegate.add_listener(received.append)
    assert len(delegate) == 1
    assert received.append in delegate

    delegate.fire(DataEvent("a", (1,)))
    assert received == [DataEvent("a", (1,))]

    delegate.remove_listener(received.append)
    delegate.remove_listener(received.append)
    delegate.fire(DataEvent("a", (2,)))
    assert len(received) == 1


def test_delegate_order_and_unsubscribe():
    calls = []
    delegate = DataEventDelegate()

    def once(event):
        calls.append("once")
        delegate.remove_listener(once)

    delegate.add_listener(once)
    delegate.add_listener(lambda event: calls.append("always"))
    delegate.fire(DataEvent("a", ()))
    delegate.fire(DataEvent("a", ()))
    assert calls == ["once", "always", "always"]


def test_delegate_copy():
    received = []
    delegate = DataEventDelegate([received.append])
    copy = delegate.copy()
    copy.add_listener(print)
    assert len(delegate) == 1
    assert len(copy) == 2
    copy.fire(DataEvent("a", ()))
    assert len(received) == 1


def test_delegate_logging(caplog):
    delegate = DataEventDelegate()
    with caplog.at_level(logging.DEBUG, logger="lazy_hdf5.events"):
        delegate.fire(DataEvent("a", (3,)))
    assert "Firing" in caplog.text


def test_listener_errors_propagate():
    def fail(event):
        raise RuntimeError("listener failed")

    delegate = DataEventDelegate([fail])
    with pytest.raises(RuntimeError, match="listener failed"):
        delegate.fire(DataEvent("a", ()))


def test_progress_monitor():
    mon = ProgressMonitor()
    assert not mon.is_cancelled()

    threads = [threading.Thread(target=mon.worked, args=(1,)) for _ in range(20)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert mon.work_done == 20

    mon.cancel()
    assert mon.is_cancelled()
