"""
Tests for the WatchManagerBase base class
"""

# Standard
import threading
import time

# Third Party
import pytest

# Local
from declar8.test_helpers.helpers import make_watch_entry
from declar8.watch_manager.base import WatchManagerBase

## Helpers #####################################################################


class DummyWatchManager(WatchManagerBase):
    def __init__(
        self,
        entry,
        watch_success=True,
        stop_wait=0.0,
    ):
        super().__init__(entry)
        self.watching = False
        self.watch_success = watch_success
        self.stop_wait = stop_wait

    def watch(self):
        if self.watch_success:
            self.watching = True
            return True
        return False

    def wait(self):
        while self.watching:
            time.sleep(0.05)

    def stop(self):
        if self.stop_wait:
            threading.Thread(target=self._delayed_stop).start()
        else:
            self.watching = False

    def _delayed_stop(self):
        time.sleep(self.stop_wait)
        self.watching = False


def other_entry():
    return make_watch_entry(group="asdf.qwer")


## Tests #######################################################################


def test_constructor_properties():
    """Test that the entry properties are set on the watch manager"""
    entry = make_watch_entry()
    wm = DummyWatchManager(entry)
    assert wm.entry is entry
    assert wm.group == entry.group
    assert wm.version == entry.version
    assert wm.kind == entry.kind
    assert str(wm) == f"Watch[{entry.api_version}/{entry.kind}]"


def test_constructor_registrations():
    """Test that all constructed watch managers get registered"""
    wm1 = DummyWatchManager(make_watch_entry())
    wm2 = DummyWatchManager(other_entry())
    assert len(WatchManagerBase._ALL_WATCHES) == 2
    assert str(wm1) in WatchManagerBase._ALL_WATCHES
    assert str(wm2) in WatchManagerBase._ALL_WATCHES


def test_constructor_no_duplicate_watches():
    """Test that a kind can only be watched once"""
    DummyWatchManager(make_watch_entry())
    with pytest.raises(AssertionError):
        DummyWatchManager(make_watch_entry(role="memcached"))


def test_clear_all():
    """Test that clear_all forgets every watch"""
    DummyWatchManager(make_watch_entry())
    WatchManagerBase.clear_all()
    assert not WatchManagerBase._ALL_WATCHES
    DummyWatchManager(make_watch_entry())


@pytest.mark.timeout(5)
def test_start_stop_all_blocking():
    """Test that start_all blocks until stop_all stops every manager"""
    wm1 = DummyWatchManager(make_watch_entry())
    wm2 = DummyWatchManager(other_entry(), stop_wait=0.2)

    # Run start_all in a thread so that we can stop it
    thrd = threading.Thread(target=WatchManagerBase.start_all)
    thrd.start()
    time.sleep(0.1)

    assert wm1.watching
    assert wm2.watching
    assert thrd.is_alive()

    # stop_all waits for the delayed stop
    WatchManagerBase.stop_all()
    assert not wm1.watching
    assert not wm2.watching
    thrd.join()


def test_start_all_failure():
    """Test that calling start_all when one of the managers fails to start
    cleanly shuts down any started managers
    """
    # NOTE: failure is on wm1 because it sorts second
    wm1 = DummyWatchManager(make_watch_entry(), watch_success=False)
    wm2 = DummyWatchManager(other_entry())

    assert not WatchManagerBase.start_all()
    assert not wm1.watching
    assert not wm2.watching


def test_stop_all_continues_after_error():
    """Test that a failing stop does not prevent the others from stopping"""
    wm1 = DummyWatchManager(make_watch_entry())
    wm2 = DummyWatchManager(other_entry())
    wm1.watching = wm2.watching = True

    def fail():
        raise RuntimeError("boom")

    wm2.stop = fail
    WatchManagerBase.stop_all()
    assert not wm1.watching
