"""
Tests for the HeartbeatThread
"""
# Standard
from datetime import datetime, timedelta
from unittest import mock
import time

# Third Party
import pytest

# Local
from declar8.exceptions import ConfigError
from declar8.test_helpers.pwm_helpers import (  # noqa: F401
    MockedHeartbeatThread,
    heartbeat_file,
    read_heartbeat_file,
)

## Helpers #####################################################################


class FailOnceOpen:
    def __init__(self, fail_on: int = 1):
        self.call_num = 0
        self.fail_on = fail_on
        self._real_open = open

    def __call__(self, *args, **kwargs):
        self.call_num += 1
        if self.call_num == self.fail_on:
            raise OSError("Yikes")
        return self._real_open(*args, **kwargs)


## Tests #######################################################################


@pytest.mark.timeout(5)
def test_heartbeat_happy_path(heartbeat_file):
    """Make sure the heartbeat initializes correctly"""
    hb = MockedHeartbeatThread(heartbeat_file, "1s")

    # Heartbeat not run until started
    with open(heartbeat_file, encoding="utf-8") as handle:
        assert not handle.read()

    hb.start_thread()
    hb.wait_for_beat()
    hb.stop_thread()

    # Make sure the heartbeat is "current"
    assert read_heartbeat_file(heartbeat_file) > (datetime.now() - timedelta(seconds=5))


@pytest.mark.timeout(10)
def test_heartbeat_ongoing(heartbeat_file):
    """Make sure that the heartbeat continues to beat in an ongoing way"""
    hb = MockedHeartbeatThread(heartbeat_file, "1s")

    hb.start_thread()
    hb.wait_for_beat()
    first_hb = read_heartbeat_file(heartbeat_file)

    hb.wait_for_beat()
    hb.stop_thread()
    later_hb = read_heartbeat_file(heartbeat_file)
    assert later_hb > first_hb


@pytest.mark.timeout(5)
def test_heartbeat_with_exception(heartbeat_file):
    """Make sure that a sporadic failure does not terminate the heartbeat"""
    hb = MockedHeartbeatThread(heartbeat_file, "1s")

    # The beats run inline so that the third call to open is the second beat
    with mock.patch("builtins.open", new=FailOnceOpen(3)):
        hb._run_heartbeat()
        first_hb = read_heartbeat_file(heartbeat_file)

        hb._run_heartbeat()
        second_hb = read_heartbeat_file(heartbeat_file)

        time.sleep(1.1)
        hb._run_heartbeat()
        third_hb = read_heartbeat_file(heartbeat_file)

    assert first_hb == second_hb
    assert third_hb > first_hb

    # Every beat scheduled the next one
    assert len(hb.timer_heap) == 3


def test_heartbeat_invalid_period(heartbeat_file):
    """Make sure an unparseable period is a config error"""
    with pytest.raises(ConfigError):
        MockedHeartbeatThread(heartbeat_file, "sometimes")
