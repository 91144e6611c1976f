"""
Thread class that will dump a heartbeat to a file periodically
"""

# Standard
from datetime import datetime
import threading

# First Party
import alog

# Local
from ...exceptions import ConfigError
from ...utils import parse_time_delta
from .timer import TimerThread

log = alog.use_channel("HBEAT")


class HeartbeatThread(TimerThread):
    """The HeartbeatThread periodically writes the current time to a file which
    a liveness probe can check with `declar8 check-heartbeat`
    """

    # Readable by `date -d "$(cat heartbeat.txt)"`
    DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

    def __init__(self, heartbeat_file: str, heartbeat_period: str):
        """
        Args:
            heartbeat_file: str
                The fully-qualified path to the heartbeat file
            heartbeat_period: str
                Time delta string for the delay between beats. Should be >= 1s
                since the written format has second precision
        """
        self._heartbeat_file = heartbeat_file
        self._offset = parse_time_delta(heartbeat_period)
        if self._offset is None:
            raise ConfigError(f"Invalid heartbeat_period: {heartbeat_period}")
        self._beat_lock = threading.Lock()
        self._beat_event = threading.Event()
        super().__init__(name="heartbeat_thread")

    def run(self):
        self._run_heartbeat()
        return super().run()

    def wait_for_beat(self):
        """Wait for the next beat"""
        # A beat that is in progress must finish before waiting
        with self._beat_lock:
            pass
        self._beat_event.wait()

    def _run_heartbeat(self):
        """Write the heartbeat and schedule the next one"""
        now = datetime.now()
        log.debug3("Heartbeat %s", now)

        try:
            with open(self._heartbeat_file, "w", encoding="utf-8") as handle:
                handle.write(now.strftime(self.DATE_FORMAT))
                handle.flush()
        except OSError as err:
            log.warning("Failed to write heartbeat file: %s", err, exc_info=True)

        with self._beat_lock:
            self._beat_event.set()
            self._beat_event.clear()

        if not self.should_stop():
            self.put_event(now + self._offset, self._run_heartbeat)
