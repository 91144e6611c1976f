"""
This module holds the base class interface for the various implementations of
WatchManager
"""

# Standard
import abc

# First Party
import alog

# Local
from ..watches import WatchEntry

log = alog.use_channel("WATCH")


class WatchManagerBase(abc.ABC):
    """A WatchManager links a custom resource kind from the watch registry with
    the reconcile loop that drives its target
    """

    # Class-global mapping of all watches managed by this operator
    _ALL_WATCHES = {}

    ## Interface ###############################################################

    def __init__(self, entry: WatchEntry):
        """Construct with the watch entry that will be watched

        Args:
            entry:  WatchEntry
                The entry binding the group/version/kind to its target
        """
        self.entry = entry
        self.group = entry.group
        self.version = entry.version
        self.kind = entry.kind

        watch_key = str(self)
        assert (
            watch_key not in self._ALL_WATCHES
        ), "Only a single watch may manage a given group/version/kind"
        self._ALL_WATCHES[watch_key] = self

    @abc.abstractmethod
    def watch(self) -> bool:
        """Start the persistent watch

        Returns:
            success:  bool
                True if the watch was spawned correctly, False otherwise.
        """

    @abc.abstractmethod
    def wait(self):
        """Block until the managed watch has been terminated"""

    @abc.abstractmethod
    def stop(self):
        """Terminate this watch if it is currently running"""

    ## Utilities ###############################################################

    @classmethod
    def start_all(cls) -> bool:
        """This utility starts all registered watches

        Returns:
            success:  bool
                True if all watches started successfully, False otherwise
        """
        started_watches = []
        success = True
        # Sorted so launch failures are deterministic
        for _, watch in sorted(cls._ALL_WATCHES.items()):
            if watch.watch():
                log.debug("Successfully started %s", watch)
                started_watches.append(watch)
            else:
                log.warning("Failed to start %s", watch)
                success = False
                for started_watch in started_watches:
                    started_watch.stop()
                break

        for watch in cls._ALL_WATCHES.values():
            watch.wait()

        return success

    @classmethod
    def stop_all(cls):
        """This utility stops all watches"""
        for watch in cls._ALL_WATCHES.values():
            try:
                watch.stop()
                log.debug2("Waiting for %s to terminate", watch)
                watch.wait()
            except Exception as exc:  # pylint: disable=broad-exception-caught
                log.error("Failed to stop watch manager %s", exc, exc_info=True)

    @classmethod
    def clear_all(cls):
        """Forget every registered watch"""
        cls._ALL_WATCHES.clear()

    ## Implementation Details ##################################################

    def __str__(self):
        return f"Watch[{self.entry.api_version}/{self.kind}]"
