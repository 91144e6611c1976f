"""
Module for the ThreadBase Class
"""

# Standard
import threading

# First Party
import alog

# Local
from ...deploy_manager import DeployManagerBase

log = alog.use_channel("THRED")


class ThreadBase(threading.Thread):
    """Base class for all watch manager threads. This class handles generic
    starting and stopping
    """

    def __init__(
        self,
        name: str = None,
        daemon: bool = None,
        deploy_manager: DeployManagerBase = None,
    ):
        """
        Args:
            name:str=None
                The name of the thread
            daemon:bool=None
                Whether python should wait for this thread to stop before exiting
            deploy_manager: DeployManagerBase = None
                The deploy manager available to this thread
        """
        self.deploy_manager = deploy_manager
        self.shutdown = threading.Event()
        super().__init__(name=name, daemon=daemon)

    ## Abstract Interface ######################################################

    def run(self):
        """Control loop for the thread. Once this function exits the thread stops"""
        raise NotImplementedError()

    ## Base Class Interface ####################################################

    def start_thread(self):
        """If the thread is not already alive start it"""
        if not self.is_alive():
            log.info("Starting %s: %s", self.__class__.__name__, self.name)
            self.start()

    def stop_thread(self):
        """Set the shutdown event"""
        log.info("Stopping %s: %s", self.__class__.__name__, self.name)
        self.shutdown.set()

    def should_stop(self) -> bool:
        return self.shutdown.is_set()

    def wait_on_shutdown(self, timeout: float) -> bool:
        """Wait for the given time unless interrupted by shutdown

        Returns:
            keep_running: bool
                False if the thread was told to stop while waiting
        """
        self.shutdown.wait(timeout)
        return not self.should_stop()
