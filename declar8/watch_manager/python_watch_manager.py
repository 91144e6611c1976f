"""
Python-based implementation of the WatchManager
"""

# Standard
from typing import List, Optional
import threading

# First Party
import alog

# Local
from .. import config
from ..deploy_manager import ClusterDeployManager, DeployManagerBase
from ..watches import WatchEntry, WatchRegistry
from .base import WatchManagerBase
from .filters import DEFAULT_FILTER
from .threads import HeartbeatThread, ReconcileThread, WatchThread
from .threads.watch import create_resource_watch, get_resource_watches
from .types import ResourceId, WatchRequest

log = alog.use_channel("PYTHW")


class PythonWatchManager(WatchManagerBase):
    """The PythonWatchManager uses the kubernetes watch client to watch one
    entry's kind and run reconciles. It does two things

    1. Request a watch for the kind in each watched namespace
    2. Start the shared reconcile thread that runs the reconciles
    """

    def __init__(
        self,
        entry: WatchEntry,
        deploy_manager: Optional[DeployManagerBase] = None,
        namespace_list: Optional[List[str]] = None,
        registry: Optional[WatchRegistry] = None,
    ):
        """Initialize the required threads and submit the watch requests

        Args:
            entry: WatchEntry
                The entry whose kind is watched
            deploy_manager: Optional[DeployManagerBase] = None
                An optional DeployManager override
            namespace_list: Optional[List[str]] = []
                A list of namespaces to watch
            registry: Optional[WatchRegistry] = None
                The registry used to resolve entries during reconciles
        """
        super().__init__(entry)

        if deploy_manager is None:
            log.debug("Using ClusterDeployManager")
            deploy_manager = ClusterDeployManager()
        self.deploy_manager = deploy_manager

        self.namespace_list = namespace_list or []
        if not namespace_list and config.watch_namespace != "":
            self.namespace_list = config.watch_namespace.split(",")

        self.shutdown = threading.Event()

        # These are singletons shared by every PythonWatchManager
        self.reconcile_thread: ReconcileThread = ReconcileThread(
            deploy_manager=self.deploy_manager,
            registry=registry if registry is not None else WatchRegistry([entry]),
        )
        self.heartbeat_thread: Optional[HeartbeatThread] = None
        if config.heartbeat_file:
            self.heartbeat_thread = HeartbeatThread(
                config.heartbeat_file, config.heartbeat_period
            )

        self.resource_watches: List[WatchThread] = []
        if not self.namespace_list or "*" in self.namespace_list:
            self.resource_watches.append(self._add_resource_watch())
        else:
            for namespace in self.namespace_list:
                self.resource_watches.append(self._add_resource_watch(namespace))

    ## Interface ###############################################################

    def watch(self) -> bool:
        """Start all threads

        Returns:
            success:  bool
                True if all threads are running
        """
        log.info("Starting PythonWatchManager: %s", self)
        if self.shutdown.is_set():
            return False

        self.reconcile_thread.start_thread()
        for watch_thread in self.resource_watches:
            log.debug("Starting watch_thread: %s", watch_thread)
            watch_thread.start_thread()
        if self.heartbeat_thread:
            log.debug("Starting heartbeat_thread")
            self.heartbeat_thread.start_thread()
        return True

    def wait(self):
        """Wait for shutdown to be signaled"""
        self.shutdown.wait()

    def stop(self):
        """Stop all threads. This waits for running reconciles to finish"""
        log.info("Stopping PythonWatchManager for %s", self)
        self.shutdown.set()
        for watch in get_resource_watches():
            watch.stop_thread()
        self.reconcile_thread.stop_thread()
        if self.heartbeat_thread:
            self.heartbeat_thread.stop_thread()

    ## Implementation Details ##################################################

    def _add_resource_watch(self, namespace: Optional[str] = None) -> WatchThread:
        """Request a watch of this entry's kind, optionally in one namespace"""
        log.debug3("Adding %s request for %s", namespace or "", self)

        # The custom resource is both the watched and the requesting object
        resource_id = ResourceId.from_entry(self.entry, namespace)
        request = WatchRequest(
            watched=resource_id,
            requester=resource_id,
            entry=self.entry,
            filters=DEFAULT_FILTER,
        )
        return create_resource_watch(
            request, self.reconcile_thread, self.deploy_manager
        )
