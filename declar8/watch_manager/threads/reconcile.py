"""
The ReconcileThread is the heart of the PythonWatchManager. It schedules
reconciles onto worker threads, tracks pending requests and handles the results
"""
# Standard
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional, Set
import dataclasses
import os
import queue
import threading

# First Party
import alog

# Local
from ... import config
from ...deploy_manager import DeployManagerBase, KubeEventType
from ...reconcile import ReconcileManager, ReconciliationResult
from ...watches import WatchRegistry
from ..filters import DEPENDENT_FILTER
from ..types import (
    ReconcileRequest,
    ReconcileRequestType,
    ResourceId,
    Singleton,
    TimerEvent,
    WatchRequest,
)
from .base import ThreadBase
from .timer import TimerThread
from .watch import create_resource_watch

log = alog.use_channel("RTHRD")

# Seconds to wait for running reconciles on shutdown
JOIN_RECONCILE_TIMEOUT = 5


@dataclass
class ReconcileCompletion:
    """Message a worker sends back to the ReconcileThread when it finishes"""

    request: ReconcileRequest
    result: Optional[ReconciliationResult]


class ReconcileThread(
    ThreadBase, metaclass=Singleton
):  # pylint: disable=too-many-instance-attributes
    """This thread owns every reconcile. It starts a worker thread per
    reconcile, allows one running and one pending reconcile per resource,
    requeues results through the TimerThread and requests watches on
    dependent resources
    """

    def __init__(
        self,
        deploy_manager: DeployManagerBase = None,
        registry: Optional[WatchRegistry] = None,
    ):
        """
        Args:
            deploy_manager: DeployManagerBase = None
                The deploy manager used by every reconcile
            registry: Optional[WatchRegistry] = None
                The registry used to resolve each resource's watch entry
        """
        super().__init__(name="reconcile_thread", deploy_manager=deploy_manager)

        self.request_queue = queue.Queue()
        self.timer_thread: TimerThread = TimerThread()
        self.reconcile_manager = ReconcileManager(
            registry if registry is not None else WatchRegistry(),
            deploy_manager=deploy_manager,
        )

        # Reconcile, request, and event mappings keyed by resource uid
        self.running_reconciles: Dict[str, threading.Thread] = {}
        self.pending_reconciles: Dict[str, ReconcileRequest] = {}
        self.event_map: Dict[str, TimerEvent] = {}
        self.requested_watches: Set[WatchRequest] = set()

        self.max_concurrent_reconciles = (
            config.max_concurrent_reconciles or os.cpu_count() or 1
        )

    def run(self):
        """Wait for either a new request or a finished reconcile. New requests
        start a reconcile unless one is already running for the resource or the
        concurrency limit is reached, in which case they become the pending
        request for the resource. Finished reconciles schedule requeues and
        release the next pending request.
        """
        while not self.should_stop():
            message = self.request_queue.get()
            if self.should_stop():
                return

            if isinstance(message, ReconcileCompletion):
                self._handle_reconcile_end(message)
                for uid in list(self.pending_reconciles.keys()):
                    if len(self.running_reconciles) >= self.max_concurrent_reconciles:
                        break
                    self._handle_pending_reconcile(uid)
                continue

            if message.type == ReconcileRequestType.STOPPED:
                return

            log.debug3("Got request %s from queue", message)
            if message.uid() in self.running_reconciles or not (
                self._start_reconcile_for_request(message)
            ):
                self._push_to_pending_reconcile(message)

    ## Class Interface #########################################################

    def start_thread(self):
        """Start the timer along with this thread"""
        self.timer_thread.start_thread()
        super().start_thread()

    def stop_thread(self):
        """Stop accepting requests and wait for running reconciles to end"""
        super().stop_thread()
        self.request_queue.put(
            ReconcileRequest(None, ReconcileRequestType.STOPPED, None)
        )
        self.timer_thread.stop_thread()

        log.info("Waiting for running reconciles to end")
        for worker in list(self.running_reconciles.values()):
            worker.join(JOIN_RECONCILE_TIMEOUT)
            if worker.is_alive():
                log.warning("Reconcile %s did not finish before shutdown", worker.name)

    ## Public Interface ########################################################

    def push_request(self, request: ReconcileRequest):
        """Push request to the reconcile queue"""
        log.info("Pushing request '%s' to reconcile queue", request)
        self.request_queue.put(request)

    ## Reconcile Handlers ######################################################

    def _start_reconcile_for_request(self, request: ReconcileRequest) -> bool:
        """Start a worker thread for the request

        Returns:
            successfully_started: bool
                False when stopping or when too many reconciles are running
        """
        if self.should_stop():
            return False
        if len(self.running_reconciles) >= self.max_concurrent_reconciles:
            log.warning("Unable to start reconcile, max concurrent jobs reached")
            return False

        resource_id = ResourceId.from_resource(request.resource)
        log.info("Starting reconcile for request %s", request)
        worker = threading.Thread(
            target=self._run_reconcile,
            args=(request,),
            name=f"reconcile_{resource_id.get_id()}/{resource_id.name}",
            daemon=True,
        )
        self.running_reconciles[request.uid()] = worker
        worker.start()
        return True

    def _run_reconcile(self, request: ReconcileRequest):
        """Worker body. The result always goes back to the queue."""
        result = None
        try:
            is_finalizer = request.type == KubeEventType.DELETED or bool(
                request.resource.metadata.get("deletionTimestamp")
            )
            result = self.reconcile_manager.safe_reconcile(
                request.resource.definition, is_finalizer
            )
        except Exception as exc:  # pylint: disable=broad-except
            log.error("Uncaught exception '%s'", exc, exc_info=True)
        self.request_queue.put(ReconcileCompletion(request=request, result=result))

    def _handle_reconcile_end(self, completion: ReconcileCompletion):
        """Clean up after a finished reconcile, request dependent watches and
        schedule the next reconcile for the resource if one is needed
        """
        request = completion.request
        result = completion.result
        uid = request.uid()
        self.running_reconciles.pop(uid, None)
        log.info("Reconcile completed with result %s", result)

        if result and request.entry and request.entry.watch_dependent_resources:
            for ref in result.deployed_resources:
                self._request_dependent_watch(request, ref)

        if uid in self.event_map:
            log.debug2("Marking event as stale: %s", self.event_map[uid])
            self.event_map.pop(uid).cancel()

        event = self._create_timer_event_for_request(request, result)
        if event:
            self.event_map[uid] = event

    def _request_dependent_watch(self, request: ReconcileRequest, ref: dict):
        """Watch the kind of a deployed resource on behalf of its owner"""
        watched = ResourceId(
            api_version=ref["apiVersion"],
            kind=ref["kind"],
            namespace=ref.get("namespace"),
        )
        # Dependents are watched for any owner of the requesting kind
        requester = dataclasses.replace(
            ResourceId.from_resource(request.resource), name=None, namespace=None
        )
        watch_request = WatchRequest(
            watched=watched,
            requester=requester,
            entry=request.entry,
            filters=DEPENDENT_FILTER,
        )
        if watch_request in self.requested_watches:
            return
        log.debug2("Requesting dependent watch %s", watch_request)
        self.requested_watches.add(watch_request)
        create_resource_watch(watch_request, self, self.deploy_manager)

    def _create_timer_event_for_request(
        self, request: ReconcileRequest, result: Optional[ReconciliationResult]
    ) -> Optional[TimerEvent]:
        """Schedule a requeue for a result that asked for one

        Args:
            request: ReconcileRequest
                The request that triggered the reconcile
            result: Optional[ReconciliationResult]
                The result of the reconcile

        Returns:
            timer_event: Optional[TimerEvent]
                The timer event if one was created
        """
        if not result or not result.requeue:
            return None
        if request.uid() in self.pending_reconciles:
            return None

        request_type = (
            ReconcileRequestType.REQUEUED
            if result.exception
            else ReconcileRequestType.PERIODIC
        )
        future_request = ReconcileRequest(request.entry, request_type, request.resource)
        requeue_time = datetime.now() + result.requeue_params.requeue_after
        log.debug3("Pushing requeue request to timer: %s", future_request)
        return self.timer_thread.put_event(
            requeue_time, self.push_request, future_request
        )

    ## Pending Request Helpers #################################################

    def _handle_pending_reconcile(self, uid: str) -> bool:
        """Start the pending request for a resource if there is one"""
        if uid in self.running_reconciles or uid not in self.pending_reconciles:
            return False
        request = self.pending_reconciles[uid]
        log.debug4("Got request %s from pending reconciles", request)
        if self._start_reconcile_for_request(request):
            self.pending_reconciles.pop(uid)
            return True
        return False

    def _push_to_pending_reconcile(self, request: ReconcileRequest):
        """Keep the newest request for each resource"""
        uid = request.uid()
        current = self.pending_reconciles.get(uid)
        if current is None or request.timestamp >= current.timestamp:
            log.debug3("Setting pending reconcile for %s", request)
            self.pending_reconciles[uid] = request
        else:
            log.debug4("Pending request is newer than %s", request)

