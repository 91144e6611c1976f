"""The WatchThread Class is responsible for monitoring the cluster for
resource events
"""
# Standard
from threading import Lock
from typing import Dict, List, Optional, Set
import dataclasses
import os

# Third Party
from kubernetes import watch

# First Party
import alog

# Local
from ... import config
from ...deploy_manager import DeployManagerBase, KubeEventType, KubeWatchEvent
from ...managed_object import ManagedObject
from ..filters import FilterManager
from ..types import ReconcileRequest, ReconcileRequestType, ResourceId, WatchRequest
from .base import ThreadBase

log = alog.use_channel("WTHRD")

# Forward declaration of ReconcileThread
RECONCILE_THREAD_TYPE = "ReconcileThread"


class WatchThread(ThreadBase):  # pylint: disable=too-many-instance-attributes
    """The WatchThread monitors the cluster for changes to one kind, either
    cluster-wide or in one namespace. Each event is matched against the
    registered WatchRequests, either directly or through the resource's
    ownerReferences, and checked against the request's filters. Events that
    pass become ReconcileRequests.
    """

    def __init__(  # pylint: disable=too-many-arguments
        self,
        reconcile_thread: RECONCILE_THREAD_TYPE,
        kind: str,
        api_version: str,
        namespace: Optional[str] = None,
        deploy_manager: DeployManagerBase = None,
    ):
        """
        Args:
            reconcile_thread: ReconcileThread
                The reconcile thread to submit requests to
            kind: str
                The kind to watch
            api_version: str
                The api_version to watch
            namespace: Optional[str] = None
                The namespace to watch. If none then cluster-wide
            deploy_manager: DeployManagerBase = None
                The deploy_manager to watch events with
        """
        self.reconcile_thread = reconcile_thread
        self.kind = kind
        self.api_version = api_version
        self.namespace = namespace

        name = f"watch_thread_{self.api_version}_{self.kind}"
        if self.namespace:
            name = name + f"_{self.namespace}"
        super().__init__(name=name, daemon=True, deploy_manager=deploy_manager)

        self.kubernetes_watch = watch.Watch()

        # Filter state keyed by resource uid, then by requester named id
        self.resource_filters: Dict[str, Dict[str, FilterManager]] = {}

        # Watch requests keyed by the requester's global id
        self.watch_requests: Dict[str, Set[WatchRequest]] = {}
        self.watch_request_lock = Lock()

        self.attempts_left = config.watch_retry_count
        self.retry_delay = float(config.watch_retry_delay)

    def run(self):
        """Continuously watch the DeployManager. For every event gather the
        requests it applies to, check their filters and submit a
        ReconcileRequest for every request that passes. A failed watch is
        restarted until the retry budget is exhausted.
        """
        list_resource_version = 0
        while True:
            try:
                if self.should_stop():
                    log.debug("Shutting down %s", self.name)
                    return

                for event in self.deploy_manager.watch_objects(
                    self.kind,
                    self.api_version,
                    namespace=self.namespace,
                    resource_version=list_resource_version,
                    watch_manager=self.kubernetes_watch,
                ):
                    if self.should_stop():
                        log.debug("Shutting down %s", self.name)
                        return
                    self.handle_event(event)

                list_resource_version = self.kubernetes_watch.resource_version
            except Exception as exc:  # pylint: disable=broad-except
                log.info(
                    "Exception raised when attempting to watch %s",
                    repr(exc),
                    exc_info=exc,
                )
                if self.attempts_left <= 0:
                    log.error(
                        "Unable to start watch within %d attempts",
                        config.watch_retry_count,
                    )
                    os._exit(1)

                if not self.wait_on_shutdown(self.retry_delay):
                    log.debug("Shutdown requested during retry")
                    return
                self.attempts_left = self.attempts_left - 1
                log.info("Restarting watch with %d attempts left", self.attempts_left)

    def stop_thread(self):
        """Stop the kubernetes client's Watch as well"""
        super().stop_thread()
        self.kubernetes_watch.stop()

    ## Public Interface ########################################################

    def request_watch(self, watch_request: WatchRequest):
        """Add a watch request if it doesn't exist"""
        requester_id = watch_request.requester
        with self.watch_request_lock:
            requests = self.watch_requests.setdefault(requester_id.global_id, set())
            if watch_request in requests:
                log.debug3("Request already added")
                return
            log.debug2("Adding watch request for %s", requester_id.global_id)
            requests.add(watch_request)

    def handle_event(self, event: KubeWatchEvent):
        """Turn a single watch event into reconcile requests"""
        resource = event.resource
        for watch_request in self._gather_resource_requests(resource):
            if not self._check_filters(watch_request, resource, event.type):
                log.debug2("Skipping event %s for %s", event, watch_request.requester)
                continue
            log.debug("Requesting reconcile for %s", resource)
            self._request_reconcile(event, watch_request)

        if event.type == KubeEventType.DELETED:
            self.resource_filters.pop(resource.uid, None)

    ## Implementation Details ##################################################

    def _gather_resource_requests(self, resource: ManagedObject) -> List[WatchRequest]:
        """Gather the requests that apply to a resource. A request applies
        when it watches the resource's own kind or the kind of one of its
        owners.
        """
        request_list = []
        with self.watch_request_lock:
            resource_id = ResourceId.from_resource(resource)
            for request in self.watch_requests.get(resource_id.global_id, []):
                if request.requester.name and request.requester.name != resource.name:
                    continue
                request_list.append(
                    dataclasses.replace(
                        request,
                        requester=dataclasses.replace(
                            request.requester, name=resource_id.name
                        ),
                    )
                )

            for owner_ref in resource.metadata.get("ownerReferences", []):
                owner_id = ResourceId.from_owner_ref(
                    owner_ref, namespace=resource_id.namespace
                )
                for request in self.watch_requests.get(owner_id.global_id, []):
                    if request.watched.global_id != resource_id.global_id:
                        continue
                    if (
                        request.requester.name
                        and request.requester.name != owner_ref.get("name")
                    ):
                        continue
                    request_list.append(
                        dataclasses.replace(
                            request,
                            requester=dataclasses.replace(
                                request.requester, name=owner_id.name
                            ),
                        )
                    )

        return request_list

    def _check_filters(
        self,
        watch_request: WatchRequest,
        resource: ManagedObject,
        event: KubeEventType,
    ) -> bool:
        """Check the request's filters for a resource, creating the filter
        state the first time the pair is seen
        """
        filters = self.resource_filters.setdefault(resource.uid, {})
        requester_id = watch_request.requester.get_named_id()
        if requester_id not in filters:
            filters[requester_id] = FilterManager(watch_request.filters, resource)
        return bool(filters[requester_id].update_and_test(resource, event))

    def _request_reconcile(self, event: KubeWatchEvent, request: WatchRequest):
        """Request a reconcile for a kube event. Events on dependent resources
        reconcile the owning custom resource instead.
        """
        resource = event.resource
        event_type = event.type
        requester_id = request.requester

        if (
            requester_id.kind != resource.kind
            or requester_id.api_version != resource.api_version
            or requester_id.name != resource.name
        ):
            success, obj = self.deploy_manager.get_object_current_state(
                kind=requester_id.kind,
                name=requester_id.name,
                namespace=resource.namespace,
                api_version=requester_id.api_version,
            )
            if not success or not obj:
                log.warning(
                    "Unable to fetch owner resource %s", requester_id.get_named_id()
                )
                return
            resource = ManagedObject(obj)
            event_type = ReconcileRequestType.DEPENDENT

        self.reconcile_thread.push_request(
            ReconcileRequest(request.entry, event_type, resource)
        )


# All watch threads keyed by the watched resource id
watch_threads: Dict[str, WatchThread] = {}


def create_resource_watch(
    watch_request: WatchRequest,
    reconcile_thread: RECONCILE_THREAD_TYPE,
    deploy_manager: DeployManagerBase,
) -> WatchThread:
    """Add the request to the thread already watching its kind or create a new
    thread. New threads are started right away when any other watch thread is
    already running.

    Args:
        watch_request: WatchRequest
            The watch request to submit
        reconcile_thread: ReconcileThread
            The ReconcileThread to submit ReconcileRequests to
        deploy_manager: DeployManagerBase
            The DeployManager to use with the Thread

    Returns:
        watch_thread: WatchThread
            The watch_thread that is watching the request
    """
    watch_thread = None
    watched_id = watch_request.watched

    # A cluster-wide watch covers every namespace
    if watched_id.global_id in watch_threads:
        log.debug2("Found existing global watch thread for %s", watch_request)
        watch_thread = watch_threads[watched_id.global_id]
    elif watched_id.namespace and watched_id.namespaced_id in watch_threads:
        log.debug2("Found existing namespaced watch thread for %s", watch_request)
        watch_thread = watch_threads[watched_id.namespaced_id]

    if not watch_thread:
        log.debug2("Creating new WatchThread for %s", watch_request)
        watch_thread = WatchThread(
            reconcile_thread,
            watched_id.kind,
            watched_id.api_version,
            watched_id.namespace,
            deploy_manager,
        )
        running = any(thread.is_alive() for thread in watch_threads.values())
        watch_threads[watched_id.get_id()] = watch_thread
        if running:
            watch_thread.start_thread()

    watch_thread.request_watch(watch_request)
    return watch_thread


def get_resource_watches() -> List[WatchThread]:
    """Get the list of all watch_threads"""
    return list(watch_threads.values())
