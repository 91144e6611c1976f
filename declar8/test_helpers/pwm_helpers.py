"""
Utils and common classes for the python watch manager tests
"""
# Standard
from datetime import datetime
from queue import Queue
from typing import List, Optional
from uuid import uuid4
import random
import tempfile
import time

# Third Party
import pytest

# First Party
import alog

# Local
from declar8.managed_object import ManagedObject
from declar8.reconcile import ReconciliationResult, RequeueParams
from declar8.watch_manager.threads.heartbeat import HeartbeatThread
from declar8.watch_manager.threads.reconcile import (
    ReconcileCompletion,
    ReconcileThread,
)
from declar8.watch_manager.threads.timer import TimerThread
from declar8.watch_manager.types import ReconcileRequest, WatchRequest

log = alog.use_channel("TEST")


### Mock Classes
class MockedTimerThread(TimerThread):
    _disable_singleton = True


class MockedHeartbeatThread(HeartbeatThread):
    _disable_singleton = True


class MockedReconcileThread(ReconcileThread):
    """Subclass of ReconcileThread that replaces the reconcile itself with a
    short sleep and a canned result. This was more reliable than using
    unittest.mock"""

    _disable_singleton = True

    def __init__(
        self,
        deploy_manager=None,
        registry=None,
        reconcile_wait_time=0.1,
        returned_results: Optional[List[ReconciliationResult]] = None,
    ):
        self.requests = Queue()
        self.timer_events = Queue()
        self.reconciles_started = 0
        self.reconciles_finished = 0
        self.watch_threads_created = 0
        self.reconcile_wait_time = reconcile_wait_time
        self.returned_results = returned_results or []
        super().__init__(deploy_manager, registry)
        self.timer_thread = MockedTimerThread()

    def push_request(self, request: ReconcileRequest):
        self.requests.put(request)
        super().push_request(request)

    def get_request(self) -> ReconcileRequest:
        return self.requests.get()

    def _request_dependent_watch(self, request: ReconcileRequest, ref: dict):
        self.watch_threads_created += 1
        return super()._request_dependent_watch(request, ref)

    def _handle_reconcile_end(self, completion: ReconcileCompletion):
        self.reconciles_finished += 1
        return super()._handle_reconcile_end(completion)

    def _run_reconcile(self, request: ReconcileRequest):
        self.reconciles_started += 1
        result = None
        if self.returned_results:
            result = self.returned_results.pop(0)
        time.sleep(self.reconcile_wait_time)
        self.request_queue.put(ReconcileCompletion(request=request, result=result))

    def _create_timer_event_for_request(
        self,
        request: ReconcileRequest,
        result: Optional[ReconciliationResult] = None,
    ):
        timer_event = super()._create_timer_event_for_request(request, result)
        if timer_event:
            self.timer_events.put(timer_event)
        return timer_event


### Helper functions
def make_ownerref(resource):
    metadata = resource.get("metadata", {})
    return {
        "apiVersion": resource.get("apiVersion"),
        "kind": resource.get("kind"),
        "name": metadata.get("name"),
        "uid": metadata.get("uid"),
    }


def make_resource(
    kind="Widget",
    namespace="test",
    api_version="foo.bar.com/v1",
    name="foo",
    spec=None,
    status=None,
    generation=1,
    resource_version=None,
    annotations=None,
    labels=None,
    owner_refs=None,
):
    return {
        "kind": kind,
        "apiVersion": api_version,
        "metadata": {
            "name": name,
            "namespace": namespace,
            "generation": generation,
            "resourceVersion": resource_version or str(random.randint(1, 1000)),
            "ownerReferences": owner_refs or [],
            "labels": labels or {},
            "uid": str(uuid4()),
            "annotations": annotations or {},
        },
        "spec": spec or {},
        "status": status or {},
    }


def make_managed_object(*args, **kwargs):
    return ManagedObject(make_resource(*args, **kwargs))


def make_result(requeue=False, requeue_after=None, exception=None, deployed=None):
    """Build a ReconciliationResult for the mocked reconcile thread"""
    params = RequeueParams()
    if requeue_after is not None:
        params = RequeueParams(requeue_after=requeue_after)
    return ReconciliationResult(
        requeue=requeue,
        requeue_params=params,
        exception=exception,
        deployed_resources=deployed or [],
    )


def make_watch_request(entry, resource_id, filters=None) -> WatchRequest:
    return WatchRequest(
        watched=resource_id,
        requester=resource_id,
        entry=entry,
        filters=filters or [],
    )


def read_heartbeat_file(hb_file: str) -> datetime:
    """Parse a heartbeat file into a datetime"""
    with open(hb_file, encoding="utf-8") as handle:
        hb_str = handle.read()

    return datetime.strptime(hb_str, HeartbeatThread.DATE_FORMAT)


@pytest.fixture
def heartbeat_file():
    with tempfile.NamedTemporaryFile() as tmp_file:
        yield tmp_file.name
