"""
Tests for the ClusterDeployManager against a fake dynamic client
"""
# Standard
from unittest import mock
import copy

# Third Party
from kubernetes.client.exceptions import ApiException
from openshift.dynamic.apply import LAST_APPLIED_CONFIG_ANNOTATION
from openshift.dynamic.exceptions import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ResourceNotFoundError,
    UnprocessibleEntityError,
)
import kubernetes
import pytest

# First Party
import alog

# Local
from declar8.deploy_manager import ClusterDeployManager, KubeEventType
from declar8.deploy_manager.owner_references import make_owner_reference
from declar8.test_helpers.helpers import (
    TEST_NAMESPACE,
    library_config,
    make_configmap,
    setup_cr,
)

log = alog.use_channel("TEST")

## Helpers #####################################################################


def api_error(error_type, status):
    return error_type(ApiException(status=status, reason=error_type.__name__))


class FakeObj:
    def __init__(self, content):
        self.content = content

    def to_dict(self):
        return copy.deepcopy(self.content)


class FakeHandle:
    """In-memory stand in for an openshift resource handle"""

    def __init__(self, objects=None, apply_errors=None, forbidden=False):
        self.namespaced = True
        self.objects = {}
        for obj in objects or []:
            self._store(obj)
        self.apply_errors = list(apply_errors or [])
        self.forbidden = forbidden
        self.applied = []
        self.replaced = []
        self.deleted = []
        self.status = mock.Mock()

    def get(self, name=None, namespace=None, **_):
        if self.forbidden:
            raise api_error(ForbiddenError, 403)
        if name is not None:
            key = (namespace, name)
            if key not in self.objects:
                raise api_error(NotFoundError, 404)
            return FakeObj(self.objects[key])
        items = [
            obj
            for (obj_ns, _), obj in self.objects.items()
            if namespace in [None, obj_ns]
        ]
        return FakeObj({"items": items})

    def server_side_apply(self, body, name=None, namespace=None, **_):
        self.applied.append(copy.deepcopy(body))
        if self.apply_errors:
            raise self.apply_errors.pop(0)
        return FakeObj(self._store(body))

    def replace(self, body, name=None, namespace=None, **_):
        self.replaced.append(copy.deepcopy(body))
        return FakeObj(self._store(body))

    def delete(self, name=None, namespace=None):
        key = (namespace, name)
        if key not in self.objects:
            raise api_error(NotFoundError, 404)
        del self.objects[key]
        self.deleted.append(key)

    def _store(self, body):
        stored = copy.deepcopy(body)
        metadata = stored["metadata"]
        metadata.pop("managedFields", None)
        key = (metadata.get("namespace"), metadata["name"])
        previous = self.objects.get(key, {}).get("metadata", {})
        metadata["uid"] = previous.get("uid", "some-uid")
        metadata["resourceVersion"] = str(int(previous.get("resourceVersion", 0)) + 1)
        self.objects[key] = stored
        return stored


class FakeResources:
    def __init__(self, handles, short_names=None):
        self.handles = handles
        self.short_names = short_names or {}

    def get(self, kind=None, api_version=None, short_names=None):
        if kind is None and short_names:
            kind = self.short_names.get(short_names[0])
        if kind not in self.handles:
            raise ResourceNotFoundError(f"No kind {kind}")
        return self.handles[kind]


def make_dm(owner_cr=None, short_names=None, **handles):
    dm = ClusterDeployManager(owner_cr=owner_cr)
    dm._client = mock.Mock(resources=FakeResources(handles, short_names))
    return dm


class FakeWatch:
    """Replays batches of events, one batch per stream call"""

    def __init__(self, batches):
        self.batches = list(batches)
        self.calls = []
        self._stop = False

    def stream(self, func, **kwargs):
        self.calls.append(kwargs)
        batch = self.batches.pop(0)
        if not self.batches:
            self._stop = True
        if isinstance(batch, Exception):
            raise batch
        yield from batch


@pytest.fixture(autouse=True)
def no_backoff():
    with library_config(retry_backoff_base_seconds=0.0):
        yield


## Deploy ######################################################################


def test_deploy_new_resource():
    """Make sure a missing resource is applied and reported as changed"""
    handle = FakeHandle()
    dm = make_dm(ConfigMap=handle)
    assert dm.deploy([make_configmap()]) == (True, True)
    assert len(handle.applied) == 1
    assert (TEST_NAMESPACE, "test-cm") in handle.objects


def test_deploy_unchanged_resource():
    """Make sure an identical resource is not applied again"""
    handle = FakeHandle(objects=[make_configmap()])
    dm = make_dm(ConfigMap=handle)
    assert dm.deploy([make_configmap()]) == (True, False)
    assert not handle.applied


def test_deploy_empty():
    """Make sure an empty deploy is a no-op success"""
    assert make_dm().deploy([]) == (True, False)


def test_deploy_unknown_kind():
    """Make sure an unknown kind fails the deploy"""
    dm = make_dm(ConfigMap=FakeHandle())
    resource = make_configmap()
    resource["kind"] = "Unknown"
    assert dm.deploy([resource]) == (False, False)


def test_deploy_short_name():
    """Make sure kinds can be found by their short names"""
    handle = FakeHandle()
    dm = make_dm(short_names={"cm": "ConfigMap"}, ConfigMap=handle)
    resource = make_configmap()
    resource["kind"] = "cm"
    assert dm.deploy([resource]) == (True, True)
    assert handle.applied


def test_deploy_stops_at_first_failure():
    """Make sure resources after a failure are not applied"""
    handle = FakeHandle(apply_errors=[RuntimeError("boom")])
    dm = make_dm(ConfigMap=handle)
    assert dm.deploy([make_configmap("a"), make_configmap("b")]) == (False, False)
    assert [body["metadata"]["name"] for body in handle.applied] == ["a"]


def test_deploy_retries_conflicts():
    """Make sure a conflict refreshes the resourceVersion and retries"""
    current = make_configmap(data={"foo": "old"})
    handle = FakeHandle(
        objects=[current], apply_errors=[api_error(ConflictError, 409)]
    )
    dm = make_dm(ConfigMap=handle)
    with library_config(deploy_retries=2):
        assert dm.deploy([make_configmap(data={"foo": "new"})]) == (True, True)
    assert len(handle.applied) == 2
    assert "resourceVersion" not in handle.applied[0]["metadata"]
    assert handle.applied[1]["metadata"]["resourceVersion"] == "1"


def test_deploy_conflict_retries_exhausted():
    """Make sure conflicts past the retry limit fail the deploy"""
    handle = FakeHandle(
        objects=[make_configmap(data={"foo": "old"})],
        apply_errors=[api_error(ConflictError, 409) for _ in range(3)],
    )
    dm = make_dm(ConfigMap=handle)
    with library_config(deploy_retries=1):
        assert dm.deploy([make_configmap(data={"foo": "new"})]) == (False, False)
    assert len(handle.applied) == 2


def test_deploy_no_retry():
    """Make sure retries can be disabled per call"""
    handle = FakeHandle(apply_errors=[api_error(ConflictError, 409)])
    dm = make_dm(ConfigMap=handle)
    assert dm.deploy([make_configmap()], retry_operation=False) == (False, False)
    assert len(handle.applied) == 1


@pytest.mark.parametrize("fallback", [True, False])
def test_deploy_unprocessable_fallback(fallback):
    """Make sure a 422 falls back to a PUT only when configured"""
    handle = FakeHandle(
        objects=[make_configmap(data={"foo": "old"})],
        apply_errors=[api_error(UnprocessibleEntityError, 422)],
    )
    dm = make_dm(ConfigMap=handle)
    with library_config(deploy_unprocessable_put_fallback=fallback):
        result = dm.deploy([make_configmap(data={"foo": "new"})])
    assert result == ((True, True) if fallback else (False, False))
    assert len(handle.replaced) == (1 if fallback else 0)


def test_deploy_adds_owner_reference():
    """Make sure the owner CR is referenced on deployed resources"""
    owner_cr = setup_cr()
    handle = FakeHandle()
    dm = make_dm(owner_cr=owner_cr, ConfigMap=handle)
    dm.deploy([make_configmap()])
    assert handle.applied[0]["metadata"]["ownerReferences"] == [
        make_owner_reference(owner_cr)
    ]


def test_deploy_strips_last_applied():
    """Make sure the last-applied annotation is never applied"""
    handle = FakeHandle()
    dm = make_dm(ConfigMap=handle)
    resource = make_configmap()
    resource["metadata"]["annotations"] = {LAST_APPLIED_CONFIG_ANNOTATION: "{}"}
    dm.deploy([resource])
    assert "annotations" not in handle.applied[0]["metadata"]


def test_deploy_forbidden_lookup():
    """Make sure a forbidden current state lookup fails the deploy"""
    dm = make_dm(ConfigMap=FakeHandle(forbidden=True))
    assert dm.deploy([make_configmap()]) == (False, False)


## Disable #####################################################################


def test_disable():
    """Make sure existing resources are deleted and missing ones ignored"""
    handle = FakeHandle(objects=[make_configmap()])
    dm = make_dm(ConfigMap=handle)
    assert dm.disable([make_configmap()]) == (True, True)
    assert handle.deleted == [(TEST_NAMESPACE, "test-cm")]
    assert dm.disable([make_configmap()]) == (True, False)


def test_disable_unknown_kind():
    """Make sure disabling an unknown kind is not an error"""
    dm = make_dm()
    assert dm.disable([make_configmap()]) == (True, False)


## Lookups #####################################################################


def test_get_object_current_state():
    """Make sure lookups report found, missing and forbidden objects"""
    dm = make_dm(ConfigMap=FakeHandle(objects=[make_configmap()]))
    success, content = dm.get_object_current_state(
        "ConfigMap", "test-cm", TEST_NAMESPACE, "v1"
    )
    assert success
    assert content["metadata"]["name"] == "test-cm"
    assert dm.get_object_current_state("ConfigMap", "other", TEST_NAMESPACE) == (
        True,
        None,
    )
    assert make_dm().get_object_current_state("ConfigMap", "test-cm") == (True, None)

    forbidden_dm = make_dm(ConfigMap=FakeHandle(forbidden=True))
    assert forbidden_dm.get_object_current_state("ConfigMap", "test-cm") == (
        False,
        None,
    )


def test_filter_objects_current_state():
    """Make sure listing returns the items in the namespace"""
    handle = FakeHandle(
        objects=[make_configmap("a"), make_configmap("b", namespace="other")]
    )
    dm = make_dm(ConfigMap=handle)
    success, items = dm.filter_objects_current_state("ConfigMap", TEST_NAMESPACE)
    assert success
    assert [item["metadata"]["name"] for item in items] == ["a"]
    _, items = dm.filter_objects_current_state("ConfigMap")
    assert len(items) == 2
    assert not handle.namespaced
    assert make_dm().filter_objects_current_state("ConfigMap") == (True, [])


## Status ######################################################################


def test_set_status():
    """Make sure the status subresource is replaced only on change"""
    cr = setup_cr()
    cr_dict = {
        "apiVersion": cr.apiVersion,
        "kind": cr.kind,
        "metadata": dict(cr.metadata),
        "status": {"foo": "bar"},
    }
    handle = FakeHandle(objects=[cr_dict])
    dm = make_dm(**{cr.kind: handle})
    args = (cr.kind, cr.metadata.name, cr.metadata.namespace)

    assert dm.set_status(*args, {"foo": "bar"}, cr.apiVersion) == (True, False)
    handle.status.replace.assert_not_called()

    assert dm.set_status(*args, {"foo": "baz"}, cr.apiVersion) == (True, True)
    body = handle.status.replace.call_args.kwargs["body"]
    assert body["status"] == {"foo": "baz"}


## Watch #######################################################################


def test_watch_objects():
    """Make sure stream events are converted and expired watches restart"""
    handle = FakeHandle()
    dm = make_dm(ConfigMap=handle)
    watch = FakeWatch(
        [
            [{"type": "ADDED", "object": make_configmap("a")}],
            ApiException(status=410),
            [
                {"type": "MODIFIED", "object": make_configmap("a")},
                {"type": "DELETED", "object": make_configmap("a")},
            ],
        ]
    )
    events = list(
        dm.watch_objects(
            "ConfigMap", "v1", namespace=TEST_NAMESPACE, watch_manager=watch
        )
    )
    assert [event.type for event in events] == [
        KubeEventType.ADDED,
        KubeEventType.MODIFIED,
        KubeEventType.DELETED,
    ]
    assert events[0].resource.name == "a"
    assert watch.calls[0]["resource_version"] == 0
    assert watch.calls[2]["resource_version"] is None


def test_watch_objects_unknown_error():
    """Make sure unexpected api errors end the watch"""
    dm = make_dm(ConfigMap=FakeHandle())
    watch = FakeWatch([ApiException(status=500), []])
    with pytest.raises(ApiException):
        list(dm.watch_objects("ConfigMap", "v1", watch_manager=watch))


## Client ######################################################################


def test_setup_client_out_of_cluster():
    """Make sure the local kubeconfig is used outside of a cluster"""
    not_in_cluster = kubernetes.config.ConfigException("not in cluster")
    with mock.patch(
        "kubernetes.config.load_incluster_config", side_effect=not_in_cluster
    ), mock.patch(
        "kubernetes.config.new_client_from_config"
    ) as new_client_mock, mock.patch(
        "declar8.deploy_manager.cluster_deploy_manager.DynamicClient"
    ) as client_mock:
        dm = ClusterDeployManager()
        assert dm.client is client_mock.return_value
        assert dm.client is client_mock.return_value
    client_mock.assert_called_once_with(new_client_mock.return_value)
