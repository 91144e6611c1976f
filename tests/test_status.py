"""
Tests for the status helpers
"""
# Third Party
import pytest

# Local
from declar8 import status
from declar8.test_helpers.helpers import MockDeployManager, library_config, setup_cr

## make_application_status #####################################################


def test_make_application_status_ready_stable():
    """Make sure a Stable reason makes the CR Ready and not Updating"""
    result = status.make_application_status(
        ready_reason=status.ReadyReason.STABLE,
        ready_message="ok",
        updating_reason=status.UpdatingReason.STABLE,
        deployed_resources=[{"apiVersion": "v1", "kind": "ConfigMap", "name": "a"}],
        observed_generation=2,
        run_summary={"ok": 1},
    )
    ready = status.get_condition(status.READY_CONDITION, result)
    updating = status.get_condition(status.UPDATING_CONDITION, result)
    assert ready["status"] == "True"
    assert ready["reason"] == "Stable"
    assert ready["message"] == "ok"
    assert status.TIMESTAMP_KEY in ready
    assert updating["status"] == "False"
    assert result[status.OBSERVED_GENERATION] == 2
    assert result[status.RUN_SUMMARY] == {"ok": 1}
    assert status.get_deployed_resources(result) == [
        {"apiVersion": "v1", "kind": "ConfigMap", "name": "a"}
    ]


@pytest.mark.parametrize(
    ["reason", "updating"],
    [
        (status.UpdatingReason.RECONCILE_START, "True"),
        (status.UpdatingReason.PRECONDITION_WAIT, "True"),
        (status.UpdatingReason.UNINSTALLING, "True"),
        (status.UpdatingReason.STABLE, "False"),
        (status.UpdatingReason.CLUSTER_ERROR, "False"),
        (status.UpdatingReason.RENDER_ERROR, "False"),
        (status.UpdatingReason.ERRORED, "False"),
    ],
)
def test_updating_condition_status(reason, updating):
    """Make sure each updating reason maps to the right condition status"""
    result = status.make_application_status(updating_reason=reason)
    assert status.get_condition(status.UPDATING_CONDITION, result)["status"] == updating


def test_make_application_status_string_reasons():
    """Make sure reasons can be given by value"""
    result = status.make_application_status(
        ready_reason="Initializing", updating_reason="ReconcileStarted"
    )
    assert status.get_condition(status.READY_CONDITION, result)["status"] == "False"


## update_application_status ###################################################


def test_update_application_status_preserves_fields():
    """Make sure untouched conditions and fields survive an update"""
    current = status.make_application_status(
        ready_reason=status.ReadyReason.STABLE,
        ready_message="Reconcile Complete",
        updating_reason=status.UpdatingReason.STABLE,
        deployed_resources=[{"apiVersion": "v1", "kind": "Secret", "name": "s"}],
        external_conditions=[{"type": "Custom", "status": "True"}],
        external_status={"roleField": "value"},
    )
    with library_config(operator_version="1.2.3"):
        updated = status.update_application_status(
            current, updating_reason=status.UpdatingReason.RECONCILE_START
        )

    assert status.get_condition(status.READY_CONDITION, updated)["reason"] == "Stable"
    assert (
        status.get_condition(status.UPDATING_CONDITION, updated)["reason"]
        == "ReconcileStarted"
    )
    assert status.get_condition("Custom", updated) == {"type": "Custom", "status": "True"}
    assert updated["roleField"] == "value"
    assert updated[status.OPERATOR_VERSION] == "1.2.3"
    assert status.get_deployed_resources(updated) == status.get_deployed_resources(
        current
    )


def test_status_changed_ignores_timestamps():
    """Make sure a timestamp-only difference is not a change"""
    first = status.make_application_status(ready_reason=status.ReadyReason.STABLE)
    second = status.make_application_status(ready_reason=status.ReadyReason.STABLE)
    second["conditions"][0][status.TIMESTAMP_KEY] = "2000-01-01T00:00:00"
    assert not status.status_changed(first, second)
    third = status.make_application_status(ready_reason=status.ReadyReason.ERRORED)
    assert status.status_changed(first, third)
    assert status.status_changed(None, first)


def test_get_deployed_resources_missing():
    """Make sure a status without deployed resources yields an empty list"""
    assert status.get_deployed_resources(None) == []
    assert status.get_deployed_resources({}) == []


## update_resource_status ######################################################


def test_update_resource_status_writes_once():
    """Make sure the status is only written when it meaningfully changes"""
    cr = setup_cr()
    dm = MockDeployManager(resources=[cr])
    kwargs = dict(
        kind=cr.kind,
        api_version=cr.apiVersion,
        name=cr.metadata.name,
        namespace=cr.metadata.namespace,
        ready_reason=status.ReadyReason.STABLE,
        updating_reason=status.UpdatingReason.STABLE,
    )
    written = status.update_resource_status(dm, **kwargs)
    assert status.get_condition(status.READY_CONDITION, written)["status"] == "True"
    assert dm.set_status.call_count == 1
    stored = dm.get_obj(cr.kind, cr.metadata.name, cr.metadata.namespace)
    assert stored["status"] == written

    status.update_resource_status(dm, **kwargs)
    assert dm.set_status.call_count == 1


def test_update_resource_status_failures_swallowed():
    """Make sure failed lookups and writes return an empty status"""
    cr = setup_cr()
    kwargs = dict(
        kind=cr.kind,
        api_version=cr.apiVersion,
        name=cr.metadata.name,
        namespace=cr.metadata.namespace,
        ready_reason=status.ReadyReason.STABLE,
    )
    assert (
        status.update_resource_status(
            MockDeployManager(resources=[cr], get_state_fail=True), **kwargs
        )
        == {}
    )
    assert (
        status.update_resource_status(
            MockDeployManager(resources=[cr], set_status_fail=True), **kwargs
        )
        == {}
    )
