"""
This module holds the common functionality used to represent the status of
custom resources reconciled by declar8

declar8 supports the following orthogonal status conditions:

* Ready: True if the rendered resources have been applied successfully
* Updating: True if a modification is being actively applied to the cluster

Additionally, declar8 records the set of resources it deployed so that the
next reconciliation can prune anything the target no longer renders:
{
    "deployedResources": [
        {"apiVersion": "v1", "kind": "ConfigMap", "name": "foo", "namespace": "bar"},
    ],
    "observedGeneration": 3,
    "operatorVersion": "1.2.3",
    "runSummary": {"ok": 4, "changed": 1, "failures": 0, "skipped": 0},
}
"""

# Standard
from datetime import datetime
from enum import Enum
from typing import List, Optional, Union
import copy

# Third Party
from deepdiff import DeepDiff

# First Party
import alog

# Local
from . import config

log = alog.use_channel("STTUS")

## Public ######################################################################

# The "type" values in the condition
READY_CONDITION = "Ready"
UPDATING_CONDITION = "Updating"

# The key in the condition used for the timestamp
TIMESTAMP_KEY = "lastTransactionTime"

# Top-level status fields
DEPLOYED_RESOURCES = "deployedResources"
OBSERVED_GENERATION = "observedGeneration"
OPERATOR_VERSION = "operatorVersion"
RUN_SUMMARY = "runSummary"


class ReadyReason(Enum):
    """Nested class to hold reason constants for the Ready condition"""

    # The rendered resources are applied and stable
    STABLE = "Stable"

    # The CR is being reconciled for the first time
    INITIALIZING = "Initializing"

    # A reconciliation of an already-applied CR is in progress
    IN_PROGRESS = "InProgress"

    # The watch entry or the rendered output is invalid
    CONFIG_ERROR = "ConfigError"

    # An unrecoverable error occurred during the reconciliation
    ERRORED = "Errored"


class UpdatingReason(Enum):
    """Nested class to hold reason constants for the Updating condition"""

    # There are no updates to apply
    STABLE = "Stable"

    # A reconciliation has started
    RECONCILE_START = "ReconcileStarted"

    # A required precondition was not met
    PRECONDITION_WAIT = "PreconditionWait"

    # An operation against the cluster failed unexpectedly
    CLUSTER_ERROR = "ClusterError"

    # The chart or role failed to render
    RENDER_ERROR = "RenderFailed"

    # The CR is being deleted and its resources are being removed
    UNINSTALLING = "Uninstalling"

    # An error occurred, so no update is being attempted
    ERRORED = "Errored"


def make_application_status(  # pylint: disable=too-many-arguments
    ready_reason: Optional[Union[ReadyReason, str]] = None,
    ready_message: str = "",
    updating_reason: Optional[Union[UpdatingReason, str]] = None,
    updating_message: str = "",
    deployed_resources: Optional[List[dict]] = None,
    observed_generation: Optional[int] = None,
    run_summary: Optional[dict] = None,
    external_conditions: Optional[List[dict]] = None,
    external_status: Optional[dict] = None,
    operator_version: Optional[str] = None,
) -> dict:
    """Create a full status object for a reconciled CR

    Args:
        ready_reason:  Optional[ReadyReason or str]
            The reason enum for the Ready condition
        ready_message:  str
            Plain-text message explaining the Ready condition value
        updating_reason:  Optional[UpdatingReason or str]
            The reason enum for the Updating condition
        updating_message:  str
            Plain-text message explaining the Updating condition value
        deployed_resources:  Optional[List[dict]]
            References to the resources applied by the latest reconciliation
        observed_generation:  Optional[int]
            The metadata.generation of the CR that was reconciled
        run_summary:  Optional[dict]
            Task counters reported by a role target
        external_conditions:  Optional[List[dict]]
            Additional conditions to include in the update
        external_status:  Optional[dict]
            Additional key/value status elements besides "conditions" that
            should be preserved through the update
        operator_version:  Optional[str]
            The operator version for this CR

    Returns:
        current_status:  dict
            Dict representation of the status for the CR
    """
    now = datetime.now()
    conditions = []
    if ready_reason is not None:
        conditions.append(_make_ready_condition(ready_reason, ready_message, now))
    if updating_reason is not None:
        conditions.append(
            _make_updating_condition(updating_reason, updating_message, now)
        )
    conditions.extend(external_conditions or [])
    status = external_status or {}
    status["conditions"] = conditions

    if deployed_resources is not None:
        status[DEPLOYED_RESOURCES] = deployed_resources
    if observed_generation is not None:
        status[OBSERVED_GENERATION] = observed_generation
    if run_summary is not None:
        status[RUN_SUMMARY] = run_summary
    if operator_version is not None:
        status[OPERATOR_VERSION] = operator_version

    return status


def update_application_status(current_status: dict, **kwargs) -> dict:
    """Create an updated status based on the values in the current status

    Args:
        current_status:  dict
            The dict representation of the status for a given CR
        **kwargs:
            Additional keyword args to pass to make_application_status

    Returns:
        updated_status:  dict
            Updated dict representation of the status for the CR
    """
    # Work on a copy so the caller's status can still be compared against
    current_status = copy.deepcopy(current_status)

    # Conditions other than Ready/Updating may be written by roles
    current_conditions = current_status.get("conditions", [])
    current_condition_map = {cond["type"]: cond for cond in current_conditions}
    ready_cond = current_condition_map.get(READY_CONDITION, {})
    updating_cond = current_condition_map.get(UPDATING_CONDITION, {})

    ready_reason = ready_cond.get("reason")
    updating_reason = updating_cond.get("reason")
    if ready_reason:
        kwargs.setdefault("ready_reason", ReadyReason(ready_reason))
    if updating_reason:
        kwargs.setdefault("updating_reason", UpdatingReason(updating_reason))
    kwargs.setdefault("ready_message", ready_cond.get("message", ""))
    kwargs.setdefault("updating_message", updating_cond.get("message", ""))

    kwargs["external_conditions"] = [
        cond
        for cond in current_conditions
        if cond.get("type") not in [READY_CONDITION, UPDATING_CONDITION]
    ]
    log.debug3("External conditions: %s", kwargs["external_conditions"])

    kwargs["external_status"] = {
        key: val for key, val in current_status.items() if key != "conditions"
    }
    kwargs["operator_version"] = config.operator_version
    log.debug3("Merged status kwargs: %s", kwargs)

    return make_application_status(**kwargs)


def update_resource_status(
    deploy_manager: "DeployManagerBase",  # noqa: F821
    kind: str,
    api_version: str,
    name: str,
    namespace: str,
    **kwargs: dict,
) -> dict:
    """Fetch the current status of a resource, merge in the given updates and
    write it back if anything besides a timestamp changed

    Args:
        deploy_manager: DeployManagerBase
            The deploymanager used to get and set status
        kind: str
            The kind of the resource
        api_version: str
            The api_version of the resource
        name: str
            The name of the resource
        namespace: str
            The namespace the resource is located in
        **kwargs: Dict
            Any additional keyword arguments to be passed to
            update_application_status

    Returns:
        status_object: Dict
            The applied status if successful
    """
    log.debug3("Updating status for %s/%s.%s/%s", namespace, api_version, kind, name)

    success, current_state = deploy_manager.get_object_current_state(
        api_version=api_version,
        kind=kind,
        name=name,
        namespace=namespace,
    )
    if not success:
        log.warning("Failed to fetch current state for %s/%s/%s", namespace, kind, name)
        return {}
    current_status = (current_state or {}).get("status", {})
    log.debug3("Pre-update status: %s", current_status)

    status_object = update_application_status(current_status, **kwargs)
    log.debug3("Updated status: %s", status_object)

    if status_changed(current_status, status_object):
        log.debug("Found meaningful change. Updating status")
        log.debug2("(current) %s != (updated) %s", current_status, status_object)
        success, _ = deploy_manager.set_status(
            kind=kind,
            name=name,
            namespace=namespace,
            api_version=api_version,
            status=status_object,
        )

        # Status updates never fail a reconciliation
        if not success:
            log.warning("Failed to update status for [%s/%s/%s]", namespace, kind, name)
            return {}

    return status_object


def record_deployed_resources(  # pylint: disable=too-many-arguments
    deploy_manager: "DeployManagerBase",  # noqa: F821
    kind: str,
    api_version: str,
    name: str,
    namespace: str,
    deployed_resources: List[dict],
    observed_generation: Optional[int] = None,
) -> dict:
    """Write only the deployed resources and observed generation to a
    resource's status. This is used when conditions are not managed so that
    the next reconcile can still prune what is no longer rendered.

    Returns:
        status_object: Dict
            The applied status if successful
    """
    success, current_state = deploy_manager.get_object_current_state(
        api_version=api_version,
        kind=kind,
        name=name,
        namespace=namespace,
    )
    if not success:
        log.warning("Failed to fetch current state for %s/%s/%s", namespace, kind, name)
        return {}
    current_status = (current_state or {}).get("status") or {}

    status_object = copy.deepcopy(current_status)
    status_object[DEPLOYED_RESOURCES] = copy.deepcopy(deployed_resources)
    if observed_generation is not None:
        status_object[OBSERVED_GENERATION] = observed_generation

    if status_changed(current_status, status_object):
        log.debug("Recording %d deployed resources", len(deployed_resources))
        success, _ = deploy_manager.set_status(
            kind=kind,
            name=name,
            namespace=namespace,
            api_version=api_version,
            status=status_object,
        )
        if not success:
            log.warning("Failed to update status for [%s/%s/%s]", namespace, kind, name)
            return {}

    return status_object


def status_changed(current_status: dict, new_status: dict) -> bool:
    """Compare two status objects to determine if there is a meaningful change
    between the current status and the proposed new status. A meaningful change
    is defined as any change besides a timestamp.

    Args:
        current_status:  dict
            The raw status dict from the current CR
        new_status:  dict
            The proposed new status

    Returns:
        status_changed:  bool
            True if there is a meaningful change between the current status and
            the new status
    """
    if not isinstance(current_status, dict) or not isinstance(new_status, dict):
        return True

    return bool(
        DeepDiff(
            current_status,
            new_status,
            exclude_obj_callback=lambda _, path: path.endswith(f"{TIMESTAMP_KEY}']"),
        )
    )


def get_condition(type_name: str, current_status: dict) -> dict:
    """Extract the given condition type from a status object

    Args:
        type_name:  str
            The condition type to fetch
        current_status:  dict
            The dict representation of the status for a given CR

    Returns:
        condition:  dict
            The condition object if found, empty dict otherwise
    """
    cond = [
        cond
        for cond in (current_status or {}).get("conditions", [])
        if cond.get("type") == type_name
    ]
    if cond:
        assert len(cond) == 1, f"Found multiple condition entries for {type_name}"
        return cond[0]
    return {}


def get_deployed_resources(current_status: dict) -> List[dict]:
    """Extract the references to previously deployed resources

    Args:
        current_status: dict
            The dict representation of the status for a given CR

    Returns:
        deployed_resources: List[dict]
            The list of resource references, empty if none were recorded
    """
    return list((current_status or {}).get(DEPLOYED_RESOURCES) or [])


## Implementation Details ######################################################


def _make_status_condition(
    type_name: str,
    status: bool,
    reason: Enum,
    message: str,
    last_transaction_time: datetime,
):
    """Convert the condition to the dict representation to be added to the
    kubernetes object
    """
    return {
        "type": type_name,
        "status": str(status),
        "reason": reason.value,
        "message": message,
        TIMESTAMP_KEY: last_transaction_time.isoformat(),
    }


def _make_ready_condition(
    reason: Union[ReadyReason, str],
    message: str,
    last_transaction_time: datetime,
):
    """Ready is only True when the reason is Stable"""
    if isinstance(reason, str):
        reason = ReadyReason(reason)
    ready_status = reason == ReadyReason.STABLE
    log.debug2("%s status %s: %s", READY_CONDITION, ready_status, reason)
    return _make_status_condition(
        READY_CONDITION, ready_status, reason, message, last_transaction_time
    )


def _make_updating_condition(
    reason: Union[UpdatingReason, str],
    message: str,
    last_transaction_time: datetime,
):
    """Updating is False when nothing more will be attempted until the next
    event
    """
    if isinstance(reason, str):
        reason = UpdatingReason(reason)
    updating_status = reason not in [
        UpdatingReason.STABLE,
        UpdatingReason.CLUSTER_ERROR,
        UpdatingReason.RENDER_ERROR,
        UpdatingReason.ERRORED,
    ]
    log.debug2("%s status %s: %s", UPDATING_CONDITION, updating_status, reason)
    return _make_status_condition(
        UPDATING_CONDITION, updating_status, reason, message, last_transaction_time
    )
