"""
This module holds common functionality that the DeployManager implementations
use to manage ownerReferences on resources rendered for a custom resource
"""

# First Party
import alog

# Local
from ..exceptions import assert_cluster
from .base import DeployManagerBase

log = alog.use_channel("OWNRF")


def update_owner_references(
    deploy_manager: DeployManagerBase,
    owner_cr: dict,
    child_obj: dict,
):
    """Merge a reference to the owner CR into the child object's
    ownerReferences. References the child already carries, both in the
    rendered manifest and in the cluster, are preserved.

    Kubernetes garbage collection only follows references from a namespaced
    owner to children in its own namespace, so other children of a namespaced
    owner are left untouched. Cluster scoped owners may own any child.
    """
    _validate_object_struct(owner_cr)
    _validate_object_struct(child_obj)

    kind = child_obj["kind"]
    api_version = child_obj["apiVersion"]
    name = child_obj["metadata"]["name"]
    namespace = child_obj["metadata"].get("namespace")
    owner_uid = owner_cr["metadata"].get("uid")
    owner_namespace = owner_cr["metadata"].get("namespace")

    if owner_uid is not None and owner_uid == child_obj["metadata"].get("uid"):
        log.debug2("Owner is same as child; Not adding owner ref")
        return
    if owner_namespace and namespace != owner_namespace:
        log.debug2(
            "Child %s.%s/%s in [%s] is not in owner namespace [%s]",
            api_version,
            kind,
            name,
            namespace,
            owner_namespace,
        )
        return

    success, content = deploy_manager.get_object_current_state(
        kind=kind, name=name, api_version=api_version, namespace=namespace
    )
    assert_cluster(
        success, f"Failed to fetch current state of {api_version}.{kind}/{name}"
    )

    owner_refs = list(child_obj["metadata"].get("ownerReferences") or [])
    if content is not None:
        known_uids = {ref.get("uid") for ref in owner_refs}
        for ref in content.get("metadata", {}).get("ownerReferences", []):
            if ref.get("uid") not in known_uids:
                owner_refs.append(ref)
    log.debug3("Current owner refs: %s", owner_refs)

    if owner_uid not in [ref.get("uid") for ref in owner_refs]:
        log.debug2("Adding owner reference for %s.%s/%s", api_version, kind, name)
        owner_refs.append(make_owner_reference(owner_cr))

    log.debug4("Final owner refs: %s", owner_refs)
    child_obj["metadata"]["ownerReferences"] = owner_refs


def make_owner_reference(owner_cr: dict) -> dict:
    """Make an owner reference for the given CR instance

    Error Semantics: This function makes a best-effort and does not validate the
    content of the owner_cr, so the resulting ownerReference may contain None
    entries.

    Args:
        owner_cr:  dict
            The full CR manifest for the owning resource

    Returns:
        owner_reference:  dict
            The dict entry for the `metadata.ownerReferences` entry of the owned
            object
    """
    # NOTE: controller is not set. Only one owner may be the controller and a
    #   rendered resource can be shared between CRs.
    metadata = owner_cr.get("metadata", {})
    return {
        "apiVersion": owner_cr.get("apiVersion"),
        "kind": owner_cr.get("kind"),
        "name": metadata.get("name"),
        "uid": metadata.get("uid"),
        # The owner is not removed until this object completes its deletion
        "blockOwnerDeletion": True,
    }


## Implementation Details ######################################################


def _validate_object_struct(obj: dict):
    """Ensure that the required portions of an object are present (kind,
    apiVersion, metadata.name)
    """
    assert "kind" in obj, "Got object without 'kind'"
    assert "apiVersion" in obj, "Got object without 'apiVersion'"
    metadata = obj.get("metadata")
    assert isinstance(metadata, dict), "Got object with non-dict 'metadata'"
    assert "name" in metadata, "Got object without 'metadata.name'"
