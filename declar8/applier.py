"""
The Applier drives the cluster toward a rendered resource set: it applies every
rendered resource (owned by the CR) and removes resources that an earlier
reconciliation deployed but the target no longer renders.
"""

# Standard
from dataclasses import dataclass, field
from typing import List, Optional
import copy

# First Party
import alog

# Local
from .deploy_manager import DeployManagerBase
from .exceptions import assert_cluster, assert_config
from .managed_object import ManagedObject

log = alog.use_channel("APPLY")


@dataclass
class ApplyResult:
    """The outcome of applying a rendered resource set"""

    changed: bool = False

    # References to every resource in the applied set, in apply order
    deployed: List[dict] = field(default_factory=list)

    # References to stale resources that were deleted
    removed: List[dict] = field(default_factory=list)


class Applier:
    """Apply rendered resources on behalf of an owner CR"""

    def __init__(self, deploy_manager: DeployManagerBase, owner_cr: dict):
        """
        Args:
            deploy_manager:  DeployManagerBase
                The deploy manager used for every cluster operation
            owner_cr:  dict
                The CR the resources are rendered for
        """
        self.deploy_manager = deploy_manager
        self.owner_cr = owner_cr
        self.owner_namespace = owner_cr.get("metadata", {}).get("namespace")

    def normalize(self, resources: List[dict]) -> List[dict]:
        """Copy the rendered resources and fill in defaults

        Args:
            resources:  List[dict]
                The rendered manifests

        Returns:
            normalized:  List[dict]
                Detached manifests with metadata and namespace set
        """
        normalized = []
        for resource in resources:
            assert_config(
                isinstance(resource, dict),
                f"Rendered resource is not a map: {resource}",
            )
            resource = copy.deepcopy(dict(resource))
            assert_config(
                resource.get("apiVersion") and resource.get("kind"),
                f"Rendered resource missing apiVersion or kind: {resource}",
            )
            metadata = resource.setdefault("metadata", {})
            assert_config(
                isinstance(metadata, dict) and metadata.get("name"),
                f"Rendered {resource['apiVersion']}/{resource['kind']} has no name",
            )
            # Resources already marked cluster scoped keep an empty namespace.
            # Cluster scoped owners have no namespace to hand down.
            if "namespace" not in metadata:
                if self.owner_namespace:
                    metadata["namespace"] = self.owner_namespace
            elif not metadata["namespace"]:
                del metadata["namespace"]
            normalized.append(resource)
        return normalized

    def apply(
        self, resources: List[dict], previous_refs: Optional[List[dict]] = None
    ) -> ApplyResult:
        """Apply the resource set and prune stale resources

        Args:
            resources:  List[dict]
                The rendered manifests to apply
            previous_refs:  Optional[List[dict]]
                The references recorded by the previous reconciliation

        Returns:
            result:  ApplyResult
                What was deployed and removed
        """
        resources = self.normalize(resources)
        result = ApplyResult()

        if resources:
            success, changed = self.deploy_manager.deploy(
                resources, manage_owner_references=True
            )
            assert_cluster(
                success, f"Failed to apply rendered resources for {self._owner_str()}"
            )
            result.changed = changed

        deployed = [ManagedObject(resource) for resource in resources]
        result.deployed = [obj.ref() for obj in deployed]
        deployed_keys = {obj.ref_key() for obj in deployed}

        stale = [
            ref
            for ref in previous_refs or []
            if ManagedObject.from_ref(ref).ref_key() not in deployed_keys
        ]
        if stale:
            log.debug("Removing %d stale resources: %s", len(stale), stale)
            result.removed = self.remove(stale)
            result.changed = result.changed or bool(result.removed)

        log.debug2("Apply result for %s: %s", self._owner_str(), result)
        return result

    def remove(self, refs: List[dict]) -> List[dict]:
        """Delete the referenced resources

        Args:
            refs:  List[dict]
                References in the deployedResources format

        Returns:
            removed:  List[dict]
                The references that were requested for removal
        """
        if not refs:
            return []
        manifests = [
            {
                "apiVersion": ref["apiVersion"],
                "kind": ref["kind"],
                "metadata": {
                    key: val
                    for key, val in (
                        ("name", ref["name"]),
                        ("namespace", ref.get("namespace")),
                    )
                    if val
                },
            }
            for ref in refs
        ]
        success, _ = self.deploy_manager.disable(manifests)
        assert_cluster(success, f"Failed to remove resources for {self._owner_str()}")
        return list(refs)

    def _owner_str(self) -> str:
        metadata = self.owner_cr.get("metadata", {})
        kind = self.owner_cr.get("kind")
        return f"{kind}/{metadata.get('namespace')}/{metadata.get('name')}"
