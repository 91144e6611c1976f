"""
Helper object to represent a kubernetes object that is deployed or watched by
the operator
"""
# Standard
from typing import Optional
import uuid

KUBE_LIST_IDENTIFIER = "List"


class ManagedObject:  # pylint: disable=too-many-instance-attributes
    """Basic struct to represent a managed kubernetes object"""

    def __init__(self, definition: dict):
        self.kind = definition.get("kind")
        self.metadata = definition.get("metadata", {})
        self.name = self.metadata.get("name")
        self.namespace = self.metadata.get("namespace")
        self.uid = self.metadata.get("uid", uuid.uuid4())
        self.resource_version = self.metadata.get("resourceVersion")
        self.api_version = definition.get("apiVersion")
        self.definition = definition

        assert self.kind is not None, "No kind found"
        assert self.api_version is not None, "No apiVersion found"
        if KUBE_LIST_IDENTIFIER not in self.kind:
            assert self.name is not None, "No name found"

    @classmethod
    def from_ref(cls, ref: dict) -> "ManagedObject":
        """Build an object from a status.deployedResources entry"""
        metadata = {"name": ref.get("name")}
        if ref.get("namespace"):
            metadata["namespace"] = ref["namespace"]
        return cls(
            {
                "apiVersion": ref.get("apiVersion"),
                "kind": ref.get("kind"),
                "metadata": metadata,
            }
        )

    def ref(self) -> dict:
        """The compact reference to this object that is recorded in the owner's
        status
        """
        ref = {"apiVersion": self.api_version, "kind": self.kind, "name": self.name}
        if self.namespace:
            ref["namespace"] = self.namespace
        return ref

    def ref_key(self) -> tuple:
        """Identity of this object ignoring its content"""
        return (self.api_version, self.kind, self.namespace or "", self.name)

    def get(self, *args, **kwargs):
        """Pass get calls to the objects definition"""
        return self.definition.get(*args, **kwargs)

    @property
    def generation(self) -> Optional[int]:
        return self.metadata.get("generation")

    def __str__(self):
        return f"{self.api_version}/{self.kind}/{self.name}"

    def __repr__(self):
        return str(self)

    def __hash__(self):
        """Hash explicitly excludes the definition so that the object's
        identifier in a map can be based only on the unique identifier of the
        resource in the cluster. If the original resource did not provide a
        unique identifier then use the apiVersion, kind, and name
        """
        return hash(self.metadata.get("uid", str(self)))

    def __eq__(self, other):
        return hash(self) == hash(other)
