"""Standard data types used by the watch managers"""

# Standard
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from functools import cached_property
from typing import List, Type, Union

# Local
from ..managed_object import ManagedObject

# Forward Declarations
FILTER_TYPE = "Filter"
KUBE_EVENT_TYPE_TYPE = "KubeEventType"
WATCH_ENTRY_TYPE = "WatchEntry"


## Resource Identity ###########################################################


@dataclass(eq=True, frozen=True)
class ResourceId:
    """Class containing the information needed to identify a resource"""

    api_version: str
    kind: str
    name: str = None
    namespace: str = None

    @cached_property
    def global_id(self) -> str:
        """Get the global_id for a resource in the form kind.version.group"""
        group_version = self.api_version.split("/")
        return ".".join([self.kind, *reversed(group_version)])

    @cached_property
    def namespaced_id(self) -> str:
        """Get the namespace specific id for a resource"""
        return f"{self.namespace}.{self.global_id}"

    def get_id(self) -> str:
        """Get the requisite id for a resource"""
        return self.namespaced_id if self.namespace else self.global_id

    def get_named_id(self) -> str:
        """Get a named id for a resource"""
        return f"{self.name}.{self.get_id()}"

    def get_resource(self) -> dict:
        """Get a resource template from this id"""
        return {
            "kind": self.kind,
            "apiVersion": self.api_version,
            "metadata": {"name": self.name, "namespace": self.namespace},
        }

    @classmethod
    def from_resource(cls, resource: Union[ManagedObject, dict]) -> "ResourceId":
        """Create a resource id from an existing resource"""
        metadata = resource.get("metadata", {})
        return cls(
            api_version=resource.get("apiVersion"),
            kind=resource.get("kind"),
            namespace=metadata.get("namespace"),
            name=metadata.get("name"),
        )

    @classmethod
    def from_owner_ref(cls, owner_ref: dict, namespace: str = None) -> "ResourceId":
        """Create a resource id from an ownerRef"""
        return cls(
            api_version=owner_ref.get("apiVersion"),
            kind=owner_ref.get("kind"),
            namespace=namespace,
            name=owner_ref.get("name"),
        )

    @classmethod
    def from_entry(cls, entry: WATCH_ENTRY_TYPE, namespace: str = None) -> "ResourceId":
        """Get a watch entry's custom resource kind as a resource id"""
        return cls(api_version=entry.api_version, kind=entry.kind, namespace=namespace)


## Watch Requests ##############################################################


@dataclass
class WatchRequest:
    """A request to watch a particular kind. It holds the watched kind, the
    kind that requested the watch, the watch entry that reconciles the
    requester and any filters applied to just this request
    """

    watched: ResourceId
    requester: ResourceId
    entry: WATCH_ENTRY_TYPE = None

    # Filters are excluded from equality. Requests for the same entry are
    # assumed to carry the same filters
    filters: List[Type[FILTER_TYPE]] = field(default_factory=list, compare=False)

    def __hash__(self) -> int:
        return hash((self.watched, self.requester, str(self.entry)))


## Reconcile Requests ##########################################################


class ReconcileRequestType(Enum):
    """Enum to expand the possible KubeEventTypes with watch manager specific
    events
    """

    # Used for events that are a requeue of an object
    REQUEUED = "REQUEUED"

    # Used for periodic reconcile events
    PERIODIC = "PERIODIC"

    # Used for when an event is a dependent resource of a custom resource
    DEPENDENT = "DEPENDENT"

    # Used as a sentinel to alert threads to stop
    STOPPED = "STOPPED"


@dataclass
class ReconcileRequest:
    """One request to the ReconcileThread: the resource to reconcile, the
    watch entry bound to its kind and the event that triggered it
    """

    entry: WATCH_ENTRY_TYPE
    type: Union[ReconcileRequestType, KUBE_EVENT_TYPE_TYPE]
    resource: ManagedObject
    timestamp: datetime = field(default_factory=datetime.now)

    def uid(self):
        """Get the uid of the resource being reconciled"""
        return self.resource.uid


## Timer Events ################################################################


@dataclass(order=True)
class TimerEvent:
    """An item in the timer queue. Time is the only comparable field so the
    events can live in a priority queue
    """

    time: datetime
    action: callable = field(compare=False)
    args: list = field(default_factory=list, compare=False)
    kwargs: dict = field(default_factory=dict, compare=False)
    stale: bool = field(default=False, compare=False)

    def cancel(self):
        """Cancel this event. It will not be executed when read from the
        queue
        """
        self.stale = True


## Meta Classes ################################################################


class Singleton(type):
    """MetaClass to limit a class to only one global instance. When the
    first instance is created it's attached to the Class and the next
    time someone initializes the class the original instance is returned
    """

    def __call__(cls, *args, **kwargs):
        if getattr(cls, "_disable_singleton", False):
            return type.__call__(cls, *args, **kwargs)

        # The _instance is attached to the class itself without looking upwards
        # into any parent classes
        if "_instance" not in cls.__dict__:
            cls._instance = type.__call__(cls, *args, **kwargs)
        return cls._instance
