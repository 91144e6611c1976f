"""
Filters limit the events that turn into reconciles. A unique set of filter
instances is kept for every watched resource so that stateful filters can
compare each event against what they saw before.

Filters in a list are "anded" together and filters in a tuple are "ored".
"""

# Standard
from abc import ABC, abstractmethod
from collections import deque
from typing import List, Optional, Tuple, Type, Union
import inspect
import operator

# First Party
import alog

# Local
from .. import constants
from ..deploy_manager import KubeEventType
from ..managed_object import ManagedObject
from ..utils import obj_to_hash

log = alog.use_channel("FILTR")

# Only keep a set number of resource versions per watched resource
RESOURCE_VERSION_KEEP_COUNT = 20


## Filter Interface ############################################################


class Filter(ABC):
    """Generic Filter Interface for subclassing. Every subclass should implement
    a `test` function which returns true when a resource should be reconciled.
    Subclasses can optionally implement `update` if the filter stores state
    like the last observed generation.
    """

    def __init__(self, resource: ManagedObject):  # noqa: B027
        """Even though a resource is provided, filters should not set state
        until update is called
        """

    @abstractmethod
    def test(self, resource: ManagedObject, event: KubeEventType) -> Optional[bool]:
        """Test whether the resource&event passes the filter. A filter can
        return None to ignore an event

        Args:
            resource: ManagedObject
                The current resource being checked
            event: KubeEventType
                The event type that triggered this filter

        Returns:
            result: Optional[bool]
                The result of the test.
        """

    def update(self, resource: ManagedObject):  # noqa: B027
        """Update the instance's current state"""

    def update_and_test(self, resource: ManagedObject, event: KubeEventType) -> bool:
        """First test a resource/event against a filter then update the current
        state
        """
        result = self.test(resource, event)
        if result is not None and not result:
            log.debug3("Failed filter: %s with return val %s", self, result)
        self.update(resource)
        return result


## Resource Filters ############################################################


class CreationDeletionFilter(Filter):
    """Reconcile on creation and deletion events"""

    def test(  # pylint: disable=inconsistent-return-statements
        self, resource: ManagedObject, event: KubeEventType
    ) -> Optional[bool]:
        if event not in [KubeEventType.ADDED, KubeEventType.DELETED]:
            return
        return True


class GenerationFilter(Filter):
    """Reconcile on generation changes for resources that support it"""

    def __init__(self, resource: ManagedObject):
        super().__init__(resource)
        self.generation = None

    def test(  # pylint: disable=inconsistent-return-statements
        self, resource: ManagedObject, event: KubeEventType
    ) -> Optional[bool]:
        if not self.generation:
            return
        if event in [KubeEventType.ADDED, KubeEventType.DELETED]:
            return
        return self.generation != resource.metadata.get("generation")

    def update(self, resource: ManagedObject):
        self.generation = resource.metadata.get("generation")


class NoGenerationFilter(Filter):
    """Reconcile content changes on resources that don't support the
    generation field, like ConfigMaps. Every top level key except metadata
    and status is hashed and compared.
    """

    def __init__(self, resource: ManagedObject):
        self.supports_generation = resource.metadata.get("generation") is not None
        self.resource_hashes = {}
        super().__init__(resource)

    def test(  # pylint: disable=inconsistent-return-statements
        self, resource: ManagedObject, event: KubeEventType
    ) -> Optional[bool]:
        if self.supports_generation or not self.resource_hashes:
            return
        if event in [KubeEventType.ADDED, KubeEventType.DELETED]:
            return

        current_keys = {
            key
            for key in resource.definition
            if key not in ["metadata", "status", "kind", "apiVersion"]
        }
        if current_keys != set(self.resource_hashes):
            return True
        for key, obj_hash in self.resource_hashes.items():
            if obj_hash != obj_to_hash(resource.get(key)):
                log.debug2("Detected change in %s", key)
                return True
        return False

    def update(self, resource: ManagedObject):
        if self.supports_generation:
            return
        self.resource_hashes = {
            key: obj_to_hash(obj)
            for key, obj in resource.definition.items()
            if key not in ["metadata", "status", "kind", "apiVersion"]
        }


class DeletionFilter(Filter):
    """Reconcile when a resource starts terminating so finalizers can run"""

    def __init__(self, resource: ManagedObject):
        self.deleting = False
        super().__init__(resource)

    def test(  # pylint: disable=inconsistent-return-statements
        self, resource: ManagedObject, event: KubeEventType
    ) -> Optional[bool]:
        if event != KubeEventType.MODIFIED:
            return
        return not self.deleting and bool(resource.metadata.get("deletionTimestamp"))

    def update(self, resource: ManagedObject):
        self.deleting = bool(resource.metadata.get("deletionTimestamp"))


class ResourceVersionFilter(Filter):
    """Skip duplicate resource versions which show up when a watch connection
    is restarted
    """

    def __init__(self, resource: ManagedObject):
        self.resource_versions = deque([], maxlen=RESOURCE_VERSION_KEEP_COUNT)
        super().__init__(resource)

    def test(  # pylint: disable=inconsistent-return-statements
        self, resource: ManagedObject, event: KubeEventType
    ) -> Optional[bool]:
        # The kubernetes watch can duplicate add events
        if event == KubeEventType.DELETED:
            return
        return resource.resource_version not in self.resource_versions

    def update(self, resource: ManagedObject):
        self.resource_versions.append(resource.resource_version)


class AnnotationFilter(Filter):
    """Reconcile on annotation changes"""

    def __init__(self, resource: ManagedObject):
        self.annotations = None
        super().__init__(resource)

    def test(  # pylint: disable=inconsistent-return-statements
        self, resource: ManagedObject, event: KubeEventType
    ) -> Optional[bool]:
        if event in [KubeEventType.ADDED, KubeEventType.DELETED]:
            return
        return self.annotations != self.get_annotation_hash(resource)

    def update(self, resource: ManagedObject):
        self.annotations = self.get_annotation_hash(resource)

    @staticmethod
    def get_annotation_hash(resource: ManagedObject) -> str:
        return obj_to_hash(resource.metadata.get("annotations") or {})


class PauseFilter(Filter):
    """Skip resources that carry the pause annotation"""

    def test(self, resource: ManagedObject, event: KubeEventType) -> Optional[bool]:
        annotations = resource.metadata.get("annotations") or {}
        paused = annotations.get(constants.PAUSE_ANNOTATION_NAME)
        return str(paused).lower() != "true"


class DependentWatchFilter(Filter):
    """Don't reconcile creation events of dependent resources as the owner
    created them
    """

    def test(self, resource: ManagedObject, event: KubeEventType) -> Optional[bool]:
        return event != KubeEventType.ADDED


class EnableFilter(Filter):
    """Run all reconciles"""

    def test(self, resource: ManagedObject, event: KubeEventType) -> Optional[bool]:
        return True


## Filter Groups ###############################################################


def AndFilter(*args):  # pylint: disable=invalid-name
    """An "And" Filter is just a list of filters"""
    return list(args)


def OrFilter(*args):  # pylint: disable=invalid-name
    """An "Or" Filter is just a tuple of filters"""
    return tuple(args)


# Status-only updates never pass these
DEFAULT_FILTER = AndFilter(
    OrFilter(
        CreationDeletionFilter,
        GenerationFilter,
        NoGenerationFilter,
        AnnotationFilter,
        DeletionFilter,
    ),
    ResourceVersionFilter,
    PauseFilter,
)

DEPENDENT_FILTER = AndFilter(
    DependentWatchFilter,
    OrFilter(
        CreationDeletionFilter,
        GenerationFilter,
        NoGenerationFilter,
    ),
    ResourceVersionFilter,
)

FilterGroup = Union[List, Tuple, Type[Filter]]


class FilterManager(Filter):
    """Initializes and evaluates a group of filters for one resource"""

    def __init__(self, filters: FilterGroup, resource: ManagedObject):
        """
        Args:
            filters: FilterGroup
                The filter types to manage
            resource: ManagedObject
                The initial resource
        """
        super().__init__(resource)
        self.filters = self._init_filters(filters, resource)

    def test(self, resource: ManagedObject, event: KubeEventType) -> Optional[bool]:
        return self._evaluate(self.filters, resource, event, update=False)

    def update_and_test(
        self, resource: ManagedObject, event: KubeEventType
    ) -> Optional[bool]:
        return self._evaluate(self.filters, resource, event, update=True)

    ## Implementation Details ##################################################

    @classmethod
    def _init_filters(cls, filters: FilterGroup, resource: ManagedObject):
        # Directly check tuple to ignore NamedTuples and subclasses
        if isinstance(filters, list) or type(filters) is tuple:
            return type(filters)(cls._init_filters(obj, resource) for obj in filters)
        if not (inspect.isclass(filters) and issubclass(filters, Filter)):
            raise ValueError(f"Unknown type: {type(filters)} passed as a filter")
        return filters(resource)

    @classmethod
    def _evaluate(  # pylint: disable=inconsistent-return-statements
        cls,
        filters: Union[list, tuple, Filter],
        resource: ManagedObject,
        event: KubeEventType,
        update: bool,
    ) -> Optional[bool]:
        """Evaluate every filter in the group. Every filter is updated, even
        when the result is already known.
        """
        if isinstance(filters, Filter):
            if update:
                return filters.update_and_test(resource, event)
            return filters.test(resource, event)

        if not filters:
            return True

        operation = operator.and_ if isinstance(filters, list) else operator.or_
        return_value = None
        for filter_obj in filters:
            result = cls._evaluate(filter_obj, resource, event, update)
            if result is None:
                continue
            return_value = (
                result if return_value is None else operation(return_value, result)
            )

        # If no filter cared about the event then don't reconcile
        if return_value is None:
            return False
        return bool(return_value)
