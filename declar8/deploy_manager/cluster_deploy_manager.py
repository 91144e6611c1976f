"""
This DeployManager is responsible for delegating cluster operations to the
openshift dynamic client. It is the one that will be used when the operator is
running in the cluster or outside the cluster making live changes.
"""
# Standard
from collections import namedtuple
from typing import Callable, Iterator, List, Optional, Tuple
import copy
import threading
import time

# Third Party
from kubernetes import client
from kubernetes.watch import Watch
from openshift.dynamic import DynamicClient
from openshift.dynamic.apply import LAST_APPLIED_CONFIG_ANNOTATION, recursive_diff
from openshift.dynamic.exceptions import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ResourceNotFoundError,
    ResourceNotUniqueError,
    UnprocessibleEntityError,
)
from openshift.dynamic.resource import Resource
import kubernetes
import urllib3

# First Party
import alog

# Local
from .. import config
from ..exceptions import assert_cluster
from ..managed_object import ManagedObject
from .base import DeployManagerBase
from .kube_event import KubeEventType, KubeWatchEvent
from .owner_references import update_owner_references

log = alog.use_channel("CLSTR")

# See this document for value reasonings
# https://github.com/kubernetes-client/python/blob/master/examples/watch/timeout-settings.md
SERVER_WATCH_TIMEOUT = 3600
CLIENT_WATCH_TIMEOUT = 30

# Fields that the API server rewrites on every write
_SERVER_METADATA_FIELDS = [
    "resourceVersion",
    "generation",
    "managedFields",
    "uid",
    "creationTimestamp",
]

# Internal struct to hold the key resource identifier elements
_ResourceIdentifiers = namedtuple(
    "ResourceIdentifiers", ["api_version", "kind", "name", "namespace"]
)


class ClusterDeployManager(DeployManagerBase):
    """This DeployManager uses the openshift DynamicClient to interact with the
    cluster
    """

    def __init__(self, owner_cr: Optional[dict] = None):
        """
        Args:
            owner_cr:  Optional[dict]
                The dict content of the CR that triggered this reconciliation.
                If given, deployed objects will have an ownerReference added to
                assign ownership to this CR instance.
        """
        self._owner_cr = owner_cr
        self._client = None

        # Concurrent status writes for the same CR would otherwise hit 409s
        self._status_lock = threading.Lock()

    @property
    def client(self):
        """Lazy property access to the client"""
        if self._client is None:
            log.debug("Initializing openshift client")
            self._client = self._setup_client()
        return self._client

    @alog.logged_function(log.debug)
    def deploy(
        self,
        resource_definitions: List[dict],
        manage_owner_references: bool = True,
        retry_operation: bool = True,
        **_,
    ) -> Tuple[bool, bool]:
        """Deploy using server side apply

        Args:
            resource_definitions:  list(dict)
                List of resource object dicts to apply to the cluster
            manage_owner_references:  bool
                If true, ownerReferences for the owner CR will be applied to
                the deployed object
            retry_operation:  bool
                If false, conflicts are not retried

        Returns:
            success:  bool
                True if deploy succeeded, False otherwise
            changed:  bool
                Whether or not the deployment resulted in changes
        """
        return self._retried_operation(
            resource_definitions,
            self._apply,
            max_retries=config.deploy_retries if retry_operation else 0,
            manage_owner_references=manage_owner_references,
        )

    @alog.logged_function(log.debug)
    def disable(self, resource_definitions: List[dict]) -> Tuple[bool, bool]:
        """Delete each of the given resources. Resources that are already gone
        count as a success without change.
        """
        return self._retried_operation(
            resource_definitions,
            self._disable,
            max_retries=config.deploy_retries,
            manage_owner_references=False,
        )

    def get_object_current_state(
        self,
        kind: str,
        name: str,
        namespace: Optional[str] = None,
        api_version: Optional[str] = None,
    ) -> Tuple[bool, dict]:
        resources = self._get_resource_handle(kind, api_version)
        if not resources:
            return True, None
        if not namespace:
            resources.namespaced = False

        try:
            resource = resources.get(name=name, namespace=namespace)
        except ForbiddenError:
            log.debug(
                "Fetching objects of kind [%s] forbidden in namespace [%s]",
                kind,
                namespace,
            )
            return False, None
        except NotFoundError:
            log.debug(
                "No object named [%s/%s] found in namespace [%s]", kind, name, namespace
            )
            return True, None
        return True, resource.to_dict()

    def watch_objects(  # pylint: disable=too-many-arguments
        self,
        kind: str,
        api_version: Optional[str] = None,
        namespace: Optional[str] = None,
        name: Optional[str] = None,
        label_selector: Optional[str] = None,
        field_selector: Optional[str] = None,
        resource_version: Optional[str] = None,
        watch_manager: Optional[Watch] = None,
    ) -> Iterator[KubeWatchEvent]:
        watch_manager = watch_manager if watch_manager else Watch()
        resource_handle = self._get_resource_handle(kind, api_version)
        assert_cluster(
            resource_handle,
            f"Failed to fetch resource handle for {namespace}/{api_version}/{kind}",
        )
        resource_version = resource_version if resource_version else 0

        while True:
            try:
                for event_obj in watch_manager.stream(
                    resource_handle.get,
                    resource_version=resource_version,
                    namespace=namespace,
                    name=name,
                    label_selector=label_selector,
                    field_selector=field_selector,
                    serialize=False,
                    timeout_seconds=SERVER_WATCH_TIMEOUT,
                    _request_timeout=CLIENT_WATCH_TIMEOUT,
                ):
                    event_type = KubeEventType(event_obj["type"])
                    event_resource = ManagedObject(event_obj["object"])
                    yield KubeWatchEvent(event_type, event_resource)
            except client.exceptions.ApiException as exception:
                if exception.status == 410:
                    log.debug2(
                        "Resource age expired, restarting watch %s/%s",
                        kind,
                        api_version,
                    )
                    resource_version = None
                else:
                    log.info("Unknown ApiException received, re-raising")
                    raise
            except urllib3.exceptions.ReadTimeoutError:
                log.debug4(
                    "Watch Socket closed, restarting watch %s/%s", kind, api_version
                )
            except urllib3.exceptions.ProtocolError:
                log.debug2(
                    "Invalid Chunk from server, restarting watch %s/%s",
                    kind,
                    api_version,
                )

            if watch_manager._stop:  # pylint: disable=protected-access
                log.debug(
                    "Internal watch stopped. Stopping deploy manager watch for %s/%s",
                    kind,
                    api_version,
                )
                return

    def filter_objects_current_state(  # pylint: disable=too-many-arguments
        self,
        kind: str,
        namespace: Optional[str] = None,
        api_version: Optional[str] = None,
        label_selector: Optional[str] = None,
        field_selector: Optional[str] = None,
    ) -> Tuple[bool, List[dict]]:
        resources = self._get_resource_handle(kind, api_version)
        if not resources:
            return True, []
        if not namespace:
            resources.namespaced = False

        try:
            list_obj = resources.get(
                label_selector=label_selector,
                field_selector=field_selector,
                namespace=namespace,
            )
        except ForbiddenError:
            log.debug(
                "Listing objects of kind [%s] forbidden in namespace [%s]",
                kind,
                namespace,
            )
            return False, []
        except NotFoundError:
            log.debug(
                "No objects of kind [%s] found in namespace [%s]", kind, namespace
            )
            return True, []
        return True, list_obj.to_dict().get("items", [])

    def set_status(  # pylint: disable=too-many-arguments
        self,
        kind: str,
        name: str,
        namespace: Optional[str],
        status: dict,
        api_version: Optional[str] = None,
    ) -> Tuple[bool, bool]:
        # The retry helper works on manifests, so give it an identity-only one
        resource_definitions = [
            {
                "kind": kind,
                "apiVersion": api_version,
                "metadata": {"name": name, "namespace": namespace},
            }
        ]
        return self._retried_operation(
            resource_definitions,
            self._set_status,
            max_retries=config.deploy_retries,
            status=status,
            manage_owner_references=False,
        )

    ## Implementation Helpers ##################################################

    @staticmethod
    def _setup_client():
        """Create a DynamicClient from the in-cluster service account if there
        is one, otherwise from the local kubeconfig
        """
        try:
            log.debug2("Running with in-cluster config")
            kube_config = kubernetes.client.Configuration()
            kubernetes.config.load_incluster_config(client_configuration=kube_config)
            return DynamicClient(kubernetes.client.ApiClient(kube_config))
        except kubernetes.config.ConfigException:
            log.debug2("Running with out-of-cluster config")
            return DynamicClient(kubernetes.config.new_client_from_config())

    @staticmethod
    def _strip_last_applied(resource_definitions):
        """The last-applied annotation must never be applied itself or it nests
        recursively
        """
        for resource_definition in resource_definitions:
            annotations = resource_definition.get("metadata", {}).get("annotations")
            if annotations and LAST_APPLIED_CONFIG_ANNOTATION in annotations:
                log.debug3("Removing [%s]", LAST_APPLIED_CONFIG_ANNOTATION)
                del annotations[LAST_APPLIED_CONFIG_ANNOTATION]
                if not annotations:
                    del resource_definition["metadata"]["annotations"]

    def _get_resource_handle(self, kind: str, api_version: str) -> Optional[Resource]:
        """Get the openshift resource handle for a specified kind and api_version"""
        try:
            return self.client.resources.get(kind=kind, api_version=api_version)
        except (ResourceNotFoundError, ResourceNotUniqueError):
            try:
                return self.client.resources.get(
                    short_names=[kind], api_version=api_version
                )
            except (ResourceNotFoundError, ResourceNotUniqueError):
                log.debug(
                    "No objects of kind [%s] found or multiple objects matching request found",
                    kind,
                )
        return None

    def _retried_operation(
        self,
        resource_definitions,
        operation,
        max_retries,
        manage_owner_references,
        **kwargs,
    ):
        """Shared wrapper for executing a client operation with retries. The
        resources are processed in order and processing stops at the first
        failure since later resources may depend on earlier ones.
        """
        assert isinstance(
            resource_definitions, list
        ), "Programming Error: resource_definitions is not a list"
        if not resource_definitions:
            log.debug("Nothing to do for an empty list of resources")
            return True, False

        self._strip_last_applied(resource_definitions)
        if manage_owner_references and self._owner_cr:
            for resource_definition in resource_definitions:
                update_owner_references(self, self._owner_cr, resource_definition)

        success = True
        changed = False
        for resource_definition in resource_definitions:
            try:
                changed = (
                    self._run_individual_operation_with_retries(
                        operation,
                        max_retries,
                        resource_definition=resource_definition,
                        **kwargs,
                    )
                    or changed
                )
            except Exception as err:  # pylint: disable=broad-except
                log.warning(
                    "Operation [%s] failed to execute: %s",
                    operation,
                    err,
                    exc_info=True,
                )
                success = False
                break
        return success, changed

    def _run_individual_operation_with_retries(
        self,
        operation: Callable,
        remaining_retries: int,
        resource_definition: dict,
        **kwargs,
    ):
        """Run a single operation, refreshing the resourceVersion and retrying
        with a linear backoff on conflicts

        Args:
            operation:  Callable
                The operation function to run
            remaining_retries:  int
                The number of remaining retries
            resource_definition:  dict
                The dict representation of the resource being applied
            **kwargs:  dict
                Keyword args to pass to the operation beyond resource_definition

        Returns:
            changed:  bool
                Whether or not the operation resulted in meaningful change
        """
        try:
            return operation(resource_definition=resource_definition, **kwargs)
        except ConflictError as err:
            log.debug2("Handling ConflictError: %s", err)
            if not remaining_retries:
                raise

            backoff_duration = config.retry_backoff_base_seconds * (
                config.deploy_retries - remaining_retries + 1
            )
            log.debug3("Retrying in %fs", backoff_duration)
            time.sleep(backoff_duration)

            # NOTE: This may overwrite external edits. Rendered resources are
            #   owned by the operator and the next reconcile settles any drift.
            res_id = self._get_resource_identifiers(resource_definition)
            success, content = self.get_object_current_state(
                kind=res_id.kind,
                name=res_id.name,
                namespace=res_id.namespace,
                api_version=res_id.api_version,
            )
            assert_cluster(
                success and content is not None,
                f"Failed to fetch updated resourceVersion for {res_id}",
            )
            updated_resource_version = content.get("metadata", {}).get(
                "resourceVersion"
            )
            assert_cluster(
                updated_resource_version is not None,
                "No updated resource version found!",
            )
            resource_definition.setdefault("metadata", {})[
                "resourceVersion"
            ] = updated_resource_version
            return self._run_individual_operation_with_retries(
                operation, remaining_retries - 1, resource_definition, **kwargs
            )

    @classmethod
    def _manifest_diff(cls, current: dict, desired: dict) -> bool:
        """Compare two manifests for meaningful diff while ignoring fields that
        always change
        """
        current = copy.deepcopy(current)
        desired = copy.deepcopy(desired)
        for metadata_field in _SERVER_METADATA_FIELDS:
            current.get("metadata", {}).pop(metadata_field, None)
            desired.get("metadata", {}).pop(metadata_field, None)
        cls._strip_last_applied([current, desired])
        change = bool(recursive_diff(current, desired))
        log.debug2("Found change? %s", change)
        log.debug3("A: %s", current)
        log.debug3("B: %s", desired)
        return change

    @staticmethod
    def _get_resource_identifiers(resource_definition, require_api_version=True):
        """Helper for getting the required parts of a single resource definition"""
        api_version = resource_definition.get("apiVersion")
        kind = resource_definition.get("kind")
        name = resource_definition.get("metadata", {}).get("name")
        namespace = resource_definition.get("metadata", {}).get("namespace")
        assert None not in [kind, name], "Cannot apply resource without kind or name"
        assert (
            not require_api_version or api_version is not None
        ), "Cannot apply resource without apiVersion"
        return _ResourceIdentifiers(api_version, kind, name, namespace)

    def _get_required_handle(self, res_id: _ResourceIdentifiers) -> Resource:
        log.debug2("Fetching resource handle [%s/%s]", res_id.api_version, res_id.kind)
        resource_handle = self._get_resource_handle(
            api_version=res_id.api_version, kind=res_id.kind
        )
        assert_cluster(
            resource_handle,
            "Failed to fetch resource handle for "
            f"{res_id.namespace}/{res_id.api_version}/{res_id.kind}",
        )
        return resource_handle

    ################
    ## Operations ##
    ################

    def _replace_resource(self, resource_definition: dict) -> dict:
        """Forcibly PUT a resource onto the cluster"""
        res_id = self._get_resource_identifiers(resource_definition)
        resource_definition["metadata"]["managedFields"] = None
        resource_handle = self._get_required_handle(res_id)
        log.debug2("Attempting to put %s", res_id)
        return resource_handle.replace(
            resource_definition,
            name=res_id.name,
            namespace=res_id.namespace,
            field_manager=config.field_manager,
        ).to_dict()

    def _apply_resource(self, resource_definition: dict) -> dict:
        """Server side apply a single resource, taking ownership of fields held
        by other managers
        """
        res_id = self._get_resource_identifiers(resource_definition)
        resource_definition["metadata"]["managedFields"] = None
        resource_handle = self._get_required_handle(res_id)
        log.debug2("Attempting to apply %s", res_id)
        return resource_handle.server_side_apply(
            resource_definition,
            name=res_id.name,
            namespace=res_id.namespace,
            field_manager=config.field_manager,
            force_conflicts=True,
        ).to_dict()

    def _apply(self, resource_definition):
        """Apply a single resource to the cluster if it differs from what is
        there

        Args:
            resource_definition:  dict
                The resource manifest to apply

        Returns:
            changed:  bool
                Whether or not the apply resulted in a meaningful change
        """
        res_id = self._get_resource_identifiers(resource_definition)
        success, current = self.get_object_current_state(
            kind=res_id.kind,
            name=res_id.name,
            namespace=res_id.namespace,
            api_version=res_id.api_version,
        )
        assert_cluster(success, f"Failed to fetch current state for {res_id}")
        current = current or {}

        if not self._manifest_diff(current, resource_definition):
            return False

        try:
            apply_res = self._apply_resource(resource_definition)
        except UnprocessibleEntityError as err:
            log.debug3("Caught 422 error: %s", err, exc_info=True)
            if not (config.deploy_unprocessable_put_fallback and current):
                raise
            log.debug("Falling back to PUT on 422: %s", err)
            apply_res = self._replace_resource(resource_definition)

        # Applying does not always make the resource identical to the manifest
        # (e.g. removed fields owned by another manager), so diff again
        return self._manifest_diff(current, apply_res)

    def _disable(self, resource_definition):
        """Delete a single resource from the cluster if it exists"""
        res_id = self._get_resource_identifiers(resource_definition)
        try:
            resource_handle = self.client.resources.get(
                api_version=res_id.api_version, kind=res_id.kind
            )
            if not res_id.namespace:
                resource_handle.namespaced = False
            log.debug2("Attempting to delete %s", res_id)
            resource_handle.delete(name=res_id.name, namespace=res_id.namespace)
            return True
        except (ResourceNotFoundError, NotFoundError) as err:
            log.debug2("Valid error caught when disabling %s: %s", res_id, err)
        return False

    def _set_status(self, resource_definition, status):
        """Replace the status subresource of a single resource"""
        res_id = self._get_resource_identifiers(
            resource_definition, require_api_version=False
        )
        resource_handle = self.client.resources.get(
            api_version=res_id.api_version, kind=res_id.kind
        )
        if not res_id.namespace:
            resource_handle.namespaced = False

        with self._status_lock:
            resource = resource_handle.get(
                name=res_id.name, namespace=res_id.namespace
            ).to_dict()
            if resource.get("status") == status:
                log.debug("Status has not changed. No update")
                return False
            resource["status"] = status
            resource_handle.status.replace(body=resource)
            log.debug2("Successfully set the status for %s", res_id)
            return True
