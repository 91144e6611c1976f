"""
The DryRunDeployManager implements the DeployManager interface but does not
actually interact with the cluster and instead holds the state of the cluster in
a local map.
"""

# Standard
from datetime import datetime, timedelta
from queue import Empty, Queue
from threading import RLock
from typing import Callable, Iterator, List, Optional, Tuple
import copy
import itertools
import uuid

# First Party
import alog

# Local
from ..managed_object import ManagedObject
from ..selectors import flatten_fields, match_selector
from ..utils import merge_configs
from .base import DeployManagerBase
from .kube_event import KubeEventType, KubeWatchEvent
from .owner_references import update_owner_references

log = alog.use_channel("DRY-RUN")

# Lock to ensure disable/deploys are thread safe
DRY_RUN_CLUSTER_LOCK = RLock()

# Metadata fields that the "server" owns and which never count as a change
_SERVER_METADATA_FIELDS = [
    "uid",
    "resourceVersion",
    "creationTimestamp",
    "generation",
    "managedFields",
]

# Monotonic source of resourceVersions shared by all instances
_RESOURCE_VERSIONS = itertools.count(1)


class DryRunDeployManager(DeployManagerBase):
    """
    Deploy manager which doesn't actually deploy!
    """

    def __init__(
        self,
        resources=None,
        owner_cr=None,
        strict_resource_version=False,
    ):
        """Construct with an optional set of resources that are already
        "in the cluster"

        Args:
            resources:  Optional[List[dict]]
                Resources to preload without triggering watches
            owner_cr:  Optional[dict]
                If given, deployed resources get an ownerReference to this CR
            strict_resource_version:  bool
                If True, deploys carrying a stale resourceVersion fail
        """
        self._owner_cr = owner_cr
        self._cluster_content = {}
        self.strict_resource_version = strict_resource_version

        # Dicts of registered watches and watchers
        self._watches = {}
        self._finalizers = {}

        self._deploy(resources or [], call_watches=False, manage_owner_references=False)

    ## Interface ###############################################################

    def deploy(self, resource_definitions, manage_owner_references=True, **_):
        log.info("DRY RUN deploy")
        return self._deploy(
            resource_definitions, manage_owner_references=manage_owner_references
        )

    def disable(self, resource_definitions):
        log.info("DRY RUN disable")
        changed = False
        for resource in resource_definitions:
            api_version = resource.get("apiVersion")
            kind = resource.get("kind")
            name = resource.get("metadata", {}).get("name")
            namespace = resource.get("metadata", {}).get("namespace")

            with DRY_RUN_CLUSTER_LOCK:
                current = self._get_entry(namespace, kind, api_version, name)
                if current is None:
                    continue
                changed = True
                current["metadata"].setdefault(
                    "deletionTimestamp", datetime.now().strftime("%Y-%m-%dT%H:%M:%SZ")
                )
                current["metadata"]["deletionGracePeriodSeconds"] = 0
                snapshot = copy.deepcopy(current)

            for key, callback in self._get_registered_watches(
                api_version, kind, namespace, name, finalizer=True
            ):
                log.debug2("Calling registered finalizer [%s] for [%s]", callback, key)
                callback(snapshot)

            # Objects without finalizers are removed immediately
            with DRY_RUN_CLUSTER_LOCK:
                current = self._get_entry(namespace, kind, api_version, name)
                if current and not current["metadata"].get("finalizers"):
                    self._delete_key(namespace, kind, api_version, name)

        return True, changed

    def get_object_current_state(self, kind, name, namespace=None, api_version=None):
        log.info(
            "DRY RUN get_object_current_state of [%s/%s] in [%s]", kind, name, namespace
        )
        matches = []
        with DRY_RUN_CLUSTER_LOCK:
            kind_entries = self._cluster_content.get(namespace, {}).get(kind, {})
            for api_ver, entries in kind_entries.items():
                if name in entries and api_version in [None, api_ver]:
                    matches.append(copy.deepcopy(entries[name]))
        log.debug(
            "Found %d matches for [%s/%s] in %s", len(matches), kind, name, namespace
        )
        if len(matches) == 1:
            return True, matches[0]
        return True, None

    def filter_objects_current_state(
        self,
        kind,
        namespace=None,
        api_version=None,
        label_selector=None,
        field_selector=None,
    ):  # pylint: disable=too-many-arguments
        log.info(
            "DRY RUN filter_objects_current_state of [%s] in [%s]", kind, namespace
        )
        matches = []
        with DRY_RUN_CLUSTER_LOCK:
            namespaces = (
                [namespace] if namespace is not None else list(self._cluster_content)
            )
            for search_namespace in namespaces:
                kind_entries = self._cluster_content.get(search_namespace, {}).get(
                    kind, {}
                )
                for api_ver, entries in kind_entries.items():
                    if api_version not in [None, api_ver]:
                        continue
                    for resource in entries.values():
                        labels = resource.get("metadata", {}).get("labels", {})
                        if not match_selector(labels, label_selector):
                            continue
                        if field_selector and not match_selector(
                            flatten_fields(resource), field_selector
                        ):
                            continue
                        matches.append(copy.deepcopy(resource))
        return True, matches

    def set_status(
        self,
        kind,
        name,
        namespace,
        status,
        api_version=None,
    ):  # pylint: disable=too-many-arguments
        log.info(
            "DRY RUN set_status of [%s.%s/%s] in %s: %s",
            api_version,
            kind,
            name,
            namespace,
            status,
        )
        with DRY_RUN_CLUSTER_LOCK:
            kind_entries = self._cluster_content.get(namespace, {}).get(kind, {})
            current = None
            for api_ver, entries in kind_entries.items():
                if name in entries and api_version in [None, api_ver]:
                    current = entries[name]
            if current is None:
                log.debug("Did not find [%s/%s] in %s", kind, name, namespace)
                return False, False
            prev_status = current.get("status")
            current["status"] = copy.deepcopy(status)
            current["metadata"]["resourceVersion"] = self._next_resource_version()
        return True, prev_status != status

    def watch_objects(  # pylint: disable=too-many-arguments,too-many-locals,unused-argument
        self,
        kind: str,
        api_version: Optional[str] = None,
        namespace: Optional[str] = None,
        name: Optional[str] = None,
        label_selector: Optional[str] = None,
        field_selector: Optional[str] = None,
        resource_version: Optional[str] = None,
        timeout: Optional[int] = 15,
        **kwargs,
    ) -> Iterator[KubeWatchEvent]:
        """Watch the DryRunDeployManager for resource changes by registering
        callbacks. The stream ends once the timeout expires.
        """
        event_queue = Queue()
        seen_keys = set()

        def add_event(manifest: dict):
            resource = ManagedObject(manifest)
            if not match_selector(resource.metadata.get("labels", {}), label_selector):
                return
            key = self._watch_key(
                resource.api_version, resource.kind, resource.namespace, resource.name
            )
            event_type = (
                KubeEventType.MODIFIED if key in seen_keys else KubeEventType.ADDED
            )
            seen_keys.add(key)
            event_queue.put(KubeWatchEvent(type=event_type, resource=resource))

        def delete_event(manifest: dict):
            resource = ManagedObject(manifest)
            if not match_selector(resource.metadata.get("labels", {}), label_selector):
                return
            seen_keys.discard(
                self._watch_key(
                    resource.api_version,
                    resource.kind,
                    resource.namespace,
                    resource.name,
                )
            )
            event_queue.put(
                KubeWatchEvent(type=KubeEventType.DELETED, resource=resource)
            )

        # Register before listing so no events are lost in between
        self.register_watch(
            api_version=api_version,
            kind=kind,
            namespace=namespace,
            name=name,
            callback=add_event,
        )
        self.register_finalizer(
            api_version=api_version,
            kind=kind,
            namespace=namespace,
            name=name,
            callback=delete_event,
        )

        _, manifests = self.filter_objects_current_state(
            kind=kind,
            api_version=api_version,
            namespace=namespace,
            label_selector=label_selector,
            field_selector=field_selector,
        )
        for manifest in manifests:
            resource = ManagedObject(manifest)
            if name and resource.name != name:
                continue
            seen_keys.add(
                self._watch_key(
                    resource.api_version,
                    resource.kind,
                    resource.namespace,
                    resource.name,
                )
            )
            event = KubeWatchEvent(type=KubeEventType.ADDED, resource=resource)
            log.debug2("Yielding initial event %s", event)
            yield event

        end_time = datetime.max
        if timeout:
            end_time = datetime.now() + timedelta(seconds=timeout)

        log.debug2("Waiting till %s", end_time)
        while datetime.now() < end_time:
            remaining = (end_time - datetime.now()).total_seconds()
            try:
                event = event_queue.get(timeout=max(min(remaining, 1), 0.01))
            except Empty:
                continue
            log.debug2("Yielding event %s", event)
            yield event

    ## Dry Run Methods #########################################################

    def register_watch(  # pylint: disable=too-many-arguments
        self,
        api_version: str,
        kind: str,
        callback: Callable[[dict], None],
        namespace="",
        name="",
    ):
        """Register a callback to watch for deploy events on a given
        api_version/kind
        """
        watch_key = self._watch_key(api_version, kind, namespace, name)
        log.debug("Registering watch for %s", watch_key)
        with DRY_RUN_CLUSTER_LOCK:
            self._watches.setdefault(watch_key, []).append(callback)

    def register_finalizer(  # pylint: disable=too-many-arguments
        self,
        api_version: str,
        kind: str,
        callback: Callable[[dict], None],
        namespace="",
        name="",
    ):
        """Register a callback to call on deletion events on a given
        api_version/kind
        """
        watch_key = self._watch_key(api_version, kind, namespace, name)
        log.debug("Registering finalizer for %s", watch_key)
        with DRY_RUN_CLUSTER_LOCK:
            self._finalizers.setdefault(watch_key, []).append(callback)

    ## Implementation Details ##################################################

    @staticmethod
    def _watch_key(api_version="", kind="", namespace="", name=""):
        return ":".join([api_version or "", kind or "", namespace or "", name or ""])

    @staticmethod
    def _next_resource_version() -> str:
        return str(next(_RESOURCE_VERSIONS))

    def _get_registered_watches(  # pylint: disable=too-many-arguments
        self,
        api_version: str = "",
        kind: str = "",
        namespace: str = "",
        name: str = "",
        finalizer: bool = False,
    ) -> List[Tuple[str, Callable]]:
        """Get all callbacks registered for the resource itself, its namespace
        or its kind across all namespaces
        """
        candidate_keys = [
            self._watch_key(api_version, kind, namespace, name),
            self._watch_key(api_version, kind, namespace),
            self._watch_key(api_version, kind, "", name),
            self._watch_key(api_version, kind),
        ]
        callback_map = self._finalizers if finalizer else self._watches
        with DRY_RUN_CLUSTER_LOCK:
            return [
                (key, callback)
                for key in dict.fromkeys(candidate_keys)
                for callback in callback_map.get(key, [])
            ]

    def _get_entry(self, namespace, kind, api_version, name) -> Optional[dict]:
        return (
            self._cluster_content.get(namespace, {})
            .get(kind, {})
            .get(api_version, {})
            .get(name)
        )

    def _delete_key(self, namespace, kind, api_version, name):
        del self._cluster_content[namespace][kind][api_version][name]
        if not self._cluster_content[namespace][kind][api_version]:
            del self._cluster_content[namespace][kind][api_version]
        if not self._cluster_content[namespace][kind]:
            del self._cluster_content[namespace][kind]
        if not self._cluster_content[namespace]:
            del self._cluster_content[namespace]

    @staticmethod
    def _clean(manifest: dict) -> dict:
        manifest = copy.deepcopy(manifest or {})
        for metadata_field in _SERVER_METADATA_FIELDS:
            manifest.get("metadata", {}).pop(metadata_field, None)
        manifest.pop("status", None)
        return manifest

    def _deploy(
        self,
        resource_definitions,
        call_watches=True,
        manage_owner_references=True,
    ):
        changes = False
        for resource in resource_definitions:
            resource.setdefault("metadata", {})
            api_version = resource.get("apiVersion")
            kind = resource.get("kind")
            name = resource["metadata"].get("name")
            namespace = resource["metadata"].get("namespace")
            log.debug(
                "DRY RUN deploy [%s/%s/%s/%s]", namespace, kind, api_version, name
            )
            log.debug4(resource)

            if self._owner_cr and manage_owner_references:
                log.debug2("Adding dry-run owner references")
                update_owner_references(self, self._owner_cr, resource)

            with DRY_RUN_CLUSTER_LOCK:
                current = self._get_entry(namespace, kind, api_version, name) or {}
                current_metadata = current.get("metadata", {})
                requested_version = resource["metadata"].get("resourceVersion")
                if (
                    self.strict_resource_version
                    and requested_version
                    and current_metadata.get("resourceVersion")
                    and requested_version != current_metadata["resourceVersion"]
                ):
                    log.warning(
                        "Unable to deploy resource. resourceVersion is out of date"
                    )
                    return False, False

                # Partial manifests like metadata-only updates merge onto the
                # stored object
                stored = merge_configs(copy.deepcopy(current), copy.deepcopy(resource))

                resource_changed = self._clean(current) != self._clean(stored)
                changes = changes or resource_changed

                stored_metadata = stored["metadata"]
                stored_metadata["creationTimestamp"] = current_metadata.get(
                    "creationTimestamp", datetime.now().isoformat()
                )
                stored_metadata["uid"] = current_metadata.get(
                    "uid", stored_metadata.get("uid") or str(uuid.uuid4())
                )
                generation = current_metadata.get("generation", 0)
                if not current or stored.get("spec") != current.get("spec"):
                    generation += 1
                stored_metadata["generation"] = generation
                stored_metadata["resourceVersion"] = (
                    self._next_resource_version()
                    if resource_changed
                    else current_metadata.get(
                        "resourceVersion", self._next_resource_version()
                    )
                )

                self._cluster_content.setdefault(namespace, {}).setdefault(
                    kind, {}
                ).setdefault(api_version, {})[name] = stored
                snapshot = copy.deepcopy(stored)

                # Deleting objects are removed once their finalizers are gone
                if stored_metadata.get("deletionTimestamp") and not stored_metadata.get(
                    "finalizers"
                ):
                    self._delete_key(namespace, kind, api_version, name)

            if call_watches and resource_changed:
                for key, callback in self._get_registered_watches(
                    api_version, kind, namespace, name
                ):
                    log.debug2("Calling registered watch [%s] for [%s]", callback, key)
                    callback(copy.deepcopy(snapshot))

        return True, changes
