"""
The ReconcileManager class manages an individual reconcile of a custom
resource. It resolves the CR's watch entry, renders the bound target, applies
the rendered resources and reports the outcome on the CR status.
"""

# Standard
from dataclasses import dataclass, field
from typing import List, Optional, Union
import base64
import datetime
import logging
import uuid

# First Party
import aconfig
import alog

# Local
from . import config, constants, status
from .applier import Applier
from .deploy_manager import ClusterDeployManager, DeployManagerBase, DryRunDeployManager
from .exceptions import (
    ClusterError,
    ConfigError,
    Declar8ExpectedError,
    PreconditionError,
    RenderError,
    assert_config,
)
from .log_format import Declar8JsonFormatter
from .targets import get_target
from .utils import add_finalizer, remove_finalizer
from .watches import TargetType, WatchEntry, WatchRegistry

log = alog.use_channel("RECONCILE")


## Data models #################################################################


@dataclass
class RequeueParams:
    """RequeueParams holds parameters for requeue request"""

    requeue_after: datetime.timedelta = field(
        default_factory=lambda: datetime.timedelta(
            seconds=float(config.requeue_after_seconds)
        )
    )


@dataclass
class ReconciliationResult:
    """ReconciliationResult is the result of a reconciliation"""

    # Flag to control requeue of current reconcile request
    requeue: bool
    # Parameters for requeue request
    requeue_params: RequeueParams = field(default_factory=RequeueParams)
    # Flag to identify if the reconciliation raised an exception
    exception: Exception = None
    # References to the resources applied by this reconciliation
    deployed_resources: List[dict] = field(default_factory=list)


## ReconcileManager ############################################################


class ReconcileManager:
    """This class manages reconciliations for an instance of declar8. Its
    primary function is to run reconciles given a CR manifest, the watch
    registry, and the current cluster state via a DeployManager.
    """

    def __init__(
        self,
        registry: WatchRegistry,
        deploy_manager: Optional[DeployManagerBase] = None,
    ):
        """
        Args:
            registry:  WatchRegistry
                The registry used to resolve each CR's target
            deploy_manager:  Optional[DeployManager]=None
                Deploy manager to use. If not given, a new DeployManager will
                be created for each reconcile.
        """
        self.registry = registry
        self.deploy_manager = deploy_manager

    ## Reconciliation ##########################################################

    @alog.logged_function(log.info)
    @alog.timed_function(log.info, "Reconcile finished in: ")
    def reconcile(
        self,
        resource: Union[dict, aconfig.Config],
        is_finalizer: bool = False,
    ) -> ReconciliationResult:
        """This is the main entrypoint for reconciliations. The general
        reconcile path is as follows:

            1. Parse the raw CR manifest
            2. Setup logging based on config with overrides from CR
            3. Check if the CR is paused
            4. Resolve the watch entry
            5. Finalize if the CR is being deleted
            6. Check the entry's selector
            7. Render the target and apply the resources

        Args:
            resource: Union[dict, aconfig.Config]
                A raw representation of the resource to be reconciled
            is_finalizer: bool=False
                Whether the resource is being deleted

        Returns:
            reconcile_result:  ReconciliationResult
                The result of the reconcile
        """
        cr_manifest = self.parse_manifest(resource)
        reconcile_id = self.generate_id()
        self.configure_logging(cr_manifest, reconcile_id)

        if self._is_paused(cr_manifest):
            log.info("CR is paused. Exiting reconciliation")
            return ReconciliationResult(requeue=False)

        entry = self.resolve_entry(cr_manifest)

        # CRs whose labels stopped matching still release their finalizer
        if is_finalizer or cr_manifest.metadata.get("deletionTimestamp"):
            deploy_manager = self.setup_deploy_manager(cr_manifest)
            return self.run_finalizer(entry, cr_manifest, deploy_manager)

        if not entry.matches(cr_manifest):
            log.info("CR does not match the selector for %s. Skipping", entry)
            return ReconciliationResult(requeue=False)

        deploy_manager = self.setup_deploy_manager(cr_manifest)
        return self.run_target(entry, cr_manifest, deploy_manager)

    def safe_reconcile(
        self,
        resource: Union[dict, aconfig.Config],
        is_finalizer: bool = False,
    ) -> ReconciliationResult:
        """Call reconcile but catch any error it raises. This guarantees a
        result, which the watch managers rely on.

        Args:
            resource: Union[dict, aconfig.Config]
                A raw representation of the resource to be reconciled
            is_finalizer: bool=False
                Whether the resource is being deleted

        Returns:
            reconcile_result:  ReconciliationResult
                The result of the reconcile
        """
        try:
            return self.reconcile(resource, is_finalizer)
        except Exception as exc:  # pylint: disable=broad-except
            log.warning("Handling caught error in reconcile: %s", exc, exc_info=True)
            error = exc

        if self._should_manage_status(resource):
            try:
                self._update_error_status(resource, error)
                log.debug("Update CR status with error message")
            except Exception as exc:  # pylint: disable=broad-except
                log.error("Failed to update status: %s", exc, exc_info=True)

        # Any error requeues with the default backoff
        log.info("Requeuing CR due to error during reconcile")
        return ReconciliationResult(
            requeue=True, requeue_params=RequeueParams(), exception=error
        )

    ## Reconciliation Stages ###################################################

    @classmethod
    def parse_manifest(cls, resource: Union[dict, aconfig.Config]) -> aconfig.Config:
        """Parse a raw resource into an aconfig Config

        Args:
            resource: Union[dict, aconfig.Config])
                The resource to be parsed into a manifest

        Returns
            cr_manifest: aconfig.Config
                The parsed and validated config
        """
        try:
            cr_manifest = aconfig.Config(resource, override_env_vars=False)
        except (ValueError, SyntaxError, AttributeError) as exc:
            raise ValueError("Failed to parse full_cr") from exc

        for key in ["apiVersion", "kind", "metadata"]:
            if key not in cr_manifest:
                raise ValueError(f"CR manifest missing required field [{key}]")
        return cr_manifest

    @classmethod
    def configure_logging(cls, cr_manifest: aconfig.Config, reconciliation_id: str):
        """Configure the logging for a given reconcile. Annotations on the CR
        override the library log config.

        Args:
            cr_manifest: aconfig.Config
                The resource to get annotation overrides from
            reconciliation_id: str
                The unique id for the reconciliation
        """
        annotations = cr_manifest.get("metadata", {}).get("annotations", {})
        default_level = annotations.get(
            constants.LOG_DEFAULT_LEVEL_NAME, config.log_level
        )
        filters = annotations.get(constants.LOG_FILTERS_NAME, config.log_filters)
        log_json = annotations.get(constants.LOG_JSON_NAME, str(config.log_json))
        log_thread_id = annotations.get(
            constants.LOG_THREAD_ID_NAME, str(config.log_thread_id)
        )
        log_json = (log_json or "").lower() == "true"
        log_thread_id = (log_thread_id or "").lower() == "true"

        # Keep any existing handler so output keeps going to the same place
        handler_generator = None
        if logging.root.handlers:
            old_handler = logging.root.handlers[0]

            def handler_generator():
                return old_handler

        alog.configure(
            default_level=default_level,
            filters=filters,
            formatter=Declar8JsonFormatter(cr_manifest, reconciliation_id)
            if log_json
            else "pretty",
            thread_id=log_thread_id,
            handler_generator=handler_generator,
        )

    @classmethod
    def generate_id(cls) -> str:
        """Generates a unique human readable id for this reconciliation

        Returns:
            id: str
                A unique base32 encoded id
        """
        base32_str = base64.b32encode(uuid.uuid4().bytes).decode("utf-8")
        reconcile_id = base32_str[:22]
        log.debug("Generated reconcile id: %s", reconcile_id)
        return reconcile_id

    def resolve_entry(self, cr_manifest: aconfig.Config) -> WatchEntry:
        """Find the watch entry for the CR's group/version/kind

        Raises:
            ConfigError: If no entry is registered for the kind
        """
        entry = self.registry.lookup_resource(cr_manifest)
        assert_config(
            entry is not None,
            f"No watch registered for {cr_manifest.apiVersion}/{cr_manifest.kind}",
        )
        return entry

    def setup_deploy_manager(self, cr_manifest: aconfig.Config) -> DeployManagerBase:
        """Configure a deploy_manager for a reconcile given a manifest

        Args:
            cr_manifest: aconfig.Config
                The resource to be used as an owner_ref

        Returns:
            deploy_manager: DeployManagerBase
                The deploy_manager to be used during reconcile
        """
        if self.deploy_manager:
            return self.deploy_manager.for_owner(cr_manifest)
        if config.dry_run:
            log.debug("Using DryRunDeployManager")
            return DryRunDeployManager(owner_cr=cr_manifest)
        log.debug("Using ClusterDeployManager")
        return ClusterDeployManager(owner_cr=cr_manifest)

    def run_target(
        self,
        entry: WatchEntry,
        cr_manifest: aconfig.Config,
        deploy_manager: DeployManagerBase,
    ) -> ReconciliationResult:
        """Render the entry's target for the CR and apply the result

        Args:
            entry: WatchEntry
                The watch entry bound to the CR's kind
            cr_manifest: aconfig.Config
                The CR being reconciled
            deploy_manager: DeployManagerBase
                The deploy manager used in the cluster

        Returns:
            reconciliation_result: ReconciliationResult
                The result of the reconcile
        """
        log.info(
            "Reconciling resource %s/%s/%s with %s",
            cr_manifest.kind,
            cr_manifest.metadata.get("namespace"),
            cr_manifest.metadata.name,
            entry,
        )
        manage_status = self._should_manage_status(cr_manifest, entry)

        if entry.finalizer:
            add_finalizer(deploy_manager, cr_manifest, entry.finalizer.name)
        if manage_status:
            self._update_reconcile_start_status(deploy_manager, cr_manifest)

        render_result = get_target(entry).render(cr_manifest, entry)
        previous_refs = status.get_deployed_resources(cr_manifest.get("status"))
        applier = Applier(deploy_manager, cr_manifest)
        apply_result = applier.apply(render_result.resources, previous_refs)
        log.info(
            "Applied %d resources (changed: %s, removed: %d)",
            len(apply_result.deployed),
            apply_result.changed,
            len(apply_result.removed),
        )

        if manage_status:
            self._update_resource_status(
                deploy_manager,
                cr_manifest,
                ready_reason=status.ReadyReason.STABLE,
                ready_message=render_result.message or "Reconcile Complete",
                updating_reason=status.UpdatingReason.STABLE,
                updating_message="Reconcile Complete",
                deployed_resources=apply_result.deployed,
                observed_generation=cr_manifest.metadata.get("generation"),
                run_summary=render_result.summary,
            )
        else:
            status.record_deployed_resources(
                deploy_manager,
                cr_manifest.kind,
                cr_manifest.apiVersion,
                cr_manifest.metadata.name,
                cr_manifest.metadata.get("namespace"),
                deployed_resources=apply_result.deployed,
                observed_generation=cr_manifest.metadata.get("generation"),
            )

        requeue_period = entry.requeue_period
        if requeue_period:
            return ReconciliationResult(
                requeue=True,
                requeue_params=RequeueParams(requeue_after=requeue_period),
                deployed_resources=apply_result.deployed,
            )
        return ReconciliationResult(
            requeue=False, deployed_resources=apply_result.deployed
        )

    def run_finalizer(
        self,
        entry: WatchEntry,
        cr_manifest: aconfig.Config,
        deploy_manager: DeployManagerBase,
    ) -> ReconciliationResult:
        """Clean up after a CR that is being deleted. Roles with finalizer vars
        are run once more with those vars, then every deployed resource is
        removed and the finalizer is released.

        Args:
            entry: WatchEntry
                The watch entry bound to the CR's kind
            cr_manifest: aconfig.Config
                The CR being deleted
            deploy_manager: DeployManagerBase
                The deploy manager used in the cluster

        Returns:
            reconciliation_result: ReconciliationResult
                The result of the finalizer
        """
        finalizers = cr_manifest.metadata.get("finalizers") or []
        if not entry.finalizer or entry.finalizer.name not in finalizers:
            log.debug("No finalizer to run for %s", cr_manifest.metadata.name)
            return ReconciliationResult(requeue=False)

        log.info(
            "Finalizing resource %s/%s/%s",
            cr_manifest.kind,
            cr_manifest.metadata.get("namespace"),
            cr_manifest.metadata.name,
        )
        if self._should_manage_status(cr_manifest, entry):
            self._update_resource_status(
                deploy_manager,
                cr_manifest,
                updating_reason=status.UpdatingReason.UNINSTALLING,
                updating_message=f"Running finalizer {entry.finalizer.name}",
            )

        if entry.target_type != TargetType.CHART and entry.finalizer.vars:
            get_target(entry).render(
                cr_manifest, entry, extra_vars=entry.finalizer.vars
            )

        refs = status.get_deployed_resources(cr_manifest.get("status"))
        removed = Applier(deploy_manager, cr_manifest).remove(refs)
        log.debug("Removed %d resources during finalize", len(removed))

        remove_finalizer(deploy_manager, cr_manifest, entry.finalizer.name)
        return ReconciliationResult(requeue=False)

    ## Implementation Details ##################################################

    @classmethod
    def _is_paused(cls, cr_manifest: aconfig.Config) -> bool:
        """Check if a manifest has a paused annotation"""
        annotations = cr_manifest.metadata.get("annotations", {})
        paused = annotations.get(constants.PAUSE_ANNOTATION_NAME)
        return bool(paused) and str(paused).lower() == "true"

    def _should_manage_status(
        self,
        resource: Union[dict, aconfig.Config],
        entry: Optional[WatchEntry] = None,
    ) -> bool:
        """Status is written unless disabled globally or by the watch entry"""
        if not config.manage_status:
            return False
        entry = entry or self.registry.lookup_resource(resource)
        return entry is None or entry.manage_status

    @staticmethod
    def _update_resource_status(
        deploy_manager: DeployManagerBase, manifest: aconfig.Config, **kwargs
    ) -> dict:
        """Helper function to update the status of a resource given a
        deploy_manager, manifest and status kwargs
        """
        return status.update_resource_status(
            deploy_manager,
            manifest.kind,
            manifest.apiVersion,
            manifest.metadata.name,
            manifest.metadata.get("namespace"),
            **kwargs,
        )

    def _update_reconcile_start_status(
        self, deploy_manager: DeployManagerBase, cr_manifest: aconfig.Config
    ):
        """Mark the CR as updating. A CR that was never reconciled is
        Initializing.
        """
        ready_condition = status.get_condition(
            status.READY_CONDITION, cr_manifest.get("status", {})
        )
        kwargs = {}
        if not ready_condition.get("reason"):
            kwargs["ready_reason"] = status.ReadyReason.INITIALIZING
            kwargs["ready_message"] = "Initial Reconcile Started"
        self._update_resource_status(
            deploy_manager,
            cr_manifest,
            updating_reason=status.UpdatingReason.RECONCILE_START,
            updating_message="Reconcile Started",
            **kwargs,
        )

    def _update_error_status(
        self, resource: Union[dict, aconfig.Config], error: Exception
    ) -> dict:
        """Update the status of a resource after an error occurred. This sets
        up its own deploy manager so errors at any stage can be reported.

        Args:
            resource: Union[dict, aconfig.Config]
                The resource whose status is being updated
            error: Exception
                The exception that stopped the reconciliation

        Returns:
            status: dict
                The updated status after the error message
        """
        cr_manifest = self.parse_manifest(resource)
        deploy_manager = self.setup_deploy_manager(cr_manifest)
        message = str(error)

        if isinstance(error, (PreconditionError, Declar8ExpectedError)):
            status_update = {
                "updating_reason": status.UpdatingReason.PRECONDITION_WAIT,
                "updating_message": message,
            }
        elif isinstance(error, ConfigError):
            status_update = {
                "ready_reason": status.ReadyReason.CONFIG_ERROR,
                "ready_message": message,
                "updating_reason": status.UpdatingReason.ERRORED,
                "updating_message": message,
            }
        elif isinstance(error, ClusterError):
            status_update = {
                "updating_reason": status.UpdatingReason.CLUSTER_ERROR,
                "updating_message": message,
            }
        elif isinstance(error, RenderError):
            status_update = {
                "ready_reason": status.ReadyReason.ERRORED,
                "ready_message": message,
                "updating_reason": status.UpdatingReason.RENDER_ERROR,
                "updating_message": message,
            }
        else:
            status_update = {
                "ready_reason": status.ReadyReason.ERRORED,
                "ready_message": message,
                "updating_reason": status.UpdatingReason.ERRORED,
                "updating_message": message,
            }

        return self._update_resource_status(
            deploy_manager, cr_manifest, **status_update
        )
