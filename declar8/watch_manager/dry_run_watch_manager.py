"""
Dry run implementation of the WatchManager abstraction
"""

# Standard
from functools import partial
from typing import Optional
import logging

# First Party
import alog

# Local
from ..deploy_manager import DryRunDeployManager
from ..reconcile import ReconcileManager
from ..watches import WatchEntry, WatchRegistry
from .base import WatchManagerBase

log = alog.use_channel("DRWAT")


class DryRunWatchManager(WatchManagerBase):
    """
    The DryRunWatchManager implements the WatchManagerBase interface using a
    single shared DryRunDeployManager to manage an in-memory representation of
    the cluster. Reconciles run synchronously inside the deploy call that
    triggered them.
    """

    def __init__(
        self,
        entry: WatchEntry,
        deploy_manager: Optional[DryRunDeployManager] = None,
        registry: Optional[WatchRegistry] = None,
    ):
        """
        Args:
            entry:  WatchEntry
                The entry for the kind that will be watched
            deploy_manager:  Optional[DryRunDeployManager]
                If given, this deploy_manager will be used. This allows for
                pre-populated resources. It must support registering watches.
            registry:  Optional[WatchRegistry]
                The registry used to resolve entries. Defaults to one holding
                only this entry.
        """
        super().__init__(entry)
        self._deploy_manager = deploy_manager or DryRunDeployManager()
        self._watching = False
        self._resource = {}
        self.reconcile_manager = ReconcileManager(
            registry if registry is not None else WatchRegistry([entry]),
            deploy_manager=self._deploy_manager,
        )

    def watch(self) -> bool:
        """Register the watch with the deploy manager"""
        if self._watching:
            log.warning("Cannot watch multiple times!")
            return False

        log.debug("Registering %s with the DeployManager", self.entry)
        self._deploy_manager.register_watch(
            api_version=self.entry.api_version,
            kind=self.kind,
            callback=partial(self.run_reconcile, False),
        )
        self._deploy_manager.register_finalizer(
            api_version=self.entry.api_version,
            kind=self.kind,
            callback=partial(self.run_reconcile, True),
        )
        self._watching = True
        return True

    def wait(self):
        """There is nothing to do in wait"""

    def stop(self):
        """There is nothing to do in stop"""

    def run_reconcile(self, is_finalizer: bool, resource: dict):
        """Reconcile a resource unless it is the one currently being
        reconciled
        """
        current_metadata = self._resource.get("metadata", {})
        metadata = resource.get("metadata", {})
        if (
            self._resource.get("kind") == resource.get("kind")
            and self._resource.get("apiVersion") == resource.get("apiVersion")
            and current_metadata.get("name") == metadata.get("name")
            and current_metadata.get("namespace") == metadata.get("namespace")
        ):
            return

        # Restore the log formatters and the current resource afterwards
        log_formatters = {
            handler: handler.formatter for handler in logging.getLogger().handlers
        }
        current_resource = self._resource
        self._resource = resource
        try:
            self.reconcile_manager.safe_reconcile(resource, is_finalizer)
        finally:
            self._resource = current_resource
            for handler, formatter in log_formatters.items():
                handler.setFormatter(formatter)
