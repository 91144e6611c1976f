"""
Run the operator for every kind in a watches file
"""
# Standard
from typing import List, Optional
import argparse
import os
import signal

# Third Party
import yaml

# First Party
import alog

# Local
from .. import config, watch_manager
from ..constants import DEFAULT_NAMESPACE
from ..deploy_manager import ClusterDeployManager, DryRunDeployManager
from ..watches import WatchRegistry
from .base import CmdBase

log = alog.use_channel("MAIN")


class RunOperatorCmd(CmdBase):
    __doc__ = __doc__

    ## Interface ##

    def add_subparser(
        self,
        subparsers: argparse._SubParsersAction,
    ) -> argparse.ArgumentParser:
        parser = subparsers.add_parser("run", help=__doc__)
        runtime_args = parser.add_argument_group("Runtime Configuration")
        runtime_args.add_argument(
            "--watches-file",
            "-w",
            dest="watches_file_path",
            default=None,
            help="Path to the watch mapping file. Defaults to config.watches_file",
        )
        runtime_args.add_argument(
            "--cr",
            "-c",
            default=None,
            help="(dry run) A CR manifest yaml to apply directly",
        )
        runtime_args.add_argument(
            "--resource_dir",
            "-r",
            default=None,
            help="(dry run) Path to a directory of yaml files that should exist in the cluster",
        )
        return parser

    def cmd(self, args: argparse.Namespace):
        assert args.cr is None or (
            config.dry_run and os.path.isfile(args.cr)
        ), "Can only specify --cr with dry run and it must point to a valid file"
        assert args.resource_dir is None or (
            config.dry_run and os.path.isdir(args.resource_dir)
        ), "Can only specify --resource_dir with dry run and it must point to a valid directory"

        registry = WatchRegistry.from_file(
            args.watches_file_path or config.watches_file
        )
        log.info("Loaded %d watches", len(registry))

        resources = self._parse_resource_dir(args.resource_dir)
        deploy_manager = self._setup_watches(registry, resources)

        def do_stop(*_, **__):  # pragma: no cover
            watch_manager.WatchManagerBase.stop_all()

        signal.signal(signal.SIGINT, do_stop)
        signal.signal(signal.SIGTERM, do_stop)

        log.info("Starting Watches")
        watch_manager.WatchManagerBase.start_all()

        if args.cr:
            log.info("Applying CR [%s]", args.cr)
            with open(args.cr, encoding="utf-8") as handle:
                cr_manifest = yaml.safe_load(handle)
            cr_manifest.setdefault("metadata", {}).setdefault(
                "namespace", DEFAULT_NAMESPACE
            )
            log.debug3(cr_manifest)
            deploy_manager.deploy([cr_manifest], manage_owner_references=False)

        log.info("SHUTTING DOWN")

    ## Impl ##

    @staticmethod
    def _parse_resource_dir(resource_dir: Optional[str]) -> List[dict]:
        """If given, parse all yaml files found in the given directory"""
        all_resources = []
        if resource_dir is not None:
            for fname in sorted(os.listdir(resource_dir)):
                if fname.endswith(".yaml") or fname.endswith(".yml"):
                    resource_path = os.path.join(resource_dir, fname)
                    log.debug3("Reading resource file [%s]", resource_path)
                    with open(resource_path, encoding="utf-8") as handle:
                        all_resources.extend(
                            doc for doc in yaml.safe_load_all(handle) if doc
                        )
        return all_resources

    @staticmethod
    def _setup_watches(registry: WatchRegistry, resources: List[dict]):
        """Set up a watch for every entry. All watches share one deploy
        manager, which is returned.
        """
        if config.dry_run:
            log.info("Running DRY RUN")
            deploy_manager = DryRunDeployManager(resources=resources)
            wm_type = watch_manager.DryRunWatchManager
        else:  # pragma: no cover
            log.info("Running Python Operator")
            deploy_manager = ClusterDeployManager()
            wm_type = watch_manager.PythonWatchManager

        for entry in registry:
            log.debug("Registering watch for %s", entry)
            wm_type(entry, deploy_manager=deploy_manager, registry=registry)
        return deploy_manager
