"""
Package exports
"""

# Local
from . import config, reconcile, status, watch_manager
from .applier import Applier, ApplyResult
from .bootstrap import ToolBootstrapper
from .deploy_manager import DeployManagerBase
from .exceptions import assert_cluster, assert_config, assert_precondition
from .reconcile import ReconcileManager, ReconciliationResult
from .targets import ChartTarget, RoleTarget, get_target
from .watches import WatchEntry, WatchRegistry
