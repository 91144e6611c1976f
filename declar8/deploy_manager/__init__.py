"""
The DeployManager is the abstraction in charge of interacting with the
kubernetes cluster to deploy, look up, and delete resources.
"""

# Local
from .base import DeployManagerBase
from .cluster_deploy_manager import ClusterDeployManager
from .dry_run_deploy_manager import DryRunDeployManager
from .kube_event import KubeEventType, KubeWatchEvent
