"""
Targets render a custom resource into the set of resources to apply
"""

# Local
from .base import RenderResult, TargetBase
from .chart import ChartTarget
from .factory import get_target
from .role import RoleTarget
