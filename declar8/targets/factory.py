"""
Pick the target implementation for a watch entry
"""

# Local
from ..watches import TargetType
from .base import TargetBase
from .chart import ChartTarget
from .role import RoleTarget


def get_target(entry: "WatchEntry") -> TargetBase:  # noqa: F821
    """Construct the target bound to the given watch entry"""
    if entry.target_type == TargetType.CHART:
        return ChartTarget()
    return RoleTarget()
