"""
This module holds all of the command classes for declar8's main entrypoint
"""

# Local
from .base import CmdBase
from .bootstrap_cmd import BootstrapCmd
from .check_heartbeat import CheckHeartbeatCmd
from .run_operator_cmd import RunOperatorCmd
