"""
Top-level watch_manager imports
"""

# Local
from .base import WatchManagerBase
from .dry_run_watch_manager import DryRunWatchManager
from .python_watch_manager import PythonWatchManager
