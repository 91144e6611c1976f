"""Threads used by the PythonWatchManager"""
# Local
from .base import ThreadBase
from .heartbeat import HeartbeatThread
from .reconcile import ReconcileThread
from .timer import TimerThread
from .watch import WatchThread
