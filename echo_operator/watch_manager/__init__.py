"""
Dispatchers that feed resource notifications to the reconcilers
"""

# Local
from .base import WatchManagerBase
from .dry_run_watch_manager import DryRunWatchManager
from .threaded_watch_manager import ThreadedWatchManager

# Start or stop every registered dispatcher
start_all = WatchManagerBase.registry.start_all
stop_all = WatchManagerBase.registry.stop_all
