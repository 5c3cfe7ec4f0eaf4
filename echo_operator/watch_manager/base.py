"""
Base interface for the dispatchers that deliver notifications for one kind to
its Reconcilable, along with the process-wide registry that starts and stops
them together
"""

# Standard
from typing import Dict, List, Tuple, Type
import abc
import threading

# First Party
import alog

# Local
from ..exceptions import assert_config
from ..reconcilable import Reconcilable

log = alog.use_channel("WATCH")

# (group, version, kind) served by a dispatcher
WatchKey = Tuple[str, str, str]


class WatchRegistry:
    """The dispatchers constructed in this process, at most one per kind"""

    def __init__(self):
        self._lock = threading.Lock()
        self._managers: Dict[WatchKey, "WatchManagerBase"] = {}

    def register(self, manager: "WatchManagerBase"):
        with self._lock:
            assert_config(
                manager.key not in self._managers,
                f"Only a single reconciler may watch {manager.api_version}/{manager.kind}",
            )
            self._managers[manager.key] = manager
        log.debug2("Registered %s", manager)

    def managers(self) -> List["WatchManagerBase"]:
        """The registered dispatchers, ordered by key so launches are
        deterministic
        """
        with self._lock:
            return [self._managers[key] for key in sorted(self._managers)]

    def clear(self):
        with self._lock:
            self._managers.clear()

    def start_all(self) -> bool:
        """Start every registered dispatcher and block until they all stop. If
        one fails to start, the ones already running are stopped.

        Returns:
            success:  bool
                True if all dispatchers started, False otherwise
        """
        started = []
        for manager in self.managers():
            if not manager.watch():
                log.warning("Failed to start %s. Stopping %d others", manager, len(started))
                for running in started:
                    running.stop()
                return False
            log.debug("Started %s", manager)
            started.append(manager)

        for manager in started:
            manager.wait()
        return True

    def stop_all(self):
        """Stop every registered dispatcher. A failure to stop one does not
        keep the others running.
        """
        for manager in self.managers():
            try:
                manager.stop()
                log.debug2("Waiting for %s to terminate", manager)
                manager.wait()
            except Exception as exc:  # pylint: disable=broad-except
                log.error("Failed to stop %s: %s", manager, exc, exc_info=True)


class WatchManagerBase(abc.ABC):
    """A WatchManager links a custom resource kind with the Reconcilable that
    converges it. Constructing one registers it.
    """

    registry = WatchRegistry()

    def __init__(self, reconcilable_type: Type[Reconcilable]):
        """
        Args:
            reconcilable_type:  Type[Reconcilable]
                The reconciler for the group/version/kind to watch
        """
        self.reconcilable_type = reconcilable_type
        self.group = reconcilable_type.group
        self.version = reconcilable_type.version
        self.kind = reconcilable_type.kind
        self.registry.register(self)

    ## Interface ###############################################################

    @abc.abstractmethod
    def watch(self) -> bool:
        """Begin delivering notifications without blocking

        Returns:
            success:  bool
                True if the watch was started, False otherwise
        """

    @abc.abstractmethod
    def wait(self):
        """Block until the watch has been stopped"""

    @abc.abstractmethod
    def stop(self):
        """Stop delivering notifications"""

    ## Properties ##############################################################

    @property
    def key(self) -> WatchKey:
        return (self.group, self.version, self.kind)

    @property
    def api_version(self) -> str:
        return f"{self.group}/{self.version}" if self.group else self.version

    def __str__(self):
        return f"Watch[{self.api_version}/{self.kind}]"
