"""
Thread-based implementation of the WatchManager. A watch thread consumes the
watch feed for the kind and dispatches reconciles to a worker pool.
"""

# Standard
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, Optional, Set, Type
import threading

# Third Party
from kubernetes.watch import Watch

# First Party
import alog

# Local
from .. import config
from ..deploy_manager import (
    DeployManagerBase,
    KubeDeployManager,
    KubeEventType,
    KubeWatchEvent,
)
from ..reconcilable import Reconcilable
from ..reconcile import ReconcileManager, ReconciliationResult
from ..resource import ResourceIdentity, identity_of
from .base import WatchManagerBase

log = alog.use_channel("THRWM")


class ThreadedWatchManager(WatchManagerBase):  # pylint: disable=too-many-instance-attributes
    """The ThreadedWatchManager runs reconciles for one kind on a pool of worker
    threads. It guarantees that:

    1. At most one reconcile per resource identity runs at a time
    2. Notifications that arrive while a reconcile runs are coalesced so only
        the latest snapshot is reconciled afterwards
    3. Failed reconciles are retried with a fresh snapshot after an
        exponentially growing delay which resets on the next success
    """

    def __init__(
        self,
        reconcilable_type: Type[Reconcilable],
        deploy_manager: Optional[DeployManagerBase] = None,
        namespace: Optional[str] = None,
        max_workers: Optional[int] = None,
    ):
        """
        Args:
            reconcilable_type:  Type[Reconcilable]
                The reconciler to run for the watched kind
            deploy_manager:  Optional[DeployManagerBase]
                The client used for the watch and every reconcile. A
                KubeDeployManager is used if not given.
            namespace:  Optional[str]
                Namespace to watch. Defaults to config.watch_namespace, where an
                empty value watches all namespaces.
            max_workers:  Optional[int]
                Size of the worker pool. Defaults to
                config.max_concurrent_reconciles.
        """
        super().__init__(reconcilable_type)

        if deploy_manager is None:
            log.debug("Using KubeDeployManager")
            deploy_manager = KubeDeployManager()
        self.deploy_manager = deploy_manager
        self.namespace = namespace if namespace is not None else config.watch_namespace
        self.max_workers = max_workers or config.max_concurrent_reconciles

        # Logging is configured once for the process since reconciles overlap
        self.reconcile_manager = ReconcileManager(
            deploy_manager=self.deploy_manager, manage_logging=False
        )

        # Control variables
        self.shutdown = threading.Event()
        self._watch = Watch()
        self._lock = threading.Lock()
        self._reconcilable = None
        self._executor: Optional[ThreadPoolExecutor] = None
        self._watch_thread: Optional[threading.Thread] = None

        # Per-identity dispatch state, guarded by _lock
        self._running: Set[ResourceIdentity] = set()
        self._pending: Dict[ResourceIdentity, dict] = {}
        self._failures: Dict[ResourceIdentity, int] = {}
        self._timers: Dict[ResourceIdentity, threading.Timer] = {}

    ## Interface ###############################################################

    def watch(self) -> bool:
        """Start the worker pool and the watch thread"""
        if self._reconcilable is not None:
            log.warning("Cannot watch multiple times!")
            return False
        if self.shutdown.is_set():
            return False

        log.info("Starting %s", self)
        self._reconcilable = self.reconcilable_type()
        self._executor = ThreadPoolExecutor(
            max_workers=self.max_workers,
            thread_name_prefix=f"reconcile-{self.kind}",
        )
        self._watch_thread = threading.Thread(
            target=self._watch_loop, name=f"watch-{self.kind}", daemon=True
        )
        self._watch_thread.start()
        return True

    def wait(self):
        """Wait for shutdown to be signaled"""
        self.shutdown.wait()

    def stop(self):
        """Stop dispatching, wait for in-flight reconciles to finish and give
        the watch thread a bounded time to exit
        """
        log.info("Stopping %s", self)
        self.shutdown.set()
        self._watch.stop()
        with self._lock:
            for timer in self._timers.values():
                timer.cancel()
            self._timers.clear()
            self._pending.clear()
        if self._executor is not None:
            self._executor.shutdown(wait=True)
        if self._watch_thread is not None:
            self._watch_thread.join(float(config.watch_stop_timeout_seconds))
            if self._watch_thread.is_alive():
                log.warning("Watch thread for %s did not exit", self)

    ## Dispatch ################################################################

    def handle_event(self, event: KubeWatchEvent):
        """Dispatch a single watch event"""
        identity = event.identity
        log.debug2("Handling %s event for %s", event.type.value, identity)
        if event.type == KubeEventType.DELETED:
            with self._lock:
                self._pending.pop(identity, None)
                self._failures.pop(identity, None)
                timer = self._timers.pop(identity, None)
            if timer is not None:
                timer.cancel()
            log.debug("Dropped pending work for deleted %s", identity)
            return
        self.submit(event.resource)

    def submit(self, resource: dict):
        """Queue the given snapshot. If a reconcile of the same identity is
        running, the snapshot replaces any earlier pending one.
        """
        identity = identity_of(resource)
        with self._lock:
            if self.shutdown.is_set():
                return
            self._pending[identity] = resource
            if identity in self._running:
                log.debug2("Coalescing snapshot for running %s", identity)
                return
            self._running.add(identity)
            self._start_pending(identity)

    def backoff_delay(self, identity: ResourceIdentity, base_delay: float) -> float:
        """The delay before the next retry of the given identity"""
        with self._lock:
            failures = self._failures.get(identity, 1)
        return min(
            base_delay * (2 ** (failures - 1)),
            float(config.max_requeue_backoff_seconds),
        )

    ## Implementation Details ##################################################

    def _watch_loop(self):
        """Consume the watch feed until shutdown, restarting it when it ends"""
        while not self.shutdown.is_set():
            try:
                for event in self.deploy_manager.watch_objects(
                    kind=self.kind,
                    api_version=self.api_version,
                    namespace=self.namespace or None,
                    watch_manager=self._watch,
                ):
                    if self.shutdown.is_set():
                        return
                    self.handle_event(event)
            except Exception as exc:  # pylint: disable=broad-except
                log.warning("Watch for %s failed: %s", self, exc, exc_info=True)
                self.shutdown.wait(float(config.requeue_after_seconds))

    def _start_pending(self, identity: ResourceIdentity):
        """Hand the pending snapshot for identity to the pool. Must be called
        with _lock held and identity marked running.
        """
        resource = self._pending.pop(identity)
        try:
            self._executor.submit(self._run_reconcile, identity, resource)
        except RuntimeError:
            log.debug("Executor shut down, dropping %s", identity)
            self._running.discard(identity)

    def _run_reconcile(self, identity: ResourceIdentity, resource: dict):
        try:
            result = self.reconcile_manager.safe_reconcile(self._reconcilable, resource)
            self._handle_result(identity, result)
        except Exception as exc:  # pylint: disable=broad-except
            log.error("Dispatch of %s failed: %s", identity, exc, exc_info=True)
        finally:
            with self._lock:
                if identity in self._pending and not self.shutdown.is_set():
                    self._start_pending(identity)
                else:
                    self._running.discard(identity)

    def _handle_result(self, identity: ResourceIdentity, result: ReconciliationResult):
        if not result.requeue:
            with self._lock:
                self._failures.pop(identity, None)
                timer = self._timers.pop(identity, None)
            if timer is not None:
                timer.cancel()
            log.debug2("Reconcile of %s settled", identity)
            return

        with self._lock:
            self._failures[identity] = self._failures.get(identity, 0) + 1
        delay = self.backoff_delay(
            identity, result.requeue_params.requeue_after.total_seconds()
        )
        self._schedule_requeue(identity, delay)

    def _schedule_requeue(self, identity: ResourceIdentity, delay: float):
        log.info("Requeuing %s in %.1fs", identity, delay)
        timer = threading.Timer(delay, self._requeue, args=(identity,))
        timer.daemon = True
        with self._lock:
            if self.shutdown.is_set():
                return
            previous = self._timers.pop(identity, None)
            if previous is not None:
                previous.cancel()
            self._timers[identity] = timer
        timer.start()

    def _requeue(self, identity: ResourceIdentity):
        """Re-fetch the resource and submit the fresh snapshot"""
        with self._lock:
            self._timers.pop(identity, None)
        if self.shutdown.is_set():
            return

        try:
            success, content = self.deploy_manager.get_object_current_state(
                kind=identity.kind,
                name=identity.name,
                namespace=identity.namespace,
                api_version=identity.api_version,
            )
        except Exception as exc:  # pylint: disable=broad-except
            log.warning("Error fetching %s for requeue: %s", identity, exc, exc_info=True)
            success, content = False, None
        if not success:
            log.warning("Failed to fetch %s for requeue", identity)
            with self._lock:
                self._failures[identity] = self._failures.get(identity, 0) + 1
            self._schedule_requeue(
                identity, self.backoff_delay(identity, float(config.requeue_after_seconds))
            )
            return
        if content is None:
            log.debug("%s no longer exists. Dropping requeue", identity)
            with self._lock:
                self._failures.pop(identity, None)
            return
        self.submit(content)
