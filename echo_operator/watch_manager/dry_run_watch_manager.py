"""
Dry run implementation of the WatchManager abstraction
"""

# Standard
from typing import Optional, Set, Type
import logging

# First Party
import alog

# Local
from ..deploy_manager import DryRunDeployManager
from ..reconcilable import Reconcilable
from ..reconcile import ReconcileManager, ReconciliationResult
from ..resource import ResourceIdentity, identity_of
from .base import WatchManagerBase

log = alog.use_channel("DRWAT")


class DryRunWatchManager(WatchManagerBase):
    """
    The DryRunWatchManager implements the WatchManagerBase interface using a
    single shared DryRunDeployManager to manage an in-memory representation of
    the cluster. Reconciles run synchronously inside the deploy that triggered
    them.
    """

    def __init__(
        self,
        reconcilable_type: Type[Reconcilable],
        deploy_manager: Optional[DryRunDeployManager] = None,
    ):
        """Construct with the type of reconcilable to watch and optionally a
        deploy_manager instance. A deploy_manager will be constructed if none is
        given.

        Args:
            reconcilable_type:  Type[Reconcilable]
                The class for the reconciler that will be watched
            deploy_manager:  Optional[DryRunDeployManager]
                If given, this deploy_manager will be used. This allows for
                there to be pre-populated resources. Note that it _must_ be a
                DryRunDeployManager (or child class) since the watch is a
                subscription to its changes.
        """
        super().__init__(reconcilable_type)

        # Set up the deploy manager
        self._deploy_manager = deploy_manager or DryRunDeployManager()

        # The reconciler instance is lazily constructed in watch
        self._reconcilable = None

        # Identities with a reconcile in progress
        self._in_progress: Set[ResourceIdentity] = set()

        self.reconcile_manager = ReconcileManager(deploy_manager=self._deploy_manager)

        # The most recent result for each identity
        self.results = {}

    @property
    def deploy_manager(self) -> DryRunDeployManager:
        return self._deploy_manager

    def watch(self) -> bool:
        """Register the watch with the deploy manager and reconcile anything
        that already exists
        """
        if self._reconcilable is not None:
            log.warning("Cannot watch multiple times!")
            return False

        log.debug("Registering %s with the DeployManager", self.reconcilable_type)

        # Construct reconciler
        self._reconcilable = self.reconcilable_type()

        # Reconcile on every deploy of the kind
        self._deploy_manager.subscribe(
            kind=self.kind,
            api_version=self.api_version,
            on_change=self.run_reconcile,
        )

        # Resources pre-populated in the deploy manager did not fire the watch
        _, existing = self._deploy_manager.filter_objects_current_state(
            kind=self.kind, api_version=self.api_version
        )
        for resource in existing:
            self.run_reconcile(resource)

        return True

    def wait(self):
        """There is nothing to do in wait"""

    def stop(self):
        """There is nothing to do in stop"""

    def run_reconcile(self, resource: dict) -> Optional[ReconciliationResult]:
        """Reconcile the given resource unless a reconcile of the same identity
        is already running further up the stack
        """
        identity = identity_of(resource)
        if identity in self._in_progress:
            log.debug2("Skipping re-entrant reconcile of %s", identity)
            return None

        # Save the log handlers' formatters and restore them after the
        # reconcile is completed
        log_formatters = {}
        for handler in logging.getLogger().handlers:
            log_formatters[handler] = handler.formatter

        self._in_progress.add(identity)
        try:
            result = self.reconcile_manager.safe_reconcile(self._reconcilable, resource)
        finally:
            self._in_progress.discard(identity)
            for handler, formatter in log_formatters.items():
                handler.setFormatter(formatter)

        log.debug("Dry run reconcile of %s finished: %s", identity, result)
        self.results[identity] = result
        return result
