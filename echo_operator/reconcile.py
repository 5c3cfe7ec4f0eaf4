"""
The ReconcileManager class manages an individual reconcile of a resource. It
parses the manifest, sets up the context, runs the reconciler and persists the
status when the reconciler asks for it.
"""

# Standard
from dataclasses import dataclass, field
from typing import Optional, Type, Union
import base64
import datetime
import logging
import uuid

# First Party
import aconfig
import alog

# Local
from . import config, constants, log_format
from .context import ReconcileContext
from .deploy_manager import DeployManagerBase, KubeDeployManager
from .events import emit_event
from .exceptions import (
    EchoOperatorError,
    InvalidSpecError,
    TransientIOError,
    assert_cluster,
    assert_config,
)
from .reconcilable import Reconcilable
from .resource import CustomResourceInstance

log = alog.use_channel("RECON")


## Data models #################################################################


@dataclass
class RequeueParams:
    """RequeueParams holds parameters for a requeue request"""

    requeue_after: datetime.timedelta = field(
        default_factory=lambda: datetime.timedelta(
            seconds=float(config.requeue_after_seconds)
        )
    )


@dataclass
class ReconciliationResult:
    """ReconciliationResult is what the dispatcher receives for one reconcile"""

    # Flag to control requeue of the current reconcile request
    requeue: bool
    # Parameters for the requeue request
    requeue_params: RequeueParams = field(default_factory=RequeueParams)
    # Whether the status subresource was written
    status_updated: bool = False
    # The exception raised by the reconcile, if any
    exception: Optional[Exception] = None


# A reconciler may be given as a Reconcilable class or an instance of one
RECONCILABLE_INFO = Union[Type[Reconcilable], Reconcilable]


## ReconcileManager ############################################################


class ReconcileManager:
    """This class runs reconciliations given a manifest, a Reconcilable and
    the cluster client. It holds no per-resource state between calls.
    """

    def __init__(
        self,
        deploy_manager: Optional[DeployManagerBase] = None,
        manage_logging: bool = True,
    ):
        """
        Args:
            deploy_manager:  Optional[DeployManagerBase]
                Client to use for every reconcile. If not given, a
                KubeDeployManager is created per reconcile.
            manage_logging:  bool
                If true, logging is reconfigured at the start of each reconcile
                using the log annotations on the resource. This must be off when
                reconciles run concurrently in one process.
        """
        self.deploy_manager = deploy_manager
        self.manage_logging = manage_logging

    ## Reconciliation ##########################################################

    @alog.logged_function(log.debug)
    def reconcile(
        self,
        reconcilable_info: RECONCILABLE_INFO,
        resource: Union[dict, aconfig.Config],
    ) -> ReconciliationResult:
        """This is the main entrypoint for reconciliations. The reconcile path
        is:

            1. Parse the raw manifest
            2. Setup logging based on config with overrides from the resource
            3. Check if the resource is paused
            4. Construct the typed resource and the context
            5. Run the reconciler
            6. Persist the status if the reconciler asked for it

        Args:
            reconcilable_info:  RECONCILABLE_INFO
                The reconciler class or instance for the resource's kind
            resource:  Union[dict, aconfig.Config]
                A raw representation of the resource to be reconciled

        Returns:
            reconcile_result:  ReconciliationResult
                The result of the reconcile
        """
        cr_manifest = self.parse_manifest(resource)
        reconcile_id = self.generate_id()
        if self.manage_logging:
            self.configure_logging(cr_manifest, reconcile_id)

        if self._is_paused(cr_manifest):
            log.info("Resource is paused. Exiting reconciliation")
            return ReconciliationResult(requeue=False)

        reconcilable = self.setup_reconcilable(reconcilable_info)
        typed_resource = reconcilable.parse_resource(cr_manifest)
        deploy_manager = self.setup_deploy_manager(cr_manifest)
        context = ReconcileContext(reconcile_id, deploy_manager, config.library_config)

        with alog.ContextTimer(
            log.debug, "Reconcile duration for %s: ", typed_resource.identity
        ):
            return self.run_reconcilable(reconcilable, typed_resource, context)

    def safe_reconcile(
        self,
        reconcilable_info: RECONCILABLE_INFO,
        resource: Union[dict, aconfig.Config],
    ) -> ReconciliationResult:
        """Call reconcile and convert any error into a result for the
        dispatcher. The status is never written on failure, so it keeps its last
        successfully reconciled value.

        Args:
            reconcilable_info:  RECONCILABLE_INFO
                The reconciler class or instance for the resource's kind
            resource:  Union[dict, aconfig.Config]
                A raw representation of the resource to be reconciled

        Returns:
            reconcile_result:  ReconciliationResult
                The result of the reconcile
        """
        try:
            return self.reconcile(reconcilable_info, resource)

        except InvalidSpecError as exc:
            log.warning("Invalid spec, waiting for the next change: %s", exc)
            self._report_failure(resource, constants.EVENT_REASON_INVALID_SPEC, exc)
            return ReconciliationResult(requeue=False, exception=exc)

        except TransientIOError as exc:
            log.warning("Transient failure during reconcile: %s", exc)
            error = exc

        except EchoOperatorError as exc:
            if exc.is_fatal_error:
                log.error("Fatal error in reconcile, not requeuing: %s", exc)
                self._report_failure(
                    resource, constants.EVENT_REASON_RECONCILE_FAILED, exc
                )
                return ReconciliationResult(requeue=False, exception=exc)
            log.warning("Handling caught error in reconcile: %s", exc, exc_info=True)
            error = exc

        except Exception as exc:  # pylint: disable=broad-except
            log.error("Unexpected error in reconcile: %s", exc, exc_info=True)
            error = exc

        self._report_failure(resource, constants.EVENT_REASON_RECONCILE_FAILED, error)
        log.info("Requeuing resource due to error during reconcile")
        return ReconciliationResult(
            requeue=True, requeue_params=RequeueParams(), exception=error
        )

    ## Reconciliation Stages ###################################################

    @classmethod
    def parse_manifest(cls, resource: Union[dict, aconfig.Config]) -> aconfig.Config:
        """Parse a raw resource into an aconfig Config

        Args:
            resource:  Union[dict, aconfig.Config]
                The resource to be parsed into a manifest

        Returns
            cr_manifest:  aconfig.Config
                The parsed config
        """
        try:
            cr_manifest = aconfig.Config(resource, override_env_vars=False)
        except (ValueError, SyntaxError, AttributeError, TypeError) as exc:
            raise ValueError("Failed to parse resource manifest") from exc
        return cr_manifest

    @classmethod
    def configure_logging(cls, cr_manifest: aconfig.Config, reconciliation_id: str):
        """Configure the logging for a given reconcile

        Args:
            cr_manifest:  aconfig.Config
                The resource to get annotation overrides from
            reconciliation_id:  str
                The unique id for the reconciliation
        """
        # NOTE: Safe fetching since this happens before the manifest is validated
        annotations = (cr_manifest.get("metadata") or {}).get("annotations") or {}
        default_level = annotations.get(
            constants.LOG_DEFAULT_LEVEL_NAME, config.log_level
        )
        filters = annotations.get(constants.LOG_FILTERS_NAME, config.log_filters)
        log_json = annotations.get(constants.LOG_JSON_NAME, str(config.log_json))
        log_thread_id = annotations.get(
            constants.LOG_THREAD_ID_NAME, str(config.log_thread_id)
        )
        log_json = (log_json or "").lower() == "true"
        log_thread_id = (log_thread_id or "").lower() == "true"

        # Keep the existing handler so that output destinations set up by the
        # caller (e.g. pytest capture) survive reconfiguration
        handler_generator = None
        if logging.root.handlers:
            old_handler = logging.root.handlers[0]

            def handler_generator():
                return old_handler

        log_format.configure_logging(
            default_level,
            filters,
            log_json,
            log_thread_id,
            json_formatter=log_format.EchoJsonFormatter(cr_manifest, reconciliation_id),
            handler_generator=handler_generator,
        )

    @classmethod
    def generate_id(cls) -> str:
        """Generates a unique human readable id for this reconciliation

        Returns:
            id:  str
                A unique base32 encoded id
        """
        base32_str = base64.b32encode(uuid.uuid4().bytes).decode("utf-8")
        reconcile_id = base32_str[:22]
        log.debug("Generated reconcile id: %s", reconcile_id)
        return reconcile_id

    @staticmethod
    def setup_reconcilable(reconcilable_info: RECONCILABLE_INFO) -> Reconcilable:
        """Construct the reconciler if a class was given

        Args:
            reconcilable_info:  RECONCILABLE_INFO
                The reconciler class or instance

        Returns:
            reconcilable:  Reconcilable
                The reconciler instance
        """
        if isinstance(reconcilable_info, Reconcilable):
            return reconcilable_info
        assert_config(
            isinstance(reconcilable_info, type)
            and issubclass(reconcilable_info, Reconcilable),
            f"Invalid reconciler [{reconcilable_info}]",
        )
        return reconcilable_info()

    def setup_deploy_manager(self, cr_manifest: aconfig.Config) -> DeployManagerBase:
        """Use the shared client if one was given, otherwise create a live
        client owned by this resource

        Args:
            cr_manifest:  aconfig.Config
                The manifest of the resource being reconciled

        Returns:
            deploy_manager:  DeployManagerBase
                The client for this reconcile
        """
        if self.deploy_manager:
            return self.deploy_manager
        log.debug2("Creating KubeDeployManager for this reconcile")
        return KubeDeployManager(owner_cr=cr_manifest)

    def run_reconcilable(
        self,
        reconcilable: Reconcilable,
        resource: CustomResourceInstance,
        context: ReconcileContext,
    ) -> ReconciliationResult:
        """Run the reconciler and persist the status if requested

        Error Semantics: A rejected status write raises ConflictError when the
        snapshot is stale and ClusterError for any other failure.

        Args:
            reconcilable:  Reconcilable
                The reconciler for this kind
            resource:  CustomResourceInstance
                The typed snapshot
            context:  ReconcileContext
                The context for this reconcile

        Returns:
            reconcile_result:  ReconciliationResult
                The result of the reconcile
        """
        log.debug("Running %s for %s", reconcilable, resource.identity)
        result = reconcilable.reconcile(resource, context)
        log.debug2("Reconcile result for %s: %s", resource.identity, result)

        status_updated = False
        if result.update_status:
            log.debug(
                "Persisting status for %s: %s", resource.identity, resource.status_dict()
            )
            success, status_updated = context.client.set_status(
                kind=resource.kind,
                name=resource.name,
                namespace=resource.namespace,
                status=resource.status_dict(),
                api_version=resource.api_version,
                resource_version=resource.resource_version,
            )
            assert_cluster(
                success, f"Failed to write status for [{resource.identity}]"
            )
        else:
            log.debug2("No status update needed for %s", resource.identity)

        return ReconciliationResult(requeue=False, status_updated=status_updated)

    ## Implementation Details ##################################################

    @classmethod
    def _is_paused(cls, cr_manifest: aconfig.Config) -> bool:
        """Check if a manifest has the paused annotation"""
        annotations = (cr_manifest.get("metadata") or {}).get("annotations") or {}
        paused = annotations.get(constants.PAUSE_ANNOTATION_NAME)
        return bool(paused) and str(paused).lower() == "true"

    def _report_failure(self, resource: dict, reason: str, error: Exception):
        """Attach a Warning event to the resource if enabled"""
        if not config.emit_events:
            return
        try:
            deploy_manager = self.setup_deploy_manager(resource)
        except Exception as exc:  # pylint: disable=broad-except
            log.warning("Unable to set up client for event: %s", exc)
            return
        emit_event(deploy_manager, resource, reason, str(error) or type(error).__name__)
