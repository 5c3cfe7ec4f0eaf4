"""
The reconciler for the EchoResource kind. It mirrors spec.inputMessage into
status.echoMessage and owns a Service named after the resource.
"""

# Standard
from typing import Optional

# First Party
import alog

# Local
from .. import constants
from ..context import ReconcileContext
from ..decorator import reconciler
from ..deploy_manager.owner_references import make_owner_reference
from ..reconcilable import Reconcilable, ReconcileResult
from ..resource import CustomResourceInstance
from ..utils import get_truncated_name
from .types import EchoSpec, EchoStatus

log = alog.use_channel("ECHO")

GROUP = "echo.example.com"
VERSION = "v1alpha1"
KIND = "EchoResource"

SERVICE_API_VERSION = "v1"
SERVICE_KIND = "Service"


@reconciler(
    group=GROUP,
    version=VERSION,
    kind=KIND,
    spec_type=EchoSpec,
    status_type=EchoStatus,
)
class EchoReconciler(Reconcilable[EchoSpec, EchoStatus]):
    """Reconciler for EchoResource"""

    def reconcile(
        self,
        resource: CustomResourceInstance[EchoSpec, EchoStatus],
        context: ReconcileContext,
    ) -> ReconcileResult:
        desired = self.desired_status_value(resource.spec)

        initialized = False
        if resource.status is None:
            log.debug("Initializing status for %s", resource.identity)
            resource.status = EchoStatus(echo_message="")
            initialized = True

        changed = False
        if resource.status.echo_message.casefold() != desired.casefold():
            log.debug(
                "Status of %s is stale [%s] -> [%s]",
                resource.identity,
                resource.status.echo_message,
                desired,
            )
            resource.status.echo_message = desired
            changed = True

        self.reconcile_service(resource, context)

        return ReconcileResult(update_status=initialized or changed)

    ## Implementation Details ##################################################

    @staticmethod
    def desired_status_value(spec: EchoSpec) -> str:
        """The status is the identity function of the spec"""
        return spec.input_message

    def reconcile_service(
        self,
        resource: CustomResourceInstance[EchoSpec, EchoStatus],
        context: ReconcileContext,
    ) -> bool:
        """Create the dependent Service if it is missing. An existing Service is
        only re-applied when drift correction is enabled and it differs from
        the desired definition.

        Returns:
            changed:  bool
                Whether the Service was created or re-applied
        """
        desired = self.build_service(resource, context)
        name = desired["metadata"]["name"]
        current = context.get(
            kind=SERVICE_KIND,
            name=name,
            namespace=resource.namespace,
            api_version=SERVICE_API_VERSION,
        )
        if current is None:
            log.info("Creating Service %s/%s", resource.namespace, name)
            return context.create_or_replace(desired)

        correct_drift = context.config.get("echo", {}).get(
            "correct_dependent_drift", False
        )
        if not correct_drift:
            log.debug2("Service %s/%s exists. Leaving it alone", resource.namespace, name)
            return False

        if not self.has_drifted(current, desired):
            log.debug2("Service %s/%s matches desired state", resource.namespace, name)
            return False

        log.info("Correcting drift on Service %s/%s", resource.namespace, name)
        return context.create_or_replace(desired)

    @staticmethod
    def build_service(
        resource: CustomResourceInstance[EchoSpec, EchoStatus],
        context: ReconcileContext,
    ) -> dict:
        """Build the desired Service owned by the resource"""
        name = context.get_dependent_name(resource.name)
        # Label values share the 63 character limit with names
        instance = get_truncated_name(resource.name)
        labels = {
            constants.NAME_LABEL: instance,
            constants.INSTANCE_LABEL: instance,
            constants.MANAGED_BY_LABEL: constants.MANAGED_BY_VALUE,
        }
        port = int(context.config.get("echo", {}).get("service_port", 8080))
        return {
            "apiVersion": SERVICE_API_VERSION,
            "kind": SERVICE_KIND,
            "metadata": {
                "name": name,
                "namespace": resource.namespace,
                "labels": labels,
                "ownerReferences": [make_owner_reference(resource.to_manifest())],
            },
            "spec": {
                "selector": {constants.INSTANCE_LABEL: instance},
                "ports": [
                    {
                        "name": "http",
                        "port": port,
                        "targetPort": port,
                        "protocol": "TCP",
                    }
                ],
            },
        }

    @staticmethod
    def has_drifted(current: dict, desired: dict) -> bool:
        """Compare the fields this reconciler owns. Fields defaulted by the API
        server are ignored.
        """
        current_labels = current.get("metadata", {}).get("labels") or {}
        for key, value in desired["metadata"]["labels"].items():
            if current_labels.get(key) != value:
                return True

        owner_uids = {
            ref.get("uid")
            for ref in current.get("metadata", {}).get("ownerReferences") or []
        }
        for ref in desired["metadata"]["ownerReferences"]:
            if ref.get("uid") not in owner_uids:
                return True

        current_spec = current.get("spec") or {}
        if current_spec.get("selector") != desired["spec"]["selector"]:
            return True

        current_ports = {
            (port.get("port"), port.get("protocol", "TCP"))
            for port in current_spec.get("ports") or []
        }
        desired_ports = {
            (port["port"], port["protocol"]) for port in desired["spec"]["ports"]
        }
        return current_ports != desired_ports


def make_echo_resource(
    name: str,
    namespace: str,
    input_message: str,
    echo_message: Optional[str] = None,
    **metadata,
) -> dict:
    """Build an EchoResource manifest"""
    manifest = {
        "apiVersion": f"{GROUP}/{VERSION}",
        "kind": KIND,
        "metadata": dict(metadata, name=name, namespace=namespace),
        "spec": {"inputMessage": input_message},
    }
    if echo_message is not None:
        manifest["status"] = {"echoMessage": echo_message}
    return manifest
