"""
This DeployManager is responsible for delegating cluster operations to the
openshift dynamic client. It is the one used when the operator is running in
the cluster or outside the cluster making live changes.
"""
# Standard
from typing import Callable, Iterator, List, Optional, Tuple
import copy

# Third Party
from kubernetes import client
from kubernetes.watch import Watch
from openshift.dynamic import DynamicClient
from openshift.dynamic.exceptions import (
    ConflictError as DynamicConflictError,
)
from openshift.dynamic.exceptions import (
    DynamicApiError,
    ForbiddenError,
    NotFoundError,
    ResourceNotFoundError,
    ResourceNotUniqueError,
)
from openshift.dynamic.resource import Resource
import kubernetes
import urllib3

# First Party
import alog

# Local
from .. import config
from ..exceptions import ConflictError, assert_cluster
from .base import DeployManagerBase
from .kube_event import KubeEventType, KubeWatchEvent
from .owner_references import update_owner_references

log = alog.use_channel("KUBDM")

# See this document for value reasonings
# https://github.com/kubernetes-client/python/blob/master/examples/watch/timeout-settings.md
SERVER_WATCH_TIMEOUT = 3600
CLIENT_WATCH_TIMEOUT = 30


class KubeDeployManager(DeployManagerBase):
    """This DeployManager uses the openshift DynamicClient to interact with the
    cluster
    """

    def __init__(
        self,
        owner_cr: Optional[dict] = None,
        dynamic_client: Optional[DynamicClient] = None,
    ):
        """
        Args:
            owner_cr:  Optional[dict]
                The dict content of the CR that triggered this reconciliation.
                If given, deployed objects will have an ownerReference added to
                assign ownership to this CR instance.
            dynamic_client:  Optional[DynamicClient]
                A preconfigured client. If not given, one is created lazily
                from in-cluster config or the local kubeconfig.
        """
        self._owner_cr = owner_cr
        self._client = dynamic_client

    @property
    def client(self) -> DynamicClient:
        """Lazy property access to the client"""
        if self._client is None:
            self._client = self._setup_client()
        return self._client

    @alog.logged_function(log.debug)
    def deploy(
        self,
        resource_definitions: List[dict],
        manage_owner_references: bool = True,
        **_,
    ) -> Tuple[bool, bool]:
        """Create or replace each of the given resources"""
        resource_definitions = [copy.deepcopy(dict(res)) for res in resource_definitions]
        if manage_owner_references and self._owner_cr:
            for resource_definition in resource_definitions:
                update_owner_references(self, self._owner_cr, resource_definition)
        return self._retried_operation(resource_definitions, self._apply)

    @alog.logged_function(log.debug)
    def disable(self, resource_definitions: List[dict]) -> Tuple[bool, bool]:
        """Delete each of the given resources if present"""
        return self._retried_operation(resource_definitions, self._disable)

    def get_object_current_state(
        self,
        kind: str,
        name: str,
        namespace: Optional[str] = None,
        api_version: Optional[str] = None,
    ) -> Tuple[bool, Optional[dict]]:
        resource_handle = self._get_resource_handle(kind, api_version)
        if not resource_handle:
            return True, None

        try:
            resource = resource_handle.get(name=name, namespace=namespace or None)
        except ForbiddenError:
            log.debug(
                "Fetching objects of kind [%s] forbidden in namespace [%s]",
                kind,
                namespace,
            )
            return False, None
        except NotFoundError:
            log.debug(
                "No object named [%s/%s] found in namespace [%s]", kind, name, namespace
            )
            return True, None
        except DynamicApiError as err:
            log.warning("Failed to fetch [%s/%s]: %s", kind, name, err)
            return False, None

        return True, resource.to_dict()

    def filter_objects_current_state(  # pylint: disable=too-many-arguments
        self,
        kind: str,
        namespace: Optional[str] = None,
        api_version: Optional[str] = None,
        label_selector: Optional[str] = None,
        field_selector: Optional[str] = None,
    ) -> Tuple[bool, List[dict]]:
        resource_handle = self._get_resource_handle(kind, api_version)
        if not resource_handle:
            return True, []

        try:
            list_obj = resource_handle.get(
                label_selector=label_selector,
                field_selector=field_selector,
                namespace=namespace or None,
            )
        except ForbiddenError:
            log.debug(
                "Listing objects of kind [%s] forbidden in namespace [%s]",
                kind,
                namespace,
            )
            return False, []
        except NotFoundError:
            return True, []

        return True, list_obj.to_dict().get("items", [])

    def set_status(  # pylint: disable=too-many-arguments
        self,
        kind: str,
        name: str,
        namespace: Optional[str],
        status: dict,
        api_version: Optional[str] = None,
        resource_version: Optional[str] = None,
    ) -> Tuple[bool, bool]:
        resource_handle = self._get_resource_handle(kind, api_version)
        if not resource_handle:
            return False, False

        try:
            current = resource_handle.get(
                name=name, namespace=namespace or None
            ).to_dict()
        except NotFoundError:
            log.debug("Did not find [%s/%s] in %s", kind, name, namespace)
            return False, False
        except DynamicApiError as err:
            log.warning("Failed to fetch [%s/%s] for status: %s", kind, name, err)
            return False, False

        if current.get("status") == status:
            log.debug("Status has not changed. No update")
            return True, False

        # Pin the write to the snapshot the status was computed from so the
        # API server rejects it if the object moved on
        if resource_version is not None:
            current["metadata"]["resourceVersion"] = resource_version
        current["status"] = status
        try:
            resource_handle.status.replace(body=current, namespace=namespace or None)
        except DynamicConflictError as err:
            raise ConflictError(
                f"Status write for [{kind}/{name}] conflicted: {err.summary()}"
            ) from err
        except DynamicApiError as err:
            log.warning("Failed to set status for [%s/%s]: %s", kind, name, err)
            return False, False

        log.debug2("Successfully set the status for [%s/%s] in %s", kind, name, namespace)
        return True, True

    def watch_objects(  # pylint: disable=too-many-arguments
        self,
        kind: str,
        api_version: Optional[str] = None,
        namespace: Optional[str] = None,
        name: Optional[str] = None,
        label_selector: Optional[str] = None,
        field_selector: Optional[str] = None,
        resource_version: Optional[str] = None,
        watch_manager: Optional[Watch] = None,
    ) -> Iterator[KubeWatchEvent]:
        watch_manager = watch_manager if watch_manager else Watch()
        resource_handle = self._get_resource_handle(kind, api_version)
        assert_cluster(
            resource_handle,
            f"Failed to fetch resource handle for {namespace}/{api_version}/{kind}",
        )

        while True:
            try:
                for event_obj in watch_manager.stream(
                    resource_handle.get,
                    resource_version=resource_version,
                    namespace=namespace or None,
                    name=name,
                    label_selector=label_selector,
                    field_selector=field_selector,
                    serialize=False,
                    timeout_seconds=SERVER_WATCH_TIMEOUT,
                    _request_timeout=CLIENT_WATCH_TIMEOUT,
                ):
                    event_type = KubeEventType(event_obj["type"])
                    yield KubeWatchEvent(event_type, event_obj["object"])
            except client.exceptions.ApiException as exception:
                if exception.status == 410:
                    log.debug2("Resource age expired, restarting watch %s/%s", kind, api_version)
                    resource_version = None
                else:
                    log.info("Unknown ApiException received, re-raising")
                    raise
            except urllib3.exceptions.ReadTimeoutError:
                log.debug4("Watch socket closed, restarting watch %s/%s", kind, api_version)
            except urllib3.exceptions.ProtocolError:
                log.debug2("Invalid chunk from server, restarting watch %s/%s", kind, api_version)

            if watch_manager._stop:  # pylint: disable=protected-access
                log.debug("Watch stopped for %s/%s", kind, api_version)
                return

    ## Implementation Helpers ##################################################

    @staticmethod
    def _setup_client() -> DynamicClient:
        """Create a DynamicClient that will work based on where the operator is
        running
        """
        try:
            log.debug2("Running with in-cluster config")
            kube_config = kubernetes.client.Configuration()
            kubernetes.config.load_incluster_config(client_configuration=kube_config)
            return DynamicClient(kubernetes.client.ApiClient(kube_config))
        except kubernetes.config.ConfigException:
            log.debug2("Running with out-of-cluster config")
            return DynamicClient(kubernetes.config.new_client_from_config())

    def _get_resource_handle(
        self, kind: str, api_version: Optional[str]
    ) -> Optional[Resource]:
        """Get the resource handle for a specified kind and api_version"""
        try:
            return self.client.resources.get(kind=kind, api_version=api_version)
        except (ResourceNotFoundError, ResourceNotUniqueError):
            log.debug(
                "No resource type for kind [%s] found or multiple types match", kind
            )
        return None

    def _retried_operation(
        self,
        resource_definitions: List[dict],
        operation: Callable[[dict], bool],
    ) -> Tuple[bool, bool]:
        """Run the operation on each resource, retrying on write conflicts up
        to config.deploy_retries times
        """
        changed = False
        for resource_definition in resource_definitions:
            attempts = 0
            while True:
                try:
                    changed = operation(resource_definition) or changed
                    break
                except DynamicConflictError as err:
                    if attempts >= config.deploy_retries:
                        log.warning("Giving up after %d conflicts: %s", attempts, err)
                        return False, changed
                    attempts += 1
                    log.debug("Conflict on attempt %d, retrying", attempts)
                except DynamicApiError as err:
                    log.warning(
                        "Operation failed for [%s/%s]: %s",
                        resource_definition.get("kind"),
                        resource_definition.get("metadata", {}).get("name"),
                        err,
                    )
                    return False, changed
        return True, changed

    def _apply(self, resource_definition: dict) -> bool:
        """Create the resource if it is absent, otherwise replace it at the
        current resourceVersion
        """
        kind = resource_definition["kind"]
        api_version = resource_definition["apiVersion"]
        name = resource_definition["metadata"]["name"]
        namespace = resource_definition["metadata"].get("namespace")
        resource_handle = self._get_resource_handle(kind, api_version)
        assert_cluster(resource_handle, f"Unknown resource type {api_version}/{kind}")

        success, current = self.get_object_current_state(
            kind=kind, name=name, namespace=namespace, api_version=api_version
        )
        assert_cluster(success, f"Failed to fetch current state of {kind}/{name}")
        if current is None:
            log.debug2("Creating [%s/%s] in %s", kind, name, namespace)
            resource_handle.create(body=resource_definition, namespace=namespace)
            return True

        desired = copy.deepcopy(resource_definition)
        desired["metadata"]["resourceVersion"] = current["metadata"]["resourceVersion"]
        log.debug2("Replacing [%s/%s] in %s", kind, name, namespace)
        result = resource_handle.replace(body=desired, namespace=namespace).to_dict()
        return result["metadata"]["resourceVersion"] != current["metadata"][
            "resourceVersion"
        ]

    def _disable(self, resource_definition: dict) -> bool:
        """Delete a single resource if it exists"""
        kind = resource_definition["kind"]
        api_version = resource_definition["apiVersion"]
        name = resource_definition["metadata"]["name"]
        namespace = resource_definition["metadata"].get("namespace")
        resource_handle = self._get_resource_handle(kind, api_version)
        if not resource_handle:
            return False
        try:
            resource_handle.delete(name=name, namespace=namespace)
        except NotFoundError:
            log.debug2("[%s/%s] already gone", kind, name)
            return False
        return True
