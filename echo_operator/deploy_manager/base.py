"""
This defines the base class for all DeployManager types. A DeployManager is
the client a reconciler uses to read and write dependent resources and the
status subresource of the resource being reconciled.
"""

# Standard
from typing import Iterator, List, Optional, Tuple
import abc

# Third Party
from kubernetes.watch import Watch

# Local
from .kube_event import KubeWatchEvent


class DeployManagerBase(abc.ABC):
    """
    Base class for deploy managers which are responsible for carrying out
    the actual cluster operations
    """

    @abc.abstractmethod
    def deploy(
        self,
        resource_definitions: List[dict],
        manage_owner_references: bool = True,
    ) -> Tuple[bool, bool]:
        """The deploy function ensures that the resources defined in the list of
        definitions exist in the cluster (create or replace).

        Args:
            resource_definitions:  list(dict)
                List of resource object dicts to apply to the cluster
            manage_owner_references:  bool
                If true, ownerReferences for the configured owner will be
                merged into the deployed object

        Returns:
            success:  bool
                Whether or not the deploy succeeded
            changed:  bool
                Whether or not the deployment resulted in changes
        """

    @abc.abstractmethod
    def disable(self, resource_definitions: List[dict]) -> Tuple[bool, bool]:
        """The disable function ensures that the resources defined in the list
        of definitions are deleted from the cluster

        Args:
            resource_definitions:  list(dict)
                List of resource object dicts to delete from the cluster

        Returns:
            success:  bool
                Whether or not the delete succeeded
            changed:  bool
                Whether or not the delete resulted in changes
        """

    @abc.abstractmethod
    def get_object_current_state(
        self,
        kind: str,
        name: str,
        namespace: Optional[str] = None,
        api_version: Optional[str] = None,
    ) -> Tuple[bool, Optional[dict]]:
        """Fetch the current state of a given object by name

        Args:
            kind:  str
                The kind of the object to fetch
            name:  str
                The full name of the object to fetch
            namespace:  str
                The namespace to search for the object
            api_version:  str
                The api_version of the resource kind to fetch

        Returns:
            success:  bool
                Whether or not the state fetch operation succeeded
            current_state:  dict or None
                The dict representation of the current object's configuration,
                or None if not present
        """

    @abc.abstractmethod
    def filter_objects_current_state(  # pylint: disable=too-many-arguments
        self,
        kind: str,
        namespace: Optional[str] = None,
        api_version: Optional[str] = None,
        label_selector: Optional[str] = None,
        field_selector: Optional[str] = None,
    ) -> Tuple[bool, List[dict]]:
        """Fetch a list of objects that match either/both the label or field
        selector

        Returns:
            success:  bool
                Whether or not the state fetch operation succeeded
            current_state:  List[dict]
                A list of dict representations for the objects, or an empty
                list if no objects match
        """

    @abc.abstractmethod
    def set_status(  # pylint: disable=too-many-arguments
        self,
        kind: str,
        name: str,
        namespace: Optional[str],
        status: dict,
        api_version: Optional[str] = None,
        resource_version: Optional[str] = None,
    ) -> Tuple[bool, bool]:
        """Write the status subresource for an object

        Error Semantics: If resource_version is given and does not match the
        object's current resourceVersion, ConflictError is raised. The caller
        is expected to re-fetch and retry.

        Args:
            kind:  str
                The kind of the object to update
            name:  str
                The full name of the object to update
            namespace:  Optional[str]
                The namespace of the object. If None search cluster wide
            status:  dict
                The status object to set onto the given object
            api_version:  str
                The api_version of the resource to update
            resource_version:  Optional[str]
                The resourceVersion of the snapshot the status was computed
                from

        Returns:
            success:  bool
                Whether or not the status write succeeded
            changed:  bool
                Whether or not the status update resulted in a change
        """

    @abc.abstractmethod
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
        """Listen for changes in the cluster and return a stream of
        KubeWatchEvents. Delivery is at-least-once and not deduplicated.
        Calling stop on the given watch_manager ends the stream.

        Returns:
            watch_stream: Iterator[KubeWatchEvent]
                A stream of KubeWatchEvents generated while watching
        """
