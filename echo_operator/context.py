"""
This module holds the context handed to a reconciler for an individual
reconciliation
"""

# Standard
from typing import List, Optional

# First Party
import aconfig
import alog

# Local
from .deploy_manager import DeployManagerBase
from .exceptions import assert_cluster
from .utils import get_truncated_name

log = alog.use_channel("CTX")


class ReconcileContext:
    """The ReconcileContext gives a reconciler access to the cluster client and
    the library config for a single reconciliation. It holds no state that
    outlives the reconciliation.
    """

    __slots__ = ["__id", "__client", "__config"]

    def __init__(
        self,
        reconciliation_id: str,
        client: DeployManagerBase,
        config: Optional[aconfig.Config] = None,
    ):
        """Construct a context for one reconciliation

        Args:
            reconciliation_id:  str
                The unique ID for this reconciliation
            client:  DeployManagerBase
                The client used for all reads and writes against the cluster
            config:  Optional[aconfig.Config]
                The library config in effect for this reconciliation
        """
        self.__id = reconciliation_id
        self.__client = client
        if config is None:
            config = aconfig.Config({}, override_env_vars=False)
        elif not isinstance(config, aconfig.Config):
            config = aconfig.Config(config, override_env_vars=False)
        self.__config = config

    ## Properties ##############################################################

    @property
    def id(self) -> str:  # pylint: disable=invalid-name
        """The unique reconciliation ID"""
        return self.__id

    @property
    def client(self) -> DeployManagerBase:
        """The injected cluster client"""
        return self.__client

    @property
    def config(self) -> aconfig.Config:
        """The library config for this reconciliation"""
        return self.__config

    ## Utilities ###############################################################

    def get(
        self,
        kind: str,
        name: str,
        namespace: Optional[str],
        api_version: Optional[str] = None,
    ) -> Optional[dict]:
        """Fetch a single object by name, returning None when it is absent

        Error Semantics: A failed lookup (as opposed to a missing object) raises
        ClusterError.
        """
        success, content = self.client.get_object_current_state(
            kind=kind,
            name=name,
            namespace=namespace,
            api_version=api_version,
        )
        assert_cluster(
            success, f"Failed to fetch [{api_version}/{kind}/{name}] in {namespace}"
        )
        return content

    def create_or_replace(self, resource_definition: dict) -> bool:
        """Apply a single object, returning whether anything changed

        Error Semantics: A failed write raises ClusterError.
        """
        success, changed = self.client.deploy(
            [resource_definition], manage_owner_references=False
        )
        metadata = resource_definition.get("metadata", {})
        assert_cluster(
            success,
            f"Failed to apply [{resource_definition.get('kind')}/{metadata.get('name')}]",
        )
        return changed

    def filter(
        self,
        kind: str,
        namespace: Optional[str],
        api_version: Optional[str] = None,
        label_selector: Optional[str] = None,
    ) -> List[dict]:
        """List objects of a kind matching a label selector"""
        success, content = self.client.filter_objects_current_state(
            kind=kind,
            namespace=namespace,
            api_version=api_version,
            label_selector=label_selector,
        )
        assert_cluster(success, f"Failed to list [{api_version}/{kind}] in {namespace}")
        return content

    @staticmethod
    def get_dependent_name(parent_name: str, suffix: Optional[str] = None) -> str:
        """Get the deterministic name of a dependent derived from its parent's
        name, truncated to conform to kubernetes limits
        """
        name = parent_name if not suffix else f"{parent_name}-{suffix}"
        return get_truncated_name(name)

    def __repr__(self) -> str:
        return f"ReconcileContext({self.id})"
