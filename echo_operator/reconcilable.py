"""
The Reconcilable class is the capability a custom resource kind implements to
take part in the control loop
"""

# Standard
from dataclasses import dataclass
from typing import ClassVar, Generic, Optional, Type
import abc

# First Party
import alog

# Local
from .context import ReconcileContext
from .resource import CustomResourceInstance, SpecT, StatusT
from .utils import classproperty

log = alog.use_channel("RCNCL")


@dataclass
class ReconcileResult:
    """The directive a reconciler returns to the runtime"""

    # Whether the in-memory status of the resource should be persisted
    update_status: bool = False

    @classmethod
    def persist_status(cls) -> "ReconcileResult":
        return cls(update_status=True)

    @classmethod
    def no_update(cls) -> "ReconcileResult":
        return cls(update_status=False)


class Reconcilable(abc.ABC, Generic[SpecT, StatusT]):
    """This class represents the reconciler for a single kubernetes custom
    resource kind. Each invocation of reconcile receives a fresh, possibly
    stale, snapshot and must converge the resource's status toward a pure
    function of its spec. Implementations must:

    1. Treat the spec as read-only
    2. Be idempotent, since notifications are delivered at least once
    3. Raise on client failures instead of retrying, so the dispatcher owns
        retry and backoff
    4. Keep no state between invocations

    Derived classes set group, version and kind (usually through the
    @reconciler decorator) along with spec_type and status_type.
    """

    ## Class Properties ########################################################

    group: ClassVar[Optional[str]] = None
    version: ClassVar[Optional[str]] = None
    kind: ClassVar[Optional[str]] = None

    # Types with from_dict/to_dict used to parse the spec and status
    spec_type: ClassVar[Optional[Type]] = None
    status_type: ClassVar[Optional[Type]] = None

    @classproperty
    def api_version(cls) -> str:  # pylint: disable=no-self-argument
        """The apiVersion string for the resource this reconciler manages"""
        return f"{cls.group}/{cls.version}"

    ## Construction ############################################################

    def __init__(self):
        assert self.group, f"{type(self).__name__}.group must be a non-empty string"
        assert self.version, f"{type(self).__name__}.version must be a non-empty string"
        assert self.kind, f"{type(self).__name__}.kind must be a non-empty string"
        assert self.spec_type is not None, "Reconcilable.spec_type must be set"
        assert self.status_type is not None, "Reconcilable.status_type must be set"

    def __str__(self):
        return f"{type(self).__name__}({self.group}/{self.version}/{self.kind})"

    ## Abstract Interface ######################################################

    @abc.abstractmethod
    def reconcile(
        self,
        resource: CustomResourceInstance[SpecT, StatusT],
        context: ReconcileContext,
    ) -> ReconcileResult:
        """Drive the given resource toward its desired state.

        The status of the resource may be updated in place. The runtime writes
        it back to the status subresource only when the returned result asks
        for it.

        Args:
            resource:  CustomResourceInstance[SpecT, StatusT]
                The current snapshot of the resource
            context:  ReconcileContext
                Access to the cluster client for this reconciliation

        Returns:
            result:  ReconcileResult
                Whether the status must be persisted
        """

    ## Public Interface ########################################################

    def parse_resource(self, manifest: dict) -> CustomResourceInstance[SpecT, StatusT]:
        """Parse a raw manifest into the typed resource for this kind

        Error Semantics: Raises InvalidSpecError if the spec is malformed
        """
        return CustomResourceInstance.from_manifest(
            manifest, self.spec_type, self.status_type
        )
