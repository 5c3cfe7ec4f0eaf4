"""
Typed representation of a custom resource instance and the helpers used to
convert it to and from its manifest
"""

# Standard
from dataclasses import dataclass, field
from typing import Any, Dict, Generic, NamedTuple, Optional, Type, TypeVar
import copy

# First Party
import alog

# Local
from .exceptions import assert_spec
from .utils import split_api_version

log = alog.use_channel("RSRC")

SpecT = TypeVar("SpecT")
StatusT = TypeVar("StatusT")


class ResourceIdentity(NamedTuple):
    """The immutable identity of a resource in the cluster"""

    group: str
    version: str
    kind: str
    namespace: Optional[str]
    name: str

    @property
    def api_version(self) -> str:
        """The apiVersion string for this identity"""
        return f"{self.group}/{self.version}" if self.group else self.version

    def __str__(self):
        return f"{self.api_version}/{self.kind}/{self.namespace}/{self.name}"


def identity_of(manifest: dict) -> ResourceIdentity:
    """Build the identity for a raw manifest"""
    group, version = split_api_version(manifest.get("apiVersion") or "")
    metadata = manifest.get("metadata") or {}
    return ResourceIdentity(
        group=group,
        version=version,
        kind=manifest.get("kind"),
        namespace=metadata.get("namespace"),
        name=metadata.get("name"),
    )


@dataclass
class CustomResourceInstance(Generic[SpecT, StatusT]):
    """A snapshot of a single custom resource with a typed spec and status.

    The spec belongs to the user and must be treated as read-only. The status
    belongs to the reconciler and is None until it is first initialized.
    """

    api_version: str
    kind: str
    metadata: Dict[str, Any]
    spec: SpecT
    status: Optional[StatusT] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    ## Identity ################################################################

    @property
    def identity(self) -> ResourceIdentity:
        """The (group, version, kind, namespace, name) identity"""
        group, version = split_api_version(self.api_version)
        return ResourceIdentity(group, version, self.kind, self.namespace, self.name)

    @property
    def name(self) -> str:
        return self.metadata.get("name")

    @property
    def namespace(self) -> Optional[str]:
        return self.metadata.get("namespace")

    @property
    def uid(self) -> Optional[str]:
        return self.metadata.get("uid")

    @property
    def resource_version(self) -> Optional[str]:
        return self.metadata.get("resourceVersion")

    @property
    def labels(self) -> Dict[str, str]:
        return self.metadata.get("labels") or {}

    @property
    def annotations(self) -> Dict[str, str]:
        return self.metadata.get("annotations") or {}

    ## Conversion ##############################################################

    @classmethod
    def from_manifest(
        cls,
        manifest: dict,
        spec_type: Type[SpecT],
        status_type: Type[StatusT],
    ) -> "CustomResourceInstance[SpecT, StatusT]":
        """Parse a raw manifest into a typed instance.

        Error Semantics: A malformed spec or a manifest missing its kind,
        apiVersion or metadata.name raises InvalidSpecError. A status with
        an unexpected shape is discarded with a warning so that the reconciler
        re-initializes it rather than failing on every attempt.

        Args:
            manifest:  dict
                The full manifest of the resource
            spec_type:  Type[SpecT]
                Type with a from_dict classmethod used to parse spec
            status_type:  Type[StatusT]
                Type with a from_dict classmethod used to parse status

        Returns:
            resource:  CustomResourceInstance[SpecT, StatusT]
                The typed snapshot
        """
        manifest = copy.deepcopy(dict(manifest))
        for section in ("kind", "apiVersion"):
            assert_spec(
                section in manifest, f"Resource missing required section ['{section}']"
            )
        metadata = manifest.pop("metadata", None)
        assert_spec(
            isinstance(metadata, dict), "Resource missing required section ['metadata']"
        )
        assert_spec(
            "name" in metadata, "Resource missing required section ['metadata.name']"
        )

        raw_spec = manifest.pop("spec", None)
        assert_spec(
            isinstance(raw_spec, dict),
            f"Resource {metadata.get('name')} has no spec mapping",
        )
        spec = spec_type.from_dict(raw_spec)

        raw_status = manifest.pop("status", None)
        status = None
        if raw_status is not None:
            try:
                status = status_type.from_dict(raw_status)
            except (TypeError, ValueError) as err:
                log.warning(
                    "Discarding status of unexpected shape on %s: %s",
                    metadata.get("name"),
                    err,
                )

        return cls(
            api_version=manifest.pop("apiVersion"),
            kind=manifest.pop("kind"),
            metadata=metadata,
            spec=spec,
            status=status,
            extra=manifest,
        )

    def to_manifest(self) -> dict:
        """Render the wire-format manifest for this instance"""
        manifest = copy.deepcopy(self.extra)
        manifest.update(
            {
                "apiVersion": self.api_version,
                "kind": self.kind,
                "metadata": copy.deepcopy(self.metadata),
                "spec": self.spec.to_dict(),
            }
        )
        if self.status is not None:
            manifest["status"] = self.status.to_dict()
        return manifest

    def status_dict(self) -> Optional[dict]:
        """The serialized status or None if it has never been set"""
        return None if self.status is None else self.status.to_dict()
