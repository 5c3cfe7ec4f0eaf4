"""
This module holds common functionality that the DeployManager implementations
and reconcilers use to manage ownerReferences on dependent resources
"""

# First Party
import alog

# Local
from ..exceptions import assert_cluster
from .base import DeployManagerBase

log = alog.use_channel("OWNRF")


def make_owner_reference(owner_cr: dict, controller: bool = True) -> dict:
    """Make an owner reference for the given CR instance

    Error Semantics: This function makes a best-effort and does not validate the
    content of the owner_cr, so the resulting ownerReference may contain None
    entries.

    Args:
        owner_cr:  dict
            The full CR manifest for the owning resource
        controller:  bool
            Whether the owner is the managing controller of the child

    Returns:
        owner_reference:  dict
            The dict entry for the `metadata.ownerReferences` entry of the owned
            object
    """
    metadata = owner_cr.get("metadata", {})
    return {
        "apiVersion": owner_cr.get("apiVersion"),
        "kind": owner_cr.get("kind"),
        "name": metadata.get("name"),
        "uid": metadata.get("uid"),
        "controller": controller,
        # The parent will not be deleted until this object completes its
        # deletion
        "blockOwnerDeletion": True,
    }


def is_owned_by(child_obj: dict, owner_uid: str) -> bool:
    """Check whether the child carries an ownerReference with the given uid"""
    refs = child_obj.get("metadata", {}).get("ownerReferences") or []
    return any(ref.get("uid") == owner_uid for ref in refs)


def update_owner_references(
    deploy_manager: DeployManagerBase,
    owner_cr: dict,
    child_obj: dict,
):
    """Fetch current ownerReferences and merge a reference for this CR into
    the child object
    """
    _validate_object_struct(owner_cr)
    _validate_object_struct(child_obj)

    kind = child_obj["kind"]
    api_version = child_obj["apiVersion"]
    name = child_obj["metadata"]["name"]
    namespace = child_obj["metadata"]["namespace"]
    uid = child_obj["metadata"].get("uid")

    success, content = deploy_manager.get_object_current_state(
        kind=kind, name=name, api_version=api_version, namespace=namespace
    )
    assert_cluster(
        success, f"Failed to fetch current state of {api_version}.{kind}/{name}"
    )

    # Start from what is in the cluster, then what the child declares
    owner_refs = []
    if content is not None:
        owner_refs = list(content.get("metadata", {}).get("ownerReferences", []))
        log.debug3("Current owner refs: %s", owner_refs)
    for ref in child_obj["metadata"].get("ownerReferences") or []:
        if ref.get("uid") not in [existing.get("uid") for existing in owner_refs]:
            owner_refs.append(ref)

    current_uid = owner_cr["metadata"].get("uid")
    current_namespace = owner_cr["metadata"]["namespace"]
    if current_uid == uid:
        log.debug2("Owner is same as child; Not adding owner ref")
        return

    # Owner references may not cross namespaces
    if (namespace == current_namespace) and (
        current_uid not in [ref.get("uid") for ref in owner_refs]
    ):
        log.debug2(
            "Adding owner reference for %s.%s/%s", api_version, kind, name
        )
        owner_refs.append(make_owner_reference(owner_cr))

    log.debug4("Final owner refs: %s", owner_refs)
    child_obj["metadata"]["ownerReferences"] = owner_refs


## Implementation Details ######################################################


def _validate_object_struct(obj: dict):
    """Ensure that the required portions of an object are present (kind,
    apiVersion, metadata.namespace, metadata.name)
    """
    assert "kind" in obj, "Got object without 'kind'"
    assert "apiVersion" in obj, "Got object without 'apiVersion'"
    metadata = obj.get("metadata")
    assert isinstance(metadata, dict), "Got object with non-dict 'metadata'"
    assert "name" in metadata, "Got object without 'metadata.name'"
    assert "namespace" in metadata, "Got object without 'metadata.namespace'"
