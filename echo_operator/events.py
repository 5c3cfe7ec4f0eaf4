"""
Helpers to attach kubernetes Events to a reconciled resource so that failures
are visible with `kubectl describe`
"""

# Standard
from datetime import datetime, timezone
from typing import Optional
import uuid

# First Party
import alog

# Local
from .deploy_manager import DeployManagerBase
from .utils import get_truncated_name

log = alog.use_channel("EVENT")

EVENT_TYPE_NORMAL = "Normal"
EVENT_TYPE_WARNING = "Warning"
REPORTING_COMPONENT = "echo-operator"

# The message field of an Event is limited in size by the API server
MAX_MESSAGE_LEN = 1024


def make_event(
    involved_object: dict,
    reason: str,
    message: str,
    event_type: str = EVENT_TYPE_WARNING,
    now: Optional[datetime] = None,
) -> dict:
    """Build a core/v1 Event manifest referencing the given object

    Args:
        involved_object:  dict
            The manifest of the resource the event is about
        reason:  str
            Short CamelCase reason for the event
        message:  str
            Human readable description
        event_type:  str
            Normal or Warning

    Returns:
        event:  dict
            The Event manifest, ready to be created
    """
    now = now or datetime.now(timezone.utc)
    timestamp = now.strftime("%Y-%m-%dT%H:%M:%SZ")
    metadata = involved_object.get("metadata", {})
    name = metadata.get("name") or "unknown"
    return {
        "apiVersion": "v1",
        "kind": "Event",
        "metadata": {
            "name": get_truncated_name(f"{name}.{uuid.uuid4().hex[:16]}"),
            "namespace": metadata.get("namespace"),
        },
        "involvedObject": {
            "apiVersion": involved_object.get("apiVersion"),
            "kind": involved_object.get("kind"),
            "name": name,
            "namespace": metadata.get("namespace"),
            "uid": metadata.get("uid"),
            "resourceVersion": metadata.get("resourceVersion"),
        },
        "reason": reason,
        "message": message[:MAX_MESSAGE_LEN],
        "type": event_type,
        "count": 1,
        "firstTimestamp": timestamp,
        "lastTimestamp": timestamp,
        "source": {"component": REPORTING_COMPONENT},
        "reportingComponent": REPORTING_COMPONENT,
    }


def emit_event(
    client: DeployManagerBase,
    involved_object: dict,
    reason: str,
    message: str,
    event_type: str = EVENT_TYPE_WARNING,
) -> bool:
    """Create an Event for the given object. This never raises so that a
    failure to report an error cannot mask the error itself.

    Returns:
        success:  bool
            Whether the event was created
    """
    try:
        event = make_event(involved_object, reason, message, event_type)
        success, _ = client.deploy([event], manage_owner_references=False)
    except Exception as err:  # pylint: disable=broad-except
        log.warning("Failed to emit %s event: %s", reason, err, exc_info=True)
        return False
    if not success:
        log.warning("Failed to emit %s event", reason)
    return success
