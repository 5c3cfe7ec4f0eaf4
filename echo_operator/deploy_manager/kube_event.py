"""
Helper module to define shared types related to Kube Events
"""

# Standard
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

# Local
from ..resource import ResourceIdentity, identity_of


class KubeEventType(Enum):
    """Enum for all possible kubernetes watch event types"""

    DELETED = "DELETED"
    MODIFIED = "MODIFIED"
    ADDED = "ADDED"


@dataclass
class KubeWatchEvent:
    """DataClass containing the type, raw manifest, and timestamp of a
    particular watch event"""

    type: KubeEventType
    resource: dict
    timestamp: datetime = field(default_factory=datetime.now)

    @property
    def identity(self) -> ResourceIdentity:
        """The identity of the resource this event is about"""
        return identity_of(self.resource)
