"""
The DryRunDeployManager keeps the state of a cluster in memory. It backs the dry
run mode of the operator and the unit tests.
"""

# Standard
from datetime import datetime, timedelta
from queue import Empty, Queue
from threading import RLock
from typing import Callable, Dict, Iterator, List, NamedTuple, Optional
import copy
import itertools
import re
import uuid

# Third Party
from kubernetes.watch import Watch

# First Party
import alog

# Local
from ..exceptions import ConflictError
from .base import DeployManagerBase
from .kube_event import KubeEventType, KubeWatchEvent
from .owner_references import is_owned_by

log = alog.use_channel("DRY-RUN")

# Seconds between checks of a watch's stop flag
WATCH_POLL_INTERVAL = 0.1

# Metadata owned by the server. Deploys never overwrite these on a stored object.
SERVER_FIELDS = ("resourceVersion", "uid", "creationTimestamp")

Callback = Callable[[dict], None]


class ObjectKey(NamedTuple):
    """Where an object lives in the in-memory cluster"""

    namespace: Optional[str]
    kind: str
    api_version: str
    name: str

    @classmethod
    def of(cls, manifest: dict) -> "ObjectKey":
        metadata = manifest.get("metadata") or {}
        return cls(
            metadata.get("namespace"),
            manifest.get("kind"),
            manifest.get("apiVersion"),
            metadata.get("name"),
        )


class Subscription(NamedTuple):
    """Callbacks for changes to objects of one kind. Empty filter values match
    everything.
    """

    kind: str
    api_version: Optional[str]
    namespace: Optional[str]
    name: Optional[str]
    on_change: Optional[Callback]
    on_delete: Optional[Callback]

    def matches(self, key: ObjectKey) -> bool:
        return (
            key.kind == self.kind
            and (not self.api_version or self.api_version == key.api_version)
            and (not self.namespace or self.namespace == key.namespace)
            and (not self.name or self.name == key.name)
        )


class DryRunDeployManager(DeployManagerBase):
    """
    Deploy manager which doesn't actually deploy! Deploys and deletes notify
    subscribers synchronously on the calling thread.
    """

    def __init__(self, resources: Optional[List[dict]] = None):
        """
        Args:
            resources:  Optional[List[dict]]
                Objects that already exist in the cluster. They are stored
                without notifying anyone.
        """
        self._lock = RLock()
        self._objects: Dict[ObjectKey, dict] = {}
        self._subscriptions: List[Subscription] = []
        self._resource_versions = itertools.count(1)
        for resource in resources or []:
            self._store(resource)

    ## Interface ###############################################################

    def deploy(
        self, resource_definitions, manage_owner_references=True
    ):  # pylint: disable=unused-argument
        log.info("DRY RUN deploy")
        changed = False
        for definition in resource_definitions:
            stored = self._store(definition)
            if stored is not None:
                changed = True
                self._notify(ObjectKey.of(stored), stored, deleted=False)
        return True, changed

    def disable(self, resource_definitions):
        log.info("DRY RUN disable")
        changed = False
        for definition in resource_definitions:
            metadata = definition.get("metadata") or {}
            with self._lock:
                key = self._lookup(
                    definition.get("kind"),
                    metadata.get("name"),
                    metadata.get("namespace"),
                    definition.get("apiVersion"),
                )
                removed = self._objects.pop(key) if key else None
            if removed is None:
                continue
            changed = True
            log.debug("DRY RUN deleted %s", key)
            self._notify(key, removed, deleted=True)

            # Stand in for the garbage collector
            owned = self._owned_by(removed["metadata"].get("uid"))
            if owned:
                log.debug("Cascading delete to %d owned objects", len(owned))
                self.disable(owned)
        return True, changed

    def get_object_current_state(self, kind, name, namespace=None, api_version=None):
        log.debug(
            "DRY RUN get_object_current_state of [%s/%s] in [%s]", kind, name, namespace
        )
        with self._lock:
            key = self._lookup(kind, name, namespace, api_version)
            content = copy.deepcopy(self._objects[key]) if key else None
        return True, content

    def filter_objects_current_state(
        self,
        kind,
        namespace=None,
        api_version=None,
        label_selector=None,
        field_selector=None,
    ):  # pylint: disable=too-many-arguments
        log.debug(
            "DRY RUN filter_objects_current_state of [%s] in [%s]", kind, namespace
        )
        with self._lock:
            candidates = [
                copy.deepcopy(obj)
                for key, obj in self._objects.items()
                if key.kind == kind
                and (namespace is None or key.namespace == namespace)
                and (api_version is None or key.api_version == api_version)
            ]
        return True, [
            obj
            for obj in candidates
            if selector_matches(label_selector, obj["metadata"].get("labels") or {})
            and selector_matches(field_selector, flatten(obj))
        ]

    def set_status(
        self,
        kind,
        name,
        namespace,
        status,
        api_version=None,
        resource_version=None,
    ):  # pylint: disable=too-many-arguments
        log.info("DRY RUN set_status of [%s/%s] in %s: %s", kind, name, namespace, status)
        with self._lock:
            key = self._lookup(kind, name, namespace, api_version)
            if key is None:
                log.debug("Did not find [%s/%s] in %s", kind, name, namespace)
                return False, False

            stored = self._objects[key]
            current_version = stored["metadata"].get("resourceVersion")
            if resource_version is not None and resource_version != current_version:
                raise ConflictError(
                    f"Status write for [{kind}/{name}] used resourceVersion "
                    f"{resource_version} but the current one is {current_version}"
                )
            if stored.get("status") == status:
                log.debug("Status has not changed. No update")
                return True, False

            stored["status"] = copy.deepcopy(status)
            stored["metadata"]["resourceVersion"] = self._next_resource_version()
        return True, True

    def watch_objects(  # pylint: disable=too-many-arguments,unused-argument
        self,
        kind: str,
        api_version: Optional[str] = None,
        namespace: Optional[str] = None,
        name: Optional[str] = None,
        label_selector: Optional[str] = None,
        field_selector: Optional[str] = None,
        resource_version: Optional[str] = None,
        timeout: Optional[int] = 15,
        watch_manager: Optional[Watch] = None,
    ) -> Iterator[KubeWatchEvent]:
        """Stream the matching objects as ADDED events followed by the changes
        made through this manager. The stream ends after timeout seconds or once
        the given watch_manager is stopped.
        """
        events = Queue()
        seen = set()

        def selected(manifest: dict) -> bool:
            labels = manifest.get("metadata", {}).get("labels") or {}
            return selector_matches(label_selector, labels) and selector_matches(
                field_selector, flatten(manifest)
            )

        def on_change(manifest: dict):
            if not selected(manifest):
                return
            key = ObjectKey.of(manifest)
            event_type = KubeEventType.MODIFIED if key in seen else KubeEventType.ADDED
            seen.add(key)
            events.put(KubeWatchEvent(type=event_type, resource=manifest))

        def on_delete(manifest: dict):
            seen.discard(ObjectKey.of(manifest))
            events.put(KubeWatchEvent(type=KubeEventType.DELETED, resource=manifest))

        with self._lock:
            subscription = self.subscribe(
                kind, api_version, namespace, name, on_change, on_delete
            )
            initial = [
                copy.deepcopy(obj)
                for key, obj in self._objects.items()
                if subscription.matches(key) and selected(obj)
            ]
            seen.update(ObjectKey.of(obj) for obj in initial)

        end_time = datetime.max
        if timeout:
            end_time = datetime.now() + timedelta(seconds=timeout)
        try:
            for manifest in initial:
                yield KubeWatchEvent(type=KubeEventType.ADDED, resource=manifest)
            while datetime.now() < end_time:
                if watch_manager is not None and watch_manager._stop:  # pylint: disable=protected-access
                    log.debug("Watch stopped for %s/%s", api_version, kind)
                    return
                try:
                    yield events.get(timeout=WATCH_POLL_INTERVAL)
                except Empty:
                    pass
        finally:
            self.unsubscribe(subscription)

    ## Dry Run Methods #########################################################

    def subscribe(  # pylint: disable=too-many-arguments
        self,
        kind: str,
        api_version: Optional[str] = None,
        namespace: Optional[str] = None,
        name: Optional[str] = None,
        on_change: Optional[Callback] = None,
        on_delete: Optional[Callback] = None,
    ) -> Subscription:
        """Register callbacks for deploys and deletes of matching objects.
        Status writes do not notify.
        """
        subscription = Subscription(
            kind, api_version, namespace, name, on_change, on_delete
        )
        log.debug("Subscribing to %s", subscription[:4])
        with self._lock:
            self._subscriptions.append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription):
        with self._lock:
            self._subscriptions = [
                sub for sub in self._subscriptions if sub is not subscription
            ]

    ## Implementation Details ##################################################

    def _next_resource_version(self) -> str:
        return str(next(self._resource_versions))

    def _lookup(self, kind, name, namespace, api_version) -> Optional[ObjectKey]:
        """Find the key of a single object. Any apiVersion matches when none is
        given. Must be called with _lock held.
        """
        matches = [
            key
            for key in self._objects
            if key.kind == kind
            and key.name == name
            and key.namespace == namespace
            and (api_version is None or key.api_version == api_version)
        ]
        return matches[0] if len(matches) == 1 else None

    def _store(self, definition: dict) -> Optional[dict]:
        """Write a definition into the cluster, returning the stored copy or
        None when nothing changed
        """
        resource = copy.deepcopy(dict(definition))
        metadata = resource["metadata"] = dict(resource.get("metadata") or {})
        server_values = {field: metadata.pop(field, None) for field in SERVER_FIELDS}
        key = ObjectKey.of(resource)
        log.debug4("DRY RUN store %s: %s", key, resource)

        with self._lock:
            current = self._objects.get(key)
            if current is not None:
                # The status subresource is not written through deploy
                if "status" not in resource and "status" in current:
                    resource["status"] = copy.deepcopy(current["status"])
                comparable = copy.deepcopy(current)
                for field in SERVER_FIELDS:
                    server_values[field] = comparable["metadata"].pop(field, None)
                if comparable == resource:
                    log.debug2("No change for %s", key)
                    return None

            metadata["uid"] = server_values["uid"] or str(uuid.uuid4())
            metadata["creationTimestamp"] = (
                server_values["creationTimestamp"] or datetime.now().isoformat()
            )
            metadata["resourceVersion"] = self._next_resource_version()
            self._objects[key] = resource
            return copy.deepcopy(resource)

    def _notify(self, key: ObjectKey, manifest: dict, deleted: bool):
        with self._lock:
            subscriptions = [sub for sub in self._subscriptions if sub.matches(key)]
        for subscription in subscriptions:
            callback = subscription.on_delete if deleted else subscription.on_change
            if callback is not None:
                log.debug2("Notifying %s of %s", callback, key)
                callback(copy.deepcopy(manifest))

    def _owned_by(self, owner_uid: Optional[str]) -> List[dict]:
        if not owner_uid:
            return []
        with self._lock:
            return [
                copy.deepcopy(obj)
                for obj in self._objects.values()
                if is_owned_by(obj, owner_uid)
            ]


## Selectors ###################################################################

_REQUIREMENT_SPLIT = re.compile(r",(?![^(]*\))")
_SET_REQUIREMENT = re.compile(
    r"^(?P<key>[^\s!=]+)\s+(?P<op>in|notin)\s+\((?P<values>[^)]*)\)$"
)
_EQUALITY_REQUIREMENT = re.compile(
    r"^(?P<key>[^\s!=]+)\s*(?P<op>==|=|!=)\s*(?P<value>\S*)$"
)
_EXISTS_REQUIREMENT = re.compile(r"^(?P<op>!?)\s*(?P<key>[^\s!=]+)$")


def selector_matches(selector: Optional[str], values: Dict[str, str]) -> bool:
    """Evaluate a label or field selector against a flat mapping. See
    https://kubernetes.io/docs/concepts/overview/working-with-objects/labels/#label-selectors
    """
    if not selector:
        return True
    return all(
        _requirement_matches(requirement.strip(), values)
        for requirement in _REQUIREMENT_SPLIT.split(selector)
        if requirement.strip()
    )


def _requirement_matches(requirement: str, values: Dict[str, str]) -> bool:
    match = _SET_REQUIREMENT.match(requirement)
    if match:
        options = {option.strip() for option in match["values"].split(",")}
        return (values.get(match["key"]) in options) == (match["op"] == "in")

    match = _EQUALITY_REQUIREMENT.match(requirement)
    if match:
        equal = values.get(match["key"]) == match["value"]
        return not equal if match["op"] == "!=" else equal

    match = _EXISTS_REQUIREMENT.match(requirement)
    if match:
        present = match["key"] in values
        return not present if match["op"] else present

    raise ValueError(f"Invalid selector requirement [{requirement}]")


def flatten(obj: dict, prefix: str = "") -> Dict[str, str]:
    """Flatten nested dicts into 'foo.bar' keys with string values so that field
    selectors can be evaluated
    """
    flat = {}
    for key, value in obj.items():
        path = f"{prefix}{key}"
        if isinstance(value, dict):
            flat.update(flatten(value, f"{path}."))
        else:
            flat[path] = str(value)
    return flat
