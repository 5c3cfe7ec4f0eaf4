"""
Tests for the KubeDeployManager using a mocked dynamic client
"""
# Standard
from unittest import mock

# Third Party
from kubernetes.client.exceptions import ApiException
from openshift.dynamic.exceptions import ConflictError as DynamicConflictError
from openshift.dynamic.exceptions import (
    ForbiddenError,
    InternalServerError,
    NotFoundError,
    ResourceNotFoundError,
)
import pytest

# Local
from echo_operator.deploy_manager import KubeDeployManager, KubeEventType
from echo_operator.deploy_manager.owner_references import make_owner_reference
from echo_operator.exceptions import ClusterError, ConflictError
from echo_operator.test_helpers.helpers import TEST_NAMESPACE, library_config, setup_cr

## Helpers #####################################################################


def api_error(error_type, status, reason=""):
    return error_type(ApiException(status=status, reason=reason))


def make_obj(name="foo", resource_version="1", **extra):
    obj = {
        "apiVersion": "v1",
        "kind": "Service",
        "metadata": {
            "name": name,
            "namespace": TEST_NAMESPACE,
            "resourceVersion": resource_version,
        },
    }
    obj.update(extra)
    return obj


def returning(content):
    """Mock of a client result with a to_dict method"""
    result = mock.Mock()
    result.to_dict.return_value = content
    return result


def setup_dm(handle=None, owner_cr=None):
    """Build a manager around a mock dynamic client whose resources all resolve
    to the given handle
    """
    handle = handle or mock.MagicMock()
    dynamic_client = mock.MagicMock()
    dynamic_client.resources.get.return_value = handle
    return (
        KubeDeployManager(owner_cr=owner_cr, dynamic_client=dynamic_client),
        handle,
    )


class FakeWatch:
    """Stand in for kubernetes.watch.Watch that plays back batches of events
    and stops after the last batch
    """

    def __init__(self, *batches):
        self._batches = list(batches)
        self._stop = False
        self.calls = []

    def stream(self, _, **kwargs):
        self.calls.append(kwargs)
        batch = self._batches.pop(0)
        if not self._batches:
            self._stop = True
        if isinstance(batch, Exception):
            raise batch
        return iter(batch)


## get_object_current_state ####################################################


def test_get_object_current_state_present():
    dm, handle = setup_dm()
    handle.get.return_value = returning(make_obj())
    assert dm.get_object_current_state("Service", "foo", TEST_NAMESPACE, "v1") == (
        True,
        make_obj(),
    )
    handle.get.assert_called_once_with(name="foo", namespace=TEST_NAMESPACE)


def test_get_object_current_state_not_found():
    dm, handle = setup_dm()
    handle.get.side_effect = api_error(NotFoundError, 404)
    assert dm.get_object_current_state("Service", "foo", TEST_NAMESPACE) == (
        True,
        None,
    )


def test_get_object_current_state_forbidden():
    dm, handle = setup_dm()
    handle.get.side_effect = api_error(ForbiddenError, 403)
    assert dm.get_object_current_state("Service", "foo", TEST_NAMESPACE) == (
        False,
        None,
    )


def test_get_object_current_state_unknown_kind():
    dm, _ = setup_dm()
    dm.client.resources.get.side_effect = ResourceNotFoundError("nope")
    assert dm.get_object_current_state("Bogus", "foo", TEST_NAMESPACE) == (True, None)


def test_filter_objects_current_state():
    dm, handle = setup_dm()
    handle.get.return_value = returning({"items": [make_obj("a"), make_obj("b")]})
    success, items = dm.filter_objects_current_state(
        "Service", TEST_NAMESPACE, label_selector="app=foo"
    )
    assert success
    assert [item["metadata"]["name"] for item in items] == ["a", "b"]
    assert handle.get.call_args.kwargs["label_selector"] == "app=foo"


## set_status ##################################################################


def test_set_status_pins_resource_version():
    """The write carries the resourceVersion of the snapshot, not the latest"""
    dm, handle = setup_dm()
    handle.get.return_value = returning(make_obj(resource_version="7"))
    assert dm.set_status(
        "Service", "foo", TEST_NAMESPACE, {"a": 1}, resource_version="5"
    ) == (True, True)
    body = handle.status.replace.call_args.kwargs["body"]
    assert body["metadata"]["resourceVersion"] == "5"
    assert body["status"] == {"a": 1}


def test_set_status_unchanged():
    dm, handle = setup_dm()
    handle.get.return_value = returning(make_obj(status={"a": 1}))
    assert dm.set_status("Service", "foo", TEST_NAMESPACE, {"a": 1}) == (True, False)
    assert not handle.status.replace.called


def test_set_status_conflict():
    dm, handle = setup_dm()
    handle.get.return_value = returning(make_obj())
    handle.status.replace.side_effect = api_error(DynamicConflictError, 409, "Conflict")
    with pytest.raises(ConflictError):
        dm.set_status("Service", "foo", TEST_NAMESPACE, {"a": 1}, resource_version="1")


def test_set_status_server_error():
    dm, handle = setup_dm()
    handle.get.return_value = returning(make_obj())
    handle.status.replace.side_effect = api_error(InternalServerError, 500)
    assert dm.set_status("Service", "foo", TEST_NAMESPACE, {"a": 1}) == (False, False)


def test_set_status_missing_object():
    dm, handle = setup_dm()
    handle.get.side_effect = api_error(NotFoundError, 404)
    assert dm.set_status("Service", "foo", TEST_NAMESPACE, {"a": 1}) == (False, False)


## deploy ######################################################################


def test_deploy_new_resource():
    dm, handle = setup_dm()
    handle.get.side_effect = api_error(NotFoundError, 404)
    obj = make_obj()
    assert dm.deploy([obj]) == (True, True)
    handle.create.assert_called_once_with(body=obj, namespace=TEST_NAMESPACE)
    assert not handle.replace.called


def test_deploy_existing_resource():
    """An existing resource is replaced at its current resourceVersion"""
    dm, handle = setup_dm()
    handle.get.return_value = returning(make_obj(resource_version="3"))
    handle.replace.return_value = returning(make_obj(resource_version="4"))
    assert dm.deploy([make_obj(resource_version=None)]) == (True, True)
    body = handle.replace.call_args.kwargs["body"]
    assert body["metadata"]["resourceVersion"] == "3"


def test_deploy_existing_resource_no_change():
    dm, handle = setup_dm()
    handle.get.return_value = returning(make_obj(resource_version="3"))
    handle.replace.return_value = returning(make_obj(resource_version="3"))
    assert dm.deploy([make_obj()]) == (True, False)


def test_deploy_conflict_retry():
    dm, handle = setup_dm()
    handle.get.return_value = returning(make_obj())
    handle.replace.side_effect = [
        api_error(DynamicConflictError, 409),
        returning(make_obj(resource_version="2")),
    ]
    with library_config(deploy_retries=1):
        assert dm.deploy([make_obj()]) == (True, True)
    assert handle.replace.call_count == 2


def test_deploy_conflict_persist():
    dm, handle = setup_dm()
    handle.get.return_value = returning(make_obj())
    handle.replace.side_effect = api_error(DynamicConflictError, 409)
    with library_config(deploy_retries=2):
        assert dm.deploy([make_obj()]) == (False, False)
    assert handle.replace.call_count == 3


def test_deploy_forbidden_lookup():
    """Failing to read the current state raises a cluster error"""
    dm, handle = setup_dm()
    handle.get.side_effect = api_error(ForbiddenError, 403)
    with pytest.raises(ClusterError):
        dm.deploy([make_obj()])


def test_deploy_add_owner_reference():
    owner_cr = setup_cr(namespace=TEST_NAMESPACE)
    dm, handle = setup_dm(owner_cr=owner_cr)
    handle.get.side_effect = api_error(NotFoundError, 404)
    obj = make_obj()
    dm.deploy([obj])
    body = handle.create.call_args.kwargs["body"]
    assert body["metadata"]["ownerReferences"] == [make_owner_reference(owner_cr)]
    assert "ownerReferences" not in obj["metadata"]


def test_deploy_no_owner_reference_if_disabled():
    dm, handle = setup_dm(owner_cr=setup_cr(namespace=TEST_NAMESPACE))
    handle.get.side_effect = api_error(NotFoundError, 404)
    dm.deploy([make_obj()], manage_owner_references=False)
    body = handle.create.call_args.kwargs["body"]
    assert "ownerReferences" not in body["metadata"]


## disable #####################################################################


def test_disable_present():
    dm, handle = setup_dm()
    assert dm.disable([make_obj()]) == (True, True)
    handle.delete.assert_called_once_with(name="foo", namespace=TEST_NAMESPACE)


def test_disable_not_present():
    dm, handle = setup_dm()
    handle.delete.side_effect = api_error(NotFoundError, 404)
    assert dm.disable([make_obj()]) == (True, False)


def test_disable_forbidden():
    dm, handle = setup_dm()
    handle.delete.side_effect = api_error(ForbiddenError, 403)
    assert dm.disable([make_obj()]) == (False, False)


## watch_objects ###############################################################


def test_watch_objects():
    dm, _ = setup_dm()
    watch = FakeWatch(
        [
            {"type": "ADDED", "object": make_obj()},
            {"type": "MODIFIED", "object": make_obj(resource_version="2")},
            {"type": "DELETED", "object": make_obj(resource_version="3")},
        ]
    )
    events = list(
        dm.watch_objects("Service", "v1", namespace=TEST_NAMESPACE, watch_manager=watch)
    )
    assert [event.type for event in events] == [
        KubeEventType.ADDED,
        KubeEventType.MODIFIED,
        KubeEventType.DELETED,
    ]
    assert events[1].resource["metadata"]["resourceVersion"] == "2"
    assert watch.calls[0]["namespace"] == TEST_NAMESPACE


def test_watch_objects_expired_restarts():
    """A 410 restarts the watch from the current state"""
    dm, _ = setup_dm()
    watch = FakeWatch(
        ApiException(status=410),
        [{"type": "ADDED", "object": make_obj()}],
    )
    events = list(
        dm.watch_objects("Service", "v1", resource_version="5", watch_manager=watch)
    )
    assert len(events) == 1
    assert watch.calls[0]["resource_version"] == "5"
    assert watch.calls[1]["resource_version"] is None


def test_watch_objects_other_error():
    dm, _ = setup_dm()
    watch = FakeWatch(ApiException(status=500), [])
    with pytest.raises(ApiException):
        list(dm.watch_objects("Service", "v1", watch_manager=watch))


def test_watch_objects_unknown_kind():
    dm, _ = setup_dm()
    dm.client.resources.get.side_effect = ResourceNotFoundError("nope")
    with pytest.raises(ClusterError):
        list(dm.watch_objects("Bogus", "v1", watch_manager=FakeWatch([])))
