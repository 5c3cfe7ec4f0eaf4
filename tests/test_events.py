"""
Tests for the Event helpers
"""

# Standard
from datetime import datetime, timezone

# Local
from echo_operator.events import (
    EVENT_TYPE_NORMAL,
    EVENT_TYPE_WARNING,
    MAX_MESSAGE_LEN,
    emit_event,
    make_event,
)
from echo_operator.test_helpers.helpers import (
    TEST_INSTANCE_NAME,
    TEST_INSTANCE_UID,
    TEST_NAMESPACE,
    MockDeployManager,
    setup_cr,
)


def test_make_event():
    """The event references the involved object and carries the reason"""
    cr = setup_cr()
    cr["metadata"]["resourceVersion"] = "12"
    now = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    event = make_event(cr, "Broken", "it broke", now=now)

    assert event["apiVersion"] == "v1"
    assert event["kind"] == "Event"
    assert event["metadata"]["namespace"] == TEST_NAMESPACE
    assert event["metadata"]["name"].startswith(f"{TEST_INSTANCE_NAME}.")
    assert event["involvedObject"] == {
        "apiVersion": cr["apiVersion"],
        "kind": "EchoResource",
        "name": TEST_INSTANCE_NAME,
        "namespace": TEST_NAMESPACE,
        "uid": TEST_INSTANCE_UID,
        "resourceVersion": "12",
    }
    assert event["reason"] == "Broken"
    assert event["message"] == "it broke"
    assert event["type"] == EVENT_TYPE_WARNING
    assert event["firstTimestamp"] == "2024-01-02T03:04:05Z"
    assert event["lastTimestamp"] == event["firstTimestamp"]


def test_make_event_unique_names():
    cr = setup_cr()
    assert make_event(cr, "A", "a")["metadata"]["name"] != make_event(cr, "A", "a")[
        "metadata"
    ]["name"]


def test_make_event_long_values():
    """Long names and messages are cut to fit the API server limits"""
    cr = setup_cr(name="x" * 80)
    event = make_event(cr, "Long", "y" * (MAX_MESSAGE_LEN * 2), EVENT_TYPE_NORMAL)
    assert len(event["metadata"]["name"]) <= 63
    assert len(event["message"]) == MAX_MESSAGE_LEN
    assert event["type"] == EVENT_TYPE_NORMAL


def test_emit_event():
    dm = MockDeployManager()
    assert emit_event(dm, setup_cr(), "Broken", "it broke")
    _, events = dm.filter_objects_current_state(kind="Event", namespace=TEST_NAMESPACE)
    assert len(events) == 1
    assert dm.deploy.call_args.kwargs["manage_owner_references"] is False


def test_emit_event_deploy_failure():
    """A failed write is reported but not raised"""
    assert not emit_event(MockDeployManager(deploy_fail=True), setup_cr(), "A", "a")


def test_emit_event_deploy_raises():
    """An exception from the client is swallowed"""
    assert not emit_event(MockDeployManager(deploy_raise=True), setup_cr(), "A", "a")
