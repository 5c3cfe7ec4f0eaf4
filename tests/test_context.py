"""
Tests for the ReconcileContext
"""

# Third Party
import pytest

# First Party
import aconfig

# Local
from echo_operator.context import ReconcileContext
from echo_operator.exceptions import ClusterError
from echo_operator.test_helpers.helpers import (
    TEST_NAMESPACE,
    MockDeployManager,
    setup_context,
)

## Helpers #####################################################################


def make_config_map(name="cm", labels=None):
    return {
        "apiVersion": "v1",
        "kind": "ConfigMap",
        "metadata": {
            "name": name,
            "namespace": TEST_NAMESPACE,
            "labels": labels or {},
        },
        "data": {"key": "value"},
    }


## Tests #######################################################################


def test_properties():
    dm = MockDeployManager()
    context = ReconcileContext("some-id", dm, {"a": {"b": 1}})
    assert context.id == "some-id"
    assert context.client is dm
    assert isinstance(context.config, aconfig.Config)
    assert context.config.a.b == 1
    assert repr(context) == "ReconcileContext(some-id)"


def test_default_config():
    context = ReconcileContext("some-id", MockDeployManager())
    assert context.config == {}


def test_get_present_and_absent():
    context = setup_context(resources=[make_config_map()])
    assert context.get("ConfigMap", "cm", TEST_NAMESPACE, "v1")["data"] == {
        "key": "value"
    }
    assert context.get("ConfigMap", "other", TEST_NAMESPACE, "v1") is None


def test_get_failure():
    context = setup_context(get_state_fail=True)
    with pytest.raises(ClusterError):
        context.get("ConfigMap", "cm", TEST_NAMESPACE)


def test_create_or_replace():
    context = setup_context()
    assert context.create_or_replace(make_config_map())
    assert not context.create_or_replace(make_config_map())
    assert context.client.deploy.call_args.kwargs["manage_owner_references"] is False


def test_create_or_replace_failure():
    context = setup_context(deploy_fail=True)
    with pytest.raises(ClusterError):
        context.create_or_replace(make_config_map())


def test_filter():
    context = setup_context(
        resources=[
            make_config_map("one", {"app": "echo"}),
            make_config_map("two", {"app": "other"}),
        ]
    )
    matches = context.filter("ConfigMap", TEST_NAMESPACE, "v1", "app=echo")
    assert [match["metadata"]["name"] for match in matches] == ["one"]


def test_filter_failure():
    context = setup_context(filter_fail=True)
    with pytest.raises(ClusterError):
        context.filter("ConfigMap", TEST_NAMESPACE)


def test_get_dependent_name():
    assert ReconcileContext.get_dependent_name("parent") == "parent"
    assert ReconcileContext.get_dependent_name("parent", "svc") == "parent-svc"
    assert len(ReconcileContext.get_dependent_name("p" * 70, "svc")) == 63
