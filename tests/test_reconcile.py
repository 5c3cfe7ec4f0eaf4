"""Tests for the ReconcileManager class"""

# Standard
from datetime import timedelta
from unittest import mock
import copy

# Third Party
import pytest

# First Party
import alog

# Local
from echo_operator import config, constants
from echo_operator.deploy_manager import KubeDeployManager
from echo_operator.echo import EchoReconciler
from echo_operator.exceptions import (
    ClusterError,
    ConfigError,
    ConflictError,
    InvalidSpecError,
)
from echo_operator.log_format import EchoJsonFormatter
from echo_operator.reconcile import ReconcileManager, ReconciliationResult, RequeueParams
from echo_operator.test_helpers.helpers import (
    TEST_INSTANCE_NAME,
    TEST_NAMESPACE,
    FailOnce,
    MockDeployManager,
    library_config,
    setup_cr,
)

log = alog.use_channel("TEST")

################################################################################
## Helpers #####################################################################
################################################################################

API_VERSION = "echo.example.com/v1alpha1"


class AlogConfigureMock:
    def __init__(self):
        self.kwargs = None

    def __call__(self, **kwargs):
        self.kwargs = kwargs


def get_cr(deploy_manager, name=TEST_INSTANCE_NAME):
    return deploy_manager.get_obj("EchoResource", name, TEST_NAMESPACE, API_VERSION)


def get_events(deploy_manager):
    _, events = deploy_manager.filter_objects_current_state(
        kind="Event", namespace=TEST_NAMESPACE, api_version="v1"
    )
    return events


def setup_manager(*cr_args, **cr_kwargs):
    """Make a cluster holding a single EchoResource and a manager over it"""
    deploy_manager = MockDeployManager(resources=[setup_cr(*cr_args, **cr_kwargs)])
    manager = ReconcileManager(deploy_manager=deploy_manager, manage_logging=False)
    return manager, deploy_manager


################################################################################
## Tests #######################################################################
################################################################################

##################
## Happy Path ##
##################


def test_reconcile_persists_status():
    """Make sure a reconcile that changes status writes it at the snapshot's
    resourceVersion
    """
    manager, dm = setup_manager(input_message="Hello from test-echo-resource")
    cr = get_cr(dm)
    result = manager.reconcile(EchoReconciler, cr)
    assert result == ReconciliationResult(requeue=False, status_updated=True)
    assert get_cr(dm)["status"] == {"echoMessage": "Hello from test-echo-resource"}
    dm.set_status.assert_called_once()
    assert (
        dm.set_status.call_args.kwargs["resource_version"]
        == cr["metadata"]["resourceVersion"]
    )
    assert dm.has_obj("Service", TEST_INSTANCE_NAME, TEST_NAMESPACE, "v1")


def test_reconcile_no_status_write_when_converged():
    """Make sure reconciling converged state skips the status write"""
    manager, dm = setup_manager(input_message="same")
    manager.reconcile(EchoReconciler, get_cr(dm))
    result = manager.reconcile(EchoReconciler, get_cr(dm))
    assert not result.requeue
    assert not result.status_updated
    assert dm.set_status.call_count == 1


def test_reconcile_with_instance():
    """Make sure a reconciler instance can be given instead of a class"""
    manager, dm = setup_manager()
    assert manager.reconcile(EchoReconciler(), get_cr(dm)).status_updated


def test_reconcile_paused():
    """Make sure a paused resource is not touched"""
    manager, dm = setup_manager(
        annotations={constants.PAUSE_ANNOTATION_NAME: "true"},
    )
    result = manager.reconcile(EchoReconciler, get_cr(dm))
    assert result == ReconciliationResult(requeue=False)
    assert "status" not in get_cr(dm)
    assert not dm.has_obj("Service", TEST_INSTANCE_NAME, TEST_NAMESPACE, "v1")


@pytest.mark.parametrize("stale_first", [True, False])
def test_convergence_with_stale_snapshots(stale_first):
    """Make sure that delivering an older snapshot around a newer one still
    converges on the status for the latest spec
    """
    manager, dm = setup_manager(input_message="first")
    stale = get_cr(dm)
    updated = copy.deepcopy(stale)
    updated["spec"]["inputMessage"] = "second"
    dm.deploy([updated])
    latest = get_cr(dm)

    snapshots = [stale, latest] if stale_first else [latest, stale]
    results = [manager.safe_reconcile(EchoReconciler, snap) for snap in snapshots]

    stale_result = results[0] if stale_first else results[1]
    assert stale_result.requeue
    assert isinstance(stale_result.exception, ConflictError)
    assert get_cr(dm)["status"] == {"echoMessage": "second"}

    # The requeue re-reads fresh state and settles
    result = manager.safe_reconcile(EchoReconciler, get_cr(dm))
    assert not result.requeue
    assert not result.status_updated
    assert get_cr(dm)["status"] == {"echoMessage": "second"}


###################
## Error Mapping ##
###################


def test_reconcile_stale_snapshot_raises_conflict():
    """Make sure a status write at an old resourceVersion raises"""
    manager, dm = setup_manager(input_message="one")
    stale = get_cr(dm)
    updated = copy.deepcopy(stale)
    updated["metadata"]["labels"] = {"bump": "version"}
    dm.deploy([updated])
    with pytest.raises(ConflictError):
        manager.reconcile(EchoReconciler, stale)
    assert "status" not in get_cr(dm)


def test_safe_reconcile_invalid_spec():
    """Make sure an invalid spec is not requeued and emits a Warning event"""
    manager, dm = setup_manager()
    cr = get_cr(dm)
    cr["spec"] = {"inputMessage": 42}
    result = manager.safe_reconcile(EchoReconciler, cr)
    assert not result.requeue
    assert isinstance(result.exception, InvalidSpecError)
    assert not dm.set_status.called

    events = get_events(dm)
    assert len(events) == 1
    assert events[0]["type"] == "Warning"
    assert events[0]["reason"] == constants.EVENT_REASON_INVALID_SPEC
    assert events[0]["involvedObject"]["name"] == TEST_INSTANCE_NAME
    assert events[0]["involvedObject"]["kind"] == "EchoResource"


def test_safe_reconcile_status_write_failure():
    """Make sure a failed status write is requeued after the configured delay"""
    manager, dm = setup_manager()
    dm.set_status.side_effect = lambda *_, **__: (False, False)
    result = manager.safe_reconcile(EchoReconciler, get_cr(dm))
    assert result.requeue
    assert isinstance(result.exception, ClusterError)
    assert result.requeue_params.requeue_after == timedelta(
        seconds=float(config.requeue_after_seconds)
    )
    assert [event["reason"] for event in get_events(dm)] == [
        constants.EVENT_REASON_RECONCILE_FAILED
    ]


def test_safe_reconcile_recovers_after_transient_failure():
    """Make sure a retry after a transient client failure converges"""
    # NOTE: The first lookup is the test fetching the CR, the second is the
    #   reconciler looking up the Service
    dm = MockDeployManager(
        resources=[setup_cr()], get_state_fail=FailOnce((False, None), fail_number=2)
    )
    manager = ReconcileManager(deploy_manager=dm, manage_logging=False)
    result = manager.safe_reconcile(EchoReconciler, get_cr(dm))
    assert result.requeue
    assert "status" not in get_cr(dm)

    result = manager.safe_reconcile(EchoReconciler, get_cr(dm))
    assert not result.requeue
    assert result.status_updated
    assert get_cr(dm)["status"] == {"echoMessage": "Hello from test-echo-resource"}


def test_safe_reconcile_dependent_failure_keeps_status():
    """Make sure a failed dependent create leaves the status unwritten"""
    manager, dm = setup_manager()
    cr = get_cr(dm)
    dm.get_object_current_state.side_effect = lambda *_, **__: (False, None)
    result = manager.safe_reconcile(EchoReconciler, cr)
    assert result.requeue
    assert isinstance(result.exception, ClusterError)
    assert not dm.set_status.called


def test_safe_reconcile_unexpected_error():
    """Make sure any other error is requeued"""
    manager, dm = setup_manager()
    with mock.patch.object(
        EchoReconciler, "reconcile", side_effect=RuntimeError("boom")
    ):
        result = manager.safe_reconcile(EchoReconciler, get_cr(dm))
    assert result.requeue
    assert isinstance(result.exception, RuntimeError)
    assert get_events(dm)[0]["message"] == "boom"


def test_safe_reconcile_no_events_when_disabled():
    """Make sure events are only emitted when enabled"""
    manager, dm = setup_manager()
    cr = get_cr(dm)
    cr["spec"] = {}
    with library_config(emit_events=False):
        result = manager.safe_reconcile(EchoReconciler, cr)
    assert isinstance(result.exception, InvalidSpecError)
    assert not get_events(dm)


def test_safe_reconcile_event_failure_does_not_mask_error():
    """Make sure a failure to create the event still returns the result"""
    manager, dm = setup_manager()
    cr = get_cr(dm)

    # The Service already exists so the only deploy is the event
    dm.get_object_current_state.side_effect = lambda *_, **__: (True, {})
    dm.set_status.side_effect = lambda *_, **__: (False, False)
    dm.deploy.side_effect = RuntimeError("no events for you")
    result = manager.safe_reconcile(EchoReconciler, cr)
    assert result.requeue
    assert isinstance(result.exception, ClusterError)
    assert dm.deploy.called


def test_safe_reconcile_fatal_error_not_requeued():
    """Make sure a fatal error stops the requeue loop and is reported"""
    manager, dm = setup_manager()
    with mock.patch.object(
        EchoReconciler, "reconcile", side_effect=ConfigError("bad config")
    ):
        result = manager.safe_reconcile(EchoReconciler, get_cr(dm))
    assert not result.requeue
    assert isinstance(result.exception, ConfigError)
    assert [event["reason"] for event in get_events(dm)] == [
        constants.EVENT_REASON_RECONCILE_FAILED
    ]


@pytest.mark.parametrize("section", ["kind", "metadata"])
def test_safe_reconcile_malformed_manifest_not_requeued(section):
    """Make sure a manifest missing a required section is not retried"""
    manager, dm = setup_manager()
    cr = dict(get_cr(dm))
    del cr[section]
    result = manager.safe_reconcile(EchoReconciler, cr)
    assert not result.requeue
    assert isinstance(result.exception, InvalidSpecError)
    assert not dm.set_status.called


##################
## Stages ##
##################


def test_requeue_params_default():
    assert RequeueParams().requeue_after == timedelta(
        seconds=float(config.requeue_after_seconds)
    )


def test_generate_id():
    """Make sure ids are 22 characters and unique"""
    ids = {ReconcileManager.generate_id() for _ in range(10)}
    assert len(ids) == 10
    assert all(len(reconcile_id) == 22 for reconcile_id in ids)


def test_setup_reconcilable_invalid():
    with pytest.raises(ConfigError):
        ReconcileManager.setup_reconcilable(dict)


def test_setup_deploy_manager_default():
    """Make sure a live client owned by the resource is built when none given"""
    cr = setup_cr()
    deploy_manager = ReconcileManager().setup_deploy_manager(cr)
    assert isinstance(deploy_manager, KubeDeployManager)


def test_configure_logging_annotations():
    """Make sure per-resource log annotations override the library config"""
    cr = setup_cr(
        annotations={
            constants.LOG_DEFAULT_LEVEL_NAME: "debug3",
            constants.LOG_FILTERS_NAME: "RECON:info",
            constants.LOG_JSON_NAME: "true",
            constants.LOG_THREAD_ID_NAME: "true",
        }
    )
    configure_mock = AlogConfigureMock()
    with mock.patch("alog.configure", configure_mock):
        ReconcileManager.configure_logging(cr, "some-id")
    assert configure_mock.kwargs["default_level"] == "debug3"
    assert configure_mock.kwargs["filters"] == "RECON:info"
    assert configure_mock.kwargs["thread_id"]
    formatter = configure_mock.kwargs["formatter"]
    assert isinstance(formatter, EchoJsonFormatter)
    assert formatter.reconciliation_id == "some-id"


def test_configure_logging_defaults():
    """Make sure the library config is used without annotations"""
    configure_mock = AlogConfigureMock()
    with mock.patch("alog.configure", configure_mock):
        ReconcileManager.configure_logging(setup_cr(), "some-id")
    assert configure_mock.kwargs["default_level"] == config.log_level
    assert configure_mock.kwargs["formatter"] == "pretty"


def test_reconcile_configures_logging():
    """Make sure logging is configured per reconcile when managed"""
    _, dm = setup_manager()
    manager = ReconcileManager(deploy_manager=dm)
    configure_mock = AlogConfigureMock()
    with mock.patch("alog.configure", configure_mock):
        manager.reconcile(EchoReconciler, get_cr(dm))
    assert configure_mock.kwargs is not None
