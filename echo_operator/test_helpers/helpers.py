"""
This module holds common helper functions for making testing easy
"""

# Standard
from contextlib import contextmanager
from unittest import mock
import inspect
import os
import uuid

# First Party
import aconfig
import alog

# Local
from echo_operator.cmd.run_operator_cmd import RunOperatorCmd
from echo_operator.config import library_config as config_detail_dict
from echo_operator.context import ReconcileContext
from echo_operator.deploy_manager.dry_run_deploy_manager import DryRunDeployManager
from echo_operator.echo import make_echo_resource

log = alog.use_channel("TEST")


def configure_logging():
    alog.configure(
        os.environ.get("LOG_LEVEL", "off"),
        os.environ.get("LOG_FILTERS", ""),
        formatter="json"
        if os.environ.get("LOG_JSON", "").lower() == "true"
        else "pretty",
        thread_id=os.environ.get("LOG_THREAD_ID", "").lower() == "true",
    )


configure_logging()

TEST_INSTANCE_NAME = "test-echo-resource"
TEST_INSTANCE_UID = "12345678-1234-1234-1234-123456789012"
TEST_NAMESPACE = "test"
SOME_OTHER_NAMESPACE = "somewhere"


def setup_cr(
    input_message="Hello from test-echo-resource",
    echo_message=None,
    name=TEST_INSTANCE_NAME,
    namespace=TEST_NAMESPACE,
    uid=TEST_INSTANCE_UID,
    **metadata,
) -> aconfig.Config:
    """Build an EchoResource manifest. The status is only set when echo_message
    is given.
    """
    cr_dict = make_echo_resource(
        name=name,
        namespace=namespace,
        input_message=input_message,
        echo_message=echo_message,
        uid=uid,
        **metadata,
    )
    return aconfig.Config(cr_dict, override_env_vars=False)


def setup_context(deploy_manager=None, config=None, **kwargs) -> ReconcileContext:
    """Build a ReconcileContext around a MockDeployManager"""
    return ReconcileContext(
        reconciliation_id=str(uuid.uuid4()),
        client=deploy_manager or MockDeployManager(**kwargs),
        config=config if config is not None else config_detail_dict,
    )


@contextmanager
def library_config(**config_overrides):
    """This context manager sets library config values temporarily and reverts
    them on completion
    """
    # Override the configs and hang onto the old values
    old_vals = {}
    for key, val in config_overrides.items():
        if key in config_detail_dict:
            old_vals[key] = config_detail_dict[key]
        config_detail_dict[key] = val

    # Yield to the context
    try:
        yield
    finally:
        # Revert to the old values
        for key in config_overrides:
            if key in old_vals:
                config_detail_dict[key] = old_vals[key]
            else:
                del config_detail_dict[key]


def get_failable_method(fail_flag, method, failure_return=False):
    log.debug4(
        "Setting up failable mock of [%s] with fail flag: %s", str(method), fail_flag
    )

    def failable_method(*args, **kwargs):
        log.debug4(
            "Running failable mock of [%s] with fail flag: %s", str(method), fail_flag
        )
        if isinstance(fail_flag, Exception) or (
            inspect.isclass(fail_flag) and issubclass(fail_flag, Exception)
        ):
            log.debug4("Raising in failable mock")
            raise fail_flag
        if callable(fail_flag):
            log.debug4("Calling callable fail flag")
            res = fail_flag()
            if res is not None:
                return res
        elif fail_flag == "assert":
            log.debug4("Asserting in failable mock")
            raise AssertionError(f"You told me to fail {method}!")
        elif fail_flag:
            log.debug4("Returning %s", failure_return)
            return failure_return
        log.debug4("Passing through (%s, **%s)", args, kwargs)
        res = method(*args, **kwargs)
        log.debug4("Passthrough res: %s", res)
        return res

    return failable_method


class FailOnce:
    """Helper callable that will fail once on the N'th call"""

    def __init__(self, fail_val, fail_number=1):
        self.call_count = 0
        self.fail_number = fail_number
        self.fail_val = fail_val

    def __call__(self, *_, **__):
        self.call_count += 1
        if self.call_count == self.fail_number:
            log.debug("Failing on call %d with %s", self.call_count, self.fail_val)
            if isinstance(self.fail_val, type) and issubclass(self.fail_val, Exception):
                raise self.fail_val("Raising!")
            return self.fail_val
        log.debug("Not failing on call %d", self.call_count)
        return None


class MockDeployManager(DryRunDeployManager):
    """The MockDeployManager wraps a standard DryRunDeployManager and adds
    configuration options to simulate failures in each of its operations.
    """

    def __init__(  # pylint: disable=too-many-arguments,too-many-locals
        self,
        deploy_fail=False,
        deploy_raise=False,
        disable_fail=False,
        disable_raise=False,
        get_state_fail=False,
        get_state_raise=False,
        filter_fail=False,
        filter_raise=False,
        set_status_fail=False,
        set_status_raise=False,
        auto_enable=True,
        resources=None,
        resource_dir=None,
        **kwargs,
    ):
        """This DeployManager can be configured to have various failure cases
        and will mock the state of the cluster so that get_object_current_state
        will pull its information from the local dict.
        """
        resources = list(resources or [])
        resources = resources + RunOperatorCmd._parse_resource_dir(resource_dir)
        for resource in resources:
            resource.setdefault("apiVersion", "v1")
        super().__init__(resources, **kwargs)

        self.deploy_fail = "assert" if deploy_raise else deploy_fail
        self.disable_fail = "assert" if disable_raise else disable_fail
        self.get_state_fail = "assert" if get_state_raise else get_state_fail
        self.filter_fail = "assert" if filter_raise else filter_fail
        self.set_status_fail = "assert" if set_status_raise else set_status_fail

        # If auto-enabling, turn the mocks on now
        if auto_enable:
            self.enable_mocks()

    #######################
    ## Helpers for Tests ##
    #######################

    def enable_mocks(self):
        """Turn the mocks on"""
        self.deploy = mock.Mock(
            side_effect=get_failable_method(
                self.deploy_fail, super().deploy, (False, False)
            )
        )
        self.disable = mock.Mock(
            side_effect=get_failable_method(
                self.disable_fail, super().disable, (False, False)
            )
        )
        self.get_object_current_state = mock.Mock(
            side_effect=get_failable_method(
                self.get_state_fail, super().get_object_current_state, (False, None)
            )
        )
        self.filter_objects_current_state = mock.Mock(
            side_effect=get_failable_method(
                self.filter_fail, super().filter_objects_current_state, (False, [])
            )
        )
        self.set_status = mock.Mock(
            side_effect=get_failable_method(
                self.set_status_fail, super().set_status, (False, False)
            )
        )

    def get_obj(self, kind, name, namespace=None, api_version=None):
        return self.get_object_current_state(kind, name, namespace, api_version)[1]

    def has_obj(self, *args, **kwargs):
        return self.get_obj(*args, **kwargs) is not None
