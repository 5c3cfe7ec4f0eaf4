"""
Tests for the WatchManagerBase base class
"""

# Standard
import threading
import time

# Third Party
import pytest

# Local
from echo_operator import watch_manager
from echo_operator.echo import EchoReconciler
from echo_operator.exceptions import ConfigError
from echo_operator.watch_manager.base import WatchManagerBase

## Helpers #####################################################################


class DummyWatchManager(WatchManagerBase):
    def __init__(
        self,
        reconcilable_type,
        watch_success=True,
        stop_wait=0.0,
    ):
        super().__init__(reconcilable_type)
        self.watching = False
        self.watch_success = watch_success
        self.stop_wait = stop_wait

    def watch(self):
        if self.watch_success:
            self.watching = True
            return True
        return False

    def wait(self):
        while self.watching:
            time.sleep(0.05)

    def stop(self):
        if self.stop_wait:
            threading.Thread(target=self._delayed_stop).start()
        else:
            self.watching = False

    def _delayed_stop(self):
        time.sleep(self.stop_wait)
        self.watching = False


class WidgetReconciler(EchoReconciler):
    group = "asdf.qwer"
    version = "v1"
    kind = "Widget"


## Tests #######################################################################


def test_constructor_properties():
    """The reconciler's group/version/kind are set on the watch manager"""
    wm = DummyWatchManager(EchoReconciler)
    assert wm.reconcilable_type == EchoReconciler
    assert wm.group == EchoReconciler.group
    assert wm.version == EchoReconciler.version
    assert wm.kind == EchoReconciler.kind
    assert wm.api_version == "echo.example.com/v1alpha1"
    assert str(wm) == "Watch[echo.example.com/v1alpha1/EchoResource]"


def test_constructor_registrations():
    """All constructed watch managers get registered in key order"""
    wm1 = DummyWatchManager(EchoReconciler)
    wm2 = DummyWatchManager(WidgetReconciler)
    assert wm2.key == ("asdf.qwer", "v1", "Widget")
    assert WatchManagerBase.registry.managers() == [wm2, wm1]
    WatchManagerBase.registry.clear()
    assert not WatchManagerBase.registry.managers()


def test_constructor_no_duplicate_watches():
    """Only one watch may exist per group/version/kind"""
    DummyWatchManager(EchoReconciler)
    with pytest.raises(ConfigError):
        DummyWatchManager(EchoReconciler)


def test_start_stop_all_blocking():
    """start_all blocks until stop_all stops every manager"""
    wm1 = DummyWatchManager(EchoReconciler)
    wm2 = DummyWatchManager(WidgetReconciler, stop_wait=0.1)

    # Run start_all in a thread so that we can stop it
    thrd = threading.Thread(target=watch_manager.start_all)
    thrd.start()
    time.sleep(0.1)

    assert wm1.watching
    assert wm2.watching
    assert thrd.is_alive()

    watch_manager.stop_all()
    assert not wm1.watching
    assert not wm2.watching
    thrd.join(1)
    assert not thrd.is_alive()


def test_start_all_failure():
    """When one manager fails to start, the started ones are shut down"""
    # NOTE: asdf.qwer sorts before echo.example.com so the failing one starts
    #   second
    wm1 = DummyWatchManager(EchoReconciler, watch_success=False)
    wm2 = DummyWatchManager(WidgetReconciler)

    assert not watch_manager.start_all()
    assert not wm1.watching
    assert not wm2.watching


def test_stop_all_continues_after_failure():
    """A manager that fails to stop does not keep the others running"""
    wm1 = DummyWatchManager(EchoReconciler)
    wm2 = DummyWatchManager(WidgetReconciler)
    wm1.watch()
    wm2.watch()

    def bad_stop():
        raise RuntimeError("Yikes")

    wm1.stop = bad_stop
    wm1.watching = False
    watch_manager.stop_all()
    assert not wm2.watching
