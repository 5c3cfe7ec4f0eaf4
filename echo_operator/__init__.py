"""
Package exports
"""

# Local
from . import config, reconcile, watch_manager
from .context import ReconcileContext
from .decorator import reconciler
from .deploy_manager import DeployManagerBase
from .exceptions import (
    ClusterError,
    ConflictError,
    EchoOperatorError,
    InvalidSpecError,
    TransientIOError,
    assert_cluster,
    assert_config,
    assert_spec,
)
from .reconcilable import Reconcilable, ReconcileResult
from .reconcile import ReconcileManager, ReconciliationResult, RequeueParams
from .resource import CustomResourceInstance, ResourceIdentity
