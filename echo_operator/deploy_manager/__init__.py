"""
The DeployManager is the abstraction in charge of interacting with the
kubernetes cluster to create, look up, update status, watch and delete
resources.
"""

# Local
from .base import DeployManagerBase
from .dry_run_deploy_manager import DryRunDeployManager
from .kube_deploy_manager import KubeDeployManager
from .kube_event import KubeEventType, KubeWatchEvent
