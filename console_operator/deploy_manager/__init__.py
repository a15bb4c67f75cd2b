"""
The DeployManager is the abstraction that wraps all cluster access
"""

# Local
from .apply import apply_resource, delete_resource, requires_update
from .base import DeployManagerBase
from .dry_run_deploy_manager import DryRunDeployManager
from .kube_event import KubeEventType, KubeWatchEvent
from .openshift_deploy_manager import OpenshiftDeployManager
