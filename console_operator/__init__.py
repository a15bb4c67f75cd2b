"""
Package exports
"""

# Local
from . import config, constants, status
from .controller import Context, Controller, ControllerBuilder, Informer
from .deploy_manager import DeployManagerBase, DryRunDeployManager
from .exceptions import ErrorKind, assert_cluster, assert_config
from .starter import OperatorStarter
from .sync import ConsoleOperator, ManagementState
