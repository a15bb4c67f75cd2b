"""
This is the main entrypoint command for running the operator
"""
# Standard
from typing import List, Optional
import argparse
import os
import signal

# Third Party
import yaml

# First Party
import alog

# Local
from .. import config
from ..deploy_manager import DeployManagerBase, DryRunDeployManager, OpenshiftDeployManager
from ..starter import OperatorStarter
from .base import CmdBase

log = alog.use_channel("MAIN")


class RunOperatorCmd(CmdBase):
    __doc__ = __doc__

    ## Interface ##

    def add_subparser(
        self,
        subparsers: argparse._SubParsersAction,
    ) -> argparse.ArgumentParser:
        parser = subparsers.add_parser("run", help=__doc__)
        runtime_args = parser.add_argument_group("Runtime Configuration")
        runtime_args.add_argument(
            "--resource_dir",
            "-r",
            default=None,
            help="(dry run) Path to a directory of yaml files that should exist in the cluster",
        )
        runtime_args.add_argument(
            "--run_seconds",
            "-s",
            type=float,
            default=None,
            help="Stop the operator after this many seconds instead of running until interrupted",
        )
        return parser

    def cmd(self, args: argparse.Namespace) -> OperatorStarter:
        # Validate args
        assert args.resource_dir is None or (
            config.dry_run and os.path.isdir(args.resource_dir)
        ), "Can only specify --resource_dir with dry run and it must point to a valid directory"

        # Parse pre-populated resources if needed
        resources = self._parse_resource_dir(args.resource_dir)
        deploy_manager = self._setup_deploy_manager(resources)
        starter = OperatorStarter(deploy_manager)

        # Register the signal handler to stop the operator
        def do_stop(*_, **__):  # pragma: no cover
            starter.stop()

        signal.signal(signal.SIGINT, do_stop)

        log.info("Starting the console operator")
        starter.start()
        starter.wait(args.run_seconds)
        starter.stop()

        # All done!
        log.info("SHUTTING DOWN")
        return starter

    ## Impl ##

    @staticmethod
    def _parse_resource_dir(resource_dir: Optional[str]) -> List[dict]:
        """If given, this will parse all yaml files found in the given directory"""
        all_resources = []
        if resource_dir is not None:
            for fname in sorted(os.listdir(resource_dir)):
                if fname.endswith(".yaml") or fname.endswith(".yml"):
                    resource_path = os.path.join(resource_dir, fname)
                    log.debug3("Reading resource file [%s]", resource_path)
                    with open(resource_path, encoding="utf-8") as handle:
                        all_resources.extend(
                            resource for resource in yaml.safe_load_all(handle) if resource
                        )
        return all_resources

    @staticmethod
    def _setup_deploy_manager(resources: List[dict]) -> DeployManagerBase:
        if config.dry_run:
            log.info("Running DRY RUN")
            return DryRunDeployManager(resources=resources)
        log.info("Running against the cluster")  # pragma: no cover
        return OpenshiftDeployManager(field_manager=config.field_manager)  # pragma: no cover
