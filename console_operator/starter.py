"""
The starter wires every informer and controller of the operator together and
runs them under one root context. Cancelling the root context shuts everything
down.
"""

# Standard
from typing import Dict, List, Optional

# First Party
import alog

# Local
from . import config, constants
from .controller import (
    Context,
    Controller,
    ControllerBuilder,
    Informer,
    InformerWithSwitch,
    NamesFilter,
)
from .controllers import (
    HealthCheckController,
    OAuthClientsController,
    OIDCSetupController,
    RouteController,
    ServiceController,
)
from .deploy_manager import DeployManagerBase
from .sync import ConsoleOperator

log = alog.use_channel("STARTER")

## Names #######################################################################

# The config maps in the console namespace that any sync reads
CONSOLE_CONFIG_MAPS = [
    constants.CONSOLE_CONFIG_MAP_NAME,
    constants.SERVICE_CA_CONFIG_MAP_NAME,
    constants.TRUSTED_CA_CONFIG_MAP_NAME,
    constants.CUSTOM_LOGO_CONFIG_MAP_NAME,
]
MANAGED_CONFIG_MAPS = [
    constants.OAUTH_SERVING_CERT_CONFIG_MAP_NAME,
    constants.DEFAULT_INGRESS_CERT_CONFIG_MAP_NAME,
    constants.CONSOLE_PUBLIC_CONFIG_MAP_NAME,
]
CONSOLE_SECRETS = [
    constants.OAUTH_CLIENT_SECRET_NAME,
    constants.SESSION_SECRET_NAME,
]


class OperatorStarter:
    """Owns the informers and controllers for one run of the operator"""

    def __init__(self, deploy_manager: DeployManagerBase, ctx: Optional[Context] = None):
        self.deploy_manager = deploy_manager
        self.ctx = ctx or Context("console-operator")
        self.informers: Dict[str, Informer] = self._build_informers()
        self.switch = InformerWithSwitch(
            deploy_manager,
            self.ctx,
            self.informers["authentication"],
            resync_period=config.controller.resync_period,
        )
        self.controllers: List[Controller] = self._build_controllers()

    ## Public Interface ########################################################

    def start(self):
        """Start every informer, then every controller. Controllers wait for
        their caches to sync before doing any work.
        """
        log.info("Starting %d informers", len(self.informers))
        for informer in self.informers.values():
            informer.start(self.ctx)
        self.switch.start(self.ctx)
        log.info("Starting %d controllers", len(self.controllers))
        for controller in self.controllers:
            controller.start(self.ctx)

    def stop(self):
        log.info("Stopping the operator")
        self.ctx.cancel()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the operator is stopped"""
        return self.ctx.wait(timeout)

    ## Implementation Details ##################################################

    def _build_informers(self) -> Dict[str, Informer]:
        deploy_manager = self.deploy_manager

        def _informer(kind, api_version, namespace=None, name=None):
            return Informer(
                deploy_manager,
                kind=kind,
                api_version=api_version,
                namespace=namespace,
                name=name,
            )

        return {
            "operator_config": _informer(
                constants.OPERATOR_CONFIG_KIND,
                constants.OPERATOR_CONFIG_API_VERSION,
                name=constants.CONFIG_RESOURCE_NAME,
            ),
            "console_config": _informer(
                constants.CONSOLE_CONFIG_KIND,
                constants.CONSOLE_CONFIG_API_VERSION,
                name=constants.CONFIG_RESOURCE_NAME,
            ),
            "authentication": _informer(
                constants.AUTHENTICATION_KIND,
                constants.AUTHENTICATION_API_VERSION,
                name=constants.CONFIG_RESOURCE_NAME,
            ),
            "ingress": _informer(
                constants.INGRESS_KIND,
                constants.INGRESS_API_VERSION,
                name=constants.CONFIG_RESOURCE_NAME,
            ),
            "config_maps": _informer(
                constants.CONFIG_MAP_KIND,
                constants.CORE_API_VERSION,
                namespace=constants.TARGET_NAMESPACE,
            ),
            "managed_config_maps": _informer(
                constants.CONFIG_MAP_KIND,
                constants.CORE_API_VERSION,
                namespace=constants.OPENSHIFT_CONFIG_MANAGED_NAMESPACE,
            ),
            "user_config_maps": _informer(
                constants.CONFIG_MAP_KIND,
                constants.CORE_API_VERSION,
                namespace=constants.OPENSHIFT_CONFIG_NAMESPACE,
            ),
            "secrets": _informer(
                constants.SECRET_KIND,
                constants.CORE_API_VERSION,
                namespace=constants.TARGET_NAMESPACE,
            ),
            "user_secrets": _informer(
                constants.SECRET_KIND,
                constants.CORE_API_VERSION,
                namespace=constants.OPENSHIFT_CONFIG_NAMESPACE,
            ),
            "deployments": _informer(
                constants.DEPLOYMENT_KIND,
                constants.DEPLOYMENT_API_VERSION,
                namespace=constants.TARGET_NAMESPACE,
            ),
            "routes": _informer(
                constants.ROUTE_KIND,
                constants.ROUTE_API_VERSION,
                namespace=constants.TARGET_NAMESPACE,
            ),
            "services": _informer(
                constants.SERVICE_KIND,
                constants.CORE_API_VERSION,
                namespace=constants.TARGET_NAMESPACE,
            ),
        }

    def _build_controllers(self) -> List[Controller]:
        informers = self.informers
        deploy_manager = self.deploy_manager
        resync = config.controller.resync_period
        console_name = NamesFilter([constants.OPENSHIFT_CONSOLE_NAME])
        oauth_clients = self.switch.informer()

        console_operator = (
            ControllerBuilder()
            .with_informers(
                informers["operator_config"],
                informers["console_config"],
                informers["authentication"],
                informers["user_config_maps"],
                oauth_clients,
            )
            .with_filtered_event_informers(
                NamesFilter(CONSOLE_CONFIG_MAPS), informers["config_maps"]
            )
            .with_filtered_event_informers(
                NamesFilter(MANAGED_CONFIG_MAPS), informers["managed_config_maps"]
            )
            .with_filtered_event_informers(
                NamesFilter(CONSOLE_SECRETS), informers["secrets"]
            )
            .with_filtered_event_informers(
                console_name, informers["deployments"], informers["routes"]
            )
            .with_sync(ConsoleOperator(deploy_manager).sync)
            .resync_every(resync)
            .to_controller("ConsoleOperator")
        )

        route_controller = (
            ControllerBuilder()
            .with_informers(informers["operator_config"], informers["ingress"])
            .with_filtered_event_informers(console_name, informers["routes"])
            .with_sync(RouteController(deploy_manager).sync)
            .resync_every(resync)
            .to_controller("ConsoleRouteController")
        )

        service_controller = (
            ControllerBuilder()
            .with_informers(informers["operator_config"])
            .with_filtered_event_informers(console_name, informers["services"])
            .with_sync(ServiceController(deploy_manager).sync)
            .resync_every(resync)
            .to_controller("ConsoleServiceController")
        )

        health_check = (
            ControllerBuilder()
            .with_informers(informers["operator_config"])
            .with_filtered_event_informers(console_name, informers["routes"])
            .with_sync(HealthCheckController(deploy_manager).sync)
            .resync_every(resync)
            .to_controller("HealthCheckController")
        )

        oidc_setup = (
            ControllerBuilder()
            .with_informers(
                informers["operator_config"],
                informers["authentication"],
                informers["user_secrets"],
            )
            .with_filtered_event_informers(
                NamesFilter([constants.OAUTH_CLIENT_SECRET_NAME]), informers["secrets"]
            )
            .with_filtered_event_informers(console_name, informers["deployments"])
            .with_sync(OIDCSetupController(deploy_manager).sync)
            .resync_every(resync)
            .to_controller("OIDCSetupController")
        )

        oauth_clients_controller = (
            ControllerBuilder()
            .with_informers(
                informers["operator_config"],
                informers["authentication"],
                oauth_clients,
            )
            .with_filtered_event_informers(
                NamesFilter([constants.OAUTH_CLIENT_SECRET_NAME]), informers["secrets"]
            )
            .with_filtered_event_informers(console_name, informers["routes"])
            .with_sync(OAuthClientsController(deploy_manager).sync)
            .resync_every(resync)
            .to_controller("OAuthClientsController")
        )

        return [
            console_operator,
            route_controller,
            service_controller,
            health_check,
            oidc_setup,
            oauth_clients_controller,
        ]
