"""
Controller that checks the console is reachable through its route
"""

# Standard
from typing import Callable, Optional

# Third Party
import urllib3

# First Party
import alog

# Local
from .. import config, constants
from ..deploy_manager import DeployManagerBase
from ..exceptions import ConsoleOperatorError, ReasonedError, assert_cluster
from ..status import (
    StatusHandler,
    handle_available,
    handle_degraded,
    handle_progressing_or_degraded,
)
from ..sync import is_managed, resources

log = alog.use_channel("HEALTH")

CONTROLLER_NAME = "HealthCheckController"

HEALTH_PATH = "/health"

PoolFactory = Callable[..., urllib3.PoolManager]


class HealthCheckController:
    """Reports RouteHealth conditions from a GET of the console's health
    endpoint
    """

    def __init__(
        self,
        deploy_manager: DeployManagerBase,
        pool_factory: PoolFactory = urllib3.PoolManager,
    ):
        """
        Args:
            deploy_manager:  DeployManagerBase
                Cluster access for the route and CA bundles
            pool_factory:  PoolFactory
                Builds the connection pool used for the check
        """
        self.deploy_manager = deploy_manager
        self.pool_factory = pool_factory

    def sync(self, _=None) -> Optional[BaseException]:
        try:
            if not is_managed(self.deploy_manager):
                return None
        except ConsoleOperatorError as err:
            return err

        status_handler = StatusHandler(self.deploy_manager)
        try:
            route = self._get_route()
        except ConsoleOperatorError as err:
            status_handler.add_conditions(
                handle_progressing_or_degraded("RouteHealth", "FailedRouteGet", err)
            )
            return status_handler.flush_and_return(err)

        err = None
        try:
            self.check_route_health(route)
        except ConsoleOperatorError as check_err:
            log.debug("Route health check failed: %s", check_err)
            err = check_err
        status_handler.add_conditions(
            [
                handle_degraded("RouteHealth", "FailedHealthCheck", err),
                handle_available("RouteHealth", "FailedHealthCheck", err),
            ]
        )
        return status_handler.flush_and_return(err)

    def check_route_health(self, route: dict):
        """GET the health endpoint through the route

        Raises:
            ReasonedError: The route is not healthy
        """
        url = resources.admitted_ingress_url(route)
        if url is None:
            raise ReasonedError("RouteNotAdmitted", "console route is not admitted")

        try:
            ca_data = self._load_ca()
        except ConsoleOperatorError as err:
            raise ReasonedError(
                "FailedLoadCA", f"failed to read CA to check route health: {err}"
            ) from err

        health_url = url + HEALTH_PATH
        http = self.pool_factory(
            cert_reqs="CERT_REQUIRED",
            ca_cert_data=ca_data,
            timeout=urllib3.Timeout(total=config.health_check.timeout_seconds),
            retries=urllib3.Retry(
                total=config.health_check.retries,
                backoff_factor=config.health_check.retry_delay_seconds,
                status_forcelist=[500, 502, 503, 504],
                raise_on_status=False,
            ),
        )
        try:
            response = http.request("GET", health_url)
        except urllib3.exceptions.HTTPError as err:
            raise ReasonedError(
                "FailedGet", f"failed to GET route ({health_url}): {err}"
            ) from err
        finally:
            # The CA bundles can rotate between checks, so pools are not reused
            http.clear()

        if response.status != 200:
            raise ReasonedError(
                "StatusError",
                f"route not yet available, {health_url} returns '{response.status}'",
            )
        log.debug2("Route %s is healthy", health_url)

    ## Implementation Details ##################################################

    def _get_route(self) -> dict:
        success, route = self.deploy_manager.get_object_current_state(
            kind=constants.ROUTE_KIND,
            name=constants.OPENSHIFT_CONSOLE_NAME,
            namespace=constants.TARGET_NAMESPACE,
            api_version=constants.ROUTE_API_VERSION,
        )
        assert_cluster(
            success and route is not None,
            f"route {constants.OPENSHIFT_CONSOLE_NAME} not found",
            reason="FailedRouteGet",
        )
        return route

    def _load_ca(self) -> str:
        """Concatenate the trusted CA bundle with the default ingress cert"""
        bundles = []
        for name, namespace in [
            (constants.TRUSTED_CA_CONFIG_MAP_NAME, constants.TARGET_NAMESPACE),
            (
                constants.DEFAULT_INGRESS_CERT_CONFIG_MAP_NAME,
                constants.OPENSHIFT_CONFIG_MANAGED_NAMESPACE,
            ),
        ]:
            success, config_map = self.deploy_manager.get_object_current_state(
                kind=constants.CONFIG_MAP_KIND,
                name=name,
                namespace=namespace,
                api_version=constants.CORE_API_VERSION,
            )
            assert_cluster(
                success and config_map is not None,
                f"configmap {name} not found in {namespace}",
                reason="FailedGet",
            )
            bundle = (config_map.get("data") or {}).get(constants.CA_BUNDLE_KEY)
            assert_cluster(
                bool(bundle),
                f"configmap {name} has no {constants.CA_BUNDLE_KEY}",
                reason="FailedGet",
            )
            bundles.append(bundle.strip())
        return "\n".join(bundles) + "\n"
