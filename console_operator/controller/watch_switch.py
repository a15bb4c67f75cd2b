"""
The InformerWithSwitch turns the OAuthClient watch on and off at runtime. When
the cluster authentication is handed to an external OIDC provider the
OAuthClient API goes away, so the watch has to stop instead of failing forever.

The switch moves between two states:

    STOPPED --ensure_running--> RUNNING --stop--> STOPPED

Transitions are only made by the switch controller's sync, which runs on a
single worker thread, so the state itself is not locked.
"""

# Standard
from enum import Enum
from typing import Optional

# First Party
import alog

# Local
from .. import constants
from ..deploy_manager import DeployManagerBase
from ..exceptions import ClusterError, ReasonedError
from ..utils import nested_get
from .base import ThreadBase
from .context import Context
from .controller import ControllerBuilder, ControllerThread, SyncContext
from .informer import Informer, InformerThread

log = alog.use_channel("SWITCH")

SWITCH_CONTROLLER_NAME = "InformerWithSwitchController"


class WatchSwitchState(Enum):
    """The state of the switched watch"""

    STOPPED = "Stopped"
    RUNNING = "Running"


class AlwaysSyncedInformer:
    """Facade over the switched informer for controllers that consume it. A
    stopped watch can never sync, so it reports itself as synced to keep
    controllers waiting on their caches from hanging.
    """

    def __init__(self, switch: "InformerWithSwitch"):
        self._switch = switch

    def has_synced(self) -> bool:
        if self._switch.state is WatchSwitchState.RUNNING:
            return self._switch.wrapped_informer.has_synced()
        return True

    def is_stopped(self) -> bool:
        return self._switch.state is WatchSwitchState.STOPPED

    def add_event_handler(self, handler):
        self._switch.wrapped_informer.add_event_handler(handler)

    def get(self, name: str, namespace: Optional[str] = None) -> Optional[dict]:
        return self._switch.wrapped_informer.get(name, namespace)

    def list(self):
        return self._switch.wrapped_informer.list()


class InformerWithSwitch:
    """OAuthClient informer whose watch is started and stopped based on the
    cluster authentication type
    """

    def __init__(
        self,
        deploy_manager: DeployManagerBase,
        parent_ctx: Context,
        authn_informer: Informer,
        resync_period: Optional[str] = None,
    ):
        """
        Args:
            deploy_manager:  DeployManagerBase
                Cluster access used by the wrapped informer
            parent_ctx:  Context
                The stable context that every run context is derived from
            authn_informer:  Informer
                Informer over the cluster Authentication config
            resync_period:  Optional[str]
                Period of the switch controller's resync
        """
        self.parent_ctx = parent_ctx
        self.authn_informer = authn_informer
        self.wrapped_informer = Informer(
            deploy_manager,
            kind=constants.OAUTH_CLIENT_KIND,
            api_version=constants.OAUTH_CLIENT_API_VERSION,
            field_selector=constants.CONSOLE_NAME_FIELD_SELECTOR,
        )
        self.state = WatchSwitchState.STOPPED
        self.run_ctx: Optional[Context] = None
        self._informer_thread: Optional[InformerThread] = None
        self._controller_thread: Optional[ControllerThread] = None

        builder = ControllerBuilder().with_sync(self.sync).with_informers(authn_informer)
        if resync_period:
            builder = builder.resync_every(resync_period)
        self.switch_controller = builder.to_controller(SWITCH_CONTROLLER_NAME)

    ## Public Interface ########################################################

    def informer(self) -> AlwaysSyncedInformer:
        return AlwaysSyncedInformer(self)

    def start(self, ctx: Optional[Context] = None) -> ControllerThread:
        """Run the switch controller. The watch is stopped once the given
        context (or the parent context) is done.
        """
        stop_ctx = ctx or self.parent_ctx
        self._controller_thread = self.switch_controller.start(stop_ctx)
        _SwitchStopper(self, stop_ctx).start_thread()
        return self._controller_thread

    def ensure_running(self):
        """Start the watch unless it is already running"""
        if self.state is WatchSwitchState.RUNNING:
            return
        log.debug("Starting the OAuthClient watch")
        self.run_ctx = self.parent_ctx.child("oauth-client-watch")
        self._informer_thread = self.wrapped_informer.start(self.run_ctx)
        self.state = WatchSwitchState.RUNNING

    def stop(self):
        """Stop the watch unless it is already stopped"""
        if self.state is WatchSwitchState.STOPPED:
            return
        log.debug("Stopping the OAuthClient watch")
        self.run_ctx.cancel()
        self.run_ctx = None
        self._informer_thread = None
        self.state = WatchSwitchState.STOPPED

    def sync(self, _: Optional[SyncContext] = None) -> Optional[Exception]:
        """Start or stop the watch for the current authentication type"""
        authn = self.authn_informer.get(constants.CONFIG_RESOURCE_NAME)
        if authn is None:
            return ClusterError(
                f"{constants.AUTHENTICATION_KIND} {constants.CONFIG_RESOURCE_NAME} not found",
                reason="FailedGet",
            )

        auth_type = nested_get(authn, "spec.type", "") or ""
        # The internal OAuth server keeps running with auth type None
        if auth_type in (
            "",
            constants.AUTH_TYPE_INTEGRATED_OAUTH,
            constants.AUTH_TYPE_NONE,
        ):
            log.debug4("Authentication type '%s', starting watch", auth_type)
            self.ensure_running()
        elif auth_type == constants.AUTH_TYPE_OIDC:
            log.debug4("Authentication type '%s', stopping watch", auth_type)
            self.stop()
        else:
            return ReasonedError(
                "UnsupportedType", f"unexpected authentication type: {auth_type}"
            )
        return None


class _SwitchStopper(ThreadBase):
    """Stops the switched watch once the owning context is done"""

    def __init__(self, switch: InformerWithSwitch, ctx: Context):
        super().__init__(name="informer_switch_stopper", daemon=True)
        self.switch = switch
        self.owner_ctx = ctx

    def run(self):
        self.owner_ctx.wait()
        self.switch.stop()
