"""
The event driven controller machinery: informers feeding a rate limited work
queue that is drained by a single worker per controller
"""

# Local
from .context import Context
from .controller import Controller, ControllerBuilder, SyncContext
from .filters import AndFilter, EnableFilter, Filter, LabelFilter, NamesFilter, NamespacesFilter
from .informer import Informer
from .queue import RateLimitingQueue
from .timer import TimerThread
from .watch_switch import InformerWithSwitch, WatchSwitchState
