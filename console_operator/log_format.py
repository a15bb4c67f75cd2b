"""
Custom logging format that adds controller context to json logs
"""

# First Party
from alog import AlogJsonFormatter


class ConsoleOperatorJsonFormatter(AlogJsonFormatter):
    """Extends AlogJsonFormatter with the thread, the controller and the queue
    key of the sync that emitted the record
    """

    _FIELDS_TO_PRINT = AlogJsonFormatter._FIELDS_TO_PRINT + [
        "process",
        "thread",
        "threadName",
        "controller",
        "queueKey",
    ]

    def __init__(self, controller_name=None):
        super().__init__()
        self.controller_name = controller_name

    def format(self, record):
        controller_name = getattr(record, "controller", self.controller_name)
        if controller_name:
            record.controller = controller_name
            record.queueKey = getattr(record, "queue_key", None)
        return super().format(record)
