"""Bridge from the standard logging module to shipper log events."""

from __future__ import annotations

import logging

from .lifecycle import LifecycleCoordinator


class BananasHandler(logging.Handler):
    """
    Logging handler that turns log records into generic log events.

    Tags are ``["log", <level>, <logger name>]``; the formatted message is
    the event data, and ``exc_info`` (if any) becomes the event error.

    Usage:
        logging.getLogger("myapp").addHandler(BananasHandler(coordinator))
    """

    def __init__(self, coordinator: LifecycleCoordinator, level: int = logging.NOTSET):
        super().__init__(level)
        self.coordinator = coordinator

    def emit(self, record: logging.LogRecord) -> None:
        # Our own logs would feed back into the buffer
        if record.name == "bananas" or record.name.startswith("bananas."):
            return

        try:
            message = self.format(record)
            error = record.exc_info[1] if record.exc_info else None
            self.coordinator.log(
                ["log", record.levelname.lower(), record.name],
                data=message,
                error=error,
            )
        except Exception:
            self.handleError(record)
