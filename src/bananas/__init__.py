"""bananas - buffered Loggly telemetry shipper for FastAPI services."""

from .buffer import BatchBuffer
from .config import BananasConfig, ConfigError
from .handler import BananasHandler
from .lifecycle import Host, LifecycleCoordinator
from .records import EventKind, Record, RequestContext, build_record, normalize_error
from .scheduler import FlushScheduler, SchedulerState
from .sender import HttpSender, TransportSender

__all__ = [
    "BananasConfig",
    "ConfigError",
    "BatchBuffer",
    "BananasHandler",
    "EventKind",
    "FlushScheduler",
    "Host",
    "HttpSender",
    "LifecycleCoordinator",
    "Record",
    "RequestContext",
    "SchedulerState",
    "TransportSender",
    "build_record",
    "normalize_error",
]

__version__ = "0.1.0"
