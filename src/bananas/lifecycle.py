"""Lifecycle coordinator - wires host events, hooks and flushing together."""

from __future__ import annotations

import asyncio
import logging
import os
import sys
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Protocol

from .buffer import BatchBuffer
from .config import BananasConfig
from .hooks import ExceptionHooks, SignalHooks
from .records import EventKind, Record, RequestContext, build_record, environment_snapshot
from .scheduler import FlushScheduler
from .sender import HttpSender, TransportSender


logger = logging.getLogger(__name__)

TAG = "bananas"


class Host(Protocol):
    """The part of the host server the shipper drives on signals."""

    async def stop(self, timeout: float) -> None:
        """Stop serving; give in-flight work at most ``timeout`` seconds."""
        ...


def terminate(code: int) -> None:
    """Exit the process now, without unwinding the event loop."""
    logging.shutdown()
    sys.stdout.flush()
    sys.stderr.flush()
    os._exit(code)


@dataclass
class LifecycleCoordinator:
    """
    Owns one buffer, one flush timer and the optional process hooks.

    Lifecycle:
        coordinator = LifecycleCoordinator(config)
        await coordinator.start()     # emits "initialized", flushes
        coordinator.log(["app"], "hello")
        coordinator.response(context)
        await coordinator.stop()      # emits "stopped", flushes

    Events are only accepted between ``start`` and ``stop``, so the
    "initialized" record is always the first one and "stopped" the last.
    """
    config: BananasConfig
    sender: TransportSender | None = None
    host: Host | None = None

    # Called with the exit status on the fatal and signal paths
    exit: Callable[[int], Any] = terminate

    # Internal state
    _buffer: BatchBuffer = field(default_factory=BatchBuffer, init=False)
    _scheduler: FlushScheduler = field(default=None, init=False)
    _exception_hooks: ExceptionHooks = field(default=None, init=False)
    _signal_hooks: SignalHooks = field(default=None, init=False)
    _gate: threading.Lock = field(default_factory=threading.Lock, init=False)
    _accepting: bool = field(default=False, init=False)
    _started: bool = field(default=False, init=False)
    _stopping: bool = field(default=False, init=False)
    _stopped: asyncio.Event = field(default_factory=asyncio.Event, init=False)
    _signal_task: asyncio.Task | None = field(default=None, init=False)

    def __post_init__(self):
        if self.sender is None:
            self.sender = HttpSender.from_config(self.config)

        self._scheduler = FlushScheduler(
            buffer=self._buffer,
            sender=self.sender,
            interval_seconds=self.config.interval_seconds,
            tags=self.config.tags,
        )
        self._exception_hooks = ExceptionHooks(
            on_fatal=self._on_fatal,
            on_unhandled=self._on_unhandled,
        )
        self._signal_hooks = SignalHooks(on_signal=self._on_signal)

    @property
    def buffer(self) -> BatchBuffer:
        return self._buffer

    @property
    def scheduler(self) -> FlushScheduler:
        return self._scheduler

    @property
    def signal_hooks(self) -> SignalHooks:
        return self._signal_hooks

    @property
    def exception_hooks(self) -> ExceptionHooks:
        return self._exception_hooks

    @property
    def running(self) -> bool:
        return self._accepting

    async def wait_stopped(self) -> None:
        """Wait until ``stop`` has flushed the final batch."""
        await self._stopped.wait()

    # -------------------------------------------------------------------------
    # Startup / shutdown
    # -------------------------------------------------------------------------

    async def start(self) -> None:
        """Arm the timer, install hooks, and flush the "initialized" record."""
        if self._started:
            raise RuntimeError("Shipper already started")
        self._started = True

        loop = asyncio.get_running_loop()
        self._scheduler.start()

        init = build_record(
            EventKind.SERVER,
            tags=(TAG, "initialized"),
            env=environment_snapshot(),
        )
        with self._gate:
            self._buffer.push(init)
            self._accepting = True

        # Hooks only once "initialized" is queued, so it stays first
        if self.config.uncaught_exception:
            self._exception_hooks.install(loop)
        if self.config.signals:
            self._signal_hooks.install(loop)

        await self._scheduler.force_flush()
        logger.info(f"Telemetry shipper started (interval={self.config.interval_msec}ms)")

    async def stop(self) -> None:
        """
        Post-stop hook: tear everything down and flush the "stopped" record.

        Returns once the final send has been attempted. Idempotent.
        """
        if not self._started or self._stopping:
            return
        self._stopping = True

        await self._scheduler.stop()
        self._exception_hooks.remove()
        self._signal_hooks.remove()

        end = build_record(EventKind.SERVER, tags=(TAG, "stopped"))
        with self._gate:
            self._accepting = False
            self._buffer.push(end)

        await self._scheduler.force_flush()
        self._stopped.set()
        logger.info(f"Telemetry shipper stopped. Stats: {self.stats}")

    # -------------------------------------------------------------------------
    # Host events
    # -------------------------------------------------------------------------

    def log(self, tags: Iterable[str] | str, data: Any = None, error: Any = None) -> bool:
        """
        Generic log event.

        An exception passed as ``data`` is treated as the event's error.
        Returns False if the shipper is not running.
        """
        if isinstance(tags, str):
            tags = [tags]
        if error is None and isinstance(data, BaseException):
            error, data = data, None

        record = build_record(
            EventKind.SERVER,
            tags=tags,
            error=error,
            data=data if error is None else None,
        )
        return self._push(record)

    def request_error(self, context: RequestContext, error: Any) -> bool:
        """A request failed with an error the handler did not deal with."""
        return self._push(build_record(EventKind.ERROR, context, self.config, error=error))

    def response(self, context: RequestContext) -> bool:
        """A response was sent. Excluded paths and routes are dropped."""
        if context.excluded or context.path in self.config.exclude:
            return False

        code = context.status_code
        record = build_record(
            EventKind.RESPONSE,
            context,
            self.config,
            code=code,
            error=context.response_body if code is not None and code >= 400 else None,
        )
        return self._push(record)

    async def flush(self) -> None:
        """Force a flush outside the timer."""
        await self._scheduler.force_flush()

    def _push(self, record: Record) -> bool:
        with self._gate:
            if not self._accepting:
                logger.debug(f"Shipper not running, ignoring {record.event.value} event")
                return False
            self._buffer.push(record)
        return True

    # -------------------------------------------------------------------------
    # Process hooks
    # -------------------------------------------------------------------------

    def _on_fatal(self, exc: BaseException, report: Callable[[], None]) -> None:
        record = build_record(
            EventKind.ERROR,
            tags=(TAG, "uncaught", "error"),
            error=exc,
        )
        self._buffer.push(record)

        try:
            self._scheduler.flush_blocking()
        except Exception as e:
            logger.error(f"Failed to flush after uncaught exception: {e}")

        report()
        self.exit(1)

    def _on_unhandled(self, error: Any) -> None:
        # Delivered by the next tick or by shutdown
        record = build_record(
            EventKind.ERROR,
            tags=(TAG, "uncaught", "promise", "error"),
            error=error,
        )
        self._push(record)

    def _on_signal(self, name: str) -> None:
        loop = asyncio.get_running_loop()
        self._signal_task = loop.create_task(self._shutdown_on_signal(name))

    async def _shutdown_on_signal(self, name: str) -> None:
        self._push(build_record(EventKind.SERVER, tags=(TAG, "signal", name)))

        try:
            if self.host is not None:
                await self.host.stop(timeout=self.config.stop_timeout_seconds)
            else:
                await self.stop()
        except Exception as e:
            logger.error(f"Shutdown after {name} failed: {e}")
        finally:
            self.exit(0)

    @property
    def stats(self) -> dict:
        """Get shipper statistics."""
        return {
            **self._scheduler.stats,
            **self._buffer.stats,
            "running": self.running,
            "signal_listeners": self._signal_hooks.listeners,
        }
