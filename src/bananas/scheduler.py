"""Timer-driven flushing of the batch buffer."""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum

from .buffer import BatchBuffer
from .records import Record
from .sender import TransportSender


logger = logging.getLogger(__name__)


class SchedulerState(str, Enum):
    IDLE = "idle"
    ARMED = "armed"
    DRAINING = "draining"
    STOPPED = "stopped"


@dataclass
class FlushScheduler:
    """
    Drains the buffer every ``interval_seconds`` and hands non-empty
    batches to the sender.

    Timer-driven sends are detached tasks: the timer does not wait for the
    network. They are tracked so ``stop`` can wait for them. Forced
    flushes (startup, shutdown, fatal errors) are awaited by the caller.

    Two sends may overlap (a tick and a forced flush); the buffer's atomic
    drain keeps their records disjoint.
    """
    buffer: BatchBuffer
    sender: TransportSender
    interval_seconds: float = 1.0

    # Global tags, prepended to every record at drain time
    tags: list[str] | None = None

    # Internal state
    _state: SchedulerState = field(default=SchedulerState.IDLE, init=False)
    _task: asyncio.Task | None = field(default=None, init=False)
    _in_flight: set = field(default_factory=set, init=False)
    _last_flush: float = field(default_factory=time.time, init=False)
    _stats: dict = field(default_factory=dict, init=False)

    def __post_init__(self):
        self._stats = {
            "batches_sent": 0,
            "records_sent": 0,
            "send_failures": 0,
        }

    @property
    def state(self) -> SchedulerState:
        return self._state

    def start(self) -> None:
        """Arm the timer on the running event loop."""
        if self._state != SchedulerState.IDLE:
            return
        self._state = SchedulerState.ARMED
        self._task = asyncio.create_task(self._timer_loop())

    async def _timer_loop(self) -> None:
        logger.debug(f"Flush timer armed (interval={self.interval_seconds}s)")

        while True:
            try:
                await asyncio.sleep(self.interval_seconds)

                self._state = SchedulerState.DRAINING
                batch = self._drain()
                if batch:
                    task = asyncio.create_task(self._send(batch))
                    self._in_flight.add(task)
                    task.add_done_callback(self._in_flight.discard)
                self._state = SchedulerState.ARMED

            except asyncio.CancelledError:
                logger.debug("Flush timer cancelled")
                break
            except Exception as e:
                logger.error(f"Flush timer error: {e}")
                self._state = SchedulerState.ARMED

    def _drain(self) -> list[Record]:
        records = self.buffer.drain_all()
        if not records:
            return records
        return [record.with_tag_prefix(self.tags) for record in records]

    async def _send(self, batch: list[Record]) -> None:
        self._last_flush = time.time()
        try:
            delivered = await self.sender.send(batch)
        except Exception as e:
            logger.debug(f"Sender raised while delivering batch of {len(batch)}: {e}")
            delivered = False

        if delivered:
            self._stats["batches_sent"] += 1
            self._stats["records_sent"] += len(batch)
        else:
            self._stats["send_failures"] += 1

    async def force_flush(self) -> None:
        """Drain and send now; returns once the send has been attempted."""
        batch = self._drain()
        if batch:
            await self._send(batch)

    def flush_blocking(self) -> None:
        """
        Run a forced flush to completion from synchronous code.

        Used by interpreter-level exception hooks, where no event loop is
        driving this thread. If the calling thread does own a running loop,
        the flush runs on a helper thread with its own loop.
        """
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            asyncio.run(self.force_flush())
            return

        worker = threading.Thread(
            target=asyncio.run,
            args=(self.force_flush(),),
            name="bananas-flush",
            daemon=True,
        )
        worker.start()
        worker.join()

    async def stop(self) -> None:
        """Cancel the timer and wait for detached sends. Idempotent."""
        if self._state == SchedulerState.STOPPED:
            return
        self._state = SchedulerState.STOPPED

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        if self._in_flight:
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)

    @property
    def stats(self) -> dict:
        """Get scheduler statistics."""
        return {
            **self._stats,
            "state": self._state.value,
            "pending": len(self.buffer),
            "seconds_since_flush": time.time() - self._last_flush,
        }
