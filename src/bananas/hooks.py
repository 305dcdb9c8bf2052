"""Process-level exception and signal listeners."""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
import threading
from dataclasses import dataclass, field
from typing import Any, Callable


logger = logging.getLogger(__name__)

# Termination signals the shipper listens to
SIGNALS = (signal.SIGTERM, signal.SIGINT)


@dataclass
class ExceptionHooks:
    """
    Listeners for exceptions nobody handled.

    Fatal path: ``sys.excepthook`` and ``threading.excepthook``. The
    ``on_fatal`` callback receives the exception and a ``report`` callable
    that runs the previously installed hook (so tracebacks still print).

    Asynchronous path: the event loop's exception handler, for task
    exceptions that were never retrieved and failing callbacks. The
    ``on_unhandled`` callback receives the exception (or the loop's
    message when there is none); the previous loop handler still runs.
    """
    on_fatal: Callable[[BaseException, Callable[[], None]], None]
    on_unhandled: Callable[[Any], None]

    # Internal state
    _loop: asyncio.AbstractEventLoop | None = field(default=None, init=False)
    _prev_sys_hook: Any = field(default=None, init=False)
    _prev_thread_hook: Any = field(default=None, init=False)
    _prev_loop_handler: Any = field(default=None, init=False)
    _sys_hook: Any = field(default=None, init=False)
    _thread_hook: Any = field(default=None, init=False)
    _loop_handler: Any = field(default=None, init=False)

    @property
    def installed(self) -> bool:
        return self._sys_hook is not None

    def install(self, loop: asyncio.AbstractEventLoop) -> None:
        if self.installed:
            return

        self._loop = loop

        self._prev_sys_hook = sys.excepthook
        self._sys_hook = self._handle_sys
        sys.excepthook = self._sys_hook

        self._prev_thread_hook = threading.excepthook
        self._thread_hook = self._handle_thread
        threading.excepthook = self._thread_hook

        self._prev_loop_handler = loop.get_exception_handler()
        self._loop_handler = self._handle_loop
        loop.set_exception_handler(self._loop_handler)

    def remove(self) -> None:
        """Restore the previous hooks. Safe to call more than once."""
        if not self.installed:
            return

        # Leave alone anything installed on top of us
        if sys.excepthook is self._sys_hook:
            sys.excepthook = self._prev_sys_hook
        if threading.excepthook is self._thread_hook:
            threading.excepthook = self._prev_thread_hook
        if self._loop is not None and not self._loop.is_closed():
            if self._loop.get_exception_handler() is self._loop_handler:
                self._loop.set_exception_handler(self._prev_loop_handler)

        self._sys_hook = self._thread_hook = self._loop_handler = None
        self._prev_sys_hook = self._prev_thread_hook = self._prev_loop_handler = None
        self._loop = None

    def _handle_sys(self, exc_type, exc_value, exc_tb) -> None:
        previous = self._prev_sys_hook or sys.__excepthook__

        def report() -> None:
            previous(exc_type, exc_value, exc_tb)

        self.on_fatal(exc_value, report)

    def _handle_thread(self, args: threading.ExceptHookArgs) -> None:
        previous = self._prev_thread_hook or threading.__excepthook__

        def report() -> None:
            previous(args)

        # Threads ending through sys.exit() are not failures
        if args.exc_type is SystemExit or args.exc_value is None:
            report()
            return

        self.on_fatal(args.exc_value, report)

    def _handle_loop(self, loop: asyncio.AbstractEventLoop, context: dict) -> None:
        self.on_unhandled(context.get("exception") or context.get("message"))

        if self._prev_loop_handler is not None:
            self._prev_loop_handler(loop, context)
        else:
            loop.default_exception_handler(context)


@dataclass
class SignalHooks:
    """
    One-shot SIGTERM/SIGINT handlers on the running event loop.

    Each signal fires at most once; the handler is removed before
    ``on_signal`` runs, and ``remove`` drops whatever is left.
    """
    on_signal: Callable[[str], None]
    signals: tuple = SIGNALS

    # Internal state
    _loop: asyncio.AbstractEventLoop | None = field(default=None, init=False)
    _active: set = field(default_factory=set, init=False)

    @property
    def listeners(self) -> int:
        """Number of signal handlers currently installed."""
        return len(self._active)

    def install(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop

        for sig in self.signals:
            if sig in self._active:
                continue
            try:
                loop.add_signal_handler(sig, self._fire, sig)
            except (NotImplementedError, RuntimeError, ValueError) as e:
                # Not the main thread, or a platform without loop signal support
                logger.warning(f"Cannot listen for {sig.name}: {e}")
                continue
            self._active.add(sig)

    def remove(self) -> None:
        if self._loop is None:
            return

        for sig in list(self._active):
            if not self._loop.is_closed():
                self._loop.remove_signal_handler(sig)
            self._active.discard(sig)

        self._loop = None

    def _fire(self, sig: signal.Signals) -> None:
        if sig not in self._active:
            return

        self._loop.remove_signal_handler(sig)
        self._active.discard(sig)

        logger.info(f"Received {sig.name}")
        self.on_signal(sig.name)
