"""
Process-level guards for worker entry points.

Installed once per process. Several workers installing their own signal
handlers would replace each other's.
"""

import asyncio
import signal
from typing import Awaitable, Callable

from seneca.config.logging import get_logger
from seneca.v1.workers.analytics import ErrorReporter

logger = get_logger(__name__)

SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)


def install_process_guards(
    shutdown: Callable[[], Awaitable[None]],
    error_reporter: ErrorReporter,
    loop: asyncio.AbstractEventLoop | None = None,
    signals: tuple[signal.Signals, ...] = SHUTDOWN_SIGNALS,
) -> Callable[[], None]:
    """
    Route shutdown signals to `shutdown` and unhandled loop errors to the reporter.

    Returns a callable that removes the guards again.
    """
    loop = loop or asyncio.get_running_loop()
    pending: set[asyncio.Task] = set()
    installed: list[signal.Signals] = []

    def _on_signal(sig: signal.Signals) -> None:
        logger.info("Received shutdown signal", signal=sig.name)
        task = loop.create_task(shutdown())
        pending.add(task)
        task.add_done_callback(pending.discard)

    for sig in signals:
        try:
            loop.add_signal_handler(sig, _on_signal, sig)
            installed.append(sig)
        except (NotImplementedError, RuntimeError, ValueError):
            logger.warning("Signal handler not supported here", signal=sig.name)

    previous_handler = loop.get_exception_handler()

    def _on_loop_error(loop: asyncio.AbstractEventLoop, context: dict) -> None:
        error = context.get("exception")
        if error is None:
            error = RuntimeError(context.get("message", "Unhandled event loop error"))
        error_reporter.report(
            error, component="event_loop", loop_message=context.get("message")
        )

    loop.set_exception_handler(_on_loop_error)

    def uninstall() -> None:
        for sig in installed:
            loop.remove_signal_handler(sig)
        loop.set_exception_handler(previous_handler)

    return uninstall
