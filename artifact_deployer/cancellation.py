"""Cancellation token and interrupt-signal arming."""

from __future__ import annotations

import signal
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from types import FrameType

from artifact_deployer.logging_utils import get_logger

LOGGER = get_logger()

INTERRUPT_SIGNALS: tuple[signal.Signals, ...] = (signal.SIGINT, signal.SIGTERM)


class CancellationToken:
    """One-shot cancellation flag that sleepers can wait on."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._reason: str | None = None

    @property
    def is_cancelled(self) -> bool:
        """Return whether cancellation has been requested."""
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        """Return the reason given by the first cancel call."""
        return self._reason

    def cancel(self, reason: str = "cancelled") -> None:
        """Request cancellation; later calls keep the first reason."""
        with self._lock:
            if self._reason is None:
                self._reason = reason
        self._event.set()

    def wait(self, timeout: float) -> bool:
        """Sleep up to timeout seconds; return True as soon as cancelled."""
        return self._event.wait(max(0.0, timeout))


@contextmanager
def armed_signals(token: CancellationToken) -> Iterator[None]:
    """Route SIGINT/SIGTERM into token cancellation while the block runs.

    Handlers only flip the token; the owner of the token performs cleanup on
    its own thread. Outside the main thread signal handlers cannot be
    installed, so the block runs unarmed.
    """
    if threading.current_thread() is not threading.main_thread():
        LOGGER.debug("Not on the main thread; interrupt handlers not installed")
        yield
        return

    def _handler(signum: int, frame: FrameType | None) -> None:
        del frame
        token.cancel(signal.Signals(signum).name)

    previous = {sig: signal.signal(sig, _handler) for sig in INTERRUPT_SIGNALS}
    try:
        yield
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)
