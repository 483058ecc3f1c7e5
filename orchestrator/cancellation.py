"""Cooperative cancellation shared by the scheduler and its workers."""
from __future__ import annotations

import logging
import signal
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, Optional, Sequence

LOGGER = logging.getLogger("fanout.cancellation")

_DEFAULT_SIGNALS = tuple(
    sig for sig in (getattr(signal, "SIGINT", None), getattr(signal, "SIGTERM", None)) if sig is not None
)


class CancellationToken:
    """Thread-safe flag checked by every in-flight operation."""

    def __init__(self, *, grace_s: float = 5.0) -> None:
        self._evt = threading.Event()
        self._lock = threading.Lock()
        self._reason: Optional[str] = None
        self.grace_s = max(0.0, float(grace_s))

    def set(self, reason: str = "cancelled") -> None:
        with self._lock:
            if self._reason is None:
                self._reason = reason
        self._evt.set()

    def is_set(self) -> bool:
        return self._evt.is_set()

    def wait(self, timeout: float) -> bool:
        return self._evt.wait(timeout)

    @property
    def reason(self) -> Optional[str]:
        with self._lock:
            return self._reason


@contextmanager
def cancel_on_signals(
    token: CancellationToken,
    signals: Sequence[int] = _DEFAULT_SIGNALS,
) -> Iterator[CancellationToken]:
    """Route termination signals to *token* for the duration of the block.

    Handlers can only be installed from the main thread; elsewhere the block
    runs without them and cancellation must come from ``token.set``.
    """

    previous: Dict[int, object] = {}
    if threading.current_thread() is threading.main_thread():

        def _handler(signum, _frame) -> None:
            name = signal.Signals(signum).name
            if token.is_set():
                LOGGER.warning("Received %s again; still waiting for in-flight jobs to stop", name)
                return
            LOGGER.warning("Received %s; stopping dispatch and terminating in-flight jobs", name)
            token.set(f"signal {name}")

        for sig in signals:
            previous[sig] = signal.getsignal(sig)
            signal.signal(sig, _handler)
    try:
        yield token
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)


__all__ = ["CancellationToken", "cancel_on_signals"]
