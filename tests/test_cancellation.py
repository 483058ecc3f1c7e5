"""Tests for cancellation tokens and signal routing."""

from __future__ import annotations

import os
import signal
import threading

import pytest

from orchestrator.cancellation import CancellationToken, cancel_on_signals


def test_first_reason_wins() -> None:
    token = CancellationToken(grace_s=-3)

    token.set("signal SIGTERM")
    token.set("second")

    assert token.is_set()
    assert token.reason == "signal SIGTERM"
    assert token.grace_s == 0.0


def test_wait_returns_when_set_from_another_thread() -> None:
    token = CancellationToken()
    timer = threading.Timer(0.05, token.set)
    timer.start()

    assert token.wait(5.0) is True
    timer.join()


@pytest.mark.skipif(os.name != "posix", reason="requires POSIX signals")
def test_signals_are_routed_and_restored() -> None:
    token = CancellationToken()
    before = signal.getsignal(signal.SIGTERM)

    with cancel_on_signals(token):
        os.kill(os.getpid(), signal.SIGTERM)
        assert token.wait(5.0)

    assert token.reason == "signal SIGTERM"
    assert signal.getsignal(signal.SIGTERM) == before


def test_off_main_thread_no_handlers_are_installed() -> None:
    token = CancellationToken()
    before = signal.getsignal(signal.SIGINT)
    seen = []

    def _worker() -> None:
        with cancel_on_signals(token):
            seen.append(signal.getsignal(signal.SIGINT))

    thread = threading.Thread(target=_worker)
    thread.start()
    thread.join()

    assert seen == [before]
    assert not token.is_set()
