"""Shutdown signal handling."""

from __future__ import annotations

import os
import signal
import sys
import threading

if sys.platform == "win32":
    _SHUTDOWN_SIGNALS = (signal.SIGINT,)
else:
    _SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)

_lock = threading.Lock()
_installed = False


def setup_signal_handler() -> threading.Event:
    """Install shutdown handlers once; the returned event is set on the first signal.

    A second signal ends the process with exit code 1. Calling this twice
    raises RuntimeError.
    """
    global _installed
    with _lock:
        if _installed:
            raise RuntimeError("signal handler is already set up")
        _installed = True

    stop = threading.Event()

    def _handle(signum, frame):
        if stop.is_set():
            os._exit(1)
        stop.set()

    for sig in _SHUTDOWN_SIGNALS:
        signal.signal(sig, _handle)
    return stop