import signal
import sys

import pytest

from trainops.signals import setup_signal_handler


def test_first_signal_sets_stop_and_second_setup_fails():
    watched = [signal.SIGINT] if sys.platform == "win32" else [signal.SIGINT, signal.SIGTERM]
    saved = {sig: signal.getsignal(sig) for sig in watched}
    try:
        stop = setup_signal_handler()
        assert not stop.is_set()
        signal.raise_signal(signal.SIGINT)
        assert stop.wait(timeout=5)
        with pytest.raises(RuntimeError):
            setup_signal_handler()
    finally:
        for sig, handler in saved.items():
            signal.signal(sig, handler)