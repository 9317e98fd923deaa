import signal
import threading


class OSSignalSource:
    """Shutdown signal raised by SIGINT or SIGTERM.

    Handlers can only be installed from the main thread.
    """

    def __init__(self, signals=(signal.SIGINT, signal.SIGTERM)):
        self._event = threading.Event()
        self._signals = signals
        self._installed = False

    def install(self):
        if self._installed:
            return
        for sig in self._signals:
            signal.signal(sig, self._handle)
        self._installed = True

    def _handle(self, signum, frame):
        print(f"Received signal {signal.Signals(signum).name}, shutting down", flush=True)
        self._event.set()

    def wait(self, timeout=None):
        self.install()
        return self._event.wait(timeout)

    def is_set(self):
        return self._event.is_set()


class ManualSignalSource:
    """Shutdown signal fired by calling trigger(); used by tests and embedders."""

    def __init__(self):
        self._event = threading.Event()

    def trigger(self):
        self._event.set()

    def wait(self, timeout=None):
        return self._event.wait(timeout)

    def is_set(self):
        return self._event.is_set()
