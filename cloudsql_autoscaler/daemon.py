"""Long-running autoscaler: a periodic cycle loop plus an optional HTTP side-channel.

State moves Created -> Running -> ShuttingDown -> Stopped. Cycles run strictly one
after another on a single thread; the shared stop event interrupts the interval
wait, operation polling and project analysis.
"""

import threading
import traceback
from enum import Enum

from . import config as defaults
from .config import validate_daemon_config
from .errors import DaemonError, DaemonStateError, HTTPServerError, is_recoverable
from .http_server import StatusServer, create_app
from .reporting import NullMetricsReporter, PrometheusMetricsReporter
from .runner import AutoscalingRunner
from .signals import OSSignalSource
from .timeutil import format_duration, now_utc

SIGNAL_POLL_SECONDS = 0.5


class DaemonState(str, Enum):
    CREATED = "created"
    RUNNING = "running"
    SHUTTING_DOWN = "shutting_down"
    STOPPED = "stopped"


class Daemon:
    def __init__(self, cfg, settings, analyzer, signal_source=None, metrics_reporter=None,
                 events=None, runner=None, http_server=None):
        validate_daemon_config(cfg, settings)

        self.cfg = cfg
        self.settings = settings
        self.signals = signal_source or OSSignalSource()
        if metrics_reporter is None:
            metrics_reporter = PrometheusMetricsReporter() if settings.metrics_enabled else NullMetricsReporter()
        self.metrics = metrics_reporter
        self.runner = runner or AutoscalingRunner(analyzer, cfg, self.metrics, events)

        self.http_server = http_server
        if self.http_server is None and settings.http_enabled:
            app = create_app(self.get_status, self.is_ready, getattr(self.metrics, "registry", None))
            self.http_server = StatusServer(app, port=settings.http_port)

        self._stop = threading.Event()
        self._stopped = threading.Event()
        self._lock = threading.Lock()
        self._threads = []

        self.state = DaemonState.CREATED
        self.started_at = None
        self.last_cycle_at = None
        self.next_cycle_at = None
        self.cycles_run = 0
        self.last_error = None

    def start(self):
        """Run until a shutdown signal arrives or stop() is called."""
        with self._lock:
            if self.state != DaemonState.CREATED:
                raise DaemonStateError(f"daemon cannot start from state {self.state.value}")
            self.state = DaemonState.RUNNING
            self.started_at = now_utc()

        print(f"Starting Cloud SQL autoscaler daemon", flush=True)
        print(f"   Project: {self.cfg.project_id}", flush=True)
        print(f"   Interval: {format_duration(self.settings.interval)}", flush=True)
        print(f"   Dry run: {self.cfg.dry_run}", flush=True)

        if self.http_server is not None:
            try:
                self.http_server.start()
            except HTTPServerError as e:
                self.state = DaemonState.STOPPED
                self._stopped.set()
                raise DaemonError("start", e, phase="http") from e

        loop = threading.Thread(target=self._loop, name="autoscaler-loop", daemon=True)
        self._threads.append(loop)
        loop.start()

        while not self._stop.is_set():
            if self.signals.wait(SIGNAL_POLL_SECONDS):
                break

        self.stop()

    def stop(self):
        """Shut down and block until the loop thread has exited and the state is Stopped."""
        with self._lock:
            stopping = self.state in (DaemonState.SHUTTING_DOWN, DaemonState.STOPPED)
            if not stopping:
                self.state = DaemonState.SHUTTING_DOWN
        if stopping:
            # Another caller owns the shutdown; the loop thread must not wait on its own join
            if threading.current_thread() not in self._threads:
                self._stopped.wait()
            return
        print("Shutting down autoscaler daemon", flush=True)
        self._stop.set()

        if self.http_server is not None:
            self.http_server.shutdown(defaults.HTTP_SHUTDOWN_GRACE_SECONDS)

        for t in self._threads:
            if t is not threading.current_thread():
                t.join()

        with self._lock:
            self.state = DaemonState.STOPPED
        self._stopped.set()
        print("Autoscaler daemon stopped", flush=True)

    def _loop(self):
        # First cycle runs immediately, then once per interval
        self.run_cycle()
        while not self._stop.wait(self.settings.interval.total_seconds()):
            self.run_cycle()

    def run_cycle(self):
        try:
            self.runner.run_cycle(self._stop)
            error = None
        except DaemonError as e:
            error = str(e)
            if is_recoverable(e):
                print(f"Autoscaling cycle failed, retrying next interval: {e}", flush=True)
            else:
                print(f"ERROR: autoscaling cycle failed: {e}", flush=True)
        except Exception as e:
            error = str(e)
            print(f"ERROR: unexpected fault in autoscaling cycle: {e}", flush=True)
            traceback.print_exc()

        finished = now_utc()
        with self._lock:
            self.cycles_run += 1
            self.last_error = error
            self.last_cycle_at = finished
            self.next_cycle_at = finished + self.settings.interval

    def is_ready(self):
        return self.state == DaemonState.RUNNING

    def get_status(self):
        with self._lock:
            return {
                "project_id": self.cfg.project_id,
                "interval": format_duration(self.settings.interval),
                "dry_run": self.cfg.dry_run,
                "http_port": self.settings.http_port,
                "http_enabled": self.http_server is not None,
                "metrics_enabled": getattr(self.metrics, "registry", None) is not None,
                "state": self.state.value,
                "started_at": self.started_at.isoformat() if self.started_at else None,
                "last_cycle_at": self.last_cycle_at.isoformat() if self.last_cycle_at else None,
                "next_cycle_at": self.next_cycle_at.isoformat() if self.next_cycle_at else None,
                "cycles_run": self.cycles_run,
                "last_error": self.last_error,
            }
