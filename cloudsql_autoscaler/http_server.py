import threading

from flask import Flask, Response, jsonify
from flask_cors import CORS
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from werkzeug.serving import make_server

from . import config as defaults
from .errors import HTTPServerError


def create_app(status_fn, ready_fn, registry=None):
    """Health, readiness, status and metrics endpoints for the daemon."""
    app = Flask(__name__)
    CORS(app)

    @app.route("/health")
    @app.route("/healthz")
    def health():
        return jsonify({"status": "ok"})

    @app.route("/ready")
    @app.route("/readyz")
    def ready():
        if ready_fn():
            return jsonify({"status": "ready"})
        return jsonify({"status": "not ready"}), 503

    @app.route("/status")
    def status():
        try:
            return jsonify(status_fn())
        except Exception as e:
            return jsonify({"error": str(e)}), 500

    @app.route("/metrics")
    def metrics():
        if registry is None:
            return jsonify({"error": "metrics are disabled"}), 404
        return Response(generate_latest(registry), mimetype=CONTENT_TYPE_LATEST)

    return app


class StatusServer:
    """Runs a Flask app on a werkzeug server thread that can be shut down."""

    def __init__(self, app, host="0.0.0.0", port=defaults.HTTP_PORT):
        self.app = app
        self.host = host
        self.port = port
        self._server = None
        self._thread = None

    def start(self):
        try:
            self._server = make_server(self.host, self.port, self.app, threaded=True)
        except OSError as e:
            raise HTTPServerError(f"failed to listen on {self.host}:{self.port}: {e}") from e
        self.port = self._server.server_port
        self._thread = threading.Thread(target=self._server.serve_forever, name="http-server", daemon=True)
        self._thread.start()
        print(f"HTTP server listening on {self.host}:{self.port}", flush=True)

    def shutdown(self, timeout=defaults.HTTP_SHUTDOWN_GRACE_SECONDS):
        """Stop serving; returns False if the grace period ran out."""
        if self._server is None:
            return True

        stopper = threading.Thread(target=self._server.shutdown, name="http-shutdown", daemon=True)
        stopper.start()
        stopper.join(timeout)
        if stopper.is_alive():
            print(f"HTTP server did not stop within {timeout}s", flush=True)
            return False

        self._server.server_close()
        if self._thread is not None:
            self._thread.join(timeout)
        self._server = None
        print("HTTP server stopped", flush=True)
        return True
