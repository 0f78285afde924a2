"""The HTTP server: request logging, CORS and a run loop with graceful shutdown."""

from __future__ import annotations

import signal
import threading
import time
from socketserver import ThreadingMixIn
from typing import Any, Optional
from wsgiref.simple_server import WSGIRequestHandler, WSGIServer, make_server

from flask import Flask, Response, g, request
from sqlalchemy import Engine

from .api import setup_routes
from .cache import CaseCache
from .config import Config
from .logger import Logger
from .scraper import Scraper

_CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Credentials": "true",
    "Access-Control-Allow-Headers": (
        "Content-Type, Content-Length, Accept-Encoding, X-CSRF-Token, Authorization, "
        "accept, origin, Cache-Control, X-Requested-With"
    ),
    "Access-Control-Allow-Methods": "POST, OPTIONS, GET, PUT, DELETE",
}
_SHUTDOWN_TIMEOUT = 30.0
_STOP_POLL = 0.5


class _ThreadingWSGIServer(ThreadingMixIn, WSGIServer):
    daemon_threads = True


class _QuietHandler(WSGIRequestHandler):
    """Request handler whose access log is left to the logging middleware."""

    timeout = 30

    def log_message(self, format: str, *args: Any) -> None:  # noqa: A002 - signature of the base class
        pass


def _client_ip() -> str:
    forwarded = request.headers.get("X-Forwarded-For", "").split(",")[0].strip()
    if forwarded:
        return forwarded
    real_ip = request.headers.get("X-Real-Ip", "").strip()
    return real_ip or (request.remote_addr or "")


def install_request_logging(app: Flask, logger: Logger) -> None:
    """Log every request with its status and latency once it has been answered."""

    @app.before_request
    def _start_timer() -> None:
        g.request_started = time.perf_counter()

    @app.after_request
    def _log_request(response: Response) -> Response:
        started = g.get("request_started", time.perf_counter())
        latency = time.perf_counter() - started
        path = request.path
        raw_query = request.query_string.decode("latin-1")
        if raw_query:
            path = f"{path}?{raw_query}"
        logger.info(
            "HTTP Request",
            client_ip=_client_ip(),
            method=request.method,
            path=path,
            status=response.status_code,
            latency=f"{latency * 1000:.3f}ms",
            user_agent=request.headers.get("User-Agent", ""),
        )
        return response


def install_cors(app: Flask) -> None:
    """Allow requests from any origin and answer preflight requests with 204."""

    @app.before_request
    def _preflight() -> Optional[Response]:
        if request.method == "OPTIONS":
            return Response(status=204)
        return None

    @app.after_request
    def _add_headers(response: Response) -> Response:
        response.headers.update(_CORS_HEADERS)
        return response


class Server:
    """The web application together with the scraper it serves from."""

    def __init__(
        self,
        config: Config,
        db: Engine,
        cache: CaseCache,
        logger: Logger,
        scraper: Optional[Scraper] = None,
    ):
        self._config = config
        self._db = db
        self._cache = cache
        self._logger = logger
        self.app = Flask("courtfetch")
        self.app.debug = config.log_level == "debug"
        install_request_logging(self.app, logger)
        install_cors(self.app)
        self.scraper = scraper if scraper is not None else Scraper(config, logger)
        setup_routes(self.app, db, cache, self.scraper, logger, config)
        self.address = ""
        self._stop = threading.Event()

    def _install_signal_handlers(self) -> dict[int, Any]:
        if threading.current_thread() is not threading.main_thread():
            return {}
        previous = {}
        for signum in (signal.SIGINT, signal.SIGTERM):
            previous[signum] = signal.signal(signum, lambda _signum, _frame: self._stop.set())
        return previous

    def run(self) -> None:
        """Serve until SIGINT, SIGTERM or shutdown(), then close the scraper and stop."""
        try:
            httpd = make_server(
                self._config.host,
                int(self._config.port),
                self.app,
                server_class=_ThreadingWSGIServer,
                handler_class=_QuietHandler,
            )
        except (OSError, ValueError, OverflowError) as exc:
            self._logger.fatal("Failed to start server", error=str(exc))
            return

        serving = threading.Thread(target=httpd.serve_forever, daemon=True)
        serving.start()
        self.address = f"{self._config.host}:{httpd.server_port}"
        self._logger.info("Server started", address=self.address)

        previous = self._install_signal_handlers()
        try:
            while not self._stop.wait(_STOP_POLL):
                pass
        finally:
            for signum, handler in previous.items():
                signal.signal(signum, handler)

        self._logger.info("Shutting down server...")
        try:
            self.scraper.close()
        except Exception as exc:  # noqa: BLE001 - shutdown goes on regardless
            self._logger.error("Failed to close scraper", error=str(exc))

        httpd.shutdown()
        httpd.server_close()
        serving.join(_SHUTDOWN_TIMEOUT)
        if serving.is_alive():
            self._logger.error("Server forced to shutdown")
            raise TimeoutError("server did not stop in time")
        self._logger.info("Server exited gracefully")

    def shutdown(self) -> None:
        """Ask a running (or about to run) server to stop."""
        self._stop.set()