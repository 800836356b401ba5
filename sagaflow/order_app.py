"""The order service process: an HTTP server that places orders through the orchestrator."""

from __future__ import annotations

import argparse
import logging
import threading
from datetime import timedelta
from typing import Any, Callable, Optional, Sequence

import grpc
from werkzeug.serving import make_server

from sagaflow.config import ServiceConfig, read_service_config
from sagaflow.http_util import WSGIApp
from sagaflow.orchestrator_app import _parse_duration
from sagaflow.order_service import new_router
from sagaflow.rpc import OrderClient, TransactionClient

logger = logging.getLogger(__name__)

_LISTEN_HOST = "0.0.0.0"
_IDLE_WAIT = 0.5


class _ServiceApp:
    """An HTTP server whose handlers talk to the orchestrator over one gRPC channel."""

    def __init__(self, config: ServiceConfig, build_handler: Callable[[grpc.Channel], WSGIApp]):
        self.config = config
        self.address = f":{config.server.port}"
        self.port: Optional[int] = None
        self.ready = threading.Event()
        self.grpc_channel = grpc.insecure_channel(config.grpc.address)
        self.handler = build_handler(self.grpc_channel)
        self._server: Any = None
        self._stopped = False
        self._lock = threading.Lock()

    def start(self) -> None:
        """Listen on the configured port and serve until stopped; returns once stopped."""
        with self._lock:
            if self._stopped:
                return
            server = make_server(_LISTEN_HOST, self.config.server.port, self.handler, threaded=True)
            self._server = server
        self.port = server.server_port
        logger.info("Server is listening at %s", self.address)
        self.ready.set()
        try:
            server.serve_forever()
        finally:
            server.server_close()

    def stop(self) -> None:
        """Stop accepting connections; a server not yet started will not start."""
        with self._lock:
            self._stopped = True
            server = self._server
        if server is not None:
            server.shutdown()

    def stop_grpc(self) -> None:
        """Close the channel to the orchestrator."""
        self.grpc_channel.close()


class OrderApp(_ServiceApp):
    """The order HTTP server."""

    def __init__(self, config: ServiceConfig) -> None:
        super().__init__(
            config,
            lambda channel: new_router(OrderClient(channel), TransactionClient(channel)),
        )

    def start(self) -> None:
        """Serve order requests until stopped."""
        super().start()

    def stop(self) -> None:
        """Stop the HTTP server."""
        super().stop()

    def stop_grpc(self) -> None:
        """Close the channel to the orchestrator."""
        super().stop_grpc()


def _parser(description: str, timeout_flag: str) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=description)
    parser.add_argument(
        "--config_path", default="./config/config.yaml", help="the config path yaml file"
    )
    parser.add_argument(
        timeout_flag,
        dest="graceful_timeout",
        type=_parse_duration,
        default=timedelta(seconds=15),
        help="the duration for which the server gracefully waits for existing "
        "connections to finish - e.g. 15s or 1m",
    )
    return parser


def _serve(app: _ServiceApp) -> None:
    try:
        app.start()
    except Exception:
        logger.exception("server failed")


def _run_until_interrupted(app: _ServiceApp, wait: timedelta) -> int:
    """Serve in the background until Ctrl+C, then shut down within wait."""
    threading.Thread(target=_serve, args=(app,), name="http-server", daemon=True).start()
    idle = threading.Event()
    try:
        while not idle.wait(_IDLE_WAIT):
            pass
    except KeyboardInterrupt:
        pass
    try:
        app.stop_grpc()
    except Exception:
        logger.exception("failed to close gRPC channel")
    stopper = threading.Thread(target=app.stop, name="http-stop", daemon=True)
    stopper.start()
    stopper.join(max(wait.total_seconds(), 0.0))
    logger.info("shutting down")
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = _parser("Run the order HTTP service.", "--graceful-timeout").parse_args(argv)
    logging.basicConfig(level=logging.INFO)
    conf = read_service_config(args.config_path)
    return _run_until_interrupted(OrderApp(conf), args.graceful_timeout)