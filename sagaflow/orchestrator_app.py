"""The orchestrator: a gRPC server that owns the saga's local transactions."""

from __future__ import annotations

import argparse
import logging
import re
from concurrent import futures
from datetime import timedelta
from typing import Any, Optional, Sequence

import grpc
import redis
from redis.backoff import NoBackoff
from redis.retry import Retry

from sagaflow.config import OrchestratorConfig, RedisConfig, read_orchestrator_config
from sagaflow.db import DBConfig, new_db
from sagaflow.redis_service import RedisService
from sagaflow.repositories import OrderGService, OrderRepository, ProductGService, ProductRepository
from sagaflow.rpc import register_services
from sagaflow.transactions import TransactionGService, TransactionService
from sagaflow.txcache import TransactionCache

logger = logging.getLogger(__name__)

_DEFAULT_REDIS_ADDR = "localhost:6379"
_DEFAULT_REDIS_RETRIES = 3
_MAX_WORKERS = 10

_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")


class OrchestratorServer:
    """Serves the transaction, order and product services over gRPC."""

    def __init__(self, config: OrchestratorConfig, db: Any, redis_client: Any) -> None:
        self.config = config
        self.port: Optional[int] = None
        self._server = grpc.server(futures.ThreadPoolExecutor(max_workers=_MAX_WORKERS))
        tx_cache = TransactionCache()
        redis_service = RedisService(redis_client, tx_cache)
        tx_service = TransactionService(db, redis_service, tx_cache)
        register_services(
            self._server,
            TransactionGService(tx_service),
            OrderGService(OrderRepository(tx_service)),
            ProductGService(ProductRepository(tx_service)),
        )

    def start(self) -> None:
        """Listen on the configured port and serve until stopped."""
        g_port = self.config.server.g_port
        port = self._server.add_insecure_port(f"0.0.0.0:{g_port}")
        if not port:
            raise OSError(f"gRPC failed to listen at port {g_port}")
        self.port = port
        logger.info("gRPC Server listens at port %s", port)
        self._server.start()
        self._server.wait_for_termination()

    def stop(self) -> None:
        """Stop serving at once, cancelling calls in flight."""
        self._server.stop(None).wait()


def _parse_duration(value: str) -> timedelta:
    text = value.strip()
    sign = -1.0 if text.startswith("-") else 1.0
    text = text.lstrip("+-")
    if text == "0":
        return timedelta(0)
    if not text:
        raise argparse.ArgumentTypeError(f"invalid duration {value!r}")
    total = 0.0
    position = 0
    for match in _DURATION_PART.finditer(text):
        if match.start() != position:
            break
        total += float(match.group(1)) * _UNITS[match.group(2)]
        position = match.end()
    if position != len(text):
        raise argparse.ArgumentTypeError(f"invalid duration {value!r}")
    return timedelta(seconds=sign * total)


def _redis_client(conf: RedisConfig) -> redis.Redis:
    host, _, port = (conf.addr or _DEFAULT_REDIS_ADDR).rpartition(":")
    if conf.max_retries == 0:
        retries = _DEFAULT_REDIS_RETRIES
    else:
        retries = max(conf.max_retries, 0)
    return redis.Redis(
        host=host or "localhost",
        port=int(port),
        password=conf.password or None,
        db=conf.db,
        retry=Retry(NoBackoff(), retries),
    )


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run the saga orchestrator gRPC server.")
    parser.add_argument(
        "--config_path", default="./config/config.yaml", help="The config path"
    )
    # Accepted for existing launch scripts; shutdown stops the server at once.
    parser.add_argument(
        "--graceful_timeout",
        type=_parse_duration,
        default=timedelta(seconds=15),
        help="the duration for which the server gracefully waits for existing "
        "connections to finish - e.g. 15s or 1m",
    )
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = _parser().parse_args(argv)
    logging.basicConfig(level=logging.INFO)
    conf = read_orchestrator_config(args.config_path)
    redis_client = _redis_client(conf.redis)
    db = new_db(
        DBConfig(
            driver=conf.database.driver,
            host=conf.database.host,
            port=conf.database.port,
            user=conf.database.user,
            db_name=conf.database.db_name,
            password=conf.database.password,
        )
    )
    server = OrchestratorServer(conf, db, redis_client)
    try:
        server.start()
    except KeyboardInterrupt:
        pass
    server.stop()
    db.dispose()
    redis_client.close()
    logger.info("shutting down...")
    return 0