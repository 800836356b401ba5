"""The product service process: an HTTP server that updates stock through the orchestrator."""

from __future__ import annotations

import logging
from typing import Optional, Sequence

from sagaflow.config import ServiceConfig, read_service_config
from sagaflow.order_app import _parser, _run_until_interrupted, _ServiceApp
from sagaflow.product_service import new_router
from sagaflow.rpc import ProductClient, TransactionClient


class ProductApp(_ServiceApp):
    """The product HTTP server."""

    def __init__(self, config: ServiceConfig) -> None:
        super().__init__(
            config,
            lambda channel: new_router(ProductClient(channel), TransactionClient(channel)),
        )

    def start(self) -> None:
        """Listen on the configured port and serve until stopped; returns once stopped."""
        super().start()

    def stop(self) -> None:
        """Stop accepting connections; a server not yet started will not start."""
        super().stop()

    def stop_grpc(self) -> None:
        """Close the channel to the orchestrator."""
        super().stop_grpc()


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = _parser("Run the product HTTP service.", "--graceful_timeout").parse_args(argv)
    logging.basicConfig(level=logging.INFO)
    conf = read_service_config(args.config_path)
    return _run_until_interrupted(ProductApp(conf), args.graceful_timeout)