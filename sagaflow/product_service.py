"""Product HTTP service: updates stock inside a saga run by the orchestrator."""

from __future__ import annotations

import json
import logging
from http import HTTPStatus
from typing import Any

from werkzeug.wrappers import Request, Response

from sagaflow.http_util import Route, WSGIApp, build_app, cors, error_response, json_response
from sagaflow.messages import (
    BeginTxRequest,
    CommonTxDoActionRequest,
    RpcUpdateProductRequest,
    UpdateProductRequest,
)

logger = logging.getLogger(__name__)

PRODUCT_PATH = "/api/v1/product"


def _int32(value: int) -> int:
    return (value + 2**31) % 2**32 - 2**31


class ProductService:
    """Decreases a product's stock as one step of a saga."""

    def __init__(self, product_client: Any, tx_client: Any) -> None:
        self._products = product_client
        self._tx = tx_client

    def update_product(self, request: UpdateProductRequest) -> int:
        """Update the product and return the rows changed; failures roll back and propagate."""
        if request.body.id is None:
            raise ValueError("body.id is required")
        correlation_id = request.header.correlation_id
        begin = self._tx.begin_tx(BeginTxRequest(correlation_id=correlation_id))
        action = CommonTxDoActionRequest(correlation_id=correlation_id, begin_tx_res=begin)
        try:
            result = self._products.update_product(
                RpcUpdateProductRequest(
                    correlation_id=correlation_id,
                    id=_int32(request.body.id),
                    quantity=request.body.quantity,
                    begin_tx_res=begin,
                )
            )
        except Exception:
            self._settle(self._tx.rollback, action)
            raise
        self._settle(self._tx.commit, action)
        return result.row_affected

    @staticmethod
    def _settle(call: Any, action: CommonTxDoActionRequest) -> None:
        try:
            call(action)
        except Exception:
            logger.warning("failed to settle saga %s", action.correlation_id, exc_info=True)


class ProductHandler:
    """HTTP handler for product stock updates."""

    def __init__(self, service: ProductService) -> None:
        self._service = service

    def update_product(self, request: Request) -> Response:
        try:
            update = UpdateProductRequest.from_dict(json.loads(request.get_data()))
        except ValueError as exc:
            return error_response(exc, HTTPStatus.BAD_REQUEST)
        try:
            self._service.update_product(update)
        except Exception as exc:
            return error_response(exc, HTTPStatus.INTERNAL_SERVER_ERROR)
        return json_response(HTTPStatus.OK, {"id": update.body.id})

    def routes(self) -> list[Route]:
        return [Route(path=PRODUCT_PATH, method="PUT", handler=self.update_product)]


def new_router(product_client: Any, tx_client: Any) -> WSGIApp:
    """Build the product service's WSGI application, CORS included."""
    handler = ProductHandler(ProductService(product_client, tx_client))
    return cors(build_app(handler.routes()))