"""Order HTTP service: places an order as one saga across the orchestrator and the product service."""

from __future__ import annotations

import contextlib
import json
import logging
from http import HTTPStatus
from typing import Any, Iterator

from werkzeug.wrappers import Request, Response

from sagaflow.http_util import Route, WSGIApp, build_app, cors, error_response, json_response, put_json
from sagaflow.messages import (
    BeginTxRequest,
    CommonTxDoActionRequest,
    Header,
    InsertOrderDetailRequest,
    InsertOrderRequest,
    OrderRequest,
    Product,
    ProductRequest,
    RpcOrderDetail,
)

logger = logging.getLogger(__name__)

PRODUCT_API = "http://localhost:8082/api/v1/product"
ORDER_PATH = "/api/v1/order"


class OrderService:
    """Places orders: opens a saga, writes the order, reserves stock, writes details, settles."""

    def __init__(self, order_client: Any, tx_client: Any, product_api: str = PRODUCT_API) -> None:
        self._orders = order_client
        self._tx = tx_client
        self._product_api = product_api

    def insert_order(self, request: OrderRequest) -> str:
        """Place the order and return its id; any failure rolls the saga back and propagates."""
        correlation_id = request.header.correlation_id
        try:
            begin = self._tx.begin_tx(BeginTxRequest(correlation_id=correlation_id))
        except Exception:
            logger.warning("Failed to begin transaction", exc_info=True)
            begin = None
        action = CommonTxDoActionRequest(correlation_id=correlation_id, begin_tx_res=begin)

        with self._rollback_on_error(action):
            created = self._orders.insert_order(
                InsertOrderRequest(
                    correlation_id=correlation_id,
                    phone_number=request.body.phone_number,
                    address=request.body.address,
                    name=request.body.name,
                    total_price=request.body.total_price,
                    begin_tx_res=begin,
                )
            )

        details = []
        for detail in request.body.order_details:
            details.append(
                RpcOrderDetail(
                    order_id=created.id,
                    product_id=detail.product_id,
                    quantity=detail.quantity,
                    price=detail.price,
                    total_price=detail.total_price,
                )
            )
            update = ProductRequest(
                header=Header(correlation_id=correlation_id),
                body=Product(id=detail.product_id, quantity=detail.quantity),
            )
            payload = json.dumps(update.to_dict(), separators=(",", ":")).encode("utf-8")
            with self._rollback_on_error(action):
                reply = put_json(self._product_api, payload)
                if reply.get("id") is None:
                    raise RuntimeError(f"product {detail.product_id} was not updated")

        with self._rollback_on_error(action):
            self._orders.insert_order_detail(
                InsertOrderDetailRequest(
                    correlation_id=correlation_id,
                    order_details=details,
                    begin_tx_res=begin,
                )
            )
        self._settle(self._tx.commit, action)
        return created.id

    @contextlib.contextmanager
    def _rollback_on_error(self, action: CommonTxDoActionRequest) -> Iterator[None]:
        try:
            yield
        except Exception:
            self._settle(self._tx.rollback, action)
            raise

    @staticmethod
    def _settle(call: Any, action: CommonTxDoActionRequest) -> None:
        try:
            call(action)
        except Exception:
            logger.warning("failed to settle saga %s", action.correlation_id, exc_info=True)


class OrderHandler:
    """HTTP handler for placing orders."""

    def __init__(self, service: OrderService) -> None:
        self._service = service

    def insert_order(self, request: Request) -> Response:
        try:
            order = OrderRequest.from_dict(json.loads(request.get_data()))
        except ValueError as exc:
            return error_response(exc, HTTPStatus.BAD_REQUEST)
        try:
            order_id = self._service.insert_order(order)
        except Exception as exc:
            return error_response(exc, HTTPStatus.INTERNAL_SERVER_ERROR)
        return json_response(HTTPStatus.OK, {"id": order_id})

    def routes(self) -> list[Route]:
        return [Route(path=ORDER_PATH, method="POST", handler=self.insert_order)]


def new_router(order_client: Any, tx_client: Any) -> WSGIApp:
    """Build the order service's WSGI application, CORS included."""
    handler = OrderHandler(OrderService(order_client, tx_client))
    return cors(build_app(handler.routes()))