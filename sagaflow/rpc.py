"""gRPC wiring for the transaction, order and product services, with JSON-encoded messages."""

from __future__ import annotations

import json
import logging
from typing import Any, Callable

import grpc

from sagaflow.messages import (
    BeginTxRequest,
    BeginTxResponse,
    CommonTxDoActionRequest,
    CommonTxResponse,
    InsertOrderDetailRequest,
    InsertOrderDetailResponse,
    InsertOrderRequest,
    InsertOrderResponse,
    RpcUpdateProductRequest,
    RpcUpdateProductResponse,
    message_from_dict,
    message_to_dict,
)
from sagaflow.transactions import TransactionNotFoundError

logger = logging.getLogger(__name__)

TRANSACTION_SERVICE = "transaction.Transaction"
ORDER_SERVICE = "order.Order"
PRODUCT_SERVICE = "product.Product"


def _serialize(message: Any) -> bytes:
    return json.dumps(message_to_dict(message), separators=(",", ":")).encode("utf-8")


def _deserializer(cls: type) -> Callable[[bytes], Any]:
    def deserialize(data: bytes) -> Any:
        return message_from_dict(cls, json.loads(data))

    return deserialize


def _handler(method: Callable[[Any], Any], request_cls: type) -> grpc.RpcMethodHandler:
    def behavior(request: Any, context: grpc.ServicerContext) -> Any:
        try:
            return method(request)
        except TransactionNotFoundError as exc:
            context.abort(grpc.StatusCode.NOT_FOUND, str(exc))
        except ValueError as exc:
            context.abort(grpc.StatusCode.INVALID_ARGUMENT, str(exc))
        except Exception as exc:
            logger.exception("RPC handler failed")
            context.abort(grpc.StatusCode.UNKNOWN, str(exc))

    return grpc.unary_unary_rpc_method_handler(
        behavior,
        request_deserializer=_deserializer(request_cls),
        response_serializer=_serialize,
    )


def register_services(
    server: grpc.Server, transaction_service: Any, order_service: Any, product_service: Any
) -> None:
    """Expose the three services on server."""
    server.add_generic_rpc_handlers(
        (
            grpc.method_handlers_generic_handler(
                TRANSACTION_SERVICE,
                {
                    "BeginTx": _handler(transaction_service.begin_tx, BeginTxRequest),
                    "Commit": _handler(transaction_service.commit, CommonTxDoActionRequest),
                    "Rollback": _handler(transaction_service.rollback, CommonTxDoActionRequest),
                },
            ),
            grpc.method_handlers_generic_handler(
                ORDER_SERVICE,
                {
                    "InsertOrder": _handler(order_service.insert_order, InsertOrderRequest),
                    "InsertOrderDetail": _handler(
                        order_service.insert_order_detail, InsertOrderDetailRequest
                    ),
                },
            ),
            grpc.method_handlers_generic_handler(
                PRODUCT_SERVICE,
                {
                    "UpdateProduct": _handler(
                        product_service.update_product, RpcUpdateProductRequest
                    ),
                },
            ),
        )
    )


def _call(channel: grpc.Channel, service: str, method: str, response_cls: type) -> Any:
    return channel.unary_unary(
        f"/{service}/{method}",
        request_serializer=_serialize,
        response_deserializer=_deserializer(response_cls),
    )


class TransactionClient:
    """Client of the transaction service; failures raise grpc.RpcError."""

    def __init__(self, channel: grpc.Channel) -> None:
        self._begin_tx = _call(channel, TRANSACTION_SERVICE, "BeginTx", BeginTxResponse)
        self._commit = _call(channel, TRANSACTION_SERVICE, "Commit", CommonTxResponse)
        self._rollback = _call(channel, TRANSACTION_SERVICE, "Rollback", CommonTxResponse)

    def begin_tx(self, request: BeginTxRequest) -> BeginTxResponse:
        return self._begin_tx(request)

    def commit(self, request: CommonTxDoActionRequest) -> CommonTxResponse:
        return self._commit(request)

    def rollback(self, request: CommonTxDoActionRequest) -> CommonTxResponse:
        return self._rollback(request)


class OrderClient:
    """Client of the order service; failures raise grpc.RpcError."""

    def __init__(self, channel: grpc.Channel) -> None:
        self._insert_order = _call(channel, ORDER_SERVICE, "InsertOrder", InsertOrderResponse)
        self._insert_order_detail = _call(
            channel, ORDER_SERVICE, "InsertOrderDetail", InsertOrderDetailResponse
        )

    def insert_order(self, request: InsertOrderRequest) -> InsertOrderResponse:
        return self._insert_order(request)

    def insert_order_detail(self, request: InsertOrderDetailRequest) -> InsertOrderDetailResponse:
        return self._insert_order_detail(request)


class ProductClient:
    """Client of the product service; failures raise grpc.RpcError."""

    def __init__(self, channel: grpc.Channel) -> None:
        self._update_product = _call(
            channel, PRODUCT_SERVICE, "UpdateProduct", RpcUpdateProductResponse
        )

    def update_product(self, request: RpcUpdateProductRequest) -> RpcUpdateProductResponse:
        return self._update_product(request)