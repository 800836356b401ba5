"""Order and product writes made inside saga-managed transactions."""

from __future__ import annotations

import uuid
from typing import Any, Optional

from sagaflow.messages import (
    BeginTxResponse,
    InsertOrderDetailRequest,
    InsertOrderDetailResponse,
    InsertOrderRequest,
    InsertOrderResponse,
    RpcUpdateProductRequest,
    RpcUpdateProductResponse,
)
from sagaflow.transactions import TransactionService

_INSERT_ORDER = (
    "INSERT INTO orders(id, phone_number, address, name, total_price) "
    "VALUES(:id, :phone_number, :address, :name, :total_price)"
)
_INSERT_ORDER_DETAIL = (
    "INSERT INTO order_detail(order_id, product_id, quantity, price, total_price) "
    "VALUES(:order_id, :product_id, :quantity, :price, :total_price)"
)
_UPDATE_PRODUCT = "UPDATE product SET quantity=(quantity - :quantity) WHERE id=:id"


def _open_tx(
    tx_service: TransactionService, correlation_id: str, begin: Optional[BeginTxResponse]
) -> Any:
    if begin is None:
        raise ValueError("begin_tx_res is required")
    return tx_service.get_tx(correlation_id, begin.tx_random_id)


class OrderRepository:
    """Writes orders and their details in the caller's open transaction."""

    def __init__(self, tx_service: TransactionService) -> None:
        self._tx_service = tx_service

    def insert_order(self, request: InsertOrderRequest) -> InsertOrderResponse:
        """Insert the order under a fresh id; raise RuntimeError if no row was written."""
        tx = _open_tx(self._tx_service, request.correlation_id, request.begin_tx_res)
        order_id = str(uuid.uuid4())
        result = tx.execute(
            _INSERT_ORDER,
            {
                "id": order_id,
                "phone_number": request.phone_number,
                "address": request.address,
                "name": request.name,
                "total_price": request.total_price,
            },
        )
        if result.rowcount > 0:
            return InsertOrderResponse(id=order_id)
        raise RuntimeError("order was not inserted")

    def insert_order_detail(self, request: InsertOrderDetailRequest) -> InsertOrderDetailResponse:
        """Insert every detail line and report how many rows were written."""
        tx = _open_tx(self._tx_service, request.correlation_id, request.begin_tx_res)
        total = 0
        for detail in request.order_details:
            result = tx.execute(
                _INSERT_ORDER_DETAIL,
                {
                    "order_id": detail.order_id,
                    "product_id": detail.product_id,
                    "quantity": detail.quantity,
                    "price": detail.price,
                    "total_price": detail.total_price,
                },
            )
            if result.rowcount < 0:
                raise RuntimeError("number of inserted rows is unknown")
            total += result.rowcount
        return InsertOrderDetailResponse(row_affected=total)


class OrderGService:
    """RPC-facing order service."""

    def __init__(self, repository: OrderRepository) -> None:
        self._repository = repository

    def insert_order(self, request: InsertOrderRequest) -> InsertOrderResponse:
        return self._repository.insert_order(request)

    def insert_order_detail(self, request: InsertOrderDetailRequest) -> InsertOrderDetailResponse:
        return self._repository.insert_order_detail(request)


class ProductRepository:
    """Decreases product stock in the caller's open transaction."""

    def __init__(self, tx_service: TransactionService) -> None:
        self._tx_service = tx_service

    def update_product(self, request: RpcUpdateProductRequest) -> RpcUpdateProductResponse:
        """Subtract the quantity from the product's stock; report the rows changed."""
        tx = _open_tx(self._tx_service, request.correlation_id, request.begin_tx_res)
        result = tx.execute(_UPDATE_PRODUCT, {"quantity": request.quantity, "id": request.id})
        if result.rowcount > 0:
            return RpcUpdateProductResponse(row_affected=result.rowcount)
        return RpcUpdateProductResponse(row_affected=0)


class ProductGService:
    """RPC-facing product service."""

    def __init__(self, repository: ProductRepository) -> None:
        self._repository = repository

    def update_product(self, request: RpcUpdateProductRequest) -> RpcUpdateProductResponse:
        return self._repository.update_product(request)