import json
from unittest import mock

import pytest
import requests
from werkzeug.test import Client

from sagaflow.messages import (
    BeginTxResponse,
    CommonTxResponse,
    Header,
    InsertOrderDetailResponse,
    InsertOrderResponse,
    Order,
    OrderDetail,
    OrderRequest,
)
from sagaflow.order_service import PRODUCT_API, OrderService, new_router


class FakeTx:
    def __init__(self, fail_begin=False):
        self.fail_begin = fail_begin
        self.calls = []

    def begin_tx(self, request):
        self.calls.append(("begin", request))
        if self.fail_begin:
            raise RuntimeError("no orchestrator")
        return BeginTxResponse(is_renew=True, tx_random_id="rand")

    def commit(self, request):
        self.calls.append(("commit", request))
        return CommonTxResponse(ok=True)

    def rollback(self, request):
        self.calls.append(("rollback", request))
        return CommonTxResponse(ok=True)

    def names(self):
        return [name for name, _ in self.calls]


class FakeOrders:
    def __init__(self, fail_order=False, fail_detail=False):
        self.fail_order = fail_order
        self.fail_detail = fail_detail
        self.orders = []
        self.details = []

    def insert_order(self, request):
        self.orders.append(request)
        if self.fail_order:
            raise RuntimeError("insert failed")
        return InsertOrderResponse(id="order-1")

    def insert_order_detail(self, request):
        self.details.append(request)
        if self.fail_detail:
            raise RuntimeError("detail failed")
        return InsertOrderDetailResponse(row_affected=len(request.order_details))


def _request():
    return OrderRequest(
        header=Header(correlation_id="corr"),
        body=Order(
            phone_number="000",
            name="n",
            address="a",
            total_price=10.0,
            order_details=[OrderDetail(product_id=3, price=5.0, total_price=10.0, quantity=2)],
        ),
    )


@pytest.fixture
def product_put():
    with mock.patch("requests.put") as put:
        put.return_value = mock.Mock(content=b'{"id": 3}')
        yield put


def test_insert_order_success(product_put):
    tx, orders = FakeTx(), FakeOrders()
    assert OrderService(orders, tx).insert_order(_request()) == "order-1"
    assert tx.names() == ["begin", "commit"]
    assert orders.orders[0].begin_tx_res.tx_random_id == "rand"
    detail = orders.details[0].order_details[0]
    assert (detail.order_id, detail.product_id, detail.quantity) == ("order-1", 3, 2)
    url = product_put.call_args.args[0]
    sent = json.loads(product_put.call_args.kwargs["data"])
    assert url == PRODUCT_API
    assert sent == {"header": {"correlationID": "corr"}, "body": {"id": 3, "quantity": 2}}


def test_insert_order_failure_rolls_back(product_put):
    tx, orders = FakeTx(), FakeOrders(fail_order=True)
    with pytest.raises(RuntimeError, match="insert failed"):
        OrderService(orders, tx).insert_order(_request())
    assert tx.names() == ["begin", "rollback"]
    assert product_put.call_count == 0


def test_product_without_id_rolls_back(product_put):
    product_put.return_value = mock.Mock(content=b"{}")
    tx, orders = FakeTx(), FakeOrders()
    with pytest.raises(RuntimeError):
        OrderService(orders, tx).insert_order(_request())
    assert tx.names() == ["begin", "rollback"]
    assert orders.details == []


def test_product_call_error_rolls_back(product_put):
    product_put.side_effect = requests.ConnectionError("down")
    tx = FakeTx()
    with pytest.raises(requests.ConnectionError):
        OrderService(FakeOrders(), tx).insert_order(_request())
    assert tx.names() == ["begin", "rollback"]


def test_detail_failure_rolls_back(product_put):
    tx = FakeTx()
    with pytest.raises(RuntimeError, match="detail failed"):
        OrderService(FakeOrders(fail_detail=True), tx).insert_order(_request())
    assert tx.names() == ["begin", "rollback"]


def test_begin_failure_continues_without_transaction(product_put):
    tx, orders = FakeTx(fail_begin=True), FakeOrders()
    assert OrderService(orders, tx).insert_order(_request()) == "order-1"
    assert orders.orders[0].begin_tx_res is None
    assert tx.calls[-1][0] == "commit"
    assert tx.calls[-1][1].begin_tx_res is None


def test_router_places_order(product_put):
    client = Client(new_router(FakeOrders(), FakeTx()))
    body = {"header": {"correlationID": "corr"}, "body": {"name": "n", "orderDetails": []}}
    resp = client.post("/api/v1/order", data=json.dumps(body))
    assert resp.status_code == 200
    assert json.loads(resp.get_data()) == {"id": "order-1"}


def test_router_bad_json_is_400():
    client = Client(new_router(FakeOrders(), FakeTx()))
    resp = client.post("/api/v1/order", data=b"{oops")
    assert resp.status_code == 400
    assert json.loads(resp.get_data())["code"] == 400


def test_router_service_failure_is_500(product_put):
    client = Client(new_router(FakeOrders(fail_order=True), FakeTx()))
    resp = client.post("/api/v1/order", data=b"{}")
    assert resp.status_code == 500
    assert json.loads(resp.get_data())["message"] == "insert failed"


def test_router_wrong_method_and_cors():
    client = Client(new_router(FakeOrders(), FakeTx()))
    assert client.get("/api/v1/order").status_code == 405
    resp = client.options(
        "/api/v1/order",
        headers={"Origin": "http://localhost", "Access-Control-Request-Method": "POST"},
    )
    assert resp.status_code == 200
    assert resp.headers["Access-Control-Allow-Origin"] == "*"