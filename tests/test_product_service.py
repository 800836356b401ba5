import json

import pytest
from werkzeug.test import Client

from sagaflow.messages import (
    BeginTxResponse,
    CommonTxResponse,
    Header,
    ProductUpdate,
    RpcUpdateProductResponse,
    UpdateProductRequest,
)
from sagaflow.product_service import ProductService, new_router


class FakeTx:
    def __init__(self, fail_begin=False, fail_commit=False):
        self.fail_begin = fail_begin
        self.fail_commit = fail_commit
        self.calls = []

    def begin_tx(self, request):
        self.calls.append(("begin", request))
        if self.fail_begin:
            raise RuntimeError("no orchestrator")
        return BeginTxResponse(is_renew=True, tx_random_id="rand")

    def commit(self, request):
        self.calls.append(("commit", request))
        if self.fail_commit:
            raise RuntimeError("commit failed")
        return CommonTxResponse(ok=True)

    def rollback(self, request):
        self.calls.append(("rollback", request))
        return CommonTxResponse(ok=True)

    def names(self):
        return [name for name, _ in self.calls]


class FakeProducts:
    def __init__(self, fail=False, rows=1):
        self.fail = fail
        self.rows = rows
        self.requests = []

    def update_product(self, request):
        self.requests.append(request)
        if self.fail:
            raise RuntimeError("update failed")
        return RpcUpdateProductResponse(row_affected=self.rows)


def _request(product_id=5):
    return UpdateProductRequest(
        header=Header(correlation_id="corr"),
        body=ProductUpdate(id=product_id, quantity=2),
    )


def test_update_product_success_commits():
    tx, products = FakeTx(), FakeProducts(rows=1)
    assert ProductService(products, tx).update_product(_request()) == 1
    assert tx.names() == ["begin", "commit"]
    sent = products.requests[0]
    assert (sent.correlation_id, sent.id, sent.quantity) == ("corr", 5, 2)
    assert sent.begin_tx_res.tx_random_id == "rand"
    assert tx.calls[-1][1].begin_tx_res.tx_random_id == "rand"


def test_update_failure_rolls_back():
    tx = FakeTx()
    with pytest.raises(RuntimeError, match="update failed"):
        ProductService(FakeProducts(fail=True), tx).update_product(_request())
    assert tx.names() == ["begin", "rollback"]


def test_begin_failure_propagates_without_update():
    tx, products = FakeTx(fail_begin=True), FakeProducts()
    with pytest.raises(RuntimeError, match="no orchestrator"):
        ProductService(products, tx).update_product(_request())
    assert products.requests == []
    assert tx.names() == ["begin"]


def test_missing_id_is_rejected():
    tx = FakeTx()
    with pytest.raises(ValueError):
        ProductService(FakeProducts(), tx).update_product(_request(product_id=None))
    assert tx.calls == []


def test_commit_error_is_not_raised():
    tx = FakeTx(fail_commit=True)
    assert ProductService(FakeProducts(rows=0), tx).update_product(_request()) == 0
    assert tx.names() == ["begin", "commit"]


def test_router_updates_product():
    client = Client(new_router(FakeProducts(), FakeTx()))
    body = {"header": {"correlationID": "corr"}, "body": {"id": 5, "quantity": 2}}
    resp = client.put("/api/v1/product", data=json.dumps(body))
    assert resp.status_code == 200
    assert json.loads(resp.get_data()) == {"id": 5}


def test_router_bad_json_is_400():
    client = Client(new_router(FakeProducts(), FakeTx()))
    resp = client.put("/api/v1/product", data=b"[1")
    assert resp.status_code == 400
    assert json.loads(resp.get_data())["code"] == 400


def test_router_service_failure_is_500():
    client = Client(new_router(FakeProducts(fail=True), FakeTx()))
    body = {"body": {"id": 5, "quantity": 2}}
    resp = client.put("/api/v1/product", data=json.dumps(body))
    assert resp.status_code == 500
    assert json.loads(resp.get_data())["message"] == "update failed"


def test_router_wrong_method_and_cors():
    client = Client(new_router(FakeProducts(), FakeTx()))
    assert client.post("/api/v1/product").status_code == 405
    resp = client.options(
        "/api/v1/product",
        headers={"Origin": "http://localhost", "Access-Control-Request-Method": "PUT"},
    )
    assert resp.status_code == 200
    assert resp.headers["Access-Control-Allow-Methods"] == "PUT"