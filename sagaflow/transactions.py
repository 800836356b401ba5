"""Local database transactions coordinated through Redis."""

from __future__ import annotations

import contextlib
import threading
import uuid
from typing import Any, Optional

from sqlalchemy import text

from sagaflow.messages import (
    FLAG_FALSE,
    TX_EXPIRATION,
    Action,
    BeginTxRequest,
    BeginTxResponse,
    CommonTxDoActionRequest,
    CommonTxResponse,
)
from sagaflow.redis_service import RedisService
from sagaflow.txcache import TransactionCache


class TransactionNotFoundError(LookupError):
    """No open transaction is known under the given identifiers."""


class _Transaction:
    """An open database transaction on its own connection."""

    def __init__(self, connection: Any) -> None:
        self._connection = connection
        self._transaction = connection.begin()
        self._lock = threading.Lock()
        self._closed = False

    def execute(self, statement: Any, parameters: Optional[dict] = None) -> Any:
        if isinstance(statement, str):
            statement = text(statement)
        return self._connection.execute(statement, parameters or {})

    def commit(self) -> None:
        self._end(self._transaction.commit)

    def rollback(self) -> None:
        self._end(self._transaction.rollback)

    def _end(self, settle: Any) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            try:
                settle()
            finally:
                self._connection.close()


def _topic_key(correlation_id: str, tx_random_id: str) -> str:
    return f"{correlation_id}_{tx_random_id}"


class TransactionService:
    """Opens local transactions and asks participants to settle them."""

    def __init__(self, db: Any, redis_service: RedisService, tx_cache: TransactionCache) -> None:
        self.db = db
        self._redis = redis_service
        self._tx_cache = tx_cache

    def get_tx(self, correlation_id: str, tx_random_id: str) -> Any:
        tx = self._tx_cache.get(_topic_key(correlation_id, tx_random_id))
        if tx is None:
            raise TransactionNotFoundError("Couldn't found the transaction")
        return tx

    def begin_tx(self, correlation_id: str) -> tuple[bool, str]:
        """Open a transaction for correlation_id; return (is_renew, tx_random_id)."""
        is_renew = True
        tx_random_id = str(uuid.uuid4())
        key = _topic_key(correlation_id, tx_random_id)
        tx = _Transaction(self.db.connect())
        self._tx_cache.set(key, tx)
        try:
            self._redis.set(key, FLAG_FALSE, TX_EXPIRATION)
        except Exception:
            self._tx_cache.remove(key)
            with contextlib.suppress(Exception):
                tx.rollback()
            raise
        self._redis.subscribe_transaction_actions(correlation_id, tx_random_id, tx)
        return is_renew, tx_random_id

    def commit(self, correlation_id: str, tx_random_id: str) -> None:
        self._redis.publish_transaction_action(
            _topic_key(correlation_id, tx_random_id), Action.COMMIT
        )

    def rollback(self, correlation_id: str, tx_random_id: str) -> None:
        self._redis.publish_transaction_action(
            _topic_key(correlation_id, tx_random_id), Action.ROLLBACK
        )


def _begin_response(request: CommonTxDoActionRequest) -> BeginTxResponse:
    if request.begin_tx_res is None:
        raise ValueError("begin_tx_res is required")
    return request.begin_tx_res


class TransactionGService:
    """RPC-facing transaction service."""

    def __init__(self, tx_service: TransactionService) -> None:
        self._tx_service = tx_service

    def begin_tx(self, request: BeginTxRequest) -> BeginTxResponse:
        is_renew, tx_random_id = self._tx_service.begin_tx(request.correlation_id)
        return BeginTxResponse(is_renew=is_renew, tx_random_id=tx_random_id)

    def commit(self, request: CommonTxDoActionRequest) -> CommonTxResponse:
        begin = _begin_response(request)
        if begin.is_renew:
            self._tx_service.commit(request.correlation_id, begin.tx_random_id)
        return CommonTxResponse(ok=True)

    def rollback(self, request: CommonTxDoActionRequest) -> CommonTxResponse:
        begin = _begin_response(request)
        if begin.is_renew:
            self._tx_service.rollback(request.correlation_id, begin.tx_random_id)
        return CommonTxResponse(ok=True)