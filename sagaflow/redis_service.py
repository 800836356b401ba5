"""Redis cache access and the pub/sub protocol that settles local transactions."""

from __future__ import annotations

import contextlib
import logging
import threading
import time
from datetime import timedelta
from typing import Any, Callable, Optional, Union

from redis.exceptions import RedisError

from sagaflow.messages import FLAG_TRUE, TX_EXPIRATION, Action, TransactionInfo
from sagaflow.txcache import TransactionCache

logger = logging.getLogger(__name__)

Duration = Union[timedelta, float, int]

_POLL_INTERVAL = 0.1


def _seconds(duration: Duration) -> float:
    if isinstance(duration, timedelta):
        return duration.total_seconds()
    return float(duration)


def _text(value: Any) -> str:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("utf-8")
    return str(value)


def _receive(subscription: Any, timeout: Optional[float]) -> str:
    """Wait for the next published message; raise TimeoutError once timeout seconds pass."""
    deadline = None if timeout is None else time.monotonic() + timeout
    while True:
        if deadline is None:
            wait = _POLL_INTERVAL
        else:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise TimeoutError("no message before the deadline")
            wait = min(remaining, _POLL_INTERVAL)
        message = subscription.get_message(ignore_subscribe_messages=True, timeout=wait)
        if message and message.get("type") == "message":
            return _text(message["data"])


class RedisService:
    """Key/value access plus the commit and rollback protocol of a saga."""

    def __init__(
        self,
        client: Any,
        tx_cache: TransactionCache,
        expiration: Duration = TX_EXPIRATION,
    ) -> None:
        self._client = client
        self._tx_cache = tx_cache
        self._expiration = expiration

    # --- cache ----------------------------------------------------------------

    def get(self, key: str) -> str:
        """Return the value stored under key; raise KeyError when there is none."""
        value = self._client.get(key)
        if value is None:
            raise KeyError(key)
        return _text(value)

    def set(self, key: str, value: Any, expiration: Optional[Duration]) -> None:
        """Store value under key; a zero or missing expiration keeps it forever."""
        if expiration is None or _seconds(expiration) <= 0:
            self._client.set(key, value)
        else:
            seconds = _seconds(expiration)
            ex = expiration if isinstance(expiration, timedelta) else timedelta(seconds=seconds)
            self._client.set(key, value, ex=ex)

    def delete(self, *args: str) -> None:
        if args:
            self._client.delete(*args)

    def keys(self, pattern: str) -> list[str]:
        return [_text(key) for key in self._client.keys(pattern)]

    # --- pub/sub --------------------------------------------------------------

    def publish_transaction_action(self, topic: str, action: Union[Action, str]) -> None:
        """Publish an action on topic; Redis errors propagate."""
        info = TransactionInfo(correlation_id=topic, action=action)
        self._client.publish(topic, info.to_json())

    def subscribe_transaction_actions(
        self, correlation_id: str, tx_random_id: str, tx: Any
    ) -> tuple[threading.Thread, threading.Thread]:
        """Start the two listeners that settle tx; return them as (settler, state watcher).

        The settler listens on the correlation channel and commits or rolls back tx.
        The state watcher listens on the participant's own topic, records its vote
        and, once every participant has voted to commit, broadcasts the commit.
        """
        topic_key = f"{correlation_id}_{tx_random_id}"
        tx_subscription = self._client.pubsub()
        tx_subscription.subscribe(correlation_id)
        state_subscription = self._client.pubsub()
        state_subscription.subscribe(topic_key)
        settler = threading.Thread(
            target=self._settle_transaction,
            args=(tx_subscription, topic_key, tx),
            name=f"settle-{topic_key}",
            daemon=True,
        )
        watcher = threading.Thread(
            target=self._watch_state,
            args=(state_subscription, correlation_id, topic_key),
            name=f"state-{topic_key}",
            daemon=True,
        )
        settler.start()
        watcher.start()
        return settler, watcher

    def _settle_transaction(self, subscription: Any, topic_key: str, tx: Any) -> None:
        try:
            while True:
                try:
                    payload = _receive(subscription, _seconds(self._expiration))
                    info = TransactionInfo.from_json(payload)
                except (TimeoutError, RedisError, ValueError):
                    self._finish(topic_key, tx.rollback)
                    return
                if info.action == Action.COMMIT:
                    self._finish(topic_key, tx.commit)
                    return
                if info.action == Action.ROLLBACK:
                    self._finish(topic_key, tx.rollback)
                    return
        finally:
            with contextlib.suppress(Exception):
                subscription.close()

    def _finish(self, topic_key: str, settle: Callable[[], Any]) -> None:
        self._tx_cache.remove(topic_key)
        with contextlib.suppress(RedisError):
            self.delete(topic_key)
        try:
            settle()
        except Exception:
            logger.exception("failed to settle transaction %s", topic_key)

    def _watch_state(self, subscription: Any, correlation_id: str, topic_key: str) -> None:
        try:
            while True:
                try:
                    info = TransactionInfo.from_json(_receive(subscription, None))
                except (RedisError, ValueError):
                    self._publish_quietly(correlation_id, Action.ROLLBACK)
                    return
                if info.action == Action.COMMIT:
                    try:
                        self.set(topic_key, FLAG_TRUE, self._expiration)
                        votes = [self.get(key) for key in self.keys(f"{correlation_id}_*")]
                    except (RedisError, KeyError):
                        self._publish_quietly(correlation_id, Action.ROLLBACK)
                        return
                    if all(vote == FLAG_TRUE for vote in votes):
                        self._publish_quietly(correlation_id, Action.COMMIT)
                    return
                if info.action == Action.ROLLBACK:
                    self._publish_quietly(correlation_id, Action.ROLLBACK)
                    return
        finally:
            with contextlib.suppress(Exception):
                subscription.close()

    def _publish_quietly(self, topic: str, action: Action) -> None:
        try:
            self.publish_transaction_action(topic, action)
        except RedisError:
            logger.exception("failed to publish %s on %s", action.value, topic)