import fnmatch
import queue
import threading
from datetime import timedelta

import pytest

from sagaflow.messages import FLAG_FALSE, FLAG_TRUE, Action, TransactionInfo
from sagaflow.redis_service import RedisService
from sagaflow.txcache import TransactionCache


class FakePubSub:
    def __init__(self, broker):
        self._broker = broker
        self.queue = queue.Queue()
        self.channels = set()
        self.closed = False

    def subscribe(self, *channels):
        self.channels.update(channels)
        self._broker.attach(self)
        for channel in channels:
            self.queue.put({"type": "subscribe", "channel": channel, "data": 1})

    def get_message(self, ignore_subscribe_messages=False, timeout=0.0):
        try:
            message = self.queue.get(timeout=timeout)
        except queue.Empty:
            return None
        if ignore_subscribe_messages and message["type"] == "subscribe":
            return None
        return message

    def close(self):
        self.closed = True
        self._broker.detach(self)


class FakeRedis:
    def __init__(self):
        self.data = {}
        self.expirations = {}
        self.published = []
        self._subs = []
        self._lock = threading.Lock()

    def attach(self, sub):
        with self._lock:
            self._subs.append(sub)

    def detach(self, sub):
        with self._lock:
            if sub in self._subs:
                self._subs.remove(sub)

    def get(self, key):
        return self.data.get(key)

    def set(self, key, value, ex=None):
        self.data[key] = value
        self.expirations[key] = ex
        return True

    def delete(self, *keys):
        return sum(1 for key in keys if self.data.pop(key, None) is not None)

    def keys(self, pattern):
        return [key for key in list(self.data) if fnmatch.fnmatchcase(key, pattern)]

    def publish(self, channel, message):
        with self._lock:
            self.published.append((channel, message))
            subs = [sub for sub in self._subs if channel in sub.channels]
        for sub in subs:
            sub.queue.put({"type": "message", "channel": channel, "data": message})
        return len(subs)

    def pubsub(self):
        return FakePubSub(self)


class FakeTx:
    def __init__(self):
        self.outcome = None
        self.done = threading.Event()

    def commit(self):
        self.outcome = "commit"
        self.done.set()

    def rollback(self):
        self.outcome = "rollback"
        self.done.set()


@pytest.fixture
def redis_client():
    return FakeRedis()


@pytest.fixture
def cache():
    return TransactionCache()


@pytest.fixture
def service(redis_client, cache):
    return RedisService(redis_client, cache)


def _participant(service, redis_client, cache, correlation_id, tx_random_id):
    tx = FakeTx()
    key = f"{correlation_id}_{tx_random_id}"
    cache.set(key, tx)
    redis_client.set(key, FLAG_FALSE)
    threads = service.subscribe_transaction_actions(correlation_id, tx_random_id, tx)
    return tx, threads


def test_set_get_roundtrip(service, redis_client):
    service.set("k", "v", timedelta(seconds=5))
    assert service.get("k") == "v"
    assert redis_client.expirations["k"] == timedelta(seconds=5)


def test_set_without_expiration(service, redis_client):
    service.set("k", "v", 0)
    assert redis_client.expirations["k"] is None
    assert service.get("k") == "v"


def test_get_decodes_bytes(service, redis_client):
    redis_client.data["k"] = b"value"
    assert service.get("k") == "value"


def test_get_missing_raises_key_error(service):
    with pytest.raises(KeyError):
        service.get("missing")


def test_delete_and_keys(service):
    service.set("a_1", "x", None)
    service.set("a_2", "y", None)
    service.set("b_1", "z", None)
    assert sorted(service.keys("a_*")) == ["a_1", "a_2"]
    service.delete("a_1", "b_1")
    assert service.keys("*") == ["a_2"]


def test_publish_transaction_action_payload(service, redis_client):
    service.publish_transaction_action("order-1_abc", Action.COMMIT)
    assert len(redis_client.published) == 1
    channel, payload = redis_client.published[0]
    assert channel == "order-1_abc"
    assert payload == '{"correlationID":"order-1_abc","action":"C"}'
    decoded = TransactionInfo.from_json(payload)
    assert decoded == TransactionInfo(correlation_id="order-1_abc", action="C")


def test_single_participant_commit(service, redis_client, cache):
    tx, (settler, watcher) = _participant(service, redis_client, cache, "cid", "r1")
    service.publish_transaction_action("cid_r1", Action.COMMIT)
    settler.join(5)
    watcher.join(5)
    assert not settler.is_alive() and not watcher.is_alive()
    assert tx.outcome == "commit"
    assert "cid_r1" not in cache
    assert "cid_r1" not in redis_client.data
    channels = [
        (channel, TransactionInfo.from_json(msg).action)
        for channel, msg in redis_client.published
    ]
    assert ("cid", Action.COMMIT.value) in channels


def test_commit_waits_for_every_participant(service, redis_client, cache):
    tx_a, (settler_a, watcher_a) = _participant(service, redis_client, cache, "cid", "a")
    tx_b, (settler_b, watcher_b) = _participant(service, redis_client, cache, "cid", "b")
    service.publish_transaction_action("cid_a", Action.COMMIT)
    watcher_a.join(5)
    assert redis_client.data["cid_a"] == FLAG_TRUE
    assert not tx_a.done.wait(0.3)
    service.publish_transaction_action("cid_b", Action.COMMIT)
    settler_a.join(5)
    settler_b.join(5)
    assert tx_a.outcome == "commit"
    assert tx_b.outcome == "commit"
    assert len(cache) == 0


def test_rollback_on_state_topic(service, redis_client, cache):
    tx_a, (settler_a, _) = _participant(service, redis_client, cache, "cid", "a")
    tx_b, (settler_b, _) = _participant(service, redis_client, cache, "cid", "b")
    service.publish_transaction_action("cid_b", Action.ROLLBACK)
    settler_a.join(5)
    settler_b.join(5)
    assert tx_a.outcome == "rollback"
    assert tx_b.outcome == "rollback"
    assert "cid_a" not in redis_client.data


def test_settler_times_out_and_rolls_back(redis_client, cache):
    service = RedisService(redis_client, cache, expiration=timedelta(milliseconds=200))
    tx, (settler, _) = _participant(service, redis_client, cache, "cid", "r1")
    settler.join(5)
    assert tx.outcome == "rollback"
    assert "cid_r1" not in cache


def test_invalid_payload_rolls_back(service, redis_client, cache):
    tx, (settler, _) = _participant(service, redis_client, cache, "cid", "r1")
    redis_client.publish("cid", "not json")
    settler.join(5)
    assert tx.outcome == "rollback"


def test_unknown_action_is_ignored(service, redis_client, cache):
    tx, (settler, _) = _participant(service, redis_client, cache, "cid", "r1")
    service.publish_transaction_action("cid", "X")
    assert not tx.done.wait(0.3)
    service.publish_transaction_action("cid", Action.COMMIT)
    settler.join(5)
    assert tx.outcome == "commit"