"""Tests for Idempotency-Key validation, stores and the coordinator."""

import asyncio
import logging
import uuid

import pytest

from quotes_aggregator.database.idempotency_store import InMemoryIdempotencyStore
from quotes_aggregator.database.idempotency_store_redis import RedisIdempotencyStore
from quotes_aggregator.idempotency import (
    INVALID_IDEMPOTENCY_KEY,
    MISSING_IDEMPOTENCY_KEY,
    IdempotencyConflictError,
    IdempotencyCoordinator,
    IdempotencyKeyError,
    IdempotencyRecord,
    fingerprint_payload,
    validate_idempotency_key,
)


class FakeRedis:
    def __init__(self):
        self.data = {}
        self.expiries = {}

    def get(self, key):
        return self.data.get(key)

    def set(self, key, value, nx=False, ex=None):
        if nx and key in self.data:
            return None
        self.data[key] = value
        self.expiries[key] = ex
        return True

    def delete(self, key):
        self.data.pop(key, None)

    def ping(self):
        return True


class Counter:
    def __init__(self, fail=False, delay=0.0):
        self.calls = 0
        self.fail = fail
        self.delay = delay

    async def __call__(self):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise RuntimeError("pricing exploded")
        return {"quoteId": f"q-{self.calls}"}


# --- key validation ---


@pytest.mark.parametrize("value", [None, "", "   "])
def test_missing_key(value):
    with pytest.raises(IdempotencyKeyError) as exc:
        validate_idempotency_key(value)
    assert exc.value.code == MISSING_IDEMPOTENCY_KEY


@pytest.mark.parametrize(
    "value",
    ["not-a-uuid", str(uuid.uuid1()), "12345678-1234-1234-1234-123456789012", "a" * 36],
)
def test_invalid_key(value):
    with pytest.raises(IdempotencyKeyError) as exc:
        validate_idempotency_key(value)
    assert exc.value.code == INVALID_IDEMPOTENCY_KEY


def test_valid_uuid_v4_accepted_in_any_case():
    key = str(uuid.uuid4())
    assert validate_idempotency_key(key) == key
    assert validate_idempotency_key(key.upper()) == key.upper()


def test_fingerprint_ignores_key_order():
    assert fingerprint_payload({"a": 1, "b": 2}) == fingerprint_payload({"b": 2, "a": 1})
    assert fingerprint_payload({"a": 1}) != fingerprint_payload({"a": 2})


# --- in-memory store ---


def test_store_roundtrip_and_ttl_expiry(clock):
    store = InMemoryIdempotencyStore(ttl_seconds=60, clock=clock)
    record = IdempotencyRecord(key="k", result={"quoteId": "q-1"}, created_at=clock())
    assert store.get("k") is None

    assert store.put_if_absent(record) is record
    assert store.get("k") is record

    clock.advance(59)
    assert store.get("k") is record

    clock.advance(1)
    assert store.get("k") is None
    assert len(store) == 0


def test_store_is_append_once(clock):
    store = InMemoryIdempotencyStore(ttl_seconds=60, clock=clock)
    first = IdempotencyRecord(key="k", result={"quoteId": "q-1"}, created_at=clock())
    second = IdempotencyRecord(key="k", result={"quoteId": "q-2"}, created_at=clock())

    store.put_if_absent(first)
    assert store.put_if_absent(second) is first
    assert store.get("k").result == {"quoteId": "q-1"}


def test_expired_record_can_be_replaced(clock):
    store = InMemoryIdempotencyStore(ttl_seconds=60, clock=clock)
    store.put_if_absent(IdempotencyRecord(key="k", result={"quoteId": "old"}, created_at=clock()))
    clock.advance(120)

    fresh = IdempotencyRecord(key="k", result={"quoteId": "new"}, created_at=clock())
    assert store.put_if_absent(fresh) is fresh


def test_evict_expired(clock):
    store = InMemoryIdempotencyStore(ttl_seconds=60, clock=clock)
    store.put_if_absent(IdempotencyRecord(key="old", result={}, created_at=clock()))
    clock.advance(30)
    store.put_if_absent(IdempotencyRecord(key="new", result={}, created_at=clock()))
    clock.advance(30)

    coordinator = IdempotencyCoordinator(store)
    assert coordinator.evict_expired() == 1
    assert len(store) == 1
    assert store.get("new") is not None


# --- redis store ---


def test_redis_store_uses_set_nx_with_ttl():
    fake = FakeRedis()
    store = RedisIdempotencyStore(ttl_seconds=120, client=fake)
    record = IdempotencyRecord(key="k", result={"quoteId": "q-1"}, created_at=1.0, fingerprint="abc")

    assert store.put_if_absent(record) is record
    assert fake.expiries["idempotency:k"] == 120

    loser = IdempotencyRecord(key="k", result={"quoteId": "q-2"}, created_at=2.0)
    stored = store.put_if_absent(loser)
    assert stored.result == {"quoteId": "q-1"}
    assert stored.fingerprint == "abc"
    assert store.get("k") == record


def test_redis_store_discards_unreadable_records():
    fake = FakeRedis()
    fake.data["idempotency:k"] = "{not json"
    store = RedisIdempotencyStore(client=fake)

    assert store.get("k") is None
    assert "idempotency:k" not in fake.data
    assert store.ping() is True


def test_redis_store_requires_url_or_client():
    with pytest.raises(ValueError):
        RedisIdempotencyStore()


# --- coordinator ---


@pytest.mark.asyncio
async def test_execute_runs_operation_once_per_key(clock):
    coordinator = IdempotencyCoordinator(InMemoryIdempotencyStore(clock=clock))
    operation = Counter()
    hits = []

    first = await coordinator.execute("k", operation, on_hit=hits.append)
    second = await coordinator.execute("k", operation, on_hit=hits.append)

    assert first.cached is False
    assert second.cached is True
    assert second.body == first.body == {"quoteId": "q-1"}
    assert operation.calls == 1
    assert len(hits) == 1


@pytest.mark.asyncio
async def test_failed_operation_is_not_stored(clock):
    store = InMemoryIdempotencyStore(clock=clock)
    coordinator = IdempotencyCoordinator(store)
    operation = Counter(fail=True)

    with pytest.raises(RuntimeError):
        await coordinator.execute("k", operation)
    assert store.get("k") is None

    operation.fail = False
    outcome = await coordinator.execute("k", operation)
    assert outcome.cached is False
    assert operation.calls == 2


@pytest.mark.asyncio
async def test_concurrent_same_key_executes_once_with_in_flight_lock(clock):
    coordinator = IdempotencyCoordinator(InMemoryIdempotencyStore(clock=clock))
    operation = Counter(delay=0.02)

    outcomes = await asyncio.gather(*(coordinator.execute("k", operation) for _ in range(5)))

    assert operation.calls == 1
    assert sorted(o.cached for o in outcomes) == [False, True, True, True, True]
    assert {o.body["quoteId"] for o in outcomes} == {"q-1"}
    assert coordinator._locks == {}


@pytest.mark.asyncio
async def test_concurrent_without_lock_converges_on_first_stored_result(clock, caplog):
    coordinator = IdempotencyCoordinator(InMemoryIdempotencyStore(clock=clock), lock_in_flight=False)
    operation = Counter(delay=0.02)

    with caplog.at_level(logging.WARNING):
        outcomes = await asyncio.gather(coordinator.execute("k", operation), coordinator.execute("k", operation))

    assert operation.calls == 2
    assert outcomes[0].body == outcomes[1].body
    assert "already has a stored result" in caplog.text


@pytest.mark.asyncio
async def test_reject_policy_raises_on_payload_mismatch(clock):
    coordinator = IdempotencyCoordinator(InMemoryIdempotencyStore(clock=clock), payload_mismatch="reject")
    operation = Counter()
    await coordinator.execute("k", operation, fingerprint=fingerprint_payload({"coverage": 1}))

    with pytest.raises(IdempotencyConflictError):
        await coordinator.execute("k", operation, fingerprint=fingerprint_payload({"coverage": 2}))

    same = await coordinator.execute("k", operation, fingerprint=fingerprint_payload({"coverage": 1}))
    assert same.cached is True
    assert operation.calls == 1


@pytest.mark.asyncio
async def test_key_wins_policy_returns_cached_result_for_different_payload(clock):
    coordinator = IdempotencyCoordinator(InMemoryIdempotencyStore(clock=clock))
    operation = Counter()
    await coordinator.execute("k", operation, fingerprint="one")

    outcome = await coordinator.execute("k", operation, fingerprint="two")
    assert outcome.cached is True
    assert outcome.body == {"quoteId": "q-1"}


def test_unknown_policy_rejected():
    with pytest.raises(ValueError):
        IdempotencyCoordinator(InMemoryIdempotencyStore(), payload_mismatch="merge")


def test_store_sweeps_expired_records_at_most_once_per_interval(clock):
    store = InMemoryIdempotencyStore(ttl_seconds=60, clock=clock)
    coordinator = IdempotencyCoordinator(store, sweep_interval=30)
    coordinator.store("a", {"quoteId": "q-1"})

    clock.advance(40)
    coordinator.store("b", {"quoteId": "q-2"})

    clock.advance(25)
    # "a" has expired, but the last sweep was only 25s ago
    coordinator.store("c", {"quoteId": "q-3"})
    assert len(store) == 3

    clock.advance(5)
    coordinator.store("d", {"quoteId": "q-4"})
    assert len(store) == 3
    assert store.get("a") is None


class ReplicaRaceRedis(FakeRedis):
    """First SET loses, the winner expires before GET, and another replica
    wins the retry."""

    def __init__(self, other_replica_json):
        super().__init__()
        self.other_replica_json = other_replica_json
        self.set_calls = 0

    def set(self, key, value, nx=False, ex=None):
        self.set_calls += 1
        if self.set_calls == 2:
            self.data[key] = self.other_replica_json
        return None


def test_redis_store_returns_other_replicas_record_after_lost_retry():
    theirs = IdempotencyRecord(key="k", result={"quoteId": "q-theirs"}, created_at=2.0)
    fake = ReplicaRaceRedis(theirs.to_json())
    store = RedisIdempotencyStore(client=fake)
    ours = IdempotencyRecord(key="k", result={"quoteId": "q-ours"}, created_at=3.0)

    stored = store.put_if_absent(ours)

    assert fake.set_calls == 2
    assert stored.result == {"quoteId": "q-theirs"}
