"""
Tests for policy record storage.
"""

from dataclasses import replace
from datetime import datetime

import pytest

from advisor.services.policy_store import (
    InMemoryPolicyStore,
    PolicyRecord,
    PolicyType,
    RedisPolicyStore,
)


class FakeRedis:
    """Hash-only Redis double."""

    def __init__(self):
        self.hashes = {}

    def hgetall(self, key):
        return dict(self.hashes.get(key, {}))

    def hget(self, key, field):
        return self.hashes.get(key, {}).get(field)

    def hset(self, key, field, value):
        self.hashes.setdefault(key, {})[field] = value
        return 1

    def hdel(self, key, field):
        return 1 if self.hashes.get(key, {}).pop(field, None) is not None else 0


@pytest.fixture
def redis_store(monkeypatch):
    store = RedisPolicyStore.__new__(RedisPolicyStore)
    store._redis = FakeRedis()
    store._prefix = "advisor:policies:"
    return store


@pytest.fixture(params=["memory", "redis"])
def any_store(request, redis_store):
    if request.param == "memory":
        return InMemoryPolicyStore()
    return redis_store


class TestPolicyStore:
    def test_set_and_get(self, any_store, auto_record):
        any_store.set("user-1", auto_record)
        assert any_store.get("user-1", PolicyType.AUTO) == auto_record
        assert any_store.get("user-1", PolicyType.HOME) is None

    def test_one_record_per_type(self, any_store, auto_record):
        any_store.set("user-1", auto_record)
        newer = replace(auto_record, carrier="Zeta Auto", uploaded_at=datetime(2026, 3, 1))
        any_store.set("user-1", newer)
        records = any_store.get_records_for_identity("user-1")
        assert len(records) == 1
        assert records[0].carrier == "Zeta Auto"

    def test_records_newest_first(self, any_store, auto_record):
        home = replace(auto_record, policy_type=PolicyType.HOME, uploaded_at=datetime(2026, 5, 1))
        any_store.set("user-1", auto_record)
        any_store.set("user-1", home)
        types = [r.policy_type for r in any_store.get_records_for_identity("user-1")]
        assert types == [PolicyType.HOME, PolicyType.AUTO]

    def test_delete(self, any_store, auto_record):
        any_store.set("user-1", auto_record)
        assert any_store.delete("user-1", PolicyType.AUTO) is True
        assert any_store.delete("user-1", PolicyType.AUTO) is False
        assert any_store.get_records_for_identity("user-1") == []

    def test_rename_updates_carrier(self, any_store, auto_record):
        record = replace(auto_record, structured_fields={"carrier": "Acme Mutual", "limit": 100000})
        any_store.set("user-1", record)
        assert any_store.rename("user-1", PolicyType.AUTO, "Acme Direct") is True
        renamed = any_store.get("user-1", PolicyType.AUTO)
        assert renamed.carrier == "Acme Direct"
        assert renamed.structured_fields["carrier"] == "Acme Direct"
        assert renamed.analysis_text == record.analysis_text

    def test_rename_missing(self, any_store):
        assert any_store.rename("user-1", PolicyType.AUTO, "Nobody") is False

    def test_unknown_identity(self, any_store):
        assert any_store.get_records_for_identity("missing") == []


class TestPolicyRecord:
    def test_dict_round_trip(self, auto_record):
        assert PolicyRecord.from_dict(auto_record.to_dict()) == auto_record

    def test_from_dict_defaults(self):
        record = PolicyRecord.from_dict({"policy_type": "renters"})
        assert record.policy_type == PolicyType.RENTERS
        assert record.carrier == "Unknown"
        assert record.structured_fields == {}

    def test_records_are_immutable(self, auto_record):
        with pytest.raises(Exception):
            auto_record.carrier = "Other"


def test_in_memory_count(auto_record):
    store = InMemoryPolicyStore()
    store.set("a", auto_record)
    store.set("b", auto_record)
    assert store.count() == 2
