"""
Policy Store Service - Redis-backed policy record storage with in-memory fallback.

Records are keyed by (identity, policy_type); at most one active record exists
per key. Upload analysis writes records, rename/delete update them. The routing
core only reads.
"""
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from advisor.core.config import settings
from advisor.core.logging import logger


class PolicyType(str, Enum):
    AUTO = "auto"
    HOME = "home"
    RENTERS = "renters"
    UMBRELLA = "umbrella"
    LIFE = "life"
    HEALTH = "health"
    OTHER = "other"


@dataclass(frozen=True)
class PolicyRecord:
    """Already-extracted policy document for one identity."""
    policy_type: PolicyType
    carrier: str
    analysis_text: str
    structured_fields: Dict[str, Any] = field(default_factory=dict)
    uploaded_at: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> dict:
        return {
            "policy_type": self.policy_type.value,
            "carrier": self.carrier,
            "analysis_text": self.analysis_text,
            "structured_fields": self.structured_fields,
            "uploaded_at": self.uploaded_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PolicyRecord":
        uploaded_at = data.get("uploaded_at")
        return cls(
            policy_type=PolicyType(data["policy_type"]),
            carrier=data.get("carrier") or "Unknown",
            analysis_text=data.get("analysis_text") or "",
            structured_fields=data.get("structured_fields") or {},
            uploaded_at=datetime.fromisoformat(uploaded_at) if uploaded_at else datetime.utcnow(),
        )


class PolicyStore(ABC):
    """Abstract base class for policy record storage."""

    @abstractmethod
    def get_records_for_identity(self, identity: str) -> List[PolicyRecord]:
        """All active records for an identity, newest first."""
        pass

    @abstractmethod
    def get(self, identity: str, policy_type: PolicyType) -> Optional[PolicyRecord]:
        pass

    @abstractmethod
    def set(self, identity: str, record: PolicyRecord) -> None:
        """Store a record, replacing any record of the same type."""
        pass

    @abstractmethod
    def delete(self, identity: str, policy_type: PolicyType) -> bool:
        pass

    def rename(self, identity: str, policy_type: PolicyType, carrier: str) -> bool:
        """Update the carrier name of a stored record."""
        record = self.get(identity, policy_type)
        if record is None:
            return False
        fields = dict(record.structured_fields)
        if "carrier" in fields:
            fields["carrier"] = carrier
        self.set(identity, replace(record, carrier=carrier, structured_fields=fields))
        logger.info(f"Renamed {policy_type.value} policy carrier for identity={identity}")
        return True


class InMemoryPolicyStore(PolicyStore):
    """In-memory policy store for development and tests."""

    def __init__(self):
        self._records: Dict[str, Dict[PolicyType, PolicyRecord]] = {}

    def get_records_for_identity(self, identity: str) -> List[PolicyRecord]:
        records = list(self._records.get(identity, {}).values())
        records.sort(key=lambda r: r.uploaded_at, reverse=True)
        return records

    def get(self, identity: str, policy_type: PolicyType) -> Optional[PolicyRecord]:
        return self._records.get(identity, {}).get(policy_type)

    def set(self, identity: str, record: PolicyRecord) -> None:
        self._records.setdefault(identity, {})[record.policy_type] = record
        logger.info(f"Stored {record.policy_type.value} policy for identity={identity}")

    def delete(self, identity: str, policy_type: PolicyType) -> bool:
        policies = self._records.get(identity)
        if not policies or policy_type not in policies:
            return False
        del policies[policy_type]
        if not policies:
            self._records.pop(identity, None)
        return True

    def count(self) -> int:
        """Number of identities with at least one record."""
        return len(self._records)


class RedisPolicyStore(PolicyStore):
    """Redis-backed policy store for production. One hash per identity."""

    def __init__(self, redis_url: str):
        import redis
        self._redis = redis.from_url(redis_url, decode_responses=True)
        self._prefix = "advisor:policies:"

    def _key(self, identity: str) -> str:
        return f"{self._prefix}{identity}"

    def get_records_for_identity(self, identity: str) -> List[PolicyRecord]:
        records = []
        for raw in self._redis.hgetall(self._key(identity)).values():
            try:
                records.append(PolicyRecord.from_dict(json.loads(raw)))
            except (json.JSONDecodeError, KeyError, ValueError) as e:
                logger.warning(f"Skipping unreadable policy record: {e}")
        records.sort(key=lambda r: r.uploaded_at, reverse=True)
        return records

    def get(self, identity: str, policy_type: PolicyType) -> Optional[PolicyRecord]:
        raw = self._redis.hget(self._key(identity), policy_type.value)
        if raw:
            return PolicyRecord.from_dict(json.loads(raw))
        return None

    def set(self, identity: str, record: PolicyRecord) -> None:
        self._redis.hset(
            self._key(identity),
            record.policy_type.value,
            json.dumps(record.to_dict(), default=str),
        )

    def delete(self, identity: str, policy_type: PolicyType) -> bool:
        return self._redis.hdel(self._key(identity), policy_type.value) > 0


# Singleton policy store instance
_policy_store: Optional[PolicyStore] = None


def get_policy_store() -> PolicyStore:
    """Get the policy store instance (creates if needed)."""
    global _policy_store

    if _policy_store is not None:
        return _policy_store

    if settings.REDIS_URL and settings.APP_ENV != "development":
        try:
            store = RedisPolicyStore(settings.REDIS_URL)
            store._redis.ping()
            _policy_store = store
            logger.info("Using Redis policy store")
        except Exception as e:
            logger.warning(f"Failed to connect to Redis, using in-memory store: {e}")
            _policy_store = InMemoryPolicyStore()
    else:
        logger.info("Using in-memory policy store (development mode)")
        _policy_store = InMemoryPolicyStore()

    return _policy_store
