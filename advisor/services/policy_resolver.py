"""
Policy Context Resolver

Matches a detected coverage need against the policy records already on file
for an identity. Never fetches or parses documents.
"""
import re
from dataclasses import dataclass
from typing import FrozenSet, List, Optional, Tuple, Union

from advisor.core.logging import logger
from advisor.services.policy_store import PolicyRecord, PolicyStore, PolicyType


# Product nouns per policy type, checked in order; first hit wins.
PRODUCT_NOUNS: List[Tuple[PolicyType, Tuple[str, ...]]] = [
    (PolicyType.AUTO, ("auto", "car", "cars", "vehicle", "vehicles", "driving", "driver",
                       "collision", "comprehensive", "truck", "suv")),
    (PolicyType.HOME, ("home", "homeowner", "homeowners", "house", "dwelling", "property", "condo")),
    (PolicyType.RENTERS, ("rent", "renter", "renters", "rental", "apartment", "tenant", "lease")),
    (PolicyType.UMBRELLA, ("umbrella", "excess liability")),
    (PolicyType.LIFE, ("life", "term life", "whole life", "death benefit")),
    (PolicyType.HEALTH, ("health", "medical", "hmo", "ppo")),
]

_NOUN_PATTERNS = [
    (policy_type, re.compile(r"\b(" + "|".join(re.escape(n) for n in nouns) + r")\b"))
    for policy_type, nouns in PRODUCT_NOUNS
]

DISPLAY_NAMES = {
    PolicyType.AUTO: "auto",
    PolicyType.HOME: "homeowners",
    PolicyType.RENTERS: "renters",
    PolicyType.UMBRELLA: "umbrella",
    PolicyType.LIFE: "life",
    PolicyType.HEALTH: "health",
    PolicyType.OTHER: "insurance",
}


def detect_needed_policy_type(text: str) -> Optional[PolicyType]:
    """Policy type named by product nouns in the text, if any."""
    lowered = (text or "").lower()
    for policy_type, pattern in _NOUN_PATTERNS:
        if pattern.search(lowered):
            return policy_type
    return None


def format_policy_type(policy_type: PolicyType) -> str:
    return DISPLAY_NAMES.get(policy_type, policy_type.value)


def format_policy_types(policy_types) -> str:
    names = sorted(format_policy_type(t) for t in policy_types)
    if len(names) <= 1:
        return "".join(names)
    return ", ".join(names[:-1]) + " and " + names[-1]


@dataclass(frozen=True)
class PolicyMatch:
    record: PolicyRecord


@dataclass(frozen=True)
class WrongPolicyType:
    have: FrozenSet[PolicyType]
    need: PolicyType


@dataclass(frozen=True)
class NoPolicy:
    pass


Resolution = Union[PolicyMatch, WrongPolicyType, NoPolicy]


class PolicyResolver:
    """Resolves an identity's on-file records against a needed policy type."""

    def __init__(self, store: PolicyStore):
        self.store = store

    def resolve(
        self,
        identity: Optional[str],
        needed_type: Optional[PolicyType] = None,
    ) -> Resolution:
        """
        Return exactly one of PolicyMatch, WrongPolicyType or NoPolicy.

        Without a needed type the newest record on file matches.
        """
        if not identity:
            return NoPolicy()

        records = self.store.get_records_for_identity(identity)
        if not records:
            logger.info("Policy resolver: nothing on file")
            return NoPolicy()

        if needed_type is None:
            return PolicyMatch(record=records[0])

        for record in records:
            if record.policy_type == needed_type:
                return PolicyMatch(record=record)

        have = frozenset(r.policy_type for r in records)
        logger.info(
            f"Policy resolver: have [{', '.join(sorted(t.value for t in have))}] "
            f"but need {needed_type.value}"
        )
        return WrongPolicyType(have=have, need=needed_type)
