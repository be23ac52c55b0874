"""
Bounded LLM Services for routing

- Fast path: offline keyword classification (no upstream call)
- Intent classification: one constrained upstream call, used only when the
  fast path is inconclusive
"""
from advisor.services.llm.fast_path import FastPathCategory, classify as fast_classify
from advisor.services.llm.intent_service import (
    IntentService,
    get_intent_service,
    parse_intent,
    should_offer_fork,
)

__all__ = [
    "FastPathCategory",
    "fast_classify",
    "IntentService",
    "get_intent_service",
    "parse_intent",
    "should_offer_fork",
]
