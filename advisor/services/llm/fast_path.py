"""
Fast-Path Classifier

Offline keyword and possessive-pattern matcher. Runs before any upstream call;
a conclusive result means the turn is routed without a classification call.

Keyword lists are disjoint per category. Pricing and gap-analysis keywords only
count when the message is personalized (first-person or possessive markers),
so "what's the average cost of insurance" stays inconclusive.
"""
import re
from enum import Enum
from typing import Iterable, Pattern

from advisor.services.policy_resolver import detect_needed_policy_type


class FastPathCategory(str, Enum):
    GREETING = "greeting"
    SMALL_TALK = "small_talk"
    STORED_RECORDS = "stored_records"
    EXPLICIT_POLICY = "explicit_policy"
    ESTIMATE_REQUEST = "estimate_request"
    QUOTE = "quote"
    GAP_ANALYSIS = "gap_analysis"
    POSSESSIVE_COVERAGE = "possessive_coverage"
    INCONCLUSIVE = "inconclusive"


def _keywords(words: Iterable[str]) -> Pattern:
    alternation = "|".join(re.escape(w) for w in sorted(words, key=len, reverse=True))
    return re.compile(r"(?<![\w'])(?:" + alternation + r")(?![\w'])")


GREETING_RE = re.compile(
    r"^(hi|hello|hey|yo|sup|hiya|howdy|what'?s up|good (morning|afternoon|evening))( there)?[!.\s]*$"
)
SMALL_TALK_RE = re.compile(
    r"^((how are you|how're you|how are things|how's it going)( doing)?( today)?"
    r"|(thanks|thank you|thx|ty)( so much| a lot| very much)?)[!?.,\s]*$"
)

STORED_RECORDS_PATTERNS = (
    re.compile(r"\b(list|show|get)\s+(me\s+)?(all\s+)?(of\s+)?my\s+(policies|documents|uploads)\b"),
    re.compile(r"\ball\s+(of\s+)?my\s+(policies|documents|uploads)\b"),
    re.compile(r"\bwhat\s+(policies|documents)\s+(do you have|are)\s+on file\b"),
)

EXPLICIT_POLICY_KEYWORDS = _keywords([
    "my policy", "my coverage", "my current", "my plan", "my insurance",
    "check my", "view my", "see my", "review my", "analyze my",
    "what do i have", "am i covered", "do i have",
    "my limits", "my deductible", "my deductibles", "my premium", "my carrier",
    "my existing", "existing policy", "current policy",
    "i have coverage", "i have insurance", "i have a policy",
    "already uploaded", "i uploaded", "on file",
])

BALLPARK_KEYWORDS = _keywords([
    "roughly", "ballpark", "ball park", "average", "typical", "typically",
    "estimate", "approximately", "approx", "rough idea", "in general", "generally",
])

PRICING_KEYWORDS = _keywords([
    "quote", "quotes", "pricing", "price", "prices", "cost", "costs",
    "how much", "save money", "cheaper", "lower", "reduce",
    "switch", "compare", "comparison", "rate", "rates",
])

GAP_KEYWORDS = _keywords([
    "gap", "gaps", "missing", "underinsured", "enough coverage",
    "sufficient", "adequate", "adequately", "protected", "what should i add",
    "what do i need", "recommend", "recommendation", "recommendations",
    "suggestions", "enough protection",
])

COVERAGE_NOUNS = _keywords([
    "policy", "policies", "coverage", "coverages", "insurance", "deductible",
    "premium", "limits", "carrier",
])

PERSONALIZATION_MARKERS = _keywords([
    "my", "mine", "me", "i", "i'm", "im", "i've", "i'd", "i'll", "we", "our",
])

# "us" alone is ambiguous with the country; only count it as an object pronoun
FIRST_PERSON_US_RE = re.compile(r"\b(for|give|help|quote|tell|send|show|let) us\b")

POSSESSIVE_MARKERS = _keywords([
    "my", "mine", "our", "i have", "i'm", "i am", "do i", "am i",
])


def normalize(text: str) -> str:
    normalized = (text or "").lower().strip()
    return normalized.replace("’", "'")


def is_personalized(normalized: str) -> bool:
    return bool(PERSONALIZATION_MARKERS.search(normalized) or FIRST_PERSON_US_RE.search(normalized))


def classify(text: str) -> FastPathCategory:
    """
    Classify an utterance without any I/O.

    Returns FastPathCategory.INCONCLUSIVE when no category matches; the caller
    then falls back to the probabilistic classifier.
    """
    normalized = normalize(text)
    if not normalized:
        return FastPathCategory.INCONCLUSIVE

    if GREETING_RE.match(normalized):
        return FastPathCategory.GREETING

    if SMALL_TALK_RE.match(normalized):
        return FastPathCategory.SMALL_TALK

    if any(p.search(normalized) for p in STORED_RECORDS_PATTERNS):
        return FastPathCategory.STORED_RECORDS

    if EXPLICIT_POLICY_KEYWORDS.search(normalized):
        return FastPathCategory.EXPLICIT_POLICY

    if (
        BALLPARK_KEYWORDS.search(normalized)
        and PRICING_KEYWORDS.search(normalized)
        and detect_needed_policy_type(normalized) is not None
    ):
        return FastPathCategory.ESTIMATE_REQUEST

    personalized = is_personalized(normalized)

    if personalized and PRICING_KEYWORDS.search(normalized):
        return FastPathCategory.QUOTE

    if personalized and GAP_KEYWORDS.search(normalized):
        return FastPathCategory.GAP_ANALYSIS

    if COVERAGE_NOUNS.search(normalized) and POSSESSIVE_MARKERS.search(normalized):
        return FastPathCategory.POSSESSIVE_COVERAGE

    return FastPathCategory.INCONCLUSIVE
