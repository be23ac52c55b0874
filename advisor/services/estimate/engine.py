"""
Deterministic Estimate Engine
Ballpark premium ranges come from the ratebook only, NOT from an LLM.
"""
import re
from dataclasses import dataclass
from typing import Optional

from advisor.core.exceptions import EstimateUnavailable
from advisor.orchestration.state import EstimateProfile
from advisor.services.estimate.ratebook import Ratebook, get_ratebook
from advisor.services.policy_resolver import format_policy_type
from advisor.services.policy_store import PolicyType


ESTIMATE_DISCLAIMER = (
    "This is a general estimate based on typical market ranges, not a quote or an "
    "offer of coverage. Your actual premium depends on your driving or claims history, "
    "property details, coverage choices and carrier underwriting."
)

# Currency amounts and bare numbers; framing prose must not carry figures.
_FIGURE_RE = re.compile(r"\$\s?\d[\d,]*(?:\.\d+)?[kKmM]?|\b\d[\d,]*(?:\.\d+)?\s?%|\b\d[\d,]{2,}\b")


@dataclass(frozen=True)
class EstimateResult:
    """Result of a ratebook lookup."""
    policy_type: PolicyType
    jurisdiction: str
    band: str
    low: int
    high: int
    range_text: str
    disclaimer: str
    ratebook_version: str

    def render(self, framing: Optional[str] = None) -> str:
        """Reply text; the disclaimer is always the last paragraph."""
        parts = []
        if framing:
            cleaned = scrub_figures(framing)
            if cleaned:
                parts.append(cleaned)
        parts.append(self.range_text)
        parts.append(self.disclaimer)
        return "\n\n".join(parts)


def format_currency(amount: int) -> str:
    return f"${amount:,}"


def scrub_figures(text: str) -> str:
    """Remove numeric figures from generated framing text."""
    cleaned = _FIGURE_RE.sub("", text or "")
    cleaned = re.sub(r"[ \t]{2,}", " ", cleaned)
    return cleaned.strip()


def estimate(
    policy_type: PolicyType,
    state: Optional[str] = None,
    profile: Optional[EstimateProfile] = None,
    ratebook: Optional[Ratebook] = None,
) -> EstimateResult:
    """
    Look up a ballpark annual premium range.

    The jurisdiction falls back to the national row when the state has no
    entry; the profile band falls back to the table's default band.

    Args:
        policy_type: Policy type to estimate
        state: Two-letter jurisdiction code
        profile: Optional profile carrying the age band
        ratebook: Ratebook override (defaults to the process-wide one)

    Returns:
        EstimateResult with range text and the mandatory disclaimer

    Raises:
        EstimateUnavailable: If the ratebook has no table for the policy type
    """
    ratebook = ratebook or get_ratebook()
    table = ratebook.table_for(policy_type.value)
    if table is None:
        raise EstimateUnavailable(f"No ratebook entry for {policy_type.value}")

    requested_state = (state or (profile.state if profile else None) or "").upper()
    jurisdiction = requested_state if requested_state in table.jurisdictions else ratebook.national_key
    bands = table.jurisdictions[jurisdiction]

    requested_band = profile.age_range if profile else None
    band = requested_band if requested_band in bands else table.default_band
    if band not in bands:
        band = next(iter(bands))
    low, high = bands[band]

    where = f"in {jurisdiction}" if jurisdiction != ratebook.national_key else "nationally"
    who = f" for drivers aged {band}" if policy_type == PolicyType.AUTO and requested_band in bands else ""
    range_text = (
        f"{format_policy_type(policy_type).capitalize()} insurance {where} typically runs about "
        f"{format_currency(low)} to {format_currency(high)} per {ratebook.period}{who}."
    )

    return EstimateResult(
        policy_type=policy_type,
        jurisdiction=jurisdiction,
        band=band,
        low=low,
        high=high,
        range_text=range_text,
        disclaimer=ESTIMATE_DISCLAIMER,
        ratebook_version=ratebook.version,
    )
