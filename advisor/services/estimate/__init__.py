"""
Estimate services package
"""
from advisor.services.estimate.engine import (
    estimate,
    scrub_figures,
    EstimateResult,
    ESTIMATE_DISCLAIMER,
)
from advisor.services.estimate.ratebook import Ratebook, load_ratebook, get_ratebook, age_band

__all__ = [
    "estimate",
    "scrub_figures",
    "EstimateResult",
    "ESTIMATE_DISCLAIMER",
    "Ratebook",
    "load_ratebook",
    "get_ratebook",
    "age_band",
]
