"""
LangGraph workflows
"""
from advisor.orchestration.graphs.pipeline import (
    DRAFT_FAILURE_APOLOGY,
    PipelineResult,
    ReviewPipeline,
)

__all__ = [
    "DRAFT_FAILURE_APOLOGY",
    "PipelineResult",
    "ReviewPipeline",
]
