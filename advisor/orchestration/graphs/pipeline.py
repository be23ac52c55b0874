"""
Review Pipeline Graph - Draft -> Review -> Present

Three sequential generation stages with per-stage degradation:
- Draft failure ends the pipeline with a fixed apology
- Review failure passes the draft through unchanged
- Presentation failure returns the reviewed text unchanged
"""
from dataclasses import dataclass
from typing import Optional, Tuple, TypedDict

from langgraph.graph import StateGraph, END

from advisor.core.exceptions import DraftFailure, PresentationFailure, ReviewFailure, StageFailure
from advisor.core.logging import logger
from advisor.orchestration.oracles import (
    DraftOracle,
    Err,
    PresentationOracle,
    ReviewOracle,
)
from advisor.orchestration.state import StageResult


DRAFT_FAILURE_APOLOGY = (
    "I apologize, but I encountered an error. Please try again or let me know "
    "if you need help with something else!"
)


class PipelineState(TypedDict, total=False):
    query: str
    context: str
    draft: Optional[StageResult]
    review: Optional[StageResult]
    present: Optional[StageResult]
    failed: bool
    error: Optional[StageFailure]
    next_step: str


@dataclass(frozen=True)
class PipelineResult:
    """Final reply text plus the per-stage results that produced it."""
    text: str
    stages: Tuple[StageResult, ...] = ()
    failed: bool = False
    error: Optional[StageFailure] = None

    @property
    def degraded(self) -> bool:
        return self.failed or any(stage.degraded for stage in self.stages)


def stage_failure(cls, outcome: Err) -> StageFailure:
    """Internal failure record for logs; never shown to the user."""
    return cls(f"{outcome.kind.value}: {outcome.detail}" if outcome.detail else outcome.kind.value)


def route_next(state: PipelineState) -> str:
    """Determine next node based on state."""
    return state.get("next_step", END)


class ReviewPipeline:
    """Runs the three stages as a compiled LangGraph workflow."""

    def __init__(
        self,
        draft_oracle: Optional[DraftOracle] = None,
        review_oracle: Optional[ReviewOracle] = None,
        presentation_oracle: Optional[PresentationOracle] = None,
    ):
        self.draft_oracle = draft_oracle or DraftOracle()
        self.review_oracle = review_oracle or ReviewOracle()
        self.presentation_oracle = presentation_oracle or PresentationOracle()
        self.graph = self._build_graph()

    async def _draft(self, state: PipelineState) -> dict:
        outcome = await self.draft_oracle.generate_draft(state["query"], state.get("context") or "")
        if isinstance(outcome, Err):
            error = stage_failure(DraftFailure, outcome)
            logger.error(f"Draft stage failed ({error}), ending pipeline")
            return {"failed": True, "error": error, "next_step": END}
        draft = outcome.value
        return {
            "draft": StageResult(text=draft.answer, source_context=draft.source_context),
            "next_step": "review",
        }

    async def _review(self, state: PipelineState) -> dict:
        draft = state["draft"]
        outcome = await self.review_oracle.review(state["query"], draft.text, draft.source_context or "")
        if isinstance(outcome, Err):
            logger.warning(f"Review stage failed ({stage_failure(ReviewFailure, outcome)}), passing draft through")
            reviewed = StageResult(text=draft.text, source_context=draft.source_context, degraded=True)
        else:
            reviewed = StageResult(text=outcome.value, source_context=draft.source_context)
        return {"review": reviewed}

    async def _present(self, state: PipelineState) -> dict:
        reviewed = state["review"]
        outcome = await self.presentation_oracle.present(state["query"], reviewed.text)
        if isinstance(outcome, Err):
            logger.warning(
                f"Presentation stage failed ({stage_failure(PresentationFailure, outcome)}), returning reviewed text"
            )
            presented = StageResult(text=reviewed.text, source_context=reviewed.source_context, degraded=True)
        else:
            presented = StageResult(text=outcome.value, source_context=reviewed.source_context)
        return {"present": presented}

    def _build_graph(self):
        workflow = StateGraph(PipelineState)

        workflow.add_node("draft", self._draft)
        workflow.add_node("review", self._review)
        workflow.add_node("present", self._present)

        workflow.set_entry_point("draft")
        workflow.add_conditional_edges(
            "draft",
            route_next,
            {
                "review": "review",
                END: END,
            }
        )
        workflow.add_edge("review", "present")
        workflow.add_edge("present", END)

        return workflow.compile()

    async def run(self, query: str, context: str = "") -> PipelineResult:
        """
        Answer `query` through all three stages.

        Never raises for stage failures; cancellation propagates.
        """
        final = await self.graph.ainvoke({"query": query, "context": context or "", "failed": False})

        if final.get("failed"):
            return PipelineResult(text=DRAFT_FAILURE_APOLOGY, failed=True, error=final.get("error"))

        stages = tuple(final[name] for name in ("draft", "review", "present"))
        return PipelineResult(text=stages[-1].text, stages=stages)
