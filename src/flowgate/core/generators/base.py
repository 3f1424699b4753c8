"""Generation activity interface and the per-phase output models.

Generators produce the content of a phase (refinement notes, the user story,
the technical plan). How they do it is outside the orchestration core; the
core only relies on the structured outputs defined here.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Literal, Optional, Type

from pydantic import BaseModel, Field, field_validator

from flowgate.core.models import SuggestedSplit, Ticket
from flowgate.core.workflow.taxonomy import Phase

Complexity = Literal["XS", "S", "M", "L", "XL"]


class PhaseOutput(BaseModel):
    """Common output of every phase.

    Attributes:
        content: Markdown appended to the ticket description
        questions: Clarification questions to post as comments
    """

    content: str = Field(..., min_length=1)
    questions: List[str] = Field(default_factory=list)

    @field_validator("questions", mode="before")
    @classmethod
    def drop_blank_questions(cls, v):
        return [q.strip() for q in (v or []) if isinstance(q, str) and q.strip()]


class RefinementOutput(PhaseOutput):
    complexity: Optional[Complexity] = None
    suggested_split: Optional[SuggestedSplit] = None

    @field_validator("complexity", mode="before")
    @classmethod
    def normalize_complexity(cls, v):
        if isinstance(v, str):
            return v.strip().upper() or None
        return v


class UserStoryOutput(PhaseOutput):
    story_points: Optional[int] = Field(default=None, ge=0)


class TechnicalPlanOutput(PhaseOutput):
    pass


OUTPUT_TYPES: Dict[Phase, Type[PhaseOutput]] = {
    Phase.REFINEMENT: RefinementOutput,
    Phase.USER_STORY: UserStoryOutput,
    Phase.TECHNICAL_PLAN: TechnicalPlanOutput,
}


class Generator(ABC):
    """Abstract base class for phase content generators."""

    @abstractmethod
    def generate(self, phase: Phase, ticket: Ticket, context: Dict[str, Any]) -> PhaseOutput:
        """Generate the output of ``phase`` for ``ticket``.

        Args:
            phase: Phase being executed
            ticket: Freshly synced ticket
            context: Extra inputs passed through from the router (e.g. answers)

        Returns:
            The phase-specific PhaseOutput subclass

        Raises:
            GenerationError: If generation fails
        """
