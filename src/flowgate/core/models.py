"""Data types mirroring tracker tickets, comments and clarification questions."""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

TicketPriority = Literal["critical", "high", "medium", "low"]


class Ticket(BaseModel):
    """Ticket model matching the Supabase ``tickets`` table.

    ``parent_external_id`` is a lookup-only reference to the parent ticket;
    children are found with ``fetch_children`` rather than stored on the parent.
    ``last_routed_status`` is the status the router last acted on; syncs never write it.
    """

    id: Optional[int] = None
    external_id: str = Field(..., min_length=1)
    identifier: str = ""
    title: str = ""
    description: str = ""
    status: str = Field(..., min_length=1)
    priority: TicketPriority = "medium"
    labels: List[str] = Field(default_factory=list)
    parent_external_id: Optional[str] = None
    project_id: Optional[str] = None
    awaiting_answers: bool = False
    last_routed_status: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("description", mode="before")
    @classmethod
    def default_description(cls, v):
        """Treat a missing description as empty."""
        return v or ""

    @field_validator("labels", mode="before")
    @classmethod
    def sort_labels(cls, v):
        """Store labels sorted so comparisons ignore tracker ordering."""
        return sorted(v or [])

    @field_validator("metadata", mode="before")
    @classmethod
    def default_metadata(cls, v):
        return v or {}

    @classmethod
    def from_supabase(cls, row: dict) -> "Ticket":
        """Create Ticket from Supabase row."""
        return cls(**row)


class Comment(BaseModel):
    """Comment model matching the Supabase ``comments`` table."""

    id: Optional[int] = None
    external_id: str = Field(..., min_length=1)
    ticket_external_id: str = Field(..., min_length=1)
    body: str = ""
    author_id: Optional[str] = None
    author_name: Optional[str] = None
    parent_external_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("body", mode="before")
    @classmethod
    def trim_body(cls, v):
        """Trim whitespace from body."""
        return (v or "").strip()


class Question(BaseModel):
    """A clarification question posted on a ticket while a phase waits for input."""

    id: Optional[int] = None
    ticket_external_id: str
    comment_external_id: str
    question: str = ""
    answered: bool = False
    answer: Optional[str] = None
    answer_comment_external_id: Optional[str] = None
    answered_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class ProposedStory(BaseModel):
    """One child story of a suggested split.

    ``dependencies`` holds indices of earlier stories in the same split.
    """

    title: str = Field(..., min_length=1)
    description: str = ""
    dependencies: List[int] = Field(default_factory=list)
    acceptance_criteria: List[str] = Field(default_factory=list)


class SuggestedSplit(BaseModel):
    """Transient parse result of a "Suggested Split" block."""

    reason: str = Field(..., min_length=1)
    proposed_stories: List[ProposedStory] = Field(..., min_length=1)
