"""Result types returned by the orchestration engines.

Every engine reports what it did with one of these models instead of tuples
or booleans, so the router, webhook handler and CLI can log and render the
outcome uniformly.
"""

from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from flowgate.core.models import Ticket

SyncAction = Literal["created", "updated", "unchanged"]


class SyncResult(BaseModel):
    """Outcome of mirroring one tracker ticket.

    Attributes:
        ticket_id: Local ticket id
        external_id: Tracker id
        identifier: Human identifier (e.g. ``ENG-12``)
        action: Whether the mirror row was created, updated or left unchanged
        changed_fields: Columns that differed; always empty unless ``updated``
        ticket: The mirrored ticket after the write
    """

    ticket_id: Optional[int] = None
    external_id: str
    identifier: str = ""
    action: SyncAction
    changed_fields: List[str] = Field(default_factory=list)
    ticket: Ticket

    @property
    def status_changed(self) -> bool:
        """True when the sync brought in a new status (including first sight)."""
        return self.action == "created" or "status" in self.changed_fields


class CommentSyncResult(BaseModel):
    comment_id: Optional[int] = None
    external_id: str
    action: SyncAction
    changed_fields: List[str] = Field(default_factory=list)


class CascadeChildResult(BaseModel):
    external_id: str
    success: bool
    error: Optional[str] = None


class CascadeSkip(BaseModel):
    external_id: str
    reason: str


class CascadeResult(BaseModel):
    """Outcome of propagating a trigger status to every child of a parent."""

    parent_external_id: str
    target_status: str
    children_count: int = 0
    cascaded: List[CascadeChildResult] = Field(default_factory=list)
    skipped: List[CascadeSkip] = Field(default_factory=list)

    @property
    def failed(self) -> List[CascadeChildResult]:
        return [child for child in self.cascaded if not child.success]


class RollupResult(BaseModel):
    """Outcome of recomputing a parent's status from its children.

    ``reason`` is set whenever ``updated`` is False.
    """

    updated: bool
    parent_id: Optional[str] = None
    previous_status: Optional[str] = None
    new_status: Optional[str] = None
    reason: Optional[str] = None


class CreatedChild(BaseModel):
    index: int
    external_id: str
    identifier: str = ""
    title: str
    url: Optional[str] = None


class FailedChild(BaseModel):
    index: int
    title: str
    error: str


class SplitResult(BaseModel):
    """Per-story report of a split application."""

    parent_external_id: str
    created: List[CreatedChild] = Field(default_factory=list)
    failed: List[FailedChild] = Field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.failed


class AnswerStatus(BaseModel):
    all_answered: bool
    total: int = 0
    answered: int = 0
    pending: int = 0


class MarkAnsweredResult(BaseModel):
    ticket_id: str
    question_id: int


class RouteOutcome(str, Enum):
    STARTED = "started"
    ALREADY_RUNNING = "already_running"
    CASCADED = "cascaded"
    ROLLED_UP = "rolled_up"
    SKIPPED = "skipped"


class RouteResult(BaseModel):
    """What the router did for one status event."""

    outcome: RouteOutcome
    external_id: str
    status: Optional[str] = None
    phase: Optional[str] = None
    run_id: Optional[str] = None
    cascade: Optional[CascadeResult] = None
    rollup: Optional[RollupResult] = None
    reason: Optional[str] = None
