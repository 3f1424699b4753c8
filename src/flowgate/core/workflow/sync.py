"""Mirror tracker tickets and comments into the local database.

The tracker is authoritative. A sync fetches the current tracker state,
compares it field by field with the mirror and writes only what changed, so
callers can tell from the result whether the status actually moved.
"""

import logging
from typing import Any, Dict, List, Optional

from flowgate.core.database import (
    TICKET_SYNC_COLUMNS,
    fetch_comment,
    fetch_ticket,
    insert_comment,
    insert_ticket,
    update_comment,
    update_ticket,
)
from flowgate.core.errors import TicketSyncError, TrackerError
from flowgate.core.models import Comment, Ticket, TicketPriority
from flowgate.core.tracker import LinearTracker, TrackerComment, TrackerIssue, get_tracker
from flowgate.core.workflow.types import CommentSyncResult, SyncResult

logger = logging.getLogger(__name__)

# Linear priority: 0 = none, 1 = urgent, 2 = high, 3 = medium, 4 = low
PRIORITY_MAP: Dict[int, TicketPriority] = {
    1: "critical",
    2: "high",
    3: "medium",
    4: "low",
}

COMMENT_SYNC_COLUMNS = ("body", "author_id", "author_name", "parent_external_id")


def map_priority(priority: Optional[int]) -> TicketPriority:
    """Map a tracker priority number to a ticket priority (default medium)."""
    if priority is None:
        return "medium"
    return PRIORITY_MAP.get(priority, "medium")


def ticket_from_issue(issue: TrackerIssue, project_id: Optional[str] = None) -> Ticket:
    """Build the mirror representation of a tracker issue."""
    metadata: Dict[str, Any] = {
        "identifier": issue.identifier,
        "url": issue.url,
        "team_id": issue.team_id,
        "team_key": issue.team_key,
        "parent_identifier": issue.parent_identifier,
    }
    return Ticket(
        external_id=issue.id,
        identifier=issue.identifier,
        title=issue.title,
        description=issue.description,
        status=issue.status,
        priority=map_priority(issue.priority),
        labels=issue.labels,
        parent_external_id=issue.parent_id,
        project_id=project_id,
        metadata={k: v for k, v in metadata.items() if v is not None},
    )


def diff_ticket(existing: Ticket, incoming: Ticket) -> List[str]:
    """Return the synced columns whose values differ, in column order."""
    changed = [
        column
        for column in TICKET_SYNC_COLUMNS
        if getattr(existing, column) != getattr(incoming, column)
    ]
    if incoming.project_id and incoming.project_id != existing.project_id:
        changed.append("project_id")
    return changed


def sync_ticket(
    external_id: str,
    project_id: Optional[str] = None,
    tracker: Optional[LinearTracker] = None,
) -> SyncResult:
    """Bring the mirror of one ticket in line with the tracker.

    Args:
        external_id: Tracker id (or identifier) of the ticket
        project_id: Project the ticket belongs to, if known
        tracker: Tracker client; defaults to the configured one

    Returns:
        SyncResult describing the write

    Raises:
        TicketSyncError: If the tracker or the database fails
    """
    tracker = tracker or get_tracker()

    try:
        issue = tracker.fetch_issue(external_id)
    except TrackerError as e:
        raise TicketSyncError(external_id, str(e)) from e

    incoming = ticket_from_issue(issue, project_id)

    try:
        existing = fetch_ticket(issue.id)
        if existing is None:
            created = insert_ticket(incoming)
            logger.info(f"Mirrored new ticket {issue.identifier or issue.id}")
            return SyncResult(
                ticket_id=created.id,
                external_id=issue.id,
                identifier=issue.identifier,
                action="created",
                ticket=created,
            )

        changed = diff_ticket(existing, incoming)
        if not changed:
            logger.debug(f"Ticket {issue.identifier or issue.id} unchanged")
            return SyncResult(
                ticket_id=existing.id,
                external_id=issue.id,
                identifier=issue.identifier,
                action="unchanged",
                ticket=existing,
            )

        updated = update_ticket(
            issue.id, incoming.model_dump(mode="json", include=set(changed))
        )
        logger.info(
            f"Updated ticket {issue.identifier or issue.id}: {', '.join(changed)}"
        )
        return SyncResult(
            ticket_id=updated.id,
            external_id=issue.id,
            identifier=issue.identifier,
            action="updated",
            changed_fields=changed,
            ticket=updated,
        )

    except ValueError as e:
        raise TicketSyncError(issue.id, str(e)) from e


def best_effort_sync(
    external_id: str,
    project_id: Optional[str] = None,
    tracker: Optional[LinearTracker] = None,
) -> Optional[SyncResult]:
    """``sync_ticket`` for non-authoritative callers: failures are logged and ``None`` returned."""
    try:
        return sync_ticket(external_id, project_id=project_id, tracker=tracker)
    except Exception as e:
        logger.warning(f"Best-effort sync of ticket {external_id} failed: {e}")
        return None


def comment_from_tracker(comment: TrackerComment) -> Comment:
    return Comment(
        external_id=comment.id,
        ticket_external_id=comment.issue_id,
        body=comment.body,
        author_id=comment.user_id,
        author_name=comment.user_name,
        parent_external_id=comment.parent_id,
        created_at=comment.created_at,
        updated_at=comment.updated_at,
    )


def sync_comment(comment: TrackerComment) -> CommentSyncResult:
    """Mirror one tracker comment.

    Raises:
        TicketSyncError: If the database fails
    """
    incoming = comment_from_tracker(comment)

    try:
        existing = fetch_comment(comment.id)
        if existing is None:
            created = insert_comment(incoming)
            return CommentSyncResult(
                comment_id=created.id, external_id=comment.id, action="created"
            )

        changed = [
            column
            for column in COMMENT_SYNC_COLUMNS
            if getattr(existing, column) != getattr(incoming, column)
        ]
        if not changed:
            return CommentSyncResult(
                comment_id=existing.id, external_id=comment.id, action="unchanged"
            )

        fields = incoming.model_dump(mode="json", include=set(changed))
        if incoming.updated_at is not None:
            fields["updated_at"] = incoming.updated_at.isoformat()
        updated = update_comment(comment.id, fields)
        return CommentSyncResult(
            comment_id=updated.id,
            external_id=comment.id,
            action="updated",
            changed_fields=changed,
        )

    except ValueError as e:
        raise TicketSyncError(comment.issue_id, f"comment {comment.id}: {e}") from e
