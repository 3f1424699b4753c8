"""Supabase client and helper functions for the local ticket mirror."""

import logging
import os
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Dict, List, Optional, cast

import httpx
from dotenv import load_dotenv
from postgrest.exceptions import APIError
from supabase import Client, create_client
from supabase.lib.client_options import SyncClientOptions

from flowgate.core.models import Comment, Question, Ticket

logger = logging.getLogger(__name__)

SupabaseRow = Dict[str, Any]
SupabaseRows = List[SupabaseRow]

# Columns written from the tracker representation on every sync
TICKET_SYNC_COLUMNS = (
    "identifier",
    "title",
    "description",
    "status",
    "priority",
    "labels",
    "parent_external_id",
    "metadata",
)

# ============================================================================
# Configuration
# ============================================================================


def init_db_env(dotenv_path: Optional[str] = None) -> None:
    """
    Initialize environment variables for database connection.

    This should be called as early as possible in the application lifecycle,
    but it's also called lazily by get_client() if needed.

    Args:
        dotenv_path: Optional path to a specific .env file to load.
    """
    load_dotenv(dotenv_path=dotenv_path, override=True)


class SupabaseConfig:
    """Configuration for Supabase connection."""

    def __init__(self) -> None:
        self.url: Optional[str] = os.environ.get("SUPABASE_URL")
        self.service_role_key: Optional[str] = os.environ.get("SUPABASE_SERVICE_ROLE_KEY")

    def validate(self) -> None:
        """Validate required environment variables are set."""
        missing = []

        if not self.url:
            missing.append("SUPABASE_URL")
        if not self.service_role_key:
            missing.append("SUPABASE_SERVICE_ROLE_KEY")

        if missing:
            raise ValueError(
                f"Missing required Supabase environment variables: "
                f"{', '.join(missing)}. "
                f"Please set these in your environment or .env file."
            )


# ============================================================================
# Client Singleton
# ============================================================================

_client: Optional[Client] = None
_HTTPX_CLIENT: Optional[httpx.Client] = None


def _build_http_client() -> httpx.Client:
    """Build an httpx client configured for Supabase interactions."""
    timeout_seconds = float(os.environ.get("SUPABASE_HTTP_TIMEOUT", "30"))
    verify_env = os.environ.get("SUPABASE_HTTP_VERIFY", "true").lower()
    verify = verify_env not in {"0", "false", "no"}
    return httpx.Client(timeout=timeout_seconds, verify=verify)


def _get_http_client() -> httpx.Client:
    global _HTTPX_CLIENT
    if _HTTPX_CLIENT is None:
        _HTTPX_CLIENT = _build_http_client()
    return _HTTPX_CLIENT


@lru_cache()
def get_client() -> Client:
    """Get or create the global Supabase client instance."""
    global _client

    if _client is None:
        # Ensure env vars are loaded if not already done manually
        init_db_env()

        config = SupabaseConfig()
        config.validate()

        assert config.url is not None
        assert config.service_role_key is not None

        client_options = SyncClientOptions(httpx_client=_get_http_client())
        _client = create_client(config.url, config.service_role_key, client_options)
        logger.info("Supabase client initialized")

    return _client


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _first_row(rows: Optional[SupabaseRows], error: str) -> SupabaseRow:
    if not rows:
        raise ValueError(error)
    return cast(SupabaseRow, rows[0])


# ============================================================================
# Ticket Operations
# ============================================================================


def fetch_ticket(external_id: str) -> Optional[Ticket]:
    """Fetch a mirrored ticket by tracker id.

    Returns:
        The Ticket, or None when the ticket has never been synced.

    Raises:
        ValueError: If database operation fails.
    """
    client = get_client()

    try:
        response = (
            client.table("tickets")
            .select("*")
            .eq("external_id", external_id)
            .maybe_single()
            .execute()
        )

        if response is None or response.data is None:
            return None

        return Ticket.from_supabase(cast(SupabaseRow, response.data))

    except APIError as e:
        logger.error(f"Database error fetching ticket {external_id}: {e}")
        raise ValueError(f"Failed to fetch ticket {external_id}: {e}") from e


def fetch_children(parent_external_id: str) -> List[Ticket]:
    """Fetch every mirrored ticket whose parent is ``parent_external_id``.

    Returns:
        List of child tickets ordered by creation date. Empty if none exist.

    Raises:
        ValueError: If database operation fails.
    """
    client = get_client()

    try:
        response = (
            client.table("tickets")
            .select("*")
            .eq("parent_external_id", parent_external_id)
            .order("created_at")
            .execute()
        )

        rows = cast(Optional[SupabaseRows], response.data)
        if not rows:
            return []

        return [Ticket.from_supabase(row) for row in rows]

    except APIError as e:
        logger.error(f"Database error fetching children of {parent_external_id}: {e}")
        raise ValueError(f"Failed to fetch children of ticket {parent_external_id}: {e}") from e


def insert_ticket(ticket: Ticket) -> Ticket:
    """Insert a ticket into the mirror.

    Raises:
        ValueError: If database operation fails.
    """
    client = get_client()

    ticket_data: SupabaseRow = ticket.model_dump(
        mode="json", exclude={"id", "created_at", "updated_at"}
    )

    try:
        response = client.table("tickets").insert(ticket_data).execute()
        row = _first_row(
            cast(Optional[SupabaseRows], response.data), "Ticket creation returned no data"
        )
        return Ticket.from_supabase(row)

    except APIError as e:
        logger.error(f"Database error creating ticket {ticket.external_id}: {e}")
        raise ValueError(f"Failed to create ticket {ticket.external_id}: {e}") from e


def update_ticket(external_id: str, fields: Dict[str, Any]) -> Ticket:
    """Write the given columns of a mirrored ticket.

    Args:
        external_id: Tracker id of the ticket
        fields: Column -> value mapping; values must be JSON serializable

    Returns:
        Ticket: The updated ticket.

    Raises:
        ValueError: If the ticket does not exist or database operation fails.
    """
    client = get_client()

    update_data: SupabaseRow = {**fields, "updated_at": _utc_now_iso()}

    try:
        response = (
            client.table("tickets").update(update_data).eq("external_id", external_id).execute()
        )
        row = _first_row(
            cast(Optional[SupabaseRows], response.data),
            f"Ticket with external id {external_id} not found",
        )
        return Ticket.from_supabase(row)

    except APIError as e:
        logger.error(f"Database error updating ticket {external_id}: {e}")
        raise ValueError(f"Failed to update ticket {external_id}: {e}") from e


def update_ticket_status(external_id: str, status: str) -> Ticket:
    """Update the mirrored status of a ticket.

    Raises:
        ValueError: If the ticket does not exist or database operation fails.
    """
    return update_ticket(external_id, {"status": status})


def set_awaiting_answers(external_id: str, awaiting: bool) -> Ticket:
    """Set or clear the flag marking a ticket as waiting for clarification."""
    return update_ticket(external_id, {"awaiting_answers": awaiting})


def claim_route(external_id: str, status: str) -> bool:
    """Atomically record ``status`` as routed for a ticket.

    Uses the ``claim_ticket_route`` PostgreSQL function so that concurrent
    deliveries of the same status change route it only once.

    Returns:
        True if this call recorded the status, False if it was already routed
        or the ticket is not mirrored.

    Raises:
        ValueError: If database operation fails.
    """
    client = get_client()

    try:
        response = client.rpc(
            "claim_ticket_route", {"p_external_id": external_id, "p_status": status}
        ).execute()
        return bool(response.data)

    except APIError as e:
        logger.error(f"Database error claiming route of ticket {external_id}: {e}")
        raise ValueError(f"Failed to claim route of ticket {external_id}: {e}") from e


# ============================================================================
# Comment Operations
# ============================================================================


def fetch_comment(external_id: str) -> Optional[Comment]:
    """Fetch a mirrored comment by tracker id, or None if absent."""
    client = get_client()

    try:
        response = (
            client.table("comments")
            .select("*")
            .eq("external_id", external_id)
            .maybe_single()
            .execute()
        )

        if response is None or response.data is None:
            return None

        return Comment(**cast(SupabaseRow, response.data))

    except APIError as e:
        logger.error(f"Database error fetching comment {external_id}: {e}")
        raise ValueError(f"Failed to fetch comment {external_id}: {e}") from e


def insert_comment(comment: Comment) -> Comment:
    """Insert a comment into the mirror."""
    client = get_client()

    comment_data: SupabaseRow = comment.model_dump(mode="json", exclude={"id"})

    try:
        response = client.table("comments").insert(comment_data).execute()
        row = _first_row(
            cast(Optional[SupabaseRows], response.data), "Comment creation returned no data"
        )
        return Comment(**row)

    except APIError as e:
        logger.error(
            "Database error creating comment on ticket %s: %s", comment.ticket_external_id, e
        )
        raise ValueError(
            f"Failed to create comment on ticket {comment.ticket_external_id}: {e}"
        ) from e


def update_comment(external_id: str, fields: Dict[str, Any]) -> Comment:
    """Write the given columns of a mirrored comment."""
    client = get_client()

    try:
        response = (
            client.table("comments").update(fields).eq("external_id", external_id).execute()
        )
        row = _first_row(
            cast(Optional[SupabaseRows], response.data),
            f"Comment with external id {external_id} not found",
        )
        return Comment(**row)

    except APIError as e:
        logger.error(f"Database error updating comment {external_id}: {e}")
        raise ValueError(f"Failed to update comment {external_id}: {e}") from e


# ============================================================================
# Question Operations
# ============================================================================


def insert_question(question: Question) -> Question:
    """Insert a tracked clarification question.

    Raises:
        ValueError: If database operation fails, including a duplicate comment id.
    """
    client = get_client()

    question_data: SupabaseRow = question.model_dump(
        mode="json", exclude={"id", "created_at"}, exclude_none=True
    )

    try:
        response = client.table("questions").insert(question_data).execute()
        row = _first_row(
            cast(Optional[SupabaseRows], response.data), "Question creation returned no data"
        )
        return Question(**row)

    except APIError as e:
        logger.error(
            "Database error creating question for ticket %s: %s", question.ticket_external_id, e
        )
        raise ValueError(
            f"Failed to create question for ticket {question.ticket_external_id}: {e}"
        ) from e


def fetch_question_by_comment(comment_external_id: str) -> Optional[Question]:
    """Fetch the question posed in the given comment, or None."""
    client = get_client()

    try:
        response = (
            client.table("questions")
            .select("*")
            .eq("comment_external_id", comment_external_id)
            .maybe_single()
            .execute()
        )

        if response is None or response.data is None:
            return None

        return Question(**cast(SupabaseRow, response.data))

    except APIError as e:
        logger.error(f"Database error fetching question for comment {comment_external_id}: {e}")
        raise ValueError(
            f"Failed to fetch question for comment {comment_external_id}: {e}"
        ) from e


def fetch_questions(ticket_external_id: str) -> List[Question]:
    """Fetch all questions of a ticket in chronological order."""
    client = get_client()

    try:
        response = (
            client.table("questions")
            .select("*")
            .eq("ticket_external_id", ticket_external_id)
            .order("created_at")
            .execute()
        )

        rows = cast(Optional[SupabaseRows], response.data)
        if not rows:
            return []

        return [Question(**row) for row in rows]

    except APIError as e:
        logger.error(f"Database error fetching questions for ticket {ticket_external_id}: {e}")
        raise ValueError(
            f"Failed to fetch questions for ticket {ticket_external_id}: {e}"
        ) from e


def mark_question_answered(
    question_id: int, answer: str, answer_comment_external_id: str
) -> Optional[Question]:
    """Mark an unanswered question as answered.

    The update is filtered on ``answered = false`` so a question is answered
    at most once even when two replies race.

    Returns:
        The updated Question, or None when it was already answered.

    Raises:
        ValueError: If database operation fails.
    """
    client = get_client()

    update_data: SupabaseRow = {
        "answered": True,
        "answer": answer,
        "answer_comment_external_id": answer_comment_external_id,
        "answered_at": _utc_now_iso(),
    }

    try:
        response = (
            client.table("questions")
            .update(update_data)
            .eq("id", question_id)
            .eq("answered", False)
            .execute()
        )

        rows = cast(Optional[SupabaseRows], response.data)
        if not rows:
            return None

        return Question(**cast(SupabaseRow, rows[0]))

    except APIError as e:
        logger.error(f"Database error answering question {question_id}: {e}")
        raise ValueError(f"Failed to mark question {question_id} answered: {e}") from e
