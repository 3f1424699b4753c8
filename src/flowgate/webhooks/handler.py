"""Dispatch of Linear webhook events to the orchestration core.

Handlers run in background tasks after the HTTP request has been answered,
so every failure is logged here and never propagates.
"""

import logging
from typing import Optional

from flowgate.core.database import fetch_questions, fetch_ticket
from flowgate.core.errors import FlowgateError, InvalidTriggerError
from flowgate.core.service import FlowgateService
from flowgate.core.tracker import TrackerComment
from flowgate.core.workflow.questions import all_answered, clear_awaiting, is_answer, mark_answered
from flowgate.core.workflow.sync import best_effort_sync, sync_comment, sync_ticket
from flowgate.core.workflow.types import RouteResult
from flowgate.webhooks.commands import CommentCommand, not_implemented_message, parse_command
from flowgate.webhooks.schemas import LinearWebhookPayload

logger = logging.getLogger(__name__)


class WebhookHandler:
    """Routes webhook payloads by entity type and action."""

    def __init__(self, service: FlowgateService) -> None:
        self.service = service

    def handle(self, payload: LinearWebhookPayload) -> None:
        try:
            if payload.type == "Issue":
                self.handle_issue(payload)
            elif payload.type == "Comment":
                self.handle_comment(payload)
            else:
                logger.debug(f"Ignoring {payload.type} {payload.action} webhook")
        except Exception:
            logger.exception(
                f"Failed to process {payload.type} {payload.action} webhook for {payload.entity_id}"
            )

    # ------------------------------------------------------------------
    # Issues
    # ------------------------------------------------------------------

    def handle_issue(self, payload: LinearWebhookPayload) -> Optional[RouteResult]:
        issue_id = payload.entity_id
        if not issue_id:
            logger.warning("Issue webhook without an id")
            return None

        if payload.action == "create":
            # Sub-issues created by a split arrive already at a trigger status
            status = payload.state_name
            taxonomy = self.service.taxonomy(payload.project_id)
            if status is not None and taxonomy.is_trigger_status(status):
                return self._route_issue(issue_id, payload.project_id, status)
            best_effort_sync(issue_id, project_id=payload.project_id, tracker=self.service.tracker)
            return None

        if payload.action == "remove":
            logger.info(f"Issue {issue_id} removed in tracker; mirror left untouched")
            return None

        if payload.action != "update":
            logger.debug(f"Ignoring issue action '{payload.action}'")
            return None

        if not payload.state_changed:
            best_effort_sync(issue_id, project_id=payload.project_id, tracker=self.service.tracker)
            return None

        return self._route_issue(issue_id, payload.project_id, payload.state_name)

    def _route_issue(
        self, issue_id: str, project_id: Optional[str], status: Optional[str]
    ) -> Optional[RouteResult]:
        try:
            result = self.service.router_for(project_id).handle_status_event(
                issue_id, project_id=project_id
            )
        except InvalidTriggerError as e:
            logger.error(
                f"Issue {issue_id} moved to invalid trigger '{e.status}'; "
                f"expected one of {e.expected}"
            )
            return None
        except FlowgateError as e:
            logger.error(f"Routing of issue {issue_id} failed: {e}")
            return None

        logger.info(f"Issue {issue_id} '{result.status or status}': {result.outcome.value}")
        return result

    # ------------------------------------------------------------------
    # Comments
    # ------------------------------------------------------------------

    def handle_comment(self, payload: LinearWebhookPayload) -> None:
        if not payload.entity_id:
            logger.warning("Comment webhook without an id")
            return

        comment = payload.to_comment()

        if payload.action == "update":
            self._sync_comment(comment)
            return
        if payload.action != "create":
            logger.debug(f"Ignoring comment action '{payload.action}'")
            return

        if comment.issue_id:
            # The comment row references the ticket, so mirror the ticket first
            best_effort_sync(
                comment.issue_id, project_id=payload.project_id, tracker=self.service.tracker
            )
        self._sync_comment(comment)

        if comment.parent_id and is_answer(comment.parent_id):
            self._handle_answer(comment, payload.project_id)

        command = parse_command(comment.body, self.service.config.bot_name)
        if command is not None:
            self._handle_command(command, comment, payload.project_id)

    def _sync_comment(self, comment: TrackerComment) -> None:
        try:
            sync_comment(comment)
        except FlowgateError as e:
            logger.warning(f"Comment {comment.id} not mirrored: {e}")

    def _handle_answer(self, comment: TrackerComment, project_id: Optional[str]) -> None:
        marked = mark_answered(comment.parent_id, comment.body, comment.id)
        if marked is None:
            return

        status = all_answered(marked.ticket_id)
        if not status.all_answered:
            logger.info(
                f"Ticket {marked.ticket_id}: {status.pending} of {status.total} question(s) pending"
            )
            return

        clear_awaiting(marked.ticket_id)
        ticket = fetch_ticket(marked.ticket_id)
        if ticket is None:
            logger.warning(f"All questions answered but ticket {marked.ticket_id} is not mirrored")
            return

        answers = [
            {"question": question.question, "answer": question.answer}
            for question in fetch_questions(marked.ticket_id)
        ]
        result = self.service.router_for(project_id or ticket.project_id).restart_phase(
            ticket, context={"answers": answers}
        )
        logger.info(f"All questions answered on {marked.ticket_id}; phase {result.outcome.value}")

    def _handle_command(
        self, command: CommentCommand, comment: TrackerComment, project_id: Optional[str]
    ) -> str:
        if command.action == "sync":
            try:
                result = sync_ticket(
                    comment.issue_id, project_id=project_id, tracker=self.service.tracker
                )
            except FlowgateError as e:
                message = f"Sync failed: {e}"
            else:
                changes = f" ({', '.join(result.changed_fields)})" if result.changed_fields else ""
                identifier = result.identifier or result.external_id
                message = f"Synced issue {identifier}: {result.action}{changes}"
        else:
            logger.info(f"Command '{command.command}' received on {comment.issue_id}")
            message = not_implemented_message(command)

        try:
            self.service.tracker.add_comment(comment.issue_id, message, parent_id=comment.id)
        except FlowgateError as e:
            logger.warning(f"Failed to reply to command on {comment.issue_id}: {e}")
        return message
