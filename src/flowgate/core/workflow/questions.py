"""Track clarification questions posted on tickets and their answers.

A phase that needs input posts each question as a comment and records it.
A reply to that comment answers the question; once every question of a ticket
is answered the ticket stops waiting and its phase can be restarted.
"""

import logging
from typing import Optional

from flowgate.core.database import (
    fetch_question_by_comment,
    fetch_questions,
    insert_question,
    mark_question_answered,
    set_awaiting_answers,
)
from flowgate.core.models import Question
from flowgate.core.workflow.types import AnswerStatus, MarkAnsweredResult

logger = logging.getLogger(__name__)


def record_question(ticket_external_id: str, comment_external_id: str, question: str) -> Question:
    """Record a question posted as ``comment_external_id`` and flag the ticket as waiting."""
    recorded = insert_question(
        Question(
            ticket_external_id=ticket_external_id,
            comment_external_id=comment_external_id,
            question=question,
        )
    )
    set_awaiting_answers(ticket_external_id, True)
    logger.debug(f"Recorded question {comment_external_id} on ticket {ticket_external_id}")
    return recorded


def is_answer(parent_comment_id: Optional[str]) -> bool:
    """True if a comment replying to ``parent_comment_id`` answers a tracked question."""
    if not parent_comment_id:
        return False
    return fetch_question_by_comment(parent_comment_id) is not None


def mark_answered(
    question_comment_id: str, answer_text: str, answer_comment_id: str
) -> Optional[MarkAnsweredResult]:
    """Mark the question posed in ``question_comment_id`` as answered.

    Returns:
        The ticket and question ids, or None if no such question exists or it
        was already answered
    """
    question = fetch_question_by_comment(question_comment_id)
    if question is None or question.id is None:
        return None
    if question.answered:
        logger.debug(f"Question {question_comment_id} already answered")
        return None

    updated = mark_question_answered(question.id, answer_text, answer_comment_id)
    if updated is None:
        return None

    logger.info(f"Question {question_comment_id} on ticket {question.ticket_external_id} answered")
    return MarkAnsweredResult(ticket_id=question.ticket_external_id, question_id=question.id)


def all_answered(ticket_id: str) -> AnswerStatus:
    """Summarize the answer state of a ticket's questions (vacuously true when none)."""
    questions = fetch_questions(ticket_id)
    answered = sum(1 for question in questions if question.answered)
    total = len(questions)
    return AnswerStatus(
        all_answered=answered == total,
        total=total,
        answered=answered,
        pending=total - answered,
    )


def clear_awaiting(ticket_id: str) -> None:
    set_awaiting_answers(ticket_id, False)
