"""Per-phase state machine: trigger -> in progress -> ready, or failed."""

import logging
from typing import Any, Dict, Optional

from flowgate.core.errors import SplitApplicationError
from flowgate.core.generators.base import Generator, PhaseOutput, RefinementOutput
from flowgate.core.models import SuggestedSplit, Ticket
from flowgate.core.tracker import LinearTracker, get_tracker
from flowgate.core.utils import log_workflow_event
from flowgate.core.workflow.questions import record_question
from flowgate.core.workflow.rollup import rollup
from flowgate.core.workflow.split import (
    apply_split,
    format_split_comment,
    parse_complexity,
    parse_split,
)
from flowgate.core.workflow.status import transition_status, try_transition_status
from flowgate.core.workflow.sync import sync_ticket
from flowgate.core.workflow.taxonomy import HIGH_COMPLEXITY, Phase, StatusTaxonomy
from flowgate.core.workflow.types import SplitResult

logger = logging.getLogger(__name__)


class PhaseRunner:
    """Executes one phase for one ticket.

    The run syncs the ticket, marks it in progress, generates the phase
    content and applies its side effects, then marks it ready. Any failure
    moves the ticket to the phase's failed status (best-effort) and the
    original error is re-raised.
    """

    def __init__(
        self,
        taxonomy: StatusTaxonomy,
        generator: Generator,
        tracker: Optional[LinearTracker] = None,
    ) -> None:
        self.taxonomy = taxonomy
        self.generator = generator
        self._tracker = tracker

    @property
    def tracker(self) -> LinearTracker:
        if self._tracker is None:
            self._tracker = get_tracker()
        return self._tracker

    def run(
        self,
        phase: Phase,
        external_id: str,
        project_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> PhaseOutput:
        statuses = self.taxonomy.phase_statuses(phase)
        log_workflow_event(logger, phase.value, "started", external_id)
        ticket_id = external_id

        try:
            ticket = sync_ticket(external_id, project_id=project_id, tracker=self.tracker).ticket
            ticket_id = ticket.external_id
            transition_status(ticket.external_id, statuses.in_progress, self.taxonomy, self.tracker)

            output = self.generator.generate(phase, ticket, dict(context or {}))
            self._apply_output(phase, ticket, output)

            transition_status(ticket.external_id, statuses.ready, self.taxonomy, self.tracker)
        except Exception as e:
            log_workflow_event(logger, phase.value, "failed", f"{ticket_id}: {e}")
            try_transition_status(ticket_id, statuses.failed, self.taxonomy, self.tracker)
            raise

        log_workflow_event(logger, phase.value, "completed", external_id)

        result = rollup(ticket.external_id, self.taxonomy, tracker=self.tracker)
        if result.updated:
            logger.info(f"Parent {result.parent_id} rolled up to '{result.new_status}'")
        return output

    def _apply_output(self, phase: Phase, ticket: Ticket, output: PhaseOutput) -> None:
        description = self.tracker.append_to_description(ticket.external_id, output.content)

        for question in output.questions:
            comment_id = self.tracker.add_comment(ticket.external_id, question)
            record_question(ticket.external_id, comment_id, question)
        if output.questions:
            logger.info(f"Posted {len(output.questions)} question(s) on {ticket.external_id}")

        if phase is Phase.REFINEMENT and isinstance(output, RefinementOutput):
            self._maybe_split(ticket, output, description)

    def _maybe_split(self, ticket: Ticket, output: RefinementOutput, description: str) -> None:
        complexity = output.complexity or parse_complexity(output.content)
        if complexity not in HIGH_COMPLEXITY:
            return

        split: Optional[SuggestedSplit] = output.suggested_split or parse_split(description)
        if split is None:
            logger.debug(f"Complexity {complexity} for {ticket.external_id} but no split proposed")
            return

        result = apply_split(
            ticket, split, self.taxonomy.role("toRefinement"), self.taxonomy, tracker=self.tracker
        )
        self._post_split_comment(ticket, split, result)
        if not result.success:
            raise SplitApplicationError(
                ticket.external_id, [failure.model_dump() for failure in result.failed]
            )

    def _post_split_comment(
        self, ticket: Ticket, split: SuggestedSplit, result: SplitResult
    ) -> None:
        try:
            self.tracker.add_comment(ticket.external_id, format_split_comment(split, result))
        except Exception as e:
            logger.warning(f"Failed to post split summary on {ticket.external_id}: {e}")
