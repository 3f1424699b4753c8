"""Phase router: decide what a ticket's status change means.

A trigger status starts its phase, or cascades to the ticket's children when
it has any. A rollup status recomputes the parent. Any other status raises
``InvalidTriggerError``.
"""

import logging
from typing import Any, Dict, Optional

from flowgate.core.database import claim_route, fetch_children
from flowgate.core.errors import InvalidTriggerError, RunAlreadyExistsError, TicketSyncError
from flowgate.core.models import Ticket
from flowgate.core.substrate import ExecutionSubstrate
from flowgate.core.tracker import LinearTracker
from flowgate.core.workflow.cascade import cascade
from flowgate.core.workflow.rollup import rollup
from flowgate.core.workflow.sync import sync_ticket
from flowgate.core.workflow.taxonomy import Phase, StatusTaxonomy
from flowgate.core.workflow.types import RouteOutcome, RouteResult

logger = logging.getLogger(__name__)


class PhaseRouter:
    """Routes status events of one project to the phase engines.

    Args:
        taxonomy: Status taxonomy of the project
        substrate: Where phase runs are started
        tracker: Tracker client; defaults to the configured one
        cascade_workers: Maximum concurrent child updates per cascade
    """

    def __init__(
        self,
        taxonomy: StatusTaxonomy,
        substrate: ExecutionSubstrate,
        tracker: Optional[LinearTracker] = None,
        cascade_workers: int = 8,
    ) -> None:
        self.taxonomy = taxonomy
        self.substrate = substrate
        self.tracker = tracker
        self.cascade_workers = cascade_workers

    def handle_status_event(
        self, external_id: str, project_id: Optional[str] = None, force: bool = False
    ) -> RouteResult:
        """Sync a ticket and route its status once.

        The status is claimed in the mirror before routing, so a redelivered
        event for a status that was already routed is skipped. Statuses set
        by the service itself (cascade, split) are still routed when their
        webhook arrives, even though the mirror already holds them.

        Args:
            external_id: Tracker id of the ticket
            project_id: Project of the ticket
            force: Route even when the status was already routed

        Raises:
            TicketSyncError: If the ticket cannot be synced or claimed
            InvalidTriggerError: If the new status is not routable
        """
        sync = sync_ticket(external_id, project_id=project_id, tracker=self.tracker)
        ticket = sync.ticket
        try:
            claimed = claim_route(ticket.external_id, ticket.status)
        except ValueError as e:
            raise TicketSyncError(ticket.external_id, str(e)) from e

        if not claimed and not force:
            logger.debug(
                f"Ticket {sync.identifier or sync.external_id} already routed at "
                f"'{ticket.status}'; skipping"
            )
            return RouteResult(
                outcome=RouteOutcome.SKIPPED,
                external_id=sync.external_id,
                status=ticket.status,
                reason="Status already routed",
            )
        return self.route(ticket)

    def route(self, ticket: Ticket, context: Optional[Dict[str, Any]] = None) -> RouteResult:
        """Dispatch a ticket on its current status.

        Raises:
            InvalidTriggerError: If the status is neither a trigger nor a rollup status
        """
        status = ticket.status
        phase = self.taxonomy.phase_for_trigger(status)

        if phase is None:
            if self.taxonomy.is_rollup_status(status):
                result = rollup(ticket.external_id, self.taxonomy, tracker=self.tracker)
                return RouteResult(
                    outcome=RouteOutcome.ROLLED_UP,
                    external_id=ticket.external_id,
                    status=status,
                    rollup=result,
                )
            raise InvalidTriggerError(status, self.taxonomy.expected_triggers())

        if self.taxonomy.is_cascade_status(status):
            children = fetch_children(ticket.external_id)
            if children:
                # The parent's own phase is skipped: children carry the work
                result = cascade(
                    ticket.external_id,
                    status,
                    self.taxonomy,
                    max_workers=self.cascade_workers,
                    tracker=self.tracker,
                    children=children,
                )
                return RouteResult(
                    outcome=RouteOutcome.CASCADED,
                    external_id=ticket.external_id,
                    status=status,
                    phase=phase.value,
                    cascade=result,
                )

        return self._start(phase, ticket, context)

    def restart_phase(
        self, ticket: Ticket, context: Optional[Dict[str, Any]] = None
    ) -> RouteResult:
        """Run again the phase the ticket's current status belongs to.

        Raises:
            InvalidTriggerError: If the status belongs to no phase
        """
        phase = self.taxonomy.phase_of(ticket.status)
        if phase is None:
            raise InvalidTriggerError(ticket.status, self.taxonomy.expected_triggers())
        logger.info(f"Restarting {phase.label} for {ticket.identifier or ticket.external_id}")
        return self._start(phase, ticket, context)

    def _start(
        self, phase: Phase, ticket: Ticket, context: Optional[Dict[str, Any]]
    ) -> RouteResult:
        try:
            handle = self.substrate.start_phase(
                phase, ticket.external_id, ticket.project_id, context or {}
            )
        except RunAlreadyExistsError as e:
            logger.info(f"Run {e.handle.run_id} already active; not starting another")
            return RouteResult(
                outcome=RouteOutcome.ALREADY_RUNNING,
                external_id=ticket.external_id,
                status=ticket.status,
                phase=phase.value,
                run_id=e.handle.run_id,
            )

        return RouteResult(
            outcome=RouteOutcome.STARTED,
            external_id=ticket.external_id,
            status=ticket.status,
            phase=phase.value,
            run_id=handle.run_id,
        )
