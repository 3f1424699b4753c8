"""Status transitions applied to both the tracker and the local mirror."""

import logging
from typing import Optional

from flowgate.core.database import update_ticket_status
from flowgate.core.tracker import LinearTracker, get_tracker
from flowgate.core.workflow.taxonomy import StatusTaxonomy

logger = logging.getLogger(__name__)


def transition_status(
    external_id: str,
    status: str,
    taxonomy: StatusTaxonomy,
    tracker: Optional[LinearTracker] = None,
) -> None:
    """Move a ticket to ``status``.

    The tracker is the source of truth and is updated first; its failures
    propagate. The mirror write is best-effort since the next sync repairs it.

    Raises:
        ValueError: If ``status`` is not part of the taxonomy
        TrackerError: If the tracker rejects the update
    """
    if not taxonomy.contains(status):
        raise ValueError(f"Status '{status}' is not part of the status taxonomy")

    (tracker or get_tracker()).update_status(external_id, status)

    try:
        update_ticket_status(external_id, status)
    except ValueError as e:
        logger.error(f"Failed to mirror status '{status}' for ticket {external_id}: {e}")
        return

    logger.debug(f"Ticket {external_id} status updated to '{status}'")


def try_transition_status(
    external_id: str,
    status: str,
    taxonomy: StatusTaxonomy,
    tracker: Optional[LinearTracker] = None,
) -> bool:
    """Best-effort ``transition_status``: failures are logged, never raised.

    Returns:
        True if the tracker accepted the new status
    """
    try:
        transition_status(external_id, status, taxonomy, tracker=tracker)
        return True
    except Exception as e:
        logger.error(f"Failed to update ticket {external_id} status to '{status}': {e}")
        return False
