"""Recompute a parent's status from the statuses of its children.

A parent never claims more progress than its least progressed child: after a
child changes, the parent moves to the lowest ranked status among all of its
children.
"""

import logging
from typing import List, Optional

from flowgate.core.database import fetch_children, fetch_ticket
from flowgate.core.models import Ticket
from flowgate.core.tracker import LinearTracker
from flowgate.core.workflow.status import transition_status
from flowgate.core.workflow.taxonomy import StatusTaxonomy
from flowgate.core.workflow.types import RollupResult

logger = logging.getLogger(__name__)


def lowest_status(statuses: List[str], taxonomy: StatusTaxonomy) -> Optional[str]:
    """Return the least progressed status, ignoring statuses outside the taxonomy."""
    ranked = [name for name in statuses if taxonomy.contains(name)]
    if not ranked:
        return None
    return min(ranked, key=taxonomy.rank)


def rollup(
    child_external_id: str,
    taxonomy: StatusTaxonomy,
    tracker: Optional[LinearTracker] = None,
) -> RollupResult:
    """Align the parent of ``child_external_id`` with its least progressed child.

    Never raises: every failure is logged and reported through ``reason``.
    """
    try:
        child = fetch_ticket(child_external_id)
        if child is None:
            return RollupResult(updated=False, reason=f"Ticket {child_external_id} is not mirrored")
        if not child.parent_external_id:
            return RollupResult(updated=False, reason="Ticket has no parent")

        parent = fetch_ticket(child.parent_external_id)
        if parent is None:
            return RollupResult(
                updated=False,
                parent_id=child.parent_external_id,
                reason=f"Parent {child.parent_external_id} is not mirrored",
            )

        siblings: List[Ticket] = fetch_children(parent.external_id)
        target = lowest_status([sibling.status for sibling in siblings], taxonomy)
        if target is None:
            return RollupResult(
                updated=False,
                parent_id=parent.external_id,
                previous_status=parent.status,
                reason="No child has a ranked status",
            )

        if target == parent.status:
            return RollupResult(
                updated=False,
                parent_id=parent.external_id,
                previous_status=parent.status,
                new_status=target,
                reason=f"Parent already in status '{target}'",
            )

        transition_status(parent.external_id, target, taxonomy, tracker=tracker)
        logger.info(
            f"Rolled up {parent.identifier or parent.external_id}: "
            f"'{parent.status}' -> '{target}'"
        )
        return RollupResult(
            updated=True,
            parent_id=parent.external_id,
            previous_status=parent.status,
            new_status=target,
        )

    except Exception as e:
        logger.error(f"Rollup from ticket {child_external_id} failed: {e}")
        return RollupResult(updated=False, reason=f"Rollup failed: {e}")
