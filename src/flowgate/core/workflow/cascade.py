"""Propagate a parent's trigger status to its children."""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional

from flowgate.core.database import fetch_children
from flowgate.core.models import Ticket
from flowgate.core.tracker import LinearTracker
from flowgate.core.utils import log_workflow_event
from flowgate.core.workflow.status import transition_status
from flowgate.core.workflow.taxonomy import StatusTaxonomy
from flowgate.core.workflow.types import CascadeChildResult, CascadeResult, CascadeSkip

logger = logging.getLogger(__name__)


def _move_child(
    child: Ticket,
    target_status: str,
    taxonomy: StatusTaxonomy,
    tracker: Optional[LinearTracker],
) -> CascadeChildResult:
    try:
        transition_status(child.external_id, target_status, taxonomy, tracker=tracker)
        return CascadeChildResult(external_id=child.external_id, success=True)
    except Exception as e:
        logger.error(f"Failed to cascade '{target_status}' to {child.external_id}: {e}")
        return CascadeChildResult(external_id=child.external_id, success=False, error=str(e))


def cascade(
    parent_external_id: str,
    target_status: str,
    taxonomy: StatusTaxonomy,
    max_workers: int = 8,
    tracker: Optional[LinearTracker] = None,
    children: Optional[List[Ticket]] = None,
) -> CascadeResult:
    """Move every child of a parent to ``target_status``.

    Children already at the target are skipped. The others are updated
    concurrently; a failing child is reported in the result and never stops
    its siblings. Running the same cascade twice is harmless.

    Args:
        parent_external_id: Tracker id of the parent
        target_status: Cascade status to propagate
        taxonomy: Status taxonomy of the project
        max_workers: Maximum concurrent child updates
        tracker: Tracker client; defaults to the configured one
        children: Children already fetched by the caller

    Raises:
        ValueError: If ``target_status`` is not a cascade status, or the children
            cannot be read
    """
    if not taxonomy.is_cascade_status(target_status):
        raise ValueError(f"Status '{target_status}' does not cascade to children")

    if children is None:
        children = fetch_children(parent_external_id)

    result = CascadeResult(
        parent_external_id=parent_external_id,
        target_status=target_status,
        children_count=len(children),
    )

    pending: List[Ticket] = []
    for child in children:
        if child.status == target_status:
            result.skipped.append(
                CascadeSkip(
                    external_id=child.external_id,
                    reason=f"Already in status '{target_status}'",
                )
            )
        else:
            pending.append(child)

    if pending:
        with ThreadPoolExecutor(
            max_workers=min(max_workers, len(pending)), thread_name_prefix="flowgate-cascade"
        ) as executor:
            result.cascaded = list(
                executor.map(
                    lambda child: _move_child(child, target_status, taxonomy, tracker), pending
                )
            )

    log_workflow_event(
        logger,
        "cascade",
        "completed",
        f"{parent_external_id} -> '{target_status}': {len(result.cascaded)} moved "
        f"({len(result.failed)} failed), {len(result.skipped)} skipped",
    )
    return result
