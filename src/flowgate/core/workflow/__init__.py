"""Status-driven orchestration for the refinement, user story and plan phases.

Main components:
- taxonomy: Status taxonomy, phases and per-project configuration
- sync: Ticket and comment mirroring from the tracker
- status: Validated status transitions (tracker + mirror)
- router: Phase router reacting to status events
- phases: Per-phase state machine run on the execution substrate
- cascade: Propagation of trigger statuses to children
- rollup: Recomputation of a parent's status from its children
- split: Suggested split parsing and sub-ticket creation
- questions: Clarification question tracking
- types: Result types shared by the engines
"""

from flowgate.core.workflow.taxonomy import (
    Phase,
    PhaseStatuses,
    StatusTaxonomy,
    TaxonomyStore,
    default_taxonomy,
    load_taxonomy,
)

__all__ = [
    "Phase",
    "PhaseStatuses",
    "StatusTaxonomy",
    "TaxonomyStore",
    "default_taxonomy",
    "load_taxonomy",
]
