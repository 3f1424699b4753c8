"""Wiring of the orchestration components for a running service."""

import logging
from typing import Any, Dict, Optional

from flowgate.core.config import ServiceConfig
from flowgate.core.generators import Generator, PhaseOutput, get_generator
from flowgate.core.substrate import ExecutionSubstrate, LocalSubstrate
from flowgate.core.tracker import LinearTracker, get_tracker
from flowgate.core.workflow.phases import PhaseRunner
from flowgate.core.workflow.router import PhaseRouter
from flowgate.core.workflow.taxonomy import Phase, StatusTaxonomy, TaxonomyStore

logger = logging.getLogger(__name__)


class FlowgateService:
    """Holds the shared collaborators and builds per-project routers.

    The taxonomy store, tracker, generator and substrate are process-wide;
    routers and phase runners are cheap and built per event with the
    taxonomy of the event's project.
    """

    def __init__(
        self,
        config: ServiceConfig,
        taxonomies: Optional[TaxonomyStore] = None,
        generator: Optional[Generator] = None,
        tracker: Optional[LinearTracker] = None,
        substrate: Optional[ExecutionSubstrate] = None,
    ) -> None:
        self.config = config
        self.taxonomies = taxonomies or TaxonomyStore(config.taxonomy_dir)
        self._generator = generator
        self._tracker = tracker
        self.substrate = substrate or LocalSubstrate(
            self.run_phase, max_workers=config.substrate_workers
        )

    @property
    def generator(self) -> Generator:
        if self._generator is None:
            self._generator = get_generator(
                self.config.generator_command, timeout=self.config.generator_timeout
            )
        return self._generator

    @property
    def tracker(self) -> LinearTracker:
        if self._tracker is None:
            self._tracker = get_tracker()
        return self._tracker

    def check_ready(self) -> None:
        """Build the generator and tracker now so misconfiguration fails at startup.

        Raises:
            ValueError: If either is not configured
        """
        self._generator = self.generator
        self._tracker = self.tracker

    def taxonomy(self, project_id: Optional[str] = None) -> StatusTaxonomy:
        return self.taxonomies.get(project_id)

    def router_for(self, project_id: Optional[str] = None) -> PhaseRouter:
        return PhaseRouter(
            self.taxonomy(project_id),
            self.substrate,
            tracker=self.tracker,
            cascade_workers=self.config.cascade_workers,
        )

    def run_phase(
        self,
        phase: Phase,
        ticket_id: str,
        project_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> PhaseOutput:
        """Execute a phase synchronously; used by the local substrate."""
        runner = PhaseRunner(self.taxonomy(project_id), self.generator, tracker=self.tracker)
        return runner.run(phase, ticket_id, project_id=project_id, context=context)

    def shutdown(self) -> None:
        if isinstance(self.substrate, LocalSubstrate):
            self.substrate.shutdown(wait=True)
        logger.info("Service stopped")
