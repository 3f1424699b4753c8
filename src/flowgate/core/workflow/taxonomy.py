"""Status taxonomy: the ordered set of tracker statuses that drives the pipeline.

A taxonomy maps each logical role (``toRefinement``, ``refinementReady``, ...)
to the literal status name used in the tracker, fixes a total rank order from
least to most progressed, and declares which statuses cascade to children and
which roll up to parents. Taxonomies are configuration: one is loaded per
project and passed explicitly to the router, cascade and rollup engines.
"""

import json
import logging
import threading
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError, model_validator

from flowgate.core.errors import TaxonomyConfigError

logger = logging.getLogger(__name__)


class Phase(str, Enum):
    """The three ordered phases of the pipeline."""

    REFINEMENT = "refinement"
    USER_STORY = "user_story"
    TECHNICAL_PLAN = "technical_plan"

    @property
    def label(self) -> str:
        """Human-readable phase name."""
        return _PHASE_LABELS[self]


_PHASE_LABELS = {
    Phase.REFINEMENT: "Refinement",
    Phase.USER_STORY: "User Story",
    Phase.TECHNICAL_PLAN: "Technical Plan",
}

# Role-name prefix of each phase in the flat configuration format
_ROLE_PREFIXES = {
    Phase.REFINEMENT: ("toRefinement", "refinement"),
    Phase.USER_STORY: ("toUserStory", "userStory"),
    Phase.TECHNICAL_PLAN: ("toPlan", "plan"),
}

# Complexity estimates that warrant splitting a ticket
HIGH_COMPLEXITY = frozenset({"L", "XL"})


class PhaseStatuses(BaseModel):
    """Tracker status names for one phase."""

    trigger: str = Field(..., min_length=1)
    in_progress: str = Field(..., min_length=1)
    ready: str = Field(..., min_length=1)
    failed: str = Field(..., min_length=1)


class StatusTaxonomy(BaseModel):
    """Validated status configuration for one project.

    Attributes:
        refinement: Statuses of the refinement phase
        user_story: Statuses of the user story phase
        technical_plan: Statuses of the technical plan phase
        backlog: Status of tickets not yet in the pipeline
        blocked: Status of blocked tickets
        in_review: Status of tickets in review after planning
        done: Terminal status
        rank_order: Every status, least progressed first
        cascade_statuses: Trigger statuses a parent propagates to its children
        rollup_statuses: Statuses that cause the parent to be recomputed
    """

    refinement: PhaseStatuses
    user_story: PhaseStatuses
    technical_plan: PhaseStatuses
    backlog: str = "Backlog"
    blocked: str = "Blocked"
    in_review: str = "In Review"
    done: str = "Done"
    rank_order: List[str] = Field(default_factory=list)
    cascade_statuses: List[str] = Field(default_factory=list)
    rollup_statuses: List[str] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def fill_defaults(cls, values):
        """Derive rank order and membership sets when they are not configured."""
        if not isinstance(values, dict):
            return values
        phases = []
        for phase in Phase:
            statuses = values.get(phase.value)
            if isinstance(statuses, PhaseStatuses):
                statuses = statuses.model_dump()
            if not isinstance(statuses, dict):
                return values
            phases.append(statuses)

        if not values.get("rank_order"):
            order: List[str] = [
                values.get("blocked", "Blocked"),
                values.get("backlog", "Backlog"),
            ]
            for statuses in phases:
                order.extend(
                    [
                        statuses.get("failed"),
                        statuses.get("trigger"),
                        statuses.get("in_progress"),
                        statuses.get("ready"),
                    ]
                )
            order.extend([values.get("in_review", "In Review"), values.get("done", "Done")])
            # A status reused by two roles keeps its first rank
            values["rank_order"] = list(dict.fromkeys(name for name in order if name))

        if not values.get("cascade_statuses"):
            values["cascade_statuses"] = [statuses.get("trigger") for statuses in phases]

        if not values.get("rollup_statuses"):
            rollup = [statuses.get("ready") for statuses in phases]
            rollup.append(values.get("done", "Done"))
            values["rollup_statuses"] = list(dict.fromkeys(rollup))

        return values

    @model_validator(mode="after")
    def check_consistency(self) -> "StatusTaxonomy":
        seen = set()
        duplicates = []
        for name in self.rank_order:
            if name in seen:
                duplicates.append(name)
            seen.add(name)
        if duplicates:
            raise TaxonomyConfigError(
                f"Statuses share a rank: {', '.join(sorted(set(duplicates)))}"
            )

        unranked = [name for name in self.roles().values() if name not in seen]
        if unranked:
            raise TaxonomyConfigError(
                f"Statuses missing from rank order: {', '.join(sorted(set(unranked)))}"
            )

        triggers = [self.phase_statuses(phase).trigger for phase in Phase]
        if len(set(triggers)) != len(triggers):
            raise TaxonomyConfigError("Each phase must have a distinct trigger status")

        stray_cascade = [name for name in self.cascade_statuses if name not in triggers]
        if stray_cascade:
            raise TaxonomyConfigError(
                f"Cascade statuses must be trigger statuses: {', '.join(stray_cascade)}"
            )

        stray_rollup = [name for name in self.rollup_statuses if name not in seen]
        if stray_rollup:
            raise TaxonomyConfigError(
                f"Rollup statuses must be ranked: {', '.join(stray_rollup)}"
            )
        return self

    @classmethod
    def from_roles(
        cls,
        statuses: Dict[str, str],
        rank_order: Optional[List[str]] = None,
        cascade_statuses: Optional[List[str]] = None,
        rollup_statuses: Optional[List[str]] = None,
    ) -> "StatusTaxonomy":
        """Build a taxonomy from the flat role mapping used in configuration files.

        Args:
            statuses: Mapping of role name (``toRefinement``, ``planReady``, ...)
                to tracker status name. Missing roles fall back to the defaults.
            rank_order: Optional explicit rank order
            cascade_statuses: Optional explicit cascade set
            rollup_statuses: Optional explicit rollup set

        Returns:
            Validated StatusTaxonomy

        Raises:
            TaxonomyConfigError: If the configuration is inconsistent
        """
        merged = {**DEFAULT_ROLES, **statuses}
        unknown = sorted(set(statuses) - set(DEFAULT_ROLES))
        if unknown:
            raise TaxonomyConfigError(f"Unknown status roles: {', '.join(unknown)}")

        values: Dict[str, object] = {
            "backlog": merged["backlog"],
            "blocked": merged["blocked"],
            "in_review": merged["inReview"],
            "done": merged["done"],
            "rank_order": rank_order or [],
            "cascade_statuses": cascade_statuses or [],
            "rollup_statuses": rollup_statuses or [],
        }
        for phase, (trigger_role, prefix) in _ROLE_PREFIXES.items():
            values[phase.value] = {
                "trigger": merged[trigger_role],
                "in_progress": merged[f"{prefix}InProgress"],
                "ready": merged[f"{prefix}Ready"],
                "failed": merged[f"{prefix}Failed"],
            }
        try:
            return cls(**values)
        except ValidationError as e:
            raise TaxonomyConfigError(f"Invalid status taxonomy: {e}") from e

    def phase_statuses(self, phase: Phase) -> PhaseStatuses:
        """Return the statuses configured for a phase."""
        if phase is Phase.REFINEMENT:
            return self.refinement
        if phase is Phase.USER_STORY:
            return self.user_story
        if phase is Phase.TECHNICAL_PLAN:
            return self.technical_plan
        raise ValueError(f"Unknown phase: {phase}")

    def roles(self) -> Dict[str, str]:
        """Return the flat role -> status mapping."""
        mapping = {
            "backlog": self.backlog,
            "blocked": self.blocked,
            "inReview": self.in_review,
            "done": self.done,
        }
        for phase, (trigger_role, prefix) in _ROLE_PREFIXES.items():
            statuses = self.phase_statuses(phase)
            mapping[trigger_role] = statuses.trigger
            mapping[f"{prefix}InProgress"] = statuses.in_progress
            mapping[f"{prefix}Ready"] = statuses.ready
            mapping[f"{prefix}Failed"] = statuses.failed
        return mapping

    def role(self, name: str) -> str:
        """Resolve a logical role to its tracker status name.

        Raises:
            KeyError: If the role is unknown
        """
        return self.roles()[name]

    def contains(self, name: str) -> bool:
        return name in self.rank_order

    def is_trigger_status(self, name: str) -> bool:
        return self.phase_for_trigger(name) is not None

    def is_cascade_status(self, name: str) -> bool:
        return name in self.cascade_statuses

    def is_rollup_status(self, name: str) -> bool:
        return name in self.rollup_statuses

    def expected_triggers(self) -> List[str]:
        """Trigger statuses in phase order."""
        return [self.phase_statuses(phase).trigger for phase in Phase]

    def phase_for_trigger(self, name: str) -> Optional[Phase]:
        """Return the phase a trigger status starts, or None."""
        for phase in Phase:
            if self.phase_statuses(phase).trigger == name:
                return phase
        return None

    def phase_of(self, name: str) -> Optional[Phase]:
        """Return the phase whose in-progress, ready or failed status is ``name``.

        Trigger statuses resolve to the phase they start.
        """
        trigger_phase = self.phase_for_trigger(name)
        if trigger_phase is not None:
            return trigger_phase
        for phase in Phase:
            statuses = self.phase_statuses(phase)
            if name in (statuses.in_progress, statuses.ready, statuses.failed):
                return phase
        return None

    def rank(self, name: str) -> int:
        """Return the rank of a status.

        Raises:
            ValueError: If the status is not part of the taxonomy
        """
        try:
            return self.rank_order.index(name)
        except ValueError:
            raise ValueError(f"Unknown status '{name}'") from None

    def status_at_rank(self, rank: int) -> Optional[str]:
        if 0 <= rank < len(self.rank_order):
            return self.rank_order[rank]
        return None


DEFAULT_ROLES: Dict[str, str] = {
    "backlog": "Backlog",
    "blocked": "Blocked",
    "inReview": "In Review",
    "done": "Done",
    "toRefinement": "To Refinement",
    "refinementInProgress": "Refinement In Progress",
    "refinementReady": "Refinement Ready",
    "refinementFailed": "Refinement Failed",
    "toUserStory": "To User Story",
    "userStoryInProgress": "UserStory In Progress",
    "userStoryReady": "UserStory Ready",
    "userStoryFailed": "UserStory Failed",
    "toPlan": "To Plan",
    "planInProgress": "Plan In Progress",
    "planReady": "Plan Ready",
    "planFailed": "Plan Failed",
}


def default_taxonomy() -> StatusTaxonomy:
    """Build the taxonomy used when a project has no configuration file."""
    return StatusTaxonomy.from_roles({})


def load_taxonomy(path: Path) -> StatusTaxonomy:
    """Load a taxonomy from a JSON configuration file.

    The file holds a ``statuses`` role mapping and optional ``rank_order``,
    ``cascade_statuses`` and ``rollup_statuses`` lists.

    Raises:
        TaxonomyConfigError: If the file is unreadable or inconsistent
    """
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise TaxonomyConfigError(f"Cannot read taxonomy file {path}: {e}") from e

    if not isinstance(data, dict):
        raise TaxonomyConfigError(f"Taxonomy file {path} must contain a JSON object")

    statuses = data.get("statuses", {})
    if not isinstance(statuses, dict):
        raise TaxonomyConfigError(f"Taxonomy file {path}: 'statuses' must be an object")

    return StatusTaxonomy.from_roles(
        statuses,
        rank_order=data.get("rank_order"),
        cascade_statuses=data.get("cascade_statuses"),
        rollup_statuses=data.get("rollup_statuses"),
    )


class TaxonomyStore:
    """Per-project taxonomy cache backed by ``<directory>/<project_id>.json`` files.

    Projects without a file use the default taxonomy. ``invalidate`` drops a
    cached entry so an edited file is picked up on the next ``get``.
    """

    def __init__(self, directory: Optional[Path] = None) -> None:
        self._directory = directory
        self._cache: Dict[str, StatusTaxonomy] = {}
        self._lock = threading.Lock()

    def get(self, project_id: Optional[str] = None) -> StatusTaxonomy:
        key = project_id or ""
        with self._lock:
            cached = self._cache.get(key)
            if cached is not None:
                return cached

            taxonomy = self._load(project_id)
            self._cache[key] = taxonomy
            return taxonomy

    def invalidate(self, project_id: Optional[str] = None) -> None:
        """Drop one cached project, or all of them when ``project_id`` is None."""
        with self._lock:
            if project_id is None:
                self._cache.clear()
            else:
                self._cache.pop(project_id, None)

    def _load(self, project_id: Optional[str]) -> StatusTaxonomy:
        if self._directory is not None and project_id:
            path = self._directory / f"{project_id}.json"
            if path.is_file():
                logger.info("Loading status taxonomy for project %s from %s", project_id, path)
                return load_taxonomy(path)
        logger.debug("Using default status taxonomy for project %s", project_id)
        return default_taxonomy()
