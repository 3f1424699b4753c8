"""Parse a "Suggested Split" block and create the proposed child tickets.

A refinement may propose splitting a ticket into smaller stories. The block
lives in the ticket description, either inside a collapsible
``<details><summary>📋 Backlog Refinement</summary>`` section or under a
``# Backlog Refinement`` heading:

    ### 🔀 Suggested Split

    **Reason:** Too large for one iteration

    #### 1. Data model
    Create the tables.

    **Acceptance Criteria:**
    1. Tables exist

    #### 2. API
    Expose the endpoints.

    **Dependencies:**
    - Depends on: Data model

The section ends at a ``Complexity Estimate`` heading or the end of the text.
"""

import logging
import re
from typing import List, Optional

from flowgate.core.database import insert_ticket
from flowgate.core.errors import TrackerError
from flowgate.core.models import ProposedStory, SuggestedSplit, Ticket
from flowgate.core.tracker import LinearTracker, get_tracker
from flowgate.core.workflow.sync import ticket_from_issue
from flowgate.core.workflow.taxonomy import StatusTaxonomy
from flowgate.core.workflow.types import CreatedChild, FailedChild, SplitResult

logger = logging.getLogger(__name__)

_DETAILS_PATTERN = re.compile(
    r"<details[^>]*>\s*<summary[^>]*>\s*(?:📋\s*)?Backlog Refinement\s*</summary>(.*?)</details>",
    re.DOTALL,
)
_H1_PATTERN = re.compile(r"^# Backlog Refinement.*?(?=\n# |\Z)", re.DOTALL | re.MULTILINE)
_SPLIT_PATTERN = re.compile(
    r"#{2,3}[ \t]*(?:🔀[ \t]*)?Suggested Split[ \t]*\n(.*?)(?=\n#{2,3}[ \t]*Complexity Estimate|\Z)",
    re.DOTALL,
)
_REASON_PATTERN = re.compile(r"\*\*Reason:\*\*[ \t]*(.*)")
_STORY_HEADER_PATTERN = re.compile(r"####[ \t]*\d+\.[ \t]*")
_SECTION_END_PATTERN = re.compile(r"\n\*\*(?:Dependencies|Acceptance Criteria):\*\*")
_DEPENDENCIES_PATTERN = re.compile(
    r"\*\*Dependencies:\*\*(.*?)(?=\n\*\*Acceptance Criteria:\*\*|\Z)", re.DOTALL
)
_DEPENDS_ON_PATTERN = re.compile(r"- Depends on:[ \t]*(.+)")
_CRITERIA_PATTERN = re.compile(r"\*\*Acceptance Criteria:\*\*(.*)\Z", re.DOTALL)
_NUMBERED_LINE_PATTERN = re.compile(r"^\d+\.\s*")
_COMPLEXITY_PATTERN = re.compile(r"\*\*(XS|S|M|L|XL)\*\*")


def extract_refinement_section(body: str) -> str:
    """Return the refinement section of a description, or the whole body if none."""
    match = _DETAILS_PATTERN.search(body)
    if match:
        return match.group(1)
    match = _H1_PATTERN.search(body)
    if match:
        return match.group(0)
    return body


def parse_complexity(body: str) -> Optional[str]:
    """Return the first bold complexity estimate (``**L**``) of the refinement, if any."""
    match = _COMPLEXITY_PATTERN.search(extract_refinement_section(body or ""))
    return match.group(1) if match else None


def _numbered_items(text: str) -> List[str]:
    items = []
    for line in text.splitlines():
        line = line.strip()
        if _NUMBERED_LINE_PATTERN.match(line):
            items.append(_NUMBERED_LINE_PATTERN.sub("", line, count=1).strip())
    return [item for item in items if item]


def _parse_story(block: str, earlier: List[ProposedStory]) -> Optional[ProposedStory]:
    block = block.strip()
    if not block:
        return None

    title, _, rest = block.partition("\n")
    title = title.strip()
    if not title:
        return None

    end = _SECTION_END_PATTERN.search("\n" + rest)
    description = ("\n" + rest)[: end.start()] if end else rest

    dependencies: List[int] = []
    deps_match = _DEPENDENCIES_PATTERN.search(block)
    if deps_match:
        for dep_title in _DEPENDS_ON_PATTERN.findall(deps_match.group(1)):
            dep_title = dep_title.strip()
            # Only earlier stories can be depended on; unknown titles are dropped
            for index, story in enumerate(earlier):
                if story.title == dep_title:
                    dependencies.append(index)
                    break

    criteria: List[str] = []
    criteria_match = _CRITERIA_PATTERN.search(block)
    if criteria_match:
        criteria = _numbered_items(criteria_match.group(1))

    return ProposedStory(
        title=title,
        description=description.strip(),
        dependencies=dependencies,
        acceptance_criteria=criteria,
    )


def parse_split(body: Optional[str]) -> Optional[SuggestedSplit]:
    """Extract a suggested split from a ticket description.

    Returns:
        The parsed split, or None when there is no split section, the reason
        is missing or empty, or no story could be parsed
    """
    if not body:
        return None

    split_match = _SPLIT_PATTERN.search(extract_refinement_section(body))
    if not split_match:
        return None
    split_text = split_match.group(1)

    reason_match = _REASON_PATTERN.search(split_text)
    reason = reason_match.group(1).strip() if reason_match else ""
    if not reason:
        return None

    stories: List[ProposedStory] = []
    # The text before the first story header is the preamble
    for block in _STORY_HEADER_PATTERN.split(split_text)[1:]:
        story = _parse_story(block, stories)
        if story is not None:
            stories.append(story)

    if not stories:
        return None

    return SuggestedSplit(reason=reason, proposed_stories=stories)


def build_child_description(story: ProposedStory, stories: List[ProposedStory]) -> str:
    """Compose the description of a child ticket created from a proposed story."""
    sections = []
    if story.description:
        sections.append(story.description)
    if story.acceptance_criteria:
        criteria = "\n".join(
            f"{number}. {item}" for number, item in enumerate(story.acceptance_criteria, 1)
        )
        sections.append(f"**Acceptance Criteria:**\n{criteria}")
    if story.dependencies:
        depends = "\n".join(f"- Depends on: {stories[index].title}" for index in story.dependencies)
        sections.append(f"**Dependencies:**\n{depends}")
    return "\n\n".join(sections)


def apply_split(
    parent: Ticket,
    split: SuggestedSplit,
    initial_status: str,
    taxonomy: StatusTaxonomy,
    tracker: Optional[LinearTracker] = None,
) -> SplitResult:
    """Create one child ticket per proposed story, in order.

    Creation is best-effort: every story is attempted and each failure is
    reported in ``SplitResult.failed``. Children that were created stay
    created. Each created child is mirrored locally.

    Raises:
        ValueError: If ``initial_status`` is not part of the taxonomy
        TrackerError: If the parent's team cannot be determined
    """
    if not taxonomy.contains(initial_status):
        raise ValueError(f"Status '{initial_status}' is not part of the status taxonomy")

    tracker = tracker or get_tracker()

    team_id = parent.metadata.get("team_id")
    if not team_id:
        team_id = tracker.fetch_issue(parent.external_id).team_id
    if not team_id:
        raise TrackerError(f"Cannot determine team of ticket {parent.external_id}")

    result = SplitResult(parent_external_id=parent.external_id)
    for index, story in enumerate(split.proposed_stories):
        try:
            issue = tracker.create_issue(
                team_id,
                story.title,
                description=build_child_description(story, split.proposed_stories),
                status_name=initial_status,
                parent_id=parent.external_id,
            )
        except Exception as e:
            logger.error(f"Failed to create sub-issue '{story.title}' of {parent.external_id}: {e}")
            result.failed.append(FailedChild(index=index, title=story.title, error=str(e)))
            continue

        result.created.append(
            CreatedChild(
                index=index,
                external_id=issue.id,
                identifier=issue.identifier,
                title=story.title,
                url=issue.url,
            )
        )

        try:
            insert_ticket(ticket_from_issue(issue, parent.project_id))
        except ValueError as e:
            logger.warning(f"Sub-issue {issue.identifier} created but not mirrored: {e}")

    logger.info(
        f"Split {parent.identifier or parent.external_id}: "
        f"{len(result.created)} created, {len(result.failed)} failed"
    )
    return result


def format_split_comment(split: SuggestedSplit, result: SplitResult) -> str:
    """Render the comment posted on the parent after a split."""
    lines = ["🔀 **This task has been split into sub-issues**", "", f"> {split.reason}", ""]

    if result.created:
        lines.extend(["### Sub-Issues Created", "", "| # | Issue | Title |", "|---|-------|-------|"])
        for number, child in enumerate(result.created, 1):
            issue = child.identifier or child.external_id
            lines.append(f"| {number} | {issue} | {child.title} |")
        lines.append("")

    if result.failed:
        lines.extend(["### ⚠️ Failed Sub-Issues", ""])
        for failure in result.failed:
            lines.append(f"- **{failure.title}**: {failure.error}")
        lines.append("")

    lines.extend(
        [
            "Each sub-issue will go through its own refinement, user story and technical plan cycle.",
            "",
            "---",
            "*Generated by flowgate*",
        ]
    )
    return "\n".join(lines)
