"""Tests for suggested split parsing and application."""

from unittest.mock import patch

import pytest

from flowgate.core.errors import TrackerError
from flowgate.core.models import ProposedStory, SuggestedSplit
from flowgate.core.tracker import TrackerIssue
from flowgate.core.workflow.split import (
    apply_split,
    build_child_description,
    extract_refinement_section,
    format_split_comment,
    parse_complexity,
    parse_split,
)
from flowgate.core.workflow.types import CreatedChild, FailedChild, SplitResult

H1_BODY = """Original ticket text.

# Backlog Refinement

Some analysis of the ticket.

### 🔀 Suggested Split

**Reason:** Too large for one iteration

#### 1. Data model
Create the tables.

**Acceptance Criteria:**
1. Tables exist
2. Migrations run

#### 2. API
Expose the endpoints.

**Dependencies:**
- Depends on: Data model
- Depends on: Unknown story

**Acceptance Criteria:**
1. Endpoints respond

#### 3. UI
Build the screens.

**Dependencies:**
- Depends on: API
- Depends on: Data model

### Complexity Estimate

**L**
"""

DETAILS_BODY = """Original ticket text.

<details><summary>📋 Backlog Refinement</summary>

## Suggested Split

**Reason:** Two independent concerns

#### 1. Export
Export the report.

#### 2. Import
Import the report.

</details>
"""


class TestParseSplit:
    """Tests for parse_split."""

    def test_parse_h1_format(self):
        """Test every story is parsed in order with its criteria."""
        split = parse_split(H1_BODY)

        assert split is not None
        assert split.reason == "Too large for one iteration"
        assert [story.title for story in split.proposed_stories] == ["Data model", "API", "UI"]
        assert split.proposed_stories[0].description == "Create the tables."
        assert split.proposed_stories[0].acceptance_criteria == ["Tables exist", "Migrations run"]
        assert split.proposed_stories[1].acceptance_criteria == ["Endpoints respond"]
        assert split.proposed_stories[2].acceptance_criteria == []

    def test_dependencies_resolve_to_earlier_stories(self):
        """Test dependency titles become indices and unknown titles are dropped."""
        split = parse_split(H1_BODY)

        assert split.proposed_stories[0].dependencies == []
        assert split.proposed_stories[1].dependencies == [0]
        assert split.proposed_stories[2].dependencies == [1, 0]

    def test_forward_dependency_is_dropped(self):
        body = """# Backlog Refinement

### Suggested Split

**Reason:** Ordering

#### 1. First
Depends on a later story.

**Dependencies:**
- Depends on: Second

#### 2. Second
Nothing.
"""
        split = parse_split(body)

        assert split.proposed_stories[0].dependencies == []
        assert split.proposed_stories[0].description == "Depends on a later story."

    def test_parse_details_format(self):
        split = parse_split(DETAILS_BODY)

        assert split is not None
        assert split.reason == "Two independent concerns"
        assert [story.title for story in split.proposed_stories] == ["Export", "Import"]
        assert split.proposed_stories[1].description == "Import the report."

    def test_no_split_section(self):
        assert parse_split("# Backlog Refinement\n\nAll good.\n") is None

    def test_empty_body(self):
        assert parse_split("") is None
        assert parse_split(None) is None

    def test_empty_reason(self):
        body = "### Suggested Split\n\n**Reason:**   \n\n#### 1. Story\nText\n"
        assert parse_split(body) is None

    def test_missing_reason(self):
        body = "### Suggested Split\n\n#### 1. Story\nText\n"
        assert parse_split(body) is None

    def test_no_stories(self):
        body = "### Suggested Split\n\n**Reason:** Big\n\nNo numbered stories here.\n"
        assert parse_split(body) is None

    def test_split_outside_refinement_section_is_ignored(self):
        """Test a details section shadows split text elsewhere in the body."""
        body = (
            "### Suggested Split\n\n**Reason:** Stale\n\n#### 1. Old\nText\n\n"
            "<details><summary>Backlog Refinement</summary>\nNo split now.\n</details>"
        )
        assert parse_split(body) is None


class TestRefinementSection:
    """Tests for section extraction and complexity."""

    def test_extract_details_section(self):
        section = extract_refinement_section(DETAILS_BODY)
        assert "Original ticket text." not in section
        assert "Suggested Split" in section

    def test_extract_h1_section_stops_at_next_h1(self):
        body = "# Backlog Refinement\n\nInside\n# Appendix\n\nOutside"
        section = extract_refinement_section(body)
        assert "Inside" in section
        assert "Outside" not in section

    def test_extract_whole_body_without_section(self):
        assert extract_refinement_section("plain text") == "plain text"

    def test_parse_complexity(self):
        assert parse_complexity(H1_BODY) == "L"
        assert parse_complexity("# Backlog Refinement\n\nEstimate: **XS**") == "XS"
        assert parse_complexity("no estimate") is None
        assert parse_complexity("") is None


class TestBuildChildDescription:
    """Tests for child ticket descriptions."""

    def test_description_with_criteria_and_dependencies(self):
        stories = [
            ProposedStory(title="Data model"),
            ProposedStory(
                title="API",
                description="Expose the endpoints.",
                dependencies=[0],
                acceptance_criteria=["Endpoints respond", "Errors are JSON"],
            ),
        ]

        description = build_child_description(stories[1], stories)

        assert description == (
            "Expose the endpoints.\n\n"
            "**Acceptance Criteria:**\n1. Endpoints respond\n2. Errors are JSON\n\n"
            "**Dependencies:**\n- Depends on: Data model"
        )

    def test_title_only_story(self):
        story = ProposedStory(title="Bare")
        assert build_child_description(story, [story]) == ""


def _issue(issue_id, identifier, title):
    return TrackerIssue(
        id=issue_id,
        identifier=identifier,
        title=title,
        status="To Refinement",
        team_id="team-1",
        parent_id="parent-1",
        url=f"https://linear.app/eng/issue/{identifier}",
    )


class TestApplySplit:
    """Tests for apply_split."""

    @patch("flowgate.core.workflow.split.insert_ticket")
    def test_creates_children_in_order(self, mock_insert, taxonomy, tracker, make_ticket):
        """Test one child per story, created under the parent with the given status."""
        parent = make_ticket("parent-1", metadata={"team_id": "team-1"}, project_id="proj")
        split = parse_split(H1_BODY)
        tracker.create_issue.side_effect = [
            _issue("child-1", "ENG-11", "Data model"),
            _issue("child-2", "ENG-12", "API"),
            _issue("child-3", "ENG-13", "UI"),
        ]

        result = apply_split(parent, split, "To Refinement", taxonomy, tracker=tracker)

        assert result.success
        assert [child.identifier for child in result.created] == ["ENG-11", "ENG-12", "ENG-13"]
        assert [child.index for child in result.created] == [0, 1, 2]
        assert tracker.create_issue.call_count == 3
        first_call = tracker.create_issue.call_args_list[0]
        assert first_call.args == ("team-1", "Data model")
        assert first_call.kwargs["status_name"] == "To Refinement"
        assert first_call.kwargs["parent_id"] == "parent-1"
        tracker.fetch_issue.assert_not_called()

        assert mock_insert.call_count == 3
        mirrored = mock_insert.call_args_list[0].args[0]
        assert mirrored.external_id == "child-1"
        assert mirrored.parent_external_id == "parent-1"
        assert mirrored.project_id == "proj"

    @patch("flowgate.core.workflow.split.insert_ticket")
    def test_partial_failure_continues(self, mock_insert, taxonomy, tracker, make_ticket):
        """Test a failed story is reported and later stories are still created."""
        parent = make_ticket("parent-1", metadata={"team_id": "team-1"})
        split = parse_split(H1_BODY)
        tracker.create_issue.side_effect = [
            _issue("child-1", "ENG-11", "Data model"),
            TrackerError("rate limited"),
            _issue("child-3", "ENG-13", "UI"),
        ]

        result = apply_split(parent, split, "To Refinement", taxonomy, tracker=tracker)

        assert not result.success
        assert [child.external_id for child in result.created] == ["child-1", "child-3"]
        assert result.failed == [FailedChild(index=1, title="API", error="rate limited")]

    @patch("flowgate.core.workflow.split.insert_ticket")
    def test_mirror_failure_is_not_a_split_failure(
        self, mock_insert, taxonomy, tracker, make_ticket
    ):
        parent = make_ticket("parent-1", metadata={"team_id": "team-1"})
        split = SuggestedSplit(reason="Big", proposed_stories=[ProposedStory(title="Only")])
        tracker.create_issue.return_value = _issue("child-1", "ENG-11", "Only")
        mock_insert.side_effect = ValueError("db down")

        result = apply_split(parent, split, "To Refinement", taxonomy, tracker=tracker)

        assert result.success
        assert len(result.created) == 1

    @patch("flowgate.core.workflow.split.insert_ticket")
    def test_team_resolved_from_tracker(self, mock_insert, taxonomy, tracker, make_ticket):
        parent = make_ticket("parent-1")
        split = SuggestedSplit(reason="Big", proposed_stories=[ProposedStory(title="Only")])
        tracker.fetch_issue.return_value = _issue("parent-1", "ENG-1", "Parent")
        tracker.create_issue.return_value = _issue("child-1", "ENG-11", "Only")

        apply_split(parent, split, "To Refinement", taxonomy, tracker=tracker)

        tracker.fetch_issue.assert_called_once_with("parent-1")
        assert tracker.create_issue.call_args.args[0] == "team-1"

    def test_unknown_team_raises(self, taxonomy, tracker, make_ticket):
        parent = make_ticket("parent-1")
        split = SuggestedSplit(reason="Big", proposed_stories=[ProposedStory(title="Only")])
        tracker.fetch_issue.return_value = TrackerIssue(id="parent-1", status="Backlog")

        with pytest.raises(TrackerError, match="team"):
            apply_split(parent, split, "To Refinement", taxonomy, tracker=tracker)
        tracker.create_issue.assert_not_called()

    def test_unknown_initial_status_raises(self, taxonomy, tracker, make_ticket):
        parent = make_ticket("parent-1", metadata={"team_id": "team-1"})
        split = SuggestedSplit(reason="Big", proposed_stories=[ProposedStory(title="Only")])

        with pytest.raises(ValueError, match="not part of the status taxonomy"):
            apply_split(parent, split, "Someday", taxonomy, tracker=tracker)
        tracker.create_issue.assert_not_called()


class TestFormatSplitComment:
    """Tests for the split summary comment."""

    def test_comment_lists_created_and_failed(self):
        split = SuggestedSplit(
            reason="Too large",
            proposed_stories=[ProposedStory(title="A"), ProposedStory(title="B")],
        )
        result = SplitResult(
            parent_external_id="parent-1",
            created=[CreatedChild(index=0, external_id="child-1", identifier="ENG-11", title="A")],
            failed=[FailedChild(index=1, title="B", error="boom")],
        )

        comment = format_split_comment(split, result)

        assert "> Too large" in comment
        assert "| 1 | ENG-11 | A |" in comment
        assert "### ⚠️ Failed Sub-Issues" in comment
        assert "- **B**: boom" in comment
        assert comment.endswith("*Generated by flowgate*")

    def test_comment_without_failures(self):
        split = SuggestedSplit(reason="Big", proposed_stories=[ProposedStory(title="A")])
        result = SplitResult(
            parent_external_id="parent-1",
            created=[CreatedChild(index=0, external_id="child-1", title="A")],
        )

        comment = format_split_comment(split, result)

        assert "| 1 | child-1 | A |" in comment
        assert "Failed Sub-Issues" not in comment
