"""Tests for the per-phase runner."""

from unittest.mock import Mock, call, patch

import pytest

from flowgate.core.errors import GenerationError, SplitApplicationError, TrackerError
from flowgate.core.generators.base import Generator, RefinementOutput, UserStoryOutput
from flowgate.core.tracker import DESCRIPTION_SEPARATOR, TrackerIssue
from flowgate.core.workflow.phases import PhaseRunner
from flowgate.core.workflow.taxonomy import Phase
from flowgate.core.workflow.types import RollupResult, SyncResult

REFINEMENT = """# Backlog Refinement

The checkout rebuild touches payments and the cart.

### 🔀 Suggested Split

**Reason:** Payments and cart can ship independently

#### 1. Cart service
Move the cart into its own service.

**Acceptance Criteria:**
1. Cart survives a reload

#### 2. Payment step
Rebuild the payment step.

**Dependencies:**
- Depends on: Cart service

### Complexity Estimate

**XL**
"""


@pytest.fixture
def generator():
    return Mock(spec=Generator)


@pytest.fixture
def ticket(make_ticket):
    return make_ticket(
        "issue-1",
        status="To Refinement",
        description="Rebuild checkout",
        project_id="proj",
        metadata={"team_id": "team-1"},
    )


@pytest.fixture
def runner(taxonomy, generator, tracker):
    return PhaseRunner(taxonomy, generator, tracker=tracker)


@pytest.fixture
def mocks(ticket, tracker):
    """Patch the database-facing collaborators of the phase runner."""
    with patch("flowgate.core.workflow.phases.sync_ticket") as mock_sync, patch(
        "flowgate.core.workflow.status.update_ticket_status"
    ) as mock_mirror, patch("flowgate.core.workflow.phases.rollup") as mock_rollup, patch(
        "flowgate.core.workflow.phases.record_question"
    ) as mock_record, patch(
        "flowgate.core.workflow.split.insert_ticket"
    ) as mock_insert:
        mock_sync.return_value = SyncResult(
            external_id=ticket.external_id, action="unchanged", ticket=ticket
        )
        mock_rollup.return_value = RollupResult(updated=False, reason="Ticket has no parent")
        tracker.append_to_description.side_effect = (
            lambda issue_id, content: ticket.description + DESCRIPTION_SEPARATOR + content
        )
        tracker.add_comment.return_value = "comment-1"
        yield Mock(
            sync=mock_sync,
            mirror=mock_mirror,
            rollup=mock_rollup,
            record=mock_record,
            insert=mock_insert,
        )


def _child(issue_id, identifier, title):
    return TrackerIssue(
        id=issue_id, identifier=identifier, title=title, status="To Refinement", team_id="team-1"
    )


class TestPhaseRunner:
    """Tests for PhaseRunner.run."""

    def test_successful_phase(self, runner, generator, tracker, ticket, mocks):
        """Test trigger -> in progress -> ready with the content appended."""
        output = UserStoryOutput(content="As a shopper I want...")
        generator.generate.return_value = output

        result = runner.run(Phase.USER_STORY, "issue-1", project_id="proj")

        assert result is output
        assert tracker.update_status.call_args_list == [
            call("issue-1", "UserStory In Progress"),
            call("issue-1", "UserStory Ready"),
        ]
        tracker.append_to_description.assert_called_once_with(
            "issue-1", "As a shopper I want..."
        )
        generator.generate.assert_called_once_with(Phase.USER_STORY, ticket, {})
        mocks.sync.assert_called_once_with("issue-1", project_id="proj", tracker=tracker)
        mocks.rollup.assert_called_once()

    def test_context_reaches_generator(self, runner, generator, ticket, mocks):
        generator.generate.return_value = UserStoryOutput(content="Story")

        runner.run(Phase.USER_STORY, "issue-1", context={"answers": ["Chrome only"]})

        assert generator.generate.call_args.args[2] == {"answers": ["Chrome only"]}

    def test_generation_failure_marks_failed(self, runner, generator, tracker, mocks):
        generator.generate.side_effect = GenerationError("Generator exited with code 1")

        with pytest.raises(GenerationError, match="exited with code 1"):
            runner.run(Phase.TECHNICAL_PLAN, "issue-1")

        assert tracker.update_status.call_args_list[-1] == call("issue-1", "Plan Failed")
        tracker.append_to_description.assert_not_called()
        mocks.rollup.assert_not_called()

    def test_failed_status_update_does_not_mask_error(self, runner, generator, tracker, mocks):
        """Test the original failure surfaces even if the failed status cannot be set."""
        generator.generate.side_effect = GenerationError("boom")
        tracker.update_status.side_effect = [None, TrackerError("Linear unavailable")]

        with pytest.raises(GenerationError, match="boom"):
            runner.run(Phase.REFINEMENT, "issue-1")

    def test_original_error_is_reraised(self, runner, generator, tracker, mocks):
        failure = ConnectionError("model endpoint down")
        generator.generate.side_effect = failure

        with pytest.raises(ConnectionError) as exc_info:
            runner.run(Phase.USER_STORY, "issue-1")

        assert exc_info.value is failure
        assert tracker.update_status.call_args_list[-1] == call("issue-1", "UserStory Failed")

    def test_questions_are_posted_and_recorded(self, runner, generator, tracker, mocks):
        generator.generate.return_value = UserStoryOutput(
            content="Story", questions=["Which browsers?", "  ", "Guest checkout?"]
        )
        tracker.add_comment.side_effect = ["comment-1", "comment-2"]

        runner.run(Phase.USER_STORY, "issue-1")

        assert tracker.add_comment.call_args_list == [
            call("issue-1", "Which browsers?"),
            call("issue-1", "Guest checkout?"),
        ]
        assert mocks.record.call_args_list == [
            call("issue-1", "comment-1", "Which browsers?"),
            call("issue-1", "comment-2", "Guest checkout?"),
        ]


class TestRefinementSplit:
    """Tests for splitting high-complexity tickets after refinement."""

    def test_high_complexity_creates_children(self, runner, generator, tracker, mocks):
        """Test an XL refinement with a suggested split creates one child per story."""
        generator.generate.return_value = RefinementOutput(content=REFINEMENT)
        tracker.create_issue.side_effect = [
            _child("child-1", "ENG-11", "Cart service"),
            _child("child-2", "ENG-12", "Payment step"),
        ]

        runner.run(Phase.REFINEMENT, "issue-1")

        assert tracker.create_issue.call_count == 2
        titles = [c.args[1] for c in tracker.create_issue.call_args_list]
        assert titles == ["Cart service", "Payment step"]
        for create_call in tracker.create_issue.call_args_list:
            assert create_call.kwargs["status_name"] == "To Refinement"
            assert create_call.kwargs["parent_id"] == "issue-1"
        second_description = tracker.create_issue.call_args_list[1].kwargs["description"]
        assert "- Depends on: Cart service" in second_description

        summary = tracker.add_comment.call_args.args[1]
        assert "This task has been split into sub-issues" in summary
        assert "| 2 | ENG-12 | Payment step |" in summary
        assert tracker.update_status.call_args_list[-1] == call("issue-1", "Refinement Ready")

    def test_structured_split_takes_precedence(self, runner, generator, tracker, mocks):
        generator.generate.return_value = RefinementOutput(
            content="Refinement without a split block",
            complexity="l",
            suggested_split={
                "reason": "Structured",
                "proposed_stories": [{"title": "Only story"}],
            },
        )
        tracker.create_issue.return_value = _child("child-1", "ENG-11", "Only story")

        runner.run(Phase.REFINEMENT, "issue-1")

        tracker.create_issue.assert_called_once()
        assert tracker.create_issue.call_args.args[1] == "Only story"

    def test_low_complexity_does_not_split(self, runner, generator, tracker, mocks):
        generator.generate.return_value = RefinementOutput(
            content=REFINEMENT.replace("**XL**", "**S**")
        )

        runner.run(Phase.REFINEMENT, "issue-1")

        tracker.create_issue.assert_not_called()
        assert tracker.update_status.call_args_list[-1] == call("issue-1", "Refinement Ready")

    def test_high_complexity_without_split(self, runner, generator, tracker, mocks):
        generator.generate.return_value = RefinementOutput(
            content="# Backlog Refinement\n\nEstimate: **L**"
        )

        runner.run(Phase.REFINEMENT, "issue-1")

        tracker.create_issue.assert_not_called()

    def test_partial_split_failure_fails_phase(self, runner, generator, tracker, mocks):
        """Test a failed child fails the phase after the summary is posted."""
        generator.generate.return_value = RefinementOutput(content=REFINEMENT)
        tracker.create_issue.side_effect = [
            _child("child-1", "ENG-11", "Cart service"),
            TrackerError("rate limited"),
        ]

        with pytest.raises(SplitApplicationError) as exc_info:
            runner.run(Phase.REFINEMENT, "issue-1")

        assert exc_info.value.failures == [
            {"index": 1, "title": "Payment step", "error": "rate limited"}
        ]
        summary = tracker.add_comment.call_args.args[1]
        assert "- **Payment step**: rate limited" in summary
        assert tracker.update_status.call_args_list[-1] == call("issue-1", "Refinement Failed")

    def test_split_only_after_refinement(self, runner, generator, tracker, mocks):
        generator.generate.return_value = UserStoryOutput(content=REFINEMENT)

        runner.run(Phase.USER_STORY, "issue-1")

        tracker.create_issue.assert_not_called()
