"""Tests for rolling child statuses up to the parent."""

from unittest.mock import patch

from flowgate.core.errors import TrackerError
from flowgate.core.workflow.rollup import lowest_status, rollup


def test_lowest_status(taxonomy):
    statuses = ["Plan Ready", "UserStory Ready", "Refinement Ready"]
    assert lowest_status(statuses, taxonomy) == "Refinement Ready"


def test_lowest_status_ignores_unknown(taxonomy):
    assert lowest_status(["Someday", "Done"], taxonomy) == "Done"
    assert lowest_status(["Someday"], taxonomy) is None
    assert lowest_status([], taxonomy) is None


class TestRollup:
    """Tests for rollup."""

    def _patch_tickets(self, mock_fetch, tickets):
        by_id = {ticket.external_id: ticket for ticket in tickets}
        mock_fetch.side_effect = lambda external_id: by_id.get(external_id)

    @patch("flowgate.core.workflow.status.update_ticket_status")
    @patch("flowgate.core.workflow.rollup.fetch_children")
    @patch("flowgate.core.workflow.rollup.fetch_ticket")
    def test_parent_moves_to_lowest_child(
        self, mock_fetch, mock_children, mock_mirror, taxonomy, tracker, make_ticket
    ):
        """Test the parent takes the least progressed child status."""
        child = make_ticket("child-2", status="Plan Ready", parent_external_id="parent-1")
        parent = make_ticket("parent-1", status="To Plan")
        self._patch_tickets(mock_fetch, [child, parent])
        mock_children.return_value = [
            make_ticket("child-1", status="UserStory Ready", parent_external_id="parent-1"),
            child,
            make_ticket("child-3", status="Refinement Ready", parent_external_id="parent-1"),
        ]

        result = rollup("child-2", taxonomy, tracker=tracker)

        assert result.updated
        assert result.parent_id == "parent-1"
        assert result.previous_status == "To Plan"
        assert result.new_status == "Refinement Ready"
        mock_children.assert_called_once_with("parent-1")
        tracker.update_status.assert_called_once_with("parent-1", "Refinement Ready")
        mock_mirror.assert_called_once_with("parent-1", "Refinement Ready")

    @patch("flowgate.core.workflow.rollup.fetch_children")
    @patch("flowgate.core.workflow.rollup.fetch_ticket")
    def test_parent_already_at_target(
        self, mock_fetch, mock_children, taxonomy, tracker, make_ticket
    ):
        child = make_ticket("child-1", status="Done", parent_external_id="parent-1")
        parent = make_ticket("parent-1", status="Done")
        self._patch_tickets(mock_fetch, [child, parent])
        mock_children.return_value = [child]

        result = rollup("child-1", taxonomy, tracker=tracker)

        assert not result.updated
        assert result.new_status == "Done"
        assert result.reason == "Parent already in status 'Done'"
        tracker.update_status.assert_not_called()

    @patch("flowgate.core.workflow.rollup.fetch_ticket")
    def test_child_without_parent(self, mock_fetch, taxonomy, tracker, make_ticket):
        mock_fetch.return_value = make_ticket("child-1", status="Done")

        result = rollup("child-1", taxonomy, tracker=tracker)

        assert not result.updated
        assert result.reason == "Ticket has no parent"

    @patch("flowgate.core.workflow.rollup.fetch_ticket")
    def test_child_not_mirrored(self, mock_fetch, taxonomy, tracker):
        mock_fetch.return_value = None

        result = rollup("child-1", taxonomy, tracker=tracker)

        assert not result.updated
        assert "not mirrored" in result.reason

    @patch("flowgate.core.workflow.rollup.fetch_ticket")
    def test_parent_not_mirrored(self, mock_fetch, taxonomy, tracker, make_ticket):
        child = make_ticket("child-1", status="Done", parent_external_id="parent-1")
        self._patch_tickets(mock_fetch, [child])

        result = rollup("child-1", taxonomy, tracker=tracker)

        assert not result.updated
        assert result.parent_id == "parent-1"
        assert result.reason == "Parent parent-1 is not mirrored"

    @patch("flowgate.core.workflow.rollup.fetch_children")
    @patch("flowgate.core.workflow.rollup.fetch_ticket")
    def test_no_ranked_child_status(
        self, mock_fetch, mock_children, taxonomy, tracker, make_ticket
    ):
        child = make_ticket("child-1", status="Someday", parent_external_id="parent-1")
        parent = make_ticket("parent-1", status="Backlog")
        self._patch_tickets(mock_fetch, [child, parent])
        mock_children.return_value = [child]

        result = rollup("child-1", taxonomy, tracker=tracker)

        assert not result.updated
        assert result.reason == "No child has a ranked status"

    @patch("flowgate.core.workflow.status.update_ticket_status")
    @patch("flowgate.core.workflow.rollup.fetch_children")
    @patch("flowgate.core.workflow.rollup.fetch_ticket")
    def test_tracker_failure_is_reported(
        self, mock_fetch, mock_children, mock_mirror, taxonomy, tracker, make_ticket
    ):
        """Test rollup never raises."""
        child = make_ticket("child-1", status="Done", parent_external_id="parent-1")
        parent = make_ticket("parent-1", status="To Plan")
        self._patch_tickets(mock_fetch, [child, parent])
        mock_children.return_value = [child]
        tracker.update_status.side_effect = TrackerError("Linear unavailable")

        result = rollup("child-1", taxonomy, tracker=tracker)

        assert not result.updated
        assert result.reason == "Rollup failed: Linear unavailable"
        mock_mirror.assert_not_called()

    @patch("flowgate.core.workflow.rollup.fetch_ticket")
    def test_database_failure_is_reported(self, mock_fetch, taxonomy, tracker):
        mock_fetch.side_effect = ValueError("Failed to fetch ticket child-1")

        result = rollup("child-1", taxonomy, tracker=tracker)

        assert not result.updated
        assert result.reason.startswith("Rollup failed:")
