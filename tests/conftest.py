"""Shared fixtures for flowgate tests."""

from unittest.mock import Mock

import pytest

from flowgate.core.models import Ticket
from flowgate.core.tracker import LinearTracker
from flowgate.core.workflow.taxonomy import default_taxonomy


@pytest.fixture
def taxonomy():
    """Default status taxonomy."""
    return default_taxonomy()


@pytest.fixture
def tracker():
    """Tracker client double."""
    return Mock(spec=LinearTracker)


@pytest.fixture
def make_ticket():
    """Factory for mirrored tickets."""

    def _make(external_id="issue-1", status="Backlog", **fields):
        fields.setdefault("identifier", f"ENG-{external_id.rsplit('-', 1)[-1]}")
        fields.setdefault("title", f"Ticket {external_id}")
        return Ticket(external_id=external_id, status=status, **fields)

    return _make
