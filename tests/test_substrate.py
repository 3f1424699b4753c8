"""Tests for the local execution substrate."""

import threading

import pytest

from flowgate.core.errors import RunAlreadyExistsError
from flowgate.core.substrate import LocalSubstrate, RunHandle, RunStatus, make_run_id
from flowgate.core.workflow.taxonomy import Phase


@pytest.fixture
def release():
    return threading.Event()


@pytest.fixture
def substrate():
    substrate = LocalSubstrate(lambda *args: None, max_workers=2)
    yield substrate
    substrate.shutdown(wait=True)


def test_make_run_id():
    assert make_run_id(Phase.USER_STORY, "issue-1") == "user_story-issue-1"


def test_run_completes_with_arguments():
    calls = []
    substrate = LocalSubstrate(lambda *args: calls.append(args))

    handle = substrate.start_phase(Phase.REFINEMENT, "issue-1", "proj", {"answers": ["A"]})
    status = substrate.wait(handle, timeout=5)
    substrate.shutdown()

    assert handle.run_id == "refinement-issue-1"
    assert status is RunStatus.COMPLETED
    assert calls == [(Phase.REFINEMENT, "issue-1", "proj", {"answers": ["A"]})]


def test_failed_run_reports_failed():
    def runner(*args):
        raise RuntimeError("generator crashed")

    substrate = LocalSubstrate(runner)
    handle = substrate.start_phase(Phase.TECHNICAL_PLAN, "issue-1")

    assert substrate.wait(handle, timeout=5) is RunStatus.FAILED
    assert substrate.describe(handle) is RunStatus.FAILED
    substrate.shutdown()


def test_live_run_is_not_duplicated(release):
    """Test a second start for the same phase and ticket is rejected while running."""
    substrate = LocalSubstrate(lambda *args: release.wait(5))
    first = substrate.start_phase(Phase.REFINEMENT, "issue-1")

    with pytest.raises(RunAlreadyExistsError) as exc_info:
        substrate.start_phase(Phase.REFINEMENT, "issue-1")
    assert exc_info.value.handle.run_id == first.run_id
    assert substrate.describe(first) is RunStatus.RUNNING

    # A different phase of the same ticket is a different run
    other = substrate.start_phase(Phase.USER_STORY, "issue-1")
    assert other.run_id != first.run_id

    release.set()
    assert substrate.wait(first, timeout=5) is RunStatus.COMPLETED
    substrate.shutdown()


def test_finished_run_can_be_restarted():
    substrate = LocalSubstrate(lambda *args: None)
    first = substrate.start_phase(Phase.REFINEMENT, "issue-1")
    substrate.wait(first, timeout=5)

    second = substrate.start_phase(Phase.REFINEMENT, "issue-1")

    assert second.run_id == first.run_id
    assert substrate.get_handle(second.run_id) is second
    substrate.wait(second, timeout=5)
    substrate.shutdown()


def test_wait_timeout_reports_running(release):
    substrate = LocalSubstrate(lambda *args: release.wait(5), max_workers=1)
    handle = substrate.start_phase(Phase.REFINEMENT, "issue-1")

    assert substrate.wait(handle, timeout=0.01) is RunStatus.RUNNING

    release.set()
    substrate.shutdown()


def test_cancel_queued_run(release):
    """Test a run still waiting for a worker can be cancelled."""
    substrate = LocalSubstrate(lambda *args: release.wait(5), max_workers=1)
    substrate.start_phase(Phase.REFINEMENT, "issue-1")
    queued = substrate.start_phase(Phase.REFINEMENT, "issue-2")

    assert substrate.cancel(queued)
    assert substrate.describe(queued) is RunStatus.CANCELLED
    assert substrate.wait(queued) is RunStatus.CANCELLED

    release.set()
    substrate.shutdown()


def test_unknown_handle(substrate):
    handle = RunHandle(run_id="refinement-issue-1", phase=Phase.REFINEMENT, ticket_id="issue-1")

    assert substrate.get_handle(handle.run_id) is None
    with pytest.raises(KeyError):
        substrate.describe(handle)


def test_finished_runs_are_pruned():
    """Test only the newest finished runs are remembered once new runs start."""
    substrate = LocalSubstrate(lambda *args: None, keep_finished=1)
    handles = []
    for ticket_id in ("issue-1", "issue-2", "issue-3"):
        handle = substrate.start_phase(Phase.REFINEMENT, ticket_id)
        substrate.wait(handle, timeout=5)
        handles.append(handle)

    assert substrate.get_handle(handles[0].run_id) is None
    assert substrate.get_handle(handles[1].run_id) is handles[1]
    assert substrate.wait(handles[2], timeout=5) is RunStatus.COMPLETED
    substrate.shutdown()


def test_restarted_run_is_newest():
    """Test replacing a finished run keeps it ahead of older finished runs."""
    substrate = LocalSubstrate(lambda *args: None, keep_finished=1)
    first = substrate.start_phase(Phase.REFINEMENT, "issue-1")
    substrate.wait(first, timeout=5)
    other = substrate.start_phase(Phase.REFINEMENT, "issue-2")
    substrate.wait(other, timeout=5)

    restarted = substrate.start_phase(Phase.REFINEMENT, "issue-1")
    substrate.wait(restarted, timeout=5)
    substrate.start_phase(Phase.USER_STORY, "issue-3")

    assert substrate.get_handle(other.run_id) is None
    assert substrate.get_handle(restarted.run_id) is restarted
    substrate.shutdown()
