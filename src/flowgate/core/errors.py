"""Exception types raised by the orchestration core."""

from typing import TYPE_CHECKING, Any, Dict, List, Sequence

if TYPE_CHECKING:
    from flowgate.core.substrate import RunHandle


class FlowgateError(Exception):
    """Base class for all flowgate errors."""


class TaxonomyConfigError(FlowgateError):
    """Raised when a status taxonomy configuration is inconsistent."""


class TrackerError(FlowgateError):
    """Raised when the external issue tracker rejects or fails a request."""


class TicketSyncError(FlowgateError):
    """Raised when the local mirror cannot be brought in line with the tracker."""

    def __init__(self, external_id: str, message: str) -> None:
        super().__init__(f"Failed to sync ticket {external_id}: {message}")
        self.external_id = external_id


class InvalidTriggerError(FlowgateError):
    """Raised when a ticket status is not an entry point to any phase."""

    def __init__(self, status: str, expected: Sequence[str]) -> None:
        self.status = status
        self.expected = list(expected)
        quoted = ", ".join(f'"{name}"' for name in self.expected)
        super().__init__(
            f'Status "{status}" is not a valid workflow trigger. Expected one of: {quoted}'
        )


class RunAlreadyExistsError(FlowgateError):
    """Raised by a substrate when a run with the same identifier is still active."""

    def __init__(self, handle: "RunHandle") -> None:
        super().__init__(f"Run {handle.run_id} is already active")
        self.handle = handle


class SplitApplicationError(FlowgateError):
    """Raised when one or more child tickets of a split could not be created."""

    def __init__(self, parent_id: str, failures: List[Dict[str, Any]]) -> None:
        self.parent_id = parent_id
        self.failures = failures
        super().__init__(
            f"Failed to create {len(failures)} sub-issue(s) for ticket {parent_id}"
        )


class GenerationError(FlowgateError):
    """Raised when a generator fails or returns unusable output."""
