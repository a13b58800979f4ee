"""Exceptions raised by the workload balancing engine."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .rebalancer import PlannedMove


class WorkloadError(Exception):
    """Base class for workload engine failures."""


class SweepInProgressError(WorkloadError):
    """Another rebalancing sweep currently holds the lease."""

    def __init__(self, lease_name: str, holder_id: str | None = None) -> None:
        self.lease_name = lease_name
        self.holder_id = holder_id
        super().__init__(f"Rebalancing sweep '{lease_name}' is already in progress")


class RebalanceError(WorkloadError):
    """
    A sweep stopped because a move could not be persisted.

    Moves committed before the failure stay committed and are exposed on
    ``completed`` so the caller can report a partial outcome.
    """

    def __init__(self, completed: list[PlannedMove], failed: PlannedMove | None = None) -> None:
        self.completed = list(completed)
        self.failed = failed
        super().__init__(
            f"Rebalancing sweep failed after {len(self.completed)} committed move(s)"
        )
