"""Exception taxonomy shared by capture, workflow and scheduling layers."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from autoflow.workflow.types import ExecutionContext


class AutoFlowError(Exception):
    """Base exception for all AutoFlow errors."""


class ValidationError(AutoFlowError):
    """Raised when a workflow graph is malformed. Fatal before any node runs."""


class CapabilityInitError(AutoFlowError):
    """Raised when a required service capability cannot be initialized."""

    def __init__(self, service: str, message: str) -> None:
        self.service = service
        super().__init__(f"{service}: {message}")


class NodeExecutionError(AutoFlowError):
    """
    Raised when a single node's dispatch fails.

    ``context`` holds the partial ExecutionContext of the run so callers can
    inspect results gathered before the failure.
    """

    def __init__(
        self,
        node_id: str,
        message: str,
        context: "ExecutionContext | None" = None,
    ) -> None:
        self.node_id = node_id
        self.context = context
        super().__init__(f"Node {node_id!r} failed: {message}")


class RunCancelledError(AutoFlowError):
    """Raised when a run is stopped by its caller between two nodes."""

    reason = "stopped by caller"

    def __init__(self, node_id: str | None = None, context: "ExecutionContext | None" = None) -> None:
        self.node_id = node_id
        self.context = context
        super().__init__(self.reason)


class ConditionError(AutoFlowError):
    """Raised when a condition expression cannot be evaluated."""


class StorageError(AutoFlowError):
    """Raised by key-value stores when the storage medium is unavailable."""


class DeliveryError(AutoFlowError):
    """Raised by message channels when a message could not be delivered."""


class ScheduleNotFoundError(AutoFlowError):
    """Raised when a schedule id is not registered."""


class ScheduleRetryExhausted(AutoFlowError):
    """Recorded (never raised to a caller) when a schedule runs out of retries."""

    def __init__(self, schedule_id: str, attempts: int, last_error: Any = None) -> None:
        self.schedule_id = schedule_id
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"Schedule {schedule_id!r} failed after {attempts} retries: {last_error}"
        )
