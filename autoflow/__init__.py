from autoflow.core.flow import AutoFlow
from autoflow.config import Settings
from autoflow.errors import (
    AutoFlowError,
    CapabilityInitError,
    ConditionError,
    DeliveryError,
    NodeExecutionError,
    RunCancelledError,
    ScheduleNotFoundError,
    ScheduleRetryExhausted,
    StorageError,
    ValidationError,
)
from autoflow.capture.types import (
    Action,
    ActionKind,
    CaptureEvent,
    Coordinates,
    ElementDescription,
    EventType,
    Session,
)
from autoflow.workflow.types import (
    CancelToken,
    ExecutionContext,
    NodeType,
    WorkflowNode,
)
from autoflow.workflow.graph import WorkflowGraph
from autoflow.scheduling.types import RetryPolicy, ScheduleType

__all__ = [
    "AutoFlow",
    "Settings",
    # Errors
    "AutoFlowError",
    "CapabilityInitError",
    "ConditionError",
    "DeliveryError",
    "NodeExecutionError",
    "RunCancelledError",
    "ScheduleNotFoundError",
    "ScheduleRetryExhausted",
    "StorageError",
    "ValidationError",
    # Capture
    "Action",
    "ActionKind",
    "CaptureEvent",
    "Coordinates",
    "ElementDescription",
    "EventType",
    "Session",
    # Workflow
    "CancelToken",
    "ExecutionContext",
    "NodeType",
    "WorkflowGraph",
    "WorkflowNode",
    # Scheduling
    "RetryPolicy",
    "ScheduleType",
]
