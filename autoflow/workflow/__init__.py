"""Workflow graph model, executor and service dispatch."""

from autoflow.workflow.conditions import Condition, evaluate_condition, is_supported, parse_condition
from autoflow.workflow.executor import WorkflowExecutor, interpolate, slugify
from autoflow.workflow.graph import WorkflowGraph
from autoflow.workflow.importer import actions_to_graph
from autoflow.workflow.services import (
    BrowserCapability,
    Capability,
    FunctionCapability,
    ServiceProvider,
    ServiceRegistry,
)
from autoflow.workflow.types import (
    CancelToken,
    Edge,
    ExecutionContext,
    LogEntry,
    LogLevel,
    NodeType,
    ProgressStatus,
    RunMetrics,
    RunStatus,
    WorkflowNode,
)

__all__ = [
    "BrowserCapability",
    "CancelToken",
    "Capability",
    "Condition",
    "Edge",
    "ExecutionContext",
    "FunctionCapability",
    "LogEntry",
    "LogLevel",
    "NodeType",
    "ProgressStatus",
    "RunMetrics",
    "RunStatus",
    "ServiceProvider",
    "ServiceRegistry",
    "WorkflowExecutor",
    "WorkflowGraph",
    "WorkflowNode",
    "actions_to_graph",
    "evaluate_condition",
    "interpolate",
    "is_supported",
    "parse_condition",
    "slugify",
]
