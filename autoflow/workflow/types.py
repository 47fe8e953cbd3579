"""Workflow layer type definitions."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union

ConfigValue = Union[str, int, float, bool]

CONFIG_VALUE_TYPES = (str, int, float, bool)

_LEVELS = {
    "info": logging.INFO,
    "success": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}


class NodeType(str, Enum):
    TRIGGER = "trigger"
    ACTION = "action"
    CONDITION = "condition"
    DELAY = "delay"


class LogLevel(str, Enum):
    INFO = "info"
    WARN = "warn"
    ERROR = "error"
    SUCCESS = "success"


class ProgressStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"


class RunStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class WorkflowNode:
    id: str
    type: NodeType
    title: str = ""
    description: str = ""
    service: str | None = None
    config: dict[str, ConfigValue] = field(default_factory=dict)
    outgoing: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "title": self.title,
            "description": self.description,
            "service": self.service,
            "config": dict(self.config),
            "connections": list(self.outgoing),
        }


@dataclass(frozen=True)
class Edge:
    source: str
    target: str

    def to_dict(self) -> dict[str, str]:
        return {"from": self.source, "to": self.target}


@dataclass(frozen=True)
class LogEntry:
    timestamp: float
    node_id: str
    level: LogLevel
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "node_id": self.node_id,
            "level": self.level.value,
            "message": self.message,
        }


@dataclass
class RunMetrics:
    total_nodes: int
    completed_nodes: int
    failed_nodes: int
    skipped_nodes: int
    execution_time_ms: float
    avg_node_time_ms: float
    success_rate: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_nodes": self.total_nodes,
            "completed_nodes": self.completed_nodes,
            "failed_nodes": self.failed_nodes,
            "skipped_nodes": self.skipped_nodes,
            "execution_time_ms": self.execution_time_ms,
            "avg_node_time_ms": self.avg_node_time_ms,
            "success_rate": self.success_rate,
        }


_run_logger = logging.getLogger("autoflow.workflow.run")


@dataclass
class ExecutionContext:
    """
    Per-run state. A fresh instance is created for every run.

    ``logs`` is append-only; use ``log()`` which also mirrors the entry to
    the ``autoflow.workflow.run`` logger.
    """

    variables: dict[str, Any] = field(default_factory=dict)
    results: dict[str, Any] = field(default_factory=dict)
    logs: list[LogEntry] = field(default_factory=list)
    status: RunStatus = RunStatus.PENDING
    error: str | None = None

    def log(self, level: LogLevel | str, node_id: str, message: str) -> LogEntry:
        level = LogLevel(level)
        entry = LogEntry(timestamp=time.time(), node_id=node_id, level=level, message=message)
        self.logs.append(entry)
        _run_logger.log(_LEVELS[level.value], "[%s] %s", node_id, message)
        return entry

    def logs_for(self, node_id: str) -> list[LogEntry]:
        return [e for e in self.logs if e.node_id == node_id]

    @property
    def metrics(self) -> dict[str, Any] | None:
        return self.variables.get("execution_metrics")


class CancelToken:
    """Cooperative cancellation flag checked by the executor between nodes."""

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled
