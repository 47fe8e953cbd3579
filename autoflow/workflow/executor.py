"""Workflow executor: depth-first run of a WorkflowGraph with service dispatch."""

from __future__ import annotations

import asyncio
import inspect
import logging
import re
import time
from collections.abc import Mapping
from typing import Any, Awaitable, Callable, Optional

from autoflow.errors import NodeExecutionError, RunCancelledError, ValidationError
from autoflow.workflow.conditions import parse_condition
from autoflow.workflow.graph import WorkflowGraph
from autoflow.workflow.services import MANUAL, Capability, ServiceProvider, ServiceRegistry
from autoflow.workflow.types import (
    CancelToken,
    ExecutionContext,
    LogLevel,
    NodeType,
    ProgressStatus,
    RunMetrics,
    RunStatus,
    WorkflowNode,
)

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, ProgressStatus, str], Optional[Awaitable[None]]]

# Keys consumed by the executor rather than passed to the capability
_OPERATION_KEYS = ("action", "operation")

_PLACEHOLDER_RE = re.compile(r"\{\{\s*(variables|results)\.([\w.\-]+)\s*\}\}")
_SLUG_RE = re.compile(r"\s+")

RUN_START = "workflow-start"
RUN_COMPLETE = "workflow-complete"
RUN_ERROR = "workflow-error"
SERVICE_INIT = "service-init"

_MISSING = object()


def slugify(title: str) -> str:
    return _SLUG_RE.sub("_", title.strip().lower())


def _lookup(root: Any, path: str) -> Any:
    current = root
    for part in path.split("."):
        if isinstance(current, Mapping) and part in current:
            current = current[part]
        else:
            return _MISSING
    return current


def interpolate(value: Any, context: ExecutionContext) -> Any:
    """
    Replace ``{{variables.x}}`` / ``{{results.node.field}}`` placeholders.

    A string that is exactly one placeholder resolves to the raw value;
    unresolvable placeholders are left in place.
    """
    if not isinstance(value, str):
        return value
    roots = {"variables": context.variables, "results": context.results}

    whole = _PLACEHOLDER_RE.fullmatch(value.strip())
    if whole is not None:
        found = _lookup(roots[whole.group(1)], whole.group(2))
        return value if found is _MISSING else found

    def replacer(m: re.Match) -> str:
        found = _lookup(roots[m.group(1)], m.group(2))
        return m.group(0) if found is _MISSING else str(found)

    return _PLACEHOLDER_RE.sub(replacer, value)


class WorkflowExecutor:
    """
    Runs workflow graphs.

    Each ``execute_workflow`` call gets a fresh ExecutionContext, so one
    executor can serve concurrent runs.
    """

    def __init__(
        self,
        services: ServiceProvider | None = None,
        *,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._services: ServiceProvider = services if services is not None else ServiceRegistry()
        self._sleep = sleep

    @property
    def services(self) -> ServiceProvider:
        return self._services

    async def execute_workflow(
        self,
        graph: WorkflowGraph,
        on_progress: ProgressCallback | None = None,
        *,
        variables: dict[str, Any] | None = None,
        cancel: CancelToken | None = None,
    ) -> ExecutionContext:
        """
        Execute ``graph`` from its trigger node.

        Raises ValidationError or CapabilityInitError before any node runs,
        NodeExecutionError when a node fails and RunCancelledError when
        ``cancel`` fires. The latter two carry the partial context.
        """
        context = ExecutionContext(variables=dict(variables or {}))
        trigger = graph.validate(self._services)

        context.status = RunStatus.RUNNING
        context.log(LogLevel.INFO, RUN_START, f"Starting workflow: {graph.name or graph.id}")
        start = time.monotonic()

        capabilities = await self._initialize_services(graph, context)

        node_times: dict[str, float] = {}
        failed: list[str] = []
        visited: set[str] = set()
        stack: list[str] = [trigger.id]

        try:
            while stack:
                node_id = stack.pop()
                if node_id in visited:
                    context.log(LogLevel.WARN, node_id, "skipped: already visited")
                    continue
                if cancel is not None and cancel.cancelled:
                    context.status = RunStatus.FAILED
                    context.error = RunCancelledError.reason
                    context.log(LogLevel.WARN, node_id, "Run stopped by caller")
                    raise RunCancelledError(node_id=node_id, context=context)

                node = graph.get(node_id)
                if node is None:
                    raise ValidationError(f"Node {node_id!r} disappeared from the graph")
                visited.add(node_id)

                follow = await self._run_node(node, context, capabilities, on_progress, node_times, failed)
                if follow:
                    # Reversed so the first outgoing edge is explored first
                    stack.extend(reversed(node.outgoing))
        finally:
            elapsed_ms = (time.monotonic() - start) * 1000
            context.variables["execution_metrics"] = self._metrics(graph, node_times, failed, elapsed_ms).to_dict()

        context.status = RunStatus.COMPLETED
        context.log(LogLevel.SUCCESS, RUN_COMPLETE, f"Workflow completed successfully in {elapsed_ms:.0f}ms")
        return context

    # ------------------------------------------------------------------
    # Node dispatch
    # ------------------------------------------------------------------

    async def _run_node(
        self,
        node: WorkflowNode,
        context: ExecutionContext,
        capabilities: dict[str, Capability],
        on_progress: ProgressCallback | None,
        node_times: dict[str, float],
        failed: list[str],
    ) -> bool:
        """Execute one node. Returns whether its outgoing edges should be followed."""
        started = time.monotonic()
        context.log(LogLevel.INFO, node.id, f"Executing node: {node.title}")
        await self._report(on_progress, node.id, ProgressStatus.RUNNING, f"Executing: {node.title}")

        try:
            if node.type is NodeType.TRIGGER:
                follow = await self._execute_trigger(node, context, capabilities)
            elif node.type is NodeType.ACTION:
                follow = await self._execute_action(node, context, capabilities)
            elif node.type is NodeType.CONDITION:
                follow = self._execute_condition(node, context)
            elif node.type is NodeType.DELAY:
                follow = await self._execute_delay(node, context)
            else:
                raise ValueError(f"Unknown node type: {node.type}")
        except Exception as exc:
            elapsed = (time.monotonic() - started) * 1000
            node_times[node.id] = elapsed
            failed.append(node.id)
            context.status = RunStatus.FAILED
            context.error = f"{node.id}: {exc}"
            context.log(LogLevel.ERROR, node.id, f"Node failed: {exc} ({elapsed:.0f}ms)")
            context.log(LogLevel.ERROR, RUN_ERROR, f"Workflow failed at {node.id}: {exc}")
            await self._report(on_progress, node.id, ProgressStatus.ERROR, f"Error: {exc}")
            raise NodeExecutionError(node.id, str(exc), context) from exc

        elapsed = (time.monotonic() - started) * 1000
        node_times[node.id] = elapsed
        context.log(LogLevel.SUCCESS, node.id, f"Node completed: {node.title} ({elapsed:.0f}ms)")
        await self._report(on_progress, node.id, ProgressStatus.COMPLETED, f"Completed: {node.title}")
        return follow

    async def _execute_trigger(
        self,
        node: WorkflowNode,
        context: ExecutionContext,
        capabilities: dict[str, Capability],
    ) -> bool:
        if not node.service or node.service == MANUAL:
            context.results[node.id] = {"started": True}
            context.log(LogLevel.INFO, node.id, "Manual trigger activated")
            return True

        operation = str(node.config.get("operation", "fetch"))
        params = self._params(node, context)
        output = await capabilities[node.service].invoke(operation, params)
        if isinstance(output, Mapping):
            context.variables.update(output)
        context.results[node.id] = output
        context.log(LogLevel.INFO, node.id, f"{node.service} trigger {operation} fired")
        return True

    async def _execute_action(
        self,
        node: WorkflowNode,
        context: ExecutionContext,
        capabilities: dict[str, Capability],
    ) -> bool:
        if not node.service or node.service == MANUAL:
            context.log(LogLevel.INFO, node.id, "Generic action executed")
            return True

        operation = str(node.config.get("action") or node.config.get("operation") or slugify(node.title))
        params = self._params(node, context)
        context.results[node.id] = await capabilities[node.service].invoke(operation, params)
        context.log(LogLevel.INFO, node.id, f"{node.service} action: {operation}")
        return True

    def _execute_condition(self, node: WorkflowNode, context: ExecutionContext) -> bool:
        expression = str(node.config.get("condition", "true"))
        result = parse_condition(expression).evaluate(context.variables)
        context.variables[f"{node.id}_result"] = result
        context.log(LogLevel.INFO, node.id, f'Condition "{expression}" evaluated to: {result}')
        if not result and node.outgoing:
            context.log(LogLevel.INFO, node.id, f"Condition false: pruning {len(node.outgoing)} branch(es)")
        return result

    async def _execute_delay(self, node: WorkflowNode, context: ExecutionContext) -> bool:
        duration = float(node.config.get("duration", 1))
        if duration < 0:
            raise ValueError(f"Delay duration must not be negative, got {duration:g}")
        context.log(LogLevel.INFO, node.id, f"Waiting for {duration:g} seconds...")
        await self._sleep(duration)
        return True

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _initialize_services(
        self, graph: WorkflowGraph, context: ExecutionContext
    ) -> dict[str, Capability]:
        capabilities: dict[str, Capability] = {}
        for name in graph.services():
            try:
                capabilities[name] = await self._services.initialize(name)
            except Exception as exc:
                context.status = RunStatus.FAILED
                context.error = str(exc)
                context.log(LogLevel.ERROR, SERVICE_INIT, f"Service {name} failed to initialize: {exc}")
                raise
            context.log(LogLevel.INFO, SERVICE_INIT, f"{name} service initialized")
        return capabilities

    @staticmethod
    def _params(node: WorkflowNode, context: ExecutionContext) -> dict[str, Any]:
        return {
            key: interpolate(value, context)
            for key, value in node.config.items()
            if key not in _OPERATION_KEYS
        }

    @staticmethod
    async def _report(
        on_progress: ProgressCallback | None,
        node_id: str,
        status: ProgressStatus,
        message: str,
    ) -> None:
        if on_progress is None:
            return
        try:
            outcome = on_progress(node_id, status, message)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as exc:
            logger.warning("Progress callback failed for %s: %s", node_id, exc)

    @staticmethod
    def _metrics(
        graph: WorkflowGraph,
        node_times: dict[str, float],
        failed: list[str],
        elapsed_ms: float,
    ) -> RunMetrics:
        total = len(graph)
        failed_count = len(failed)
        completed = len(node_times) - failed_count
        avg = sum(node_times.values()) / len(node_times) if node_times else 0.0
        return RunMetrics(
            total_nodes=total,
            completed_nodes=completed,
            failed_nodes=failed_count,
            skipped_nodes=total - completed - failed_count,
            execution_time_ms=elapsed_ms,
            avg_node_time_ms=avg,
            success_rate=(completed / total * 100) if total else 0.0,
        )
