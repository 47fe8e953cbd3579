"""Convert a recorded action list into a linear workflow graph."""

from __future__ import annotations

from typing import Any, Sequence

from autoflow.capture.types import Action, ActionKind
from autoflow.workflow.graph import WorkflowGraph
from autoflow.workflow.services import MANUAL
from autoflow.workflow.types import NodeType

BROWSER_SERVICE = "browser"
TRIGGER_ID = "trigger"


def _describe(action: Action) -> str:
    """Build a human-readable title for an action node."""
    if action.kind is ActionKind.CLICK:
        return f"Click {action.text or action.locator or 'page'}"
    if action.kind is ActionKind.INPUT:
        preview = (action.value or "")[:40]
        return f"Type '{preview}' into {action.locator}"
    if action.kind is ActionKind.KEYPRESS:
        return f"Press {action.value}"
    if action.kind is ActionKind.NAVIGATION:
        return f"Navigate to {action.value or action.page_url}"
    if action.kind is ActionKind.SCROLL:
        return "Scroll page"
    return action.kind.value


def _config(action: Action) -> dict[str, Any]:
    config: dict[str, Any] = {
        "action": action.kind.value,
        "action_id": action.id,
        "locator": action.locator,
        "url": action.page_url,
    }
    if action.value is not None:
        config["value"] = action.value
    if action.coordinates is not None:
        config["x"] = action.coordinates.x
        config["y"] = action.coordinates.y
    return config


def actions_to_graph(
    actions: Sequence[Action],
    *,
    name: str = "Recorded workflow",
    graph_id: str = "recorded",
    service: str = BROWSER_SERVICE,
    include_delays: bool = False,
    min_delay_ms: int = 1000,
) -> WorkflowGraph:
    """
    Build ``trigger -> action_1 -> action_2 ...`` from a recording.

    With ``include_delays`` a delay node is inserted wherever two
    consecutive actions are at least ``min_delay_ms`` apart.
    """
    graph = WorkflowGraph(graph_id=graph_id, name=name, category="recording")
    graph.add_node(TRIGGER_ID, NodeType.TRIGGER, title="Start recording replay", service=MANUAL)

    previous_id = TRIGGER_ID
    previous_ts: int | None = None
    for action in actions:
        if include_delays and previous_ts is not None:
            gap = action.timestamp - previous_ts
            if gap >= min_delay_ms:
                delay_id = f"delay_{action.id}"
                graph.add_node(
                    delay_id,
                    NodeType.DELAY,
                    title=f"Wait {gap / 1000:g}s",
                    config={"duration": gap / 1000},
                )
                graph.connect(previous_id, delay_id)
                previous_id = delay_id

        node_id = f"action_{action.id}"
        graph.add_node(
            node_id,
            NodeType.ACTION,
            title=_describe(action),
            service=service,
            config=_config(action),
        )
        graph.connect(previous_id, node_id)
        previous_id = node_id
        previous_ts = action.timestamp

    return graph
