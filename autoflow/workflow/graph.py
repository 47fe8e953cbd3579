"""Workflow graph model, validation and JSON import/export."""

from __future__ import annotations

import json
from typing import Any

from autoflow.errors import ConditionError, ValidationError
from autoflow.workflow.conditions import parse_condition
from autoflow.workflow.services import MANUAL, ServiceProvider
from autoflow.workflow.types import (
    CONFIG_VALUE_TYPES,
    ConfigValue,
    Edge,
    NodeType,
    WorkflowNode,
)


def _check_config(node_id: str, config: dict[str, Any]) -> dict[str, ConfigValue]:
    for key, value in config.items():
        if not isinstance(key, str):
            raise ValidationError(f"Node {node_id!r}: config keys must be strings, got {key!r}")
        if not isinstance(value, CONFIG_VALUE_TYPES):
            raise ValidationError(
                f"Node {node_id!r}: config value for {key!r} must be str, int, float or bool, "
                f"got {type(value).__name__}"
            )
    return dict(config)


class WorkflowGraph:
    """
    Directed graph of typed nodes.

    Node insertion order is preserved. ``edges`` mirrors each node's
    ``outgoing`` list. The graph holds no run state.
    """

    def __init__(self, graph_id: str = "", name: str = "", description: str = "", category: str = "") -> None:
        self.id = graph_id
        self.name = name
        self.description = description
        self.category = category
        self._nodes: dict[str, WorkflowNode] = {}
        self._edges: list[Edge] = []

    # ------------------------------------------------------------------
    # Building
    # ------------------------------------------------------------------

    def add_node(
        self,
        node_id: str,
        node_type: NodeType | str,
        *,
        title: str = "",
        description: str = "",
        service: str | None = None,
        config: dict[str, Any] | None = None,
    ) -> WorkflowNode:
        if node_id in self._nodes:
            raise ValidationError(f"Duplicate node id {node_id!r}")
        try:
            node_type = NodeType(node_type)
        except ValueError:
            raise ValidationError(f"Node {node_id!r}: unknown node type {node_type!r}") from None
        node = WorkflowNode(
            id=node_id,
            type=node_type,
            title=title or node_id,
            description=description,
            service=service or None,
            config=_check_config(node_id, config or {}),
        )
        self._nodes[node_id] = node
        return node

    def connect(self, source: str, target: str) -> None:
        """Add an edge. Duplicate edges are ignored; targets may be added later."""
        node = self._nodes.get(source)
        if node is None:
            raise ValidationError(f"Edge source {source!r} is not a node")
        if target in node.outgoing:
            return
        node.outgoing.append(target)
        self._edges.append(Edge(source, target))

    def chain(self, *node_ids: str) -> None:
        for source, target in zip(node_ids, node_ids[1:]):
            self.connect(source, target)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def nodes(self) -> list[WorkflowNode]:
        return list(self._nodes.values())

    @property
    def edges(self) -> list[Edge]:
        return list(self._edges)

    def get(self, node_id: str) -> WorkflowNode | None:
        return self._nodes.get(node_id)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def triggers(self) -> list[WorkflowNode]:
        return [n for n in self._nodes.values() if n.type is NodeType.TRIGGER]

    def services(self) -> list[str]:
        """Distinct service names in node order, excluding ``manual``."""
        seen: dict[str, None] = {}
        for node in self._nodes.values():
            if node.service and node.service != MANUAL:
                seen.setdefault(node.service, None)
        return list(seen)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(self, services: ServiceProvider | None = None) -> WorkflowNode:
        """
        Check the graph is runnable and return its trigger node.

        Raises ValidationError for a missing or duplicated trigger, an edge
        to an unknown node, an unsupported condition expression, or (when
        ``services`` is given) a service name the provider does not offer.
        """
        triggers = self.triggers()
        if not triggers:
            raise ValidationError("Workflow must have a trigger node")
        if len(triggers) > 1:
            ids = ", ".join(t.id for t in triggers)
            raise ValidationError(f"Workflow must have exactly one trigger node, found: {ids}")

        for node in self._nodes.values():
            for target in node.outgoing:
                if target not in self._nodes:
                    raise ValidationError(f"Node {node.id!r} connects to unknown node {target!r}")
            if node.type is NodeType.CONDITION:
                try:
                    parse_condition(node.config.get("condition", "true"))
                except ConditionError as exc:
                    raise ValidationError(f"Node {node.id!r}: {exc}") from exc

        if services is not None:
            for name in self.services():
                if not services.provides(name):
                    raise ValidationError(f"Unknown service {name!r}")

        return triggers[0]

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "nodes": [n.to_dict() for n in self._nodes.values()],
            "connections": [e.to_dict() for e in self._edges],
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> WorkflowGraph:
        """
        Load a graph. Edges come from each node's ``connections`` and the
        top-level ``connections`` list; duplicates collapse.
        """
        graph = cls(
            graph_id=d.get("id", ""),
            name=d.get("name", ""),
            description=d.get("description", ""),
            category=d.get("category", ""),
        )
        raw_nodes = d.get("nodes") or []
        for raw in raw_nodes:
            graph.add_node(
                raw["id"],
                raw["type"],
                title=raw.get("title", ""),
                description=raw.get("description", ""),
                service=raw.get("service"),
                config=raw.get("config") or {},
            )
        for raw in raw_nodes:
            for target in raw.get("connections") or []:
                graph.connect(raw["id"], target)
        for edge in d.get("connections") or []:
            graph.connect(edge["from"], edge["to"])
        return graph

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)

    @classmethod
    def from_json(cls, text: str) -> WorkflowGraph:
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ValidationError(f"Invalid workflow JSON: {exc}") from exc
        return cls.from_dict(data)
