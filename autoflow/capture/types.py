"""Capture layer type definitions."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ActionKind(str, Enum):
    CLICK = "click"
    INPUT = "input"
    KEYPRESS = "keypress"
    NAVIGATION = "navigation"
    SCROLL = "scroll"


class EventType(str, Enum):
    """Raw interaction events delivered by a capture surface."""

    CLICK = "click"
    INPUT = "input"
    KEYDOWN = "keydown"
    NAVIGATION = "navigation"
    SCROLL = "scroll"


@dataclass(frozen=True)
class Coordinates:
    x: float
    y: float

    def to_dict(self) -> dict[str, float]:
        return {"x": self.x, "y": self.y}

    @classmethod
    def from_dict(cls, d: dict[str, Any] | None) -> Coordinates | None:
        if not d:
            return None
        return cls(x=d.get("x", 0), y=d.get("y", 0))


@dataclass(frozen=True)
class ElementDescription:
    """What the selector synthesizer knows about the event target."""

    tag: str = ""
    id: str = ""
    classes: tuple[str, ...] = ()
    type: str = ""
    name: str = ""
    placeholder: str = ""
    text: str = ""

    @classmethod
    def from_dict(cls, d: dict[str, Any] | None) -> ElementDescription:
        """
        Accepts the raw shape posted by the in-page capture script.

        ``className`` may be a space separated string (HTML elements) or
        something else entirely (SVG elements expose an object), so only
        strings are split. ``classList`` is accepted as a list.
        """
        d = d or {}
        classes: list[str] = []
        raw_classes = d.get("classList")
        if isinstance(raw_classes, (list, tuple)):
            classes = [str(c) for c in raw_classes]
        else:
            class_name = d.get("className")
            if isinstance(class_name, str):
                classes = class_name.split(" ")
        return cls(
            tag=str(d.get("tag") or d.get("tagName") or ""),
            id=str(d.get("id") or ""),
            classes=tuple(classes),
            type=str(d.get("type") or ""),
            name=str(d.get("name") or ""),
            placeholder=str(d.get("placeholder") or ""),
            text=str(d.get("text") or ""),
        )


@dataclass(frozen=True)
class CaptureEvent:
    """One raw event as delivered by the host environment."""

    type: EventType
    page_url: str = ""
    element: ElementDescription | None = None
    value: str | None = None
    key: str | None = None
    coordinates: Coordinates | None = None

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> CaptureEvent:
        element = d.get("element")
        return cls(
            type=EventType(d["type"]),
            page_url=d.get("url", "") or d.get("page_url", ""),
            element=ElementDescription.from_dict(element) if element else None,
            value=d.get("value"),
            key=d.get("key"),
            coordinates=Coordinates.from_dict(d.get("coordinates")),
        )


@dataclass(frozen=True)
class Action:
    id: int
    kind: ActionKind
    timestamp: int  # ms offset from recording start
    locator: str
    element_tag: str
    page_url: str
    value: str | None = None
    coordinates: Coordinates | None = None
    text: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "timestamp": self.timestamp,
            "locator": self.locator,
            "element_tag": self.element_tag,
            "page_url": self.page_url,
            "value": self.value,
            "coordinates": self.coordinates.to_dict() if self.coordinates else None,
            "text": self.text,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Action:
        return cls(
            id=int(d["id"]),
            kind=ActionKind(d["kind"]),
            timestamp=int(d.get("timestamp", 0)),
            locator=d.get("locator", ""),
            element_tag=d.get("element_tag", ""),
            page_url=d.get("page_url", ""),
            value=d.get("value"),
            coordinates=Coordinates.from_dict(d.get("coordinates")),
            text=d.get("text"),
        )


@dataclass
class Session:
    start_time: float
    surface_id: str = "local"
    active: bool = True
    actions: list[Action] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "start_time": self.start_time,
            "surface_id": self.surface_id,
            "active": self.active,
            "actions": [a.to_dict() for a in self.actions],
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Session:
        return cls(
            start_time=float(d.get("start_time", 0.0)),
            surface_id=d.get("surface_id", "local"),
            active=bool(d.get("active", False)),
            actions=[Action.from_dict(a) for a in d.get("actions", [])],
        )


def sort_actions(actions: list[Action]) -> list[Action]:
    """Order actions by (timestamp, id)."""
    return sorted(actions, key=lambda a: (a.timestamp, a.id))
