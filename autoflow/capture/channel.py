"""Cross-surface messaging between a recording surface and its controller."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Protocol

from autoflow.capture.types import Action, sort_actions
from autoflow.errors import DeliveryError

logger = logging.getLogger(__name__)


class MessageType(str, Enum):
    ACTION = "ACTION"
    COMPLETE = "COMPLETE"


@dataclass(frozen=True)
class RecordingMessage:
    """
    Fire-and-forget envelope.

    ACTION carries one serialized Action. COMPLETE carries
    ``{"actions": [...], "url": ...}`` with the whole session.
    """

    type: MessageType
    payload: Any

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type.value, "payload": self.payload}

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> RecordingMessage:
        return cls(type=MessageType(d["type"]), payload=d.get("payload"))

    @classmethod
    def action(cls, action: Action) -> RecordingMessage:
        return cls(type=MessageType.ACTION, payload=action.to_dict())

    @classmethod
    def complete(cls, actions: list[Action], url: str = "") -> RecordingMessage:
        return cls(
            type=MessageType.COMPLETE,
            payload={"actions": [a.to_dict() for a in actions], "url": url},
        )


class MessageChannel(Protocol):
    """At-most-once, unordered delivery. ``send`` raises DeliveryError on failure."""

    def send(self, message: RecordingMessage) -> None: ...


class CallbackChannel:
    """Delivers the serialized envelope to a receiver callable."""

    def __init__(self, receiver: Callable[[dict[str, Any]], Any]) -> None:
        self._receiver = receiver

    def send(self, message: RecordingMessage) -> None:
        try:
            self._receiver(message.to_dict())
        except Exception as exc:
            raise DeliveryError(f"Could not deliver {message.type.value}: {exc}") from exc


class RecordingController:
    """
    Collects actions sent from a separate recording surface.

    Tolerates duplicate and out-of-order delivery by keying on Action id.
    A COMPLETE message or a closed surface ends the recording.
    """

    def __init__(self, on_complete: Callable[[list[Action]], Any] | None = None) -> None:
        self._actions: dict[int, Action] = {}
        self._on_complete = on_complete
        self._done = asyncio.Event()
        self.closed_reason: str | None = None
        self.source_url: str = ""

    @property
    def complete(self) -> bool:
        return self._done.is_set()

    @property
    def actions(self) -> list[Action]:
        return sort_actions(list(self._actions.values()))

    def receive(self, message: RecordingMessage | dict[str, Any]) -> None:
        """Handle one inbound envelope. Malformed messages are logged and dropped."""
        try:
            if not isinstance(message, RecordingMessage):
                message = RecordingMessage.from_dict(message)
            if message.type is MessageType.ACTION:
                self._add(Action.from_dict(message.payload))
            elif message.type is MessageType.COMPLETE:
                payload = message.payload or {}
                for raw in payload.get("actions", []):
                    self._add(Action.from_dict(raw))
                self.source_url = payload.get("url", "") or self.source_url
                self._finish("complete")
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            logger.warning("Dropping malformed recording message: %s", exc)

    def surface_closed(self) -> None:
        """The recording context went away: treat it as an implicit stop."""
        self._finish("closed")

    async def wait_complete(self, timeout: float | None = None) -> list[Action]:
        await asyncio.wait_for(self._done.wait(), timeout=timeout)
        return self.actions

    def _add(self, action: Action) -> None:
        if action.id in self._actions:
            logger.debug("Duplicate action %d ignored", action.id)
            return
        self._actions[action.id] = action

    def _finish(self, reason: str) -> None:
        if self._done.is_set():
            return
        self.closed_reason = reason
        self._done.set()
        logger.info("Recording %s with %d actions", reason, len(self._actions))
        if self._on_complete is not None:
            self._on_complete(self.actions)
