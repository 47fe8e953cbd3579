"""Unit tests for recording messages and the controller side of the channel."""

from __future__ import annotations

import asyncio

import pytest

from autoflow.capture.channel import (
    CallbackChannel,
    MessageType,
    RecordingController,
    RecordingMessage,
)
from autoflow.capture.types import Action, ActionKind
from autoflow.errors import DeliveryError


def make_action(action_id: int, timestamp: int) -> Action:
    return Action(
        id=action_id,
        kind=ActionKind.CLICK,
        timestamp=timestamp,
        locator=f"#b{action_id}",
        element_tag="button",
        page_url="https://example.com",
    )


class TestRecordingMessage:
    def test_action_envelope(self):
        msg = RecordingMessage.action(make_action(1, 0))
        d = msg.to_dict()
        assert d["type"] == "ACTION"
        assert d["payload"]["locator"] == "#b1"

    def test_complete_envelope(self):
        msg = RecordingMessage.complete([make_action(1, 0)], url="https://example.com")
        assert msg.type is MessageType.COMPLETE
        assert msg.payload["url"] == "https://example.com"
        assert len(msg.payload["actions"]) == 1


class TestCallbackChannel:
    def test_receiver_error_becomes_delivery_error(self):
        def receiver(_):
            raise RuntimeError("port disconnected")

        channel = CallbackChannel(receiver)
        with pytest.raises(DeliveryError):
            channel.send(RecordingMessage.action(make_action(1, 0)))


class TestRecordingController:
    def setup_method(self):
        self.completed = []
        self.controller = RecordingController(on_complete=self.completed.append)

    def test_duplicates_and_reordering(self):
        second = RecordingMessage.action(make_action(2, 200)).to_dict()
        first = RecordingMessage.action(make_action(1, 100)).to_dict()
        self.controller.receive(second)
        self.controller.receive(first)
        self.controller.receive(second)
        assert [a.id for a in self.controller.actions] == [1, 2]

    def test_complete_merges_missing_actions(self):
        self.controller.receive(RecordingMessage.action(make_action(1, 100)))
        self.controller.receive(
            RecordingMessage.complete([make_action(1, 100), make_action(2, 150)], url="https://example.com")
        )
        assert self.controller.complete
        assert self.controller.closed_reason == "complete"
        assert [a.id for a in self.completed[0]] == [1, 2]

    def test_malformed_message_dropped(self):
        self.controller.receive({"type": "BOGUS"})
        self.controller.receive({"type": "ACTION", "payload": {"kind": "click"}})
        assert self.controller.actions == []
        assert not self.controller.complete

    def test_surface_closed_is_implicit_stop(self):
        self.controller.receive(RecordingMessage.action(make_action(1, 0)))
        self.controller.surface_closed()
        self.controller.surface_closed()
        assert self.controller.closed_reason == "closed"
        assert len(self.completed) == 1

    @pytest.mark.asyncio
    async def test_wait_complete(self):
        async def finish_later():
            await asyncio.sleep(0.01)
            self.controller.receive(RecordingMessage.complete([make_action(3, 0)]))

        task = asyncio.create_task(finish_later())
        actions = await self.controller.wait_complete(timeout=1)
        await task
        assert [a.id for a in actions] == [3]
