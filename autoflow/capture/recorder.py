"""Action recorder: turns raw capture events into an ordered Action list."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from pathlib import Path
from typing import Any, Callable

from autoflow.capture.channel import MessageChannel, RecordingMessage
from autoflow.capture.selectors import SelectorSynthesizer
from autoflow.capture.store import KeyValueStore, MemoryStore
from autoflow.capture.surface import CaptureSurface, HostSurface
from autoflow.capture.types import (
    Action,
    ActionKind,
    CaptureEvent,
    EventType,
    Session,
)
from autoflow.config import DEFAULT_LIVENESS_INTERVAL
from autoflow.errors import DeliveryError, StorageError

logger = logging.getLogger(__name__)

SESSION_KEY = "autoflow_session"
RECORDINGS_KEY = "autoflow_recordings"

# Characters and edits typed into these elements are carried by the input event
_TEXT_ENTRY_TAGS = {"input", "textarea"}
_EDITING_KEYS = {"Backspace", "Delete"}

_STOP_KEY = "Escape"
_TEXT_PREVIEW = 50

# Archived recordings kept under RECORDINGS_KEY
MAX_RECORDINGS = 50


def _is_text_edit(key: str | None) -> bool:
    """True for printable characters and in-field edits; False for Enter, Tab, arrows and the like."""
    return not key or len(key) == 1 or key in _EDITING_KEYS


class ActionRecorder:
    """
    Records interaction events from one capture surface.

    Lifecycle is ``idle -> recording -> idle``. A snapshot of the active
    session is written to the store after every action so that a recorder
    re-created after a full page load can ``restore()`` it. Storage and
    channel failures never propagate out of ``handle_event``.
    """

    def __init__(
        self,
        surface: CaptureSurface | None = None,
        *,
        store: KeyValueStore | None = None,
        channel: MessageChannel | None = None,
        clock: Callable[[], float] = time.time,
        session_key: str = SESSION_KEY,
        on_export: Callable[[list[Action]], Any] | None = None,
        on_stop: Callable[[list[Action]], Any] | None = None,
        liveness_interval: float = DEFAULT_LIVENESS_INTERVAL,
        max_recordings: int = MAX_RECORDINGS,
    ) -> None:
        self._surface: CaptureSurface = surface or HostSurface()
        self._store: KeyValueStore = store if store is not None else MemoryStore()
        self._channel = channel
        self._clock = clock
        self._session_key = session_key
        self._on_export = on_export
        self._on_stop = on_stop
        self._liveness_interval = liveness_interval
        self._max_recordings = max_recordings
        self._selectors = SelectorSynthesizer()

        self._session: Session | None = None
        self._last_recording: list[Action] = []
        self._next_id = 1
        self._last_timestamp = 0
        self._current_url = ""
        self._memory_only = False
        self.reattach_count = 0

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def active(self) -> bool:
        return self._session is not None and self._session.active

    @property
    def surface(self) -> CaptureSurface:
        return self._surface

    @property
    def session(self) -> Session | None:
        return self._session

    @property
    def actions(self) -> list[Action]:
        """Snapshot of the actions captured so far in the active session."""
        if self._session is None:
            return []
        return list(self._session.actions)

    @property
    def last_recording(self) -> list[Action]:
        """Actions of the most recently finished session, however it was stopped."""
        return list(self._last_recording)

    @property
    def memory_only(self) -> bool:
        """True once the store has failed and the buffer lives only in memory."""
        return self._memory_only

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self, url: str = "") -> None:
        """Begin a new session. A second call while recording is a no-op."""
        if self.active:
            logger.info("Recorder already active on %s; ignoring start()", self._surface.surface_id)
            return

        self._session = Session(start_time=self._clock(), surface_id=self._surface.surface_id)
        self._next_id = 1
        self._last_timestamp = 0
        self._current_url = url
        self._memory_only = False
        self.reattach_count = 0

        self._surface.attach(self.handle_event)
        self._persist()
        logger.info("Recording started on surface %s", self._surface.surface_id)

    def stop(self) -> list[Action]:
        """
        Detach listeners, finalize the session and hand off its actions.

        Returns an empty list when no session is active.
        """
        if not self.active:
            return []

        session = self._session
        assert session is not None
        self._surface.detach()
        session.active = False
        actions = list(session.actions)

        self._persist()
        self._archive(session)
        self._deliver(RecordingMessage.complete(actions, url=self._current_url))
        if self._memory_only and actions:
            self._export_fallback(actions)

        self._session = None
        self._last_recording = actions
        logger.info("Recording stopped with %d actions", len(actions))
        if self._on_stop is not None:
            try:
                self._on_stop(list(actions))
            except Exception as exc:
                logger.error("Stop callback failed: %s", exc)
        return actions

    def restore(self) -> bool:
        """
        Resume an active session persisted by a previous recorder instance.

        Returns True if a session was resumed.
        """
        if self.active:
            return False
        try:
            snapshot = self._store.get(self._session_key)
        except StorageError as exc:
            logger.warning("Could not read session snapshot: %s", exc)
            return False
        if not snapshot or not snapshot.get("active"):
            return False

        session = Session.from_dict(snapshot)
        self._session = session
        self._next_id = max((a.id for a in session.actions), default=0) + 1
        self._last_timestamp = max((a.timestamp for a in session.actions), default=0)
        self._current_url = session.actions[-1].page_url if session.actions else ""
        self._surface.attach(self.handle_event)
        logger.info("Restored recording session with %d actions", len(session.actions))
        return True

    # ------------------------------------------------------------------
    # Event handling
    # ------------------------------------------------------------------

    def handle_event(self, event: CaptureEvent) -> Action | None:
        """Translate one host event into an Action. Returns None if nothing was recorded."""
        if not self.active:
            return None

        element = event.element
        tag = (element.tag if element else "").lower()

        if event.type is EventType.KEYDOWN:
            if event.key == _STOP_KEY and not self._surface.is_external:
                self.stop()
                return None
            if tag in _TEXT_ENTRY_TAGS and _is_text_edit(event.key):
                return None
            return self._append(
                ActionKind.KEYPRESS,
                event,
                locator="",
                element_tag="keyboard",
                value=event.key,
            )

        if event.type is EventType.CLICK:
            text = (element.text if element else "")[:_TEXT_PREVIEW]
            return self._append(
                ActionKind.CLICK,
                event,
                locator=self._selectors.synthesize(element),
                element_tag=tag,
                coordinates=event.coordinates,
                text=text or None,
            )

        if event.type is EventType.INPUT:
            return self._append(
                ActionKind.INPUT,
                event,
                locator=self._selectors.synthesize(element),
                element_tag=tag,
                value=event.value,
            )

        if event.type is EventType.NAVIGATION:
            url = event.value or event.page_url
            return self._append(
                ActionKind.NAVIGATION,
                event,
                locator="",
                element_tag="document",
                value=url,
                page_url=url,
            )

        if event.type is EventType.SCROLL:
            return self._append(
                ActionKind.SCROLL,
                event,
                locator="",
                element_tag="window",
                coordinates=event.coordinates,
            )

        return None

    def notify_navigation(self, url: str) -> Action | None:
        """Navigation hook: record the page change, then re-check the listeners."""
        if not self.active:
            return None
        action = None
        if url and url != self._current_url:
            action = self.handle_event(CaptureEvent(type=EventType.NAVIGATION, page_url=url, value=url))
        self.ensure_attached()
        return action

    # ------------------------------------------------------------------
    # Liveness
    # ------------------------------------------------------------------

    def ensure_attached(self) -> bool:
        """
        Re-attach listeners if the session is active but the surface lost them.

        Returns True when a re-attachment happened. Never records an Action.
        """
        if not self.active or self._surface.is_attached():
            return False
        self._surface.attach(self.handle_event)
        self.reattach_count += 1
        logger.info("Re-attached recorder to surface %s", self._surface.surface_id)
        return True

    async def watch(self, interval: float | None = None) -> None:
        """Poll the liveness check at a fixed interval until the session ends."""
        interval = self._liveness_interval if interval is None else interval
        while self.active:
            self.ensure_attached()
            await asyncio.sleep(interval)

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------

    def export(self, path: str, actions: list[Action] | None = None) -> str:
        """Write actions (default: the current buffer) to a JSON file."""
        data = [a.to_dict() for a in (actions if actions is not None else self.actions)]
        dest = Path(path)
        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_text(json.dumps(data, indent=2), encoding="utf-8")
        return str(dest.resolve())

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _append(
        self,
        kind: ActionKind,
        event: CaptureEvent,
        *,
        locator: str,
        element_tag: str,
        value: str | None = None,
        coordinates=None,
        text: str | None = None,
        page_url: str | None = None,
    ) -> Action:
        session = self._session
        assert session is not None

        elapsed = int((self._clock() - session.start_time) * 1000)
        timestamp = max(elapsed, self._last_timestamp)
        url = page_url if page_url is not None else (event.page_url or self._current_url)

        action = Action(
            id=self._next_id,
            kind=kind,
            timestamp=timestamp,
            locator=locator,
            element_tag=element_tag,
            page_url=url,
            value=value,
            coordinates=coordinates,
            text=text,
        )
        self._next_id += 1
        self._last_timestamp = timestamp
        if url:
            self._current_url = url
        session.actions.append(action)

        self._persist()
        self._deliver(RecordingMessage.action(action))
        return action

    def _persist(self) -> None:
        if self._memory_only or self._session is None:
            return
        try:
            self._store.set(self._session_key, self._session.to_dict())
        except (StorageError, OSError) as exc:
            self._memory_only = True
            logger.warning("Session storage unavailable, keeping actions in memory: %s", exc)

    def _archive(self, session: Session) -> None:
        if self._memory_only:
            return
        entry = {
            "start_time": session.start_time,
            "surface_id": session.surface_id,
            "url": self._current_url,
            "duration_s": round(self._clock() - session.start_time),
            "actions": [a.to_dict() for a in session.actions],
        }
        try:
            recordings = self._store.get(RECORDINGS_KEY, []) or []
            recordings.append(entry)
            if len(recordings) > self._max_recordings:
                recordings = recordings[-self._max_recordings:]
            self._store.set(RECORDINGS_KEY, recordings)
        except (StorageError, OSError) as exc:
            self._memory_only = True
            logger.warning("Could not archive recording: %s", exc)

    def _deliver(self, message: RecordingMessage) -> None:
        if self._channel is None:
            return
        try:
            self._channel.send(message)
        except DeliveryError as exc:
            logger.warning("Message delivery failed, recording continues locally: %s", exc)

    def _export_fallback(self, actions: list[Action]) -> None:
        if self._on_export is None:
            logger.warning(
                "Storage was unavailable; %d actions exist only in the returned list", len(actions)
            )
            return
        try:
            self._on_export(actions)
        except Exception as exc:
            logger.error("Fallback export failed: %s", exc)
