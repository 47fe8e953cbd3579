"""Capture surfaces: where interaction events come from."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Protocol

from playwright.async_api import Frame, Page

from autoflow.capture.types import CaptureEvent

logger = logging.getLogger(__name__)

EventHandler = Callable[[CaptureEvent], None]

_BINDING = "__autoflowCapture"

# Installs capture-phase listeners at the document root. Guarded so that a
# second evaluation on the same document is a no-op.
_CAPTURE_SCRIPT = """
(() => {
    if (window.__autoflowAttached) { return; }
    const send = window.__autoflowCapture;
    if (typeof send !== 'function') { return; }

    function describe(el) {
        if (!el || !el.tagName) return null;
        return {
            tag: el.tagName.toLowerCase(),
            id: el.id || '',
            className: typeof el.className === 'string' ? el.className : '',
            type: el.getAttribute('type') || '',
            name: el.getAttribute('name') || '',
            placeholder: el.getAttribute('placeholder') || '',
            text: (el.textContent || '').trim().substring(0, 50),
        };
    }

    function onClick(e) {
        send({type: 'click', url: location.href, element: describe(e.target),
              coordinates: {x: e.clientX, y: e.clientY}});
    }
    const sentValues = new WeakMap();
    function sendValue(el) {
        const v = el && el.value !== undefined ? String(el.value) : null;
        if (sentValues.has(el) && sentValues.get(el) === v) return;
        if (el) sentValues.set(el, v);
        send({type: 'input', url: location.href, element: describe(el), value: v});
    }
    function onInput(e) {
        sendValue(e.target);
    }
    function onKeydown(e) {
        const tag = e.target && e.target.tagName ? e.target.tagName.toLowerCase() : '';
        // Enter and Tab may submit or leave the field before 'change' fires
        if ((e.key === 'Enter' || e.key === 'Tab') && (tag === 'input' || tag === 'textarea')) {
            sendValue(e.target);
        }
        send({type: 'keydown', url: location.href, element: describe(e.target), key: e.key});
    }
    let scrollTimer = null;
    function onScroll() {
        clearTimeout(scrollTimer);
        scrollTimer = setTimeout(() => {
            send({type: 'scroll', url: location.href,
                  coordinates: {x: window.scrollX, y: window.scrollY}});
        }, 250);
    }

    document.addEventListener('click', onClick, true);
    document.addEventListener('change', onInput, true);
    document.addEventListener('keydown', onKeydown, true);
    window.addEventListener('scroll', onScroll, true);

    window.__autoflowDetach = () => {
        document.removeEventListener('click', onClick, true);
        document.removeEventListener('change', onInput, true);
        document.removeEventListener('keydown', onKeydown, true);
        window.removeEventListener('scroll', onScroll, true);
        window.__autoflowAttached = false;
    };
    window.__autoflowAttached = true;
    send({type: 'ready', url: location.href});
})();
"""

_DETACH_SCRIPT = "() => { if (window.__autoflowDetach) { window.__autoflowDetach(); } }"


class CaptureSurface(Protocol):
    """A recording surface delivers an ordered stream of events to one handler."""

    surface_id: str
    is_external: bool

    def attach(self, handler: EventHandler) -> None: ...

    def detach(self) -> None: ...

    def is_attached(self) -> bool: ...


class HostSurface:
    """
    Host-driven surface: the embedding environment calls ``dispatch``.

    ``tear_down`` models a full page load destroying the listener context
    without the recorder being told.
    """

    def __init__(self, surface_id: str = "local", *, external: bool = False) -> None:
        self.surface_id = surface_id
        self.is_external = external
        self.attach_count = 0
        self._handler: EventHandler | None = None

    def attach(self, handler: EventHandler) -> None:
        self._handler = handler
        self.attach_count += 1

    def detach(self) -> None:
        self._handler = None

    def is_attached(self) -> bool:
        return self._handler is not None

    def tear_down(self) -> None:
        self._handler = None

    def dispatch(self, event: CaptureEvent | dict[str, Any]) -> bool:
        """Deliver one event. Returns False if no listener was attached."""
        if self._handler is None:
            return False
        if not isinstance(event, CaptureEvent):
            event = CaptureEvent.from_dict(event)
        self._handler(event)
        return True


class PlaywrightSurface:
    """
    Captures events from a live Playwright page.

    The capture script is registered as an init script, so the browser
    re-installs listeners on every new document. Between a main-frame
    navigation and the new document's ``ready`` ping the surface reports
    itself detached, which lets the recorder's liveness check re-inject.
    """

    def __init__(
        self,
        page: Page,
        *,
        external: bool = False,
        surface_id: str | None = None,
        on_navigate: Callable[[str], None] | None = None,
        on_close: Callable[[], None] | None = None,
    ) -> None:
        self.surface_id = surface_id or ("external" if external else "local")
        self.is_external = external
        self.on_navigate = on_navigate
        self.on_close = on_close
        self._page = page
        self._handler: EventHandler | None = None
        self._installed = False
        self._live = False
        self._tasks: set[asyncio.Task] = set()

    async def install(self) -> None:
        """Expose the binding and register the capture script. Idempotent."""
        if self._installed:
            return
        await self._page.expose_binding(_BINDING, self._on_binding)
        await self._page.add_init_script(script=_CAPTURE_SCRIPT)
        self._page.on("framenavigated", self._on_frame_navigated)
        self._page.on("close", self._on_page_close)
        self._installed = True
        await self._inject()

    def attach(self, handler: EventHandler) -> None:
        self._handler = handler
        if self._installed and not self._live:
            self._schedule(self._inject())

    def detach(self) -> None:
        self._handler = None
        self._live = False
        if self._installed and not self._page.is_closed():
            self._schedule(self._evaluate_quietly(_DETACH_SCRIPT))

    def is_attached(self) -> bool:
        return self._handler is not None and self._live

    # ------------------------------------------------------------------
    # Playwright callbacks
    # ------------------------------------------------------------------

    def _on_binding(self, source: dict, payload: dict[str, Any]) -> None:
        if not isinstance(payload, dict):
            return
        if payload.get("type") == "ready":
            self._live = True
            return
        if self._handler is None:
            return
        try:
            event = CaptureEvent.from_dict(payload)
        except (KeyError, ValueError) as exc:
            logger.warning("Ignoring malformed capture event %r: %s", payload, exc)
            return
        self._handler(event)

    def _on_frame_navigated(self, frame: Frame) -> None:
        if frame != self._page.main_frame:
            return
        self._live = False
        if self.on_navigate is not None:
            self.on_navigate(frame.url)

    def _on_page_close(self, page: Page) -> None:
        self._live = False
        self._handler = None
        if self.on_close is not None:
            self.on_close()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _inject(self) -> None:
        await self._evaluate_quietly(_CAPTURE_SCRIPT)

    async def _evaluate_quietly(self, script: str) -> None:
        try:
            await self._page.evaluate(script)
        except Exception as exc:
            # The page may be mid-navigation; the init script covers the next document
            logger.debug("Capture script evaluation failed: %s", exc)

    @property
    def pending_tasks(self) -> int:
        return len(self._tasks)

    def _schedule(self, coro) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            return
        task = loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
