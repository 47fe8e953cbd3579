"""AutoFlow: main orchestrator class."""

from __future__ import annotations

import logging
from typing import Any, Callable, Sequence

from playwright.async_api import Page

from autoflow.capture.channel import MessageChannel
from autoflow.capture.codegen import ScriptGenerator
from autoflow.capture.recorder import ActionRecorder
from autoflow.capture.replay import ActionReplayer, ProgressCallback, ReplayResult
from autoflow.capture.store import JSONFileStore, KeyValueStore, MemoryStore
from autoflow.capture.surface import CaptureSurface, PlaywrightSurface
from autoflow.capture.types import Action, CaptureEvent
from autoflow.config import Settings
from autoflow.errors import AutoFlowError, StorageError
from autoflow.scheduling.scheduler import Scheduler
from autoflow.scheduling.types import ScheduleConfig, ScheduleType
from autoflow.workflow.executor import ProgressCallback as NodeProgressCallback
from autoflow.workflow.executor import WorkflowExecutor
from autoflow.workflow.graph import WorkflowGraph
from autoflow.workflow.importer import BROWSER_SERVICE, actions_to_graph
from autoflow.workflow.services import BrowserCapability, CapabilityFactory, ServiceRegistry
from autoflow.workflow.types import CancelToken, ExecutionContext

logger = logging.getLogger(__name__)


class AutoFlow:
    """
    Records browser interactions and turns them into runnable automations.

    Usage:
        flow = AutoFlow()
        await flow.attach_page(page)
        flow.start_recording(page.url)
        ...
        actions = flow.stop_recording()
        script = flow.generate_script(actions)
        graph = flow.workflow_from_actions(actions)
        context = await flow.execute_workflow(graph)
    """

    def __init__(
        self,
        *,
        settings: Settings | None = None,
        store: KeyValueStore | None = None,
        services: ServiceRegistry | None = None,
        surface: CaptureSurface | None = None,
        channel: MessageChannel | None = None,
        on_export: Callable[[list[Action]], Any] | None = None,
        on_stop: Callable[[list[Action]], Any] | None = None,
    ) -> None:
        self.settings = settings or Settings.from_env()
        self._store: KeyValueStore = store if store is not None else self._default_store()
        self._services = services if services is not None else ServiceRegistry()
        self._channel = channel
        self._on_export = on_export
        self._on_stop = on_stop
        self._last_recording: list[Action] = []

        self._recorder = self._make_recorder(surface)
        self._generator = ScriptGenerator(headless=self.settings.headless)
        self._executor = WorkflowExecutor(self._services)
        self._scheduler = Scheduler(
            self._executor,
            store=self._store,
            tick_interval=self.settings.tick_interval,
            retry_base_ms=self.settings.retry_base_ms,
        )

    def _make_recorder(self, surface: CaptureSurface | None) -> ActionRecorder:
        return ActionRecorder(
            surface,
            store=self._store,
            channel=self._channel,
            on_export=self._on_export,
            on_stop=self._recording_stopped,
            liveness_interval=self.settings.liveness_interval,
        )

    def _default_store(self) -> KeyValueStore:
        try:
            return JSONFileStore(self.settings.store_dir)
        except StorageError as exc:
            logger.warning("Store directory unavailable, keeping state in memory: %s", exc)
            return MemoryStore()

    def _recording_stopped(self, actions: list[Action]) -> None:
        self._last_recording = actions
        if self._on_stop is not None:
            self._on_stop(list(actions))

    @property
    def recorder(self) -> ActionRecorder:
        return self._recorder

    @property
    def last_recording(self) -> list[Action]:
        """Actions of the most recently finished recording, including ones stopped by Escape or page close."""
        return list(self._last_recording)

    @property
    def services(self) -> ServiceRegistry:
        return self._services

    @property
    def scheduler(self) -> Scheduler:
        return self._scheduler

    # ------------------------------------------------------------------
    # Capture
    # ------------------------------------------------------------------

    async def attach_page(self, page: Page, *, external: bool = False) -> PlaywrightSurface:
        """
        Capture from a live Playwright page.

        An external page stops the recording when it is closed.
        """
        if self._recorder.active:
            raise AutoFlowError("Cannot switch capture surface while recording")
        surface = PlaywrightSurface(page, external=external)
        self._recorder = self._make_recorder(surface)
        surface.on_navigate = self._recorder.notify_navigation
        if external:
            surface.on_close = self._recorder.stop
        await surface.install()
        return surface

    def start_recording(self, url: str = "") -> None:
        self._recorder.start(url)

    def record(self, event: CaptureEvent) -> Action | None:
        """Feed one host event to the recorder."""
        return self._recorder.handle_event(event)

    def stop_recording(self) -> list[Action]:
        """Stop the active recording, or return the last one if it already ended."""
        if self._recorder.active:
            return self._recorder.stop()
        return self.last_recording

    def restore_recording(self) -> bool:
        return self._recorder.restore()

    def _default_actions(self) -> list[Action]:
        if self._recorder.active:
            return self._recorder.actions
        return self.last_recording

    def generate_script(self, actions: Sequence[Action] | None = None) -> str:
        """Compile actions (default: the current or last finished recording) into a Playwright script."""
        return self._generator.generate(self._default_actions() if actions is None else actions)

    def export_script(self, path: str, actions: Sequence[Action] | None = None) -> str:
        return self._generator.write(self._default_actions() if actions is None else actions, path)

    async def replay(
        self,
        page: Page,
        actions: Sequence[Action],
        on_progress: ProgressCallback | None = None,
    ) -> ReplayResult:
        return await ActionReplayer(page).replay(actions, on_progress)

    # ------------------------------------------------------------------
    # Workflows
    # ------------------------------------------------------------------

    def register_service(self, name: str, factory: CapabilityFactory) -> None:
        self._services.register(name, factory)

    def use_browser(self, page: Page) -> None:
        """Serve the ``browser`` capability from ``page``."""
        self._services.register(BROWSER_SERVICE, lambda: BrowserCapability(page))

    def workflow_from_actions(self, actions: Sequence[Action], **kwargs: Any) -> WorkflowGraph:
        return actions_to_graph(actions, **kwargs)

    async def execute_workflow(
        self,
        graph: WorkflowGraph,
        on_progress: NodeProgressCallback | None = None,
        *,
        variables: dict[str, Any] | None = None,
        cancel: CancelToken | None = None,
    ) -> ExecutionContext:
        return await self._executor.execute_workflow(graph, on_progress, variables=variables, cancel=cancel)

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def schedule(
        self,
        graph: WorkflowGraph,
        schedule_type: ScheduleType | str,
        schedule: str = "",
        *,
        name: str | None = None,
        **kwargs: Any,
    ) -> ScheduleConfig:
        """Register ``graph`` with the scheduler and create a schedule for it."""
        self._scheduler.register_workflow(graph)
        return self._scheduler.create_schedule(graph.id, name or graph.name or graph.id, schedule_type, schedule, **kwargs)

    async def start(self) -> None:
        await self._scheduler.start()

    async def shutdown(self) -> None:
        if self._recorder.active:
            self._recorder.stop()
        await self._scheduler.shutdown()
