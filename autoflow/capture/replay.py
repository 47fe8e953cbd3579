"""Live-page replay of a recorded action list."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Sequence

from playwright.async_api import Page

from autoflow.capture.types import Action, ActionKind

logger = logging.getLogger(__name__)

STOPPED_MESSAGE = "Execution stopped by user"


@dataclass
class StepResult:
    action_id: int
    kind: str
    success: bool
    error: str | None = None
    latency_ms: float = 0.0


@dataclass
class ReplayResult:
    success: bool
    message: str
    steps_executed: int
    steps_succeeded: int
    total_steps: int
    step_results: list[StepResult] = field(default_factory=list)
    error: str | None = None
    total_latency_ms: float = 0.0


ProgressCallback = Callable[[int, int, Action], Any]


class ActionReplayer:
    """Re-dispatches recorded actions against a live Playwright page."""

    def __init__(
        self,
        page: Page,
        *,
        timeout_ms: float = 5000,
        step_pause: float = 0.1,
    ) -> None:
        self._page = page
        self._timeout_ms = timeout_ms
        self._step_pause = step_pause
        self._stop_requested = False

    def stop(self) -> None:
        """Ask the running replay to stop before its next action."""
        self._stop_requested = True

    async def replay(
        self,
        actions: Sequence[Action],
        on_progress: ProgressCallback | None = None,
        *,
        start_url: str | None = None,
    ) -> ReplayResult:
        """
        Replay actions in order, stopping at the first failure.

        ``on_progress(current, total, action)`` is called before each action.
        When ``start_url`` is given the page is navigated there first.
        """
        self._stop_requested = False
        results: list[StepResult] = []
        total = len(actions)
        start = time.monotonic()

        if start_url:
            await self._page.goto(start_url)

        for i, action in enumerate(actions):
            if self._stop_requested:
                return self._result(results, total, start, STOPPED_MESSAGE, error=STOPPED_MESSAGE)

            if on_progress is not None:
                outcome = on_progress(i + 1, total, action)
                if asyncio.iscoroutine(outcome):
                    await outcome

            step_start = time.monotonic()
            try:
                await self.perform(action)
            except Exception as exc:
                latency = (time.monotonic() - step_start) * 1000
                results.append(
                    StepResult(
                        action_id=action.id,
                        kind=action.kind.value,
                        success=False,
                        error=str(exc),
                        latency_ms=latency,
                    )
                )
                logger.warning("Replay of action %d (%s) failed: %s", action.id, action.kind.value, exc)
                return self._result(results, total, start, "Replay failed", error=str(exc))

            results.append(
                StepResult(
                    action_id=action.id,
                    kind=action.kind.value,
                    success=True,
                    latency_ms=(time.monotonic() - step_start) * 1000,
                )
            )
            if self._step_pause:
                await asyncio.sleep(self._step_pause)

        return self._result(results, total, start, f"Successfully executed {len(results)} actions")

    async def perform(self, action: Action) -> None:
        """Dispatch one action. Raises whatever Playwright raises."""
        page = self._page
        if action.kind is ActionKind.CLICK:
            if action.locator:
                await page.click(action.locator, timeout=self._timeout_ms)
            elif action.coordinates is not None:
                await page.mouse.click(action.coordinates.x, action.coordinates.y)
        elif action.kind is ActionKind.INPUT:
            await page.fill(action.locator, action.value or "", timeout=self._timeout_ms)
        elif action.kind is ActionKind.KEYPRESS:
            if action.value:
                await page.keyboard.press(action.value)
        elif action.kind is ActionKind.NAVIGATION:
            url = action.value or action.page_url
            if url and url != page.url:
                await page.goto(url)
        elif action.kind is ActionKind.SCROLL:
            x = action.coordinates.x if action.coordinates else 0
            y = action.coordinates.y if action.coordinates else 0
            await page.evaluate("([x, y]) => window.scrollTo(x, y)", [x, y])
        else:
            logger.info("Unsupported action kind %s", action.kind)

    @staticmethod
    def _result(
        results: list[StepResult],
        total: int,
        start: float,
        message: str,
        error: str | None = None,
    ) -> ReplayResult:
        succeeded = sum(1 for r in results if r.success)
        return ReplayResult(
            success=error is None,
            message=message,
            steps_executed=len(results),
            steps_succeeded=succeeded,
            total_steps=total,
            step_results=results,
            error=error,
            total_latency_ms=(time.monotonic() - start) * 1000,
        )
