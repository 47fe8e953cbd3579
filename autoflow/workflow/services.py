"""Service dispatch boundary: named capabilities invoked by workflow nodes."""

from __future__ import annotations

import inspect
import logging
from typing import Any, Awaitable, Callable, Protocol, Union

from playwright.async_api import Page

from autoflow.capture.replay import ActionReplayer
from autoflow.capture.types import Action, ActionKind, Coordinates
from autoflow.errors import CapabilityInitError

logger = logging.getLogger(__name__)

MANUAL = "manual"


class Capability(Protocol):
    """An external service a node can call."""

    async def invoke(self, operation: str, params: dict[str, Any]) -> Any: ...


class ServiceProvider(Protocol):
    """Resolves capability names to initialized capabilities."""

    def provides(self, name: str) -> bool: ...

    async def initialize(self, name: str) -> Capability: ...


CapabilityFactory = Callable[[], Union[Capability, Awaitable[Capability]]]


class ServiceRegistry:
    """
    ServiceProvider backed by named factories.

    A factory may be a plain or async callable. Any exception it raises is
    reported as CapabilityInitError.
    """

    def __init__(self) -> None:
        self._factories: dict[str, CapabilityFactory] = {}

    def register(self, name: str, factory: CapabilityFactory) -> None:
        self._factories[name] = factory

    def register_instance(self, name: str, capability: Capability) -> None:
        self._factories[name] = lambda: capability

    def unregister(self, name: str) -> bool:
        return self._factories.pop(name, None) is not None

    def names(self) -> list[str]:
        return sorted(self._factories)

    def provides(self, name: str) -> bool:
        return name in self._factories

    async def initialize(self, name: str) -> Capability:
        factory = self._factories.get(name)
        if factory is None:
            raise CapabilityInitError(name, "no capability registered under this name")
        try:
            capability = factory()
            if inspect.isawaitable(capability):
                capability = await capability
        except CapabilityInitError:
            raise
        except Exception as exc:
            raise CapabilityInitError(name, str(exc)) from exc
        logger.info("Service %s initialized", name)
        return capability


class FunctionCapability:
    """Maps operation names to plain or async functions taking the params dict."""

    def __init__(self, operations: dict[str, Callable[[dict[str, Any]], Any]], name: str = "") -> None:
        self.name = name
        self._operations = dict(operations)

    @property
    def operations(self) -> list[str]:
        return sorted(self._operations)

    async def invoke(self, operation: str, params: dict[str, Any]) -> Any:
        fn = self._operations.get(operation)
        if fn is None:
            raise ValueError(f"{self.name or 'capability'} does not support operation {operation!r}")
        result = fn(params)
        if inspect.isawaitable(result):
            result = await result
        return result


class BrowserCapability:
    """
    Replays single browser actions against a Playwright page.

    The operation is an action kind (``click``, ``input``, ``keypress``,
    ``navigation``, ``scroll``); params carry ``locator``, ``value``, ``url``
    and optional ``x``/``y``.
    """

    def __init__(self, page: Page, *, timeout_ms: float = 5000) -> None:
        self._replayer = ActionReplayer(page, timeout_ms=timeout_ms, step_pause=0)

    async def invoke(self, operation: str, params: dict[str, Any]) -> dict[str, Any]:
        try:
            kind = ActionKind(operation)
        except ValueError:
            raise ValueError(f"browser does not support operation {operation!r}") from None

        coordinates = None
        if "x" in params or "y" in params:
            coordinates = Coordinates(x=params.get("x", 0), y=params.get("y", 0))
        action = Action(
            id=int(params.get("action_id", 0)),
            kind=kind,
            timestamp=0,
            locator=str(params.get("locator", "")),
            element_tag=str(params.get("element_tag", "")),
            page_url=str(params.get("url", "")),
            value=params.get("value"),
            coordinates=coordinates,
        )
        await self._replayer.perform(action)
        return {"kind": kind.value, "locator": action.locator}
