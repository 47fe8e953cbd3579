"""Script codegen: recorded actions -> standalone Playwright Python script."""

from __future__ import annotations

import os
from typing import Sequence

from autoflow.capture.types import Action, ActionKind

_HEADER = '''\
"""Recorded browser automation."""

import asyncio

from playwright.async_api import async_playwright


async def run(page):'''

_FOOTER = '''\
async def main():
    async with async_playwright() as playwright:
        browser = await playwright.chromium.launch(headless={headless})
        page = await browser.new_page()
        try:
            await run(page)
        finally:
            await browser.close()


if __name__ == "__main__":
    asyncio.run(main())
'''

_INDENT = "    "


def _quote(value: str | None) -> str:
    """Render a Python string literal, preferring double quotes."""
    value = (value or "").replace("\\", "\\\\").replace("\n", "\\n").replace("\r", "\\r")
    if '"' in value and "'" not in value:
        return f"'{value}'"
    return '"' + value.replace('"', '\\"') + '"'


def _number(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else repr(float(value))


def _group_by_url(actions: Sequence[Action]) -> list[tuple[str, list[Action]]]:
    """Group actions by page URL, keeping first-seen URL order."""
    groups: list[tuple[str, list[Action]]] = []
    index: dict[str, int] = {}
    for action in actions:
        url = action.page_url or ""
        if url not in index:
            index[url] = len(groups)
            groups.append((url, []))
        groups[index[url]][1].append(action)
    return groups


def _statement(action: Action) -> str:
    if action.kind is ActionKind.CLICK:
        return f"await page.click({_quote(action.locator)})"
    if action.kind is ActionKind.INPUT:
        return f"await page.fill({_quote(action.locator)}, {_quote(action.value)})"
    if action.kind is ActionKind.KEYPRESS:
        return f"await page.keyboard.press({_quote(action.value)})"
    if action.kind is ActionKind.SCROLL:
        x = action.coordinates.x if action.coordinates else 0
        y = action.coordinates.y if action.coordinates else 0
        return f"await page.mouse.wheel({_number(x)}, {_number(y)})"
    if action.kind is ActionKind.NAVIGATION:
        # The goto of the enclosing group performs the navigation
        return f"# navigated to {action.value or action.page_url}"
    return f"# unhandled action: {action.kind.value}"


def generate_script(actions: Sequence[Action], *, headless: bool = False) -> str:
    """
    Render actions as a runnable Python Playwright script.

    Actions are emitted in the given order, grouped by ``page_url`` in
    first-seen order. The output depends only on the input list, so the
    same actions always produce byte-identical text.
    """
    lines: list[str] = [_HEADER]
    groups = _group_by_url(actions)
    if not groups:
        lines.append(f"{_INDENT}pass")

    for i, (url, group) in enumerate(groups):
        if i > 0:
            lines.append("")
        lines.append(f"{_INDENT}# Actions for {url or 'current page'}")
        if url:
            lines.append(f"{_INDENT}await page.goto({_quote(url)})")
        for action in group:
            lines.append(f"{_INDENT}{_statement(action)}")

    return "\n".join(lines) + "\n\n\n" + _FOOTER.format(headless=bool(headless))


class ScriptGenerator:
    """Compiles recorded actions into a Playwright script, optionally on disk."""

    def __init__(self, *, headless: bool = False) -> None:
        self.headless = headless

    def generate(self, actions: Sequence[Action]) -> str:
        return generate_script(actions, headless=self.headless)

    def write(self, actions: Sequence[Action], path: str) -> str:
        """Write the script to ``path`` and return the absolute path."""
        source = self.generate(actions)
        parent = os.path.dirname(os.path.abspath(path))
        os.makedirs(parent, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            f.write(source)
        return os.path.abspath(path)
