"""Selector synthesis from an element description."""

from __future__ import annotations

from autoflow.capture.types import ElementDescription

# Attribute clauses appended to the tag name, in this order
_ATTRIBUTE_ORDER = ("type", "name", "placeholder")


def _escape_attr(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


def synthesize_selector(element: ElementDescription | None) -> str:
    """
    Build a best-effort CSS selector for an element.

    Priority: ``#id``, then the first non-empty class token as ``.class``,
    then ``tag[type="..."][name="..."][placeholder="..."]`` with only the
    attributes that are present. No uniqueness check is made against the
    live page. Never raises.
    """
    if element is None:
        return "*"

    element_id = (element.id or "").strip()
    if element_id:
        return f"#{element_id}"

    for token in element.classes:
        token = (token or "").strip()
        if token:
            return f".{token}"

    selector = (element.tag or "").strip().lower() or "*"
    for attr in _ATTRIBUTE_ORDER:
        value = getattr(element, attr, "") or ""
        if value:
            selector += f'[{attr}="{_escape_attr(value)}"]'
    return selector


class SelectorSynthesizer:
    """Deterministic rule-based locator generation."""

    def synthesize(self, element: ElementDescription | None) -> str:
        return synthesize_selector(element)
