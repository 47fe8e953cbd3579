"""Predicate matching for conditional schedules, webhooks and events."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Iterable

from autoflow.scheduling.types import (
    ConditionOperator,
    ConditionType,
    ScheduleCondition,
    WebhookCondition,
)

logger = logging.getLogger(__name__)

DAY_NAMES = ("sunday", "monday", "tuesday", "wednesday", "thursday", "friday", "saturday")

_MISSING = object()


def get_nested(obj: Any, path: str, default: Any = None) -> Any:
    """Resolve a dotted path through nested mappings (``"a.b.c"``)."""
    current = obj
    for key in path.split("."):
        if isinstance(current, dict) and key in current:
            current = current[key]
        else:
            return default
    return current


def _compare(current: str, condition: ScheduleCondition) -> bool:
    value = condition.value
    op = condition.operator
    if op is ConditionOperator.BETWEEN:
        if not isinstance(value, (list, tuple)) or len(value) != 2:
            logger.warning("'between' condition needs two values, got %r", value)
            return False
        return value[0] <= current <= value[1]
    if isinstance(value, (list, tuple)):
        return op is ConditionOperator.EQUALS and current in value
    if op is ConditionOperator.EQUALS:
        return current == value
    if op is ConditionOperator.AFTER:
        return current > value
    if op is ConditionOperator.BEFORE:
        return current < value
    return False


def evaluate_schedule_condition(condition: ScheduleCondition, now: datetime) -> bool:
    if condition.type is ConditionType.TIME:
        return _compare(now.strftime("%H:%M"), condition)
    if condition.type is ConditionType.DATE:
        return _compare(now.strftime("%Y-%m-%d"), condition)
    if condition.type is ConditionType.DAY:
        day = DAY_NAMES[(now.weekday() + 1) % 7]
        value = condition.value
        if isinstance(value, (list, tuple)):
            return day in [str(v).lower() for v in value]
        return day == str(value).lower()
    return False


def evaluate_schedule_conditions(conditions: Iterable[ScheduleCondition], now: datetime) -> bool:
    """All conditions must hold. An empty list never fires."""
    conditions = list(conditions)
    if not conditions:
        return False
    return all(evaluate_schedule_condition(c, now) for c in conditions)


def matches_webhook_conditions(conditions: Iterable[WebhookCondition], payload: Any) -> bool:
    for condition in conditions:
        value = get_nested(payload, condition.field, _MISSING)
        if condition.operator == "exists":
            ok = value is not _MISSING
        elif condition.operator == "equals":
            ok = value is not _MISSING and value == condition.value
        elif condition.operator == "contains":
            ok = value is not _MISSING and str(condition.value) in str(value)
        else:
            logger.warning("Unknown webhook condition operator %r", condition.operator)
            ok = False
        if not ok:
            return False
    return True


def matches_event_filters(filters: dict[str, Any] | None, data: Any) -> bool:
    if not filters:
        return True
    if not isinstance(data, dict):
        return False
    return all(key in data and data[key] == value for key, value in filters.items())
