"""Scheduling layer type definitions."""

from __future__ import annotations

import json
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

UTC = timezone.utc


def now_utc() -> datetime:
    """Return the current time in UTC, timezone-aware."""
    return datetime.now(UTC)


def parse_iso(s: str | None) -> datetime | None:
    """Parse an ISO-8601 string back to a timezone-aware datetime."""
    if s is None:
        return None
    dt = datetime.fromisoformat(s)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


def _known_fields(cls: type, data: dict) -> dict:
    valid = {f for f in cls.__dataclass_fields__}  # type: ignore[attr-defined]
    return {k: v for k, v in data.items() if k in valid}


class ScheduleType(str, Enum):
    CRON = "cron"
    INTERVAL = "interval"
    CONDITIONAL = "conditional"
    WEBHOOK = "webhook"
    EVENT = "event"


class ExecutionStatus(str, Enum):
    SCHEDULED = "scheduled"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class ConditionType(str, Enum):
    TIME = "time"
    DATE = "date"
    DAY = "day"


class ConditionOperator(str, Enum):
    EQUALS = "equals"
    BEFORE = "before"
    AFTER = "after"
    BETWEEN = "between"


@dataclass
class RetryPolicy:
    max_attempts: int = 3
    backoff_multiplier: float = 2.0
    max_delay_ms: int = 60_000

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict | None) -> RetryPolicy | None:
        if not data:
            return None
        return cls(**_known_fields(cls, data))


@dataclass
class ScheduleCondition:
    """
    A calendar predicate for conditional schedules.

    ``time`` compares ``HH:MM``, ``date`` compares ``YYYY-MM-DD`` and
    ``day`` matches lower-case weekday names. ``between`` takes a
    two-element list.
    """

    type: ConditionType
    operator: ConditionOperator = ConditionOperator.EQUALS
    value: str | list[str] = ""

    def to_dict(self) -> dict:
        value = list(self.value) if isinstance(self.value, (list, tuple)) else self.value
        return {"type": self.type.value, "operator": self.operator.value, "value": value}

    @classmethod
    def from_dict(cls, data: dict) -> ScheduleCondition:
        return cls(
            type=ConditionType(data["type"]),
            operator=ConditionOperator(data.get("operator", "equals")),
            value=data.get("value", ""),
        )


@dataclass
class ScheduleConfig:
    id: str
    workflow_id: str
    name: str
    type: ScheduleType
    schedule: str = ""
    enabled: bool = True
    timezone: str | None = None
    retry_policy: RetryPolicy | None = None
    conditions: list[ScheduleCondition] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: str = field(default_factory=lambda: now_utc().isoformat())
    updated_at: str = field(default_factory=lambda: now_utc().isoformat())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "workflow_id": self.workflow_id,
            "name": self.name,
            "type": self.type.value,
            "schedule": self.schedule,
            "enabled": self.enabled,
            "timezone": self.timezone,
            "retry_policy": self.retry_policy.to_dict() if self.retry_policy else None,
            "conditions": [c.to_dict() for c in self.conditions],
            "metadata": dict(self.metadata),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> ScheduleConfig:
        data = dict(data)
        data["type"] = ScheduleType(data["type"])
        data["retry_policy"] = RetryPolicy.from_dict(data.get("retry_policy"))
        data["conditions"] = [ScheduleCondition.from_dict(c) for c in data.get("conditions") or []]
        return cls(**_known_fields(cls, data))


@dataclass
class ScheduleExecution:
    """One firing of a schedule, webhook or event trigger."""

    id: str
    schedule_id: str
    workflow_id: str
    status: ExecutionStatus = ExecutionStatus.SCHEDULED
    trigger: ScheduleType = ScheduleType.CRON
    scheduled_at: str = field(default_factory=lambda: now_utc().isoformat())
    started_at: str | None = None
    completed_at: str | None = None
    duration_ms: float | None = None
    result: Any = None
    error: str | None = None
    retry_count: int = 0
    next_retry_at: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)

    @property
    def finished(self) -> bool:
        return self.status in (ExecutionStatus.COMPLETED, ExecutionStatus.FAILED, ExecutionStatus.SKIPPED)

    def to_dict(self) -> dict:
        d = asdict(self)
        d["status"] = self.status.value
        d["trigger"] = self.trigger.value
        for key in ("result", "payload"):
            try:
                json.dumps(d[key])
            except (TypeError, ValueError):
                d[key] = str(d[key])
        return d

    @classmethod
    def from_dict(cls, data: dict) -> ScheduleExecution:
        data = dict(data)
        data["status"] = ExecutionStatus(data.get("status", "scheduled"))
        data["trigger"] = ScheduleType(data.get("trigger", "cron"))
        return cls(**_known_fields(cls, data))


@dataclass
class WebhookCondition:
    field: str
    operator: str = "equals"  # equals | contains | exists
    value: Any = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class WebhookTrigger:
    id: str
    workflow_id: str
    url: str = ""
    secret: str = ""
    method: str = "POST"
    headers: dict[str, str] = field(default_factory=dict)
    conditions: list[WebhookCondition] = field(default_factory=list)
    enabled: bool = True
    created_at: str = field(default_factory=lambda: now_utc().isoformat())

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> WebhookTrigger:
        data = dict(data)
        data["conditions"] = [WebhookCondition(**c) for c in data.get("conditions") or []]
        return cls(**_known_fields(cls, data))


@dataclass
class EventTrigger:
    id: str
    workflow_id: str
    event_type: str
    source: str = "system"  # system | user | external
    filters: dict[str, Any] = field(default_factory=dict)
    enabled: bool = True
    created_at: str = field(default_factory=lambda: now_utc().isoformat())

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> EventTrigger:
        return cls(**_known_fields(cls, data))


@dataclass
class WebhookResponse:
    success: bool
    message: str
    execution_id: str | None = None


@dataclass
class EventDispatch:
    triggered_workflows: list[str] = field(default_factory=list)
    execution_ids: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class ScheduleTemplate:
    name: str
    description: str
    type: ScheduleType
    schedule: str
    conditions: tuple[ScheduleCondition, ...] = ()
