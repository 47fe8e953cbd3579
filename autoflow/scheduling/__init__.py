"""Scheduling: cron/interval/conditional schedules, webhooks, events and retry."""

from autoflow.scheduling.cron import CronExpression, CronField, parse_interval, validate_cron_expression
from autoflow.scheduling.retry import compute_backoff_delay, should_retry
from autoflow.scheduling.scheduler import SCHEDULE_TEMPLATES, Scheduler
from autoflow.scheduling.triggers import (
    evaluate_schedule_conditions,
    get_nested,
    matches_event_filters,
    matches_webhook_conditions,
)
from autoflow.scheduling.types import (
    ConditionOperator,
    ConditionType,
    EventDispatch,
    EventTrigger,
    ExecutionStatus,
    RetryPolicy,
    ScheduleCondition,
    ScheduleConfig,
    ScheduleExecution,
    ScheduleTemplate,
    ScheduleType,
    WebhookCondition,
    WebhookResponse,
    WebhookTrigger,
)

__all__ = [
    "SCHEDULE_TEMPLATES",
    "ConditionOperator",
    "ConditionType",
    "CronExpression",
    "CronField",
    "EventDispatch",
    "EventTrigger",
    "ExecutionStatus",
    "RetryPolicy",
    "ScheduleCondition",
    "ScheduleConfig",
    "ScheduleExecution",
    "ScheduleTemplate",
    "ScheduleType",
    "Scheduler",
    "WebhookCondition",
    "WebhookResponse",
    "WebhookTrigger",
    "compute_backoff_delay",
    "evaluate_schedule_conditions",
    "get_nested",
    "matches_event_filters",
    "matches_webhook_conditions",
    "parse_interval",
    "should_retry",
    "validate_cron_expression",
]
