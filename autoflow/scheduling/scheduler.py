"""
Scheduler: turns workflows into recurring or event-triggered jobs.

A polling tick checks cron, interval and conditional schedules and
dispatches each due firing as an independent asyncio task. Failed
firings are retried with exponential backoff according to the
schedule's RetryPolicy. Webhook and event triggers bypass the tick.

Schedules, triggers and execution history are persisted through a
KeyValueStore::

    schedules             list of ScheduleConfig dicts
    schedule_executions   most recent ScheduleExecution dicts
    webhooks              list of WebhookTrigger dicts
    event_triggers        list of EventTrigger dicts
"""

from __future__ import annotations

import asyncio
import dataclasses
import hmac
import logging
import time
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Coroutine, Iterable
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from autoflow.capture.store import KeyValueStore, MemoryStore
from autoflow.config import DEFAULT_RETRY_BASE_MS, DEFAULT_TICK_INTERVAL
from autoflow.errors import (
    ScheduleNotFoundError,
    ScheduleRetryExhausted,
    StorageError,
    ValidationError,
)
from autoflow.scheduling.cron import CronExpression, is_interval, parse_interval, validate_cron_expression
from autoflow.scheduling.retry import compute_backoff_delay, should_retry
from autoflow.scheduling.triggers import (
    evaluate_schedule_conditions,
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
    new_id,
    now_utc,
    parse_iso,
)
from autoflow.workflow.executor import WorkflowExecutor
from autoflow.workflow.graph import WorkflowGraph

logger = logging.getLogger(__name__)

SCHEDULES_KEY = "schedules"
EXECUTIONS_KEY = "schedule_executions"
WEBHOOKS_KEY = "webhooks"
EVENT_TRIGGERS_KEY = "event_triggers"

MAX_HISTORY_ENTRIES = 500
WEBHOOK_SECRET_HEADER = "X-Webhook-Secret"

# Schedule types checked by the polling tick
_POLLED = (ScheduleType.CRON, ScheduleType.INTERVAL, ScheduleType.CONDITIONAL)

# Upper bound on cron candidates examined when conditions also apply
_CONDITIONAL_SEARCH_LIMIT = 2000

_WEEKDAYS = ["monday", "tuesday", "wednesday", "thursday", "friday"]

SCHEDULE_TEMPLATES: tuple[ScheduleTemplate, ...] = (
    ScheduleTemplate("Daily Morning", "Execute every day at 9 AM", ScheduleType.CRON, "0 9 * * *"),
    ScheduleTemplate(
        "Business Hours",
        "Execute every hour during business hours (9 AM - 5 PM, weekdays)",
        ScheduleType.CRON,
        "0 9-17 * * 1-5",
    ),
    ScheduleTemplate("Weekly Report", "Execute every Sunday at midnight", ScheduleType.CRON, "0 0 * * 0"),
    ScheduleTemplate("Every 15 Minutes", "Execute every 15 minutes", ScheduleType.INTERVAL, "15m"),
    ScheduleTemplate("Hourly", "Execute every hour", ScheduleType.INTERVAL, "1h"),
    ScheduleTemplate(
        "Business Days Only",
        "Execute at 10 AM on weekdays only",
        ScheduleType.CONDITIONAL,
        "0 10 * * *",
        (ScheduleCondition(ConditionType.DAY, ConditionOperator.EQUALS, list(_WEEKDAYS)),),
    ),
)


def _minute(dt: datetime) -> datetime:
    return dt.replace(second=0, microsecond=0)


def _coerce_conditions(conditions: Iterable[ScheduleCondition | dict] | None) -> list[ScheduleCondition]:
    return [c if isinstance(c, ScheduleCondition) else ScheduleCondition.from_dict(c) for c in conditions or []]


def _coerce_retry_policy(policy: RetryPolicy | dict | None) -> RetryPolicy | None:
    if policy is None or isinstance(policy, RetryPolicy):
        return policy
    return RetryPolicy.from_dict(policy)


class Scheduler:
    """Async scheduler for workflow graphs."""

    def __init__(
        self,
        executor: WorkflowExecutor | None = None,
        *,
        store: KeyValueStore | None = None,
        tick_interval: float = DEFAULT_TICK_INTERVAL,
        retry_base_ms: int = DEFAULT_RETRY_BASE_MS,
        clock: Callable[[], datetime] = now_utc,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        history_limit: int = MAX_HISTORY_ENTRIES,
    ) -> None:
        self._executor = executor or WorkflowExecutor()
        self._store: KeyValueStore = store if store is not None else MemoryStore()
        self._tick_interval = tick_interval
        self._retry_base_ms = retry_base_ms
        self._clock = clock
        self._sleep = sleep
        self._history_limit = history_limit

        self._workflows: dict[str, WorkflowGraph] = {}
        self._schedules: dict[str, ScheduleConfig] = {}
        self._executions: dict[str, ScheduleExecution] = {}
        self._webhooks: dict[str, WebhookTrigger] = {}
        self._event_triggers: dict[str, EventTrigger] = {}
        self._last_fired: dict[str, datetime] = {}

        self._tasks: set[asyncio.Task] = set()
        self._retry_tasks: dict[str, asyncio.Task] = {}
        self._running = False
        self._loop_task: asyncio.Task | None = None

        self.load()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save(self) -> None:
        """Write schedules, triggers and recent history to the store."""
        try:
            self._store.set(SCHEDULES_KEY, [s.to_dict() for s in self._schedules.values()])
            self._store.set(WEBHOOKS_KEY, [w.to_dict() for w in self._webhooks.values()])
            self._store.set(EVENT_TRIGGERS_KEY, [t.to_dict() for t in self._event_triggers.values()])
            self._save_executions()
        except StorageError as exc:
            logger.warning("Could not persist scheduler state: %s", exc)

    def _save_executions(self) -> None:
        recent = list(self._executions.values())[-self._history_limit:]
        self._store.set(EXECUTIONS_KEY, [e.to_dict() for e in recent])

    def _auto_save_executions(self) -> None:
        try:
            self._save_executions()
        except StorageError as exc:
            logger.warning("Could not persist execution history: %s", exc)

    def load(self) -> None:
        """Load persisted state, skipping entries that no longer parse."""
        try:
            raw_schedules = self._store.get(SCHEDULES_KEY, []) or []
            raw_executions = self._store.get(EXECUTIONS_KEY, []) or []
            raw_webhooks = self._store.get(WEBHOOKS_KEY, []) or []
            raw_events = self._store.get(EVENT_TRIGGERS_KEY, []) or []
        except StorageError as exc:
            logger.warning("Could not load scheduler state: %s", exc)
            return

        for cls, raw_items, target in (
            (ScheduleConfig, raw_schedules, self._schedules),
            (ScheduleExecution, raw_executions, self._executions),
            (WebhookTrigger, raw_webhooks, self._webhooks),
            (EventTrigger, raw_events, self._event_triggers),
        ):
            for raw in raw_items:
                try:
                    item = cls.from_dict(raw)
                except (KeyError, TypeError, ValueError) as exc:
                    logger.warning("Failed to load %s entry: %s", cls.__name__, exc)
                    continue
                target[item.id] = item

        for execution in self._executions.values():
            fired = parse_iso(execution.scheduled_at)
            last = self._last_fired.get(execution.schedule_id)
            if fired is not None and (last is None or fired > last):
                self._last_fired[execution.schedule_id] = fired

        if self._schedules or self._executions:
            logger.info(
                "Loaded %d schedules and %d history entries.",
                len(self._schedules),
                len(self._executions),
            )

    # ------------------------------------------------------------------
    # Workflow registry
    # ------------------------------------------------------------------

    def register_workflow(self, graph: WorkflowGraph) -> None:
        if not graph.id:
            raise ValidationError("Workflow graph needs an id to be scheduled")
        self._workflows[graph.id] = graph

    def unregister_workflow(self, workflow_id: str) -> bool:
        return self._workflows.pop(workflow_id, None) is not None

    def get_workflow(self, workflow_id: str) -> WorkflowGraph | None:
        return self._workflows.get(workflow_id)

    # ------------------------------------------------------------------
    # Schedule CRUD
    # ------------------------------------------------------------------

    def create_schedule(
        self,
        workflow_id: str,
        name: str,
        schedule_type: ScheduleType | str,
        schedule: str = "",
        *,
        enabled: bool = True,
        retry_policy: RetryPolicy | dict | None = None,
        conditions: Iterable[ScheduleCondition | dict] | None = None,
        timezone: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> ScheduleConfig:
        now = self._clock().isoformat()
        config = ScheduleConfig(
            id=new_id("schedule"),
            workflow_id=workflow_id,
            name=name,
            type=ScheduleType(schedule_type),
            schedule=schedule,
            enabled=enabled,
            timezone=timezone,
            retry_policy=_coerce_retry_policy(retry_policy),
            conditions=_coerce_conditions(conditions),
            metadata=dict(metadata or {}),
            created_at=now,
            updated_at=now,
        )
        self._validate_schedule(config)
        self._schedules[config.id] = config
        self.save()
        logger.info("Created schedule: %s (%s)", config.name, config.id)
        return config

    def create_schedule_from_template(
        self,
        template_name: str,
        workflow_id: str,
        *,
        name: str | None = None,
        **overrides: Any,
    ) -> ScheduleConfig:
        template = next((t for t in SCHEDULE_TEMPLATES if t.name == template_name), None)
        if template is None:
            raise ValidationError(f"Unknown schedule template {template_name!r}")
        overrides.setdefault("conditions", [ScheduleCondition.from_dict(c.to_dict()) for c in template.conditions])
        return self.create_schedule(workflow_id, name or template.name, template.type, template.schedule, **overrides)

    def update_schedule(self, schedule_id: str, **changes: Any) -> ScheduleConfig:
        current = self._require(schedule_id)
        allowed = {f.name for f in dataclasses.fields(ScheduleConfig)} - {"id", "created_at", "updated_at"}
        unknown = set(changes) - allowed
        if unknown:
            raise ValidationError(f"Cannot update schedule fields: {', '.join(sorted(unknown))}")

        if "type" in changes:
            changes["type"] = ScheduleType(changes["type"])
        if "retry_policy" in changes:
            changes["retry_policy"] = _coerce_retry_policy(changes["retry_policy"])
        if "conditions" in changes:
            changes["conditions"] = _coerce_conditions(changes["conditions"])

        updated = dataclasses.replace(current, updated_at=self._clock().isoformat(), **changes)
        self._validate_schedule(updated)
        self._schedules[schedule_id] = updated
        self.save()
        logger.info("Updated schedule: %s", schedule_id)
        return updated

    def delete_schedule(self, schedule_id: str) -> bool:
        schedule = self._schedules.pop(schedule_id, None)
        if schedule is None:
            return False
        self._last_fired.pop(schedule_id, None)
        for execution_id, task in list(self._retry_tasks.items()):
            execution = self._executions.get(execution_id)
            if execution is not None and execution.schedule_id == schedule_id:
                task.cancel()
                self._retry_tasks.pop(execution_id, None)
                self._skip_retry(execution, "Schedule deleted before retry")
        self.save()
        logger.info("Deleted schedule: %s", schedule_id)
        return True

    def enable_schedule(self, schedule_id: str) -> bool:
        return self._set_enabled(schedule_id, True)

    def disable_schedule(self, schedule_id: str) -> bool:
        return self._set_enabled(schedule_id, False)

    def get_schedule(self, schedule_id: str) -> ScheduleConfig | None:
        return self._schedules.get(schedule_id)

    def list_schedules(self, enabled_only: bool = False) -> list[ScheduleConfig]:
        return [s for s in self._schedules.values() if s.enabled or not enabled_only]

    def get_schedules_by_workflow(self, workflow_id: str) -> list[ScheduleConfig]:
        return [s for s in self._schedules.values() if s.workflow_id == workflow_id]

    def _set_enabled(self, schedule_id: str, enabled: bool) -> bool:
        schedule = self._schedules.get(schedule_id)
        if schedule is None:
            return False
        schedule.enabled = enabled
        schedule.updated_at = self._clock().isoformat()
        self.save()
        logger.info("%s schedule: %s", "Enabled" if enabled else "Disabled", schedule_id)
        return True

    def _require(self, schedule_id: str) -> ScheduleConfig:
        schedule = self._schedules.get(schedule_id)
        if schedule is None:
            raise ScheduleNotFoundError(f"Schedule not found: {schedule_id}")
        return schedule

    @staticmethod
    def _validate_schedule(config: ScheduleConfig) -> None:
        if config.type is ScheduleType.CRON and not validate_cron_expression(config.schedule):
            raise ValidationError(f"Invalid cron expression: {config.schedule!r}")
        if config.type is ScheduleType.INTERVAL and not is_interval(config.schedule):
            raise ValidationError(f"Invalid interval {config.schedule!r}; expected e.g. 30s, 15m, 1h, 2d")
        if config.type is ScheduleType.CONDITIONAL:
            if not config.conditions:
                raise ValidationError("Conditional schedules need at least one condition")
            if config.schedule and not validate_cron_expression(config.schedule):
                raise ValidationError(f"Invalid cron expression: {config.schedule!r}")
        if config.timezone:
            try:
                ZoneInfo(config.timezone)
            except (ZoneInfoNotFoundError, ValueError) as exc:
                raise ValidationError(f"Unknown timezone {config.timezone!r}") from exc
        if config.retry_policy is not None and config.retry_policy.max_attempts < 0:
            raise ValidationError("retry_policy.max_attempts must be >= 0")

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the polling loop in the background."""
        if self._running:
            logger.warning("Scheduler is already running.")
            return
        self._running = True
        self._loop_task = asyncio.create_task(self._tick_loop())
        logger.info(
            "Scheduler started. Monitoring %d schedules every %ss.",
            len(self._schedules),
            self._tick_interval,
        )

    async def shutdown(self) -> None:
        """Stop the polling loop and cancel pending retries."""
        logger.info("Shutting down scheduler...")
        self._running = False
        if self._loop_task is not None:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None

        retries = list(self._retry_tasks.items())
        for execution_id, task in retries:
            task.cancel()
            execution = self._executions.get(execution_id)
            if execution is not None:
                self._skip_retry(execution, "Scheduler shut down before retry")
        if retries:
            await asyncio.gather(*(task for _, task in retries), return_exceptions=True)
        self._retry_tasks.clear()

        self.save()
        logger.info("Scheduler shutdown complete")

    async def _tick_loop(self) -> None:
        try:
            while self._running:
                await self.tick()
                await self._sleep(self._seconds_until_next_tick())
        except asyncio.CancelledError:
            logger.info("Scheduler loop cancelled.")
            raise

    def _seconds_until_next_tick(self) -> float:
        """Sleep to the next multiple of the tick interval so cron minutes are never skipped."""
        interval = self._tick_interval
        if interval <= 0:
            return 0.0
        return interval - (self._clock().timestamp() % interval)

    async def tick(self, now: datetime | None = None) -> list[ScheduleExecution]:
        """Fire every due polled schedule. Returns the executions dispatched."""
        now = now or self._clock()
        fired: list[ScheduleExecution] = []
        for schedule in list(self._schedules.values()):
            try:
                if self.should_fire(schedule, now):
                    fired.append(self._fire(schedule.id, schedule.workflow_id, schedule.type, now))
            except Exception as exc:
                logger.error("Error checking schedule %s: %s", schedule.id, exc)
        if fired:
            logger.info("%d schedule(s) fired: %s", len(fired), ", ".join(e.schedule_id for e in fired))
        return fired

    def should_fire(self, schedule: ScheduleConfig, now: datetime) -> bool:
        """
        Whether a polled schedule is due at ``now``.

        Cron and conditional schedules fire at most once per minute.
        Interval schedules fire on the first check, then once the interval
        has elapsed since the previous firing.
        """
        if not schedule.enabled or schedule.type not in _POLLED:
            return False

        last = self._last_fired.get(schedule.id)
        if schedule.type is ScheduleType.INTERVAL:
            if last is None:
                return True
            return now - last >= timedelta(milliseconds=parse_interval(schedule.schedule))

        if last is not None and _minute(last) == _minute(now):
            return False
        local = self._local_time(schedule, now)
        if schedule.type is ScheduleType.CRON:
            return CronExpression(schedule.schedule).matches(local)

        if schedule.schedule and not CronExpression(schedule.schedule).matches(local):
            return False
        return evaluate_schedule_conditions(schedule.conditions, local)

    @staticmethod
    def _local_time(schedule: ScheduleConfig, now: datetime) -> datetime:
        if schedule.timezone:
            return now.astimezone(ZoneInfo(schedule.timezone))
        return now

    # ------------------------------------------------------------------
    # Running
    # ------------------------------------------------------------------

    async def run_now(self, schedule_id: str, payload: dict[str, Any] | None = None) -> ScheduleExecution:
        """Fire a schedule immediately and wait for its first attempt."""
        schedule = self._require(schedule_id)
        execution = self._new_execution(schedule.id, schedule.workflow_id, schedule.type, self._clock(), payload)
        return await self._run_execution(execution)

    async def wait_idle(self) -> None:
        """Wait until no dispatched execution or retry is pending."""
        while True:
            pending = [t for t in self._tasks if not t.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    def _new_execution(
        self,
        schedule_id: str,
        workflow_id: str,
        trigger: ScheduleType,
        now: datetime,
        payload: dict[str, Any] | None = None,
    ) -> ScheduleExecution:
        execution = ScheduleExecution(
            id=new_id("exec"),
            schedule_id=schedule_id,
            workflow_id=workflow_id,
            trigger=trigger,
            scheduled_at=now.isoformat(),
            payload=dict(payload or {}),
        )
        self._last_fired[schedule_id] = now
        self._record(execution)
        return execution

    def _fire(
        self,
        schedule_id: str,
        workflow_id: str,
        trigger: ScheduleType,
        now: datetime,
        payload: dict[str, Any] | None = None,
    ) -> ScheduleExecution:
        execution = self._new_execution(schedule_id, workflow_id, trigger, now, payload)
        self._spawn(self._run_execution(execution))
        return execution

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done_callback)
        return task

    def _task_done_callback(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Background execution task raised unexpected error: %s", exc)

    async def _run_execution(self, execution: ScheduleExecution) -> ScheduleExecution:
        execution.status = ExecutionStatus.RUNNING
        execution.started_at = self._clock().isoformat()
        execution.next_retry_at = None
        execution.error = None
        started = time.monotonic()
        logger.info("Executing workflow %s for %s (attempt %d)", execution.workflow_id, execution.schedule_id, execution.retry_count + 1)

        try:
            graph = self._workflows.get(execution.workflow_id)
            if graph is None:
                raise ValidationError(f"Workflow {execution.workflow_id!r} is not registered")
            variables = dict(execution.payload)
            variables.update(schedule_id=execution.schedule_id, execution_id=execution.id)
            context = await self._executor.execute_workflow(graph, variables=variables)
        except Exception as exc:
            self._finish(execution, ExecutionStatus.FAILED, started, error=str(exc))
            logger.error("Scheduled workflow %s failed: %s", execution.workflow_id, exc)
            self._after_failure(execution)
            return execution

        self._finish(
            execution,
            ExecutionStatus.COMPLETED,
            started,
            result={
                "success": True,
                "message": "Workflow completed successfully",
                "metrics": context.metrics,
            },
        )
        logger.info("Scheduled workflow completed: %s", execution.workflow_id)
        return execution

    def _finish(
        self,
        execution: ScheduleExecution,
        status: ExecutionStatus,
        started: float,
        result: Any = None,
        error: str | None = None,
    ) -> None:
        execution.status = status
        execution.completed_at = self._clock().isoformat()
        execution.duration_ms = (time.monotonic() - started) * 1000
        execution.result = result
        execution.error = error
        self._auto_save_executions()

    def _after_failure(self, execution: ScheduleExecution) -> None:
        schedule = self._schedules.get(execution.schedule_id)
        policy = schedule.retry_policy if schedule is not None else None
        if policy is None:
            return

        if not should_retry(execution.retry_count, policy):
            exhausted = ScheduleRetryExhausted(execution.schedule_id, execution.retry_count, execution.error)
            execution.error = str(exhausted)
            logger.error("%s", exhausted)
            self._auto_save_executions()
            return

        execution.retry_count += 1
        delay_ms = compute_backoff_delay(execution.retry_count, policy, self._retry_base_ms)
        execution.status = ExecutionStatus.SCHEDULED
        execution.next_retry_at = (self._clock() + timedelta(milliseconds=delay_ms)).isoformat()
        self._auto_save_executions()
        logger.info(
            "Scheduling retry %d/%d for execution %s in %dms",
            execution.retry_count,
            policy.max_attempts,
            execution.id,
            delay_ms,
        )
        self._retry_tasks[execution.id] = self._spawn(self._retry_later(execution, delay_ms))

    async def _retry_later(self, execution: ScheduleExecution, delay_ms: int) -> None:
        try:
            await self._sleep(delay_ms / 1000)
        except asyncio.CancelledError:
            self._skip_retry(execution, "Retry cancelled")
            raise
        finally:
            self._retry_tasks.pop(execution.id, None)

        schedule = self._schedules.get(execution.schedule_id)
        if schedule is None or not schedule.enabled:
            self._skip_retry(execution, "Schedule removed or disabled before retry")
            return
        await self._run_execution(execution)

    def _skip_retry(self, execution: ScheduleExecution, reason: str) -> None:
        """Finish a pending retry as skipped. No-op once the execution left ``scheduled``."""
        if execution.status is not ExecutionStatus.SCHEDULED:
            return
        execution.status = ExecutionStatus.SKIPPED
        execution.next_retry_at = None
        execution.completed_at = self._clock().isoformat()
        execution.error = reason
        self._auto_save_executions()

    def _record(self, execution: ScheduleExecution) -> None:
        self._executions[execution.id] = execution
        overflow = len(self._executions) - self._history_limit
        if overflow > 0:
            for old_id in [e.id for e in self._executions.values() if e.finished][:overflow]:
                del self._executions[old_id]
        self._auto_save_executions()

    # ------------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------------

    def create_webhook(
        self,
        workflow_id: str,
        *,
        url: str = "",
        secret: str = "",
        method: str = "POST",
        headers: dict[str, str] | None = None,
        conditions: Iterable[WebhookCondition | dict] | None = None,
        enabled: bool = True,
    ) -> WebhookTrigger:
        webhook = WebhookTrigger(
            id=new_id("webhook"),
            workflow_id=workflow_id,
            url=url,
            secret=secret,
            method=method.upper(),
            headers=dict(headers or {}),
            conditions=[c if isinstance(c, WebhookCondition) else WebhookCondition(**c) for c in conditions or []],
            enabled=enabled,
            created_at=self._clock().isoformat(),
        )
        self._webhooks[webhook.id] = webhook
        self.save()
        logger.info("Created webhook trigger: %s", webhook.id)
        return webhook

    def get_webhook(self, webhook_id: str) -> WebhookTrigger | None:
        return self._webhooks.get(webhook_id)

    def list_webhooks(self) -> list[WebhookTrigger]:
        return list(self._webhooks.values())

    def delete_webhook(self, webhook_id: str) -> bool:
        removed = self._webhooks.pop(webhook_id, None) is not None
        if removed:
            self.save()
        return removed

    async def handle_webhook(
        self,
        webhook_id: str,
        payload: Any,
        headers: dict[str, str] | None = None,
    ) -> WebhookResponse:
        """Match an inbound request and dispatch its workflow without waiting for it."""
        webhook = self._webhooks.get(webhook_id)
        if webhook is None or not webhook.enabled:
            return WebhookResponse(success=False, message="Webhook not found or disabled")

        if webhook.secret:
            supplied = {k.lower(): v for k, v in (headers or {}).items()}.get(WEBHOOK_SECRET_HEADER.lower(), "")
            if not hmac.compare_digest(str(supplied), webhook.secret):
                logger.warning("Webhook %s rejected: bad secret", webhook_id)
                return WebhookResponse(success=False, message="Invalid webhook secret")

        if not matches_webhook_conditions(webhook.conditions, payload):
            return WebhookResponse(success=False, message="Webhook conditions not met")

        body = payload if isinstance(payload, dict) else {"payload": payload}
        execution = self._fire(webhook.id, webhook.workflow_id, ScheduleType.WEBHOOK, self._clock(), body)
        logger.info("Webhook triggered workflow: %s", webhook.workflow_id)
        return WebhookResponse(success=True, message="Workflow execution dispatched", execution_id=execution.id)

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def create_event_trigger(
        self,
        workflow_id: str,
        event_type: str,
        source: str = "system",
        filters: dict[str, Any] | None = None,
        enabled: bool = True,
    ) -> EventTrigger:
        trigger = EventTrigger(
            id=new_id("event"),
            workflow_id=workflow_id,
            event_type=event_type,
            source=source,
            filters=dict(filters or {}),
            enabled=enabled,
            created_at=self._clock().isoformat(),
        )
        self._event_triggers[trigger.id] = trigger
        self.save()
        logger.info("Created event trigger: %s", trigger.id)
        return trigger

    def list_event_triggers(self) -> list[EventTrigger]:
        return list(self._event_triggers.values())

    def delete_event_trigger(self, trigger_id: str) -> bool:
        removed = self._event_triggers.pop(trigger_id, None) is not None
        if removed:
            self.save()
        return removed

    async def emit_event(self, event_type: str, source: str, data: Any = None) -> EventDispatch:
        """Dispatch one execution for every enabled trigger matching the event."""
        dispatch = EventDispatch()
        now = self._clock()
        for trigger in list(self._event_triggers.values()):
            if not trigger.enabled or trigger.event_type != event_type or trigger.source != source:
                continue
            if not matches_event_filters(trigger.filters, data):
                continue
            body = data if isinstance(data, dict) else {"data": data}
            execution = self._fire(trigger.id, trigger.workflow_id, ScheduleType.EVENT, now, body)
            dispatch.triggered_workflows.append(trigger.workflow_id)
            dispatch.execution_ids.append(execution.id)
            logger.info("Event %s triggered workflow: %s", event_type, trigger.workflow_id)
        return dispatch

    # ------------------------------------------------------------------
    # History and analytics
    # ------------------------------------------------------------------

    def get_execution(self, execution_id: str) -> ScheduleExecution | None:
        return self._executions.get(execution_id)

    def get_execution_history(self, schedule_id: str | None = None, limit: int = 50) -> list[ScheduleExecution]:
        """Executions newest first, optionally for one schedule."""
        indexed = [
            (i, e)
            for i, e in enumerate(self._executions.values())
            if schedule_id is None or e.schedule_id == schedule_id
        ]
        indexed.sort(key=lambda pair: (parse_iso(pair[1].scheduled_at), pair[0]), reverse=True)
        return [e for _, e in indexed[:limit]]

    def get_execution_metrics(self, schedule_id: str | None = None) -> dict[str, float]:
        executions = [
            e for e in self._executions.values() if schedule_id is None or e.schedule_id == schedule_id
        ]
        completed = [e for e in executions if e.status is ExecutionStatus.COMPLETED]
        failed = [e for e in executions if e.status is ExecutionStatus.FAILED]
        durations = [e.duration_ms for e in completed if e.duration_ms]
        total = len(executions)
        return {
            "total_executions": total,
            "successful_executions": len(completed),
            "failed_executions": len(failed),
            "success_rate": (len(completed) / total * 100) if total else 0.0,
            "average_duration_ms": (sum(durations) / len(durations)) if durations else 0.0,
        }

    def get_next_scheduled_run(self, schedule_id: str, after: datetime | None = None) -> datetime | None:
        """Next firing time for a polled schedule, or None."""
        schedule = self._schedules.get(schedule_id)
        if schedule is None or not schedule.enabled:
            return None
        after = after or self._clock()

        if schedule.type is ScheduleType.INTERVAL:
            last = self._last_fired.get(schedule_id)
            if last is None:
                return after
            return max(after, last + timedelta(milliseconds=parse_interval(schedule.schedule)))

        if schedule.type not in (ScheduleType.CRON, ScheduleType.CONDITIONAL) or not schedule.schedule:
            return None

        cron = CronExpression(schedule.schedule)
        candidate = self._local_time(schedule, after)
        for _ in range(_CONDITIONAL_SEARCH_LIMIT):
            try:
                candidate = cron.next_run(candidate)
            except ValueError:
                return None
            if schedule.type is ScheduleType.CRON or evaluate_schedule_conditions(schedule.conditions, candidate):
                return candidate.astimezone(after.tzinfo) if after.tzinfo else candidate
        return None

    @staticmethod
    def validate_cron_expression(expression: str) -> bool:
        return validate_cron_expression(expression)

    @staticmethod
    def get_schedule_templates() -> list[ScheduleTemplate]:
        return list(SCHEDULE_TEMPLATES)
