"""Unit tests for Scheduler (fake clock, fake sleep, in-memory store)."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import pytest

from autoflow.capture.store import MemoryStore
from autoflow.errors import ScheduleNotFoundError, ValidationError
from autoflow.scheduling.scheduler import Scheduler
from autoflow.scheduling.types import ExecutionStatus, RetryPolicy, ScheduleType
from autoflow.workflow.executor import WorkflowExecutor
from autoflow.workflow.graph import WorkflowGraph
from autoflow.workflow.services import FunctionCapability, ServiceRegistry
from autoflow.workflow.types import NodeType

UTC = timezone.utc
MONDAY_10AM = datetime(2024, 1, 1, 10, 0, tzinfo=UTC)


def _has_zone(name: str) -> bool:
    try:
        ZoneInfo(name)
    except ZoneInfoNotFoundError:
        return False
    return True


class FakeClock:
    def __init__(self, now: datetime = MONDAY_10AM):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class FakeSleep:
    def __init__(self):
        self.calls = []

    async def __call__(self, seconds):
        self.calls.append(seconds)
        await asyncio.sleep(0)


def make_workflow(graph_id="wf-report", operation="run") -> WorkflowGraph:
    graph = WorkflowGraph(graph_id, name="Report")
    graph.add_node("trigger", NodeType.TRIGGER)
    config = {
        "action": operation,
        "schedule_id": "{{variables.schedule_id}}",
        "order": "{{variables.order}}",
    }
    graph.add_node("act", NodeType.ACTION, service="svc", config=config)
    graph.connect("trigger", "act")
    return graph


class TestScheduler:
    def setup_method(self):
        self.calls = []
        self.failures_left = 0

        def run(params):
            self.calls.append(params)
            if self.failures_left:
                self.failures_left -= 1
                raise RuntimeError("upstream unavailable")
            return {"ok": True}

        def always_fail(params):
            self.calls.append(params)
            raise RuntimeError("upstream unavailable")

        registry = ServiceRegistry()
        registry.register_instance("svc", FunctionCapability({"run": run, "fail": always_fail}))
        self.clock = FakeClock()
        self.sleep = FakeSleep()
        self.store = MemoryStore()
        self.scheduler = Scheduler(
            WorkflowExecutor(registry),
            store=self.store,
            clock=self.clock,
            sleep=self.sleep,
        )
        self.scheduler.register_workflow(make_workflow())
        self.scheduler.register_workflow(make_workflow("wf-flaky", operation="fail"))

    # ------------------------------------------------------------------ CRUD

    def test_create_and_list(self):
        s = self.scheduler.create_schedule("wf-report", "Daily", ScheduleType.CRON, "0 9 * * *")
        assert s.id.startswith("schedule_")
        assert self.scheduler.get_schedule(s.id) is s
        assert self.scheduler.get_schedules_by_workflow("wf-report") == [s]
        assert self.store.get("schedules")[0]["schedule"] == "0 9 * * *"

    @pytest.mark.parametrize(
        "schedule_type,schedule,kwargs",
        [
            ("cron", "0 25 * * *", {}),
            ("interval", "every minute", {}),
            ("conditional", "0 10 * * *", {}),
            ("cron", "0 9 * * *", {"timezone": "Mars/Olympus_Mons"}),
            ("cron", "0 9 * * *", {"retry_policy": {"max_attempts": -1}}),
        ],
    )
    def test_invalid_schedules_rejected(self, schedule_type, schedule, kwargs):
        with pytest.raises(ValidationError):
            self.scheduler.create_schedule("wf-report", "Bad", schedule_type, schedule, **kwargs)

    def test_update(self):
        s = self.scheduler.create_schedule("wf-report", "Daily", "cron", "0 9 * * *")
        updated = self.scheduler.update_schedule(s.id, schedule="30 8 * * *", retry_policy={"max_attempts": 1})
        assert updated.schedule == "30 8 * * *"
        assert updated.retry_policy == RetryPolicy(max_attempts=1)
        with pytest.raises(ValidationError):
            self.scheduler.update_schedule(s.id, schedule="nope")
        with pytest.raises(ValidationError):
            self.scheduler.update_schedule(s.id, id="other")
        with pytest.raises(ScheduleNotFoundError):
            self.scheduler.update_schedule("schedule_missing", name="x")

    def test_enable_disable_delete(self):
        s = self.scheduler.create_schedule("wf-report", "Daily", "cron", "0 9 * * *")
        assert self.scheduler.disable_schedule(s.id)
        assert self.scheduler.list_schedules(enabled_only=True) == []
        assert self.scheduler.enable_schedule(s.id)
        assert self.scheduler.delete_schedule(s.id)
        assert not self.scheduler.delete_schedule(s.id)
        assert not self.scheduler.enable_schedule(s.id)

    def test_templates(self):
        names = [t.name for t in self.scheduler.get_schedule_templates()]
        assert names == [
            "Daily Morning",
            "Business Hours",
            "Weekly Report",
            "Every 15 Minutes",
            "Hourly",
            "Business Days Only",
        ]
        s = self.scheduler.create_schedule_from_template("Business Days Only", "wf-report")
        assert s.type is ScheduleType.CONDITIONAL
        assert s.conditions[0].value == ["monday", "tuesday", "wednesday", "thursday", "friday"]
        with pytest.raises(ValidationError):
            self.scheduler.create_schedule_from_template("Nope", "wf-report")

    # ------------------------------------------------------------------ polling

    @pytest.mark.asyncio
    async def test_cron_fires_once_per_minute(self):
        s = self.scheduler.create_schedule("wf-report", "Ten", "cron", "0 10 * * *")
        fired = await self.scheduler.tick(MONDAY_10AM)
        assert [e.schedule_id for e in fired] == [s.id]
        assert await self.scheduler.tick(MONDAY_10AM + timedelta(seconds=30)) == []
        assert await self.scheduler.tick(MONDAY_10AM + timedelta(minutes=1)) == []
        await self.scheduler.wait_idle()
        assert fired[0].status is ExecutionStatus.COMPLETED
        assert fired[0].result["success"] is True
        assert self.calls[0]["schedule_id"] == s.id

    @pytest.mark.asyncio
    async def test_interval(self):
        self.scheduler.create_schedule("wf-report", "Quarter", "interval", "15m")
        assert len(await self.scheduler.tick(MONDAY_10AM)) == 1
        assert await self.scheduler.tick(MONDAY_10AM + timedelta(minutes=14)) == []
        assert len(await self.scheduler.tick(MONDAY_10AM + timedelta(minutes=15))) == 1
        await self.scheduler.wait_idle()

    @pytest.mark.asyncio
    async def test_conditional(self):
        self.scheduler.create_schedule_from_template("Business Days Only", "wf-report")
        saturday = datetime(2024, 1, 6, 10, 0, tzinfo=UTC)
        assert await self.scheduler.tick(saturday) == []
        assert len(await self.scheduler.tick(MONDAY_10AM)) == 1
        await self.scheduler.wait_idle()

    @pytest.mark.asyncio
    async def test_disabled_never_fires(self):
        s = self.scheduler.create_schedule("wf-report", "Ten", "cron", "0 10 * * *", enabled=False)
        assert await self.scheduler.tick(MONDAY_10AM) == []
        assert self.scheduler.get_next_scheduled_run(s.id) is None

    @pytest.mark.skipif(not _has_zone("America/New_York"), reason="tz database unavailable")
    @pytest.mark.asyncio
    async def test_timezone(self):
        self.scheduler.create_schedule("wf-report", "Nine NY", "cron", "0 9 * * *", timezone="America/New_York")
        assert await self.scheduler.tick(MONDAY_10AM) == []
        assert len(await self.scheduler.tick(datetime(2024, 1, 1, 14, 0, tzinfo=UTC))) == 1
        await self.scheduler.wait_idle()

    @pytest.mark.asyncio
    async def test_unregistered_workflow_fails(self):
        s = self.scheduler.create_schedule("wf-missing", "Ghost", "cron", "0 10 * * *")
        execution = await self.scheduler.run_now(s.id)
        assert execution.status is ExecutionStatus.FAILED
        assert "not registered" in execution.error

    # ------------------------------------------------------------------ retry

    @pytest.mark.asyncio
    async def test_retry_until_exhausted(self):
        s = self.scheduler.create_schedule(
            "wf-flaky", "Flaky", "cron", "0 10 * * *", retry_policy=RetryPolicy(max_attempts=3)
        )
        execution = await self.scheduler.run_now(s.id)
        assert execution.status is ExecutionStatus.SCHEDULED
        assert execution.next_retry_at is not None

        await self.scheduler.wait_idle()
        assert self.sleep.calls == [1.0, 2.0, 4.0]
        assert len(self.calls) == 4
        assert execution.status is ExecutionStatus.FAILED
        assert execution.retry_count == 3
        assert "failed after 3 retries" in execution.error
        assert "upstream unavailable" in execution.error

    @pytest.mark.asyncio
    async def test_retry_recovers(self):
        self.failures_left = 1
        s = self.scheduler.create_schedule(
            "wf-report", "Daily", "cron", "0 10 * * *", retry_policy=RetryPolicy(max_attempts=3)
        )
        execution = await self.scheduler.run_now(s.id)
        await self.scheduler.wait_idle()
        assert execution.status is ExecutionStatus.COMPLETED
        assert execution.retry_count == 1
        assert execution.error is None
        assert self.sleep.calls == [1.0]

    @pytest.mark.asyncio
    async def test_retry_skipped_when_disabled(self):
        s = self.scheduler.create_schedule(
            "wf-flaky", "Flaky", "cron", "0 10 * * *", retry_policy=RetryPolicy(max_attempts=3)
        )
        execution = await self.scheduler.run_now(s.id)
        self.scheduler.disable_schedule(s.id)
        await self.scheduler.wait_idle()
        assert execution.status is ExecutionStatus.SKIPPED
        assert len(self.calls) == 1

    @pytest.mark.asyncio
    async def test_delete_skips_pending_retry(self):
        s = self.scheduler.create_schedule(
            "wf-flaky", "Flaky", "cron", "0 10 * * *", retry_policy=RetryPolicy(max_attempts=3)
        )
        execution = await self.scheduler.run_now(s.id)
        assert execution.status is ExecutionStatus.SCHEDULED

        self.scheduler.delete_schedule(s.id)
        assert execution.status is ExecutionStatus.SKIPPED
        assert execution.next_retry_at is None
        await self.scheduler.wait_idle()
        assert execution.status is ExecutionStatus.SKIPPED
        assert len(self.calls) == 1

    @pytest.mark.asyncio
    async def test_shutdown_skips_pending_retry(self):
        s = self.scheduler.create_schedule(
            "wf-flaky", "Flaky", "cron", "0 10 * * *", retry_policy=RetryPolicy(max_attempts=3)
        )
        execution = await self.scheduler.run_now(s.id)
        await self.scheduler.shutdown()
        assert execution.status is ExecutionStatus.SKIPPED
        assert execution.completed_at is not None
        assert self.store.get("schedule_executions")[-1]["status"] == "skipped"

    @pytest.mark.asyncio
    async def test_no_policy_no_retry(self):
        s = self.scheduler.create_schedule("wf-flaky", "Flaky", "cron", "0 10 * * *")
        execution = await self.scheduler.run_now(s.id)
        await self.scheduler.wait_idle()
        assert execution.status is ExecutionStatus.FAILED
        assert self.sleep.calls == []

    # ------------------------------------------------------------------ webhooks / events

    @pytest.mark.asyncio
    async def test_webhook_conditions_and_secret(self):
        hook = self.scheduler.create_webhook(
            "wf-report",
            secret="s3cret",
            conditions=[{"field": "order.status", "operator": "equals", "value": "paid"}],
        )
        headers = {"x-webhook-secret": "s3cret"}

        denied = await self.scheduler.handle_webhook(hook.id, {"order": {"status": "paid"}}, {"X-Webhook-Secret": "bad"})
        assert not denied.success

        unmet = await self.scheduler.handle_webhook(hook.id, {"order": {"status": "open"}}, headers)
        assert unmet.message == "Webhook conditions not met"

        accepted = await self.scheduler.handle_webhook(hook.id, {"order": {"status": "paid"}}, headers)
        assert accepted.success
        await self.scheduler.wait_idle()
        execution = self.scheduler.get_execution(accepted.execution_id)
        assert execution.trigger is ScheduleType.WEBHOOK
        assert execution.status is ExecutionStatus.COMPLETED
        assert self.calls[-1]["order"] == {"status": "paid"}

    @pytest.mark.asyncio
    async def test_unknown_webhook(self):
        response = await self.scheduler.handle_webhook("webhook_missing", {})
        assert not response.success

    @pytest.mark.asyncio
    async def test_emit_event(self):
        self.scheduler.create_event_trigger("wf-report", "user.signup", "user", {"plan": "pro"})
        self.scheduler.create_event_trigger("wf-report", "user.signup", "system")

        miss = await self.scheduler.emit_event("user.signup", "user", {"plan": "free"})
        assert miss.triggered_workflows == []

        hit = await self.scheduler.emit_event("user.signup", "user", {"plan": "pro"})
        assert hit.triggered_workflows == ["wf-report"]
        await self.scheduler.wait_idle()
        assert self.scheduler.get_execution(hit.execution_ids[0]).status is ExecutionStatus.COMPLETED

    # ------------------------------------------------------------------ history / analytics

    @pytest.mark.asyncio
    async def test_history_and_metrics(self):
        ok = self.scheduler.create_schedule("wf-report", "Ok", "cron", "0 10 * * *")
        bad = self.scheduler.create_schedule("wf-flaky", "Bad", "cron", "0 10 * * *")
        first = await self.scheduler.run_now(ok.id)
        self.clock.now = MONDAY_10AM + timedelta(minutes=1)
        second = await self.scheduler.run_now(bad.id)

        history = self.scheduler.get_execution_history()
        assert [e.id for e in history] == [second.id, first.id]
        assert self.scheduler.get_execution_history(ok.id) == [first]
        assert len(self.scheduler.get_execution_history(limit=1)) == 1

        metrics = self.scheduler.get_execution_metrics()
        assert metrics["total_executions"] == 2
        assert metrics["successful_executions"] == 1
        assert metrics["failed_executions"] == 1
        assert metrics["success_rate"] == 50.0

    def test_next_scheduled_run(self):
        cron = self.scheduler.create_schedule("wf-report", "Daily", "cron", "0 9 * * *")
        assert self.scheduler.get_next_scheduled_run(cron.id) == datetime(2024, 1, 2, 9, 0, tzinfo=UTC)

        cond = self.scheduler.create_schedule_from_template("Business Days Only", "wf-report")
        friday = datetime(2024, 1, 5, 11, 0, tzinfo=UTC)
        assert self.scheduler.get_next_scheduled_run(cond.id, friday) == datetime(2024, 1, 8, 10, 0, tzinfo=UTC)

        interval = self.scheduler.create_schedule("wf-report", "Hourly", "interval", "1h")
        assert self.scheduler.get_next_scheduled_run(interval.id) == MONDAY_10AM

    # ------------------------------------------------------------------ persistence / lifecycle

    @pytest.mark.asyncio
    async def test_state_survives_reload(self):
        s = self.scheduler.create_schedule("wf-report", "Ten", "cron", "0 10 * * *")
        hook = self.scheduler.create_webhook("wf-report")
        await self.scheduler.run_now(s.id)

        reloaded = Scheduler(store=self.store, clock=self.clock)
        assert reloaded.get_schedule(s.id).schedule == "0 10 * * *"
        assert reloaded.get_webhook(hook.id) is not None
        assert len(reloaded.get_execution_history(s.id)) == 1
        # Already fired this minute before the reload
        assert await reloaded.tick(MONDAY_10AM) == []

    @pytest.mark.asyncio
    async def test_history_limit(self):
        scheduler = Scheduler(store=MemoryStore(), clock=self.clock, history_limit=3)
        s = scheduler.create_schedule("wf-missing", "Ghost", "cron", "0 10 * * *")
        for _ in range(5):
            await scheduler.run_now(s.id)
        assert len(scheduler.get_execution_history()) == 3

    @pytest.mark.asyncio
    async def test_start_and_shutdown(self):
        s = self.scheduler.create_schedule("wf-report", "Ten", "cron", "0 10 * * *")
        await self.scheduler.start()
        assert self.scheduler.running
        for _ in range(5):
            await asyncio.sleep(0)
        await self.scheduler.shutdown()
        assert not self.scheduler.running
        assert self.scheduler.get_execution_history(s.id)
        assert self.sleep.calls and self.sleep.calls[0] == 60.0

    @pytest.mark.asyncio
    async def test_tick_sleeps_to_next_minute_boundary(self):
        self.clock.now = MONDAY_10AM + timedelta(seconds=45)
        await self.scheduler.start()
        for _ in range(5):
            await asyncio.sleep(0)
        await self.scheduler.shutdown()
        assert self.sleep.calls[0] == pytest.approx(15.0)
