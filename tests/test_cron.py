"""Unit tests for cron expressions, intervals, backoff and trigger predicates."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from autoflow.scheduling.cron import CronExpression, CronField, is_interval, parse_interval, validate_cron_expression
from autoflow.scheduling.retry import compute_backoff_delay, should_retry
from autoflow.scheduling.triggers import (
    evaluate_schedule_conditions,
    get_nested,
    matches_event_filters,
    matches_webhook_conditions,
)
from autoflow.scheduling.types import (
    ConditionOperator,
    ConditionType,
    RetryPolicy,
    ScheduleCondition,
    WebhookCondition,
)

UTC = timezone.utc
MONDAY_9AM = datetime(2024, 1, 1, 9, 0, tzinfo=UTC)
SATURDAY_NOON = datetime(2024, 1, 6, 12, 30, tzinfo=UTC)


class TestCronField:
    def test_star_step(self):
        assert CronField("*/15", 0, 59).values == frozenset({0, 15, 30, 45})

    def test_list_and_range(self):
        assert CronField("1,3,10-12", 0, 59).values == frozenset({1, 3, 10, 11, 12})

    def test_range_step(self):
        assert CronField("10-30/10", 0, 59).values == frozenset({10, 20, 30})

    @pytest.mark.parametrize("expr", ["60", "5-2", "*/0", "a", "1,,2"])
    def test_invalid(self, expr):
        with pytest.raises(ValueError):
            CronField(expr, 0, 59)


class TestCronExpression:
    def test_matches_all_fields(self):
        cron = CronExpression("0 9 * * 1-5")
        assert cron.matches(MONDAY_9AM)
        assert not cron.matches(MONDAY_9AM.replace(minute=1))
        assert not cron.matches(datetime(2024, 1, 7, 9, 0, tzinfo=UTC))

    def test_sunday_is_zero(self):
        assert CronExpression("0 0 * * 0").matches(datetime(2024, 1, 7, 0, 0, tzinfo=UTC))

    def test_next_run(self):
        cron = CronExpression("30 12 * * *")
        assert cron.next_run(MONDAY_9AM) == datetime(2024, 1, 1, 12, 30, tzinfo=UTC)
        assert cron.next_run(datetime(2024, 1, 1, 12, 30, tzinfo=UTC)) == datetime(2024, 1, 2, 12, 30, tzinfo=UTC)

    def test_next_run_impossible(self):
        with pytest.raises(ValueError, match="No matching time"):
            CronExpression("0 0 31 2 *").next_run(MONDAY_9AM)

    def test_validate(self):
        assert validate_cron_expression("*/5 * * * *")
        assert not validate_cron_expression("* * * *")
        assert not validate_cron_expression("0 24 * * *")


class TestInterval:
    @pytest.mark.parametrize(
        "text,expected",
        [("30s", 30_000), ("15m", 900_000), ("1h", 3_600_000), ("2d", 172_800_000)],
    )
    def test_parse(self, text, expected):
        assert is_interval(text)
        assert parse_interval(text) == expected

    def test_unparseable_uses_default(self):
        assert not is_interval("5 minutes")
        assert parse_interval("5 minutes") == 60_000
        assert parse_interval("", default=5) == 5


class TestBackoff:
    def test_exponential(self):
        policy = RetryPolicy(max_attempts=5, backoff_multiplier=2, max_delay_ms=60_000)
        assert [compute_backoff_delay(n, policy, 1000) for n in (1, 2, 3)] == [1000, 2000, 4000]

    def test_capped(self):
        policy = RetryPolicy(backoff_multiplier=10, max_delay_ms=5000)
        assert compute_backoff_delay(3, policy, 1000) == 5000

    def test_attempt_is_one_based(self):
        with pytest.raises(ValueError):
            compute_backoff_delay(0, RetryPolicy())

    def test_should_retry(self):
        policy = RetryPolicy(max_attempts=2)
        assert should_retry(0, policy)
        assert should_retry(1, policy)
        assert not should_retry(2, policy)
        assert not should_retry(0, None)


class TestScheduleConditions:
    def test_empty_never_fires(self):
        assert not evaluate_schedule_conditions([], MONDAY_9AM)

    def test_day_list(self):
        weekdays = ScheduleCondition(ConditionType.DAY, value=["monday", "tuesday"])
        assert evaluate_schedule_conditions([weekdays], MONDAY_9AM)
        assert not evaluate_schedule_conditions([weekdays], SATURDAY_NOON)

    def test_time_between_and_after(self):
        office = ScheduleCondition(ConditionType.TIME, ConditionOperator.BETWEEN, ["08:00", "17:00"])
        assert evaluate_schedule_conditions([office], MONDAY_9AM)
        late = ScheduleCondition(ConditionType.TIME, ConditionOperator.AFTER, "12:00")
        assert not evaluate_schedule_conditions([office, late], MONDAY_9AM)
        assert evaluate_schedule_conditions([late], SATURDAY_NOON)

    def test_date_before(self):
        cond = ScheduleCondition(ConditionType.DATE, ConditionOperator.BEFORE, "2024-01-05")
        assert evaluate_schedule_conditions([cond], MONDAY_9AM)
        assert not evaluate_schedule_conditions([cond], SATURDAY_NOON)

    def test_between_needs_two_values(self):
        cond = ScheduleCondition(ConditionType.TIME, ConditionOperator.BETWEEN, "09:00")
        assert not evaluate_schedule_conditions([cond], MONDAY_9AM)


class TestWebhookAndEventMatching:
    payload = {"order": {"status": "paid", "tags": "vip,new"}, "amount": 0}

    def test_get_nested(self):
        assert get_nested(self.payload, "order.status") == "paid"
        assert get_nested(self.payload, "order.missing", "x") == "x"

    def test_operators(self):
        assert matches_webhook_conditions([WebhookCondition("order.status", "equals", "paid")], self.payload)
        assert matches_webhook_conditions([WebhookCondition("order.tags", "contains", "vip")], self.payload)
        assert matches_webhook_conditions([WebhookCondition("amount", "exists")], self.payload)
        assert not matches_webhook_conditions([WebhookCondition("refund", "exists")], self.payload)
        assert not matches_webhook_conditions([WebhookCondition("amount", "greater", 1)], self.payload)

    def test_all_conditions_required(self):
        conditions = [
            WebhookCondition("order.status", "equals", "paid"),
            WebhookCondition("order.status", "equals", "shipped"),
        ]
        assert not matches_webhook_conditions(conditions, self.payload)
        assert matches_webhook_conditions([], self.payload)

    def test_event_filters(self):
        assert matches_event_filters({}, None)
        assert matches_event_filters({"kind": "signup"}, {"kind": "signup", "plan": "pro"})
        assert not matches_event_filters({"kind": "signup"}, {"kind": "login"})
        assert not matches_event_filters({"kind": "signup"}, "signup")
