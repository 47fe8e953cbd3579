"""Five-field cron expressions and interval strings."""

from __future__ import annotations

import logging
import re
from datetime import datetime, timedelta

logger = logging.getLogger(__name__)

_INTERVAL_RE = re.compile(r"^(\d+)([smhd])$")

_UNIT_MS = {
    "s": 1000,
    "m": 60 * 1000,
    "h": 60 * 60 * 1000,
    "d": 24 * 60 * 60 * 1000,
}

DEFAULT_INTERVAL_MS = 60_000


class CronField:
    """
    One field of a cron expression.

    Supports ``*``, single values, ranges (``1-5``), lists (``1,3,5``) and
    steps (``*/15``, ``10-30/5``). Values outside ``[min_val, max_val]``
    raise ValueError.
    """

    def __init__(self, expression: str, min_val: int, max_val: int) -> None:
        self.expression = expression
        self.min_val = min_val
        self.max_val = max_val
        self.values: frozenset[int] = frozenset(self._parse(expression))

    def _parse(self, expr: str) -> set[int]:
        values: set[int] = set()
        for part in expr.split(","):
            part = part.strip()
            if not part:
                raise ValueError(f"Empty list item in cron field {expr!r}")

            step = 1
            if "/" in part:
                part, step_str = part.split("/", 1)
                step = int(step_str)
                if step < 1:
                    raise ValueError(f"Cron step must be positive in {expr!r}")

            if part == "*":
                start, end = self.min_val, self.max_val
            elif "-" in part:
                start_str, end_str = part.split("-", 1)
                start, end = int(start_str), int(end_str)
            else:
                start = end = int(part)
                if step != 1:
                    end = self.max_val

            for bound in (start, end):
                if not self.min_val <= bound <= self.max_val:
                    raise ValueError(
                        f"Cron value {bound} out of range {self.min_val}-{self.max_val} in {expr!r}"
                    )
            if start > end:
                raise ValueError(f"Cron range {start}-{end} is reversed in {expr!r}")
            values.update(range(start, end + 1, step))
        return values

    def matches(self, value: int) -> bool:
        return value in self.values

    def __repr__(self) -> str:
        return f"CronField({self.expression!r}, values={sorted(self.values)})"


class CronExpression:
    """
    ``minute hour day-of-month month day-of-week``; day-of-week 0 is Sunday.

    All five fields must match. Datetimes are evaluated as given, so
    convert to the schedule's timezone first.
    """

    def __init__(self, expression: str) -> None:
        self.expression = expression.strip()
        parts = self.expression.split()
        if len(parts) != 5:
            raise ValueError(
                f"Cron expression must have exactly 5 fields "
                f"(minute hour dom month dow), got {len(parts)}: {self.expression!r}"
            )
        self.minute = CronField(parts[0], 0, 59)
        self.hour = CronField(parts[1], 0, 23)
        self.day_of_month = CronField(parts[2], 1, 31)
        self.month = CronField(parts[3], 1, 12)
        self.day_of_week = CronField(parts[4], 0, 6)

    def matches(self, dt: datetime) -> bool:
        # Python weekday(): Mon=0..Sun=6; cron: Sun=0..Sat=6
        cron_weekday = (dt.weekday() + 1) % 7
        return (
            self.minute.matches(dt.minute)
            and self.hour.matches(dt.hour)
            and self.day_of_month.matches(dt.day)
            and self.month.matches(dt.month)
            and self.day_of_week.matches(cron_weekday)
        )

    def next_run(self, after: datetime) -> datetime:
        """
        First matching minute strictly after ``after``.

        Searches minute by minute up to 366 days and raises ValueError if
        nothing matches (e.g. ``0 0 31 2 *``).
        """
        candidate = after.replace(second=0, microsecond=0) + timedelta(minutes=1)
        for _ in range(366 * 24 * 60):
            if self.matches(candidate):
                return candidate
            candidate += timedelta(minutes=1)
        raise ValueError(
            f"No matching time found for cron expression {self.expression!r} "
            f"within 366 days after {after.isoformat()}"
        )

    def __repr__(self) -> str:
        return f"CronExpression({self.expression!r})"

    def __str__(self) -> str:
        return self.expression


def validate_cron_expression(expression: str) -> bool:
    try:
        CronExpression(expression)
    except ValueError:
        return False
    return True


def is_interval(text: str) -> bool:
    return bool(_INTERVAL_RE.match((text or "").strip()))


def parse_interval(text: str, default: int = DEFAULT_INTERVAL_MS) -> int:
    """Parse ``30s``, ``15m``, ``1h`` or ``2d`` into milliseconds."""
    match = _INTERVAL_RE.match((text or "").strip())
    if match is None:
        logger.warning("Unparseable interval %r, using %dms", text, default)
        return default
    value, unit = match.groups()
    return int(value) * _UNIT_MS[unit]
