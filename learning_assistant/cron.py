"""Five-field cron expressions.

Supports ``*``, single values, ``a-b`` ranges, ``/n`` steps, comma lists and
three-letter month/weekday names. When both day-of-month and day-of-week are
restricted a day matches if either field matches, as in classic cron.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

_MONTH_NAMES = {
    name: index
    for index, name in enumerate(
        ["jan", "feb", "mar", "apr", "may", "jun", "jul", "aug", "sep", "oct", "nov", "dec"], start=1
    )
}
_WEEKDAY_NAMES = {name: index for index, name in enumerate(["sun", "mon", "tue", "wed", "thu", "fri", "sat"])}

# (low, high, names) per field: minute, hour, day-of-month, month, day-of-week.
_FIELDS: list[tuple[int, int, dict[str, int]]] = [
    (0, 59, {}),
    (0, 23, {}),
    (1, 31, {}),
    (1, 12, _MONTH_NAMES),
    (0, 7, _WEEKDAY_NAMES),
]

# Long enough to reach Feb 29 from anywhere in a leap cycle.
_SEARCH_LIMIT = timedelta(days=366 * 5)


@dataclass(frozen=True, slots=True)
class CronExpression:
    minutes: frozenset[int]
    hours: frozenset[int]
    days: frozenset[int]
    months: frozenset[int]
    weekdays: frozenset[int]
    day_restricted: bool
    weekday_restricted: bool
    source: str

    @classmethod
    def parse(cls, expression: str) -> CronExpression:
        fields = expression.split()
        if len(fields) != 5:
            raise ValueError(f"Invalid cron expression {expression!r}: expected 5 fields, got {len(fields)}")
        values = [
            _parse_field(raw, low, high, names, expression)
            for raw, (low, high, names) in zip(fields, _FIELDS)
        ]
        weekdays = frozenset(0 if day == 7 else day for day in values[4])
        return cls(
            minutes=values[0],
            hours=values[1],
            days=values[2],
            months=values[3],
            weekdays=weekdays,
            day_restricted=fields[2] != "*",
            weekday_restricted=fields[4] != "*",
            source=expression,
        )

    def _day_matches(self, moment: datetime) -> bool:
        # isoweekday: Monday=1 .. Sunday=7; cron: Sunday=0.
        in_days = moment.day in self.days
        in_weekdays = moment.isoweekday() % 7 in self.weekdays
        if self.day_restricted and self.weekday_restricted:
            return in_days or in_weekdays
        return in_days and in_weekdays

    def next_after(self, after: datetime) -> datetime:
        """Return the first matching minute strictly after ``after``."""

        moment = after.replace(second=0, microsecond=0) + timedelta(minutes=1)
        deadline = moment + _SEARCH_LIMIT
        while moment <= deadline:
            if moment.month not in self.months:
                moment = _first_of_next_month(moment)
                continue
            if not self._day_matches(moment):
                moment = (moment + timedelta(days=1)).replace(hour=0, minute=0)
                continue
            if moment.hour not in self.hours:
                moment = (moment + timedelta(hours=1)).replace(minute=0)
                continue
            if moment.minute not in self.minutes:
                moment += timedelta(minutes=1)
                continue
            return moment
        raise ValueError(f"Cron expression {self.source!r} never fires")


def _first_of_next_month(moment: datetime) -> datetime:
    if moment.month == 12:
        return moment.replace(year=moment.year + 1, month=1, day=1, hour=0, minute=0)
    return moment.replace(month=moment.month + 1, day=1, hour=0, minute=0)


def _parse_field(raw: str, low: int, high: int, names: dict[str, int], expression: str) -> frozenset[int]:
    values: set[int] = set()
    for item in raw.split(","):
        base, _, step_raw = item.partition("/")
        step = 1
        if step_raw:
            if not step_raw.isdigit() or int(step_raw) == 0:
                raise ValueError(f"Invalid cron expression {expression!r}: bad step {item!r}")
            step = int(step_raw)
        if base == "*":
            start, end = low, high
        elif "-" in base:
            start_raw, _, end_raw = base.partition("-")
            start = _parse_value(start_raw, names, expression)
            end = _parse_value(end_raw, names, expression)
        else:
            start = _parse_value(base, names, expression)
            end = high if step_raw else start
        if not (low <= start <= high and low <= end <= high) or start > end:
            raise ValueError(f"Invalid cron expression {expression!r}: {item!r} out of range {low}-{high}")
        values.update(range(start, end + 1, step))
    return frozenset(values)


def _parse_value(raw: str, names: dict[str, int], expression: str) -> int:
    lowered = raw.lower()
    if lowered in names:
        return names[lowered]
    if not raw.isdigit():
        raise ValueError(f"Invalid cron expression {expression!r}: unexpected value {raw!r}")
    return int(raw)
