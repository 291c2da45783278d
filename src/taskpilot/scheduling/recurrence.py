# src/taskpilot/scheduling/recurrence.py

"""
Recurrence expansion.

Turns a RecurringRule into concrete timestamps. Expansion is a pure function of
(rule, after, until): it never reads the wall clock, so identical arguments
always produce identical sequences.

Bounds:
- only timestamps strictly after `after` are emitted,
- nothing later than `until` (when given) or the rule's end_date,
- at most MAX_OCCURRENCES items, so an open-ended rule cannot run unattended.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from datetime import datetime, time, timedelta

from dateutil.relativedelta import relativedelta
from dateutil.rrule import DAILY, MO, WEEKLY, rrule

from .models import RecurringFrequency, RecurringRule, at_time, day_start

logger = logging.getLogger(__name__)

MAX_OCCURRENCES = 500

# Upper bound on days scanned for a single expansion (about 30 years).
_MAX_SCAN_DAYS = 366 * 30

_WEEKDAY_SHORT = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")


def next_occurrences(
    rule: RecurringRule,
    after: datetime,
    until: datetime | None = None,
) -> list[datetime]:
    """Expand `rule` into timestamps in (after, min(until, end_date)]."""
    limit = until
    if rule.end_date is not None:
        limit = rule.end_date if limit is None else min(limit, rule.end_date)

    out: list[datetime] = []
    for ts in _iter_candidates(rule, after, limit):
        if limit is not None and ts > limit:
            break
        if ts <= after:
            continue
        out.append(ts)
        if len(out) >= MAX_OCCURRENCES:
            logger.debug(
                "Recurrence expansion hit the cap (%d) for frequency=%s",
                MAX_OCCURRENCES,
                rule.frequency.value,
            )
            break
    return out


def next_occurrence(rule: RecurringRule, after: datetime) -> datetime | None:
    """First occurrence strictly after `after`, or None when the rule has ended."""
    for ts in _iter_candidates(rule, after, rule.end_date):
        if rule.end_date is not None and ts > rule.end_date:
            return None
        if ts > after:
            return ts
    return None


def _iter_candidates(rule: RecurringRule, after: datetime, limit: datetime | None) -> Iterator[datetime]:
    """Yield candidate timestamps in ascending order, starting near `after`."""
    freq = rule.frequency

    if freq in (RecurringFrequency.DAILY, RecurringFrequency.CUSTOM):
        rr = rrule(DAILY, dtstart=rule.anchor, interval=rule.interval, until=limit)
    elif freq == RecurringFrequency.BIWEEKLY:
        rr = rrule(WEEKLY, dtstart=rule.anchor, interval=2 * rule.interval, until=limit)
    elif freq == RecurringFrequency.WEEKLY:
        # Weeks are counted from the Monday of the anchor's week.
        byweekday = sorted(rule.days_of_week) if rule.days_of_week else None
        rr = rrule(
            WEEKLY,
            dtstart=rule.anchor,
            interval=rule.interval,
            byweekday=byweekday,
            wkst=MO,
            until=limit,
        )
    elif freq == RecurringFrequency.MONTHLY:
        yield from _iter_months(rule, after, step=relativedelta(months=rule.interval))
        return
    elif freq == RecurringFrequency.YEARLY:
        yield from _iter_months(rule, after, step=relativedelta(years=rule.interval))
        return
    else:
        yield from _iter_intraday(rule, after)
        return

    yield from rr.xafter(after, inc=False)


def _iter_months(rule: RecurringRule, after: datetime, *, step: relativedelta) -> Iterator[datetime]:
    anchor = rule.anchor
    step_months = step.years * 12 + step.months
    k = 0
    if after > anchor:
        elapsed = (after.year - anchor.year) * 12 + (after.month - anchor.month)
        k = max(0, elapsed // step_months - 1)
    for i in range(k, k + _MAX_SCAN_DAYS // 28):
        # Always step from the anchor so Jan 31 -> Feb 28 -> Mar 31.
        yield anchor + step * i


def _intraday_times(rule: RecurringRule) -> list[time]:
    start_dt = datetime.combine(datetime.min.date(), rule.active_hours_start)
    end_dt = datetime.combine(datetime.min.date(), rule.active_hours_end)

    if rule.frequency == RecurringFrequency.HOURLY:
        step = timedelta(hours=rule.effective_hour_interval)
        out: list[time] = []
        cur = start_dt
        while cur < end_dt:
            out.append(cur.time())
            cur += step
        return out

    if rule.specific_times:
        return sorted(rule.specific_times)

    count = rule.effective_times_per_day
    # Evenly spaced across [start, end), truncated to whole minutes.
    gap_minutes = int((end_dt - start_dt).total_seconds() // 60) // count
    return [(start_dt + timedelta(minutes=i * gap_minutes)).time() for i in range(count)]


def _iter_intraday(rule: RecurringRule, after: datetime) -> Iterator[datetime]:
    times = _intraday_times(rule)
    if not times:
        return
    first_day = day_start(max(rule.anchor, after))
    for offset in range(_MAX_SCAN_DAYS):
        day = first_day + timedelta(days=offset)
        for clock in times:
            ts = at_time(day, clock)
            if ts < rule.anchor:
                continue
            yield ts


def describe(rule: RecurringRule) -> str:
    """Human-readable description, e.g. "Every 2 days until 2026-11-01"."""
    freq = rule.frequency
    if freq == RecurringFrequency.HOURLY:
        hours = rule.effective_hour_interval
        text = f"Every {hours} hour{'' if hours == 1 else 's'}"
    elif freq == RecurringFrequency.TIMES_PER_DAY:
        count = rule.effective_times_per_day
        text = f"{count} times per day"
    elif rule.interval > 1 and freq != RecurringFrequency.BIWEEKLY:
        unit = {
            RecurringFrequency.DAILY: "days",
            RecurringFrequency.CUSTOM: "days",
            RecurringFrequency.WEEKLY: "weeks",
            RecurringFrequency.MONTHLY: "months",
            RecurringFrequency.YEARLY: "years",
        }[freq]
        text = f"Every {rule.interval} {unit}"
    else:
        text = {
            RecurringFrequency.DAILY: "Daily",
            RecurringFrequency.CUSTOM: "Daily",
            RecurringFrequency.WEEKLY: "Weekly",
            RecurringFrequency.BIWEEKLY: "Every 2 weeks",
            RecurringFrequency.MONTHLY: "Monthly",
            RecurringFrequency.YEARLY: "Yearly",
        }[freq]

    if rule.days_of_week and freq == RecurringFrequency.WEEKLY:
        text += " on " + ", ".join(_WEEKDAY_SHORT[d] for d in sorted(rule.days_of_week))

    if rule.end_date is not None:
        text += f" until {rule.end_date.date().isoformat()}"
    return text


def compact_label(rule: RecurringRule) -> str:
    """Short badge text: "1d", "3/wk", "2h", "3x/day"..."""
    freq = rule.frequency
    n = rule.interval
    if freq in (RecurringFrequency.DAILY, RecurringFrequency.CUSTOM):
        return f"{n}d"
    if freq == RecurringFrequency.WEEKLY:
        if rule.days_of_week:
            return f"{len(rule.days_of_week)}/wk"
        return f"{n}w"
    if freq == RecurringFrequency.BIWEEKLY:
        return "2w"
    if freq == RecurringFrequency.MONTHLY:
        return f"{n}mo"
    if freq == RecurringFrequency.YEARLY:
        return f"{n}y"
    if freq == RecurringFrequency.HOURLY:
        return f"{rule.effective_hour_interval}h"
    return f"{rule.effective_times_per_day}x/day"
