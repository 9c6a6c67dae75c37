import logging
import math
from collections.abc import Iterable
from dataclasses import dataclass, fields
from datetime import date, datetime

import pandas as pd

from punches import DailyRecord, ShiftType
from shifts import SHIFT_CONFIG, is_early_leave, is_late, str_to_delta

logger = logging.getLogger(__name__)

FRIDAY: int = 4


@dataclass(frozen=True)
class PayRules:
    """
    Every threshold used by the resolver and the hours calculator.

    Attributes:
        max_hours: Data-quality cap for a single day.
        overtime_threshold: Above this, hours are rounded to `rounding_step`
            instead of being normalized.
        full_shift_threshold: At or above this (and up to the overtime
            threshold), a day is credited as `full_shift_hours`.
        full_shift_hours: Standard full-shift credit; also the daily baseline
            for overtime in summaries.
        rounding_step: Overtime rounding granularity in hours.
        night_full_checkout: Night shifts checking out at or after this morning
            time are credited as a full shift.
        night_min_hours: Minimum worked hours before the night credit applies.
        duplicate_window_minutes: Same-type punches closer than this are
            double scans.
        flip_min_hours / flip_max_hours: Plausible shift length for relabeling
            a flipped two-punch day.
        segment_gap_hours: Gap that separates two shifts on the same day.
        min_shift_hours: Shortest shift the resolver will fabricate.
        night_window_hours: Quiet period required around a night pair.
    """
    max_hours: float = 15.0
    overtime_threshold: float = 9.5
    full_shift_threshold: float = 8.5
    full_shift_hours: float = 9.0
    rounding_step: float = 0.25
    night_full_checkout: str = '05:30 AM'
    night_min_hours: float = 7.0
    duplicate_window_minutes: int = 60
    flip_min_hours: float = 7.0
    flip_max_hours: float = 11.0
    segment_gap_hours: float = 1.5
    min_shift_hours: float = 6.0
    night_window_hours: float = 11.0

    @classmethod
    def from_dict(cls, data: dict) -> 'PayRules':
        """
        Builds rules from a mapping, e.g. a parsed JSON settings file.

        Raises:
            ValueError: If the mapping contains an unknown setting.
        """
        known: set[str] = {f.name for f in fields(cls)}
        unknown: list[str] = sorted(set(data) - known)
        if unknown:
            raise ValueError(f'Unknown pay rule setting(s): {unknown}.')
        return cls(**data)


DEFAULT_RULES: PayRules = PayRules()


def worked_minutes(pairs: list[tuple[datetime, datetime]]) -> float:
    """
    Sums the minutes of check-in/check-out intervals.

    A negative interval is naive same-day arithmetic on a pair that crosses
    midnight, so a day is added back.
    """
    total: float = 0.0
    for check_in, check_out in pairs:
        minutes: float = (check_out - check_in).total_seconds() / 60.0
        if minutes < 0:
            minutes += 1440
        total += minutes
    return total


def is_night_full_checkout(check_out: datetime, rules: PayRules) -> bool:
    since_midnight = check_out - datetime.combine(check_out.date(), datetime.min.time())
    return check_out.hour < 12 and since_midnight >= str_to_delta(rules.night_full_checkout)


def apply_overtime_policy(hours: float, shift_type: ShiftType | None, last_check_out: datetime | None,
                          penalized: bool = False, rules: PayRules = DEFAULT_RULES) -> float:
    """
    Applies the overtime cap, rounding and full-shift normalization.

    - Above `max_hours`: capped.
    - Above `overtime_threshold`: rounded to the nearest quarter hour.
    - From `full_shift_threshold`: credited as a full shift.
    - Night shifts ending at or after `night_full_checkout`: credited as a full
      shift once `night_min_hours` were worked.

    The full-shift credits are not given to penalized days.
    """
    # Data-quality cap; longer days are flagged for review elsewhere.
    if hours > rules.max_hours:
        return rules.max_hours
    if hours > rules.overtime_threshold:
        # Quarter hours, half rounded up.
        return math.floor(hours / rules.rounding_step + 0.5) * rules.rounding_step
    # A deducted day is paid for the time actually worked.
    if penalized:
        return hours
    if hours >= rules.full_shift_threshold:
        return rules.full_shift_hours
    if (shift_type == ShiftType.NIGHT and last_check_out is not None and hours >= rules.night_min_hours
            and is_night_full_checkout(last_check_out, rules)):
        return rules.full_shift_hours
    return hours


def compute_pair_hours(pairs: list[tuple[datetime, datetime]], shift_type: ShiftType | None,
                       deduction_minutes: int = 0, rules: PayRules = DEFAULT_RULES) -> float:
    """
    Computes payable hours for all worked intervals of one day.

    Args:
        pairs: Complete (check-in, check-out) intervals.
        shift_type: Shift of the day; night shifts get the early-checkout credit.
        deduction_minutes: Lateness penalty subtracted before the policy.
        rules: Pay rule thresholds.

    Returns:
        Payable hours rounded to 2 decimal places.
    """
    if not pairs:
        return 0.0

    minutes: float = max(0.0, worked_minutes(pairs) - deduction_minutes)
    last_check_out: datetime = max(check_out for _, check_out in pairs)
    hours: float = apply_overtime_policy(minutes / 60.0, shift_type, last_check_out,
                                         penalized=deduction_minutes > 0, rules=rules)
    return round(hours, 2)


def compute_hours(check_in: datetime, check_out: datetime, shift_type: ShiftType | None,
                  deduction_minutes: int = 0, rules: PayRules = DEFAULT_RULES) -> float:
    return compute_pair_hours([(check_in, check_out)], shift_type, deduction_minutes, rules)


def evaluate_day(record: DailyRecord, rules: PayRules = DEFAULT_RULES,
                 config: dict[str, dict] | None = None) -> DailyRecord:
    """
    Derives hours and review flags of a day from its punches, in place.

    Sets `hours_worked`, `is_late`, `early_leave` and `excessive_overtime`, and
    keeps the `hours_capped` and `excessive_overtime` flags in sync.
    """
    if config is None:
        config = SHIFT_CONFIG

    if record.is_off_day:
        record.hours_worked = 0.0
        record.is_late = False
        record.early_leave = False
        record.excessive_overtime = False
        return record

    record.hours_worked = compute_pair_hours(record.pairs, record.shift_type, record.penalty_minutes, rules)
    record.excessive_overtime = record.hours_worked > rules.overtime_threshold

    if record.pairs and worked_minutes(record.pairs) / 60.0 > rules.max_hours:
        record.add_flag('hours_capped')
        logger.warning(f'Capped {record.date:%Y-%m-%d} at {rules.max_hours} hours.')
    else:
        record.remove_flag('hours_capped')

    if record.excessive_overtime:
        record.add_flag('excessive_overtime')
    else:
        record.remove_flag('excessive_overtime')

    record.is_late = (record.first_check_in is not None and
                      is_late(record.first_check_in, record.shift_type, record.date, config))
    record.early_leave = (record.first_check_in is not None and record.last_check_out is not None and
                          is_early_leave(record.last_check_out, record.shift_type, record.date,
                                         record.first_check_in, config))
    return record


def load_holidays(entries: Iterable[dict | str | date] | None) -> set[date]:
    """
    Normalizes a holiday list into a set of dates.

    Accepts `{'date': 'YYYY-MM-DD'}` mappings, date strings or date objects.

    Raises:
        ValueError: If an entry cannot be read as a date.
    """
    holidays: set[date] = set()
    if entries is None:
        return holidays

    for entry in entries:
        value = entry.get('date') if isinstance(entry, dict) else entry
        if isinstance(value, datetime):
            holidays.add(value.date())
        elif isinstance(value, date):
            holidays.add(value)
        else:
            try:
                parsed = pd.Timestamp(str(value).strip())
            except ValueError as e:
                raise ValueError(f'Invalid holiday date {value=}. Details: {e}')
            if pd.isna(parsed):
                raise ValueError(f'Invalid holiday date {value=}.')
            holidays.add(parsed.date())
    return holidays


def is_double_time(day: date, holidays: set[date] | None = None) -> bool:
    """A day pays double when it is a Friday or a listed holiday."""
    return day.weekday() == FRIDAY or (holidays is not None and day in holidays)


def payable_hours(record: DailyRecord, holidays: set[date] | None = None) -> float:
    """Payroll hours of a day; `hours_worked` itself is never multiplied."""
    if is_double_time(record.date, holidays):
        return round(record.hours_worked * 2, 2)
    return round(record.hours_worked, 2)
