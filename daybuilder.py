import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, timedelta

import pandas as pd

from payrules import DEFAULT_RULES, PayRules
from punches import CHECK_IN, DailyRecord, Punch, ShiftType

logger = logging.getLogger(__name__)


@dataclass
class Segment:
    """A check-in and its check-out, or a punch whose counterpart is missing."""
    working_day: date
    check_in: Punch | None = None
    check_out: Punch | None = None

    @property
    def complete(self) -> bool:
        return self.check_in is not None and self.check_out is not None


def pair_segments(punches: list[Punch], rules: PayRules = DEFAULT_RULES) -> list[Segment]:
    """
    Pairs resolved punches into shifts with a single open check-in slot.

    - A check-in while another one is open closes the open one as a shift
      without check-out.
    - A check-out pairs with the open check-in when it follows it within
      `rules.max_hours`, even on the next calendar day. The shift and the
      check-out take the working day of the check-in. Otherwise the check-out
      stands alone as a shift without check-in.
    - A check-in still open at the end becomes a shift without check-out.

    Args:
        punches: Resolved punches of one employee. Ignored punches are skipped.
        rules: Pay rules providing the longest plausible shift.

    Returns:
        Segments in chronological order.
    """
    segments: list[Segment] = []
    open_in: Punch | None = None
    max_span: timedelta = timedelta(hours=rules.max_hours)

    for punch in sorted((p for p in punches if not p.ignored), key=lambda p: p.sort_key):
        if punch.status == CHECK_IN:
            if open_in is not None:
                segments.append(Segment(open_in.working_day, check_in=open_in))
            open_in = punch
            continue

        if open_in is not None and punch.timestamp - open_in.timestamp <= max_span:
            # Overnight shifts the night rule did not catch land here; key them by their start.
            punch.working_day = open_in.working_day
            segments.append(Segment(open_in.working_day, check_in=open_in, check_out=punch))
            open_in = None
            continue

        # Too far apart to be one shift: both halves are missing their counterpart.
        if open_in is not None:
            segments.append(Segment(open_in.working_day, check_in=open_in))
            open_in = None
        segments.append(Segment(punch.working_day, check_out=punch))

    if open_in is not None:
        segments.append(Segment(open_in.working_day, check_in=open_in))
    return segments


def day_shift_type(segments: list[Segment]) -> ShiftType:
    check_ins: list[Punch] = [s.check_in for s in segments if s.check_in is not None]
    if not check_ins:
        return ShiftType.UNKNOWN
    first: Punch = min(check_ins, key=lambda p: p.sort_key)
    return first.shift_type or ShiftType.UNKNOWN


def collapse_day(day: date, segments: list[Segment], audit: list[Punch]) -> DailyRecord:
    """
    Merges every segment of one working day into its DailyRecord.

    Complete shifts define the first check-in and last check-out of the day. A
    day with nothing but incomplete shifts keeps whatever punches it has and is
    flagged as missing the counterpart.
    """
    complete: list[Segment] = [s for s in segments if s.complete]
    orphans: list[Segment] = [s for s in segments if not s.complete]
    record: DailyRecord = DailyRecord(date=day, shift_type=day_shift_type(segments))

    if complete:
        record.first_check_in = min(s.check_in.timestamp for s in complete)
        record.last_check_out = max(s.check_out.timestamp for s in complete)
        record.pairs = [(s.check_in.timestamp, s.check_out.timestamp) for s in complete]
        record.is_cross_day = any(s.check_in.timestamp.date() != s.check_out.timestamp.date() for s in complete)
    else:
        check_ins = [s.check_in.timestamp for s in orphans if s.check_in is not None]
        check_outs = [s.check_out.timestamp for s in orphans if s.check_out is not None]
        record.first_check_in = min(check_ins) if check_ins else None
        record.last_check_out = max(check_outs) if check_outs else None
        record.missing_check_in = any(s.check_in is None for s in orphans)
        record.missing_check_out = any(s.check_out is None for s in orphans)

    record.all_time_records = sorted(audit, key=lambda p: p.sort_key)
    record.corrected_records = any(p.mislabeled for p in audit)

    if record.shift_type == ShiftType.NIGHT and record.is_cross_day:
        record.add_flag('night_shift')
    if record.corrected_records:
        record.add_flag('corrected')
    if any(p.ignored for p in audit):
        record.add_flag('duplicate_punch')
    if record.missing_check_in:
        record.add_flag('missing_check_in')
    if record.missing_check_out:
        record.add_flag('missing_check_out')
    if complete and orphans:
        record.add_flag('unpaired_punch')
    if any(p.ambiguous for p in audit):
        record.add_flag('ambiguous_punch')
    return record


def create_off_day(day: date) -> DailyRecord:
    return DailyRecord(date=day, shift_type=ShiftType.OFF_DAY, missing_check_in=True, missing_check_out=True,
                       flags=['off_day'])


def fill_off_days(days: list[DailyRecord]) -> list[DailyRecord]:
    """
    Fills every date between an employee's first and last day with a record.

    Args:
        days: The employee's worked days, in any order.

    Returns:
        A date-ascending list without gaps; missing dates are OFF-DAY records.
    """
    if not days:
        return []

    existing: dict[date, DailyRecord] = {record.date: record for record in days}
    filled: list[DailyRecord] = []
    for stamp in pd.date_range(min(existing), max(existing), freq='D'):
        day: date = stamp.date()
        filled.append(existing[day] if day in existing else create_off_day(day))
    return filled


def build_days(punches: list[Punch], rules: PayRules = DEFAULT_RULES) -> list[DailyRecord]:
    """
    Builds one employee's day sequence from resolved punches.

    Returns:
        Date-ascending DailyRecords, one per working day, with OFF-DAY fillers.
        Hours are not computed here. Check-outs paired across midnight are
        moved to the working day of their check-in.
    """
    segments: list[Segment] = pair_segments(punches, rules)

    by_day: dict[date, list[Segment]] = defaultdict(list)
    for segment in segments:
        by_day[segment.working_day].append(segment)

    audit: dict[date, list[Punch]] = defaultdict(list)
    for punch in punches:
        audit[punch.working_day].append(punch)

    days: list[DailyRecord] = [collapse_day(day, by_day[day], audit[day]) for day in sorted(by_day)]
    for record in days:
        if record.needs_review:
            logger.info(f'Employee {punches[0].employee_id} {record.date:%Y-%m-%d} needs review: {record.notes}')
    return fill_off_days(days)
