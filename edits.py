"""
Manual corrections and the review lifecycle of reconciled days.

Every operation returns new records and leaves its input untouched. Hours are
always re-derived through the pay-rule calculator, so an edited day follows
exactly the same rules as an imported one.
"""
import logging
from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta

from daybuilder import fill_off_days
from payrules import DEFAULT_RULES, PayRules, evaluate_day
from punches import (CHECK_IN, CHECK_OUT, DailyRecord, EmployeeRecord, InvalidEditError, Punch, ReviewState,
                     ShiftType)
from shifts import classify, standard_times

logger = logging.getLogger(__name__)

# Flags describing the imported punches; a reviewer's edit settles them.
IMPORT_FLAGS: tuple[str, ...] = ('off_day', 'missing_check_in', 'missing_check_out', 'unpaired_punch',
                                 'ambiguous_punch', 'night_shift')


@dataclass
class DayEdit:
    """
    A reviewer's change to one day.

    Times are datetimes or 'HH:MM' text; text is anchored on the working day,
    and a night-shift check-out before noon lands on the next calendar day.
    """
    check_in: datetime | str | None = None
    check_out: datetime | str | None = None
    penalty_minutes: int | None = None
    swap: bool = False
    clear: bool = False
    remark: str | None = None


def copy_day(day: DailyRecord) -> DailyRecord:
    return replace(day, flags=list(day.flags), pairs=list(day.pairs), all_time_records=list(day.all_time_records))


def mark_off_day(day: DailyRecord) -> DailyRecord:
    """Turns a day into an OFF-DAY, keeping its review state and audit trail."""
    return replace(day, first_check_in=None, last_check_out=None, shift_type=ShiftType.OFF_DAY, hours_worked=0.0,
                   penalty_minutes=0, is_late=False, early_leave=False, excessive_overtime=False,
                   missing_check_in=True, missing_check_out=True, is_cross_day=False, flags=['off_day', 'edited'],
                   pairs=[], all_time_records=list(day.all_time_records))


def parse_edit_time(value: datetime | str, day: date, shift_type: ShiftType, is_check_out: bool) -> datetime:
    """
    Anchors an edited time on the working day.

    Raises:
        InvalidEditError: If the text is not a valid 'HH:MM' time.
    """
    if isinstance(value, datetime):
        return value

    try:
        parsed = datetime.strptime(str(value).strip(), '%H:%M')
    except ValueError:
        raise InvalidEditError('Invalid time format')

    anchored: datetime = datetime.combine(day, parsed.time())
    if is_check_out and shift_type == ShiftType.NIGHT and parsed.hour < 12:
        anchored += timedelta(days=1)
    return anchored


def validate_times(check_in: datetime | None, check_out: datetime | None, shift_type: ShiftType) -> None:
    """
    Raises:
        InvalidEditError: If the check-out does not follow the check-in. A
            night-shift check-out before noon may precede the check-in on the
            same calendar day.
    """
    if check_in is None or check_out is None:
        return
    if check_out.date() < check_in.date():
        raise InvalidEditError('Check-out time must be after check-in time')
    if check_out.date() == check_in.date() and check_out <= check_in:
        if shift_type == ShiftType.NIGHT and check_out.hour < 12:
            return
        raise InvalidEditError('Check-out time must be after check-in time')


def recompute_day(day: DailyRecord, edits: DayEdit, rules: PayRules = DEFAULT_RULES,
                  config: dict[str, dict] | None = None) -> DailyRecord:
    """
    Applies a manual edit and re-derives hours and flags.

    Args:
        day: The record to edit; it is not modified.
        edits: Times, penalty, swap or clear request.
        rules: Pay rules for the hours calculation.
        config: Shift table for lateness and early-leave checks.

    Returns:
        The edited record.

    Raises:
        InvalidEditError: The day was rejected, a time is invalid, the
            check-out precedes the check-in or the penalty is negative.
    """
    if day.review == ReviewState.REJECTED:
        raise InvalidEditError(f'{day.date:%Y-%m-%d} was rejected and cannot be edited.')
    if edits.penalty_minutes is not None and edits.penalty_minutes < 0:
        raise InvalidEditError('Penalty minutes cannot be negative')

    if edits.clear:
        return evaluate_day(mark_off_day(day), rules, config)

    record: DailyRecord = copy_day(day)
    check_in: datetime | None = record.first_check_in
    check_out: datetime | None = record.last_check_out
    times_changed: bool = False

    if edits.check_in is not None:
        check_in = parse_edit_time(edits.check_in, record.date, record.shift_type, is_check_out=False)
        times_changed = True

    shift_type: ShiftType = record.shift_type
    if check_in is not None and shift_type in (ShiftType.UNKNOWN, ShiftType.OFF_DAY):
        shift_type = classify(check_in)

    if edits.check_out is not None:
        check_out = parse_edit_time(edits.check_out, record.date, shift_type, is_check_out=True)
        times_changed = True

    if edits.swap:
        swapped_in, swapped_out = check_out, check_in
        if swapped_in is not None:
            swapped_in = datetime.combine(record.date, swapped_in.time())
        if swapped_in is not None and shift_type in (ShiftType.UNKNOWN, ShiftType.OFF_DAY):
            shift_type = classify(swapped_in)
        if swapped_out is not None:
            swapped_out = parse_edit_time(swapped_out.strftime('%H:%M'), record.date, shift_type, is_check_out=True)
        check_in, check_out = swapped_in, swapped_out
        times_changed = True

    validate_times(check_in, check_out, shift_type)

    if times_changed:
        for flag in IMPORT_FLAGS:
            record.remove_flag(flag)
        record.first_check_in = check_in
        record.last_check_out = check_out
        record.shift_type = shift_type if check_in is not None else ShiftType.UNKNOWN
        record.missing_check_in = check_in is None
        record.missing_check_out = check_out is None
        record.pairs = [(check_in, check_out)] if check_in is not None and check_out is not None else []
        record.is_cross_day = bool(record.pairs) and check_in.date() != check_out.date()
        if record.missing_check_in:
            record.add_flag('missing_check_in')
        if record.missing_check_out:
            record.add_flag('missing_check_out')
        if record.shift_type == ShiftType.NIGHT and record.is_cross_day:
            record.add_flag('night_shift')
        record.add_flag('edited')

    if edits.penalty_minutes is not None:
        record.penalty_minutes = edits.penalty_minutes
        if record.penalty_minutes > 0:
            record.add_flag('penalty_applied')
        else:
            record.remove_flag('penalty_applied')

    if edits.remark is not None:
        record.remark = edits.remark.strip()

    return evaluate_day(record, rules, config)


def apply_penalty(day: DailyRecord, minutes: int, rules: PayRules = DEFAULT_RULES,
                  config: dict[str, dict] | None = None) -> DailyRecord:
    """Deducts `minutes` from the day's worked time; 0 removes a penalty."""
    return recompute_day(day, DayEdit(penalty_minutes=minutes), rules, config)


def update_times(day: DailyRecord, check_in: datetime | str | None, check_out: datetime | str | None,
                 rules: PayRules = DEFAULT_RULES, config: dict[str, dict] | None = None) -> DailyRecord:
    """Replaces the day's times. Clearing both turns the day into an OFF-DAY."""
    if check_in in (None, '') and check_out in (None, ''):
        return recompute_day(day, DayEdit(clear=True), rules, config)
    return recompute_day(day, DayEdit(check_in=check_in or None, check_out=check_out or None), rules, config)


def swap_times(day: DailyRecord, rules: PayRules = DEFAULT_RULES,
               config: dict[str, dict] | None = None) -> DailyRecord:
    return recompute_day(day, DayEdit(swap=True), rules, config)


def set_review(day: DailyRecord, state: ReviewState | bool) -> DailyRecord:
    """Approves (True) or resets (False) a day, or sets an explicit review state."""
    if isinstance(state, bool):
        state = ReviewState.APPROVED if state else ReviewState.UNREVIEWED
    return replace(day, review=state)


def approve_all(days: list[DailyRecord]) -> list[DailyRecord]:
    """Approves every day that was not rejected."""
    return [day if day.review == ReviewState.REJECTED else set_review(day, ReviewState.APPROVED) for day in days]


def manual_punches(employee_number: str, name: str, check_in: datetime, check_out: datetime,
                   shift_type: ShiftType, day: date) -> list[Punch]:
    punches: list[Punch] = [
        Punch(employee_number, name, check_in, CHECK_IN, sequence=0),
        Punch(employee_number, name, check_out, CHECK_OUT, sequence=1),
    ]
    for punch in punches:
        punch.shift_type = shift_type
        punch.working_day = day
        punch.processed = True
        punch.reason = 'manual entry'
    return punches


def add_manual_entry(employees: list[EmployeeRecord], employee_number: str, name: str, day: date,
                     shift_type: ShiftType, rules: PayRules = DEFAULT_RULES,
                     config: dict[str, dict] | None = None) -> list[EmployeeRecord]:
    """
    Adds a day at the standard hours of `shift_type`.

    The entry replaces any existing record of that date. An employee not yet in
    the list is added. The employee's days are refilled so no date is missing.

    Returns:
        The updated employee list; `employees` itself is not modified.

    Raises:
        InvalidEditError: The shift type has no standard hours.
    """
    times = standard_times(shift_type, day, config=config)
    if times is None:
        raise InvalidEditError(f'No standard hours for shift type {shift_type.value!r}.')
    check_in, check_out = times

    record = DailyRecord(date=day, first_check_in=check_in, last_check_out=check_out, shift_type=shift_type,
                         is_cross_day=check_in.date() != check_out.date(), flags=['manual_entry'],
                         pairs=[(check_in, check_out)],
                         all_time_records=manual_punches(employee_number, name, check_in, check_out, shift_type, day))
    if shift_type == ShiftType.NIGHT:
        record.add_flag('night_shift')
    evaluate_day(record, rules, config)

    updated: list[EmployeeRecord] = []
    found: bool = False
    for employee in employees:
        if employee.employee_number != employee_number:
            updated.append(employee)
            continue
        found = True
        days: list[DailyRecord] = [d for d in employee.days if d.date != day] + [record]
        updated.append(replace(employee, days=fill_off_days(days)))

    if not found:
        updated.append(EmployeeRecord(employee_number, name, [record]))

    logger.info(f'Manual {shift_type.value} entry for {employee_number=} on {day:%Y-%m-%d}.')
    return updated


def records_after_save(employees: list[EmployeeRecord]) -> list[EmployeeRecord]:
    """
    Drops what a save has settled: approved and rejected days, and employees
    left without days. The rest stays for further review.
    """
    remaining: list[EmployeeRecord] = []
    for employee in employees:
        days = [d for d in employee.days if d.review == ReviewState.UNREVIEWED]
        if days:
            remaining.append(replace(employee, days=days))
    return remaining
