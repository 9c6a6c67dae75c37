from datetime import date, datetime

import pytest

from edits import (DayEdit, add_manual_entry, apply_penalty, approve_all, recompute_day, records_after_save,
                   set_review, swap_times, update_times)
from punches import CHECK_IN, CHECK_OUT, DailyRecord, EmployeeRecord, InvalidEditError, ReviewState, ShiftType
from timesheet import reconcile


@pytest.fixture
def employees(make_punch):
    return reconcile([
        make_punch('2025-03-24 20:57', CHECK_IN), make_punch('2025-03-25 05:53', CHECK_OUT),
        make_punch('2025-03-26 08:00', CHECK_IN), make_punch('2025-03-26 17:00', CHECK_OUT),
    ])


@pytest.fixture
def day_shift(employees):
    return employees[0].day(date(2025, 3, 26))


@pytest.fixture
def night_shift(employees):
    return employees[0].day(date(2025, 3, 24))


def test_penalty_reduces_hours(day_shift):
    penalized = apply_penalty(day_shift, 30)

    assert penalized.hours_worked == 8.5
    assert penalized.penalty_minutes == 30
    assert 'penalty_applied' in penalized.flags
    assert day_shift.hours_worked == 9.0
    assert day_shift.penalty_minutes == 0


def test_zero_penalty_restores_credit(day_shift):
    restored = apply_penalty(apply_penalty(day_shift, 30), 0)
    assert restored.hours_worked == 9.0
    assert 'penalty_applied' not in restored.flags


def test_negative_penalty_is_rejected(day_shift):
    with pytest.raises(InvalidEditError):
        apply_penalty(day_shift, -5)


def test_update_times(day_shift):
    edited = update_times(day_shift, '08:00', '16:00')

    assert edited.first_check_in == datetime(2025, 3, 26, 8, 0)
    assert edited.last_check_out == datetime(2025, 3, 26, 16, 0)
    assert edited.hours_worked == 8.0
    assert 'edited' in edited.flags


def test_check_out_before_check_in_is_rejected(day_shift):
    with pytest.raises(InvalidEditError, match='Check-out time must be after check-in time'):
        update_times(day_shift, '17:00', '08:00')


def test_invalid_time_text(day_shift):
    with pytest.raises(InvalidEditError, match='Invalid time format'):
        update_times(day_shift, '25:99', None)


def test_clearing_both_times_makes_off_day(day_shift):
    cleared = update_times(day_shift, None, None)

    assert cleared.is_off_day
    assert cleared.hours_worked == 0
    assert cleared.first_check_in is None and cleared.last_check_out is None
    assert 'OFF-DAY' in cleared.notes


def test_night_check_out_lands_next_day(night_shift):
    edited = update_times(night_shift, None, '06:00')

    assert edited.last_check_out == datetime(2025, 3, 25, 6, 0)
    assert edited.hours_worked == 9.0
    assert edited.is_cross_day


def test_partial_time_edits(day_shift):
    edited = recompute_day(day_shift, DayEdit(check_in='08:30'))
    assert edited.hours_worked == 9.0

    record = DailyRecord(date=date(2025, 3, 26), first_check_in=datetime(2025, 3, 26, 8, 0),
                         shift_type=ShiftType.CANTEEN, missing_check_out=True, flags=['missing_check_out'])
    edited = recompute_day(record, DayEdit(check_out='17:00'))
    assert not edited.missing_check_out
    assert 'missing_check_out' not in edited.flags
    assert not edited.needs_review


def test_swap_times():
    record = DailyRecord(date=date(2025, 3, 26), first_check_in=datetime(2025, 3, 26, 17, 40),
                         last_check_out=datetime(2025, 3, 26, 8, 55), shift_type=ShiftType.EVENING)
    swapped = swap_times(record)

    assert swapped.first_check_in == datetime(2025, 3, 26, 8, 55)
    assert swapped.last_check_out == datetime(2025, 3, 26, 17, 40)
    assert swapped.hours_worked == 9.0


def test_rejected_day_cannot_be_edited(day_shift):
    rejected = set_review(day_shift, ReviewState.REJECTED)
    with pytest.raises(InvalidEditError):
        apply_penalty(rejected, 10)


def test_review_lifecycle(employees):
    days = employees[0].days
    assert set_review(days[0], True).approved
    assert not set_review(set_review(days[0], True), False).approved

    days = [set_review(days[0], ReviewState.REJECTED)] + days[1:]
    approved = approve_all(days)
    assert approved[0].review == ReviewState.REJECTED
    assert all(d.approved for d in approved[1:])


def test_manual_entry_for_new_employee():
    updated = add_manual_entry([], '303', 'Poe, Ann', date(2025, 3, 24), ShiftType.NIGHT)

    assert len(updated) == 1
    day = updated[0].days[0]
    assert day.first_check_in == datetime(2025, 3, 24, 21, 0)
    assert day.last_check_out == datetime(2025, 3, 25, 6, 0)
    assert day.hours_worked == 9.0
    assert 'manual_entry' in day.flags


def test_manual_entry_replaces_off_day(employees):
    updated = add_manual_entry(employees, '101', 'Doe, Jane', date(2025, 3, 25), ShiftType.MORNING)

    days = updated[0].days
    assert [d.date for d in days] == [date(2025, 3, 24), date(2025, 3, 25), date(2025, 3, 26)]
    assert days[1].shift_type == ShiftType.MORNING
    assert days[1].hours_worked == 9.0
    assert employees[0].days[1].is_off_day


def test_manual_entry_extends_range(employees):
    updated = add_manual_entry(employees, '101', 'Doe, Jane', date(2025, 3, 28), ShiftType.EVENING)

    days = updated[0].days
    assert len(days) == 5
    assert days[3].is_off_day


def test_manual_entry_needs_standard_hours():
    with pytest.raises(InvalidEditError):
        add_manual_entry([], '303', 'Poe, Ann', date(2025, 3, 24), ShiftType.UNKNOWN)


def test_records_after_save(employees):
    days = approve_all(employees[0].days[:1]) + employees[0].days[1:]
    remaining = records_after_save([EmployeeRecord('101', 'Doe, Jane', days)])

    assert [d.date for d in remaining[0].days] == [date(2025, 3, 25), date(2025, 3, 26)]
    assert records_after_save([EmployeeRecord('101', 'Doe, Jane', approve_all(days))]) == []
