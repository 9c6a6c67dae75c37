from datetime import date, datetime

from daybuilder import build_days, fill_off_days, pair_segments
from payrules import PayRules
from punches import CHECK_IN, CHECK_OUT, DailyRecord, ShiftType
from resolver import resolve_punches
from timesheet import reconcile


def build(punches):
    return build_days(resolve_punches(punches))


def test_gaps_become_off_days(make_punch):
    days = build([make_punch('2025-03-24 08:00', CHECK_IN), make_punch('2025-03-24 17:00', CHECK_OUT),
                  make_punch('2025-03-27 08:00', CHECK_IN), make_punch('2025-03-27 17:00', CHECK_OUT)])

    assert [d.date for d in days] == [date(2025, 3, 24), date(2025, 3, 25), date(2025, 3, 26), date(2025, 3, 27)]
    for off_day in days[1:3]:
        assert off_day.is_off_day
        assert off_day.hours_worked == 0
        assert off_day.flags == ['off_day']
        assert off_day.notes == 'OFF-DAY'
        assert off_day.missing_check_in and off_day.missing_check_out


def test_night_shift_is_one_record(make_punch):
    days = build([make_punch('2025-03-24 20:57', CHECK_IN), make_punch('2025-03-25 05:53', CHECK_OUT)])

    assert len(days) == 1
    night = days[0]
    assert night.date == date(2025, 3, 24)
    assert night.shift_type == ShiftType.NIGHT
    assert night.first_check_in == datetime(2025, 3, 24, 20, 57)
    assert night.last_check_out == datetime(2025, 3, 25, 5, 53)
    assert night.is_cross_day
    assert 'night_shift' in night.flags


def test_missing_check_out(make_punch):
    days = build([make_punch('2025-03-26 08:00', CHECK_IN)])

    assert len(days) == 1
    assert days[0].first_check_in == datetime(2025, 3, 26, 8, 0)
    assert days[0].last_check_out is None
    assert days[0].missing_check_out
    assert not days[0].missing_check_in
    assert days[0].needs_review
    assert days[0].pairs == []


def test_lone_check_out_has_unknown_shift(make_punch):
    days = build([make_punch('2025-03-26 17:00', CHECK_OUT)])

    assert days[0].missing_check_in
    assert days[0].shift_type == ShiftType.UNKNOWN


def test_split_shift_keeps_both_pairs(make_punch):
    days = build([make_punch('2025-03-26 06:00', CHECK_IN), make_punch('2025-03-26 10:00', CHECK_OUT),
                  make_punch('2025-03-26 14:00', CHECK_IN), make_punch('2025-03-26 18:00', CHECK_OUT)])

    assert len(days) == 1
    assert len(days[0].pairs) == 2
    assert days[0].first_check_in == datetime(2025, 3, 26, 6, 0)
    assert days[0].last_check_out == datetime(2025, 3, 26, 18, 0)


def test_mixed_complete_and_orphan_needs_review(make_punch):
    days = build([make_punch('2025-03-26 06:00', CHECK_IN), make_punch('2025-03-26 06:40', CHECK_OUT),
                  make_punch('2025-03-26 14:05', CHECK_IN)])

    assert 'unpaired_punch' in days[0].flags
    assert 'corrected' in days[0].flags
    assert days[0].corrected_records


def test_ambiguous_day_is_flagged(make_punch):
    days = build([make_punch('2025-03-26 13:00', CHECK_OUT), make_punch('2025-03-26 14:00', CHECK_IN)])

    assert 'ambiguous_punch' in days[0].flags
    assert days[0].missing_check_in and days[0].missing_check_out


def test_audit_trail_keeps_ignored_punches(make_punch):
    days = build([make_punch('2025-03-26 08:00', CHECK_IN), make_punch('2025-03-26 08:15', CHECK_IN),
                  make_punch('2025-03-26 17:00', CHECK_OUT)])

    assert len(days) == 1
    assert days[0].first_check_in == datetime(2025, 3, 26, 8, 0)
    assert len(days[0].all_time_records) == 3
    assert 'duplicate_punch' in days[0].flags


def test_evening_shift_past_midnight_is_one_day(make_punch):
    employee = reconcile([make_punch('2025-03-24 19:30', CHECK_IN), make_punch('2025-03-25 04:30', CHECK_OUT)])[0]

    assert len(employee.days) == 1
    day = employee.days[0]
    assert day.date == date(2025, 3, 24)
    assert day.is_cross_day
    assert day.shift_type == ShiftType.EVENING
    assert day.hours_worked == 9.0
    assert not day.missing_check_in and not day.missing_check_out
    assert [p.working_day for p in day.all_time_records] == [date(2025, 3, 24)] * 2


def test_late_check_out_after_night_start_is_paired(make_punch):
    employee = reconcile([make_punch('2025-03-24 22:00', CHECK_IN), make_punch('2025-03-25 08:15', CHECK_OUT)])[0]

    assert len(employee.days) == 1
    assert employee.days[0].last_check_out == datetime(2025, 3, 25, 8, 15)
    assert employee.days[0].hours_worked == 10.25


def test_check_out_too_far_after_check_in_stays_unpaired(make_punch):
    punches = resolve_punches([make_punch('2025-03-26 08:00', CHECK_IN), make_punch('2025-03-27 17:00', CHECK_OUT)])
    segments = pair_segments(punches)

    assert len(segments) == 2
    assert not any(s.complete for s in segments)
    assert [s.working_day for s in segments] == [date(2025, 3, 26), date(2025, 3, 27)]


def test_pairing_span_follows_rules(make_punch):
    punches = resolve_punches([make_punch('2025-03-24 19:30', CHECK_IN), make_punch('2025-03-25 04:30', CHECK_OUT)])

    assert len(pair_segments(punches, PayRules(max_hours=8.0))) == 2


def test_fill_off_days_empty():
    assert fill_off_days([]) == []
    single = DailyRecord(date=date(2025, 3, 26))
    assert fill_off_days([single]) == [single]
