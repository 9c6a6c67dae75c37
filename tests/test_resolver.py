from datetime import date

from punches import CHECK_IN, CHECK_OUT, ShiftType
from resolver import resolve_punches


def statuses(punches):
    return ['ignored' if p.ignored else p.status for p in punches]


def test_flipped_pair_is_relabeled(make_punch):
    punches = [make_punch('2025-03-26 08:55', CHECK_OUT), make_punch('2025-03-26 17:40', CHECK_IN)]
    resolved = resolve_punches(punches)

    assert statuses(resolved) == [CHECK_IN, CHECK_OUT]
    assert all(p.mislabeled for p in resolved)
    assert [p.raw_status for p in resolved] == [CHECK_OUT, CHECK_IN]


def test_input_punches_are_not_modified(make_punch):
    punches = [make_punch('2025-03-26 08:55', CHECK_OUT), make_punch('2025-03-26 17:40', CHECK_IN)]
    resolve_punches(punches)

    assert [p.status for p in punches] == [CHECK_OUT, CHECK_IN]
    assert not any(p.mislabeled or p.processed for p in punches)


def test_resolving_twice_gives_same_labels(make_punch):
    punches = [make_punch('2025-03-26 08:55', CHECK_OUT), make_punch('2025-03-26 17:40', CHECK_IN),
               make_punch('2025-03-27 08:00', CHECK_IN), make_punch('2025-03-27 08:20', CHECK_IN)]
    assert statuses(resolve_punches(punches)) == statuses(resolve_punches(punches))


def test_correct_pair_is_kept(make_punch):
    resolved = resolve_punches([make_punch('2025-03-26 08:00', CHECK_IN), make_punch('2025-03-26 12:00', CHECK_OUT)])
    assert statuses(resolved) == [CHECK_IN, CHECK_OUT]
    assert not any(p.mislabeled for p in resolved)


def test_duplicate_check_in_keeps_earliest(make_punch):
    resolved = resolve_punches([make_punch('2025-03-26 08:00', CHECK_IN), make_punch('2025-03-26 08:10', CHECK_IN),
                                make_punch('2025-03-26 17:00', CHECK_OUT)])
    assert statuses(resolved) == [CHECK_IN, 'ignored', CHECK_OUT]


def test_duplicate_check_out_keeps_latest(make_punch):
    resolved = resolve_punches([make_punch('2025-03-26 08:00', CHECK_IN), make_punch('2025-03-26 17:00', CHECK_OUT),
                                make_punch('2025-03-26 17:20', CHECK_OUT)])
    assert statuses(resolved) == [CHECK_IN, 'ignored', CHECK_OUT]


def test_night_shift_pairs_across_midnight(make_punch):
    resolved = resolve_punches([make_punch('2025-03-24 20:57', CHECK_IN), make_punch('2025-03-25 05:53', CHECK_OUT)])

    assert statuses(resolved) == [CHECK_IN, CHECK_OUT]
    assert all(p.shift_type == ShiftType.NIGHT for p in resolved)
    assert all(p.working_day == date(2025, 3, 24) for p in resolved)


def test_night_shift_with_wrong_start_label(make_punch):
    resolved = resolve_punches([make_punch('2025-03-24 20:57', CHECK_OUT), make_punch('2025-03-25 05:53', CHECK_OUT)])

    assert statuses(resolved) == [CHECK_IN, CHECK_OUT]
    assert resolved[0].mislabeled
    assert not resolved[1].mislabeled
    assert resolved[1].working_day == date(2025, 3, 24)


def test_evening_punch_after_day_shift_does_not_start_night(make_punch):
    resolved = resolve_punches([make_punch('2025-03-24 20:57', CHECK_IN), make_punch('2025-03-25 05:53', CHECK_OUT),
                                make_punch('2025-03-26 13:00', CHECK_IN), make_punch('2025-03-26 22:05', CHECK_OUT),
                                make_punch('2025-03-27 05:10', CHECK_IN), make_punch('2025-03-27 13:30', CHECK_OUT)])

    assert statuses(resolved) == [CHECK_IN, CHECK_OUT] * 3
    assert [p.shift_type for p in resolved] == [ShiftType.NIGHT] * 2 + [ShiftType.EVENING] * 2 + [ShiftType.MORNING] * 2
    assert resolved[3].working_day == date(2025, 3, 26)
    assert resolved[4].working_day == date(2025, 3, 27)


def test_day_worker_is_never_night_paired(make_punch):
    resolved = resolve_punches([make_punch('2025-03-26 21:00', CHECK_OUT), make_punch('2025-03-27 06:00', CHECK_IN)])

    # neither punch carries the night shift label, so the employee has no night pattern
    assert statuses(resolved) == [CHECK_OUT, CHECK_IN]
    assert not any(p.mislabeled for p in resolved)
    assert [p.working_day for p in resolved] == [date(2025, 3, 26), date(2025, 3, 27)]
    assert [p.reason for p in resolved] == ['label kept', 'label kept']


def test_punches_inside_night_shift_are_ignored(make_punch):
    resolved = resolve_punches([make_punch('2025-03-22 21:00', CHECK_IN), make_punch('2025-03-23 06:00', CHECK_OUT),
                                make_punch('2025-03-24 20:57', CHECK_IN), make_punch('2025-03-24 23:30', CHECK_OUT),
                                make_punch('2025-03-25 01:00', CHECK_IN), make_punch('2025-03-25 05:53', CHECK_OUT)])

    assert statuses(resolved) == [CHECK_IN, CHECK_OUT, CHECK_IN, 'ignored', 'ignored', CHECK_OUT]
    assert all(p.working_day == date(2025, 3, 24) for p in resolved[2:])
    assert resolved[3].reason == 'punch inside night shift'
    assert resolved[5].shift_type == ShiftType.NIGHT


def test_double_scan_then_flipped_check_out(make_punch):
    resolved = resolve_punches([make_punch('2025-03-26 06:00', CHECK_IN), make_punch('2025-03-26 06:40', CHECK_IN),
                                make_punch('2025-03-26 14:05', CHECK_IN)])

    # 06:40 is a second check-in within the duplicate window
    assert statuses(resolved) == [CHECK_IN, 'ignored', CHECK_OUT]
    assert resolved[2].mislabeled


def test_segment_with_lone_punch(make_punch):
    resolved = resolve_punches([make_punch('2025-03-26 06:00', CHECK_IN), make_punch('2025-03-26 06:40', CHECK_OUT),
                                make_punch('2025-03-26 14:05', CHECK_IN)])

    assert statuses(resolved) == [CHECK_IN, CHECK_OUT, CHECK_OUT]
    assert resolved[2].mislabeled
    assert resolved[2].reason == 'lone punch'


def test_sequence_fallback_and_normalization(make_punch):
    resolved = resolve_punches([make_punch('2025-03-26 08:00', CHECK_OUT), make_punch('2025-03-26 09:10', CHECK_IN),
                                make_punch('2025-03-26 10:20', CHECK_OUT)])

    assert statuses(resolved) == [CHECK_IN, 'ignored', CHECK_OUT]
    assert resolved[0].mislabeled


def test_unexplained_punches_are_ambiguous(make_punch):
    resolved = resolve_punches([make_punch('2025-03-26 13:00', CHECK_OUT), make_punch('2025-03-26 14:00', CHECK_IN)])

    assert all(p.ambiguous for p in resolved)
    assert [p.status for p in resolved] == [CHECK_OUT, CHECK_IN]
    assert all(p.processed for p in resolved)


def test_every_punch_gets_a_working_day_and_shift(make_punch):
    resolved = resolve_punches([make_punch('2025-03-26 09:00', CHECK_IN)])
    assert resolved[0].working_day == date(2025, 3, 26)
    assert resolved[0].shift_type == ShiftType.MORNING
