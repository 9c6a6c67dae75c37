"""
Punch label resolution.

Device exports frequently carry the wrong check-in/check-out label: double
badge scans, employees pressing the wrong key, night shifts whose checkout lands
on the next calendar day. This module corrects the labels of one employee's
punches with an ordered cascade of heuristics. Every stage only looks at punches
that no earlier stage has resolved, so the narrower rules win.

The resolver never changes a timestamp and never drops a punch: duplicates are
marked `ignored`, corrected punches keep their device label in `raw_status`,
and punches that no rule can explain keep their label and are marked
`ambiguous` for a human reviewer.
"""
import logging
from collections import defaultdict
from collections.abc import Callable
from dataclasses import replace
from datetime import date, timedelta

from payrules import DEFAULT_RULES, PayRules
from punches import CHECK_IN, CHECK_OUT, AmbiguousPunchError, Punch, ShiftType
from shifts import classify, infer_status

logger = logging.getLogger(__name__)

NIGHT_START_HOURS: range = range(20, 24)
NIGHT_END_HOURS: range = range(5, 8)
DAY_SHIFTS: set[ShiftType] = {ShiftType.MORNING, ShiftType.EVENING, ShiftType.CANTEEN}


def fresh_copy(punch: Punch) -> Punch:
    """Copies a punch with every derived field reset to the device values."""
    return replace(punch, status=punch.raw_status, shift_type=None, working_day=None, mislabeled=False,
                   ignored=False, processed=False, ambiguous=False, reason='')


def group_by_day(punches: list[Punch]) -> dict[date, list[Punch]]:
    """
    Groups the non-ignored punches by calendar date.

    Returns:
        A date-ascending dictionary whose groups are in chronological order,
        with the file sequence breaking timestamp ties.
    """
    days: dict[date, list[Punch]] = defaultdict(list)
    for punch in punches:
        if not punch.ignored:
            days[punch.timestamp.date()].append(punch)
    return {day: sorted(group, key=lambda p: p.sort_key) for day, group in sorted(days.items())}


def pending(group: list[Punch]) -> list[Punch]:
    return [punch for punch in group if not punch.processed and not punch.ignored]


def stamp_shift(punches: list[Punch], shift_type: ShiftType) -> None:
    for punch in punches:
        punch.shift_type = shift_type


def hours_between(first: Punch, second: Punch) -> float:
    return (second.timestamp - first.timestamp).total_seconds() / 3600.0


# ------------------------------------------------------------------------------
# Stage 1: double scans
# ------------------------------------------------------------------------------
def suppress_duplicates(punches: list[Punch], rules: PayRules) -> None:
    """
    Ignores same-type punches that are too close together to be two shifts.

    Of a close check-in pair the earlier one is kept, of a close check-out pair
    the later one. The dropped punch is never flipped to the opposite type: a
    flip inside the duplicate window would fabricate a shift of a few minutes.
    """
    window: timedelta = timedelta(minutes=rules.duplicate_window_minutes)

    for group in group_by_day(punches).values():
        kept: Punch | None = None
        for punch in group:
            if kept is not None and punch.status == kept.status and punch.timestamp - kept.timestamp <= window:
                # A shift starts at the first scan and ends at the last one.
                if punch.status == CHECK_IN:
                    punch.ignore('duplicate check-in')
                    continue
                kept.ignore('duplicate check-out')
            kept = punch


# ------------------------------------------------------------------------------
# Stage 2: night shifts crossing midnight
# ------------------------------------------------------------------------------
def is_night_span(evening: Punch, morning: Punch) -> bool:
    return (evening.timestamp.hour in NIGHT_START_HOURS and
            morning.timestamp.hour in NIGHT_END_HOURS and
            morning.timestamp.date() == evening.timestamp.date() + timedelta(days=1))


def has_night_pattern(punches: list[Punch]) -> bool:
    """
    Checks whether an employee works night shifts at all.

    An evening punch followed directly by an early-morning punch on the next day
    counts when at least one of the two carries the expected label.
    """
    ordered: list[Punch] = sorted((p for p in punches if not p.ignored), key=lambda p: p.sort_key)
    for current, following in zip(ordered, ordered[1:]):
        if is_night_span(current, following) and (current.status == CHECK_IN or following.status == CHECK_OUT):
            return True
    return False


def find_night_start(group: list[Punch], window: timedelta) -> Punch | None:
    # The shift start must not close an earlier shift of the same day.
    for punch in pending(group):
        if punch.timestamp.hour not in NIGHT_START_HOURS:
            continue
        if any(punch.timestamp - window <= other.timestamp < punch.timestamp for other in group if other is not punch):
            continue
        return punch
    return None


def find_night_end(group: list[Punch], window: timedelta) -> Punch | None:
    # The shift end must not open a later shift of the same day.
    for punch in reversed(pending(group)):
        if punch.timestamp.hour not in NIGHT_END_HOURS:
            continue
        if any(punch.timestamp < other.timestamp <= punch.timestamp + window for other in group if other is not punch):
            continue
        return punch
    return None


def pair_night_shifts(punches: list[Punch], rules: PayRules) -> None:
    """
    Links an evening punch with the next morning's punch as one night shift.

    Both punches are relabeled check-in/check-out, tagged as night shift and
    attributed to the evening's date. Punches between them are ignored.
    """
    if not has_night_pattern(punches):
        return

    window: timedelta = timedelta(hours=rules.night_window_hours)
    days: dict[date, list[Punch]] = group_by_day(punches)

    for day, group in days.items():
        next_group: list[Punch] | None = days.get(day + timedelta(days=1))
        if not next_group:
            continue

        evening: Punch | None = find_night_start(group, window)
        morning: Punch | None = find_night_end(next_group, window)
        if evening is None or morning is None:
            continue

        # Anything scanned during the night shift is a stray scan, unless an earlier stage settled it.
        between: list[Punch] = [p for p in group + next_group
                                if evening.sort_key < p.sort_key < morning.sort_key and not p.ignored]
        if any(p.processed for p in between):
            continue

        evening.relabel(CHECK_IN, 'night shift start')
        morning.relabel(CHECK_OUT, 'night shift end')
        stamp_shift([evening, morning], ShiftType.NIGHT)
        evening.working_day = day
        morning.working_day = day
        for punch in between:
            punch.ignore('punch inside night shift')
            punch.working_day = day

        logger.debug(f'Night shift {evening.timestamp:%Y-%m-%d %H:%M} -> {morning.timestamp:%Y-%m-%d %H:%M} '
                     f'for employee {evening.employee_id}.')


# ------------------------------------------------------------------------------
# Stage 3: two punches with swapped labels
# ------------------------------------------------------------------------------
def flip_two_punch_days(punches: list[Punch], rules: PayRules) -> None:
    """
    Resolves days with exactly two open punches.

    A correct in/out pair is accepted as is. Any other labelling is flipped to
    in/out when the two punches are a plausible shift length apart.
    """
    for group in group_by_day(punches).values():
        open_punches: list[Punch] = pending(group)
        if len(open_punches) != 2:
            continue

        first, second = open_punches
        if (first.status, second.status) == (CHECK_IN, CHECK_OUT):
            first.relabel(CHECK_IN, 'in/out pair')
            second.relabel(CHECK_OUT, 'in/out pair')
        elif rules.flip_min_hours <= hours_between(first, second) <= rules.flip_max_hours:
            first.relabel(CHECK_IN, 'flipped pair')
            second.relabel(CHECK_OUT, 'flipped pair')
            logger.debug(f'Flipped labels of {first.timestamp:%Y-%m-%d %H:%M} and {second.timestamp:%H:%M} '
                         f'for employee {first.employee_id}.')
        else:
            continue
        stamp_shift([first, second], classify(first.timestamp))


# ------------------------------------------------------------------------------
# Stage 4: several shifts on one day
# ------------------------------------------------------------------------------
def split_at_gaps(punches: list[Punch], gap: timedelta) -> list[list[Punch]]:
    segments: list[list[Punch]] = [[punches[0]]]
    for prior, punch in zip(punches, punches[1:]):
        if punch.timestamp - prior.timestamp >= gap:
            segments.append([])
        segments[-1].append(punch)
    return segments


def resolve_lone_punch(punch: Punch) -> None:
    try:
        status: str = infer_status(punch.timestamp)
    except AmbiguousPunchError as e:
        punch.processed = True
        punch.ambiguous = True
        punch.reason = 'ambiguous lone punch'
        logger.warning(f'{e} Keeping device label {punch.raw_status!r} for employee {punch.employee_id}.')
        return
    punch.relabel(status, 'lone punch')


def alternates(punches: list[Punch]) -> bool:
    return len(punches) % 2 == 0 and [p.status for p in punches] == [CHECK_IN, CHECK_OUT] * (len(punches) // 2)


def segment_shifts(punches: list[Punch], rules: PayRules) -> None:
    """
    Splits busy days into shifts at long gaps.

    A day whose labels already alternate check-in/check-out is accepted as is.
    Otherwise, within a segment the first punch starts and the last punch ends
    the shift; punches in between are double scans. A segment of a single
    punch is labelled from its hour of day.
    """
    gap: timedelta = timedelta(hours=rules.segment_gap_hours)

    for group in group_by_day(punches).values():
        open_punches: list[Punch] = pending(group)
        if len(open_punches) < 3:
            continue

        if alternates(open_punches):
            for check_in, check_out in zip(open_punches[::2], open_punches[1::2]):
                check_in.relabel(CHECK_IN, 'in/out sequence')
                check_out.relabel(CHECK_OUT, 'in/out sequence')
                stamp_shift([check_in, check_out], classify(check_in.timestamp))
            continue

        # Short breaks stay inside one shift; only gaps of segment_gap_hours or more start a new one.
        segments: list[list[Punch]] = split_at_gaps(open_punches, gap)
        if len(segments) < 2:
            continue

        for segment in segments:
            if len(segment) == 1:
                resolve_lone_punch(segment[0])
                continue
            segment[0].relabel(CHECK_IN, 'segment start')
            segment[-1].relabel(CHECK_OUT, 'segment end')
            for punch in segment[1:-1]:
                punch.ignore('duplicate inside segment')
            stamp_shift([segment[0], segment[-1]], classify(segment[0].timestamp))


# ------------------------------------------------------------------------------
# Stage 5 and 6: whatever is left
# ------------------------------------------------------------------------------
def sequence_fallback(punches: list[Punch], rules: PayRules) -> None:
    """Forces the earliest open punch of a busy day to check-in and the latest to check-out."""
    for group in group_by_day(punches).values():
        open_punches: list[Punch] = pending(group)
        if len(open_punches) <= 2:
            continue
        open_punches[0].relabel(CHECK_IN, 'earliest punch of day')
        open_punches[-1].relabel(CHECK_OUT, 'latest punch of day')
        stamp_shift([open_punches[0], open_punches[-1]], classify(open_punches[0].timestamp))


def normalize_day_shifts(punches: list[Punch], rules: PayRules) -> None:
    """
    Settles the remaining punches of days worked entirely in daytime hours.

    Punches between the day's first check-in and last check-out are double
    scans. Two leftover punches become a check-in/check-out pair when they span
    a plausible shift.
    """
    for group in group_by_day(punches).values():
        open_punches: list[Punch] = pending(group)
        if not open_punches:
            continue

        day_punches: list[Punch] = [p for p in group if p.shift_type != ShiftType.NIGHT]
        if any(classify(p.timestamp) not in DAY_SHIFTS for p in day_punches):
            continue

        starts: list[Punch] = [p for p in day_punches if p.processed and p.status == CHECK_IN]
        ends: list[Punch] = [p for p in day_punches if p.processed and p.status == CHECK_OUT]
        if starts and ends:
            first_in: Punch = min(starts, key=lambda p: p.sort_key)
            last_out: Punch = max(ends, key=lambda p: p.sort_key)
            for punch in open_punches:
                if first_in.sort_key < punch.sort_key < last_out.sort_key:
                    punch.ignore('duplicate between first check-in and last check-out')
            continue

        if len(open_punches) == 2:
            first, second = open_punches
            if rules.min_shift_hours <= hours_between(first, second) <= rules.max_hours:
                first.relabel(CHECK_IN, 'earliest punch of day')
                second.relabel(CHECK_OUT, 'latest punch of day')
                stamp_shift([first, second], classify(first.timestamp))


def finalize(punches: list[Punch]) -> None:
    """
    Closes the resolution: every punch ends up processed with a working day.

    Open punches keep their device label. When a day still has several of them
    the labels could not be explained and the punches are marked ambiguous.
    """
    for group in group_by_day(punches).values():
        open_punches: list[Punch] = pending(group)
        unresolved: bool = len(open_punches) > 1
        for punch in open_punches:
            punch.processed = True
            if unresolved:
                punch.ambiguous = True
                punch.reason = 'unresolved'
            else:
                punch.reason = 'label kept'

    for punch in punches:
        if punch.working_day is None:
            punch.working_day = punch.timestamp.date()
        if punch.shift_type is None:
            punch.shift_type = classify(punch.timestamp)


STAGES: tuple[Callable[[list[Punch], PayRules], None], ...] = (
    suppress_duplicates,
    pair_night_shifts,
    flip_two_punch_days,
    segment_shifts,
    sequence_fallback,
    normalize_day_shifts,
)


def resolve_punches(punches: list[Punch], rules: PayRules = DEFAULT_RULES) -> list[Punch]:
    """
    Corrects the check-in/check-out labels of one employee's punches.

    Args:
        punches: Every punch of a single employee, in any order.
        rules: Thresholds for duplicates, flips, gaps and night pairing.

    Returns:
        Resolved copies of the punches in file order. The input punches are not
        modified, so resolving the same list twice gives the same result.
    """
    resolved: list[Punch] = [fresh_copy(p) for p in sorted(punches, key=lambda p: p.sequence)]
    if not resolved:
        return resolved

    for stage in STAGES:
        stage(resolved, rules)
    finalize(resolved)

    relabeled: int = sum(1 for p in resolved if p.mislabeled and not p.ignored)
    ignored: int = sum(1 for p in resolved if p.ignored)
    ambiguous: int = sum(1 for p in resolved if p.ambiguous)
    logger.debug(f'Employee {resolved[0].employee_id}: {len(resolved)} punches, {relabeled} relabeled, '
                 f'{ignored} ignored, {ambiguous} ambiguous.')
    return resolved
