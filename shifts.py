from datetime import date, datetime, timedelta

from punches import CHECK_IN, CHECK_OUT, AmbiguousPunchError, ShiftType

# ==============================================================================
# SHIFT CONFIGURATION
# Standard display hours and review graces for every shift type.
#
# Properties:
#   - start / end: Standard shift times ('HH:MM AM/PM'). An end before the start
#                  means the shift finishes on the next calendar day.
#   - late_grace: Minutes after the standard start before a check-in is late.
#   - early_grace: Minutes before the standard end a check-out may happen
#                  without being an early leave.
#
# Canteen staff work one of two variants; the check-in hour picks the variant.
# ==============================================================================
SHIFT_CONFIG: dict[str, dict] = {
    'morning': {'start': '05:00 AM', 'end': '02:00 PM', 'late_grace': 0, 'early_grace': 0},
    'evening': {'start': '01:00 PM', 'end': '10:00 PM', 'late_grace': 0, 'early_grace': 0},
    'night': {'start': '09:00 PM', 'end': '06:00 AM', 'late_grace': 30, 'early_grace': 30},
    'canteen': {'start': '07:00 AM', 'end': '04:00 PM', 'late_grace': 10, 'early_grace': 0},
    'canteen_late': {'start': '08:00 AM', 'end': '05:00 PM', 'late_grace': 10, 'early_grace': 0},
}

LATE_CANTEEN_HOUR: int = 8


def str_to_delta(time_str: str) -> timedelta:
    """
    Converts a time string (e.g., '07:00 AM') into a timedelta object.

    Args:
        time_str: The time string in 'HH:MM AM/PM' format.

    Returns:
        A timedelta object representing the time from midnight.
    """
    # time format is HH:MM AM/PM
    dt_obj = datetime.strptime(time_str, '%I:%M %p')
    return timedelta(hours=dt_obj.hour, minutes=dt_obj.minute)


def classify(timestamp: datetime) -> ShiftType:
    """
    Maps a punch time to a shift category using the local hour of day.

    - 20:00 to 04:59: night
    - 07:00 to 08:59: canteen (07:00 early variant, 08:00 late variant)
    - 05:00 to 11:59: morning
    - 12:00 to 19:59: evening
    """
    hour: int = timestamp.hour
    if hour >= 20 or hour < 5:
        return ShiftType.NIGHT
    if hour in (7, 8):
        return ShiftType.CANTEEN
    if hour < 12:
        return ShiftType.MORNING
    return ShiftType.EVENING


def config_key(shift_type: ShiftType, check_in: datetime | None = None) -> str | None:
    if shift_type == ShiftType.CANTEEN and check_in is not None and check_in.hour == LATE_CANTEEN_HOUR:
        return 'canteen_late'
    if shift_type.value in SHIFT_CONFIG:
        return shift_type.value
    return None


def standard_times(shift_type: ShiftType, day: date, check_in: datetime | None = None,
                   config: dict[str, dict] | None = None) -> tuple[datetime, datetime] | None:
    """
    Returns the standard start and end of a shift worked on `day`.

    Args:
        shift_type: The shift category.
        day: The working day the shift is attributed to.
        check_in: The actual check-in, used to pick the canteen variant.
        config: Shift table, defaults to SHIFT_CONFIG.

    Returns:
        A (start, end) tuple of datetimes, or None for shift types without
        standard hours (unknown, off-day). Night shifts end on the next day.
    """
    if config is None:
        config = SHIFT_CONFIG

    key: str | None = config_key(shift_type, check_in)
    if key is None or key not in config:
        return None

    midnight: datetime = datetime.combine(day, datetime.min.time())
    start: datetime = midnight + str_to_delta(config[key]['start'])
    end: datetime = midnight + str_to_delta(config[key]['end'])
    if end <= start:
        end += timedelta(days=1)
    return start, end


def is_late(check_in: datetime, shift_type: ShiftType, day: date,
            config: dict[str, dict] | None = None) -> bool:
    if config is None:
        config = SHIFT_CONFIG
    times = standard_times(shift_type, day, check_in, config)
    if times is None:
        return False
    start, _ = times
    grace: int = config[config_key(shift_type, check_in)]['late_grace']
    return (check_in - start).total_seconds() / 60.0 > grace


def is_early_leave(check_out: datetime, shift_type: ShiftType, day: date, check_in: datetime | None = None,
                   config: dict[str, dict] | None = None) -> bool:
    if config is None:
        config = SHIFT_CONFIG
    times = standard_times(shift_type, day, check_in, config)
    if times is None:
        return False
    _, end = times
    grace: int = config[config_key(shift_type, check_in)]['early_grace']
    return (end - check_out).total_seconds() / 60.0 > grace


def infer_status(timestamp: datetime) -> str:
    """
    Guesses the label of a lone punch from its hour.

    Punches between 05:00 and 12:00 start a shift, punches between 12:00 and
    22:00 end one.

    Raises:
        AmbiguousPunchError: The punch falls outside both windows.
    """
    hour: int = timestamp.hour
    if 5 <= hour < 12:
        return CHECK_IN
    if 12 <= hour < 22:
        return CHECK_OUT
    raise AmbiguousPunchError(f'Cannot infer punch type at {timestamp:%Y-%m-%d %H:%M}.')
