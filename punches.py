from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum

CHECK_IN: str = 'check_in'
CHECK_OUT: str = 'check_out'


class ShiftType(str, Enum):
    MORNING = 'morning'
    EVENING = 'evening'
    NIGHT = 'night'
    CANTEEN = 'canteen'
    UNKNOWN = 'unknown'
    OFF_DAY = 'off_day'


class ReviewState(str, Enum):
    UNREVIEWED = 'unreviewed'
    APPROVED = 'approved'
    REJECTED = 'rejected'


# ==============================================================================
# FLAG CONFIGURATION
# Central source of truth for all day annotations.
#
# Properties:
#   - text: The user-facing message that appears in the record notes and in the
#           Excel comment of the report.
#   - crucial: (bool) If True, the day needs a human reviewer and the report
#              highlights it red. If False, it's a non-critical notice.
# ==============================================================================
FLAG_CONFIG: dict[str, dict] = {
    'off_day': {
        'text': 'OFF-DAY',
        'crucial': False
    },
    'night_shift': {
        'text': 'Night shift (spans to next day)',
        'crucial': False
    },
    'corrected': {
        'text': 'Info: Punch labels corrected.',
        'crucial': False
    },
    'duplicate_punch': {
        'text': 'Info: Duplicate punch ignored.',
        'crucial': False
    },
    'excessive_overtime': {
        'text': 'Info: Overtime.',
        'crucial': False
    },
    'manual_entry': {
        'text': 'Manual entry',
        'crucial': False
    },
    'edited': {
        'text': 'Edited',
        'crucial': False
    },
    'penalty_applied': {
        'text': 'Penalty applied',
        'crucial': False
    },
    # --- WARNING FLAGS (Crucial: True) ---
    'missing_check_in': {
        'text': 'CRITICAL: Missing check-in.',
        'crucial': True
    },
    'missing_check_out': {
        'text': 'CRITICAL: Missing check-out.',
        'crucial': True
    },
    'ambiguous_punch': {
        'text': 'REVIEW: Unresolved punch labels.',
        'crucial': True
    },
    'unpaired_punch': {
        'text': 'REVIEW: Unpaired punch on worked day.',
        'crucial': True
    },
    'hours_capped': {
        'text': 'REVIEW: Long workday, hours capped.',
        'crucial': True
    },
}


class ParseError(ValueError):
    """An import row lacks a required field or carries an unparseable value."""


class AmbiguousPunchError(ValueError):
    """The resolver cannot confidently label a punch."""


class PersistenceConflict(RuntimeError):
    """The record store already holds rows for an employee and working day."""

    def __init__(self, employee_id: str, working_day: date):
        super().__init__(f'Records already stored for {employee_id=} on {working_day:%Y-%m-%d}.')
        self.employee_id = employee_id
        self.working_day = working_day


class InvalidEditError(ValueError):
    """A manual edit was rejected before it could change the record."""


@dataclass
class Punch:
    """
    A single check-in or check-out event read from the time-clock export.

    `raw_status` is what the device recorded and is never changed. The resolver
    only ever writes the derived fields (`status`, `shift_type`, `working_day`
    and the audit markers); `timestamp` is immutable by convention.
    """
    employee_id: str
    employee_name: str
    timestamp: datetime
    raw_status: str
    sequence: int
    status: str = ''
    shift_type: ShiftType | None = None
    working_day: date | None = None
    mislabeled: bool = False
    ignored: bool = False
    processed: bool = False
    ambiguous: bool = False
    reason: str = ''

    def __post_init__(self):
        if not self.status:
            self.status = self.raw_status

    @property
    def original_status(self) -> str:
        return self.raw_status

    @property
    def sort_key(self) -> tuple[datetime, int]:
        return self.timestamp, self.sequence

    def relabel(self, status: str, reason: str) -> None:
        """Sets the resolved status, keeping the device label for audit."""
        self.status = status
        if status != self.raw_status:
            self.mislabeled = True
        self.processed = True
        self.reason = reason

    def ignore(self, reason: str) -> None:
        """Excludes the punch from pairing as a duplicate artifact."""
        self.ignored = True
        self.mislabeled = True
        self.processed = True
        self.reason = reason


@dataclass
class DailyRecord:
    """
    One employee's attendance outcome for one working day.

    `pairs` holds every complete (check-in, check-out) interval that was worked
    on the day; the hours calculator sums them so split shifts do not count the
    gap between them.
    """
    date: date
    first_check_in: datetime | None = None
    last_check_out: datetime | None = None
    shift_type: ShiftType = ShiftType.UNKNOWN
    hours_worked: float = 0.0
    penalty_minutes: int = 0
    is_late: bool = False
    early_leave: bool = False
    excessive_overtime: bool = False
    missing_check_in: bool = False
    missing_check_out: bool = False
    corrected_records: bool = False
    is_cross_day: bool = False
    review: ReviewState = ReviewState.UNREVIEWED
    flags: list[str] = field(default_factory=list)
    remark: str = ''
    pairs: list[tuple[datetime, datetime]] = field(default_factory=list)
    all_time_records: list[Punch] = field(default_factory=list)

    @property
    def approved(self) -> bool:
        return self.review == ReviewState.APPROVED

    @property
    def is_off_day(self) -> bool:
        return self.shift_type == ShiftType.OFF_DAY

    @property
    def needs_review(self) -> bool:
        return any(FLAG_CONFIG[flag]['crucial'] for flag in self.flags if flag in FLAG_CONFIG)

    @property
    def notes(self) -> str:
        parts: list[str] = [FLAG_CONFIG[flag]['text'] for flag in self.flags if flag in FLAG_CONFIG]
        if self.remark:
            parts.append(self.remark)
        return '; '.join(parts)

    def add_flag(self, flag: str) -> None:
        if flag not in self.flags:
            self.flags.append(flag)

    def remove_flag(self, flag: str) -> None:
        if flag in self.flags:
            self.flags.remove(flag)


@dataclass
class EmployeeRecord:
    employee_number: str
    name: str
    days: list[DailyRecord] = field(default_factory=list)

    @property
    def total_days(self) -> int:
        return len(self.days)

    def day(self, day: date) -> DailyRecord | None:
        for record in self.days:
            if record.date == day:
                return record
        return None


@dataclass
class ImportRow:
    """A row of the device export before parsing. All values are raw text."""
    timestamp: str
    employee_number: str
    employee_name: str
    status_text: str


@dataclass
class SkippedRow:
    row_number: int
    row: ImportRow
    reason: str


@dataclass
class ImportResult:
    punches: list[Punch] = field(default_factory=list)
    skipped: list[SkippedRow] = field(default_factory=list)
    logs: list[str] = field(default_factory=list)

    @property
    def skipped_count(self) -> int:
        return len(self.skipped)
