import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime

from punches import CHECK_IN, CHECK_OUT, DailyRecord, EmployeeRecord, PersistenceConflict

logger = logging.getLogger(__name__)

OFF_DAY_STATUS: str = 'off_day'
UNKNOWN_EMPLOYEE: str = 'Unknown Employee'


class RecordStore(ABC):
    """
    Persistence backend for approved days.

    Rows are keyed by employee and working day. `insert_time_records` raises
    PersistenceConflict when rows for that key already exist.
    """

    @abstractmethod
    def find_employee_by_number(self, employee_number: str) -> str | None:
        """Returns the store's id of the employee, or None."""

    @abstractmethod
    def create_employee(self, employee_number: str, name: str) -> str:
        """Creates the employee and returns its id."""

    @abstractmethod
    def delete_records_for_date_range(self, employee_id: str, start: date, end: date) -> int:
        """Deletes rows whose working day is within [start, end]; returns the count."""

    @abstractmethod
    def insert_time_records(self, rows: list[dict]) -> None:
        """Inserts the rows of one employee and working day."""


@dataclass
class SaveError:
    employee_name: str
    date: str
    error: str


@dataclass
class SaveResult:
    success_count: int = 0
    error_count: int = 0
    errors: list[SaveError] = field(default_factory=list)


def format_stamp(value: datetime) -> str:
    return value.strftime('%Y-%m-%dT%H:%M:%S')


def display_time(value: datetime | None) -> str:
    return value.strftime('%H:%M') if value is not None else 'Missing'


def to_store_rows(employee_id: str, day: DailyRecord) -> list[dict]:
    """
    Converts an approved day into store rows.

    An OFF-DAY is a single row stamped at noon with no hours. A worked day is a
    check-in row and a check-out row carrying the same day fields; both keep
    the working day, so a night shift's morning check-out stays on the day its
    shift began.

    Raises:
        ValueError: A worked day has neither a check-in nor a check-out.
    """
    working_day: str = day.date.isoformat()
    if day.is_off_day:
        return [{
            'employee_id': employee_id,
            'timestamp': f'{working_day}T12:00:00',
            'status': OFF_DAY_STATUS,
            'shift_type': day.shift_type.value,
            'notes': day.notes,
            'exact_hours': 0,
            'working_day': working_day,
        }]

    if day.first_check_in is None and day.last_check_out is None:
        raise ValueError('Missing both check-in and check-out times')

    shared: dict = {
        'employee_id': employee_id,
        'shift_type': day.shift_type.value,
        'is_late': day.is_late,
        'early_leave': day.early_leave,
        'deduction_minutes': day.penalty_minutes,
        'notes': f'{day.notes}; hours:{day.hours_worked:.2f}' if day.notes else f'hours:{day.hours_worked:.2f}',
        'exact_hours': day.hours_worked,
        'display_check_in': display_time(day.first_check_in),
        'display_check_out': display_time(day.last_check_out),
        'corrected_records': day.corrected_records,
        'working_day': working_day,
    }

    rows: list[dict] = []
    if day.first_check_in is not None:
        rows.append({**shared, 'timestamp': format_stamp(day.first_check_in), 'status': CHECK_IN})
    if day.last_check_out is not None:
        rows.append({**shared, 'timestamp': format_stamp(day.last_check_out), 'status': CHECK_OUT})
    return rows


def resolve_employee_id(store: RecordStore, employee: EmployeeRecord) -> str:
    employee_id = store.find_employee_by_number(employee.employee_number)
    if employee_id is None:
        employee_id = store.create_employee(employee.employee_number, employee.name or UNKNOWN_EMPLOYEE)
        logger.info(f'Created employee {employee.employee_number} ({employee.name or UNKNOWN_EMPLOYEE}).')
    return employee_id


def insert_day(store: RecordStore, employee_id: str, day: DailyRecord, rows: list[dict],
               overwrite: bool = True) -> None:
    """
    Inserts one day's rows. Existing rows for the day are replaced when
    `overwrite` is set, otherwise the conflict is raised.
    """
    try:
        store.insert_time_records(rows)
    except PersistenceConflict:
        if not overwrite:
            raise
        logger.warning(f'Replacing stored records of {employee_id=} on {day.date:%Y-%m-%d}.')
        store.delete_records_for_date_range(employee_id, day.date, day.date)
        store.insert_time_records(rows)


def save_records(store: RecordStore, employees: list[EmployeeRecord], overwrite: bool = True) -> SaveResult:
    """
    Persists the approved days of every employee.

    A day that fails is reported in the result and does not stop the others.

    Args:
        store: The persistence backend.
        employees: Reconciled and reviewed employees.
        overwrite: Replace days that are already stored (last write wins).

    Returns:
        Counts of saved and failed days with per-day error details.
    """
    result = SaveResult()
    for employee in employees:
        approved: list[DailyRecord] = [d for d in employee.days if d.approved]
        if not approved:
            continue

        employee_id: str = resolve_employee_id(store, employee)
        for day in approved:
            try:
                insert_day(store, employee_id, day, to_store_rows(employee_id, day), overwrite)
                result.success_count += 1
            except (ValueError, PersistenceConflict) as e:
                result.error_count += 1
                result.errors.append(SaveError(employee.name, day.date.isoformat(), str(e)))
                logger.error(f'Could not save {employee.name} on {day.date:%Y-%m-%d}: {e}')

    logger.info(f'Saved {result.success_count} day(s), {result.error_count} error(s).')
    return result
