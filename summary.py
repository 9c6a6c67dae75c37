import logging
from dataclasses import asdict, dataclass
from datetime import date

import pandas as pd

from payrules import DEFAULT_RULES, FRIDAY, PayRules, is_double_time, payable_hours
from punches import DailyRecord, EmployeeRecord

logger = logging.getLogger(__name__)

EXPORT_COLUMNS: list[str] = ['employeeNumber', 'name', 'date', 'checkIn', 'checkOut', 'hoursWorked', 'shiftType',
                             'approved', 'isLate', 'earlyLeave', 'penaltyMinutes', 'notes']

SUMMARY_HEADERS: dict[str, str] = {
    'employee_number': 'Employee Number',
    'name': 'Name',
    'total_days': 'Total Days',
    'worked_days': 'Worked Days',
    'off_days': 'Off Days',
    'approved_days': 'Approved Days',
    'review_days': 'Days To Review',
    'regular_hours': 'Regular Hours',
    'double_time_hours': 'Double-Time Hours',
    'fridays_worked': 'Fridays Worked',
    'overtime_hours': 'Over Time (Hours)',
    'overtime_days': 'Over Time (Days)',
    'payable_hours': 'Total Payable Hours',
}


@dataclass
class EmployeeSummary:
    """
    Period totals of one employee.

    `regular_hours` is the plain sum of `hours_worked`; `double_time_hours` is
    the part of it worked on Fridays and holidays, so the payable total is
    their sum.
    """
    employee_number: str
    name: str
    total_days: int = 0
    worked_days: int = 0
    off_days: int = 0
    approved_days: int = 0
    review_days: int = 0
    regular_hours: float = 0.0
    double_time_hours: float = 0.0
    fridays_worked: int = 0
    overtime_hours: float = 0.0
    overtime_days: float = 0.0
    payable_hours: float = 0.0


def month_bounds(month: str) -> tuple[date, date]:
    """
    Returns the first and last day of a 'YYYY-MM' month.

    Raises:
        ValueError: If the month cannot be parsed.
    """
    try:
        period = pd.Period(month, freq='M')
    except ValueError as e:
        raise ValueError(f'Invalid month {month=}, expected YYYY-MM. Details: {e}')
    return period.start_time.date(), period.end_time.date()


def days_in_period(days: list[DailyRecord], start: date | None = None, end: date | None = None) -> list[DailyRecord]:
    return [d for d in days if (start is None or d.date >= start) and (end is None or d.date <= end)]


def summarize_employee(employee: EmployeeRecord, holidays: set[date] | None = None, start: date | None = None,
                       end: date | None = None, rules: PayRules = DEFAULT_RULES) -> EmployeeSummary:
    """
    Totals one employee's days between `start` and `end` (inclusive).

    Overtime is every hour above the full-shift credit of a day, and overtime
    days express it in full shifts.
    """
    days: list[DailyRecord] = days_in_period(employee.days, start, end)
    worked: list[DailyRecord] = [d for d in days if not d.is_off_day and d.hours_worked > 0]

    regular: float = sum(d.hours_worked for d in worked)
    double: float = sum(d.hours_worked for d in worked if is_double_time(d.date, holidays))
    overtime: float = sum(max(0.0, d.hours_worked - rules.full_shift_hours) for d in worked)

    return EmployeeSummary(
        employee_number=employee.employee_number,
        name=employee.name,
        total_days=len(days),
        worked_days=len(worked),
        off_days=sum(1 for d in days if d.is_off_day),
        approved_days=sum(1 for d in days if d.approved),
        review_days=sum(1 for d in days if d.needs_review),
        regular_hours=round(regular, 2),
        double_time_hours=round(double, 2),
        fridays_worked=sum(1 for d in worked if d.date.weekday() == FRIDAY),
        overtime_hours=round(overtime, 2),
        overtime_days=round(overtime / rules.full_shift_hours, 2),
        payable_hours=round(sum(payable_hours(d, holidays) for d in worked), 2),
    )


def summarize(employees: list[EmployeeRecord], holidays: set[date] | None = None, month: str | None = None,
              rules: PayRules = DEFAULT_RULES) -> pd.DataFrame:
    """
    Builds the payroll summary table, one row per employee sorted by name.

    Args:
        employees: Reconciled employees.
        holidays: Dates paid as double time besides Fridays.
        month: Optional 'YYYY-MM' period; all days are used when omitted.
        rules: Pay rules providing the full-shift baseline.

    Returns:
        A DataFrame with the columns of SUMMARY_HEADERS.
    """
    start, end = month_bounds(month) if month else (None, None)
    summaries: list[dict] = [asdict(summarize_employee(e, holidays, start, end, rules)) for e in employees]
    df = pd.DataFrame(summaries, columns=list(SUMMARY_HEADERS))
    df = df.sort_values(by=['name', 'employee_number'], ignore_index=True)
    logger.info(f'Summarized {len(df)} employee(s){f" for {month}" if month else ""}.')
    return df.rename(columns=SUMMARY_HEADERS)


def hours_grid(employees: list[EmployeeRecord]) -> pd.DataFrame:
    """
    Lays out daily hours as one row per employee and one column per date.

    Dates run from the earliest to the latest day of any employee. OFF-DAY
    cells read 'OFF' and dates outside an employee's range stay empty.
    """
    all_days: list[date] = [d.date for e in employees for d in e.days]
    if not all_days:
        return pd.DataFrame(columns=['ID', 'NAME'])

    date_range = pd.date_range(start=min(all_days), end=max(all_days), freq='D')
    date_columns: list[str] = [d.strftime('%b %d') for d in date_range]

    rows: list[dict] = []
    for employee in employees:
        row: dict = {'ID': employee.employee_number, 'NAME': employee.name}
        by_date: dict[date, DailyRecord] = {d.date: d for d in employee.days}
        for stamp, column in zip(date_range, date_columns):
            record = by_date.get(stamp.date())
            if record is None:
                row[column] = None
            elif record.is_off_day:
                row[column] = 'OFF'
            else:
                row[column] = record.hours_worked
        rows.append(row)

    return pd.DataFrame(rows, columns=['ID', 'NAME'] + date_columns)


def format_stamp(value) -> str | None:
    return value.strftime('%Y-%m-%d %H:%M') if value is not None else None


def export_rows(employees: list[EmployeeRecord]) -> list[dict]:
    """Flattens every day of every employee into export rows, in employee then date order."""
    rows: list[dict] = []
    for employee in employees:
        for day in employee.days:
            rows.append({
                'employeeNumber': employee.employee_number,
                'name': employee.name,
                'date': day.date.isoformat(),
                'checkIn': format_stamp(day.first_check_in),
                'checkOut': format_stamp(day.last_check_out),
                'hoursWorked': day.hours_worked,
                'shiftType': day.shift_type.value,
                'approved': day.approved,
                'isLate': day.is_late,
                'earlyLeave': day.early_leave,
                'penaltyMinutes': day.penalty_minutes,
                'notes': day.notes,
            })
    return rows


def export_frame(employees: list[EmployeeRecord]) -> pd.DataFrame:
    return pd.DataFrame(export_rows(employees), columns=EXPORT_COLUMNS)
