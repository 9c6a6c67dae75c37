from datetime import date

import pandas as pd
import pytest

from punches import CHECK_IN, CHECK_OUT
from summary import EXPORT_COLUMNS, export_frame, export_rows, hours_grid, month_bounds, summarize, summarize_employee
from timesheet import reconcile


@pytest.fixture
def employees(make_punch):
    return reconcile([
        make_punch('2025-03-26 08:00', CHECK_IN), make_punch('2025-03-26 18:00', CHECK_OUT),
        make_punch('2025-03-28 08:00', CHECK_IN), make_punch('2025-03-28 17:00', CHECK_OUT),
        make_punch('2025-04-01 08:00', CHECK_IN), make_punch('2025-04-01 17:00', CHECK_OUT),
        make_punch('2025-03-26 08:00', CHECK_IN, employee_id='202', name='Roe, Rick'),
        make_punch('2025-03-26 17:00', CHECK_OUT, employee_id='202', name='Roe, Rick'),
    ])


def test_friday_counts_double(employees):
    summary = summarize_employee(employees[0], start=date(2025, 3, 28), end=date(2025, 3, 28))

    assert summary.regular_hours == 9.0
    assert summary.double_time_hours == 9.0
    assert summary.payable_hours == 18.0
    assert summary.fridays_worked == 1


def test_employee_totals(employees):
    summary = summarize_employee(employees[0], holidays={date(2025, 4, 1)})

    assert summary.total_days == 7
    assert summary.worked_days == 3
    assert summary.off_days == 4
    assert summary.regular_hours == 28.0
    assert summary.double_time_hours == 18.0
    assert summary.payable_hours == 46.0
    assert summary.overtime_hours == 1.0
    assert summary.overtime_days == 0.11


def test_summarize_month(employees):
    df = summarize(employees, month='2025-03')

    assert list(df['Name']) == ['Doe, Jane', 'Roe, Rick']
    assert list(df['Regular Hours']) == [19.0, 9.0]
    assert list(df['Total Payable Hours']) == [28.0, 9.0]


def test_month_bounds():
    assert month_bounds('2025-02') == (date(2025, 2, 1), date(2025, 2, 28))
    with pytest.raises(ValueError):
        month_bounds('not-a-month')


def test_hours_grid(employees):
    grid = hours_grid(employees)

    assert list(grid.columns[:4]) == ['ID', 'NAME', 'Mar 26', 'Mar 27']
    assert grid.loc[0, 'Mar 27'] == 'OFF'
    assert grid.loc[0, 'Mar 26'] == 10.0
    assert pd.isna(grid.loc[1, 'Apr 01'])


def test_export_rows(employees):
    rows = export_rows(employees)
    first = rows[0]

    assert first == {
        'employeeNumber': '101',
        'name': 'Doe, Jane',
        'date': '2025-03-26',
        'checkIn': '2025-03-26 08:00',
        'checkOut': '2025-03-26 18:00',
        'hoursWorked': 10.0,
        'shiftType': 'canteen',
        'approved': False,
        'isLate': False,
        'earlyLeave': False,
        'penaltyMinutes': 0,
        'notes': 'Info: Overtime.',
    }
    assert rows[1]['checkIn'] is None
    assert list(export_frame(employees).columns) == EXPORT_COLUMNS
