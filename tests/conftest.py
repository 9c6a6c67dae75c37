from datetime import date, datetime

import pytest

from punches import PersistenceConflict, Punch
from recordstore import RecordStore


class InMemoryRecordStore(RecordStore):
    """Keeps employees and rows in dicts, raising conflicts like a unique index would."""

    def __init__(self):
        self.employees: dict[str, str] = {}
        self.names: dict[str, str] = {}
        self.rows: list[dict] = []

    def find_employee_by_number(self, employee_number: str) -> str | None:
        return self.employees.get(employee_number)

    def create_employee(self, employee_number: str, name: str) -> str:
        employee_id = f'emp-{len(self.employees) + 1}'
        self.employees[employee_number] = employee_id
        self.names[employee_id] = name
        return employee_id

    def delete_records_for_date_range(self, employee_id: str, start: date, end: date) -> int:
        kept = [r for r in self.rows
                if not (r['employee_id'] == employee_id and start.isoformat() <= r['working_day'] <= end.isoformat())]
        removed = len(self.rows) - len(kept)
        self.rows = kept
        return removed

    def insert_time_records(self, rows: list[dict]) -> None:
        existing = {(r['employee_id'], r['working_day']) for r in self.rows}
        for row in rows:
            if (row['employee_id'], row['working_day']) in existing:
                raise PersistenceConflict(row['employee_id'], date.fromisoformat(row['working_day']))
        self.rows.extend(rows)


@pytest.fixture
def store():
    return InMemoryRecordStore()


@pytest.fixture
def make_punch():
    """Builds punches of one employee from 'YYYY-MM-DD HH:MM' strings, numbered in call order."""
    counter = {'sequence': 0}

    def factory(stamp: str, status: str, employee_id: str = '101', name: str = 'Doe, Jane') -> Punch:
        counter['sequence'] += 1
        return Punch(employee_id=employee_id, employee_name=name,
                     timestamp=datetime.strptime(stamp, '%Y-%m-%d %H:%M'), raw_status=status,
                     sequence=counter['sequence'])

    return factory
