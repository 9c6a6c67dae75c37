import argparse
import json
import logging
import sys
from collections import defaultdict
from dataclasses import fields
from datetime import date
from pathlib import Path
from platform import system

import pandas as pd
from openpyxl.comments import Comment
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter

from daybuilder import build_days
from edits import recompute_day
from payrules import DEFAULT_RULES, PayRules, evaluate_day, is_double_time, load_holidays, payable_hours
from punches import (CHECK_IN, CHECK_OUT, DailyRecord, EmployeeRecord, ImportResult, ImportRow, ParseError, Punch,
                     SkippedRow)
from resolver import resolve_punches
from summary import export_frame, hours_grid, summarize

logger = logging.getLogger(__name__)

__all__ = ['read_input_file', 'frame_to_rows', 'parse_rows', 'reconcile', 'recompute_day', 'create_report', 'main']

# Keys accepted for each ImportRow field, as produced by the device export API
# or by frame_to_rows.
ROW_KEYS: dict[str, tuple[str, ...]] = {
    'timestamp': ('timestamp', 'Timestamp'),
    'employee_number': ('employee_number', 'employeeNumber'),
    'employee_name': ('employee_name', 'employeeName'),
    'status_text': ('status_text', 'statusText'),
}


def read_input_file(file_path: str | Path) -> tuple[pd.DataFrame, list[str]]:
    """
    Reads a CSV or XLSX punch export into a DataFrame with standard headers.

    -   For XLSX files, every sheet with the required headers is combined.
    -   Sheets without them are skipped and logged.

    Args:
        file_path: The path to the input file (.csv or .xlsx).

    Returns:
        A tuple containing:
        - A DataFrame with 'ID', 'NAME', 'TIMESTAMP' and 'TYPE' columns, all
          values kept as read.
        - A list of log messages generated during reading.

    Raises:
        ValueError: If the file format is unsupported or no sheet/file with
                    valid headers is found.
    """
    path: Path = Path(file_path)
    file_suffix: str = path.suffix.lower()
    logs: list[str] = []

    if file_suffix == '.csv':
        df_raw = pd.read_csv(path, dtype=str, keep_default_na=False)
        try:
            df: pd.DataFrame = process_headers(df_raw)
        except ValueError as e:
            raise ValueError(f'The CSV file {path.name=} could not be processed. Details: {e}')
        logs.append(f'Successfully read CSV file: {path.name=}')
        return df, logs

    if file_suffix in ['.xlsx', '.xls']:
        try:
            xls_sheets = pd.read_excel(path, sheet_name=None, engine='openpyxl')
        except (OSError, ValueError) as e:
            raise ValueError(f'Error reading Excel file {path.name=}: {e}')

        frames: list[pd.DataFrame] = []
        for sheet_name, sheet_df_raw in xls_sheets.items():
            if sheet_df_raw.empty:
                logs.append(f'Skipping empty sheet: {sheet_name=}.')
                continue
            try:
                frames.append(process_headers(sheet_df_raw))
                logs.append(f'Successfully read sheet: {sheet_name=}.')
            except ValueError:
                logs.append(f'Skipping sheet {sheet_name=} due to missing required headers.')

        if not frames:
            raise ValueError(f'No sheets with valid headers found in Excel file {path.name=}.')

        logs.append(f'Successfully combined {len(frames)} sheet(s) from {path.name}.')
        return pd.concat(frames, ignore_index=True), logs

    raise ValueError(f'Unsupported file format: {file_suffix=}. Please use a .csv or .xlsx file.')


def find_column(columns: list[str], aliases: list[str]) -> str | None:
    for col in aliases:
        if col in columns:
            return col
    return None


def process_headers(df: pd.DataFrame) -> pd.DataFrame:
    """
    Standardizes column headers and selects the punch columns.

    1.  Converts all column names to uppercase alphanumeric strings.
    2.  Searches common aliases for the ID, name, timestamp and status columns.
        A separate date and time column are joined into one timestamp.
    3.  If first and last name columns are found, they are combined.

    Raises:
        ValueError: If an essential column cannot be found.
    """
    df = df.copy()
    df.columns = [''.join(char.upper() for char in str(col) if char.isalnum()) for col in df.columns]
    columns: list[str] = list(df.columns)

    id_col = find_column(columns, ['EMPLOYEENUMBER', 'EMPLOYEENO', 'EMPLOYEEID', 'PERSONNELID', 'PERSONNELNO',
                                   'ID', 'EMPLOYEENUM', 'STAFFID', 'STAFFNO', 'BADGENO', 'BADGEID', 'USERID',
                                   'ACNO', 'ENROLLNUMBER'])
    if id_col is None:
        raise ValueError(f'Employee number column not found in df with columns {columns}.')

    fname_col = find_column(columns, ['FIRSTNAME', 'GIVENNAME', 'FNAME', 'FORENAME'])
    lname_col = find_column(columns, ['LASTNAME', 'SURNAME', 'LNAME', 'FAMILYNAME'])
    if fname_col and lname_col:
        df['NAME'] = (df[lname_col].astype(str).str.strip().str.strip(',') + ', ' +
                      df[fname_col].astype(str).str.strip().str.strip(','))
        name_col = 'NAME'
    else:
        name_col = find_column(columns, ['EMPLOYEENAME', 'NAME', 'FULLNAME', 'STAFFNAME', 'WORKERNAME', 'USERNAME'])
        if name_col is None:
            raise ValueError(f'Name column not found in df with columns {columns}.')

    timestamp_col = find_column(columns, ['TIMESTAMP', 'DATETIME', 'CHECKTIME', 'LOGDATETIME'])
    if timestamp_col is None:
        date_col = find_column(columns, ['LOGDATE', 'DATE', 'DAY', 'WORKDATE', 'PUNCHDATE'])
        time_col = find_column(columns, ['LOGTIME', 'TIME', 'HOUR', 'PUNCHTIME', 'CLOCKTIME'])
        if date_col is None or time_col is None:
            raise ValueError(f'Timestamp column not found in df with columns {columns}.')
        dates: pd.Series = df[date_col]
        if pd.api.types.is_datetime64_any_dtype(dates):
            dates = dates.dt.strftime('%Y-%m-%d')
        df['TIMESTAMP'] = dates.astype(str).str.strip() + ' ' + df[time_col].astype(str).str.strip()
        timestamp_col = 'TIMESTAMP'

    status_col = find_column(columns, ['STATUS', 'STATUSTEXT', 'STATE', 'INOUT', 'LOGTYPE', 'TYPE', 'CHECKTYPE',
                                       'DIRECTION', 'PUNCHTYPE', 'EVENT'])
    if status_col is None:
        raise ValueError(f'Status column not found in df with columns {columns}.')

    df = df.rename(columns={id_col: 'ID', name_col: 'NAME', timestamp_col: 'TIMESTAMP', status_col: 'TYPE'})
    return df[['ID', 'NAME', 'TIMESTAMP', 'TYPE']]


def cell_text(value) -> str:
    if value is None or (not isinstance(value, str) and pd.isna(value)):
        return ''
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def frame_to_rows(df: pd.DataFrame) -> list[ImportRow]:
    """Converts a frame from read_input_file into ImportRows, in file order."""
    return [ImportRow(timestamp=cell_text(ts), employee_number=cell_text(emp_id), employee_name=cell_text(name),
                      status_text=cell_text(status))
            for emp_id, name, ts, status in df[['ID', 'NAME', 'TIMESTAMP', 'TYPE']].itertuples(index=False)]


def to_import_row(row: ImportRow | dict) -> ImportRow:
    if isinstance(row, ImportRow):
        return row
    values: dict[str, str] = {}
    for field_name, keys in ROW_KEYS.items():
        values[field_name] = next((cell_text(row[key]) for key in keys if key in row), '')
    return ImportRow(**values)


def parse_status(value: str | bool | int) -> str:
    """
    Standardizes a device status to check_in or check_out.

    Parses common representations ('C/In', 'Check Out', 'OverTime-Out', 0, 1,
    True/False). 'out' is tested first since several in-labels would
    otherwise match inside it.

    Raises:
        ParseError: If the value is neither an in nor an out label.
    """
    if isinstance(value, bool):
        return CHECK_OUT if value else CHECK_IN

    text: str = cell_text(value).lower()
    if 'out' in text:
        return CHECK_OUT
    if 'in' in text:
        return CHECK_IN
    if text in ('0', '0.0', 'false'):
        return CHECK_IN
    if text in ('1', '1.0', 'true'):
        return CHECK_OUT
    raise ParseError(f'Invalid status {value=}.')


def parse_dates(series: pd.Series, formats: list[str], day_first: bool = True) -> pd.Series:
    """
    Parses date strings using a hybrid strategy.

    1.  Fast Path: tries each of `formats` on the entire series and returns on
        the first one that parses everything.
    2.  Fallback Path: parses row by row with pandas' mixed-format parser.
        Unparseable values become NaT.

    Args:
        series: The pandas Series of date strings.
        formats: Format strings to attempt for the fast path.
        day_first: Hint for ambiguous dates in the fallback (e.g. '01/02/2025').
                   True for European (DMY), False for US (MDY).

    Returns:
        A pandas Series of naive datetimes.
    """
    for fmt in formats:
        try:
            return pd.to_datetime(series, format=fmt, errors='raise')
        except (ValueError, TypeError):
            continue

    parsed: pd.Series = pd.Series(pd.NaT, index=series.index, dtype='datetime64[ns]')
    for index, value in series.items():
        stamp = pd.to_datetime(value, dayfirst=day_first, errors='coerce')
        if pd.isna(stamp):
            continue
        if stamp.tzinfo is not None:
            stamp = stamp.tz_localize(None)
        parsed[index] = stamp
    return parsed


def generate_date_formats(day_first: bool = True) -> list[str]:
    """
    Generates date format strings in a fixed order: ISO (YYYY-MM-DD) first,
    then European (DD-MM-YYYY) and US (MM-DD-YYYY), swapped when `day_first`
    is False.

    Each style covers '/' and '-' separators, 2- and 4-digit years, padded and
    non-padded parts, and 24-hour or 12-hour clocks with and without seconds.
    """
    d_mod = '%-d' if system() != 'Windows' else '%#d'
    m_mod = '%-m' if system() != 'Windows' else '%#m'
    h_mod = '%-H' if system() != 'Windows' else '%#H'
    i_mod = '%-I' if system() != 'Windows' else '%#I'

    time_formats: list[str] = []
    for seconds in [':%S', '']:
        time_formats += [f'%H:%M{seconds}', f'{h_mod}:%M{seconds}', f'%I:%M{seconds} %p', f'%I:%M{seconds}%p',
                         f'{i_mod}:%M{seconds} %p', f'{i_mod}:%M{seconds}%p']

    def styled(order: str) -> list[str]:
        formats: list[str] = []
        for sep in ['/', '-']:
            for d in ['%d', d_mod]:
                for m in ['%m', m_mod]:
                    for y in ['%Y', '%y']:
                        parts = {'d': d, 'm': m, 'y': y}
                        date_base = sep.join(parts[key] for key in order)
                        formats += [f'{date_base} {time}' for time in time_formats]
        return formats

    final_formats: list[str] = ['%Y-%m-%dT%H:%M:%S', '%Y-%m-%dT%H:%M']
    final_formats += styled('ymd')
    final_formats += styled('dmy') + styled('mdy') if day_first else styled('mdy') + styled('dmy')
    return list(dict.fromkeys(final_formats))


def parse_rows(rows: list[ImportRow | dict], day_first: bool = True) -> ImportResult:
    """
    Turns raw export rows into punches.

    Rows with a missing field, an unknown status or an unparseable timestamp
    are skipped and reported; the rest keep their file order in `sequence`.

    Args:
        rows: ImportRows, or mappings with timestamp/employeeNumber/
              employeeName/statusText keys.
        day_first: Read ambiguous dates as DD/MM.

    Returns:
        The parsed punches with the skipped rows and log messages.
    """
    result = ImportResult()
    candidates: list[tuple[int, ImportRow, str]] = []

    def skip(row_number: int, row: ImportRow, reason: str) -> None:
        result.skipped.append(SkippedRow(row_number, row, reason))
        result.logs.append(f'Skipped row {row_number}: {reason}')
        logger.warning(f'Skipped row {row_number}: {reason}')

    for row_number, raw in enumerate(rows, start=1):
        row: ImportRow = to_import_row(raw)
        missing: list[str] = [f.name for f in fields(ImportRow) if not getattr(row, f.name)]
        if missing:
            skip(row_number, row, f'Missing required field(s): {missing}.')
            continue
        try:
            candidates.append((row_number, row, parse_status(row.status_text)))
        except ParseError as e:
            skip(row_number, row, str(e))

    if not candidates:
        return result

    stamps: pd.Series = parse_dates(pd.Series([row.timestamp for _, row, _ in candidates]),
                                    generate_date_formats(day_first), day_first=day_first)

    for (row_number, row, status), stamp in zip(candidates, stamps):
        if pd.isna(stamp):
            skip(row_number, row, f'Invalid timestamp {row.timestamp!r}.')
            continue
        result.punches.append(Punch(employee_id=row.employee_number, employee_name=row.employee_name,
                                    timestamp=stamp.to_pydatetime(), raw_status=status, sequence=row_number))

    result.logs.append(f'Parsed {len(result.punches)} punch(es), skipped {result.skipped_count} row(s).')
    logger.info(result.logs[-1])
    return result


def canonical_names(punches: list[Punch]) -> dict[str, str]:
    """
    Establishes one display name per employee number.

    1.  The name of an employee's first punch is used for all of its punches,
        so 'J. Doe' and 'Jane Doe' on the same number do not split.
    2.  A name used by more than one number gets the number appended, e.g.
        'John Smith (101)'.
    """
    if not punches:
        return {}

    df = pd.DataFrame({'ID': [p.employee_id for p in punches], 'NAME': [p.employee_name for p in punches],
                       'SEQ': [p.sequence for p in punches]})
    id_to_name: pd.Series = df.sort_values('SEQ', kind='stable').drop_duplicates(subset=['ID']).set_index('ID')['NAME']

    name_counts = id_to_name.value_counts()
    conflicting_names = set(name_counts[name_counts > 1].index)
    return {emp_id: f'{name} ({emp_id})' if name in conflicting_names else name
            for emp_id, name in id_to_name.items()}


def reconcile(punches: list[Punch], rules: PayRules | None = None,
              config: dict[str, dict] | None = None) -> list[EmployeeRecord]:
    """
    Runs the full pipeline: resolve labels, build days, compute hours.

    The input punches are not modified, so reconciling the same punches again
    gives the same records.

    Args:
        punches: Parsed punches of any number of employees, in any order.
        rules: Pay rule thresholds, DEFAULT_RULES when omitted.
        config: Shift table, SHIFT_CONFIG when omitted.

    Returns:
        Employees sorted by name, each with a gap-free day sequence.
    """
    if rules is None:
        rules = DEFAULT_RULES

    names: dict[str, str] = canonical_names(punches)
    by_employee: dict[str, list[Punch]] = defaultdict(list)
    for punch in punches:
        by_employee[punch.employee_id].append(punch)

    employees: list[EmployeeRecord] = []
    for employee_id in sorted(by_employee, key=lambda i: (names[i], i)):
        days: list[DailyRecord] = build_days(resolve_punches(by_employee[employee_id], rules), rules)
        for day in days:
            evaluate_day(day, rules, config)
        employees.append(EmployeeRecord(employee_id, names[employee_id], days))
        logger.debug(f'Reconciled {employee_id=}: {len(days)} day(s).')

    logger.info(f'Reconciled {len(punches)} punch(es) into {len(employees)} employee(s).')
    return employees


def describe_day(day: DailyRecord) -> str:
    """Builds the review comment of a day: its notes, then raw and processed punches."""
    raw_lines: list[str] = [f'{p.timestamp:%I:%M %p} [{p.raw_status}]' for p in day.all_time_records]
    processed_lines: list[str] = [f'{p.timestamp:%I:%M %p} [{"ignored" if p.ignored else p.status}]'
                                  for p in day.all_time_records]

    parts: list[str] = []
    if day.notes:
        parts.append(day.notes.replace('; ', '\n') + '\n')
    if raw_lines:
        parts.append('Raw Data:\n' + '\n'.join(raw_lines) + '\n')
        parts.append('Processed Data:\n' + '\n'.join(processed_lines))
    return '\n'.join(parts)


def find_writable_filename(output_path: str | Path) -> Path:
    """
    Checks if a file is writable. If not, finds a unique alternative.

    If the target file is locked (e.g., open in Excel), a counter is appended
    to the filename (e.g., 'file (1).xlsx') until an available path is found.

    Raises:
        OSError: If an error other than PermissionError occurs.
    """
    path: Path = Path(output_path)
    try:
        with open(path, 'a'):
            pass
        return path
    except PermissionError:
        logger.warning(f'{path=} is currently open or you dont have write permissions.')

    counter: int = 1
    while True:
        new_path: Path = path.with_name(f'{path.stem} ({counter}){path.suffix}')
        try:
            with open(new_path, 'a'):
                pass
            logger.warning(f'File will be saved as {new_path=}')
            return new_path
        except PermissionError:
            counter += 1


def format_sheet(worksheet, df: pd.DataFrame, frozen: str, numeric_from: int) -> None:
    """Applies header colors, borders, alignment, column widths and frozen panes."""
    header_fill = PatternFill(start_color='3A3838', end_color='3A3838', fill_type='solid')
    header_font = Font(color='FFFFFF', bold=True)
    id_name_fill = PatternFill(start_color='D9D9D9', end_color='D9D9D9', fill_type='solid')
    thin_border_side = Side(style='thin', color='A6A6A6')
    cell_border = Border(left=thin_border_side, right=thin_border_side, top=thin_border_side, bottom=thin_border_side)
    center_align = Alignment(horizontal='center', vertical='center')

    for row_idx in range(1, worksheet.max_row + 1):
        for col_idx in range(1, worksheet.max_column + 1):
            cell = worksheet.cell(row=row_idx, column=col_idx)
            cell.border = cell_border
            if row_idx == 1:
                cell.fill = header_fill
                cell.font = header_font
                cell.alignment = center_align
            elif col_idx <= 2:
                cell.fill = id_name_fill
                cell.alignment = Alignment(vertical='center') if col_idx == 2 else center_align
            else:
                if col_idx >= numeric_from:
                    cell.number_format = '0.00'
                cell.alignment = center_align

    for i, column_name in enumerate(df.columns, 1):
        values_width = df[column_name].astype(str).map(len).max() if not df.empty else 0
        worksheet.column_dimensions[get_column_letter(i)].width = max(values_width, len(str(column_name))) + 4

    worksheet.freeze_panes = frozen


def create_report(employees: list[EmployeeRecord], holidays: set[date] | None = None,
                  output_filename: str | Path = 'timesheet_summary.xlsx', month: str | None = None,
                  rules: PayRules = DEFAULT_RULES) -> Path | None:
    """
    Writes the reconciliation to a formatted Excel workbook.

    -   'Summary': payroll totals per employee.
    -   'Daily': one row per employee-day. Double-time days are yellow and days
        needing review are red.
    -   'Hours': an employee by date grid of hours; each cell carries a comment
        with the day's notes and its raw and processed punches.

    Returns:
        The path written, or None if no writable file could be secured.
    """
    try:
        final_output_path: Path = find_writable_filename(output_filename)
    except OSError as e:
        logger.error(f'Could not secure a writable output file. Aborting. Error: {e}')
        return None

    flag_fill = PatternFill(start_color='FFC7CE', end_color='FFC7CE', fill_type='solid')
    flag_font = Font(color='9C0006')
    double_fill = PatternFill(start_color='FFF2CC', end_color='FFF2CC', fill_type='solid')

    summary_df: pd.DataFrame = summarize(employees, holidays, month, rules)
    daily_df: pd.DataFrame = export_frame(employees)
    daily_df['payableHours'] = [payable_hours(day, holidays) for e in employees for day in e.days]
    grid_df: pd.DataFrame = hours_grid(employees)

    with pd.ExcelWriter(final_output_path, engine='openpyxl') as writer:
        summary_df.to_excel(writer, sheet_name='Summary', index=False)
        format_sheet(writer.sheets['Summary'], summary_df, frozen='C2', numeric_from=3)

        daily_df.to_excel(writer, sheet_name='Daily', index=False)
        daily_sheet = writer.sheets['Daily']
        format_sheet(daily_sheet, daily_df, frozen='D2', numeric_from=len(daily_df.columns) + 1)
        row_idx: int = 2
        for employee in employees:
            for day in employee.days:
                for col_idx in range(1, len(daily_df.columns) + 1):
                    cell = daily_sheet.cell(row=row_idx, column=col_idx)
                    if day.needs_review:
                        cell.fill = flag_fill
                        cell.font = flag_font
                    elif is_double_time(day.date, holidays) and day.hours_worked > 0:
                        cell.fill = double_fill
                row_idx += 1

        grid_df.to_excel(writer, sheet_name='Hours', index=False)
        grid_sheet = writer.sheets['Hours']
        format_sheet(grid_sheet, grid_df, frozen='C2', numeric_from=3)
        date_to_col: dict[str, int] = {col_name: i + 1 for i, col_name in enumerate(grid_df.columns)}
        for row_offset, employee in enumerate(employees):
            for day in employee.days:
                column: str = f'{day.date:%b %d}'
                if column not in date_to_col:
                    logger.warning(f'Column for {employee.employee_number=} on {column=} not found in grid.')
                    continue
                cell = grid_sheet.cell(row=row_offset + 2, column=date_to_col[column])
                if day.needs_review:
                    cell.fill = flag_fill
                    cell.font = flag_font
                comment_text: str = describe_day(day)
                if comment_text:
                    n_lines = len(comment_text.splitlines())
                    cell.comment = Comment(comment_text, 'punch-reconcile', height=n_lines * 20, width=220)

    logger.info(f'Report written to {final_output_path}.')
    return final_output_path


def read_holidays(file_path: str | Path) -> set[date]:
    """Reads holidays from a CSV with a 'date' column, or one date per line."""
    df = pd.read_csv(file_path, header=None, dtype=str, keep_default_na=False)
    values: list[str] = [v.strip() for v in df[0] if v.strip()]
    if values and values[0].lower() == 'date':
        values = values[1:]
    return load_holidays(values)


def read_rules(file_path: str | Path) -> PayRules:
    with open(file_path) as f:
        return PayRules.from_dict(json.load(f))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='punch-reconcile',
                                     description='Reconcile time-clock punches into daily attendance and payroll hours.')
    parser.add_argument('input', help='Punch export (.csv or .xlsx).')
    parser.add_argument('-o', '--output', default='timesheet_summary.xlsx', help='Excel report to write.')
    parser.add_argument('--holidays', help='CSV of holiday dates paid as double time.')
    parser.add_argument('--rules', help='JSON file overriding pay rule thresholds.')
    parser.add_argument('--month', help='Limit the summary to a YYYY-MM month.')
    parser.add_argument('--month-first', dest='day_first', action='store_false',
                        help='Read ambiguous dates as MM/DD instead of DD/MM.')
    parser.add_argument('-v', '--verbose', action='store_true', help='Log debug messages.')
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format='%(asctime)s %(levelname)s %(name)s: %(message)s')

    try:
        rules: PayRules = read_rules(args.rules) if args.rules else DEFAULT_RULES
        holidays: set[date] = read_holidays(args.holidays) if args.holidays else set()
        df, logs = read_input_file(args.input)
    except (ValueError, OSError) as e:
        logger.error(f'Could not read input. Details: {e}')
        return 1
    for log_message in logs:
        logger.info(log_message)

    imported: ImportResult = parse_rows(frame_to_rows(df), day_first=args.day_first)
    employees: list[EmployeeRecord] = reconcile(imported.punches, rules)
    try:
        output: Path | None = create_report(employees, holidays, args.output, args.month, rules)
    except ValueError as e:
        logger.error(f'Could not create report. Details: {e}')
        return 1
    return 0 if output is not None else 1


if __name__ == '__main__':
    sys.exit(main())
