"""
Student CSV import – parse and validate uploaded student rosters.
"""
import csv
from io import StringIO

REQUIRED_COLUMNS = ('indexnumber', 'firstname', 'lastname', 'program', 'level')

# Field names as reported back to the user
FIELD_LABELS = {
    'indexnumber': 'indexNumber',
    'firstname': 'firstName',
    'lastname': 'lastName',
    'program': 'program',
    'level': 'level',
}

CSV_TEMPLATE = 'indexNumber,firstName,lastName,program,level\n' \
               '10012345,Ama,Mensah,BSc Computer Science,200\n'


class CsvImportError(ValueError):
    """A roster that cannot be imported; the message names the offending row."""


def decode_upload(raw: bytes) -> str:
    """Decode an uploaded file, tolerating a UTF-8 BOM from spreadsheet exports."""
    try:
        return raw.decode('utf-8-sig')
    except UnicodeDecodeError:
        return raw.decode('latin-1')


def _normalise_header(name):
    return name.strip().lower().replace(' ', '').replace('_', '')


def parse_students_csv(text: str) -> list:
    """
    Parse a student roster.

    Headers are matched case-insensitively (``IndexNumber``, ``index_number``
    and ``indexnumber`` are all accepted). Row numbers in error messages are
    the 1-based line numbers of the file, so they match what a spreadsheet
    shows even when blank lines come first. Fully blank rows are skipped.

    Returns a list of dicts with keys index_number, first_name, last_name,
    program and level (int).
    """
    reader = csv.reader(StringIO(text.rstrip()))
    header_row = None
    records = []
    for row in reader:
        if not any(cell.strip() for cell in row):
            continue
        if header_row is None:
            header_row = row
        else:
            # line_num is the source line the record ended on
            records.append((reader.line_num, row))
    if header_row is None or not records:
        raise CsvImportError('CSV file must contain headers and at least one data row')

    headers = [_normalise_header(h) for h in header_row]
    missing_columns = [c for c in REQUIRED_COLUMNS if c not in headers]
    if missing_columns:
        raise CsvImportError(
            'Missing required columns: ' + ', '.join(FIELD_LABELS[c] for c in missing_columns)
        )
    positions = {column: headers.index(column) for column in REQUIRED_COLUMNS}

    students = []
    for row_number, row in records:
        values = {}
        for column, position in positions.items():
            values[column] = row[position].strip() if position < len(row) else ''

        missing = [FIELD_LABELS[c] for c in REQUIRED_COLUMNS if not values[c]]
        if missing:
            raise CsvImportError(
                f"Row {row_number}: Missing required fields: {', '.join(missing)}"
            )

        try:
            level = int(values['level'])
        except ValueError:
            raise CsvImportError(
                f'Row {row_number}: Level must be a valid number, got "{values["level"]}"'
            ) from None

        students.append({
            'index_number': values['indexnumber'],
            'first_name': values['firstname'],
            'last_name': values['lastname'],
            'program': values['program'],
            'level': level,
        })

    return students


def parse_index_numbers_csv(text: str) -> list:
    """
    Parse a list of index numbers for expected-student import.

    Accepts either a single column with an ``indexNumber`` header or a
    headerless single column. Duplicates are dropped, order is kept.
    """
    seen = []
    for row in csv.reader(StringIO(text.strip())):
        if not row or not row[0].strip():
            continue
        value = row[0].strip()
        if _normalise_header(value) == 'indexnumber':
            continue
        if value not in seen:
            seen.append(value)
    if not seen:
        raise CsvImportError('CSV file must contain at least one index number')
    return seen
